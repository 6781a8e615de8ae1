"""
auth — browser session for connected creators.

Provides:
  • Signed, httpOnly session cookie carrying the local account id
  • Cookie issue / clear helpers for route handlers
"""
