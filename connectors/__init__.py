"""
connectors — TikTok OAuth integration.

Handles:
  • OAuth2 authorization-URL generation
  • Code → token exchange
  • User-info (profile + stats) retrieval
  • Fernet encryption of tokens at rest
"""
