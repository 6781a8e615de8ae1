"""Shared errors and schemas."""
