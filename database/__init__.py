"""Persistence: ORM models, engine factory and the account store."""
