"""
SQLAlchemy ORM models for accounts and their TikTok data.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    BigInteger,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import DeclarativeBase, relationship


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class Account(Base):
    __tablename__ = "accounts"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    open_id = Column(String(128), unique=True, nullable=False)
    email = Column(String(255), nullable=False)
    username = Column(String(128))
    display_name = Column(String(255))
    avatar_url = Column(Text)
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    profile = relationship("Profile", uselist=False, cascade="all, delete-orphan")
    token = relationship("TokenRecord", uselist=False, cascade="all, delete-orphan")
    stats = relationship("StatsSnapshot", cascade="all, delete-orphan")


class Profile(Base):
    __tablename__ = "tiktok_profiles"

    account_id = Column(String(36), ForeignKey("accounts.id", ondelete="CASCADE"), primary_key=True)
    username = Column(String(128), nullable=False, default="")
    display_name = Column(String(255))
    avatar_url = Column(Text)
    bio = Column(Text)
    is_verified = Column(Boolean, nullable=False, default=False)
    follower_count = Column(BigInteger, nullable=False, default=0)
    following_count = Column(BigInteger, nullable=False, default=0)
    video_count = Column(BigInteger, nullable=False, default=0)
    updated_at = Column(DateTime(timezone=True), default=_utcnow)


class StatsSnapshot(Base):
    """Append-only ledger; the newest ``recorded_at`` is the current view."""

    __tablename__ = "tiktok_stats"
    __table_args__ = (Index("ix_tiktok_stats_account_recorded", "account_id", "recorded_at"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    account_id = Column(String(36), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False)
    follower_count = Column(BigInteger, nullable=False, default=0)
    following_count = Column(BigInteger, nullable=False, default=0)
    video_count = Column(BigInteger, nullable=False, default=0)
    total_likes = Column(BigInteger, nullable=False, default=0)
    recorded_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)


class TokenRecord(Base):
    __tablename__ = "tiktok_tokens"

    account_id = Column(String(36), ForeignKey("accounts.id", ondelete="CASCADE"), primary_key=True)
    access_token = Column(Text, nullable=False)
    refresh_token = Column(Text)
    expires_at = Column(DateTime(timezone=True))            # NULL = non-expiring
    refresh_expires_at = Column(DateTime(timezone=True))
    token_type = Column(String(32), default="Bearer")
    scope = Column(Text)
    updated_at = Column(DateTime(timezone=True), default=_utcnow)
