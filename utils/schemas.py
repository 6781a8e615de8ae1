"""
Pydantic schemas for the TikTok connect / sync service.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field


# ═══════════════════════════════════════════════════════════════════════════════
# TikTok provider payloads
# ═══════════════════════════════════════════════════════════════════════════════


class TokenResponse(BaseModel):
    """Decoded body of a successful ``/v2/oauth/token/`` call."""

    model_config = ConfigDict(extra="ignore")

    access_token: str
    open_id: str
    token_type: Optional[str] = "Bearer"
    expires_in: Optional[int] = None        # seconds from now; None = non-expiring
    refresh_token: Optional[str] = None
    refresh_expires_in: Optional[int] = None
    scope: Optional[str] = None


class UserInfo(BaseModel):
    """
    Resolved ``user`` object from ``/v2/user/info/``.

    Everything except ``open_id`` is optional.  Absent values stay ``None``
    here; zero-defaults are applied when rows are written.
    """

    model_config = ConfigDict(extra="ignore")

    open_id: str
    union_id: Optional[str] = None
    avatar_url: Optional[str] = None
    display_name: Optional[str] = None
    username: Optional[str] = None
    bio_description: Optional[str] = None
    is_verified: Optional[bool] = None
    follower_count: Optional[int] = None
    following_count: Optional[int] = None
    likes_count: Optional[int] = None
    video_count: Optional[int] = None


class StoredToken(BaseModel):
    """Decrypted view of a ``tiktok_tokens`` row."""

    account_id: str
    access_token: str
    refresh_token: Optional[str] = None
    expires_at: Optional[datetime] = None
    token_type: Optional[str] = None
    scope: Optional[str] = None


# ═══════════════════════════════════════════════════════════════════════════════
# Core results
# ═══════════════════════════════════════════════════════════════════════════════


class ConnectOutcome(BaseModel):
    """Result of one successful connect transaction."""

    account_id: str
    open_id: str
    created: bool = False
    token_stored: bool = True
    token_error: Optional[str] = None


class SyncResult(BaseModel):
    """Outcome of ``sync_account``.  ``error`` holds the typed exception."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    success: bool
    error: Optional[Exception] = None

    @property
    def message(self) -> Optional[str]:
        if self.error is None:
            return None
        return str(self.error) or type(self.error).__name__


class BatchSyncResult(BaseModel):
    synced: int = 0
    failed: int = 0
    errors: List[str] = Field(default_factory=list)


# ═══════════════════════════════════════════════════════════════════════════════
# API responses
# ═══════════════════════════════════════════════════════════════════════════════


class CronSyncResponse(BaseModel):
    success: bool = True
    synced: int
    failed: int
    errors: List[str]
    timestamp: str


class RefreshResponse(BaseModel):
    success: bool = True
    message: str


class ProfileOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    username: str
    display_name: Optional[str] = None
    avatar_url: Optional[str] = None
    bio: Optional[str] = None
    is_verified: bool = False
    follower_count: int = 0
    following_count: int = 0
    video_count: int = 0
    updated_at: Optional[datetime] = None


class StatsOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    follower_count: int
    following_count: int
    video_count: int
    total_likes: int
    recorded_at: datetime


class MeResponse(BaseModel):
    account_id: str
    profile: ProfileOut
    latest_stats: Optional[StatsOut] = None
    history: List[StatsOut] = Field(default_factory=list)


def error_body(exc: Any) -> dict:
    """JSON body for an API-facing failure."""
    code = getattr(exc, "code", "internal_error")
    return {"success": False, "error": str(exc) or code, "code": code}
