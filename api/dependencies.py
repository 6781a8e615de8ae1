"""
FastAPI dependencies (shared across routes).

The app factory puts the process-wide settings, TikTok client and store
on ``app.state``; tests swap them through ``app.dependency_overrides``.
"""

from __future__ import annotations

from typing import Optional

from fastapi import Depends, Request

from auth.session import read_session
from config.settings import Settings
from connectors.tiktok import TikTokClient
from database.store import AccountStore
from utils.errors import UnauthorizedError


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_tiktok_client(request: Request) -> TikTokClient:
    return request.app.state.tiktok_client


def get_store(request: Request) -> AccountStore:
    return request.app.state.store


async def current_account_id(
    request: Request,
    settings: Settings = Depends(get_settings),
) -> Optional[str]:
    """Account id from the session cookie, or ``None`` when signed out."""
    return read_session(request, settings)


async def require_account_id(
    account_id: Optional[str] = Depends(current_account_id),
) -> str:
    """Like ``current_account_id`` but raises ``UnauthorizedError`` when signed out."""
    if not account_id:
        raise UnauthorizedError()
    return account_id
