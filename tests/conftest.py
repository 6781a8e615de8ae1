"""
Shared fixtures: settings, a temporary SQLite-backed store and a fake
TikTok API served through ``httpx.MockTransport``.
"""

from typing import Any, Dict, List

import httpx
import pytest
import pytest_asyncio
from cryptography.fernet import Fernet

from config.settings import Settings
from connectors.encryption import TokenCipher
from connectors.tiktok import TikTokClient
from database.session import build_engine, build_session_factory, create_tables
from database.store import AccountStore


class FakeTikTok:
    """In-memory stand-in for open.tiktokapis.com."""

    def __init__(self, open_id: str = "open-123"):
        self.requests: List[httpx.Request] = []
        self.token_status = 200
        self.token_body: Dict[str, Any] = {
            "access_token": "act.secret-access",
            "refresh_token": "rft.secret-refresh",
            "expires_in": 86400,
            "refresh_expires_in": 31536000,
            "open_id": open_id,
            "scope": "user.info.basic,user.info.profile,user.info.stats",
            "token_type": "Bearer",
        }
        self.user_status = 200
        self.user: Dict[str, Any] = {
            "open_id": open_id,
            "username": "creator",
            "display_name": "Creator",
            "avatar_url": "https://cdn.example/avatar.jpg",
            "bio_description": "hello",
            "is_verified": True,
            "follower_count": 100,
            "following_count": 10,
            "likes_count": 5000,
            "video_count": 7,
        }
        self.user_body_override: Dict[str, Any] | None = None

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path == "/v2/oauth/token/":
            return httpx.Response(self.token_status, json=self.token_body)
        if request.url.path == "/v2/user/info/":
            body = self.user_body_override or {
                "data": {"user": self.user},
                "error": {"code": "ok", "message": "", "log_id": "log-1"},
            }
            return httpx.Response(self.user_status, json=body)
        return httpx.Response(404, text="not found")

    def paths(self) -> List[str]:
        return [r.url.path for r in self.requests]


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        tiktok_client_key="client-key",
        tiktok_client_secret="client-secret",
        tiktok_redirect_uri="https://testserver/auth/callback",
        session_secret="test-session-secret",
        cron_secret=None,
        token_encryption_key=Fernet.generate_key().decode(),
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'collabtok.db'}",
        auto_create_tables=False,
        sync_interval_seconds=0,
    )


@pytest.fixture
def fake_tiktok() -> FakeTikTok:
    return FakeTikTok()


@pytest.fixture
def tiktok_client(settings, fake_tiktok) -> TikTokClient:
    return TikTokClient(settings, transport=httpx.MockTransport(fake_tiktok.handler))


@pytest_asyncio.fixture
async def store(settings):
    engine = build_engine(settings)
    await create_tables(engine)
    yield AccountStore(build_session_factory(engine), TokenCipher(settings.token_encryption_key))
    await engine.dispose()
