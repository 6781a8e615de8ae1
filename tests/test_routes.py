"""
HTTP-level tests: drive the FastAPI app through ``httpx.ASGITransport``.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock, patch
from urllib.parse import parse_qs, urlparse

import httpx
import pytest
import pytest_asyncio

from api.dependencies import get_store, get_tiktok_client
from auth.session import create_session_value
from connectors.tiktok import TIKTOK_AUTHORIZE_URL, TikTokClient
from core.connect import connect_account
from main import create_app
from utils.errors import TokenWriteError
from utils.schemas import TokenResponse


def _make_app(settings, store, tiktok_client):
    app = create_app(settings)
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_tiktok_client] = lambda: tiktok_client
    return app


@pytest_asyncio.fixture
async def http(settings, store, tiktok_client):
    app = _make_app(settings, store, tiktok_client)
    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app), base_url="https://testserver"
    ) as client:
        yield client


def _cookie_header(settings, account_id: str) -> dict:
    value = create_session_value(account_id, settings)
    return {"Cookie": f"{settings.session_cookie_name}={value}"}


def _query(location: str) -> dict:
    return {k: v[0] for k, v in parse_qs(urlparse(location).query).items()}


class TestAuthStart:
    @pytest.mark.asyncio
    async def test_redirects_to_tiktok(self, http):
        resp = await http.get("/auth/start")
        assert resp.status_code == 302
        assert resp.headers["location"].startswith(TIKTOK_AUTHORIZE_URL)

    @pytest.mark.asyncio
    async def test_missing_config_returns_500(self, settings, store, fake_tiktok):
        settings = settings.model_copy(update={"tiktok_client_key": ""})
        app = _make_app(settings, store, TikTokClient(settings))
        async with httpx.AsyncClient(
            transport=httpx.ASGITransport(app=app), base_url="https://testserver"
        ) as client:
            resp = await client.get("/auth/start")

        assert resp.status_code == 500
        body = resp.json()
        assert "TIKTOK_CLIENT_KEY" in body["error"]
        assert "details" in body


class TestAuthCallback:
    @pytest.mark.asyncio
    async def test_missing_code_touches_nothing(self, settings, fake_tiktok):
        store = MagicMock()
        app = _make_app(settings, store, MagicMock())
        async with httpx.AsyncClient(
            transport=httpx.ASGITransport(app=app), base_url="https://testserver"
        ) as client:
            resp = await client.get("/auth/callback")

        assert resp.status_code == 302
        assert resp.headers["location"] == "/?error=missing_code"
        assert store.mock_calls == []
        assert "set-cookie" not in resp.headers

    @pytest.mark.asyncio
    async def test_provider_denied(self, http, fake_tiktok):
        resp = await http.get(
            "/auth/callback",
            params={"error": "access_denied", "error_description": "User cancelled"},
        )
        assert resp.status_code == 302
        assert _query(resp.headers["location"]) == {
            "error": "access_denied",
            "details": "User cancelled",
        }
        assert fake_tiktok.requests == []

    @pytest.mark.asyncio
    async def test_success_sets_session_cookie(self, http, settings, store):
        resp = await http.get("/auth/callback", params={"code": "code-1", "state": "s"})

        assert resp.status_code == 302
        assert resp.headers["location"] == "/"
        cookie = resp.headers["set-cookie"]
        assert cookie.startswith(f"{settings.session_cookie_name}=")
        assert "HttpOnly" in cookie
        assert "Secure" in cookie
        assert "samesite=lax" in cookie.lower()
        assert f"Max-Age={60 * 60 * 24 * 30}" in cookie

        account = await store.find_account_by_open_id("open-123")
        assert account is not None

    @pytest.mark.asyncio
    async def test_token_write_failure_still_connects(self, http, settings, store):
        failure = TokenWriteError("store token", "db down")
        with patch.object(store, "upsert_token", AsyncMock(side_effect=failure)):
            resp = await http.get("/auth/callback", params={"code": "code-1"})

        assert resp.status_code == 302
        assert resp.headers["location"] == "/"
        assert settings.session_cookie_name in resp.headers["set-cookie"]

    @pytest.mark.asyncio
    async def test_exchange_failure_redirects_with_error(self, http, fake_tiktok, store):
        fake_tiktok.token_status = 400
        fake_tiktok.token_body = {"error": "invalid_grant"}

        resp = await http.get("/auth/callback", params={"code": "used-code"})

        assert resp.status_code == 302
        query = _query(resp.headers["location"])
        assert query["error"] == "provider_http_error"
        assert "400" in query["details"]
        assert "set-cookie" not in resp.headers
        assert await store.count_accounts() == 0

    @pytest.mark.asyncio
    async def test_unexpected_error_is_contained(self, settings, store):
        client = MagicMock()
        client.exchange_code_for_token = AsyncMock(side_effect=RuntimeError("surprise"))
        app = _make_app(settings, store, client)
        async with httpx.AsyncClient(
            transport=httpx.ASGITransport(app=app), base_url="https://testserver"
        ) as http:
            resp = await http.get("/auth/callback", params={"code": "c"})

        assert resp.status_code == 302
        assert _query(resp.headers["location"])["error"] == "callback_failed"

    @pytest.mark.asyncio
    async def test_unreachable_provider_redirects_with_provider_code(self, settings, store):
        def refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        app = _make_app(settings, store, TikTokClient(settings, transport=httpx.MockTransport(refuse)))
        async with httpx.AsyncClient(
            transport=httpx.ASGITransport(app=app), base_url="https://testserver"
        ) as http:
            resp = await http.get("/auth/callback", params={"code": "c"})

        assert resp.status_code == 302
        assert _query(resp.headers["location"])["error"] == "provider_unreachable"
        assert "set-cookie" not in resp.headers
        assert await store.count_accounts() == 0

    @pytest.mark.asyncio
    async def test_secrets_not_in_error_details(self, http, fake_tiktok):
        fake_tiktok.user_status = 500
        resp = await http.get("/auth/callback", params={"code": "code-1"})
        assert "act.secret-access" not in resp.headers["location"]


class TestLogout:
    @pytest.mark.asyncio
    async def test_clears_cookie(self, http, settings):
        resp = await http.post("/auth/logout")
        assert resp.status_code == 302
        cookie = resp.headers["set-cookie"]
        assert cookie.startswith(f'{settings.session_cookie_name}=""') or cookie.startswith(
            f"{settings.session_cookie_name}=;"
        )
        assert "Max-Age=0" in cookie


class TestCronSync:
    @pytest.mark.asyncio
    async def test_rejects_wrong_secret(self, settings, store, tiktok_client):
        settings = settings.model_copy(update={"cron_secret": "s3cret"})
        app = _make_app(settings, store, tiktok_client)
        async with httpx.AsyncClient(
            transport=httpx.ASGITransport(app=app), base_url="https://testserver"
        ) as client:
            missing = await client.get("/cron/sync")
            wrong = await client.get("/cron/sync", headers={"Authorization": "Bearer nope"})
            ok = await client.get("/cron/sync", headers={"Authorization": "Bearer s3cret"})

        assert missing.status_code == 401
        assert wrong.status_code == 401
        assert ok.status_code == 200

    @pytest.mark.asyncio
    async def test_reports_tally(self, http, settings, store, tiktok_client):
        await connect_account("code-1", client=tiktok_client, store=store, settings=settings)

        resp = await http.get("/cron/sync")

        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is True
        assert body["synced"] == 1
        assert body["failed"] == 0
        assert body["errors"] == []
        assert "timestamp" in body


class TestRefresh:
    @pytest.mark.asyncio
    async def test_requires_session(self, http):
        resp = await http.post("/sync/refresh")
        assert resp.status_code == 401
        assert resp.json() == {"success": False, "error": "Not authenticated"}

    @pytest.mark.asyncio
    async def test_tampered_cookie_is_rejected(self, http, settings):
        headers = _cookie_header(settings, "acct")
        headers["Cookie"] = headers["Cookie"][:-4] + "zzzz"
        resp = await http.post("/sync/refresh", headers=headers)
        assert resp.status_code == 401

    @pytest.mark.asyncio
    async def test_refreshes_own_account(self, http, settings, store, tiktok_client, fake_tiktok):
        outcome = await connect_account("code-1", client=tiktok_client, store=store, settings=settings)
        fake_tiktok.user["follower_count"] = 321

        resp = await http.post("/sync/refresh", headers=_cookie_header(settings, outcome.account_id))

        assert resp.status_code == 200
        assert resp.json() == {"success": True, "message": "Data refreshed successfully"}
        assert (await store.get_profile(outcome.account_id)).follower_count == 321

    @pytest.mark.asyncio
    async def test_expired_token_returns_500(self, http, settings, store, tiktok_client):
        outcome = await connect_account("code-1", client=tiktok_client, store=store, settings=settings)
        stale = TokenResponse(access_token="act.old", open_id="open-123", expires_in=60)
        await store.upsert_token(outcome.account_id, stale, now=datetime.now(timezone.utc) - timedelta(minutes=1))

        resp = await http.post("/sync/refresh", headers=_cookie_header(settings, outcome.account_id))

        assert resp.status_code == 500
        body = resp.json()
        assert body["success"] is False
        assert body["code"] == "token_expired"


class TestReadViews:
    @pytest.mark.asyncio
    async def test_me(self, http, settings, store, tiktok_client):
        outcome = await connect_account("code-1", client=tiktok_client, store=store, settings=settings)

        resp = await http.get("/me", headers=_cookie_header(settings, outcome.account_id))

        assert resp.status_code == 200
        body = resp.json()
        assert body["account_id"] == outcome.account_id
        assert body["profile"]["username"] == "creator"
        assert body["latest_stats"]["total_likes"] == 5000
        assert len(body["history"]) == 1

    @pytest.mark.asyncio
    async def test_me_requires_session(self, http):
        resp = await http.get("/me")
        assert resp.status_code == 401
        assert resp.json() == {"success": False, "error": "Not authenticated"}

    @pytest.mark.asyncio
    async def test_signed_out_never_reaches_store(self, settings):
        store = MagicMock()
        app = _make_app(settings, store, MagicMock())
        async with httpx.AsyncClient(
            transport=httpx.ASGITransport(app=app), base_url="https://testserver"
        ) as client:
            me = await client.get("/me")
            refresh = await client.post("/sync/refresh")

        assert (me.status_code, refresh.status_code) == (401, 401)
        assert store.mock_calls == []

    @pytest.mark.asyncio
    async def test_health(self, http):
        resp = await http.get("/health/db")
        assert resp.status_code == 200
        assert resp.json() == {"ok": True, "account_count": 0}
