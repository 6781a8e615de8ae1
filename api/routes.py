"""
HTTP routes — TikTok connect / callback, sync triggers and read-only views.

Browser-facing routes (``/auth/*``) always answer with a redirect; API
routes always answer with a JSON body.  No exception escapes a handler
except ``UnauthorizedError`` from ``require_account_id``, which the app's
exception handler turns into a 401.
"""

from __future__ import annotations

import hmac
import logging
from datetime import datetime, timezone
from typing import Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Header, Query
from fastapi.responses import JSONResponse, RedirectResponse

from api.dependencies import get_settings, get_store, get_tiktok_client, require_account_id
from auth.session import clear_session_cookie, set_session_cookie
from config.settings import Settings
from connectors.tiktok import TikTokClient
from core.connect import connect_account
from core.sync import sync_account, sync_all
from database.store import AccountStore
from utils.errors import (
    CollabError,
    ConfigurationError,
    MissingCodeError,
    ProviderDeniedError,
)
from utils.schemas import (
    CronSyncResponse,
    MeResponse,
    ProfileOut,
    RefreshResponse,
    StatsOut,
    error_body,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def _home_redirect(error: Optional[str] = None, details: Optional[str] = None) -> RedirectResponse:
    """302 to the home page, optionally carrying ``?error=&details=``."""
    url = "/"
    if error:
        params = {"error": error}
        if details:
            params["details"] = details
        url = "/?" + urlencode(params)
    return RedirectResponse(url=url, status_code=302)


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


# ── OAuth ──────────────────────────────────────────────────────────────


@router.get("/auth/start")
async def auth_start(client: TikTokClient = Depends(get_tiktok_client)):
    """Redirect the browser to TikTok's consent page."""
    # TODO: persist the state in a short-lived cookie and verify it in /auth/callback.
    try:
        auth_url = client.build_authorization_url()
    except ConfigurationError as exc:
        logger.error("TikTok OAuth start failed: %s", exc)
        return JSONResponse(
            status_code=500,
            content={
                "error": exc.detail,
                "details": "Please check that TIKTOK_CLIENT_KEY and TIKTOK_REDIRECT_URI are set",
            },
        )
    except Exception as exc:
        logger.exception("TikTok OAuth start failed")
        return JSONResponse(
            status_code=500,
            content={"error": "Failed to initiate TikTok login", "details": str(exc)},
        )
    return RedirectResponse(url=auth_url, status_code=302)


@router.get("/auth/callback", name="auth_callback")
async def auth_callback(
    code: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    error: Optional[str] = Query(None),
    error_description: Optional[str] = Query(None),
    client: TikTokClient = Depends(get_tiktok_client),
    store: AccountStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
):
    """
    TikTok redirects here after consent:
    ``/auth/callback?code=...&state=...&scopes=...``
    """
    logger.info(
        "TikTok callback received (code %s, state %s)",
        "present" if code else "missing",
        state,
    )
    try:
        if error:
            raise ProviderDeniedError(error, error_description or "")
        outcome = await connect_account(code, client=client, store=store, settings=settings)
    except MissingCodeError:
        logger.error("TikTok callback missing authorization code")
        return _home_redirect(error="missing_code")
    except CollabError as exc:
        logger.error("TikTok connect failed (%s): %s", exc.code, exc.detail)
        return _home_redirect(error=exc.code, details=exc.detail)
    except Exception:
        logger.exception("TikTok callback error")
        return _home_redirect(error="callback_failed", details="Failed to process TikTok callback")

    if not outcome.token_stored:
        logger.warning("Account %s connected without a stored token", outcome.account_id)
    return set_session_cookie(_home_redirect(), outcome.account_id, settings)


@router.post("/auth/logout")
async def logout(settings: Settings = Depends(get_settings)):
    return clear_session_cookie(_home_redirect(), settings)


# ── Sync triggers ──────────────────────────────────────────────────────


@router.get("/cron/sync")
async def cron_sync(
    authorization: Optional[str] = Header(None),
    client: TikTokClient = Depends(get_tiktok_client),
    store: AccountStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
):
    """Sync every connected account.  Meant to be hit by a scheduler."""
    if settings.cron_secret:
        expected = f"Bearer {settings.cron_secret}".encode()
        if not hmac.compare_digest((authorization or "").encode(), expected):
            return JSONResponse(status_code=401, content={"error": "Unauthorized"})

    try:
        result = await sync_all(client=client, store=store, settings=settings)
    except Exception as exc:
        logger.exception("Cron sync error")
        return JSONResponse(
            status_code=500,
            content={"success": False, "error": str(exc), "timestamp": _timestamp()},
        )

    return CronSyncResponse(
        synced=result.synced,
        failed=result.failed,
        errors=result.errors,
        timestamp=_timestamp(),
    )


@router.post("/sync/refresh")
async def refresh(
    account_id: str = Depends(require_account_id),
    client: TikTokClient = Depends(get_tiktok_client),
    store: AccountStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
):
    """Sync the signed-in account right now."""
    logger.info("Manual refresh requested for account %s", account_id)
    try:
        result = await sync_account(account_id, client=client, store=store, settings=settings)
    except Exception as exc:
        logger.exception("Refresh error")
        return JSONResponse(status_code=500, content=error_body(exc))

    if not result.success:
        return JSONResponse(status_code=500, content=error_body(result.error))
    return RefreshResponse(message="Data refreshed successfully")


# ── Read-only views ────────────────────────────────────────────────────


@router.get("/me")
async def me(
    account_id: str = Depends(require_account_id),
    store: AccountStore = Depends(get_store),
):
    """Profile, latest stats and recent history for the signed-in account."""
    try:
        profile = await store.get_profile(account_id)
        if profile is None:
            return JSONResponse(
                status_code=404,
                content={"success": False, "error": "No TikTok profile for this account"},
            )
        history = await store.stats_history(account_id)
    except Exception as exc:
        logger.exception("Failed to load profile for %s", account_id)
        return JSONResponse(status_code=500, content=error_body(exc))

    stats = [StatsOut.model_validate(row) for row in history]
    return MeResponse(
        account_id=account_id,
        profile=ProfileOut.model_validate(profile),
        latest_stats=stats[0] if stats else None,
        history=stats,
    )


@router.get("/health/db")
async def health_db(store: AccountStore = Depends(get_store)):
    try:
        count = await store.count_accounts()
    except Exception as exc:
        logger.error("Store health check failed: %s", exc)
        return JSONResponse(status_code=500, content={"ok": False, "error": str(exc)})
    return {"ok": True, "account_count": count}
