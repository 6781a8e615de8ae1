"""
TikTokClient — OAuth2 (Login Kit for Web) and user-info calls.

Builds the authorization URL, exchanges the authorization code for a
token pair and fetches the creator's profile / stats.  Holds no state
besides its settings; every call opens its own ``httpx.AsyncClient``.
"""

from __future__ import annotations

import logging
import secrets
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import urlencode

import httpx
from pydantic import ValidationError

from config.settings import Settings
from utils.errors import (
    ProviderApiError,
    ProviderHttpError,
    ProviderProtocolError,
    ProviderTransportError,
)
from utils.schemas import TokenResponse, UserInfo

logger = logging.getLogger(__name__)

# TikTok OAuth2 endpoints
TIKTOK_AUTHORIZE_URL = "https://www.tiktok.com/v2/auth/authorize/"
TIKTOK_TOKEN_URL = "https://open.tiktokapis.com/v2/oauth/token/"
TIKTOK_USERINFO_URL = "https://open.tiktokapis.com/v2/user/info/"

TIKTOK_SCOPES = ["user.info.basic", "user.info.profile", "user.info.stats"]

USER_INFO_FIELDS = [
    "open_id",
    "union_id",
    "avatar_url",
    "display_name",
    "username",
    "bio_description",
    "is_verified",
    "follower_count",
    "following_count",
    "likes_count",
    "video_count",
]

# The provider signals success with ``error.code == "ok"``.
_OK = "ok"


# ── Response-shape tolerance ───────────────────────────────────────────
#
# The user object has been observed under ``data.user``, directly under
# ``data`` and at the root.  Strategies are tried in this order and the
# first one yielding a dict resolves the payload; ``open_id`` is checked
# on that dict only.


def _from_data_user(body: Dict[str, Any]) -> Any:
    data = body.get("data")
    return data.get("user") if isinstance(data, dict) else None


def _from_data(body: Dict[str, Any]) -> Any:
    return body.get("data")


def _from_root(body: Dict[str, Any]) -> Any:
    return body


USER_PAYLOAD_STRATEGIES: List[Callable[[Dict[str, Any]], Any]] = [
    _from_data_user,
    _from_data,
    _from_root,
]


def extract_user_payload(body: Dict[str, Any]) -> Dict[str, Any]:
    """Resolve the user object, then require it to carry an ``open_id``."""
    payload: Dict[str, Any] = body
    for strategy in USER_PAYLOAD_STRATEGIES:
        candidate = strategy(body)
        if isinstance(candidate, dict):
            payload = candidate
            break
    if not payload.get("open_id"):
        raise ProviderProtocolError("user info response has no open_id", sorted(payload.keys()))
    return payload


def _raise_for_api_error(body: Dict[str, Any]) -> None:
    """
    Raise ``ProviderApiError`` unless the ``error`` field is absent or
    reports ``"ok"``.  Accepts both the object form
    ``{"code", "message", "log_id"}`` and the bare-string OAuth form
    with ``error_description``.
    """
    error = body.get("error")
    if not error:
        return
    if isinstance(error, dict):
        code = str(error.get("code") or "")
        if code == _OK:
            return
        raise ProviderApiError(
            error_code=code or "unknown_error",
            message=str(error.get("message") or ""),
            log_id=error.get("log_id"),
            payload=error,
        )
    code = str(error)
    if code == _OK:
        return
    raise ProviderApiError(
        error_code=code,
        message=str(body.get("error_description") or ""),
        log_id=body.get("log_id"),
        payload={k: v for k, v in body.items() if k in ("error", "error_description", "log_id")},
    )


def _decode(resp: httpx.Response, endpoint: str) -> Dict[str, Any]:
    if not resp.is_success:
        raise ProviderHttpError(resp.status_code, resp.text, endpoint=endpoint)
    try:
        body = resp.json()
    except ValueError:
        raise ProviderProtocolError(f"{endpoint} response is not JSON", resp.text[:300])
    if not isinstance(body, dict):
        raise ProviderProtocolError(f"{endpoint} response is not a JSON object", body)
    _raise_for_api_error(body)
    return body


class TikTokClient:
    """OAuth2 + user-info client for TikTok."""

    def __init__(
        self,
        settings: Settings,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._settings = settings
        self._transport = transport

    def _http(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self._transport)

    async def _send(self, endpoint: str, method: str, url: str, **kwargs: Any) -> Dict[str, Any]:
        """Issue one request and decode it; transport failures become ``ProviderTransportError``."""
        try:
            async with self._http() as client:
                resp = await client.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            logger.error("TikTok %s unreachable: %s", endpoint, type(exc).__name__)
            raise ProviderTransportError(endpoint, str(exc) or type(exc).__name__) from exc
        return _decode(resp, endpoint)

    # ── OAuth flow ──────────────────────────────────────────────────────

    def build_authorization_url(self, state: Optional[str] = None) -> str:
        """
        Build the TikTok authorization URL.

        Parameters
        ----------
        state : str, optional
            Anti-forgery token.  A random one is generated when omitted.

        Raises
        ------
        ConfigurationError
            If the client key or redirect URI is unset.
        """
        self._settings.require("tiktok_client_key", "tiktok_redirect_uri")
        params = {
            "client_key": self._settings.tiktok_client_key,
            "scope": ",".join(TIKTOK_SCOPES),
            "response_type": "code",
            "redirect_uri": self._settings.tiktok_redirect_uri,
            "state": state or secrets.token_urlsafe(16),
        }
        return f"{TIKTOK_AUTHORIZE_URL}?{urlencode(params)}"

    async def exchange_code_for_token(
        self,
        code: str,
        code_verifier: Optional[str] = None,
    ) -> TokenResponse:
        """Exchange an authorization code for an access / refresh token pair."""
        self._settings.require("tiktok_client_key", "tiktok_client_secret", "tiktok_redirect_uri")
        if not code:
            raise ValueError("authorization code must be non-empty")

        form = {
            "client_key": self._settings.tiktok_client_key,
            "client_secret": self._settings.tiktok_client_secret,
            "code": code,
            "grant_type": "authorization_code",
            "redirect_uri": self._settings.tiktok_redirect_uri,
        }
        if code_verifier:
            form["code_verifier"] = code_verifier

        body = await self._send(
            "token endpoint",
            "POST",
            TIKTOK_TOKEN_URL,
            data=form,
            headers={"Content-Type": "application/x-www-form-urlencoded"},
        )

        for field in ("access_token", "open_id"):
            if not body.get(field):
                raise ProviderProtocolError(
                    f"token response is missing {field}",
                    sorted(body.keys()),
                )
        try:
            token = TokenResponse.model_validate(body)
        except ValidationError as exc:
            raise ProviderProtocolError(
                f"token response failed validation ({exc.error_count()} errors)",
                sorted(body.keys()),
            )
        logger.info("Exchanged TikTok code for open_id %s", token.open_id)
        return token

    async def fetch_user_info(self, access_token: str) -> UserInfo:
        """Fetch the creator's profile and counts with a bearer token."""
        if not access_token:
            raise ValueError("access token must be non-empty")

        body = await self._send(
            "user info endpoint",
            "GET",
            TIKTOK_USERINFO_URL,
            params={"fields": ",".join(USER_INFO_FIELDS)},
            headers={"Authorization": f"Bearer {access_token}"},
        )

        payload = extract_user_payload(body)
        try:
            return UserInfo.model_validate(payload)
        except ValidationError as exc:
            raise ProviderProtocolError(
                f"user info failed validation ({exc.error_count()} errors)",
                payload,
            )
