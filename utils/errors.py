"""
Error taxonomy for the TikTok connect / sync flow.

Every error carries a machine-readable ``code`` (used as the ``?error=``
redirect value and in JSON bodies) plus a structured payload, so callers
branch on the exception type instead of parsing messages.  ``detail``
is safe to show to users: it never contains token material.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional


class CollabError(Exception):
    """Base class for every error raised by this service."""

    code: str = "internal_error"

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail


# ── Configuration ──────────────────────────────────────────────────────


class ConfigurationError(CollabError):
    code = "configuration_error"

    def __init__(self, missing: List[str], reason: Optional[str] = None) -> None:
        self.missing = list(missing)
        self.reason = reason
        names = ", ".join(name.upper() for name in self.missing)
        if reason:
            super().__init__(f"Invalid configuration {names}: {reason}")
        else:
            super().__init__(f"Missing required configuration: {names}")


# ── Provider (TikTok) ──────────────────────────────────────────────────


class ProviderError(CollabError):
    code = "provider_error"


class ProviderHttpError(ProviderError):
    """The provider answered with a non-2xx status."""

    code = "provider_http_error"

    def __init__(self, status_code: int, body: str, endpoint: str = "") -> None:
        self.status_code = status_code
        self.body = body
        self.endpoint = endpoint
        super().__init__(f"TikTok {endpoint or 'API'} returned HTTP {status_code}: {body[:300]}")


class ProviderTransportError(ProviderError):
    """The request never got an HTTP answer (DNS, refused connection, timeout)."""

    code = "provider_unreachable"

    def __init__(self, endpoint: str, reason: str) -> None:
        self.endpoint = endpoint
        self.reason = reason
        super().__init__(f"Could not reach TikTok {endpoint}: {reason}")


class ProviderApiError(ProviderError):
    """2xx response whose ``error.code`` is anything but ``"ok"``."""

    code = "provider_api_error"

    def __init__(
        self,
        error_code: str,
        message: str = "",
        log_id: Optional[str] = None,
        payload: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.error_code = error_code
        self.message = message
        self.log_id = log_id
        self.payload = payload or {}
        text = f"TikTok API error {error_code}"
        if message:
            text += f": {message}"
        super().__init__(text)


class ProviderProtocolError(ProviderError):
    """Successful response with an unexpected shape."""

    code = "provider_protocol_error"

    def __init__(self, reason: str, payload: Any = None) -> None:
        self.reason = reason
        self.payload = payload
        super().__init__(f"Malformed TikTok response: {reason}")


class ProviderDeniedError(ProviderError):
    """The provider redirected back with ``?error=`` (e.g. consent denied)."""

    def __init__(self, error: str, description: str = "") -> None:
        self.code = error or "access_denied"
        self.description = description
        super().__init__(description or f"TikTok authorization failed: {self.code}")


# ── Store ──────────────────────────────────────────────────────────────


class StoreError(CollabError):
    code = "store_error"

    def __init__(self, operation: str, message: str) -> None:
        self.operation = operation
        self.message = message
        super().__init__(f"Failed to {operation}: {message}")


class AccountWriteError(StoreError):
    code = "account_write_failed"


class ProfileWriteError(StoreError):
    code = "profile_write_failed"


class StatsWriteError(StoreError):
    code = "stats_write_failed"


class TokenWriteError(StoreError):
    code = "token_write_failed"


# ── Sync preconditions ─────────────────────────────────────────────────


class NoTokenError(CollabError):
    code = "no_token"

    def __init__(self, account_id: str) -> None:
        self.account_id = account_id
        super().__init__("No access token found for user. User needs to reconnect.")


class TokenExpiredError(CollabError):
    code = "token_expired"

    def __init__(self, account_id: str, expires_at: Optional[datetime] = None) -> None:
        self.account_id = account_id
        self.expires_at = expires_at
        super().__init__("Access token expired. User needs to reconnect.")


# ── Request ────────────────────────────────────────────────────────────


class MissingCodeError(CollabError):
    code = "missing_code"

    def __init__(self) -> None:
        super().__init__("Authorization code is missing from the callback")


class UnauthorizedError(CollabError):
    code = "unauthorized"

    def __init__(self, detail: str = "Not authenticated") -> None:
        super().__init__(detail)
