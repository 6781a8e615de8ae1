"""
Signed session cookie.

The cookie value is a base64-encoded JSON payload (``account_id`` + expiry)
followed by an HMAC-SHA256 signature.  The secret is loaded from
``Settings.session_secret`` (env var: ``SESSION_SECRET``).
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
import time
from base64 import urlsafe_b64decode, urlsafe_b64encode
from typing import Optional

from fastapi import Request, Response

from config.settings import Settings

logger = logging.getLogger(__name__)


def _sign(secret: str, raw: bytes) -> str:
    return hmac.new(secret.encode(), raw, hashlib.sha256).hexdigest()


def create_session_value(account_id: str, settings: Settings) -> str:
    """Create a signed cookie value containing ``account_id`` and expiry."""
    payload = {
        "account_id": account_id,
        "exp": int(time.time()) + settings.session_max_age_seconds,
    }
    raw = json.dumps(payload).encode()
    encoded = urlsafe_b64encode(raw).decode().rstrip("=")
    return encoded + "." + _sign(settings.session_secret, raw)


def verify_session_value(value: str, settings: Settings) -> Optional[str]:
    """
    Return the ``account_id`` for a valid cookie value, or ``None`` if it
    is malformed, tampered with or expired.
    """
    try:
        encoded, sig = value.split(".", 1)
        raw = urlsafe_b64decode(encoded + "=" * (-len(encoded) % 4))
    except ValueError:
        return None
    if not hmac.compare_digest(sig.encode(), _sign(settings.session_secret, raw).encode()):
        logger.warning("Rejected session cookie with bad signature")
        return None
    try:
        payload = json.loads(raw)
    except ValueError:
        return None
    if payload.get("exp", 0) < time.time():
        return None
    account_id = payload.get("account_id")
    return account_id if isinstance(account_id, str) and account_id else None


def read_session(request: Request, settings: Settings) -> Optional[str]:
    value = request.cookies.get(settings.session_cookie_name)
    if not value:
        return None
    return verify_session_value(value, settings)


def set_session_cookie(response: Response, account_id: str, settings: Settings) -> Response:
    response.set_cookie(
        settings.session_cookie_name,
        create_session_value(account_id, settings),
        max_age=settings.session_max_age_seconds,
        path="/",
        httponly=True,
        secure=settings.session_cookie_secure,
        samesite="lax",
    )
    return response


def clear_session_cookie(response: Response, settings: Settings) -> Response:
    response.set_cookie(
        settings.session_cookie_name,
        "",
        max_age=0,
        path="/",
        httponly=True,
        secure=settings.session_cookie_secure,
        samesite="lax",
    )
    return response
