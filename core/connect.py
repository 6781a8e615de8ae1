"""
Connect transaction — runs once per provider redirect.

    exchange code → fetch user info → resolve account → upsert profile
    → append stats snapshot → store token

Any failure up to and including the stats append aborts the transaction
and propagates as a typed ``CollabError``.  A failed token write is
logged and reported on the outcome instead: the user is connected, and
later syncs fail with ``NoTokenError`` until they reconnect.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

from config.settings import Settings
from connectors.tiktok import TikTokClient
from database.store import AccountStore
from utils.errors import MissingCodeError, TokenWriteError
from utils.schemas import ConnectOutcome, UserInfo

logger = logging.getLogger(__name__)


def placeholder_email(open_id: str, settings: Settings) -> str:
    """TikTok does not share e-mail addresses; synthesise a stable one."""
    return f"{open_id}@{settings.placeholder_email_domain}"


async def resolve_account(
    user: UserInfo,
    *,
    store: AccountStore,
    settings: Settings,
) -> tuple[str, bool]:
    """Return ``(account_id, created)`` for the provider identity."""
    existing = await store.find_account_by_open_id(user.open_id)
    if existing is not None:
        return existing.id, False

    account = await store.create_account(
        user.open_id,
        placeholder_email(user.open_id, settings),
        username=user.username,
        display_name=user.display_name,
        avatar_url=user.avatar_url,
    )
    return account.id, True


async def connect_account(
    code: Optional[str],
    *,
    client: TikTokClient,
    store: AccountStore,
    settings: Settings,
    code_verifier: Optional[str] = None,
    now: Optional[datetime] = None,
) -> ConnectOutcome:
    """
    Drive one complete connect transaction for an authorization ``code``.

    Raises
    ------
    MissingCodeError
        ``code`` is empty; nothing else is attempted.
    ProviderError / ConfigurationError
        Exchange or user-info fetch failed; no writes were made.
    StoreError
        Account, profile or stats write failed.
    """
    if not code:
        raise MissingCodeError()

    token = await client.exchange_code_for_token(code, code_verifier)
    user = await client.fetch_user_info(token.access_token)
    if user.open_id != token.open_id:
        logger.warning(
            "open_id mismatch between token (%s) and user info (%s); using user info",
            token.open_id,
            user.open_id,
        )

    account_id, created = await resolve_account(user, store=store, settings=settings)

    now = now or datetime.now(timezone.utc)
    await store.upsert_profile(account_id, user)
    await store.append_stats(account_id, user, recorded_at=now)

    outcome = ConnectOutcome(account_id=account_id, open_id=user.open_id, created=created)
    try:
        await store.upsert_token(account_id, token, now=now)
    except TokenWriteError as exc:
        logger.warning("Connected account %s but failed to store its token: %s", account_id, exc)
        outcome.token_stored = False
        outcome.token_error = str(exc)

    logger.info(
        "TikTok connected: account=%s open_id=%s created=%s",
        account_id,
        user.open_id,
        created,
    )
    return outcome
