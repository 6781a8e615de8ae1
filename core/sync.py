"""
Sync — refresh a connected account's profile and stats from TikTok.

``sync_account`` is a single best-effort attempt (no retry, no refresh
of expired tokens).  ``sync_all`` walks every account with a stored
token strictly one after another and always returns a full tally.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from config.settings import Settings
from connectors.tiktok import TikTokClient
from database.store import AccountStore
from utils.errors import CollabError, NoTokenError, TokenExpiredError
from utils.schemas import BatchSyncResult, SyncResult

logger = logging.getLogger(__name__)

DEFAULT_EXPIRY_BUFFER = timedelta(minutes=5)


def token_is_stale(
    expires_at: Optional[datetime],
    now: Optional[datetime] = None,
    buffer: timedelta = DEFAULT_EXPIRY_BUFFER,
) -> bool:
    """A token with no expiry never goes stale."""
    if expires_at is None:
        return False
    now = now or datetime.now(timezone.utc)
    return expires_at - now < buffer


async def sync_account(
    account_id: str,
    *,
    client: TikTokClient,
    store: AccountStore,
    settings: Optional[Settings] = None,
    now: Optional[datetime] = None,
) -> SyncResult:
    """
    Fetch fresh user info for ``account_id`` and write it back.

    Profile upsert and stats append are separate writes: if the second
    one fails the profile stays updated and the failure is returned.
    """
    buffer = (
        timedelta(seconds=settings.token_expiry_buffer_seconds)
        if settings is not None
        else DEFAULT_EXPIRY_BUFFER
    )
    now = now or datetime.now(timezone.utc)
    try:
        token = await store.get_token(account_id)
        if token is None:
            raise NoTokenError(account_id)

        if token_is_stale(token.expires_at, now, buffer):
            # TODO: exchange the stored refresh_token once refresh is supported.
            raise TokenExpiredError(account_id, token.expires_at)

        user = await client.fetch_user_info(token.access_token)

        await store.upsert_profile(account_id, user)
        await store.append_stats(account_id, user, recorded_at=now)
    except CollabError as exc:
        logger.warning("Sync failed for account %s: %s", account_id, exc)
        return SyncResult(success=False, error=exc)
    except Exception as exc:
        logger.exception("Unexpected error syncing account %s", account_id)
        return SyncResult(success=False, error=exc)

    logger.info("Synced account %s", account_id)
    return SyncResult(success=True)


async def sync_all(
    *,
    client: TikTokClient,
    store: AccountStore,
    settings: Optional[Settings] = None,
) -> BatchSyncResult:
    """Sync every account that has a stored token.  Never raises."""
    try:
        account_ids = await store.list_token_account_ids()
    except Exception as exc:
        logger.error("Failed to list accounts for sync: %s", exc)
        return BatchSyncResult(errors=[f"Failed to fetch tokens: {exc}"])

    tally = BatchSyncResult()
    logger.info("Starting TikTok sync for %d accounts", len(account_ids))
    for account_id in account_ids:
        try:
            result = await sync_account(
                account_id, client=client, store=store, settings=settings
            )
        except Exception as exc:
            result = SyncResult(success=False, error=exc)

        if result.success:
            tally.synced += 1
        else:
            tally.failed += 1
            tally.errors.append(f"{account_id}: {result.message or 'Unknown error'}")

    logger.info("TikTok sync completed: synced=%d failed=%d", tally.synced, tally.failed)
    return tally


async def run_periodic_sync(
    interval_seconds: float,
    *,
    client: TikTokClient,
    store: AccountStore,
    settings: Optional[Settings] = None,
) -> None:
    """Call ``sync_all`` every ``interval_seconds`` until cancelled."""
    logger.info("Periodic TikTok sync enabled every %ss", interval_seconds)
    while True:
        await asyncio.sleep(interval_seconds)
        result = await sync_all(client=client, store=store, settings=settings)
        for line in result.errors:
            logger.warning("Periodic sync: %s", line)
