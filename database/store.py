"""
AccountStore — persistence for accounts, profiles, stats snapshots and tokens.

Every method runs in its own short transaction and commits before
returning, so a caller that performs several writes can observe partial
success (profile updated, stats insert failed).  Upserts rely on the
database's ``INSERT ... ON CONFLICT`` for row-level atomicity.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from connectors.encryption import TokenCipher
from database.models import Account, Profile, StatsSnapshot, TokenRecord
from utils.errors import (
    AccountWriteError,
    ProfileWriteError,
    StatsWriteError,
    StoreError,
    TokenWriteError,
)
from utils.schemas import StoredToken, TokenResponse, UserInfo

logger = logging.getLogger(__name__)


def _reason(exc: SQLAlchemyError) -> str:
    # ``str(exc)`` embeds bound parameters, which may include tokens.
    orig = getattr(exc, "orig", None)
    return str(orig) if orig is not None else type(exc).__name__


def _insert_for(session: AsyncSession, model):
    if session.bind.dialect.name == "postgresql":
        return pg_insert(model)
    return sqlite_insert(model)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


class AccountStore:
    """Query / insert / upsert primitives over the relational store."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        cipher: Optional[TokenCipher] = None,
    ) -> None:
        self._session_factory = session_factory
        self._cipher = cipher or TokenCipher()

    # ── Accounts ────────────────────────────────────────────────────────

    async def find_account_by_open_id(self, open_id: str) -> Optional[Account]:
        async with self._session_factory() as session:
            try:
                result = await session.execute(
                    select(Account).where(Account.open_id == open_id)
                )
                return result.scalar_one_or_none()
            except SQLAlchemyError as exc:
                raise StoreError("look up account", _reason(exc)) from exc

    async def create_account(
        self,
        open_id: str,
        email: str,
        *,
        username: Optional[str] = None,
        display_name: Optional[str] = None,
        avatar_url: Optional[str] = None,
    ) -> Account:
        """
        Insert an account for ``open_id``.  A concurrent insert of the same
        identity is absorbed by ``ON CONFLICT DO NOTHING`` and the existing
        row is returned.
        """
        async with self._session_factory() as session:
            try:
                stmt = (
                    _insert_for(session, Account)
                    .values(
                        id=str(uuid.uuid4()),
                        open_id=open_id,
                        email=email,
                        username=username,
                        display_name=display_name,
                        avatar_url=avatar_url,
                        created_at=datetime.now(timezone.utc),
                    )
                    .on_conflict_do_nothing(index_elements=["open_id"])
                )
                await session.execute(stmt)
                await session.commit()
                result = await session.execute(
                    select(Account).where(Account.open_id == open_id)
                )
                account = result.scalar_one_or_none()
            except SQLAlchemyError as exc:
                await session.rollback()
                logger.error("Account insert failed for open_id %s: %s", open_id, _reason(exc))
                raise AccountWriteError("create user", _reason(exc)) from exc

        if account is None:
            raise AccountWriteError("create user", "row not visible after insert")
        logger.info("Created account %s for open_id %s", account.id, open_id)
        return account

    async def count_accounts(self) -> int:
        async with self._session_factory() as session:
            try:
                result = await session.execute(select(func.count()).select_from(Account))
                return int(result.scalar_one())
            except SQLAlchemyError as exc:
                raise StoreError("count accounts", _reason(exc)) from exc

    # ── Profile ─────────────────────────────────────────────────────────

    async def upsert_profile(self, account_id: str, user: UserInfo) -> None:
        """Overwrite the 1:1 profile row; absent counts are written as zero."""
        values = {
            "account_id": account_id,
            "username": user.username or "",
            "display_name": user.display_name,
            "avatar_url": user.avatar_url,
            "bio": user.bio_description,
            "is_verified": bool(user.is_verified),
            "follower_count": user.follower_count or 0,
            "following_count": user.following_count or 0,
            "video_count": user.video_count or 0,
            "updated_at": datetime.now(timezone.utc),
        }
        async with self._session_factory() as session:
            try:
                stmt = _insert_for(session, Profile).values(**values)
                stmt = stmt.on_conflict_do_update(
                    index_elements=["account_id"],
                    set_={k: v for k, v in values.items() if k != "account_id"},
                )
                await session.execute(stmt)
                await session.commit()
            except SQLAlchemyError as exc:
                await session.rollback()
                logger.error("Profile upsert failed for %s: %s", account_id, _reason(exc))
                raise ProfileWriteError("update profile", _reason(exc)) from exc

    async def get_profile(self, account_id: str) -> Optional[Profile]:
        async with self._session_factory() as session:
            try:
                return await session.get(Profile, account_id)
            except SQLAlchemyError as exc:
                raise StoreError("load profile", _reason(exc)) from exc

    # ── Stats ledger ────────────────────────────────────────────────────

    async def append_stats(
        self,
        account_id: str,
        user: UserInfo,
        recorded_at: Optional[datetime] = None,
    ) -> None:
        async with self._session_factory() as session:
            try:
                session.add(
                    StatsSnapshot(
                        account_id=account_id,
                        follower_count=user.follower_count or 0,
                        following_count=user.following_count or 0,
                        video_count=user.video_count or 0,
                        total_likes=user.likes_count or 0,
                        recorded_at=recorded_at or datetime.now(timezone.utc),
                    )
                )
                await session.commit()
            except SQLAlchemyError as exc:
                await session.rollback()
                logger.error("Stats insert failed for %s: %s", account_id, _reason(exc))
                raise StatsWriteError("insert stats", _reason(exc)) from exc

    async def stats_history(self, account_id: str, limit: int = 30) -> List[StatsSnapshot]:
        """Newest first."""
        async with self._session_factory() as session:
            try:
                result = await session.execute(
                    select(StatsSnapshot)
                    .where(StatsSnapshot.account_id == account_id)
                    .order_by(StatsSnapshot.recorded_at.desc(), StatsSnapshot.id.desc())
                    .limit(limit)
                )
                return list(result.scalars().all())
            except SQLAlchemyError as exc:
                raise StoreError("load stats", _reason(exc)) from exc

    async def latest_stats(self, account_id: str) -> Optional[StatsSnapshot]:
        rows = await self.stats_history(account_id, limit=1)
        return rows[0] if rows else None

    # ── Tokens ──────────────────────────────────────────────────────────

    async def upsert_token(
        self,
        account_id: str,
        token: TokenResponse,
        now: Optional[datetime] = None,
    ) -> None:
        now = now or datetime.now(timezone.utc)
        expires_at = (
            now + timedelta(seconds=token.expires_in) if token.expires_in is not None else None
        )
        refresh_expires_at = (
            now + timedelta(seconds=token.refresh_expires_in)
            if token.refresh_expires_in is not None
            else None
        )
        values = {
            "account_id": account_id,
            "access_token": self._cipher.encrypt(token.access_token),
            "refresh_token": self._cipher.encrypt(token.refresh_token),
            "expires_at": expires_at,
            "refresh_expires_at": refresh_expires_at,
            "token_type": token.token_type,
            "scope": token.scope,
            "updated_at": now,
        }
        async with self._session_factory() as session:
            try:
                stmt = _insert_for(session, TokenRecord).values(**values)
                stmt = stmt.on_conflict_do_update(
                    index_elements=["account_id"],
                    set_={k: v for k, v in values.items() if k != "account_id"},
                )
                await session.execute(stmt)
                await session.commit()
            except SQLAlchemyError as exc:
                await session.rollback()
                logger.error("Token upsert failed for %s: %s", account_id, _reason(exc))
                raise TokenWriteError("store token", _reason(exc)) from exc

    async def get_token(self, account_id: str) -> Optional[StoredToken]:
        async with self._session_factory() as session:
            try:
                row = await session.get(TokenRecord, account_id)
            except SQLAlchemyError as exc:
                raise StoreError("load token", _reason(exc)) from exc
        if row is None:
            return None
        return StoredToken(
            account_id=row.account_id,
            access_token=self._cipher.decrypt(row.access_token),
            refresh_token=self._cipher.decrypt(row.refresh_token),
            expires_at=as_utc(row.expires_at),
            token_type=row.token_type,
            scope=row.scope,
        )

    async def list_token_account_ids(self) -> List[str]:
        """Distinct account ids that have a stored token."""
        async with self._session_factory() as session:
            try:
                result = await session.execute(
                    select(TokenRecord.account_id).distinct().order_by(TokenRecord.account_id)
                )
                return list(result.scalars().all())
            except SQLAlchemyError as exc:
                raise StoreError("fetch tokens", _reason(exc)) from exc
