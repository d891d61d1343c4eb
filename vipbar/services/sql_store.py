"""SQLAlchemy-backed credential store."""

import asyncio
import logging
import time
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from datetime import datetime
from uuid import UUID

from sqlalchemy import delete, select, update
from sqlalchemy.engine import CursorResult
from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from vipbar.models.refresh_token import RefreshToken
from vipbar.models.user import SystemUser
from vipbar.services.credential_store import (
    ACCOUNT_LOCK_DURATION,
    DUMMY_PASSWORD_HASH,
    MAX_FAILED_ATTEMPTS,
    CredentialStore,
    PersistedRefreshToken,
    UserIdentity,
    hash_password,
    verify_password_hash,
)
from vipbar.services.errors import (
    InvalidCredentialsError,
    ProfileIntegrityError,
    ProviderUnavailableError,
    StoreQueryError,
)
from vipbar.services.tokens import hash_token

logger = logging.getLogger(__name__)


def _parse_user_id(user_id: str) -> UUID | None:
    try:
        return UUID(str(user_id))
    except ValueError:
        return None


def _to_identity(user: SystemUser) -> UserIdentity:
    if user.role is None:
        raise ProfileIntegrityError(f"User {user.id} has no role")
    return UserIdentity(
        id=str(user.id),
        email=user.email,
        full_name=user.full_name,
        role_name=user.role.name,
        display_name=user.role.display_name,
        permissions={k: v is True for k, v in (user.role.permissions or {}).items()},
        is_active=user.is_active,
        locked_until=user.locked_until,
        failed_login_attempts=user.failed_login_attempts,
        last_login=user.last_login,
    )


def _to_record(row: RefreshToken) -> PersistedRefreshToken:
    return PersistedRefreshToken(
        id=str(row.id),
        user_id=str(row.user_id),
        token_hash=row.token_hash,
        expires_at=row.expires_at,
        is_revoked=row.is_revoked,
        revoked_at=row.revoked_at,
        device_info=row.device_info,
        ip_address=row.ip_address,
        created_at=row.created_at,
    )


class SqlCredentialStore(CredentialStore):
    """Credential store over the ``system_users``/``refresh_tokens`` tables.

    Connection-level failures are raised as ``ProviderUnavailableError`` and
    any other database error as ``StoreQueryError``, so no raw SQLAlchemy
    exception leaves the store.
    """

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        clock: Callable[[], float] = time.time,
    ):
        self._session_maker = session_maker
        self.clock = clock

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        try:
            async with self._session_maker() as session:
                try:
                    yield session
                    await session.commit()
                except BaseException:
                    await session.rollback()
                    raise
        except (OperationalError, InterfaceError) as e:
            raise ProviderUnavailableError(f"Database unavailable: {e}") from e
        except DBAPIError as e:
            if e.connection_invalidated:
                raise ProviderUnavailableError(f"Database connection lost: {e}") from e
            raise StoreQueryError(f"Database query failed: {e}") from e
        except SQLAlchemyError as e:
            raise StoreQueryError(f"Database error: {e}") from e
        except (OSError, asyncio.TimeoutError) as e:
            raise ProviderUnavailableError(f"Database unreachable: {e}") from e

    async def _get_user_row(self, session: AsyncSession, email: str) -> SystemUser | None:
        result = await session.execute(
            select(SystemUser).where(SystemUser.email == email.strip().lower())
        )
        return result.unique().scalar_one_or_none()

    async def verify_password(self, email: str, password: str) -> bool:
        async with self._session() as session:
            user = await self._get_user_row(session, email)
        if user is None:
            verify_password_hash(password, DUMMY_PASSWORD_HASH)
            return False
        return verify_password_hash(password, user.password_hash)

    async def find_user_by_email(self, email: str) -> UserIdentity | None:
        async with self._session() as session:
            user = await self._get_user_row(session, email)
            return _to_identity(user) if user else None

    async def get_user_by_id(self, user_id: str) -> UserIdentity | None:
        uid = _parse_user_id(user_id)
        if uid is None:
            return None
        async with self._session() as session:
            user = await session.get(SystemUser, uid)
            return _to_identity(user) if user else None

    async def find_refresh_token(self, raw_token: str) -> PersistedRefreshToken | None:
        async with self._session() as session:
            result = await session.execute(
                select(RefreshToken).where(RefreshToken.token_hash == hash_token(raw_token))
            )
            row = result.scalar_one_or_none()
            return _to_record(row) if row else None

    async def is_refresh_token_valid(self, user_id: str, raw_token: str) -> bool:
        uid = _parse_user_id(user_id)
        if uid is None:
            return False
        async with self._session() as session:
            result = await session.execute(
                select(RefreshToken).where(
                    RefreshToken.token_hash == hash_token(raw_token),
                    RefreshToken.user_id == uid,
                )
            )
            row = result.scalar_one_or_none()
            if row is None or row.is_revoked:
                return False
            now = self._utcnow()
            if row.expires_at <= now:
                row.is_revoked = True
                row.revoked_at = now
                return False
            return True

    async def persist_refresh_token(
        self,
        user_id: str,
        raw_token: str,
        expires_at: datetime,
        device_info: str | None = None,
        ip_address: str | None = None,
    ) -> bool:
        uid = _parse_user_id(user_id)
        if uid is None:
            return False
        async with self._session() as session:
            session.add(
                RefreshToken(
                    user_id=uid,
                    token_hash=hash_token(raw_token),
                    expires_at=expires_at,
                    device_info=device_info[:512] if device_info else None,
                    ip_address=ip_address,
                )
            )
        return True

    async def revoke_refresh_token(self, user_id: str, raw_token: str | None = None) -> bool:
        uid = _parse_user_id(user_id)
        if uid is None:
            return False
        stmt = update(RefreshToken).where(
            RefreshToken.user_id == uid, RefreshToken.is_revoked.is_(False)
        )
        if raw_token is not None:
            stmt = stmt.where(RefreshToken.token_hash == hash_token(raw_token))
        async with self._session() as session:
            await session.execute(stmt.values(is_revoked=True, revoked_at=self._utcnow()))
        return True

    async def revoke_other_tokens(self, user_id: str, current_raw_token: str) -> bool:
        uid = _parse_user_id(user_id)
        if uid is None:
            return False
        async with self._session() as session:
            await session.execute(
                update(RefreshToken)
                .where(
                    RefreshToken.user_id == uid,
                    RefreshToken.is_revoked.is_(False),
                    RefreshToken.token_hash != hash_token(current_raw_token),
                )
                .values(is_revoked=True, revoked_at=self._utcnow())
            )
        return True

    async def list_active_tokens(self, user_id: str) -> list[PersistedRefreshToken]:
        uid = _parse_user_id(user_id)
        if uid is None:
            return []
        async with self._session() as session:
            result = await session.execute(
                select(RefreshToken)
                .where(
                    RefreshToken.user_id == uid,
                    RefreshToken.is_revoked.is_(False),
                    RefreshToken.expires_at > self._utcnow(),
                )
                .order_by(RefreshToken.created_at.desc())
            )
            return [_to_record(row) for row in result.scalars()]

    async def cleanup_expired_tokens(self) -> int:
        async with self._session() as session:
            result: CursorResult = await session.execute(  # type: ignore[assignment]
                delete(RefreshToken).where(RefreshToken.expires_at < self._utcnow())
            )
            return result.rowcount

    async def touch_last_login(self, user_id: str) -> None:
        await self._update_user(user_id, last_login=self._utcnow())

    async def reset_failed_attempts(self, user_id: str) -> None:
        await self._update_user(user_id, failed_login_attempts=0, locked_until=None)

    async def record_failed_attempt(self, user_id: str) -> None:
        uid = _parse_user_id(user_id)
        if uid is None:
            return
        async with self._session() as session:
            result = await session.execute(
                update(SystemUser)
                .where(SystemUser.id == uid)
                .values(failed_login_attempts=SystemUser.failed_login_attempts + 1)
                .returning(SystemUser.failed_login_attempts)
            )
            attempts = result.scalar_one_or_none()
            if attempts is not None and attempts >= MAX_FAILED_ATTEMPTS:
                await session.execute(
                    update(SystemUser)
                    .where(SystemUser.id == uid)
                    .values(locked_until=self._utcnow() + ACCOUNT_LOCK_DURATION)
                )
                logger.warning(f"Account locked after {attempts} failures: {uid}")

    async def change_password(self, user_id: str, current_password: str, new_password: str) -> None:
        uid = _parse_user_id(user_id)
        if uid is None:
            raise InvalidCredentialsError("Unknown user")
        async with self._session() as session:
            user = await session.get(SystemUser, uid)
            if user is None or not verify_password_hash(current_password, user.password_hash):
                raise InvalidCredentialsError("Current password is incorrect")
            user.password_hash = hash_password(new_password)
            await session.execute(
                update(RefreshToken)
                .where(RefreshToken.user_id == uid, RefreshToken.is_revoked.is_(False))
                .values(is_revoked=True, revoked_at=self._utcnow())
            )
        logger.info(f"Password changed for user: {uid}")

    async def _update_user(self, user_id: str, **values) -> None:
        uid = _parse_user_id(user_id)
        if uid is None:
            return
        async with self._session() as session:
            await session.execute(update(SystemUser).where(SystemUser.id == uid).values(**values))
