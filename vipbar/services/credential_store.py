"""Credential store interface and in-memory implementation.

The store is the narrow seam to the user database: credential checks,
user lookups, and the persisted refresh-token table keyed by token hash.
"""

import abc
import logging
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime, timedelta

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerifyMismatchError

from vipbar.services.errors import InvalidCredentialsError
from vipbar.services.tokens import hash_token

logger = logging.getLogger(__name__)

ADMIN_ROLES = frozenset({"admin", "administrador"})

# Consecutive failures before an account is locked, and for how long
MAX_FAILED_ATTEMPTS = 5
ACCOUNT_LOCK_DURATION = timedelta(minutes=30)

# Argon2 password hasher with recommended parameters
# Memory: 64 MiB, Time: 3 iterations, Parallelism: 4
ph = PasswordHasher(
    time_cost=3,
    memory_cost=65536,
    parallelism=4,
    hash_len=32,
    salt_len=16,
)

# Verified against when the email is unknown so both paths cost the same
DUMMY_PASSWORD_HASH = ph.hash("vipbar-dummy-password")


def hash_password(password: str) -> str:
    """Hash a password using Argon2id."""
    return ph.hash(password)


def verify_password_hash(password: str, password_hash: str) -> bool:
    """Verify a password against its hash using constant-time comparison."""
    try:
        ph.verify(password_hash, password)
        return True
    except (VerifyMismatchError, InvalidHashError):
        return False


def utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass
class UserIdentity:
    """Read-mostly view of a system user and its role."""

    id: str
    email: str
    full_name: str
    role_name: str
    display_name: str = ""
    permissions: dict[str, bool] = field(default_factory=dict)
    is_active: bool = True
    locked_until: datetime | None = None
    failed_login_attempts: int = 0
    last_login: datetime | None = None
    is_demo: bool = False

    @property
    def is_admin(self) -> bool:
        return self.role_name in ADMIN_ROLES

    def has_permission(self, permission: str) -> bool:
        """Admin roles implicitly hold every permission."""
        if self.is_admin:
            return True
        return self.permissions.get(permission) is True

    def is_locked(self, now: datetime | None = None) -> bool:
        if self.locked_until is None:
            return False
        return self.locked_until > (now or utcnow())

    def to_public_dict(self) -> dict:
        return {
            "id": self.id,
            "email": self.email,
            "full_name": self.full_name,
            "role": self.role_name,
            "display_name": self.display_name or self.role_name,
            "permissions": self.permissions,
            "is_demo": self.is_demo,
        }


@dataclass
class PersistedRefreshToken:
    """A server-side refresh-token record. Only the hash of the token is kept."""

    id: str
    user_id: str
    token_hash: str
    expires_at: datetime
    is_revoked: bool = False
    revoked_at: datetime | None = None
    device_info: str | None = None
    ip_address: str | None = None
    created_at: datetime = field(default_factory=utcnow)

    def is_usable(self, now: datetime | None = None) -> bool:
        return not self.is_revoked and self.expires_at > (now or utcnow())


class CredentialStore(abc.ABC):
    """Operations the auth core needs from the user database.

    Infrastructure failures surface as ``ProviderUnavailableError``; an
    incomplete user row surfaces as ``ProfileIntegrityError``.
    """

    clock: Callable[[], float] = time.time

    def _utcnow(self) -> datetime:
        """Current time from the store clock, shared with the token codec."""
        return datetime.fromtimestamp(self.clock(), UTC)

    @abc.abstractmethod
    async def verify_password(self, email: str, password: str) -> bool:
        """Check a password without revealing whether the email exists."""

    @abc.abstractmethod
    async def find_user_by_email(self, email: str) -> UserIdentity | None:
        """Return the user regardless of active/locked state."""

    async def find_active_user_by_email(self, email: str) -> UserIdentity | None:
        user = await self.find_user_by_email(email)
        if user is None or not user.is_active:
            return None
        return user

    @abc.abstractmethod
    async def get_user_by_id(self, user_id: str) -> UserIdentity | None: ...

    @abc.abstractmethod
    async def find_refresh_token(self, raw_token: str) -> PersistedRefreshToken | None: ...

    @abc.abstractmethod
    async def is_refresh_token_valid(self, user_id: str, raw_token: str) -> bool:
        """False when unknown, revoked, owned by another user, or expired.

        An expired record is marked revoked as a side effect.
        """

    @abc.abstractmethod
    async def persist_refresh_token(
        self,
        user_id: str,
        raw_token: str,
        expires_at: datetime,
        device_info: str | None = None,
        ip_address: str | None = None,
    ) -> bool: ...

    @abc.abstractmethod
    async def revoke_refresh_token(self, user_id: str, raw_token: str | None = None) -> bool:
        """Revoke one token, or every active token of the user when ``raw_token`` is None."""

    @abc.abstractmethod
    async def revoke_other_tokens(self, user_id: str, current_raw_token: str) -> bool: ...

    @abc.abstractmethod
    async def list_active_tokens(self, user_id: str) -> list[PersistedRefreshToken]: ...

    @abc.abstractmethod
    async def cleanup_expired_tokens(self) -> int: ...

    @abc.abstractmethod
    async def touch_last_login(self, user_id: str) -> None: ...

    @abc.abstractmethod
    async def reset_failed_attempts(self, user_id: str) -> None: ...

    @abc.abstractmethod
    async def record_failed_attempt(self, user_id: str) -> None:
        """Bump the failure counter, locking the account once it hits the limit."""

    @abc.abstractmethod
    async def change_password(self, user_id: str, current_password: str, new_password: str) -> None:
        """Replace the password and revoke every refresh token of the user.

        Raises:
            InvalidCredentialsError: current password is wrong
        """


class InMemoryCredentialStore(CredentialStore):
    """Process-local store for tests, single-instance setups and demo sessions."""

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self.clock = clock
        self._users: dict[str, UserIdentity] = {}
        self._password_hashes: dict[str, str] = {}
        self._tokens: dict[str, PersistedRefreshToken] = {}

    def add_user(self, identity: UserIdentity, password: str | None = None) -> UserIdentity:
        self._users[identity.id] = identity
        if password is not None:
            self._password_hashes[identity.id] = hash_password(password)
        return identity

    def _by_email(self, email: str) -> UserIdentity | None:
        wanted = email.strip().lower()
        for user in self._users.values():
            if user.email.lower() == wanted:
                return user
        return None

    async def verify_password(self, email: str, password: str) -> bool:
        user = self._by_email(email)
        stored = self._password_hashes.get(user.id) if user else None
        if stored is None:
            verify_password_hash(password, DUMMY_PASSWORD_HASH)
            return False
        return verify_password_hash(password, stored)

    async def find_user_by_email(self, email: str) -> UserIdentity | None:
        user = self._by_email(email)
        return replace(user) if user else None

    async def get_user_by_id(self, user_id: str) -> UserIdentity | None:
        user = self._users.get(user_id)
        return replace(user) if user else None

    async def find_refresh_token(self, raw_token: str) -> PersistedRefreshToken | None:
        return self._tokens.get(hash_token(raw_token))

    async def is_refresh_token_valid(self, user_id: str, raw_token: str) -> bool:
        record = self._tokens.get(hash_token(raw_token))
        if record is None or record.user_id != user_id or record.is_revoked:
            return False
        now = self._utcnow()
        if record.expires_at <= now:
            record.is_revoked = True
            record.revoked_at = now
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
        token_hash = hash_token(raw_token)
        self._tokens[token_hash] = PersistedRefreshToken(
            id=str(uuid.uuid4()),
            user_id=user_id,
            token_hash=token_hash,
            expires_at=expires_at,
            device_info=device_info,
            ip_address=ip_address,
            created_at=self._utcnow(),
        )
        return True

    async def revoke_refresh_token(self, user_id: str, raw_token: str | None = None) -> bool:
        now = self._utcnow()
        if raw_token is not None:
            record = self._tokens.get(hash_token(raw_token))
            if record is None or record.user_id != user_id:
                return False
            record.is_revoked = True
            record.revoked_at = now
            return True

        for record in self._tokens.values():
            if record.user_id == user_id and not record.is_revoked:
                record.is_revoked = True
                record.revoked_at = now
        return True

    async def revoke_other_tokens(self, user_id: str, current_raw_token: str) -> bool:
        current_hash = hash_token(current_raw_token)
        now = self._utcnow()
        for record in self._tokens.values():
            if record.user_id == user_id and record.token_hash != current_hash and not record.is_revoked:
                record.is_revoked = True
                record.revoked_at = now
        return True

    async def list_active_tokens(self, user_id: str) -> list[PersistedRefreshToken]:
        now = self._utcnow()
        active = [r for r in self._tokens.values() if r.user_id == user_id and r.is_usable(now)]
        return sorted(active, key=lambda r: r.created_at, reverse=True)

    async def cleanup_expired_tokens(self) -> int:
        now = self._utcnow()
        expired = [h for h, r in self._tokens.items() if r.expires_at <= now]
        for token_hash in expired:
            del self._tokens[token_hash]
        return len(expired)

    async def touch_last_login(self, user_id: str) -> None:
        user = self._users.get(user_id)
        if user is not None:
            user.last_login = self._utcnow()

    async def reset_failed_attempts(self, user_id: str) -> None:
        user = self._users.get(user_id)
        if user is not None:
            user.failed_login_attempts = 0
            user.locked_until = None

    async def record_failed_attempt(self, user_id: str) -> None:
        user = self._users.get(user_id)
        if user is None:
            return
        user.failed_login_attempts += 1
        if user.failed_login_attempts >= MAX_FAILED_ATTEMPTS:
            user.locked_until = self._utcnow() + ACCOUNT_LOCK_DURATION
            logger.warning(f"Account locked after {user.failed_login_attempts} failures: {user.id}")

    async def change_password(self, user_id: str, current_password: str, new_password: str) -> None:
        stored = self._password_hashes.get(user_id)
        if stored is None or not verify_password_hash(current_password, stored):
            raise InvalidCredentialsError("Current password is incorrect")
        self._password_hashes[user_id] = hash_password(new_password)
        await self.revoke_refresh_token(user_id)
        logger.info(f"Password changed for user: {user_id}")
