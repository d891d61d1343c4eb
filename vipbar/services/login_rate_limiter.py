"""Per-email and per-IP login failure tracking with progressive lockout.

Two independent tracks share one store under separate key prefixes:

- email: 3 failures in a 15 minute window blocks the email. The block
  doubles with every further consecutive failure, capped at 24 hours.
  A successful login resets the email track.
- ip: 10 failures in the same window blocks the IP. A success does not
  reset it, since one good login on a shared address must not unblock
  someone else hammering from it.
"""

import abc
import asyncio
import logging
import math
import time
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

MAX_ATTEMPTS_PER_EMAIL = 3
MAX_ATTEMPTS_PER_IP = 10
WINDOW_SECONDS = 15 * 60
BLOCK_DURATION_BASE = 15 * 60
MAX_BLOCK_DURATION = 24 * 3600


@dataclass
class LoginAttempt:
    timestamp: float
    success: bool
    ip: str = "unknown"
    user_agent: str = "unknown"


@dataclass
class LoginAttemptRecord:
    """Rolling attempt history for one email or one IP."""

    attempts: list[LoginAttempt] = field(default_factory=list)
    blocked_until: float = 0.0
    consecutive_failures: int = 0
    last_attempt: float = 0.0


@dataclass
class LoginCheck:
    allowed: bool
    reason: str | None = None
    retry_after: int | None = None
    remaining_attempts: int | None = None


class RateLimitStore(abc.ABC):
    """Key-value capability behind the limiter.

    The in-memory implementation is process-local. A deployment with more
    than one instance needs a shared implementation (for example a key-value
    server) whose ``set`` is atomic per key.
    """

    @abc.abstractmethod
    def get(self, key: str) -> LoginAttemptRecord | None: ...

    @abc.abstractmethod
    def set(self, key: str, record: LoginAttemptRecord) -> None: ...

    @abc.abstractmethod
    def delete(self, key: str) -> None: ...

    @abc.abstractmethod
    def items(self) -> Iterator[tuple[str, LoginAttemptRecord]]: ...


class InMemoryRateLimitStore(RateLimitStore):
    def __init__(self) -> None:
        self._data: dict[str, LoginAttemptRecord] = {}

    def get(self, key: str) -> LoginAttemptRecord | None:
        return self._data.get(key)

    def set(self, key: str, record: LoginAttemptRecord) -> None:
        self._data[key] = record

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def items(self) -> Iterator[tuple[str, LoginAttemptRecord]]:
        return iter(list(self._data.items()))

    def __len__(self) -> int:
        return len(self._data)


def _email_key(email: str) -> str:
    return f"email:{email.strip().lower()}"


def _ip_key(ip: str) -> str:
    return f"ip:{ip}"


class LoginRateLimiter:
    """Admission check and outcome recording for sign-in attempts.

    ``check_login_attempt`` has no side effects. ``record_login_attempt`` is
    the only mutator and is called once per attempt after its outcome is
    known.
    """

    def __init__(
        self,
        store: RateLimitStore | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store or InMemoryRateLimitStore()
        self._clock = clock
        self._lock = asyncio.Lock()

    def _recent_failures(self, record: LoginAttemptRecord, now: float, since_success: bool) -> int:
        """Count failures inside the window.

        With ``since_success`` only failures after the latest success count,
        so a good login makes the email admissible again immediately.
        """
        count = 0
        for attempt in record.attempts:
            if now - attempt.timestamp >= WINDOW_SECONDS:
                continue
            if attempt.success:
                if since_success:
                    count = 0
                continue
            count += 1
        return count

    def check_login_attempt(self, email: str, ip: str) -> LoginCheck:
        now = self._clock()
        email_record = self._store.get(_email_key(email)) or LoginAttemptRecord()
        ip_record = self._store.get(_ip_key(ip)) or LoginAttemptRecord()

        if now < email_record.blocked_until:
            return LoginCheck(
                allowed=False,
                reason="Email temporarily blocked due to too many failed attempts",
                retry_after=max(1, math.ceil(email_record.blocked_until - now)),
            )

        if now < ip_record.blocked_until:
            return LoginCheck(
                allowed=False,
                reason="IP address temporarily blocked due to suspicious activity",
                retry_after=max(1, math.ceil(ip_record.blocked_until - now)),
            )

        email_failures = self._recent_failures(email_record, now, since_success=True)
        ip_failures = self._recent_failures(ip_record, now, since_success=False)

        if email_failures >= MAX_ATTEMPTS_PER_EMAIL:
            return LoginCheck(
                allowed=False,
                reason="Too many failed login attempts for this email",
                retry_after=WINDOW_SECONDS,
            )

        if ip_failures >= MAX_ATTEMPTS_PER_IP:
            return LoginCheck(
                allowed=False,
                reason="Too many failed login attempts from this IP address",
                retry_after=WINDOW_SECONDS,
            )

        return LoginCheck(
            allowed=True,
            remaining_attempts=min(
                MAX_ATTEMPTS_PER_EMAIL - email_failures,
                MAX_ATTEMPTS_PER_IP - ip_failures,
            ),
        )

    async def record_login_attempt(
        self,
        email: str,
        ip: str,
        success: bool,
        user_agent: str = "unknown",
    ) -> None:
        async with self._lock:
            now = self._clock()
            attempt = LoginAttempt(timestamp=now, success=success, ip=ip, user_agent=user_agent)

            email_key = _email_key(email)
            email_record = self._store.get(email_key) or LoginAttemptRecord()
            email_record.attempts.append(attempt)
            email_record.last_attempt = now
            if success:
                email_record.consecutive_failures = 0
                email_record.blocked_until = 0.0
            else:
                email_record.consecutive_failures += 1
                self._apply_block(email_record, MAX_ATTEMPTS_PER_EMAIL, now)
            self._store.set(email_key, email_record)

            ip_key = _ip_key(ip)
            ip_record = self._store.get(ip_key) or LoginAttemptRecord()
            ip_record.attempts.append(attempt)
            ip_record.last_attempt = now
            if not success:
                ip_record.consecutive_failures += 1
                self._apply_block(ip_record, MAX_ATTEMPTS_PER_IP, now)
            self._store.set(ip_key, ip_record)

    @staticmethod
    def _apply_block(record: LoginAttemptRecord, threshold: int, now: float) -> None:
        if record.consecutive_failures < threshold:
            return
        duration = min(
            BLOCK_DURATION_BASE * 2 ** (record.consecutive_failures - threshold),
            MAX_BLOCK_DURATION,
        )
        record.blocked_until = now + duration

    def get_login_stats(self, email: str) -> dict[str, float | int]:
        record = self._store.get(_email_key(email))
        if record is None:
            return {
                "recent_attempts": 0,
                "consecutive_failures": 0,
                "blocked_until": 0,
                "last_attempt": 0,
            }
        now = self._clock()
        return {
            "recent_attempts": sum(1 for a in record.attempts if now - a.timestamp < WINDOW_SECONDS),
            "consecutive_failures": record.consecutive_failures,
            "blocked_until": record.blocked_until,
            "last_attempt": record.last_attempt,
        }

    def get_record(self, email: str | None = None, ip: str | None = None) -> LoginAttemptRecord | None:
        if email is not None:
            return self._store.get(_email_key(email))
        if ip is not None:
            return self._store.get(_ip_key(ip))
        return None

    async def cleanup(self) -> int:
        """Drop attempts outside the window and keys with nothing left to enforce."""
        async with self._lock:
            now = self._clock()
            removed = 0
            for key, record in self._store.items():
                record.attempts = [a for a in record.attempts if now - a.timestamp < WINDOW_SECONDS]
                if not record.attempts and now >= record.blocked_until:
                    self._store.delete(key)
                    removed += 1
                else:
                    self._store.set(key, record)
            if removed:
                logger.info(f"Login rate limiter cleanup: removed {removed} idle keys")
            return removed
