"""Coarse IP-keyed throttle in front of the login endpoint.

Independent of the per-email/per-IP LoginRateLimiter: this one counts every
login request, successful or not, and trips before the orchestrator runs.
"""

import logging
import math
import time
from collections.abc import Callable
from dataclasses import dataclass

logger = logging.getLogger(__name__)

LOGIN_THROTTLE_MAX_REQUESTS = 3
LOGIN_THROTTLE_WINDOW = 15 * 60
MAX_PENALTY_MULTIPLIER = 10


@dataclass
class ThrottleEntry:
    count: int
    reset_at: float
    consecutive_violations: int = 0
    blocked_until: float = 0.0


@dataclass
class ThrottleDecision:
    allowed: bool
    retry_after: int = 0
    attempts: int = 0
    consecutive_violations: int = 0


class LoginThrottle:
    """Fixed-window counter per IP with a growing penalty on violations.

    Each violation blocks the IP for ``window * min(violations, 10)``.
    ``check`` does its read-modify-write without awaiting, so concurrent
    requests from one IP cannot lose updates.
    """

    def __init__(
        self,
        max_requests: int = LOGIN_THROTTLE_MAX_REQUESTS,
        window: int = LOGIN_THROTTLE_WINDOW,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.max_requests = max_requests
        self.window = window
        self._clock = clock
        self._entries: dict[str, ThrottleEntry] = {}

    def check(self, ip: str) -> ThrottleDecision:
        """Count one login request from ``ip`` and decide whether it may proceed."""
        now = self._clock()
        entry = self._entries.get(ip)

        if entry is not None and now < entry.blocked_until:
            return ThrottleDecision(
                allowed=False,
                retry_after=max(1, math.ceil(entry.blocked_until - now)),
                attempts=entry.count,
                consecutive_violations=entry.consecutive_violations,
            )

        if entry is None or now >= entry.reset_at:
            violations = entry.consecutive_violations if entry is not None else 0
            self._entries[ip] = ThrottleEntry(
                count=1, reset_at=now + self.window, consecutive_violations=violations
            )
            return ThrottleDecision(allowed=True, attempts=1, consecutive_violations=violations)

        if entry.count >= self.max_requests:
            entry.consecutive_violations += 1
            penalty = self.window * min(entry.consecutive_violations, MAX_PENALTY_MULTIPLIER)
            entry.blocked_until = now + penalty
            entry.reset_at = max(entry.reset_at, entry.blocked_until)
            return ThrottleDecision(
                allowed=False,
                retry_after=penalty,
                attempts=entry.count,
                consecutive_violations=entry.consecutive_violations,
            )

        entry.count += 1
        return ThrottleDecision(
            allowed=True,
            attempts=entry.count,
            consecutive_violations=entry.consecutive_violations,
        )

    def reset(self, ip: str | None = None) -> None:
        if ip is None:
            self._entries.clear()
        else:
            self._entries.pop(ip, None)

    def cleanup(self) -> int:
        """Drop entries whose window and block have both passed."""
        now = self._clock()
        expired = [
            ip
            for ip, entry in self._entries.items()
            if now >= entry.reset_at and now >= entry.blocked_until
        ]
        for ip in expired:
            del self._entries[ip]
        if expired:
            logger.debug(f"Login throttle cleanup: removed {len(expired)} entries")
        return len(expired)

    def __len__(self) -> int:
        return len(self._entries)
