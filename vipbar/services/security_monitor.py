"""Security event sink with threat-pattern correlation.

Events are kept in a bounded in-memory ring. Every new event is checked
against a small set of threat patterns keyed by client IP; a pattern that
trips blocks the IP for an hour and emits a ``threat_detected`` event.
"""

import asyncio
import logging
import time
from collections import Counter, deque
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from vipbar.core.logging import get_logger, redact
from vipbar.services.alerting import send_security_alert

logger = get_logger("security")

MAX_EVENTS = 1000
EVENT_RETENTION_SECONDS = 7 * 24 * 3600
IP_BLOCK_SECONDS = 3600


class Severity(str, Enum):
    """Severity of a security event."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


_LOG_LEVELS = {
    Severity.LOW: logging.INFO,
    Severity.MEDIUM: logging.INFO,
    Severity.HIGH: logging.WARNING,
    Severity.CRITICAL: logging.ERROR,
}


@dataclass
class RequestContext:
    """Client identity attached to every logged event."""

    ip: str = "unknown"
    user_agent: str = "unknown"


@dataclass
class SecurityEvent:
    """A structured, severity-tagged security record."""

    type: str
    ip: str
    user_agent: str
    details: dict[str, Any]
    severity: Severity
    timestamp: float

    @property
    def occurred_at(self) -> datetime:
        return datetime.fromtimestamp(self.timestamp, tz=UTC)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "ip": self.ip,
            "user_agent": self.user_agent,
            "details": self.details,
            "severity": self.severity.value,
            "timestamp": self.occurred_at.isoformat(),
        }


@dataclass
class ThreatPattern:
    """Escalate when ``threshold`` matching events from one IP land inside ``window``."""

    name: str
    matches: Callable[[SecurityEvent], bool]
    threshold: int
    window: float


def _has_threat(event: SecurityEvent, threat: str) -> bool:
    return event.type == "malicious_input_detected" and threat in event.details.get("threats", [])


DEFAULT_THREAT_PATTERNS = (
    ThreatPattern("brute_force_login", lambda e: e.type == "login_failed", 5, 300),
    ThreatPattern("sql_injection_attempt", lambda e: _has_threat(e, "sql_injection"), 3, 600),
    ThreatPattern("xss_attempt", lambda e: _has_threat(e, "xss"), 3, 600),
    ThreatPattern("rate_limit_abuse", lambda e: e.type == "rate_limit_exceeded", 10, 300),
)


@dataclass
class IPBlock:
    threat_type: str
    until: float


class SecurityMonitor:
    """Append-only event ring plus IP blocking driven by threat patterns.

    All mutation for one event (append, correlate, block) happens before the
    first ``await`` in ``log_event``, so concurrent requests never interleave
    inside a read-modify-write.
    """

    def __init__(
        self,
        max_events: int = MAX_EVENTS,
        patterns: tuple[ThreatPattern, ...] = DEFAULT_THREAT_PATTERNS,
        alert_webhook_url: str | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._events: deque[SecurityEvent] = deque(maxlen=max_events)
        self._blocked: dict[str, IPBlock] = {}
        self._patterns = patterns
        self._alert_webhook_url = alert_webhook_url
        self._clock = clock
        self._alert_tasks: set[asyncio.Task] = set()

    async def log_event(
        self,
        type: str,
        ip: str = "unknown",
        user_agent: str = "unknown",
        details: dict[str, Any] | None = None,
        severity: Severity | str = Severity.LOW,
    ) -> SecurityEvent:
        """Record an event, run correlation, then emit logs and alerts."""
        event = SecurityEvent(
            type=type,
            ip=ip or "unknown",
            user_agent=user_agent or "unknown",
            details=redact(details),
            severity=Severity(severity),
            timestamp=self._clock(),
        )
        emitted = [event, *self._record(event)]

        for item in emitted:
            self._emit(item)
        return event

    async def log_context_event(
        self,
        type: str,
        context: RequestContext | None,
        details: dict[str, Any] | None = None,
        severity: Severity | str = Severity.LOW,
    ) -> SecurityEvent:
        context = context or RequestContext()
        return await self.log_event(type, context.ip, context.user_agent, details, severity)

    def _record(self, event: SecurityEvent) -> list[SecurityEvent]:
        """Append ``event`` and return any escalation events it caused."""
        self._events.append(event)
        escalations = []

        for pattern in self._patterns:
            if not pattern.matches(event):
                continue
            if self.is_ip_blocked(event.ip):
                continue
            cutoff = event.timestamp - pattern.window
            matching = [
                e
                for e in self._events
                if e.ip == event.ip and e.timestamp >= cutoff and pattern.matches(e)
            ]
            if len(matching) < pattern.threshold:
                continue

            self._blocked[event.ip] = IPBlock(pattern.name, event.timestamp + IP_BLOCK_SECONDS)
            threat = SecurityEvent(
                type="threat_detected",
                ip=event.ip,
                user_agent=matching[0].user_agent,
                details={
                    "threatType": pattern.name,
                    "eventCount": len(matching),
                    "timespan": f"last {int(pattern.window // 60)} minutes",
                },
                severity=Severity.CRITICAL,
                timestamp=event.timestamp,
            )
            self._events.append(threat)
            escalations.append(threat)

        return escalations

    def _emit(self, event: SecurityEvent) -> None:
        logger.log(
            _LOG_LEVELS[event.severity],
            f"Security event: {event.type} severity={event.severity.value} ip={event.ip}",
            extra={"security_event": event.to_dict()},
        )
        if event.severity in (Severity.HIGH, Severity.CRITICAL) and self._alert_webhook_url:
            task = asyncio.create_task(
                send_security_alert(self._alert_webhook_url, event.to_dict())
            )
            self._alert_tasks.add(task)
            task.add_done_callback(self._alert_tasks.discard)

    def is_ip_blocked(self, ip: str) -> bool:
        block = self._blocked.get(ip)
        if block is None:
            return False
        if self._clock() >= block.until:
            del self._blocked[ip]
            return False
        return True

    def block_remaining(self, ip: str) -> int:
        """Seconds left on the block for ``ip``, 0 if not blocked."""
        if not self.is_ip_blocked(ip):
            return 0
        return max(1, int(self._blocked[ip].until - self._clock()))

    def blocked_ips(self) -> dict[str, str]:
        now = self._clock()
        return {ip: block.threat_type for ip, block in self._blocked.items() if block.until > now}

    def get_events(self, limit: int = 100, severity: Severity | str | None = None) -> list[SecurityEvent]:
        """Most recent events first, optionally filtered by severity."""
        events = list(self._events)
        if severity is not None:
            wanted = Severity(severity)
            events = [e for e in events if e.severity == wanted]
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events[:limit]

    def get_stats(self) -> dict[str, Any]:
        by_severity = Counter(e.severity.value for e in self._events)
        by_type = Counter(e.type for e in self._events)
        return {
            "total_events": len(self._events),
            "events_by_severity": dict(by_severity),
            "top_threats": [{"type": t, "count": c} for t, c in by_type.most_common(10)],
            "blocked_ips": len(self.blocked_ips()),
        }

    def cleanup(self) -> int:
        """Drop events older than the retention period and expired blocks."""
        now = self._clock()
        cutoff = now - EVENT_RETENTION_SECONDS
        before = len(self._events)
        kept = [e for e in self._events if e.timestamp > cutoff]
        self._events.clear()
        self._events.extend(kept)

        for ip in [ip for ip, block in self._blocked.items() if block.until <= now]:
            del self._blocked[ip]

        return before - len(kept)
