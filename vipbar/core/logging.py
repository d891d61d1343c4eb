"""VIP Bar Logging Configuration.

Security events are logged with the event dict attached as
``extra={"security_event": ...}``. The structured formatter emits it as a
nested object; the dev formatter appends the event type and client IP.
"""

import json
import logging
import sys
from typing import Literal

DEV_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s%(event_suffix)s"

# Keys whose values never reach a log line
REDACTED_KEYS = frozenset(
    {"password", "new_password", "current_password", "token", "access_token", "refresh_token", "cookie", "secret"}
)

QUIET_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access", "httpx", "httpcore")


def redact(details: dict | None) -> dict:
    """Return a copy of ``details`` with credential-bearing values masked."""
    if not details:
        return {}
    cleaned = {}
    for key, value in details.items():
        if key.lower() in REDACTED_KEYS:
            cleaned[key] = "[REDACTED]"
        elif isinstance(value, dict):
            cleaned[key] = redact(value)
        else:
            cleaned[key] = value
    return cleaned


class SecurityJSONFormatter(logging.Formatter):
    """One JSON object per line, with any attached security event nested."""

    def __init__(self):
        super().__init__(datefmt="%Y-%m-%dT%H:%M:%S")

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        event = getattr(record, "security_event", None)
        if event is not None:
            entry["security_event"] = {**event, "details": redact(event.get("details"))}
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class DevFormatter(logging.Formatter):
    """Readable single-line format for local runs."""

    def __init__(self):
        super().__init__(fmt=DEV_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    def format(self, record: logging.LogRecord) -> str:
        event = getattr(record, "security_event", None)
        if event is not None:
            record.event_suffix = f" [{event.get('type')} ip={event.get('ip')}]"
        else:
            record.event_suffix = ""
        return super().format(record)


def setup_logging(
    level: str = "INFO",
    format_type: Literal["structured", "dev"] = "dev",
) -> None:
    """
    Configure application logging.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        format_type: 'structured' for JSON lines, 'dev' for readable output
    """
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(SecurityJSONFormatter() if format_type == "structured" else DevFormatter())
    logging.root.handlers = [handler]
    logging.root.setLevel(getattr(logging, level.upper()))

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    # SQL echo only when debugging
    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.DEBUG if level.upper() == "DEBUG" else logging.WARNING
    )

    logging.getLogger("vipbar").info(f"Logging configured: level={level}, format={format_type}")


def get_logger(name: str) -> logging.Logger:
    """Get a logger with the vipbar prefix."""
    return logging.getLogger(f"vipbar.{name}")
