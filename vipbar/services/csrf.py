"""Origin checks and signed double-submit CSRF tokens."""

import hashlib
import hmac
import secrets
import time
from collections.abc import Callable
from urllib.parse import urlsplit

from vipbar.services.errors import CSRFRejectedError, OriginRejectedError

CSRF_COOKIE = "csrf-token"
CSRF_HEADER = "x-csrf-token"
CSRF_TOKEN_TTL = 3600

STATE_CHANGING_METHODS = frozenset({"POST", "PUT", "DELETE", "PATCH"})


def _origin_of(url: str) -> str | None:
    """Scheme plus host[:port] of a URL, or None if it has neither."""
    parts = urlsplit(url)
    if not parts.scheme or not parts.netloc:
        return None
    return f"{parts.scheme}://{parts.netloc}"


class OriginGuard:
    """CORS allow-list and origin checks for API requests."""

    def __init__(self, allowed_origins: list[str], app_url: str | None = None):
        self.allowed_origins = list(allowed_origins)
        self.app_url = app_url

    def check_cors(self, method: str, origin: str | None, referer: str | None) -> None:
        """Reject a foreign origin, or a state-changing request with no origin at all.

        Raises:
            OriginRejectedError: 403 for a disallowed Origin, 400 when a
                state-changing request carries neither Origin nor Referer
        """
        if origin and origin not in self.allowed_origins:
            raise OriginRejectedError(403, f"Origin not allowed: {origin}")

        if method.upper() in STATE_CHANGING_METHODS and not origin and not referer:
            raise OriginRejectedError(400, "Missing origin headers")

    def check_request_origin(self, origin: str | None, referer: str | None, host: str | None) -> None:
        """Same-host check for form posts.

        The request origin (Origin, else the origin of Referer) must be the
        serving host over http or https, or the configured app URL.
        """
        if not origin and not referer:
            raise OriginRejectedError(403, "Missing origin headers")

        request_origin = origin or _origin_of(referer or "")
        allowed = set()
        if host:
            allowed.update({f"https://{host}", f"http://{host}"})
        if self.app_url:
            allowed.add(self.app_url.rstrip("/"))

        if request_origin not in allowed:
            raise OriginRejectedError(403, f"Invalid request origin: {request_origin}")


class CSRFProtector:
    """Issues and validates ``<nonce>.<issued_at>.<signature>`` tokens.

    The token travels twice: in the ``csrf-token`` cookie and in the
    ``x-csrf-token`` header. A cross-site page can make the browser send the
    cookie but cannot read it to echo it in the header.
    """

    def __init__(
        self,
        secret: str,
        ttl: int = CSRF_TOKEN_TTL,
        clock: Callable[[], float] = time.time,
    ):
        self._key = hashlib.sha256(f"csrf:{secret}".encode()).digest()
        self.ttl = ttl
        self._clock = clock

    def _sign(self, nonce: str, issued_at: str) -> str:
        return hmac.new(self._key, f"{nonce}.{issued_at}".encode(), hashlib.sha256).hexdigest()

    def issue_token(self) -> str:
        nonce = secrets.token_urlsafe(24)
        issued_at = str(int(self._clock()))
        return f"{nonce}.{issued_at}.{self._sign(nonce, issued_at)}"

    def validate(self, cookie_token: str | None, header_token: str | None) -> None:
        """
        Raises:
            CSRFRejectedError: missing, mismatched, forged or expired token
        """
        if not cookie_token or not header_token:
            raise CSRFRejectedError("CSRF token missing")

        if not hmac.compare_digest(cookie_token.encode(), header_token.encode()):
            raise CSRFRejectedError("CSRF token mismatch")

        parts = cookie_token.split(".")
        if len(parts) != 3:
            raise CSRFRejectedError("CSRF token malformed")
        nonce, issued_at, signature = parts

        if not hmac.compare_digest(signature, self._sign(nonce, issued_at)):
            raise CSRFRejectedError("CSRF token signature invalid")

        try:
            issued = int(issued_at)
        except ValueError as e:
            raise CSRFRejectedError("CSRF token malformed") from e

        if self._clock() - issued > self.ttl:
            raise CSRFRejectedError("CSRF token expired")
