"""Session cookie handling."""

from collections.abc import Mapping
from dataclasses import dataclass

from starlette.responses import Response

from vipbar.services.tokens import ACCESS_TOKEN_TTL, REFRESH_TOKEN_TTL

ACCESS_COOKIE = "access_token"
REFRESH_COOKIE = "refresh_token"
SESSION_MARKER_COOKIE = "auth_session"


@dataclass
class SessionTokens:
    access: str | None = None
    refresh: str | None = None

    @property
    def empty(self) -> bool:
        return self.access is None and self.refresh is None


class SessionCookieManager:
    """Writes, reads and clears the three session cookies.

    All three are httpOnly, SameSite=Strict and path=/, and Secure in
    production. ``auth_session`` carries no token data; it only marks that a
    session exists.
    """

    def __init__(self, secure: bool):
        self.secure = secure

    def _set(self, response: Response, key: str, value: str, max_age: int) -> None:
        response.set_cookie(
            key,
            value,
            max_age=max_age,
            path="/",
            secure=self.secure,
            httponly=True,
            samesite="strict",
        )

    def set_auth_cookies(self, response: Response, access: str, refresh: str) -> None:
        self._set(response, ACCESS_COOKIE, access, ACCESS_TOKEN_TTL)
        self._set(response, REFRESH_COOKIE, refresh, REFRESH_TOKEN_TTL)
        self._set(response, SESSION_MARKER_COOKIE, "1", REFRESH_TOKEN_TTL)

    def set_access_cookie(self, response: Response, access: str) -> None:
        self._set(response, ACCESS_COOKIE, access, ACCESS_TOKEN_TTL)

    def set_refresh_cookie(self, response: Response, refresh: str) -> None:
        self._set(response, REFRESH_COOKIE, refresh, REFRESH_TOKEN_TTL)
        self._set(response, SESSION_MARKER_COOKIE, "1", REFRESH_TOKEN_TTL)

    def clear_auth_cookies(self, response: Response) -> None:
        for key in (ACCESS_COOKIE, REFRESH_COOKIE, SESSION_MARKER_COOKIE):
            self._set(response, key, "", 0)

    @staticmethod
    def read_tokens(cookies: Mapping[str, str]) -> SessionTokens:
        """Read both tokens; empty values count as absent."""
        return SessionTokens(
            access=cookies.get(ACCESS_COOKIE) or None,
            refresh=cookies.get(REFRESH_COOKIE) or None,
        )
