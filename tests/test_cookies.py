"""Tests for session cookie handling."""

from starlette.responses import Response

from vipbar.services.cookies import (
    ACCESS_COOKIE,
    REFRESH_COOKIE,
    SESSION_MARKER_COOKIE,
    SessionCookieManager,
)
from vipbar.services.tokens import ACCESS_TOKEN_TTL, REFRESH_TOKEN_TTL


def _set_cookie_headers(response: Response) -> dict[str, str]:
    headers = {}
    for name, value in response.raw_headers:
        if name == b"set-cookie":
            text = value.decode()
            headers[text.split("=", 1)[0]] = text
    return headers


class TestSessionCookieManager:
    def test_sets_three_cookies(self):
        response = Response()
        SessionCookieManager(secure=False).set_auth_cookies(response, "acc", "ref")

        cookies = _set_cookie_headers(response)
        assert set(cookies) == {ACCESS_COOKIE, REFRESH_COOKIE, SESSION_MARKER_COOKIE}
        assert f"Max-Age={ACCESS_TOKEN_TTL}" in cookies[ACCESS_COOKIE]
        assert f"Max-Age={REFRESH_TOKEN_TTL}" in cookies[REFRESH_COOKIE]
        assert cookies[SESSION_MARKER_COOKIE].startswith(f"{SESSION_MARKER_COOKIE}=1;")

    def test_cookie_flags(self):
        response = Response()
        SessionCookieManager(secure=True).set_auth_cookies(response, "acc", "ref")

        for header in _set_cookie_headers(response).values():
            lowered = header.lower()
            assert "httponly" in lowered
            assert "samesite=strict" in lowered
            assert "path=/" in lowered
            assert "secure" in lowered

    def test_not_secure_outside_production(self):
        response = Response()
        SessionCookieManager(secure=False).set_access_cookie(response, "acc")
        assert "secure" not in _set_cookie_headers(response)[ACCESS_COOKIE].lower()

    def test_clear_expires_all(self):
        response = Response()
        SessionCookieManager(secure=False).clear_auth_cookies(response)

        cookies = _set_cookie_headers(response)
        assert set(cookies) == {ACCESS_COOKIE, REFRESH_COOKIE, SESSION_MARKER_COOKIE}
        for header in cookies.values():
            assert "Max-Age=0" in header

    def test_read_tokens_treats_empty_as_missing(self):
        tokens = SessionCookieManager.read_tokens({ACCESS_COOKIE: "", REFRESH_COOKIE: "ref"})
        assert tokens.access is None
        assert tokens.refresh == "ref"
        assert not tokens.empty
        assert SessionCookieManager.read_tokens({}).empty
