"""Tests for SecurityHeadersMiddleware."""

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from vipbar.middleware.security_headers import PERMISSIONS_POLICY, SecurityHeadersMiddleware


def _app(is_production: bool) -> FastAPI:
    app = FastAPI()
    app.add_middleware(SecurityHeadersMiddleware, is_production=is_production)

    @app.get("/ping")
    async def ping() -> dict:
        return {"ok": True}

    return app


async def _get(app: FastAPI, path: str = "/ping"):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        return await client.get(path)


class TestSecurityHeaders:
    @pytest.mark.asyncio
    async def test_hardening_headers(self):
        response = await _get(_app(is_production=False))

        assert response.headers["x-frame-options"] == "DENY"
        assert response.headers["x-content-type-options"] == "nosniff"
        assert response.headers["referrer-policy"] == "strict-origin-when-cross-origin"
        assert response.headers["x-xss-protection"] == "1; mode=block"
        assert "max-age=31536000" in response.headers["strict-transport-security"]
        assert response.headers["permissions-policy"] == PERMISSIONS_POLICY
        assert response.headers["x-dns-prefetch-control"] == "off"
        assert response.headers["x-download-options"] == "noopen"
        assert response.headers["x-permitted-cross-domain-policies"] == "none"

    @pytest.mark.asyncio
    async def test_added_to_not_found(self):
        response = await _get(_app(is_production=False), "/missing")

        assert response.status_code == 404
        assert response.headers["x-frame-options"] == "DENY"

    @pytest.mark.asyncio
    async def test_production_policy(self):
        response = await _get(_app(is_production=True))

        csp = response.headers["content-security-policy"]
        assert "default-src 'none'" in csp
        assert "'unsafe-eval'" not in csp
        assert "upgrade-insecure-requests" in csp

    @pytest.mark.asyncio
    async def test_development_policy(self):
        response = await _get(_app(is_production=False))

        csp = response.headers["content-security-policy"]
        assert "'unsafe-eval'" in csp
        assert "ws:" in csp
