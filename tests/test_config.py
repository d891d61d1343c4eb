"""Tests for settings parsing and the startup configuration report."""

import pydantic
import pytest

from tests.conftest import make_settings


class TestSettings:
    def test_development_origins(self):
        settings = make_settings()
        assert "http://localhost:3000" in settings.allowed_origins
        assert not settings.is_production

    def test_production_origins(self):
        settings = make_settings(environment="production")
        assert settings.allowed_origins == ["https://vip-bar-management.vercel.app"]
        assert settings.is_production

    def test_origins_are_trimmed(self):
        settings = make_settings(cors_origins_development=" http://a.test , ,http://b.test")
        assert settings.allowed_origins == ["http://a.test", "http://b.test"]

    def test_blank_database_url_is_unset(self):
        settings = make_settings(database_url="   ")
        assert settings.database_url is None
        assert not settings.credential_store_configured

    def test_trusted_proxies(self):
        settings = make_settings(trusted_proxy_ips="10.0.0.1, 10.0.0.2")
        assert settings.trusted_proxies == {"10.0.0.1", "10.0.0.2"}

    def test_log_level_is_validated(self):
        assert make_settings(log_level="debug").log_level == "DEBUG"
        with pytest.raises(pydantic.ValidationError):
            make_settings(log_level="chatty")

    def test_secure_defaults(self):
        settings = make_settings()
        assert settings.csrf_protection_enabled
        assert not settings.refresh_token_rotation


class TestSecurityConfiguration:
    """Tests for Settings.check_security_configuration."""

    def test_demo_in_production_is_reported(self):
        warnings = make_settings(environment="production").check_security_configuration()
        assert any("Demo mode is enabled in production" in w for w in warnings)

    def test_missing_database_is_reported(self):
        warnings = make_settings().check_security_configuration()
        assert any("DATABASE_URL" in w for w in warnings)

    def test_hardened_configuration(self):
        settings = make_settings(
            environment="production",
            demo_mode_enabled=False,
            database_url="postgresql+asyncpg://vipbar:vipbar@db:5432/vipbar",
        )
        assert settings.check_security_configuration() == []
