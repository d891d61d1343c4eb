"""VIP Bar Configuration - Environment-based settings."""

from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Substrings that mark a signing secret as a well-known placeholder
WEAK_SECRET_MARKERS = ("your-secret-key", "secret", "password", "123456", "default", "changeme")

MIN_SECRET_LENGTH = 32


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Read once at process start. There is no runtime reconfiguration.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "VIP Bar Auth"
    app_version: str = "0.1.0"
    environment: Literal["development", "production"] = "development"
    debug: bool = False
    log_level: str = "INFO"

    # Token signing
    jwt_secret_key: str = Field(default="", description="HMAC signing secret (>= 32 chars)")

    # CORS allow-lists per environment (comma-separated)
    cors_origins_production: str = "https://vip-bar-management.vercel.app"
    cors_origins_development: str = "http://localhost:3000,http://127.0.0.1:3000"

    # Credential store. Unset means the provider is unconfigured and
    # sign-in goes straight to demo mode.
    database_url: str | None = None
    db_pool_size: int = 10
    db_max_overflow: int = 10
    db_pool_timeout: int = 30
    db_pool_recycle: int = 1800

    # Demo mode
    demo_mode_enabled: bool = True
    demo_admin_password: str = "admin123"
    demo_manager_password: str = "manager123"
    demo_cashier_password: str = "cashier123"

    # Session behavior
    refresh_token_rotation: bool = False
    csrf_protection_enabled: bool = True

    # Public URL of the app, also accepted as a same-origin form post source
    app_url: str | None = None

    # Alerting
    security_alert_webhook_url: str | None = None

    # Proxies allowed to set X-Forwarded-For / X-Real-IP (comma-separated)
    trusted_proxy_ips: str = ""

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Normalize and validate the log level."""
        level = v.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Invalid log level: {v}")
        return level

    @field_validator("database_url")
    @classmethod
    def empty_database_url_is_none(cls, v: str | None) -> str | None:
        if v is not None and not v.strip():
            return None
        return v

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def allowed_origins(self) -> list[str]:
        """CORS allow-list for the current environment."""
        raw = self.cors_origins_production if self.is_production else self.cors_origins_development
        return [origin.strip() for origin in raw.split(",") if origin.strip()]

    @property
    def trusted_proxies(self) -> set[str]:
        return {ip.strip() for ip in self.trusted_proxy_ips.split(",") if ip.strip()}

    @property
    def credential_store_configured(self) -> bool:
        return bool(self.database_url)

    def check_security_configuration(self) -> list[str]:
        """Return human-readable warnings about risky settings."""
        warnings = []

        if not self.jwt_secret_key:
            warnings.append("JWT_SECRET_KEY is not set; using the development signing secret")

        if self.debug and self.is_production:
            warnings.append("DEBUG is enabled in production")

        if self.demo_mode_enabled and self.is_production:
            warnings.append(
                "Demo mode is enabled in production; demo credentials will be accepted "
                "whenever the credential store is unavailable"
            )

        if self.demo_mode_enabled and self.demo_admin_password == "admin123":
            warnings.append("DEMO_ADMIN_PASSWORD is the default value")

        if not self.credential_store_configured:
            warnings.append("DATABASE_URL is not set; only demo accounts can sign in")

        if not self.csrf_protection_enabled:
            warnings.append("CSRF protection is disabled")

        return warnings


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
