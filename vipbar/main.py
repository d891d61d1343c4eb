"""VIP Bar Auth - FastAPI Application Factory."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi.errors import RateLimitExceeded

from vipbar.api import api_router
from vipbar.api.health import router as health_router
from vipbar.core.config import Settings, get_settings
from vipbar.core.lifespan import shutdown, startup
from vipbar.core.logging import get_logger
from vipbar.core.rate_limit import limiter, rate_limit_exceeded_handler
from vipbar.core.state import SecurityState, build_security_state
from vipbar.middleware import AuthorizationMiddleware, SecurityHeadersMiddleware

# Import all models to ensure they're registered with Base for Alembic
from vipbar.models import RefreshToken, SystemUser, UserRole  # noqa: F401
from vipbar.services.credential_store import CredentialStore

logger = get_logger("main")


def create_app(
    settings: Settings | None = None,
    credential_store: CredentialStore | None = None,
    state: SecurityState | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Tests pass their own ``state`` (or ``credential_store``) so every app
    instance gets isolated limiters, event ring and token registry.
    """
    if state is None:
        state = build_security_state(settings or get_settings(), credential_store=credential_store)
    settings = state.settings

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Application lifespan handler for startup/shutdown."""
        logger.info(f"Starting {settings.app_name} v{settings.app_version}")
        tasks = await startup(logger, state)

        yield

        logger.info("Shutting down...")
        await shutdown(logger, state, tasks)

    app = FastAPI(
        title=settings.app_name,
        description="Authentication, session and request-authorization service for the VIP bar POS",
        version=settings.app_version,
        lifespan=lifespan,
        # The docs sit outside /api/* and would expose the schema unauthenticated
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        openapi_url="/openapi.json" if settings.debug else None,
    )
    app.state.security = state

    # Per-route API limits (slowapi reads the limiter from app.state)
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)

    # Session, CSRF and route-policy checks on every request
    app.add_middleware(AuthorizationMiddleware, state=state)

    # Security headers wrap the authorization middleware so rejections carry them too
    app.add_middleware(SecurityHeadersMiddleware, is_production=settings.is_production)

    # CORS middleware - MUST be outermost (added last in Starlette LIFO order)
    # so that CORS headers are present on ALL responses, including 401 and 403.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=[
            "Content-Type",
            "Accept",
            "X-Requested-With",
            "X-CSRF-Token",
        ],
    )

    app.include_router(health_router)  # Health at root level
    app.include_router(api_router)  # API at /api

    @app.get("/")
    async def root() -> dict[str, str]:
        """Root endpoint with service information."""
        return {
            "name": settings.app_name,
            "version": settings.app_version,
        }

    return app


# Application instance
app = create_app()
