"""Process-owned security state.

Everything that holds mutable per-process state (limiters, the event ring,
blocked IPs, the demo token registry) hangs off one ``SecurityState``
built at startup and stored on ``app.state.security``. Tests build their
own instance per case.
"""

import time
from collections.abc import Callable
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from vipbar.core.config import Settings
from vipbar.core.database import create_engine, create_session_maker
from vipbar.core.logging import get_logger
from vipbar.middleware.login_throttle import LoginThrottle
from vipbar.services.auth import AuthOrchestrator
from vipbar.services.cookies import SessionCookieManager
from vipbar.services.credential_store import CredentialStore, InMemoryCredentialStore
from vipbar.services.csrf import CSRFProtector, OriginGuard
from vipbar.services.login_rate_limiter import LoginRateLimiter, RateLimitStore
from vipbar.services.security_monitor import SecurityMonitor
from vipbar.services.sql_store import SqlCredentialStore
from vipbar.services.tokens import TokenCodec, resolve_signing_secret

logger = get_logger("state")


@dataclass
class SecurityState:
    settings: Settings
    codec: TokenCodec
    cookies: SessionCookieManager
    limiter: LoginRateLimiter
    login_throttle: LoginThrottle
    monitor: SecurityMonitor
    origin_guard: OriginGuard
    csrf: CSRFProtector
    store: CredentialStore | None
    demo_registry: InMemoryCredentialStore
    orchestrator: AuthOrchestrator
    engine: AsyncEngine | None = None
    session_maker: async_sessionmaker[AsyncSession] | None = None

    async def close(self) -> None:
        if self.engine is not None:
            await self.engine.dispose()


def build_security_state(
    settings: Settings,
    credential_store: CredentialStore | None = None,
    rate_limit_store: RateLimitStore | None = None,
    clock: Callable[[], float] = time.time,
) -> SecurityState:
    """Wire up the security components for one process.

    With no ``credential_store`` given, a SQL store is created when
    DATABASE_URL is set; otherwise sign-in runs in demo mode only.

    Raises:
        RuntimeError: the signing secret is missing in production or weak
    """
    secret = resolve_signing_secret(settings)

    engine = None
    session_maker = None
    store = credential_store
    if store is None and settings.credential_store_configured:
        engine = create_engine(settings)
        session_maker = create_session_maker(engine)
        store = SqlCredentialStore(session_maker, clock=clock)
        logger.info("Credential store: SQL")
    elif store is None:
        logger.warning("Credential store not configured; sign-in runs in demo mode only")

    monitor = SecurityMonitor(alert_webhook_url=settings.security_alert_webhook_url, clock=clock)
    codec = TokenCodec(secret, monitor=monitor, clock=clock)
    cookies = SessionCookieManager(secure=settings.is_production)
    limiter = LoginRateLimiter(store=rate_limit_store, clock=clock)
    demo_registry = InMemoryCredentialStore(clock=clock)

    orchestrator = AuthOrchestrator(
        settings=settings,
        codec=codec,
        cookies=cookies,
        limiter=limiter,
        monitor=monitor,
        store=store,
        demo_registry=demo_registry,
        clock=clock,
    )

    return SecurityState(
        settings=settings,
        codec=codec,
        cookies=cookies,
        limiter=limiter,
        login_throttle=LoginThrottle(clock=clock),
        monitor=monitor,
        origin_guard=OriginGuard(settings.allowed_origins, app_url=settings.app_url),
        csrf=CSRFProtector(secret, clock=clock),
        store=store,
        demo_registry=demo_registry,
        orchestrator=orchestrator,
        engine=engine,
        session_maker=session_maker,
    )
