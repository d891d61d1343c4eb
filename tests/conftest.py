"""Pytest configuration and fixtures for the auth service tests.

Most tests run against an isolated ``SecurityState`` per test, backed by an
``InMemoryCredentialStore`` and a controllable clock, so no database is
needed.

PostgreSQL Handling (``requires_postgres`` tests only):
- TEST_DATABASE_URL when set
- Otherwise testcontainers, if installed and Docker is available
- Otherwise those tests are skipped
"""

import asyncio
import os
import time
from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

# Set test environment variables before importing app modules
TEST_SIGNING_KEY = "k7Qm2vX9pL4rT8wZ1nB6yH3cF5jD0sGa-vipbar-tests"
os.environ["JWT_SECRET_KEY"] = TEST_SIGNING_KEY
os.environ["ENVIRONMENT"] = "development"
os.environ.pop("DATABASE_URL", None)

from vipbar.core.config import Settings  # noqa: E402
from vipbar.core.rate_limit import limiter  # noqa: E402
from vipbar.core.state import SecurityState, build_security_state  # noqa: E402
from vipbar.main import create_app  # noqa: E402
from vipbar.services.credential_store import InMemoryCredentialStore, UserIdentity  # noqa: E402
from vipbar.services.demo import CASHIER_PERMISSIONS, MANAGER_PERMISSIONS  # noqa: E402
from vipbar.services.security_monitor import RequestContext  # noqa: E402

APP_ORIGIN = "http://localhost:3000"
BROWSER_AGENT = "Mozilla/5.0 (X11; Linux x86_64) Firefox/128.0"

ADMIN_ID = "6b1f3c2e-0000-4000-8000-000000000001"
MANAGER_ID = "6b1f3c2e-0000-4000-8000-000000000002"
CASHIER_ID = "6b1f3c2e-0000-4000-8000-000000000003"
INACTIVE_ID = "6b1f3c2e-0000-4000-8000-000000000004"
LOCKED_ID = "6b1f3c2e-0000-4000-8000-000000000005"

TEST_PASSWORD = "barpass2024"


class FakeClock:
    """Manually advanced clock shared by every clock-aware component."""

    def __init__(self, start: float | None = None):
        self.now = start if start is not None else time.time()

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_settings(**overrides) -> Settings:
    values = {
        "jwt_secret_key": TEST_SIGNING_KEY,
        "environment": "development",
        "database_url": None,
        "app_url": APP_ORIGIN,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


def populate_store(store: InMemoryCredentialStore) -> InMemoryCredentialStore:
    """Add one user per interesting account state, all with ``TEST_PASSWORD``."""
    from datetime import timedelta

    from vipbar.services.credential_store import utcnow

    store.add_user(
        UserIdentity(
            id=ADMIN_ID,
            email="jefe@barvip.com",
            full_name="Jefa de Sala",
            role_name="admin",
            display_name="Administrador",
        ),
        TEST_PASSWORD,
    )
    store.add_user(
        UserIdentity(
            id=MANAGER_ID,
            email="gerente@barvip.com",
            full_name="Gerente Turno",
            role_name="manager",
            display_name="Gerente",
            permissions={name: True for name in MANAGER_PERMISSIONS},
        ),
        TEST_PASSWORD,
    )
    store.add_user(
        UserIdentity(
            id=CASHIER_ID,
            email="caja@barvip.com",
            full_name="Caja Uno",
            role_name="cashier",
            display_name="Cajero",
            permissions={name: True for name in CASHIER_PERMISSIONS},
        ),
        TEST_PASSWORD,
    )
    store.add_user(
        UserIdentity(
            id=INACTIVE_ID,
            email="baja@barvip.com",
            full_name="Cuenta Baja",
            role_name="cashier",
            is_active=False,
        ),
        TEST_PASSWORD,
    )
    store.add_user(
        UserIdentity(
            id=LOCKED_ID,
            email="bloqueada@barvip.com",
            full_name="Cuenta Bloqueada",
            role_name="cashier",
            locked_until=utcnow() + timedelta(minutes=30),
        ),
        TEST_PASSWORD,
    )
    return store


@pytest.fixture(autouse=True)
def reset_api_limits():
    """The per-route limiter is module level; clear its counters between tests."""
    limiter.reset()
    yield
    limiter.reset()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def context() -> RequestContext:
    return RequestContext(ip="203.0.113.7", user_agent=BROWSER_AGENT)


@pytest.fixture
def credential_store(clock) -> InMemoryCredentialStore:
    return populate_store(InMemoryCredentialStore(clock=clock))


@pytest.fixture
def state(settings, credential_store, clock) -> SecurityState:
    """Isolated security state: fresh limiters, event ring and registries."""
    return build_security_state(settings, credential_store=credential_store, clock=clock)


@pytest.fixture
def demo_state(settings, clock) -> SecurityState:
    """Security state with no credential store; sign-in runs in demo mode."""
    return build_security_state(settings, clock=clock)


async def _client_for(state: SecurityState) -> AsyncGenerator[AsyncClient, None]:
    app = create_app(state=state)
    transport = ASGITransport(app=app)
    async with AsyncClient(
        transport=transport,
        base_url="http://test",
        headers={"Origin": APP_ORIGIN, "User-Agent": BROWSER_AGENT},
    ) as client:
        yield client


@pytest_asyncio.fixture
async def async_client(state) -> AsyncGenerator[AsyncClient, None]:
    """Client for an app wired to the ``state`` fixture."""
    async for client in _client_for(state):
        yield client


@pytest_asyncio.fixture
async def demo_client(demo_state) -> AsyncGenerator[AsyncClient, None]:
    """Client for an app with no credential store configured."""
    async for client in _client_for(demo_state):
        yield client


async def login(client: AsyncClient, email: str, password: str = TEST_PASSWORD, ip: str | None = None):
    """POST the login form. ``ip`` is passed as X-Real-IP (honored from localhost)."""
    headers = {"X-Real-IP": ip} if ip else {}
    return await client.post("/api/auth/login", json={"email": email, "password": password}, headers=headers)


async def csrf_headers(client: AsyncClient) -> dict[str, str]:
    """Fetch a CSRF token; the cookie lands in the client jar, the header is returned."""
    response = await client.get("/api/auth/csrf")
    assert response.status_code == 200
    return {"X-CSRF-Token": response.json()["csrf_token"]}


# --- PostgreSQL ---

_container = None
_pg_available = None
_database_url = None


def _try_testcontainers() -> str | None:
    try:
        from testcontainers.postgres import PostgresContainer
    except ImportError:
        return None

    global _container
    try:
        _container = PostgresContainer(
            image="postgres:15-alpine",
            username="test",
            password="test",
            dbname="vipbar_test",
        )
        _container.start()
        url = _container.get_connection_url()
        url = url.replace("postgresql+psycopg2://", "postgresql+asyncpg://")
        return url.replace("postgresql://", "postgresql+asyncpg://")
    except Exception as e:
        import warnings

        warnings.warn(f"Testcontainers not available: {e}", stacklevel=2)
        if _container:
            try:
                _container.stop()
            except Exception:
                pass
            _container = None
        return None


def get_test_database_url() -> str | None:
    global _database_url
    if _database_url is None:
        _database_url = os.environ.get("TEST_DATABASE_URL") or _try_testcontainers() or ""
    return _database_url or None


def check_postgres_available() -> bool:
    """Check if a PostgreSQL test database is available."""
    global _pg_available
    if _pg_available is not None:
        return _pg_available

    url = get_test_database_url()
    if url is None:
        _pg_available = False
        return False

    from sqlalchemy import text

    async def _check():
        try:
            engine = create_async_engine(url, poolclass=NullPool)
            async with engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            await engine.dispose()
            return True
        except Exception as e:
            import warnings

            warnings.warn(f"PostgreSQL not available: {e}", stacklevel=2)
            return False

    _pg_available = asyncio.run(_check())
    return _pg_available


def pytest_sessionfinish(session, exitstatus):
    """Clean up testcontainers when tests finish."""
    global _container
    if _container:
        try:
            _container.stop()
        except Exception:
            pass
        _container = None


@pytest_asyncio.fixture
async def session_maker() -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Session maker over freshly created tables, dropped afterwards."""
    if not check_postgres_available():
        pytest.skip("PostgreSQL test database not available")

    from vipbar.core.database import Base
    from vipbar.models import RefreshToken, SystemUser, UserRole  # noqa: F401

    engine = create_async_engine(get_test_database_url(), poolclass=NullPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()
