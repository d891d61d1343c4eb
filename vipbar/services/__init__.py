# VIP Bar Services
from vipbar.services.auth import AuthOrchestrator, RefreshResult, SignInResult
from vipbar.services.credential_store import (
    CredentialStore,
    InMemoryCredentialStore,
    PersistedRefreshToken,
    UserIdentity,
)
from vipbar.services.login_rate_limiter import LoginRateLimiter
from vipbar.services.security_monitor import RequestContext, SecurityMonitor, Severity
from vipbar.services.tokens import TokenCodec

__all__ = [
    "AuthOrchestrator",
    "CredentialStore",
    "InMemoryCredentialStore",
    "LoginRateLimiter",
    "PersistedRefreshToken",
    "RefreshResult",
    "RequestContext",
    "SecurityMonitor",
    "Severity",
    "SignInResult",
    "TokenCodec",
    "UserIdentity",
]
