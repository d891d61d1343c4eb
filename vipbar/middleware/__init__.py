"""Middleware module for the VIP Bar auth service."""

from vipbar.middleware.auth_pipeline import AuthorizationMiddleware
from vipbar.middleware.cleanup import (
    rate_limit_cleanup_loop,
    refresh_token_cleanup_loop,
    security_event_prune_loop,
)
from vipbar.middleware.login_throttle import LoginThrottle
from vipbar.middleware.security_headers import SecurityHeadersMiddleware

__all__ = [
    "AuthorizationMiddleware",
    "LoginThrottle",
    "SecurityHeadersMiddleware",
    "rate_limit_cleanup_loop",
    "refresh_token_cleanup_loop",
    "security_event_prune_loop",
]
