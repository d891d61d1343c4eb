"""Per-route request limits for the API.

Sign-in has its own limiter and throttle; these limits cap everything else
per client IP.
"""

from fastapi import Request
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

API_RATE_LIMIT = "100/minute"
# Password changes and session revocation
SENSITIVE_RATE_LIMIT = "5/minute"


def client_ip_key(request: Request) -> str:
    """Client IP as resolved by the authorization middleware (proxy-aware)."""
    context = getattr(request.state, "client_context", None)
    if context is not None and context.ip != "unknown":
        return context.ip
    return get_remote_address(request)


limiter = Limiter(key_func=client_ip_key)


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Custom handler for rate limit exceeded errors."""
    return JSONResponse(
        status_code=429,
        content={
            "detail": "Demasiadas solicitudes. Intenta de nuevo en un minuto.",
            "limit": str(exc.detail),
            "retry_after": 60,
        },
        headers={"Retry-After": "60"},
    )
