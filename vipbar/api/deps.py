"""Shared FastAPI dependencies for the API routers."""

from fastapi import HTTPException, Request, status

from vipbar.core.state import SecurityState
from vipbar.services.credential_store import UserIdentity
from vipbar.services.security_monitor import RequestContext


def get_security_state(request: Request) -> SecurityState:
    """The process security state built in ``create_app``."""
    return request.app.state.security


def get_client_context(request: Request) -> RequestContext:
    """Client IP and user agent resolved by the authorization middleware."""
    context = getattr(request.state, "client_context", None)
    return context or RequestContext()


def get_current_identity(request: Request) -> UserIdentity:
    """Identity the authorization middleware verified for this request.

    Raises 401 when the route was reached without one, which only happens
    for routes the policy table treats as public.
    """
    identity = getattr(request.state, "identity", None)
    if identity is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
        )
    return identity
