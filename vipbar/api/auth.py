"""Authentication API endpoints.

Sessions live in httpOnly cookies; no token is ever returned in a body.
Protected endpoints here are already authenticated by
``AuthorizationMiddleware`` and read the identity it attached.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status

from vipbar.api.deps import get_client_context, get_current_identity, get_security_state
from vipbar.core.rate_limit import API_RATE_LIMIT, SENSITIVE_RATE_LIMIT, limiter
from vipbar.core.state import SecurityState
from vipbar.schemas.auth import (
    ChangePasswordRequest,
    CSRFTokenResponse,
    LoginRequest,
    LoginResponse,
    MessageResponse,
    RefreshResponse,
    SessionListResponse,
    SessionResponse,
    UserResponse,
)
from vipbar.services.credential_store import UserIdentity
from vipbar.services.csrf import CSRF_COOKIE, CSRF_HEADER
from vipbar.services.errors import (
    AccountDisabledError,
    AccountLockedError,
    AuthError,
    InsufficientPermissionError,
    InvalidCredentialsError,
    OriginRejectedError,
    ProviderUnavailableError,
    RateLimitedError,
    ValidationError,
)
from vipbar.services.security_monitor import RequestContext, Severity
from vipbar.services.tokens import ACCESS_TOKEN_TTL

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


async def _require_same_origin(http_request: Request, state: SecurityState, context: RequestContext) -> None:
    """Reject cookie-setting posts that did not come from this app."""
    try:
        state.origin_guard.check_request_origin(
            http_request.headers.get("origin"),
            http_request.headers.get("referer"),
            http_request.headers.get("host"),
        )
    except OriginRejectedError as e:
        await state.monitor.log_context_event(
            "invalid_request_origin",
            context,
            details={"path": http_request.url.path, "error": str(e)},
            severity=Severity.HIGH,
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=e.public_message,
        ) from e


@router.post("/login", response_model=LoginResponse)
async def login(
    request: LoginRequest,
    http_request: Request,
    response: Response,
    state: SecurityState = Depends(get_security_state),
    context: RequestContext = Depends(get_client_context),
) -> LoginResponse:
    """Sign in with email and password.

    Tries the credential store first and falls back to the demo accounts
    when the store cannot serve the request. Sets the session cookies.
    """
    await _require_same_origin(http_request, state, context)

    try:
        result = await state.orchestrator.sign_in(request.email, request.password, context, response)
    except ValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    except RateLimitedError as e:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=e.public_message,
            headers={"Retry-After": str(e.retry_after)},
        ) from e
    except InvalidCredentialsError as e:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=e.public_message) from e
    except (AccountDisabledError, AccountLockedError) as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=e.public_message) from e
    except ProviderUnavailableError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=e.public_message) from e

    return LoginResponse(
        user=UserResponse(**result.identity.to_public_dict()),
        redirect_to=result.redirect_to,
        is_demo=result.is_demo,
    )


@router.post("/logout", response_model=MessageResponse)
async def logout(
    http_request: Request,
    response: Response,
    state: SecurityState = Depends(get_security_state),
    context: RequestContext = Depends(get_client_context),
) -> MessageResponse:
    """Clear the session cookies and revoke the refresh token.

    Always succeeds once the origin check passes.
    """
    await _require_same_origin(http_request, state, context)
    tokens = state.cookies.read_tokens(http_request.cookies)
    await state.orchestrator.sign_out(response, tokens, context)
    return MessageResponse(message="Sesión cerrada")


@router.post("/refresh", response_model=RefreshResponse)
@limiter.limit(API_RATE_LIMIT)
async def refresh(
    request: Request,
    response: Response,
    state: SecurityState = Depends(get_security_state),
    context: RequestContext = Depends(get_client_context),
) -> RefreshResponse:
    """Reissue the access cookie from the refresh cookie."""
    tokens = state.cookies.read_tokens(request.cookies)
    try:
        result = await state.orchestrator.refresh_session(tokens.refresh, context)
    except AuthError as e:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=e.public_message) from e

    state.cookies.set_access_cookie(response, result.access_token)
    if result.refresh_token:
        state.cookies.set_refresh_cookie(response, result.refresh_token)

    return RefreshResponse(
        message="Sesión renovada",
        expires_in=ACCESS_TOKEN_TTL,
        rotated=result.refresh_token is not None,
    )


@router.get("/me", response_model=UserResponse)
@limiter.limit(API_RATE_LIMIT)
async def get_current_user_info(
    request: Request,
    identity: UserIdentity = Depends(get_current_identity),
    state: SecurityState = Depends(get_security_state),
) -> UserResponse:
    """Get the current user's profile."""
    profile = await state.orchestrator.get_profile(identity)
    return UserResponse(**profile.to_public_dict())


@router.get("/csrf", response_model=CSRFTokenResponse)
@limiter.limit(API_RATE_LIMIT)
async def issue_csrf_token(
    request: Request,
    response: Response,
    state: SecurityState = Depends(get_security_state),
) -> CSRFTokenResponse:
    """Issue a CSRF token as a script-readable cookie and in the body.

    Clients echo it in the ``x-csrf-token`` header on state-changing calls.
    """
    token = state.csrf.issue_token()
    response.set_cookie(
        CSRF_COOKIE,
        token,
        max_age=state.csrf.ttl,
        path="/",
        secure=state.cookies.secure,
        httponly=False,
        samesite="strict",
    )
    return CSRFTokenResponse(csrf_token=token, header_name=CSRF_HEADER, expires_in=state.csrf.ttl)


@router.post("/change-password", response_model=MessageResponse)
@limiter.limit(SENSITIVE_RATE_LIMIT)
async def change_password(
    request: Request,
    body: ChangePasswordRequest,
    response: Response,
    identity: UserIdentity = Depends(get_current_identity),
    state: SecurityState = Depends(get_security_state),
    context: RequestContext = Depends(get_client_context),
) -> MessageResponse:
    """Change the current user's password.

    Revokes every session of the user, this one included, so the user
    must sign in again.
    """
    try:
        await state.orchestrator.change_password(
            identity, body.current_password, body.new_password, context
        )
    except InsufficientPermissionError as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=e.public_message) from e
    except ValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    except InvalidCredentialsError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Contraseña actual incorrecta",
        ) from e
    except ProviderUnavailableError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=e.public_message) from e

    state.cookies.clear_auth_cookies(response)
    logger.info(f"Password changed for user: {identity.id}")
    return MessageResponse(message="Contraseña actualizada. Inicia sesión de nuevo.")


@router.get("/sessions", response_model=SessionListResponse)
@limiter.limit(API_RATE_LIMIT)
async def list_sessions(
    request: Request,
    identity: UserIdentity = Depends(get_current_identity),
    state: SecurityState = Depends(get_security_state),
) -> SessionListResponse:
    """List the active sessions of the current user."""
    records = await state.orchestrator.list_sessions(identity)
    sessions = [
        SessionResponse(
            id=record.id,
            created_at=record.created_at,
            expires_at=record.expires_at,
            device_info=record.device_info,
            ip_address=record.ip_address,
        )
        for record in records
    ]
    return SessionListResponse(sessions=sessions, total=len(sessions))


@router.delete("/sessions", response_model=MessageResponse)
@limiter.limit(SENSITIVE_RATE_LIMIT)
async def revoke_other_sessions(
    request: Request,
    identity: UserIdentity = Depends(get_current_identity),
    state: SecurityState = Depends(get_security_state),
    context: RequestContext = Depends(get_client_context),
) -> MessageResponse:
    """Sign out every other device, keeping the current session."""
    tokens = state.cookies.read_tokens(request.cookies)
    if not tokens.refresh:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No hay una sesión persistente activa",
        )
    await state.orchestrator.revoke_other_sessions(identity, tokens.refresh, context)
    return MessageResponse(message="Otras sesiones cerradas")
