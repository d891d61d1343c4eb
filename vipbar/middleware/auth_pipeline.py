"""Per-request authorization pipeline.

Runs ahead of every route, cheapest rejects first:

1. IP blocked by threat correlation -> 403
2. Method allow-list -> 405
3. CORS on /api/* -> 403 foreign origin, 400 state change with no origin
4. Coarse login throttle on POST /api/auth/login -> 429
5. Heuristic threat detection (log only, never blocks)
6. CSRF pairing on state-changing protected API calls -> 403
7. Session check with inline refresh -> 401 (API) / 302 to login (pages)
8. Route policy -> 403 (API) / 302 to dashboard (pages)

Security headers are added by the outer SecurityHeadersMiddleware.
"""

import logging
import re
from typing import TYPE_CHECKING
from urllib.parse import quote, unquote_plus

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import PlainTextResponse, RedirectResponse
from starlette.types import ASGIApp

from vipbar.core.request_utils import get_client_ip, get_user_agent
from vipbar.core.routes import (
    API_PREFIX,
    API_ROUTE_PERMISSIONS,
    DASHBOARD_PATH,
    LOGIN_PATH,
    RouteKind,
    authorize,
    classify,
    is_method_allowed,
    match_route,
)
from vipbar.services.auth import RefreshResult
from vipbar.services.credential_store import UserIdentity
from vipbar.services.csrf import CSRF_COOKIE, CSRF_HEADER, STATE_CHANGING_METHODS
from vipbar.services.errors import (
    CSRFRejectedError,
    InsufficientPermissionError,
    OriginRejectedError,
)
from vipbar.services.security_monitor import RequestContext, Severity

if TYPE_CHECKING:
    from vipbar.core.state import SecurityState

logger = logging.getLogger(__name__)

LOGIN_API_PATH = "/api/auth/login"

IDENTITY_HEADER_PREFIX = b"x-user-"

PATH_TRAVERSAL_MARKERS = ("../", "..\\", "%2e%2e")
SQL_IN_QUERY_PATTERN = re.compile(r"(\b(SELECT|INSERT|UPDATE|DELETE|DROP|UNION)\b|'|\"|;|--)", re.IGNORECASE)
SUSPICIOUS_AGENT_PATTERN = re.compile(r"bot|crawler|spider|scraper|curl|wget|python|php", re.IGNORECASE)


def _set_identity_headers(request: Request, identity: UserIdentity | None) -> None:
    """Drop client-supplied ``x-user-*`` headers and add the verified ones."""
    headers = [
        (name, value)
        for name, value in request.scope["headers"]
        if not name.lower().startswith(IDENTITY_HEADER_PREFIX)
    ]
    if identity is not None:
        headers.extend(
            [
                (b"x-user-id", identity.id.encode()),
                (b"x-user-role", identity.role_name.encode()),
                (b"x-user-email", identity.email.encode()),
            ]
        )
    request.scope["headers"] = headers


class AuthorizationMiddleware(BaseHTTPMiddleware):
    """Gate every request through the security pipeline."""

    def __init__(self, app: ASGIApp, state: "SecurityState"):
        super().__init__(app)
        self.state = state

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        state = self.state
        path = request.url.path
        method = request.method.upper()
        context = RequestContext(
            ip=get_client_ip(request, state.settings.trusted_proxies),
            user_agent=get_user_agent(request),
        )
        request.state.client_context = context
        request.state.identity = None
        _set_identity_headers(request, None)

        is_login = path == LOGIN_API_PATH and method == "POST"

        # Login requests from a blocked IP are answered by the throttle step
        if not is_login and state.monitor.is_ip_blocked(context.ip):
            logger.info(f"Rejected request from blocked IP {context.ip}: {method} {path}")
            return PlainTextResponse("Access denied", status_code=403)

        if not is_method_allowed(path, method):
            return self._method_not_allowed(path)

        if path.startswith(API_PREFIX):
            rejection = await self._check_cors(request, method, path, context)
            if rejection is not None:
                return rejection

        if is_login:
            rejection = await self._throttle_login(context)
            if rejection is not None:
                return rejection

        await self._detect_suspicious_activity(request, path, method, context)

        kind = classify(path)
        if kind in (RouteKind.PUBLIC, RouteKind.UNPROTECTED) or method == "OPTIONS":
            return await call_next(request)

        if (
            kind is RouteKind.PROTECTED_API
            and method in STATE_CHANGING_METHODS
            and state.settings.csrf_protection_enabled
        ):
            try:
                state.csrf.validate(request.cookies.get(CSRF_COOKIE), request.headers.get(CSRF_HEADER))
            except CSRFRejectedError as e:
                await state.monitor.log_context_event(
                    "csrf_validation_failed",
                    context,
                    details={"path": path, "method": method, "error": str(e)},
                    severity=Severity.HIGH,
                )
                return PlainTextResponse("Invalid CSRF token", status_code=403)

        tokens = state.cookies.read_tokens(request.cookies)
        if tokens.empty:
            await state.monitor.log_context_event(
                "unauthorized_access_attempt",
                context,
                details={"path": path},
                severity=Severity.MEDIUM,
            )
            return self._unauthenticated(path, kind)

        identity, refreshed = await state.orchestrator.authenticate_request(tokens, context)
        if identity is None:
            await state.monitor.log_context_event(
                "invalid_token_access",
                context,
                details={"path": path},
                severity=Severity.HIGH,
            )
            response = self._unauthenticated(path, kind)
            state.cookies.clear_auth_cookies(response)
            return response

        try:
            authorize(identity, path, method)
        except InsufficientPermissionError as e:
            await state.monitor.log_context_event(
                "insufficient_permissions",
                context,
                details={
                    "path": path,
                    "method": method,
                    "userId": identity.id,
                    "role": identity.role_name,
                    "error": str(e),
                },
                severity=Severity.MEDIUM,
            )
            if kind is RouteKind.PROTECTED_API:
                response = PlainTextResponse(e.public_message, status_code=403)
            else:
                response = RedirectResponse(DASHBOARD_PATH, status_code=302)
            self._write_refreshed_cookies(response, refreshed)
            return response

        _set_identity_headers(request, identity)
        request.state.identity = identity

        response = await call_next(request)
        self._write_refreshed_cookies(response, refreshed)
        return response

    def _method_not_allowed(self, path: str) -> Response:
        headers = {}
        route = match_route(path)
        if route is not None:
            headers["Allow"] = ", ".join(sorted(API_ROUTE_PERMISSIONS[route]))
        return PlainTextResponse("Method Not Allowed", status_code=405, headers=headers)

    async def _check_cors(
        self, request: Request, method: str, path: str, context: RequestContext
    ) -> Response | None:
        origin = request.headers.get("origin")
        referer = request.headers.get("referer")
        try:
            self.state.origin_guard.check_cors(method, origin, referer)
        except OriginRejectedError as e:
            if e.status_code == 403:
                await self.state.monitor.log_context_event(
                    "cors_violation",
                    context,
                    details={"origin": origin, "path": path},
                    severity=Severity.HIGH,
                )
                return PlainTextResponse("CORS Error: Origin not allowed", status_code=403)
            await self.state.monitor.log_context_event(
                "missing_origin_headers",
                context,
                details={"path": path, "method": method},
                severity=Severity.MEDIUM,
            )
            return PlainTextResponse("Missing origin headers", status_code=e.status_code)
        return None

    async def _throttle_login(self, context: RequestContext) -> Response | None:
        monitor = self.state.monitor

        if monitor.is_ip_blocked(context.ip):
            retry_after = monitor.block_remaining(context.ip)
            await monitor.log_context_event(
                "login_rate_limit_exceeded",
                context,
                details={"reason": "ip_blocked", "penaltyTime": retry_after},
                severity=Severity.HIGH,
            )
            return self._too_many_attempts(retry_after)

        decision = self.state.login_throttle.check(context.ip)
        if decision.allowed:
            return None

        await monitor.log_context_event(
            "login_rate_limit_exceeded",
            context,
            details={
                "attempts": decision.attempts,
                "consecutiveFailures": decision.consecutive_violations,
                "penaltyTime": decision.retry_after,
            },
            severity=Severity.HIGH,
        )
        await monitor.log_context_event(
            "rate_limit_exceeded",
            context,
            details={"path": LOGIN_API_PATH, "retry_after": decision.retry_after},
            severity=Severity.MEDIUM,
        )
        return self._too_many_attempts(decision.retry_after)

    @staticmethod
    def _too_many_attempts(retry_after: int) -> Response:
        return PlainTextResponse(
            "Too many login attempts. Try again later.",
            status_code=429,
            headers={"Retry-After": str(retry_after)},
        )

    async def _detect_suspicious_activity(
        self, request: Request, path: str, method: str, context: RequestContext
    ) -> None:
        """Log traversal, injection-shaped queries and scraper agents. Never blocks."""
        monitor = self.state.monitor
        raw_path = request.scope.get("raw_path", b"").decode("latin-1").lower()

        if any(marker in path or marker in raw_path for marker in PATH_TRAVERSAL_MARKERS):
            await monitor.log_context_event(
                "path_traversal_attempt",
                context,
                details={"path": path, "method": method},
                severity=Severity.HIGH,
            )

        query = unquote_plus(request.url.query)
        if query and SQL_IN_QUERY_PATTERN.search(query):
            await monitor.log_context_event(
                "sql_injection_attempt_url",
                context,
                details={"path": path, "searchParams": query[:200]},
                severity=Severity.HIGH,
            )

        if not path.startswith(API_PREFIX) and SUSPICIOUS_AGENT_PATTERN.search(context.user_agent):
            await monitor.log_context_event(
                "suspicious_user_agent",
                context,
                details={"path": path},
                severity=Severity.LOW,
            )

    def _unauthenticated(self, path: str, kind: RouteKind) -> Response:
        if kind is RouteKind.PROTECTED_API:
            return PlainTextResponse("Authentication required", status_code=401)
        return RedirectResponse(f"{LOGIN_PATH}?redirectTo={quote(path)}", status_code=302)

    def _write_refreshed_cookies(self, response: Response, refreshed: RefreshResult | None) -> None:
        if refreshed is None:
            return
        self.state.cookies.set_access_cookie(response, refreshed.access_token)
        if refreshed.refresh_token:
            self.state.cookies.set_refresh_cookie(response, refreshed.refresh_token)
