"""Route classification and the API permission table."""

from dataclasses import dataclass
from enum import Enum

from vipbar.services.credential_store import UserIdentity
from vipbar.services.errors import InsufficientPermissionError

# Reachable without a session. CORS and header steps still apply.
PUBLIC_PATHS = frozenset(
    {
        "/",
        "/login",
        "/auth/callback",
        "/api/auth/login",
        "/api/auth/logout",
        "/api/auth/refresh",
        "/api/auth/csrf",
        "/health",
    }
)

# Browser pages that need a session
PROTECTED_PAGE_PREFIXES = (
    "/dashboard",
    "/pos",
    "/transactions",
    "/reports",
    "/settings",
    "/members",
    "/products",
    "/qr-codes",
    "/notifications",
    "/admin",
    "/users",
)

API_PREFIX = "/api/"

ALLOWED_METHODS = frozenset({"GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS", "HEAD"})

LOGIN_PATH = "/login"
DASHBOARD_PATH = "/dashboard"


class RouteKind(str, Enum):
    PUBLIC = "public"
    PROTECTED_PAGE = "protected_page"
    PROTECTED_API = "protected_api"
    UNPROTECTED = "unprotected"


@dataclass(frozen=True)
class RoutePolicy:
    """Access rule for one path and method.

    ``allow_demo`` routes only need a session, demo or real. Otherwise
    ``admin_only``, ``required_roles`` (any of) and ``required_permissions``
    (all of) are checked in that order.
    """

    required_permissions: tuple[str, ...] = ()
    required_roles: tuple[str, ...] = ()
    admin_only: bool = False
    allow_demo: bool = False


def _perm(*names: str) -> RoutePolicy:
    return RoutePolicy(required_permissions=names)


_ADMIN = RoutePolicy(admin_only=True)
_ANY_SESSION = RoutePolicy(allow_demo=True)

API_ROUTE_PERMISSIONS: dict[str, dict[str, RoutePolicy]] = {
    "/api/auth/login": {"POST": _ANY_SESSION},
    "/api/auth/logout": {"POST": _ANY_SESSION},
    "/api/auth/refresh": {"POST": _ANY_SESSION},
    "/api/auth/csrf": {"GET": _ANY_SESSION},
    "/api/auth/me": {"GET": _ANY_SESSION},
    "/api/auth/change-password": {"POST": _ANY_SESSION},
    "/api/auth/sessions": {"GET": _ANY_SESSION, "DELETE": _ANY_SESSION},
    "/api/upload": {"POST": _perm("manage_products")},
    "/api/upload/avatar": {"POST": _perm("manage_users")},
    "/api/notifications/send": {"POST": _perm("manage_notifications")},
    "/api/notifications/process": {
        "GET": _perm("manage_notifications"),
        "POST": _perm("manage_notifications"),
    },
    "/api/products": {
        "GET": _perm("view_products"),
        "POST": _perm("manage_products"),
        "PUT": _perm("manage_products"),
        "DELETE": _perm("manage_products"),
    },
    "/api/members": {
        "GET": _perm("view_members"),
        "POST": _perm("manage_members"),
        "PUT": _perm("manage_members"),
        "DELETE": _perm("manage_members"),
    },
    "/api/transactions": {
        "GET": _perm("view_reports"),
        "POST": _perm("process_payments"),
        "PUT": _perm("manage_transactions"),
        "DELETE": _ADMIN,
    },
    "/api/reports": {
        "GET": _perm("view_reports"),
        "POST": _perm("view_reports"),
    },
    "/api/settings": {
        "GET": _perm("view_settings"),
        "POST": _perm("manage_settings"),
        "PUT": _perm("manage_settings"),
        "DELETE": _ADMIN,
    },
    "/api/users": {
        "GET": _ADMIN,
        "POST": _ADMIN,
        "PUT": _ADMIN,
        "DELETE": _ADMIN,
    },
    "/api/rewards": {
        "GET": _perm("view_rewards"),
        "POST": _perm("manage_rewards"),
        "PUT": _perm("manage_rewards"),
        "DELETE": _perm("manage_rewards"),
    },
    "/api/security": {"GET": _ADMIN},
}

# Browser pages with requirements beyond a session. A miss redirects to the dashboard.
PAGE_ROUTE_POLICIES: dict[str, RoutePolicy] = {
    "/admin": _ADMIN,
    "/users": _ADMIN,
    "/settings": _perm("view_settings"),
    "/reports": _perm("view_reports"),
}


def _under(path: str, prefix: str) -> bool:
    """Exact or segment-boundary prefix match."""
    return path == prefix or path.startswith(prefix.rstrip("/") + "/")


def classify(path: str) -> RouteKind:
    if path in PUBLIC_PATHS:
        return RouteKind.PUBLIC
    if path.startswith(API_PREFIX):
        return RouteKind.PROTECTED_API
    if any(_under(path, prefix) for prefix in PROTECTED_PAGE_PREFIXES):
        return RouteKind.PROTECTED_PAGE
    return RouteKind.UNPROTECTED


def match_route(path: str) -> str | None:
    """Longest table entry that ``path`` falls under, if any."""
    best = None
    for route in API_ROUTE_PERMISSIONS:
        if _under(path, route) and (best is None or len(route) > len(best)):
            best = route
    return best


def is_method_allowed(path: str, method: str) -> bool:
    """Global allow-list, then the methods listed for the matched route.

    OPTIONS and HEAD pass the route check since every route answers them.
    """
    method = method.upper()
    if method not in ALLOWED_METHODS:
        return False
    if method in ("OPTIONS", "HEAD"):
        return True
    route = match_route(path)
    if route is None:
        return True
    return method in API_ROUTE_PERMISSIONS[route]


def get_policy(path: str, method: str) -> RoutePolicy | None:
    if not path.startswith(API_PREFIX):
        for prefix, policy in PAGE_ROUTE_POLICIES.items():
            if _under(path, prefix):
                return policy
        return None

    route = match_route(path)
    if route is None:
        return None
    method = method.upper()
    if method == "HEAD":
        method = "GET"
    return API_ROUTE_PERMISSIONS[route].get(method)


def check_policy(identity: UserIdentity, policy: RoutePolicy) -> None:
    if policy.allow_demo:
        return

    if policy.admin_only and not identity.is_admin:
        raise InsufficientPermissionError(f"Admin access required, role is {identity.role_name}")

    if policy.required_roles and not identity.is_admin and identity.role_name not in policy.required_roles:
        raise InsufficientPermissionError(
            f"Role {identity.role_name} not in {', '.join(policy.required_roles)}"
        )

    missing = [p for p in policy.required_permissions if not identity.has_permission(p)]
    if missing:
        raise InsufficientPermissionError(f"Missing permissions: {', '.join(missing)}")


def authorize(identity: UserIdentity, path: str, method: str) -> None:
    """Check ``identity`` against the table entry for ``path`` and ``method``.

    Paths with no table entry only need a session.

    Raises:
        InsufficientPermissionError: role or permission mismatch
    """
    policy = get_policy(path, method)
    if policy is None:
        return
    check_policy(identity, policy)
