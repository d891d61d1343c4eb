# VIP Bar API Schemas
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
from vipbar.schemas.security import (
    SecurityEventListResponse,
    SecurityEventResponse,
    SecurityStatsResponse,
)

__all__ = [
    "ChangePasswordRequest",
    "CSRFTokenResponse",
    "LoginRequest",
    "LoginResponse",
    "MessageResponse",
    "RefreshResponse",
    "SecurityEventListResponse",
    "SecurityEventResponse",
    "SecurityStatsResponse",
    "SessionListResponse",
    "SessionResponse",
    "UserResponse",
]
