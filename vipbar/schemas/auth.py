"""Pydantic schemas for the authentication API."""

from datetime import datetime

from pydantic import BaseModel, Field


class LoginRequest(BaseModel):
    """Request for login.

    Field shape is checked by the sign-in flow itself so malformed input
    gets the same generic 400 as any other validation failure.
    """

    email: str | None = None
    password: str | None = None


class UserResponse(BaseModel):
    """Public view of the signed-in identity."""

    id: str
    email: str
    full_name: str
    role: str
    display_name: str
    permissions: dict[str, bool]
    is_demo: bool = False


class LoginResponse(BaseModel):
    """Response after successful sign-in. Tokens travel only in cookies."""

    user: UserResponse
    redirect_to: str
    is_demo: bool


class RefreshResponse(BaseModel):
    message: str
    expires_in: int = Field(description="Access token lifetime in seconds")
    rotated: bool = False


class CSRFTokenResponse(BaseModel):
    csrf_token: str
    header_name: str
    expires_in: int


class ChangePasswordRequest(BaseModel):
    """Request for password change."""

    current_password: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=1)


class SessionResponse(BaseModel):
    """An active refresh-token session. The token hash is never exposed."""

    id: str
    created_at: datetime
    expires_at: datetime
    device_info: str | None
    ip_address: str | None


class SessionListResponse(BaseModel):
    sessions: list[SessionResponse]
    total: int


class MessageResponse(BaseModel):
    """Generic message response."""

    message: str
