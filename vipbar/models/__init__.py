# VIP Bar Models
from vipbar.models.base import BaseModel
from vipbar.models.refresh_token import RefreshToken
from vipbar.models.user import SystemUser, UserRole

__all__ = [
    "BaseModel",
    "RefreshToken",
    "SystemUser",
    "UserRole",
]
