"""System user and role models."""

from datetime import datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.dialects.postgresql import UUID as PGUUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from vipbar.models.base import BaseModel

if TYPE_CHECKING:
    from vipbar.models.refresh_token import RefreshToken


class UserRole(BaseModel):
    """A named role and its flat permission map (permission -> bool)."""

    __tablename__ = "user_roles"

    name: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    display_name: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    permissions: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False, default=dict)

    users: Mapped[list["SystemUser"]] = relationship(back_populates="role")

    def __repr__(self) -> str:
        return f"<UserRole {self.name}>"


class SystemUser(BaseModel):
    """A staff account that can sign in to the POS.

    ``failed_login_attempts`` and ``locked_until`` implement the per-account
    lockout; the auth core only ever updates those and ``last_login``.
    """

    __tablename__ = "system_users"

    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True, index=True)
    full_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Nullable so a half-provisioned account is detectable rather than unloadable
    role_id: Mapped[UUID | None] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("user_roles.id", ondelete="SET NULL"),
        nullable=True,
    )

    failed_login_attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    locked_until: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_login: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    role: Mapped[UserRole | None] = relationship(back_populates="users", lazy="joined")
    refresh_tokens: Mapped[list["RefreshToken"]] = relationship(
        back_populates="user", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<SystemUser {self.email}>"
