"""Demo accounts used when the credential store cannot serve a sign-in."""

import hmac
from dataclasses import dataclass

from vipbar.core.config import Settings
from vipbar.services.credential_store import UserIdentity

MANAGER_PERMISSIONS = (
    "view_products",
    "manage_products",
    "view_members",
    "manage_members",
    "process_payments",
    "view_reports",
    "manage_transactions",
)

CASHIER_PERMISSIONS = (
    "view_products",
    "process_payments",
    "view_members",
)


@dataclass(frozen=True)
class DemoUser:
    email: str
    password: str
    role: str
    full_name: str
    display_name: str
    permissions: tuple[str, ...] = ()

    @property
    def user_id(self) -> str:
        return f"demo-{self.role}"

    def to_identity(self) -> UserIdentity:
        return UserIdentity(
            id=self.user_id,
            email=self.email,
            full_name=self.full_name,
            role_name=self.role,
            display_name=self.display_name,
            permissions={name: True for name in self.permissions},
            is_demo=True,
        )


def build_demo_users(settings: Settings) -> list[DemoUser]:
    """Demo table with passwords taken from settings. Admin needs no explicit permissions."""
    return [
        DemoUser(
            email="admin@barvip.com",
            password=settings.demo_admin_password,
            role="admin",
            full_name="Administrador Demo",
            display_name="Administrador",
        ),
        DemoUser(
            email="manager@barvip.com",
            password=settings.demo_manager_password,
            role="manager",
            full_name="Gerente Demo",
            display_name="Gerente",
            permissions=MANAGER_PERMISSIONS,
        ),
        DemoUser(
            email="cashier@barvip.com",
            password=settings.demo_cashier_password,
            role="cashier",
            full_name="Cajero Demo",
            display_name="Cajero",
            permissions=CASHIER_PERMISSIONS,
        ),
    ]


def match_demo_user(users: list[DemoUser], email: str, password: str) -> DemoUser | None:
    """Find the demo user for these credentials. Passwords compare in constant time."""
    for user in users:
        if user.email == email and hmac.compare_digest(user.password.encode(), password.encode()):
            return user
    return None


def find_demo_user_by_id(users: list[DemoUser], user_id: str) -> DemoUser | None:
    for user in users:
        if user.user_id == user_id:
            return user
    return None
