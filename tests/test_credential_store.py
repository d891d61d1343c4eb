"""Tests for the in-memory credential store and password hashing."""

from datetime import timedelta

import pytest

from tests.conftest import CASHIER_ID, MANAGER_ID, TEST_PASSWORD
from vipbar.services.credential_store import (
    MAX_FAILED_ATTEMPTS,
    UserIdentity,
    hash_password,
    utcnow,
    verify_password_hash,
)
from vipbar.services.errors import InvalidCredentialsError
from vipbar.services.tokens import hash_token


class TestPasswordHashing:
    def test_hash_is_argon2id(self):
        hashed = hash_password("barpass2024")
        assert hashed.startswith("$argon2id$")
        assert verify_password_hash("barpass2024", hashed)

    def test_wrong_password(self):
        assert not verify_password_hash("nope-nope", hash_password("barpass2024"))

    def test_garbage_hash_is_a_mismatch(self):
        assert not verify_password_hash("barpass2024", "not-a-hash")


class TestUserIdentity:
    def test_admin_has_every_permission(self):
        admin = UserIdentity(id="1", email="a@b.co", full_name="", role_name="admin")
        assert admin.is_admin
        assert admin.has_permission("manage_users")

    def test_spanish_admin_role_counts(self):
        admin = UserIdentity(id="1", email="a@b.co", full_name="", role_name="administrador")
        assert admin.is_admin

    def test_permission_must_be_exactly_true(self):
        user = UserIdentity(
            id="1",
            email="a@b.co",
            full_name="",
            role_name="cashier",
            permissions={"view_products": True, "view_reports": False},
        )
        assert user.has_permission("view_products")
        assert not user.has_permission("view_reports")
        assert not user.has_permission("manage_users")

    def test_lock_expires(self):
        user = UserIdentity(
            id="1",
            email="a@b.co",
            full_name="",
            role_name="cashier",
            locked_until=utcnow() + timedelta(minutes=5),
        )
        assert user.is_locked()
        assert not user.is_locked(now=utcnow() + timedelta(minutes=6))


class TestInMemoryCredentialStore:
    """Tests for InMemoryCredentialStore."""

    @pytest.mark.asyncio
    async def test_verify_password(self, credential_store):
        assert await credential_store.verify_password("caja@barvip.com", TEST_PASSWORD)
        assert await credential_store.verify_password("  CAJA@barvip.com ", TEST_PASSWORD)
        assert not await credential_store.verify_password("caja@barvip.com", "wrong-pass")

    @pytest.mark.asyncio
    async def test_unknown_email_fails_without_error(self, credential_store):
        assert not await credential_store.verify_password("nadie@barvip.com", TEST_PASSWORD)

    @pytest.mark.asyncio
    async def test_find_user_returns_copy(self, credential_store):
        user = await credential_store.find_user_by_email("caja@barvip.com")
        user.role_name = "admin"
        again = await credential_store.find_user_by_email("caja@barvip.com")
        assert again.role_name == "cashier"

    @pytest.mark.asyncio
    async def test_find_active_user_skips_inactive(self, credential_store):
        assert await credential_store.find_user_by_email("baja@barvip.com") is not None
        assert await credential_store.find_active_user_by_email("baja@barvip.com") is None

    @pytest.mark.asyncio
    async def test_refresh_token_stored_by_hash_only(self, credential_store):
        expires = utcnow() + timedelta(days=7)
        await credential_store.persist_refresh_token(CASHIER_ID, "raw-token-1", expires, "ua", "1.2.3.4")

        record = await credential_store.find_refresh_token("raw-token-1")
        assert record.token_hash == hash_token("raw-token-1")
        assert "raw-token-1" not in vars(record).values()
        assert record.device_info == "ua"
        assert record.ip_address == "1.2.3.4"

    @pytest.mark.asyncio
    async def test_token_validity_checks_owner(self, credential_store):
        await credential_store.persist_refresh_token(CASHIER_ID, "raw", utcnow() + timedelta(days=1))
        assert await credential_store.is_refresh_token_valid(CASHIER_ID, "raw")
        assert not await credential_store.is_refresh_token_valid(MANAGER_ID, "raw")
        assert not await credential_store.is_refresh_token_valid(CASHIER_ID, "other")

    @pytest.mark.asyncio
    async def test_expired_token_is_marked_revoked(self, credential_store):
        await credential_store.persist_refresh_token(CASHIER_ID, "raw", utcnow() - timedelta(seconds=1))

        assert not await credential_store.is_refresh_token_valid(CASHIER_ID, "raw")
        record = await credential_store.find_refresh_token("raw")
        assert record.is_revoked
        assert record.revoked_at is not None

    @pytest.mark.asyncio
    async def test_revoke_single_and_all(self, credential_store):
        expires = utcnow() + timedelta(days=1)
        for raw in ("t1", "t2", "t3"):
            await credential_store.persist_refresh_token(CASHIER_ID, raw, expires)

        assert await credential_store.revoke_refresh_token(CASHIER_ID, "t1")
        assert not await credential_store.is_refresh_token_valid(CASHIER_ID, "t1")
        assert await credential_store.is_refresh_token_valid(CASHIER_ID, "t2")

        await credential_store.revoke_refresh_token(CASHIER_ID)
        assert await credential_store.list_active_tokens(CASHIER_ID) == []

    @pytest.mark.asyncio
    async def test_revoke_rejects_other_users_token(self, credential_store):
        await credential_store.persist_refresh_token(CASHIER_ID, "t1", utcnow() + timedelta(days=1))
        assert not await credential_store.revoke_refresh_token(MANAGER_ID, "t1")
        assert await credential_store.is_refresh_token_valid(CASHIER_ID, "t1")

    @pytest.mark.asyncio
    async def test_revoke_other_tokens_keeps_current(self, credential_store):
        expires = utcnow() + timedelta(days=1)
        for raw in ("current", "laptop", "phone"):
            await credential_store.persist_refresh_token(CASHIER_ID, raw, expires)
        await credential_store.persist_refresh_token(MANAGER_ID, "manager", expires)

        await credential_store.revoke_other_tokens(CASHIER_ID, "current")

        active = await credential_store.list_active_tokens(CASHIER_ID)
        assert [r.token_hash for r in active] == [hash_token("current")]
        assert await credential_store.is_refresh_token_valid(MANAGER_ID, "manager")

    @pytest.mark.asyncio
    async def test_cleanup_removes_expired(self, credential_store):
        await credential_store.persist_refresh_token(CASHIER_ID, "old", utcnow() - timedelta(hours=1))
        await credential_store.persist_refresh_token(CASHIER_ID, "new", utcnow() + timedelta(hours=1))

        assert await credential_store.cleanup_expired_tokens() == 1
        assert await credential_store.find_refresh_token("old") is None
        assert await credential_store.find_refresh_token("new") is not None

    @pytest.mark.asyncio
    async def test_failed_attempts_lock_account(self, credential_store):
        for _ in range(MAX_FAILED_ATTEMPTS):
            await credential_store.record_failed_attempt(CASHIER_ID)

        user = await credential_store.get_user_by_id(CASHIER_ID)
        assert user.failed_login_attempts == MAX_FAILED_ATTEMPTS
        assert user.is_locked()

        await credential_store.reset_failed_attempts(CASHIER_ID)
        user = await credential_store.get_user_by_id(CASHIER_ID)
        assert user.failed_login_attempts == 0
        assert not user.is_locked()

    @pytest.mark.asyncio
    async def test_touch_last_login(self, credential_store):
        await credential_store.touch_last_login(CASHIER_ID)
        user = await credential_store.get_user_by_id(CASHIER_ID)
        assert user.last_login is not None

    @pytest.mark.asyncio
    async def test_change_password_revokes_sessions(self, credential_store):
        await credential_store.persist_refresh_token(CASHIER_ID, "t1", utcnow() + timedelta(days=1))

        await credential_store.change_password(CASHIER_ID, TEST_PASSWORD, "nueva-clave-9")

        assert await credential_store.verify_password("caja@barvip.com", "nueva-clave-9")
        assert not await credential_store.verify_password("caja@barvip.com", TEST_PASSWORD)
        assert not await credential_store.is_refresh_token_valid(CASHIER_ID, "t1")

    @pytest.mark.asyncio
    async def test_change_password_wrong_current(self, credential_store):
        with pytest.raises(InvalidCredentialsError):
            await credential_store.change_password(CASHIER_ID, "not-my-pass", "nueva-clave-9")
