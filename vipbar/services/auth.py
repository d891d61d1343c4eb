"""Sign-in, sign-out, session refresh and identity use cases.

Sign-in is a short chain of steps. Each step returns a tagged ``AuthStep``
instead of raising, and the orchestrator composes them:

    provider -> (fallback) demo -> (fail) error

Disabled and locked accounts are decided inside the provider step and come
back as ``fail``, so they can never reach the demo step.
"""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from enum import Enum

from starlette.responses import Response

from vipbar.core.config import Settings
from vipbar.services.cookies import SessionCookieManager, SessionTokens
from vipbar.services.credential_store import (
    CredentialStore,
    InMemoryCredentialStore,
    PersistedRefreshToken,
    UserIdentity,
)
from vipbar.services.demo import DemoUser, build_demo_users, find_demo_user_by_id, match_demo_user
from vipbar.services.errors import (
    AccountDisabledError,
    AccountLockedError,
    AuthError,
    InsufficientPermissionError,
    InvalidCredentialsError,
    InvalidTokenError,
    ProfileIntegrityError,
    ProviderRateLimitedError,
    ProviderUnavailableError,
    RateLimitedError,
    RevokedTokenError,
    StoreQueryError,
    ValidationError,
)
from vipbar.services.login_rate_limiter import WINDOW_SECONDS, LoginRateLimiter
from vipbar.services.security_monitor import RequestContext, SecurityMonitor, Severity
from vipbar.services.tokens import REFRESH_TOKEN_TTL, AccessTokenClaims, TokenCodec
from vipbar.services.validation import (
    MAX_PASSWORD_LENGTH,
    MIN_PASSWORD_LENGTH,
    detect_threats,
    validate_credentials,
)

logger = logging.getLogger(__name__)

DEFAULT_REDIRECT = "/dashboard"
DEMO_ID_PREFIX = "demo-"


class StepKind(str, Enum):
    SUCCESS = "success"
    FALLBACK = "fallback"
    FAIL = "fail"


@dataclass
class AuthStep:
    """Outcome of one sign-in step."""

    kind: StepKind
    identity: UserIdentity | None = None
    error: AuthError | None = None
    reason: str | None = None

    @classmethod
    def success(cls, identity: UserIdentity) -> "AuthStep":
        return cls(StepKind.SUCCESS, identity=identity)

    @classmethod
    def fallback(cls, reason: str) -> "AuthStep":
        return cls(StepKind.FALLBACK, reason=reason)

    @classmethod
    def fail(cls, error: AuthError) -> "AuthStep":
        return cls(StepKind.FAIL, error=error)


@dataclass
class SignInResult:
    identity: UserIdentity
    access_token: str
    refresh_token: str
    redirect_to: str = DEFAULT_REDIRECT
    is_demo: bool = False


@dataclass
class RefreshResult:
    access_token: str
    claims: AccessTokenClaims
    identity: UserIdentity
    refresh_token: str | None = None


def identity_from_claims(claims: AccessTokenClaims) -> UserIdentity:
    """Identity derived from access-token claims alone, with no store round-trip."""
    return UserIdentity(
        id=claims.user_id,
        email=claims.email,
        full_name="",
        role_name=claims.role,
        permissions=claims.permissions,
        is_demo=claims.user_id.startswith(DEMO_ID_PREFIX),
    )


class AuthOrchestrator:
    """Composes codec, store, limiter, cookies and monitor into the auth use cases.

    ``store`` is None when no credential store is configured; sign-in then
    goes straight to demo mode. Refresh tokens of demo identities are kept
    in ``demo_registry`` since they have no row in the real store.
    """

    def __init__(
        self,
        settings: Settings,
        codec: TokenCodec,
        cookies: SessionCookieManager,
        limiter: LoginRateLimiter,
        monitor: SecurityMonitor,
        store: CredentialStore | None = None,
        demo_registry: InMemoryCredentialStore | None = None,
        demo_users: list[DemoUser] | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.settings = settings
        self.codec = codec
        self.cookies = cookies
        self.limiter = limiter
        self.monitor = monitor
        self.store = store
        self.demo_registry = demo_registry or InMemoryCredentialStore()
        self.demo_users = demo_users if demo_users is not None else build_demo_users(settings)
        self.clock = clock

    def _utcnow(self) -> datetime:
        return datetime.fromtimestamp(self.clock(), UTC)

    def _registry_for(self, user_id: str) -> CredentialStore:
        """Token store that owns refresh tokens for ``user_id``."""
        if user_id.startswith(DEMO_ID_PREFIX) or self.store is None:
            return self.demo_registry
        return self.store

    # --- sign-in ---

    async def sign_in(
        self,
        email: str | None,
        password: str | None,
        context: RequestContext,
        response: Response | None = None,
    ) -> SignInResult:
        """Authenticate, issue the token pair and set the session cookies.

        Raises:
            ValidationError: malformed input (limiter and store untouched)
            RateLimitedError: email or IP is blocked
            InvalidCredentialsError: wrong credentials, real or demo
            AccountDisabledError / AccountLockedError: never fall back
            ProviderUnavailableError: store down and demo mode disabled
        """
        try:
            email, password = validate_credentials(email, password)
        except ValidationError:
            await self._report_malicious_input(email, password, context)
            raise

        check = self.limiter.check_login_attempt(email, context.ip)
        if not check.allowed:
            retry_after = check.retry_after or WINDOW_SECONDS
            await self.monitor.log_context_event(
                "rate_limit_exceeded",
                context,
                details={"email": email, "reason": check.reason, "retry_after": retry_after},
                severity=Severity.MEDIUM,
            )
            raise RateLimitedError(retry_after, check.reason)

        succeeded = False
        try:
            step = await self._try_provider(email, password, context)
            if step.kind is StepKind.FALLBACK:
                logger.info(f"Sign-in falling back to demo mode ({step.reason})")
                step = await self._try_demo(email, password, context)

            if step.kind is StepKind.FAIL:
                await self._on_failure(email, step.error, context)
                raise step.error

            result = await self._complete_sign_in(step.identity, context, response)
            succeeded = True
            return result
        finally:
            await self.limiter.record_login_attempt(
                email, context.ip, succeeded, context.user_agent
            )

    async def _report_malicious_input(
        self, email: str | None, password: str | None, context: RequestContext
    ) -> None:
        threats = sorted(set(detect_threats(email or "")) | set(detect_threats(password or "")))
        # Plain formatting mistakes are not worth an event
        if not {"sql_injection", "xss"} & set(threats):
            return
        await self.monitor.log_context_event(
            "malicious_input_detected",
            context,
            details={"action": "sign_in", "threats": threats, "input": (email or "")[:100]},
            severity=Severity.HIGH,
        )

    async def _try_provider(self, email: str, password: str, context: RequestContext) -> AuthStep:
        if self.store is None:
            return AuthStep.fallback("provider_unconfigured")

        try:
            valid = await self.store.verify_password(email, password)
        except ProviderUnavailableError as e:
            await self._report_provider_failure(email, e, context)
            return AuthStep.fallback("provider_unavailable")

        if not valid:
            return AuthStep.fail(InvalidCredentialsError("Password verification failed"))

        try:
            user = await self.store.find_user_by_email(email)
        except ProviderUnavailableError as e:
            await self._report_provider_failure(email, e, context)
            return AuthStep.fallback("provider_unavailable")
        except ProfileIntegrityError as e:
            await self.monitor.log_context_event(
                "profile_integrity_error",
                context,
                details={"email": email, "error": str(e)},
                severity=Severity.HIGH,
            )
            return AuthStep.fallback("profile_incomplete")

        if user is None:
            await self.monitor.log_context_event(
                "profile_integrity_error",
                context,
                details={"email": email, "error": "Profile not found"},
                severity=Severity.HIGH,
            )
            return AuthStep.fallback("profile_missing")

        if not user.is_active:
            await self.monitor.log_context_event(
                "inactive_user_login_attempt",
                context,
                details={"email": email, "userId": user.id},
                severity=Severity.HIGH,
            )
            return AuthStep.fail(AccountDisabledError(f"User {user.id} is inactive"))

        if user.is_locked(now=self._utcnow()):
            await self.monitor.log_context_event(
                "locked_account_login_attempt",
                context,
                details={
                    "email": email,
                    "userId": user.id,
                    "lockedUntil": user.locked_until.isoformat(),
                },
                severity=Severity.HIGH,
            )
            return AuthStep.fail(AccountLockedError(f"User {user.id} is locked"))

        return AuthStep.success(user)

    async def _report_provider_failure(
        self, email: str, error: ProviderUnavailableError, context: RequestContext
    ) -> None:
        if isinstance(error, StoreQueryError):
            await self.monitor.log_context_event(
                "provider_query_failed",
                context,
                details={"email": email, "error": str(error)},
                severity=Severity.HIGH,
            )
            return
        rate_limited = isinstance(error, ProviderRateLimitedError)
        await self.monitor.log_context_event(
            "provider_unavailable",
            context,
            details={"email": email, "error": str(error), "rate_limited": rate_limited},
            severity=Severity.HIGH if rate_limited else Severity.MEDIUM,
        )

    async def _try_demo(self, email: str, password: str, context: RequestContext) -> AuthStep:
        if not self.settings.demo_mode_enabled:
            return AuthStep.fail(ProviderUnavailableError("Credential store down and demo mode disabled"))

        demo_user = match_demo_user(self.demo_users, email, password)
        if demo_user is None:
            await self.monitor.log_context_event(
                "demo_login_failed",
                context,
                details={"email": email, "attempted_role": "unknown"},
                severity=Severity.MEDIUM,
            )
            return AuthStep.fail(InvalidCredentialsError("Demo credentials did not match"))

        await self.monitor.log_context_event(
            "demo_login_success",
            context,
            details={"email": demo_user.email, "role": demo_user.role},
            severity=Severity.LOW,
        )
        return AuthStep.success(demo_user.to_identity())

    async def _on_failure(self, email: str, error: AuthError, context: RequestContext) -> None:
        if not isinstance(error, InvalidCredentialsError):
            return

        await self.monitor.log_context_event(
            "login_failed",
            context,
            details={"email": email, "reason": str(error)},
            severity=Severity.MEDIUM,
        )

        if self.store is None:
            return
        try:
            user = await self.store.find_user_by_email(email)
            if user is not None:
                await self.store.record_failed_attempt(user.id)
        except (ProviderUnavailableError, ProfileIntegrityError) as e:
            logger.warning(f"Could not record failed attempt for {email}: {e}")

    async def _complete_sign_in(
        self, identity: UserIdentity, context: RequestContext, response: Response | None
    ) -> SignInResult:
        access = self.codec.issue_access_token(
            identity.id, identity.email, identity.role_name, identity.permissions
        )
        refresh = self.codec.issue_refresh_token(identity.id)

        await self._registry_for(identity.id).persist_refresh_token(
            identity.id,
            refresh,
            self._utcnow() + timedelta(seconds=REFRESH_TOKEN_TTL),
            device_info=context.user_agent,
            ip_address=context.ip,
        )

        if response is not None:
            self.cookies.set_auth_cookies(response, access, refresh)

        if not identity.is_demo and self.store is not None:
            try:
                await self.store.reset_failed_attempts(identity.id)
                await self.store.touch_last_login(identity.id)
            except ProviderUnavailableError as e:
                logger.warning(f"Could not update login bookkeeping for {identity.id}: {e}")

        await self.monitor.log_context_event(
            "login_success",
            context,
            details={
                "email": identity.email,
                "userId": identity.id,
                "role": identity.role_name,
                "is_demo": identity.is_demo,
            },
            severity=Severity.LOW,
        )
        logger.info(f"User signed in: {identity.email} (demo={identity.is_demo})")

        return SignInResult(
            identity=identity,
            access_token=access,
            refresh_token=refresh,
            is_demo=identity.is_demo,
        )

    # --- sign-out ---

    async def sign_out(
        self,
        response: Response | None,
        tokens: SessionTokens,
        context: RequestContext,
    ) -> None:
        """Clear cookies, then revoke the refresh token if possible. Never raises."""
        if response is not None:
            self.cookies.clear_auth_cookies(response)

        user_id = None
        if tokens.refresh:
            registries = [self.demo_registry] + ([self.store] if self.store is not None else [])
            for registry in registries:
                try:
                    record = await registry.find_refresh_token(tokens.refresh)
                    if record is not None:
                        user_id = record.user_id
                        await registry.revoke_refresh_token(record.user_id, tokens.refresh)
                        break
                except Exception as e:
                    logger.warning(f"Refresh token revocation failed during sign-out: {e}")

        await self.monitor.log_context_event(
            "logout",
            context,
            details={"userId": user_id},
            severity=Severity.LOW,
        )

    # --- refresh ---

    async def refresh_session(self, refresh_token: str | None, context: RequestContext) -> RefreshResult:
        """Reissue an access token from a refresh token.

        With ``refresh_token_rotation`` on, the refresh token is replaced too
        and presenting a revoked one revokes every session of its user.

        Raises:
            InvalidTokenError: bad, unknown or expired token, or inactive user
            RevokedTokenError: token was revoked server-side
        """
        if not refresh_token:
            raise InvalidTokenError("No refresh token")

        try:
            claims = await self.codec.verify_refresh_token(refresh_token, context)
        except InvalidTokenError as e:
            await self.monitor.log_context_event(
                "invalid_refresh_token",
                context,
                details={"error": str(e)},
                severity=Severity.MEDIUM,
            )
            raise

        registry = self._registry_for(claims.user_id)
        record = await registry.find_refresh_token(refresh_token)
        if record is not None and record.is_revoked and record.user_id == claims.user_id:
            await self._handle_revoked_token(registry, claims.user_id, context)
            raise RevokedTokenError("Refresh token has been revoked")

        if not await registry.is_refresh_token_valid(claims.user_id, refresh_token):
            await self.monitor.log_context_event(
                "invalid_refresh_token",
                context,
                details={"userId": claims.user_id, "error": "Token not found or expired"},
                severity=Severity.MEDIUM,
            )
            raise InvalidTokenError("Refresh token not recognized")

        identity = await self._load_identity(claims.user_id)
        if identity is None or not identity.is_active:
            await self.monitor.log_context_event(
                "inactive_user_token_refresh",
                context,
                details={"userId": claims.user_id},
                severity=Severity.MEDIUM,
            )
            raise InvalidTokenError("User not found or inactive")

        access = self.codec.issue_access_token(
            identity.id, identity.email, identity.role_name, identity.permissions
        )
        access_claims = await self.codec.verify_access_token(access, context)

        rotated = None
        if self.settings.refresh_token_rotation:
            rotated = self.codec.issue_refresh_token(identity.id)
            await registry.revoke_refresh_token(identity.id, refresh_token)
            await registry.persist_refresh_token(
                identity.id,
                rotated,
                self._utcnow() + timedelta(seconds=REFRESH_TOKEN_TTL),
                device_info=context.user_agent,
                ip_address=context.ip,
            )

        await self.monitor.log_context_event(
            "token_refreshed",
            context,
            details={"userId": identity.id, "rotated": rotated is not None},
            severity=Severity.LOW,
        )
        return RefreshResult(
            access_token=access,
            claims=access_claims,
            identity=identity,
            refresh_token=rotated,
        )

    async def _handle_revoked_token(
        self, registry: CredentialStore, user_id: str, context: RequestContext
    ) -> None:
        await self.monitor.log_context_event(
            "revoked_refresh_token_used",
            context,
            details={"userId": user_id},
            severity=Severity.HIGH,
        )
        if not self.settings.refresh_token_rotation:
            return
        # A rotated-out token coming back means it was copied; end every session
        await registry.revoke_refresh_token(user_id)
        await self.monitor.log_context_event(
            "refresh_token_reuse_detected",
            context,
            details={"userId": user_id, "action": "all_sessions_revoked"},
            severity=Severity.CRITICAL,
        )

    async def _load_identity(self, user_id: str) -> UserIdentity | None:
        if user_id.startswith(DEMO_ID_PREFIX):
            if not self.settings.demo_mode_enabled:
                return None
            demo_user = find_demo_user_by_id(self.demo_users, user_id)
            return demo_user.to_identity() if demo_user else None
        if self.store is None:
            return None
        return await self.store.get_user_by_id(user_id)

    # --- identity ---

    async def _identity_from_access(
        self, access_token: str | None, context: RequestContext
    ) -> UserIdentity | None:
        if not access_token:
            return None
        try:
            claims = await self.codec.verify_access_token(access_token, context)
        except InvalidTokenError as e:
            logger.debug(f"Access token unusable: {e}")
            return None
        return identity_from_claims(claims)

    async def get_current_identity(
        self, tokens: SessionTokens, context: RequestContext
    ) -> UserIdentity | None:
        """Identity for the current session, or None. Issues nothing.

        A valid access token is enough on its own. The store is consulted
        only when the access token is missing or no longer verifies.
        """
        identity = await self._identity_from_access(tokens.access, context)
        if identity is not None or not tokens.refresh:
            return identity

        try:
            claims = await self.codec.verify_refresh_token(tokens.refresh, context)
        except InvalidTokenError:
            return None

        try:
            if not await self._registry_for(claims.user_id).is_refresh_token_valid(
                claims.user_id, tokens.refresh
            ):
                return None
            identity = await self._load_identity(claims.user_id)
        except (ProviderUnavailableError, ProfileIntegrityError) as e:
            logger.warning(f"Could not resolve session for {claims.user_id}: {e}")
            return None

        if identity is None or not identity.is_active:
            return None
        return identity

    async def authenticate_request(
        self, tokens: SessionTokens, context: RequestContext
    ) -> tuple[UserIdentity | None, RefreshResult | None]:
        """Identity for a request, refreshing inline when the access token is unusable.

        Returns the refresh result alongside the identity when new tokens were
        issued, so the caller can write them back as cookies.
        """
        identity = await self._identity_from_access(tokens.access, context)
        if identity is not None:
            return identity, None

        if tokens.refresh:
            try:
                result = await self.refresh_session(tokens.refresh, context)
                return result.identity, result
            except AuthError as e:
                logger.info(f"Inline refresh failed: {e}")

        return None, None

    async def get_profile(self, identity: UserIdentity) -> UserIdentity:
        """Full profile for an identity built from token claims.

        Falls back to the claims-only identity when the store cannot serve it.
        """
        try:
            profile = await self._load_identity(identity.id)
        except (ProviderUnavailableError, ProfileIntegrityError) as e:
            logger.warning(f"Profile lookup failed for {identity.id}: {e}")
            return identity
        return profile if profile is not None else identity

    # --- account management ---

    async def change_password(
        self,
        identity: UserIdentity,
        current_password: str,
        new_password: str,
        context: RequestContext,
    ) -> None:
        """Change the password and revoke every session of the user.

        Raises:
            InsufficientPermissionError: demo identities cannot change passwords
            ValidationError: new password outside the length bounds
            InvalidCredentialsError: current password is wrong
        """
        if identity.is_demo:
            raise InsufficientPermissionError("Demo accounts cannot change passwords")
        if not MIN_PASSWORD_LENGTH <= len(new_password) <= MAX_PASSWORD_LENGTH:
            raise ValidationError("Contraseña con longitud inválida")
        if self.store is None:
            raise ProviderUnavailableError("No credential store configured")

        try:
            await self.store.change_password(identity.id, current_password, new_password)
        except InvalidCredentialsError:
            await self.monitor.log_context_event(
                "password_change_failed",
                context,
                details={"userId": identity.id},
                severity=Severity.MEDIUM,
            )
            raise

        await self.monitor.log_context_event(
            "password_changed",
            context,
            details={"userId": identity.id},
            severity=Severity.MEDIUM,
        )

    async def revoke_other_sessions(
        self, identity: UserIdentity, current_refresh: str, context: RequestContext
    ) -> None:
        await self._registry_for(identity.id).revoke_other_tokens(identity.id, current_refresh)
        await self.monitor.log_context_event(
            "other_sessions_revoked",
            context,
            details={"userId": identity.id},
            severity=Severity.LOW,
        )

    async def list_sessions(self, identity: UserIdentity) -> list[PersistedRefreshToken]:
        return await self._registry_for(identity.id).list_active_tokens(identity.id)
