"""Access and refresh token codec.

Access tokens are stateless: a valid signature plus claim checks is all it
takes. Refresh tokens pass the same checks here and are then matched
against the persisted, revocable record by the credential store.
"""

import hashlib
import json
import logging
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import jwt
from jwt.exceptions import (
    DecodeError,
    InvalidSignatureError,
    PyJWTError,
)
from jwt.utils import base64url_decode

from vipbar.core.config import MIN_SECRET_LENGTH, WEAK_SECRET_MARKERS, Settings
from vipbar.services.errors import InvalidTokenError, TokenExpiredError, TokenSignatureError
from vipbar.services.security_monitor import RequestContext, SecurityMonitor, Severity

logger = logging.getLogger(__name__)

JWT_ALGORITHM = "HS256"
JWT_ISSUER = "vip-bar-management"
JWT_AUDIENCE = "vip-bar-users"

ACCESS_TOKEN_TTL = 15 * 60
REFRESH_TOKEN_TTL = 7 * 24 * 3600
MAX_TOKEN_AGE = 24 * 3600

DEVELOPMENT_SECRET = "development-only-fallback-secret-not-for-production-use-minimum-32-chars"

_COMMON_CLAIMS = ["exp", "iat", "nbf", "iss", "aud", "sub", "jti"]


def resolve_signing_secret(settings: Settings) -> str:
    """Return the signing secret, refusing weak secrets.

    Raises:
        RuntimeError: secret missing in production, shorter than 32 bytes,
            or containing a well-known placeholder
    """
    secret = settings.jwt_secret_key

    if not secret:
        if settings.is_production:
            raise RuntimeError("JWT_SECRET_KEY is required in production")
        logger.warning(
            "JWT_SECRET_KEY not set, using the development-only signing secret. "
            "Never run like this in production."
        )
        return DEVELOPMENT_SECRET

    if len(secret.encode()) < MIN_SECRET_LENGTH:
        raise RuntimeError(f"JWT_SECRET_KEY must be at least {MIN_SECRET_LENGTH} bytes")

    lowered = secret.lower()
    if any(marker in lowered for marker in WEAK_SECRET_MARKERS):
        raise RuntimeError("JWT_SECRET_KEY looks like a placeholder; use a strong random secret")

    return secret


def hash_token(raw_token: str) -> str:
    """One-way hash used to key persisted refresh tokens."""
    return hashlib.sha256(raw_token.encode()).hexdigest()


@dataclass
class AccessTokenClaims:
    user_id: str
    email: str
    role: str
    permissions: dict[str, bool]
    iat: int
    exp: int
    nbf: int
    jti: str
    sub: str
    iss: str = JWT_ISSUER
    aud: str = JWT_AUDIENCE


@dataclass
class RefreshTokenClaims:
    user_id: str
    jti: str
    iat: int
    exp: int
    nbf: int
    sub: str
    type: str = "refresh"
    iss: str = JWT_ISSUER
    aud: str = JWT_AUDIENCE


class TokenCodec:
    """Issues and verifies HS256 access and refresh tokens."""

    def __init__(
        self,
        secret: str,
        monitor: SecurityMonitor | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._secret = secret
        self._monitor = monitor
        self._clock = clock

    def _now(self) -> int:
        return int(self._clock())

    def _encode(self, payload: dict[str, Any]) -> str:
        return jwt.encode(payload, self._secret, algorithm=JWT_ALGORITHM, headers={"typ": "JWT"})

    def issue_access_token(
        self,
        user_id: str,
        email: str,
        role: str,
        permissions: dict[str, bool] | None = None,
    ) -> str:
        now = self._now()
        payload = {
            "userId": user_id,
            "email": email,
            "role": role,
            "permissions": permissions or {},
            "jti": str(uuid.uuid4()),
            "sub": user_id,
            "iss": JWT_ISSUER,
            "aud": JWT_AUDIENCE,
            "iat": now,
            "nbf": now,
            "exp": now + ACCESS_TOKEN_TTL,
        }
        return self._encode(payload)

    def issue_refresh_token(self, user_id: str) -> str:
        now = self._now()
        payload = {
            "userId": user_id,
            "jti": str(uuid.uuid4()),
            "type": "refresh",
            "sub": user_id,
            "iss": JWT_ISSUER,
            "aud": JWT_AUDIENCE,
            "iat": now,
            "nbf": now,
            "exp": now + REFRESH_TOKEN_TTL,
        }
        return self._encode(payload)

    async def verify_access_token(
        self, token: str, context: RequestContext | None = None
    ) -> AccessTokenClaims:
        payload = await self._decode(token, context, "jwt_signature_invalid")
        # Refresh tokens live for REFRESH_TOKEN_TTL; only access tokens are age-capped
        if self._now() - int(payload["iat"]) > MAX_TOKEN_AGE:
            raise InvalidTokenError("Token exceeds maximum age")

        for claim in ("userId", "email", "role"):
            if not payload.get(claim):
                raise InvalidTokenError(f"Token missing required claim: {claim}")

        permissions = payload.get("permissions") or {}
        if not isinstance(permissions, dict):
            raise InvalidTokenError("Token permissions claim is not a map")

        return AccessTokenClaims(
            user_id=str(payload["userId"]),
            email=str(payload["email"]),
            role=str(payload["role"]),
            permissions={str(k): v is True for k, v in permissions.items()},
            iat=int(payload["iat"]),
            exp=int(payload["exp"]),
            nbf=int(payload["nbf"]),
            jti=str(payload["jti"]),
            sub=str(payload["sub"]),
        )

    async def verify_refresh_token(
        self, token: str, context: RequestContext | None = None
    ) -> RefreshTokenClaims:
        payload = await self._decode(token, context, "refresh_token_signature_invalid")

        if payload.get("type") != "refresh":
            raise InvalidTokenError("Not a refresh token")
        if not payload.get("userId"):
            raise InvalidTokenError("Token missing required claim: userId")

        return RefreshTokenClaims(
            user_id=str(payload["userId"]),
            jti=str(payload["jti"]),
            iat=int(payload["iat"]),
            exp=int(payload["exp"]),
            nbf=int(payload["nbf"]),
            sub=str(payload["sub"]),
        )

    async def _decode(
        self, token: str, context: RequestContext | None, signature_event: str
    ) -> dict[str, Any]:
        """Shared structure, signature and claim checks."""
        if not token or not isinstance(token, str):
            raise InvalidTokenError("Token is empty")
        if len(token.split(".")) != 3:
            raise InvalidTokenError("Token is not a three-segment JWS")

        try:
            # Time claims are checked below against the codec's own clock
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[JWT_ALGORITHM],
                issuer=JWT_ISSUER,
                audience=JWT_AUDIENCE,
                options={
                    "require": _COMMON_CLAIMS,
                    "verify_exp": False,
                    "verify_nbf": False,
                    "verify_iat": False,
                },
            )
        except InvalidSignatureError as e:
            await self._report_bad_signature(signature_event, context, str(e))
            raise TokenSignatureError("Token signature verification failed") from e
        except DecodeError as e:
            if _signing_input_is_well_formed(token):
                # Header and payload parse, so the damage is in the signature segment
                await self._report_bad_signature(signature_event, context, str(e))
                raise TokenSignatureError("Token signature verification failed") from e
            raise InvalidTokenError(f"Malformed token: {e}") from e
        except PyJWTError as e:
            raise InvalidTokenError(f"Invalid token: {e}") from e

        try:
            iat, nbf, exp = int(payload["iat"]), int(payload["nbf"]), int(payload["exp"])
        except (TypeError, ValueError) as e:
            raise InvalidTokenError("Token time claims are not integers") from e

        now = self._now()
        if exp <= now:
            logger.debug("Token expired")
            raise TokenExpiredError("Token has expired")
        if nbf > now:
            raise InvalidTokenError("Token is not yet valid")

        return payload

    async def _report_bad_signature(
        self, event_type: str, context: RequestContext | None, reason: str
    ) -> None:
        logger.warning(f"Token signature invalid ({event_type})")
        if self._monitor is None:
            return
        await self._monitor.log_context_event(
            event_type,
            context,
            details={"error": reason, "possible_tampering": True},
            severity=Severity.HIGH,
        )


def _signing_input_is_well_formed(token: str) -> bool:
    header_segment, payload_segment, _ = token.split(".")
    try:
        json.loads(base64url_decode(header_segment.encode()))
        json.loads(base64url_decode(payload_segment.encode()))
    except (ValueError, TypeError):
        return False
    return True
