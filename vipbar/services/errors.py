"""Authentication error taxonomy.

Each error carries a short, localized ``public_message`` that is safe to
return to the client. The exception text itself may hold internal detail
and only goes to logs and security events.
"""


class AuthError(Exception):
    """Base authentication error."""

    public_message = "Error de autenticación"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.public_message)


class ValidationError(AuthError):
    """Malformed sign-in input. Never reaches the rate limiter or the store."""

    public_message = "Datos de entrada inválidos"


class RateLimitedError(AuthError):
    """Too many attempts; retry after ``retry_after`` seconds."""

    public_message = "Demasiados intentos fallidos. Intenta de nuevo más tarde."

    def __init__(self, retry_after: int, message: str | None = None):
        super().__init__(message)
        self.retry_after = retry_after


class InvalidCredentialsError(AuthError):
    """Wrong email or password. Never says which."""

    public_message = "Credenciales inválidas"


class AccountDisabledError(AuthError):
    """Account is deactivated. Not subject to demo fallback."""

    public_message = "Cuenta desactivada. Contacta al administrador."


class AccountLockedError(AuthError):
    """Account is temporarily locked. Not subject to demo fallback."""

    public_message = "Cuenta bloqueada temporalmente. Intenta más tarde."


class InvalidTokenError(AuthError):
    """Token failed shape, signature, claim or age checks."""

    public_message = "Sesión inválida"


class TokenExpiredError(InvalidTokenError):
    """Token has expired."""

    public_message = "Sesión expirada"


class TokenSignatureError(InvalidTokenError):
    """Token signature does not verify."""

    pass


class RevokedTokenError(InvalidTokenError):
    """Refresh token was revoked server-side."""

    public_message = "Sesión revocada"


class ProviderUnavailableError(AuthError):
    """Credential store unreachable or failing. Triggers demo fallback."""

    public_message = "Servicio no disponible temporalmente"


class ProviderRateLimitedError(ProviderUnavailableError):
    """Credential store rejected the call with a rate-limit response."""

    pass


class StoreQueryError(ProviderUnavailableError):
    """The store is reachable but a query failed, e.g. a missing table or column.

    Falls back like an outage but is reported as its own event so schema and
    data bugs do not read as downtime.
    """

    pass


class ProfileIntegrityError(AuthError):
    """A user row exists but is incomplete, e.g. missing its role."""

    public_message = "Perfil de usuario incompleto"


class CSRFRejectedError(AuthError):
    """CSRF token missing, mismatched or expired."""

    public_message = "Token CSRF inválido"


class OriginRejectedError(AuthError):
    """Request origin not allowed, or missing on a state-changing request."""

    public_message = "Origen no permitido"

    def __init__(self, status_code: int = 403, message: str | None = None):
        super().__init__(message)
        self.status_code = status_code


class InsufficientPermissionError(AuthError):
    """Identity lacks the role or permission the route requires."""

    public_message = "Permisos insuficientes"
