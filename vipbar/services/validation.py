"""Sign-in input validation and injection heuristics."""

import re

from vipbar.services.errors import ValidationError

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
MAX_EMAIL_LENGTH = 255
MIN_PASSWORD_LENGTH = 6
MAX_PASSWORD_LENGTH = 128

# Rejected outright in either credential field
SUSPICIOUS_CREDENTIAL_PATTERNS = [
    re.compile(r"[<>]"),
    re.compile(r"javascript:", re.IGNORECASE),
    re.compile(r"on\w+\s*=", re.IGNORECASE),
    re.compile(r"\b(SELECT|INSERT|UPDATE|DELETE|DROP|UNION)\b", re.IGNORECASE),
]

SQL_INJECTION_PATTERNS = [
    re.compile(r"\b(SELECT|INSERT|UPDATE|DELETE|DROP|CREATE|ALTER|EXEC|UNION)\b", re.IGNORECASE),
    re.compile(r"('|(\\')|(;)|(--)|(\|)|(\*)|(%)|(\+))"),
    re.compile(r"\b(OR|AND)\b.*=.*", re.IGNORECASE),
]

XSS_PATTERNS = [
    re.compile(r"<script\b[^<]*(?:(?!</script>)<[^<]*)*</script>", re.IGNORECASE),
    re.compile(r"javascript:", re.IGNORECASE),
    re.compile(r"on\w+\s*=", re.IGNORECASE),
    re.compile(r"<iframe|<object|<embed|<link|<meta", re.IGNORECASE),
]

PATH_TRAVERSAL_PATTERN = re.compile(r"\.\./|\.\.\\")
COMMAND_INJECTION_PATTERN = re.compile(r"[;&|`$(){}\[\]\\]")


def detect_threats(value: str) -> list[str]:
    """Classify a free-form input string.

    Returns any of ``sql_injection``, ``xss``, ``path_traversal`` and
    ``command_injection``, in that order. An empty list means clean.
    """
    threats = []
    if any(p.search(value) for p in SQL_INJECTION_PATTERNS):
        threats.append("sql_injection")
    if any(p.search(value) for p in XSS_PATTERNS):
        threats.append("xss")
    if PATH_TRAVERSAL_PATTERN.search(value):
        threats.append("path_traversal")
    if COMMAND_INJECTION_PATTERN.search(value):
        threats.append("command_injection")
    return threats


def validate_credentials(email: str | None, password: str | None) -> tuple[str, str]:
    """Check sign-in input shape and return the normalized email and password.

    The email is trimmed and lower-cased. The password is returned as-is.

    Raises:
        ValidationError: with a short user-facing message
    """
    if not email or not password:
        raise ValidationError("Email y contraseña son requeridos")

    email = email.strip().lower()
    if not email:
        raise ValidationError("Email y contraseña no pueden estar vacíos")

    if not EMAIL_PATTERN.match(email):
        raise ValidationError("Formato de email inválido")
    if len(email) > MAX_EMAIL_LENGTH:
        raise ValidationError("Email demasiado largo")
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError("Contraseña demasiado corta")
    if len(password) > MAX_PASSWORD_LENGTH:
        raise ValidationError("Contraseña demasiado larga")

    for pattern in SUSPICIOUS_CREDENTIAL_PATTERNS:
        if pattern.search(email) or pattern.search(password):
            raise ValidationError("Entrada inválida detectada")

    return email, password
