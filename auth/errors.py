"""
auth/errors.py -- Exception taxonomy for the auth engine and its HTTP surface.

Every error carries the HTTP status it maps to, a stable machine-readable code
and a client-safe message. api/main.py renders all of them through a single
exception handler into the {"ok": false, "error", "code", "field"} envelope,
so routes and dependencies can simply raise.

Session lookup misses are not errors: stores return None and the engine
reports "no user".

Layer rule: stdlib only. No imports from api/.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for expected, client-facing failures."""

    status_code: int = 400
    code: str = "ERROR"
    message: str = "Request failed"

    def __init__(self, message: str | None = None, field: str | None = None) -> None:
        self.message = message or self.message
        self.field = field
        super().__init__(self.message)


class Unauthorized(AuthError):
    status_code = 401
    code = "UNAUTHORIZED"
    message = "Unauthorized"


class InvalidLogin(Unauthorized):
    """Unknown email, inactive account and wrong password all collapse here."""

    code = "INVALID_LOGIN"
    message = "Invalid login"


class Forbidden(AuthError):
    status_code = 403
    code = "FORBIDDEN"
    message = "Forbidden"


class InvalidCsrf(AuthError):
    status_code = 403
    code = "INVALID_CSRF"
    message = "Invalid CSRF token"


class ValidationError(AuthError):
    status_code = 400
    code = "VALIDATION_ERROR"
    message = "Invalid input"


class InvalidEmail(ValidationError):
    code = "INVALID_EMAIL"
    message = "Invalid email"

    def __init__(self, message: str | None = None, field: str | None = "email") -> None:
        super().__init__(message, field)


class WeakPassword(ValidationError):
    code = "WEAK_PASSWORD"
    message = "Password must be at least 8 characters"

    def __init__(self, message: str | None = None, field: str | None = "password") -> None:
        super().__init__(message, field)


class EmailTaken(ValidationError):
    code = "EMAIL_TAKEN"
    message = "Email already registered"

    def __init__(self, message: str | None = None, field: str | None = "email") -> None:
        super().__init__(message, field)


class MethodNotAllowed(AuthError):
    status_code = 405
    code = "METHOD_NOT_ALLOWED"
    message = "Method not allowed"
