"""
Taxonomie des erreurs de l'API d'authentification.

Les services lèvent ces exceptions ; main.py les traduit en réponse JSON
{"detail": message} avec le code HTTP porté par la classe. Les messages sont
volontairement génériques : ils ne révèlent jamais quel contrôle a échoué
lorsque cela aiderait à énumérer les comptes.
"""

from datetime import datetime
from typing import Optional


class AuthError(Exception):
    status_code = 500
    message = "Internal server error"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.message
        super().__init__(self.message)


class ValidationFailed(AuthError):
    status_code = 400
    message = "Validation failed"

    def __init__(self, message: Optional[str] = None, errors: Optional[list] = None):
        super().__init__(message)
        self.errors = errors or []


class Unauthenticated(AuthError):
    status_code = 401
    message = "Not authenticated"


class InvalidCredentials(Unauthenticated):
    message = "Invalid email or password"


class AccountDisabled(Unauthenticated):
    message = "Account disabled"


class Forbidden(AuthError):
    status_code = 403
    message = "Forbidden"


class InvalidOrigin(Forbidden):
    message = "Invalid request origin"


class CsrfFailed(Forbidden):
    message = "Invalid CSRF token"


class NotFound(AuthError):
    status_code = 404
    message = "Not found"


class Conflict(AuthError):
    status_code = 409
    message = "Conflict"


class AccountLocked(AuthError):
    status_code = 423
    message = "Account locked due to too many failed login attempts. Please try again later."


class RateLimited(AuthError):
    status_code = 429
    message = "Too many requests. Please try again later."

    def __init__(self, reset_time: datetime, limit: int, message: Optional[str] = None):
        super().__init__(message)
        self.reset_time = reset_time
        self.limit = limit


class SessionExpired(AuthError):
    status_code = 400
    message = "Session expired. Please log in again."


class InvalidTwoFactorCode(AuthError):
    status_code = 400
    message = "Invalid verification code"


class InvalidToken(AuthError):
    status_code = 400
    message = "Invalid or expired token"


class PasswordHashError(AuthError):
    """Empreinte stockée illisible : corruption de données, jamais réessayé."""
    status_code = 500
