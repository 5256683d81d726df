"""
auth/errors.py -- Exception taxonomy for the auth service.

Every business-rule failure is an AuthError carrying a stable machine code,
a user-facing message and the HTTP status the API layer should answer with.
api/main.py registers one exception handler for the whole family, so route
handlers never translate these by hand.

Messages are deliberately coarse where detail would leak account state:
InvalidCredentials is used for both "no such email" and "wrong password",
and InvalidRefreshToken covers every refresh failure sub-case.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for errors surfaced to API clients."""

    code = "auth_error"
    message = "Authentication error."
    status_code = 400

    def __init__(self, message: str | None = None) -> None:
        if message is not None:
            self.message = message
        super().__init__(self.message)


class EmailExists(AuthError):
    code = "email_exists"
    message = "Email already exists."
    status_code = 409


class InvalidCredentials(AuthError):
    code = "invalid_credentials"
    message = "Invalid email or password."
    status_code = 401


class EmailNotVerified(AuthError):
    code = "email_not_verified"
    message = "Email not verified."
    status_code = 400


class InvalidToken(AuthError):
    code = "invalid_token"
    message = "Invalid token."
    status_code = 400


class InvalidOrExpiredToken(AuthError):
    code = "invalid_or_expired_token"
    message = "Invalid or expired token."
    status_code = 400


class InvalidRefreshToken(AuthError):
    code = "invalid_refresh_token"
    message = "Invalid refresh token."
    status_code = 401


class InvalidLanguagePair(AuthError):
    code = "invalid_language_pair"
    message = "Native language and learning language must differ."
    status_code = 400


class RegistrationFailed(AuthError):
    code = "registration_failed"
    message = "Registration failed."
    status_code = 500


class NotificationError(Exception):
    """Raised by a notifier when an email could not be delivered.

    Never reaches API clients: AuthService logs and swallows it.
    """
