"""
API request and response models for the auth REST endpoints.

These Pydantic v2 models define the HTTP transport contract. They are
intentionally separate from the dataclasses in auth/models.py, which own the
internal domain representation. Route handlers map between the two.

JSON uses camelCase (firstName, nativeLanguage, ...). Models declare
snake_case fields with a camelCase alias generator; populate_by_name lets
Python callers use either spelling.

Validation here is the boundary check for every handler -- a request body
that fails it never reaches AuthService and is answered with 422.
"""

import re
from typing import Annotated, Optional

from pydantic import AfterValidator, BaseModel, BeforeValidator, ConfigDict, Field
from pydantic.alias_generators import to_camel

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"
NAME_PATTERN = r"^[A-Za-z]+$"

PASSWORD_MIN_LENGTH = 8
PASSWORD_MAX_LENGTH = 128


# ---------------------------------------------------------------------------
# Field types
# ---------------------------------------------------------------------------


def _strip(value):
    return value.strip() if isinstance(value, str) else value


def _normalize_email(value):
    return value.strip().lower() if isinstance(value, str) else value


def _check_password_strength(value: str) -> str:
    """No whitespace, and at least one uppercase, one lowercase and one digit."""
    if re.search(r"\s", value):
        raise ValueError("Password must not contain whitespace")
    if not re.search(r"[A-Z]", value):
        raise ValueError("Password must contain at least one uppercase letter")
    if not re.search(r"[a-z]", value):
        raise ValueError("Password must contain at least one lowercase letter")
    if not re.search(r"[0-9]", value):
        raise ValueError("Password must contain at least one digit")
    return value


Email = Annotated[str, BeforeValidator(_normalize_email), Field(max_length=255, pattern=EMAIL_PATTERN)]

NewPassword = Annotated[
    str,
    Field(min_length=PASSWORD_MIN_LENGTH, max_length=PASSWORD_MAX_LENGTH),
    AfterValidator(_check_password_strength),
]

PersonName = Annotated[str, BeforeValidator(_strip), Field(min_length=1, max_length=15, pattern=NAME_PATTERN)]

Language = Annotated[str, BeforeValidator(_strip), Field(min_length=1, max_length=50)]

OpaqueToken = Annotated[str, BeforeValidator(_strip), Field(min_length=1, max_length=512)]


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RegisterRequest(_CamelModel):
    """Request body for POST /auth/register."""

    email: Email
    password: NewPassword
    first_name: PersonName
    last_name: PersonName
    native_language: Language
    learning_language: Language


class LoginRequest(_CamelModel):
    """Request body for POST /auth/login.

    Strength rules are not applied here -- a password that could never have
    been registered simply fails as invalid credentials.
    """

    email: Email
    password: str = Field(min_length=1, max_length=PASSWORD_MAX_LENGTH)


class VerifyEmailRequest(_CamelModel):
    token: OpaqueToken


class ForgotPasswordRequest(_CamelModel):
    email: Email


class ResetPasswordRequest(_CamelModel):
    token: OpaqueToken
    new_password: NewPassword


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserPublic(_CamelModel):
    """A user as returned to that same user. Never carries hashes or tokens."""

    id: int
    email: str
    first_name: str
    last_name: str
    native_language: str
    learning_language: str
    is_email_verified: bool
    created_at: str


class UserEnvelope(_CamelModel):
    user: UserPublic


class RegisterResponse(_CamelModel):
    message: str
    # Only populated when EXPOSE_ACTION_URLS is on (no live mail delivery).
    verification_url: Optional[str] = None
    user_id: int


class ForgotPasswordResponse(_CamelModel):
    message: str
    reset_url: Optional[str] = None


class MessageResponse(_CamelModel):
    message: str


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str
