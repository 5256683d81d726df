"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores and the auth
service do the work; routes map these onto the API contract in api/models.py.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class User:
    """A learner account.

    email is always stored lowercased and stripped; the store's UNIQUE
    constraint on it is what resolves concurrent registrations.

    The three token fields are single-use or rotating secrets:
    - email_verification_token: opaque hex, cleared once verified.
    - password_reset_token / password_reset_expires: opaque hex plus an
      ISO-8601 UTC expiry, both cleared on a successful reset.
    - refresh_token_hash / refresh_token_expires: HMAC digest of the latest
      refresh JWT issued to this user. Only one is active at a time.

    None of these (nor password_hash) ever leave the service -- see
    public_profile().
    """

    email: str
    password_hash: str
    first_name: str
    last_name: str
    native_language: str
    learning_language: str
    id: int | None = None
    is_email_verified: bool = False
    email_verification_token: str | None = None
    password_reset_token: str | None = None
    password_reset_expires: str | None = None
    refresh_token_hash: str | None = None
    refresh_token_expires: str | None = None
    created_at: str | None = None
    updated_at: str | None = None
    last_login: str | None = None


def public_profile(user: User) -> dict:
    """Return the fields of a user that may be shown to the user themselves."""
    return {
        "id": user.id,
        "email": user.email,
        "first_name": user.first_name,
        "last_name": user.last_name,
        "native_language": user.native_language,
        "learning_language": user.learning_language,
        "is_email_verified": user.is_email_verified,
        "created_at": user.created_at or "",
    }
