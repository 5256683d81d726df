"""
auth/tokens.py -- Password hashing, JWT session tokens, opaque one-time tokens.

Security design decisions:
  JWT: python-jose with HS256. Access and refresh tokens are signed with
       different secrets and carry a "type" claim, so neither can be replayed
       as the other. Access tokens hold sub + email and live ~15 minutes;
       refresh tokens hold sub + a random jti and live ~30 days. verify()
       raises InvalidToken on any failure -- the service decides which
       caller-facing error that becomes.

  Passwords: bcrypt used directly (no passlib wrapper). The cost factor is
       injected by the caller from Settings.bcrypt_rounds. The password is
       pre-hashed with SHA-256 (base64) so bcrypt sees all of it, not just
       the first 72 bytes. dummy_hash() enables timing equalization in
       AuthService.login() so response time does not reveal whether an email
       is registered.

  Refresh digests: only HMAC-SHA256(refresh secret, token) is stored. Refresh
       tokens are long random-salted JWTs, so bcrypt's slowness buys nothing;
       a deterministic keyed hash lets the service compare in constant time
       and an attacker who dumps the DB cannot mint or replay a cookie.

  Opaque tokens: secrets.token_hex(32) -- 256 bits, looked up directly in
       the store, no embedded claims.

Layer rule: no imports from api/ or core/. Secrets and lifetimes are passed
in by whoever builds the TokenService (api/main.py lifespan, or tests).
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from functools import lru_cache

import bcrypt
from jose import JWTError, jwt

from auth.errors import InvalidToken

logger = logging.getLogger("pronunciation.auth")

_ALGORITHM = "HS256"

ACCESS = "access"
REFRESH = "refresh"

ACCESS_COOKIE = "access_token"
REFRESH_COOKIE = "refresh_token"
# The refresh cookie is only sent to /auth/refresh and /auth/logout.
REFRESH_COOKIE_PATH = "/auth"


# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def _password_bytes(plain: str) -> bytes:
    # bcrypt reads at most 72 bytes. The base64 SHA-256 of the password is 44
    # bytes with no NUL, so every character of a 128-char password counts.
    return base64.b64encode(hashlib.sha256(plain.encode("utf-8")).digest())


def hash_password(plain: str, rounds: int = 12) -> str:
    """Return a salted bcrypt hash of the given plaintext password."""
    return bcrypt.hashpw(_password_bytes(plain), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(_password_bytes(plain), hashed.encode("utf-8"))
    except Exception:
        return False


@lru_cache
def dummy_hash(rounds: int = 12) -> str:
    """A throwaway hash at the given cost, computed once per cost.

    Checked against when a login names an unknown email, so that path costs
    the same bcrypt work as a wrong password.
    """
    return hash_password("pronunciation_timing_dummy", rounds)


# ---------------------------------------------------------------------------
# Opaque one-time tokens
# ---------------------------------------------------------------------------


def generate_opaque_token() -> str:
    """Return 32 random bytes as 64 hex characters."""
    return secrets.token_hex(32)


# ---------------------------------------------------------------------------
# JWT access / refresh tokens
# ---------------------------------------------------------------------------


@dataclass
class TokenPair:
    """A freshly issued access + refresh token pair."""

    access_token: str
    refresh_token: str
    access_expires_in: int  # seconds
    refresh_expires_in: int  # seconds
    refresh_expires_at: str  # ISO-8601 UTC, stored next to the refresh digest


class TokenService:
    """Issues and verifies the signed session tokens.

    Usage:
        tokens = TokenService(access_secret, refresh_secret)
        pair = tokens.issue_pair(user.id, user.email)
        claims = tokens.verify(pair.access_token, ACCESS)
    """

    def __init__(
        self,
        access_secret: str,
        refresh_secret: str,
        access_ttl: int = 15 * 60,
        refresh_ttl: int = 30 * 24 * 60 * 60,
    ) -> None:
        self._secrets = {ACCESS: access_secret, REFRESH: refresh_secret}
        self.access_ttl = access_ttl
        self.refresh_ttl = refresh_ttl

    def issue_access_token(self, user_id: int, email: str) -> str:
        now = datetime.now(timezone.utc)
        payload = {
            "sub": str(user_id),
            "email": email,
            "type": ACCESS,
            "iat": now,
            "exp": now + timedelta(seconds=self.access_ttl),
        }
        return jwt.encode(payload, self._secrets[ACCESS], algorithm=_ALGORITHM)

    def issue_refresh_token(self, user_id: int) -> str:
        # jti makes two tokens issued in the same second distinct, so a
        # rotated-out token can never collide with its replacement.
        now = datetime.now(timezone.utc)
        payload = {
            "sub": str(user_id),
            "type": REFRESH,
            "jti": secrets.token_hex(16),
            "iat": now,
            "exp": now + timedelta(seconds=self.refresh_ttl),
        }
        return jwt.encode(payload, self._secrets[REFRESH], algorithm=_ALGORITHM)

    def issue_pair(self, user_id: int, email: str) -> TokenPair:
        refresh_expires_at = datetime.now(timezone.utc) + timedelta(seconds=self.refresh_ttl)
        return TokenPair(
            access_token=self.issue_access_token(user_id, email),
            refresh_token=self.issue_refresh_token(user_id),
            access_expires_in=self.access_ttl,
            refresh_expires_in=self.refresh_ttl,
            refresh_expires_at=refresh_expires_at.isoformat(),
        )

    def verify(self, token: str, kind: str) -> dict:
        """Decode and verify a token of the given kind ("access" or "refresh").

        Raises InvalidToken if the signature is wrong, the token is expired or
        malformed, the type claim does not match, or sub is not a user id.
        """
        if kind not in self._secrets:
            raise ValueError(f"Unknown token kind: {kind!r}")
        try:
            claims = jwt.decode(token, self._secrets[kind], algorithms=[_ALGORITHM])
        except JWTError as exc:
            raise InvalidToken() from exc
        if claims.get("type") != kind:
            raise InvalidToken()
        try:
            claims["user_id"] = int(claims["sub"])
        except (KeyError, TypeError, ValueError) as exc:
            raise InvalidToken() from exc
        return claims

    def digest(self, token: str) -> str:
        """Return HMAC-SHA256(refresh secret, token) as hex. This is what gets stored."""
        return hmac.new(self._secrets[REFRESH].encode(), token.encode(), hashlib.sha256).hexdigest()

    def matches(self, token: str, stored_digest: str | None) -> bool:
        """Constant-time check of a presented refresh token against a stored digest."""
        if not stored_digest:
            return False
        return hmac.compare_digest(self.digest(token), stored_digest)


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def set_auth_cookies(response, pair: TokenPair, secure: bool = False) -> None:
    """Write both tokens as httpOnly cookies on the response.

    httponly=True: JS cannot read the cookies (XSS mitigation).
    samesite="strict": never sent on cross-site requests (CSRF mitigation).
    secure: only sent over HTTPS when SECURE_COOKIES=true (set in production).
    max_age: matches each token's expiry so cookie and token expire together.
    """
    response.set_cookie(
        ACCESS_COOKIE,
        value=pair.access_token,
        httponly=True,
        samesite="strict",
        secure=secure,
        max_age=pair.access_expires_in,
    )
    response.set_cookie(
        REFRESH_COOKIE,
        value=pair.refresh_token,
        httponly=True,
        samesite="strict",
        secure=secure,
        max_age=pair.refresh_expires_in,
        path=REFRESH_COOKIE_PATH,
    )


def clear_auth_cookies(response) -> None:
    response.delete_cookie(ACCESS_COOKIE)
    response.delete_cookie(REFRESH_COOKIE, path=REFRESH_COOKIE_PATH)
