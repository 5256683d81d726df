"""
auth/service.py -- Account lifecycle and session orchestration.

AuthService owns every state transition on a user account:

  register        -> Unverified, fresh verification token, verification email
  verify_email    -> Verified, token cleared, first session issued
  login           -> new access + refresh pair, refresh digest overwritten
  refresh         -> pair rotated, previous refresh token dead
  logout          -> stored refresh digest cleared (when enabled)
  forgot_password -> reset token + expiry stored, reset email
  reset_password  -> password replaced, reset token and sessions cleared

Collaborators are passed to the constructor -- UserStore, TokenService and a
notifier -- so tests can wire in-memory or recording versions without any
container or monkeypatching.

Email delivery is best effort: _notify() logs and swallows every failure,
so mail outages never fail registration or a reset request.

Single-use values are consumed with UserStore.update_user(expected=...), a
compare-and-set. If two requests race on the same verification token, reset
token or refresh token, exactly one wins and the other gets the same error
as a stale token.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth.errors import (
    EmailExists,
    EmailNotVerified,
    InvalidCredentials,
    InvalidLanguagePair,
    InvalidOrExpiredToken,
    InvalidRefreshToken,
    InvalidToken,
    RegistrationFailed,
)
from auth.models import User
from auth.store import UserStore
from auth.tokens import (
    ACCESS,
    REFRESH,
    TokenPair,
    TokenService,
    dummy_hash,
    generate_opaque_token,
    hash_password,
    verify_password,
)

logger = logging.getLogger("pronunciation.auth")

REGISTERED_MESSAGE = "Registered. Verify your email."
VERIFIED_MESSAGE = "Email verified successfully"
RESET_REQUESTED_MESSAGE = "If the account exists, a reset link has been sent."
RESET_DONE_MESSAGE = "Password reset successfully"


@dataclass
class RegistrationResult:
    message: str
    verification_url: str
    user_id: int


@dataclass
class ForgotPasswordResult:
    message: str
    reset_url: str | None  # None when no account matched


@dataclass
class AuthSession:
    """A token pair plus the account it was issued for."""

    tokens: TokenPair
    user: User
    message: str = ""


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _is_future(iso_timestamp: str | None) -> bool:
    if not iso_timestamp:
        return False
    try:
        moment = datetime.fromisoformat(iso_timestamp)
    except ValueError:
        return False
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment > _now()


class AuthService:
    """Registration, verification, login, refresh rotation and password reset."""

    def __init__(
        self,
        store: UserStore,
        tokens: TokenService,
        notifier,
        frontend_url: str,
        bcrypt_rounds: int = 12,
        reset_ttl: int = 60 * 60,
        revoke_refresh_on_logout: bool = True,
    ) -> None:
        self._store = store
        self._tokens = tokens
        self._notifier = notifier
        self._frontend_url = frontend_url.rstrip("/")
        self._rounds = bcrypt_rounds
        self._reset_ttl = reset_ttl
        self._revoke_refresh_on_logout = revoke_refresh_on_logout

    # ------------------------------------------------------------------
    # Registration and verification
    # ------------------------------------------------------------------

    def register(
        self,
        email: str,
        password: str,
        first_name: str,
        last_name: str,
        native_language: str,
        learning_language: str,
    ) -> RegistrationResult:
        """Create an unverified account and send the verification link.

        Raises InvalidLanguagePair, EmailExists, or RegistrationFailed for any
        other storage error.
        """
        email = email.strip().lower()
        if native_language.strip().lower() == learning_language.strip().lower():
            raise InvalidLanguagePair()
        if self._store.get_by_email(email) is not None:
            raise EmailExists()

        verification_token = generate_opaque_token()
        user = User(
            email=email,
            password_hash=hash_password(password, self._rounds),
            first_name=first_name,
            last_name=last_name,
            native_language=native_language,
            learning_language=learning_language,
            is_email_verified=False,
            email_verification_token=verification_token,
        )
        try:
            user_id = self._store.create_user(user)
        except IntegrityError as exc:
            # A concurrent registration for the same email won the INSERT.
            raise EmailExists() from exc
        except SQLAlchemyError as exc:
            logger.exception("Registration failed while storing the user")
            raise RegistrationFailed() from exc

        verification_url = f"{self._frontend_url}/auth/verify-email?token={verification_token}"
        self._notify(
            email,
            "Verify your email",
            "verify_email",
            {"first_name": first_name, "verification_url": verification_url},
        )
        logger.info("Registered user %s", user_id)
        return RegistrationResult(
            message=REGISTERED_MESSAGE,
            verification_url=verification_url,
            user_id=user_id,
        )

    def verify_email(self, token: str) -> AuthSession:
        """Consume a verification token and open the first session.

        Raises InvalidToken if no account holds the token, including when it
        was already used.
        """
        user = self._store.get_by_verification_token(token) if token else None
        if user is None:
            raise InvalidToken()
        consumed = self._store.update_user(
            user.id,
            expected={"email_verification_token": token},
            is_email_verified=True,
            email_verification_token=None,
        )
        if not consumed:
            raise InvalidToken()
        user.is_email_verified = True
        user.email_verification_token = None
        logger.info("Verified email for user %s", user.id)
        pair = self._issue(user, last_login=_now().isoformat())
        return AuthSession(tokens=pair, user=user, message=VERIFIED_MESSAGE)

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def login(self, email: str, password: str) -> AuthSession:
        """Authenticate with email and password.

        Unknown email and wrong password raise the same InvalidCredentials
        after the same bcrypt work, so neither content nor timing tells them
        apart. Correct credentials on an unverified account raise
        EmailNotVerified.
        """
        user = self._store.get_by_email(email)
        if user is None:
            verify_password(password, dummy_hash(self._rounds))
            raise InvalidCredentials()
        if not verify_password(password, user.password_hash):
            raise InvalidCredentials()
        if not user.is_email_verified:
            raise EmailNotVerified()
        pair = self._issue(user, last_login=_now().isoformat())
        logger.info("User %s logged in", user.id)
        return AuthSession(tokens=pair, user=user)

    def refresh(self, refresh_token: str | None) -> AuthSession:
        """Rotate a refresh token into a brand-new pair.

        Every failure -- bad signature, expiry, wrong token type, unknown
        user, no stored digest, digest mismatch, lost rotation race --
        raises the same InvalidRefreshToken.
        """
        if not refresh_token:
            raise InvalidRefreshToken()
        try:
            claims = self._tokens.verify(refresh_token, REFRESH)
        except InvalidToken as exc:
            raise InvalidRefreshToken() from exc

        user = self._store.get_by_id(claims["user_id"])
        if (
            user is None
            or not self._tokens.matches(refresh_token, user.refresh_token_hash)
            or not _is_future(user.refresh_token_expires)
        ):
            logger.warning("Rejected refresh token for user %s", claims["user_id"])
            raise InvalidRefreshToken()

        pair = self._tokens.issue_pair(user.id, user.email)
        rotated = self._store.update_user(
            user.id,
            expected={"refresh_token_hash": user.refresh_token_hash},
            refresh_token_hash=self._tokens.digest(pair.refresh_token),
            refresh_token_expires=pair.refresh_expires_at,
        )
        if not rotated:
            raise InvalidRefreshToken()
        return AuthSession(tokens=pair, user=user)

    def logout(self, refresh_token: str | None) -> None:
        """End the session that owns this refresh token.

        Clears the stored digest only if it still belongs to the presented
        token, so logging out with a stale cookie cannot end a newer session
        elsewhere. Never raises; cookies are cleared by the caller regardless.
        """
        if not self._revoke_refresh_on_logout or not refresh_token:
            return
        try:
            claims = self._tokens.verify(refresh_token, REFRESH)
        except InvalidToken:
            return
        revoked = self._store.update_user(
            claims["user_id"],
            expected={"refresh_token_hash": self._tokens.digest(refresh_token)},
            refresh_token_hash=None,
            refresh_token_expires=None,
        )
        if revoked:
            logger.info("User %s logged out", claims["user_id"])

    def user_from_access_token(self, token: str) -> User | None:
        """Return the user an access token belongs to, or None if it does not verify."""
        try:
            claims = self._tokens.verify(token, ACCESS)
        except InvalidToken:
            return None
        return self._store.get_by_id(claims["user_id"])

    def get_user(self, user_id: int) -> User | None:
        return self._store.get_by_id(user_id)

    # ------------------------------------------------------------------
    # Password reset
    # ------------------------------------------------------------------

    def forgot_password(self, email: str) -> ForgotPasswordResult:
        """Store a reset token and email the link.

        The message is identical whether or not the email is registered.
        """
        user = self._store.get_by_email(email)
        if user is None:
            logger.info("Password reset requested for an unknown email")
            return ForgotPasswordResult(message=RESET_REQUESTED_MESSAGE, reset_url=None)

        reset_token = generate_opaque_token()
        expires = _now() + timedelta(seconds=self._reset_ttl)
        self._store.update_user(
            user.id,
            password_reset_token=reset_token,
            password_reset_expires=expires.isoformat(),
        )
        reset_url = f"{self._frontend_url}/auth/reset-password?token={reset_token}"
        self._notify(
            user.email,
            "Reset your password",
            "reset_password",
            {
                "first_name": user.first_name,
                "reset_url": reset_url,
                "expires_minutes": self._reset_ttl // 60,
            },
        )
        logger.info("Password reset requested for user %s", user.id)
        return ForgotPasswordResult(message=RESET_REQUESTED_MESSAGE, reset_url=reset_url)

    def reset_password(self, token: str, new_password: str) -> str:
        """Replace the password of the account holding a live reset token.

        Raises InvalidOrExpiredToken if no account holds the token or its
        expiry has passed. Success clears the token and the stored refresh
        digest, so sessions opened with the old password cannot be refreshed.
        """
        user = self._store.get_by_reset_token(token) if token else None
        if user is None:
            raise InvalidOrExpiredToken()
        if not _is_future(user.password_reset_expires):
            self._store.update_user(
                user.id,
                expected={"password_reset_token": token},
                password_reset_token=None,
                password_reset_expires=None,
            )
            raise InvalidOrExpiredToken()

        consumed = self._store.update_user(
            user.id,
            expected={"password_reset_token": token},
            password_hash=hash_password(new_password, self._rounds),
            password_reset_token=None,
            password_reset_expires=None,
            refresh_token_hash=None,
            refresh_token_expires=None,
        )
        if not consumed:
            raise InvalidOrExpiredToken()
        logger.info("Password reset for user %s", user.id)
        return RESET_DONE_MESSAGE

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _issue(self, user: User, **fields) -> TokenPair:
        """Issue a pair and make its refresh token the only valid one for the user."""
        pair = self._tokens.issue_pair(user.id, user.email)
        self._store.update_user(
            user.id,
            refresh_token_hash=self._tokens.digest(pair.refresh_token),
            refresh_token_expires=pair.refresh_expires_at,
            **fields,
        )
        return pair

    def _notify(self, to: str, subject: str, template: str, context: dict) -> None:
        try:
            self._notifier.send_mail(to, subject, template, context)
        except Exception as exc:
            logger.warning("Could not send %r email to %s: %s", template, to, exc)
