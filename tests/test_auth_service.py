"""Unit tests for auth/service.py -- AuthService state transitions.

Every test builds its own in-memory store (service fixture), so account
state never leaks between tests.

Covers:
- register: hashing, verification email, duplicate/case-insensitive email,
  language pair, swallowed mail failure, storage race and storage failure
- login: unknown email vs wrong password, unverified account, refresh digest storage
- verify_email: single use, implicit login
- refresh: rotation, reuse of a rotated token, wrong token kind, expired digest
- logout: digest revocation, stale-cookie safety, cookie-only mode
- forgot/reset password: generic message, expiry, single use, session revocation
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

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
from auth.service import RESET_REQUESTED_MESSAGE, AuthService
from auth.tokens import verify_password
from tests.conftest import make_service, register_verified, token_from_url


def _register(svc: AuthService, email: str = "alice@example.com", password: str = "Passw0rd!"):
    return svc.register(email, password, "Alice", "Smith", "English", "Spanish")


def _past(minutes: int = 1) -> str:
    return (datetime.now(timezone.utc) - timedelta(minutes=minutes)).isoformat()


# ---------------------------------------------------------------------------
# register
# ---------------------------------------------------------------------------


class TestRegister:
    def test_stores_hash_not_plaintext(self, service) -> None:
        svc, store, _ = service
        result = _register(svc)
        user = store.get_by_id(result.user_id)
        assert user.password_hash != "Passw0rd!"
        assert verify_password("Passw0rd!", user.password_hash)
        assert user.is_email_verified is False
        assert len(user.email_verification_token) == 64

    def test_result_and_verification_email(self, service) -> None:
        svc, store, notifier = service
        result = _register(svc, email="  Alice@Example.com ")
        user = store.get_by_id(result.user_id)
        assert result.message == "Registered. Verify your email."
        assert result.verification_url == (
            f"http://localhost:3000/auth/verify-email?token={user.email_verification_token}"
        )
        mail = notifier.last("verify_email")
        assert mail["to"] == "alice@example.com"
        assert mail["context"]["verification_url"] == result.verification_url
        assert mail["context"]["first_name"] == "Alice"

    def test_duplicate_email_case_insensitive(self, service) -> None:
        svc, _, _ = service
        _register(svc, email="alice@example.com")
        with pytest.raises(EmailExists):
            _register(svc, email="ALICE@example.com")

    @pytest.mark.parametrize("learning", ["English", "english", " ENGLISH "])
    def test_same_languages_rejected(self, service, learning: str) -> None:
        svc, store, _ = service
        with pytest.raises(InvalidLanguagePair):
            svc.register("bob@example.com", "Passw0rd!", "Bob", "Jones", "English", learning)
        assert store.get_by_email("bob@example.com") is None

    def test_mail_failure_does_not_fail_registration(self, service) -> None:
        svc, store, notifier = service
        notifier.fail = True
        result = _register(svc)
        assert store.get_by_id(result.user_id) is not None
        assert result.verification_url

    def test_unique_constraint_race_maps_to_email_exists(self) -> None:
        store = MagicMock()
        store.get_by_email.return_value = None
        store.create_user.side_effect = IntegrityError("INSERT", {}, Exception("UNIQUE"))
        svc = AuthService(store, MagicMock(), MagicMock(), "http://localhost:3000", bcrypt_rounds=4)
        with pytest.raises(EmailExists):
            _register(svc)

    def test_other_storage_error_is_registration_failed(self) -> None:
        store = MagicMock()
        store.get_by_email.return_value = None
        store.create_user.side_effect = OperationalError("INSERT", {}, Exception("disk I/O error"))
        notifier = MagicMock()
        svc = AuthService(store, MagicMock(), notifier, "http://localhost:3000", bcrypt_rounds=4)
        with pytest.raises(RegistrationFailed):
            _register(svc)
        notifier.send_mail.assert_not_called()


# ---------------------------------------------------------------------------
# verify_email
# ---------------------------------------------------------------------------


class TestVerifyEmail:
    def test_accepted_exactly_once(self, service) -> None:
        svc, store, notifier = service
        result = _register(svc)
        token = token_from_url(result.verification_url)

        session = svc.verify_email(token)
        assert session.message == "Email verified successfully"
        user = store.get_by_id(result.user_id)
        assert user.is_email_verified is True
        assert user.email_verification_token is None

        with pytest.raises(InvalidToken):
            svc.verify_email(token)

    def test_unknown_token(self, service) -> None:
        svc, _, _ = service
        with pytest.raises(InvalidToken):
            svc.verify_email("f" * 64)

    def test_empty_token(self, service) -> None:
        svc, _, _ = service
        with pytest.raises(InvalidToken):
            svc.verify_email("")

    def test_issues_session(self, service) -> None:
        svc, store, _ = service
        result = _register(svc)
        session = svc.verify_email(token_from_url(result.verification_url))
        user = store.get_by_id(result.user_id)
        assert user.refresh_token_hash
        assert user.last_login
        assert svc.refresh(session.tokens.refresh_token).user.id == result.user_id


# ---------------------------------------------------------------------------
# login
# ---------------------------------------------------------------------------


class TestLogin:
    def test_unverified_account_rejected(self, service) -> None:
        svc, _, _ = service
        _register(svc)
        with pytest.raises(EmailNotVerified):
            svc.login("alice@example.com", "Passw0rd!")

    def test_unknown_email_and_wrong_password_look_the_same(self, service) -> None:
        svc, _, notifier = service
        register_verified(svc, notifier, "alice@example.com")
        with pytest.raises(InvalidCredentials) as unknown:
            svc.login("nobody@example.com", "Passw0rd!")
        with pytest.raises(InvalidCredentials) as wrong:
            svc.login("alice@example.com", "Wr0ngPassword")
        assert unknown.value.message == wrong.value.message
        assert unknown.value.code == wrong.value.code

    def test_wrong_password_checked_before_verification(self, service) -> None:
        svc, _, _ = service
        _register(svc)
        with pytest.raises(InvalidCredentials):
            svc.login("alice@example.com", "Wr0ngPassword")

    def test_long_password_must_match_in_full(self, service) -> None:
        svc, _, notifier = service
        register_verified(svc, notifier, "alice@example.com", password="Aa1" + "x" * 80 + "REAL")
        with pytest.raises(InvalidCredentials):
            svc.login("alice@example.com", "Aa1" + "x" * 80 + "EVIL")
        assert svc.login("alice@example.com", "Aa1" + "x" * 80 + "REAL").user.email == "alice@example.com"

    def test_success_stores_refresh_digest_only(self, service) -> None:
        svc, store, notifier = service
        user_id = register_verified(svc, notifier, "alice@example.com")
        session = svc.login("ALICE@example.com", "Passw0rd!")
        user = store.get_by_id(user_id)
        assert session.user.id == user_id
        assert user.refresh_token_hash
        assert user.refresh_token_hash != session.tokens.refresh_token
        assert user.refresh_token_expires

    def test_second_login_invalidates_first_refresh_token(self, service) -> None:
        svc, _, notifier = service
        register_verified(svc, notifier, "alice@example.com")
        first = svc.login("alice@example.com", "Passw0rd!")
        second = svc.login("alice@example.com", "Passw0rd!")
        with pytest.raises(InvalidRefreshToken):
            svc.refresh(first.tokens.refresh_token)
        assert svc.refresh(second.tokens.refresh_token)


# ---------------------------------------------------------------------------
# refresh
# ---------------------------------------------------------------------------


class TestRefresh:
    def test_rotation_kills_previous_token(self, service) -> None:
        svc, _, notifier = service
        register_verified(svc, notifier, "alice@example.com")
        session = svc.login("alice@example.com", "Passw0rd!")

        rotated = svc.refresh(session.tokens.refresh_token)
        assert rotated.tokens.refresh_token != session.tokens.refresh_token

        with pytest.raises(InvalidRefreshToken):
            svc.refresh(session.tokens.refresh_token)
        # The replacement keeps working.
        assert svc.refresh(rotated.tokens.refresh_token)

    @pytest.mark.parametrize("presented", [None, "", "garbage"])
    def test_missing_or_malformed(self, service, presented) -> None:
        svc, _, _ = service
        with pytest.raises(InvalidRefreshToken):
            svc.refresh(presented)

    def test_access_token_is_not_a_refresh_token(self, service) -> None:
        svc, _, notifier = service
        register_verified(svc, notifier, "alice@example.com")
        session = svc.login("alice@example.com", "Passw0rd!")
        with pytest.raises(InvalidRefreshToken):
            svc.refresh(session.tokens.access_token)

    def test_expired_stored_digest_rejected(self, service) -> None:
        svc, store, notifier = service
        user_id = register_verified(svc, notifier, "alice@example.com")
        session = svc.login("alice@example.com", "Passw0rd!")
        store.update_user(user_id, refresh_token_expires=_past())
        with pytest.raises(InvalidRefreshToken):
            svc.refresh(session.tokens.refresh_token)

    def test_expired_jwt_rejected(self) -> None:
        svc, store, notifier = make_service(refresh_ttl=-60)
        try:
            register_verified(svc, notifier, "alice@example.com")
            session = svc.login("alice@example.com", "Passw0rd!")
            with pytest.raises(InvalidRefreshToken):
                svc.refresh(session.tokens.refresh_token)
        finally:
            store.close()


# ---------------------------------------------------------------------------
# logout
# ---------------------------------------------------------------------------


class TestLogout:
    def test_revokes_refresh_token(self, service) -> None:
        svc, store, notifier = service
        user_id = register_verified(svc, notifier, "alice@example.com")
        session = svc.login("alice@example.com", "Passw0rd!")
        svc.logout(session.tokens.refresh_token)
        assert store.get_by_id(user_id).refresh_token_hash is None
        with pytest.raises(InvalidRefreshToken):
            svc.refresh(session.tokens.refresh_token)

    def test_stale_token_does_not_end_newer_session(self, service) -> None:
        svc, _, notifier = service
        register_verified(svc, notifier, "alice@example.com")
        old = svc.login("alice@example.com", "Passw0rd!")
        new = svc.login("alice@example.com", "Passw0rd!")
        svc.logout(old.tokens.refresh_token)
        assert svc.refresh(new.tokens.refresh_token)

    @pytest.mark.parametrize("presented", [None, "", "garbage"])
    def test_never_raises(self, service, presented) -> None:
        svc, _, _ = service
        svc.logout(presented)

    def test_cookie_only_mode_keeps_digest(self) -> None:
        svc, store, notifier = make_service(revoke_refresh_on_logout=False)
        try:
            register_verified(svc, notifier, "alice@example.com")
            session = svc.login("alice@example.com", "Passw0rd!")
            svc.logout(session.tokens.refresh_token)
            assert svc.refresh(session.tokens.refresh_token)
        finally:
            store.close()


# ---------------------------------------------------------------------------
# forgot / reset password
# ---------------------------------------------------------------------------


class TestPasswordReset:
    def test_unknown_email_gets_generic_message(self, service) -> None:
        svc, _, notifier = service
        register_verified(svc, notifier, "alice@example.com")
        known = svc.forgot_password("alice@example.com")
        unknown = svc.forgot_password("nobody@example.com")
        assert known.message == unknown.message == RESET_REQUESTED_MESSAGE
        assert unknown.reset_url is None
        assert not [m for m in notifier.sent if m["to"] == "nobody@example.com"]

    def test_stores_token_with_future_expiry_and_emails_link(self, service) -> None:
        svc, store, notifier = service
        user_id = register_verified(svc, notifier, "alice@example.com")
        result = svc.forgot_password("alice@example.com")
        user = store.get_by_id(user_id)
        assert user.password_reset_token == token_from_url(result.reset_url)
        expires = datetime.fromisoformat(user.password_reset_expires)
        remaining = expires - datetime.now(timezone.utc)
        assert timedelta(minutes=59) < remaining <= timedelta(hours=1)
        assert notifier.last("reset_password")["context"]["reset_url"] == result.reset_url

    def test_mail_failure_is_swallowed(self, service) -> None:
        svc, _, notifier = service
        register_verified(svc, notifier, "alice@example.com")
        notifier.fail = True
        assert svc.forgot_password("alice@example.com").reset_url

    def test_reset_succeeds_once(self, service) -> None:
        svc, store, notifier = service
        user_id = register_verified(svc, notifier, "alice@example.com")
        token = token_from_url(svc.forgot_password("alice@example.com").reset_url)

        assert svc.reset_password(token, "N3wPassword") == "Password reset successfully"
        user = store.get_by_id(user_id)
        assert verify_password("N3wPassword", user.password_hash)
        assert user.password_reset_token is None
        assert user.password_reset_expires is None

        with pytest.raises(InvalidOrExpiredToken):
            svc.reset_password(token, "An0therPassword")
        with pytest.raises(InvalidCredentials):
            svc.login("alice@example.com", "Passw0rd!")
        assert svc.login("alice@example.com", "N3wPassword")

    def test_expired_token_rejected_and_cleared(self, service) -> None:
        svc, store, notifier = service
        user_id = register_verified(svc, notifier, "alice@example.com")
        token = token_from_url(svc.forgot_password("alice@example.com").reset_url)
        store.update_user(user_id, password_reset_expires=_past())

        with pytest.raises(InvalidOrExpiredToken):
            svc.reset_password(token, "N3wPassword")
        user = store.get_by_id(user_id)
        assert user.password_reset_token is None
        assert verify_password("Passw0rd!", user.password_hash)

    def test_unknown_token_rejected(self, service) -> None:
        svc, _, _ = service
        with pytest.raises(InvalidOrExpiredToken):
            svc.reset_password("0" * 64, "N3wPassword")

    def test_newer_request_replaces_older_token(self, service) -> None:
        svc, _, notifier = service
        register_verified(svc, notifier, "alice@example.com")
        first = token_from_url(svc.forgot_password("alice@example.com").reset_url)
        second = token_from_url(svc.forgot_password("alice@example.com").reset_url)
        with pytest.raises(InvalidOrExpiredToken):
            svc.reset_password(first, "N3wPassword")
        svc.reset_password(second, "N3wPassword")

    def test_reset_revokes_open_sessions(self, service) -> None:
        svc, _, notifier = service
        register_verified(svc, notifier, "alice@example.com")
        session = svc.login("alice@example.com", "Passw0rd!")
        token = token_from_url(svc.forgot_password("alice@example.com").reset_url)
        svc.reset_password(token, "N3wPassword")
        with pytest.raises(InvalidRefreshToken):
            svc.refresh(session.tokens.refresh_token)


def test_user_from_access_token(service) -> None:
    svc, _, notifier = service
    user_id = register_verified(svc, notifier, "alice@example.com")
    session = svc.login("alice@example.com", "Passw0rd!")
    assert svc.user_from_access_token(session.tokens.access_token).id == user_id
    assert svc.user_from_access_token(session.tokens.refresh_token) is None
    assert svc.user_from_access_token("garbage") is None
