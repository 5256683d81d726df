"""Unit tests for core/config.py -- Settings validation.

Settings are built directly with keyword arguments (which take precedence
over the DEBUG/BCRYPT_ROUNDS environment set by conftest) and _env_file=None
so a developer's local .env cannot change the outcome.
"""

import pytest
from pydantic import ValidationError

from core.config import Settings

KEY_A = "k" * 32
KEY_B = "q" * 32


def _settings(**kwargs) -> Settings:
    return Settings(_env_file=None, **kwargs)


def test_production_requires_secret_keys() -> None:
    with pytest.raises(ValidationError):
        _settings(debug=False, secret_key="", refresh_secret_key="", bcrypt_rounds=12)


def test_production_requires_refresh_key() -> None:
    with pytest.raises(ValidationError):
        _settings(debug=False, secret_key=KEY_A, refresh_secret_key="", bcrypt_rounds=12)


def test_short_key_rejected() -> None:
    with pytest.raises(ValidationError):
        _settings(debug=False, secret_key="short", refresh_secret_key=KEY_B, bcrypt_rounds=12)


def test_identical_keys_rejected() -> None:
    with pytest.raises(ValidationError):
        _settings(debug=False, secret_key=KEY_A, refresh_secret_key=KEY_A, bcrypt_rounds=12)


def test_low_bcrypt_cost_rejected_in_production() -> None:
    with pytest.raises(ValidationError):
        _settings(debug=False, secret_key=KEY_A, refresh_secret_key=KEY_B, bcrypt_rounds=10)


def test_production_defaults() -> None:
    settings = _settings(debug=False, secret_key=KEY_A, refresh_secret_key=KEY_B, bcrypt_rounds=12)
    assert settings.access_token_expire_seconds == 900
    assert settings.refresh_token_expire_seconds == 30 * 24 * 3600
    assert settings.password_reset_expire_seconds == 3600
    assert settings.expose_action_urls is False
    assert settings.revoke_refresh_on_logout is True


def test_debug_generates_distinct_keys() -> None:
    settings = _settings(debug=True, secret_key="", refresh_secret_key="", bcrypt_rounds=4)
    assert len(settings.secret_key) >= 32
    assert len(settings.refresh_secret_key) >= 32
    assert settings.secret_key != settings.refresh_secret_key
    assert settings.expose_action_urls is True


def test_explicit_expose_overrides_debug() -> None:
    settings = _settings(debug=True, bcrypt_rounds=4, expose_action_urls=False)
    assert settings.expose_action_urls is False
