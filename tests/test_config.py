"""
tests/test_config.py -- Signing-key policy enforced by core/config.py.

Settings(...) keyword arguments override the environment that conftest.py
sets up, so each case builds its own instance instead of using get_settings().
"""

from __future__ import annotations

import pytest

from core.config import Settings

KEY_A = "a" * 32
KEY_B = "b" * 32


def test_production_requires_keys() -> None:
    with pytest.raises(ValueError, match="JWT_SECRET"):
        Settings(_env_file=None, debug=False, jwt_secret="", jwt_refresh_secret="")


def test_debug_generates_distinct_keys() -> None:
    s = Settings(_env_file=None, debug=True, jwt_secret="", jwt_refresh_secret="")
    assert len(s.jwt_secret) >= 32
    assert s.jwt_secret != s.jwt_refresh_secret


def test_short_key_rejected() -> None:
    with pytest.raises(ValueError, match="at least 32"):
        Settings(_env_file=None, debug=False, jwt_secret="short", jwt_refresh_secret=KEY_B)


def test_identical_keys_rejected() -> None:
    with pytest.raises(ValueError, match="must differ"):
        Settings(_env_file=None, debug=False, jwt_secret=KEY_A, jwt_refresh_secret=KEY_A)


def test_explicit_keys_accepted() -> None:
    s = Settings(_env_file=None, debug=False, jwt_secret=KEY_A, jwt_refresh_secret=KEY_B)
    assert (s.jwt_secret, s.jwt_refresh_secret) == (KEY_A, KEY_B)
