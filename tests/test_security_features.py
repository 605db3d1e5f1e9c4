from __future__ import annotations

import os
import unittest
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

from app.errors import ApiError
from app.security import (
    create_access_token,
    decode_token,
    ensure_login_attempt_allowed,
    hash_password,
    register_login_failure,
    register_login_success,
    verify_password,
)
from app.settings import get_settings


class SecurityFeatureTests(unittest.TestCase):
    def setUp(self) -> None:
        get_settings.cache_clear()

    def tearDown(self) -> None:
        get_settings.cache_clear()

    def test_access_token_roundtrip_carries_role_and_code(self) -> None:
        with patch.dict(os.environ, {"JWT_SECRET": "jwt-test-secret", "ACCESS_TOKEN_MINUTES": "30"}, clear=False):
            get_settings.cache_clear()
            token, expires_in = create_access_token(user_id=7, code="I86", role="INTERN")
            claims = decode_token(token)

        self.assertEqual(expires_in, 1800)
        self.assertEqual(claims["sub"], "7")
        self.assertEqual(claims["code"], "I86")
        self.assertEqual(claims["role"], "INTERN")

    def test_token_signed_with_other_secret_is_rejected(self) -> None:
        with patch.dict(os.environ, {"JWT_SECRET": "first-secret"}, clear=False):
            get_settings.cache_clear()
            token, _ = create_access_token(user_id=7, code="I86", role="INTERN")

        with patch.dict(os.environ, {"JWT_SECRET": "second-secret"}, clear=False):
            get_settings.cache_clear()
            with self.assertRaises(ApiError) as exc:
                decode_token(token)

        self.assertEqual(exc.exception.status_code, 401)
        self.assertEqual(exc.exception.code, "INVALID_TOKEN")

    def test_password_hash_verification(self) -> None:
        password_hash = hash_password("StrongPass123!")

        self.assertTrue(verify_password("StrongPass123!", password_hash))
        self.assertFalse(verify_password("wrong", password_hash))
        self.assertFalse(verify_password("StrongPass123!", "not-a-hash"))

    def test_login_attempts_are_throttled_per_key(self) -> None:
        key = "203.0.113.9:I86"
        register_login_success(key)
        for _ in range(10):
            register_login_failure(key)

        with self.assertRaises(ApiError) as exc:
            ensure_login_attempt_allowed(key)
        self.assertEqual(exc.exception.code, "TOO_MANY_ATTEMPTS")
        self.assertEqual(exc.exception.status_code, 429)

        ensure_login_attempt_allowed("203.0.113.10:I86")
        register_login_success(key)
        ensure_login_attempt_allowed(key)

    def test_old_failures_fall_out_of_window(self) -> None:
        key = "203.0.113.11:I87"
        register_login_success(key)
        past = datetime(2026, 3, 2, 8, 0, tzinfo=timezone.utc)

        with patch("app.security._utcnow", return_value=past):
            for _ in range(10):
                register_login_failure(key)

        with patch("app.security._utcnow", return_value=past + timedelta(minutes=11)):
            ensure_login_attempt_allowed(key)


if __name__ == "__main__":
    unittest.main()
