import time
import unittest
from types import SimpleNamespace
from unittest.mock import patch

import jwt
from fastapi import HTTPException

from fakes import FakeTable
from traveldiary.auth import deps, tokens
from traveldiary.core import db
from traveldiary.core.crypto import hash_password, verify_password
from traveldiary.core.settings import DEV_ACCESS_SECRET, S, Settings
from traveldiary.services import auth


def build_request(headers=None, cookies=None):
    return SimpleNamespace(headers=headers or {}, cookies=cookies or {})


class TestPasswords(unittest.TestCase):
    def test_hash_round_trip(self):
        encoded = hash_password("s3cret!", iterations=1000)
        self.assertTrue(encoded.startswith("pbkdf2_sha256$1000$"))
        self.assertTrue(verify_password("s3cret!", encoded))
        self.assertFalse(verify_password("wrong", encoded))

    def test_verify_rejects_garbage(self):
        self.assertFalse(verify_password("x", "not-a-hash"))


class TestTokens(unittest.TestCase):
    def test_access_token_round_trip(self):
        access, refresh = tokens.issue_pair("usr_1")
        self.assertEqual(tokens.decode_access(access)["sub"], "usr_1")
        self.assertEqual(tokens.decode_refresh(refresh)["sub"], "usr_1")

    def test_expired_access_token_flagged(self):
        now = int(time.time())
        expired = jwt.encode(
            {"sub": "usr_1", "typ": "access", "iat": now - 100, "exp": now - 10},
            S.jwt_access_secret,
            algorithm="HS256",
        )
        with self.assertRaises(HTTPException) as ctx:
            tokens.decode_access(expired)
        self.assertEqual(ctx.exception.status_code, 401)
        self.assertTrue(ctx.exception.token_expired)

    def test_invalid_token_not_flagged_expired(self):
        with self.assertRaises(HTTPException) as ctx:
            tokens.decode_access("not.a.jwt")
        self.assertEqual(ctx.exception.status_code, 401)
        self.assertFalse(ctx.exception.token_expired)

    def test_refresh_token_is_not_an_access_token(self):
        _, refresh = tokens.issue_pair("usr_1")
        with self.assertRaises(HTTPException) as ctx:
            tokens.decode_access(refresh)
        self.assertEqual(ctx.exception.detail, "Invalid token")


class TestProductionSecrets(unittest.TestCase):
    def test_production_rejects_dev_secrets(self):
        settings = Settings(environment="production", jwt_access_secret=DEV_ACCESS_SECRET, jwt_refresh_secret="")
        with self.assertRaises(RuntimeError) as ctx:
            settings.validate()
        self.assertIn("JWT_ACCESS_SECRET", str(ctx.exception))
        self.assertIn("JWT_REFRESH_SECRET", str(ctx.exception))

    def test_production_with_real_secrets(self):
        Settings(environment="production", jwt_access_secret="a" * 32, jwt_refresh_secret="b" * 32).validate()

    def test_development_keeps_defaults(self):
        Settings(environment="development", jwt_access_secret=DEV_ACCESS_SECRET).validate()


class TestRequestToken(unittest.TestCase):
    def test_bearer_header_preferred(self):
        req = build_request(headers={"authorization": "Bearer abc"}, cookies={"accessToken": "cookie"})
        self.assertEqual(deps.request_token(req), "abc")

    def test_cookie_fallback(self):
        req = build_request(cookies={"accessToken": "cookie"})
        self.assertEqual(deps.request_token(req), "cookie")

    def test_missing_token(self):
        with self.assertRaises(HTTPException) as ctx:
            deps.request_token(build_request())
        self.assertEqual(ctx.exception.detail, "Not authorized, no token")

    def test_invalid_scheme(self):
        with self.assertRaises(HTTPException) as ctx:
            deps.request_token(build_request(headers={"authorization": "Token abc"}))
        self.assertEqual(ctx.exception.status_code, 401)

    def test_current_user_resolved(self):
        access, _ = tokens.issue_pair("usr_1")
        req = build_request(headers={"authorization": f"Bearer {access}"})
        with patch.object(deps.users, "get_user", return_value={"id": "usr_1"}):
            self.assertEqual(deps.get_current_user(req), {"id": "usr_1"})

    def test_current_user_deleted(self):
        access, _ = tokens.issue_pair("usr_gone")
        req = build_request(headers={"authorization": f"Bearer {access}"})
        with patch.object(deps.users, "get_user", return_value=None):
            with self.assertRaises(HTTPException) as ctx:
                deps.get_current_user(req)
        self.assertEqual(ctx.exception.detail, "User not found")


class TestAccountFlow(unittest.TestCase):
    def setUp(self):
        self.table = FakeTable()
        for patcher in (
            patch.object(db, "tbl", self.table),
            patch.object(auth, "hash_password", side_effect=lambda pw: hash_password(pw, iterations=1000)),
        ):
            patcher.start()
            self.addCleanup(patcher.stop)

    def register(self, username="Wanderer", email="Wanderer@Example.com", **kwargs):
        return auth.register(username=username, email=email, password="secret1", full_name="Wan Derer", **kwargs)

    def test_register_persists_user_and_sentinels(self):
        user, access, refresh = self.register()

        self.assertEqual(user["email"], "wanderer@example.com")
        self.assertEqual(user["account_type"], "personal")
        self.assertIn("34A853", user["profile_picture"])
        self.assertEqual(self.table.item("USERNAME#wanderer", "UNIQUE")["user_id"], user["id"])
        self.assertEqual(self.table.item("EMAIL#wanderer@example.com", "UNIQUE")["user_id"], user["id"])
        self.assertEqual(self.table.item(f"USER#{user['id']}")["refresh_token"], refresh)
        self.assertEqual(tokens.decode_access(access)["sub"], user["id"])

    def test_business_avatar_colour(self):
        user, _, _ = self.register(account_type="business")
        self.assertIn("4285F4", user["profile_picture"])

    def test_duplicate_username_case_insensitive(self):
        self.register()
        with self.assertRaises(HTTPException) as ctx:
            self.register(username="WANDERER", email="other@example.com")
        self.assertEqual(ctx.exception.status_code, 409)
        self.assertEqual(ctx.exception.detail, "Username already taken")

    def test_duplicate_email(self):
        self.register()
        with self.assertRaises(HTTPException) as ctx:
            self.register(username="someoneelse")
        self.assertEqual(ctx.exception.detail, "Email already registered")

    def test_short_password_rejected(self):
        with self.assertRaises(HTTPException) as ctx:
            auth.register(username="shorty", email="s@example.com", password="123", full_name="S")
        self.assertEqual(ctx.exception.status_code, 400)

    def test_login_by_username_or_email(self):
        user, _, _ = self.register()
        by_name, _, _ = auth.authenticate("wanderer", "secret1")
        by_mail, _, _ = auth.authenticate("WANDERER@example.com", "secret1")
        self.assertEqual(by_name["id"], user["id"])
        self.assertEqual(by_mail["id"], user["id"])

    def test_login_failures_are_uniform(self):
        self.register()
        for ident, pw in (("wanderer", "bad"), ("nobody", "secret1")):
            with self.assertRaises(HTTPException) as ctx:
                auth.authenticate(ident, pw)
            self.assertEqual(ctx.exception.status_code, 401)
            self.assertEqual(ctx.exception.detail, "Invalid credentials")

    def test_unknown_login_still_checks_a_hash(self):
        with patch.object(auth, "verify_password", wraps=verify_password) as verify:
            with self.assertRaises(HTTPException):
                auth.authenticate("nobody", "secret1")
        verify.assert_called_once()
        self.assertTrue(verify.call_args.args[1].startswith("pbkdf2_sha256$"))

    def test_refresh_rotates_and_old_token_dies(self):
        user, _, refresh = self.register()
        # jti keeps same-second tokens distinct
        access2, refresh2 = auth.refresh_tokens(refresh)

        self.assertNotEqual(refresh, refresh2)
        self.assertEqual(self.table.item(f"USER#{user['id']}")["refresh_token"], refresh2)
        with self.assertRaises(HTTPException) as ctx:
            auth.refresh_tokens(refresh)
        self.assertEqual(ctx.exception.status_code, 401)

    def test_logout_revokes_refresh(self):
        user, _, refresh = self.register()
        auth.logout(user["id"])
        self.assertNotIn("refresh_token", self.table.item(f"USER#{user['id']}"))
        with self.assertRaises(HTTPException):
            auth.refresh_tokens(refresh)

    def test_refresh_requires_token(self):
        with self.assertRaises(HTTPException) as ctx:
            auth.refresh_tokens(None)
        self.assertEqual(ctx.exception.status_code, 401)


if __name__ == "__main__":
    unittest.main()
