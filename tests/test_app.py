import asyncio
import time
import unittest
from unittest.mock import patch

import httpx
from fastapi.testclient import TestClient

from traveldiary.auth import tokens
from traveldiary.core.errors import NotFound
from traveldiary.main import app
from traveldiary.services import posts as posts_service
from traveldiary.services import users as users_service


class TestErrorEnvelope(unittest.TestCase):
    def setUp(self):
        self.client = TestClient(app, raise_server_exceptions=False)

    def auth_header(self, user_id="u1"):
        access, _ = tokens.issue_pair(user_id)
        return {"Authorization": f"Bearer {access}"}

    def test_health(self):
        resp = self.client.get("/api/health")
        self.assertEqual(resp.status_code, 200)
        self.assertTrue(resp.json()["success"])

    def test_missing_token_requires_auth(self):
        resp = self.client.get("/api/auth/me")
        self.assertEqual(resp.status_code, 401)
        body = resp.json()
        self.assertEqual(body, {
            "success": False,
            "message": "Not authorized, no token",
            "requires_auth": True,
            "token_expired": False,
        })

    def test_not_found_envelope(self):
        with patch.object(users_service, "get_user", return_value={"id": "u1", "username": "alice"}):
            with patch.object(posts_service, "get_post", side_effect=NotFound("Post not found")):
                resp = self.client.get("/api/posts/p404", headers=self.auth_header())
        self.assertEqual(resp.status_code, 404)
        self.assertEqual(resp.json(), {"success": False, "message": "Post not found"})

    def test_validation_envelope(self):
        resp = self.client.post("/api/auth/register", json={"username": "al"})
        self.assertEqual(resp.status_code, 400)
        self.assertFalse(resp.json()["success"])
        self.assertTrue(resp.json()["errors"])

    def test_unhandled_error_is_500(self):
        with patch.object(users_service, "get_user", return_value={"id": "u1", "username": "alice"}):
            with patch.object(posts_service, "get_post", side_effect=RuntimeError("boom")):
                resp = self.client.get("/api/posts/p1", headers=self.auth_header())
        self.assertEqual(resp.status_code, 500)
        self.assertEqual(resp.json(), {"success": False, "message": "Internal server error"})


class TestConcurrency(unittest.TestCase):
    def test_slow_store_reads_overlap(self):
        def slow_get_post(post_id, viewer_id):
            time.sleep(0.3)
            return {"id": post_id}

        access, _ = tokens.issue_pair("u1")
        headers = {"Authorization": f"Bearer {access}"}

        async def fire():
            transport = httpx.ASGITransport(app=app)
            async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
                return await asyncio.gather(*(client.get(f"/api/posts/p{i}", headers=headers) for i in range(4)))

        with patch.object(users_service, "get_user", return_value={"id": "u1", "username": "alice"}):
            with patch.object(posts_service, "get_post", side_effect=slow_get_post):
                started = time.monotonic()
                responses = asyncio.run(fire())
                elapsed = time.monotonic() - started

        self.assertEqual([r.status_code for r in responses], [200] * 4)
        self.assertEqual(sorted(r.json()["post"]["id"] for r in responses), ["p0", "p1", "p2", "p3"])
        self.assertLess(elapsed, 1.0)


if __name__ == "__main__":
    unittest.main()
