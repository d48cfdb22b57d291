import os
import unittest
from unittest.mock import patch

from fastapi.testclient import TestClient

from backend.app import create_app, status_for
from backend.dependencies import reset_dependencies
from shared.config import get_settings
from shared.errors import ConflictError, UnsupportedOperationError, ValidationError

TEST_ENV = {
    "USE_IN_MEMORY_BACKENDS": "true",
    "BCRYPT_ROUNDS": "4",
    "JWT_SECRET": "test-secret-for-the-backend-api-tests",
}


class BackendApiTests(unittest.TestCase):
    def setUp(self):
        env = patch.dict(os.environ, TEST_ENV)
        env.start()
        self.addCleanup(env.stop)
        get_settings.cache_clear()
        self.addCleanup(get_settings.cache_clear)
        reset_dependencies()
        self.addCleanup(reset_dependencies)

        self.client = TestClient(create_app())
        self.client.__enter__()
        self.addCleanup(self.client.__exit__, None, None, None)

    def register(self, username: str) -> tuple[dict, dict]:
        response = self.client.post(
            "/api/auth/register",
            json={
                "username": username,
                "email": f"{username.lower()}@example.com",
                "password": "pw123",
            },
        )
        self.assertEqual(response.status_code, 200, response.text)
        payload = response.json()
        return {"Authorization": f"Bearer {payload['token']}"}, payload["user"]

    def create_post(self, headers: dict, body: str = "Sunset study", **extra) -> dict:
        response = self.client.post(
            "/api/posts", json={"body": body, **extra}, headers=headers
        )
        self.assertEqual(response.status_code, 200, response.text)
        return response.json()

    def test_error_status_mapping(self):
        self.assertEqual(status_for(ValidationError("x")), 400)
        self.assertEqual(status_for(ConflictError("x")), 409)
        self.assertEqual(status_for(UnsupportedOperationError("x")), 501)

    def test_register_and_login(self):
        _, user = self.register("alice")
        self.assertEqual(user["username"], "alice")
        self.assertFalse(user["is_admin"])

        response = self.client.post(
            "/api/auth/login",
            json={"usernameOrEmail": "alice@example.com", "password": "pw123"},
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["user"]["id"], user["id"])
        self.assertTrue(response.json()["token"])

    def test_login_mismatch_is_unauthorized(self):
        self.register("alice")
        for identifier, password in (("alice", "wrong"), ("nobody", "pw123")):
            response = self.client.post(
                "/api/auth/login",
                json={"usernameOrEmail": identifier, "password": password},
            )
            self.assertEqual(response.status_code, 401)
            self.assertEqual(response.json()["detail"], "Invalid credentials")

    def test_register_validation(self):
        self.register("alice")
        duplicate = self.client.post(
            "/api/auth/register",
            json={"username": "Alice", "email": "new@example.com", "password": "x"},
        )
        self.assertEqual(duplicate.status_code, 400)
        self.assertEqual(duplicate.json()["detail"], "Username already exists")

        missing = self.client.post("/api/auth/register", json={"username": "bob"})
        self.assertEqual(missing.status_code, 400)

    def test_privileged_username_gets_admin(self):
        _, user = self.register("Kiyoshi")
        self.assertTrue(user["is_admin"])

    def test_auth_required(self):
        response = self.client.post("/api/posts", json={"body": "hello"})
        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["detail"], "No token")

        response = self.client.post(
            "/api/posts",
            json={"body": "hello"},
            headers={"Authorization": "Bearer not-a-jwt"},
        )
        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["detail"], "Invalid token")

    def test_create_post_and_read_feed(self):
        headers, user = self.register("alice")
        missing = self.client.post("/api/posts", json={}, headers=headers)
        self.assertEqual(missing.status_code, 400)
        self.assertEqual(missing.json()["detail"], "Body required")

        post = self.create_post(headers, tags=["ink"])
        self.assertEqual(post["user_id"], user["id"])
        self.assertEqual(post["username"], "alice")
        self.assertEqual(post["likes_count"], 0)

        feed = self.client.get("/api/posts").json()
        self.assertEqual([p["id"] for p in feed], [post["id"]])
        self.assertFalse(feed[0]["user_liked"])

        single = self.client.get(f"/api/posts/{post['id']}")
        self.assertEqual(single.status_code, 200)
        self.assertEqual(self.client.get("/api/posts/missing").status_code, 404)

        trending = self.client.get("/api/tags/trending").json()
        self.assertEqual(trending, [{"tag": "ink", "count": 1, "normalized_tag": "ink"}])

    def test_like_toggles_and_notifies(self):
        alice_headers, _ = self.register("alice")
        bob_headers, _ = self.register("bob")
        post = self.create_post(alice_headers)

        liked = self.client.post(f"/api/posts/{post['id']}/like", headers=bob_headers)
        self.assertEqual(liked.json(), {"liked": True, "likes_count": 1})
        feed = self.client.get("/api/posts", headers=bob_headers).json()
        self.assertTrue(feed[0]["user_liked"])

        unread = self.client.get("/api/notifications/unread-count", headers=alice_headers)
        self.assertEqual(unread.json(), {"count": 1})
        notifications = self.client.get("/api/notifications", headers=alice_headers)
        self.assertEqual(notifications.json()[0]["type"], "like")

        unliked = self.client.post(f"/api/posts/{post['id']}/like", headers=bob_headers)
        self.assertEqual(unliked.json(), {"liked": False, "likes_count": 0})

    def test_context_rules(self):
        alice_headers, _ = self.register("alice")
        bob_headers, _ = self.register("bob")
        post = self.create_post(alice_headers)
        url = f"/api/posts/{post['id']}/context"

        own = self.client.post(url, json={"text": "mine"}, headers=alice_headers)
        self.assertEqual(own.status_code, 403)

        created = self.client.post(url, json={"text": "Oil on canvas"}, headers=bob_headers)
        self.assertEqual(created.status_code, 200)
        self.assertEqual(created.json()["username"], "bob")

        again = self.client.post(url, json={"text": "another"}, headers=bob_headers)
        self.assertEqual(again.status_code, 409)

        missing = self.client.post(
            "/api/posts/missing/context", json={"text": "x"}, headers=bob_headers
        )
        self.assertEqual(missing.status_code, 404)

        vote = self.client.post(
            f"/api/contexts/{created.json()['id']}/vote",
            json={"vote": "up"},
            headers=alice_headers,
        )
        self.assertEqual(
            vote.json(),
            {"approved": True, "approval_rate": 100.0, "upvotes": 1, "downvotes": 0},
        )
        bad_vote = self.client.post(
            f"/api/contexts/{created.json()['id']}/vote",
            json={"vote": "maybe"},
            headers=alice_headers,
        )
        self.assertEqual(bad_vote.status_code, 400)

    def test_follow_and_unfollow(self):
        alice_headers, alice = self.register("alice")
        _, bob = self.register("bob")

        itself = self.client.post(f"/api/follow/{alice['id']}", headers=alice_headers)
        self.assertEqual(itself.status_code, 400)

        followed = self.client.post(f"/api/follow/{bob['id']}", headers=alice_headers)
        self.assertEqual(followed.json(), {"success": True, "following": True})
        stats = self.client.get(f"/api/users/{bob['id']}/stats").json()
        self.assertEqual(stats["followers"], 1)

        unfollowed = self.client.delete(f"/api/follow/{bob['id']}", headers=alice_headers)
        self.assertEqual(unfollowed.json(), {"success": True, "following": False})

    def test_comments(self):
        alice_headers, _ = self.register("alice")
        bob_headers, _ = self.register("bob")
        post = self.create_post(alice_headers)
        url = f"/api/posts/{post['id']}/comments"

        empty = self.client.post(url, json={"text": " "}, headers=bob_headers)
        self.assertEqual(empty.status_code, 400)
        comment = self.client.post(url, json={"text": "Lovely"}, headers=bob_headers).json()
        self.assertEqual(comment["username"], "bob")
        self.assertEqual([c["text"] for c in self.client.get(url).json()], ["Lovely"])

        forbidden = self.client.delete(
            f"/api/comments/{comment['id']}", headers=alice_headers
        )
        self.assertEqual(forbidden.status_code, 403)
        deleted = self.client.delete(f"/api/comments/{comment['id']}", headers=bob_headers)
        self.assertEqual(deleted.json(), {"success": True})

    def test_profile_endpoints(self):
        headers, user = self.register("alice")
        renamed = self.client.put(
            "/api/profile/username", json={"username": "alicia"}, headers=headers
        )
        self.assertEqual(renamed.status_code, 200)
        self.assertEqual(renamed.json()["previous_usernames"][0]["username"], "alice")
        self.assertNotIn("password", renamed.json())

        too_soon = self.client.put(
            "/api/profile/username", json={"username": "ally"}, headers=headers
        )
        self.assertEqual(too_soon.status_code, 400)

        profile = self.client.get("/api/profile", headers=headers).json()
        self.assertEqual(profile["user"]["username"], "alicia")
        self.assertEqual(profile["counts"], {"posts": 0, "followers": 0, "following": 0})

        settings = self.client.get("/api/settings", headers=headers).json()
        self.assertEqual(settings["email"], "alice@example.com")
        self.assertEqual(
            self.client.get("/api/users/missing/stats").status_code, 404
        )

    def test_admin_moderation(self):
        admin_headers, _ = self.register("Kiyoshi")
        alice_headers, _ = self.register("alice")
        bob_headers, bob = self.register("bob")
        self.create_post(bob_headers, "Spam spam")

        denied = self.client.post(
            f"/api/admin/users/{bob['id']}/ban", json={}, headers=alice_headers
        )
        self.assertEqual(denied.status_code, 403)

        banned = self.client.post(
            f"/api/admin/users/{bob['id']}/ban",
            json={"reason": "spam"},
            headers=admin_headers,
        )
        self.assertEqual(banned.json(), {"success": True, "posts_affected": 1})
        self.assertEqual(self.client.get("/api/posts").json(), [])
        self.assertEqual(len(self.client.get("/api/posts", headers=admin_headers).json()), 1)

        unbanned = self.client.post(
            f"/api/admin/users/{bob['id']}/unban", headers=admin_headers
        )
        self.assertEqual(unbanned.json(), {"success": True, "posts_affected": 1})
        self.assertEqual(len(self.client.get("/api/posts").json()), 1)

    def test_reports(self):
        admin_headers, _ = self.register("Kiyoshi")
        alice_headers, _ = self.register("alice")
        post = self.create_post(alice_headers)

        report = self.client.post(
            f"/api/posts/{post['id']}/report",
            json={"reason": "copyright"},
            headers=alice_headers,
        ).json()
        self.assertEqual(
            self.client.get("/api/admin/reports", headers=alice_headers).status_code,
            403,
        )
        pending = self.client.get("/api/admin/reports", headers=admin_headers).json()
        self.assertEqual([r["id"] for r in pending], [report["id"]])

        dismissed = self.client.post(
            f"/api/admin/reports/{report['id']}/dismiss", headers=admin_headers
        )
        self.assertEqual(dismissed.json()["status"], "dismissed")
        self.assertEqual(self.client.get("/api/admin/reports", headers=admin_headers).json(), [])


if __name__ == "__main__":
    unittest.main()
