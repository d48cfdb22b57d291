# Copyright 2025 Google LLC
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
# ==============================================================================


import asyncio
import dataclasses
import unittest

from local_store.repository import create_local_repositories
from local_store.store import InMemoryKeyValueStore, LocalStore
from shared.constants import MAX_USERNAME_HISTORY, USERNAME_CHANGE_COOLDOWN_SECONDS
from shared.errors import (
    AuthenticationError,
    ConflictError,
    CooldownError,
    NotFoundError,
    PermissionDeniedError,
    UnsupportedOperationError,
    ValidationError,
)
from shared.types import NotificationType, Visibility
from social.service import SocialService


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class SocialServiceTest(unittest.IsolatedAsyncioTestCase):

    def make_service(self, **kwargs) -> SocialService:
        store = LocalStore(InMemoryKeyValueStore())
        return SocialService(
            create_local_repositories(store),
            privileged_usernames=("Kiyoshi",),
            clock=self.clock,
            **kwargs,
        )

    async def asyncSetUp(self):
        self.clock = FakeClock()
        self.service = self.make_service()
        self.alice = await self.service.register("alice", "a@x.com", "pw123")
        self.bob = await self.service.register("bob", "b@x.com", "pw456")

    async def test_register_then_login_by_username_or_email(self):
        by_name = await self.service.login("alice", "pw123")
        by_email = await self.service.login("A@X.com", "pw123")

        self.assertEqual(by_name.id, self.alice.id)
        self.assertEqual(by_email.id, self.alice.id)
        with self.assertRaises(AuthenticationError):
            await self.service.login("alice", "wrong")
        with self.assertRaises(AuthenticationError):
            await self.service.login("nobody", "pw123")

    async def test_register_rejects_duplicates_and_missing_fields(self):
        with self.assertRaisesRegex(ValidationError, "Username already exists"):
            await self.service.register("ALICE", "other@x.com", "pw")
        with self.assertRaisesRegex(ValidationError, "Email already registered"):
            await self.service.register("carol", "a@x.com", "pw")
        with self.assertRaises(ValidationError):
            await self.service.register("carol", "", "pw")

    async def test_privileged_username_is_admin(self):
        admin = await self.service.register("Kiyoshi", "k@x.com", "pw")
        self.assertTrue(admin.is_admin)
        self.assertFalse(self.alice.is_admin)

    async def test_like_notifies_owner_and_unlike_reverts(self):
        post = await self.service.create_post(self.alice, "First artwork")

        result = await self.service.toggle_like(self.bob, post.id)
        self.assertTrue(result.liked)
        self.assertEqual(result.likes_count, 1)

        notifications = await self.service.get_notifications(self.alice)
        self.assertEqual(len(notifications), 1)
        self.assertEqual(notifications[0].type, NotificationType.LIKE)
        self.assertEqual(notifications[0].from_user_id, self.bob.id)
        self.assertEqual(notifications[0].message, "bob liked your post")

        feed = await self.service.get_feed(self.bob)
        self.assertTrue(feed[0].user_liked)
        self.assertEqual(feed[0].likes_count, 1)

        result = await self.service.toggle_like(self.bob, post.id)
        self.assertFalse(result.liked)
        self.assertEqual(result.likes_count, 0)
        self.assertEqual(len(await self.service.get_notifications(self.alice)), 1)

    async def test_like_count_matches_distinct_likers(self):
        post = await self.service.create_post(self.alice, "Sketch")
        carol = await self.service.register("carol", "c@x.com", "pw")
        for user in (self.alice, self.bob, carol):
            await self.service.toggle_like(user, post.id)
        await self.service.toggle_like(self.bob, post.id)

        stored = await self.service.repos.posts.get(post.id)
        self.assertEqual(sorted(stored.likes), sorted([self.alice.id, carol.id]))
        self.assertEqual(stored.like_count, 2)

    async def test_liking_own_post_does_not_notify(self):
        post = await self.service.create_post(self.alice, "Mine")
        await self.service.toggle_like(self.alice, post.id)
        self.assertEqual(await self.service.get_unread_count(self.alice), 0)

    async def test_create_post_requires_body_and_login(self):
        with self.assertRaisesRegex(ValidationError, "Body required"):
            await self.service.create_post(self.alice, "   ")
        with self.assertRaises(AuthenticationError):
            await self.service.create_post(None, "anonymous")

    async def test_create_post_cleans_tags_and_notifies_followers(self):
        await self.service.follow_user(self.bob, self.alice.id)
        post = await self.service.create_post(
            self.alice, "Watercolor", tags=["#Art", "art", " sky "]
        )

        self.assertEqual(post.tags, ["Art", "sky"])
        kinds = [n.type for n in await self.service.get_notifications(self.bob)]
        self.assertIn(NotificationType.NEW_POST, kinds)

    async def test_edit_post_keeps_original_body(self):
        post = await self.service.create_post(self.alice, "v1")
        await self.service.edit_post(self.alice, post.id, "v2")
        edited = await self.service.edit_post(self.alice, post.id, "v3")

        self.assertEqual(edited.body, "v3")
        self.assertEqual(edited.original_body, "v1")
        with self.assertRaises(PermissionDeniedError):
            await self.service.edit_post(self.bob, post.id, "hijack")

    async def test_delete_post_cascades(self):
        post = await self.service.create_post(self.alice, "Temporary")
        await self.service.add_comment(self.bob, post.id, "nice")
        await self.service.add_context(self.bob, post.id, "source: museum")
        await self.service.toggle_save(self.bob, post.id)

        with self.assertRaises(PermissionDeniedError):
            await self.service.delete_post(self.bob, post.id)
        await self.service.delete_post(self.alice, post.id)

        repos = self.service.repos
        self.assertIsNone(await repos.posts.get(post.id))
        self.assertEqual(await repos.comments.count_for_post(post.id), 0)
        self.assertEqual(await repos.contexts.list_for_post(post.id), [])
        self.assertFalse(await repos.saved_posts.exists(self.bob.id, post.id))

    async def test_comment_counts_and_permissions(self):
        post = await self.service.create_post(self.alice, "Portrait")
        view = await self.service.add_comment(self.bob, post.id, "  lovely  ")

        self.assertEqual(view.comment.text, "lovely")
        self.assertEqual(view.username, "bob")
        stored = await self.service.repos.posts.get(post.id)
        self.assertEqual(stored.comment_count, 1)
        kinds = [n.type for n in await self.service.get_notifications(self.alice)]
        self.assertEqual(kinds, [NotificationType.COMMENT])

        with self.assertRaisesRegex(ValidationError, "Text required"):
            await self.service.add_comment(self.bob, post.id, "")
        with self.assertRaises(PermissionDeniedError):
            await self.service.delete_comment(self.alice, view.comment.id)

        await self.service.delete_comment(self.bob, view.comment.id)
        stored = await self.service.repos.posts.get(post.id)
        self.assertEqual(stored.comment_count, 0)

    async def test_repeated_vote_leaves_tally_unchanged(self):
        post = await self.service.create_post(self.alice, "Landscape")
        context = await self.service.add_context(self.bob, post.id, "Painted in 1890")

        first = await self.service.vote_on_context(self.alice, context.id, "up")
        second = await self.service.vote_on_context(self.alice, context.id, "up")
        self.assertEqual(first, second)
        self.assertEqual((second.upvotes, second.downvotes), (1, 0))

        switched = await self.service.vote_on_context(self.alice, context.id, "down")
        self.assertEqual((switched.upvotes, switched.downvotes), (0, 1))
        self.assertFalse(switched.approved)

        with self.assertRaises(ValidationError):
            await self.service.vote_on_context(self.alice, context.id, "sideways")
        with self.assertRaises(NotFoundError):
            await self.service.vote_on_context(self.alice, "missing", "up")

    async def test_approved_context_appears_in_feed(self):
        post = await self.service.create_post(self.alice, "Still life")
        context = await self.service.add_context(self.bob, post.id, "Oil on canvas")
        feed = await self.service.get_feed(None)
        self.assertIsNone(feed[0].context)

        await self.service.vote_on_context(self.alice, context.id, "up")
        feed = await self.service.get_feed(None)
        self.assertEqual(feed[0].context.id, context.id)

    async def test_strict_contexts(self):
        service = self.make_service(strict_contexts=True)
        alice = await service.register("alice", "a@x.com", "pw")
        bob = await service.register("bob", "b@x.com", "pw")
        post = await service.create_post(alice, "Collage")

        with self.assertRaises(PermissionDeniedError):
            await service.add_context(alice, post.id, "my own note")
        await service.add_context(bob, post.id, "made from newspapers")
        with self.assertRaises(ConflictError):
            await service.add_context(bob, post.id, "a second note")

    async def test_follow_rules(self):
        with self.assertRaisesRegex(ValidationError, "You cannot follow yourself"):
            await self.service.follow_user(self.alice, self.alice.id)

        self.assertTrue(await self.service.follow_user(self.bob, self.alice.id))
        self.assertTrue(await self.service.follow_user(self.bob, self.alice.id))
        self.assertTrue(await self.service.is_following(self.bob, self.alice.id))
        alice = await self.service.get_user(self.alice.id)
        self.assertEqual(alice.followers_count, 1)

        self.assertFalse(await self.service.unfollow_user(self.bob, self.alice.id))
        alice = await self.service.get_user(self.alice.id)
        self.assertEqual(alice.followers_count, 0)
        self.assertFalse(await self.service.is_following(self.bob, self.alice.id))

    async def test_notifications_mark_read(self):
        await self.service.follow_user(self.bob, self.alice.id)
        notification = (await self.service.get_notifications(self.alice))[0]
        self.assertEqual(await self.service.get_unread_count(self.alice), 1)

        with self.assertRaises(NotFoundError):
            await self.service.mark_notification_read(self.bob, notification.id)
        await self.service.mark_notification_read(self.alice, notification.id)
        self.assertEqual(await self.service.get_unread_count(self.alice), 0)

    async def test_username_cooldown_keeps_history(self):
        renamed = await self.service.update_username(self.alice, self.alice.id, "alicia")
        self.assertEqual(renamed.username, "alicia")
        self.assertEqual([a.username for a in renamed.previous_usernames], ["alice"])

        self.clock.advance(60)
        with self.assertRaises(CooldownError):
            await self.service.update_username(self.alice, self.alice.id, "ally")
        unchanged = await self.service.get_user(self.alice.id)
        self.assertEqual(unchanged.username, "alicia")
        self.assertEqual([a.username for a in unchanged.previous_usernames], ["alice"])

        self.clock.advance(USERNAME_CHANGE_COOLDOWN_SECONDS)
        again = await self.service.update_username(self.alice, self.alice.id, "ally")
        self.assertEqual(
            [a.username for a in again.previous_usernames], ["alicia", "alice"]
        )

    async def test_username_history_is_capped(self):
        names = [f"alice{i}" for i in range(MAX_USERNAME_HISTORY + 3)]
        for name in names:
            self.clock.advance(USERNAME_CHANGE_COOLDOWN_SECONDS)
            user = await self.service.update_username(self.alice, self.alice.id, name)

        history = [a.username for a in user.previous_usernames]
        self.assertEqual(len(history), MAX_USERNAME_HISTORY)
        expected = list(reversed(["alice"] + names[:-1]))[:MAX_USERNAME_HISTORY]
        self.assertEqual(history, expected)
        stored = await self.service.get_user(self.alice.id)
        self.assertEqual(len(stored.previous_usernames), MAX_USERNAME_HISTORY)

    async def test_update_username_rejects_taken_name(self):
        with self.assertRaisesRegex(ValidationError, "already taken"):
            await self.service.update_username(self.alice, self.alice.id, "BOB")
        with self.assertRaises(PermissionDeniedError):
            await self.service.update_username(self.bob, self.alice.id, "mallory")

    async def test_update_profile(self):
        updated = await self.service.update_profile(
            self.alice, {"about_me": "x" * 600, "profile_picture": "data:,"}
        )
        self.assertEqual(len(updated.about_me), 500)
        self.assertEqual(updated.profile_picture, "data:,")
        with self.assertRaises(ValidationError):
            await self.service.update_profile(self.alice, {"is_admin": True})
        with self.assertRaisesRegex(ValidationError, "profile_picture required"):
            await self.service.update_profile(self.alice, {"profile_picture": ""})
        with self.assertRaisesRegex(ValidationError, "profile_picture required"):
            await self.service.update_profile_picture(self.alice, "")

    async def test_admin_actions_require_admin(self):
        post = await self.service.create_post(self.bob, "Something")
        with self.assertRaises(PermissionDeniedError):
            await self.service.admin_ban_user(self.alice, self.bob.id)
        with self.assertRaises(PermissionDeniedError):
            await self.service.admin_remove_post(self.alice, post.id)
        with self.assertRaises(PermissionDeniedError):
            await self.service.get_reports(self.alice)

    async def test_ban_hides_posts_and_unban_restores_them(self):
        admin = await self.service.register("Kiyoshi", "k@x.com", "pw")
        kept = await self.service.create_post(self.bob, "Kept")
        removed = await self.service.create_post(self.bob, "Removed")
        await self.service.admin_remove_post(admin, removed.id)

        hidden = await self.service.admin_ban_user(admin, self.bob.id, "spam")
        self.assertEqual(hidden, 1)
        bob = await self.service.get_user(self.bob.id)
        self.assertTrue(bob.banned)
        self.assertEqual(await self.service.get_feed(self.alice), [])
        self.assertEqual(len(await self.service.get_feed(self.bob)), 2)
        self.assertEqual(len(await self.service.get_feed(admin)), 2)

        restored = await self.service.admin_unban_user(admin, self.bob.id)
        self.assertEqual(restored, 1)
        repos = self.service.repos
        self.assertEqual((await repos.posts.get(kept.id)).visibility, Visibility.PUBLIC)
        self.assertEqual(
            (await repos.posts.get(removed.id)).visibility, Visibility.REMOVED
        )

    async def test_reports_can_be_dismissed(self):
        admin = await self.service.register("Kiyoshi", "k@x.com", "pw")
        post = await self.service.create_post(self.bob, "Questionable")
        report = await self.service.report_post(self.alice, post.id, "spam")

        self.assertEqual(
            [r.id for r in await self.service.get_reports(admin)], [report.id]
        )
        await self.service.dismiss_report(admin, report.id)
        self.assertEqual(await self.service.get_reports(admin), [])
        with self.assertRaises(ValidationError):
            await self.service.report_post(self.alice, post.id, "")

    async def test_trending_tags_and_tag_search(self):
        await self.service.create_post(self.alice, "one", tags=["Ink", "sky"])
        await self.service.create_post(self.bob, "two", tags=["ink"])

        trending = await self.service.get_trending_tags()
        self.assertEqual(trending[0].normalized_tag, "ink")
        self.assertEqual(trending[0].count, 2)
        tagged = await self.service.get_posts_by_tag(None, "#INK")
        self.assertEqual(len(tagged), 2)

    async def test_saved_posts(self):
        post = await self.service.create_post(self.alice, "Keep me")
        self.assertTrue(await self.service.toggle_save(self.bob, post.id))
        saved = await self.service.get_saved_posts(self.bob)
        self.assertEqual([item.post.id for item in saved], [post.id])
        self.assertTrue(saved[0].user_saved)
        self.assertFalse(await self.service.toggle_save(self.bob, post.id))
        self.assertEqual(await self.service.get_saved_posts(self.bob), [])

    async def test_suggested_users_exclude_viewer_and_banned(self):
        admin = await self.service.register("Kiyoshi", "k@x.com", "pw")
        post = await self.service.create_post(self.bob, "Popular")
        await self.service.toggle_like(self.alice, post.id)
        await self.service.admin_ban_user(admin, self.alice.id)

        suggestions = await self.service.get_suggested_users(admin, limit=10)
        self.assertEqual([s.user.id for s in suggestions], [self.bob.id])
        self.assertEqual(suggestions[0].likes_received, 1)

    async def test_feed_limit_counts_only_visible_posts(self):
        admin = await self.service.register("Kiyoshi", "k@x.com", "pw")
        posts = []
        for body in ("First", "Second", "Third", "Fourth", "Fifth"):
            self.clock.advance(1)
            posts.append(await self.service.create_post(self.alice, body))
        for post in posts[2:]:
            await self.service.admin_remove_post(admin, post.id)

        feed = await self.service.get_feed(self.bob, limit=2)
        self.assertEqual([item.post.body for item in feed], ["Second", "First"])
        owner_feed = await self.service.get_feed(self.alice, limit=2)
        self.assertEqual([item.post.body for item in owner_feed], ["Fifth", "Fourth"])

    async def test_subscribe_requires_a_watching_backend(self):
        repos = dataclasses.replace(self.service.repos, posts=object())
        service = SocialService(repos)
        with self.assertRaises(UnsupportedOperationError):
            await service.subscribe_to_feed(self.bob, lambda items: None)

    async def test_subscribe_to_feed_pushes_new_posts(self):
        received: list = []
        arrived = asyncio.Event()

        def on_feed(items):
            received.append([item.post.body for item in items])
            if items:
                arrived.set()

        unsubscribe = await self.service.subscribe_to_feed(self.bob, on_feed)
        await self.service.create_post(self.alice, "Live drawing")
        await asyncio.wait_for(arrived.wait(), timeout=1)
        unsubscribe()

        self.assertIn(["Live drawing"], received)


if __name__ == "__main__":
    unittest.main()
