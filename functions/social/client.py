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

"""
Session-holding client shared by the offline and remote deployments.

The service layer takes the acting user explicitly; SocialClient remembers
who is logged in, persists that session, and exposes every operation
without the actor argument.
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional, Protocol

from shared.errors import NotFoundError
from shared.firebase_constants import SESSION_TOKEN_PREFIX
from shared.types import (
    CommentView,
    Context,
    FeedItem,
    LikeResult,
    Notification,
    Post,
    ProfileSummary,
    Report,
    TrendingTag,
    User,
    UserStats,
    UserSuggestion,
    VoteResult,
)
from social.repository import Unsubscribe
from social.service import FeedCallback, SocialService

logger = logging.getLogger(__name__)


class SessionStore(Protocol):
    async def save_session(self, user: User, token: str) -> None:
        ...

    async def load_session(self) -> Optional[tuple[User, str]]:
        ...

    async def clear_session(self) -> None:
        ...


class InMemorySessionStore:
    def __init__(self):
        self.session: Optional[tuple[User, str]] = None

    async def save_session(self, user: User, token: str) -> None:
        self.session = (user, token)

    async def load_session(self) -> Optional[tuple[User, str]]:
        return self.session

    async def clear_session(self) -> None:
        self.session = None


class SocialClient:
    def __init__(
        self, service: SocialService, sessions: Optional[SessionStore] = None
    ):
        self.service = service
        self.sessions = sessions or InMemorySessionStore()
        self.current_user: Optional[User] = None
        self.token: Optional[str] = None

    @property
    def is_authenticated(self) -> bool:
        return self.current_user is not None

    async def _start_session(self, user: User) -> User:
        self.current_user = user
        self.token = f"{SESSION_TOKEN_PREFIX}{user.id}"
        await self.sessions.save_session(user, self.token)
        return user

    async def _remember(self, user: User) -> User:
        if self.current_user and self.current_user.id == user.id:
            await self._start_session(user)
        return user

    async def restore_session(self) -> Optional[User]:
        """Reloads the logged-in user saved by a previous run, if any."""
        session = await self.sessions.load_session()
        if session is None:
            return None
        saved_user, _ = session
        try:
            user = await self.service.get_user(saved_user.id)
        except NotFoundError:
            logger.info("Discarding session for unknown user %s", saved_user.id)
            await self.logout()
            return None
        return await self._start_session(user)

    async def refresh_current_user(self) -> Optional[User]:
        if self.current_user is None:
            return None
        return await self._remember(await self.service.get_user(self.current_user.id))

    # Auth

    async def register(self, username: str, email: str, password: str) -> User:
        user = await self.service.register(username, email, password)
        return await self._start_session(user)

    async def login(self, username_or_email: str, password: str) -> User:
        user = await self.service.login(username_or_email, password)
        return await self._start_session(user)

    async def logout(self) -> None:
        self.current_user = None
        self.token = None
        await self.sessions.clear_session()

    async def reset_password(self, email: str, new_password: str) -> bool:
        return await self.service.reset_password(email, new_password)

    # Posts and feed

    async def create_post(
        self,
        body: str,
        image_url: Optional[str] = None,
        tags: Optional[Iterable[str]] = None,
        is_nsfw: bool = False,
    ) -> Post:
        return await self.service.create_post(
            self.current_user, body, image_url, tags, is_nsfw
        )

    async def get_post(self, post_id: str) -> FeedItem:
        return await self.service.get_post(self.current_user, post_id)

    async def edit_post(
        self, post_id: str, body: str, tags: Optional[Iterable[str]] = None
    ) -> Post:
        return await self.service.edit_post(self.current_user, post_id, body, tags)

    async def delete_post(self, post_id: str) -> None:
        await self.service.delete_post(self.current_user, post_id)

    async def get_posts(self, limit: Optional[int] = None) -> list[FeedItem]:
        return await self.service.get_feed(self.current_user, limit)

    async def get_explore_posts(self, limit: Optional[int] = None) -> list[FeedItem]:
        return await self.service.get_explore_posts(self.current_user, limit)

    async def get_posts_by_tag(self, tag: str) -> list[FeedItem]:
        return await self.service.get_posts_by_tag(self.current_user, tag)

    async def get_trending_tags(self, limit: int = 15) -> list[TrendingTag]:
        return await self.service.get_trending_tags(limit)

    async def subscribe_to_feed(self, callback: FeedCallback) -> Unsubscribe:
        return await self.service.subscribe_to_feed(self.current_user, callback)

    # Likes and saves

    async def like_post(self, post_id: str) -> LikeResult:
        return await self.service.toggle_like(self.current_user, post_id)

    async def save_post(self, post_id: str) -> bool:
        return await self.service.toggle_save(self.current_user, post_id)

    async def is_post_saved(self, post_id: str) -> bool:
        return await self.service.is_post_saved(self.current_user, post_id)

    async def get_saved_posts(self) -> list[FeedItem]:
        return await self.service.get_saved_posts(self.current_user)

    # Comments

    async def add_comment(self, post_id: str, text: str) -> CommentView:
        return await self.service.add_comment(self.current_user, post_id, text)

    async def get_comments(self, post_id: str) -> list[CommentView]:
        return await self.service.get_comments(post_id)

    async def get_recent_comments(self, post_id: str, limit: int = 3) -> list[CommentView]:
        return await self.service.get_recent_comments(post_id, limit)

    async def delete_comment(self, comment_id: str) -> None:
        await self.service.delete_comment(self.current_user, comment_id)

    async def toggle_comment_like(self, comment_id: str) -> bool:
        return await self.service.toggle_comment_like(self.current_user, comment_id)

    async def report_comment(
        self, comment_id: str, reason: str, details: str = ""
    ) -> Report:
        return await self.service.report_comment(
            self.current_user, comment_id, reason, details
        )

    # Contexts

    async def add_context(self, post_id: str, text: str) -> Context:
        return await self.service.add_context(self.current_user, post_id, text)

    async def vote_on_context(self, context_id: str, vote: str) -> VoteResult:
        return await self.service.vote_on_context(self.current_user, context_id, vote)

    async def get_approved_context(self, post_id: str) -> Optional[Context]:
        return await self.service.get_approved_context(post_id)

    # Follows

    async def follow_user(self, user_id: str) -> bool:
        following = await self.service.follow_user(self.current_user, user_id)
        await self.refresh_current_user()
        return following

    async def unfollow_user(self, user_id: str) -> bool:
        following = await self.service.unfollow_user(self.current_user, user_id)
        await self.refresh_current_user()
        return following

    async def toggle_follow(self, user_id: str) -> bool:
        following = await self.service.toggle_follow(self.current_user, user_id)
        await self.refresh_current_user()
        return following

    async def is_following(self, user_id: str) -> bool:
        return await self.service.is_following(self.current_user, user_id)

    # Notifications

    async def get_notifications(self) -> list[Notification]:
        return await self.service.get_notifications(self.current_user)

    async def mark_notification_read(self, notification_id: str) -> None:
        await self.service.mark_notification_read(self.current_user, notification_id)

    async def mark_all_notifications_read(self) -> int:
        return await self.service.mark_all_notifications_read(self.current_user)

    async def get_unread_count(self) -> int:
        return await self.service.get_unread_count(self.current_user)

    # Profiles

    async def update_username(self, user_id: str, new_username: str) -> User:
        user = await self.service.update_username(
            self.current_user, user_id, new_username
        )
        return await self._remember(user)

    async def clear_alias_history(self) -> User:
        return await self._remember(
            await self.service.clear_alias_history(self.current_user)
        )

    async def update_about_me(self, text: str) -> User:
        return await self._remember(
            await self.service.update_about_me(self.current_user, text)
        )

    async def update_profile_picture(self, profile_picture: str) -> User:
        return await self._remember(
            await self.service.update_profile_picture(
                self.current_user, profile_picture
            )
        )

    async def update_profile(self, changes: dict) -> User:
        return await self._remember(
            await self.service.update_profile(self.current_user, changes)
        )

    async def get_user_stats(self, user_id: str) -> UserStats:
        return await self.service.get_user_stats(user_id)

    async def get_profile_summary(self) -> ProfileSummary:
        return await self.service.get_profile_summary(self.current_user)

    async def search_users(self, term: str) -> list[User]:
        return await self.service.search_users(term)

    async def get_suggested_users(self, limit: int = 5) -> list[UserSuggestion]:
        return await self.service.get_suggested_users(self.current_user, limit)

    # Moderation

    async def report_post(self, post_id: str, reason: str, details: str = "") -> Report:
        return await self.service.report_post(
            self.current_user, post_id, reason, details
        )

    async def get_reports(self) -> list[Report]:
        return await self.service.get_reports(self.current_user)

    async def dismiss_report(self, report_id: str) -> Report:
        return await self.service.dismiss_report(self.current_user, report_id)

    async def get_pending_contexts(self) -> list[Context]:
        return await self.service.get_pending_contexts(self.current_user)

    async def get_post_context_submissions(self, post_id: str) -> list[Context]:
        return await self.service.get_post_context_submissions(
            self.current_user, post_id
        )

    async def admin_approve_context(self, context_id: str) -> Context:
        return await self.service.admin_approve_context(self.current_user, context_id)

    async def admin_reject_context(self, context_id: str) -> Context:
        return await self.service.admin_reject_context(self.current_user, context_id)

    async def admin_remove_post(self, post_id: str) -> Post:
        return await self.service.admin_remove_post(self.current_user, post_id)

    async def admin_ban_user(self, user_id: str, reason: str = "") -> int:
        return await self.service.admin_ban_user(self.current_user, user_id, reason)

    async def admin_unban_user(self, user_id: str) -> int:
        return await self.service.admin_unban_user(self.current_user, user_id)
