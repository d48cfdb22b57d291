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
Storage interface for the social service.

Each backend (local store, Firestore, SQL) supplies one implementation of
every repository below. Counter and membership updates are expected to be
atomic within the backend.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional, Protocol, Sequence

from shared.types import (
    Comment,
    Context,
    FeedSnapshot,
    Notification,
    Post,
    Report,
    SavedPost,
    User,
    Visibility,
    VoteValue,
)

Unsubscribe = Callable[[], None]


class UserRepository(Protocol):
    async def add(self, user: User) -> User:
        ...

    async def get(self, user_id: str) -> Optional[User]:
        ...

    async def get_many(self, user_ids: Sequence[str]) -> dict[str, User]:
        ...

    async def find_by_username(self, username: str) -> Optional[User]:
        """Case-insensitive lookup."""
        ...

    async def find_by_email(self, email: str) -> Optional[User]:
        ...

    async def update(self, user_id: str, changes: dict) -> Optional[User]:
        ...

    async def list_all(self) -> list[User]:
        ...

    async def increment_counts(
        self,
        user_id: str,
        *,
        followers: int = 0,
        following: int = 0,
        posts: int = 0,
    ) -> None:
        ...


class PostRepository(Protocol):
    async def add(self, post: Post) -> Post:
        ...

    async def get(self, post_id: str) -> Optional[Post]:
        ...

    async def list_recent(self, limit: Optional[int] = None) -> list[Post]:
        """Posts newest first."""
        ...

    async def list_by_user(self, user_id: str) -> list[Post]:
        ...

    async def update(self, post_id: str, changes: dict) -> Optional[Post]:
        ...

    async def delete(self, post_id: str) -> None:
        ...

    async def add_like(self, post_id: str, user_id: str) -> bool:
        """Returns False when the user already liked the post."""
        ...

    async def remove_like(self, post_id: str, user_id: str) -> bool:
        ...

    async def adjust_comment_count(self, post_id: str, delta: int) -> None:
        """Changes comment_count by delta, never going below zero."""
        ...

    async def set_visibility_for_user(
        self,
        user_id: str,
        visibility: Visibility,
        reason: Optional[str],
        *,
        only_hidden_reason: Optional[str] = None,
    ) -> int:
        """
        Sets visibility on the user's posts and returns how many changed.
        Removed posts are left alone.

        With only_hidden_reason, only posts hidden for that reason are touched.
        """
        ...


class FeedWatcher(Protocol):
    """Optional capability of a PostRepository that can push feed changes."""

    def watch_recent(
        self, limit: Optional[int], callback: Callable[[FeedSnapshot], None]
    ) -> Unsubscribe:
        ...


class ContextRepository(Protocol):
    async def add(self, context: Context) -> Context:
        ...

    async def get(self, context_id: str) -> Optional[Context]:
        ...

    async def list_for_post(self, post_id: str) -> list[Context]:
        ...

    async def list_pending(self) -> list[Context]:
        ...

    async def update(self, context_id: str, changes: dict) -> Optional[Context]:
        ...

    async def apply_vote(
        self, context_id: str, user_id: str, vote: VoteValue
    ) -> Optional[Context]:
        """Atomically replaces the user's vote and recomputes approval."""
        ...

    async def delete_for_post(self, post_id: str) -> None:
        ...


class CommentRepository(Protocol):
    async def add(self, comment: Comment) -> Comment:
        ...

    async def get(self, comment_id: str) -> Optional[Comment]:
        ...

    async def list_for_post(self, post_id: str) -> list[Comment]:
        """Comments oldest first."""
        ...

    async def count_for_post(self, post_id: str) -> int:
        ...

    async def delete(self, comment_id: str) -> None:
        ...

    async def delete_for_post(self, post_id: str) -> None:
        ...

    async def toggle_like(self, comment_id: str, user_id: str) -> bool:
        ...


class FollowRepository(Protocol):
    async def add(self, follower_id: str, followee_id: str) -> bool:
        """Returns False when the edge already existed."""
        ...

    async def remove(self, follower_id: str, followee_id: str) -> bool:
        ...

    async def exists(self, follower_id: str, followee_id: str) -> bool:
        ...

    async def list_followers(self, user_id: str) -> list[str]:
        ...

    async def list_following(self, user_id: str) -> list[str]:
        ...


class NotificationRepository(Protocol):
    async def add(self, notification: Notification) -> Notification:
        ...

    async def get(self, notification_id: str) -> Optional[Notification]:
        ...

    async def list_for_user(self, user_id: str, limit: int) -> list[Notification]:
        """Notifications newest first."""
        ...

    async def mark_read(self, notification_id: str, user_id: str) -> bool:
        ...

    async def mark_all_read(self, user_id: str) -> int:
        ...

    async def unread_count(self, user_id: str) -> int:
        ...


class SavedPostRepository(Protocol):
    async def add(self, user_id: str, post_id: str) -> bool:
        ...

    async def remove(self, user_id: str, post_id: str) -> bool:
        ...

    async def exists(self, user_id: str, post_id: str) -> bool:
        ...

    async def list_for_user(self, user_id: str) -> list[SavedPost]:
        """Saves newest first."""
        ...

    async def count_for_post(self, post_id: str) -> int:
        ...

    async def delete_for_post(self, post_id: str) -> None:
        ...


class ReportRepository(Protocol):
    async def add(self, report: Report) -> Report:
        ...

    async def get(self, report_id: str) -> Optional[Report]:
        ...

    async def list_pending(self) -> list[Report]:
        ...

    async def update(self, report_id: str, changes: dict) -> Optional[Report]:
        ...


@dataclass
class Repositories:
    users: UserRepository
    posts: PostRepository
    contexts: ContextRepository
    comments: CommentRepository
    follows: FollowRepository
    notifications: NotificationRepository
    saved_posts: SavedPostRepository
    reports: ReportRepository
