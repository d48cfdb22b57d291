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

"""Repository implementations backed by LocalStore collections."""

from __future__ import annotations

import asyncio
import time
import uuid
from typing import Any, Callable, Generic, Optional, Sequence, Type, TypeVar

from shared.firebase_constants import (
    COMMENTS_COLLECTION,
    CONTEXTS_COLLECTION,
    FOLLOWS_COLLECTION,
    NOTIFICATIONS_COLLECTION,
    POSTS_COLLECTION,
    REPORTS_COLLECTION,
    SAVED_POSTS_COLLECTION,
    USERS_COLLECTION,
)
from shared.types import (
    Comment,
    Context,
    FeedSnapshot,
    Notification,
    Post,
    Report,
    ReportStatus,
    SavedPost,
    User,
    Visibility,
    VoteValue,
    from_record,
    to_record,
)
from social import contexts as context_rules
from social.repository import Repositories, Unsubscribe
from local_store.store import LocalStore

T = TypeVar("T")


def _newest_first(records: list[dict], key: str = "created_at") -> list[dict]:
    return sorted(records, key=lambda r: r.get(key) or 0, reverse=True)


class _LocalRepository(Generic[T]):
    collection: str
    record_type: Type[T]

    def __init__(self, store: LocalStore):
        self.store = store

    async def _records(self) -> list[dict]:
        return await self.store.get_collection(self.collection)

    def _load(self, record: dict) -> T:
        return from_record(self.record_type, record)

    async def _all(self) -> list[T]:
        return [self._load(r) for r in await self._records()]

    async def get(self, item_id: str) -> Optional[T]:
        for record in await self._records():
            if record.get("id") == item_id:
                return self._load(record)
        return None

    async def add(self, entity: T) -> T:
        await self.store.append(self.collection, to_record(entity))
        return entity

    async def update(self, item_id: str, changes: dict) -> Optional[T]:
        record = await self.store.update_item(self.collection, item_id, changes)
        return self._load(record) if record is not None else None

    async def _mutate(self, item_id: str, mutate: Callable[[dict], Any]) -> Any:
        """Runs mutate on the stored record under the store lock."""
        async with self.store.transaction():
            records = await self._records()
            for record in records:
                if record.get("id") == item_id:
                    result = mutate(record)
                    await self.store.set_collection(self.collection, records)
                    return result
        return None

    async def _remove_where(self, predicate: Callable[[dict], bool]) -> int:
        return await self.store.remove_where(self.collection, predicate)


class LocalUserRepository(_LocalRepository[User]):
    collection = USERS_COLLECTION
    record_type = User

    async def get_many(self, user_ids: Sequence[str]) -> dict[str, User]:
        wanted = set(user_ids)
        return {u.id: u for u in await self._all() if u.id in wanted}

    async def find_by_username(self, username: str) -> Optional[User]:
        lowered = username.lower()
        for user in await self._all():
            if user.username.lower() == lowered:
                return user
        return None

    async def find_by_email(self, email: str) -> Optional[User]:
        lowered = email.lower()
        for user in await self._all():
            if user.email.lower() == lowered:
                return user
        return None

    async def list_all(self) -> list[User]:
        return await self._all()

    async def increment_counts(
        self,
        user_id: str,
        *,
        followers: int = 0,
        following: int = 0,
        posts: int = 0,
    ) -> None:
        def apply(record: dict) -> None:
            for name, delta in (
                ("followers_count", followers),
                ("following_count", following),
                ("posts_count", posts),
            ):
                record[name] = max(0, (record.get(name) or 0) + delta)

        await self._mutate(user_id, apply)


class LocalPostRepository(_LocalRepository[Post]):
    collection = POSTS_COLLECTION
    record_type = Post

    async def list_recent(self, limit: Optional[int] = None) -> list[Post]:
        records = _newest_first(await self._records())
        if limit is not None:
            records = records[:limit]
        return [self._load(r) for r in records]

    async def list_by_user(self, user_id: str) -> list[Post]:
        return [p for p in await self.list_recent() if p.user_id == user_id]

    async def delete(self, post_id: str) -> None:
        await self._remove_where(lambda r: r.get("id") == post_id)

    async def add_like(self, post_id: str, user_id: str) -> bool:
        def apply(record: dict) -> bool:
            likes = record.setdefault("likes", [])
            if user_id in likes:
                return False
            likes.append(user_id)
            return True

        return bool(await self._mutate(post_id, apply))

    async def remove_like(self, post_id: str, user_id: str) -> bool:
        def apply(record: dict) -> bool:
            likes = record.setdefault("likes", [])
            if user_id not in likes:
                return False
            likes.remove(user_id)
            return True

        return bool(await self._mutate(post_id, apply))

    async def adjust_comment_count(self, post_id: str, delta: int) -> None:
        def apply(record: dict) -> None:
            record["comment_count"] = max(0, (record.get("comment_count") or 0) + delta)

        await self._mutate(post_id, apply)

    async def set_visibility_for_user(
        self,
        user_id: str,
        visibility: Visibility,
        reason: Optional[str],
        *,
        only_hidden_reason: Optional[str] = None,
    ) -> int:
        changed = 0
        async with self.store.transaction():
            records = await self._records()
            for record in records:
                if record.get("user_id") != user_id:
                    continue
                if record.get("visibility") == Visibility.REMOVED:
                    continue
                if (
                    only_hidden_reason is not None
                    and record.get("hidden_reason") != only_hidden_reason
                ):
                    continue
                record["visibility"] = visibility
                record["hidden_reason"] = reason
                changed += 1
            if changed:
                await self.store.set_collection(self.collection, records)
        return changed

    def watch_recent(
        self, limit: Optional[int], callback: Callable[[FeedSnapshot], None]
    ) -> Unsubscribe:
        """Pushes the newest posts now and after every write to the collection."""

        def on_change(records: list[dict]) -> None:
            newest = _newest_first(records)
            if limit is not None:
                newest = newest[:limit]
            callback(FeedSnapshot(posts=[self._load(r) for r in newest]))

        async def initial() -> None:
            on_change(await self._records())

        stop_listening = self.store.subscribe(self.collection, on_change)
        first = asyncio.get_running_loop().create_task(initial())

        def unsubscribe() -> None:
            stop_listening()
            first.cancel()

        return unsubscribe


class LocalContextRepository(_LocalRepository[Context]):
    collection = CONTEXTS_COLLECTION
    record_type = Context

    async def list_for_post(self, post_id: str) -> list[Context]:
        records = sorted(await self._records(), key=lambda r: r.get("created_at") or 0)
        return [self._load(r) for r in records if r.get("post_id") == post_id]

    async def list_pending(self) -> list[Context]:
        return [c for c in await self._all() if c.admin_approved is not True]

    async def apply_vote(
        self, context_id: str, user_id: str, vote: VoteValue
    ) -> Optional[Context]:
        def apply(record: dict) -> Context:
            context = context_rules.apply_vote(self._load(record), user_id, vote)
            record.update(context_rules.vote_changes(context))
            return context

        return await self._mutate(context_id, apply)

    async def delete_for_post(self, post_id: str) -> None:
        await self._remove_where(lambda r: r.get("post_id") == post_id)


class LocalCommentRepository(_LocalRepository[Comment]):
    collection = COMMENTS_COLLECTION
    record_type = Comment

    async def list_for_post(self, post_id: str) -> list[Comment]:
        records = sorted(await self._records(), key=lambda r: r.get("created_at") or 0)
        return [self._load(r) for r in records if r.get("post_id") == post_id]

    async def count_for_post(self, post_id: str) -> int:
        return sum(1 for r in await self._records() if r.get("post_id") == post_id)

    async def delete(self, comment_id: str) -> None:
        await self._remove_where(lambda r: r.get("id") == comment_id)

    async def delete_for_post(self, post_id: str) -> None:
        await self._remove_where(lambda r: r.get("post_id") == post_id)

    async def toggle_like(self, comment_id: str, user_id: str) -> bool:
        def apply(record: dict) -> bool:
            likes = record.setdefault("likes", [])
            if user_id in likes:
                likes.remove(user_id)
                return False
            likes.append(user_id)
            return True

        return bool(await self._mutate(comment_id, apply))


class LocalFollowRepository:
    collection = FOLLOWS_COLLECTION

    def __init__(self, store: LocalStore):
        self.store = store

    @staticmethod
    def _matches(record: dict, follower_id: str, followee_id: str) -> bool:
        return (
            record.get("follower_id") == follower_id
            and record.get("followee_id") == followee_id
        )

    async def add(self, follower_id: str, followee_id: str) -> bool:
        async with self.store.transaction():
            records = await self.store.get_collection(self.collection)
            if any(self._matches(r, follower_id, followee_id) for r in records):
                return False
            records.insert(
                0,
                {
                    "id": uuid.uuid4().hex,
                    "follower_id": follower_id,
                    "followee_id": followee_id,
                    "created_at": time.time(),
                },
            )
            await self.store.set_collection(self.collection, records)
        return True

    async def remove(self, follower_id: str, followee_id: str) -> bool:
        removed = await self.store.remove_where(
            self.collection, lambda r: self._matches(r, follower_id, followee_id)
        )
        return removed > 0

    async def exists(self, follower_id: str, followee_id: str) -> bool:
        records = await self.store.get_collection(self.collection)
        return any(self._matches(r, follower_id, followee_id) for r in records)

    async def list_followers(self, user_id: str) -> list[str]:
        records = await self.store.get_collection(self.collection)
        return [r["follower_id"] for r in records if r.get("followee_id") == user_id]

    async def list_following(self, user_id: str) -> list[str]:
        records = await self.store.get_collection(self.collection)
        return [r["followee_id"] for r in records if r.get("follower_id") == user_id]


class LocalNotificationRepository(_LocalRepository[Notification]):
    collection = NOTIFICATIONS_COLLECTION
    record_type = Notification

    async def list_for_user(self, user_id: str, limit: int) -> list[Notification]:
        records = [r for r in await self._records() if r.get("user_id") == user_id]
        return [self._load(r) for r in _newest_first(records)[:limit]]

    async def mark_read(self, notification_id: str, user_id: str) -> bool:
        def apply(record: dict) -> bool:
            if record.get("user_id") != user_id:
                return False
            record["read"] = True
            return True

        return bool(await self._mutate(notification_id, apply))

    async def mark_all_read(self, user_id: str) -> int:
        changed = 0
        async with self.store.transaction():
            records = await self._records()
            for record in records:
                if record.get("user_id") == user_id and not record.get("read"):
                    record["read"] = True
                    changed += 1
            if changed:
                await self.store.set_collection(self.collection, records)
        return changed

    async def unread_count(self, user_id: str) -> int:
        return sum(
            1
            for r in await self._records()
            if r.get("user_id") == user_id and not r.get("read")
        )


class LocalSavedPostRepository(_LocalRepository[SavedPost]):
    collection = SAVED_POSTS_COLLECTION
    record_type = SavedPost

    async def add(self, user_id: str, post_id: str) -> bool:
        async with self.store.transaction():
            records = await self._records()
            if any(
                r.get("user_id") == user_id and r.get("post_id") == post_id
                for r in records
            ):
                return False
            saved = SavedPost(id=uuid.uuid4().hex, user_id=user_id, post_id=post_id)
            records.insert(0, to_record(saved))
            await self.store.set_collection(self.collection, records)
        return True

    async def remove(self, user_id: str, post_id: str) -> bool:
        removed = await self._remove_where(
            lambda r: r.get("user_id") == user_id and r.get("post_id") == post_id
        )
        return removed > 0

    async def exists(self, user_id: str, post_id: str) -> bool:
        return any(
            r.get("user_id") == user_id and r.get("post_id") == post_id
            for r in await self._records()
        )

    async def list_for_user(self, user_id: str) -> list[SavedPost]:
        records = [r for r in await self._records() if r.get("user_id") == user_id]
        return [self._load(r) for r in _newest_first(records, key="saved_at")]

    async def count_for_post(self, post_id: str) -> int:
        return sum(1 for r in await self._records() if r.get("post_id") == post_id)

    async def delete_for_post(self, post_id: str) -> None:
        await self._remove_where(lambda r: r.get("post_id") == post_id)


class LocalReportRepository(_LocalRepository[Report]):
    collection = REPORTS_COLLECTION
    record_type = Report

    async def list_pending(self) -> list[Report]:
        return [r for r in await self._all() if r.status == ReportStatus.PENDING]


def create_local_repositories(store: LocalStore) -> Repositories:
    return Repositories(
        users=LocalUserRepository(store),
        posts=LocalPostRepository(store),
        contexts=LocalContextRepository(store),
        comments=LocalCommentRepository(store),
        follows=LocalFollowRepository(store),
        notifications=LocalNotificationRepository(store),
        saved_posts=LocalSavedPostRepository(store),
        reports=LocalReportRepository(store),
    )
