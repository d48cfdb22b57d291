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
Repository implementations backed by Firestore.

Every call goes through the ConnectionResilienceManager so that
connection-classified failures are retried and trigger recovery.
"""

from __future__ import annotations

import asyncio
import functools
import logging
import time
from typing import Any, Callable, Generic, Optional, Sequence, Type, TypeVar

from google.api_core import exceptions as api_exceptions
from google.cloud import firestore
from google.cloud.firestore_v1.base_query import FieldFilter

from shared.constants import FIRESTORE_MAX_FIELD_BYTES
from shared.errors import StorageQuotaError
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
from remote.connection import FirestoreConnection
from remote.resilience import ConnectionResilienceManager

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Firestore rejects batches with more writes than this.
BATCH_LIMIT = 500


def resilient(method):
    """Runs a repository coroutine method through execute_with_retry."""

    @functools.wraps(method)
    async def wrapper(self, *args, **kwargs):
        return await self.manager.execute_with_retry(
            lambda: method(self, *args, **kwargs)
        )

    return wrapper


def floored_counts(current: dict, deltas: dict) -> dict:
    """Applies non-zero deltas to the counters in current, never below zero."""
    return {
        name: max(0, (current.get(name) or 0) + delta)
        for name, delta in deltas.items()
        if delta
    }


def is_size_limit_error(error: BaseException) -> bool:
    message = str(error)
    return (
        str(FIRESTORE_MAX_FIELD_BYTES) in message
        or "exceeds the maximum allowed size" in message
        or "longer than" in message
    )


class _FirestoreRepository(Generic[T]):
    collection: str
    record_type: Type[T]

    def __init__(
        self, connection: FirestoreConnection, manager: ConnectionResilienceManager
    ):
        self.connection = connection
        self.manager = manager

    @property
    def _col(self) -> firestore.AsyncCollectionReference:
        return self.connection.client.collection(self.collection)

    def _load(self, snapshot) -> T:
        data = snapshot.to_dict() or {}
        data["id"] = snapshot.id
        return from_record(self.record_type, data)

    def _dump(self, entity: T) -> dict:
        data = to_record(entity)
        data.pop("id", None)
        return data

    async def _write(self, write) -> Any:
        try:
            return await write
        except api_exceptions.InvalidArgument as e:
            if is_size_limit_error(e):
                raise StorageQuotaError(f"Document too large: {e.message}") from e
            raise

    async def _query(self, field: str, value: Any) -> list[T]:
        query = self._col.where(filter=FieldFilter(field, "==", value))
        return [self._load(snapshot) async for snapshot in query.stream()]

    async def _count(self, field: str, value: Any) -> int:
        query = self._col.where(filter=FieldFilter(field, "==", value))
        results = await query.count().get()
        return int(results[0][0].value) if results else 0

    async def _delete_where(self, field: str, value: Any) -> int:
        query = self._col.where(filter=FieldFilter(field, "==", value))
        refs = [snapshot.reference async for snapshot in query.stream()]
        for start in range(0, len(refs), BATCH_LIMIT):
            batch = self.connection.client.batch()
            for ref in refs[start : start + BATCH_LIMIT]:
                batch.delete(ref)
            await batch.commit()
        return len(refs)

    @resilient
    async def get(self, item_id: str) -> Optional[T]:
        snapshot = await self._col.document(item_id).get()
        if not snapshot.exists:
            return None
        return self._load(snapshot)

    @resilient
    async def add(self, entity: T) -> T:
        await self._write(self._col.document(entity.id).set(self._dump(entity)))
        return entity

    @resilient
    async def update(self, item_id: str, changes: dict) -> Optional[T]:
        ref = self._col.document(item_id)
        try:
            await self._write(ref.update(self._prepare_changes(changes)))
        except api_exceptions.NotFound:
            return None
        return self._load(await ref.get())

    def _prepare_changes(self, changes: dict) -> dict:
        return dict(changes)


class FirestoreUserRepository(_FirestoreRepository[User]):
    collection = USERS_COLLECTION
    record_type = User

    def _dump(self, entity: User) -> dict:
        data = super()._dump(entity)
        # Firestore has no case-insensitive match; keep lowered copies to query.
        data["username_lower"] = entity.username.lower()
        data["email_lower"] = entity.email.lower()
        return data

    def _prepare_changes(self, changes: dict) -> dict:
        changes = dict(changes)
        if "username" in changes:
            changes["username_lower"] = changes["username"].lower()
        if "email" in changes:
            changes["email_lower"] = changes["email"].lower()
        return changes

    async def _find_one(self, field: str, value: str) -> Optional[User]:
        query = self._col.where(filter=FieldFilter(field, "==", value)).limit(1)
        async for snapshot in query.stream():
            return self._load(snapshot)
        return None

    @resilient
    async def get_many(self, user_ids: Sequence[str]) -> dict[str, User]:
        if not user_ids:
            return {}
        refs = [self._col.document(user_id) for user_id in user_ids]
        users = {}
        async for snapshot in self.connection.client.get_all(refs):
            if snapshot.exists:
                users[snapshot.id] = self._load(snapshot)
        return users

    @resilient
    async def find_by_username(self, username: str) -> Optional[User]:
        return await self._find_one("username_lower", username.lower())

    @resilient
    async def find_by_email(self, email: str) -> Optional[User]:
        return await self._find_one("email_lower", email.lower())

    @resilient
    async def list_all(self) -> list[User]:
        return [self._load(snapshot) async for snapshot in self._col.stream()]

    @resilient
    async def increment_counts(
        self,
        user_id: str,
        *,
        followers: int = 0,
        following: int = 0,
        posts: int = 0,
    ) -> None:
        deltas = {
            "followers_count": followers,
            "following_count": following,
            "posts_count": posts,
        }
        if not any(deltas.values()):
            return
        ref = self._col.document(user_id)

        @firestore.async_transactional
        async def apply(transaction) -> None:
            snapshot = await ref.get(transaction=transaction)
            if not snapshot.exists:
                return
            transaction.update(ref, floored_counts(snapshot.to_dict() or {}, deltas))

        await apply(self.connection.client.transaction())


class FirestorePostRepository(_FirestoreRepository[Post]):
    collection = POSTS_COLLECTION
    record_type = Post

    def _dump(self, entity: Post) -> dict:
        data = super()._dump(entity)
        data["like_count"] = entity.like_count
        return data

    @resilient
    async def list_recent(self, limit: Optional[int] = None) -> list[Post]:
        query = self._col.order_by("created_at", direction=firestore.Query.DESCENDING)
        if limit is not None:
            query = query.limit(limit)
        return [self._load(snapshot) async for snapshot in query.stream()]

    @resilient
    async def list_by_user(self, user_id: str) -> list[Post]:
        posts = await self._query("user_id", user_id)
        return sorted(posts, key=lambda p: p.created_at, reverse=True)

    @resilient
    async def delete(self, post_id: str) -> None:
        await self._col.document(post_id).delete()

    async def _change_likes(self, post_id: str, user_id: str, add: bool) -> bool:
        ref = self._col.document(post_id)

        @firestore.async_transactional
        async def apply(transaction) -> bool:
            snapshot = await ref.get(transaction=transaction)
            if not snapshot.exists:
                return False
            likes = (snapshot.to_dict() or {}).get("likes") or []
            if (user_id in likes) == add:
                return False
            if add:
                likes = [*likes, user_id]
            else:
                likes = [liker for liker in likes if liker != user_id]
            transaction.update(ref, {"likes": likes, "like_count": len(likes)})
            return True

        return await apply(self.connection.client.transaction())

    @resilient
    async def add_like(self, post_id: str, user_id: str) -> bool:
        return await self._change_likes(post_id, user_id, add=True)

    @resilient
    async def remove_like(self, post_id: str, user_id: str) -> bool:
        return await self._change_likes(post_id, user_id, add=False)

    @resilient
    async def adjust_comment_count(self, post_id: str, delta: int) -> None:
        ref = self._col.document(post_id)

        @firestore.async_transactional
        async def apply(transaction) -> None:
            snapshot = await ref.get(transaction=transaction)
            if not snapshot.exists:
                return
            current = (snapshot.to_dict() or {}).get("comment_count") or 0
            transaction.update(ref, {"comment_count": max(0, current + delta)})

        await apply(self.connection.client.transaction())

    @resilient
    async def set_visibility_for_user(
        self,
        user_id: str,
        visibility: Visibility,
        reason: Optional[str],
        *,
        only_hidden_reason: Optional[str] = None,
    ) -> int:
        query = self._col.where(filter=FieldFilter("user_id", "==", user_id))
        refs = []
        async for snapshot in query.stream():
            data = snapshot.to_dict() or {}
            if data.get("visibility") == Visibility.REMOVED:
                continue
            if only_hidden_reason is None or data.get("hidden_reason") == only_hidden_reason:
                refs.append(snapshot.reference)
        for start in range(0, len(refs), BATCH_LIMIT):
            batch = self.connection.client.batch()
            for ref in refs[start : start + BATCH_LIMIT]:
                batch.update(ref, {"visibility": visibility, "hidden_reason": reason})
            await batch.commit()
        return len(refs)

    def watch_recent(
        self, limit: Optional[int], callback: Callable[[FeedSnapshot], None]
    ) -> Unsubscribe:
        """
        Listens to the newest posts and hands snapshots to the event loop.

        The server SDK only reports acknowledged state, so snapshots never
        carry pending local writes.
        """
        loop = asyncio.get_running_loop()
        query = self.connection.watch_client.collection(self.collection).order_by(
            "created_at", direction=firestore.Query.DESCENDING
        )
        if limit is not None:
            query = query.limit(limit)

        def on_snapshot(documents, changes, read_time) -> None:
            try:
                posts = [self._load(document) for document in documents]
            except Exception:
                logger.exception("Could not decode feed snapshot")
                return
            loop.call_soon_threadsafe(
                callback, FeedSnapshot(posts=posts, has_pending_writes=False)
            )

        watch = query.on_snapshot(on_snapshot)
        return watch.unsubscribe


class FirestoreContextRepository(_FirestoreRepository[Context]):
    collection = CONTEXTS_COLLECTION
    record_type = Context

    @resilient
    async def list_for_post(self, post_id: str) -> list[Context]:
        contexts = await self._query("post_id", post_id)
        return sorted(contexts, key=lambda c: c.created_at)

    @resilient
    async def list_pending(self) -> list[Context]:
        contexts = [self._load(snapshot) async for snapshot in self._col.stream()]
        return [c for c in contexts if c.admin_approved is not True]

    @resilient
    async def apply_vote(
        self, context_id: str, user_id: str, vote: VoteValue
    ) -> Optional[Context]:
        ref = self._col.document(context_id)

        @firestore.async_transactional
        async def apply(transaction) -> Optional[Context]:
            snapshot = await ref.get(transaction=transaction)
            if not snapshot.exists:
                return None
            context = context_rules.apply_vote(self._load(snapshot), user_id, vote)
            transaction.update(ref, context_rules.vote_changes(context))
            return context

        return await apply(self.connection.client.transaction())

    @resilient
    async def delete_for_post(self, post_id: str) -> None:
        await self._delete_where("post_id", post_id)


class FirestoreCommentRepository(_FirestoreRepository[Comment]):
    collection = COMMENTS_COLLECTION
    record_type = Comment

    @resilient
    async def list_for_post(self, post_id: str) -> list[Comment]:
        comments = await self._query("post_id", post_id)
        return sorted(comments, key=lambda c: c.created_at)

    @resilient
    async def count_for_post(self, post_id: str) -> int:
        return await self._count("post_id", post_id)

    @resilient
    async def delete(self, comment_id: str) -> None:
        await self._col.document(comment_id).delete()

    @resilient
    async def delete_for_post(self, post_id: str) -> None:
        await self._delete_where("post_id", post_id)

    @resilient
    async def toggle_like(self, comment_id: str, user_id: str) -> bool:
        ref = self._col.document(comment_id)

        @firestore.async_transactional
        async def apply(transaction) -> bool:
            snapshot = await ref.get(transaction=transaction)
            likes = (snapshot.to_dict() or {}).get("likes") or []
            if user_id in likes:
                transaction.update(ref, {"likes": firestore.ArrayRemove([user_id])})
                return False
            transaction.update(ref, {"likes": firestore.ArrayUnion([user_id])})
            return True

        return await apply(self.connection.client.transaction())


class _PairRepository:
    """Membership documents keyed by a deterministic pair id."""

    collection: str
    left_field: str
    right_field: str

    def __init__(
        self, connection: FirestoreConnection, manager: ConnectionResilienceManager
    ):
        self.connection = connection
        self.manager = manager

    @property
    def _col(self) -> firestore.AsyncCollectionReference:
        return self.connection.client.collection(self.collection)

    def _ref(self, left: str, right: str):
        return self._col.document(f"{left}_{right}")

    async def _create(self, left: str, right: str, data: dict) -> bool:
        try:
            await self._ref(left, right).create(
                {self.left_field: left, self.right_field: right, **data}
            )
        except api_exceptions.AlreadyExists:
            return False
        return True

    async def _remove(self, left: str, right: str) -> bool:
        ref = self._ref(left, right)

        @firestore.async_transactional
        async def apply(transaction) -> bool:
            snapshot = await ref.get(transaction=transaction)
            if not snapshot.exists:
                return False
            transaction.delete(ref)
            return True

        return await apply(self.connection.client.transaction())

    async def _exists(self, left: str, right: str) -> bool:
        snapshot = await self._ref(left, right).get()
        return snapshot.exists

    async def _values(self, field: str, value: str, wanted: str) -> list[str]:
        query = self._col.where(filter=FieldFilter(field, "==", value))
        return [
            (snapshot.to_dict() or {}).get(wanted)
            async for snapshot in query.stream()
        ]


class FirestoreFollowRepository(_PairRepository):
    collection = FOLLOWS_COLLECTION
    left_field = "follower_id"
    right_field = "followee_id"

    @resilient
    async def add(self, follower_id: str, followee_id: str) -> bool:
        return await self._create(
            follower_id, followee_id, {"created_at": time.time()}
        )

    @resilient
    async def remove(self, follower_id: str, followee_id: str) -> bool:
        return await self._remove(follower_id, followee_id)

    @resilient
    async def exists(self, follower_id: str, followee_id: str) -> bool:
        return await self._exists(follower_id, followee_id)

    @resilient
    async def list_followers(self, user_id: str) -> list[str]:
        return await self._values("followee_id", user_id, "follower_id")

    @resilient
    async def list_following(self, user_id: str) -> list[str]:
        return await self._values("follower_id", user_id, "followee_id")


class FirestoreSavedPostRepository(_PairRepository):
    collection = SAVED_POSTS_COLLECTION
    left_field = "user_id"
    right_field = "post_id"

    def _load(self, snapshot) -> SavedPost:
        data = snapshot.to_dict() or {}
        data["id"] = snapshot.id
        return from_record(SavedPost, data)

    @resilient
    async def add(self, user_id: str, post_id: str) -> bool:
        return await self._create(user_id, post_id, {"saved_at": time.time()})

    @resilient
    async def remove(self, user_id: str, post_id: str) -> bool:
        return await self._remove(user_id, post_id)

    @resilient
    async def exists(self, user_id: str, post_id: str) -> bool:
        return await self._exists(user_id, post_id)

    @resilient
    async def list_for_user(self, user_id: str) -> list[SavedPost]:
        query = self._col.where(filter=FieldFilter("user_id", "==", user_id))
        saved = [self._load(snapshot) async for snapshot in query.stream()]
        return sorted(saved, key=lambda s: s.saved_at, reverse=True)

    @resilient
    async def count_for_post(self, post_id: str) -> int:
        query = self._col.where(filter=FieldFilter("post_id", "==", post_id))
        results = await query.count().get()
        return int(results[0][0].value) if results else 0

    @resilient
    async def delete_for_post(self, post_id: str) -> None:
        query = self._col.where(filter=FieldFilter("post_id", "==", post_id))
        batch = self.connection.client.batch()
        pending = 0
        async for snapshot in query.stream():
            batch.delete(snapshot.reference)
            pending += 1
            if pending == BATCH_LIMIT:
                await batch.commit()
                batch = self.connection.client.batch()
                pending = 0
        if pending:
            await batch.commit()


class FirestoreNotificationRepository(_FirestoreRepository[Notification]):
    collection = NOTIFICATIONS_COLLECTION
    record_type = Notification

    @resilient
    async def list_for_user(self, user_id: str, limit: int) -> list[Notification]:
        # Needs the composite index (user_id ASC, created_at DESC).
        query = (
            self._col.where(filter=FieldFilter("user_id", "==", user_id))
            .order_by("created_at", direction=firestore.Query.DESCENDING)
            .limit(limit)
        )
        return [self._load(snapshot) async for snapshot in query.stream()]

    @resilient
    async def mark_read(self, notification_id: str, user_id: str) -> bool:
        ref = self._col.document(notification_id)
        snapshot = await ref.get()
        if not snapshot.exists or (snapshot.to_dict() or {}).get("user_id") != user_id:
            return False
        await ref.update({"read": True})
        return True

    @resilient
    async def mark_all_read(self, user_id: str) -> int:
        query = self._col.where(filter=FieldFilter("user_id", "==", user_id)).where(
            filter=FieldFilter("read", "==", False)
        )
        refs = [snapshot.reference async for snapshot in query.stream()]
        for start in range(0, len(refs), BATCH_LIMIT):
            batch = self.connection.client.batch()
            for ref in refs[start : start + BATCH_LIMIT]:
                batch.update(ref, {"read": True})
            await batch.commit()
        return len(refs)

    @resilient
    async def unread_count(self, user_id: str) -> int:
        query = self._col.where(filter=FieldFilter("user_id", "==", user_id)).where(
            filter=FieldFilter("read", "==", False)
        )
        results = await query.count().get()
        return int(results[0][0].value) if results else 0


class FirestoreReportRepository(_FirestoreRepository[Report]):
    collection = REPORTS_COLLECTION
    record_type = Report

    @resilient
    async def list_pending(self) -> list[Report]:
        reports = await self._query("status", ReportStatus.PENDING.value)
        return sorted(reports, key=lambda r: r.created_at, reverse=True)


def create_firestore_repositories(
    connection: FirestoreConnection, manager: ConnectionResilienceManager
) -> Repositories:
    return Repositories(
        users=FirestoreUserRepository(connection, manager),
        posts=FirestorePostRepository(connection, manager),
        contexts=FirestoreContextRepository(connection, manager),
        comments=FirestoreCommentRepository(connection, manager),
        follows=FirestoreFollowRepository(connection, manager),
        notifications=FirestoreNotificationRepository(connection, manager),
        saved_posts=FirestoreSavedPostRepository(connection, manager),
        reports=FirestoreReportRepository(connection, manager),
    )
