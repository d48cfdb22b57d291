"""
SQLAlchemy-backed repositories for the REST backend.

Accepts any async SQLAlchemy URL: postgresql+asyncpg in production,
sqlite+aiosqlite for tests.
"""

from __future__ import annotations

import time
import uuid
from collections import defaultdict
from typing import Any, Generic, Optional, Sequence, Type, TypeVar

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Float,
    Integer,
    String,
    Text,
    UniqueConstraint,
    case,
    delete,
    func,
    or_,
    select,
    update,
)
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import StaticPool

from shared.errors import ConflictError
from shared.types import (
    Comment,
    Context,
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
from social.repository import Repositories

T = TypeVar("T")

Base = declarative_base()


class UserRow(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True)
    username = Column(String, nullable=False)
    username_lower = Column(String, nullable=False, unique=True, index=True)
    email = Column(String, nullable=False)
    email_lower = Column(String, nullable=False, unique=True, index=True)
    password = Column(String, nullable=False)
    profile_picture = Column(Text, nullable=True)
    about_me = Column(Text, nullable=False, default="")
    followers_count = Column(Integer, nullable=False, default=0)
    following_count = Column(Integer, nullable=False, default=0)
    posts_count = Column(Integer, nullable=False, default=0)
    is_admin = Column(Boolean, nullable=False, default=False)
    banned = Column(Boolean, nullable=False, default=False)
    ban_reason = Column(String, nullable=True)
    banned_at = Column(Float, nullable=True)
    banned_by = Column(String, nullable=True)
    last_username_change = Column(Float, nullable=True)
    previous_usernames = Column(JSON, nullable=False, default=list)
    email_verified = Column(Boolean, nullable=False, default=False)
    created_at = Column(Float, nullable=False)


class PostRow(Base):
    __tablename__ = "posts"

    id = Column(String, primary_key=True)
    user_id = Column(String, nullable=False, index=True)
    body = Column(Text, nullable=False)
    image_url = Column(Text, nullable=True)
    tags = Column(JSON, nullable=False, default=list)
    is_nsfw = Column(Boolean, nullable=False, default=False)
    comment_count = Column(Integer, nullable=False, default=0)
    visibility = Column(String, nullable=False, default=Visibility.PUBLIC.value)
    hidden_reason = Column(String, nullable=True)
    original_body = Column(Text, nullable=True)
    edited_at = Column(Float, nullable=True)
    removed_at = Column(Float, nullable=True)
    removed_by = Column(String, nullable=True)
    created_at = Column(Float, nullable=False, index=True)


class LikeRow(Base):
    __tablename__ = "likes"
    __table_args__ = (UniqueConstraint("user_id", "post_id", name="uq_likes_user_post"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String, nullable=False)
    post_id = Column(String, nullable=False, index=True)
    created_at = Column(Float, nullable=False)


class ContextRow(Base):
    __tablename__ = "contexts"

    id = Column(String, primary_key=True)
    post_id = Column(String, nullable=False, unique=True)
    user_id = Column(String, nullable=False)
    text = Column(Text, nullable=False)
    votes = Column(JSON, nullable=False, default=list)
    upvotes = Column(Integer, nullable=False, default=0)
    downvotes = Column(Integer, nullable=False, default=0)
    approval_rate = Column(Float, nullable=False, default=0.0)
    approved = Column(Boolean, nullable=False, default=False)
    admin_approved = Column(Boolean, nullable=True)
    admin_reviewed_at = Column(Float, nullable=True)
    admin_reviewed_by = Column(String, nullable=True)
    created_at = Column(Float, nullable=False)


class FollowRow(Base):
    __tablename__ = "follows"

    follower_id = Column(String, primary_key=True)
    followee_id = Column(String, primary_key=True, index=True)
    created_at = Column(Float, nullable=False)


class CommentRow(Base):
    __tablename__ = "comments"

    id = Column(String, primary_key=True)
    post_id = Column(String, nullable=False, index=True)
    user_id = Column(String, nullable=False)
    text = Column(Text, nullable=False)
    likes = Column(JSON, nullable=False, default=list)
    created_at = Column(Float, nullable=False)


class NotificationRow(Base):
    __tablename__ = "notifications"

    id = Column(String, primary_key=True)
    user_id = Column(String, nullable=False, index=True)
    type = Column(String, nullable=False)
    title = Column(String, nullable=True)
    message = Column(Text, nullable=False)
    related_id = Column(String, nullable=True)
    from_user_id = Column(String, nullable=True)
    read = Column(Boolean, nullable=False, default=False)
    created_at = Column(Float, nullable=False)


class SavedPostRow(Base):
    __tablename__ = "saved_posts"
    __table_args__ = (
        UniqueConstraint("user_id", "post_id", name="uq_saved_posts_user_post"),
    )

    id = Column(String, primary_key=True)
    user_id = Column(String, nullable=False, index=True)
    post_id = Column(String, nullable=False, index=True)
    saved_at = Column(Float, nullable=False)


class ReportRow(Base):
    __tablename__ = "reports"

    id = Column(String, primary_key=True)
    reporter_id = Column(String, nullable=False)
    reason = Column(String, nullable=False)
    details = Column(Text, nullable=False, default="")
    post_id = Column(String, nullable=True)
    comment_id = Column(String, nullable=True)
    status = Column(String, nullable=False, index=True)
    dismissed_by = Column(String, nullable=True)
    dismissed_at = Column(Float, nullable=True)
    created_at = Column(Float, nullable=False)


class SqlDatabase:
    """Owns the async engine and session factory shared by the repositories."""

    def __init__(self, database_url: str):
        if not database_url:
            raise ValueError("DATABASE_URL is required for SqlDatabase")
        kwargs: dict[str, Any] = {}
        if database_url.startswith("sqlite") and ":memory:" in database_url:
            # One shared connection, otherwise every session sees an empty db.
            kwargs.update(
                poolclass=StaticPool, connect_args={"check_same_thread": False}
            )
        elif not database_url.startswith("sqlite"):
            kwargs.update(pool_pre_ping=True, pool_recycle=1800)
        self.engine = create_async_engine(database_url, **kwargs)
        self.Session = async_sessionmaker(
            self.engine, class_=AsyncSession, expire_on_commit=False
        )

    async def init_schema(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def dispose(self) -> None:
        await self.engine.dispose()


def _row_values(row: Any) -> dict:
    return {column.key: getattr(row, column.key) for column in row.__table__.columns}


def _floored(column, delta: int):
    """column + delta, never below zero."""
    return case((column + delta < 0, 0), else_=column + delta)


class _SqlRepository(Generic[T]):
    row_type: Any
    record_type: Type[T]
    update_conflict_message = "Update conflicts with an existing record"

    def __init__(self, db: SqlDatabase):
        self.db = db

    def _to_record(self, row: Any) -> T:
        return from_record(self.record_type, _row_values(row))

    def _to_row(self, entity: T) -> Any:
        return self.row_type(**to_record(entity))

    def _prepare_changes(self, changes: dict) -> dict:
        return dict(changes)

    async def add(self, entity: T) -> T:
        async with self.db.Session() as session:
            session.add(self._to_row(entity))
            try:
                await session.commit()
            except IntegrityError as e:
                raise ConflictError(
                    f"{self.record_type.__name__} already exists"
                ) from e
        return entity

    async def get(self, item_id: str) -> Optional[T]:
        async with self.db.Session() as session:
            row = await session.get(self.row_type, item_id)
            return self._to_record(row) if row else None

    async def update(self, item_id: str, changes: dict) -> Optional[T]:
        async with self.db.Session() as session:
            row = await session.get(self.row_type, item_id)
            if row is None:
                return None
            for key, value in self._prepare_changes(changes).items():
                setattr(row, key, value)
            try:
                await session.commit()
            except IntegrityError as e:
                raise ConflictError(self.update_conflict_message) from e
            return self._to_record(row)


class SqlUserRepository(_SqlRepository[User]):
    row_type = UserRow
    record_type = User
    update_conflict_message = "Username or email is already taken"

    def _to_row(self, entity: User) -> UserRow:
        data = to_record(entity)
        data["username_lower"] = entity.username.lower()
        data["email_lower"] = entity.email.lower()
        return UserRow(**data)

    def _prepare_changes(self, changes: dict) -> dict:
        changes = dict(changes)
        if "username" in changes:
            changes["username_lower"] = changes["username"].lower()
        if "email" in changes:
            changes["email_lower"] = changes["email"].lower()
        return changes

    async def get_many(self, user_ids: Sequence[str]) -> dict[str, User]:
        if not user_ids:
            return {}
        async with self.db.Session() as session:
            result = await session.execute(
                select(UserRow).where(UserRow.id.in_(list(user_ids)))
            )
            return {row.id: self._to_record(row) for row in result.scalars()}

    async def _find_one(self, column, value: str) -> Optional[User]:
        async with self.db.Session() as session:
            result = await session.execute(select(UserRow).where(column == value))
            row = result.scalars().first()
            return self._to_record(row) if row else None

    async def find_by_username(self, username: str) -> Optional[User]:
        return await self._find_one(UserRow.username_lower, username.lower())

    async def find_by_email(self, email: str) -> Optional[User]:
        return await self._find_one(UserRow.email_lower, email.lower())

    async def list_all(self) -> list[User]:
        async with self.db.Session() as session:
            result = await session.execute(
                select(UserRow).order_by(UserRow.created_at.asc())
            )
            return [self._to_record(row) for row in result.scalars()]

    async def increment_counts(
        self,
        user_id: str,
        *,
        followers: int = 0,
        following: int = 0,
        posts: int = 0,
    ) -> None:
        values = {}
        if followers:
            values["followers_count"] = _floored(UserRow.followers_count, followers)
        if following:
            values["following_count"] = _floored(UserRow.following_count, following)
        if posts:
            values["posts_count"] = _floored(UserRow.posts_count, posts)
        if not values:
            return
        async with self.db.Session() as session:
            await session.execute(
                update(UserRow).where(UserRow.id == user_id).values(**values)
            )
            await session.commit()


class SqlPostRepository(_SqlRepository[Post]):
    """Posts, with like membership kept in the likes table."""

    row_type = PostRow
    record_type = Post

    def _to_row(self, entity: Post) -> PostRow:
        data = to_record(entity)
        data.pop("likes", None)
        return PostRow(**data)

    def _prepare_changes(self, changes: dict) -> dict:
        changes = dict(changes)
        changes.pop("likes", None)
        return changes

    async def _load(self, session: AsyncSession, rows: Sequence[PostRow]) -> list[Post]:
        if not rows:
            return []
        result = await session.execute(
            select(LikeRow.post_id, LikeRow.user_id)
            .where(LikeRow.post_id.in_([row.id for row in rows]))
            .order_by(LikeRow.id.asc())
        )
        likes: dict[str, list[str]] = defaultdict(list)
        for post_id, user_id in result:
            likes[post_id].append(user_id)
        posts = []
        for row in rows:
            data = _row_values(row)
            data["likes"] = likes.get(row.id, [])
            posts.append(from_record(Post, data))
        return posts

    async def add(self, entity: Post) -> Post:
        async with self.db.Session() as session:
            session.add(self._to_row(entity))
            session.add_all(
                LikeRow(user_id=user_id, post_id=entity.id, created_at=time.time())
                for user_id in entity.likes
            )
            await session.commit()
        return entity

    async def get(self, item_id: str) -> Optional[Post]:
        async with self.db.Session() as session:
            row = await session.get(PostRow, item_id)
            if row is None:
                return None
            return (await self._load(session, [row]))[0]

    async def update(self, item_id: str, changes: dict) -> Optional[Post]:
        async with self.db.Session() as session:
            row = await session.get(PostRow, item_id)
            if row is None:
                return None
            for key, value in self._prepare_changes(changes).items():
                setattr(row, key, value)
            await session.commit()
            return (await self._load(session, [row]))[0]

    async def list_recent(self, limit: Optional[int] = None) -> list[Post]:
        stmt = select(PostRow).order_by(PostRow.created_at.desc())
        if limit is not None:
            stmt = stmt.limit(limit)
        async with self.db.Session() as session:
            rows = (await session.execute(stmt)).scalars().all()
            return await self._load(session, rows)

    async def list_by_user(self, user_id: str) -> list[Post]:
        async with self.db.Session() as session:
            rows = (
                await session.execute(
                    select(PostRow)
                    .where(PostRow.user_id == user_id)
                    .order_by(PostRow.created_at.desc())
                )
            ).scalars().all()
            return await self._load(session, rows)

    async def delete(self, post_id: str) -> None:
        async with self.db.Session() as session:
            await session.execute(delete(LikeRow).where(LikeRow.post_id == post_id))
            await session.execute(delete(PostRow).where(PostRow.id == post_id))
            await session.commit()

    async def add_like(self, post_id: str, user_id: str) -> bool:
        async with self.db.Session() as session:
            if await session.get(PostRow, post_id) is None:
                return False
            session.add(LikeRow(user_id=user_id, post_id=post_id, created_at=time.time()))
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                return False
            return True

    async def remove_like(self, post_id: str, user_id: str) -> bool:
        async with self.db.Session() as session:
            result = await session.execute(
                delete(LikeRow).where(
                    LikeRow.post_id == post_id, LikeRow.user_id == user_id
                )
            )
            await session.commit()
            return result.rowcount > 0

    async def adjust_comment_count(self, post_id: str, delta: int) -> None:
        async with self.db.Session() as session:
            await session.execute(
                update(PostRow)
                .where(PostRow.id == post_id)
                .values(comment_count=_floored(PostRow.comment_count, delta))
            )
            await session.commit()

    async def set_visibility_for_user(
        self,
        user_id: str,
        visibility: Visibility,
        reason: Optional[str],
        *,
        only_hidden_reason: Optional[str] = None,
    ) -> int:
        stmt = update(PostRow).where(
            PostRow.user_id == user_id,
            PostRow.visibility != Visibility.REMOVED.value,
        )
        if only_hidden_reason is not None:
            stmt = stmt.where(PostRow.hidden_reason == only_hidden_reason)
        stmt = stmt.values(visibility=Visibility(visibility).value, hidden_reason=reason)
        async with self.db.Session() as session:
            result = await session.execute(stmt)
            await session.commit()
            return result.rowcount or 0


class SqlContextRepository(_SqlRepository[Context]):
    row_type = ContextRow
    record_type = Context

    async def list_for_post(self, post_id: str) -> list[Context]:
        async with self.db.Session() as session:
            result = await session.execute(
                select(ContextRow)
                .where(ContextRow.post_id == post_id)
                .order_by(ContextRow.created_at.asc())
            )
            return [self._to_record(row) for row in result.scalars()]

    async def list_pending(self) -> list[Context]:
        async with self.db.Session() as session:
            result = await session.execute(
                select(ContextRow)
                .where(
                    or_(
                        ContextRow.admin_approved.is_(None),
                        ContextRow.admin_approved.is_(False),
                    )
                )
                .order_by(ContextRow.created_at.desc())
            )
            return [self._to_record(row) for row in result.scalars()]

    async def apply_vote(
        self, context_id: str, user_id: str, vote: VoteValue
    ) -> Optional[Context]:
        async with self.db.Session() as session:
            async with session.begin():
                row = (
                    await session.execute(
                        select(ContextRow)
                        .where(ContextRow.id == context_id)
                        .with_for_update()
                    )
                ).scalar_one_or_none()
                if row is None:
                    return None
                context = context_rules.apply_vote(self._to_record(row), user_id, vote)
                for key, value in context_rules.vote_changes(context).items():
                    setattr(row, key, value)
            return context

    async def delete_for_post(self, post_id: str) -> None:
        async with self.db.Session() as session:
            await session.execute(delete(ContextRow).where(ContextRow.post_id == post_id))
            await session.commit()


class SqlCommentRepository(_SqlRepository[Comment]):
    row_type = CommentRow
    record_type = Comment

    async def list_for_post(self, post_id: str) -> list[Comment]:
        async with self.db.Session() as session:
            result = await session.execute(
                select(CommentRow)
                .where(CommentRow.post_id == post_id)
                .order_by(CommentRow.created_at.asc())
            )
            return [self._to_record(row) for row in result.scalars()]

    async def count_for_post(self, post_id: str) -> int:
        async with self.db.Session() as session:
            result = await session.execute(
                select(func.count())
                .select_from(CommentRow)
                .where(CommentRow.post_id == post_id)
            )
            return int(result.scalar_one())

    async def delete(self, comment_id: str) -> None:
        async with self.db.Session() as session:
            await session.execute(delete(CommentRow).where(CommentRow.id == comment_id))
            await session.commit()

    async def delete_for_post(self, post_id: str) -> None:
        async with self.db.Session() as session:
            await session.execute(delete(CommentRow).where(CommentRow.post_id == post_id))
            await session.commit()

    async def toggle_like(self, comment_id: str, user_id: str) -> bool:
        async with self.db.Session() as session:
            async with session.begin():
                row = (
                    await session.execute(
                        select(CommentRow)
                        .where(CommentRow.id == comment_id)
                        .with_for_update()
                    )
                ).scalar_one_or_none()
                if row is None:
                    return False
                likes = list(row.likes or [])
                if user_id in likes:
                    likes.remove(user_id)
                    liked = False
                else:
                    likes.append(user_id)
                    liked = True
                row.likes = likes
            return liked


class SqlFollowRepository:
    def __init__(self, db: SqlDatabase):
        self.db = db

    async def add(self, follower_id: str, followee_id: str) -> bool:
        async with self.db.Session() as session:
            session.add(
                FollowRow(
                    follower_id=follower_id,
                    followee_id=followee_id,
                    created_at=time.time(),
                )
            )
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                return False
            return True

    async def remove(self, follower_id: str, followee_id: str) -> bool:
        async with self.db.Session() as session:
            result = await session.execute(
                delete(FollowRow).where(
                    FollowRow.follower_id == follower_id,
                    FollowRow.followee_id == followee_id,
                )
            )
            await session.commit()
            return result.rowcount > 0

    async def exists(self, follower_id: str, followee_id: str) -> bool:
        async with self.db.Session() as session:
            return await session.get(FollowRow, (follower_id, followee_id)) is not None

    async def list_followers(self, user_id: str) -> list[str]:
        async with self.db.Session() as session:
            result = await session.execute(
                select(FollowRow.follower_id).where(FollowRow.followee_id == user_id)
            )
            return list(result.scalars())

    async def list_following(self, user_id: str) -> list[str]:
        async with self.db.Session() as session:
            result = await session.execute(
                select(FollowRow.followee_id).where(FollowRow.follower_id == user_id)
            )
            return list(result.scalars())


class SqlNotificationRepository(_SqlRepository[Notification]):
    row_type = NotificationRow
    record_type = Notification

    async def list_for_user(self, user_id: str, limit: int) -> list[Notification]:
        async with self.db.Session() as session:
            result = await session.execute(
                select(NotificationRow)
                .where(NotificationRow.user_id == user_id)
                .order_by(NotificationRow.created_at.desc())
                .limit(limit)
            )
            return [self._to_record(row) for row in result.scalars()]

    async def mark_read(self, notification_id: str, user_id: str) -> bool:
        async with self.db.Session() as session:
            result = await session.execute(
                update(NotificationRow)
                .where(
                    NotificationRow.id == notification_id,
                    NotificationRow.user_id == user_id,
                )
                .values(read=True)
            )
            await session.commit()
            return result.rowcount > 0

    async def mark_all_read(self, user_id: str) -> int:
        async with self.db.Session() as session:
            result = await session.execute(
                update(NotificationRow)
                .where(
                    NotificationRow.user_id == user_id,
                    NotificationRow.read.is_(False),
                )
                .values(read=True)
            )
            await session.commit()
            return result.rowcount or 0

    async def unread_count(self, user_id: str) -> int:
        async with self.db.Session() as session:
            result = await session.execute(
                select(func.count())
                .select_from(NotificationRow)
                .where(
                    NotificationRow.user_id == user_id,
                    NotificationRow.read.is_(False),
                )
            )
            return int(result.scalar_one())


class SqlSavedPostRepository:
    def __init__(self, db: SqlDatabase):
        self.db = db

    async def add(self, user_id: str, post_id: str) -> bool:
        async with self.db.Session() as session:
            session.add(
                SavedPostRow(
                    id=uuid.uuid4().hex,
                    user_id=user_id,
                    post_id=post_id,
                    saved_at=time.time(),
                )
            )
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                return False
            return True

    async def remove(self, user_id: str, post_id: str) -> bool:
        async with self.db.Session() as session:
            result = await session.execute(
                delete(SavedPostRow).where(
                    SavedPostRow.user_id == user_id, SavedPostRow.post_id == post_id
                )
            )
            await session.commit()
            return result.rowcount > 0

    async def exists(self, user_id: str, post_id: str) -> bool:
        async with self.db.Session() as session:
            result = await session.execute(
                select(SavedPostRow.id).where(
                    SavedPostRow.user_id == user_id, SavedPostRow.post_id == post_id
                )
            )
            return result.first() is not None

    async def list_for_user(self, user_id: str) -> list[SavedPost]:
        async with self.db.Session() as session:
            result = await session.execute(
                select(SavedPostRow)
                .where(SavedPostRow.user_id == user_id)
                .order_by(SavedPostRow.saved_at.desc())
            )
            return [from_record(SavedPost, _row_values(row)) for row in result.scalars()]

    async def count_for_post(self, post_id: str) -> int:
        async with self.db.Session() as session:
            result = await session.execute(
                select(func.count())
                .select_from(SavedPostRow)
                .where(SavedPostRow.post_id == post_id)
            )
            return int(result.scalar_one())

    async def delete_for_post(self, post_id: str) -> None:
        async with self.db.Session() as session:
            await session.execute(
                delete(SavedPostRow).where(SavedPostRow.post_id == post_id)
            )
            await session.commit()


class SqlReportRepository(_SqlRepository[Report]):
    row_type = ReportRow
    record_type = Report

    async def list_pending(self) -> list[Report]:
        async with self.db.Session() as session:
            result = await session.execute(
                select(ReportRow)
                .where(ReportRow.status == ReportStatus.PENDING.value)
                .order_by(ReportRow.created_at.desc())
            )
            return [self._to_record(row) for row in result.scalars()]


def create_sql_repositories(db: SqlDatabase) -> Repositories:
    return Repositories(
        users=SqlUserRepository(db),
        posts=SqlPostRepository(db),
        contexts=SqlContextRepository(db),
        comments=SqlCommentRepository(db),
        follows=SqlFollowRepository(db),
        notifications=SqlNotificationRepository(db),
        saved_posts=SqlSavedPostRepository(db),
        reports=SqlReportRepository(db),
    )
