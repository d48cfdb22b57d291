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
Storage-agnostic social service.

SocialService implements every user-facing operation (auth, posts, likes,
saves, comments, contexts, follows, notifications, profiles and moderation)
once, against the repository interfaces in social.repository. The offline,
remote and REST deployments differ only in the repositories they pass in and
in a few construction options.
"""

from __future__ import annotations

import asyncio
import functools
import inspect
import logging
import time
import uuid
from dataclasses import asdict
from typing import Any, Awaitable, Callable, Iterable, Optional, Sequence

from shared.constants import (
    ABOUT_ME_MAX_LENGTH,
    HIDDEN_BY_BAN_REASON,
    MAX_USER_SUGGESTIONS,
    MAX_USERNAME_HISTORY,
    NEW_POST_PREVIEW_LENGTH,
    NOTIFICATION_LIMIT,
    RECENT_COMMENTS_LIMIT,
    TRENDING_TAGS_LIMIT,
    USERNAME_CHANGE_COOLDOWN_SECONDS,
)
from shared.errors import (
    ConflictError,
    CooldownError,
    AuthenticationError,
    NotFoundError,
    PermissionDeniedError,
    SocialError,
    StorageError,
    UnsupportedOperationError,
    ValidationError,
)
from shared.types import (
    Comment,
    CommentView,
    Context,
    FeedItem,
    FeedSnapshot,
    LikeResult,
    Notification,
    NotificationType,
    Post,
    ProfileSummary,
    Report,
    ReportStatus,
    TrendingTag,
    User,
    UserStats,
    UserSuggestion,
    UsernameAlias,
    Visibility,
    VoteResult,
    VoteValue,
)
from social import contexts as context_rules
from social.authorization import (
    is_admin,
    is_privileged_username,
    require_admin,
    require_owner_or_admin,
    require_user,
)
from social.passwords import PasswordHasher, PlaintextPasswordHasher
from social.repository import Repositories, Unsubscribe

logger = logging.getLogger(__name__)

FeedCallback = Callable[[list[FeedItem]], Optional[Awaitable[Any]]]

PROFILE_FIELDS = ("about_me", "profile_picture")


def _new_id() -> str:
    return uuid.uuid4().hex


def _clean_text(value: Optional[str]) -> str:
    return (value or "").strip()


def _clean_tags(tags: Optional[Iterable[str]]) -> list[str]:
    cleaned: list[str] = []
    seen: set[str] = set()
    for tag in tags or []:
        tag = tag.strip().lstrip("#").strip()
        if tag and tag.lower() not in seen:
            seen.add(tag.lower())
            cleaned.append(tag)
    return cleaned


def storage_errors(action: str):
    """
    Re-raises unexpected failures of a service operation as StorageError.

    Errors from the SocialError hierarchy pass through untouched, so callers
    only ever see that hierarchy.
    """

    def decorator(func):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            try:
                return await func(*args, **kwargs)
            except SocialError:
                raise
            except Exception as e:
                logger.exception("Failed to %s", action)
                raise StorageError(f"Failed to {action}: {e}") from e

        return wrapper

    return decorator


class SocialService:
    def __init__(
        self,
        repositories: Repositories,
        *,
        password_hasher: Optional[PasswordHasher] = None,
        feed_limit: Optional[int] = None,
        strict_contexts: bool = False,
        privileged_usernames: Sequence[str] = (),
        clock: Callable[[], float] = time.time,
    ):
        """
        Args:
          repositories: One backend's repository implementations.
          password_hasher: Storage strategy for passwords; plaintext if omitted.
          feed_limit: Default feed size; None returns every post.
          strict_contexts: Allow a single context per post and reject
            contexts from the post's own author.
          privileged_usernames: Usernames that are granted the admin role.
          clock: Returns the current time in epoch seconds.
        """
        self.repos = repositories
        self.password_hasher = password_hasher or PlaintextPasswordHasher()
        self.feed_limit = feed_limit
        self.strict_contexts = strict_contexts
        self.privileged_usernames = tuple(privileged_usernames)
        self.clock = clock

    # ------------------------------------------------------------------
    # Auth

    @storage_errors("register")
    async def register(self, username: str, email: str, password: str) -> User:
        username = _clean_text(username)
        email = _clean_text(email)
        if not username or not email or not password:
            raise ValidationError("Username, email and password are required")
        if await self.repos.users.find_by_username(username):
            raise ValidationError("Username already exists")
        if await self.repos.users.find_by_email(email):
            raise ValidationError("Email already registered")

        user = User(
            id=_new_id(),
            username=username,
            email=email,
            password=self.password_hasher.hash(password),
            is_admin=is_privileged_username(username, self.privileged_usernames),
            created_at=self.clock(),
        )
        user = await self.repos.users.add(user)
        logger.info("Registered user %s (%s)", user.username, user.id)
        return user

    @storage_errors("log in")
    async def login(self, username_or_email: str, password: str) -> User:
        identifier = _clean_text(username_or_email)
        if not identifier or not password:
            raise ValidationError("Username and password are required")
        user = await self.repos.users.find_by_username(identifier)
        if user is None:
            user = await self.repos.users.find_by_email(identifier)
        if user is None or not self.password_hasher.verify(password, user.password):
            raise AuthenticationError("Invalid credentials")

        if not user.is_admin and is_privileged_username(
            user.username, self.privileged_usernames
        ):
            user = await self.repos.users.update(user.id, {"is_admin": True}) or user
        return user

    @storage_errors("reset password")
    async def reset_password(self, email: str, new_password: str) -> bool:
        if not new_password:
            raise ValidationError("Password required")
        user = await self.repos.users.find_by_email(_clean_text(email))
        if user is None:
            return False
        await self.repos.users.update(
            user.id, {"password": self.password_hasher.hash(new_password)}
        )
        return True

    @storage_errors("load user")
    async def get_user(self, user_id: str) -> User:
        user = await self.repos.users.get(user_id)
        if user is None:
            raise NotFoundError("User not found")
        return user

    # ------------------------------------------------------------------
    # Posts

    async def _get_post(self, post_id: str) -> Post:
        post = await self.repos.posts.get(post_id)
        if post is None:
            raise NotFoundError("Post not found")
        return post

    def _can_view(self, post: Post, viewer: Optional[User]) -> bool:
        if post.visibility == Visibility.PUBLIC:
            return True
        return is_admin(viewer) or (viewer is not None and viewer.id == post.user_id)

    @storage_errors("create post")
    async def create_post(
        self,
        actor: Optional[User],
        body: str,
        image_url: Optional[str] = None,
        tags: Optional[Iterable[str]] = None,
        is_nsfw: bool = False,
    ) -> Post:
        user = require_user(actor)
        body = _clean_text(body)
        if not body:
            raise ValidationError("Body required")

        post = Post(
            id=_new_id(),
            user_id=user.id,
            body=body,
            image_url=image_url or None,
            tags=_clean_tags(tags),
            is_nsfw=is_nsfw,
            created_at=self.clock(),
        )
        post = await self.repos.posts.add(post)
        await self.repos.users.increment_counts(user.id, posts=1)
        await self._notify_followers_of_new_post(user, post)
        return post

    async def _notify_followers_of_new_post(self, author: User, post: Post) -> None:
        follower_ids = await self.repos.follows.list_followers(author.id)
        preview = post.body[:NEW_POST_PREVIEW_LENGTH]
        await asyncio.gather(
            *(
                self._notify(
                    follower_id,
                    NotificationType.NEW_POST,
                    title="New Post",
                    message=f"{author.username} posted: {preview}...",
                    related_id=post.id,
                    from_user_id=author.id,
                )
                for follower_id in follower_ids
            )
        )

    @storage_errors("load post")
    async def get_post(self, viewer: Optional[User], post_id: str) -> FeedItem:
        post = await self._get_post(post_id)
        if not self._can_view(post, viewer):
            raise NotFoundError("Post not found")
        items = await self._enrich([post], viewer, with_recent_comments=True)
        return items[0]

    @storage_errors("edit post")
    async def edit_post(
        self,
        actor: Optional[User],
        post_id: str,
        body: str,
        tags: Optional[Iterable[str]] = None,
    ) -> Post:
        user = require_user(actor)
        post = await self._get_post(post_id)
        if post.user_id != user.id:
            raise PermissionDeniedError("You can only edit your own posts")
        body = _clean_text(body)
        if not body:
            raise ValidationError("Body required")

        changes: dict[str, Any] = {"body": body, "edited_at": self.clock()}
        if post.original_body is None:
            changes["original_body"] = post.body
        if tags is not None:
            changes["tags"] = _clean_tags(tags)
        updated = await self.repos.posts.update(post_id, changes)
        if updated is None:
            raise NotFoundError("Post not found")
        return updated

    @storage_errors("delete post")
    async def delete_post(self, actor: Optional[User], post_id: str) -> None:
        """Hard delete, cascading to the post's comments, contexts and saves."""
        post = await self._get_post(post_id)
        user = require_owner_or_admin(
            actor, post.user_id, "You can only delete your own posts"
        )
        await self.repos.comments.delete_for_post(post_id)
        await self.repos.contexts.delete_for_post(post_id)
        await self.repos.saved_posts.delete_for_post(post_id)
        await self.repos.posts.delete(post_id)
        await self.repos.users.increment_counts(post.user_id, posts=-1)
        logger.info("Post %s deleted by %s", post_id, user.id)

    # ------------------------------------------------------------------
    # Feed

    async def _display_context(self, post_id: str) -> Optional[Context]:
        contexts = await self.repos.contexts.list_for_post(post_id)
        if self.strict_contexts:
            return contexts[0] if contexts else None
        for context in contexts:
            if context.is_approved:
                return context
        return None

    async def _enrich_one(
        self,
        post: Post,
        viewer: Optional[User],
        authors: dict[str, User],
        saved_ids: set[str],
        with_recent_comments: bool,
    ) -> FeedItem:
        comments_count, saves_count, context = await asyncio.gather(
            self.repos.comments.count_for_post(post.id),
            self.repos.saved_posts.count_for_post(post.id),
            self._display_context(post.id),
        )
        recent: list[CommentView] = []
        if with_recent_comments:
            recent = await self.get_recent_comments(post.id)

        author = authors.get(post.user_id)
        return FeedItem(
            post=post,
            username=author.username if author else None,
            profile_picture=author.profile_picture if author else None,
            user_liked=viewer is not None and viewer.id in post.likes,
            user_saved=post.id in saved_ids,
            likes_count=post.like_count,
            comments_count=comments_count,
            saves_count=saves_count,
            context=context,
            recent_comments=recent,
        )

    async def _enrich(
        self,
        posts: Sequence[Post],
        viewer: Optional[User],
        *,
        with_recent_comments: bool = False,
    ) -> list[FeedItem]:
        if not posts:
            return []
        authors = await self.repos.users.get_many(list({p.user_id for p in posts}))
        saved_ids: set[str] = set()
        if viewer is not None:
            saved = await self.repos.saved_posts.list_for_user(viewer.id)
            saved_ids = {s.post_id for s in saved}
        return list(
            await asyncio.gather(
                *(
                    self._enrich_one(
                        post, viewer, authors, saved_ids, with_recent_comments
                    )
                    for post in posts
                )
            )
        )

    async def _visible_posts(
        self, viewer: Optional[User], limit: Optional[int]
    ) -> list[Post]:
        fetch = limit
        while True:
            posts = await self.repos.posts.list_recent(fetch)
            visible = [p for p in posts if self._can_view(p, viewer)]
            # Hidden posts take up slots, so widen the window until it fills.
            if fetch is None or len(visible) >= limit or len(posts) < fetch:
                return visible if fetch is None else visible[:limit]
            fetch *= 2

    @storage_errors("load feed")
    async def get_feed(
        self, viewer: Optional[User], limit: Optional[int] = None
    ) -> list[FeedItem]:
        """Posts newest first, enriched for the viewer."""
        if limit is None:
            limit = self.feed_limit
        posts = await self._visible_posts(viewer, limit)
        return await self._enrich(posts, viewer)

    @storage_errors("load explore posts")
    async def get_explore_posts(
        self, viewer: Optional[User], limit: Optional[int] = None
    ) -> list[FeedItem]:
        items = await self._enrich(await self._visible_posts(viewer, None), viewer)
        items.sort(
            key=lambda item: (
                item.likes_count + item.comments_count,
                item.post.created_at,
            ),
            reverse=True,
        )
        return items[:limit] if limit else items

    @storage_errors("load posts by tag")
    async def get_posts_by_tag(
        self, viewer: Optional[User], tag: str
    ) -> list[FeedItem]:
        wanted = _clean_text(tag).lstrip("#").lower()
        if not wanted:
            return []
        posts = [
            p
            for p in await self._visible_posts(viewer, None)
            if wanted in (t.lower() for t in p.tags)
        ]
        return await self._enrich(posts, viewer)

    @storage_errors("load trending tags")
    async def get_trending_tags(
        self, limit: int = TRENDING_TAGS_LIMIT
    ) -> list[TrendingTag]:
        counts: dict[str, int] = {}
        display: dict[str, str] = {}
        for post in await self._visible_posts(None, None):
            for tag in post.tags:
                normalized = tag.strip().lower()
                if not normalized:
                    continue
                counts[normalized] = counts.get(normalized, 0) + 1
                display.setdefault(normalized, tag.strip())
        ranked = sorted(counts.items(), key=lambda kv: (-kv[1], kv[0]))[:limit]
        return [
            TrendingTag(tag=display[name], count=count, normalized_tag=name)
            for name, count in ranked
        ]

    async def subscribe_to_feed(
        self, viewer: Optional[User], callback: FeedCallback
    ) -> Unsubscribe:
        """
        Delivers the enriched feed to callback now and on every change.

        Snapshots that only contain local, unconfirmed writes are skipped.
        The callback may be a plain function or a coroutine function.
        """
        watcher = self.repos.posts
        if not hasattr(watcher, "watch_recent"):
            raise UnsupportedOperationError(
                "This backend does not support feed subscriptions"
            )

        loop = asyncio.get_running_loop()
        deliveries: set[asyncio.Task] = set()

        def on_snapshot(snapshot: FeedSnapshot) -> None:
            if snapshot.has_pending_writes:
                logger.debug("Skipping feed snapshot with pending writes")
                return
            task = loop.create_task(
                self._deliver_feed(snapshot.posts, viewer, callback)
            )
            deliveries.add(task)
            task.add_done_callback(deliveries.discard)

        stop_watching = watcher.watch_recent(self.feed_limit, on_snapshot)

        def unsubscribe() -> None:
            stop_watching()
            for task in list(deliveries):
                task.cancel()

        return unsubscribe

    async def _deliver_feed(
        self, posts: list[Post], viewer: Optional[User], callback: FeedCallback
    ) -> None:
        try:
            visible = [p for p in posts if self._can_view(p, viewer)]
            items = await self._enrich(visible, viewer, with_recent_comments=True)
            result = callback(items)
            if inspect.isawaitable(result):
                await result
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Feed delivery failed")

    # ------------------------------------------------------------------
    # Likes and saves

    @storage_errors("like post")
    async def toggle_like(self, actor: Optional[User], post_id: str) -> LikeResult:
        user = require_user(actor)
        post = await self._get_post(post_id)
        if user.id in post.likes:
            await self.repos.posts.remove_like(post_id, user.id)
            liked = False
        else:
            added = await self.repos.posts.add_like(post_id, user.id)
            liked = True
            if added and post.user_id != user.id:
                await self._notify(
                    post.user_id,
                    NotificationType.LIKE,
                    title="New Like",
                    message=f"{user.username} liked your post",
                    related_id=post_id,
                    from_user_id=user.id,
                )
        updated = await self.repos.posts.get(post_id)
        return LikeResult(
            liked=liked, likes_count=updated.like_count if updated else 0
        )

    @storage_errors("save post")
    async def toggle_save(self, actor: Optional[User], post_id: str) -> bool:
        """Returns True when the post is saved after the call."""
        user = require_user(actor)
        await self._get_post(post_id)
        if await self.repos.saved_posts.exists(user.id, post_id):
            await self.repos.saved_posts.remove(user.id, post_id)
            return False
        await self.repos.saved_posts.add(user.id, post_id)
        return True

    @storage_errors("check saved post")
    async def is_post_saved(self, actor: Optional[User], post_id: str) -> bool:
        user = require_user(actor)
        return await self.repos.saved_posts.exists(user.id, post_id)

    @storage_errors("load saved posts")
    async def get_saved_posts(self, actor: Optional[User]) -> list[FeedItem]:
        user = require_user(actor)
        saved = await self.repos.saved_posts.list_for_user(user.id)
        posts = await asyncio.gather(*(self.repos.posts.get(s.post_id) for s in saved))
        visible = [p for p in posts if p is not None and self._can_view(p, user)]
        items = await self._enrich(visible, user)
        for item in items:
            item.user_saved = True
        return items

    # ------------------------------------------------------------------
    # Comments

    async def _comment_views(self, comments: Sequence[Comment]) -> list[CommentView]:
        authors = await self.repos.users.get_many(list({c.user_id for c in comments}))
        views = []
        for comment in comments:
            author = authors.get(comment.user_id)
            views.append(
                CommentView(
                    comment=comment,
                    username=author.username if author else None,
                    profile_picture=author.profile_picture if author else None,
                )
            )
        return views

    @storage_errors("add comment")
    async def add_comment(
        self, actor: Optional[User], post_id: str, text: str
    ) -> CommentView:
        user = require_user(actor)
        text = _clean_text(text)
        if not text:
            raise ValidationError("Text required")
        post = await self._get_post(post_id)

        comment = Comment(
            id=_new_id(),
            post_id=post_id,
            user_id=user.id,
            text=text,
            created_at=self.clock(),
        )
        comment = await self.repos.comments.add(comment)
        await self.repos.posts.adjust_comment_count(post_id, 1)
        if post.user_id != user.id:
            await self._notify(
                post.user_id,
                NotificationType.COMMENT,
                title="New Comment",
                message=f"{user.username} commented on your post",
                related_id=post_id,
                from_user_id=user.id,
            )
        return CommentView(
            comment=comment,
            username=user.username,
            profile_picture=user.profile_picture,
        )

    @storage_errors("load comments")
    async def get_comments(self, post_id: str) -> list[CommentView]:
        """Comments oldest first."""
        comments = await self.repos.comments.list_for_post(post_id)
        return await self._comment_views(comments)

    @storage_errors("load recent comments")
    async def get_recent_comments(
        self, post_id: str, limit: int = RECENT_COMMENTS_LIMIT
    ) -> list[CommentView]:
        comments = await self.repos.comments.list_for_post(post_id)
        return await self._comment_views(comments[-limit:] if limit else [])

    @storage_errors("delete comment")
    async def delete_comment(self, actor: Optional[User], comment_id: str) -> None:
        comment = await self.repos.comments.get(comment_id)
        if comment is None:
            raise NotFoundError("Comment not found")
        require_owner_or_admin(
            actor, comment.user_id, "You can only delete your own comments"
        )
        await self.repos.comments.delete(comment_id)
        await self.repos.posts.adjust_comment_count(comment.post_id, -1)

    @storage_errors("like comment")
    async def toggle_comment_like(
        self, actor: Optional[User], comment_id: str
    ) -> bool:
        user = require_user(actor)
        if await self.repos.comments.get(comment_id) is None:
            raise NotFoundError("Comment not found")
        return await self.repos.comments.toggle_like(comment_id, user.id)

    # ------------------------------------------------------------------
    # Contexts

    @storage_errors("add context")
    async def add_context(
        self, actor: Optional[User], post_id: str, text: str
    ) -> Context:
        user = require_user(actor)
        text = _clean_text(text)
        if not text:
            raise ValidationError("Text required")
        post = await self._get_post(post_id)
        if self.strict_contexts:
            if post.user_id == user.id:
                raise PermissionDeniedError("You cannot add context to your own post")
            if await self.repos.contexts.list_for_post(post_id):
                raise ConflictError("Context already exists for this post")

        context = Context(
            id=_new_id(),
            post_id=post_id,
            user_id=user.id,
            text=text,
            created_at=self.clock(),
        )
        return await self.repos.contexts.add(context)

    @storage_errors("vote on context")
    async def vote_on_context(
        self, actor: Optional[User], context_id: str, vote: str
    ) -> VoteResult:
        user = require_user(actor)
        try:
            value = VoteValue(vote)
        except ValueError:
            raise ValidationError("Vote must be 'up' or 'down'") from None
        context = await self.repos.contexts.apply_vote(context_id, user.id, value)
        if context is None:
            raise NotFoundError("Context not found")
        return context_rules.vote_result(context)

    @storage_errors("load context")
    async def get_approved_context(self, post_id: str) -> Optional[Context]:
        for context in await self.repos.contexts.list_for_post(post_id):
            if context_rules.is_context_approved(context):
                return context
        return None

    @storage_errors("load pending contexts")
    async def get_pending_contexts(self, actor: Optional[User]) -> list[Context]:
        require_admin(actor)
        return await self.repos.contexts.list_pending()

    @storage_errors("load context submissions")
    async def get_post_context_submissions(
        self, actor: Optional[User], post_id: str
    ) -> list[Context]:
        require_admin(actor)
        return await self.repos.contexts.list_for_post(post_id)

    async def _review_context(
        self, actor: Optional[User], context_id: str, approved: bool
    ) -> Context:
        admin = require_admin(actor)
        context = await self.repos.contexts.update(
            context_id,
            {
                "admin_approved": approved,
                "admin_reviewed_at": self.clock(),
                "admin_reviewed_by": admin.id,
            },
        )
        if context is None:
            raise NotFoundError("Context not found")
        return context

    @storage_errors("approve context")
    async def admin_approve_context(
        self, actor: Optional[User], context_id: str
    ) -> Context:
        return await self._review_context(actor, context_id, True)

    @storage_errors("reject context")
    async def admin_reject_context(
        self, actor: Optional[User], context_id: str
    ) -> Context:
        return await self._review_context(actor, context_id, False)

    # ------------------------------------------------------------------
    # Follows

    @storage_errors("follow user")
    async def follow_user(self, actor: Optional[User], target_id: str) -> bool:
        user = require_user(actor)
        if target_id == user.id:
            raise ValidationError("You cannot follow yourself")
        if await self.repos.users.get(target_id) is None:
            raise NotFoundError("User not found")

        if await self.repos.follows.add(user.id, target_id):
            await self.repos.users.increment_counts(user.id, following=1)
            await self.repos.users.increment_counts(target_id, followers=1)
            await self._notify(
                target_id,
                NotificationType.FOLLOW,
                title="New Follower",
                message=f"{user.username} started following you",
                related_id=user.id,
                from_user_id=user.id,
            )
        return True

    @storage_errors("unfollow user")
    async def unfollow_user(self, actor: Optional[User], target_id: str) -> bool:
        user = require_user(actor)
        if target_id == user.id:
            raise ValidationError("You cannot unfollow yourself")
        if await self.repos.follows.remove(user.id, target_id):
            await self.repos.users.increment_counts(user.id, following=-1)
            await self.repos.users.increment_counts(target_id, followers=-1)
        return False

    async def toggle_follow(self, actor: Optional[User], target_id: str) -> bool:
        """Returns True when the actor follows target_id after the call."""
        if await self.is_following(actor, target_id):
            return await self.unfollow_user(actor, target_id)
        return await self.follow_user(actor, target_id)

    @storage_errors("load follow status")
    async def is_following(self, actor: Optional[User], target_id: str) -> bool:
        user = require_user(actor)
        return await self.repos.follows.exists(user.id, target_id)

    # ------------------------------------------------------------------
    # Notifications

    async def _notify(
        self,
        recipient_id: str,
        kind: NotificationType,
        *,
        title: str,
        message: str,
        related_id: Optional[str] = None,
        from_user_id: Optional[str] = None,
    ) -> None:
        notification = Notification(
            id=_new_id(),
            user_id=recipient_id,
            type=kind,
            title=title,
            message=message,
            related_id=related_id,
            from_user_id=from_user_id,
            created_at=self.clock(),
        )
        try:
            await self.repos.notifications.add(notification)
        except Exception:
            # Never fail the action that triggered the notification.
            logger.warning(
                "Failed to create %s notification for %s",
                kind,
                recipient_id,
                exc_info=True,
            )

    @storage_errors("load notifications")
    async def get_notifications(self, actor: Optional[User]) -> list[Notification]:
        user = require_user(actor)
        return await self.repos.notifications.list_for_user(
            user.id, NOTIFICATION_LIMIT
        )

    @storage_errors("mark notification read")
    async def mark_notification_read(
        self, actor: Optional[User], notification_id: str
    ) -> None:
        user = require_user(actor)
        if not await self.repos.notifications.mark_read(notification_id, user.id):
            raise NotFoundError("Notification not found")

    @storage_errors("mark notifications read")
    async def mark_all_notifications_read(self, actor: Optional[User]) -> int:
        user = require_user(actor)
        return await self.repos.notifications.mark_all_read(user.id)

    @storage_errors("count unread notifications")
    async def get_unread_count(self, actor: Optional[User]) -> int:
        user = require_user(actor)
        return await self.repos.notifications.unread_count(user.id)

    # ------------------------------------------------------------------
    # Profiles

    @storage_errors("update username")
    async def update_username(
        self, actor: Optional[User], user_id: str, new_username: str
    ) -> User:
        require_owner_or_admin(
            actor, user_id, "You can only change your own username"
        )
        new_username = _clean_text(new_username)
        if not new_username:
            raise ValidationError("Username required")
        user = await self.repos.users.get(user_id)
        if user is None:
            raise NotFoundError("User not found")

        now = self.clock()
        if (
            user.last_username_change is not None
            and now - user.last_username_change < USERNAME_CHANGE_COOLDOWN_SECONDS
        ):
            raise CooldownError("You can only change your username once per week")
        existing = await self.repos.users.find_by_username(new_username)
        if existing is not None and existing.id != user.id:
            raise ValidationError("Username is already taken")

        history = [UsernameAlias(username=user.username, changed_at=now)]
        history.extend(user.previous_usernames)
        updated = await self.repos.users.update(
            user.id,
            {
                "username": new_username,
                "previous_usernames": [
                    asdict(alias) for alias in history[:MAX_USERNAME_HISTORY]
                ],
                "last_username_change": now,
            },
        )
        logger.info("User %s renamed %s -> %s", user.id, user.username, new_username)
        return updated or user

    @storage_errors("clear username history")
    async def clear_alias_history(self, actor: Optional[User]) -> User:
        user = require_user(actor)
        return await self.repos.users.update(user.id, {"previous_usernames": []}) or user

    @storage_errors("update about me")
    async def update_about_me(self, actor: Optional[User], text: str) -> User:
        user = require_user(actor)
        about = (text or "")[:ABOUT_ME_MAX_LENGTH]
        return await self.repos.users.update(user.id, {"about_me": about}) or user

    @storage_errors("update profile picture")
    async def update_profile_picture(
        self, actor: Optional[User], profile_picture: str
    ) -> User:
        user = require_user(actor)
        if not profile_picture:
            raise ValidationError("profile_picture required")
        updated = await self.repos.users.update(
            user.id, {"profile_picture": profile_picture}
        )
        return updated or user

    @storage_errors("update profile")
    async def update_profile(self, actor: Optional[User], changes: dict) -> User:
        """Applies about_me and profile_picture changes in one write."""
        user = require_user(actor)
        unknown = set(changes) - set(PROFILE_FIELDS)
        if unknown:
            raise ValidationError(
                f"Cannot update profile fields: {', '.join(sorted(unknown))}"
            )
        if "profile_picture" in changes and not changes["profile_picture"]:
            raise ValidationError("profile_picture required")
        changes = dict(changes)
        if "about_me" in changes:
            changes["about_me"] = (changes["about_me"] or "")[:ABOUT_ME_MAX_LENGTH]
        if not changes:
            return user
        return await self.repos.users.update(user.id, changes) or user

    @storage_errors("load user stats")
    async def get_user_stats(self, user_id: str) -> UserStats:
        if await self.repos.users.get(user_id) is None:
            raise NotFoundError("User not found")
        posts, followers = await asyncio.gather(
            self.repos.posts.list_by_user(user_id),
            self.repos.follows.list_followers(user_id),
        )
        return UserStats(
            post_count=len(posts),
            likes_received=sum(p.like_count for p in posts),
            followers=len(followers),
        )

    @storage_errors("load profile")
    async def get_profile_summary(self, actor: Optional[User]) -> ProfileSummary:
        user = require_user(actor)
        fresh = await self.repos.users.get(user.id) or user
        posts, followers, following = await asyncio.gather(
            self.repos.posts.list_by_user(user.id),
            self.repos.follows.list_followers(user.id),
            self.repos.follows.list_following(user.id),
        )
        return ProfileSummary(
            user=fresh,
            posts=len(posts),
            followers=len(followers),
            following=len(following),
        )

    @storage_errors("search users")
    async def search_users(self, term: str) -> list[User]:
        needle = _clean_text(term).lower()
        if not needle:
            return []
        return [
            u for u in await self.repos.users.list_all() if needle in u.username.lower()
        ]

    @storage_errors("load suggested users")
    async def get_suggested_users(
        self, actor: Optional[User], limit: int = 5
    ) -> list[UserSuggestion]:
        """Other users ranked by likes received on their posts."""
        limit = max(1, min(limit, MAX_USER_SUGGESTIONS))
        viewer_id = actor.id if actor else None
        following: set[str] = set()
        if viewer_id:
            following = set(await self.repos.follows.list_following(viewer_id))

        async def suggestion(user: User) -> UserSuggestion:
            posts, followers = await asyncio.gather(
                self.repos.posts.list_by_user(user.id),
                self.repos.follows.list_followers(user.id),
            )
            return UserSuggestion(
                user=user,
                followers=len(followers),
                posts=len(posts),
                likes_received=sum(p.like_count for p in posts),
                is_following=user.id in following,
            )

        candidates = [
            u
            for u in await self.repos.users.list_all()
            if u.id != viewer_id and not u.banned
        ]
        suggestions = await asyncio.gather(*(suggestion(u) for u in candidates))
        ranked = sorted(
            suggestions, key=lambda s: (s.likes_received, s.followers), reverse=True
        )
        return ranked[:limit]

    # ------------------------------------------------------------------
    # Moderation

    @storage_errors("remove post")
    async def admin_remove_post(self, actor: Optional[User], post_id: str) -> Post:
        """Soft removal; the post record is kept for auditing."""
        admin = require_admin(actor)
        await self._get_post(post_id)
        updated = await self.repos.posts.update(
            post_id,
            {
                "visibility": Visibility.REMOVED,
                "removed_at": self.clock(),
                "removed_by": admin.id,
            },
        )
        logger.info("Post %s removed by admin %s", post_id, admin.id)
        return updated

    @storage_errors("ban user")
    async def admin_ban_user(
        self, actor: Optional[User], user_id: str, reason: str = ""
    ) -> int:
        """Bans the user and hides all of their posts; returns the number hidden."""
        admin = require_admin(actor)
        if user_id == admin.id:
            raise ValidationError("You cannot ban yourself")
        if await self.repos.users.get(user_id) is None:
            raise NotFoundError("User not found")

        await self.repos.users.update(
            user_id,
            {
                "banned": True,
                "ban_reason": reason or None,
                "banned_at": self.clock(),
                "banned_by": admin.id,
            },
        )
        hidden = await self.repos.posts.set_visibility_for_user(
            user_id, Visibility.HIDDEN, HIDDEN_BY_BAN_REASON
        )
        logger.info("User %s banned by %s; %d posts hidden", user_id, admin.id, hidden)
        return hidden

    @storage_errors("unban user")
    async def admin_unban_user(self, actor: Optional[User], user_id: str) -> int:
        admin = require_admin(actor)
        if await self.repos.users.get(user_id) is None:
            raise NotFoundError("User not found")
        await self.repos.users.update(
            user_id,
            {"banned": False, "ban_reason": None, "banned_at": None, "banned_by": None},
        )
        restored = await self.repos.posts.set_visibility_for_user(
            user_id,
            Visibility.PUBLIC,
            None,
            only_hidden_reason=HIDDEN_BY_BAN_REASON,
        )
        logger.info("User %s unbanned by %s", user_id, admin.id)
        return restored

    async def _report(
        self,
        actor: Optional[User],
        reason: str,
        details: str,
        *,
        post_id: Optional[str] = None,
        comment_id: Optional[str] = None,
    ) -> Report:
        user = require_user(actor)
        reason = _clean_text(reason)
        if not reason:
            raise ValidationError("Report reason required")
        report = Report(
            id=_new_id(),
            reporter_id=user.id,
            reason=reason,
            details=_clean_text(details),
            post_id=post_id,
            comment_id=comment_id,
            created_at=self.clock(),
        )
        return await self.repos.reports.add(report)

    @storage_errors("report post")
    async def report_post(
        self, actor: Optional[User], post_id: str, reason: str, details: str = ""
    ) -> Report:
        await self._get_post(post_id)
        return await self._report(actor, reason, details, post_id=post_id)

    @storage_errors("report comment")
    async def report_comment(
        self, actor: Optional[User], comment_id: str, reason: str, details: str = ""
    ) -> Report:
        comment = await self.repos.comments.get(comment_id)
        if comment is None:
            raise NotFoundError("Comment not found")
        return await self._report(
            actor, reason, details, post_id=comment.post_id, comment_id=comment_id
        )

    @storage_errors("load reports")
    async def get_reports(self, actor: Optional[User]) -> list[Report]:
        require_admin(actor)
        return await self.repos.reports.list_pending()

    @storage_errors("dismiss report")
    async def dismiss_report(self, actor: Optional[User], report_id: str) -> Report:
        admin = require_admin(actor)
        report = await self.repos.reports.update(
            report_id,
            {
                "status": ReportStatus.DISMISSED,
                "dismissed_by": admin.id,
                "dismissed_at": self.clock(),
            },
        )
        if report is None:
            raise NotFoundError("Report not found")
        return report
