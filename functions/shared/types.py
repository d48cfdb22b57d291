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

from dataclasses import asdict, dataclass, field
from enum import Enum, StrEnum
import time
from typing import Any, List, Optional, Type, TypeVar

from dacite import Config, from_dict

T = TypeVar("T")

_RECORD_CONFIG = Config(check_types=False, cast=[Enum])


def _now() -> float:
    return time.time()


class Visibility(StrEnum):
    PUBLIC = "public"
    HIDDEN = "hidden"
    REMOVED = "removed"


class NotificationType(StrEnum):
    LIKE = "like"
    COMMENT = "comment"
    FOLLOW = "follow"
    NEW_POST = "new_post"


class ReportStatus(StrEnum):
    PENDING = "pending"
    DISMISSED = "dismissed"


class VoteValue(StrEnum):
    UP = "up"
    DOWN = "down"


@dataclass
class UsernameAlias:
    """A username a user held before renaming."""

    username: str
    changed_at: float


@dataclass
class User:
    id: str
    username: str
    email: str
    password: str = ""
    profile_picture: Optional[str] = None
    about_me: str = ""
    followers_count: int = 0
    following_count: int = 0
    posts_count: int = 0
    is_admin: bool = False
    banned: bool = False
    ban_reason: Optional[str] = None
    banned_at: Optional[float] = None
    banned_by: Optional[str] = None
    last_username_change: Optional[float] = None
    previous_usernames: List[UsernameAlias] = field(default_factory=list)
    email_verified: bool = False
    created_at: float = field(default_factory=_now)

    def public_dict(self) -> dict:
        """Returns the user as a dict without the stored password."""
        data = asdict(self)
        data.pop("password", None)
        return data


@dataclass
class Post:
    id: str
    user_id: str
    body: str
    image_url: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    is_nsfw: bool = False
    likes: List[str] = field(default_factory=list)
    comment_count: int = 0
    visibility: Visibility = Visibility.PUBLIC
    hidden_reason: Optional[str] = None
    original_body: Optional[str] = None
    edited_at: Optional[float] = None
    removed_at: Optional[float] = None
    removed_by: Optional[str] = None
    created_at: float = field(default_factory=_now)

    @property
    def like_count(self) -> int:
        return len(self.likes)


@dataclass
class ContextVote:
    user_id: str
    vote: VoteValue


@dataclass
class Context:
    """A reader-supplied annotation on a post, approved by vote or by an admin."""

    id: str
    post_id: str
    user_id: str
    text: str
    votes: List[ContextVote] = field(default_factory=list)
    upvotes: int = 0
    downvotes: int = 0
    approval_rate: float = 0.0
    approved: bool = False
    admin_approved: Optional[bool] = None
    admin_reviewed_at: Optional[float] = None
    admin_reviewed_by: Optional[str] = None
    created_at: float = field(default_factory=_now)

    @property
    def is_approved(self) -> bool:
        return self.admin_approved is True or self.approved


@dataclass
class Comment:
    id: str
    post_id: str
    user_id: str
    text: str
    likes: List[str] = field(default_factory=list)
    created_at: float = field(default_factory=_now)


@dataclass
class Follow:
    follower_id: str
    followee_id: str
    created_at: float = field(default_factory=_now)


@dataclass
class Notification:
    id: str
    user_id: str
    type: NotificationType
    message: str
    title: Optional[str] = None
    related_id: Optional[str] = None
    from_user_id: Optional[str] = None
    read: bool = False
    created_at: float = field(default_factory=_now)


@dataclass
class SavedPost:
    id: str
    user_id: str
    post_id: str
    saved_at: float = field(default_factory=_now)


@dataclass
class Report:
    """A user report against a post or a comment."""

    id: str
    reporter_id: str
    reason: str
    details: str = ""
    post_id: Optional[str] = None
    comment_id: Optional[str] = None
    status: ReportStatus = ReportStatus.PENDING
    dismissed_by: Optional[str] = None
    dismissed_at: Optional[float] = None
    created_at: float = field(default_factory=_now)


@dataclass
class CommentView:
    """A comment joined with its author's display fields."""

    comment: Comment
    username: Optional[str] = None
    profile_picture: Optional[str] = None

    def as_dict(self) -> dict:
        data = asdict(self.comment)
        data["likes_count"] = len(self.comment.likes)
        data["username"] = self.username
        data["profile_picture"] = self.profile_picture
        return data


@dataclass
class FeedItem:
    """A post enriched with viewer-relative flags and read-time counts."""

    post: Post
    username: Optional[str] = None
    profile_picture: Optional[str] = None
    user_liked: bool = False
    user_saved: bool = False
    likes_count: int = 0
    comments_count: int = 0
    saves_count: int = 0
    context: Optional[Context] = None
    recent_comments: List[CommentView] = field(default_factory=list)

    def as_dict(self) -> dict:
        data = asdict(self.post)
        data.pop("likes", None)
        data.update(
            username=self.username,
            profile_picture=self.profile_picture,
            user_liked=self.user_liked,
            user_saved=self.user_saved,
            likes_count=self.likes_count,
            comments_count=self.comments_count,
            saves_count=self.saves_count,
            context=asdict(self.context) if self.context else None,
            recent_comments=[c.as_dict() for c in self.recent_comments],
        )
        return data


@dataclass
class FeedSnapshot:
    """Posts delivered by a feed watch, newest first."""

    posts: List[Post]
    has_pending_writes: bool = False


@dataclass
class LikeResult:
    liked: bool
    likes_count: int


@dataclass
class VoteResult:
    approved: bool
    approval_rate: float
    upvotes: int
    downvotes: int


@dataclass
class UserStats:
    post_count: int
    likes_received: int
    followers: int


@dataclass
class TrendingTag:
    tag: str
    count: int
    normalized_tag: str


@dataclass
class UserSuggestion:
    user: User
    followers: int = 0
    posts: int = 0
    likes_received: int = 0
    is_following: bool = False


@dataclass
class ProfileSummary:
    user: User
    posts: int = 0
    followers: int = 0
    following: int = 0


def to_record(value: Any) -> dict:
    """Converts a dataclass entity into a plain dict for storage."""
    return asdict(value)


def from_record(data_class: Type[T], data: dict) -> T:
    """Builds an entity from a stored dict, ignoring unknown keys."""
    return from_dict(data_class=data_class, data=data, config=_RECORD_CONFIG)
