"""
Pydantic schemas for the FastAPI backend.

Required text fields are Optional here so that missing values reach the
service and come back as 400 validation errors rather than 422s.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class RegisterRequest(BaseModel):
    username: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None


class LoginRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    username_or_email: Optional[str] = Field(default=None, alias="usernameOrEmail")
    password: Optional[str] = None


class AuthUser(BaseModel):
    id: str
    username: str
    profile_picture: Optional[str] = None
    is_admin: bool = False


class AuthResponse(BaseModel):
    token: str
    user: AuthUser


class CreatePostRequest(BaseModel):
    body: Optional[str] = None
    image_url: Optional[str] = None
    tags: list[str] = Field(default_factory=list)
    is_nsfw: bool = False


class EditPostRequest(BaseModel):
    body: Optional[str] = None
    tags: Optional[list[str]] = None


class TextRequest(BaseModel):
    text: Optional[str] = None


class VoteRequest(BaseModel):
    vote: Optional[str] = None


class VoteResponse(BaseModel):
    approved: bool
    approval_rate: float
    upvotes: int
    downvotes: int


class LikeResponse(BaseModel):
    liked: bool
    likes_count: int


class SaveResponse(BaseModel):
    saved: bool


class FollowResponse(BaseModel):
    success: bool
    following: bool


class SuccessResponse(BaseModel):
    success: bool = True


class CountResponse(BaseModel):
    count: int


class ProfilePictureRequest(BaseModel):
    profile_picture: Optional[str] = None


class ProfilePictureResponse(BaseModel):
    success: bool
    profile_picture: str


class UsernameRequest(BaseModel):
    username: Optional[str] = None


class AboutRequest(BaseModel):
    about_me: str = ""


class ProfileCounts(BaseModel):
    posts: int
    followers: int
    following: int


class ProfileResponse(BaseModel):
    user: dict
    counts: ProfileCounts


class SettingsResponse(BaseModel):
    id: str
    username: str
    email: str
    profile_picture: Optional[str] = None


class UserSuggestionResponse(BaseModel):
    id: str
    username: str
    profile_picture: Optional[str] = None
    followers: int
    posts: int
    likes_received: int
    is_following: bool


class UserStatsResponse(BaseModel):
    post_count: int
    likes_received: int
    followers: int


class TrendingTagResponse(BaseModel):
    tag: str
    count: int
    normalized_tag: str


class ReportRequest(BaseModel):
    reason: Optional[str] = None
    details: str = ""


class BanRequest(BaseModel):
    reason: str = ""


class BanResponse(BaseModel):
    success: bool
    posts_affected: int
