"""
HTTP routes for the ArtHub REST API.

Service errors are translated to HTTP responses by the exception handler
installed in backend.app, so handlers only call the service.
"""

from __future__ import annotations

import logging
from dataclasses import asdict
from typing import Optional

from fastapi import APIRouter, Depends, Query

from backend.auth import create_access_token, get_current_user, get_optional_user
from backend.dependencies import get_social_service
from backend.schemas import (
    AboutRequest,
    AuthResponse,
    AuthUser,
    BanRequest,
    BanResponse,
    CountResponse,
    CreatePostRequest,
    EditPostRequest,
    FollowResponse,
    LikeResponse,
    LoginRequest,
    ProfileCounts,
    ProfilePictureRequest,
    ProfilePictureResponse,
    ProfileResponse,
    RegisterRequest,
    ReportRequest,
    SaveResponse,
    SettingsResponse,
    SuccessResponse,
    TextRequest,
    TrendingTagResponse,
    UserStatsResponse,
    UserSuggestionResponse,
    UsernameRequest,
    VoteRequest,
    VoteResponse,
)
from shared.constants import MAX_USER_SUGGESTIONS, TRENDING_TAGS_LIMIT
from shared.types import Context, User
from social.service import SocialService

logger = logging.getLogger(__name__)

router = APIRouter()


def _auth_response(user: User) -> AuthResponse:
    return AuthResponse(
        token=create_access_token(user),
        user=AuthUser(
            id=user.id,
            username=user.username,
            profile_picture=user.profile_picture,
            is_admin=user.is_admin,
        ),
    )


async def _context_dict(service: SocialService, context: Context) -> dict:
    data = asdict(context)
    author = await service.repos.users.get(context.user_id)
    data["username"] = author.username if author else None
    return data


# ----------------------------------------------------------------------
# Auth


@router.post("/auth/register", response_model=AuthResponse)
async def register(
    payload: RegisterRequest, service: SocialService = Depends(get_social_service)
):
    user = await service.register(payload.username, payload.email, payload.password)
    return _auth_response(user)


@router.post("/auth/login", response_model=AuthResponse)
async def login(
    payload: LoginRequest, service: SocialService = Depends(get_social_service)
):
    user = await service.login(payload.username_or_email, payload.password)
    return _auth_response(user)


# ----------------------------------------------------------------------
# Posts


@router.get("/posts")
async def list_posts(
    limit: Optional[int] = Query(None, ge=1, le=100),
    viewer: Optional[User] = Depends(get_optional_user),
    service: SocialService = Depends(get_social_service),
) -> list[dict]:
    """
    Newest posts with their context and counts. user_liked is only
    meaningful when a valid token is presented.
    """
    items = await service.get_feed(viewer, limit)
    return [item.as_dict() for item in items]


@router.post("/posts")
async def create_post(
    payload: CreatePostRequest,
    user: User = Depends(get_current_user),
    service: SocialService = Depends(get_social_service),
) -> dict:
    post = await service.create_post(
        user, payload.body, payload.image_url, payload.tags, payload.is_nsfw
    )
    item = await service.get_post(user, post.id)
    return item.as_dict()


@router.get("/posts/{post_id}")
async def get_post(
    post_id: str,
    viewer: Optional[User] = Depends(get_optional_user),
    service: SocialService = Depends(get_social_service),
) -> dict:
    return (await service.get_post(viewer, post_id)).as_dict()


@router.put("/posts/{post_id}")
async def edit_post(
    post_id: str,
    payload: EditPostRequest,
    user: User = Depends(get_current_user),
    service: SocialService = Depends(get_social_service),
) -> dict:
    await service.edit_post(user, post_id, payload.body, payload.tags)
    return (await service.get_post(user, post_id)).as_dict()


@router.delete("/posts/{post_id}", response_model=SuccessResponse)
async def delete_post(
    post_id: str,
    user: User = Depends(get_current_user),
    service: SocialService = Depends(get_social_service),
):
    await service.delete_post(user, post_id)
    return SuccessResponse()


@router.post("/posts/{post_id}/context")
async def add_context(
    post_id: str,
    payload: TextRequest,
    user: User = Depends(get_current_user),
    service: SocialService = Depends(get_social_service),
) -> dict:
    context = await service.add_context(user, post_id, payload.text)
    return await _context_dict(service, context)


@router.post("/posts/{post_id}/like", response_model=LikeResponse)
async def like_post(
    post_id: str,
    user: User = Depends(get_current_user),
    service: SocialService = Depends(get_social_service),
):
    result = await service.toggle_like(user, post_id)
    return LikeResponse(liked=result.liked, likes_count=result.likes_count)


@router.post("/posts/{post_id}/save", response_model=SaveResponse)
async def save_post(
    post_id: str,
    user: User = Depends(get_current_user),
    service: SocialService = Depends(get_social_service),
):
    return SaveResponse(saved=await service.toggle_save(user, post_id))


@router.get("/saved")
async def saved_posts(
    user: User = Depends(get_current_user),
    service: SocialService = Depends(get_social_service),
) -> list[dict]:
    return [item.as_dict() for item in await service.get_saved_posts(user)]


@router.post("/posts/{post_id}/report")
async def report_post(
    post_id: str,
    payload: ReportRequest,
    user: User = Depends(get_current_user),
    service: SocialService = Depends(get_social_service),
) -> dict:
    report = await service.report_post(user, post_id, payload.reason, payload.details)
    return asdict(report)


@router.get("/tags/trending", response_model=list[TrendingTagResponse])
async def trending_tags(
    limit: int = Query(TRENDING_TAGS_LIMIT, ge=1, le=100),
    service: SocialService = Depends(get_social_service),
):
    tags = await service.get_trending_tags(limit)
    return [TrendingTagResponse(**asdict(tag)) for tag in tags]


# ----------------------------------------------------------------------
# Comments and contexts


@router.get("/posts/{post_id}/comments")
async def list_comments(
    post_id: str, service: SocialService = Depends(get_social_service)
) -> list[dict]:
    return [view.as_dict() for view in await service.get_comments(post_id)]


@router.post("/posts/{post_id}/comments")
async def add_comment(
    post_id: str,
    payload: TextRequest,
    user: User = Depends(get_current_user),
    service: SocialService = Depends(get_social_service),
) -> dict:
    view = await service.add_comment(user, post_id, payload.text)
    return view.as_dict()


@router.delete("/comments/{comment_id}", response_model=SuccessResponse)
async def delete_comment(
    comment_id: str,
    user: User = Depends(get_current_user),
    service: SocialService = Depends(get_social_service),
):
    await service.delete_comment(user, comment_id)
    return SuccessResponse()


@router.post("/contexts/{context_id}/vote", response_model=VoteResponse)
async def vote_on_context(
    context_id: str,
    payload: VoteRequest,
    user: User = Depends(get_current_user),
    service: SocialService = Depends(get_social_service),
):
    result = await service.vote_on_context(user, context_id, payload.vote or "")
    return VoteResponse(**asdict(result))


# ----------------------------------------------------------------------
# Follows


@router.post("/follow/{user_id}", response_model=FollowResponse)
async def follow(
    user_id: str,
    user: User = Depends(get_current_user),
    service: SocialService = Depends(get_social_service),
):
    following = await service.follow_user(user, user_id)
    return FollowResponse(success=True, following=following)


@router.delete("/follow/{user_id}", response_model=FollowResponse)
async def unfollow(
    user_id: str,
    user: User = Depends(get_current_user),
    service: SocialService = Depends(get_social_service),
):
    following = await service.unfollow_user(user, user_id)
    return FollowResponse(success=True, following=following)


# ----------------------------------------------------------------------
# Notifications


@router.get("/notifications")
async def list_notifications(
    user: User = Depends(get_current_user),
    service: SocialService = Depends(get_social_service),
) -> list[dict]:
    return [asdict(n) for n in await service.get_notifications(user)]


@router.put("/notifications/mark-all-read", response_model=SuccessResponse)
async def mark_all_notifications_read(
    user: User = Depends(get_current_user),
    service: SocialService = Depends(get_social_service),
):
    await service.mark_all_notifications_read(user)
    return SuccessResponse()


@router.get("/notifications/unread-count", response_model=CountResponse)
async def unread_count(
    user: User = Depends(get_current_user),
    service: SocialService = Depends(get_social_service),
):
    return CountResponse(count=await service.get_unread_count(user))


@router.put("/notifications/{notification_id}/read", response_model=SuccessResponse)
async def mark_notification_read(
    notification_id: str,
    user: User = Depends(get_current_user),
    service: SocialService = Depends(get_social_service),
):
    await service.mark_notification_read(user, notification_id)
    return SuccessResponse()


# ----------------------------------------------------------------------
# Profiles and users


@router.get("/profile", response_model=ProfileResponse)
async def profile(
    user: User = Depends(get_current_user),
    service: SocialService = Depends(get_social_service),
):
    summary = await service.get_profile_summary(user)
    return ProfileResponse(
        user=summary.user.public_dict(),
        counts=ProfileCounts(
            posts=summary.posts,
            followers=summary.followers,
            following=summary.following,
        ),
    )


@router.put("/profile/picture", response_model=ProfilePictureResponse)
async def update_profile_picture(
    payload: ProfilePictureRequest,
    user: User = Depends(get_current_user),
    service: SocialService = Depends(get_social_service),
):
    updated = await service.update_profile_picture(user, payload.profile_picture)
    return ProfilePictureResponse(success=True, profile_picture=updated.profile_picture)


@router.put("/profile/username")
async def update_username(
    payload: UsernameRequest,
    user: User = Depends(get_current_user),
    service: SocialService = Depends(get_social_service),
) -> dict:
    updated = await service.update_username(user, user.id, payload.username)
    return updated.public_dict()


@router.put("/profile/about")
async def update_about(
    payload: AboutRequest,
    user: User = Depends(get_current_user),
    service: SocialService = Depends(get_social_service),
) -> dict:
    updated = await service.update_about_me(user, payload.about_me)
    return updated.public_dict()


@router.get("/settings", response_model=SettingsResponse)
async def settings(user: User = Depends(get_current_user)):
    return SettingsResponse(
        id=user.id,
        username=user.username,
        email=user.email,
        profile_picture=user.profile_picture,
    )


@router.get("/users", response_model=list[UserSuggestionResponse])
async def list_users(
    limit: int = Query(10, ge=1),
    viewer: Optional[User] = Depends(get_optional_user),
    service: SocialService = Depends(get_social_service),
):
    suggestions = await service.get_suggested_users(
        viewer, min(limit, MAX_USER_SUGGESTIONS)
    )
    return [
        UserSuggestionResponse(
            id=s.user.id,
            username=s.user.username,
            profile_picture=s.user.profile_picture,
            followers=s.followers,
            posts=s.posts,
            likes_received=s.likes_received,
            is_following=s.is_following,
        )
        for s in suggestions
    ]


@router.get("/users/{user_id}/stats", response_model=UserStatsResponse)
async def user_stats(
    user_id: str, service: SocialService = Depends(get_social_service)
):
    return UserStatsResponse(**asdict(await service.get_user_stats(user_id)))


# ----------------------------------------------------------------------
# Admin


@router.get("/admin/contexts/pending")
async def pending_contexts(
    user: User = Depends(get_current_user),
    service: SocialService = Depends(get_social_service),
) -> list[dict]:
    return [asdict(c) for c in await service.get_pending_contexts(user)]


@router.post("/admin/contexts/{context_id}/approve")
async def approve_context(
    context_id: str,
    user: User = Depends(get_current_user),
    service: SocialService = Depends(get_social_service),
) -> dict:
    return asdict(await service.admin_approve_context(user, context_id))


@router.post("/admin/contexts/{context_id}/reject")
async def reject_context(
    context_id: str,
    user: User = Depends(get_current_user),
    service: SocialService = Depends(get_social_service),
) -> dict:
    return asdict(await service.admin_reject_context(user, context_id))


@router.post("/admin/posts/{post_id}/remove")
async def remove_post(
    post_id: str,
    user: User = Depends(get_current_user),
    service: SocialService = Depends(get_social_service),
) -> dict:
    post = await service.admin_remove_post(user, post_id)
    data = asdict(post)
    data.pop("likes", None)
    return data


@router.post("/admin/users/{user_id}/ban", response_model=BanResponse)
async def ban_user(
    user_id: str,
    payload: Optional[BanRequest] = None,
    user: User = Depends(get_current_user),
    service: SocialService = Depends(get_social_service),
):
    reason = payload.reason if payload else ""
    hidden = await service.admin_ban_user(user, user_id, reason)
    return BanResponse(success=True, posts_affected=hidden)


@router.post("/admin/users/{user_id}/unban", response_model=BanResponse)
async def unban_user(
    user_id: str,
    user: User = Depends(get_current_user),
    service: SocialService = Depends(get_social_service),
):
    restored = await service.admin_unban_user(user, user_id)
    return BanResponse(success=True, posts_affected=restored)


@router.get("/admin/reports")
async def list_reports(
    user: User = Depends(get_current_user),
    service: SocialService = Depends(get_social_service),
) -> list[dict]:
    return [asdict(r) for r in await service.get_reports(user)]


@router.post("/admin/reports/{report_id}/dismiss")
async def dismiss_report(
    report_id: str,
    user: User = Depends(get_current_user),
    service: SocialService = Depends(get_social_service),
) -> dict:
    return asdict(await service.dismiss_report(user, report_id))
