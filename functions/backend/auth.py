"""
Bearer-token authentication for the FastAPI backend.
"""

from __future__ import annotations

import time
from typing import Optional

import jwt
from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from backend.dependencies import get_social_service
from shared.config import get_settings
from shared.errors import NotFoundError
from shared.types import User
from social.service import SocialService

bearer_scheme = HTTPBearer(auto_error=False)


def create_access_token(user: User) -> str:
    settings = get_settings()
    payload = {
        "id": user.id,
        "username": user.username,
        "exp": int(time.time()) + settings.jwt_expires_days * 24 * 60 * 60,
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> dict:
    """Raises jwt.InvalidTokenError (ExpiredSignatureError included) on bad tokens."""
    settings = get_settings()
    return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])


async def _user_from_token(service: SocialService, token: str) -> User:
    try:
        payload = decode_access_token(token)
        return await service.get_user(str(payload["id"]))
    except (jwt.InvalidTokenError, KeyError, NotFoundError):
        raise HTTPException(status_code=401, detail="Invalid token")


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    service: SocialService = Depends(get_social_service),
) -> User:
    if credentials is None:
        raise HTTPException(status_code=401, detail="No token")
    return await _user_from_token(service, credentials.credentials)


async def get_optional_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    service: SocialService = Depends(get_social_service),
) -> Optional[User]:
    """The caller when a valid token is presented, otherwise None."""
    if credentials is None:
        return None
    try:
        return await _user_from_token(service, credentials.credentials)
    except HTTPException:
        return None
