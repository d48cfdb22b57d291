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

"""Authorization checks shared by every service operation."""

from typing import Iterable, Optional

from shared.errors import AuthenticationError, PermissionDeniedError
from shared.types import User


def require_user(actor: Optional[User]) -> User:
    if actor is None:
        raise AuthenticationError("Not authenticated")
    return actor


def is_admin(user: Optional[User]) -> bool:
    return bool(user and user.is_admin)


def require_admin(actor: Optional[User]) -> User:
    user = require_user(actor)
    if not is_admin(user):
        raise PermissionDeniedError("Admin access required")
    return user


def require_owner_or_admin(
    actor: Optional[User], owner_id: str, message: str
) -> User:
    user = require_user(actor)
    if user.id != owner_id and not is_admin(user):
        raise PermissionDeniedError(message)
    return user


def is_privileged_username(username: str, privileged: Iterable[str]) -> bool:
    """Usernames granted the admin role when they register or log in."""
    lowered = username.lower()
    return any(lowered == name.lower() for name in privileged)
