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

"""Offline client: the full social feature set over a LocalStore."""

from __future__ import annotations

import logging
from typing import Optional, Sequence

from shared.config import Settings, get_settings
from shared.firebase_constants import USERS_COLLECTION
from social.client import SocialClient
from social.passwords import PasswordHasher, password_hasher_for
from social.service import SocialService
from local_store.repository import create_local_repositories
from local_store.store import (
    InMemoryKeyValueStore,
    JsonFileKeyValueStore,
    KeyValueStore,
    LocalStore,
    RedisKeyValueStore,
)

logger = logging.getLogger(__name__)

DEMO_PASSWORD = "demo"
DEMO_USERS = (
    ("RinCC", "demo@example.com"),
    ("Monder", "creative@example.com"),
)
DEMO_POSTS = (
    (
        "RinCC",
        "Welcome to ArtHub! Share your creative works and connect with fellow artists.",
        ["welcome", "digitalart"],
    ),
    ("Monder", "Perfectio", ["painting"]),
)


class OfflineClient(SocialClient):
    def __init__(
        self,
        store: LocalStore,
        *,
        password_hasher: Optional[PasswordHasher] = None,
        privileged_usernames: Sequence[str] = (),
    ):
        service = SocialService(
            create_local_repositories(store),
            password_hasher=password_hasher,
            feed_limit=None,
            strict_contexts=False,
            privileged_usernames=privileged_usernames,
        )
        super().__init__(service, sessions=store)
        self.store = store


def create_key_value_store(settings: Settings) -> KeyValueStore:
    if settings.use_in_memory_backends:
        return InMemoryKeyValueStore()
    if settings.redis_url:
        return RedisKeyValueStore(url=settings.redis_url)
    if settings.local_store_path:
        return JsonFileKeyValueStore(path=settings.local_store_path)
    return InMemoryKeyValueStore()


def create_offline_client(settings: Optional[Settings] = None) -> OfflineClient:
    settings = settings or get_settings()
    store = LocalStore(
        create_key_value_store(settings), namespace=settings.local_store_namespace
    )
    return OfflineClient(
        store,
        password_hasher=password_hasher_for(
            bool(settings.hash_passwords), settings.bcrypt_rounds
        ),
        privileged_usernames=settings.privileged_usernames,
    )


async def seed_demo_data(client: OfflineClient) -> bool:
    """Fills an empty store with two artists and their first posts."""
    if await client.store.get_collection(USERS_COLLECTION):
        return False

    service = client.service
    users = {}
    for username, email in DEMO_USERS:
        users[username] = await service.register(username, email, DEMO_PASSWORD)
    for username, body, tags in DEMO_POSTS:
        await service.create_post(users[username], body, tags=tags)
    logger.info("Seeded demo data for %d users", len(users))
    return True
