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

"""Remote client: the full social feature set over Firestore."""

from __future__ import annotations

import logging
from typing import Optional, Sequence

from shared.config import Settings, get_settings
from shared.constants import (
    PROFILE_PICTURE_EMERGENCY_BYTES,
    PROFILE_PICTURE_MAX_BYTES,
    PROFILE_PICTURE_TARGET_BYTES,
    REMOTE_FEED_LIMIT,
)
from shared.errors import StorageQuotaError, ValidationError
from shared.firebase_constants import FEED_SUBSCRIPTION_KEY
from shared.types import User
from social.client import SessionStore, SocialClient
from social.passwords import PasswordHasher, password_hasher_for
from social.repository import Unsubscribe
from social.service import FeedCallback, SocialService
from local_store.client import create_key_value_store
from local_store.store import LocalStore
from remote import images
from remote.connection import FirestoreConnection, initialize_firebase_app
from remote.repository import create_firestore_repositories
from remote.resilience import ConnectionResilienceManager

logger = logging.getLogger(__name__)


class RemoteClient(SocialClient):
    def __init__(
        self,
        connection: FirestoreConnection,
        manager: ConnectionResilienceManager,
        *,
        sessions: Optional[SessionStore] = None,
        password_hasher: Optional[PasswordHasher] = None,
        privileged_usernames: Sequence[str] = (),
    ):
        service = SocialService(
            create_firestore_repositories(connection, manager),
            password_hasher=password_hasher,
            feed_limit=REMOTE_FEED_LIMIT,
            strict_contexts=False,
            privileged_usernames=privileged_usernames,
        )
        super().__init__(service, sessions=sessions)
        self.connection = connection
        self.manager = manager
        self._resubscribe: Optional[Unsubscribe] = None

    async def start(self) -> Optional[User]:
        """Starts the health monitor and restores a saved session."""
        self.manager.start_monitoring()
        return await self.restore_session()

    async def close(self) -> None:
        if self._resubscribe is not None:
            self._resubscribe()
            self._resubscribe = None
        await self.manager.close()

    def get_connection_health(self) -> dict:
        return self.manager.health()

    async def subscribe_to_feed(self, callback: FeedCallback) -> Unsubscribe:
        """
        Watches the feed and keeps watching across reconnections.

        The manager tears every listener down while it reconnects; once the
        connection is back the feed listener is registered again.
        """
        stop = await super().subscribe_to_feed(callback)
        self.manager.register_listener(FEED_SUBSCRIPTION_KEY, stop)

        async def resubscribe() -> None:
            logger.info("Re-subscribing to the feed after reconnection")
            stop = await SocialClient.subscribe_to_feed(self, callback)
            self.manager.register_listener(FEED_SUBSCRIPTION_KEY, stop)

        if self._resubscribe is not None:
            self._resubscribe()
        self._resubscribe = self.manager.add_reconnected_callback(resubscribe)

        def unsubscribe() -> None:
            if self._resubscribe is not None:
                self._resubscribe()
                self._resubscribe = None
            self.manager.unregister_listener(FEED_SUBSCRIPTION_KEY)

        return unsubscribe

    async def update_profile_picture(self, profile_picture: str) -> User:
        if not profile_picture:
            raise ValidationError("profile_picture required")
        return await self.update_profile({"profile_picture": profile_picture})

    async def update_profile(self, changes: dict) -> User:
        """
        Writes profile changes in size-bounded chunks.

        Pictures above the size threshold are compressed first. When
        Firestore still rejects the write as too large, the picture is
        compressed harder and the update retried once.
        """
        changes = dict(changes)
        picture = changes.get("profile_picture")
        if picture and images.data_url_size(picture) > PROFILE_PICTURE_MAX_BYTES:
            changes["profile_picture"] = images.smart_compress(
                picture, PROFILE_PICTURE_TARGET_BYTES
            )
            logger.info(
                "Compressed profile picture from %d to %d bytes",
                images.data_url_size(picture),
                images.data_url_size(changes["profile_picture"]),
            )
        try:
            return await self._write_profile(changes)
        except StorageQuotaError:
            if not changes.get("profile_picture"):
                raise
            logger.warning("Profile update too large, applying emergency compression")
            changes["profile_picture"] = images.smart_compress(
                changes["profile_picture"], PROFILE_PICTURE_EMERGENCY_BYTES
            )
            return await self._write_profile(changes)

    async def _write_profile(self, changes: dict) -> User:
        user = self.current_user
        for chunk in images.split_large_update(changes):
            user = await SocialClient.update_profile(self, chunk)
        return user


def create_remote_client(settings: Optional[Settings] = None) -> RemoteClient:
    settings = settings or get_settings()
    app = initialize_firebase_app(settings)
    connection = FirestoreConnection(app, database=settings.firestore_database)
    manager = ConnectionResilienceManager(
        connection,
        max_retries=settings.max_connection_retries,
        health_check_interval=settings.health_check_interval_seconds,
        health_check_timeout=settings.health_check_timeout_seconds,
    )
    sessions = LocalStore(
        create_key_value_store(settings), namespace=settings.local_store_namespace
    )
    return RemoteClient(
        connection,
        manager,
        sessions=sessions,
        password_hasher=password_hasher_for(
            bool(settings.hash_passwords), settings.bcrypt_rounds
        ),
        privileged_usernames=settings.privileged_usernames,
    )
