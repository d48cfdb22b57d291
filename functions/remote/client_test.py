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


import asyncio
import unittest
from unittest.mock import AsyncMock, MagicMock, patch

from local_store.repository import create_local_repositories
from local_store.store import InMemoryKeyValueStore, LocalStore
from remote.client import RemoteClient
from remote.resilience import ConnectionResilienceManager
from shared.constants import (
    PROFILE_PICTURE_EMERGENCY_BYTES,
    PROFILE_PICTURE_TARGET_BYTES,
)
from shared.errors import StorageQuotaError, ValidationError

LARGE_PICTURE = "data:image/png;base64," + "A" * 600_000
SMALL_PICTURE = "data:image/jpeg;base64,AAAA"


async def _no_sleep(seconds):
    await asyncio.sleep(0)


class RemoteClientTest(unittest.IsolatedAsyncioTestCase):

    async def asyncSetUp(self):
        network = MagicMock()
        network.enable_network = AsyncMock()
        network.disable_network = AsyncMock()
        self.manager = ConnectionResilienceManager(network, sleep=_no_sleep)

        repos = create_local_repositories(LocalStore(InMemoryKeyValueStore()))
        with patch("remote.client.create_firestore_repositories", return_value=repos):
            self.client = RemoteClient(MagicMock(), self.manager)
        self.addAsyncCleanup(self.client.close)
        await self.client.register("alice", "a@x.com", "pw123")

    async def test_small_picture_is_written_as_is(self):
        with patch("remote.client.images.smart_compress") as compress:
            user = await self.client.update_profile_picture(SMALL_PICTURE)
        compress.assert_not_called()
        self.assertEqual(user.profile_picture, SMALL_PICTURE)
        self.assertEqual(self.client.current_user.profile_picture, SMALL_PICTURE)

    async def test_empty_picture_is_rejected(self):
        with patch("remote.client.images.smart_compress") as compress:
            for picture in ("", None):
                with self.assertRaisesRegex(ValidationError, "profile_picture required"):
                    await self.client.update_profile_picture(picture)
            with self.assertRaisesRegex(ValidationError, "profile_picture required"):
                await self.client.update_profile({"profile_picture": ""})
        compress.assert_not_called()

        stored = await self.client.service.repos.users.get(self.client.current_user.id)
        self.assertIsNone(stored.profile_picture)

    async def test_large_picture_is_compressed(self):
        with patch(
            "remote.client.images.smart_compress", return_value=SMALL_PICTURE
        ) as compress:
            user = await self.client.update_profile_picture(LARGE_PICTURE)
        compress.assert_called_once_with(LARGE_PICTURE, PROFILE_PICTURE_TARGET_BYTES)
        self.assertEqual(user.profile_picture, SMALL_PICTURE)

    async def test_quota_error_triggers_emergency_compression(self):
        service_update = AsyncMock(
            side_effect=[StorageQuotaError("too large"), self.client.current_user]
        )
        with patch.object(self.client.service, "update_profile", service_update), patch(
            "remote.client.images.smart_compress",
            side_effect=["data:first", "data:second"],
        ) as compress:
            await self.client.update_profile({"profile_picture": LARGE_PICTURE})

        self.assertEqual(compress.call_count, 2)
        compress.assert_called_with("data:first", PROFILE_PICTURE_EMERGENCY_BYTES)
        last_changes = service_update.call_args_list[-1].args[1]
        self.assertEqual(last_changes, {"profile_picture": "data:second"})

    async def test_quota_error_without_picture_propagates(self):
        failing = AsyncMock(side_effect=StorageQuotaError("too large"))
        with patch.object(self.client.service, "update_profile", failing):
            with self.assertRaises(StorageQuotaError):
                await self.client.update_profile({"about_me": "hello"})

    async def test_feed_subscription_survives_reconnect(self):
        unsubscribe = await self.client.subscribe_to_feed(lambda items: None)
        self.assertEqual(self.client.get_connection_health()["active_listeners"], 1)

        self.manager.report_failure()
        await self.manager.wait_for_recovery()
        self.assertEqual(self.client.get_connection_health()["state"], "healthy")
        self.assertEqual(self.client.get_connection_health()["active_listeners"], 1)

        unsubscribe()
        self.assertEqual(self.client.get_connection_health()["active_listeners"], 0)


if __name__ == "__main__":
    unittest.main()
