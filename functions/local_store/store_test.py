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
import os
import shutil
import tempfile
import unittest

from local_store.store import InMemoryKeyValueStore, JsonFileKeyValueStore, LocalStore
from shared.types import User


class LocalStoreTest(unittest.IsolatedAsyncioTestCase):

    def setUp(self):
        self.kv = InMemoryKeyValueStore()
        self.store = LocalStore(self.kv)

    async def test_append_prepends_and_assigns_ids(self):
        first = await self.store.append("posts", {"body": "one"})
        second = await self.store.append("posts", {"body": "two"})

        self.assertTrue(first["id"])
        self.assertIn("created_at", first)
        items = await self.store.get_collection("posts")
        self.assertEqual([i["body"] for i in items], ["two", "one"])
        self.assertIn("demo_posts", self.kv.items)
        self.assertNotEqual(first["id"], second["id"])

    async def test_missing_collection_is_empty(self):
        self.assertEqual(await self.store.get_collection("nothing"), [])

    async def test_update_and_remove(self):
        record = await self.store.append("posts", {"body": "draft"})
        updated = await self.store.update_item("posts", record["id"], {"body": "final"})
        self.assertEqual(updated["body"], "final")
        self.assertIsNone(await self.store.update_item("posts", "missing", {"x": 1}))

        removed = await self.store.remove_where("posts", lambda r: r["body"] == "final")
        self.assertEqual(removed, 1)
        self.assertEqual(await self.store.get_collection("posts"), [])

    async def test_subscribers_see_every_write(self):
        seen = []
        unsubscribe = self.store.subscribe("posts", lambda items: seen.append(len(items)))
        await self.store.append("posts", {"body": "a"})
        await self.store.append("posts", {"body": "b"})
        await self.store.append("comments", {"text": "ignored"})
        unsubscribe()
        await self.store.append("posts", {"body": "c"})

        self.assertEqual(seen, [1, 2])

    async def test_failing_subscriber_does_not_break_writes(self):
        def broken(items):
            raise RuntimeError("listener bug")

        self.store.subscribe("posts", broken)
        with self.assertLogs("local_store.store", level="ERROR"):
            await self.store.append("posts", {"body": "a"})
        self.assertEqual(len(await self.store.get_collection("posts")), 1)

    async def test_session_round_trip_drops_password(self):
        user = User(id="u1", username="alice", email="a@x.com", password="secret")
        await self.store.save_session(user, "demo_token_u1")

        restored, token = await self.store.load_session()
        self.assertEqual(restored.username, "alice")
        self.assertEqual(restored.password, "")
        self.assertEqual(token, "demo_token_u1")

        await self.store.clear_session()
        self.assertIsNone(await self.store.load_session())

    async def test_clear_removes_namespaced_keys_only(self):
        await self.kv.set("other_app", "keep")
        await self.store.append("posts", {"body": "a"})
        await self.store.append("users", {"username": "alice"})

        self.assertEqual(await self.store.clear(), 2)
        self.assertEqual(await self.kv.keys(""), ["other_app"])


class JsonFileKeyValueStoreTest(unittest.IsolatedAsyncioTestCase):

    def setUp(self):
        self.tmp_dir = tempfile.mkdtemp()
        self.path = os.path.join(self.tmp_dir, "nested", "store.json")

    def tearDown(self):
        shutil.rmtree(self.tmp_dir)

    async def test_values_survive_reopen(self):
        kv = JsonFileKeyValueStore(path=self.path)
        await kv.set("demo_users", "[]")
        await kv.set("arthub_token", "t")
        await kv.delete("arthub_token")

        reopened = JsonFileKeyValueStore(path=self.path)
        self.assertEqual(await reopened.get("demo_users"), "[]")
        self.assertIsNone(await reopened.get("arthub_token"))
        self.assertEqual(await reopened.keys("demo_"), ["demo_users"])

    async def test_concurrent_writes_keep_every_key(self):
        kv = JsonFileKeyValueStore(path=self.path)
        await asyncio.gather(*(kv.set(f"demo_{i}", str(i)) for i in range(20)))

        reopened = JsonFileKeyValueStore(path=self.path)
        self.assertEqual(len(await reopened.keys("demo_")), 20)
        self.assertEqual(await reopened.get("demo_7"), "7")
        self.assertEqual(os.listdir(os.path.dirname(self.path)), ["store.json"])


if __name__ == "__main__":
    unittest.main()
