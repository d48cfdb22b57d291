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
Key-value persistence for the offline client.

LocalStore keeps each entity collection as one JSON array under a
namespaced key, plus a pair of session keys for the logged-in user. The
substrate is pluggable: in memory for tests, a JSON file for a single
machine, or Redis.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
import time
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import AsyncIterator, Callable, Optional, Protocol

import redis.asyncio as aioredis
from redis import exceptions as redis_exceptions

from shared.firebase_constants import (
    LOCAL_NAMESPACE,
    SESSION_TOKEN_KEY,
    SESSION_USER_KEY,
)
from shared.types import User, from_record

logger = logging.getLogger(__name__)

CollectionListener = Callable[[list[dict]], None]


class KeyValueStore(Protocol):
    """Minimal string key-value interface."""

    async def get(self, key: str) -> Optional[str]:
        ...

    async def set(self, key: str, value: str) -> None:
        ...

    async def delete(self, key: str) -> None:
        ...

    async def keys(self, prefix: str) -> list[str]:
        ...


@dataclass
class InMemoryKeyValueStore:
    """Dict-backed store for tests and throwaway sessions."""

    items: dict[str, str] = field(default_factory=dict)

    async def get(self, key: str) -> Optional[str]:
        return self.items.get(key)

    async def set(self, key: str, value: str) -> None:
        self.items[key] = value

    async def delete(self, key: str) -> None:
        self.items.pop(key, None)

    async def keys(self, prefix: str) -> list[str]:
        return [k for k in self.items if k.startswith(prefix)]


@dataclass
class JsonFileKeyValueStore:
    """All keys in a single JSON file, rewritten on every change."""

    path: str
    items: dict[str, str] = field(default_factory=dict, init=False)

    def __post_init__(self):
        self._file = Path(self.path)
        self._flush_lock = asyncio.Lock()
        if self._file.exists():
            self.items = json.loads(self._file.read_text(encoding="utf-8") or "{}")

    def _write_file(self, snapshot: dict[str, str]) -> None:
        self._file.parent.mkdir(parents=True, exist_ok=True)
        with tempfile.NamedTemporaryFile(
            "w",
            encoding="utf-8",
            dir=self._file.parent,
            prefix=self._file.name + ".",
            suffix=".tmp",
            delete=False,
        ) as tmp:
            json.dump(snapshot, tmp)
        try:
            os.replace(tmp.name, self._file)
        except OSError:
            os.unlink(tmp.name)
            raise

    async def _flush(self) -> None:
        # Writes land in call order; each snapshot is taken under the lock.
        async with self._flush_lock:
            await asyncio.to_thread(self._write_file, dict(self.items))

    async def get(self, key: str) -> Optional[str]:
        return self.items.get(key)

    async def set(self, key: str, value: str) -> None:
        self.items[key] = value
        await self._flush()

    async def delete(self, key: str) -> None:
        if self.items.pop(key, None) is not None:
            await self._flush()

    async def keys(self, prefix: str) -> list[str]:
        return [k for k in self.items if k.startswith(prefix)]


@dataclass
class RedisKeyValueStore:
    """Redis-backed store using plain string keys."""

    url: str

    def __post_init__(self):
        self.client = aioredis.Redis.from_url(self.url, decode_responses=True)

    def _reconnect(self) -> None:
        # Connection resets can happen on managed Redis.
        logger.warning("Redis connection lost; reconnecting to %s", self.url)
        self.client = aioredis.Redis.from_url(self.url, decode_responses=True)

    async def get(self, key: str) -> Optional[str]:
        try:
            return await self.client.get(key)
        except redis_exceptions.ConnectionError:
            self._reconnect()
            return await self.client.get(key)

    async def set(self, key: str, value: str) -> None:
        try:
            await self.client.set(key, value)
        except redis_exceptions.ConnectionError:
            self._reconnect()
            await self.client.set(key, value)

    async def delete(self, key: str) -> None:
        try:
            await self.client.delete(key)
        except redis_exceptions.ConnectionError:
            self._reconnect()
            await self.client.delete(key)

    async def keys(self, prefix: str) -> list[str]:
        try:
            return [k async for k in self.client.scan_iter(match=f"{prefix}*")]
        except redis_exceptions.ConnectionError:
            self._reconnect()
            return [k async for k in self.client.scan_iter(match=f"{prefix}*")]


class LocalStore:
    """Named JSON collections over a KeyValueStore."""

    def __init__(self, kv: KeyValueStore, namespace: str = LOCAL_NAMESPACE):
        self.kv = kv
        self.namespace = namespace
        self._lock = asyncio.Lock()
        self._listeners: dict[str, list[CollectionListener]] = {}

    def key(self, name: str) -> str:
        return f"{self.namespace}{name}"

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        """
        Serializes read-modify-write sequences.

        Inside the block use only get_collection and set_collection; the
        other write helpers take the lock themselves.
        """
        async with self._lock:
            yield

    async def get_collection(self, name: str) -> list[dict]:
        raw = await self.kv.get(self.key(name))
        if not raw:
            return []
        return json.loads(raw)

    async def set_collection(self, name: str, items: list[dict]) -> None:
        await self.kv.set(self.key(name), json.dumps(items))
        self._notify(name, items)

    async def append(self, name: str, item: dict) -> dict:
        """Adds item to the front of the collection, assigning id and created_at."""
        record = dict(item)
        record.setdefault("id", uuid.uuid4().hex)
        record.setdefault("created_at", time.time())
        async with self._lock:
            items = await self.get_collection(name)
            items.insert(0, record)
            await self.set_collection(name, items)
        return record

    async def update_item(
        self, name: str, item_id: str, changes: dict
    ) -> Optional[dict]:
        async with self._lock:
            items = await self.get_collection(name)
            for item in items:
                if item.get("id") == item_id:
                    item.update(changes)
                    await self.set_collection(name, items)
                    return item
        return None

    async def remove_where(self, name: str, predicate: Callable[[dict], bool]) -> int:
        async with self._lock:
            items = await self.get_collection(name)
            kept = [item for item in items if not predicate(item)]
            removed = len(items) - len(kept)
            if removed:
                await self.set_collection(name, kept)
        return removed

    def subscribe(self, name: str, callback: CollectionListener) -> Callable[[], None]:
        """Calls callback with the collection after every write to it."""
        listeners = self._listeners.setdefault(name, [])
        listeners.append(callback)

        def unsubscribe() -> None:
            if callback in listeners:
                listeners.remove(callback)

        return unsubscribe

    def _notify(self, name: str, items: list[dict]) -> None:
        for callback in list(self._listeners.get(name, [])):
            try:
                callback([dict(item) for item in items])
            except Exception:
                logger.exception("Listener for %s failed", name)

    # Session

    async def save_session(self, user: User, token: str) -> None:
        await self.kv.set(SESSION_USER_KEY, json.dumps(user.public_dict()))
        await self.kv.set(SESSION_TOKEN_KEY, token)

    async def load_session(self) -> Optional[tuple[User, str]]:
        raw_user = await self.kv.get(SESSION_USER_KEY)
        token = await self.kv.get(SESSION_TOKEN_KEY)
        if not raw_user or not token:
            return None
        return from_record(User, json.loads(raw_user)), token

    async def clear_session(self) -> None:
        await self.kv.delete(SESSION_USER_KEY)
        await self.kv.delete(SESSION_TOKEN_KEY)

    async def clear(self) -> int:
        """Deletes every namespaced collection and the session keys."""
        keys = await self.kv.keys(self.namespace)
        for key in keys:
            await self.kv.delete(key)
        await self.clear_session()
        logger.info("Cleared %d local collections", len(keys))
        return len(keys)
