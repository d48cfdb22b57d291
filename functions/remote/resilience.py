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
Connection resilience for the Firestore-backed client.

ConnectionResilienceManager owns every piece of mutable connection state:
the health state, the reconnection guard, the retry counter, the registry
of real-time listeners and the periodic health probe. One instance is
created per process and shared by everything that talks to Firestore.

States:
  HEALTHY -> DEGRADED        health probe failed, or an operation raised a
                             connection-classified error
  DEGRADED -> RECONNECTING   immediately; only one reconnection runs at a time
  RECONNECTING -> HEALTHY    disable/enable network round trip succeeded
  RECONNECTING -> RECONNECTING  attempt failed and retries remain
  RECONNECTING -> UNRECOVERABLE retry budget exhausted; the user must reload
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from enum import StrEnum
from typing import Any, Awaitable, Callable, Optional, Protocol, TypeVar

from google.api_core import exceptions as api_exceptions

from shared.errors import ConnectionLostError

logger = logging.getLogger(__name__)

T = TypeVar("T")

MAX_CONNECTION_RETRIES = 3
MAX_OPERATION_ATTEMPTS = 3

CONNECTION_ERROR_CODES = frozenset(
    {
        "unavailable",
        "deadline-exceeded",
        "resource-exhausted",
        "aborted",
        "internal",
        "unknown",
    }
)
CONNECTION_ERROR_MARKERS = ("network", "connection", "transport", "RPC", "WebChannel")
INTERNAL_ASSERTION_MARKER = "INTERNAL ASSERTION FAILED"

_GOOGLE_ERROR_CODES = (
    (api_exceptions.ServiceUnavailable, "unavailable"),
    (api_exceptions.DeadlineExceeded, "deadline-exceeded"),
    (api_exceptions.ResourceExhausted, "resource-exhausted"),
    (api_exceptions.Aborted, "aborted"),
    (api_exceptions.InternalServerError, "internal"),
    (api_exceptions.Unknown, "unknown"),
)


def error_code(error: BaseException) -> Optional[str]:
    """Maps an exception onto the Firestore status code vocabulary."""
    for error_type, code in _GOOGLE_ERROR_CODES:
        if isinstance(error, error_type):
            return code
    if isinstance(error, TimeoutError):
        return "deadline-exceeded"
    if isinstance(error, ConnectionError):
        return "unavailable"
    code = getattr(error, "code", None)
    if isinstance(code, str):
        return code
    return None


def is_connection_error(error: BaseException) -> bool:
    if error_code(error) in CONNECTION_ERROR_CODES:
        return True
    message = str(error)
    return any(marker in message for marker in CONNECTION_ERROR_MARKERS)


def is_internal_assertion_failure(error: BaseException) -> bool:
    return INTERNAL_ASSERTION_MARKER in str(error)


class ConnectionState(StrEnum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    RECONNECTING = "reconnecting"
    UNRECOVERABLE = "unrecoverable"


class NetworkController(Protocol):
    async def enable_network(self) -> None:
        ...

    async def disable_network(self) -> None:
        ...


Callback = Callable[[], Any]


class ConnectionResilienceManager:
    def __init__(
        self,
        network: NetworkController,
        *,
        max_retries: int = MAX_CONNECTION_RETRIES,
        max_operation_attempts: int = MAX_OPERATION_ATTEMPTS,
        base_delay: float = 1.0,
        max_delay: float = 10.0,
        max_operation_delay: float = 5.0,
        health_check_interval: float = 30.0,
        health_check_timeout: float = 5.0,
        settle_delay: float = 2.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.network = network
        self.max_retries = max_retries
        self.max_operation_attempts = max_operation_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.max_operation_delay = max_operation_delay
        self.health_check_interval = health_check_interval
        self.health_check_timeout = health_check_timeout
        self.settle_delay = settle_delay
        self.sleep = sleep

        self.state = ConnectionState.HEALTHY
        self.retry_count = 0
        self.is_reconnecting = False

        self._listeners: dict[str, Callable[[], None]] = {}
        self._reconnected_callbacks: list[Callback] = []
        self._unrecoverable_callbacks: list[Callback] = []
        self._monitor_task: Optional[asyncio.Task] = None
        self._reconnect_task: Optional[asyncio.Task] = None

    def _set_state(self, state: ConnectionState) -> None:
        if state != self.state:
            logger.info("Firestore connection %s -> %s", self.state, state)
            self.state = state

    def health(self) -> dict:
        return {
            "state": str(self.state),
            "retry_count": self.retry_count,
            "is_reconnecting": self.is_reconnecting,
            "active_listeners": len(self._listeners),
        }

    # ------------------------------------------------------------------
    # Listener registry

    def register_listener(self, key: str, unsubscribe: Callable[[], None]) -> None:
        """Tracks a real-time subscription so it can be torn down on reconnect."""
        previous = self._listeners.pop(key, None)
        if previous is not None:
            self._unsubscribe(key, previous)
        self._listeners[key] = unsubscribe

    def unregister_listener(self, key: str) -> None:
        unsubscribe = self._listeners.pop(key, None)
        if unsubscribe is not None:
            self._unsubscribe(key, unsubscribe)

    def cleanup_listeners(self) -> int:
        listeners = list(self._listeners.items())
        self._listeners.clear()
        for key, unsubscribe in listeners:
            self._unsubscribe(key, unsubscribe)
        if listeners:
            logger.info("Cleaned up %d Firestore listeners", len(listeners))
        return len(listeners)

    @staticmethod
    def _unsubscribe(key: str, unsubscribe: Callable[[], None]) -> None:
        try:
            unsubscribe()
        except Exception:
            logger.warning("Error cleaning up listener %s", key, exc_info=True)

    def add_reconnected_callback(self, callback: Callback) -> Callable[[], None]:
        self._reconnected_callbacks.append(callback)
        return lambda: self._discard(self._reconnected_callbacks, callback)

    def add_unrecoverable_callback(self, callback: Callback) -> Callable[[], None]:
        self._unrecoverable_callbacks.append(callback)
        return lambda: self._discard(self._unrecoverable_callbacks, callback)

    @staticmethod
    def _discard(callbacks: list[Callback], callback: Callback) -> None:
        if callback in callbacks:
            callbacks.remove(callback)

    async def _emit(self, callbacks: list[Callback], event: str) -> None:
        for callback in list(callbacks):
            try:
                result = callback()
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("%s callback failed", event)

    # ------------------------------------------------------------------
    # Failure handling

    def backoff_delay(self, retry_count: int) -> float:
        """Delay in seconds before reconnection attempt number retry_count."""
        return min(self.base_delay * 2**retry_count, self.max_delay)

    def handle_error(self, error: BaseException) -> bool:
        """
        Starts recovery for connection-related errors.

        Returns True when the error was intercepted. Internal assertion
        failures leave the SDK's listeners in an unusable state, so every
        listener is torn down before the reconnection starts.
        """
        if is_internal_assertion_failure(error):
            logger.error("Firestore internal assertion failure: %s", error)
            self.cleanup_listeners()
            self.report_failure()
            return True
        if is_connection_error(error):
            self.report_failure()
            return True
        return False

    def report_failure(self) -> None:
        """Moves to DEGRADED and starts a reconnection unless one is running."""
        if self.state == ConnectionState.UNRECOVERABLE:
            return
        if self.is_reconnecting:
            logger.debug("Reconnection already in progress; failure coalesced")
            return
        if self.retry_count >= self.max_retries:
            return

        self._set_state(ConnectionState.DEGRADED)
        self.is_reconnecting = True
        self._set_state(ConnectionState.RECONNECTING)
        self._reconnect_task = asyncio.get_running_loop().create_task(
            self._reconnect()
        )

    async def _reconnect(self) -> None:
        try:
            while True:
                self.retry_count += 1
                delay = self.backoff_delay(self.retry_count)
                logger.warning(
                    "Reconnecting to Firestore in %.1fs (attempt %d/%d)",
                    delay,
                    self.retry_count,
                    self.max_retries,
                )
                await self.sleep(delay)
                try:
                    self.cleanup_listeners()
                    await self.network.disable_network()
                    await self.sleep(self.settle_delay)
                    await self.network.enable_network()
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    logger.warning(
                        "Reconnection attempt %d failed: %s", self.retry_count, e
                    )
                    if self.retry_count >= self.max_retries:
                        await self._give_up()
                        return
                    continue

                self.retry_count = 0
                self.is_reconnecting = False
                self._set_state(ConnectionState.HEALTHY)
                await self._emit(self._reconnected_callbacks, "reconnected")
                return
        finally:
            self.is_reconnecting = False

    async def _give_up(self) -> None:
        self.is_reconnecting = False
        self._set_state(ConnectionState.UNRECOVERABLE)
        logger.error(
            "Firestore connection could not be restored after %d attempts; "
            "a reload is required",
            self.retry_count,
        )
        await self._emit(self._unrecoverable_callbacks, "unrecoverable")

    async def wait_for_recovery(self) -> None:
        """Waits for a running reconnection, if any, to finish."""
        task = self._reconnect_task
        if task is not None and not task.done():
            await asyncio.shield(task)

    def reset(self) -> None:
        """Forgets earlier failures, e.g. after the application was reloaded."""
        self.retry_count = 0
        self._set_state(ConnectionState.HEALTHY)

    # ------------------------------------------------------------------
    # Health probe

    async def check_health(self) -> bool:
        """Probes the network layer once; failures start recovery."""
        if self.is_reconnecting or self.state == ConnectionState.UNRECOVERABLE:
            return False
        try:
            await asyncio.wait_for(
                self.network.enable_network(), timeout=self.health_check_timeout
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning("Firestore health check failed: %r", e)
            if not self.handle_error(e):
                self.report_failure()
            return False

        if self.retry_count > 0:
            logger.info("Firestore connection healthy again")
            self.retry_count = 0
        self._set_state(ConnectionState.HEALTHY)
        return True

    async def _monitor(self) -> None:
        while True:
            await self.sleep(self.health_check_interval)
            await self.check_health()

    def start_monitoring(self) -> None:
        if self._monitor_task is not None and not self._monitor_task.done():
            return
        self._monitor_task = asyncio.get_running_loop().create_task(self._monitor())

    def stop_monitoring(self) -> None:
        if self._monitor_task is not None:
            self._monitor_task.cancel()
            self._monitor_task = None

    async def close(self) -> None:
        self.stop_monitoring()
        if self._reconnect_task is not None and not self._reconnect_task.done():
            self._reconnect_task.cancel()
        self.cleanup_listeners()

    # ------------------------------------------------------------------
    # Retried operations

    async def execute_with_retry(
        self,
        operation: Callable[[], Awaitable[T]],
        max_retries: Optional[int] = None,
    ) -> T:
        """
        Runs operation, retrying connection-classified failures with backoff.

        Any other error propagates on the first attempt. When every attempt
        fails, ConnectionLostError is raised with the last error chained.
        The operation always runs at least once.
        """
        if max_retries is None:
            max_retries = self.max_operation_attempts
        attempts = max(1, max_retries)
        for attempt in range(1, attempts + 1):
            try:
                return await operation()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                if not is_connection_error(e):
                    self.handle_error(e)
                    raise
                self.handle_error(e)
                if attempt >= attempts:
                    raise ConnectionLostError(
                        f"Connection lost after {attempts} attempts: {e}"
                    ) from e
                delay = min(self.base_delay * 2**attempt, self.max_operation_delay)
                logger.warning(
                    "Connection error (attempt %d/%d), retrying in %.1fs: %s",
                    attempt,
                    attempts,
                    delay,
                    e,
                )
                await self.sleep(delay)
