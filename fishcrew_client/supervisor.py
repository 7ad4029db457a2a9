# =============================================================================
# FishCrew Client -- Reconnect Supervisor
# =============================================================================
#
# Application-level retry policy above ConnectionManager: when a connect
# cycle gives up, try again a bounded number of times with growing delay,
# then stay offline until asked to reconnect. Stores keep working over REST.
# =============================================================================

from __future__ import annotations

import asyncio
from typing import Any

from ._logging import logger
from .connection import ConnectionManager
from .constants import EVENT_CONNECT, EVENT_RECONNECT_FAILED
from .errors import TransportConnectionError
from .events import EventEmitter, Handler, Subscription
from .types import SupervisorConfig

EVENT_OFFLINE = "offline"
EVENT_ONLINE = "online"


class ReconnectSupervisor:
    """Bounded outer retries for a :class:`ConnectionManager`.

    Args:
        connection: The managed connection.
        config: Retry policy (default: 3 retries, ``n * 3s`` delay).
    """

    def __init__(
        self,
        connection: ConnectionManager,
        config: SupervisorConfig | None = None,
    ) -> None:
        self._connection = connection
        self._config = config or SupervisorConfig()
        self._signals = EventEmitter("supervisor")
        self._attempts = 0
        self._offline = False
        self._last_error: Exception | None = None
        self._retry_task: asyncio.Task[None] | None = None
        self._subscriptions: list[Subscription] = []

    @property
    def attempts(self) -> int:
        return self._attempts

    @property
    def offline(self) -> bool:
        return self._offline

    @property
    def last_error(self) -> Exception | None:
        return self._last_error

    def on_offline(self, handler: Handler) -> Subscription:
        """``handler(error)`` once retries are exhausted."""
        return self._signals.on(EVENT_OFFLINE, handler)

    def on_online(self, handler: Handler) -> Subscription:
        return self._signals.on(EVENT_ONLINE, handler)

    # -- Lifecycle ------------------------------------------------------------

    async def start(self) -> bool:
        """Attach to the connection and make the first connect cycle.

        Returns True when connected. A failure is handed to the retry
        policy rather than raised.
        """
        if not self._subscriptions:
            self._subscriptions = [
                self._connection.on(EVENT_CONNECT, self._on_connect),
                self._connection.on(EVENT_RECONNECT_FAILED, self._on_gave_up),
            ]
        try:
            await self._connection.connect()
        except TransportConnectionError as exc:
            logger.warning("Initial connection failed: %s", exc)
            return False
        return self._connection.is_connected

    async def stop(self) -> None:
        self._cancel_retry()
        self._attempts = 0
        self._offline = False
        for sub in self._subscriptions:
            sub.unsubscribe()
        self._subscriptions = []
        await self._signals.aclose()

    async def retry_now(self) -> bool:
        """Manual reconnect from the offline state; resets the budget."""
        self._cancel_retry()
        self._attempts = 0
        try:
            await self._connection.connect()
        except TransportConnectionError:
            return False
        return self._connection.is_connected

    # -- Internal -------------------------------------------------------------

    def _on_connect(self) -> None:
        was_offline = self._offline
        self._attempts = 0
        self._offline = False
        self._last_error = None
        self._cancel_retry()
        if was_offline:
            self._signals.emit(EVENT_ONLINE)

    def _on_gave_up(self, error: Exception | None) -> None:
        self._last_error = error
        if self._retry_task is not None and not self._retry_task.done():
            return
        if self._attempts >= self._config.max_attempts:
            logger.error(
                "Max reconnection attempts (%d) reached, staying offline",
                self._config.max_attempts,
            )
            self._offline = True
            self._signals.emit(EVENT_OFFLINE, error)
            return

        self._attempts += 1
        delay = self._attempts * self._config.base_delay
        logger.info(
            "Reconnect attempt %d/%d in %.1fs",
            self._attempts,
            self._config.max_attempts,
            delay,
        )
        self._retry_task = asyncio.ensure_future(self._retry_after(delay))

    async def _retry_after(self, delay: float) -> None:
        try:
            await asyncio.sleep(delay)
        except asyncio.CancelledError:
            return
        self._retry_task = None
        try:
            await self._connection.connect()
        except TransportConnectionError as exc:
            # reconnect_failed already fired and scheduled the next step
            logger.debug("Supervised reconnect failed: %s", exc)

    def _cancel_retry(self) -> None:
        task, self._retry_task = self._retry_task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    def get_stats(self) -> dict[str, Any]:
        return {
            "attempts": self._attempts,
            "max_attempts": self._config.max_attempts,
            "offline": self._offline,
            "last_error": str(self._last_error) if self._last_error else None,
        }
