# =============================================================================
# FishCrew Client -- Notification Store
# =============================================================================
#
# Fan-in of REST-loaded and pushed notifications. The unread count is
# recomputed from the list in the same commit that replaces the list, so
# consumers never observe the two out of step.
# =============================================================================

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from ._logging import logger
from .connection import ConnectionManager
from .constants import (
    EVENT_NEW_NOTIFICATION,
    PATH_NOTIFICATION_READ,
    PATH_NOTIFICATIONS,
    PATH_NOTIFICATIONS_READ_ALL,
)
from .errors import FishCrewError, MalformedPayloadError, ValidationError
from .events import EventEmitter, Handler, Subscription
from .session import SessionManager
from .types import Notification, Outcome, parse_id

_EVENT_CHANGE = "change"


@dataclass(frozen=True, slots=True)
class NotificationSnapshot:
    """Immutable view handed to listeners after every commit."""

    notifications: tuple[Notification, ...]
    unread_count: int
    loading: bool = False
    error: Exception | None = None


class NotificationStore:
    """Single source of truth for notifications and the unread count.

    Args:
        session: REST access.
        connection: Source of ``new_notification`` pushes; optional, the
            store works pull-only without it.
    """

    def __init__(
        self,
        session: SessionManager,
        connection: ConnectionManager | None = None,
    ) -> None:
        self._session = session
        self._connection = connection
        self._items: tuple[Notification, ...] = ()
        self._unread = 0
        self._loading = False
        self._error: Exception | None = None
        self._listeners = EventEmitter("notifications")
        self._push_subscription: Subscription | None = None

    # -- State ----------------------------------------------------------------

    @property
    def notifications(self) -> tuple[Notification, ...]:
        return self._items

    @property
    def unread_count(self) -> int:
        return self._unread

    @property
    def loading(self) -> bool:
        return self._loading

    @property
    def error(self) -> Exception | None:
        return self._error

    @property
    def snapshot(self) -> NotificationSnapshot:
        return NotificationSnapshot(self._items, self._unread, self._loading, self._error)

    def subscribe(self, listener: Handler) -> Subscription:
        """``listener(snapshot)`` after every change."""
        return self._listeners.on(_EVENT_CHANGE, listener)

    # -- Push wiring ----------------------------------------------------------

    def attach(self) -> None:
        if self._connection is None or self._push_subscription is not None:
            return
        self._push_subscription = self._connection.on(
            EVENT_NEW_NOTIFICATION, self.on_push
        )

    def detach(self) -> None:
        if self._push_subscription is not None:
            self._push_subscription.unsubscribe()
            self._push_subscription = None

    # -- Operations -----------------------------------------------------------

    async def load(self) -> tuple[Notification, ...]:
        """Replace the local list with the server's.

        Any failure clears the store and records the error.
        """
        self._loading = True
        self._notify()
        try:
            data = await self._session.request("GET", PATH_NOTIFICATIONS)
        except FishCrewError as exc:
            logger.error("Failed to load notifications: %s", exc)
            self._commit((), error=exc)
            return self._items

        if not isinstance(data, list):
            logger.warning("Notifications data is not a list: %r", type(data).__name__)
            self._commit((), error=MalformedPayloadError("Notifications data is not a list"))
            return self._items

        items: list[Notification] = []
        for raw in data:
            try:
                items.append(Notification.from_payload(raw))
            except MalformedPayloadError as exc:
                logger.warning("Skipping malformed notification: %s", exc)
        self._commit(tuple(items))
        return self._items

    def on_push(self, payload: Notification | dict[str, Any]) -> bool:
        """Prepend a pushed notification. Returns False if ignored."""
        try:
            notification = (
                payload
                if isinstance(payload, Notification)
                else Notification.from_payload(payload)
            )
        except MalformedPayloadError as exc:
            logger.warning("Ignoring malformed notification push: %s", exc)
            return False
        if any(n.id == notification.id for n in self._items):
            logger.debug("Duplicate notification %s ignored", notification.id)
            return False
        logger.debug("New notification %s (%s)", notification.id, notification.type)
        self._commit((notification, *self._items), error=self._error)
        return True

    async def mark_read(
        self,
        notification_id: int | str,
        *,
        resync_on_failure: bool = False,
    ) -> Outcome[Any]:
        """Flip one item to read locally, then confirm with the server."""
        target = parse_id(notification_id)
        if target is None:
            return Outcome.failure(
                ValidationError(f"Invalid notification id: {notification_id!r}")
            )
        self._commit(
            tuple(n.mark_read() if n.id == target else n for n in self._items),
            error=self._error,
        )
        path = PATH_NOTIFICATION_READ.format(id=target)
        return await self._confirm(path, resync_on_failure)

    async def mark_all_read(self, *, resync_on_failure: bool = False) -> Outcome[Any]:
        """Flip every item to read locally, then confirm with the server."""
        self._commit(tuple(n.mark_read() for n in self._items), error=self._error)
        return await self._confirm(PATH_NOTIFICATIONS_READ_ALL, resync_on_failure)

    async def aclose(self) -> None:
        self.detach()
        await self._listeners.aclose()

    # -- Internal -------------------------------------------------------------

    async def _confirm(self, path: str, resync_on_failure: bool) -> Outcome[Any]:
        try:
            result = await self._session.request("PUT", path)
        except FishCrewError as exc:
            logger.warning("Failed to confirm %s: %s", path, exc)
            if resync_on_failure:
                await self.load()
            return Outcome.failure(exc)
        return Outcome.success(result)

    def _commit(
        self,
        items: tuple[Notification, ...],
        *,
        error: Exception | None = None,
    ) -> None:
        self._items = items
        self._unread = sum(1 for n in items if not n.is_read)
        self._loading = False
        self._error = error
        self._notify()

    def _notify(self) -> None:
        self._listeners.emit(_EVENT_CHANGE, self.snapshot)
