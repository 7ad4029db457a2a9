# =============================================================================
# FishCrew Client -- Room Membership
# =============================================================================

from __future__ import annotations

from ._logging import logger
from .connection import ConnectionManager
from .constants import EVENT_CONNECT, EVENT_JOIN_ROOM
from .events import Subscription
from .session import SessionManager
from .types import User


class RoomMembership:
    """Joins the per-user room every time the connection opens.

    The server adds the socket to a room named after the user id, so
    repeated joins are harmless.
    """

    def __init__(self, connection: ConnectionManager, session: SessionManager) -> None:
        self._connection = connection
        self._session = session
        self._subscriptions: list[Subscription] = []
        self._joined_user_id: int | None = None

    @property
    def joined_user_id(self) -> int | None:
        return self._joined_user_id

    def attach(self) -> None:
        if self._subscriptions:
            return
        self._subscriptions = [
            self._connection.on(EVENT_CONNECT, self._on_connect),
            self._session.on_change(self._on_session_change),
        ]

    def detach(self) -> None:
        for sub in self._subscriptions:
            sub.unsubscribe()
        self._subscriptions = []
        self._joined_user_id = None

    async def join(self) -> bool:
        """Emit ``join_room`` for the signed-in user, if any."""
        user = self._session.user
        if user is None:
            logger.debug("No authenticated user, not joining a room")
            return False
        ok = await self._connection.emit(EVENT_JOIN_ROOM, user.id)
        if ok:
            self._joined_user_id = user.id
            logger.info("Joined room for user %s", user.id)
        return ok

    async def _on_connect(self) -> None:
        self._joined_user_id = None
        await self.join()

    async def _on_session_change(self, user: User | None) -> None:
        if user is None:
            self._joined_user_id = None
            return
        if self._connection.is_connected and self._joined_user_id != user.id:
            await self.join()
