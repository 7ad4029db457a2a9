# =============================================================================
# FishCrew Client -- Client Facade
# =============================================================================
#
# Primary public API. Wires one session, one connection and the stores
# together, and ties the realtime pipeline to the session lifecycle:
# online after sign-in or hydration, torn down on sign-out or auth expiry.
# =============================================================================

from __future__ import annotations

from typing import Any

import httpx

from ._logging import logger
from .config import ClientConfig
from .connection import ConnectionManager, Connector
from .messages import MessageStore
from .notifications import NotificationStore
from .rooms import RoomMembership
from .session import SessionManager
from .storage import CredentialStore, FileCredentialStore, MemoryCredentialStore
from .supervisor import ReconnectSupervisor
from .types import User


class FishCrewClient:
    """Realtime messaging and notification client for one user.

    Args:
        config: Client settings (defaults: local backend, in-memory
            credentials).
        store: Credential persistence; overrides ``config.credentials_path``.
        transport: ``httpx`` transport for REST (tests use
            ``httpx.MockTransport``).
        connector: Websocket opener for the realtime connection.

    Example::

        async with FishCrewClient(ClientConfig.from_env()) as client:
            await client.sign_in("skipper@example.com", "secret")
            client.notifications.subscribe(print)
            await client.messages.load_history(None, 42)
    """

    def __init__(
        self,
        config: ClientConfig | None = None,
        *,
        store: CredentialStore | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        connector: Connector | None = None,
    ) -> None:
        self.config = config or ClientConfig()
        if store is None:
            store = (
                FileCredentialStore(self.config.credentials_path)
                if self.config.credentials_path is not None
                else MemoryCredentialStore()
            )

        self.session = SessionManager(
            self.config.api_url,
            store=store,
            timeout=self.config.request_timeout,
            transport=transport,
        )
        self.connection = ConnectionManager(
            self.config.api_url,
            token_provider=lambda: self.session.token,
            reconnect=self.config.reconnect,
            handshake_timeout=self.config.handshake_timeout,
            auto_reconnect=self.config.auto_reconnect,
            transports=self.config.transports,
            connector=connector,
        )
        self.supervisor = ReconnectSupervisor(self.connection, self.config.supervisor)
        self.rooms = RoomMembership(self.connection, self.session)
        self.notifications = NotificationStore(self.session, self.connection)
        self.messages = MessageStore(self.session, self.connection)

        self._online = False
        self._auth_subscription = self.session.on_auth_expired(self._on_auth_expired)

    @property
    def user(self) -> User | None:
        return self.session.user

    @property
    def is_online(self) -> bool:
        """True while the realtime pipeline is wired to a session."""
        return self._online

    # -- Context manager ------------------------------------------------------

    async def __aenter__(self) -> FishCrewClient:
        await self.start()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.aclose()

    # -- Session lifecycle ----------------------------------------------------

    async def start(self) -> User | None:
        """Restore a persisted session and go online if one exists."""
        user = await self.session.hydrate()
        if user is not None:
            await self._go_online()
        return user

    async def sign_in(self, email: str, password: str) -> User:
        user = await self.session.sign_in(email, password)
        await self._go_online()
        return user

    async def sign_out(self) -> None:
        await self._go_offline()
        await self.session.sign_out()

    async def aclose(self) -> None:
        await self._go_offline()
        self._auth_subscription.unsubscribe()
        await self.messages.aclose()
        await self.notifications.aclose()
        await self.connection.destroy()
        await self.session.aclose()

    # -- Internal -------------------------------------------------------------

    async def _go_online(self) -> None:
        if self._online:
            return
        self._online = True
        self.rooms.attach()
        self.notifications.attach()
        self.messages.attach()
        connected = await self.supervisor.start()
        if not connected:
            logger.warning("Realtime connection unavailable, continuing over REST")
        await self.notifications.load()

    async def _go_offline(self) -> None:
        if not self._online:
            return
        self._online = False
        self.rooms.detach()
        self.notifications.detach()
        self.messages.detach()
        await self.supervisor.stop()
        await self.connection.disconnect()
        await self.messages.close()

    async def _on_auth_expired(self, error: Exception) -> None:
        logger.info("Session expired, leaving realtime pipeline: %s", error)
        await self._go_offline()
