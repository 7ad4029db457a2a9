# =============================================================================
# FishCrew Client -- Connection Manager
# =============================================================================
#
# Socket.IO connection lifecycle over the websockets asyncio client, with
# HTTP long-polling as the fallback transport: handshake, Engine.IO
# heartbeat, bounded reconnect with linear backoff.
# =============================================================================

from __future__ import annotations

import asyncio
import time
from typing import Any, Awaitable, Callable
from urllib.parse import urlencode, urlsplit, urlunsplit

import websockets
import websockets.asyncio.client
from websockets.exceptions import ConnectionClosed

from ._logging import logger
from .constants import (
    EIO_CLOSE,
    EIO_MESSAGE,
    EIO_NOOP,
    EIO_PING,
    DEFAULT_TRANSPORTS,
    ENGINEIO_VERSION,
    EVENT_CONNECT,
    EVENT_CONNECT_ERROR,
    EVENT_DISCONNECT,
    EVENT_RECONNECT_FAILED,
    EVENT_STATE,
    HANDSHAKE_TIMEOUT,
    LIFECYCLE_EVENTS,
    MAX_MESSAGE_SIZE,
    SIO_CONNECT,
    SIO_CONNECT_ERROR,
    SIO_DISCONNECT,
    SIO_EVENT,
    SOCKETIO_PATH,
    TRANSPORT_POLLING,
    TRANSPORT_WEBSOCKET,
)
from .errors import (
    HandshakeTimeoutError,
    ProtocolError,
    TransportConnectionError,
)
from .events import EventEmitter, Handler, Subscription
from .polling import PollingSocket
from .protocol import OpenInfo, PacketCodec
from .types import ConnectionState, ReconnectConfig

# Connector signature: (url, headers) -> open socket; the URL scheme picks
# the transport (ws:// websocket, http:// long-polling)
Connector = Callable[[str, dict[str, str]], Awaitable[Any]]

_TRANSITIONS: dict[ConnectionState, frozenset[ConnectionState]] = {
    ConnectionState.DISCONNECTED: frozenset({ConnectionState.CONNECTING}),
    ConnectionState.CONNECTING: frozenset(
        {
            ConnectionState.CONNECTED,
            ConnectionState.ERROR,
            ConnectionState.DISCONNECTED,
        }
    ),
    ConnectionState.CONNECTED: frozenset(
        {ConnectionState.DISCONNECTED, ConnectionState.ERROR}
    ),
    ConnectionState.ERROR: frozenset(
        {ConnectionState.CONNECTING, ConnectionState.DISCONNECTED}
    ),
}


async def _default_connector(url: str, headers: dict[str, str]) -> Any:
    """Open a websocket for ws:// URLs, a polling session for http:// ones."""
    if urlsplit(url).scheme in ("http", "https"):
        return await PollingSocket.open(url, headers)
    return await websockets.asyncio.client.connect(
        url,
        additional_headers=headers,
        max_size=MAX_MESSAGE_SIZE,
        open_timeout=None,  # asyncio.wait_for handles timeout
    )


def build_socket_url(base_url: str, transport: str = TRANSPORT_WEBSOCKET) -> str:
    """Map the API base URL to the Socket.IO endpoint for *transport*."""
    parts = urlsplit(base_url)
    scheme = parts.scheme
    if transport == TRANSPORT_WEBSOCKET:
        scheme = {"http": "ws", "https": "wss"}.get(scheme, scheme)
    query = urlencode({"EIO": ENGINEIO_VERSION, "transport": transport})
    return urlunsplit((scheme, parts.netloc, SOCKETIO_PATH, query, ""))


class ConnectionManager:
    """Owns the single realtime connection to the backend.

    Server events (``new_message``, ``new_notification``) and lifecycle
    events (``connect``, ``disconnect``, ``connect_error``,
    ``reconnect_failed``, ``state``) are delivered to listeners registered
    with :meth:`on`.

    Args:
        url: API base URL, e.g. ``"http://localhost:3001"``.
        token_provider: Returns the current access token, or ``None``.
        reconnect: Handshake retry policy.
        handshake_timeout: Seconds allowed for one handshake attempt.
        auto_reconnect: Start a new connect cycle after an unexpected drop.
        transports: Transport order to try. A failed attempt moves the
            transport it used to the back of the order.
        connector: Opens the socket; injectable for tests.
    """

    def __init__(
        self,
        url: str,
        *,
        token_provider: Callable[[], str | None] | None = None,
        reconnect: ReconnectConfig | None = None,
        handshake_timeout: float = HANDSHAKE_TIMEOUT,
        auto_reconnect: bool = True,
        transports: tuple[str, ...] = DEFAULT_TRANSPORTS,
        extra_headers: dict[str, str] | None = None,
        connector: Connector | None = None,
        codec: PacketCodec | None = None,
    ) -> None:
        unknown = set(transports) - {TRANSPORT_WEBSOCKET, TRANSPORT_POLLING}
        if not transports or unknown:
            raise ValueError(f"Unsupported transports: {transports!r}")
        self._urls = {name: build_socket_url(url, name) for name in transports}
        self._transports = list(dict.fromkeys(transports))
        self._transport: str | None = None
        self._token_provider = token_provider or (lambda: None)
        self._reconnect_cfg = reconnect or ReconnectConfig()
        self._handshake_timeout = handshake_timeout
        self._auto_reconnect = auto_reconnect
        self._extra_headers = extra_headers or {}
        self._connector = connector or _default_connector
        self._codec = codec or PacketCodec()
        self._events = EventEmitter("connection")

        # State
        self._ws: Any | None = None
        self._state = ConnectionState.DISCONNECTED
        self._is_connecting = False
        self._attempt = 0
        self._cycle = 0
        self._sid: str | None = None
        self._open_info: OpenInfo | None = None
        self._last_ping: float | None = None
        self._destroyed = False

        # Tasks
        self._recv_task: asyncio.Task[None] | None = None
        self._heartbeat_task: asyncio.Task[None] | None = None
        self._reconnect_task: asyncio.Task[None] | None = None
        self._background_tasks: set[asyncio.Task[Any]] = set()

    def _fire_task(self, coro: Any) -> None:
        """Schedule a coroutine with a strong reference to prevent GC."""
        task = asyncio.ensure_future(coro)
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    # -- Properties -----------------------------------------------------------

    @property
    def url(self) -> str:
        """Endpoint of the transport the next attempt will use."""
        return self._urls[self._transports[0]]

    @property
    def transports(self) -> tuple[str, ...]:
        return tuple(self._transports)

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._ws is not None and self._state == ConnectionState.CONNECTED

    @property
    def is_connecting(self) -> bool:
        return self._is_connecting

    @property
    def sid(self) -> str | None:
        return self._sid

    @property
    def transport(self) -> str | None:
        """Transport of the live connection, or ``None``."""
        return self._transport if self.is_connected else None

    @property
    def reconnect_attempts(self) -> int:
        return self._attempt

    # -- Listeners ------------------------------------------------------------

    def on(self, event: str, handler: Handler) -> Subscription:
        """Register a listener; the returned handle removes it."""
        return self._events.on(event, handler)

    def listener_count(self, event: str | None = None) -> int:
        return self._events.listener_count(event)

    # -- Connect / Disconnect -------------------------------------------------

    async def connect(self) -> None:
        """Connect with bounded retries. No-op if connecting or connected.

        Raises:
            TransportConnectionError: All attempts failed.
        """
        if self._destroyed:
            raise TransportConnectionError("ConnectionManager has been destroyed")
        if self.is_connected or self._is_connecting:
            return

        self._is_connecting = True
        cycle = self._cycle
        cfg = self._reconnect_cfg
        last_exc: Exception | None = None
        try:
            for attempt in range(cfg.max_attempts):
                self._attempt = attempt
                if attempt:
                    delay = cfg.delay_for(attempt)
                    logger.info(
                        "Reconnecting in %.1fs (attempt %d/%d)",
                        delay,
                        attempt + 1,
                        cfg.max_attempts,
                    )
                    await asyncio.sleep(delay)
                    if cycle != self._cycle:
                        return

                transport = self._transports[0]
                self._set_state(ConnectionState.CONNECTING)
                try:
                    ws = await self._open_once(transport)
                except TransportConnectionError as exc:
                    last_exc = exc
                    if cycle != self._cycle:
                        return
                    logger.warning(
                        "Connection attempt %d (%s) failed: %s", attempt + 1, transport, exc
                    )
                    self._set_state(ConnectionState.ERROR)
                    self._events.emit(EVENT_CONNECT_ERROR, exc)
                    self._rotate_transports()
                    continue

                if cycle != self._cycle:
                    await self._close_ws(ws)
                    return
                self._on_open(ws, transport)
                return
        finally:
            if cycle == self._cycle:
                self._is_connecting = False

        logger.error("Connection failed after %d attempts", cfg.max_attempts)
        self._events.emit(EVENT_RECONNECT_FAILED, last_exc)
        raise TransportConnectionError(
            f"Could not connect after {cfg.max_attempts} attempts"
        ) from last_exc

    async def _open_once(self, transport: str) -> Any:
        """One handshake: socket open, Engine.IO OPEN, namespace CONNECT."""
        token = self._token_provider()
        headers = dict(self._extra_headers)
        if token:
            headers["Authorization"] = f"Bearer {token}"

        ws: Any | None = None

        async def handshake() -> Any:
            nonlocal ws
            ws = await self._connector(self._urls[transport], headers)
            self._open_info = self._codec.decode_open(
                self._codec.decode_frame(await ws.recv())
            )
            await ws.send(self._codec.encode_connect({"token": token} if token else None))
            while True:
                packet = self._codec.decode_frame(await ws.recv())
                if packet.type == EIO_PING:
                    await ws.send(self._codec.encode_pong(packet.data))
                    continue
                if packet.type == EIO_CLOSE:
                    raise TransportConnectionError("Server closed during handshake")
                if packet.type != EIO_MESSAGE:
                    continue
                sio = self._codec.decode_socket(packet.data)
                if sio.namespace != self._codec.namespace:
                    continue
                if sio.type == SIO_CONNECT:
                    data = sio.data if isinstance(sio.data, dict) else {}
                    self._sid = data.get("sid")
                    return ws
                if sio.type == SIO_CONNECT_ERROR:
                    detail = sio.data.get("message") if isinstance(sio.data, dict) else sio.data
                    raise TransportConnectionError(f"Connection refused: {detail}")

        try:
            return await asyncio.wait_for(handshake(), timeout=self._handshake_timeout)
        except asyncio.TimeoutError:
            await self._close_ws(ws)
            raise HandshakeTimeoutError(
                f"Handshake timed out after {self._handshake_timeout}s"
            )
        except TransportConnectionError:
            await self._close_ws(ws)
            raise
        except Exception as exc:
            await self._close_ws(ws)
            raise TransportConnectionError(f"Failed to connect: {exc}") from exc

    def _rotate_transports(self) -> None:
        if len(self._transports) > 1:
            self._transports.append(self._transports.pop(0))
            logger.info("Next attempt uses the %s transport", self._transports[0])

    def _on_open(self, ws: Any, transport: str) -> None:
        self._ws = ws
        self._transport = transport
        self._attempt = 0
        self._last_ping = time.monotonic()
        self._set_state(ConnectionState.CONNECTED)
        logger.info("Connected (sid=%s, transport=%s)", self._sid, transport)

        self._recv_task = asyncio.create_task(self._recv_loop(ws))
        self._heartbeat_task = asyncio.create_task(self._heartbeat_loop(ws))
        self._events.emit(EVENT_CONNECT)

    async def disconnect(self) -> None:
        """Tear down the connection and remove every listener."""
        was_connected = self.is_connected
        await self._teardown()
        if self._state != ConnectionState.DISCONNECTED:
            self._set_state(ConnectionState.DISCONNECTED)
        if was_connected:
            self._events.emit(EVENT_DISCONNECT, "io client disconnect")
        self._events.clear()
        await self._events.aclose()

    async def reconnect(self) -> None:
        """Drop the current socket (listeners kept) and connect again."""
        was_connected = self.is_connected
        await self._teardown()
        if self._state != ConnectionState.DISCONNECTED:
            self._set_state(ConnectionState.DISCONNECTED)
        if was_connected:
            self._events.emit(EVENT_DISCONNECT, "io client reconnect")
        await self.connect()

    async def destroy(self) -> None:
        """Disconnect and mark permanently destroyed."""
        self._destroyed = True
        await self.disconnect()

    async def _teardown(self) -> None:
        """Cancel tasks and close the socket. Invalidates pending connects."""
        self._cycle += 1
        self._is_connecting = False
        current = asyncio.current_task()

        tasks_to_await: list[asyncio.Task[Any]] = []
        for task in (self._reconnect_task, self._heartbeat_task, self._recv_task):
            if task is not None and task is not current:
                task.cancel()
                tasks_to_await.append(task)
        self._reconnect_task = None
        self._heartbeat_task = None
        self._recv_task = None
        for task in self._background_tasks:
            task.cancel()
            tasks_to_await.append(task)
        self._background_tasks.clear()
        if tasks_to_await:
            await asyncio.gather(*tasks_to_await, return_exceptions=True)

        ws, self._ws = self._ws, None
        await self._close_ws(ws)
        self._sid = None

    @staticmethod
    async def _close_ws(ws: Any | None) -> None:
        if ws is None:
            return
        try:
            await ws.close()
        except Exception as exc:
            logger.debug("Error closing websocket: %s", exc)

    # -- Send -----------------------------------------------------------------

    async def emit(self, event: str, *args: Any) -> bool:
        """Send a Socket.IO event. Returns False when not connected."""
        if not self.is_connected:
            logger.debug("Not connected, '%s' not sent", event)
            return False
        try:
            await self._ws.send(self._codec.encode_event(event, *args))
            return True
        except ConnectionClosed:
            logger.debug("Emit '%s' failed: connection closed", event)
            return False
        except Exception as exc:
            logger.warning("Emit '%s' failed: %s", event, exc)
            return False

    # -- Internal: receive loop -----------------------------------------------

    async def _recv_loop(self, ws: Any) -> None:
        reason = "transport close"
        reconnect = True
        try:
            async for frame in ws:
                result = self._handle_frame(frame)
                if result is not None:
                    reason, reconnect = result
                    break
        except asyncio.CancelledError:
            return
        except ConnectionClosed:
            reason = "transport close"
        except Exception as exc:
            logger.warning("Receive loop error: %s", exc)
            reason = "transport error"
        if ws is self._ws:
            self._recv_task = None
            await self._on_drop(reason, reconnect=reconnect)

    def _handle_frame(self, frame: str | bytes) -> tuple[str, bool] | None:
        """Process one frame. Returns ``(reason, reconnect)`` to stop."""
        try:
            packet = self._codec.decode_frame(frame)
        except ProtocolError as exc:
            logger.warning("Dropping frame: %s", exc)
            return None

        if packet.type == EIO_PING:
            self._last_ping = time.monotonic()
            self._fire_task(self._send_raw(self._codec.encode_pong(packet.data)))
            return None
        if packet.type == EIO_CLOSE:
            return "transport close", True
        if packet.type == EIO_NOOP or packet.type != EIO_MESSAGE:
            return None

        try:
            sio = self._codec.decode_socket(packet.data)
        except ProtocolError as exc:
            logger.warning("Dropping packet: %s", exc)
            return None
        if sio.namespace != self._codec.namespace:
            return None

        if sio.type == SIO_EVENT and sio.event in LIFECYCLE_EVENTS:
            logger.warning("Ignoring server event with reserved name '%s'", sio.event)
        elif sio.type == SIO_EVENT and sio.event:
            logger.debug("Event '%s' received", sio.event)
            self._events.emit(sio.event, *sio.args)
        elif sio.type == SIO_DISCONNECT:
            # Server-initiated disconnect: no automatic reconnection
            return "io server disconnect", False
        return None

    async def _send_raw(self, data: str) -> None:
        if self._ws is None:
            return
        try:
            await self._ws.send(data)
        except Exception as exc:
            logger.debug("Send failed: %s", exc)

    # -- Internal: heartbeat --------------------------------------------------

    async def _heartbeat_loop(self, ws: Any) -> None:
        """Close the socket when the server stops pinging."""
        info = self._open_info
        interval = info.ping_interval if info else 25.0
        allowed = interval + (info.ping_timeout if info else 20.0)
        while True:
            try:
                await asyncio.sleep(interval)
            except asyncio.CancelledError:
                return
            if ws is not self._ws:
                return
            if self._last_ping is not None and time.monotonic() - self._last_ping > allowed:
                logger.warning("Ping timeout (%.0fs), closing connection", allowed)
                await self._close_ws(ws)
                return

    # -- Internal: reconnection -----------------------------------------------

    async def _on_drop(self, reason: str, *, reconnect: bool) -> None:
        logger.info("Disconnected: %s", reason)
        if self._heartbeat_task:
            self._heartbeat_task.cancel()
            self._heartbeat_task = None
        ws, self._ws = self._ws, None
        self._sid = None
        await self._close_ws(ws)

        self._set_state(ConnectionState.DISCONNECTED)
        self._events.emit(EVENT_DISCONNECT, reason)

        if reconnect and self._auto_reconnect and not self._destroyed:
            self._reconnect_task = asyncio.ensure_future(self._reconnect_cycle())

    async def _reconnect_cycle(self) -> None:
        try:
            await self.connect()
        except asyncio.CancelledError:
            return
        except TransportConnectionError as exc:
            logger.debug("Reconnect cycle gave up: %s", exc)

    # -- State management -----------------------------------------------------

    def _set_state(self, new_state: ConnectionState) -> None:
        if new_state == self._state:
            return
        old = self._state
        if new_state not in _TRANSITIONS[old]:
            logger.warning("Ignoring invalid transition %s -> %s", old.value, new_state.value)
            return
        self._state = new_state
        logger.debug("State: %s -> %s", old.value, new_state.value)
        self._events.emit(EVENT_STATE, new_state)
