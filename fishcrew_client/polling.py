# =============================================================================
# FishCrew Client -- Engine.IO Long-Polling Transport
# =============================================================================
#
# HTTP long-polling session over httpx. It exposes the same recv / send /
# close / async-iteration surface as a websockets client connection, so
# the connection manager runs the handshake and receive loop unchanged
# on either transport.
#
#   GET  /socket.io/?EIO=4&transport=polling          -> "0{sid,...}"
#   GET  /socket.io/?EIO=4&transport=polling&sid=...  -> held until packets
#   POST /socket.io/?EIO=4&transport=polling&sid=...  <- one frame per body
# =============================================================================

from __future__ import annotations

import asyncio
from collections import deque
from urllib.parse import quote

import httpx

from ._logging import logger
from .constants import EIO_CLOSE, HANDSHAKE_TIMEOUT
from .errors import TransportConnectionError
from .protocol import PacketCodec

_CONTENT_TYPE = {"Content-Type": "text/plain;charset=UTF-8"}


class PollingSocket:
    """One Engine.IO long-polling session.

    Use :meth:`open`; the first frame returned by :meth:`recv` is the
    server's OPEN packet.
    """

    def __init__(
        self,
        url: str,
        client: httpx.AsyncClient,
        *,
        codec: PacketCodec | None = None,
    ) -> None:
        self._url = url
        self._client = client
        self._codec = codec or PacketCodec()
        self._sid: str | None = None
        self._poll_timeout: httpx.Timeout | None = None
        self._buffer: deque[str] = deque()
        self._send_lock = asyncio.Lock()
        self._closed = False

    @classmethod
    async def open(
        cls,
        url: str,
        headers: dict[str, str],
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = HANDSHAKE_TIMEOUT,
    ) -> PollingSocket:
        """Start a session: the handshake GET assigns the Engine.IO sid."""
        client = httpx.AsyncClient(
            headers=headers, transport=transport, timeout=httpx.Timeout(timeout)
        )
        socket = cls(url, client)
        try:
            await socket._handshake()
        except BaseException:
            await client.aclose()
            raise
        return socket

    @property
    def sid(self) -> str | None:
        return self._sid

    @property
    def closed(self) -> bool:
        return self._closed

    async def _handshake(self) -> None:
        frames = self._unpack(await self._client.get(self._url))
        if not frames:
            raise TransportConnectionError("Empty polling handshake response")
        info = self._codec.decode_open(self._codec.decode_frame(frames[0]))
        self._sid = info.sid
        # The server holds a poll for up to one ping interval
        self._poll_timeout = httpx.Timeout(
            self._client.timeout.connect,
            read=info.ping_interval + info.ping_timeout,
        )
        self._buffer.extend(frames)
        logger.debug("Polling session opened (sid=%s)", self._sid)

    # -- websockets-compatible surface ----------------------------------------

    async def recv(self) -> str:
        while not self._buffer:
            if self._closed:
                raise TransportConnectionError("Polling session closed")
            response = await self._client.get(
                self._session_url(), timeout=self._poll_timeout
            )
            self._buffer.extend(self._unpack(response))
        return self._buffer.popleft()

    async def send(self, data: str) -> None:
        if self._closed:
            raise TransportConnectionError("Polling session closed")
        async with self._send_lock:
            response = await self._client.post(
                self._session_url(), content=data.encode(), headers=_CONTENT_TYPE
            )
        if response.status_code != 200:
            raise TransportConnectionError(
                f"Polling send failed: HTTP {response.status_code}"
            )

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            if self._sid is not None:
                await self._client.post(
                    self._session_url(), content=EIO_CLOSE.encode(), headers=_CONTENT_TYPE
                )
        except httpx.HTTPError as exc:
            logger.debug("Polling close packet not delivered: %s", exc)
        finally:
            await self._client.aclose()

    def __aiter__(self) -> PollingSocket:
        return self

    async def __anext__(self) -> str:
        if self._closed and not self._buffer:
            raise StopAsyncIteration
        return await self.recv()

    # -- Internal -------------------------------------------------------------

    def _session_url(self) -> str:
        return f"{self._url}&sid={quote(self._sid or '')}"

    def _unpack(self, response: httpx.Response) -> list[str]:
        if response.status_code != 200:
            raise TransportConnectionError(
                f"Polling request failed: HTTP {response.status_code}"
            )
        return self._codec.decode_payload(response.text)

