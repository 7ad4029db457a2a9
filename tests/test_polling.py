"""Tests for the long-polling transport (httpx.MockTransport server)."""

import asyncio
import json

import httpx
import pytest

from conftest import API_URL, CONNECT_FRAME, OPEN_FRAME, wait_until
from fishcrew_client.connection import ConnectionManager, build_socket_url
from fishcrew_client.errors import TransportConnectionError
from fishcrew_client.polling import PollingSocket
from fishcrew_client.types import ReconnectConfig

POLL_URL = build_socket_url(API_URL, "polling")


class PollingServer:
    """One Engine.IO polling session; queued packets are flushed per GET."""

    def __init__(self):
        self.outgoing = asyncio.Queue()
        self.posted = []
        self.requests = []

    def push(self, *frames):
        for frame in frames:
            self.outgoing.put_nowait(frame)

    def polls(self):
        return [r for r in self.requests if r.method == "GET" and "sid" in r.url.params]

    async def __call__(self, request):
        self.requests.append(request)
        sid = request.url.params.get("sid")
        if sid is None:
            return httpx.Response(200, text=OPEN_FRAME)
        if sid != "eio-1":
            return httpx.Response(400, json={"code": 1, "message": "Session ID unknown"})
        if request.method == "POST":
            body = request.content.decode()
            self.posted.append(body)
            if body.startswith("40"):
                self.push(CONNECT_FRAME)
            return httpx.Response(200, text="ok")
        frames = [await self.outgoing.get()]
        while not self.outgoing.empty():
            frames.append(self.outgoing.get_nowait())
        return httpx.Response(200, text="\x1e".join(frames))

    @property
    def transport(self):
        return httpx.MockTransport(self)


async def _open(server, headers=None):
    return await PollingSocket.open(POLL_URL, headers or {}, transport=server.transport)


class TestPollingSocket:
    @pytest.mark.asyncio
    async def test_handshake_buffers_open_frame(self):
        server = PollingServer()
        sock = await _open(server, {"Authorization": "Bearer tok-1"})

        assert sock.sid == "eio-1"
        assert await sock.recv() == OPEN_FRAME
        handshake = server.requests[0]
        assert handshake.url.params["EIO"] == "4"
        assert handshake.url.params["transport"] == "polling"
        assert handshake.headers["Authorization"] == "Bearer tok-1"
        await sock.close()

    @pytest.mark.asyncio
    async def test_batched_packets_split(self):
        server = PollingServer()
        sock = await _open(server)
        await sock.recv()
        server.push("2", '42["new_notification",{"id":1}]')

        assert await sock.recv() == "2"
        assert await sock.recv() == '42["new_notification",{"id":1}]'
        assert len(server.polls()) == 1
        await sock.close()

    @pytest.mark.asyncio
    async def test_send_posts_one_frame(self):
        server = PollingServer()
        sock = await _open(server)

        await sock.send('42["join_room","7"]')

        post = next(r for r in server.requests if r.method == "POST")
        assert post.content == b'42["join_room","7"]'
        assert post.url.params["sid"] == "eio-1"
        await sock.close()

    @pytest.mark.asyncio
    async def test_close_sends_close_packet_once(self):
        server = PollingServer()
        sock = await _open(server)

        await sock.close()
        await sock.close()

        assert server.posted == ["1"]
        assert sock.closed
        with pytest.raises(TransportConnectionError):
            await sock.send("3")

    @pytest.mark.asyncio
    async def test_iteration_ends_after_close(self):
        server = PollingServer()
        sock = await _open(server)
        await sock.recv()
        await sock.close()

        assert [frame async for frame in sock] == []

    @pytest.mark.asyncio
    async def test_handshake_http_error(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(503))
        with pytest.raises(TransportConnectionError):
            await PollingSocket.open(POLL_URL, {}, transport=transport)

    @pytest.mark.asyncio
    async def test_unknown_session_rejected(self):
        server = PollingServer()
        sock = await _open(server)
        sock._sid = "expired"
        with pytest.raises(TransportConnectionError):
            await sock.send("3")
        await sock.close()


class TestManagerOverPolling:
    @pytest.mark.asyncio
    async def test_connect_dispatch_emit_and_close(self):
        server = PollingServer()
        conn = ConnectionManager(
            API_URL,
            token_provider=lambda: "tok-1",
            reconnect=ReconnectConfig(max_attempts=1, base_delay=0.0),
            transports=("polling",),
            connector=lambda url, headers: PollingSocket.open(
                url, headers, transport=server.transport
            ),
        )
        received = []
        conn.on("new_message", received.append)

        await conn.connect()

        assert conn.transport == "polling"
        assert conn.sid == "sio-1"
        assert server.posted[0].startswith("40")
        assert json.loads(server.posted[0][2:]) == {"token": "tok-1"}

        server.push('42["new_message",{"id":1,"text":"hi"}]')
        await wait_until(lambda: received)
        assert received == [{"id": 1, "text": "hi"}]

        assert await conn.emit("join_room", "7")
        assert server.posted[-1] == '42["join_room","7"]'

        server.push("2")
        await wait_until(lambda: "3" in server.posted)

        await conn.disconnect()
        assert server.posted[-1] == "1"
