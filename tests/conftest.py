"""Shared fixtures for FishCrew client unit tests."""

import asyncio
import json

import httpx
import pytest
import pytest_asyncio

from fishcrew_client.session import SessionManager
from fishcrew_client.storage import MemoryCredentialStore

API_URL = "http://localhost:3001"

USER = {"id": 7, "name": "Amina", "user_type": "fisherman"}

OPEN_FRAME = '0{"sid":"eio-1","upgrades":[],"pingInterval":25000,"pingTimeout":20000,"maxPayload":1000000}'
CONNECT_FRAME = '40{"sid":"sio-1"}'

_CLOSED = object()


class FakeWebSocket:
    """In-memory stand-in for a websockets client connection."""

    def __init__(self, *frames):
        self.incoming = asyncio.Queue()
        for frame in frames:
            self.incoming.put_nowait(frame)
        self.sent = []
        self.closed = False

    def feed(self, frame):
        self.incoming.put_nowait(frame)

    def drop(self):
        """Simulate the server closing the socket."""
        self.incoming.put_nowait(_CLOSED)

    async def recv(self):
        item = await self.incoming.get()
        if item is _CLOSED:
            raise ConnectionError("socket closed")
        return item

    async def send(self, data):
        self.sent.append(data)

    async def close(self):
        if not self.closed:
            self.closed = True
            self.incoming.put_nowait(_CLOSED)

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self.incoming.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        return item


def handshake_socket(*extra_frames):
    """A socket that completes the Engine.IO and namespace handshake."""
    return FakeWebSocket(OPEN_FRAME, CONNECT_FRAME, *extra_frames)


class FakeConnector:
    """Hands out prepared sockets (or raises prepared errors) in order."""

    def __init__(self, *items):
        self.items = list(items)
        self.calls = []

    async def __call__(self, url, headers):
        self.calls.append((url, dict(headers)))
        if not self.items:
            raise OSError("connection refused")
        item = self.items.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


class Backend:
    """Route table for ``httpx.MockTransport``; records every request."""

    def __init__(self):
        self.routes = {}
        self.requests = []

    def route(self, method, path, handler):
        self.routes[(method, path)] = handler

    def reply(self, method, path, status=200, body=None):
        async def handler(request):
            return httpx.Response(status, json=body)

        self.route(method, path, handler)

    async def __call__(self, request):
        self.requests.append(request)
        handler = self.routes.get((request.method, request.url.path))
        if handler is None:
            return httpx.Response(404, json={"message": "Not found"})
        return await handler(request)

    def calls(self, method, path):
        return [r for r in self.requests if r.method == method and r.url.path == path]

    @property
    def transport(self):
        return httpx.MockTransport(self)


def request_json(request):
    return json.loads(request.content) if request.content else None


async def wait_until(predicate, timeout=1.0):
    """Yield to the loop until *predicate* holds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.005)


@pytest.fixture
def backend():
    return Backend()


@pytest.fixture
def store():
    return MemoryCredentialStore()


@pytest_asyncio.fixture
async def session(backend, store):
    """Signed-in session (token ``tok-1``) against the mock backend."""
    s = SessionManager(API_URL, store=store, transport=backend.transport)
    store.save("tok-1", USER)
    backend.reply("GET", "/api/users/me", body=USER)
    await s.hydrate()
    backend.requests.clear()
    yield s
    await s.aclose()
