"""Tests for EventEmitter and Subscription handles."""

import asyncio

import pytest

from fishcrew_client.events import EventEmitter, Subscription


class TestSubscription:
    def test_unsubscribe_removes_only_that_listener(self):
        emitter = EventEmitter()
        seen = []
        sub_a = emitter.on("x", lambda v: seen.append(("a", v)))
        emitter.on("x", lambda v: seen.append(("b", v)))

        sub_a.unsubscribe()
        emitter.emit("x", 1)

        assert seen == [("b", 1)]
        assert emitter.listener_count("x") == 1

    def test_unsubscribe_is_idempotent(self):
        emitter = EventEmitter()
        sub = emitter.on("x", lambda: None)
        sub.unsubscribe()
        sub.unsubscribe()
        sub()
        assert sub.active is False
        assert emitter.listener_count() == 0

    def test_same_handler_twice_needs_two_unsubscribes(self):
        emitter = EventEmitter()
        handler = lambda: None  # noqa: E731
        first = emitter.on("x", handler)
        emitter.on("x", handler)
        first.unsubscribe()
        assert emitter.listener_count("x") == 1

    def test_context_manager(self):
        emitter = EventEmitter()
        with emitter.on("x", lambda: None) as sub:
            assert isinstance(sub, Subscription)
            assert emitter.listener_count("x") == 1
        assert emitter.listener_count("x") == 0


class TestEmit:
    def test_returns_handler_count(self):
        emitter = EventEmitter()
        emitter.on("x", lambda: None)
        emitter.on("x", lambda: None)
        assert emitter.emit("x") == 2
        assert emitter.emit("missing") == 0

    def test_handler_error_does_not_stop_others(self):
        emitter = EventEmitter()
        seen = []

        def broken():
            raise RuntimeError("boom")

        emitter.on("x", broken)
        emitter.on("x", lambda: seen.append("ok"))
        emitter.emit("x")
        assert seen == ["ok"]

    @pytest.mark.asyncio
    async def test_async_handler_scheduled(self):
        emitter = EventEmitter()
        seen = []

        async def handler(value):
            seen.append(value)

        emitter.on("x", handler)
        emitter.emit("x", 5)
        assert seen == []
        await asyncio.sleep(0)
        assert seen == [5]

    @pytest.mark.asyncio
    async def test_aclose_cancels_running_handlers(self):
        emitter = EventEmitter()
        started = asyncio.Event()

        async def slow():
            started.set()
            await asyncio.sleep(10)

        emitter.on("x", slow)
        emitter.emit("x")
        await started.wait()
        await emitter.aclose()
        assert emitter._background_tasks == set()

    def test_clear(self):
        emitter = EventEmitter()
        emitter.on("x", lambda: None)
        emitter.on("y", lambda: None)
        emitter.clear()
        assert emitter.listener_count() == 0
