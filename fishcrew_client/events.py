# =============================================================================
# FishCrew Client -- Subscriptions
# =============================================================================
#
# Listener registration always returns a handle that removes exactly that
# listener, so add/remove are paired in the same scope.
# =============================================================================

from __future__ import annotations

import asyncio
from collections import defaultdict
from typing import Any, Awaitable, Callable

from ._logging import logger

Handler = Callable[..., Any]
AsyncHandler = Callable[..., Awaitable[Any]]


class Subscription:
    """Handle returned by every ``on()`` / ``subscribe()`` call.

    Call it (or use it as a context manager) to unsubscribe. Calling it
    more than once is harmless.
    """

    __slots__ = ("_remove", "_active")

    def __init__(self, remove: Callable[[], None]) -> None:
        self._remove = remove
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def unsubscribe(self) -> None:
        if self._active:
            self._active = False
            self._remove()

    __call__ = unsubscribe

    def __enter__(self) -> Subscription:
        return self

    def __exit__(self, *exc: Any) -> None:
        self.unsubscribe()


class EventEmitter:
    """Named-event observer registry.

    Handlers may be plain functions or coroutine functions; coroutine
    results are scheduled as background tasks held by the emitter.
    """

    def __init__(self, name: str = "events") -> None:
        self._name = name
        self._handlers: dict[str, list[Handler | AsyncHandler]] = defaultdict(list)
        self._background_tasks: set[asyncio.Task[Any]] = set()

    def on(self, event: str, handler: Handler | AsyncHandler) -> Subscription:
        self._handlers[event].append(handler)

        def remove() -> None:
            handlers = self._handlers.get(event)
            if handlers and handler in handlers:
                handlers.remove(handler)
                if not handlers:
                    del self._handlers[event]

        return Subscription(remove)

    def listener_count(self, event: str | None = None) -> int:
        if event is not None:
            return len(self._handlers.get(event, ()))
        return sum(len(h) for h in self._handlers.values())

    def emit(self, event: str, *args: Any) -> int:
        """Invoke every handler for *event*. Returns the handler count."""
        handlers = list(self._handlers.get(event, ()))
        for handler in handlers:
            try:
                result = handler(*args)
                if asyncio.iscoroutine(result):
                    self._fire_task(result)
            except Exception as exc:
                logger.error("%s handler error for '%s': %s", self._name, event, exc)
        return len(handlers)

    def clear(self) -> None:
        """Remove every handler."""
        self._handlers.clear()

    async def aclose(self) -> None:
        """Cancel handler tasks still running."""
        tasks = list(self._background_tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._background_tasks.clear()

    def _fire_task(self, coro: Any) -> None:
        task = asyncio.ensure_future(coro)
        self._background_tasks.add(task)
        task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task[Any]) -> None:
        self._background_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("%s async handler failed: %s", self._name, task.exception())
