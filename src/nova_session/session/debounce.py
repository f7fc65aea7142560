"""
nova_session.session.debounce

Trailing-edge debouncer for bursts of identity-provider events (AuthEventDebouncer).
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Generic, TypeVar

from nova_session.observability.logging import get_logger

T = TypeVar("T")

log = get_logger(__name__)


class Debouncer(Generic[T]):
    """
    Coalesce `schedule(value)` calls so only the last value of a burst reaches `action`.

    Each call cancels the pending timer and arms a new one `window` seconds out. Once the
    timer fires the action runs as its own task; a later `schedule` never cancels an action
    that has already started.
    """

    def __init__(self, action: Callable[[T], Awaitable[None]], *, window: float) -> None:
        self._action = action
        self._window = window
        self._handle: asyncio.TimerHandle | None = None
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def window(self) -> float:
        return self._window

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def schedule(self, value: T) -> None:
        self.cancel()
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(self._window, self._fire, value)

    def cancel(self) -> bool:
        if self._handle is None:
            return False
        self._handle.cancel()
        self._handle = None
        return True

    async def wait_idle(self) -> None:
        """Wait for a pending timer to fire and for every started action to finish."""

        loop = asyncio.get_running_loop()
        while self._handle is not None or self._tasks:
            if self._handle is not None:
                await asyncio.sleep(max(0.0, self._handle.when() - loop.time()) + 0.001)
                continue
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def close(self) -> None:
        self.cancel()
        for task in list(self._tasks):
            task.cancel()

    def _fire(self, value: T) -> None:
        self._handle = None
        task = asyncio.get_running_loop().create_task(self._action(value))
        self._tasks.add(task)
        task.add_done_callback(self._on_done)

    def _on_done(self, task: asyncio.Task[None]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            log.error("debounce.action_failed", error=repr(exc), exc_info=exc)


# --- Module Notes -----------------------------------------------------------
# Timers come from loop.call_later, so the debouncer must be driven from inside
# the running event loop (provider callbacks are).
