"""Host timer primitives — schedule a zero-delay callback, cancel it later.

The digest engine never blocks; $evalAsync and $applyAsync defer work to a
future tick through whichever Scheduler the root scope was built with.
"""

from __future__ import annotations

import asyncio
from collections import deque
from typing import Callable, Protocol


class Handle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    def call_soon(self, callback: Callable[[], None]) -> Handle: ...


class CallHandle:
    """Cancelable handle for a callback a scheduler has not run yet."""

    __slots__ = ("_callback", "_cancelled")

    def __init__(self, callback: Callable[[], None]) -> None:
        self._callback = callback
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True

    def __call__(self) -> None:
        if not self._cancelled:
            self._callback()

    def __repr__(self) -> str:
        state = "cancelled" if self._cancelled else "pending"
        return f"CallHandle({getattr(self._callback, '__name__', self._callback)!r}, {state})"


class ManualScheduler:
    """Scheduler whose ticks are driven by the host.

    Callbacks accumulate until run_pending() is called. This is the default
    for a root scope, and what tests use in place of a real event loop.

    Usage:
        scheduler = ManualScheduler()
        scope = Scope(scheduler=scheduler)
        scope.eval_async(lambda s: setattr(s, "ready", True))
        scheduler.run_pending()  # digests, scope.ready is True
    """

    def __init__(self) -> None:
        self._pending: deque[CallHandle] = deque()

    def call_soon(self, callback: Callable[[], None]) -> CallHandle:
        handle = CallHandle(callback)
        self._pending.append(handle)
        return handle

    @property
    def pending(self) -> int:
        """Number of scheduled callbacks not yet run or cancelled."""
        return sum(1 for handle in self._pending if not handle.cancelled)

    def run_pending(self) -> int:
        """Run one tick: every callback scheduled before this call, in order.

        Callbacks scheduled while the tick runs wait for the next tick.
        Returns the number of callbacks actually invoked.
        """
        batch = list(self._pending)
        self._pending.clear()
        ran = 0
        for handle in batch:
            if not handle.cancelled:
                handle()
                ran += 1
        return ran


class AsyncioScheduler:
    """Scheduler backed by an asyncio event loop.

    With no loop given, the running loop is looked up at each call_soon, so
    the scheduler can be created before the loop starts.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._loop = loop

    def call_soon(self, callback: Callable[[], None]) -> asyncio.Handle:
        loop = self._loop or asyncio.get_running_loop()
        return loop.call_soon(callback)
