"""Tree anchor — plain Python structures that hold tree-wide digest state.

Every scope of a tree holds a reference to the same anchor: the root creates
it, children (isolated or not) receive it at construction. Queues, the phase
flag, the pending $applyAsync handle and the last-dirty-watch marker therefore
live here rather than on any single scope.
"""

from __future__ import annotations

from collections import deque
from typing import TYPE_CHECKING, Callable

from digestx.errors import PhaseConflictError

if TYPE_CHECKING:
    from digestx.scheduler import Handle, Scheduler
    from digestx.scope import Scope
    from digestx.watch import Watcher

ExceptionHandler = Callable[[BaseException, str], None]

DIGEST_PHASE = "$digest"
APPLY_PHASE = "$apply"


class TreeAnchor:
    """Shared state for one scope tree."""

    __slots__ = (
        "scheduler",
        "exception_handler",
        "ttl",
        "phase",
        "last_dirty_watch",
        "async_queue",
        "apply_async_queue",
        "apply_async_handle",
        "post_digest_queue",
    )

    def __init__(self, scheduler: Scheduler, exception_handler: ExceptionHandler, ttl: int) -> None:
        self.scheduler = scheduler
        self.exception_handler = exception_handler
        self.ttl = ttl
        self.phase: str | None = None
        self.last_dirty_watch: Watcher | None = None
        # (scope, expression) pairs, drained FIFO inside the digest loop
        self.async_queue: deque[tuple[Scope, Callable]] = deque()
        self.apply_async_queue: deque[Callable[[], object]] = deque()
        self.apply_async_handle: Handle | None = None
        self.post_digest_queue: deque[Callable[[], object]] = deque()

    def begin_phase(self, phase: str) -> None:
        if self.phase is not None:
            raise PhaseConflictError(self.phase)
        self.phase = phase

    def clear_phase(self) -> None:
        self.phase = None

    def report(self, exc: BaseException, cause: str) -> None:
        """Route a recoverable exception to the tree's diagnostic channel."""
        self.exception_handler(exc, cause)
