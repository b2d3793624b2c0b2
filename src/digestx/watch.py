"""Watch records and the per-scope registry that holds them.

The registry is swept newest-first. Records may be added or removed from
inside a sweep (a listener registering or deregistering watches); the sweep
cursor is adjusted so that no record is skipped or visited twice.
"""

from __future__ import annotations

from typing import Callable

# Last-observed value of a watch that has never run. Never equal to a
# legal watched value, which is how the first firing is detected.
INITIAL = object()


def _noop(*args) -> None:
    pass


class Watcher:
    """A registered (watch_fn, listener) pair and its last observed value."""

    __slots__ = ("watch_fn", "listener", "value_eq", "last")

    def __init__(self, watch_fn: Callable, listener: Callable | None = None, value_eq: bool = False) -> None:
        self.watch_fn = watch_fn
        self.listener = listener or _noop
        self.value_eq = bool(value_eq)
        self.last: object = INITIAL

    def __repr__(self) -> str:
        mode = "value" if self.value_eq else "identity"
        return f"Watcher({getattr(self.watch_fn, '__name__', self.watch_fn)!r}, {mode})"


class WatchRegistry:
    """Ordered watch records of one scope."""

    __slots__ = ("_records", "_cursor")

    def __init__(self) -> None:
        self._records: list[Watcher] = []
        # Index of the record being visited while a sweep is running.
        self._cursor: int | None = None

    def add(self, watcher: Watcher) -> None:
        # Appended records sit above the cursor, so a running sweep leaves
        # them for the next pass without shifting anything still unvisited.
        self._records.append(watcher)

    def remove(self, watcher: Watcher) -> bool:
        """Remove watcher if present. Returns whether it was found."""
        for index, record in enumerate(self._records):
            if record is watcher:
                break
        else:
            return False
        del self._records[index]
        if self._cursor is not None and index < self._cursor:
            self._cursor -= 1
        return True

    def clear(self) -> None:
        self._records.clear()
        if self._cursor is not None:
            self._cursor = 0

    def sweep(self, visit: Callable[[Watcher], bool]) -> bool:
        """Call visit on each record, newest first, until it returns False.

        Returns False if the sweep was cut short.
        """
        self._cursor = len(self._records)
        try:
            while True:
                self._cursor -= 1
                if self._cursor < 0:
                    return True
                if not visit(self._records[self._cursor]):
                    return False
        finally:
            self._cursor = None

    def __len__(self) -> int:
        return len(self._records)
