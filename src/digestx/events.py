"""Scope events — objects passed to listeners on $emit and $broadcast.

Listener lists are tombstoned rather than spliced on deregistration, so a
listener can deregister itself or another listener in the middle of a
dispatch without the next listener being skipped. Tombstones are compacted
out the next time the list is dispatched.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Callable

if TYPE_CHECKING:
    from digestx.scope import Scope

Deregister = Callable[[], None]

# Broadcast from a scope right before it is torn down.
DESTROY_EVENT = "$destroy"


class ScopeEvent:
    """Event delivered to every listener of one propagation."""

    __slots__ = ("name", "target_scope", "current_scope", "default_prevented")

    def __init__(self, name: str, target_scope: Scope) -> None:
        self.name = name
        self.target_scope = target_scope
        self.current_scope: Scope | None = None
        self.default_prevented = False

    def prevent_default(self) -> None:
        self.default_prevented = True

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name!r})"


class EmittedEvent(ScopeEvent):
    """An upward-propagating event. Listeners may halt it."""

    __slots__ = ("propagation_stopped",)

    def __init__(self, name: str, target_scope: Scope) -> None:
        super().__init__(name, target_scope)
        self.propagation_stopped = False

    def stop_propagation(self) -> None:
        """Listeners on the current scope still run; ancestors are skipped."""
        self.propagation_stopped = True


class ListenerSlots:
    """Listeners for one event name on one scope, in registration order.

    Each registration gets its own one-element cell. Deregistering empties
    that cell, so the same callable registered twice is removed one
    registration at a time.
    """

    __slots__ = ("_slots",)

    def __init__(self) -> None:
        self._slots: list[list[Callable | None]] = []

    def add(self, listener: Callable) -> Deregister:
        cell: list[Callable | None] = [listener]
        self._slots.append(cell)

        def _deregister() -> None:
            cell[0] = None

        return _deregister

    def dispatch(self, args: tuple, report: Callable[[BaseException, str], None]) -> None:
        slots = self._slots
        index = 0
        while index < len(slots):
            listener = slots[index][0]
            if listener is None:
                del slots[index]
                continue
            try:
                listener(*args)
            except Exception as exc:
                report(exc, "event listener")
            index += 1

    def __len__(self) -> int:
        return sum(1 for cell in self._slots if cell[0] is not None)
