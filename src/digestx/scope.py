"""Scopes — hierarchical state containers observed by dirty checking.

A Scope holds arbitrary attributes (the observed state), a registry of
watches over that state, and event listeners. There is no dependency graph:
a digest re-evaluates every watch in the tree, pass after pass, until one
full pass finds nothing changed and no $evalAsync work is left.

Children created with new() read through to their parent's attributes until
they assign their own. Isolated children see none of their parent's
attributes but still share the root's queues and phase, so scheduling is
always tree-wide.

Exceptions from watch functions, listeners and queued tasks are reported to
the tree's exception handler and never interrupt the digest. Only
PhaseConflictError and DigestLimitError escape.
"""

from __future__ import annotations

import copy
import logging
from typing import Callable, Sequence

from digestx import _anchor
from digestx._anchor import APPLY_PHASE, DIGEST_PHASE, TreeAnchor
from digestx.collection import CollectionDiff
from digestx.equality import are_equal, clone_deep
from digestx.errors import DigestLimitError
from digestx.events import DESTROY_EVENT, Deregister, EmittedEvent, ListenerSlots, ScopeEvent
from digestx.scheduler import ManualScheduler, Scheduler
from digestx.watch import INITIAL, Watcher, WatchRegistry

logger = logging.getLogger("digestx.scope")

DEFAULT_TTL = 10

# Set per node by the engine. Together with the class attributes (watch,
# digest, phase, ...) these names cannot be used for scope state.
_ENGINE_ATTRIBUTES = frozenset(
    {"root", "parent", "_anchor", "_state_parent", "_watchers", "_listeners", "_children", "_destroyed"}
)

# ─── Diagnostic channel ──────────────────────────────────────────────────────


def _log_exception(exc: BaseException, cause: str) -> None:
    logger.error("Exception in %s", cause, exc_info=exc)


_exception_handler: _anchor.ExceptionHandler = _log_exception


def set_exception_handler(handler: _anchor.ExceptionHandler | None) -> None:
    """Set the default exception handler for root scopes built afterwards.

    The handler is called as handler(exc, cause) for every exception raised
    by a watch function, listener, or queued task. Pass None to restore the
    default, which logs to the "digestx.scope" logger.

        digestx.set_exception_handler(lambda exc, cause: errors.append(exc))
    """
    global _exception_handler
    _exception_handler = handler or _log_exception


class Scope:
    """A node in the state-observation tree.

    Constructing a Scope directly creates a root. Use new() for children.

    State lives in plain attributes. The engine's own names (root, parent,
    children, phase, destroyed and every method) are reserved: assigning
    to them raises AttributeError.

    Usage:
        scope = Scope()
        scope.name = "jane"
        scope.watch(lambda s: s.name.upper(), lambda new, old, s: setattr(s, "upper", new))
        scope.digest()
        scope.upper  # "JANE"
    """

    def __init__(
        self,
        *,
        scheduler: Scheduler | None = None,
        exception_handler: _anchor.ExceptionHandler | None = None,
        ttl: int = DEFAULT_TTL,
    ) -> None:
        anchor = TreeAnchor(
            scheduler if scheduler is not None else ManualScheduler(),
            exception_handler or _exception_handler,
            ttl,
        )
        self._init_node(anchor, root=self, parent=None, state_parent=None)

    def _init_node(self, anchor: TreeAnchor, root: Scope, parent: Scope | None, state_parent: Scope | None) -> None:
        self.__dict__.update(
            _anchor=anchor,
            _state_parent=state_parent,
            _watchers=WatchRegistry(),
            _listeners={},
            _children=[],
            _destroyed=False,
            root=root,
            parent=parent,
        )

    def __setattr__(self, name: str, value) -> None:
        if name in _ENGINE_ATTRIBUTES or hasattr(type(self), name):
            raise AttributeError(f"{name!r} is reserved by Scope and cannot hold state")
        object.__setattr__(self, name, value)

    def __getattr__(self, name: str):
        # Only reached when normal lookup fails: fall through to the parent.
        state_parent = self.__dict__.get("_state_parent")
        if state_parent is None:
            raise AttributeError(f"{type(self).__name__!r} object has no attribute {name!r}")
        return getattr(state_parent, name)

    @property
    def phase(self) -> str | None:
        """Current phase: "$digest", "$apply" or None. The same from every scope of a tree."""
        return self._anchor.phase

    @property
    def children(self) -> tuple[Scope, ...]:
        return tuple(self._children)

    @property
    def destroyed(self) -> bool:
        return self._destroyed

    # ─── Watches ─────────────────────────────────────────────────────────────

    def watch(self, watch_fn: Callable[[Scope], object], listener: Callable | None = None, value_eq: bool = False) -> Deregister:
        """Register a watch. Returns a function that removes it.

        watch_fn(scope) is evaluated on every digest pass. When its result
        differs from the last one, listener(new_value, old_value, scope) is
        called; on the first call old_value is new_value. With value_eq the
        comparison is structural and the last value is kept as a deep copy.
        """
        watcher = Watcher(watch_fn, listener, value_eq)
        self._watchers.add(watcher)
        self._anchor.last_dirty_watch = None

        def _deregister() -> None:
            if self._watchers.remove(watcher):
                self._anchor.last_dirty_watch = None

        return _deregister

    def watch_group(self, watch_fns: Sequence[Callable[[Scope], object]], listener: Callable) -> Deregister:
        """Watch several values, calling listener at most once per digest pass.

        listener(new_values, old_values, scope) receives lists parallel to
        watch_fns. On the first call both arguments are the same list.
        """
        new_values: list = [None] * len(watch_fns)
        old_values: list = [None] * len(watch_fns)
        first_run = True
        reaction_scheduled = False

        if not watch_fns:
            should_call = True

            def _call_once(scope: Scope) -> None:
                if should_call:
                    listener(new_values, new_values, self)

            self.eval_async(_call_once)

            def _cancel() -> None:
                nonlocal should_call
                should_call = False

            return _cancel

        def _group_listener(scope: Scope) -> None:
            nonlocal first_run, reaction_scheduled
            try:
                if first_run:
                    first_run = False
                    listener(new_values, new_values, self)
                else:
                    listener(new_values, old_values, self)
            finally:
                reaction_scheduled = False

        def _member(index: int) -> Callable:
            def _on_change(new_value, old_value, scope) -> None:
                nonlocal reaction_scheduled
                new_values[index] = new_value
                old_values[index] = old_value
                if not reaction_scheduled:
                    reaction_scheduled = True
                    self.eval_async(_group_listener)

            return _on_change

        deregisters = [self.watch(fn, _member(i)) for i, fn in enumerate(watch_fns)]

        def _deregister_all() -> None:
            for deregister in deregisters:
                deregister()

        return _deregister_all

    def watch_collection(self, watch_fn: Callable[[Scope], object], listener: Callable) -> Deregister:
        """Watch the shallow contents of a sequence or mapping.

        Fires when items are added, removed, replaced or reordered, without
        the cost of a deep copy. Non-collection values behave as in watch().
        listener receives a shallow copy of the previous value as old_value.
        """
        differ = CollectionDiff()
        new_value: object = None
        previous: object = None
        first_run = True

        def _changes(scope: Scope) -> int:
            nonlocal new_value
            new_value = watch_fn(scope)
            return differ.diff(new_value)

        def _on_change(count, old_count, scope) -> None:
            nonlocal previous, first_run
            if first_run:
                first_run = False
                listener(new_value, new_value, self)
            else:
                listener(new_value, previous, self)
            previous = copy.copy(new_value)

        return self.watch(_changes, _on_change)

    # ─── Digest ──────────────────────────────────────────────────────────────

    def digest(self) -> None:
        """Evaluate watches in this scope and its descendants until stable.

        Raises PhaseConflictError if a digest or apply is already running in
        the tree, and DigestLimitError if the tree has not stabilized after
        the configured number of iterations.
        """
        anchor = self._anchor
        anchor.begin_phase(DIGEST_PHASE)
        try:
            anchor.last_dirty_watch = None

            if anchor.apply_async_handle is not None:
                anchor.apply_async_handle.cancel()
                self._flush_apply_async()

            ttl = anchor.ttl
            while True:
                while anchor.async_queue:
                    scope, expression = anchor.async_queue.popleft()
                    try:
                        scope.eval(expression)
                    except Exception as exc:
                        anchor.report(exc, "$evalAsync task")

                dirty = self._digest_once()
                if not (dirty or anchor.async_queue):
                    break
                ttl -= 1
                if ttl <= 0:
                    logger.warning("Digest did not stabilize after %d iterations", anchor.ttl)
                    raise DigestLimitError(anchor.ttl)
        finally:
            anchor.clear_phase()

        while anchor.post_digest_queue:
            callback = anchor.post_digest_queue.popleft()
            try:
                callback()
            except Exception as exc:
                anchor.report(exc, "$$postDigest callback")

    def _digest_once(self) -> bool:
        """One sweep over every watch in this subtree. Returns whether any fired."""
        anchor = self._anchor
        dirty = False

        def _visit_scope(scope: Scope) -> bool:
            def _visit(watcher: Watcher) -> bool:
                nonlocal dirty
                old_value = watcher.last
                try:
                    new_value = watcher.watch_fn(scope)
                    changed = not are_equal(new_value, old_value, watcher.value_eq)
                    if changed:
                        last = clone_deep(new_value) if watcher.value_eq else new_value
                except Exception as exc:
                    anchor.report(exc, "watch function")
                    return True
                if changed:
                    anchor.last_dirty_watch = watcher
                    watcher.last = last
                    try:
                        watcher.listener(new_value, new_value if old_value is INITIAL else old_value, scope)
                    except Exception as exc:
                        anchor.report(exc, "watch listener")
                    dirty = True
                elif anchor.last_dirty_watch is watcher:
                    # Nothing has been dirty since this watch was last seen.
                    return False
                return True

            scope._watchers.sweep(_visit)
            return True

        self._every_scope(_visit_scope)
        return dirty

    def _every_scope(self, fn: Callable[[Scope], bool]) -> bool:
        """Pre-order walk of this subtree while fn returns True."""
        if self._destroyed or not fn(self):
            return False
        for child in list(self._children):
            if child._destroyed:
                continue
            if not child._every_scope(fn):
                return False
        return True

    # ─── Evaluation & scheduling ─────────────────────────────────────────────

    def eval(self, expression: Callable, locals: object = None):
        """Call expression(scope), or expression(scope, locals), and return its result."""
        if locals is None:
            return expression(self)
        return expression(self, locals)

    def apply(self, expression: Callable):
        """Evaluate expression, then digest the whole tree from the root.

        The digest runs even when expression raises.
        """
        self._anchor.begin_phase(APPLY_PHASE)
        try:
            return self.eval(expression)
        finally:
            self._anchor.clear_phase()
            self.root.digest()

    def eval_async(self, expression: Callable) -> None:
        """Evaluate expression later in the current digest, or on the next tick.

        Outside of any phase, a digest of the whole tree is scheduled so the
        expression runs even if nobody digests explicitly.
        """
        anchor = self._anchor
        if anchor.phase is None and not anchor.async_queue:
            anchor.scheduler.call_soon(self._digest_if_async_pending)
        anchor.async_queue.append((self, expression))

    def _digest_if_async_pending(self) -> None:
        if self._anchor.async_queue:
            self.root.digest()

    def apply_async(self, expression: Callable) -> None:
        """Evaluate expression in an apply on a later tick.

        Calls made before that tick (or before an explicit digest, which
        flushes them early) collapse into a single apply.
        """
        anchor = self._anchor
        anchor.apply_async_queue.append(lambda: self.eval(expression))
        if anchor.apply_async_handle is None:
            anchor.apply_async_handle = anchor.scheduler.call_soon(self._apply_async_tick)

    def _apply_async_tick(self) -> None:
        self.apply(lambda scope: self._flush_apply_async())

    def _flush_apply_async(self) -> None:
        anchor = self._anchor
        while anchor.apply_async_queue:
            task = anchor.apply_async_queue.popleft()
            try:
                task()
            except Exception as exc:
                anchor.report(exc, "$applyAsync task")
        anchor.apply_async_handle = None

    def post_digest(self, callback: Callable[[], object]) -> None:
        """Run callback once, after the next digest has stabilized."""
        self._anchor.post_digest_queue.append(callback)

    # ─── Hierarchy ───────────────────────────────────────────────────────────

    def new(self, isolated: bool = False, parent: Scope | None = None) -> Scope:
        """Create a child scope.

        A non-isolated child reads through to this scope's attributes.
        parent, when given, is where the child is attached in the hierarchy
        (and so which digests and broadcasts reach it); it defaults to self.
        """
        parent = parent or self
        child = object.__new__(type(self))
        child._init_node(
            parent._anchor,
            root=parent.root,
            parent=parent,
            state_parent=None if isolated else self,
        )
        parent._children.append(child)
        return child

    def destroy(self) -> None:
        """Broadcast $destroy, detach from the parent and drop watches and listeners."""
        self.broadcast(DESTROY_EVENT)
        if self.parent is not None:
            siblings = self.parent._children
            for index, sibling in enumerate(siblings):
                if sibling is self:
                    del siblings[index]
                    break
        self._watchers.clear()
        self.__dict__.update(_listeners={}, _destroyed=True)

    # ─── Events ──────────────────────────────────────────────────────────────

    def on(self, name: str, listener: Callable) -> Deregister:
        """Listen for name on this scope. Returns a function that removes the listener.

        listener(event, *args) receives the arguments given to emit/broadcast.
        """
        slots = self._listeners.get(name)
        if slots is None:
            slots = self._listeners[name] = ListenerSlots()
        return slots.add(listener)

    def emit(self, name: str, *args) -> EmittedEvent:
        """Notify listeners on this scope and then each ancestor up to the root."""
        event = EmittedEvent(name, self)
        scope: Scope | None = self
        while scope is not None:
            event.current_scope = scope
            scope._fire(name, (event, *args))
            if event.propagation_stopped:
                break
            scope = scope.parent
        event.current_scope = None
        return event

    def broadcast(self, name: str, *args) -> ScopeEvent:
        """Notify listeners on this scope and every descendant, in pre-order."""
        event = ScopeEvent(name, self)
        listener_args = (event, *args)

        def _fire_on(scope: Scope) -> bool:
            event.current_scope = scope
            scope._fire(name, listener_args)
            return True

        self._every_scope(_fire_on)
        event.current_scope = None
        return event

    def _fire(self, name: str, listener_args: tuple) -> None:
        slots = self._listeners.get(name)
        if slots is not None:
            slots.dispatch(listener_args, self._anchor.report)

    def __repr__(self) -> str:
        kind = "root" if self.parent is None else "child"
        return f"Scope({kind}, watchers={len(self._watchers)}, children={len(self._children)})"
