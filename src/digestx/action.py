"""Actions and transactions — scope mutations followed by a digest.

Wrapping mutations in an @action(scope) or `with transaction(scope)` runs
them inside the apply phase and digests the whole tree once they finish,
the same way Scope.apply does for a single expression.
"""

from __future__ import annotations

import functools
from contextlib import contextmanager
from typing import TYPE_CHECKING, Callable, ParamSpec, TypeVar

from digestx._anchor import APPLY_PHASE

if TYPE_CHECKING:
    from digestx.scope import Scope

P = ParamSpec("P")
R = TypeVar("R")


def action(scope: Scope) -> Callable[[Callable[P, R]], Callable[P, R]]:
    """Decorator factory: run fn through scope.apply.

    Usage:
        @action(scope)
        def rename(first, last):
            scope.first = first
            scope.last = last
            # watches see both changes in the same digest
    """

    def decorator(fn: Callable[P, R]) -> Callable[P, R]:
        @functools.wraps(fn)
        def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            return scope.apply(lambda _scope: fn(*args, **kwargs))

        return wrapper

    return decorator


@contextmanager
def transaction(scope: Scope):
    """Context manager form of Scope.apply.

    Usage:
        with transaction(scope):
            scope.a = 1
            scope.b = 2
        # the tree has been digested here, even if the block raised
    """
    anchor = scope._anchor
    anchor.begin_phase(APPLY_PHASE)
    try:
        yield scope
    finally:
        anchor.clear_phase()
        scope.root.digest()
