"""Textual integration for digestx. Opt-in — requires textual.

Lets a Textual app act as the host event loop of a scope tree, and lets
watch listeners update widgets without tripping over a half-built DOM.
"""

import logging
import threading
from contextlib import contextmanager

from textual.css.query import NoMatches

from digestx.scheduler import CallHandle

logger = logging.getLogger("digestx.textual")

# Module-owned pause state — keyed by id(app) so multiple apps work in tests.
_paused_apps: set[int] = set()


class TextualScheduler:
    """Schedules deferred digests on a Textual app's message loop.

    Calls from a background thread are marshaled with call_from_thread.
    """

    def __init__(self, app) -> None:
        self._app = app
        self._main = threading.get_ident()

    def call_soon(self, callback) -> CallHandle:
        handle = CallHandle(callback)
        if threading.get_ident() != self._main:
            self._app.call_from_thread(self._app.call_later, handle)
        else:
            self._app.call_later(handle)
        return handle


@contextmanager
def pause(app):
    """Suspend guarded listeners during widget replacement."""
    key = id(app)
    _paused_apps.add(key)
    try:
        yield
    finally:
        _paused_apps.discard(key)


def is_safe(app) -> bool:
    """Is the widget tree in a queryable state?"""
    return app.is_running and id(app) not in _paused_apps


def watch(app, scope, watch_fn, listener, value_eq=False):
    """scope.watch() whose listener safely touches Textual widgets.

    The listener is skipped while the app is paused or not running, and
    NoMatches from widget queries is dropped instead of being reported.
    The watch itself keeps tracking values either way.
    """

    def _guarded(new_value, old_value, watched_scope):
        if not is_safe(app):
            return
        try:
            listener(new_value, old_value, watched_scope)
        except NoMatches:
            logger.debug("Widget query found nothing; listener skipped")

    return scope.watch(watch_fn, _guarded, value_eq)
