"""digestx: dirty-checking scopes for Python."""

from importlib.metadata import version as _version

__version__ = _version("digestx")

from digestx.errors import DigestError, PhaseConflictError, DigestLimitError
from digestx.equality import are_equal, deep_equal
from digestx.collection import CollectionDiff
from digestx.events import DESTROY_EVENT, ScopeEvent, EmittedEvent
from digestx.scheduler import ManualScheduler, AsyncioScheduler
from digestx.scope import Scope, set_exception_handler
from digestx.action import action, transaction
# textual NOT auto-imported — opt-in only

__all__ = [
    "Scope",
    "set_exception_handler",
    "DigestError",
    "PhaseConflictError",
    "DigestLimitError",
    "are_equal",
    "deep_equal",
    "CollectionDiff",
    "DESTROY_EVENT",
    "ScopeEvent",
    "EmittedEvent",
    "ManualScheduler",
    "AsyncioScheduler",
    "action",
    "transaction",
]
