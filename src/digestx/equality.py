"""Equality policy — decides whether a watched value is unchanged.

Two modes:
- identity (default): containers and arbitrary objects are compared by
  identity; immutable value types (None, numbers, strings, bytes, tuples,
  frozensets) are compared by value, since Python rebuilds them freely.
- value (value_eq=True): structural comparison that recurses into mappings,
  sequences and the attributes of plain class instances.

In both modes two NaNs are equal, so a watch on a NaN-producing expression
stabilizes instead of firing on every pass.
"""

from __future__ import annotations

import copy
import math
from collections.abc import Mapping, Sequence
from numbers import Number

_VALUE_TYPES = (str, bytes, Number, tuple, frozenset)
_TEXT_TYPES = (str, bytes, bytearray)


def is_nan(value: object) -> bool:
    return isinstance(value, float) and math.isnan(value)


def _is_value_type(value: object) -> bool:
    return value is None or isinstance(value, _VALUE_TYPES)


def are_equal(new_value: object, old_value: object, value_eq: bool = False) -> bool:
    """Return True if new_value counts as unchanged from old_value."""
    if value_eq:
        return deep_equal(new_value, old_value)
    if new_value is old_value:
        return True
    if is_nan(new_value) and is_nan(old_value):
        return True
    if _is_value_type(new_value) and _is_value_type(old_value):
        # True == 1 in Python, but a bool flipping to an int is a change.
        if isinstance(new_value, bool) != isinstance(old_value, bool):
            return False
        return bool(new_value == old_value)
    return False


def deep_equal(a: object, b: object, _seen: set | None = None) -> bool:
    """Structural equality, NaN-aware at every level.

    Instances of user classes that keep the default identity __eq__ are
    compared by their attributes (__dict__ and __slots__), so a deep copy of
    a plain object equals the original.
    """
    if a is b:
        return True
    if is_nan(a) and is_nan(b):
        return True
    if _seen is None:
        _seen = set()
    pair = (id(a), id(b))
    if pair in _seen:
        # Already being compared further up: a reference cycle.
        return True
    if isinstance(a, Mapping) and isinstance(b, Mapping):
        if a.keys() != b.keys():
            return False
        _seen.add(pair)
        return all(deep_equal(a[key], b[key], _seen) for key in a)
    if _is_sequence(a) and _is_sequence(b):
        if type(a) is not type(b) or len(a) != len(b):
            return False
        _seen.add(pair)
        return all(deep_equal(x, y, _seen) for x, y in zip(a, b))
    if type(a) is type(b) and _is_plain_instance(a):
        state_a, state_b = _object_state(a), _object_state(b)
        if state_a.keys() != state_b.keys():
            return False
        _seen.add(pair)
        return all(deep_equal(state_a[name], state_b[name], _seen) for name in state_a)
    if isinstance(a, bool) != isinstance(b, bool):
        return False
    return bool(a == b)


def _is_plain_instance(value: object) -> bool:
    cls = type(value)
    if cls.__module__ == "builtins" or cls.__eq__ is not object.__eq__:
        return False
    return hasattr(value, "__dict__") or any("__slots__" in klass.__dict__ for klass in cls.__mro__)


def _object_state(value: object) -> dict:
    """Attributes of an instance, from __dict__ and every __slots__ in its MRO."""
    state = dict(getattr(value, "__dict__", {}))
    for cls in type(value).__mro__:
        slots = cls.__dict__.get("__slots__", ())
        if isinstance(slots, str):
            slots = (slots,)
        for name in slots:
            if name not in ("__dict__", "__weakref__") and hasattr(value, name):
                state[name] = getattr(value, name)
    return state


def _is_sequence(value: object) -> bool:
    return isinstance(value, Sequence) and not isinstance(value, _TEXT_TYPES)


def clone_deep(value):
    """Snapshot a value so later in-place mutation of the original is detectable."""
    return copy.deepcopy(value)
