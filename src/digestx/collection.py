"""Collection diff — shallow change detection for sequences and mappings.

A CollectionDiff keeps a shadow copy of the last value it saw and a change
counter. diff() rescans the new value against the shadow, bumps the counter
for every difference it finds and brings the shadow up to date. Callers only
care whether the counter moved, which makes the counter itself a cheap value
for an ordinary identity watch to observe.
"""

from __future__ import annotations

from collections.abc import Mapping

from digestx.equality import are_equal, is_nan

_TEXT_TYPES = (str, bytes, bytearray)
_MISSING = object()


def is_array_like(value: object) -> bool:
    """Sequences and other index-addressable objects with a length.

    Strings are scalars here, and a mapping is never array-like even when it
    has a "length" key or a __len__.
    """
    if value is None or isinstance(value, _TEXT_TYPES) or isinstance(value, Mapping):
        return False
    if not (hasattr(value, "__len__") and hasattr(value, "__getitem__")):
        return False
    try:
        length = len(value)
        if length > 0:
            value[length - 1]
    except (TypeError, KeyError, IndexError):
        return False
    return True


def _same_item(new_item: object, old_item: object) -> bool:
    if is_nan(new_item) and is_nan(old_item):
        return True
    return old_item is not _MISSING and are_equal(new_item, old_item)


class CollectionDiff:
    """Shadow state for one collection watch."""

    __slots__ = ("shadow", "change_count")

    def __init__(self) -> None:
        self.shadow: object = _MISSING
        self.change_count = 0

    def diff(self, new_value: object) -> int:
        if is_array_like(new_value):
            self._diff_array(new_value)
        elif isinstance(new_value, Mapping):
            self._diff_mapping(new_value)
        else:
            if not are_equal(new_value, self.shadow):
                self.change_count += 1
            self.shadow = new_value
        return self.change_count

    def _diff_array(self, new_value) -> None:
        if not isinstance(self.shadow, list):
            self.change_count += 1
            self.shadow = []
        shadow = self.shadow
        length = len(new_value)
        if length != len(shadow):
            self.change_count += 1
            if length < len(shadow):
                del shadow[length:]
            else:
                shadow.extend([_MISSING] * (length - len(shadow)))
        for index in range(length):
            item = new_value[index]
            if not _same_item(item, shadow[index]):
                self.change_count += 1
                shadow[index] = item

    def _diff_mapping(self, new_value: Mapping) -> None:
        if not isinstance(self.shadow, dict):
            self.change_count += 1
            self.shadow = {}
        shadow = self.shadow
        for key, item in new_value.items():
            if not _same_item(item, shadow.get(key, _MISSING)):
                self.change_count += 1
                shadow[key] = item
        if len(shadow) > len(new_value):
            self.change_count += 1
            for key in [key for key in shadow if key not in new_value]:
                del shadow[key]
