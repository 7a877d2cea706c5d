"""The "not yet loaded" marker.

Every storage slot starts out holding :data:`UNLOADED`. It is the only
test for "has this been fetched yet": payloads may legitimately be
empty, ``None``, ``0`` or ``False``, so emptiness and falsiness say
nothing about load state.
"""

from __future__ import annotations

from typing import Any


class _Unloaded:
    """Type of the :data:`UNLOADED` singleton."""

    __slots__ = ()
    _instance: "_Unloaded | None" = None

    def __new__(cls) -> "_Unloaded":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNLOADED"

    def __copy__(self) -> "_Unloaded":
        return self

    def __deepcopy__(self, memo: dict) -> "_Unloaded":
        return self


UNLOADED: Any = _Unloaded()


def is_unloaded(value: Any) -> bool:
    """Return ``True`` iff *value* is the :data:`UNLOADED` marker."""
    return value is UNLOADED
