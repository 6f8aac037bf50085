# Copyright 2025 Softwell S.r.l.
# Licensed under the Apache License, Version 2.0

"""
Request-scoped key-value store with copy-on-write semantics.

Middlewares use the store to pass values forward along the chain (the
authenticated user, forwarded JWT claims, a request id). Every ``set``
publishes a new immutable mapping instead of mutating the current one, so a
``snapshot()`` or a ``copy()`` taken earlier never observes later writes::

    store = Store()
    store.set("user", "alice")
    frozen = store.snapshot()
    store.set("user", "bob")
    frozen["user"]          # "alice"
    store.get("user")       # "bob"

Design Notes
============
- Uses ``__slots__``; the only slot holds a read-only ``MappingProxyType``
- ``copy()`` is O(1): the two stores share the mapping until one writes
- Keys are strings; values are arbitrary
"""

from __future__ import annotations

from types import MappingProxyType
from typing import Any, Iterator, Mapping

__all__ = ["Store"]

_EMPTY: Mapping[str, Any] = MappingProxyType({})


class Store:
    """Copy-on-write string-keyed store.

    Example:
        >>> store = Store()
        >>> store.set("user_id", 123)
        >>> store.get("user_id")
        123
        >>> "user_id" in store
        True
    """

    __slots__ = ("_data",)

    def __init__(self, initial: Mapping[str, Any] | None = None) -> None:
        self._data: Mapping[str, Any] = (
            MappingProxyType(dict(initial)) if initial else _EMPTY
        )

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        data = dict(self._data)
        data[key] = value
        self._data = MappingProxyType(data)

    def delete(self, key: str) -> None:
        if key in self._data:
            data = dict(self._data)
            del data[key]
            self._data = MappingProxyType(data)

    def snapshot(self) -> Mapping[str, Any]:
        """Return the current read-only mapping."""
        return self._data

    def copy(self) -> Store:
        clone = Store()
        clone._data = self._data
        return clone

    def keys(self) -> list[str]:
        return list(self._data)

    def __contains__(self, key: object) -> bool:
        return key in self._data

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __repr__(self) -> str:
        return f"Store({dict(self._data)!r})"
