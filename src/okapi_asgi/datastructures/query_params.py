# Copyright 2025 Softwell S.r.l.
# Licensed under the Apache License, Version 2.0

"""
Parsed query string parameters with multi-value support.

Query parameters are case-sensitive (unlike headers). Parsing uses
``urllib.parse.parse_qsl`` with blank values kept, so ``?key=`` yields ``""``
rather than dropping the key::

    "name=john&tags=python&tags=web&empty="
                        ↓
    {"name": ["john"], "tags": ["python", "web"], "empty": [""]}

The same container backs URL-encoded form fields (see ``FormData``).
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any, Iterator
from urllib.parse import parse_qsl

__all__ = ["QueryParams", "query_params_from_scope"]


class QueryParams:
    """
    Ordered multi-value mapping of string parameters.

    Example:
        >>> params = QueryParams(b"name=john&tags=python&tags=web")
        >>> params.get("name")
        'john'
        >>> params.getlist("tags")
        ['python', 'web']
        >>> QueryParams("key=&other=value").get("key")
        ''
    """

    __slots__ = ("_params",)

    def __init__(
        self, source: bytes | str | Iterable[tuple[str, str]] | None = None
    ) -> None:
        if source is None:
            pairs: Iterable[tuple[str, str]] = ()
        elif isinstance(source, (bytes, str)):
            if isinstance(source, bytes):
                source = source.decode("latin-1")
            pairs = parse_qsl(source, keep_blank_values=True)
        else:
            pairs = source
        self._params: dict[str, list[str]] = {}
        for key, value in pairs:
            self._params.setdefault(key, []).append(value)

    def get(self, key: str, default: str | None = None) -> str | None:
        """Get the first value for a parameter."""
        values = self._params.get(key)
        if values:
            return values[0]
        return default

    def getlist(self, key: str) -> list[str]:
        """Get all values for a parameter (e.g., "?tag=a&tag=b")."""
        return list(self._params.get(key, []))

    def keys(self) -> list[str]:
        return list(self._params.keys())

    def values(self) -> list[str]:
        return [v[0] for v in self._params.values() if v]

    def items(self) -> list[tuple[str, str]]:
        """Return (name, first_value) pairs."""
        return [(k, v[0]) for k, v in self._params.items() if v]

    def multi_items(self) -> list[tuple[str, str]]:
        """Return all (name, value) pairs including duplicates.

        Example:
            >>> QueryParams("a=1&a=2&b=3").multi_items()
            [('a', '1'), ('a', '2'), ('b', '3')]
        """
        return [(key, value) for key, values in self._params.items() for value in values]

    def append(self, key: str, value: str) -> None:
        """Add a value, keeping any existing ones."""
        self._params.setdefault(key, []).append(value)

    def to_dict(self) -> dict[str, list[str]]:
        """Return a copy as ``{name: [values]}``."""
        return {key: list(values) for key, values in self._params.items()}

    def __getitem__(self, key: str) -> str:
        value = self.get(key)
        if value is None:
            raise KeyError(key)
        return value

    def __contains__(self, key: object) -> bool:
        if not isinstance(key, str):
            return False
        return key in self._params

    def __iter__(self) -> Iterator[str]:
        return iter(self._params)

    def __len__(self) -> int:
        return len(self._params)

    def __bool__(self) -> bool:
        return bool(self._params)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self._params!r})"


def query_params_from_scope(scope: Mapping[str, Any]) -> QueryParams:
    """Create QueryParams instance from ASGI scope."""
    return QueryParams(scope.get("query_string", b""))
