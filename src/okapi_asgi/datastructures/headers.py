# Copyright 2025 Softwell S.r.l.
# Licensed under the Apache License, Version 2.0

"""
Case-insensitive HTTP headers with multi-value support.

HTTP header names are case-insensitive per RFC 7230 and the same header can
appear multiple times (e.g., Accept, Set-Cookie). ASGI provides headers as
``list[tuple[bytes, bytes]]`` with Latin-1 encoding::

    [(b"Content-Type", b"application/json"), (b"X-Custom", b"value")]
                        ↓
    [("content-type", "application/json"), ("x-custom", "value")]
                        ↓
    headers.get("CONTENT-TYPE") → "application/json"

Also provides ``parse_cookie_header`` for the ``Cookie`` request header.

Design Notes
============
- Uses ``__slots__`` for memory efficiency
- Headers is immutable (read-only); response headers stay a list of tuples
- Names normalized to lowercase, values preserved as-is
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Iterator
from urllib.parse import unquote

__all__ = ["Headers", "headers_from_scope", "parse_cookie_header"]


class Headers:
    """
    Immutable, case-insensitive HTTP headers with multi-value support.

    Example:
        >>> headers = Headers([(b"Content-Type", b"application/json")])
        >>> headers.get("content-type")
        'application/json'
        >>> headers.getlist("accept")
        []
    """

    __slots__ = ("_headers",)

    def __init__(self, raw_headers: list[tuple[bytes, bytes]]) -> None:
        self._headers: list[tuple[str, str]] = [
            (name.decode("latin-1").lower(), value.decode("latin-1"))
            for name, value in raw_headers
        ]

    def get(self, key: str, default: str | None = None) -> str | None:
        """Get the first value for a header (case-insensitive)."""
        key_lower = key.lower()
        for name, value in self._headers:
            if name == key_lower:
                return value
        return default

    def getlist(self, key: str) -> list[str]:
        """Get all values for a header (case-insensitive)."""
        key_lower = key.lower()
        return [value for name, value in self._headers if name == key_lower]

    def keys(self) -> list[str]:
        """Return unique header names (lowercase), in order of first occurrence."""
        seen: set[str] = set()
        result: list[str] = []
        for name, _ in self._headers:
            if name not in seen:
                seen.add(name)
                result.append(name)
        return result

    def values(self) -> list[str]:
        return [value for _, value in self._headers]

    def items(self) -> list[tuple[str, str]]:
        """Return all (name, value) pairs, including duplicates."""
        return list(self._headers)

    def __getitem__(self, key: str) -> str:
        value = self.get(key)
        if value is None:
            raise KeyError(key)
        return value

    def __contains__(self, key: object) -> bool:
        if not isinstance(key, str):
            return False
        return self.get(key) is not None

    def __iter__(self) -> Iterator[str]:
        return iter(self.keys())

    def __len__(self) -> int:
        return len(self._headers)

    def __repr__(self) -> str:
        return f"Headers({self._headers!r})"


def headers_from_scope(scope: Mapping[str, Any]) -> Headers:
    """Create Headers instance from ASGI scope."""
    return Headers(scope.get("headers", []))


def parse_cookie_header(value: str | None) -> dict[str, str]:
    """Parse a ``Cookie`` header into a dict. Later duplicates are ignored.

    Example:
        >>> parse_cookie_header("session=abc; theme=dark")
        {'session': 'abc', 'theme': 'dark'}
    """
    cookies: dict[str, str] = {}
    if not value:
        return cookies
    for chunk in value.split(";"):
        if "=" in chunk:
            key, val = chunk.split("=", 1)
        else:
            key, val = "", chunk
        key, val = key.strip(), val.strip()
        if len(val) >= 2 and val[0] == val[-1] == '"':
            val = val[1:-1]
        if key and key not in cookies:
            cookies[key] = unquote(val)
    return cookies
