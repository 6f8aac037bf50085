# Copyright 2025 Softwell S.r.l.
# Licensed under the Apache License, Version 2.0

"""Small helpers shared across okapi-asgi modules."""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any

__all__ = [
    "REDACTED",
    "SENSITIVE_HEADERS",
    "SENSITIVE_PARAMS",
    "redact_headers",
    "redact_params",
    "split_and_strip",
    "real_ip",
    "join_paths",
]

REDACTED = "[REDACTED]"

SENSITIVE_HEADERS = frozenset(
    {
        "authorization",
        "cookie",
        "set-cookie",
        "x-api-key",
        "x-auth-token",
        "x-csrf-token",
        "proxy-authorization",
    }
)

SENSITIVE_PARAMS = frozenset(
    {"token", "api_key", "apikey", "access_token", "password", "secret"}
)


def split_and_strip(
    value: str | list[str] | None, default: list[str] | None = None
) -> list[str]:
    """Split comma-separated string and strip whitespace from each item.

    If value is already a list, returns a copy. If None, returns default.
    Empty items are dropped.

    Examples:
        split_and_strip("a, b, c")  # ["a", "b", "c"]
        split_and_strip(["x", "y"])  # ["x", "y"]
        split_and_strip(None, ["default"])  # ["default"]
    """
    if value is None:
        return list(default) if default is not None else []
    if isinstance(value, str):
        return [v.strip() for v in value.split(",") if v.strip()]
    return list(value)


def redact_headers(headers: Iterable[tuple[str, str]]) -> dict[str, str]:
    """Return headers as a dict with sensitive values replaced."""
    return {
        name: REDACTED if name.lower() in SENSITIVE_HEADERS else value
        for name, value in headers
    }


def redact_params(params: Iterable[tuple[str, str]]) -> dict[str, str]:
    """Return query params as a dict with password-like values replaced."""
    return {
        name: REDACTED if name.lower() in SENSITIVE_PARAMS else value
        for name, value in params
    }


def real_ip(headers: Any, client: tuple[str, int] | None) -> str:
    """Client address: first X-Forwarded-For hop, X-Real-IP, or the peer.

    ``headers`` is any object with a case-insensitive ``get``.
    """
    forwarded = headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real = headers.get("x-real-ip")
    if real and real.strip():
        return real.strip()
    return client[0] if client else ""


def join_paths(base: str, path: str) -> str:
    """Join two URL paths with exactly one slash between them.

    Example:
        join_paths("/api/", "/books")  # "/api/books"
    """
    joined = base.rstrip("/") + "/" + path.lstrip("/")
    while "//" in joined:
        joined = joined.replace("//", "/")
    if not joined.startswith("/"):
        joined = "/" + joined
    return joined
