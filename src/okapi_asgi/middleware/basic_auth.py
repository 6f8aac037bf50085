# Copyright 2025 Softwell S.r.l.
# Licensed under the Apache License, Version 2.0

"""HTTP Basic authentication middleware.

Compares the ``Authorization: Basic ...`` credentials with the configured
username and password in constant time. On failure replies 401 with a
``WWW-Authenticate: Basic realm="..."`` challenge and the text
"Unauthorized". On success the username is stored in the context under
``context_key``.

Config:
    username (str): Expected username.
    password (str): Expected password.
    realm (str): Challenge realm. Default: "Okapi".
    context_key (str): Store key for the username. Default: "username".
"""

from __future__ import annotations

import base64
import binascii
import hmac
from typing import TYPE_CHECKING, Any

from . import BaseMiddleware

if TYPE_CHECKING:
    from ..context import Context
    from ..types import Handler

__all__ = ["BasicAuth", "parse_basic_auth"]


def parse_basic_auth(header: str) -> tuple[str, str] | None:
    """Decode a Basic Authorization header into (username, password)."""
    scheme, _, encoded = header.partition(" ")
    if scheme.lower() != "basic" or not encoded:
        return None
    try:
        decoded = base64.b64decode(encoded.strip(), validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        return None
    username, sep, password = decoded.partition(":")
    if not sep:
        return None
    return username, password


class BasicAuth(BaseMiddleware):
    middleware_name = "basic_auth"
    middleware_order = 400
    middleware_default = False

    __slots__ = ("username", "password", "realm", "context_key")

    def __init__(
        self,
        username: str = "",
        password: str = "",
        realm: str = "Okapi",
        context_key: str = "username",
        **kwargs: Any,
    ) -> None:
        super().__init__(**kwargs)
        self.username = username
        self.password = password
        self.realm = realm or "Okapi"
        self.context_key = context_key or "username"

    def _valid(self, credentials: tuple[str, str] | None) -> bool:
        if credentials is None:
            return False
        username, password = credentials
        user_ok = hmac.compare_digest(username.encode(), self.username.encode())
        password_ok = hmac.compare_digest(password.encode(), self.password.encode())
        return user_ok and password_ok

    async def dispatch(self, ctx: Context, call_next: Handler) -> None:
        credentials = parse_basic_auth(ctx.header("authorization"))
        if not self._valid(credentials):
            ctx.set_header("www-authenticate", f'Basic realm="{self.realm}"')
            ctx.text(401, "Unauthorized")
            return
        assert credentials is not None
        ctx.set(self.context_key, credentials[0])
        await call_next(ctx)
