# Copyright 2025 Softwell S.r.l.
# Licensed under the Apache License, Version 2.0

"""CORS (Cross-Origin Resource Sharing) middleware.

Adds CORS headers to responses for allowed origins and answers preflight
OPTIONS requests with 204. Requests from origins that are not allowed pass
through unchanged (the browser then blocks the response).

Preflight requests usually hit a path without an OPTIONS route: the
application runs its own middleware chain for them, so installing this
middleware at application level is enough.

Config:
    allow_origins (list|str): Origins allowed. Default: ["*"]
    allow_methods (list|str): HTTP methods allowed. Default: echo the request.
    allow_headers (list|str): Request headers allowed. Default: echo the request.
    allow_credentials (bool): Allow credentials (cookies). Default: False
    expose_headers (list|str): Response headers to expose. Default: []
    max_age (int): Preflight cache time in seconds. Default: 0 (not sent)

Note:
    The request origin is always echoed back (never "*"), so credentials
    work with wildcard origins too. ``Vary: Origin`` is added.

Example::

    [middleware.cors]
    allow_origins = ["https://example.com", "https://app.example.com"]
    allow_credentials = true
    max_age = 3600
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from . import BaseMiddleware
from ..utils import split_and_strip

if TYPE_CHECKING:
    from ..context import Context
    from ..types import Handler


class CORSMiddleware(BaseMiddleware):
    """CORS middleware.

    Attributes:
        allow_origins: List of allowed origins ("*" allows any).
        allow_methods: Methods sent on preflight; empty echoes the request.
        allow_headers: Headers sent on preflight; empty echoes the request.
        allow_credentials: Whether to allow credentials.
        expose_headers: List of headers to expose to browser.
        max_age: Preflight response cache time in seconds.

    Class Attributes:
        middleware_name: "cors" - identifier for config.
        middleware_order: 300 - runs before authentication so preflights pass.
        middleware_default: False - disabled by default.
    """

    middleware_name = "cors"
    middleware_order = 300
    middleware_default = False

    __slots__ = (
        "allow_origins",
        "allow_methods",
        "allow_headers",
        "allow_credentials",
        "expose_headers",
        "max_age",
    )

    def __init__(
        self,
        allow_origins: str | list[str] | None = None,
        allow_methods: str | list[str] | None = None,
        allow_headers: str | list[str] | None = None,
        allow_credentials: bool = False,
        expose_headers: str | list[str] | None = None,
        max_age: int = 0,
        **kwargs: Any,
    ) -> None:
        super().__init__(**kwargs)
        self.allow_origins = split_and_strip(allow_origins, ["*"])
        self.allow_methods = [m.upper() for m in split_and_strip(allow_methods)]
        self.allow_headers = split_and_strip(allow_headers)
        self.allow_credentials = allow_credentials
        self.expose_headers = split_and_strip(expose_headers)
        self.max_age = max_age

    def is_allowed(self, origin: str | None) -> bool:
        if not origin:
            return False
        return any(allowed == "*" or allowed == origin for allowed in self.allow_origins)

    def cors_headers(self, ctx: Context, origin: str) -> list[tuple[str, str]]:
        """Headers for an allowed origin."""
        headers = [("access-control-allow-origin", origin), ("vary", "Origin")]
        if self.allow_credentials:
            headers.append(("access-control-allow-credentials", "true"))

        if self.allow_headers:
            headers.append(("access-control-allow-headers", ", ".join(self.allow_headers)))
        else:
            requested = ctx.header("access-control-request-headers")
            if requested:
                headers.append(("access-control-allow-headers", requested))

        if self.allow_methods:
            headers.append(("access-control-allow-methods", ", ".join(self.allow_methods)))
        else:
            requested = ctx.header("access-control-request-method")
            if requested:
                headers.append(("access-control-allow-methods", requested))

        if self.expose_headers:
            headers.append(("access-control-expose-headers", ", ".join(self.expose_headers)))
        if self.max_age > 0:
            headers.append(("access-control-max-age", str(self.max_age)))
        return headers

    async def dispatch(self, ctx: Context, call_next: Handler) -> None:
        origin = ctx.header("origin")
        if not self.is_allowed(origin):
            await call_next(ctx)
            return

        for name, value in self.cors_headers(ctx, origin):
            if name == "vary":
                ctx.response.add_header(name, value)
            else:
                ctx.response.set_header(name, value)

        if ctx.request.method == "OPTIONS":
            ctx.no_content()
            return

        await call_next(ctx)
