# Copyright 2025 Softwell S.r.l.
# Licensed under the Apache License, Version 2.0

"""Compression middleware.

Compresses the buffered response with gzip when beneficial. Runs after the
inner chain returns, before the application flushes the response.

Compression criteria:
    - Client accepts gzip (Accept-Encoding header contains "gzip")
    - Response size >= minimum_size
    - Content-Type is compressible (text/*, application/json, etc.)
    - Response not already encoded, not committed and not streamed (SSE)
    - Compressed size < original size

Config:
    minimum_size (int): Minimum bytes before compressing. Default: 500.
    compression_level (int): Gzip level 1-9. Default: 6.

Note:
    Adds Content-Encoding: gzip and Vary: Accept-Encoding headers.
    Content-Length is computed from the compressed body at flush.
"""

from __future__ import annotations

import gzip
from typing import TYPE_CHECKING, Any

from . import BaseMiddleware

if TYPE_CHECKING:
    from ..context import Context
    from ..types import Handler

_COMPRESSIBLE_TYPES = (
    "text/",
    "application/json",
    "application/javascript",
    "application/xml",
    "application/xhtml+xml",
    "application/yaml",
)


class CompressionMiddleware(BaseMiddleware):
    """Gzip compression middleware.

    Class Attributes:
        middleware_name: "compression" - identifier for config.
        middleware_order: 900 - runs late to compress the final response.
        middleware_default: False - disabled by default.
    """

    middleware_name = "compression"
    middleware_order = 900
    middleware_default = False

    __slots__ = ("minimum_size", "compression_level")

    def __init__(self, minimum_size: int = 500, compression_level: int = 6, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.minimum_size = minimum_size
        self.compression_level = min(9, max(1, compression_level))

    @staticmethod
    def _accepts_gzip(ctx: Context) -> bool:
        return "gzip" in ctx.header("accept-encoding").lower()

    @staticmethod
    def _is_compressible(content_type: str | None) -> bool:
        if not content_type:
            return False
        content_type = content_type.lower()
        return any(content_type.startswith(ct) for ct in _COMPRESSIBLE_TYPES)

    async def dispatch(self, ctx: Context, call_next: Handler) -> None:
        await call_next(ctx)

        response = ctx.response
        if response.committed or response.sent or not self._accepts_gzip(ctx):
            return
        if response.get_header("content-encoding"):
            return
        if len(response.body) < self.minimum_size:
            return
        if not self._is_compressible(response.content_type):
            return

        compressed = gzip.compress(response.body, compresslevel=self.compression_level)
        if len(compressed) >= len(response.body):
            return
        response.set_body(compressed)
        response.set_header("content-encoding", "gzip")
        response.add_header("vary", "Accept-Encoding")
