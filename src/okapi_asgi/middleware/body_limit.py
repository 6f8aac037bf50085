# Copyright 2025 Softwell S.r.l.
# Licensed under the Apache License, Version 2.0

"""Body limit middleware - reject request bodies larger than ``max_bytes``.

The body is read (at most ``max_bytes`` + one chunk) and cached on the
request, so handlers and the binder see it unchanged. Oversized bodies get
413 "Request body too large".
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from . import BaseMiddleware
from ..exceptions import BodyTooLarge

if TYPE_CHECKING:
    from ..context import Context
    from ..types import Handler


class BodyLimit(BaseMiddleware):
    middleware_name = "body_limit"
    middleware_order = 150
    middleware_default = False

    __slots__ = ("max_bytes",)

    def __init__(self, max_bytes: int = 1 << 20, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.max_bytes = max_bytes

    async def dispatch(self, ctx: Context, call_next: Handler) -> None:
        request = ctx.request
        saved = request.max_body_size
        request.max_body_size = self.max_bytes
        try:
            await request.body()
        except BodyTooLarge:
            ctx.text(413, "Request body too large")
            return
        finally:
            request.max_body_size = saved
        await call_next(ctx)
