# Copyright 2025 Softwell S.r.l.
# Licensed under the Apache License, Version 2.0

"""Request ID middleware.

Reuses the incoming ``X-Request-Id`` header or generates a uuid4 hex id,
stores it in the context under ``context_key`` and echoes it on the
response.
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING, Any

from . import BaseMiddleware

if TYPE_CHECKING:
    from ..context import Context
    from ..types import Handler


class RequestID(BaseMiddleware):
    middleware_name = "request_id"
    middleware_order = 150
    middleware_default = False

    __slots__ = ("header_name", "context_key")

    def __init__(
        self, header_name: str = "X-Request-Id", context_key: str = "request_id", **kwargs: Any
    ) -> None:
        super().__init__(**kwargs)
        self.header_name = header_name
        self.context_key = context_key

    async def dispatch(self, ctx: Context, call_next: Handler) -> None:
        request_id = ctx.header(self.header_name).strip() or uuid.uuid4().hex
        ctx.set(self.context_key, request_id)
        ctx.set_header(self.header_name, request_id)
        await call_next(ctx)
