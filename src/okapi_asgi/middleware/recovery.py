# Copyright 2025 Softwell S.r.l.
# Licensed under the Apache License, Version 2.0

"""Recovery middleware - unexpected exceptions to 500 responses.

HTTP exceptions (``AbortError``, ``NotFound``, ``ValidationFailure`` ...)
pass through untouched: the application writes their error body. Any other
exception is logged with its traceback and, when the response is still open,
replaced by the standard error body with status 500. In debug mode the
exception text is included in ``details``.

Config:
    debug (bool): Include the exception text in the reply. Default: False.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from . import BaseMiddleware
from ..exceptions import HTTPException

if TYPE_CHECKING:
    from ..context import Context
    from ..types import Handler

logger = logging.getLogger("okapi_asgi")


class RecoveryMiddleware(BaseMiddleware):
    middleware_name = "recovery"
    middleware_order = 100
    middleware_default = True

    __slots__ = ("debug",)

    def __init__(self, debug: bool = False, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.debug = debug

    async def dispatch(self, ctx: Context, call_next: Handler) -> None:
        try:
            await call_next(ctx)
        except HTTPException:
            raise
        except Exception as e:
            logger.exception("Unhandled error on %s %s", ctx.request.method, ctx.request.path)
            if ctx.response.committed:
                raise
            details = f"{type(e).__name__}: {e}" if self.debug else None
            ctx.error_internal_server_error("Internal Server Error", details)
