# Copyright 2025 Softwell S.r.l.
# Licensed under the Apache License, Version 2.0

"""Logging Middleware - HTTP access logging.

Logs incoming requests and completed responses with timing information.
Uses Python's standard logging module for output.

Log format:
    Request:  "<- GET /api/users from 192.168.1.1"
    Response: "-> GET /api/users 200 (12.5ms)"
    Error:    "-> GET /api/users ERROR: ... (12.5ms)"

The response record carries ``method``, ``url``, ``client_ip``, ``status``,
``duration``, ``referer`` and ``user_agent`` as ``extra`` attributes for
structured handlers. Server-sent event requests are not logged.

Config:
    logger_name (str): Logger name. Default: "okapi_asgi.access".
    level (str): Log level (DEBUG, INFO, WARNING, ERROR). Default: "INFO".
    include_headers (bool): Log redacted headers and query at DEBUG. Default: False.

Example::

    [middleware.logging]
    level = "DEBUG"
    include_headers = true
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Any

from . import BaseMiddleware
from ..exceptions import HTTPException
from ..utils import redact_headers, redact_params

if TYPE_CHECKING:
    from ..context import Context
    from ..types import Handler


class LoggingMiddleware(BaseMiddleware):
    """Access logging middleware.

    Class Attributes:
        middleware_name: "logging" - identifier for config.
        middleware_order: 200 - runs early to capture full request timing.
        middleware_default: True - disabled with ``access_log = false``.
    """

    middleware_name = "logging"
    middleware_order = 200
    middleware_default = True

    __slots__ = ("logger", "level", "include_headers")

    def __init__(
        self,
        logger_name: str = "okapi_asgi.access",
        level: str = "INFO",
        include_headers: bool = False,
        **kwargs: Any,
    ) -> None:
        super().__init__(**kwargs)
        self.logger = logging.getLogger(logger_name)
        self.level = getattr(logging, level.upper(), logging.INFO)
        self.include_headers = include_headers

    async def dispatch(self, ctx: Context, call_next: Handler) -> None:
        if ctx.is_sse():
            await call_next(ctx)
            return

        request = ctx.request
        start_time = time.perf_counter()
        request_info = f"{request.method} {request.path}"
        client_ip = ctx.real_ip()
        status = 0

        self.logger.log(self.level, "<- %s from %s", request_info, client_ip)
        if self.include_headers and self.logger.isEnabledFor(logging.DEBUG):
            self.logger.debug("   headers: %s", redact_headers(request.headers.items()))
            if request.query_params:
                self.logger.debug(
                    "   query: %s", redact_params(request.query_params.multi_items())
                )

        try:
            await call_next(ctx)
        except HTTPException as e:
            status = e.status_code
            raise
        except Exception as e:
            duration = (time.perf_counter() - start_time) * 1000
            self.logger.error("-> %s ERROR: %s (%.1fms)", request_info, e, duration)
            raise
        else:
            status = ctx.response.status_code
        finally:
            if status:
                self._log_response(ctx, request_info, client_ip, status, start_time)

    def _log_response(
        self, ctx: Context, request_info: str, client_ip: str, status: int, start_time: float
    ) -> None:
        request = ctx.request
        duration = (time.perf_counter() - start_time) * 1000
        self.logger.log(
            self.level,
            "-> %s %s (%.1fms)",
            request_info,
            status,
            duration,
            extra={
                "method": request.method,
                "url": request.path,
                "client_ip": client_ip,
                "status": status,
                "duration": round(duration, 2),
                "referer": ctx.referer(),
                "user_agent": ctx.header("user-agent"),
            },
        )
