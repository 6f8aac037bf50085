# Copyright 2025 Softwell S.r.l.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     https://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
ASGI Lifespan Management.

Purpose
=======
AppLifespan handles the ASGI lifespan protocol for an ``Okapi`` application:
it freezes the routing table and runs the lifecycle callbacks.

Sequence:
- ``lifespan.startup``: ``on_start`` callbacks, routing table frozen,
  ``lifespan.startup.complete`` sent, then ``on_started`` callbacks
- ``lifespan.shutdown``: ``on_shutdown`` callbacks in reverse registration
  order, then ``lifespan.shutdown.complete``

Definition::

    class AppLifespan:
        __slots__ = ("app", "_logger", "_started")

        def __init__(self, app: Okapi)
        async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None
        async def startup(self) -> None
        async def started(self) -> None
        async def shutdown(self) -> None

Example::

    app = Okapi()

    @app.on_start
    async def open_pool():
        ...

Design Notes
============
- Callbacks may be sync or async
- Errors during startup send lifespan.startup.failed
- Errors during shutdown are logged but don't prevent other callbacks
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from .types import Receive, Scope, Send

if TYPE_CHECKING:
    from .application import Okapi

__all__ = ["AppLifespan", "call_hook"]


async def call_hook(hook: Callable[[], Any]) -> None:
    """Call a lifecycle callback, awaiting it when it is a coroutine."""
    result = hook()
    if inspect.isawaitable(result):
        await result


class AppLifespan:
    """
    ASGI Lifespan handler for an Okapi application.

    Attributes:
        app: The application whose callbacks are run.
    """

    __slots__ = ("app", "_logger", "_started")

    def __init__(self, app: Okapi) -> None:
        self.app = app
        self._logger = logging.getLogger("okapi_asgi.lifespan")
        self._started = False

    @property
    def is_started(self) -> bool:
        return self._started

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:  # noqa: ARG002
        while True:
            message = await receive()
            msg_type = message["type"]

            if msg_type == "lifespan.startup":
                try:
                    await self.startup()
                except Exception as e:
                    self._logger.exception("Startup failed")
                    await send({"type": "lifespan.startup.failed", "message": str(e)})
                    return
                await send({"type": "lifespan.startup.complete"})
                try:
                    await self.started()
                except Exception:
                    self._logger.exception("on_started callback failed")

            elif msg_type == "lifespan.shutdown":
                try:
                    await self.shutdown()
                except Exception:
                    self._logger.exception("Shutdown error")
                finally:
                    await send({"type": "lifespan.shutdown.complete"})
                return

    async def startup(self) -> None:
        """Run ``on_start`` callbacks and freeze the routing table."""
        self._logger.info("Okapi starting up...")
        for hook in self.app.start_hooks:
            await call_hook(hook)
        self.app.router.freeze()
        self._started = True
        self._logger.info(
            "Okapi started with %d routes", len(self.app.router.routes())
        )

    async def started(self) -> None:
        for hook in self.app.started_hooks:
            await call_hook(hook)

    async def shutdown(self) -> None:
        """Run ``on_shutdown`` callbacks in reverse order.

        Errors are logged and don't prevent the remaining callbacks.
        """
        self._logger.info("Okapi shutting down...")
        for hook in reversed(self.app.shutdown_hooks):
            try:
                await call_hook(hook)
            except Exception:
                self._logger.exception("Error in shutdown callback %r", hook)
        self._started = False
        self._logger.info("Okapi stopped")
