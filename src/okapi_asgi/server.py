# Copyright 2025 Softwell S.r.l.
# Licensed under the Apache License, Version 2.0

"""Server - run an Okapi application with uvicorn.

Server owns the listeners of one application:
- a plain HTTP listener on ``settings.host:settings.port``
- an optional TLS listener on ``settings.tls_host:settings.tls_port`` with
  ``tls_certfile`` / ``tls_keyfile``

Usage:
    from okapi_asgi import Okapi
    from okapi_asgi.server import Server

    app = Okapi(port=9000)
    Server(app).run()       # blocks until SIGINT/SIGTERM

Lifecycle:
    run() -> serve()
        -> lifespan startup on the plain listener (on_start, freeze, on_started)
        -> listeners accept connections
        -> SIGINT/SIGTERM or stop(): every listener stops accepting and
           drains in parallel; in-flight requests get ``shutdown_timeout``
           seconds before their tasks are cancelled
        -> lifespan shutdown (on_shutdown)

The lifespan protocol runs on the plain listener only, so callbacks run
once even with TLS enabled. The access log is produced by the logging
middleware; uvicorn's own access log is turned off.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
from collections.abc import Iterator
from typing import TYPE_CHECKING, Any

import uvicorn

if TYPE_CHECKING:
    from .application import Okapi

__all__ = ["Server"]


class _Listener(uvicorn.Server):
    """uvicorn server whose signals are handled by ``Server``."""

    def install_signal_handlers(self) -> None:
        pass

    @contextlib.contextmanager
    def capture_signals(self) -> Iterator[None]:
        yield


class Server:
    """
    Listener set for one application.

    Attributes:
        app: The application served.
        host, port: Plain listener address.
        tls_host, tls_port, certfile, keyfile: TLS listener (tls_port 0 disables it).
        shutdown_timeout: Seconds in-flight requests get after stop.
    """

    def __init__(
        self,
        app: Okapi,
        host: str | None = None,
        port: int | None = None,
        tls_port: int | None = None,
        certfile: str | None = None,
        keyfile: str | None = None,
        shutdown_timeout: float | None = None,
    ) -> None:
        settings = app.settings
        self.app = app
        self.host = host or settings.host
        self.port = settings.port if port is None else port
        self.tls_host = settings.tls_host or self.host
        self.tls_port = settings.tls_port if tls_port is None else tls_port
        self.certfile = certfile or settings.tls_certfile
        self.keyfile = keyfile or settings.tls_keyfile
        self.shutdown_timeout = (
            settings.shutdown_timeout if shutdown_timeout is None else shutdown_timeout
        )
        self.logger = logging.getLogger("okapi_asgi.server")
        self._listeners: list[_Listener] = []

    @property
    def tls_enabled(self) -> bool:
        return bool(self.tls_port and self.certfile and self.keyfile)

    def _config(self, host: str, port: int, lifespan: str, **ssl: Any) -> uvicorn.Config:
        settings = self.app.settings
        return uvicorn.Config(
            self.app,
            host=host,
            port=port,
            lifespan=lifespan,
            access_log=False,
            log_level="debug" if settings.debug else "info",
            timeout_keep_alive=max(1, int(settings.idle_timeout)),
            timeout_graceful_shutdown=int(self.shutdown_timeout),
            **ssl,
        )

    def listeners(self) -> list[_Listener]:
        """Build the uvicorn servers (plain first, then TLS)."""
        listeners = [_Listener(self._config(self.host, self.port, "on"))]
        if self.tls_enabled:
            listeners.append(
                _Listener(
                    self._config(
                        self.tls_host,
                        self.tls_port,
                        "off",
                        ssl_certfile=self.certfile,
                        ssl_keyfile=self.keyfile,
                    )
                )
            )
        return listeners

    async def serve(self) -> None:
        """Serve until stopped. Re-raises the first listener error."""
        loop = asyncio.get_running_loop()
        self._listeners = self.listeners()
        installed: list[signal.Signals] = []
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.stop)
                installed.append(sig)
            except (NotImplementedError, RuntimeError):
                self.logger.debug("Signal handler for %s not supported here", sig.name)

        self.logger.info("Listening on http://%s:%d", self.host, self.port)
        if self.tls_enabled:
            self.logger.info("Listening on https://%s:%d", self.tls_host, self.tls_port)
        try:
            results = await asyncio.gather(
                *(listener.serve() for listener in self._listeners), return_exceptions=True
            )
        finally:
            for sig in installed:
                loop.remove_signal_handler(sig)

        errors = [result for result in results if isinstance(result, BaseException)]
        if errors:
            self.logger.error("Listener failed: %s", errors[0])
            raise errors[0]
        for listener in self._listeners:
            if listener.started is False and not listener.should_exit:
                self.logger.warning("A listener exited without starting")
        self.logger.info("Server stopped")

    def stop(self) -> None:
        """Ask every listener to stop accepting and drain."""
        self.logger.info("Shutting down (timeout %.0fs)...", self.shutdown_timeout)
        for listener in self._listeners:
            listener.should_exit = True

    def run(self) -> None:
        """Blocking entry point."""
        try:
            asyncio.run(self.serve())
        except KeyboardInterrupt:
            self.logger.info("Interrupted")
