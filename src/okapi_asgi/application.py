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
Okapi application.

The application owns the router, the groups, the application-level
middlewares, the OpenAPI builder, the renderer and the settings. It is an
ASGI callable::

    from dataclasses import dataclass
    from okapi_asgi import Okapi, param, with_input

    app = Okapi()

    @dataclass
    class BookQuery:
        id: int = param(path="id")

    @app.get("/books/{id:int}", with_input(BookQuery))
    async def get_book(ctx, query: BookQuery):
        return {"id": query.id}

    # uvicorn module:app, or:
    app.run()

Request flow
============
::

    ASGI server -> Okapi.__call__
        -> router.match (NotFound / MethodNotAllowed)
        -> route.endpoint: app middlewares -> group chain -> route middlewares
            -> bind + validate input record -> handler -> shape result
        -> HTTPException escaping the chain: JSON error body
        -> flush buffered response (unless streamed) -> ctx.close()

Routing failures run through the application middlewares too, so access
logs see 404/405 and the CORS middleware answers preflight requests for
paths that only declare other methods.

Handlers
========
A handler takes the context and, optionally, the bound input record:
``async def h(ctx)`` or ``async def h(ctx, record)``. Synchronous handlers
run in a worker thread. When the second parameter is annotated with a
record type the input record is inferred. Return values:

- None: whatever the handler wrote (204 if nothing)
- a Response: copied into the context response (headers merged)
- a response record: projected with the negotiated encoding
- dict / list / dataclass: encoded with the negotiated encoding (JSON for
  text and html)
- str / bytes / Path: see ``Response.set_result``
"""

from __future__ import annotations

import asyncio
import dataclasses
import inspect
import logging
import typing
from collections.abc import Callable, Iterable, Sequence
from pathlib import Path
from typing import Any

from .config import Settings
from .context import Context
from .encoding import Encoding, encode, encoding_for
from .exceptions import AbortError, ConfigError, HTTPException, Redirect
from .fields import is_record
from .group import Group, RouteMethods
from .lifespan import AppLifespan
from .middleware import compose, middleware_chain
from .openapi import OpenAPIBuilder, mount_docs
from .request import Request, set_current_request
from .response import Response
from .route import RouteDefinition, RouteOption, doc_hide
from .router import Route, Router
from .static import StaticFiles
from .types import Handler, Middleware, Receive, RouteHandler, Scope, Send
from .utils import join_paths

__all__ = ["Okapi"]

logger = logging.getLogger("okapi_asgi")

_STRUCTURED = (Encoding.JSON, Encoding.XML, Encoding.YAML)


def _positional_arity(func: Callable[..., Any]) -> int:
    try:
        signature = inspect.signature(func)
    except (TypeError, ValueError):
        return 1
    count = 0
    for parameter in signature.parameters.values():
        if parameter.kind is inspect.Parameter.VAR_POSITIONAL:
            return 2
        if parameter.kind in (
            inspect.Parameter.POSITIONAL_ONLY,
            inspect.Parameter.POSITIONAL_OR_KEYWORD,
        ) and parameter.default is inspect.Parameter.empty:
            count += 1
    return count


def _annotated_record(func: Callable[..., Any]) -> type | None:
    """Record type annotated on the second positional parameter, if any."""
    try:
        hints = typing.get_type_hints(func)
        names = list(inspect.signature(func).parameters)
    except (NameError, TypeError, ValueError):
        return None
    if len(names) < 2:
        return None
    hint = hints.get(names[1])
    return hint if is_record(hint) else None


def _is_async(func: Callable[..., Any]) -> bool:
    return inspect.iscoroutinefunction(func) or inspect.iscoroutinefunction(
        getattr(func, "__call__", None)
    )


def _absorb(target: Response, source: Response) -> None:
    """Copy a returned Response into the context response."""
    target.write(source.status_code, source.content_type, source.body)
    for name, value in source.headers:
        if name.lower() == "content-type":
            continue
        target.add_header(name, value)


class Okapi(RouteMethods):
    """
    ASGI application.

    Attributes:
        settings: Application and server settings.
        router: Route table.
        groups: Route groups, parents before children.
        middlewares: Application middlewares, outermost first.
        renderer: Template renderer used by ``ctx.render()``.
        openapi: OpenAPI document builder.
        lifespan: ASGI lifespan handler.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        middlewares: Iterable[Middleware] = (),
        renderer: Any = None,
        **overrides: Any,
    ) -> None:
        settings = settings or Settings()
        if overrides:
            try:
                settings = dataclasses.replace(settings, **overrides)
            except TypeError as e:
                raise ConfigError(f"Invalid settings: {e}") from e
        settings.validate()
        self.settings = settings
        self.router = Router(strict_slash=settings.strict_slash)
        self.groups: list[Group] = []

        options: dict[str, dict[str, Any]] = {"recovery": {"debug": settings.debug}}
        if settings.debug:
            options["logging"] = {"include_headers": True, "level": "DEBUG"}
        middleware_config = settings.middleware
        if not settings.access_log:
            middleware_config = {**_as_mapping(middleware_config), "logging": False}
        self.middlewares: list[Middleware] = [
            *middleware_chain(middleware_config, options),
            *middlewares,
        ]

        self.renderer = renderer
        self.default_encoding = encoding_for(settings.default_content_type) or Encoding.JSON
        self.start_hooks: list[Callable[[], Any]] = []
        self.started_hooks: list[Callable[[], Any]] = []
        self.shutdown_hooks: list[Callable[[], Any]] = []
        self.lifespan = AppLifespan(self)
        self.openapi = OpenAPIBuilder(self)
        if settings.openapi.enabled:
            mount_docs(self)

    # ----------------------------------------------------------- registration

    def use(self, *middlewares: Middleware) -> Okapi:
        """Append application middlewares.

        The chain of a route is resolved when the route is registered: call
        ``use()`` before registering the routes it should wrap.
        """
        self.middlewares.extend(middlewares)
        return self

    def group(self, prefix: str, *middlewares: Middleware) -> Group:
        """Create a top-level route group."""
        return self._new_group(prefix, middlewares, parent_index=None)

    def _new_group(
        self, prefix: str, middlewares: Iterable[Middleware], parent_index: int | None
    ) -> Group:
        group = Group(self, prefix, middlewares, parent_index)
        group.index = len(self.groups)
        self.groups.append(group)
        return group

    def _register(
        self, method: str, path: str, handler: RouteHandler, options: Sequence[RouteOption]
    ) -> Route:
        return self._add_route(method, join_paths("/", path), handler, options)

    def _add_route(
        self,
        method: str,
        path: str,
        handler: RouteHandler,
        options: Sequence[RouteOption],
        group: Group | None = None,
    ) -> Route:
        """Build a route, resolve its middleware chain and insert it.

        Raises:
            ConfigError: Invalid pattern, frozen router, or a handler taking a
                record without an input type.
            RouteConflict: Duplicate method and pattern.
        """
        route = Route(method=method.upper(), path=path, handler=handler, group=group)
        for option in options:
            option(route)
        if route.input_type is None:
            route.input_type = _annotated_record(handler)
        route.middlewares = [
            *self.middlewares,
            *(group.chain() if group is not None else []),
            *route.local_middlewares,
        ]
        route.endpoint = compose(route.middlewares, self._adapt(route))
        self.router.add(route)
        self.openapi.invalidate()
        return route

    def register(self, *definitions: RouteDefinition) -> list[Route]:
        """Register route definitions; a definition with a group goes under it."""
        routes: list[Route] = []
        for definition in definitions:
            definition.validate()
            if definition.group is not None:
                routes.extend(definition.group.register(definition))
                continue
            assert definition.handler is not None
            routes.append(
                self._register(
                    definition.method.upper(),
                    definition.path,
                    definition.handler,
                    definition.route_options(),
                )
            )
        return routes

    def routes(self) -> list[Route]:
        return self.router.routes()

    def static(self, prefix: str, directory: str | Path, index: str = "index.html") -> StaticFiles:
        """Serve files under ``directory`` at ``prefix`` (no directory listing)."""
        files = StaticFiles(directory, index=index)
        base = join_paths("/", prefix)
        self.get(join_paths(base, "{filepath:path}"), files, doc_hide())
        self.get(base, files, doc_hide())
        return files

    def static_file(self, path: str, file: str | Path) -> Route:
        """Serve one file at ``path``."""
        file_path = Path(file)

        async def serve(ctx: Context) -> None:
            ctx.serve_file(file_path)

        return self.get(path, serve, doc_hide())

    # -------------------------------------------------------------- lifecycle

    def on_start(self, func: Callable[[], Any]) -> Callable[[], Any]:
        """Register a callback run at startup, before requests are served."""
        self.start_hooks.append(func)
        return func

    def on_started(self, func: Callable[[], Any]) -> Callable[[], Any]:
        """Register a callback run once the application is serving."""
        self.started_hooks.append(func)
        return func

    def on_shutdown(self, func: Callable[[], Any]) -> Callable[[], Any]:
        """Register a callback run at shutdown (reverse registration order)."""
        self.shutdown_hooks.append(func)
        return func

    def run(self, **kwargs: Any) -> None:
        """Serve with uvicorn until SIGINT/SIGTERM. See ``Server``."""
        from .server import Server

        Server(self, **kwargs).run()

    # --------------------------------------------------------------- handlers

    def _adapt(self, route: Route) -> Handler:
        """Wrap the user handler into the terminal chain handler."""
        handler = route.handler
        arity = _positional_arity(handler)
        input_type = route.input_type
        if arity >= 2 and input_type is None:
            raise ConfigError(
                f"{route.method} {route.path}: handler takes a record but no input type is "
                "declared (use with_input() or annotate the parameter)"
            )
        run_async = _is_async(handler)

        async def endpoint(ctx: Context) -> None:
            args: list[Any] = [ctx][:arity]
            if input_type is not None:
                record = await ctx.bind(input_type)
                if arity >= 2:
                    args.append(record)
            if run_async:
                result = await handler(*args)
            else:
                result = await asyncio.to_thread(handler, *args)
            self._shape(ctx, result)

        endpoint.__name__ = getattr(handler, "__name__", "endpoint")
        return endpoint

    @staticmethod
    def _shape(ctx: Context, result: Any) -> None:
        response = ctx.response
        if response.sent or response.committed:
            if result is not None:
                logger.debug("Handler result ignored: response already sent")
            return
        if isinstance(result, Response):
            _absorb(response, result)
        elif result is not None and is_record(type(result)):
            ctx.respond(result)
        elif isinstance(result, (dict, list, tuple)) or dataclasses.is_dataclass(result):
            encoding = ctx.encoding
            if encoding not in _STRUCTURED:
                encoding = Encoding.JSON
            response.write(response.status_code, encoding.media_type, encode(result, encoding))
        else:
            response.set_result(result)

    # ------------------------------------------------------------------- ASGI

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        scope_type = scope["type"]
        if scope_type == "lifespan":
            await self.lifespan(scope, receive, send)
        elif scope_type == "http":
            await self._handle_http(scope, receive, send)
        elif scope_type == "websocket":
            await send({"type": "websocket.close", "code": 1003})

    async def _handle_http(self, scope: Scope, receive: Receive, send: Send) -> None:
        """Run one HTTP request through routing, the chain and the flush."""
        request = Request(
            scope, receive, self.settings.max_body_size, self.settings.read_timeout
        )
        try:
            match = self.router.match(request.method, request.path)
        except HTTPException as e:
            ctx = Context(self, request, send)
            endpoint = compose(self.middlewares, _raiser(e))
        else:
            ctx = Context(self, request, send, match.params, match.route)
            assert match.route.endpoint is not None
            endpoint = match.route.endpoint

        set_current_request(request)
        try:
            try:
                await endpoint(ctx)
            except AbortError:
                pass
            except HTTPException as e:
                self._write_error(ctx, e)
            except Exception:
                logger.exception("Unhandled error in %s %s", request.method, request.path)
                self._write_error(ctx, HTTPException(500))

            if not ctx.response.sent:
                await self._flush(ctx, scope, receive, send)
        finally:
            await ctx.close()
            set_current_request(None)

    async def _flush(self, ctx: Context, scope: Scope, receive: Receive, send: Send) -> None:
        timeout = self.settings.write_timeout
        if not timeout:
            await ctx.response(scope, receive, send)
            return
        try:
            await asyncio.wait_for(ctx.response(scope, receive, send), timeout)
        except asyncio.TimeoutError:
            logger.warning(
                "Response to %s %s not sent within %gs",
                ctx.request.method,
                ctx.request.path,
                timeout,
            )

    @staticmethod
    def _write_error(ctx: Context, error: HTTPException) -> None:
        response = ctx.response
        if response.sent or response.committed:
            return
        for name, value in error.headers or []:
            response.set_header(name, value)
        if isinstance(error, Redirect):
            ctx.redirect(error.url, error.status_code)
            return
        ctx.error(error.status_code, error.detail, error.details)

    def __repr__(self) -> str:
        return f"Okapi(routes={len(self.router.routes())}, groups={len(self.groups)})"


def _raiser(error: HTTPException) -> Handler:
    async def raise_routing_error(ctx: Context) -> None:
        raise error

    return raise_routing_error


def _as_mapping(config: Any) -> dict[str, Any]:
    """Normalize a middleware config (None, names, list or mapping) to a dict."""
    if config is None:
        return {}
    if isinstance(config, str):
        return {name.strip(): True for name in config.split(",") if name.strip()}
    if isinstance(config, dict):
        return dict(config)
    return {name: True for name in config}
