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
Route groups.

A group is a path prefix with its own middlewares and documentation
defaults. Groups nest: a child inherits the prefix and the middlewares of
its ancestors::

    api = app.group("/api", request_id)
    v1 = api.group("/v1", auth).with_tags("v1").with_bearer_auth()

    @v1.get("/books")
    async def list_books(ctx): ...

    # effective chain of GET /api/v1/books:
    #   app middlewares, request_id, auth, route-local middlewares

Groups are stored in a flat list owned by the application; a child keeps
the index of its parent. The effective middleware chain of a route is
resolved when the route is registered, so ``use()`` affects routes
registered afterwards.

``disable()`` makes every route under the group (children included) answer
404 until ``enable()``.

Registration API
================
``RouteMethods`` is shared by ``Okapi`` and ``Group``. Every method accepts
the handler as second argument or works as a decorator::

    app.get("/ping", ping, doc_summary("Ping"))

    @app.get("/ping", doc_summary("Ping"))
    async def ping(ctx): ...
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from typing import TYPE_CHECKING, Any

from .exceptions import ConfigError
from .route import (
    RouteDefinition,
    RouteOption,
    doc_basic_auth,
    doc_bearer_auth,
    doc_deprecated,
    doc_security,
)
from .utils import join_paths

if TYPE_CHECKING:
    from .application import Okapi
    from .router import Route
    from .types import Middleware, RouteHandler

__all__ = ["Group", "RouteMethods"]


class RouteMethods:
    """HTTP method helpers over ``_register``."""

    def _register(
        self, method: str, path: str, handler: RouteHandler, options: Sequence[RouteOption]
    ) -> Route:
        raise NotImplementedError

    def handle(self, method: str, path: str, *args: Any) -> Any:
        """Register ``handler`` for ``method`` and ``path``.

        ``handle(method, path, handler, *options)`` returns the Route;
        ``handle(method, path, *options)`` returns a decorator.

        Raises:
            ConfigError: An option is not a RouteOption (wrap middlewares
                with ``use()``).
        """
        if args and callable(args[0]) and not isinstance(args[0], RouteOption):
            return self._register(method, path, args[0], _options(args[1:]))
        options = _options(args)

        def decorator(func: RouteHandler) -> RouteHandler:
            self._register(method, path, func, options)
            return func

        return decorator

    def get(self, path: str, *args: Any) -> Any:
        return self.handle("GET", path, *args)

    def post(self, path: str, *args: Any) -> Any:
        return self.handle("POST", path, *args)

    def put(self, path: str, *args: Any) -> Any:
        return self.handle("PUT", path, *args)

    def patch(self, path: str, *args: Any) -> Any:
        return self.handle("PATCH", path, *args)

    def delete(self, path: str, *args: Any) -> Any:
        return self.handle("DELETE", path, *args)

    def head(self, path: str, *args: Any) -> Any:
        return self.handle("HEAD", path, *args)

    def options(self, path: str, *args: Any) -> Any:
        return self.handle("OPTIONS", path, *args)

    def any(self, path: str, *args: Any) -> Any:
        """Register the handler for every common method."""
        methods = ("GET", "POST", "PUT", "PATCH", "DELETE")
        if args and callable(args[0]) and not isinstance(args[0], RouteOption):
            return [self.handle(method, path, *args) for method in methods]

        def decorator(func: RouteHandler) -> RouteHandler:
            for method in methods:
                self.handle(method, path, func, *args)
            return func

        return decorator


def _options(args: Iterable[Any]) -> list[RouteOption]:
    options = list(args)
    for option in options:
        if not isinstance(option, RouteOption):
            raise ConfigError(
                f"{option!r} is not a route option; wrap middlewares with use(...)"
            )
    return options


class Group(RouteMethods):
    """A route group.

    Attributes:
        app: Owning application.
        prefix: Prefix relative to the parent group.
        middlewares: Group middlewares (ancestors excluded).
        index: Position in the application's group list.
        parent_index: Index of the parent group, None for top-level groups.
        tags: Documentation tags for routes that declare none.
        security: Security requirements applied to routes.
    """

    def __init__(
        self,
        app: Okapi,
        prefix: str,
        middlewares: Iterable[Middleware] = (),
        parent_index: int | None = None,
    ) -> None:
        if not prefix:
            raise ConfigError("Group prefix cannot be empty")
        self.app = app
        self.prefix = prefix
        self.middlewares: list[Middleware] = list(middlewares)
        self.parent_index = parent_index
        self.index = -1
        self.tags: list[str] = []
        self.security: list[dict[str, list[str]]] = []
        self.bearer_auth = False
        self.basic_auth = False
        self.is_deprecated = False
        self.disabled = False

    # ------------------------------------------------------------- hierarchy

    @property
    def parent(self) -> Group | None:
        if self.parent_index is None:
            return None
        return self.app.groups[self.parent_index]

    def ancestors(self) -> list[Group]:
        """Enclosing groups, outermost first, this group last."""
        chain: list[Group] = []
        group: Group | None = self
        while group is not None:
            chain.append(group)
            group = group.parent
        chain.reverse()
        return chain

    @property
    def full_prefix(self) -> str:
        parent = self.parent
        if parent is None:
            return join_paths("/", self.prefix)
        return join_paths(parent.full_prefix, self.prefix)

    def chain(self) -> list[Middleware]:
        """Middlewares of every enclosing group, outermost first."""
        return [mw for group in self.ancestors() for mw in group.middlewares]

    def inherited_tags(self) -> list[str]:
        """Tags of the nearest group (this one first) that declares some."""
        for group in reversed(self.ancestors()):
            if group.tags:
                return list(group.tags)
        return []

    def group(self, prefix: str, *middlewares: Middleware) -> Group:
        """Create a nested group."""
        return self.app._new_group(prefix, middlewares, parent_index=self.index)

    # ----------------------------------------------------------------- state

    @property
    def enabled(self) -> bool:
        if self.disabled:
            return False
        parent = self.parent
        return parent is None or parent.enabled

    def disable(self) -> Group:
        self.disabled = True
        return self

    def enable(self) -> Group:
        self.disabled = False
        return self

    # ------------------------------------------------------- configuration

    def use(self, *middlewares: Middleware) -> Group:
        self.middlewares.extend(middlewares)
        return self

    def with_tags(self, *tags: str) -> Group:
        self.tags = [tag for tag in tags if tag]
        return self

    def with_security(self, *requirements: dict[str, list[str]]) -> Group:
        self.security = list(requirements)
        return self

    def with_bearer_auth(self) -> Group:
        self.bearer_auth = True
        return self

    def with_basic_auth(self) -> Group:
        self.basic_auth = True
        return self

    def deprecated(self) -> Group:
        self.is_deprecated = True
        return self

    def route_options(self) -> list[RouteOption]:
        """Documentation options this group and its ancestors add to routes."""
        groups = self.ancestors()
        options: list[RouteOption] = []
        if any(group.bearer_auth for group in groups):
            options.append(doc_bearer_auth())
        if any(group.basic_auth for group in groups):
            options.append(doc_basic_auth())
        if any(group.is_deprecated for group in groups):
            options.append(doc_deprecated())
        for group in reversed(groups):
            if group.security:
                options.append(doc_security(*group.security))
                break
        return options

    # ---------------------------------------------------------- registration

    def _register(
        self, method: str, path: str, handler: RouteHandler, options: Sequence[RouteOption]
    ) -> Route:
        full_path = join_paths(self.full_prefix, path) if path else self.full_prefix
        return self.app._add_route(
            method, full_path, handler, [*options, *self.route_options()], group=self
        )

    def register(self, *definitions: RouteDefinition) -> list[Route]:
        """Register route definitions under this group (or their own group)."""
        routes = []
        for definition in definitions:
            definition.validate()
            target = definition.group or self
            assert definition.handler is not None
            routes.append(
                target._register(
                    definition.method.upper(),
                    definition.path,
                    definition.handler,
                    definition.route_options(),
                )
            )
        return routes

    def routes(self) -> list[Route]:
        """Routes registered under this group or its children."""
        return [
            route
            for route in self.app.routes()
            if route.group is not None and self in route.group.ancestors()
        ]

    def __repr__(self) -> str:
        return f"Group({self.full_prefix!r})"
