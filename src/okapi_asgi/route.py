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

"""Route options, the ``Doc`` builder and ``RouteDefinition``.

Route options are applied to a ``Route`` at registration. They fill its
documentation, declare its input/output records and attach route-local
middlewares::

    app.get(
        "/books/{id:int}",
        get_book,
        doc_summary("Get a book"),
        doc_tags("books"),
        with_output(Book),
        doc_error_response(404, ErrorBody),
    )

The chained ``Doc()`` builder collects several options into one::

    app.post("/books", create_book, Doc().summary("Create").request_body(Book).bearer_auth().build())

``RouteDefinition`` describes a route as data for bulk registration with
``app.register()`` or ``group.register()``.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from .exceptions import ConfigError
from .fields import is_record

if TYPE_CHECKING:
    from .group import Group
    from .router import Route
    from .types import Middleware, RouteHandler

__all__ = [
    "PARAM_TYPES",
    "RouteOption",
    "Doc",
    "RouteDefinition",
    "doc_summary",
    "doc_description",
    "doc_operation_id",
    "doc_tag",
    "doc_tags",
    "doc_request_body",
    "doc_request_example",
    "doc_response",
    "doc_response_example",
    "doc_error_response",
    "doc_path_param",
    "doc_query_param",
    "doc_header",
    "doc_bearer_auth",
    "doc_basic_auth",
    "doc_security",
    "doc_deprecated",
    "doc_hide",
    "with_input",
    "with_output",
    "use",
]

# Documented parameter types -> OpenAPI (type, format)
PARAM_TYPES: dict[str, tuple[str, str | None]] = {
    "string": ("string", None),
    "str": ("string", None),
    "int": ("integer", None),
    "int64": ("integer", "int64"),
    "integer": ("integer", None),
    "float": ("number", None),
    "number": ("number", None),
    "bool": ("boolean", None),
    "boolean": ("boolean", None),
    "date": ("string", "date"),
    "date-time": ("string", "date-time"),
    "uuid": ("string", "uuid"),
}


class RouteOption:
    """A callable applied to a Route at registration."""

    __slots__ = ("apply", "name")

    def __init__(self, apply: Callable[[Route], None], name: str = "") -> None:
        self.apply = apply
        self.name = name or getattr(apply, "__name__", "option")

    def __call__(self, route: Route) -> None:
        self.apply(route)

    def __repr__(self) -> str:
        return f"<RouteOption {self.name}>"


def _option(name: str) -> Callable[[Callable[[Route], None]], RouteOption]:
    def wrap(func: Callable[[Route], None]) -> RouteOption:
        return RouteOption(func, name)

    return wrap


def _check_type(typ: str) -> str:
    if typ not in PARAM_TYPES:
        raise ConfigError(f"Unknown parameter type {typ!r}; expected one of {', '.join(PARAM_TYPES)}")
    return typ


def doc_summary(summary: str) -> RouteOption:
    @_option("doc_summary")
    def apply(route: Route) -> None:
        route.summary = summary

    return apply


def doc_description(description: str) -> RouteOption:
    @_option("doc_description")
    def apply(route: Route) -> None:
        route.description = description

    return apply


def doc_operation_id(operation_id: str) -> RouteOption:
    @_option("doc_operation_id")
    def apply(route: Route) -> None:
        route.operation_id = operation_id

    return apply


def doc_tags(*tags: str) -> RouteOption:
    @_option("doc_tags")
    def apply(route: Route) -> None:
        for tag in tags:
            if tag and tag not in route.tags:
                route.tags.append(tag)

    return apply


def doc_tag(tag: str) -> RouteOption:
    return doc_tags(tag)


def doc_request_body(schema: Any) -> RouteOption:
    """Document the request body with a record type (or an example value)."""

    @_option("doc_request_body")
    def apply(route: Route) -> None:
        route.request_body = schema

    return apply


def doc_request_example(example: Any) -> RouteOption:
    @_option("doc_request_example")
    def apply(route: Route) -> None:
        route.request_example = example

    return apply


def doc_response(schema: Any, status: int = 200, description: str = "") -> RouteOption:
    """Document a response. A 2xx schema also becomes the route's output type."""

    @_option("doc_response")
    def apply(route: Route) -> None:
        if schema is None:
            return
        route.responses[status] = (schema, description)
        if 200 <= status < 300 and route.output_type is None:
            route.output_type = schema

    return apply


def doc_response_example(example: Any) -> RouteOption:
    @_option("doc_response_example")
    def apply(route: Route) -> None:
        route.response_example = example

    return apply


def doc_error_response(status: int, schema: Any = None, description: str = "") -> RouteOption:
    """Document an error response. Without a schema the standard error body is used."""

    @_option("doc_error_response")
    def apply(route: Route) -> None:
        route.responses[status] = (schema, description)

    return apply


def _doc_param(location: str, name: str, typ: str, description: str, required: bool) -> RouteOption:
    _check_type(typ)

    @_option(f"doc_{location}_param")
    def apply(route: Route) -> None:
        route.doc_params = [
            p for p in route.doc_params if not (p["in"] == location and p["name"] == name)
        ]
        route.doc_params.append(
            {
                "name": name,
                "in": location,
                "type": typ,
                "description": description,
                "required": required,
            }
        )

    return apply


def doc_path_param(name: str, typ: str = "string", description: str = "") -> RouteOption:
    return _doc_param("path", name, typ, description, True)


def doc_query_param(
    name: str, typ: str = "string", description: str = "", required: bool = False
) -> RouteOption:
    return _doc_param("query", name, typ, description, required)


def doc_header(
    name: str, typ: str = "string", description: str = "", required: bool = False
) -> RouteOption:
    return _doc_param("header", name, typ, description, required)


def doc_security(*requirements: dict[str, list[str]]) -> RouteOption:
    @_option("doc_security")
    def apply(route: Route) -> None:
        for requirement in requirements:
            if requirement not in route.security:
                route.security.append(requirement)

    return apply


def doc_bearer_auth() -> RouteOption:
    return doc_security({"bearerAuth": []})


def doc_basic_auth() -> RouteOption:
    return doc_security({"basicAuth": []})


def doc_deprecated() -> RouteOption:
    @_option("doc_deprecated")
    def apply(route: Route) -> None:
        route.deprecated = True

    return apply


def doc_hide() -> RouteOption:
    """Exclude the route from the OpenAPI document."""

    @_option("doc_hide")
    def apply(route: Route) -> None:
        route.hidden = True

    return apply


def with_input(record: type) -> RouteOption:
    """Bind and validate ``record`` before the handler; it receives the instance."""
    if not is_record(record):
        raise ConfigError(f"with_input expects a record type, got {record!r}")

    @_option("with_input")
    def apply(route: Route) -> None:
        route.input_type = record

    return apply


def with_output(record: Any, content_type: str | None = None) -> RouteOption:
    """Declare the response record and, optionally, a fixed output content type."""

    @_option("with_output")
    def apply(route: Route) -> None:
        route.output_type = record
        if content_type:
            route.produces = content_type

    return apply


def use(*middlewares: Middleware) -> RouteOption:
    """Route-local middlewares, innermost in the effective chain."""

    @_option("use")
    def apply(route: Route) -> None:
        route.local_middlewares.extend(middlewares)

    return apply


class Doc:
    """Chained builder collecting documentation options into one.

    Example:
        >>> option = Doc().summary("List books").tags("books").response(list[Book]).build()
    """

    __slots__ = ("_options",)

    def __init__(self) -> None:
        self._options: list[RouteOption] = []

    def _add(self, option: RouteOption) -> Doc:
        self._options.append(option)
        return self

    def summary(self, summary: str) -> Doc:
        return self._add(doc_summary(summary))

    def description(self, description: str) -> Doc:
        return self._add(doc_description(description))

    def operation_id(self, operation_id: str) -> Doc:
        return self._add(doc_operation_id(operation_id))

    def tags(self, *tags: str) -> Doc:
        return self._add(doc_tags(*tags))

    def request_body(self, schema: Any) -> Doc:
        return self._add(doc_request_body(schema))

    def response(self, schema: Any, status: int = 200) -> Doc:
        return self._add(doc_response(schema, status))

    def error_response(self, status: int, schema: Any = None) -> Doc:
        return self._add(doc_error_response(status, schema))

    def path_param(self, name: str, typ: str = "string", description: str = "") -> Doc:
        return self._add(doc_path_param(name, typ, description))

    def query_param(
        self, name: str, typ: str = "string", description: str = "", required: bool = False
    ) -> Doc:
        return self._add(doc_query_param(name, typ, description, required))

    def header(
        self, name: str, typ: str = "string", description: str = "", required: bool = False
    ) -> Doc:
        return self._add(doc_header(name, typ, description, required))

    def bearer_auth(self) -> Doc:
        return self._add(doc_bearer_auth())

    def basic_auth(self) -> Doc:
        return self._add(doc_basic_auth())

    def deprecated(self) -> Doc:
        return self._add(doc_deprecated())

    def hide(self) -> Doc:
        return self._add(doc_hide())

    def build(self) -> RouteOption:
        options = tuple(self._options)

        def apply(route: Route) -> None:
            for option in options:
                option(route)

        return RouteOption(apply, "doc")

    as_option = build


@dataclass
class RouteDefinition:
    """A route described as data.

    Either ``path`` or ``group`` must be set. ``request`` and ``response``
    are the input and output record types.
    """

    method: str
    path: str = ""
    handler: RouteHandler | None = None
    group: Group | None = None
    operation_id: str = ""
    summary: str = ""
    description: str = ""
    request: type | None = None
    response: Any = None
    security: list[dict[str, list[str]]] = field(default_factory=list)
    options: Sequence[RouteOption] = ()
    middlewares: Sequence[Middleware] = ()

    def validate(self) -> None:
        """Raises ConfigError for incomplete definitions."""
        if not self.path and self.group is None:
            raise ConfigError("Invalid route definition: either path or group must be specified")
        if not self.method:
            raise ConfigError(f"Invalid route definition: missing HTTP method for path={self.path!r}")
        if self.handler is None:
            raise ConfigError(
                f"Invalid route definition: missing handler for {self.method} {self.path!r}"
            )

    def route_options(self) -> list[RouteOption]:
        options = list(self.options)
        if self.operation_id:
            options.append(doc_operation_id(self.operation_id))
        if self.summary:
            options.append(doc_summary(self.summary))
        if self.description:
            options.append(doc_description(self.description))
        if self.request is not None:
            options.append(with_input(self.request))
        if self.response is not None:
            options.append(with_output(self.response))
        if self.security:
            options.append(doc_security(*self.security))
        if self.middlewares:
            options.append(use(*self.middlewares))
        return options
