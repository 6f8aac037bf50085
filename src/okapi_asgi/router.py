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
URL router with typed path parameters.

Patterns
========
Segments are separated by ``/``. A segment is either a literal or a capture::

    /books                    literal
    /books/{id}               string capture
    /books/{id:int}           int capture (also float, uuid)
    /files/{rest:path}        wildcard, final segment only, may span "/"
    /books/:id                legacy form of {id}

A pattern is compiled once into a ``PathPattern``. Two routes conflict when
they share the method and the canonical form of the pattern (capture names are
not part of the canonical form: ``/x/{id}`` and ``/x/{name}`` match exactly
the same requests).

Matching
========
One segment trie per method. At each node literal children are tried first,
then typed captures from the most specific kind (uuid, int, float, string),
then the wildcard. A typed capture that does not parse is a miss and the walk
backtracks. Disabled routes are skipped the same way.

When nothing matches for the method, the other method tries are walked: a hit
there raises ``MethodNotAllowed`` with the allowed set, otherwise
``NotFound``. ``HEAD`` falls back to ``GET``.

Trailing slash policy: with ``strict_slash=False`` (default) a trailing slash
is ignored on both patterns and request paths; with ``strict_slash=True``
``/x`` and ``/x/`` are different routes.
"""

from __future__ import annotations

import re
import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable

from .exceptions import ConfigError, MethodNotAllowed, NotFound, RouteConflict

if TYPE_CHECKING:
    from .group import Group
    from .types import Handler, Middleware, RouteHandler

__all__ = [
    "METHODS",
    "CAPTURE_KINDS",
    "Segment",
    "PathPattern",
    "compile_path",
    "Route",
    "RouteMatch",
    "Router",
]

METHODS = ("GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS", "CONNECT", "TRACE")

_INT_RE = re.compile(r"[-+]?\d+")
_FLOAT_RE = re.compile(r"[-+]?(\d+(\.\d*)?|\.\d+)([eE][-+]?\d+)?")
_NAME_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_\-]*")


def _to_int(value: str) -> int | None:
    return int(value) if _INT_RE.fullmatch(value) else None


def _to_float(value: str) -> float | None:
    return float(value) if _FLOAT_RE.fullmatch(value) else None


def _to_uuid(value: str) -> uuid.UUID | None:
    try:
        return uuid.UUID(value)
    except ValueError:
        return None


# kind -> (converter returning None on mismatch, specificity rank)
CAPTURE_KINDS: dict[str, tuple[Callable[[str], Any], int]] = {
    "uuid": (_to_uuid, 0),
    "int": (_to_int, 1),
    "float": (_to_float, 2),
    "string": (lambda value: value, 3),
}

_KIND_ALIASES = {"str": "string", "string": "string", "integer": "int", "number": "float"}


@dataclass(frozen=True, slots=True)
class Segment:
    """A compiled pattern segment. ``kind`` is None for literals."""

    value: str
    name: str | None = None
    kind: str | None = None

    @property
    def canonical(self) -> str:
        if self.kind is None:
            return self.value
        return "{" + self.kind + "}"


@dataclass(frozen=True, slots=True)
class PathPattern:
    """A compiled path pattern.

    Attributes:
        raw: Pattern as registered (after slash normalization).
        segments: Compiled segments.
        canonical: Identity used for conflict detection.
    """

    raw: str
    segments: tuple[Segment, ...]
    canonical: str

    @property
    def captures(self) -> tuple[str, ...]:
        return tuple(seg.name for seg in self.segments if seg.name is not None)

    def capture_kind(self, name: str) -> str | None:
        for seg in self.segments:
            if seg.name == name:
                return seg.kind
        return None

    @property
    def openapi_path(self) -> str:
        """The pattern in OpenAPI ``{name}`` syntax."""
        parts = [
            "{" + seg.name + "}" if seg.name is not None else seg.value
            for seg in self.segments
        ]
        return "/" + "/".join(parts)


def _split(path: str, strict_slash: bool) -> list[str]:
    if not path.startswith("/"):
        path = "/" + path
    parts = path[1:].split("/")
    if parts == [""]:
        return []
    if not strict_slash and parts and parts[-1] == "":
        parts.pop()
    return parts


def _render(seg: Segment) -> str:
    if seg.kind is None:
        return seg.value
    if seg.kind == "string":
        return "{" + str(seg.name) + "}"
    return "{" + f"{seg.name}:{seg.kind}" + "}"


def compile_path(path: str, strict_slash: bool = False) -> PathPattern:
    """Compile a path pattern.

    Raises:
        ConfigError: Unknown capture kind, duplicate capture name, wildcard not
            in final position, or malformed capture syntax.
    """
    segments: list[Segment] = []
    parts = _split(path, strict_slash)
    names: set[str] = set()
    for index, part in enumerate(parts):
        if part.startswith("{") and part.endswith("}"):
            inner = part[1:-1]
            name, _, kind = inner.partition(":")
            kind = _KIND_ALIASES.get(kind, kind) if kind else "string"
            if kind not in CAPTURE_KINDS and kind != "path":
                raise ConfigError(f"Unknown capture kind {kind!r} in {path!r}")
        elif part.startswith(":") and len(part) > 1:
            name, kind = part[1:], "string"
        elif "{" in part or "}" in part:
            raise ConfigError(f"Malformed capture segment {part!r} in {path!r}")
        else:
            segments.append(Segment(value=part))
            continue

        if not _NAME_RE.fullmatch(name):
            raise ConfigError(f"Invalid capture name {name!r} in {path!r}")
        if name in names:
            raise ConfigError(f"Duplicate capture name {name!r} in {path!r}")
        if kind == "path" and index != len(parts) - 1:
            raise ConfigError(f"Wildcard {{{name}:path}} must be the final segment of {path!r}")
        names.add(name)
        segments.append(Segment(value=part, name=name, kind=kind))

    raw = "/" + "/".join(_render(seg) for seg in segments)
    canonical = "/" + "/".join(seg.canonical for seg in segments)
    return PathPattern(raw=raw, segments=tuple(segments), canonical=canonical)


@dataclass(eq=False)
class Route:
    """A registered route.

    Everything except ``enabled`` is fixed once the application starts.
    Documentation attributes are filled by route options at registration.
    """

    method: str
    path: str
    handler: RouteHandler
    pattern: PathPattern | None = None
    endpoint: Handler | None = None
    middlewares: list[Middleware] = field(default_factory=list)
    local_middlewares: list[Middleware] = field(default_factory=list)
    input_type: type | None = None
    output_type: Any = None
    produces: str | None = None
    name: str | None = None
    operation_id: str | None = None
    summary: str | None = None
    description: str | None = None
    tags: list[str] = field(default_factory=list)
    security: list[dict[str, list[str]]] = field(default_factory=list)
    deprecated: bool = False
    hidden: bool = False
    request_body: Any = None
    request_example: Any = None
    response_example: Any = None
    responses: dict[int, Any] = field(default_factory=dict)
    doc_params: list[dict[str, Any]] = field(default_factory=list)
    group: Group | None = None
    _enabled: bool = True

    @property
    def enabled(self) -> bool:
        """True if the route and every enclosing group are enabled."""
        if not self._enabled:
            return False
        return self.group is None or self.group.enabled

    def enable(self) -> Route:
        self._enabled = True
        return self

    def disable(self) -> Route:
        self._enabled = False
        return self

    def __repr__(self) -> str:
        return f"Route({self.method} {self.path})"


@dataclass(frozen=True, slots=True)
class RouteMatch:
    """Result of a successful match: the route and its typed path params."""

    route: Route
    params: dict[str, Any]


class _Node:
    """Trie node for one method tree."""

    __slots__ = ("literals", "captures", "wildcard", "route")

    def __init__(self) -> None:
        self.literals: dict[str, _Node] = {}
        # kind -> child, kept sorted by specificity
        self.captures: dict[str, _Node] = {}
        self.wildcard: Route | None = None
        self.route: Route | None = None

    def capture_child(self, kind: str) -> _Node:
        child = self.captures.get(kind)
        if child is None:
            child = _Node()
            self.captures[kind] = child
            self.captures = dict(
                sorted(self.captures.items(), key=lambda item: CAPTURE_KINDS[item[0]][1])
            )
        return child


class Router:
    """Method-indexed segment trie.

    Usage::

        router = Router()
        router.add(Route("GET", "/books/{id:int}", handler))
        router.freeze()
        match = router.match("GET", "/books/42")
        match.params  # {"id": 42}
    """

    __slots__ = ("strict_slash", "_trees", "_routes", "_keys", "_frozen")

    def __init__(self, strict_slash: bool = False) -> None:
        self.strict_slash = strict_slash
        self._trees: dict[str, _Node] = {}
        self._routes: list[Route] = []
        self._keys: set[tuple[str, str]] = set()
        self._frozen = False

    @property
    def frozen(self) -> bool:
        return self._frozen

    def freeze(self) -> None:
        """Freeze the routing table. Only ``enabled`` flags may change afterwards."""
        self._frozen = True

    def routes(self) -> list[Route]:
        """Registered routes in registration order."""
        return list(self._routes)

    def add(self, route: Route) -> Route:
        """Compile and insert a route.

        Raises:
            ConfigError: Frozen router, unknown method or invalid pattern.
            RouteConflict: Same method and canonical pattern already registered.
        """
        if self._frozen:
            raise ConfigError(f"Cannot register {route.method} {route.path}: router is frozen")
        method = route.method.upper()
        if method not in METHODS:
            raise ConfigError(f"Unsupported HTTP method {route.method!r}")
        pattern = compile_path(route.path, self.strict_slash)
        key = (method, pattern.canonical)
        if key in self._keys:
            raise RouteConflict(method, route.path)

        route.method = method
        route.pattern = pattern
        node = self._trees.setdefault(method, _Node())
        for seg in pattern.segments:
            if seg.kind == "path":
                node.wildcard = route
                break
            if seg.kind is None:
                node = node.literals.setdefault(seg.value, _Node())
            else:
                node = node.capture_child(seg.kind)
        else:
            node.route = route

        self._keys.add(key)
        self._routes.append(route)
        return route

    def match(self, method: str, path: str) -> RouteMatch:
        """Match a request.

        Raises:
            NotFound: No enabled route matches the path.
            MethodNotAllowed: The path matches only under other methods.
        """
        method = method.upper()
        parts = _split(path, self.strict_slash)

        found = self._lookup(method, parts)
        if found is None and method == "HEAD":
            found = self._lookup("GET", parts)
        if found is not None:
            route, values = found
            return RouteMatch(route=route, params=_bind_params(route, values))

        allowed = [
            other
            for other in self._trees
            if other != method and self._lookup(other, parts) is not None
        ]
        if allowed:
            if "GET" in allowed and "HEAD" not in allowed:
                allowed.append("HEAD")
            raise MethodNotAllowed(allowed)
        raise NotFound()

    def _lookup(self, method: str, parts: list[str]) -> tuple[Route, list[Any]] | None:
        tree = self._trees.get(method)
        if tree is None:
            return None
        return _walk(tree, parts, 0, [])


def _walk(
    node: _Node, parts: list[str], index: int, values: list[Any]
) -> tuple[Route, list[Any]] | None:
    if index == len(parts):
        if node.route is not None and node.route.enabled:
            return node.route, values
        return None

    part = parts[index]

    child = node.literals.get(part)
    if child is not None:
        found = _walk(child, parts, index + 1, values)
        if found is not None:
            return found

    if part:
        for kind, child in node.captures.items():
            converted = CAPTURE_KINDS[kind][0](part)
            if converted is None:
                continue
            found = _walk(child, parts, index + 1, [*values, converted])
            if found is not None:
                return found

    wildcard = node.wildcard
    if wildcard is not None and wildcard.enabled:
        rest = "/".join(parts[index:])
        if rest:
            return wildcard, [*values, rest]

    return None


def _bind_params(route: Route, values: list[Any]) -> dict[str, Any]:
    assert route.pattern is not None
    return dict(zip(route.pattern.captures, values))
