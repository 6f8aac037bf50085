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
OpenAPI document builder.

Walks the application's enabled, non-hidden routes and the FieldPlans of
their input/output records and produces an OpenAPI 3.0.3 document.

Per route:
    path        pattern in ``{name}`` syntax
    tags        route tags, else group tags, else group prefix
    parameters  one per path/query/header/cookie slot of the input record,
                auto path params for unbound captures, doc_* params
    requestBody body slot (or embedded keys) as JSON; form slots as
                urlencoded or multipart (when a file slot exists);
                else ``doc_request_body``
    responses   doc_response / doc_error_response entries, the output record
                as 200, default error responses when none is documented

The document is cached. Registration invalidates it, and toggling
``enabled`` on a route or group is detected through a snapshot of the flags.
Rebuilds happen under a lock so concurrent first requests build once.
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING, Any

import orjson

from ..exceptions import status_text
from ..fields import FieldPlan, is_record, plan_for
from ..route import PARAM_TYPES
from .schema import CAPTURE_SCHEMAS, SchemaRegistry

if TYPE_CHECKING:
    from ..application import Okapi
    from ..router import Route

__all__ = ["OpenAPIBuilder", "SECURITY_SCHEMES"]

logger = logging.getLogger("okapi_asgi")

OPENAPI_VERSION = "3.0.3"

SECURITY_SCHEMES: dict[str, dict[str, Any]] = {
    "bearerAuth": {"type": "http", "scheme": "bearer", "bearerFormat": "JWT"},
    "basicAuth": {"type": "http", "scheme": "basic"},
}

_PARAM_SOURCES = ("path", "query", "header", "cookie")


class OpenAPIBuilder:
    """Builds and caches the OpenAPI document of an application.

    Example:
        >>> builder = OpenAPIBuilder(app)
        >>> doc = builder.document()
        >>> doc["paths"]["/books/{id}"]["get"]["parameters"][0]["in"]
        'path'
    """

    __slots__ = ("app", "_lock", "_cache", "_state")

    def __init__(self, app: Okapi) -> None:
        self.app = app
        self._lock = threading.Lock()
        self._cache: dict[str, Any] | None = None
        self._state: tuple[bool, ...] = ()

    def invalidate(self) -> None:
        self._cache = None

    def _snapshot(self) -> tuple[bool, ...]:
        return tuple(route.enabled for route in self.app.routes())

    def document(self) -> dict[str, Any]:
        """Return the cached document, rebuilding it when stale."""
        state = self._snapshot()
        cached = self._cache
        if cached is not None and state == self._state:
            return cached
        with self._lock:
            if self._cache is None or state != self._state:
                self._cache = self.build()
                self._state = state
            return self._cache

    def json(self) -> bytes:
        return orjson.dumps(self.document())

    # ------------------------------------------------------------------ build

    def build(self) -> dict[str, Any]:
        """Build a fresh document from the current routes."""
        info_settings = self.app.settings.openapi
        registry = SchemaRegistry()
        paths: dict[str, dict[str, Any]] = {}
        tag_names: list[str] = []
        used_schemes: set[str] = set()

        for route in self.app.routes():
            if not route.enabled or route.hidden or route.pattern is None:
                continue
            operation = self.operation(route, registry)
            for tag in operation.get("tags", []):
                if tag not in tag_names:
                    tag_names.append(tag)
            for requirement in route.security:
                used_schemes.update(requirement)
            item = paths.setdefault(route.pattern.openapi_path, {})
            item[route.method.lower()] = operation

        info: dict[str, Any] = {"title": info_settings.title, "version": info_settings.version}
        if info_settings.description:
            info["description"] = info_settings.description
        if info_settings.license:
            info["license"] = dict(info_settings.license)
        if info_settings.contact:
            info["contact"] = dict(info_settings.contact)

        document: dict[str, Any] = {"openapi": OPENAPI_VERSION, "info": info}
        if info_settings.servers:
            document["servers"] = [dict(server) for server in info_settings.servers]
        document["paths"] = paths

        schemes = {"bearerAuth": SECURITY_SCHEMES["bearerAuth"]}
        for name in sorted(used_schemes):
            if name in SECURITY_SCHEMES:
                schemes[name] = SECURITY_SCHEMES[name]
        document["components"] = {"schemas": registry.components, "securitySchemes": schemes}
        if tag_names:
            document["tags"] = [{"name": tag} for tag in tag_names]
        logger.debug("OpenAPI document built: %d paths", len(paths))
        return document

    def operation(self, route: Route, registry: SchemaRegistry) -> dict[str, Any]:
        """OpenAPI operation object of one route."""
        op: dict[str, Any] = {}
        tags = self._tags(route)
        if tags:
            op["tags"] = tags
        if route.summary:
            op["summary"] = route.summary
        if route.description:
            op["description"] = route.description
        if route.operation_id:
            op["operationId"] = route.operation_id

        plan = plan_for(route.input_type) if route.input_type is not None else None
        parameters = self._parameters(route, plan, registry)
        if parameters:
            op["parameters"] = parameters
        body = self._request_body(route, plan, registry)
        if body is not None:
            op["requestBody"] = body
        op["responses"] = self._responses(route, plan, registry)
        if route.deprecated:
            op["deprecated"] = True
        if route.security:
            op["security"] = [dict(requirement) for requirement in route.security]
        return op

    @staticmethod
    def _tags(route: Route) -> list[str]:
        if route.tags:
            return list(route.tags)
        if route.group is not None:
            return route.group.inherited_tags() or [route.group.full_prefix]
        return []

    # ------------------------------------------------------------- parameters

    def _parameters(
        self, route: Route, plan: FieldPlan | None, registry: SchemaRegistry
    ) -> list[dict[str, Any]]:
        params: dict[tuple[str, str], dict[str, Any]] = {}

        if plan is not None:
            for slot in plan.slots:
                source = slot.source
                if source not in _PARAM_SOURCES or slot.constraints.hidden:
                    continue
                schema = registry.slot_schema(slot)
                param: dict[str, Any] = {
                    "name": slot.name,
                    "in": source,
                    "required": source == "path" or slot.constraints.required,
                }
                description = schema.pop("description", None)
                if description:
                    param["description"] = description
                if schema.pop("deprecated", False):
                    param["deprecated"] = True
                example = schema.pop("example", None)
                if example is not None:
                    param["example"] = example
                param["schema"] = schema
                params[(source, slot.name)] = param

        assert route.pattern is not None
        for name in route.pattern.captures:
            if ("path", name) in params:
                continue
            params[("path", name)] = {
                "name": name,
                "in": "path",
                "required": True,
                "schema": dict(CAPTURE_SCHEMAS.get(route.pattern.capture_kind(name)) or {"type": "string"}),
            }

        for doc in route.doc_params:
            typ, fmt = PARAM_TYPES[doc["type"]]
            schema: dict[str, Any] = {"type": typ}
            if fmt:
                schema["format"] = fmt
            param = {
                "name": doc["name"],
                "in": doc["in"],
                "required": doc["in"] == "path" or bool(doc["required"]),
                "schema": schema,
            }
            if doc["description"]:
                param["description"] = doc["description"]
            params[(doc["in"], doc["name"])] = param

        order = {source: index for index, source in enumerate(_PARAM_SOURCES)}
        return sorted(params.values(), key=lambda p: order.get(p["in"], len(order)))

    # ----------------------------------------------------------- request body

    def _request_body(
        self, route: Route, plan: FieldPlan | None, registry: SchemaRegistry
    ) -> dict[str, Any] | None:
        content: dict[str, Any] | None = None
        required = False

        if plan is not None:
            body_slot = plan.body_slot
            form_slots = [s for s in plan.slots if s.source == "form" and not s.constraints.hidden]
            if body_slot is not None:
                content = {"application/json": {"schema": registry.slot_schema(body_slot, facets=False)}}
                required = body_slot.constraints.required or not body_slot.optional
            elif plan.embedded_slots:
                content = {"application/json": {"schema": registry.ref(plan.record)}}
                required = any(s.constraints.required for s in plan.embedded_slots)
            # form fields sit next to a JSON body as an alternative media type
            if form_slots:
                media = (
                    "multipart/form-data"
                    if any(s.is_file for s in form_slots)
                    else "application/x-www-form-urlencoded"
                )
                content = content or {}
                content[media] = {"schema": registry.object_schema(plan, form_slots)}
                required = required or any(s.constraints.required for s in form_slots)

        if content is None and route.request_body is not None:
            content = {"application/json": {"schema": registry.describe(route.request_body)}}
            required = True

        if content is None:
            return None
        if route.request_example is not None:
            for media in content.values():
                media["example"] = route.request_example
        return {"content": content, "required": required}

    # -------------------------------------------------------------- responses

    def _responses(
        self, route: Route, plan: FieldPlan | None, registry: SchemaRegistry
    ) -> dict[str, Any]:
        responses: dict[int, dict[str, Any]] = {}
        media_type = route.produces or "application/json"

        for status, (schema, description) in sorted(route.responses.items()):
            if status >= 400 and schema is None:
                schema_obj = registry.error_ref()
            elif schema is None:
                schema_obj = None
            else:
                schema_obj = registry.describe(schema)
            response: dict[str, Any] = {"description": description or status_text(status)}
            if schema_obj is not None:
                response["content"] = {media_type if status < 400 else "application/json": {"schema": schema_obj}}
            if status < 300 and is_record(schema):
                headers = self._response_headers(schema, registry)
                if headers:
                    response["headers"] = headers
            responses[status] = response

        if not any(200 <= status < 300 for status in responses):
            response = {"description": "OK"}
            if route.output_type is not None:
                response["content"] = {media_type: {"schema": registry.describe(route.output_type)}}
                if is_record(route.output_type):
                    headers = self._response_headers(route.output_type, registry)
                    if headers:
                        response["headers"] = headers
            responses[200] = response

        if route.response_example is not None:
            for status in sorted(responses):
                if 200 <= status < 300 and "content" in responses[status]:
                    for media in responses[status]["content"].values():
                        media["example"] = route.response_example
                    break

        if not any(status >= 400 for status in responses):
            defaults = []
            if plan is not None or (route.pattern is not None and route.pattern.captures):
                defaults.append(400)
            if route.security:
                defaults.append(401)
            defaults.append(500)
            for status in defaults:
                responses[status] = {
                    "description": status_text(status),
                    "content": {"application/json": {"schema": registry.error_ref()}},
                }

        return {str(status): responses[status] for status in sorted(responses)}

    @staticmethod
    def _response_headers(record: type, registry: SchemaRegistry) -> dict[str, Any]:
        headers: dict[str, Any] = {}
        for slot in plan_for(record).slots:
            name = slot.name_for("header")
            if name and not slot.constraints.hidden:
                header: dict[str, Any] = {"schema": registry.slot_schema(slot, facets=False)}
                if slot.constraints.description:
                    header["description"] = slot.constraints.description
                headers[name] = header
        return headers
