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

"""Per-request context facade.

One ``Context`` is created per request by the application and passed through
the middleware chain to the handler. It gives access to:

- request data: ``param()``, ``query()``, ``header()``, ``cookie()``,
  ``form()``, ``bind()``;
- the copy-on-write store shared by middlewares and handler: ``get()``,
  ``set()``, ``get_string()``, ``get_bool()``, ``get_int()``;
- responders writing into the buffered response: ``json()``, ``xml()``,
  ``yaml()``, ``text()``, ``html()``, ``render()``, ``data()``,
  ``respond()``, ``redirect()``, ``serve_file()``;
- error replies: ``error_*`` write the standard error body, ``abort_*``
  also commit the response and raise ``AbortError``;
- server-sent events: ``sse()``.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from pathlib import Path
from typing import TYPE_CHECKING, Any

from .binder import bind as bind_request
from .datastructures import FormData, Store, UploadFile
from .encoding import (
    MIME_HTML,
    MIME_JSON,
    MIME_SSE,
    MIME_TEXT,
    MIME_XML,
    MIME_YAML,
    Encoding,
    encode,
    negotiate,
)
from .exceptions import AbortError, FieldError, ValidationFailure, status_text
from .response import Response, make_cookie, project
from .sse import EventStream, Serializer
from .utils import real_ip, split_and_strip

if TYPE_CHECKING:
    from .application import Okapi
    from .request import Request
    from .router import Route
    from .types import Send

__all__ = ["Context"]

logger = logging.getLogger("okapi_asgi")


def _abort_helper(status: int) -> Callable[..., Any]:
    def abort(self: "Context", message: str = "", details: Any = None) -> None:
        self.abort(status, message, details)

    abort.__doc__ = f"Write a {status} {status_text(status)} error reply and raise AbortError."
    return abort


def _error_helper(status: int) -> Callable[..., Any]:
    def error(self: "Context", message: str = "", details: Any = None) -> None:
        self.error(status, message, details)

    error.__doc__ = f"Write a {status} {status_text(status)} error reply."
    return error


class Context:
    """Request context.

    Attributes:
        app: Application handling the request.
        request: The HTTP request.
        response: Buffered response flushed after the chain returns.
        params: Typed path parameters from the router.
        route: Matched route (None for framework endpoints).
        store: Copy-on-write key/value store.
    """

    __slots__ = ("app", "request", "response", "params", "route", "store", "_send", "_stream")

    def __init__(
        self,
        app: "Okapi",
        request: "Request",
        send: "Send",
        params: dict[str, Any] | None = None,
        route: "Route | None" = None,
    ) -> None:
        self.app = app
        self.request = request
        self.response = Response()
        self.params = params or {}
        self.route = route
        self.store = Store()
        self._send = send
        self._stream: EventStream | None = None

    @property
    def logger(self) -> logging.Logger:
        return logger

    # ----------------------------------------------------------------- store

    def get(self, key: str, default: Any = None) -> Any:
        return self.store.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self.store.set(key, value)

    def get_string(self, key: str) -> str:
        value = self.store.get(key)
        return value if isinstance(value, str) else ""

    def get_bool(self, key: str) -> bool:
        value = self.store.get(key)
        return value if isinstance(value, bool) else False

    def get_int(self, key: str) -> int:
        value = self.store.get(key)
        return value if isinstance(value, int) and not isinstance(value, bool) else 0

    def copy(self) -> "Context":
        """Context sharing request and response, with its own store snapshot.

        Use it to hand values to background tasks.
        """
        other = Context(self.app, self.request, self._send, dict(self.params), self.route)
        other.response = self.response
        other.store = self.store.copy()
        return other

    # --------------------------------------------------------------- request

    def param(self, name: str, default: Any = None) -> Any:
        """Path parameter (typed by its capture kind)."""
        return self.params.get(name, default)

    async def bind(self, cls: type) -> Any:
        """Bind and validate a record from the current request."""
        return await bind_request(self.request, cls, self.params)

    def query(self, name: str, default: str = "") -> str:
        value = self.request.query_params.get(name)
        return default if value is None else value

    def query_array(self, name: str) -> list[str]:
        """All values, with comma-separated values split and blanks dropped."""
        result: list[str] = []
        for value in self.request.query_params.getlist(name):
            result.extend(split_and_strip(value))
        return result

    def query_map(self) -> dict[str, str]:
        return dict(self.request.query_params.items())

    def header(self, name: str, default: str = "") -> str:
        value = self.request.headers.get(name)
        return default if value is None else value

    def headers(self) -> dict[str, list[str]]:
        result: dict[str, list[str]] = {}
        for name, value in self.request.headers.items():
            result.setdefault(name, []).append(value)
        return result

    def cookie(self, name: str, default: str | None = None) -> str | None:
        return self.request.cookies.get(name, default)

    def real_ip(self) -> str:
        return real_ip(self.request.headers, self.request.client)

    def referer(self) -> str:
        return self.header("referer")

    def accept(self) -> list[str]:
        return split_and_strip(self.request.headers.get("accept"))

    def accept_language(self) -> list[str]:
        return split_and_strip(self.request.headers.get("accept-language"))

    def content_type(self) -> str:
        return self.request.content_type

    def is_sse(self) -> bool:
        return MIME_SSE in (self.request.headers.get("accept") or "")

    async def form(self, name: str, default: str = "") -> str:
        form = await self.request.form()
        value = form.get(name)
        return default if value is None else value

    async def form_data(self) -> FormData:
        return await self.request.form()

    async def form_file(self, name: str) -> UploadFile | None:
        return (await self.request.form()).get_file(name)

    # ------------------------------------------------------------- responders

    @property
    def encoding(self) -> Encoding:
        """Encoding negotiated from Accept and the route's declared output."""
        produces = self.route.produces if self.route is not None else None
        return negotiate(self.request.headers.get("accept"), produces, self.app.default_encoding)

    def set_header(self, name: str, value: str) -> None:
        self.response.set_header(name, value)

    def set_cookie(
        self,
        name: str,
        value: str,
        max_age: int | None = None,
        path: str = "/",
        domain: str | None = None,
        secure: bool = False,
        httponly: bool = False,
        samesite: str | None = "lax",
    ) -> None:
        self.response.add_header(
            *make_cookie(
                name,
                value,
                max_age=max_age,
                path=path,
                domain=domain,
                secure=secure,
                httponly=httponly,
                samesite=samesite,
            )
        )

    def write_status(self, status: int) -> None:
        self.response.set_status(status)

    def data(self, status: int, content_type: str, body: bytes) -> None:
        self.response.write(status, content_type, body)

    def json(self, status: int, value: Any) -> None:
        self.response.write(status, MIME_JSON, encode(value, Encoding.JSON))

    def xml(self, status: int, value: Any) -> None:
        self.response.write(status, MIME_XML, encode(value, Encoding.XML))

    def yaml(self, status: int, value: Any) -> None:
        self.response.write(status, MIME_YAML, encode(value, Encoding.YAML))

    def text(self, status: int, value: Any) -> None:
        self.response.write(status, MIME_TEXT, str(value))

    string = text

    def ok(self, value: Any) -> None:
        """200 with a JSON body."""
        self.json(200, value)

    def created(self, value: Any) -> None:
        """201 with a JSON body."""
        self.json(201, value)

    def no_content(self) -> None:
        self.response.write(204, None, b"")

    def html(self, status: int, file: str | Path, data: Any = None) -> None:
        """Render a Jinja2 template file."""
        from .templates import render_file

        self.response.write(status, MIME_HTML, render_file(file, data, context=self))

    def html_view(self, status: int, source: str, data: Any = None) -> None:
        """Render a Jinja2 template given as a string."""
        from .templates import render_string

        self.response.write(status, MIME_HTML, render_string(source, data, context=self))

    def render(self, status: int, name: str, data: Any = None) -> None:
        """Render a named template with the application renderer.

        Raises:
            RuntimeError: No renderer configured.
        """
        renderer = self.app.renderer
        if renderer is None:
            raise RuntimeError("No renderer configured")
        self.response.write(status, MIME_HTML, renderer.render(name, data, context=self))

    def respond(self, record: Any) -> None:
        """Project a response record with the negotiated encoding."""
        project(self.response, record, self.encoding)

    def redirect(self, url: str, status: int = 302) -> None:
        self.response.set_header("location", url)
        self.response.write(status, MIME_TEXT, f"Redirecting to {url}")

    def serve_file(self, path: str | Path) -> None:
        """Send a file; 404 if it does not exist."""
        from .static import read_file

        found = read_file(path)
        if found is None:
            self.error_not_found()
            return
        content_type, body, etag = found
        if etag and self.request.headers.get("if-none-match") == etag:
            self.response.set_header("etag", etag)
            self.response.write(304, None, b"")
            return
        if etag:
            self.response.set_header("etag", etag)
        self.response.write(200, content_type, body)

    def serve_file_attachment(self, path: str | Path, filename: str) -> None:
        self.response.set_header("content-disposition", f'attachment; filename="{filename}"')
        self.serve_file(path)

    def serve_file_inline(self, path: str | Path, filename: str) -> None:
        self.response.set_header("content-disposition", f'inline; filename="{filename}"')
        self.serve_file(path)

    # ----------------------------------------------------------------- errors

    def error(self, status: int, message: str = "", details: Any = None) -> None:
        """Write the standard error body without raising."""
        body = {
            "success": False,
            "status": status,
            "message": message or status_text(status),
            "details": details,
        }
        self.response.write(status, MIME_JSON, encode(body, Encoding.JSON))

    def abort(self, status: int, message: str = "", details: Any = None) -> None:
        """Write the error reply, commit the response and raise AbortError."""
        self.error(status, message, details)
        self.response.commit()
        raise AbortError(status, message or status_text(status), details)

    def abort_with_json(self, status: int, value: Any) -> None:
        self.json(status, value)
        self.response.commit()
        raise AbortError(status, status_text(status))

    def abort_validation_errors(self, errors: list[FieldError], message: str = "") -> None:
        failure = ValidationFailure(errors)
        self.abort(failure.status_code, message or failure.message, failure.details)

    error_bad_request = _error_helper(400)
    error_unauthorized = _error_helper(401)
    error_forbidden = _error_helper(403)
    error_not_found = _error_helper(404)
    error_method_not_allowed = _error_helper(405)
    error_conflict = _error_helper(409)
    error_gone = _error_helper(410)
    error_request_entity_too_large = _error_helper(413)
    error_unsupported_media_type = _error_helper(415)
    error_unprocessable_entity = _error_helper(422)
    error_too_many_requests = _error_helper(429)
    error_internal_server_error = _error_helper(500)
    error_service_unavailable = _error_helper(503)

    abort_bad_request = _abort_helper(400)
    abort_unauthorized = _abort_helper(401)
    abort_forbidden = _abort_helper(403)
    abort_not_found = _abort_helper(404)
    abort_method_not_allowed = _abort_helper(405)
    abort_conflict = _abort_helper(409)
    abort_gone = _abort_helper(410)
    abort_request_entity_too_large = _abort_helper(413)
    abort_unsupported_media_type = _abort_helper(415)
    abort_unprocessable_entity = _abort_helper(422)
    abort_too_many_requests = _abort_helper(429)
    abort_internal_server_error = _abort_helper(500)
    abort_service_unavailable = _abort_helper(503)

    # -------------------------------------------------------------------- sse

    def sse(self, serializer: Serializer | None = None, ping_interval: float | None = None) -> EventStream:
        """Return the request's event stream, creating it on first call."""
        if self._stream is None:
            self._stream = EventStream(
                self.request, self._send, self.response, serializer, ping_interval
            )
        return self._stream

    async def send_sse(self, event: str, data: Any, id: str = "") -> str | None:
        return await self.sse().send(data, event=event, id=id)

    @property
    def stream(self) -> EventStream | None:
        return self._stream

    async def close(self) -> None:
        """Close the event stream (if any) and release uploads."""
        if self._stream is not None:
            await self._stream.close()
        self.request.close()

    def __repr__(self) -> str:
        return f"<Context {self.request.method} {self.request.path}>"
