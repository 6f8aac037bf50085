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
ASGI HTTP request adapter.

``Request`` wraps scope and receive. Header, query and cookie views are built
lazily; the body is read at most once:

- ``await request.body()`` buffers the whole body (bounded by
  ``max_body_size``) and caches it;
- ``request.stream()`` yields chunks directly from the transport. After a
  streaming read the raw body is gone and ``body()`` raises ``BodyConsumed``;
- ``await request.decoded()`` decodes the buffered body by Content-Type and
  caches the tree (dict/list for JSON, XML, YAML; ``FormData`` for
  URL-encoded and multipart), so repeated binds reuse it.

The current request is published in a ContextVar for code that has no
direct access to the Context.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextvars import ContextVar
from typing import Any

from python_multipart import MultipartParser
from python_multipart.multipart import parse_options_header

from .datastructures import (
    FormData,
    Headers,
    QueryParams,
    UploadFile,
    headers_from_scope,
    parse_cookie_header,
    query_params_from_scope,
)
from .encoding import MIME_FORM, MIME_MULTIPART, decode, encoding_for, media_type_of
from .exceptions import (
    BindError,
    BodyConsumed,
    BodyTooLarge,
    RequestTimeout,
    UnsupportedMediaType,
)
from .types import Receive, Scope

__all__ = ["Request", "get_current_request", "set_current_request", "DEFAULT_MAX_MEMORY"]

# Default cap on a buffered request body (32 MiB)
DEFAULT_MAX_MEMORY = 32 << 20

_current_request: ContextVar["Request | None"] = ContextVar("current_request", default=None)


def get_current_request() -> "Request | None":
    """Return the request being handled in the current task, if any."""
    return _current_request.get()


def set_current_request(request: "Request | None") -> Any:
    """Publish a request in the current context. Returns the reset token."""
    return _current_request.set(request)


class Request:
    """One HTTP request.

    Attributes:
        scope: Raw ASGI scope.
        max_body_size: Upper bound for ``body()``; 0 disables the check.
        read_timeout: Seconds allowed to receive the body; None waits.
    """

    __slots__ = (
        "scope",
        "max_body_size",
        "read_timeout",
        "_receive",
        "_headers",
        "_query",
        "_cookies",
        "_body",
        "_streamed",
        "_disconnected",
        "_decoded",
        "_has_decoded",
        "_form",
    )

    def __init__(
        self,
        scope: Scope,
        receive: Receive,
        max_body_size: int = DEFAULT_MAX_MEMORY,
        read_timeout: float | None = None,
    ) -> None:
        self.scope = scope
        self.max_body_size = max_body_size
        self.read_timeout = read_timeout
        self._receive = receive
        self._headers: Headers | None = None
        self._query: QueryParams | None = None
        self._cookies: dict[str, str] | None = None
        self._body: bytes | None = None
        self._streamed = False
        self._disconnected = False
        self._decoded: Any = None
        self._has_decoded = False
        self._form: FormData | None = None

    # ------------------------------------------------------------------ scope

    @property
    def method(self) -> str:
        return str(self.scope.get("method", "GET")).upper()

    @property
    def path(self) -> str:
        return str(self.scope.get("path", "/"))

    @property
    def scheme(self) -> str:
        return str(self.scope.get("scheme", "http"))

    @property
    def query_string(self) -> str:
        return self.scope.get("query_string", b"").decode("latin-1")

    @property
    def url(self) -> str:
        """Full request URL rebuilt from scope and Host header."""
        server = self.scope.get("server")
        host = self.headers.get("host")
        if not host and server:
            name, port = server
            default = 443 if self.scheme == "https" else 80
            host = name if port == default else f"{name}:{port}"
        url = f"{self.scheme}://{host or 'localhost'}{self.scope.get('root_path', '')}{self.path}"
        if self.query_string:
            url += f"?{self.query_string}"
        return url

    @property
    def headers(self) -> Headers:
        if self._headers is None:
            self._headers = headers_from_scope(self.scope)
        return self._headers

    @property
    def query_params(self) -> QueryParams:
        if self._query is None:
            self._query = query_params_from_scope(self.scope)
        return self._query

    @property
    def cookies(self) -> dict[str, str]:
        if self._cookies is None:
            self._cookies = parse_cookie_header(self.headers.get("cookie"))
        return self._cookies

    @property
    def client(self) -> tuple[str, int] | None:
        client = self.scope.get("client")
        return (client[0], client[1]) if client else None

    @property
    def content_type(self) -> str:
        return self.headers.get("content-type") or ""

    @property
    def media_type(self) -> str:
        return media_type_of(self.content_type)

    @property
    def content_length(self) -> int | None:
        value = self.headers.get("content-length")
        if value is None:
            return None
        try:
            return int(value)
        except ValueError:
            return None

    @property
    def is_disconnected(self) -> bool:
        return self._disconnected

    # ------------------------------------------------------------------- body

    async def stream(self) -> AsyncIterator[bytes]:
        """Yield body chunks from the transport.

        Serves the cached body if it was already buffered.
        """
        if self._body is not None:
            yield self._body
            return
        if self._streamed:
            raise BodyConsumed("Request body already consumed")
        self._streamed = True
        while True:
            message = await self._receive()
            if message["type"] == "http.disconnect":
                self._disconnected = True
                return
            chunk = message.get("body", b"")
            if chunk:
                yield chunk
            if not message.get("more_body", False):
                return

    async def body(self) -> bytes:
        """Read and cache the whole body.

        Raises:
            BodyTooLarge: Declared or actual length exceeds ``max_body_size``.
            BodyConsumed: The body was already read with ``stream()``.
            RequestTimeout: The body did not arrive within ``read_timeout``.
        """
        if self._body is not None:
            return self._body
        if self._streamed:
            raise BodyConsumed("Request body already consumed by a streaming reader")
        limit = self.max_body_size
        declared = self.content_length
        if limit and declared is not None and declared > limit:
            raise BodyTooLarge(limit)
        if self.read_timeout:
            try:
                self._body = await asyncio.wait_for(self._read_all(limit), self.read_timeout)
            except asyncio.TimeoutError as e:
                raise RequestTimeout(self.read_timeout) from e
        else:
            self._body = await self._read_all(limit)
        return self._body

    async def _read_all(self, limit: int) -> bytes:
        chunks: list[bytes] = []
        size = 0
        async for chunk in self.stream():
            size += len(chunk)
            if limit and size > limit:
                raise BodyTooLarge(limit)
            chunks.append(chunk)
        return b"".join(chunks)

    async def json(self) -> Any:
        return decode(await self.body(), "application/json")

    async def form(self) -> FormData:
        """Parse a URL-encoded or multipart body (cached).

        Other media types yield an empty FormData.
        """
        if self._form is None:
            media = self.media_type
            if media == MIME_FORM:
                raw = await self.body()
                self._form = FormData(raw.decode("utf-8", errors="replace"))
            elif media == MIME_MULTIPART:
                self._form = _parse_multipart(self.content_type, await self.body())
            else:
                self._form = FormData()
        return self._form

    async def decoded(self) -> Any:
        """Return the body decoded by Content-Type, cached after the first call.

        Returns None for an empty body without Content-Type.

        Raises:
            UnsupportedMediaType: No decoder for the Content-Type.
            BindError: Malformed body.
        """
        if self._has_decoded:
            return self._decoded
        media = self.media_type
        if media in (MIME_FORM, MIME_MULTIPART):
            value: Any = await self.form()
        elif encoding_for(media) is not None and media not in ("text/plain", "text/html"):
            value = decode(await self.body(), media)
        else:
            raw = await self.body()
            if raw or media:
                raise UnsupportedMediaType(self.content_type or None)
            value = None
        self._decoded = value
        self._has_decoded = True
        return value

    async def wait_disconnect(self) -> None:
        """Block until the client disconnects.

        Only meaningful once the body has been consumed (or for bodyless
        requests); further ``http.request`` messages are discarded.
        """
        while not self._disconnected:
            message = await self._receive()
            if message["type"] == "http.disconnect":
                self._disconnected = True

    def close(self) -> None:
        """Release uploaded files."""
        if self._form is not None:
            self._form.close()

    def __repr__(self) -> str:
        return f"<Request {self.method} {self.path}>"


def _parse_multipart(content_type: str, body: bytes) -> FormData:
    """Parse a multipart/form-data body into FormData.

    Text parts become fields; parts with a filename become spooled
    UploadFile objects, rewound to 0.
    """
    _, options = parse_options_header(content_type)
    boundary = options.get(b"boundary")
    if not boundary:
        raise BindError("Missing boundary in multipart/form-data")

    form = FormData()
    state: dict[str, Any] = {}
    header_field = bytearray()
    header_value = bytearray()

    def on_part_begin() -> None:
        state.clear()
        state["headers"] = []
        state["data"] = bytearray()

    def on_header_field(data: bytes, start: int, end: int) -> None:
        header_field.extend(data[start:end])

    def on_header_value(data: bytes, start: int, end: int) -> None:
        header_value.extend(data[start:end])

    def on_header_end() -> None:
        state["headers"].append((bytes(header_field).lower(), bytes(header_value)))
        header_field.clear()
        header_value.clear()

    def on_headers_finished() -> None:
        headers = Headers(state["headers"])
        disposition = headers.get("content-disposition")
        if not disposition:
            raise BindError("Missing Content-Disposition in multipart part")
        _, params = parse_options_header(disposition)
        state["name"] = params.get(b"name", b"").decode("utf-8", errors="replace")
        filename = params.get(b"filename")
        if filename is not None:
            state["file"] = UploadFile(
                filename=filename.decode("utf-8", errors="replace"),
                content_type=headers.get("content-type") or "application/octet-stream",
                headers=headers,
            )

    def on_part_data(data: bytes, start: int, end: int) -> None:
        upload = state.get("file")
        if upload is not None:
            upload.write(data[start:end])
        else:
            state["data"].extend(data[start:end])

    def on_part_end() -> None:
        upload = state.get("file")
        if upload is not None:
            upload.seek(0)
            form.add_file(state["name"], upload)
        else:
            form.append(state["name"], state["data"].decode("utf-8", errors="replace"))

    callbacks = {
        "on_part_begin": on_part_begin,
        "on_part_data": on_part_data,
        "on_part_end": on_part_end,
        "on_header_field": on_header_field,
        "on_header_value": on_header_value,
        "on_header_end": on_header_end,
        "on_headers_finished": on_headers_finished,
    }
    parser = MultipartParser(boundary, callbacks)
    try:
        parser.write(body)
        parser.finalize()
    except BindError:
        form.close()
        raise
    except Exception as e:
        form.close()
        raise BindError(f"Malformed multipart body: {e}") from e
    return form
