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
HTTP Response and the response projector.

The Context owns one buffered ``Response`` per request. Responders write
status, content type and body into it; the application flushes it once the
middleware chain returns, so post-phases of middlewares can still inspect
and rewrite it (gzip, CORS headers, request id)::

    response.write(201, "application/json", b'{"id": 1}')
    await response(scope, receive, send)

Commit semantics
================
``commit()`` freezes the response: later ``write()`` calls raise
``ResponseCommitted``. Abort helpers commit right after writing the error
reply. Server-sent events commit and stream directly.

Projection
==========
``project(response, record, encoding)`` is the inverse of the binder for
response records: header fields become headers, an integer ``status`` field
sets the status, the ``body`` field (or the whole record) is encoded with the
negotiated encoding.

``set_result(value)`` shapes plain handler results: dict/list/dataclass to
JSON, str to text, bytes to octet-stream, Path to file content.

Helper Functions
================
make_cookie(key, value, **options)
    Creates Set-Cookie header tuple for use with headers parameter.
"""

from __future__ import annotations

import dataclasses
import mimetypes
from collections.abc import Mapping
from pathlib import Path
from typing import Any
from urllib.parse import quote

from .encoding import MIME_JSON, MIME_OCTET, MIME_TEXT, Encoding, encode, to_primitive
from .exceptions import ResponseCommitted
from .fields import is_record, plan_for
from .types import Receive, Scope, Send

__all__ = [
    "Response",
    "JSONResponse",
    "HTMLResponse",
    "PlainTextResponse",
    "RedirectResponse",
    "make_cookie",
    "project",
]

HeadersInput = Mapping[str, str] | list[tuple[str, str]] | None

# Bodyless status codes (RFC 9110)
_NO_BODY_STATUS = frozenset({204, 304})


def _normalize_headers(headers: HeadersInput) -> list[tuple[str, str]]:
    if headers is None:
        return []
    if isinstance(headers, list):
        return list(headers)
    return list(headers.items())


class Response:
    """
    Buffered HTTP response.

    Usable as an ASGI application. Handlers may also return a Response
    directly; it then replaces the context response.

    Attributes:
        body: Encoded response body as bytes.
        status_code: HTTP status code.
        committed: True once the response is frozen or sent.
    """

    __slots__ = ("body", "status_code", "_media_type", "_headers", "committed", "written", "sent")

    media_type: str | None = None
    charset: str = "utf-8"

    def __init__(
        self,
        content: bytes | str | None = None,
        status_code: int = 200,
        headers: HeadersInput = None,
        media_type: str | None = None,
    ) -> None:
        self.status_code = status_code
        self._headers: list[tuple[str, str]] = _normalize_headers(headers)
        self._media_type = media_type if media_type is not None else type(self).media_type
        self.body = self._encode_content(content)
        self.committed = False
        self.written = content is not None
        self.sent = False

    def _encode_content(self, content: bytes | str | None) -> bytes:
        if content is None:
            return b""
        if isinstance(content, bytes):
            return content
        return content.encode(self.charset)

    # --------------------------------------------------------------- headers

    @property
    def headers(self) -> list[tuple[str, str]]:
        """Copy of the header list (content headers excluded)."""
        return list(self._headers)

    @property
    def content_type(self) -> str | None:
        explicit = self.get_header("content-type")
        if explicit is not None:
            return explicit
        if self._media_type is None:
            return None
        if self._media_type.startswith("text/") and "charset" not in self._media_type:
            return f"{self._media_type}; charset={self.charset}"
        return self._media_type

    def get_header(self, name: str) -> str | None:
        lowered = name.lower()
        for key, value in self._headers:
            if key.lower() == lowered:
                return value
        return None

    def set_header(self, name: str, value: str) -> None:
        """Set a header, replacing existing values of the same name."""
        self.delete_header(name)
        self._headers.append((name, value))

    def add_header(self, name: str, value: str) -> None:
        """Append a header, keeping existing values (Set-Cookie, Vary)."""
        self._headers.append((name, value))

    def delete_header(self, name: str) -> None:
        lowered = name.lower()
        self._headers = [(k, v) for k, v in self._headers if k.lower() != lowered]

    # ----------------------------------------------------------------- body

    def _check_open(self) -> None:
        if self.committed:
            raise ResponseCommitted("Response already committed")

    def write(self, status_code: int, media_type: str | None, body: bytes | str = b"") -> None:
        """Replace status, content type and body.

        Raises:
            ResponseCommitted: The response is committed.
        """
        self._check_open()
        self.status_code = status_code
        self._media_type = media_type
        self.delete_header("content-type")
        self.body = self._encode_content(body)
        self.written = True

    def set_body(self, body: bytes) -> None:
        """Replace the body only (used by encoding middlewares)."""
        self._check_open()
        self.body = body

    def set_status(self, status_code: int) -> None:
        self._check_open()
        self.status_code = status_code
        self.written = True

    def commit(self) -> None:
        self.committed = True

    def set_result(self, result: Any) -> None:
        """Set the body from a plain handler result.

        - dict / list / dataclass: application/json
        - Path: file bytes with guessed media type
        - bytes: application/octet-stream
        - str: text/plain
        - None: 204 unless something was already written
        """
        if result is None:
            if not self.written:
                self.write(204, None, b"")
            return
        if isinstance(result, Path):
            guessed, _ = mimetypes.guess_type(str(result))
            self.write(self.status_code, guessed or MIME_OCTET, result.read_bytes())
        elif isinstance(result, bytes):
            self.write(self.status_code, MIME_OCTET, result)
        elif isinstance(result, str):
            self.write(self.status_code, MIME_TEXT, result)
        elif isinstance(result, (dict, list, tuple)) or dataclasses.is_dataclass(result):
            self.write(self.status_code, MIME_JSON, encode(result, Encoding.JSON))
        else:
            self.write(self.status_code, MIME_TEXT, str(result))

    # ----------------------------------------------------------------- ASGI

    def _build_headers(self) -> list[tuple[bytes, bytes]]:
        headers = [
            (name.lower().encode("latin-1"), value.encode("latin-1"))
            for name, value in self._headers
            if name.lower() not in ("content-type", "content-length")
        ]
        content_type = self.content_type
        if content_type and self.status_code not in _NO_BODY_STATUS:
            headers.append((b"content-type", content_type.encode("latin-1")))
        if self.status_code not in _NO_BODY_STATUS:
            headers.append((b"content-length", str(len(self.body)).encode("latin-1")))
        return headers

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        """Send start and body messages. HEAD requests get headers only."""
        self.committed = True
        self.sent = True
        await send(
            {
                "type": "http.response.start",
                "status": self.status_code,
                "headers": self._build_headers(),
            }
        )
        body = self.body
        if scope.get("method") == "HEAD" or self.status_code in _NO_BODY_STATUS:
            body = b""
        await send({"type": "http.response.body", "body": body})

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.status_code} {self.content_type or ''}>"


class JSONResponse(Response):
    """Response whose content is any JSON-serializable value."""

    __slots__ = ()
    media_type = MIME_JSON

    def __init__(
        self, content: Any = None, status_code: int = 200, headers: HeadersInput = None
    ) -> None:
        super().__init__(encode(content, Encoding.JSON), status_code, headers)


class HTMLResponse(Response):
    __slots__ = ()
    media_type = "text/html"


class PlainTextResponse(Response):
    __slots__ = ()
    media_type = MIME_TEXT


class RedirectResponse(Response):
    __slots__ = ()

    def __init__(self, url: str, status_code: int = 302, headers: HeadersInput = None) -> None:
        super().__init__(b"", status_code, headers)
        self.set_header("location", quote(url, safe=":/%#?=@[]!$&'()*+,;"))


def _header_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, tuple)):
        return ", ".join(_header_value(item) for item in value)
    primitive = to_primitive(value)
    return str(primitive)


def project(response: Response, record: Any, encoding: Encoding) -> None:
    """Write a response record into ``response``.

    Header fields with a value become headers, cookie fields become
    ``Set-Cookie`` entries, ``status`` (when non-zero) sets the status and
    the body field, or the whole record without one, becomes the payload.
    A None body field leaves the body empty.

    Raises:
        EncodeError: The payload cannot be encoded.
        ResponseCommitted: The response is committed.
    """
    if not is_record(type(record)):
        raise TypeError(f"{type(record).__name__} is not a response record")
    plan = plan_for(type(record))
    status = 200
    status_slot = plan.status_slot
    if status_slot is not None:
        value = getattr(record, status_slot.attr)
        if value:
            status = int(value)

    body_slot = plan.body_slot
    if body_slot is not None:
        payload = getattr(record, body_slot.attr)
        body = b"" if payload is None else encode(payload, encoding)
    else:
        body = encode(record, encoding)

    response.write(status, encoding.media_type if body else None, body)
    for slot in plan.slots:
        header = slot.name_for("header")
        cookie = slot.name_for("cookie")
        value = getattr(record, slot.attr)
        if value is None:
            continue
        if header:
            response.set_header(header, _header_value(value))
        elif cookie:
            response.add_header(*make_cookie(cookie, _header_value(value)))


def make_cookie(
    key: str,
    value: str = "",
    *,
    max_age: int | None = None,
    path: str = "/",
    domain: str | None = None,
    secure: bool = False,
    httponly: bool = False,
    samesite: str | None = "lax",
) -> tuple[str, str]:
    """
    Create a Set-Cookie header tuple.

    Args:
        key: Cookie name.
        value: Cookie value (will be URL-encoded).
        max_age: Max age in seconds. None means session cookie; 0 or a
            negative value expires the cookie.
        path: Cookie path (default "/").
        domain: Cookie domain. None means current domain only.
        secure: If True, cookie only sent over HTTPS.
        httponly: If True, cookie not accessible via JavaScript.
        samesite: SameSite policy ("strict", "lax", "none", or None to omit).

    Returns:
        Tuple of ("set-cookie", cookie_string).

    Example:
        >>> make_cookie("session", "abc123", httponly=True)
        ('set-cookie', 'session=abc123; Path=/; HttpOnly; SameSite=Lax')
    """
    cookie = f"{key}={quote(value, safe='')}"

    if max_age is not None:
        cookie += f"; Max-Age={max(max_age, 0)}"
    if path:
        cookie += f"; Path={path}"
    if domain:
        cookie += f"; Domain={domain}"
    if secure:
        cookie += "; Secure"
    if httponly:
        cookie += "; HttpOnly"
    if samesite:
        cookie += f"; SameSite={samesite.capitalize()}"

    return ("set-cookie", cookie)
