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
Exception classes for okapi-asgi request handling.

Every failure of the request pipeline is an exception carrying the HTTP
status it maps to. The application catches them at the outermost layer and
writes the standard error body::

    {"success": false, "status": 404, "message": "Not Found", "details": null}

Error kinds
-----------
Each framework error exposes a stable machine-readable ``kind``:

======================  ======================  ==========
Kind                    Class                   Status
======================  ======================  ==========
routing                 NotFound                404
routing                 MethodNotAllowed        405
bind                    BindError               400
bind                    UnsupportedMediaType    415
bind                    BodyTooLarge            413
bind                    RequestTimeout          408
validation              ValidationFailure       400
abort                   AbortError              by status
encode                  EncodeError             500
======================  ======================  ==========

Configuration problems (duplicate route, invalid pattern, conflicting field
metadata) are not HTTP errors: they raise ``ConfigError`` at registration.

HTTPException
-------------
Plain HTTP error usable from any handler or middleware.

Example:
    >>> raise HTTPException(404, detail="User not found")
    >>> raise HTTPException(401, detail="Auth required", headers={"WWW-Authenticate": "Bearer"})
"""

from __future__ import annotations

from dataclasses import dataclass
from http import HTTPStatus
from typing import Any

__all__ = [
    "HTTPException",
    "Redirect",
    "OkapiError",
    "NotFound",
    "MethodNotAllowed",
    "BindError",
    "UnsupportedMediaType",
    "BodyTooLarge",
    "RequestTimeout",
    "BodyConsumed",
    "FieldError",
    "ValidationFailure",
    "AbortError",
    "EncodeError",
    "ResponseCommitted",
    "ConfigError",
    "RouteConflict",
    "status_text",
]


def status_text(status_code: int) -> str:
    """Return the standard reason phrase for a status code."""
    try:
        return HTTPStatus(status_code).phrase
    except ValueError:
        return "Unknown Status"


class HTTPException(Exception):
    """
    HTTP exception with status code and detail.

    Raise this in handlers to return an HTTP error response.

    Attributes:
        status_code: HTTP status code (expected 4xx or 5xx, not validated)
        detail: Error detail message
        headers: Response headers as list of tuples (supports duplicate names)
    """

    def __init__(
        self,
        status_code: int,
        detail: str = "",
        headers: dict[str, str] | list[tuple[str, str]] | None = None,
    ) -> None:
        self.status_code = status_code
        self.detail = detail or status_text(status_code)
        # Normalize headers to list[tuple[str, str]] for consistent internal format
        if headers is None:
            self.headers: list[tuple[str, str]] | None = None
        elif isinstance(headers, dict):
            self.headers = list(headers.items())
        else:
            self.headers = list(headers)
        super().__init__(self.detail)

    @property
    def details(self) -> Any:
        """Structured details for the error body. None by default."""
        return None

    def to_dict(self) -> dict[str, Any]:
        """Return the standard error body."""
        return {
            "success": False,
            "status": self.status_code,
            "message": self.detail,
            "details": self.details,
        }

    def __repr__(self) -> str:
        return f"{type(self).__name__}(status_code={self.status_code}, detail={self.detail!r})"


class Redirect(HTTPException):
    """HTTP redirect exception. Raises 302 redirect by default."""

    def __init__(self, url: str, status_code: int = 302) -> None:
        super().__init__(status_code, headers={"Location": url})
        self.url = url

    def __repr__(self) -> str:
        return f"Redirect(url={self.url!r}, status_code={self.status_code})"


class OkapiError(HTTPException):
    """Base of the pipeline errors. Adds a stable ``kind`` and optional details."""

    kind: str = "error"

    def __init__(
        self,
        status_code: int,
        message: str = "",
        details: Any = None,
        headers: dict[str, str] | list[tuple[str, str]] | None = None,
    ) -> None:
        super().__init__(status_code, detail=message, headers=headers)
        self._details = details

    @property
    def message(self) -> str:
        return self.detail

    @property
    def details(self) -> Any:
        return self._details


class NotFound(OkapiError):
    """No route matches the request path (or the route is disabled)."""

    kind = "routing"

    def __init__(self, message: str = "Not Found") -> None:
        super().__init__(404, message)


class MethodNotAllowed(OkapiError):
    """The path matches, but not for this method."""

    kind = "routing"

    def __init__(self, allowed: list[str], message: str = "Method Not Allowed") -> None:
        self.allowed = sorted(set(allowed))
        super().__init__(405, message, headers={"Allow": ", ".join(self.allowed)})


class BindError(OkapiError):
    """A field could not be populated from the request.

    Attributes:
        field: Attribute name of the record field.
        source: Where the value came from (path, query, header, ...).
        raw: The raw textual value that failed, if any.
    """

    kind = "bind"

    def __init__(
        self,
        message: str,
        field: str | None = None,
        source: str | None = None,
        raw: Any = None,
    ) -> None:
        self.field = field
        self.source = source
        self.raw = raw
        details = None
        if field is not None:
            details = {"field": field, "source": source, "value": raw}
        super().__init__(400, message, details)


class UnsupportedMediaType(OkapiError):
    kind = "bind"

    def __init__(self, content_type: str | None) -> None:
        self.content_type = content_type
        super().__init__(415, f"Unsupported media type: {content_type or 'none'}")


class BodyTooLarge(OkapiError):
    kind = "bind"

    def __init__(self, limit: int) -> None:
        self.limit = limit
        super().__init__(413, f"Request body exceeds {limit} bytes")


class RequestTimeout(OkapiError):
    kind = "bind"

    def __init__(self, timeout: float) -> None:
        self.timeout = timeout
        super().__init__(408, f"Request body not received within {timeout:g}s")


class BodyConsumed(RuntimeError):
    """The raw request body was already consumed by a streaming reader."""


@dataclass(frozen=True)
class FieldError:
    """One constraint failure: dotted field path plus human-readable reason."""

    field: str
    reason: str

    def as_dict(self) -> dict[str, str]:
        return {"field": self.field, "message": self.reason}


class ValidationFailure(OkapiError):
    """One or more constraint failures, reported together."""

    kind = "validation"

    def __init__(self, errors: list[FieldError]) -> None:
        self.errors = list(errors)
        super().__init__(
            400,
            "Validation failed",
            [error.as_dict() for error in self.errors],
        )


class AbortError(OkapiError):
    """Explicit abort from a handler; the reply is already written."""

    kind = "abort"


class EncodeError(OkapiError):
    """Response serialization failed."""

    kind = "encode"

    def __init__(self, message: str = "Failed to encode response") -> None:
        super().__init__(500, message)


class ResponseCommitted(RuntimeError):
    """A write was attempted on a response that has already been committed."""


class ConfigError(Exception):
    """Configuration error (registration, patterns, settings, config files)."""


class RouteConflict(ConfigError):
    """Two routes share the same method and compiled pattern."""

    def __init__(self, method: str, pattern: str) -> None:
        self.method = method
        self.pattern = pattern
        super().__init__(f"Route conflict: {method} {pattern} is already registered")
