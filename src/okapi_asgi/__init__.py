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

"""okapi-asgi - ASGI web framework with typed routes, records and OpenAPI.

Main components:
    Okapi: ASGI application, route registration, lifecycle
    Group: Route group with prefix, middlewares and documentation defaults
    Context: Per-request facade (binding, responses, SSE, templates)
    param: Field metadata for input/output records
    Settings: Application and server settings, loaded from TOML

Middleware:
    RecoveryMiddleware, LoggingMiddleware: Enabled by default
    CORSMiddleware, BasicAuth, JWTAuth: Security
    BodyLimit, RequestID, CompressionMiddleware: Utilities

Usage:
    from dataclasses import dataclass
    from okapi_asgi import Okapi, param

    app = Okapi()

    @dataclass
    class Greeting:
        name: str = param(query="name", default="world")

    @app.get("/hello")
    async def hello(ctx, greeting: Greeting):
        return {"message": f"Hello {greeting.name}"}

    app.run()   # or: okapi-asgi serve mymodule:app
"""

__version__ = "0.1.0"

from .application import Okapi
from .claims import And, Contains, Equals, Not, OneOf, Or, Prefix
from .config import OpenAPIInfo, Settings, load_settings
from .context import Context
from .datastructures import FormData, Headers, QueryParams, UploadFile
from .encoding import Encoding
from .exceptions import (
    AbortError,
    BindError,
    BodyTooLarge,
    ConfigError,
    EncodeError,
    FieldError,
    HTTPException,
    MethodNotAllowed,
    NotFound,
    OkapiError,
    Redirect,
    RequestTimeout,
    RouteConflict,
    UnsupportedMediaType,
    ValidationFailure,
)
from .fields import param
from .group import Group
from .middleware import (
    BaseMiddleware,
    BasicAuth,
    BodyLimit,
    CompressionMiddleware,
    CORSMiddleware,
    JWTAuth,
    LoggingMiddleware,
    RecoveryMiddleware,
    RequestID,
    compose,
)
from .request import Request
from .response import (
    HTMLResponse,
    JSONResponse,
    PlainTextResponse,
    RedirectResponse,
    Response,
    make_cookie,
)
from .route import (
    Doc,
    RouteDefinition,
    RouteOption,
    doc_basic_auth,
    doc_bearer_auth,
    doc_deprecated,
    doc_description,
    doc_error_response,
    doc_header,
    doc_hide,
    doc_operation_id,
    doc_path_param,
    doc_query_param,
    doc_request_body,
    doc_request_example,
    doc_response,
    doc_response_example,
    doc_security,
    doc_summary,
    doc_tag,
    doc_tags,
    use,
    with_input,
    with_output,
)
from .router import Route
from .server import Server
from .sse import EventStream
from .templates import Template
from .types import ASGIApp, Handler, Middleware, Receive, Scope, Send

__all__ = [
    "__version__",
    # Application
    "Okapi",
    "Group",
    "Route",
    "Context",
    "Request",
    "Server",
    "Settings",
    "OpenAPIInfo",
    "load_settings",
    # Records
    "param",
    "Encoding",
    # Route options
    "RouteOption",
    "RouteDefinition",
    "Doc",
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
    # Responses
    "Response",
    "JSONResponse",
    "HTMLResponse",
    "PlainTextResponse",
    "RedirectResponse",
    "make_cookie",
    "EventStream",
    "Template",
    # Middleware
    "BaseMiddleware",
    "compose",
    "RecoveryMiddleware",
    "LoggingMiddleware",
    "CORSMiddleware",
    "BasicAuth",
    "JWTAuth",
    "BodyLimit",
    "RequestID",
    "CompressionMiddleware",
    # Claims expressions
    "Equals",
    "Prefix",
    "Contains",
    "OneOf",
    "And",
    "Or",
    "Not",
    # Data structures
    "Headers",
    "QueryParams",
    "FormData",
    "UploadFile",
    # Exceptions
    "HTTPException",
    "Redirect",
    "OkapiError",
    "NotFound",
    "MethodNotAllowed",
    "BindError",
    "UnsupportedMediaType",
    "BodyTooLarge",
    "RequestTimeout",
    "FieldError",
    "ValidationFailure",
    "AbortError",
    "EncodeError",
    "ConfigError",
    "RouteConflict",
    # Types
    "ASGIApp",
    "Scope",
    "Receive",
    "Send",
    "Handler",
    "Middleware",
]
