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

"""Type aliases for okapi-asgi.

ASGI types
==========
Scope, Message, Receive, Send and ASGIApp follow the ASGI specification.
MutableMapping is used instead of TypedDict because ASGI allows
server-specific extensions in both scopes and messages.

Handler types
=============
``Handler`` is the unit the middleware chain composes: an async callable
taking the request Context. ``Middleware`` wraps a Handler and returns a new
one. Route handlers registered by users may also take a bound input record
as second argument and may return a value; the application adapts them to
``Handler`` at registration.

References
==========
- ASGI Specification: https://asgi.readthedocs.io/en/latest/specs/main.html
- ASGI HTTP Spec: https://asgi.readthedocs.io/en/latest/specs/www.html
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Awaitable, Callable, MutableMapping

if TYPE_CHECKING:
    from .context import Context

__all__ = [
    "Scope",
    "Message",
    "Receive",
    "Send",
    "ASGIApp",
    "Handler",
    "Middleware",
    "RouteHandler",
]

# ASGI Scope - connection metadata
Scope = MutableMapping[str, Any]

# ASGI Message - sent/received data
Message = MutableMapping[str, Any]

# ASGI Receive - callable to receive messages
Receive = Callable[[], Awaitable[Message]]

# ASGI Send - callable to send messages
Send = Callable[[Message], Awaitable[None]]

# ASGI Application - the main callable
ASGIApp = Callable[[Scope, Receive, Send], Awaitable[None]]

# Chain unit: async handler over the request context
Handler = Callable[["Context"], Awaitable[None]]

# Middleware: wraps a handler, returns a handler
Middleware = Callable[[Handler], Handler]

# User handler: (ctx) or (ctx, record), sync or async, any return value
RouteHandler = Callable[..., Any]
