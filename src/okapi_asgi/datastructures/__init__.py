# Copyright 2025 Softwell S.r.l.
# Licensed under the Apache License, Version 2.0

"""
Data structures for okapi-asgi.

Pythonic wrappers around raw ASGI data and per-request containers::

    ASGI Raw Data                          okapi-asgi Classes
    ─────────────────                      ──────────────────
    scope["headers"] = [(b"...", b"...")]  →  Headers (case-insensitive)
    scope["query_string"] = b"a=1&b=2"     →  QueryParams (parsed)
    urlencoded / multipart body            →  FormData + UploadFile
    middleware → handler values            →  Store (copy-on-write)
"""

from .form import FormData, UploadFile
from .headers import Headers, headers_from_scope, parse_cookie_header
from .query_params import QueryParams, query_params_from_scope
from .store import Store

__all__ = [
    "FormData",
    "Headers",
    "QueryParams",
    "Store",
    "UploadFile",
    "headers_from_scope",
    "parse_cookie_header",
    "query_params_from_scope",
]
