# Copyright 2025 Softwell S.r.l.
# Licensed under the Apache License, Version 2.0

"""OpenAPI reflection: document builder, schema registry and doc endpoints."""

from .builder import SECURITY_SCHEMES, OpenAPIBuilder
from .docs import mount_docs, redoc_html, swagger_html
from .schema import ERROR_SCHEMA, SchemaRegistry

__all__ = [
    "OpenAPIBuilder",
    "SchemaRegistry",
    "SECURITY_SCHEMES",
    "ERROR_SCHEMA",
    "mount_docs",
    "swagger_html",
    "redoc_html",
]
