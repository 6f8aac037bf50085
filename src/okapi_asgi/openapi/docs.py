# Copyright 2025 Softwell S.r.l.
# Licensed under the Apache License, Version 2.0

"""Documentation endpoints: OpenAPI JSON, Swagger UI and Redoc."""

from __future__ import annotations

import html
from typing import TYPE_CHECKING

import orjson

from ..route import doc_hide
from ..utils import join_paths

if TYPE_CHECKING:
    from ..application import Okapi
    from ..context import Context

__all__ = ["swagger_html", "redoc_html", "mount_docs"]

SWAGGER_UI_VERSION = "5.11.0"

_SWAGGER = """<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="utf-8" />
  <meta name="viewport" content="width=device-width, initial-scale=1" />
  <meta name="description" content="SwaggerUI" />
  <title>{title}</title>
  <link rel="stylesheet" href="https://unpkg.com/swagger-ui-dist@{version}/swagger-ui.css" />
</head>
<body>
<div id="swagger-ui"></div>
<script src="https://unpkg.com/swagger-ui-dist@{version}/swagger-ui-bundle.js" crossorigin></script>
<script>
  window.onload = () => {{
    window.ui = SwaggerUIBundle({{
      url: {url},
      dom_id: '#swagger-ui',
    }});
  }};
</script>
</body>
</html>
"""

_REDOC = """<!DOCTYPE html>
<html>
  <head>
    <title>{title}</title>
    <meta charset="utf-8"/>
    <meta name="viewport" content="width=device-width, initial-scale=1">
    <link href="https://fonts.googleapis.com/css?family=Montserrat:300,400,700|Roboto:300,400,700" rel="stylesheet">
    <style>
      body {{
        margin: 0;
        padding: 0;
      }}
    </style>
  </head>
  <body>
    <redoc spec-url="{url}"></redoc>
    <script src="https://cdn.redoc.ly/redoc/latest/bundles/redoc.standalone.js"></script>
  </body>
</html>
"""


def swagger_html(title: str, spec_url: str) -> str:
    return _SWAGGER.format(
        title=html.escape(title), version=SWAGGER_UI_VERSION, url=orjson.dumps(spec_url).decode()
    )


def redoc_html(title: str, spec_url: str) -> str:
    return _REDOC.format(title=html.escape(title), url=html.escape(spec_url, quote=True))


def mount_docs(app: Okapi) -> None:
    """Register the documentation routes (hidden from the document itself).

    ``{prefix}`` answers 301 to ``{prefix}/``, which serves Swagger UI.
    """
    info = app.settings.openapi
    spec_path = join_paths("/", info.spec_path)
    docs_path = join_paths("/", info.prefix).rstrip("/") or "/"

    async def openapi_json(ctx: Context) -> None:
        ctx.data(200, "application/json", app.openapi.json())

    async def swagger_ui(ctx: Context) -> None:
        if not ctx.request.path.endswith("/"):
            ctx.redirect(ctx.request.path + "/", 301)
            return
        ctx.response.write(200, "text/html", swagger_html(info.title, spec_path))

    async def redoc(ctx: Context) -> None:
        ctx.response.write(200, "text/html", redoc_html(info.title, spec_path))

    app.get(spec_path, openapi_json, doc_hide())
    if docs_path == "/":
        app.get("/", swagger_ui, doc_hide())
    else:
        app.get(docs_path + "/", swagger_ui, doc_hide())
        if app.settings.strict_slash:
            app.get(docs_path, swagger_ui, doc_hide())
    if info.redoc_path:
        app.get(join_paths("/", info.redoc_path), redoc, doc_hide())
