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

"""End-to-end tests for the Okapi application (routing, binding, shaping)."""

from __future__ import annotations

from dataclasses import dataclass

import pytest

from okapi_asgi import Okapi, Response, param, with_input, with_output
from okapi_asgi.exceptions import ConfigError, HTTPException, Redirect, RouteConflict
from okapi_asgi.testing import TestClient


@dataclass
class BookBody:
    name: str = param(json="name", required=True, max_length=50)
    price: int = param(json="price", min=0, max=500)
    status: str = param(json="status", enum="paid,unpaid,canceled")


@dataclass
class CreateBook:
    body: BookBody = param()


@dataclass
class BookQuery:
    id: int = param(path="id")
    fields: list[str] = param(query="fields")
    verbose: bool = param(query="verbose", default="false")


@dataclass
class BookResponse:
    status: int = 0
    x_request_id: str = param(header="X-Request-Id")
    body: dict = param()


def make_app() -> Okapi:
    return Okapi(access_log=False)


# =============================================================================
# Routing
# =============================================================================


class TestRouting:
    """Tests for request routing through the application."""

    @pytest.mark.asyncio
    async def test_typed_int_route(self) -> None:
        """GET /books/{id:int} passes an int and rejects non-numeric ids."""
        app = make_app()

        @app.get("/books/{id:int}")
        async def get_book(ctx):
            return {"id": ctx.param("id"), "type": type(ctx.param("id")).__name__}

        client = TestClient(app)
        (await client.get("/books/42")).expect_status(200).expect_json({"id": 42, "type": "int"})
        (await client.get("/books/abc")).expect_status(404).expect_json_path("success", False)

    @pytest.mark.asyncio
    async def test_handle_registers_route(self) -> None:
        app = make_app()

        async def report(ctx):
            return {"method": ctx.request.method}

        route = app.handle("PUT", "/reports", report)
        assert route.method == "PUT"
        assert route.path == "/reports"

        response = await client_for(app).put("/reports")
        response.expect_status(200).expect_json({"method": "PUT"})

    @pytest.mark.asyncio
    async def test_default_app_serves_docs(self) -> None:
        app = Okapi()
        client = client_for(app)
        (await client.get("/openapi.json")).expect_status(200).expect_json_path(
            "openapi", "3.0.3"
        )
        (await client.get("/docs/")).expect_status(200).expect_body_contains("swagger")

    @pytest.mark.asyncio
    async def test_method_not_allowed(self) -> None:
        app = make_app()
        app.get("/books", lambda ctx: None)

        response = await client_for(app).delete("/books")
        response.expect_status(405).expect_header("allow", "GET, HEAD")

    @pytest.mark.asyncio
    async def test_disabled_route_returns_404(self) -> None:
        app = make_app()

        async def handler(ctx):
            return "ok"

        route = app.get("/ping", handler)
        client = client_for(app)
        (await client.get("/ping")).expect_status(200).expect_body_contains("ok")

        route.disable()
        (await client.get("/ping")).expect_status(404)

        route.enable()
        (await client.get("/ping")).expect_status(200)

    def test_duplicate_route_raises(self) -> None:
        app = make_app()

        async def handler(ctx):
            return None

        app.get("/books/{id}", handler)
        with pytest.raises(RouteConflict):
            app.get("/books/{book_id}", handler)

    def test_record_parameter_without_input_type(self) -> None:
        app = make_app()

        async def handler(ctx, record):
            return None

        with pytest.raises(ConfigError):
            app.get("/x", handler)

    def test_middleware_passed_as_option_is_rejected(self) -> None:
        app = make_app()

        def middleware(next_handler):
            return next_handler

        async def handler(ctx):
            return None

        with pytest.raises(ConfigError):
            app.get("/x", handler, middleware)

    @pytest.mark.asyncio
    async def test_head_request_has_no_body(self) -> None:
        app = make_app()

        @app.get("/data")
        async def data(ctx):
            return {"a": 1}

        response = await client_for(app).head("/data")
        response.expect_status(200)
        assert response.content == b""

    @pytest.mark.asyncio
    async def test_websocket_scope_is_closed(self) -> None:
        app = make_app()
        messages = []

        async def receive():
            return {"type": "websocket.connect"}

        async def send(message):
            messages.append(message)

        await app({"type": "websocket", "path": "/"}, receive, send)
        assert messages == [{"type": "websocket.close", "code": 1003}]


def client_for(app: Okapi) -> TestClient:
    return TestClient(app)


# =============================================================================
# Binding and validation
# =============================================================================


class TestBinding:
    """Tests for input records bound before the handler runs."""

    @pytest.mark.asyncio
    async def test_valid_body_is_echoed(self) -> None:
        app = make_app()

        @app.post("/books")
        async def create(ctx, request: CreateBook):
            ctx.created(request.body)

        response = await TestClient(app).post("/books").json(
            {"name": "Go", "price": 30, "status": "paid"}
        )
        response.expect_status(201).expect_json({"name": "Go", "price": 30, "status": "paid"})

    @pytest.mark.asyncio
    async def test_three_validation_errors(self) -> None:
        """Every failing constraint is reported in one 400 reply."""
        app = make_app()

        @app.post("/books")
        async def create(ctx, request: CreateBook):
            ctx.created(request.body)

        response = await TestClient(app).post("/books").json(
            {"name": "", "price": 1000, "status": "maybe"}
        )
        response.expect_status(400).expect_json_path("message", "Validation failed")
        details = response.json()["details"]
        assert details == [
            {"field": "name", "message": "is required"},
            {"field": "price", "message": "must be <= 500"},
            {"field": "status", "message": "must be one of: paid, unpaid, canceled"},
        ]

    @pytest.mark.asyncio
    async def test_path_and_query_binding(self) -> None:
        app = make_app()

        @app.get("/books/{id:int}", with_input(BookQuery))
        async def show(ctx, query):
            return {"id": query.id, "fields": query.fields, "verbose": query.verbose}

        client = TestClient(app)
        response = await client.get("/books/7").query("fields", "a,b")
        response.expect_status(200).expect_json({"id": 7, "fields": ["a", "b"], "verbose": False})

        response = await client.get("/books/7").query("fields", "a").query("fields", "b,c")
        response.expect_json_path("fields", ["a", "b,c"])

        response = await client.get("/books/7").query("verbose", "yes")
        response.expect_json_path("verbose", True).expect_json_path("fields", [])

    @pytest.mark.asyncio
    async def test_bind_error_reports_field(self) -> None:
        app = make_app()

        @app.post("/books")
        async def create(ctx, request: CreateBook):
            return None

        response = await TestClient(app).post("/books").json({"name": "Go", "price": "cheap"})
        response.expect_status(400)
        details = response.json()["details"]
        assert details["field"] == "price"
        assert details["value"] == "cheap"

    @pytest.mark.asyncio
    async def test_unsupported_media_type(self) -> None:
        app = make_app()

        @app.post("/books")
        async def create(ctx, request: CreateBook):
            return None

        response = await TestClient(app).post("/books").body(b"name=Go", "text/csv")
        response.expect_status(415)

    @pytest.mark.asyncio
    async def test_body_over_max_size(self) -> None:
        app = Okapi(access_log=False, max_body_size=16)

        @app.post("/books")
        async def create(ctx, request: CreateBook):
            return None

        response = await TestClient(app).post("/books").json({"name": "x" * 64})
        response.expect_status(413)


# =============================================================================
# Result shaping
# =============================================================================


class TestResultShaping:
    """Tests for handler return values."""

    @pytest.mark.asyncio
    async def test_none_without_write_is_204(self) -> None:
        app = make_app()

        @app.delete("/books/{id}")
        async def remove(ctx):
            return None

        response = await TestClient(app).delete("/books/1")
        response.expect_status(204)
        assert response.content == b""

    @pytest.mark.asyncio
    async def test_response_record_projection(self) -> None:
        """Header fields become headers, status sets the code, body is encoded."""
        app = make_app()

        @app.get("/books/{id}", with_output(BookResponse))
        async def show(ctx):
            return BookResponse(status=202, x_request_id="req-1", body={"id": ctx.param("id")})

        response = await TestClient(app).get("/books/9")
        response.expect_status(202).expect_header("X-Request-Id", "req-1")
        response.expect_json({"id": "9"})

    @pytest.mark.asyncio
    async def test_response_record_negotiates_yaml(self) -> None:
        app = make_app()

        @app.get("/books/{id}")
        async def show(ctx):
            return BookResponse(body={"id": 1})

        response = await TestClient(app).get("/books/1").header("Accept", "application/yaml")
        response.expect_status(200)
        assert response.headers["content-type"].startswith("application/yaml")
        assert "id: 1" in response.text

    @pytest.mark.asyncio
    async def test_returned_response_is_used(self) -> None:
        app = make_app()

        @app.get("/raw")
        async def raw(ctx):
            return Response("hello", status_code=201, headers={"X-Extra": "1"}, media_type="text/plain")

        response = await TestClient(app).get("/raw")
        response.expect_status(201).expect_header("x-extra", "1").expect_body_contains("hello")

    @pytest.mark.asyncio
    async def test_sync_handler_runs_in_thread(self) -> None:
        app = make_app()

        @app.get("/sync")
        def sync_handler(ctx):
            return {"sync": True}

        (await TestClient(app).get("/sync")).expect_status(200).expect_json({"sync": True})

    @pytest.mark.asyncio
    async def test_http_exception_becomes_error_body(self) -> None:
        app = make_app()

        @app.get("/teapot")
        async def teapot(ctx):
            raise HTTPException(418, "short and stout")

        response = await TestClient(app).get("/teapot")
        response.expect_status(418).expect_json(
            {"success": False, "status": 418, "message": "short and stout", "details": None}
        )

    @pytest.mark.asyncio
    async def test_redirect_exception(self) -> None:
        app = make_app()

        @app.get("/old")
        async def old(ctx):
            raise Redirect("/new", 301)

        response = await TestClient(app).get("/old")
        response.expect_status(301).expect_header("location", "/new")

    @pytest.mark.asyncio
    async def test_unhandled_error_is_500(self) -> None:
        app = make_app()

        @app.get("/boom")
        async def boom(ctx):
            raise RuntimeError("kaboom")

        response = await TestClient(app).get("/boom")
        response.expect_status(500).expect_json_path("message", "Internal Server Error")
        assert response.json()["details"] is None

    @pytest.mark.asyncio
    async def test_debug_exposes_error_details(self) -> None:
        app = Okapi(access_log=False, debug=True)

        @app.get("/boom")
        async def boom(ctx):
            raise RuntimeError("kaboom")

        response = await TestClient(app).get("/boom")
        response.expect_status(500).expect_json_path("details", "RuntimeError: kaboom")

    @pytest.mark.asyncio
    async def test_abort_stops_handler(self) -> None:
        app = make_app()
        reached = []

        @app.get("/secret")
        async def secret(ctx):
            ctx.abort_forbidden("nope")
            reached.append(True)

        response = await TestClient(app).get("/secret")
        response.expect_status(403).expect_json_path("message", "nope")
        assert reached == []


# =============================================================================
# Settings
# =============================================================================


class TestSettingsOverrides:
    """Tests for Okapi(**overrides)."""

    def test_overrides_applied(self) -> None:
        app = Okapi(port=9001, debug=True)
        assert app.settings.port == 9001
        assert app.settings.debug is True

    def test_unknown_override(self) -> None:
        with pytest.raises(ConfigError):
            Okapi(bogus=True)

    def test_invalid_port(self) -> None:
        with pytest.raises(ConfigError):
            Okapi(port=70000)
