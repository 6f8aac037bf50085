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

"""Tests for middleware composition, groups and the built-in middlewares."""

from __future__ import annotations

import logging
from typing import Any

import pytest

from okapi_asgi import Okapi, use
from okapi_asgi.exceptions import ConfigError
from okapi_asgi.middleware import (
    MIDDLEWARE_REGISTRY,
    BaseMiddleware,
    BodyLimit,
    CompressionMiddleware,
    CORSMiddleware,
    RequestID,
    compose,
    middleware_chain,
)
from okapi_asgi.testing import TestClient


def tracer(name: str, trace: list[str]) -> Any:
    """Function-style middleware recording entry and exit."""

    def middleware(next_handler):
        async def handler(ctx):
            trace.append(f"{name}:in")
            await next_handler(ctx)
            trace.append(f"{name}:out")

        return handler

    return middleware


class StampMiddleware(BaseMiddleware):
    """Class-style middleware used by the registry tests."""

    middleware_name = "test_stamp"
    middleware_order = 600

    def __init__(self, value: str = "stamped", **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.value = value

    async def dispatch(self, ctx, call_next) -> None:
        ctx.set("stamp", self.value)
        await call_next(ctx)
        ctx.set_header("X-Stamp", self.value)


# =============================================================================
# Composition
# =============================================================================


class TestCompose:
    """Tests for compose() and chain resolution."""

    @pytest.mark.asyncio
    async def test_first_middleware_is_outermost(self) -> None:
        trace: list[str] = []

        async def terminal(ctx):
            trace.append("handler")

        handler = compose([tracer("a", trace), tracer("b", trace)], terminal)
        await handler(None)
        assert trace == ["a:in", "b:in", "handler", "b:out", "a:out"]

    @pytest.mark.asyncio
    async def test_nested_group_order(self) -> None:
        """App, parent group, child group, then route-local middlewares."""
        trace: list[str] = []
        app = Okapi(access_log=False, middlewares=[tracer("app", trace)])
        api = app.group("/api", tracer("api", trace))
        v1 = api.group("/v1", tracer("v1", trace))

        @v1.get("/books", use(tracer("route", trace)))
        async def books(ctx):
            trace.append("handler")
            return []

        (await TestClient(app).get("/api/v1/books")).expect_status(200)
        assert trace == [
            "app:in",
            "api:in",
            "v1:in",
            "route:in",
            "handler",
            "route:out",
            "v1:out",
            "api:out",
            "app:out",
        ]

    @pytest.mark.asyncio
    async def test_use_affects_later_routes_only(self) -> None:
        trace: list[str] = []
        app = Okapi(access_log=False)
        api = app.group("/api")

        @api.get("/early")
        async def early(ctx):
            return "early"

        api.use(tracer("late", trace))

        @api.get("/late")
        async def late(ctx):
            return "late"

        client = TestClient(app)
        await client.get("/api/early")
        assert trace == []
        await client.get("/api/late")
        assert trace == ["late:in", "late:out"]

    @pytest.mark.asyncio
    async def test_short_circuit(self) -> None:
        def deny(next_handler):
            async def handler(ctx):
                ctx.text(403, "denied")

            return handler

        app = Okapi(access_log=False)
        called = []

        @app.get("/x", use(deny))
        async def x(ctx):
            called.append(True)

        response = await TestClient(app).get("/x")
        response.expect_status(403).expect_body_contains("denied")
        assert called == []

    @pytest.mark.asyncio
    async def test_routing_errors_run_through_app_middlewares(self) -> None:
        trace: list[str] = []
        app = Okapi(access_log=False, middlewares=[tracer("app", trace)])
        (await TestClient(app).get("/missing")).expect_status(404)
        assert trace == ["app:in"]


# =============================================================================
# Groups
# =============================================================================


class TestGroups:
    """Tests for group prefixes and state."""

    @pytest.mark.asyncio
    async def test_disabled_group_hides_children(self) -> None:
        app = Okapi(access_log=False)
        api = app.group("/api")
        v1 = api.group("/v1")

        @v1.get("/ping")
        async def ping(ctx):
            return "pong"

        client = TestClient(app)
        (await client.get("/api/v1/ping")).expect_status(200)
        api.disable()
        (await client.get("/api/v1/ping")).expect_status(404)
        api.enable()
        (await client.get("/api/v1/ping")).expect_status(200)

    def test_full_prefix_and_routes(self) -> None:
        app = Okapi(access_log=False)
        api = app.group("/api")
        v1 = api.group("v1")

        async def handler(ctx):
            return None

        v1.get("/books", handler)
        app.get("/other", handler)
        assert v1.full_prefix == "/api/v1"
        assert [route.path for route in api.routes()] == ["/api/v1/books"]

    def test_doc_flags_inherited(self) -> None:
        app = Okapi(access_log=False)
        admin = app.group("/admin").with_bearer_auth().deprecated()
        users = admin.group("/users")

        async def handler(ctx):
            return None

        route = users.get("", handler)
        assert route.path == "/admin/users"
        assert route.security == [{"bearerAuth": []}]
        assert route.deprecated is True

    def test_empty_prefix_rejected(self) -> None:
        app = Okapi(access_log=False)
        with pytest.raises(ConfigError):
            app.group("")


# =============================================================================
# Registry
# =============================================================================


class TestRegistry:
    """Tests for the named middleware registry."""

    def test_builtin_names(self) -> None:
        for name in (
            "recovery",
            "logging",
            "cors",
            "basic_auth",
            "jwt",
            "body_limit",
            "request_id",
            "compression",
        ):
            assert name in MIDDLEWARE_REGISTRY

    def test_defaults(self) -> None:
        names = [mw.middleware_name for mw in middleware_chain()]
        assert names == ["recovery", "logging"]

    def test_config_enables_sorted_by_order(self) -> None:
        chain = middleware_chain({"compression": "on", "request_id": True, "logging": False})
        assert [mw.middleware_name for mw in chain] == ["recovery", "request_id", "compression"]

    def test_option_table_enables_and_configures(self) -> None:
        chain = middleware_chain({"test_stamp": {"value": "custom"}})
        stamp = [mw for mw in chain if isinstance(mw, StampMiddleware)]
        assert len(stamp) == 1
        assert stamp[0].value == "custom"

    def test_unknown_name(self) -> None:
        with pytest.raises(ConfigError):
            middleware_chain("nonexistent")

    def test_duplicate_name(self) -> None:
        with pytest.raises(ValueError):

            class Duplicate(BaseMiddleware):  # noqa: F841
                middleware_name = "test_stamp"

                async def dispatch(self, ctx, call_next) -> None:
                    await call_next(ctx)

    @pytest.mark.asyncio
    async def test_class_middleware_in_app(self) -> None:
        app = Okapi(access_log=False, middleware={"test_stamp": True})

        @app.get("/stamp")
        async def stamp(ctx):
            return {"stamp": ctx.get_string("stamp")}

        response = await TestClient(app).get("/stamp")
        response.expect_json({"stamp": "stamped"}).expect_header("x-stamp", "stamped")


# =============================================================================
# Built-in middlewares
# =============================================================================


class TestCORS:
    """Tests for CORSMiddleware."""

    def make_app(self, **options: Any) -> Okapi:
        app = Okapi(access_log=False, middlewares=[CORSMiddleware(**options)])

        @app.get("/data")
        async def data(ctx):
            return {"ok": True}

        return app

    @pytest.mark.asyncio
    async def test_preflight_for_allowed_origin(self) -> None:
        app = self.make_app(allow_origins=["https://example.com"], max_age=600)
        response = await (
            TestClient(app)
            .options("/data")
            .header("Origin", "https://example.com")
            .header("Access-Control-Request-Method", "GET")
        )
        response.expect_status(204)
        response.expect_header("access-control-allow-origin", "https://example.com")
        response.expect_header("access-control-allow-methods", "GET")
        response.expect_header("access-control-max-age", "600")

    @pytest.mark.asyncio
    async def test_simple_request_gets_headers(self) -> None:
        app = self.make_app(allow_credentials=True)
        response = await TestClient(app).get("/data").header("Origin", "https://a.test")
        response.expect_status(200)
        response.expect_header("access-control-allow-origin", "https://a.test")
        response.expect_header("access-control-allow-credentials", "true")

    @pytest.mark.asyncio
    async def test_disallowed_origin(self) -> None:
        app = self.make_app(allow_origins="https://example.com")
        response = await TestClient(app).get("/data").header("Origin", "https://evil.test")
        response.expect_status(200)
        assert "access-control-allow-origin" not in response.headers


class TestBasicAuth:
    """Tests for BasicAuth."""

    def make_app(self) -> Okapi:
        from okapi_asgi import BasicAuth

        app = Okapi(access_log=False)
        admin = app.group("/admin", BasicAuth(username="admin", password="s3cret", realm="Books"))

        @admin.get("/me")
        async def me(ctx):
            return {"user": ctx.get_string("username")}

        return app

    @pytest.mark.asyncio
    async def test_valid_credentials(self) -> None:
        client = TestClient(self.make_app())
        response = await client.get("/admin/me").basic_auth("admin", "s3cret")
        response.expect_status(200).expect_json({"user": "admin"})

    @pytest.mark.asyncio
    async def test_missing_credentials(self) -> None:
        response = await TestClient(self.make_app()).get("/admin/me")
        response.expect_status(401).expect_header("www-authenticate", 'Basic realm="Books"')

    @pytest.mark.asyncio
    async def test_wrong_password(self) -> None:
        client = TestClient(self.make_app())
        response = await client.get("/admin/me").basic_auth("admin", "guess")
        response.expect_status(401)


class TestBodyLimit:
    """Tests for BodyLimit."""

    @pytest.mark.asyncio
    async def test_rejects_large_body(self) -> None:
        app = Okapi(access_log=False, middlewares=[BodyLimit(max_bytes=8)])

        @app.post("/upload")
        async def upload(ctx):
            return {"size": len(await ctx.request.body())}

        client = TestClient(app)
        (await client.post("/upload").body(b"tiny", "text/plain")).expect_json({"size": 4})
        response = await client.post("/upload").body(b"x" * 64, "text/plain")
        response.expect_status(413).expect_body_contains("Request body too large")


class TestRequestID:
    """Tests for RequestID."""

    @pytest.mark.asyncio
    async def test_generates_and_echoes(self) -> None:
        app = Okapi(access_log=False, middlewares=[RequestID()])

        @app.get("/id")
        async def show(ctx):
            return {"id": ctx.get_string("request_id")}

        client = TestClient(app)
        response = await client.get("/id")
        generated = response.headers["x-request-id"]
        assert len(generated) == 32
        response.expect_json({"id": generated})

        response = await client.get("/id").header("X-Request-Id", "abc-123")
        response.expect_header("x-request-id", "abc-123").expect_json({"id": "abc-123"})


class TestCompression:
    """Tests for CompressionMiddleware."""

    @pytest.mark.asyncio
    async def test_gzip_large_json(self) -> None:
        app = Okapi(access_log=False, middlewares=[CompressionMiddleware(minimum_size=100)])

        @app.get("/big")
        async def big(ctx):
            return {"items": ["value"] * 200}

        transport_response = await TestClient(app).get("/big").header("Accept-Encoding", "gzip")
        transport_response.expect_status(200).expect_header("content-encoding", "gzip")
        # httpx decodes gzip transparently
        assert transport_response.json() == {"items": ["value"] * 200}

    @pytest.mark.asyncio
    async def test_small_body_untouched(self) -> None:
        app = Okapi(access_log=False, middlewares=[CompressionMiddleware(minimum_size=100)])

        @app.get("/small")
        async def small(ctx):
            return {"a": 1}

        response = await TestClient(app).get("/small").header("Accept-Encoding", "gzip")
        assert "content-encoding" not in response.headers
        assert response.content == b'{"a":1}'


class TestLoggingMiddleware:
    """Tests for the access log."""

    @pytest.mark.asyncio
    async def test_request_and_response_logged(self, caplog: pytest.LogCaptureFixture) -> None:
        app = Okapi()

        @app.get("/logged")
        async def logged(ctx):
            return "ok"

        with caplog.at_level(logging.INFO, logger="okapi_asgi.access"):
            await TestClient(app).get("/logged")

        messages = [r.getMessage() for r in caplog.records if r.name == "okapi_asgi.access"]
        assert any(m.startswith("<- GET /logged") for m in messages)
        assert any(m.startswith("-> GET /logged 200") for m in messages)

    @pytest.mark.asyncio
    async def test_debug_logs_redacted_headers(self, caplog: pytest.LogCaptureFixture) -> None:
        app = Okapi(debug=True)

        @app.get("/logged")
        async def logged(ctx):
            return "ok"

        with caplog.at_level(logging.DEBUG, logger="okapi_asgi.access"):
            await TestClient(app).get("/logged").header("Authorization", "Bearer s3cr3t-token")

        messages = [r.getMessage() for r in caplog.records if r.name == "okapi_asgi.access"]
        headers = [m for m in messages if m.strip().startswith("headers:")]
        assert headers and "[REDACTED]" in headers[0]
        assert not any("s3cr3t-token" in m for m in messages)
        levels = {r.levelno for r in caplog.records if r.name == "okapi_asgi.access"}
        assert levels == {logging.DEBUG}

    @pytest.mark.asyncio
    async def test_headers_not_logged_without_debug(
        self, caplog: pytest.LogCaptureFixture
    ) -> None:
        app = Okapi()

        @app.get("/logged")
        async def logged(ctx):
            return "ok"

        with caplog.at_level(logging.DEBUG, logger="okapi_asgi.access"):
            await TestClient(app).get("/logged").header("Authorization", "Bearer s3cr3t-token")

        messages = [r.getMessage() for r in caplog.records if r.name == "okapi_asgi.access"]
        assert not any(m.strip().startswith("headers:") for m in messages)
