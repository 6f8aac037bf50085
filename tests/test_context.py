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

"""Tests for the request Context."""

from __future__ import annotations

from pathlib import Path

import pytest
from conftest import MockSend, make_receive, make_scope

from okapi_asgi import Okapi
from okapi_asgi.context import Context
from okapi_asgi.request import Request
from okapi_asgi.testing import TestClient


def make_context(query: bytes = b"", headers: list[tuple[bytes, bytes]] | None = None) -> Context:
    app = Okapi(access_log=False)
    request = Request(make_scope("GET", "/", query, headers), make_receive())
    return Context(app, request, MockSend(), {"id": 5})


# =============================================================================
# Store
# =============================================================================


class TestStore:
    """Tests for the typed store helpers."""

    def test_get_and_set(self) -> None:
        ctx = make_context()
        ctx.set("user", "ada")
        assert ctx.get("user") == "ada"
        assert ctx.get("missing", "x") == "x"

    def test_typed_getters(self) -> None:
        ctx = make_context()
        ctx.set("name", "ada")
        ctx.set("admin", True)
        ctx.set("count", 3)
        assert ctx.get_string("name") == "ada"
        assert ctx.get_bool("admin") is True
        assert ctx.get_int("count") == 3
        # wrong types fall back to zero values
        assert ctx.get_string("count") == ""
        assert ctx.get_int("admin") == 0
        assert ctx.get_bool("missing") is False

    def test_copy_isolates_store(self) -> None:
        ctx = make_context()
        ctx.set("user", "ada")
        other = ctx.copy()
        other.set("user", "bob")
        ctx.set("extra", 1)

        assert ctx.get("user") == "ada"
        assert other.get("user") == "bob"
        assert other.get("extra") is None
        assert other.request is ctx.request
        assert other.response is ctx.response
        assert other.param("id") == 5


# =============================================================================
# Request accessors
# =============================================================================


class TestRequestAccessors:
    def test_query_helpers(self) -> None:
        ctx = make_context(query=b"tag=a,b&tag=c&q=go")
        assert ctx.query("q") == "go"
        assert ctx.query("missing", "none") == "none"
        assert ctx.query_array("tag") == ["a", "b", "c"]
        assert ctx.query_map()["q"] == "go"

    def test_headers_and_cookies(self) -> None:
        ctx = make_context(
            headers=[
                (b"x-token", b"abc"),
                (b"accept", b"application/json, text/html"),
                (b"accept-language", b"it, en"),
                (b"referer", b"https://example.com/"),
                (b"cookie", b"session=s1"),
            ]
        )
        assert ctx.header("X-Token") == "abc"
        assert ctx.accept() == ["application/json", "text/html"]
        assert ctx.accept_language() == ["it", "en"]
        assert ctx.referer() == "https://example.com/"
        assert ctx.cookie("session") == "s1"
        assert ctx.cookie("other") is None
        assert ctx.headers()["x-token"] == ["abc"]

    def test_real_ip(self) -> None:
        assert make_context().real_ip() == "127.0.0.1"
        forwarded = make_context(headers=[(b"x-forwarded-for", b"10.0.0.1, 10.0.0.2")])
        assert forwarded.real_ip() == "10.0.0.1"
        real = make_context(headers=[(b"x-real-ip", b"10.0.0.9")])
        assert real.real_ip() == "10.0.0.9"

    def test_is_sse(self) -> None:
        assert make_context(headers=[(b"accept", b"text/event-stream")]).is_sse()
        assert not make_context().is_sse()


# =============================================================================
# Responders
# =============================================================================


class TestResponders:
    """Tests for the reply helpers through the application."""

    @pytest.mark.asyncio
    async def test_set_cookie(self) -> None:
        app = Okapi(access_log=False)

        @app.get("/login")
        async def login(ctx):
            ctx.set_cookie("session", "a b", max_age=60, httponly=True)
            ctx.ok({"ok": True})

        response = await TestClient(app).get("/login")
        response.expect_status(200)
        assert response.headers["set-cookie"] == (
            "session=a%20b; Max-Age=60; Path=/; HttpOnly; SameSite=Lax"
        )

    @pytest.mark.asyncio
    async def test_text_and_xml(self) -> None:
        app = Okapi(access_log=False)

        @app.get("/text")
        async def text(ctx):
            ctx.text(200, "plain")

        @app.get("/xml")
        async def xml(ctx):
            ctx.xml(200, {"name": "Go"})

        client = TestClient(app)
        response = await client.get("/text")
        assert response.headers["content-type"].startswith("text/plain")
        assert response.text == "plain"

        response = await client.get("/xml")
        assert response.headers["content-type"].startswith("application/xml")
        assert "<name>Go</name>" in response.text

    @pytest.mark.asyncio
    async def test_accept_negotiation(self) -> None:
        app = Okapi(access_log=False)

        @app.get("/book")
        async def book(ctx):
            return {"name": "Go"}

        client = TestClient(app)
        response = await client.get("/book").header("Accept", "application/xml")
        assert response.headers["content-type"].startswith("application/xml")
        assert "<name>Go</name>" in response.text
        response = await client.get("/book").header("Accept", "application/yaml")
        assert response.headers["content-type"].startswith("application/yaml")
        assert "name: Go" in response.text
        response = await client.get("/book").header("Accept", "*/*")
        response.expect_json({"name": "Go"})

    @pytest.mark.asyncio
    async def test_redirect(self) -> None:
        app = Okapi(access_log=False)

        @app.get("/old")
        async def old(ctx):
            ctx.redirect("/new", 308)

        response = await TestClient(app).get("/old")
        response.expect_status(308).expect_header("location", "/new")

    @pytest.mark.asyncio
    async def test_serve_file_and_etag(self, tmp_path: Path) -> None:
        file = tmp_path / "report.txt"
        file.write_text("quarterly")
        app = Okapi(access_log=False)

        @app.get("/report")
        async def report(ctx):
            ctx.serve_file_attachment(file, "q1.txt")

        @app.get("/gone")
        async def gone(ctx):
            ctx.serve_file(tmp_path / "missing.txt")

        client = TestClient(app)
        response = await client.get("/report")
        response.expect_status(200).expect_body_contains("quarterly")
        assert response.headers["content-disposition"] == 'attachment; filename="q1.txt"'
        etag = response.headers["etag"]

        cached = await client.get("/report").header("If-None-Match", etag)
        cached.expect_status(304)
        assert cached.content == b""

        (await client.get("/gone")).expect_status(404)

    @pytest.mark.asyncio
    async def test_error_does_not_raise(self) -> None:
        app = Okapi(access_log=False)
        reached = []

        @app.get("/soft")
        async def soft(ctx):
            ctx.error_conflict("already exists", {"id": 1})
            reached.append(True)

        response = await TestClient(app).get("/soft")
        response.expect_status(409).expect_json(
            {"success": False, "status": 409, "message": "already exists", "details": {"id": 1}}
        )
        assert reached == [True]

    @pytest.mark.asyncio
    async def test_render_without_renderer(self) -> None:
        app = Okapi(access_log=False)

        @app.get("/page")
        async def page(ctx):
            ctx.render(200, "page.html")

        (await TestClient(app).get("/page")).expect_status(500)
