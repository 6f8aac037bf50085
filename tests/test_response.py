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

"""Tests for Response, the result shaper and the response projector."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

import orjson
import pytest
from conftest import MockSend, make_scope

from okapi_asgi import Okapi, param
from okapi_asgi.encoding import Encoding
from okapi_asgi.exceptions import ResponseCommitted
from okapi_asgi.response import (
    JSONResponse,
    PlainTextResponse,
    RedirectResponse,
    Response,
    make_cookie,
    project,
)
from okapi_asgi.testing import TestClient


@dataclass
class Created:
    status: int = 0
    location: str | None = param(header="Location")
    session: str | None = param(cookie="session")
    id: int = 0
    title: str = ""


@dataclass
class Book:
    id: int = 0
    title: str = ""


@dataclass
class Envelope:
    request_id: str | None = param(header="X-Request-ID")
    body: list[Book] | None = param(body=True)


@dataclass
class Tagged:
    tags: list[str] = field(default_factory=list)
    etag: str | None = param(header="ETag")
    count: int = param(json="total", default=0)


# =============================================================================
# Response
# =============================================================================


class TestResponse:
    """Tests for the buffered Response."""

    @pytest.mark.asyncio
    async def test_send(self) -> None:
        send = MockSend()
        response = PlainTextResponse("hello", headers={"X-Trace": "1"})
        await response(make_scope(), None, send)

        assert send.status == 200
        assert send.headers[b"content-type"] == b"text/plain; charset=utf-8"
        assert send.headers[b"content-length"] == b"5"
        assert send.headers[b"x-trace"] == b"1"
        assert send.body == b"hello"
        assert response.committed and response.sent

    @pytest.mark.asyncio
    async def test_head_has_no_body(self) -> None:
        send = MockSend()
        await PlainTextResponse("hello")(make_scope("HEAD"), None, send)
        assert send.headers[b"content-length"] == b"5"
        assert send.body == b""

    @pytest.mark.asyncio
    async def test_no_body_status(self) -> None:
        send = MockSend()
        await Response(b"ignored", status_code=304, media_type="text/plain")(
            make_scope(), None, send
        )
        assert b"content-length" not in send.headers
        assert b"content-type" not in send.headers
        assert send.body == b""

    def test_header_helpers(self) -> None:
        response = Response()
        response.set_header("Vary", "Accept")
        response.add_header("Vary", "Origin")
        assert response.get_header("vary") == "Accept"
        assert len(response.headers) == 2
        response.set_header("vary", "Cookie")
        assert response.headers == [("vary", "Cookie")]
        response.delete_header("VARY")
        assert response.headers == []

    def test_write_after_commit(self) -> None:
        response = Response()
        response.write(200, "text/plain", "a")
        response.commit()
        with pytest.raises(ResponseCommitted):
            response.write(500, "text/plain", "b")
        with pytest.raises(ResponseCommitted):
            response.set_status(201)
        assert response.body == b"a"

    def test_json_and_redirect(self) -> None:
        response = JSONResponse({"a": [1, 2]}, status_code=201)
        assert response.body == b'{"a":[1,2]}'
        assert response.content_type == "application/json"

        redirect = RedirectResponse("/books/a b", 301)
        assert redirect.get_header("location") == "/books/a%20b"
        assert redirect.status_code == 301


class TestSetResult:
    """Tests for shaping plain handler results."""

    def test_none_without_write_is_204(self) -> None:
        response = Response()
        response.set_result(None)
        assert response.status_code == 204

    def test_none_keeps_written_reply(self) -> None:
        response = Response()
        response.write(202, "text/plain", "queued")
        response.set_result(None)
        assert response.status_code == 202
        assert response.body == b"queued"

    def test_values(self, tmp_path: Path) -> None:
        response = Response()
        response.set_result({"id": 1})
        assert response.content_type == "application/json"

        response.set_result(Book(id=2, title="Dune"))
        assert orjson.loads(response.body) == {"id": 2, "title": "Dune"}

        response.set_result(b"\x00\x01")
        assert response.content_type == "application/octet-stream"

        response.set_result("text")
        assert response.content_type == "text/plain; charset=utf-8"

        page = tmp_path / "page.html"
        page.write_text("<p>hi</p>")
        response.set_result(page)
        assert response.content_type == "text/html; charset=utf-8"
        assert response.body == b"<p>hi</p>"


# =============================================================================
# Projection
# =============================================================================


class TestProject:
    """Tests for writing response records."""

    def test_status_headers_and_embedded_body(self) -> None:
        response = Response()
        project(
            response,
            Created(status=201, location="/books/7", session="s1", id=7, title="Dune"),
            Encoding.JSON,
        )
        assert response.status_code == 201
        assert response.get_header("Location") == "/books/7"
        assert response.get_header("set-cookie") == "session=s1; Path=/; SameSite=Lax"
        # status, header and cookie slots stay out of the payload
        assert orjson.loads(response.body) == {"id": 7, "title": "Dune"}

    def test_zero_status_means_200(self) -> None:
        response = Response()
        project(response, Created(id=1), Encoding.JSON)
        assert response.status_code == 200
        assert response.get_header("Location") is None

    def test_body_field(self) -> None:
        response = Response()
        project(response, Envelope(request_id="r-1", body=[Book(1, "Dune")]), Encoding.JSON)
        assert response.get_header("X-Request-ID") == "r-1"
        assert orjson.loads(response.body) == [{"id": 1, "title": "Dune"}]

    def test_none_body_field(self) -> None:
        response = Response()
        project(response, Envelope(), Encoding.JSON)
        assert response.body == b""
        assert response.content_type is None

    def test_keys_and_list_headers(self) -> None:
        response = Response()
        project(response, Tagged(tags=["a"], etag='"v1"', count=3), Encoding.JSON)
        assert response.get_header("ETag") == '"v1"'
        assert orjson.loads(response.body) == {"tags": ["a"], "total": 3}

    def test_yaml_encoding(self) -> None:
        response = Response()
        project(response, Book(id=1, title="Dune"), Encoding.YAML)
        assert response.content_type == "application/yaml"
        assert b"title: Dune" in response.body

    def test_not_a_record(self) -> None:
        with pytest.raises(TypeError):
            project(Response(), {"id": 1}, Encoding.JSON)

    @pytest.mark.asyncio
    async def test_returned_record_through_app(self) -> None:
        app = Okapi(access_log=False)

        @app.post("/books")
        async def create(ctx):
            return Created(status=201, location="/books/9", id=9, title="Emma")

        response = await TestClient(app).post("/books")
        response.expect_status(201).expect_header("location", "/books/9")
        response.expect_json({"id": 9, "title": "Emma"})


# =============================================================================
# Cookies
# =============================================================================


class TestMakeCookie:
    def test_defaults(self) -> None:
        assert make_cookie("session", "abc123", httponly=True) == (
            "set-cookie",
            "session=abc123; Path=/; HttpOnly; SameSite=Lax",
        )

    def test_all_options(self) -> None:
        _, value = make_cookie(
            "id",
            "a;b",
            max_age=-5,
            path="/api",
            domain="example.com",
            secure=True,
            samesite="strict",
        )
        assert value == "id=a%3Bb; Max-Age=0; Path=/api; Domain=example.com; Secure; SameSite=Strict"

    def test_without_samesite(self) -> None:
        assert make_cookie("x", samesite=None)[1] == "x=; Path=/"
