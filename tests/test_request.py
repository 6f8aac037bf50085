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

"""Tests for Request."""

from __future__ import annotations

import asyncio
from typing import Any

import pytest
from conftest import make_receive, make_scope

from okapi_asgi.exceptions import (
    BindError,
    BodyConsumed,
    BodyTooLarge,
    RequestTimeout,
    UnsupportedMediaType,
)
from okapi_asgi.request import Request, get_current_request, set_current_request


def chunked_receive(*chunks: bytes) -> Any:
    messages = [
        {"type": "http.request", "body": chunk, "more_body": index < len(chunks) - 1}
        for index, chunk in enumerate(chunks)
    ]

    async def receive() -> dict[str, Any]:
        if messages:
            return messages.pop(0)
        return {"type": "http.disconnect"}

    return receive


# =============================================================================
# Scope accessors
# =============================================================================


class TestScope:
    def test_basic_properties(self):
        request = Request(
            make_scope("post", "/books", b"page=2", [(b"host", b"example.com")]),
            make_receive(),
        )
        assert request.method == "POST"
        assert request.path == "/books"
        assert request.query_params.get("page") == "2"
        assert request.url == "http://example.com/books?page=2"
        assert request.client == ("127.0.0.1", 50000)

    def test_url_without_host_header(self):
        request = Request(make_scope(path="/x"), make_receive())
        assert request.url == "http://testserver/x"

    def test_content_headers(self):
        request = Request(
            make_scope(
                headers=[
                    (b"content-type", b"application/json; charset=utf-8"),
                    (b"content-length", b"12"),
                ]
            ),
            make_receive(),
        )
        assert request.media_type == "application/json"
        assert request.content_length == 12

    def test_cookies(self):
        request = Request(
            make_scope(headers=[(b"cookie", b"session=a%20b; theme=dark")]), make_receive()
        )
        assert request.cookies == {"session": "a b", "theme": "dark"}

    def test_current_request(self):
        request = Request(make_scope(), make_receive())
        set_current_request(request)
        assert get_current_request() is request
        set_current_request(None)
        assert get_current_request() is None


# =============================================================================
# Body
# =============================================================================


class TestBody:
    """Tests for body reading, limits and decoding."""

    @pytest.mark.asyncio
    async def test_chunked_body_cached(self):
        request = Request(make_scope("POST"), chunked_receive(b"hello ", b"world"))
        assert await request.body() == b"hello world"
        assert await request.body() == b"hello world"

    @pytest.mark.asyncio
    async def test_declared_length_over_limit(self):
        scope = make_scope("POST", headers=[(b"content-length", b"100")])
        request = Request(scope, make_receive(b"x" * 100), max_body_size=10)
        with pytest.raises(BodyTooLarge):
            await request.body()

    @pytest.mark.asyncio
    async def test_actual_length_over_limit(self):
        request = Request(make_scope("POST"), chunked_receive(b"12345", b"67890"), max_body_size=8)
        with pytest.raises(BodyTooLarge) as exc_info:
            await request.body()
        assert exc_info.value.status_code == 413

    @pytest.mark.asyncio
    async def test_read_timeout(self):
        async def slow_receive() -> dict[str, Any]:
            await asyncio.sleep(10)
            return {"type": "http.request", "body": b""}

        request = Request(make_scope("POST"), slow_receive, read_timeout=0.01)
        with pytest.raises(RequestTimeout) as exc_info:
            await request.body()
        assert exc_info.value.status_code == 408

    @pytest.mark.asyncio
    async def test_stream_then_body(self):
        request = Request(make_scope("POST"), chunked_receive(b"a", b"b"))
        chunks = [chunk async for chunk in request.stream()]
        assert chunks == [b"a", b"b"]
        with pytest.raises(BodyConsumed):
            await request.body()

    @pytest.mark.asyncio
    async def test_json(self):
        request = Request(make_scope("POST"), make_receive(b'{"title": "Dune"}'))
        assert await request.json() == {"title": "Dune"}

    @pytest.mark.asyncio
    async def test_decoded_by_content_type(self):
        scope = make_scope("POST", headers=[(b"content-type", b"application/yaml")])
        request = Request(scope, make_receive(b"title: Dune\nyear: 1965\n"))
        assert await request.decoded() == {"title": "Dune", "year": 1965}

    @pytest.mark.asyncio
    async def test_decoded_empty_body(self):
        request = Request(make_scope("POST"), make_receive())
        assert await request.decoded() is None

    @pytest.mark.asyncio
    async def test_unsupported_media_type(self):
        scope = make_scope("POST", headers=[(b"content-type", b"text/csv")])
        request = Request(scope, make_receive(b"a,b"))
        with pytest.raises(UnsupportedMediaType):
            await request.decoded()


# =============================================================================
# Forms
# =============================================================================


class TestForm:
    @pytest.mark.asyncio
    async def test_urlencoded(self):
        scope = make_scope(
            "POST", headers=[(b"content-type", b"application/x-www-form-urlencoded")]
        )
        request = Request(scope, make_receive(b"title=Dune&tag=a&tag=b"))
        form = await request.form()
        assert form.get("title") == "Dune"
        assert form.getlist("tag") == ["a", "b"]
        assert await request.form() is form

    @pytest.mark.asyncio
    async def test_multipart(self):
        body = (
            b"--XyZ\r\n"
            b'Content-Disposition: form-data; name="title"\r\n\r\n'
            b"Dune\r\n"
            b"--XyZ\r\n"
            b'Content-Disposition: form-data; name="cover"; filename="cover.txt"\r\n'
            b"Content-Type: text/plain\r\n\r\n"
            b"spice\r\n"
            b"--XyZ--\r\n"
        )
        scope = make_scope(
            "POST", headers=[(b"content-type", b"multipart/form-data; boundary=XyZ")]
        )
        request = Request(scope, make_receive(body))
        form = await request.form()

        assert form.get("title") == "Dune"
        upload = form.get_file("cover")
        assert upload is not None
        assert upload.filename == "cover.txt"
        assert upload.content_type == "text/plain"
        assert upload.read() == b"spice"

        request.close()
        assert upload.closed

    @pytest.mark.asyncio
    async def test_multipart_without_boundary(self):
        scope = make_scope("POST", headers=[(b"content-type", b"multipart/form-data")])
        request = Request(scope, make_receive(b"x"))
        with pytest.raises(BindError, match="boundary"):
            await request.form()

    @pytest.mark.asyncio
    async def test_other_media_type_gives_empty_form(self):
        request = Request(make_scope("POST"), make_receive(b'{"a": 1}'))
        assert len(await request.form()) == 0
