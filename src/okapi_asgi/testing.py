# Copyright 2025 Softwell S.r.l.
# Licensed under the Apache License, Version 2.0

"""In-process test client built on httpx ``ASGITransport``.

Example:
    client = TestClient(app)

    resp = await client.post("/books").json({"title": "Dune"}).bearer(token)
    resp.expect_status(201).expect_json_path("title", "Dune")

    (await client.get("/books/1")).expect_status(200).expect_header(
        "content-type", "application/json"
    )

Use ``async with TestClient(app) as client`` to run the lifespan startup
and shutdown callbacks around the block. Expectation helpers raise
``AssertionError`` and return the response so they can be chained.
"""

from __future__ import annotations

import asyncio
import base64
from collections.abc import Generator, Mapping
from typing import Any

import httpx
import orjson

__all__ = ["TestClient", "RequestBuilder", "TestResponse"]

_MISSING = object()


def _lookup(value: Any, path: str) -> Any:
    """Resolve a dotted path (``items.0.name``) in decoded JSON."""
    current = value
    for part in path.split("."):
        if isinstance(current, list):
            try:
                current = current[int(part)]
            except (ValueError, IndexError):
                return _MISSING
        elif isinstance(current, dict):
            if part not in current:
                return _MISSING
            current = current[part]
        else:
            return _MISSING
    return current


class TestResponse:
    """httpx response with expectation helpers."""

    __test__ = False

    def __init__(self, response: httpx.Response) -> None:
        self.raw = response

    @property
    def status_code(self) -> int:
        return self.raw.status_code

    @property
    def headers(self) -> httpx.Headers:
        return self.raw.headers

    @property
    def content(self) -> bytes:
        return self.raw.content

    @property
    def text(self) -> str:
        return self.raw.text

    def json(self) -> Any:
        return orjson.loads(self.raw.content)

    def expect_status(self, status: int) -> TestResponse:
        assert self.status_code == status, (
            f"expected status {status}, got {self.status_code}: {self.text[:200]}"
        )
        return self

    def expect_json(self, expected: Any) -> TestResponse:
        actual = self.json()
        assert actual == expected, f"expected JSON {expected!r}, got {actual!r}"
        return self

    def expect_json_path(self, path: str, expected: Any) -> TestResponse:
        actual = _lookup(self.json(), path)
        assert actual is not _MISSING, f"JSON path {path!r} not found in {self.text[:200]}"
        assert actual == expected, f"expected {path}={expected!r}, got {actual!r}"
        return self

    def expect_header(self, name: str, expected: str) -> TestResponse:
        actual = self.headers.get(name)
        assert actual is not None, f"header {name!r} missing"
        assert actual == expected, f"expected header {name}={expected!r}, got {actual!r}"
        return self

    def expect_body_contains(self, fragment: str) -> TestResponse:
        assert fragment in self.text, f"body does not contain {fragment!r}: {self.text[:200]}"
        return self

    def __repr__(self) -> str:
        return f"TestResponse({self.status_code})"


class RequestBuilder:
    """One pending request; await it to send."""

    def __init__(self, client: TestClient, method: str, url: str) -> None:
        self.client = client
        self.method = method
        self.url = url
        self.headers: dict[str, str] = {}
        self.params: list[tuple[str, str]] = []
        self.cookies: dict[str, str] = {}
        self.content: bytes | None = None
        self.data: dict[str, Any] | None = None
        self.files: dict[str, Any] | None = None

    def header(self, name: str, value: str) -> RequestBuilder:
        self.headers[name] = value
        return self

    def query(self, name: str, value: Any) -> RequestBuilder:
        self.params.append((name, str(value)))
        return self

    def cookie(self, name: str, value: str) -> RequestBuilder:
        self.cookies[name] = value
        return self

    def json(self, value: Any) -> RequestBuilder:
        self.content = orjson.dumps(value)
        self.headers.setdefault("Content-Type", "application/json")
        return self

    def form(self, fields: Mapping[str, Any], files: Mapping[str, Any] | None = None) -> RequestBuilder:
        """URL-encoded form, or multipart when ``files`` is given."""
        self.data = dict(fields)
        self.files = dict(files) if files else None
        return self

    def body(self, content: bytes | str, content_type: str) -> RequestBuilder:
        self.content = content.encode() if isinstance(content, str) else content
        self.headers["Content-Type"] = content_type
        return self

    def bearer(self, token: str) -> RequestBuilder:
        return self.header("Authorization", f"Bearer {token}")

    def basic_auth(self, username: str, password: str) -> RequestBuilder:
        token = base64.b64encode(f"{username}:{password}".encode()).decode()
        return self.header("Authorization", f"Basic {token}")

    async def send(self) -> TestResponse:
        headers = dict(self.headers)
        if self.cookies:
            headers["Cookie"] = "; ".join(f"{name}={value}" for name, value in self.cookies.items())
        kwargs: dict[str, Any] = {"headers": headers, "params": self.params}
        if self.content is not None:
            kwargs["content"] = self.content
        if self.data is not None:
            kwargs["data"] = self.data
        if self.files is not None:
            kwargs["files"] = self.files
        return await self.client.request(self.method, self.url, **kwargs)

    def __await__(self) -> Generator[Any, None, TestResponse]:
        return self.send().__await__()


class TestClient:
    """
    Test client for an ASGI application.

    Attributes:
        app: The application under test.
        base_url: Base URL of the requests.
    """

    __test__ = False

    def __init__(self, app: Any, base_url: str = "http://testserver") -> None:
        self.app = app
        self.base_url = base_url
        self._lifespan: asyncio.Task[None] | None = None
        self._events: asyncio.Queue[dict[str, Any]] | None = None
        self._replies: asyncio.Queue[dict[str, Any]] | None = None

    async def request(self, method: str, url: str, **kwargs: Any) -> TestResponse:
        transport = httpx.ASGITransport(app=self.app)
        async with httpx.AsyncClient(transport=transport, base_url=self.base_url) as client:
            response = await client.request(method, url, **kwargs)
        return TestResponse(response)

    def get(self, url: str) -> RequestBuilder:
        return RequestBuilder(self, "GET", url)

    def post(self, url: str) -> RequestBuilder:
        return RequestBuilder(self, "POST", url)

    def put(self, url: str) -> RequestBuilder:
        return RequestBuilder(self, "PUT", url)

    def patch(self, url: str) -> RequestBuilder:
        return RequestBuilder(self, "PATCH", url)

    def delete(self, url: str) -> RequestBuilder:
        return RequestBuilder(self, "DELETE", url)

    def head(self, url: str) -> RequestBuilder:
        return RequestBuilder(self, "HEAD", url)

    def options(self, url: str) -> RequestBuilder:
        return RequestBuilder(self, "OPTIONS", url)

    # -------------------------------------------------------------- lifespan

    async def _lifespan_event(self, event: str) -> dict[str, Any]:
        assert self._events is not None and self._replies is not None
        await self._events.put({"type": f"lifespan.{event}"})
        return await self._replies.get()

    async def __aenter__(self) -> TestClient:
        self._events = asyncio.Queue()
        self._replies = asyncio.Queue()
        scope = {"type": "lifespan", "asgi": {"version": "3.0"}, "state": {}}
        self._lifespan = asyncio.create_task(
            self.app(scope, self._events.get, self._replies.put)
        )
        reply = await self._lifespan_event("startup")
        if reply["type"] == "lifespan.startup.failed":
            raise RuntimeError(reply.get("message") or "Lifespan startup failed")
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        if self._lifespan is None:
            return
        try:
            if not self._lifespan.done():
                await self._lifespan_event("shutdown")
            await self._lifespan
        finally:
            self._lifespan = None
