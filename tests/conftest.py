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

"""Shared fixtures: ASGI message capture and scope builders."""

from __future__ import annotations

from typing import Any

import pytest


class MockSend:
    """Capture ASGI send messages for testing."""

    def __init__(self) -> None:
        self.messages: list[dict[str, Any]] = []

    async def __call__(self, message: dict[str, Any]) -> None:
        self.messages.append(message)

    @property
    def start_message(self) -> dict[str, Any]:
        """Get the http.response.start message."""
        return self.messages[0]

    @property
    def body_messages(self) -> list[dict[str, Any]]:
        """Get all http.response.body messages."""
        return [m for m in self.messages if m["type"] == "http.response.body"]

    @property
    def status(self) -> int:
        """Get response status code."""
        return self.start_message["status"]

    @property
    def headers(self) -> dict[bytes, bytes]:
        """Get headers as dict."""
        return dict(self.start_message["headers"])

    def header_values(self, name: bytes) -> list[bytes]:
        """All values of a repeated header."""
        return [v for k, v in self.start_message["headers"] if k == name]

    @property
    def body(self) -> bytes:
        """Get complete body (concatenated from all body messages)."""
        return b"".join(m.get("body", b"") for m in self.body_messages)


def make_scope(
    method: str = "GET",
    path: str = "/",
    query_string: bytes = b"",
    headers: list[tuple[bytes, bytes]] | None = None,
) -> dict[str, Any]:
    """Build a minimal HTTP scope."""
    return {
        "type": "http",
        "asgi": {"version": "3.0"},
        "http_version": "1.1",
        "method": method,
        "scheme": "http",
        "path": path,
        "raw_path": path.encode(),
        "query_string": query_string,
        "headers": headers or [],
        "client": ("127.0.0.1", 50000),
        "server": ("testserver", 80),
    }


def make_receive(body: bytes = b"") -> Any:
    """Receive callable delivering ``body`` once, then a disconnect."""
    messages = [{"type": "http.request", "body": body, "more_body": False}]

    async def receive() -> dict[str, Any]:
        if messages:
            return messages.pop(0)
        return {"type": "http.disconnect"}

    return receive


@pytest.fixture
def send() -> MockSend:
    """Create a mock send callable."""
    return MockSend()
