# Copyright 2025 Softwell S.r.l.
# Licensed under the Apache License, Version 2.0

"""
Server-sent events.

``EventStream`` writes ``text/event-stream`` frames straight to the ASGI send
callable. The first frame commits the response (status 200 plus any header
set earlier on the context response). Each message becomes::

    id: 7c2f...
    event: tick
    retry: 3000
    data: {"n": 1}

Multi-line payloads are split over several ``data:`` lines.

A watcher task listens for ``http.disconnect``. Once the client is gone (or
the send fails, or the stream is closed) ``send()`` drops frames and returns
None, ``stream()`` stops iterating and ``wait_closed()`` returns.

Example:
    >>> async def clock(ctx):
    ...     stream = ctx.sse()
    ...     for n in range(3):
    ...         await stream.send({"n": n}, event="tick")
    ...         await asyncio.sleep(1)
"""

from __future__ import annotations

import asyncio
import base64
import logging
import uuid
from collections.abc import AsyncIterable, Iterable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol

import orjson

from .encoding import MIME_SSE, to_primitive

if TYPE_CHECKING:
    from .request import Request
    from .response import Response
    from .types import Send

__all__ = [
    "Message",
    "Serializer",
    "JSONSerializer",
    "TextSerializer",
    "Base64Serializer",
    "EventStream",
]

logger = logging.getLogger("okapi_asgi")


class Serializer(Protocol):
    def serialize(self, data: Any) -> str: ...


class JSONSerializer:
    def serialize(self, data: Any) -> str:
        return orjson.dumps(to_primitive(data)).decode("utf-8")


class TextSerializer:
    def serialize(self, data: Any) -> str:
        return str(data)


class Base64Serializer:
    def serialize(self, data: Any) -> str:
        if isinstance(data, str):
            data = data.encode("utf-8")
        if not isinstance(data, (bytes, bytearray)):
            raise TypeError("base64 serializer requires bytes")
        return base64.b64encode(data).decode("ascii")


@dataclass
class Message:
    """One SSE message.

    ``id`` is generated (uuid4 hex) when empty. ``serializer`` overrides the
    stream default; without one, str and bytes are sent as is and other
    values as JSON.
    """

    data: Any = None
    event: str = ""
    id: str = ""
    retry: int = 0
    serializer: Serializer | None = None

    def encode(self, default: Serializer | None = None) -> bytes:
        if not self.id:
            self.id = uuid.uuid4().hex
        lines = [f"id: {self.id}"]
        if self.event:
            lines.append(f"event: {self.event}")
        if self.retry > 0:
            lines.append(f"retry: {self.retry}")
        if self.data is None:
            lines.append("data: ")
        else:
            for line in self._payload(default).split("\n"):
                lines.append(f"data: {line}")
        return ("\n".join(lines) + "\n\n").encode("utf-8")

    def _payload(self, default: Serializer | None) -> str:
        serializer = self.serializer or default
        if serializer is not None:
            return serializer.serialize(self.data)
        if isinstance(self.data, str):
            return self.data
        if isinstance(self.data, (bytes, bytearray)):
            return bytes(self.data).decode("utf-8", errors="replace")
        return JSONSerializer().serialize(self.data)


class EventStream:
    """Event stream bound to one request.

    Attributes:
        serializer: Default serializer for messages without their own.
        ping_interval: Seconds between keep-alive comments; None disables.
    """

    def __init__(
        self,
        request: "Request",
        send: "Send",
        response: "Response",
        serializer: Serializer | None = None,
        ping_interval: float | None = None,
    ) -> None:
        self.request = request
        self.serializer = serializer
        self.ping_interval = ping_interval
        self._send = send
        self._response = response
        self._started = False
        self._closed = asyncio.Event()
        self._lock = asyncio.Lock()
        self._watcher: asyncio.Task[None] | None = None
        self._pinger: asyncio.Task[None] | None = None
        self.sent = 0

    @property
    def started(self) -> bool:
        return self._started

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    async def _start(self) -> None:
        response = self._response
        response.commit()
        response.sent = True
        headers = [
            (name.lower().encode("latin-1"), value.encode("latin-1"))
            for name, value in response.headers
            if name.lower() not in ("content-type", "content-length", "cache-control")
        ]
        headers += [
            (b"content-type", MIME_SSE.encode("latin-1")),
            (b"cache-control", b"no-cache"),
            (b"connection", b"keep-alive"),
            (b"x-accel-buffering", b"no"),
        ]
        response.status_code = 200
        await self._send({"type": "http.response.start", "status": 200, "headers": headers})
        self._started = True
        self._watcher = asyncio.create_task(self._watch_disconnect())
        if self.ping_interval:
            self._pinger = asyncio.create_task(self._ping())

    async def _watch_disconnect(self) -> None:
        await self.request.wait_disconnect()
        logger.debug("SSE client disconnected: %s", self.request.path)
        self._closed.set()

    async def _ping(self) -> None:
        while not self.closed:
            await asyncio.sleep(self.ping_interval or 0)
            await self._write(b": ping\n\n")

    async def _write(self, chunk: bytes) -> bool:
        async with self._lock:
            if self.closed:
                return False
            try:
                await self._send({"type": "http.response.body", "body": chunk, "more_body": True})
            except OSError:
                self._closed.set()
                return False
            return True

    async def send(
        self,
        data: Any = None,
        event: str = "",
        id: str = "",
        retry: int = 0,
        serializer: Serializer | None = None,
    ) -> str | None:
        """Send one event. Returns its id, or None if the stream is closed."""
        return await self.send_message(
            Message(data=data, event=event, id=id, retry=retry, serializer=serializer)
        )

    async def send_message(self, message: Message) -> str | None:
        if self.closed:
            return None
        if not self._started:
            await self._start()
        if await self._write(message.encode(self.serializer)):
            self.sent += 1
            return message.id
        return None

    async def stream(self, source: AsyncIterable[Any] | Iterable[Any]) -> int:
        """Send every item of ``source``, stopping early when the stream closes.

        Items may be ``Message`` objects or plain payloads. Returns the number
        of events sent.
        """
        count = 0
        if isinstance(source, AsyncIterable):
            iterator = source.__aiter__()
            while not self.closed:
                next_item = asyncio.ensure_future(iterator.__anext__())
                closed = asyncio.ensure_future(self._closed.wait())
                done, _ = await asyncio.wait(
                    {next_item, closed}, return_when=asyncio.FIRST_COMPLETED
                )
                if next_item not in done:
                    next_item.cancel()
                    break
                closed.cancel()
                try:
                    item = next_item.result()
                except StopAsyncIteration:
                    break
                if await self._send_item(item):
                    count += 1
        else:
            for item in source:
                if self.closed:
                    break
                if await self._send_item(item):
                    count += 1
        return count

    async def _send_item(self, item: Any) -> bool:
        if isinstance(item, Message):
            return await self.send_message(item) is not None
        return await self.send(item) is not None

    async def open(self) -> None:
        """Send the response headers now instead of with the first event."""
        if not self._started and not self.closed:
            await self._start()

    async def wait_closed(self) -> None:
        """Block until the client disconnects or the stream is closed."""
        await self.open()
        await self._closed.wait()

    async def close(self) -> None:
        """End the response body and stop background tasks. Idempotent."""
        already = self.closed
        self._closed.set()
        for task in (self._watcher, self._pinger):
            if task is not None and not task.done():
                task.cancel()
        if self._started and not already:
            try:
                await self._send({"type": "http.response.body", "body": b"", "more_body": False})
            except OSError as e:
                logger.debug("SSE close after disconnect: %s", e)
        self._watcher = self._pinger = None
