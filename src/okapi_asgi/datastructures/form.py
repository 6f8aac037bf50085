# Copyright 2025 Softwell S.r.l.
# Licensed under the Apache License, Version 2.0

"""
Form fields and uploaded files.

``FormData`` holds the text fields of a URL-encoded or multipart body (same
multi-value API as ``QueryParams``) plus the uploaded files of a multipart
body. ``UploadFile`` wraps a ``SpooledTemporaryFile``: content stays in memory
up to ``SPOOL_MAX_SIZE`` bytes and is spilled to a temporary file above it.
Temporary files are removed when the upload is closed, which the request
context does when the request ends.
"""

from __future__ import annotations

from collections.abc import Iterable
from tempfile import SpooledTemporaryFile
from typing import IO

from .headers import Headers
from .query_params import QueryParams

__all__ = ["FormData", "UploadFile", "SPOOL_MAX_SIZE"]

SPOOL_MAX_SIZE = 1024 * 1024


class UploadFile:
    """An uploaded file part.

    Attributes:
        filename: Client-supplied file name (may be empty).
        content_type: Part Content-Type, ``application/octet-stream`` if absent.
        headers: Part headers.
        file: Underlying spooled file object, positioned at 0 after parsing.
        size: Number of bytes written.
    """

    __slots__ = ("filename", "content_type", "headers", "file", "size", "_closed")

    def __init__(
        self,
        filename: str,
        content_type: str = "application/octet-stream",
        headers: Headers | None = None,
        file: IO[bytes] | None = None,
    ) -> None:
        self.filename = filename
        self.content_type = content_type
        self.headers = headers if headers is not None else Headers([])
        self.file: IO[bytes] = (
            file if file is not None else SpooledTemporaryFile(max_size=SPOOL_MAX_SIZE)
        )
        self.size = 0
        self._closed = False

    def write(self, data: bytes) -> None:
        self.file.write(data)
        self.size += len(data)

    def read(self, size: int = -1) -> bytes:
        return self.file.read(size)

    def seek(self, offset: int) -> None:
        self.file.seek(offset)

    @property
    def in_memory(self) -> bool:
        """True while the content has not been spilled to disk."""
        rolled = getattr(self.file, "_rolled", True)
        return not rolled

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self.file.close()

    def __repr__(self) -> str:
        return f"UploadFile(filename={self.filename!r}, size={self.size})"


class FormData(QueryParams):
    """Form text fields plus uploaded files.

    Example:
        >>> form = FormData([("name", "report")])
        >>> form.get("name")
        'report'
        >>> form.get_file("attachment") is None
        True
    """

    __slots__ = ("_files",)

    def __init__(
        self,
        fields: Iterable[tuple[str, str]] | bytes | str | None = None,
        files: Iterable[tuple[str, UploadFile]] = (),
    ) -> None:
        super().__init__(fields)
        self._files: dict[str, list[UploadFile]] = {}
        for name, upload in files:
            self._files.setdefault(name, []).append(upload)

    def add_file(self, name: str, upload: UploadFile) -> None:
        self._files.setdefault(name, []).append(upload)

    def get_file(self, name: str) -> UploadFile | None:
        uploads = self._files.get(name)
        return uploads[0] if uploads else None

    def get_files(self, name: str) -> list[UploadFile]:
        return list(self._files.get(name, []))

    def has_file(self, name: str) -> bool:
        return name in self._files

    @property
    def files(self) -> dict[str, list[UploadFile]]:
        return {name: list(uploads) for name, uploads in self._files.items()}

    def close(self) -> None:
        """Close every upload, removing spilled temporary files."""
        for uploads in self._files.values():
            for upload in uploads:
                upload.close()
