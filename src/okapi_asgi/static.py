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

"""
Static file serving.

``StaticFiles`` maps a URL tail to a file under a directory. It is mounted by
``app.static(prefix, directory)`` as a ``GET {prefix}/{filepath:path}`` route
(HEAD falls back to it).

- Content-Type detection via mimetypes
- ETag (MD5 of the content) with ``If-None-Match`` support
- Security: paths resolving outside the directory are rejected
- No directory listing: a directory is served only through its index file
"""

from __future__ import annotations

import hashlib
import mimetypes
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .context import Context

__all__ = ["StaticFiles", "read_file"]

# Ensure common types are registered
mimetypes.add_type("application/javascript", ".js")
mimetypes.add_type("text/css", ".css")
mimetypes.add_type("image/svg+xml", ".svg")
mimetypes.add_type("application/json", ".json")
mimetypes.add_type("text/html", ".html")
mimetypes.add_type("text/html", ".htm")


def _content_type(file_path: Path) -> str:
    content_type, _ = mimetypes.guess_type(str(file_path))
    if content_type is None:
        content_type = "application/octet-stream"
    if content_type.startswith("text/") or content_type == "application/javascript":
        content_type = f"{content_type}; charset=utf-8"
    return content_type


def read_file(path: str | Path) -> tuple[str, bytes, str] | None:
    """Return ``(content_type, content, etag)`` or None if not a file."""
    file_path = Path(path)
    if not file_path.is_file():
        return None
    content = file_path.read_bytes()
    etag = f'"{hashlib.md5(content).hexdigest()}"'
    return _content_type(file_path), content, etag


class StaticFiles:
    """
    Files under a directory.

    Example:
        >>> app.static("/assets", "./public")
        # GET /assets/css/site.css -> ./public/css/site.css
    """

    def __init__(self, directory: str | Path, index: str = "index.html") -> None:
        self.directory = Path(directory).resolve()
        self.index = index

        if not self.directory.is_dir():
            raise ValueError(f"Directory does not exist: {self.directory}")

    def resolve(self, url_path: str) -> Path | None:
        """
        Resolve a URL tail to a file inside the directory.

        Returns None for missing files, for directories without index file
        and for paths escaping the directory.
        """
        clean_path = url_path.lstrip("/")
        if not clean_path:
            clean_path = self.index

        try:
            file_path = (self.directory / clean_path).resolve()
        except (ValueError, OSError):
            return None

        try:
            file_path.relative_to(self.directory)
        except ValueError:
            return None

        if file_path.is_dir():
            file_path = file_path / self.index

        if not file_path.is_file():
            return None

        return file_path

    async def __call__(self, ctx: "Context") -> None:
        """Route handler: serve ``ctx.param("filepath")``."""
        file_path = self.resolve(str(ctx.param("filepath", "")))
        if file_path is None:
            ctx.error_not_found()
            return
        ctx.response.set_header("cache-control", "public, max-age=3600")
        ctx.serve_file(file_path)

    def __repr__(self) -> str:
        return f"StaticFiles(directory={self.directory!r}, index={self.index!r})"
