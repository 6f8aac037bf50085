# Copyright 2025 Softwell S.r.l.
# Licensed under the Apache License, Version 2.0

"""Jinja2 template renderer.

``Template`` is the application renderer used by ``ctx.render()``::

    app = Okapi(renderer=Template.from_directory("templates"))

    @app.get("/")
    async def home(ctx):
        ctx.render(200, "home.html", {"title": "Books"})

Templates receive the data mapping as top-level variables (any other value
is exposed as ``data``) plus ``ctx``, the request Context.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Callable

from jinja2 import (
    ChoiceLoader,
    DictLoader,
    Environment,
    FileSystemLoader,
    TemplateNotFound,
    select_autoescape,
)

__all__ = ["Template", "render_file", "render_string"]


def _variables(data: Any, context: Any) -> dict[str, Any]:
    if isinstance(data, dict):
        variables = dict(data)
    elif data is None:
        variables = {}
    else:
        variables = {"data": data}
    variables.setdefault("ctx", context)
    return variables


class Template:
    """Named-template renderer backed by a Jinja2 Environment."""

    def __init__(self, directory: str | Path | None = None, extensions: tuple[str, ...] = (".html", ".tmpl")) -> None:
        self.directory = Path(directory) if directory is not None else None
        self.extensions = extensions
        self._inline: dict[str, str] = {}
        loaders: list[Any] = [DictLoader(self._inline)]
        if self.directory is not None:
            loaders.append(FileSystemLoader(str(self.directory)))
        self.env = Environment(
            loader=ChoiceLoader(loaders),
            autoescape=select_autoescape(["html", "htm", "xml", "tmpl"]),
        )

    @classmethod
    def from_directory(cls, directory: str | Path, *extensions: str) -> "Template":
        """Renderer over every template file found under ``directory``.

        Raises:
            ValueError: The directory holds no template with those extensions.
        """
        renderer = cls(directory, tuple(extensions) or (".html", ".tmpl"))
        if not renderer.names():
            raise ValueError(f"No templates found in directory: {directory}")
        return renderer

    def names(self) -> list[str]:
        names = set(self._inline)
        if self.directory is not None and self.directory.is_dir():
            for path in self.directory.rglob("*"):
                if path.is_file() and path.suffix in self.extensions:
                    names.add(path.relative_to(self.directory).as_posix())
        return sorted(names)

    def add_template(self, name: str, content: str) -> None:
        """Register an inline template; it shadows a file of the same name."""
        self.env.parse(content)
        self._inline[name] = content

    def add_template_file(self, path: str | Path) -> None:
        path = Path(path)
        self.add_template(path.name, path.read_text(encoding="utf-8"))

    def add_filter(self, name: str, func: Callable[..., Any]) -> None:
        self.env.filters[name] = func

    def add_global(self, name: str, value: Any) -> None:
        self.env.globals[name] = value

    def render(self, name: str, data: Any = None, context: Any = None) -> str:
        """Render a template by name.

        Raises:
            jinja2.TemplateNotFound: Unknown template name.
        """
        template = self.env.get_template(name)
        return template.render(_variables(data, context))


_file_env = Environment(autoescape=select_autoescape(["html", "htm", "xml"]))


def render_file(path: str | Path, data: Any = None, context: Any = None) -> str:
    path = Path(path)
    if not path.is_file():
        raise TemplateNotFound(str(path))
    template = _file_env.from_string(path.read_text(encoding="utf-8"))
    return template.render(_variables(data, context))


def render_string(source: str, data: Any = None, context: Any = None) -> str:
    return _file_env.from_string(source).render(_variables(data, context))
