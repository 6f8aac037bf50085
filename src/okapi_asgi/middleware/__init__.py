# Copyright 2025 Softwell S.r.l.
# Licensed under the Apache License, Version 2.0

"""Middleware package - handler wrappers for okapi-asgi.

A middleware is any callable ``(next_handler) -> handler`` where a handler is
``async (ctx) -> None``. Plain functions work::

    def timing(next):
        async def handler(ctx):
            start = time.perf_counter()
            await next(ctx)
            ctx.set_header("x-elapsed", f"{time.perf_counter() - start:.4f}")
        return handler

The class form subclasses ``BaseMiddleware`` and implements ``dispatch``.
Subclasses register by name so configuration can switch them on and off.
"""

from __future__ import annotations

import importlib
from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from ..context import Context
    from ..types import Handler, Middleware

MIDDLEWARE_REGISTRY: dict[str, type["BaseMiddleware"]] = {}


class BaseMiddleware(ABC):
    """Base class for named middlewares. Subclasses auto-register via __init_subclass__.

    Class attributes:
        middleware_name: Registry key (default: class name).
        middleware_order: Order in the application chain (lower = outer). Ranges:
            100: Core (recovery)
            150: Request id, body limit
            200: Logging
            300: Security (cors)
            400: Authentication (basic, jwt)
            500-800: Business logic (custom)
            900: Transformation (compression)
        middleware_default: Default on/off state when built from config.

    An instance is itself a middleware: ``instance(next)`` returns a handler
    that runs ``dispatch(ctx, next)``.
    """

    middleware_name: str = ""
    middleware_order: int = 500
    middleware_default: bool = False

    __slots__ = ()

    def __init__(self, **kwargs: Any) -> None:
        """Accept and ignore unknown options coming from config tables."""

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        name = cls.middleware_name or cls.__name__
        if name in MIDDLEWARE_REGISTRY:
            raise ValueError(f"Middleware name '{name}' already registered")
        cls.middleware_name = name
        MIDDLEWARE_REGISTRY[name] = cls

    @abstractmethod
    async def dispatch(self, ctx: Context, call_next: Handler) -> None:
        """Run around ``call_next``. Not calling it short-circuits the chain."""

    def __call__(self, next_handler: Handler) -> Handler:
        dispatch = self.dispatch

        async def handler(ctx: Context) -> None:
            await dispatch(ctx, next_handler)

        return handler

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.middleware_name!r}>"


def compose(middlewares: Iterable[Middleware], handler: Handler) -> Handler:
    """Fold middlewares around a terminal handler; the first is outermost."""
    for middleware in reversed(list(middlewares)):
        handler = middleware(handler)
    return handler


def _autodiscover() -> None:
    """Import all middleware modules in this package to trigger registration."""
    package_dir = Path(__file__).parent
    for py_file in package_dir.glob("*.py"):
        if py_file.name.startswith("_"):
            continue
        importlib.import_module(f".{py_file.stem}", __package__)


def middleware_chain(
    middleware_config: str | list[str] | Mapping[str, Any] | None = None,
    options: Mapping[str, Mapping[str, Any]] | None = None,
) -> list[BaseMiddleware]:
    """Instantiate registered middlewares from config, sorted by order.

    Uses middleware_order for sorting and middleware_default for the on/off
    state of names the config does not mention.

    TOML format::

        [middleware]
        compression = "on"
        logging = false

        [middleware.cors]
        allow_origins = ["https://example.com"]

    (``okapi_asgi.config`` converts camelCase TOML keys to these names.)

    Args:
        middleware_config: Dict {name: on/off}, comma-separated string, or list.
            A dict value that is itself a table enables the middleware and
            supplies its options.
        options: Extra option tables by middleware name.

    Returns:
        Middleware instances, outermost first.
    """
    config_dict: dict[str, bool] = {}
    tables: dict[str, dict[str, Any]] = {
        name: dict(table) for name, table in (options or {}).items()
    }

    if isinstance(middleware_config, str):
        for name in middleware_config.split(","):
            name = name.strip()
            if name:
                config_dict[name] = True
    elif isinstance(middleware_config, Mapping):
        for name, value in middleware_config.items():
            if isinstance(value, Mapping):
                table = dict(value)
                config_dict[name] = _parse_enabled(table.pop("enabled", True))
                tables.setdefault(name, {}).update(table)
            else:
                config_dict[name] = _parse_enabled(value)
    elif middleware_config:
        for name in middleware_config:
            config_dict[name] = True

    unknown = sorted(set(config_dict) - set(MIDDLEWARE_REGISTRY))
    if unknown:
        from ..exceptions import ConfigError

        raise ConfigError(f"Unknown middleware: {', '.join(unknown)}")

    enabled: list[tuple[int, str, type[BaseMiddleware]]] = []
    for name, cls in MIDDLEWARE_REGISTRY.items():
        is_enabled = config_dict.get(name, cls.middleware_default)
        if is_enabled:
            enabled.append((cls.middleware_order, name, cls))

    enabled.sort(key=lambda x: x[0])
    return [cls(**tables.get(name, {})) for _, name, cls in enabled]


def _parse_enabled(value: Any) -> bool:
    """Parse on/off/true/false value to bool."""
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.lower() in ("on", "true", "yes", "1")
    return bool(value)


_autodiscover()
globals().update({cls.__name__: cls for cls in MIDDLEWARE_REGISTRY.values()})

__all__ = [
    "BaseMiddleware",
    "MIDDLEWARE_REGISTRY",
    "compose",
    "middleware_chain",
    *(cls.__name__ for cls in MIDDLEWARE_REGISTRY.values()),
]
