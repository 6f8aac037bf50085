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
okapi-asgi CLI entry point.

Usage:
    okapi-asgi serve myproject.web:app               # Run the application
    okapi-asgi serve myproject.web:app --port 9000   # Override port
    okapi-asgi routes myproject.web:app              # Print the routing table
    okapi-asgi openapi myproject.web:app             # Print the OpenAPI JSON

The target is ``module:attribute`` (attribute defaults to ``app``).
``--config FILE`` is exported as ``OKAPI_CONFIG`` before the module is
imported, so applications built with ``load_settings()`` read it too.
"""

from __future__ import annotations

import importlib
import logging
import os
import sys
from typing import Any

from .exceptions import ConfigError

USAGE = """\
Usage: okapi-asgi <command> <module:app> [options]

Commands:
  serve             Run the application with uvicorn
  routes            Print the routing table
  openapi           Print the OpenAPI document as JSON

Options (serve):
  --host HOST       Listener host (default: from settings, 127.0.0.1)
  --port PORT       Listener port (default: from settings, 8080)
  --config FILE     TOML configuration file
  --tls-port PORT   TLS listener port (requires --cert and --key)
  --cert FILE       TLS certificate file
  --key FILE        TLS private key file
  --debug           Debug logging
  --version, -v     Show version
  --help, -h        Show this help"""

_VALUE_OPTIONS = {"--host", "--port", "--config", "--tls-port", "--cert", "--key"}
_FLAG_OPTIONS = {"--debug"}


class UsageError(Exception):
    """Bad command line."""


def parse_args(argv: list[str]) -> tuple[str, dict[str, Any]]:
    """Split ``argv`` (after the command) into target and options.

    Accepts ``--name value`` and ``--name=value``.
    """
    target = ""
    options: dict[str, Any] = {}
    index = 0
    while index < len(argv):
        arg = argv[index]
        if arg.startswith("--"):
            name, sep, value = arg.partition("=")
            if name in _FLAG_OPTIONS:
                options[name[2:]] = True
            elif name in _VALUE_OPTIONS:
                if not sep:
                    index += 1
                    if index >= len(argv):
                        raise UsageError(f"option {name} requires a value")
                    value = argv[index]
                options[name[2:].replace("-", "_")] = value
            else:
                raise UsageError(f"unknown option '{name}'")
        elif not target:
            target = arg
        else:
            raise UsageError(f"unexpected argument '{arg}'")
        index += 1

    if not target:
        raise UsageError("missing application (module:app)")
    for name in ("port", "tls_port"):
        if name in options:
            try:
                options[name] = int(options[name])
            except ValueError:
                raise UsageError(f"--{name.replace('_', '-')} must be an integer") from None
    if "tls_port" in options and not ("cert" in options and "key" in options):
        raise UsageError("--tls-port requires --cert and --key")
    return target, options


def load_app(target: str) -> Any:
    """Import ``module:attribute`` (dotted attributes allowed)."""
    module_name, _, attr = target.partition(":")
    if not module_name:
        raise UsageError(f"invalid application '{target}'")
    if os.getcwd() not in sys.path:
        sys.path.insert(0, os.getcwd())
    try:
        obj: Any = importlib.import_module(module_name)
    except ImportError as e:
        raise UsageError(f"cannot import '{module_name}': {e}") from e
    for part in (attr or "app").split("."):
        try:
            obj = getattr(obj, part)
        except AttributeError:
            raise UsageError(f"'{module_name}' has no attribute '{attr or 'app'}'") from None
    return obj


def cmd_serve(target: str, options: dict[str, Any]) -> int:
    """Run the ASGI server."""
    from .config import load_settings
    from .server import Server

    logging.basicConfig(
        level=logging.DEBUG if options.get("debug") else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    app = load_app(target)
    settings = load_settings(options["config"]) if "config" in options else app.settings

    server = Server(
        app,
        host=options.get("host") or settings.host,
        port=options.get("port", settings.port),
        tls_port=options.get("tls_port", settings.tls_port),
        certfile=options.get("cert") or settings.tls_certfile,
        keyfile=options.get("key") or settings.tls_keyfile,
        shutdown_timeout=settings.shutdown_timeout,
    )

    print("okapi-asgi starting...", flush=True)
    print(f"Application: {target}", flush=True)
    print(f"Server: http://{server.host}:{server.port}", flush=True)
    if server.tls_enabled:
        print(f"TLS: https://{server.tls_host}:{server.tls_port}", flush=True)
    if app.settings.openapi.enabled:
        print(f"Docs: http://{server.host}:{server.port}{app.settings.openapi.prefix}/", flush=True)
    print(flush=True)

    try:
        server.run()
    except KeyboardInterrupt:
        print("\nShutdown.")
    return 0


def cmd_routes(target: str, options: dict[str, Any]) -> int:
    """Print the routing table."""
    app = load_app(target)
    rows = [
        (
            route.method,
            route.path,
            getattr(route.handler, "__name__", type(route.handler).__name__),
            "" if route.enabled else "(disabled)",
        )
        for route in app.routes()
    ]
    width = max((len(row[1]) for row in rows), default=0)
    for method, path, name, state in rows:
        print(f"{method:<8}{path:<{width + 2}}{name} {state}".rstrip())
    return 0


def cmd_openapi(target: str, options: dict[str, Any]) -> int:
    """Print the OpenAPI document."""
    app = load_app(target)
    print(app.openapi.json().decode())
    return 0


COMMANDS = {"serve": cmd_serve, "routes": cmd_routes, "openapi": cmd_openapi}


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    argv = sys.argv[1:] if argv is None else argv

    if "--version" in argv or "-v" in argv:
        from . import __version__

        print(f"okapi-asgi {__version__}")
        return 0

    if "--help" in argv or "-h" in argv or not argv:
        print(USAGE)
        return 0

    subcommand = argv[0]
    command = COMMANDS.get(subcommand)
    if command is None:
        print(f"Error: unknown subcommand '{subcommand}'", file=sys.stderr)
        return 1

    try:
        target, options = parse_args(argv[1:])
        if "config" in options:
            os.environ["OKAPI_CONFIG"] = options["config"]
        return command(target, options)
    except (UsageError, ConfigError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
