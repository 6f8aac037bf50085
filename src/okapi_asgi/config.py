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
Application settings and TOML configuration.

Settings can be built in code (``Settings(port=9000)``) or loaded from a TOML
file. Priority:

    hardcoded defaults < TOML file < environment variables < CLI arguments

Key constraints:
- TOML keys CANNOT contain underscore (_); use camelCase. Middleware names
  and option keys are converted to snake_case (``basicAuth`` ->
  ``basic_auth``, ``allowOrigins`` -> ``allow_origins``).
- Values may reference environment variables: ``${VAR}`` (required) or
  ``${VAR:-default}``.
- Environment overrides use the prefix ``OKAPI_`` followed by section and
  key, case-insensitive: ``OKAPI_SERVER_PORT=9000``,
  ``OKAPI_OPENAPI_TITLE="Books"``.

Example TOML::

    [server]
    host = "0.0.0.0"
    port = 8080
    maxBodySize = 1048576
    strictSlash = false
    shutdownTimeout = 10

    [tls]
    port = 8443
    certfile = "${CERT_DIR:-/etc/okapi}/cert.pem"
    keyfile = "${CERT_DIR:-/etc/okapi}/key.pem"

    [openapi]
    title = "Books API"
    version = "2.0.0"
    prefix = "/docs"

    [middleware]
    compression = true
    logging = false

    # an option table also enables the middleware
    [middleware.cors]
    allowOrigins = ["https://example.com"]
"""

from __future__ import annotations

import os
import re
import tomllib
from collections.abc import Mapping
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

from .exceptions import ConfigError

__all__ = [
    "Settings",
    "OpenAPIInfo",
    "load_config",
    "find_config_file",
    "validate_keys",
    "apply_env_overrides",
    "settings_from_config",
    "load_settings",
]

ENV_PREFIX = "OKAPI_"


@dataclass
class OpenAPIInfo:
    """OpenAPI document metadata and documentation endpoints."""

    title: str = "Okapi Web Framework"
    version: str = "1.0.0"
    description: str = ""
    license: dict[str, str] | None = None
    contact: dict[str, str] | None = None
    servers: list[dict[str, str]] = field(default_factory=list)
    prefix: str = "/docs"
    spec_path: str = "/openapi.json"
    redoc_path: str = "/redoc"
    enabled: bool = True


@dataclass
class Settings:
    """Application and server settings.

    Attributes:
        host: Bind address of the plain listener.
        port: Port of the plain listener.
        tls_host: Bind address of the TLS listener (defaults to ``host``).
        tls_port: Port of the TLS listener; 0 disables TLS.
        tls_certfile: PEM certificate for the TLS listener.
        tls_keyfile: PEM private key for the TLS listener.
        read_timeout: Seconds allowed to receive a request body; None waits.
        write_timeout: Seconds allowed to send a buffered response; None waits.
        idle_timeout: Keep-alive timeout in seconds.
        max_body_size: Request body cap in bytes; 0 disables it.
        shutdown_timeout: Seconds to wait for in-flight requests on stop.
        debug: Verbose logging and exception details in 500 replies.
        strict_slash: Treat ``/x`` and ``/x/`` as different routes.
        default_content_type: Encoding used when ``Accept`` decides nothing.
        access_log: Install the access log middleware.
        middleware: Middleware config (names, list or name -> on/options).
        openapi: Documentation settings.
    """

    host: str = "127.0.0.1"
    port: int = 8080
    tls_host: str = ""
    tls_port: int = 0
    tls_certfile: str | None = None
    tls_keyfile: str | None = None
    read_timeout: float | None = None
    write_timeout: float | None = None
    idle_timeout: float = 5.0
    max_body_size: int = 32 << 20
    shutdown_timeout: float = 30.0
    debug: bool = False
    strict_slash: bool = False
    default_content_type: str = "application/json"
    access_log: bool = True
    middleware: Any = None
    openapi: OpenAPIInfo = field(default_factory=OpenAPIInfo)

    @property
    def tls_enabled(self) -> bool:
        return bool(self.tls_port and self.tls_certfile and self.tls_keyfile)

    def validate(self) -> None:
        """Raises ConfigError on inconsistent values."""
        if not 0 <= self.port <= 65535:
            raise ConfigError(f"Invalid port: {self.port}")
        if self.tls_port:
            if not 0 < self.tls_port <= 65535:
                raise ConfigError(f"Invalid TLS port: {self.tls_port}")
            if not (self.tls_certfile and self.tls_keyfile):
                raise ConfigError("TLS requires both a certificate file and a key file")
        if self.max_body_size < 0:
            raise ConfigError("max_body_size cannot be negative")


# TOML key -> Settings attribute, per section
_SERVER_KEYS = {
    "host": "host",
    "port": "port",
    "readtimeout": "read_timeout",
    "writetimeout": "write_timeout",
    "idletimeout": "idle_timeout",
    "maxbodysize": "max_body_size",
    "shutdowntimeout": "shutdown_timeout",
    "debug": "debug",
    "strictslash": "strict_slash",
    "defaultcontenttype": "default_content_type",
    "accesslog": "access_log",
}
_TLS_KEYS = {
    "host": "tls_host",
    "port": "tls_port",
    "certfile": "tls_certfile",
    "keyfile": "tls_keyfile",
}
_OPENAPI_KEYS = {
    "title": "title",
    "version": "version",
    "description": "description",
    "license": "license",
    "contact": "contact",
    "servers": "servers",
    "prefix": "prefix",
    "specpath": "spec_path",
    "redocpath": "redoc_path",
    "enabled": "enabled",
}
_SECTIONS = {"server": _SERVER_KEYS, "tls": _TLS_KEYS, "openapi": _OPENAPI_KEYS}

_CAMEL_RE = re.compile(r"(?<!^)(?=[A-Z])")


def _snake(name: str) -> str:
    return _CAMEL_RE.sub("_", name).lower()


def validate_keys(data: Any, path: str = "") -> None:
    """
    Validate that no keys contain underscore.

    Raises:
        ConfigError: If a key contains underscore.
    """
    if isinstance(data, dict):
        for key, value in data.items():
            full_path = f"{path}.{key}" if path else key
            if "_" in key:
                raise ConfigError(
                    f"Invalid key '{full_path}': underscore (_) is not allowed in keys. "
                    f"Use camelCase or single words instead."
                )
            validate_keys(value, full_path)
    elif isinstance(data, list):
        for i, item in enumerate(data):
            validate_keys(item, f"{path}[{i}]")


def load_config(path: str | Path) -> dict[str, Any]:
    """
    Load configuration from a TOML file.

    Raises:
        ConfigError: If the file is missing, the TOML is invalid, keys contain
            underscores or are unknown, or a required variable is not set.
    """
    path = Path(path)
    if not path.exists():
        raise ConfigError(f"Configuration file not found: {path}")

    try:
        with open(path, "rb") as f:
            config = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Failed to parse TOML: {e}") from e

    validate_keys(config)
    _check_known(config)
    return _expand_env_vars(config)


def _check_known(config: Mapping[str, Any]) -> None:
    for section, value in config.items():
        if section == "middleware":
            continue
        known = _SECTIONS.get(section)
        if known is None:
            raise ConfigError(f"Unknown configuration section [{section}]")
        if not isinstance(value, dict):
            raise ConfigError(f"[{section}] must be a table")
        for key in value:
            if key.lower() not in known:
                raise ConfigError(f"Unknown key '{key}' in [{section}]")


def _expand_env_vars(obj: Any) -> Any:
    if isinstance(obj, dict):
        return {k: _expand_env_vars(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_expand_env_vars(item) for item in obj]
    if isinstance(obj, str):
        return _expand_string(obj)
    return obj


def _expand_string(s: str) -> str:
    """Expand ``${VAR}`` and ``${VAR:-default}`` in a string.

    Raises:
        ConfigError: A required variable is not set.
    """

    def replace(match: re.Match[str]) -> str:
        expr = match.group(1)
        if ":-" in expr:
            var_name, default = expr.split(":-", 1)
            return os.environ.get(var_name, default)
        value = os.environ.get(expr)
        if value is None:
            raise ConfigError(f"Required environment variable not set: {expr}")
        return value

    return re.sub(r"\$\{([^}]+)\}", replace, s)


def _env_value(raw: str) -> Any:
    """Parse an override value: booleans, ints, floats, else the string."""
    lowered = raw.strip().lower()
    if lowered in ("true", "on", "yes"):
        return True
    if lowered in ("false", "off", "no"):
        return False
    for convert in (int, float):
        try:
            return convert(raw)
        except ValueError:
            continue
    return raw


def apply_env_overrides(
    config: dict[str, Any], environ: Mapping[str, str] | None = None
) -> dict[str, Any]:
    """Apply ``OKAPI_<SECTION>_<KEY>`` variables on top of ``config``.

    ``OKAPI_MIDDLEWARE_<NAME>`` toggles a middleware. ``OKAPI_CONFIG`` is
    reserved for config discovery.
    """
    environ = os.environ if environ is None else environ
    result = {section: dict(value) if isinstance(value, dict) else value for section, value in config.items()}
    for name, raw in environ.items():
        if not name.startswith(ENV_PREFIX) or name == f"{ENV_PREFIX}CONFIG":
            continue
        section, _, key = name[len(ENV_PREFIX):].lower().partition("_")
        if not key:
            continue
        if section == "middleware":
            table = result.setdefault("middleware", {})
            table[key] = _env_value(raw)
            continue
        known = _SECTIONS.get(section)
        compact = key.replace("_", "")
        if known is None or compact not in known:
            continue
        table = result.setdefault(section, {})
        for existing in list(table):
            if existing.lower() == compact:
                del table[existing]
        table[compact] = _env_value(raw)
    return result


def _middleware_config(value: Any) -> Any:
    if isinstance(value, dict):
        converted: dict[str, Any] = {}
        for name, entry in value.items():
            if isinstance(entry, dict):
                entry = {_snake(key): option for key, option in entry.items()}
            converted[_snake(name)] = entry
        return converted
    if isinstance(value, list):
        return [_snake(str(name)) for name in value]
    if isinstance(value, str):
        return ",".join(_snake(name.strip()) for name in value.split(","))
    return value


def settings_from_config(config: Mapping[str, Any], base: Settings | None = None) -> Settings:
    """Build Settings from a parsed config mapping.

    Raises:
        ConfigError: Unknown keys or inconsistent values.
    """
    settings = base or Settings()
    _check_known(config)
    values: dict[str, Any] = {}
    openapi_values: dict[str, Any] = {}
    for section in ("server", "tls"):
        for key, value in (config.get(section) or {}).items():
            values[_SECTIONS[section][key.lower()]] = value
    for key, value in (config.get("openapi") or {}).items():
        openapi_values[_OPENAPI_KEYS[key.lower()]] = value
    if "middleware" in config:
        values["middleware"] = _middleware_config(config["middleware"])

    current = {f.name: getattr(settings, f.name) for f in fields(settings)}
    openapi = OpenAPIInfo(**{**vars(settings.openapi), **openapi_values})
    try:
        result = Settings(**{**current, **values, "openapi": openapi})
    except TypeError as e:
        raise ConfigError(f"Invalid settings: {e}") from e
    result.validate()
    return result


def find_config_file() -> Path | None:
    """
    Find a configuration file in standard locations.

    Searches:
    1. OKAPI_CONFIG environment variable
    2. ./okapi.toml
    3. ./config/okapi.toml
    """
    env_config = os.environ.get(f"{ENV_PREFIX}CONFIG")
    if env_config:
        path = Path(env_config)
        if path.exists():
            return path

    for path in (Path.cwd() / "okapi.toml", Path.cwd() / "config" / "okapi.toml"):
        if path.exists():
            return path
    return None


def load_settings(
    path: str | Path | None = None, environ: Mapping[str, str] | None = None
) -> Settings:
    """Settings from ``path`` (or a discovered file) plus environment overrides."""
    config_path = Path(path) if path is not None else find_config_file()
    config = load_config(config_path) if config_path is not None else {}
    return settings_from_config(apply_env_overrides(config, environ))
