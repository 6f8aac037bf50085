# Copyright 2025 Softwell S.r.l.
# Licensed under the Apache License, Version 2.0

"""Content negotiation and table-driven encoders/decoders.

``Encoding`` is the closed set of payload encodings the projector knows.
``negotiate()`` is a pure function of the request ``Accept`` header and the
route's declared output type. Encoders turn plain Python values (dicts,
lists, scalars) into bytes; ``to_primitive()`` first lowers records,
dataclasses, UUIDs, dates, enums and decimals into those plain values.

Decoders are the inverse for request bodies (JSON, XML, YAML). Form bodies
are decoded by the request itself.
"""

from __future__ import annotations

import dataclasses
import datetime
import enum
import uuid
import xml.etree.ElementTree as ET
from decimal import Decimal
from typing import Any

import orjson
import yaml

from .exceptions import BindError, EncodeError

__all__ = [
    "Encoding",
    "MIME_JSON",
    "MIME_XML",
    "MIME_YAML",
    "MIME_TEXT",
    "MIME_HTML",
    "MIME_FORM",
    "MIME_MULTIPART",
    "MIME_SSE",
    "MIME_OCTET",
    "media_type_of",
    "encoding_for",
    "parse_accept",
    "negotiate",
    "to_primitive",
    "encode",
    "decode",
]

MIME_JSON = "application/json"
MIME_XML = "application/xml"
MIME_YAML = "application/yaml"
MIME_TEXT = "text/plain"
MIME_HTML = "text/html"
MIME_FORM = "application/x-www-form-urlencoded"
MIME_MULTIPART = "multipart/form-data"
MIME_SSE = "text/event-stream"
MIME_OCTET = "application/octet-stream"


class Encoding(str, enum.Enum):
    JSON = "json"
    XML = "xml"
    YAML = "yaml"
    TEXT = "text"
    HTML = "html"

    @property
    def media_type(self) -> str:
        return _MEDIA_TYPES[self]


_MEDIA_TYPES = {
    Encoding.JSON: MIME_JSON,
    Encoding.XML: MIME_XML,
    Encoding.YAML: MIME_YAML,
    Encoding.TEXT: MIME_TEXT,
    Encoding.HTML: MIME_HTML,
}

_BY_MEDIA_TYPE = {
    "application/json": Encoding.JSON,
    "text/json": Encoding.JSON,
    "application/problem+json": Encoding.JSON,
    "application/xml": Encoding.XML,
    "text/xml": Encoding.XML,
    "application/yaml": Encoding.YAML,
    "application/x-yaml": Encoding.YAML,
    "text/yaml": Encoding.YAML,
    "text/x-yaml": Encoding.YAML,
    "text/plain": Encoding.TEXT,
    "text/html": Encoding.HTML,
}

# Accept wildcards resolve to these, in order
_NEGOTIABLE = (Encoding.JSON, Encoding.XML, Encoding.YAML, Encoding.TEXT)


def media_type_of(content_type: str | None) -> str:
    """Return the bare lowercase media type of a Content-Type value."""
    if not content_type:
        return ""
    return content_type.split(";", 1)[0].strip().lower()


def encoding_for(content_type: str | None) -> Encoding | None:
    """Map a Content-Type (parameters allowed) to an Encoding."""
    return _BY_MEDIA_TYPE.get(media_type_of(content_type))


def parse_accept(header: str | None) -> list[str]:
    """Return media ranges from an Accept header, highest quality first.

    Entries with ``q=0`` are dropped; ties keep header order.
    """
    if not header:
        return []
    entries: list[tuple[float, int, str]] = []
    for position, item in enumerate(header.split(",")):
        parts = [part.strip() for part in item.split(";")]
        media = parts[0].lower()
        if not media:
            continue
        quality = 1.0
        for option in parts[1:]:
            key, _, value = option.partition("=")
            if key.strip() == "q":
                try:
                    quality = float(value)
                except ValueError:
                    quality = 0.0
        if quality > 0:
            entries.append((-quality, position, media))
    return [media for _, _, media in sorted(entries)]


def negotiate(
    accept: str | None, declared: str | None = None, fallback: Encoding = Encoding.JSON
) -> Encoding:
    """Choose the response encoding.

    The route's declared output type wins; otherwise the first acceptable
    entry of ``Accept`` among JSON, XML, YAML and text; otherwise
    ``fallback`` (also used for wildcards).
    """
    if declared:
        chosen = encoding_for(declared)
        if chosen is not None:
            return chosen
    for media in parse_accept(accept):
        if media in ("*/*", "application/*"):
            return fallback
        if media == "text/*":
            return Encoding.TEXT
        chosen = _BY_MEDIA_TYPE.get(media)
        if chosen in _NEGOTIABLE:
            return chosen
    return fallback


def to_primitive(value: Any, encoding: str = "json") -> Any:
    """Lower a value to dicts, lists and JSON-compatible scalars.

    Records use their FieldPlan serialization keys; response-only slots
    (headers, status) are left out of the payload.
    """
    from .fields import is_record, plan_for

    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, enum.Enum):
        return to_primitive(value.value, encoding)
    if isinstance(value, dict):
        return {str(k): to_primitive(v, encoding) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [to_primitive(v, encoding) for v in value]
    if isinstance(value, (uuid.UUID, Decimal)):
        return str(value)
    if isinstance(value, (datetime.datetime, datetime.date, datetime.time)):
        return value.isoformat()
    if isinstance(value, datetime.timedelta):
        return value.total_seconds()
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    if is_record(type(value)):
        plan = plan_for(type(value))
        result: dict[str, Any] = {}
        for slot in plan.slots:
            if slot.source in ("header", "cookie") or slot is plan.status_slot:
                continue
            result[slot.key(encoding)] = to_primitive(getattr(value, slot.attr), encoding)
        return result
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return to_primitive(dataclasses.asdict(value), encoding)
    return str(value)


def _xml_fill(element: ET.Element, value: Any) -> None:
    if isinstance(value, dict):
        for key, item in value.items():
            _xml_fill(ET.SubElement(element, str(key)), item)
    elif isinstance(value, list):
        for item in value:
            _xml_fill(ET.SubElement(element, "item"), item)
    elif value is None:
        return
    elif isinstance(value, bool):
        element.text = "true" if value else "false"
    else:
        element.text = str(value)


def _root_name(value: Any) -> str:
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return type(value).__name__
    return "response"


def encode(value: Any, encoding: Encoding) -> bytes:
    """Serialize a value with the given encoding.

    Raises:
        EncodeError: The value cannot be serialized.
    """
    try:
        if encoding is Encoding.JSON:
            return orjson.dumps(to_primitive(value, "json"))
        if encoding is Encoding.XML:
            root = ET.Element(_root_name(value))
            _xml_fill(root, to_primitive(value, "xml"))
            return ET.tostring(root, encoding="utf-8", xml_declaration=True)
        if encoding is Encoding.YAML:
            return yaml.safe_dump(
                to_primitive(value, "yaml"), sort_keys=False, allow_unicode=True
            ).encode("utf-8")
        if isinstance(value, bytes):
            return value
        if isinstance(value, (dict, list, tuple)) or dataclasses.is_dataclass(value):
            return orjson.dumps(to_primitive(value, "json"))
        return ("" if value is None else str(value)).encode("utf-8")
    except (TypeError, ValueError, orjson.JSONEncodeError, yaml.YAMLError) as e:
        raise EncodeError(f"Failed to encode response as {encoding.value}: {e}") from e


def _xml_tree(element: ET.Element) -> Any:
    children = list(element)
    if not children:
        return (element.text or "").strip()
    result: dict[str, Any] = {}
    for child in children:
        value = _xml_tree(child)
        if child.tag in result:
            existing = result[child.tag]
            if isinstance(existing, list):
                existing.append(value)
            else:
                result[child.tag] = [existing, value]
        else:
            result[child.tag] = value
    return result


def decode(body: bytes, content_type: str | None) -> Any:
    """Decode a JSON, XML or YAML request body into a plain tree.

    Raises:
        BindError: Malformed body.
        ValueError: Media type not handled here.
    """
    encoding = encoding_for(content_type)
    try:
        if encoding is Encoding.JSON:
            return orjson.loads(body) if body else None
        if encoding is Encoding.XML:
            return _xml_tree(ET.fromstring(body)) if body else None
        if encoding is Encoding.YAML:
            return yaml.safe_load(body) if body else None
    except orjson.JSONDecodeError as e:
        raise BindError(f"Invalid JSON body: {e}") from e
    except ET.ParseError as e:
        raise BindError(f"Invalid XML body: {e}") from e
    except yaml.YAMLError as e:
        raise BindError(f"Invalid YAML body: {e}") from e
    raise ValueError(f"No body decoder for {content_type!r}")
