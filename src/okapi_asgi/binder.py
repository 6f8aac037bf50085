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
Structural binder: project a request onto a record.

For every slot of the record's FieldPlan the binder looks up the raw value in
the declared sources, coerces it to the field type and collects the result::

    path params      → router captures (already typed)
    query / form     → QueryParams / FormData (repeated keys or "a,b,c")
    header / cookie  → Headers / cookie dict
    body             → decoded JSON / XML / YAML tree, or the form fields
    embedded         → key of the decoded body when the record is the body

Empty strings count as absent. Defaults are applied only when no source
supplied a value and go through the same coercion rules. The resulting
``present`` set lists the dotted paths of fields that were sourced or
defaulted; the validator uses it for ``required``.

Field paths are attribute names joined with dots. The body slot is
transparent: fields of the body record are reported by their own names.
"""

from __future__ import annotations

import datetime
import enum
import math
import re
import uuid
from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING, Any

from .datastructures import FormData, UploadFile
from .encoding import encoding_for
from .exceptions import BindError
from .fields import (
    ANY,
    FILE,
    FILE_LIST,
    LIST,
    MISSING,
    RECORD,
    RECORD_LIST,
    FieldPlan,
    FieldSlot,
    is_record,
    plan_for,
)

if TYPE_CHECKING:
    from .request import Request

__all__ = ["bind", "bind_record", "coerce", "INT64_MIN", "INT64_MAX"]

INT64_MIN = -(2**63)
INT64_MAX = 2**63 - 1

_INT_RE = re.compile(r"[+-]?\d+")
_FLOAT_RE = re.compile(r"[+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?")
_DURATION_RE = re.compile(
    r"(?:(?P<h>\d+(?:\.\d+)?)h)?(?:(?P<m>\d+(?:\.\d+)?)m)?(?:(?P<s>\d+(?:\.\d+)?)s)?"
)

_TRUE = frozenset({"true", "1", "yes", "on"})
_FALSE = frozenset({"false", "0", "no", "off"})


def coerce(raw: str, tp: Any) -> Any:
    """Parse a textual value into ``tp``.

    Numbers use plain decimal syntax (no thousands separators, no locale).

    Raises:
        ValueError: The text is not a valid ``tp``.
    """
    if tp is str or tp is Any:
        return raw
    text = raw.strip()
    if tp is bool:
        lowered = text.lower()
        if lowered in _TRUE:
            return True
        if lowered in _FALSE:
            return False
        raise ValueError(f"invalid boolean {raw!r}")
    if tp is int:
        if not _INT_RE.fullmatch(text):
            raise ValueError(f"invalid integer {raw!r}")
        return _check_int(int(text))
    if tp is float:
        if not _FLOAT_RE.fullmatch(text):
            raise ValueError(f"invalid number {raw!r}")
        return _check_float(float(text))
    if tp is Decimal:
        if not _FLOAT_RE.fullmatch(text):
            raise ValueError(f"invalid decimal {raw!r}")
        try:
            return Decimal(text)
        except InvalidOperation as e:
            raise ValueError(f"invalid decimal {raw!r}") from e
    if tp is uuid.UUID:
        return uuid.UUID(text)
    if tp is datetime.datetime:
        return datetime.datetime.fromisoformat(text)
    if tp is datetime.date:
        return datetime.date.fromisoformat(text)
    if tp is datetime.time:
        return datetime.time.fromisoformat(text)
    if tp is datetime.timedelta:
        return _parse_duration(text)
    if tp is bytes:
        return raw.encode("utf-8")
    if isinstance(tp, type) and issubclass(tp, enum.Enum):
        for member in tp:
            if str(member.value) == text or member.name == text:
                return member
        raise ValueError(f"{raw!r} is not a valid {tp.__name__}")
    raise ValueError(f"cannot convert text to {getattr(tp, '__name__', tp)}")


def _check_int(value: int) -> int:
    if not INT64_MIN <= value <= INT64_MAX:
        raise ValueError(f"integer {value} out of range")
    return value


def _check_float(value: float) -> float:
    if not math.isfinite(value):
        raise ValueError("number is not finite")
    return value


def _parse_duration(text: str) -> datetime.timedelta:
    if _FLOAT_RE.fullmatch(text):
        return datetime.timedelta(seconds=_check_float(float(text)))
    match = _DURATION_RE.fullmatch(text)
    if not text or match is None:
        raise ValueError(f"invalid duration {text!r}")
    parts = {k: float(v) for k, v in match.groupdict().items() if v}
    return datetime.timedelta(
        hours=parts.get("h", 0), minutes=parts.get("m", 0), seconds=parts.get("s", 0)
    )


def _convert(value: Any, tp: Any) -> Any:
    """Convert a decoded (already typed) value to ``tp``."""
    if tp is Any or value is None:
        return value
    if isinstance(value, str):
        return coerce(value, tp)
    if tp is str:
        if isinstance(value, (dict, list)):
            raise ValueError("expected a string")
        return str(value).lower() if isinstance(value, bool) else str(value)
    if tp is bool:
        if isinstance(value, bool):
            return value
        if isinstance(value, int) and value in (0, 1):
            return bool(value)
        raise ValueError(f"invalid boolean {value!r}")
    if tp is int:
        if isinstance(value, bool):
            raise ValueError("expected an integer")
        if isinstance(value, float):
            if not value.is_integer():
                raise ValueError(f"invalid integer {value!r}")
            value = int(value)
        if not isinstance(value, int):
            raise ValueError("expected an integer")
        return _check_int(value)
    if tp is float:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValueError("expected a number")
        return _check_float(float(value))
    if tp is Decimal:
        if isinstance(value, bool) or not isinstance(value, (int, float, Decimal)):
            raise ValueError("expected a number")
        return Decimal(str(value))
    if not isinstance(tp, type):
        return value
    if isinstance(value, tp):
        return value
    if issubclass(tp, enum.Enum):
        return tp(value)
    if tp is datetime.timedelta and isinstance(value, (int, float)):
        return datetime.timedelta(seconds=value)
    raise ValueError(f"cannot convert {type(value).__name__} to {getattr(tp, '__name__', tp)}")


def _split_items(values: list[str]) -> list[str]:
    """Repeated occurrences, or one comma-separated occurrence; blanks dropped."""
    if len(values) == 1:
        values = values[0].split(",")
    return [item.strip() for item in values if item.strip()]


def _as_list(value: Any) -> list[Any]:
    if isinstance(value, list):
        return value
    # XML wraps repeated elements: <tags><item>a</item><item>b</item></tags>
    if isinstance(value, dict) and len(value) == 1:
        inner = next(iter(value.values()))
        return inner if isinstance(inner, list) else [inner]
    if value is None or value == "":
        return []
    return [value]


class _Binder:
    """Binding run for one request; holds the lazily decoded body."""

    def __init__(self, request: "Request", params: dict[str, Any]) -> None:
        self.request = request
        self.params = params
        self.form: FormData | None = None
        self.tree: Any = None
        self.present: set[str] = set()

    async def load(self, plan: FieldPlan) -> None:
        needs_body = plan.has_body or any(slot.has_source("form") for slot in plan.slots)
        if not needs_body:
            return
        if not await self.request.body():
            return
        if plan.has_body:
            self.tree = await self.request.decoded()
        if isinstance(self.tree, FormData):
            self.form = self.tree
        elif any(slot.has_source("form") for slot in plan.slots):
            self.form = await self.request.form()

    @property
    def encoding(self) -> str:
        found = encoding_for(self.request.media_type)
        return found.value if found is not None else "json"

    # -------------------------------------------------------------- sources

    def lookup(self, slot: FieldSlot) -> tuple[str, Any] | None:
        """Return ``(source, raw)`` from the first source supplying a value."""
        for source, name in slot.sources:
            if source == "path":
                if name in self.params:
                    value = self.params[name]
                    if value != "":
                        return source, value
            elif source == "query":
                found = self._multi(self.request.query_params.getlist(name), slot)
                if found is not None:
                    return source, found
            elif source == "form":
                if self.form is None:
                    continue
                if slot.kind == FILE:
                    upload = self.form.get_file(name)
                    if upload is not None:
                        return source, upload
                    continue
                if slot.kind == FILE_LIST:
                    uploads = self.form.get_files(name)
                    if uploads:
                        return source, uploads
                    continue
                found = self._multi(self.form.getlist(name), slot)
                if found is not None:
                    return source, found
            elif source == "header":
                found = self._multi(self.request.headers.getlist(name), slot)
                if found is not None:
                    return source, found
            elif source == "cookie":
                value = self.request.cookies.get(name)
                if value:
                    return source, _split_items([value]) if slot.kind == LIST else value
        return None

    @staticmethod
    def _multi(values: list[str], slot: FieldSlot) -> Any:
        if slot.kind == LIST:
            items = _split_items(values)
            return items or None
        for value in values:
            if value != "":
                return value
        return None

    # -------------------------------------------------------------- binding

    def bind_slots(self, plan: FieldPlan, tree: Any, prefix: str) -> dict[str, Any]:
        kwargs: dict[str, Any] = {}
        for slot in plan.slots:
            if not slot.sources:
                continue
            path = f"{prefix}{slot.attr}"
            source = slot.source
            if source == "body":
                value = self.bind_body(slot, tree)
                if value is not MISSING:
                    kwargs[slot.attr] = value
                    self.present.add(path)
                continue
            if source == "embedded":
                if isinstance(tree, FormData):
                    raw = self._multi(tree.getlist(slot.key("json")), slot)
                    found = None if raw is None else ("form", raw)
                elif isinstance(tree, dict) and slot.key(self.encoding) in tree:
                    found = ("body", tree[slot.key(self.encoding)])
                else:
                    found = None
            else:
                found = self.lookup(slot)

            if found is not None:
                kwargs[slot.attr] = self.convert(slot, found[0], found[1], path)
                self.present.add(path)
            elif slot.default is not MISSING and slot.default is not None:
                kwargs[slot.attr] = self.convert(slot, "default", slot.default, path)
                self.present.add(path)
            elif slot.kind in (LIST, RECORD_LIST, FILE_LIST):
                kwargs[slot.attr] = []
        # fields without a dataclass default still need a constructor argument
        for slot in plan.slots:
            if slot.attr not in kwargs and not slot.has_default:
                kwargs[slot.attr] = [] if slot.kind in (LIST, RECORD_LIST, FILE_LIST) else None
        return kwargs

    def bind_body(self, slot: FieldSlot, tree: Any) -> Any:
        """Bind the body slot; MISSING if the request carried no body."""
        if tree is None:
            return MISSING
        if slot.kind == RECORD:
            if not isinstance(tree, (dict, FormData)):
                raise BindError("Request body must be an object", field=slot.attr, source="body")
            return self.build(slot.type, tree, "")
        if slot.kind == RECORD_LIST:
            return [
                self.build(slot.type, item, f"[{index}].")
                for index, item in enumerate(_as_list(tree))
            ]
        if isinstance(tree, FormData):
            tree = tree.to_dict()
        return self.convert(slot, "body", tree, slot.attr)

    def build(self, cls: type, tree: Any, prefix: str) -> Any:
        plan = plan_for(cls)
        kwargs = self.bind_slots(plan, tree, prefix)
        return cls(**kwargs)

    def convert(self, slot: FieldSlot, source: str, raw: Any, path: str) -> Any:
        try:
            if slot.kind in (FILE, FILE_LIST, ANY):
                if slot.kind == FILE and not isinstance(raw, UploadFile):
                    raise ValueError("expected an uploaded file")
                return raw
            if slot.kind == RECORD:
                if isinstance(raw, (dict, FormData)):
                    return self.build(slot.type, raw, f"{path}.")
                raise ValueError("expected an object")
            if slot.kind == RECORD_LIST:
                return [
                    self.build(slot.type, item, f"{path}[{index}].")
                    for index, item in enumerate(_as_list(raw))
                ]
            if slot.kind == LIST:
                items = _split_items([raw]) if isinstance(raw, str) else _as_list(raw)
                return [_convert(item, slot.type) for item in items]
            return _convert(raw, slot.type)
        except BindError:
            raise
        except (ValueError, TypeError) as e:
            raise BindError(
                f"Invalid value for {path}: {e}", field=path, source=source, raw=_printable(raw)
            ) from e


def _printable(raw: Any) -> Any:
    if isinstance(raw, (str, int, float, bool)) or raw is None:
        return raw
    if isinstance(raw, list) and all(isinstance(item, (str, int, float, bool)) for item in raw):
        return raw
    return str(raw)


async def bind_record(
    request: "Request", cls: type, params: dict[str, Any] | None = None
) -> tuple[Any, set[str]]:
    """Bind ``cls`` from the request without validating.

    Returns the instance and the set of dotted field paths that were
    supplied (by a source or a default).

    Raises:
        BindError: Coercion failure or malformed body.
        UnsupportedMediaType: Body content type without a decoder.
        BodyTooLarge: Body above the request limit.
    """
    if not is_record(cls):
        raise TypeError(f"{cls!r} is not a record type")
    plan = plan_for(cls)
    binder = _Binder(request, params or {})
    await binder.load(plan)
    kwargs = binder.bind_slots(plan, binder.tree, "")
    return cls(**kwargs), binder.present


async def bind(
    request: "Request", cls: type, params: dict[str, Any] | None = None, *, validate: bool = True
) -> Any:
    """Bind ``cls`` from the request and run the validator on the result.

    Raises:
        BindError: See ``bind_record``.
        ValidationFailure: One or more constraints failed.
    """
    from .validator import validate as run_validator

    instance, present = await bind_record(request, cls, params)
    if validate:
        run_validator(instance, plan_for(cls), present)
    return instance
