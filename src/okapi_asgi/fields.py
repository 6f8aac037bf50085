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
Annotation model: declarative request/response records.

Records are dataclasses whose fields carry ``param(...)`` metadata. The
metadata says where a value comes from (or goes to), how it is named on the
wire and which constraints apply::

    @dataclass
    class CreateBook:
        api_key: str = param(header="X-API-Key", required=True)
        tags: list[str] = param(query="tags")
        body: BookBody = param()                 # field named "body" = request body

    @dataclass
    class BookBody:
        name: str = param(json="name", required=True, max_length=50)
        price: int = param(json="price", min=0, max=500)
        status: str = param(json="status", enum="paid,unpaid,canceled")

The first use of a record type builds a ``FieldPlan`` (ordered ``FieldSlot``
list) that the binder, the validator, the response projector and the OpenAPI
reflector all read. Plans are cached per type; concurrent first lookups may
each compute a plan but only the first stored one is ever returned.

A type may bypass dataclass introspection by defining a ``__field_plan__``
classmethod returning its own ``FieldPlan``.

Sources
=======
path (alias ``param_``), query, header, cookie, form, body (the field named
``body``, marked ``body=True`` or keyed ``json="body"``). A field with several
sources tries them in the fixed order path, query, form, header, cookie and
takes the first that supplies a value.

Fields without an explicit source are *embedded* body keys when the record has
no body field: the record itself is the body. When the record has a body
field, untagged fields are not bound.
"""

from __future__ import annotations

import dataclasses
import datetime
import enum
import re
import threading
import types
import typing
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Union

from .datastructures.form import UploadFile
from .exceptions import ConfigError

__all__ = [
    "MISSING",
    "Param",
    "param",
    "ConstraintSet",
    "FieldSlot",
    "FieldPlan",
    "plan_for",
    "is_record",
    "SCALAR_TYPES",
    "SOURCE_ORDER",
]


class _Missing:
    """Marker for "no value": distinct from None and from ``dataclasses.MISSING``."""

    __slots__ = ()

    def __repr__(self) -> str:
        return "MISSING"


MISSING: Any = _Missing()

PARAM_KEY = "okapi"

SOURCE_ORDER = ("path", "query", "form", "header", "cookie")

SCALAR_TYPES: tuple[type, ...] = (
    str,
    int,
    float,
    bool,
    Decimal,
    uuid.UUID,
    datetime.datetime,
    datetime.date,
    datetime.time,
    datetime.timedelta,
    bytes,
)

# Field kinds
SCALAR = "scalar"
LIST = "list"
RECORD = "record"
RECORD_LIST = "record_list"
FILE = "file"
FILE_LIST = "file_list"
ANY = "any"


@dataclass(frozen=True)
class Param:
    """Raw metadata attached to a dataclass field by ``param()``."""

    path: str | None = None
    query: str | None = None
    header: str | None = None
    cookie: str | None = None
    form: str | None = None
    json: str | None = None
    xml: str | None = None
    yaml: str | None = None
    body: bool = False
    required: bool = False
    default: Any = MISSING
    min: float | None = None
    max: float | None = None
    min_length: int | None = None
    max_length: int | None = None
    pattern: str | None = None
    enum: tuple[str, ...] | None = None
    format: str | None = None
    multiple_of: float | None = None
    min_items: int | None = None
    max_items: int | None = None
    unique_items: bool = False
    description: str | None = None
    example: Any = None
    deprecated: bool = False
    hidden: bool = False


def param(
    default: Any = MISSING,
    *,
    default_factory: Any = MISSING,
    path: str | None = None,
    param_: str | None = None,
    query: str | None = None,
    header: str | None = None,
    cookie: str | None = None,
    form: str | None = None,
    json: str | None = None,
    xml: str | None = None,
    yaml: str | None = None,
    body: bool = False,
    required: bool = False,
    min: float | None = None,
    max: float | None = None,
    min_length: int | None = None,
    max_length: int | None = None,
    pattern: str | None = None,
    enum: str | list[str] | tuple[str, ...] | None = None,
    format: str | None = None,
    multiple_of: float | None = None,
    min_items: int | None = None,
    max_items: int | None = None,
    unique_items: bool = False,
    description: str | None = None,
    doc: str | None = None,
    example: Any = None,
    deprecated: bool = False,
    hidden: bool = False,
) -> Any:
    """Declare a record field with its source, wire names and constraints.

    Returns a ``dataclasses.field``. The dataclass default is ``default`` when
    given, otherwise None (an empty list for list-typed fields is provided by
    the binder). A string ``default`` on a non-string field is parsed with the
    binder's coercion rules when the source supplies nothing.

    ``enum`` accepts a comma-separated string or a sequence; items are
    stripped. ``doc`` is an alias of ``description``.
    """
    if isinstance(enum, str):
        enum_items: tuple[str, ...] | None = tuple(
            item.strip() for item in enum.split(",") if item.strip()
        )
    elif enum is not None:
        enum_items = tuple(str(item).strip() for item in enum)
    else:
        enum_items = None

    meta = Param(
        path=path or param_,
        query=query,
        header=header,
        cookie=cookie,
        form=form,
        json=json,
        xml=xml,
        yaml=yaml,
        body=body,
        required=required,
        default=default if default_factory is MISSING else MISSING,
        min=min,
        max=max,
        min_length=min_length,
        max_length=max_length,
        pattern=pattern,
        enum=enum_items,
        format=format,
        multiple_of=multiple_of,
        min_items=min_items,
        max_items=max_items,
        unique_items=unique_items,
        description=description or doc,
        example=example,
        deprecated=deprecated,
        hidden=hidden,
    )
    metadata = {PARAM_KEY: meta}
    if default_factory is not MISSING:
        return dataclasses.field(default_factory=default_factory, metadata=metadata)
    if isinstance(default, (list, dict, set)):
        snapshot = default
        return dataclasses.field(
            default_factory=lambda: type(snapshot)(snapshot), metadata=metadata
        )
    return dataclasses.field(
        default=None if default is MISSING else default, metadata=metadata
    )


@dataclass(frozen=True)
class ConstraintSet:
    """Validation constraints and documentation facets of one field."""

    required: bool = False
    min: float | None = None
    max: float | None = None
    min_length: int | None = None
    max_length: int | None = None
    pattern: re.Pattern[str] | None = None
    enum: tuple[str, ...] | None = None
    format: str | None = None
    multiple_of: float | None = None
    min_items: int | None = None
    max_items: int | None = None
    unique_items: bool = False
    deprecated: bool = False
    hidden: bool = False
    description: str | None = None
    example: Any = None


_NO_CONSTRAINTS = ConstraintSet()


@dataclass(frozen=True)
class FieldSlot:
    """How one record attribute maps to and from the request/response.

    Attributes:
        attr: Attribute name on the record.
        sources: ``(source, wire name)`` pairs in lookup order. Empty for
            fields that are not bound. ``("body", "body")`` for the body slot
            and ``("embedded", key)`` for keys of a whole-record body.
        kind: scalar, list, record, record_list, file, file_list or any.
        type: Scalar type, item type for lists, or record class.
        default: Default value (MISSING when absent).
        constraints: Validation constraints and documentation facets.
        keys: Serialization keys by encoding (``json``, ``xml``, ``yaml``).
        annotation: The resolved (unwrapped) annotation.
        optional: True if the annotation admits None.
        has_default: False when the dataclass field declares no default.
    """

    attr: str
    sources: tuple[tuple[str, str], ...]
    kind: str
    type: Any
    default: Any = MISSING
    constraints: ConstraintSet = _NO_CONSTRAINTS
    keys: tuple[tuple[str, str], ...] = ()
    annotation: Any = None
    optional: bool = False
    has_default: bool = True

    @property
    def source(self) -> str | None:
        """Primary source, or None for unbound fields."""
        return self.sources[0][0] if self.sources else None

    @property
    def name(self) -> str:
        """Primary wire name (the attribute name for unbound fields)."""
        return self.sources[0][1] if self.sources else self.attr

    def key(self, encoding: str = "json") -> str:
        """Serialization key for an encoding, falling back to the json key."""
        mapping = dict(self.keys)
        return mapping.get(encoding) or mapping.get("json") or self.attr

    def has_source(self, source: str) -> bool:
        return any(src == source for src, _ in self.sources)

    def name_for(self, source: str) -> str | None:
        for src, name in self.sources:
            if src == source:
                return name
        return None

    @property
    def is_body(self) -> bool:
        return self.source == "body"

    @property
    def is_file(self) -> bool:
        return self.kind in (FILE, FILE_LIST)


@dataclass(frozen=True)
class FieldPlan:
    """Precomputed description of how a record maps to/from HTTP."""

    record: type
    slots: tuple[FieldSlot, ...]

    @property
    def body_slot(self) -> FieldSlot | None:
        for slot in self.slots:
            if slot.is_body:
                return slot
        return None

    @property
    def embedded_slots(self) -> tuple[FieldSlot, ...]:
        return tuple(slot for slot in self.slots if slot.source == "embedded")

    @property
    def status_slot(self) -> FieldSlot | None:
        for slot in self.slots:
            if slot.attr == "status" and slot.type is int and slot.source is None:
                return slot
        return None

    @property
    def has_body(self) -> bool:
        return self.body_slot is not None or bool(self.embedded_slots)

    @property
    def name(self) -> str:
        return self.record.__name__


def is_record(tp: Any) -> bool:
    """True for dataclass types and types providing ``__field_plan__``."""
    return isinstance(tp, type) and (
        dataclasses.is_dataclass(tp) or hasattr(tp, "__field_plan__")
    )


_plans: dict[type, FieldPlan] = {}
_plans_lock = threading.Lock()


def plan_for(cls: type) -> FieldPlan:
    """Return the cached FieldPlan of a record type, building it on first use.

    Raises:
        ConfigError: If the type is not a record or its metadata conflicts.
    """
    plan = _plans.get(cls)
    if plan is not None:
        return plan
    built = _build_plan(cls)
    with _plans_lock:
        return _plans.setdefault(cls, built)


def _build_plan(cls: type) -> FieldPlan:
    provider = getattr(cls, "__field_plan__", None)
    if provider is not None:
        plan = provider()
        if not isinstance(plan, FieldPlan):
            raise ConfigError(f"{cls.__name__}.__field_plan__() must return a FieldPlan")
        return plan
    if not dataclasses.is_dataclass(cls):
        raise ConfigError(f"{cls!r} is not a record type (dataclass expected)")

    try:
        hints = typing.get_type_hints(cls)
    except (NameError, TypeError) as e:
        raise ConfigError(f"Cannot resolve annotations of {cls.__name__}: {e}") from e

    fields = [f for f in dataclasses.fields(cls) if f.init]
    metas = {f.name: f.metadata.get(PARAM_KEY) or Param() for f in fields}

    body_attrs = [
        f.name
        for f in fields
        if metas[f.name].body or f.name == "body" or metas[f.name].json == "body"
    ]
    if len(body_attrs) > 1:
        raise ConfigError(
            f"{cls.__name__} declares more than one body field: {', '.join(body_attrs)}"
        )
    has_body_field = bool(body_attrs)

    slots: list[FieldSlot] = []
    for f in fields:
        meta = metas[f.name]
        annotation, optional = _unwrap_optional(hints.get(f.name, Any))
        kind, inner = _classify(annotation)

        sources: list[tuple[str, str]] = []
        if f.name in body_attrs:
            sources.append(("body", "body"))
        else:
            for source in SOURCE_ORDER:
                name = getattr(meta, source)
                if name:
                    sources.append((source, name))
            is_status = f.name == "status" and annotation is int and not meta.json
            if not sources and not has_body_field and not is_status:
                sources.append(("embedded", meta.json or meta.xml or meta.yaml or f.name))

        if kind in (FILE, FILE_LIST) and any(src != "form" for src, _ in sources):
            raise ConfigError(
                f"{cls.__name__}.{f.name}: file fields can only be sourced from form"
            )

        keys = tuple(
            (encoding, getattr(meta, encoding))
            for encoding in ("json", "xml", "yaml")
            if getattr(meta, encoding)
        )

        has_default = (
            f.default is not dataclasses.MISSING or f.default_factory is not dataclasses.MISSING
        )
        default = meta.default
        if (
            default is MISSING
            and f.default is not dataclasses.MISSING
            and f.default is not None
        ):
            default = f.default
        # a bound field without any default must come from the request
        implicit_required = bool(sources) and not has_default

        slots.append(
            FieldSlot(
                attr=f.name,
                sources=tuple(sources),
                kind=kind,
                type=inner,
                default=default,
                constraints=_constraints(cls, f.name, meta, implicit_required),
                keys=keys,
                annotation=annotation,
                optional=optional,
                has_default=has_default,
            )
        )

    _check_unique_sources(cls, slots)
    return FieldPlan(record=cls, slots=tuple(slots))


def _constraints(
    cls: type, attr: str, meta: Param, implicit_required: bool = False
) -> ConstraintSet:
    pattern = None
    if meta.pattern:
        try:
            pattern = re.compile(meta.pattern)
        except re.error as e:
            raise ConfigError(f"{cls.__name__}.{attr}: invalid pattern {meta.pattern!r}: {e}") from e
    if meta.min is not None and meta.max is not None and meta.min > meta.max:
        raise ConfigError(f"{cls.__name__}.{attr}: min is greater than max")
    return ConstraintSet(
        required=meta.required or implicit_required,
        min=meta.min,
        max=meta.max,
        min_length=meta.min_length,
        max_length=meta.max_length,
        pattern=pattern,
        enum=meta.enum,
        format=meta.format,
        multiple_of=meta.multiple_of,
        min_items=meta.min_items,
        max_items=meta.max_items,
        unique_items=meta.unique_items,
        deprecated=meta.deprecated,
        hidden=meta.hidden,
        description=meta.description,
        example=meta.example,
    )


def _check_unique_sources(cls: type, slots: list[FieldSlot]) -> None:
    seen: dict[tuple[str, str], str] = {}
    for slot in slots:
        for source, name in slot.sources:
            if source in ("body", "embedded"):
                continue
            key = (source, name.lower() if source == "header" else name)
            if key in seen:
                raise ConfigError(
                    f"{cls.__name__}: {source} parameter {name!r} is bound by both "
                    f"{seen[key]!r} and {slot.attr!r}"
                )
            seen[key] = slot.attr


def _unwrap_optional(annotation: Any) -> tuple[Any, bool]:
    """Strip ``None`` from ``X | None`` / ``Optional[X]``."""
    origin = typing.get_origin(annotation)
    if origin is Union or origin is types.UnionType:
        args = [arg for arg in typing.get_args(annotation) if arg is not type(None)]
        if len(args) == 1:
            return args[0], True
        return Any, True
    return annotation, False


def _classify(annotation: Any) -> tuple[str, Any]:
    """Return (kind, inner type) for a resolved annotation."""
    if annotation is UploadFile:
        return FILE, UploadFile
    if is_record(annotation):
        return RECORD, annotation
    if isinstance(annotation, type) and issubclass(annotation, enum.Enum):
        return SCALAR, annotation
    if annotation in SCALAR_TYPES:
        return SCALAR, annotation

    origin = typing.get_origin(annotation)
    if origin in (list, tuple, set, frozenset):
        args = [arg for arg in typing.get_args(annotation) if arg is not Ellipsis]
        item = _unwrap_optional(args[0])[0] if args else Any
        if item is UploadFile:
            return FILE_LIST, UploadFile
        if is_record(item):
            return RECORD_LIST, item
        if item in SCALAR_TYPES or (isinstance(item, type) and issubclass(item, enum.Enum)):
            return LIST, item
        return LIST, Any
    if annotation in (list, tuple, set):
        return LIST, str
    return ANY, annotation
