# Copyright 2025 Softwell S.r.l.
# Licensed under the Apache License, Version 2.0

"""Schema reflection: Python types and FieldPlans to OpenAPI 3.0 schemas.

Facets mirror the binder and the validator, so the document describes what
the runtime accepts:

    param(...)          schema
    min / max           minimum / maximum (items for lists)
    min_length / ...    minLength / maxLength
    pattern             pattern
    enum                enum (typed like the field)
    format              format
    multiple_of         multipleOf
    min_items / ...     minItems / maxItems / uniqueItems
    required            parent ``required`` list
    default             default
    description         description
    example             example
    deprecated          deprecated

Named record types become ``components/schemas`` entries referenced with
``$ref``. Hidden fields are left out.
"""

from __future__ import annotations

import dataclasses
import datetime
import enum
import re
import types
import typing
import uuid
from decimal import Decimal
from typing import Any, Union

from ..datastructures.form import UploadFile
from ..encoding import to_primitive
from ..fields import (
    FILE,
    FILE_LIST,
    LIST,
    MISSING,
    RECORD,
    RECORD_LIST,
    SCALAR,
    FieldPlan,
    FieldSlot,
    is_record,
    plan_for,
)

__all__ = ["SchemaRegistry", "ERROR_SCHEMA", "CAPTURE_SCHEMAS"]

_SCALARS: dict[Any, dict[str, Any]] = {
    str: {"type": "string"},
    int: {"type": "integer", "format": "int64"},
    float: {"type": "number", "format": "double"},
    bool: {"type": "boolean"},
    Decimal: {"type": "number"},
    uuid.UUID: {"type": "string", "format": "uuid"},
    datetime.datetime: {"type": "string", "format": "date-time"},
    datetime.date: {"type": "string", "format": "date"},
    datetime.time: {"type": "string", "format": "time"},
    datetime.timedelta: {"type": "string", "format": "duration"},
    bytes: {"type": "string", "format": "byte"},
    UploadFile: {"type": "string", "format": "binary"},
}

# Path capture kind -> schema
CAPTURE_SCHEMAS: dict[str | None, dict[str, Any]] = {
    "string": {"type": "string"},
    "int": {"type": "integer", "format": "int64"},
    "float": {"type": "number", "format": "double"},
    "uuid": {"type": "string", "format": "uuid"},
    "path": {"type": "string"},
}

ERROR_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "success": {"type": "boolean", "example": False},
        "status": {"type": "integer", "example": 400},
        "message": {"type": "string"},
        "details": {},
    },
    "required": ["success", "status", "message"],
}

_NAME_RE = re.compile(r"[^A-Za-z0-9_.\-]")


def _typed_enum(values: tuple[str, ...], schema: dict[str, Any]) -> list[Any]:
    kind = schema.get("type")
    if kind == "integer":
        convert: Any = int
    elif kind == "number":
        convert = float
    else:
        return list(values)
    try:
        return [convert(value) for value in values]
    except ValueError:
        return list(values)


class SchemaRegistry:
    """Collects component schemas while a document is built.

    Attributes:
        components: Component name -> schema, in registration order.
    """

    def __init__(self) -> None:
        self.components: dict[str, dict[str, Any]] = {}
        self._names: dict[type, str] = {}

    # ------------------------------------------------------------ components

    def _component_name(self, record: type) -> str:
        base = _NAME_RE.sub("", record.__name__) or "Schema"
        name = base
        counter = 1
        while name in self.components:
            name = f"{base}{counter}"
            counter += 1
        return name

    def ref(self, record: type) -> dict[str, Any]:
        """Register ``record`` as a component (once) and return its ``$ref``."""
        name = self._names.get(record)
        if name is None:
            name = self._component_name(record)
            self._names[record] = name
            # placeholder first: self-referencing records terminate
            self.components[name] = {}
            self.components[name] = self.object_schema(plan_for(record))
        return {"$ref": f"#/components/schemas/{name}"}

    def error_ref(self) -> dict[str, Any]:
        self.components.setdefault("ErrorResponse", ERROR_SCHEMA)
        return {"$ref": "#/components/schemas/ErrorResponse"}

    # --------------------------------------------------------------- records

    def object_schema(self, plan: FieldPlan, slots: Any = None) -> dict[str, Any]:
        """Object schema over body keys (embedded slots by default)."""
        if slots is None:
            slots = plan.embedded_slots
        properties: dict[str, Any] = {}
        required: list[str] = []
        for slot in slots:
            if slot.constraints.hidden:
                continue
            key = slot.name_for("form") if slot.source == "form" else slot.key("json")
            assert key is not None
            properties[key] = self.slot_schema(slot)
            if slot.constraints.required:
                required.append(key)
        schema: dict[str, Any] = {"type": "object", "properties": properties}
        if required:
            schema["required"] = required
        doc = (plan.record.__doc__ or "").strip()
        if doc and dataclasses.is_dataclass(plan.record) and not doc.startswith(
            f"{plan.record.__name__}("
        ):
            schema["description"] = doc.splitlines()[0]
        return schema

    def payload(self, record: type) -> dict[str, Any]:
        """Schema of what a record puts on the wire as body."""
        plan = plan_for(record)
        body = plan.body_slot
        if body is not None:
            return self.slot_schema(body, facets=False)
        return self.ref(record)

    # ----------------------------------------------------------------- slots

    def slot_schema(self, slot: FieldSlot, facets: bool = True) -> dict[str, Any]:
        if slot.kind == SCALAR:
            schema = self.annotation(slot.type)
        elif slot.kind == LIST:
            schema = {"type": "array", "items": self.annotation(slot.type)}
        elif slot.kind == RECORD:
            schema = self.ref(slot.type)
        elif slot.kind == RECORD_LIST:
            schema = {"type": "array", "items": self.ref(slot.type)}
        elif slot.kind == FILE:
            schema = dict(_SCALARS[UploadFile])
        elif slot.kind == FILE_LIST:
            schema = {"type": "array", "items": dict(_SCALARS[UploadFile])}
        else:
            schema = self.annotation(slot.annotation)
        if facets:
            schema = self._apply_facets(schema, slot)
        return schema

    def _apply_facets(self, schema: dict[str, Any], slot: FieldSlot) -> dict[str, Any]:
        c = slot.constraints
        extra: dict[str, Any] = {}
        target = schema.get("items", schema) if schema.get("type") == "array" else schema
        value_facets: dict[str, Any] = {}
        if c.min is not None:
            value_facets["minimum"] = c.min
        if c.max is not None:
            value_facets["maximum"] = c.max
        if c.min_length is not None:
            value_facets["minLength"] = c.min_length
        if c.max_length is not None:
            value_facets["maxLength"] = c.max_length
        if c.pattern is not None:
            value_facets["pattern"] = c.pattern.pattern
        if c.enum is not None:
            value_facets["enum"] = _typed_enum(c.enum, target)
        if c.format:
            value_facets["format"] = c.format
        if c.multiple_of is not None:
            value_facets["multipleOf"] = c.multiple_of

        if c.min_items is not None:
            extra["minItems"] = c.min_items
        if c.max_items is not None:
            extra["maxItems"] = c.max_items
        if c.unique_items:
            extra["uniqueItems"] = True
        if c.description:
            extra["description"] = c.description
        if c.example is not None:
            extra["example"] = to_primitive(c.example)
        if c.deprecated:
            extra["deprecated"] = True
        if slot.default is not MISSING and slot.default is not None:
            extra["default"] = to_primitive(slot.default)
        if slot.optional:
            extra["nullable"] = True

        if "$ref" in schema:
            if not value_facets and not extra:
                return schema
            return {"allOf": [schema], **value_facets, **extra}
        if target is not schema and "$ref" not in target:
            schema = {**schema, "items": {**target, **value_facets}}
        else:
            schema = {**schema, **value_facets}
        return {**schema, **extra}

    # ----------------------------------------------------------- annotations

    def annotation(self, tp: Any) -> dict[str, Any]:
        """Schema for a type annotation (records become refs)."""
        if tp is Any or tp is None or tp is type(None):
            return {}
        if tp in _SCALARS:
            return dict(_SCALARS[tp])
        if isinstance(tp, type) and issubclass(tp, enum.Enum):
            values = [to_primitive(member.value) for member in tp]
            schema = self.annotation(type(values[0])) if values else {}
            return {**schema, "enum": values}
        if is_record(tp):
            return self.ref(tp)

        origin = typing.get_origin(tp)
        args = typing.get_args(tp)
        if origin is Union or origin is types.UnionType:
            options = [arg for arg in args if arg is not type(None)]
            if len(options) == 1:
                return {**self.annotation(options[0]), "nullable": True}
            return {"oneOf": [self.annotation(arg) for arg in options]}
        if origin in (list, tuple, set, frozenset) or tp in (list, tuple, set, frozenset):
            items = [arg for arg in args if arg is not Ellipsis]
            schema: dict[str, Any] = {
                "type": "array",
                "items": self.annotation(items[0]) if items else {},
            }
            if origin in (set, frozenset):
                schema["uniqueItems"] = True
            return schema
        if origin is dict or tp is dict:
            value = args[1] if len(args) == 2 else Any
            return {"type": "object", "additionalProperties": self.annotation(value) or True}
        return {}

    def describe(self, value: Any) -> dict[str, Any]:
        """Schema for a documentation argument: a type, a record, or an example value."""
        if is_record(value):
            return self.payload(value)
        if is_record(type(value)):
            return self.payload(type(value))
        if isinstance(value, type) or typing.get_origin(value) is not None:
            return self.annotation(value)
        return self.infer(value)

    def infer(self, value: Any) -> dict[str, Any]:
        """Schema inferred from an example value."""
        if isinstance(value, bool):
            return {"type": "boolean"}
        if isinstance(value, int):
            return {"type": "integer"}
        if isinstance(value, (float, Decimal)):
            return {"type": "number"}
        if isinstance(value, str):
            return {"type": "string"}
        if isinstance(value, dict):
            return {
                "type": "object",
                "properties": {str(k): self.infer(v) for k, v in value.items()},
            }
        if isinstance(value, (list, tuple)):
            return {"type": "array", "items": self.infer(value[0]) if value else {}}
        return {}
