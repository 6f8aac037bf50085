# Copyright 2025 Softwell S.r.l.
# Licensed under the Apache License, Version 2.0

"""Declarative validator.

Checks the ConstraintSet of every slot of a bound record. Constraints of a
field are tried in a fixed order (required, enum, min_length, max_length,
pattern, format, min, max, multiple_of, min_items, max_items, unique_items);
the first failure is that field's error. All fields are checked and the
errors are raised together as one ``ValidationFailure``.

Nested records (and lists of records) are validated recursively; their
errors carry dotted paths such as ``address.zip`` or ``items[2].qty``.
"""

from __future__ import annotations

import datetime
import enum
import ipaddress
import re
import uuid
from decimal import Decimal
from typing import Any
from urllib.parse import urlparse

from .exceptions import FieldError, ValidationFailure
from .fields import RECORD, RECORD_LIST, FieldPlan, FieldSlot, plan_for

__all__ = ["validate", "collect_errors", "FORMAT_CHECKERS"]

_EMAIL_RE = re.compile(r"[^@\s]+@[^@\s]+\.[^@\s]+")


def _is_uuid(value: Any) -> bool:
    if isinstance(value, uuid.UUID):
        return True
    try:
        uuid.UUID(str(value))
    except ValueError:
        return False
    return True


def _is_datetime(value: Any) -> bool:
    if isinstance(value, datetime.datetime):
        return True
    try:
        datetime.datetime.fromisoformat(str(value))
    except ValueError:
        return False
    return True


def _is_date(value: Any) -> bool:
    if isinstance(value, datetime.date):
        return True
    try:
        datetime.date.fromisoformat(str(value))
    except ValueError:
        return False
    return True


def _is_ip(value: Any, version: int) -> bool:
    try:
        return ipaddress.ip_address(str(value)).version == version
    except ValueError:
        return False


def _is_uri(value: Any) -> bool:
    parsed = urlparse(str(value))
    return bool(parsed.scheme and parsed.netloc)


# Known ``format`` values; unknown formats are documentation only
FORMAT_CHECKERS = {
    "email": lambda v: bool(_EMAIL_RE.fullmatch(str(v))),
    "uuid": _is_uuid,
    "date-time": _is_datetime,
    "date": _is_date,
    "ipv4": lambda v: _is_ip(v, 4),
    "ipv6": lambda v: _is_ip(v, 6),
    "uri": _is_uri,
    "url": _is_uri,
}


def _is_empty(value: Any) -> bool:
    return value is None or value == "" or (isinstance(value, (list, tuple, set)) and not value)


def _number(value: Any) -> float | Decimal | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float, Decimal)):
        return value
    return None


def _fmt(value: float | None) -> str:
    if value is None:
        return ""
    return str(int(value)) if float(value).is_integer() else str(value)


def _check(slot: FieldSlot, value: Any, present: bool) -> str | None:
    """Return the reason of the first failing constraint, or None."""
    c = slot.constraints
    if c.required and (not present or _is_empty(value)):
        return "is required"
    if value is None:
        return None

    items = value if isinstance(value, (list, tuple, set)) else None
    scalars = list(items) if items is not None else [value]

    if c.enum is not None:
        for item in scalars:
            text = item.value if isinstance(item, enum.Enum) else item
            if str(text) not in c.enum:
                return f"must be one of: {', '.join(c.enum)}"
    for item in scalars:
        if not isinstance(item, str):
            continue
        if c.min_length is not None and len(item) < c.min_length:
            return f"must be at least {c.min_length} characters"
        if c.max_length is not None and len(item) > c.max_length:
            return f"must be at most {c.max_length} characters"
        if c.pattern is not None and c.pattern.fullmatch(item) is None:
            return f"must match pattern {c.pattern.pattern}"
    if c.format is not None and c.format in FORMAT_CHECKERS:
        for item in scalars:
            if item != "" and not FORMAT_CHECKERS[c.format](item):
                return f"must be a valid {c.format}"
    for item in scalars:
        number = _number(item)
        if number is None:
            continue
        if c.min is not None and number < c.min:
            return f"must be >= {_fmt(c.min)}"
        if c.max is not None and number > c.max:
            return f"must be <= {_fmt(c.max)}"
        if c.multiple_of:
            quotient = Decimal(str(number)) / Decimal(str(c.multiple_of))
            if quotient != quotient.to_integral_value():
                return f"must be a multiple of {_fmt(c.multiple_of)}"
    if items is not None:
        if c.min_items is not None and len(items) < c.min_items:
            return f"must contain at least {c.min_items} items"
        if c.max_items is not None and len(items) > c.max_items:
            return f"must contain at most {c.max_items} items"
        if c.unique_items:
            seen: list[Any] = []
            for item in items:
                if item in seen:
                    return "must contain unique items"
                seen.append(item)
    return None


def collect_errors(
    instance: Any, plan: FieldPlan, present: set[str] | None = None, prefix: str = ""
) -> list[FieldError]:
    """Return every field error of ``instance`` without raising.

    ``present`` holds the dotted paths supplied by the binder. When None,
    every field whose value is not None counts as present.
    """
    errors: list[FieldError] = []
    for slot in plan.slots:
        value = getattr(instance, slot.attr, None)
        transparent = slot.is_body
        path = prefix if transparent else f"{prefix}{slot.attr}"
        label = path.rstrip(".") or slot.attr
        is_present = value is not None if present is None else f"{prefix}{slot.attr}" in present
        reason = _check(slot, value, is_present)
        if reason is not None:
            errors.append(FieldError(label, reason))
            continue
        if value is None:
            continue
        if slot.kind == RECORD:
            nested_prefix = prefix if transparent else f"{path}."
            errors.extend(collect_errors(value, plan_for(slot.type), present, nested_prefix))
        elif slot.kind == RECORD_LIST:
            nested_plan = plan_for(slot.type)
            base = prefix if transparent else path
            for index, item in enumerate(value):
                errors.extend(collect_errors(item, nested_plan, present, f"{base}[{index}]."))
    return errors


def validate(instance: Any, plan: FieldPlan | None = None, present: set[str] | None = None) -> None:
    """Validate a bound record.

    Raises:
        ValidationFailure: At least one field failed; ``errors`` lists all.
    """
    errors = collect_errors(instance, plan or plan_for(type(instance)), present)
    if errors:
        raise ValidationFailure(errors)
