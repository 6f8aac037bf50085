# Copyright 2025 Softwell S.r.l.
# Licensed under the Apache License, Version 2.0

"""
JWT claims expressions.

A claims expression is a boolean condition over decoded JWT claims, written
either in Python::

    rule = And(Equals("email_verified", "true"), OneOf("user.role", "admin", "editor"))

or as a string parsed once by ``parse_expression``::

    Equals(`email_verified`, `true`) && OneOf(`user.role`, `admin`, `editor`)

Grammar (``!`` binds tighter than ``&&``, which binds tighter than ``||``)::

    or    := and ("||" and)*
    and   := not ("&&" not)*
    not   := "!" not | unary
    unary := "(" or ")" | call
    call  := Equals(`key`, `value`) | Prefix(`key`, `value`)
           | Contains(`key`, `v1`, ...) | OneOf(`key`, `v1`, ...)

Claim keys are dot paths into nested claims (``user.role``). A list claim
matches when any of its string items matches. Non-string claims are compared
through their JSON-like text (``true``, ``42``).

A missing claim makes the evaluation fail with ``ClaimError``; the JWT
middleware treats that as an authorization failure.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any, Protocol

__all__ = [
    "ClaimError",
    "Expression",
    "Equals",
    "Prefix",
    "Contains",
    "OneOf",
    "And",
    "Or",
    "Not",
    "parse_expression",
    "claim_value",
    "claim_text",
]


class ClaimError(ValueError):
    """Missing claim, untraversable claim path or malformed expression."""


class Expression(Protocol):
    def evaluate(self, claims: Mapping[str, Any]) -> bool: ...


def claim_value(claims: Mapping[str, Any], key: str) -> Any:
    """Follow a dotted claim path.

    Raises:
        ClaimError: A key is missing or an intermediate value is not an object.
    """
    keys = key.split(".")
    current: Any = claims
    for index, part in enumerate(keys):
        if not isinstance(current, Mapping):
            raise ClaimError(
                f"cannot traverse claim path at key {part!r} "
                f"(expected object, got {type(current).__name__})"
            )
        if part not in current:
            raise ClaimError(f"claim key {part!r} not found at path {'.'.join(keys[: index + 1])!r}")
        current = current[part]
    return current


def claim_text(value: Any) -> str:
    """Text form of a scalar claim: ``true``/``false``, integral floats without decimals."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if value is None:
        return ""
    return str(value)


def _strings(value: Any) -> list[str] | None:
    """String items of a list claim, or None for scalar claims."""
    if isinstance(value, (list, tuple)):
        return [item for item in value if isinstance(item, str)]
    return None


class Equals:
    __slots__ = ("key", "expected")

    def __init__(self, key: str, expected: str) -> None:
        self.key = key
        self.expected = expected

    def evaluate(self, claims: Mapping[str, Any]) -> bool:
        value = claim_value(claims, self.key)
        items = _strings(value)
        if items is not None:
            return self.expected in items
        return claim_text(value) == self.expected

    def __repr__(self) -> str:
        return f"Equals({self.key!r}, {self.expected!r})"


class Prefix:
    __slots__ = ("key", "prefix")

    def __init__(self, key: str, prefix: str) -> None:
        self.key = key
        self.prefix = prefix

    def evaluate(self, claims: Mapping[str, Any]) -> bool:
        value = claim_value(claims, self.key)
        items = _strings(value)
        if items is not None:
            return any(item.startswith(self.prefix) for item in items)
        return claim_text(value).startswith(self.prefix)

    def __repr__(self) -> str:
        return f"Prefix({self.key!r}, {self.prefix!r})"


class Contains:
    """Substring test with one value, membership test with several."""

    __slots__ = ("key", "values")

    def __init__(self, key: str, *values: str) -> None:
        if not values:
            raise ClaimError("Contains requires at least one value")
        self.key = key
        self.values = values

    def _match(self, text: str) -> bool:
        if len(self.values) > 1:
            return text in self.values
        return self.values[0] in text

    def evaluate(self, claims: Mapping[str, Any]) -> bool:
        value = claim_value(claims, self.key)
        items = _strings(value)
        if items is not None:
            return any(self._match(item) for item in items)
        return self._match(claim_text(value))

    def __repr__(self) -> str:
        return f"Contains({self.key!r}, {', '.join(map(repr, self.values))})"


class OneOf:
    __slots__ = ("key", "values")

    def __init__(self, key: str, *values: str) -> None:
        if not values:
            raise ClaimError("OneOf requires at least one value")
        self.key = key
        self.values = values

    def evaluate(self, claims: Mapping[str, Any]) -> bool:
        value = claim_value(claims, self.key)
        items = _strings(value)
        if items is not None:
            return any(item in self.values for item in items)
        return claim_text(value) in self.values

    def __repr__(self) -> str:
        return f"OneOf({self.key!r}, {', '.join(map(repr, self.values))})"


class And:
    __slots__ = ("left", "right")

    def __init__(self, left: Expression, right: Expression) -> None:
        self.left = left
        self.right = right

    def evaluate(self, claims: Mapping[str, Any]) -> bool:
        return self.left.evaluate(claims) and self.right.evaluate(claims)

    def __repr__(self) -> str:
        return f"And({self.left!r}, {self.right!r})"


class Or:
    __slots__ = ("left", "right")

    def __init__(self, left: Expression, right: Expression) -> None:
        self.left = left
        self.right = right

    def evaluate(self, claims: Mapping[str, Any]) -> bool:
        return self.left.evaluate(claims) or self.right.evaluate(claims)

    def __repr__(self) -> str:
        return f"Or({self.left!r}, {self.right!r})"


class Not:
    __slots__ = ("expr",)

    def __init__(self, expr: Expression) -> None:
        self.expr = expr

    def evaluate(self, claims: Mapping[str, Any]) -> bool:
        return not self.expr.evaluate(claims)

    def __repr__(self) -> str:
        return f"Not({self.expr!r})"


_SINGLE_CALL = re.compile(r"(Equals|Prefix)\s*\(\s*`([^`]+)`\s*,\s*`([^`]*)`\s*\)")
_MULTI_CALL = re.compile(r"(Contains|OneOf)\s*\(\s*`([^`]+)`((?:\s*,\s*`[^`]*`)+)\s*\)")
_QUOTED = re.compile(r"`([^`]*)`")
_OPERATORS = ("||", "&&", "!", "(", ")")


class _Parser:
    __slots__ = ("text", "pos")

    def __init__(self, text: str) -> None:
        self.text = text.strip()
        self.pos = 0

    def _skip(self) -> None:
        while self.pos < len(self.text) and self.text[self.pos] in " \t\r\n":
            self.pos += 1

    def _peek(self) -> str:
        self._skip()
        for operator in _OPERATORS:
            if self.text.startswith(operator, self.pos):
                return operator
        return ""

    def _consume(self, expected: str) -> None:
        self._skip()
        if not self.text.startswith(expected, self.pos):
            raise ClaimError(f"expected {expected!r} at position {self.pos}")
        self.pos += len(expected)

    def parse(self) -> Expression:
        expr = self._or()
        self._skip()
        if self.pos != len(self.text):
            raise ClaimError(f"unexpected input at position {self.pos}: {self.text[self.pos:]!r}")
        return expr

    def _or(self) -> Expression:
        left = self._and()
        while self._peek() == "||":
            self._consume("||")
            left = Or(left, self._and())
        return left

    def _and(self) -> Expression:
        left = self._not()
        while self._peek() == "&&":
            self._consume("&&")
            left = And(left, self._not())
        return left

    def _not(self) -> Expression:
        if self._peek() == "!":
            self._consume("!")
            return Not(self._not())
        return self._unary()

    def _unary(self) -> Expression:
        if self._peek() == "(":
            self._consume("(")
            expr = self._or()
            if self._peek() != ")":
                raise ClaimError(f"expected ')' at position {self.pos}")
            self._consume(")")
            return expr
        return self._call()

    def _call(self) -> Expression:
        self._skip()
        if self.pos >= len(self.text):
            raise ClaimError("unexpected end of input")

        match = _SINGLE_CALL.match(self.text, self.pos)
        if match:
            self.pos = match.end()
            name, key, value = match.groups()
            return Equals(key, value) if name == "Equals" else Prefix(key, value)

        match = _MULTI_CALL.match(self.text, self.pos)
        if match:
            self.pos = match.end()
            name, key, rest = match.groups()
            values = _QUOTED.findall(rest)
            return Contains(key, *values) if name == "Contains" else OneOf(key, *values)

        raise ClaimError(f"invalid function call at position {self.pos}: {self.text[self.pos:]!r}")


def parse_expression(text: str) -> Expression:
    """Parse a claims expression string.

    Raises:
        ClaimError: Syntax error.
    """
    return _Parser(text).parse()
