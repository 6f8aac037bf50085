# Copyright 2025 Softwell S.r.l.
# Licensed under the Apache License, Version 2.0

"""Tests for JWT claims expressions."""

from __future__ import annotations

import pytest

from okapi_asgi.claims import (
    And,
    ClaimError,
    Contains,
    Equals,
    Not,
    OneOf,
    Or,
    Prefix,
    claim_text,
    claim_value,
    parse_expression,
)

CLAIMS = {
    "sub": "user-1",
    "email_verified": True,
    "scope": ["books:read", "books:write"],
    "user": {"role": "editor", "email": "ada@example.com", "level": 3.0},
}


class TestClaimValue:
    def test_nested_path(self) -> None:
        assert claim_value(CLAIMS, "user.role") == "editor"

    def test_missing_key(self) -> None:
        with pytest.raises(ClaimError, match="'missing' not found"):
            claim_value(CLAIMS, "user.missing")

    def test_untraversable(self) -> None:
        with pytest.raises(ClaimError, match="cannot traverse"):
            claim_value(CLAIMS, "sub.inner")

    def test_claim_text(self) -> None:
        assert claim_text(True) == "true"
        assert claim_text(3.0) == "3"
        assert claim_text(2.5) == "2.5"
        assert claim_text(None) == ""


class TestExpressions:
    """Tests for the expression classes."""

    def test_equals_boolean_claim(self) -> None:
        assert Equals("email_verified", "true").evaluate(CLAIMS)
        assert not Equals("email_verified", "false").evaluate(CLAIMS)

    def test_list_claims_match_any_item(self) -> None:
        assert Equals("scope", "books:write").evaluate(CLAIMS)
        assert Prefix("scope", "books:").evaluate(CLAIMS)
        assert OneOf("scope", "admin", "books:read").evaluate(CLAIMS)

    def test_contains_substring_or_membership(self) -> None:
        assert Contains("user.email", "@example.com").evaluate(CLAIMS)
        assert not Contains("user.role", "admin", "owner").evaluate(CLAIMS)
        assert Contains("user.role", "admin", "editor").evaluate(CLAIMS)

    def test_combinators(self) -> None:
        editor = Equals("user.role", "editor")
        admin = Equals("user.role", "admin")
        assert And(editor, Not(admin)).evaluate(CLAIMS)
        assert Or(admin, editor).evaluate(CLAIMS)
        assert not And(admin, editor).evaluate(CLAIMS)

    def test_integral_float_compared_as_int(self) -> None:
        assert Equals("user.level", "3").evaluate(CLAIMS)

    def test_empty_value_list_rejected(self) -> None:
        with pytest.raises(ClaimError):
            OneOf("user.role")


class TestParseExpression:
    """Tests for parse_expression()."""

    def test_and(self) -> None:
        expr = parse_expression("Equals(`email_verified`, `true`) && OneOf(`user.role`, `admin`, `editor`)")
        assert isinstance(expr, And)
        assert expr.evaluate(CLAIMS)

    def test_precedence(self) -> None:
        # && binds tighter than ||
        expr = parse_expression(
            "Equals(`user.role`, `admin`) || Equals(`sub`, `user-1`) && Prefix(`user.email`, `ada`)"
        )
        assert isinstance(expr, Or)
        assert expr.evaluate(CLAIMS)

    def test_parentheses_and_not(self) -> None:
        expr = parse_expression(
            "!(Equals(`user.role`, `admin`) || Equals(`user.role`, `owner`)) && Contains(`scope`, `write`)"
        )
        assert isinstance(expr, And)
        assert isinstance(expr.left, Not)
        assert expr.evaluate(CLAIMS)

    def test_missing_claim_raises_on_evaluate(self) -> None:
        expr = parse_expression("Equals(`tenant`, `acme`)")
        with pytest.raises(ClaimError):
            expr.evaluate(CLAIMS)

    @pytest.mark.parametrize(
        "text",
        [
            "",
            "Equals(`a`)",
            "Equals(`a`, `b`) &&",
            "(Equals(`a`, `b`)",
            "Unknown(`a`, `b`)",
            "Equals(`a`, `b`) extra",
        ],
    )
    def test_syntax_errors(self, text: str) -> None:
        with pytest.raises(ClaimError):
            parse_expression(text)
