# Copyright 2025 Softwell S.r.l.
# Licensed under the Apache License, Version 2.0

"""Tests for the JWT authentication middleware."""

from __future__ import annotations

import jwt
import pytest

from okapi_asgi import Okapi
from okapi_asgi.exceptions import ConfigError
from okapi_asgi.middleware.jwt_auth import JWTAuth, generate_jwt_token
from okapi_asgi.testing import TestClient

SECRET = "a-test-secret-that-is-long-enough-for-hs256"

CLAIMS = {
    "sub": "user-1",
    "email_verified": True,
    "user": {"role": "editor", "email": "ada@example.com"},
    "scope": ["books:read", "books:write"],
}


def make_app(auth: JWTAuth) -> Okapi:
    app = Okapi(access_log=False)
    admin = app.group("/admin", auth).with_bearer_auth()

    @admin.get("/me")
    async def me(ctx):
        return {
            "claims": ctx.get("claims"),
            "email": ctx.get("email"),
            "scope": ctx.get("scope"),
        }

    return app


def token(claims=None, ttl: float = 60, secret: str = SECRET) -> str:
    return generate_jwt_token(secret, CLAIMS if claims is None else claims, ttl)


# =============================================================================
# Token handling
# =============================================================================


class TestGenerateToken:
    def test_exp_and_iat_added(self) -> None:
        decoded = jwt.decode(token(ttl=120), SECRET, algorithms=["HS256"])
        assert decoded["sub"] == "user-1"
        assert decoded["exp"] - decoded["iat"] == 120


class TestJWTAuth:
    """Tests for JWTAuth through the application."""

    @pytest.mark.asyncio
    async def test_valid_token(self) -> None:
        app = make_app(JWTAuth(secret_key=SECRET, context_key="claims"))
        response = await TestClient(app).get("/admin/me").bearer(token())
        response.expect_status(200).expect_json_path("claims.user.role", "editor")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("scheme", ["bearer", "BEARER", "Bearer"])
    async def test_scheme_is_case_insensitive(self, scheme: str) -> None:
        app = make_app(JWTAuth(secret_key=SECRET, context_key="claims"))
        response = await TestClient(app).get("/admin/me").header(
            "Authorization", f"{scheme} {token()}"
        )
        response.expect_status(200).expect_json_path("claims.sub", "user-1")

    @pytest.mark.asyncio
    async def test_missing_token(self) -> None:
        app = make_app(JWTAuth(secret_key=SECRET))
        response = await TestClient(app).get("/admin/me")
        response.expect_status(401).expect_json_path("message", "Missing or invalid token")

    @pytest.mark.asyncio
    async def test_wrong_signature(self) -> None:
        app = make_app(JWTAuth(secret_key=SECRET))
        bad = token(secret="another-secret-that-is-long-enough-for-hs256")
        response = await TestClient(app).get("/admin/me").bearer(bad)
        response.expect_status(401).expect_json_path("message", "Invalid or expired token")

    @pytest.mark.asyncio
    async def test_expired_token(self) -> None:
        app = make_app(JWTAuth(secret_key=SECRET))
        response = await TestClient(app).get("/admin/me").bearer(token(ttl=-60))
        response.expect_status(401).expect_json_path("message", "Invalid or expired token")

    @pytest.mark.asyncio
    async def test_audience_checked(self) -> None:
        app = make_app(JWTAuth(secret_key=SECRET, audience="books.example.com"))
        client = TestClient(app)
        (await client.get("/admin/me").bearer(token())).expect_status(401)
        good = token({**CLAIMS, "aud": "books.example.com"})
        (await client.get("/admin/me").bearer(good)).expect_status(200)

    @pytest.mark.asyncio
    async def test_claims_expression(self) -> None:
        auth = JWTAuth(
            secret_key=SECRET,
            claims_expression="Equals(`email_verified`, `true`) && OneOf(`user.role`, `admin`, `editor`)",
        )
        client = TestClient(make_app(auth))
        (await client.get("/admin/me").bearer(token())).expect_status(200)

        viewer = token({**CLAIMS, "user": {"role": "viewer"}})
        response = await client.get("/admin/me").bearer(viewer)
        response.expect_status(401).expect_json_path("details.error", "Insufficient claims")

    @pytest.mark.asyncio
    async def test_missing_claim_is_unauthorized(self) -> None:
        auth = JWTAuth(secret_key=SECRET, claims_expression="Equals(`tenant`, `acme`)")
        response = await TestClient(make_app(auth)).get("/admin/me").bearer(token())
        response.expect_status(401)
        assert response.json()["details"]["error"].startswith("Claims validation failed")

    @pytest.mark.asyncio
    async def test_forward_claims(self) -> None:
        auth = JWTAuth(secret_key=SECRET, forward_claims={"email": "user.email", "scope": "scope"})
        response = await TestClient(make_app(auth)).get("/admin/me").bearer(token())
        response.expect_status(200)
        response.expect_json_path("email", "ada@example.com")
        response.expect_json_path("scope", "books:read,books:write")

    @pytest.mark.asyncio
    async def test_validate_claims_callback(self) -> None:
        def only_user_1(ctx, claims):
            if claims["sub"] != "user-2":
                raise PermissionError("wrong subject")

        auth = JWTAuth(secret_key=SECRET, validate_claims=only_user_1)
        response = await TestClient(make_app(auth)).get("/admin/me").bearer(token())
        response.expect_status(401).expect_json_path("details.error", "wrong subject")

    @pytest.mark.asyncio
    async def test_query_token_lookup(self) -> None:
        auth = JWTAuth(secret_key=SECRET, token_lookup="query:access_token")
        response = await TestClient(make_app(auth)).get("/admin/me").query("access_token", token())
        response.expect_status(200)

    @pytest.mark.asyncio
    async def test_on_unauthorized_override(self) -> None:
        async def custom(ctx):
            ctx.json(403, {"denied": True})

        auth = JWTAuth(secret_key=SECRET, on_unauthorized=custom)
        response = await TestClient(make_app(auth)).get("/admin/me")
        response.expect_status(403).expect_json({"denied": True})

    @pytest.mark.asyncio
    async def test_routes_outside_group_are_open(self) -> None:
        app = make_app(JWTAuth(secret_key=SECRET))
        app.get("/public", lambda ctx: {"ok": True})
        (await TestClient(app).get("/public")).expect_status(200)

    def test_group_documents_bearer_auth(self) -> None:
        app = make_app(JWTAuth(secret_key=SECRET))
        op = app.openapi.document()["paths"]["/admin/me"]["get"]
        assert op["security"] == [{"bearerAuth": []}]
        assert "401" in op["responses"]


class TestJWTAuthConfig:
    def test_requires_a_key(self) -> None:
        with pytest.raises(ConfigError):
            JWTAuth()

    def test_invalid_token_lookup(self) -> None:
        with pytest.raises(ConfigError):
            JWTAuth(secret_key=SECRET, token_lookup="body:token")

    def test_algorithms(self) -> None:
        assert JWTAuth(secret_key=SECRET).algorithms == ["HS256", "HS384", "HS512"]
        assert JWTAuth(secret_key=SECRET, algo="HS512").algorithms == ["HS512"]
