# Copyright 2025 Softwell S.r.l.
# Licensed under the Apache License, Version 2.0

"""JWT bearer authentication middleware.

Verifies a JWT with PyJWT and exposes its claims to the handler.

Key sources (first configured wins):
    jwks_url: remote JWKS endpoint, key chosen by the token ``kid``.
    secret_key: HMAC secret (HS256/384/512).
    jwks: static JWKS, a file path or an already-parsed mapping.
    rsa_key: PEM public key (RS*/ES*/PS*).

Flow:
    1. Extract the token (``token_lookup``). None -> 401 "Missing or invalid token".
    2. Decode and verify signature, expiry, audience and issuer.
       Failure -> 401 "Invalid or expired token".
    3. Evaluate ``claims_expression`` and ``validate_claims``.
       Failure -> 401.
    4. Store the claims under ``context_key`` and copy ``forward_claims``
       into the context store.

``on_unauthorized(ctx)`` replaces the default 401 reply.

Config:
    secret_key (str): HMAC secret.
    jwks (str|dict): JWKS file path or mapping.
    jwks_url (str): JWKS endpoint.
    rsa_key (str): PEM public key.
    algo (str): Accepted algorithm. Default: every algorithm of the key family.
    audience (str): Required ``aud``.
    issuer (str): Required ``iss``.
    token_lookup (str): "header:Authorization", "query:<name>" or "cookie:<name>".
    context_key (str): Store key for the claims dict. Default: "" (not stored).
    claims_expression (str): Expression over claims (see ``okapi_asgi.claims``).
    forward_claims (dict): {context key: claim dot path}.

Example::

    auth = JWTAuth(
        secret_key=SECRET,
        audience="books.example.com",
        claims_expression="Equals(`email_verified`, `true`) && OneOf(`user.role`, `admin`)",
        forward_claims={"email": "user.email"},
    )
    admin = app.group("/admin", auth).with_bearer_auth()
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Mapping
from pathlib import Path
from typing import TYPE_CHECKING, Any

import jwt
import orjson

from . import BaseMiddleware
from ..claims import ClaimError, Expression, claim_text, claim_value, parse_expression
from ..exceptions import ConfigError

if TYPE_CHECKING:
    from ..context import Context
    from ..types import Handler

__all__ = ["JWTAuth", "generate_jwt_token"]

logger = logging.getLogger("okapi_asgi")

HMAC_ALGORITHMS = ["HS256", "HS384", "HS512"]
PUBLIC_KEY_ALGORITHMS = [
    "RS256",
    "RS384",
    "RS512",
    "PS256",
    "PS384",
    "PS512",
    "ES256",
    "ES384",
    "ES512",
    "EdDSA",
]


def _load_jwks(jwks: str | Path | Mapping[str, Any]) -> jwt.PyJWKSet:
    if isinstance(jwks, Mapping):
        return jwt.PyJWKSet.from_dict(dict(jwks))
    path = Path(jwks)
    if not path.is_file():
        raise ConfigError(f"JWKS file not found: {path}")
    return jwt.PyJWKSet.from_dict(orjson.loads(path.read_bytes()))


class JWTAuth(BaseMiddleware):
    """JWT authentication middleware.

    Class Attributes:
        middleware_name: "jwt" - identifier for config.
        middleware_order: 400 - authentication range.
        middleware_default: False - disabled by default.
    """

    middleware_name = "jwt"
    middleware_order = 400
    middleware_default = False

    __slots__ = (
        "secret_key",
        "rsa_key",
        "audience",
        "issuer",
        "algorithms",
        "token_lookup",
        "context_key",
        "forward_claims",
        "validate_claims",
        "on_unauthorized",
        "_jwks",
        "_jwks_client",
        "_expression",
        "_lookup",
    )

    def __init__(
        self,
        secret_key: str | bytes | None = None,
        jwks: str | Path | Mapping[str, Any] | None = None,
        jwks_url: str | None = None,
        rsa_key: Any = None,
        algo: str | None = None,
        audience: str | None = None,
        issuer: str | None = None,
        token_lookup: str = "header:Authorization",
        context_key: str = "",
        claims_expression: str | Expression | None = None,
        forward_claims: Mapping[str, str] | None = None,
        validate_claims: Callable[[Context, dict[str, Any]], None] | None = None,
        on_unauthorized: Callable[[Context], Awaitable[None] | None] | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(**kwargs)
        self.secret_key = secret_key
        self.rsa_key = rsa_key
        self.audience = audience or None
        self.issuer = issuer or None
        self.token_lookup = token_lookup or "header:Authorization"
        self.context_key = context_key
        self.forward_claims = dict(forward_claims or {})
        self.validate_claims = validate_claims
        self.on_unauthorized = on_unauthorized
        self._jwks = _load_jwks(jwks) if jwks else None
        self._jwks_client = jwt.PyJWKClient(jwks_url) if jwks_url else None

        if not (secret_key or self._jwks or self._jwks_client or rsa_key):
            raise ConfigError("JWTAuth requires secret_key, jwks, jwks_url or rsa_key")

        if algo:
            self.algorithms = [algo]
        elif secret_key and not self._jwks_client:
            self.algorithms = HMAC_ALGORITHMS
        else:
            self.algorithms = PUBLIC_KEY_ALGORITHMS

        if isinstance(claims_expression, str):
            self._expression: Expression | None = (
                parse_expression(claims_expression) if claims_expression.strip() else None
            )
        else:
            self._expression = claims_expression

        source, _, name = self.token_lookup.partition(":")
        if source not in ("header", "query", "cookie") or not name:
            raise ConfigError(f"Invalid token_lookup {self.token_lookup!r}")
        self._lookup = (source, name)

    def extract_token(self, ctx: Context) -> str:
        """Token from the configured source; empty string when absent."""
        source, name = self._lookup
        if source == "header":
            value = ctx.header(name)
            scheme, _, credentials = value.partition(" ")
            if scheme.lower() == "bearer":
                return credentials.strip()
            return value.strip()
        if source == "query":
            return ctx.query(name)
        return ctx.cookie(name) or ""

    async def _signing_key(self, token: str) -> Any:
        if self._jwks_client is not None:
            signing_key = await asyncio.to_thread(self._jwks_client.get_signing_key_from_jwt, token)
            return signing_key.key
        if self.secret_key:
            return self.secret_key
        if self._jwks is not None:
            kid = jwt.get_unverified_header(token).get("kid")
            if not kid:
                raise jwt.InvalidTokenError("missing 'kid' in JWT header")
            try:
                return self._jwks[kid].key
            except KeyError:
                raise jwt.InvalidTokenError(f"unknown key id {kid!r}") from None
        return self.rsa_key

    async def decode(self, token: str) -> dict[str, Any]:
        """Verify a token and return its claims.

        Raises:
            jwt.InvalidTokenError: Bad signature, expired, wrong audience or issuer.
        """
        key = await self._signing_key(token)
        return jwt.decode(
            token,
            key,
            algorithms=self.algorithms,
            audience=self.audience,
            issuer=self.issuer,
            options={"verify_aud": self.audience is not None},
        )

    def check_claims(self, ctx: Context, claims: dict[str, Any]) -> str | None:
        """Return the rejection reason, or None when the claims are accepted."""
        if self._expression is not None:
            try:
                if not self._expression.evaluate(claims):
                    return "Insufficient claims"
            except ClaimError as e:
                return f"Claims validation failed: {e}"
        if self.validate_claims is not None:
            try:
                self.validate_claims(ctx, claims)
            except (ValueError, PermissionError) as e:
                return str(e) or "Claims validation failed"
        return None

    def forward(self, ctx: Context, claims: dict[str, Any]) -> None:
        for key, path in self.forward_claims.items():
            try:
                value = claim_value(claims, path)
            except ClaimError as e:
                logger.warning("Could not extract claim %s: %s", path, e)
                continue
            text = _context_text(value)
            if text:
                ctx.set(key, text)

    async def _reject(self, ctx: Context, message: str, details: Any = None) -> None:
        if self.on_unauthorized is not None:
            result = self.on_unauthorized(ctx)
            if result is not None:
                await result
            return
        ctx.abort_unauthorized(message, details)

    async def dispatch(self, ctx: Context, call_next: Handler) -> None:
        token = self.extract_token(ctx)
        if not token:
            await self._reject(ctx, "Missing or invalid token")
            return

        try:
            claims = await self.decode(token)
        except (jwt.PyJWTError, ValueError) as e:
            logger.debug("JWT rejected on %s: %s", ctx.request.path, e)
            await self._reject(ctx, "Invalid or expired token", {"error": str(e)})
            return

        reason = self.check_claims(ctx, claims)
        if reason is not None:
            await self._reject(ctx, "Invalid or expired token", {"error": reason})
            return

        if self.context_key:
            ctx.set(self.context_key, claims)
        self.forward(ctx, claims)
        await call_next(ctx)


def _context_text(value: Any) -> str:
    if isinstance(value, (list, tuple)):
        return ",".join(claim_text(item) for item in value)
    if isinstance(value, float):
        return f"{value:.0f}"
    return claim_text(value)


def generate_jwt_token(
    secret: str | bytes, claims: Mapping[str, Any], ttl: float, algorithm: str = "HS256"
) -> str:
    """Sign ``claims`` with ``exp`` = now + ttl seconds and ``iat`` = now."""
    now = int(time.time())
    payload = dict(claims)
    payload["exp"] = now + int(ttl)
    payload["iat"] = now
    return jwt.encode(payload, secret, algorithm=algorithm)
