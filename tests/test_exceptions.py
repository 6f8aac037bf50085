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

"""Tests for the exception hierarchy and the error body."""

from __future__ import annotations

import pytest

from okapi_asgi.exceptions import (
    BindError,
    BodyTooLarge,
    ConfigError,
    EncodeError,
    FieldError,
    HTTPException,
    MethodNotAllowed,
    NotFound,
    OkapiError,
    Redirect,
    RequestTimeout,
    RouteConflict,
    UnsupportedMediaType,
    ValidationFailure,
    status_text,
)


class TestHTTPException:
    def test_default_detail(self):
        exc = HTTPException(404)
        assert exc.status_code == 404
        assert exc.detail == "Not Found"
        assert str(exc) == "Not Found"
        assert exc.headers is None

    def test_headers_normalized(self):
        assert HTTPException(401, headers={"WWW-Authenticate": "Bearer"}).headers == [
            ("WWW-Authenticate", "Bearer")
        ]
        assert HTTPException(400, headers=[("Vary", "a"), ("Vary", "b")]).headers == [
            ("Vary", "a"),
            ("Vary", "b"),
        ]

    def test_to_dict(self):
        assert HTTPException(418, "teapot").to_dict() == {
            "success": False,
            "status": 418,
            "message": "teapot",
            "details": None,
        }

    def test_redirect(self):
        exc = Redirect("/login")
        assert exc.status_code == 302
        assert exc.headers == [("Location", "/login")]
        assert Redirect("/x", 308).status_code == 308

    def test_status_text(self):
        assert status_text(201) == "Created"
        assert status_text(599) == "Unknown Status"


class TestPipelineErrors:
    """Tests for the OkapiError family."""

    def test_kinds(self):
        assert NotFound().kind == "routing"
        assert BindError("bad").kind == "bind"
        assert ValidationFailure([]).kind == "validation"
        assert EncodeError().kind == "encode"
        assert OkapiError(500).kind == "error"

    def test_method_not_allowed(self):
        exc = MethodNotAllowed(["POST", "GET", "GET"])
        assert exc.status_code == 405
        assert exc.allowed == ["GET", "POST"]
        assert exc.headers == [("Allow", "GET, POST")]

    def test_bind_error_details(self):
        exc = BindError("invalid integer", field="limit", source="query", raw="ten")
        assert exc.status_code == 400
        assert exc.message == "invalid integer"
        assert exc.details == {"field": "limit", "source": "query", "value": "ten"}
        assert BindError("no field").details is None

    def test_body_errors(self):
        assert UnsupportedMediaType("text/csv").status_code == 415
        assert "none" in UnsupportedMediaType(None).message
        assert BodyTooLarge(10).status_code == 413
        assert RequestTimeout(2.5).message == "Request body not received within 2.5s"

    def test_validation_failure(self):
        exc = ValidationFailure(
            [FieldError("name", "is required"), FieldError("items[0].qty", "must be >= 1")]
        )
        assert exc.status_code == 400
        assert exc.to_dict()["details"] == [
            {"field": "name", "message": "is required"},
            {"field": "items[0].qty", "message": "must be >= 1"},
        ]

    def test_route_conflict_is_config_error(self):
        with pytest.raises(ConfigError, match="GET /books"):
            raise RouteConflict("GET", "/books")
