"""
Tests for the standard error envelope and request ID propagation
"""
import pytest
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.testclient import TestClient
from starlette.exceptions import HTTPException as StarletteHTTPException

from riskmate.exceptions import (
    ERROR_CODE_REGISTRY,
    ApiError,
    ErrorResponse,
    api_error_handler,
    general_exception_handler,
    get_error_metadata,
    http_exception_handler,
    validation_exception_handler,
)
from riskmate.logging_config import RequestIDMiddleware

from helpers import RECONCILE_HEADERS


@pytest.fixture
def error_app():
    """Minimal app wired with the production handlers"""
    app = FastAPI()
    app.add_middleware(RequestIDMiddleware)
    app.add_exception_handler(ApiError, api_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    @app.get("/limited")
    async def limited():
        raise ApiError("RATE_LIMIT_EXCEEDED", "Too many requests", retry_after_seconds=30)

    @app.get("/lapsed")
    async def lapsed():
        raise ApiError("ENTITLEMENTS_PLAN_PAST_DUE", "Plan is past due", details={"status": "past_due"})

    @app.get("/conflict")
    async def conflict():
        from fastapi import HTTPException
        raise HTTPException(status_code=409, detail={"code": "EXPORT_NOT_READY", "message": "Not ready", "state": "queued"})

    @app.get("/boom")
    async def boom():
        raise RuntimeError("database password leaked")

    return TestClient(app, raise_server_exceptions=False)


class TestRegistry:
    """Error code registry"""

    def test_every_entry_has_runbook(self):
        for code, entry in ERROR_CODE_REGISTRY.items():
            assert entry["support_url"].startswith("/support/runbooks/"), code
            assert entry["status_code"] >= 400, code

    def test_unknown_code_falls_back(self):
        assert get_error_metadata("NOPE") == ERROR_CODE_REGISTRY["INTERNAL_ERROR"]

    def test_status_defaults_from_registry(self):
        assert ApiError("ENTITLEMENTS_PLAN_PAST_DUE", "x").status_code == 402
        assert ApiError("NOT_FOUND", "x", status_code=410).status_code == 410

    @pytest.mark.parametrize("code,retryable", [
        ("RATE_LIMIT_EXCEEDED", True),
        ("STRIPE_ERROR", True),
        ("INTERNAL_ERROR", True),
        ("UNAUTHORIZED", False),
        ("VALIDATION_ERROR", False),
    ])
    def test_retryable(self, code, retryable):
        assert ApiError(code, "x").retryable is retryable

    def test_error_response_omits_empty_fields(self):
        body = ErrorResponse.create("Gone", "NOT_FOUND", 404, request_id="", details=None)

        assert body == {"code": "NOT_FOUND", "message": "Gone", "status_code": 404}


class TestEnvelope:
    """Handlers render the same envelope"""

    def test_api_error_with_retry_after(self, error_app):
        response = error_app.get("/limited", headers={"X-Request-ID": "req-123"})

        assert response.status_code == 429
        assert response.headers["Retry-After"] == "30"
        assert response.headers["X-Request-ID"] == "req-123"
        body = response.json()
        assert body["code"] == "RATE_LIMIT_EXCEEDED"
        assert body["request_id"] == "req-123"
        assert body["retryable"] is True
        assert body["retry_after_seconds"] == 30
        assert body["support_url"] == "/support/runbooks/rate-limits#exceeded"

    def test_api_error_details_and_hint(self, error_app):
        body = error_app.get("/lapsed").json()

        assert body["status_code"] == 402
        assert body["details"] == {"status": "past_due"}
        assert body["error_hint"] == "Update payment method in billing settings"
        assert body["retryable"] is False
        assert "retry_after_seconds" not in body

    def test_dict_detail_carries_code(self, error_app):
        response = error_app.get("/conflict")

        assert response.status_code == 409
        body = response.json()
        assert body["code"] == "EXPORT_NOT_READY"
        assert body["message"] == "Not ready"
        assert body["details"] == {"state": "queued"}

    def test_unhandled_exception(self, error_app):
        response = error_app.get("/boom")

        assert response.status_code == 500
        body = response.json()
        assert body["code"] == "INTERNAL_ERROR"
        assert body["details"] == {"exception_type": "RuntimeError"}

    def test_unhandled_exception_hides_message_outside_dev(self, error_app, monkeypatch):
        from riskmate.config import config

        monkeypatch.setattr(config, "ENV", "prod")

        body = error_app.get("/boom").json()

        assert body["message"] == "Internal server error"
        assert "details" not in body


class TestApplicationErrors:
    """Envelope on the real application"""

    def test_unknown_route(self, client):
        response = client.get("/api/nowhere")

        assert response.status_code == 404
        body = response.json()
        assert body["code"] == "NOT_FOUND"
        assert body["request_id"] == response.headers["X-Request-ID"]

    def test_query_validation(self, client):
        response = client.get("/api/billing/alerts?limit=500", headers=RECONCILE_HEADERS)

        assert response.status_code == 422
        body = response.json()
        assert body["code"] == "VALIDATION_ERROR"
        assert body["details"]["errors"][0]["loc"] == ["query", "limit"]

    def test_missing_token(self, client):
        body = client.get("/api/subscriptions").json()

        assert body["code"] == "UNAUTHORIZED"
        assert body["support_url"] == "/support/runbooks/auth#unauthorized"


class TestServiceRoutes:
    """Root and health"""

    def test_root(self, client):
        assert client.get("/").json() == {"message": "RiskMate API", "status": "running"}

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["database"] == "ok"

    def test_health_when_database_down(self, client, monkeypatch):
        monkeypatch.setattr("riskmate.api_server.check_database_health", lambda: False)

        response = client.get("/health")

        assert response.status_code == 503
        assert response.json()["status"] == "unhealthy"
