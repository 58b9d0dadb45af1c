"""Tests for global exception handlers.

Validates that all exception types are handled consistently with
proper HTTP status codes, error format, and no information leakage.
"""

import asyncio
import json
from unittest.mock import AsyncMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from quotagate.core.errors import (
    AppError,
    AuthenticationAppError,
    ConfigurationAppError,
    StoreUnavailableError,
)
from quotagate.core.exception_handlers import general_exception_handler, setup_exception_handlers


@pytest.fixture
def app_with_handlers() -> FastAPI:
    """Create FastAPI app with exception handlers registered."""
    app = FastAPI()
    setup_exception_handlers(app)
    return app


@pytest.fixture
def client(app_with_handlers: FastAPI) -> TestClient:
    """Create test client with handlers enabled."""
    return TestClient(app_with_handlers)


class TestAppErrorHandler:
    """Test handler for AppError and subclasses."""

    @pytest.mark.parametrize(
        "error_cls, expected_status",
        [
            (AppError, 400),
            (AuthenticationAppError, 401),
            (ConfigurationAppError, 500),
            (StoreUnavailableError, 503),
        ],
    )
    def test_status_mapping(
        self, client: TestClient, app_with_handlers: FastAPI, error_cls, expected_status: int
    ):
        @app_with_handlers.get("/boom")
        async def boom():
            raise error_cls(code="test_code", message="Test message")

        response = client.get("/boom")

        assert response.status_code == expected_status
        data = response.json()
        assert data["error"]["code"] == "test_code"
        assert data["error"]["message"] == "Test message"
        assert "request_id" in data["error"]

    def test_unauthorized_advertises_scheme(self, client: TestClient, app_with_handlers: FastAPI):
        @app_with_handlers.get("/needs-identity")
        async def needs_identity():
            raise AuthenticationAppError(code="identity_missing", message="Missing API key")

        response = client.get("/needs-identity")

        assert response.status_code == 401
        assert response.headers["WWW-Authenticate"] == "ApiKey"

    def test_details_included_when_present(self, client: TestClient, app_with_handlers: FastAPI):
        @app_with_handlers.get("/with-details")
        async def with_details():
            raise StoreUnavailableError(
                code="store_unavailable",
                message="Bucket store is not reachable",
                details={"backend": "redis", "error_type": "TimeoutError"},
            )

        data = client.get("/with-details").json()

        assert data["error"]["details"] == {"backend": "redis", "error_type": "TimeoutError"}

    def test_details_omitted_when_absent(self, client: TestClient, app_with_handlers: FastAPI):
        @app_with_handlers.get("/no-details")
        async def no_details():
            raise AppError(code="test", message="test")

        assert "details" not in client.get("/no-details").json()["error"]


class TestGeneralExceptionHandler:
    """Test fallback handler for unexpected exceptions."""

    def test_returns_generic_500(self):
        request = AsyncMock()
        request.url.path = "/test"
        request.method = "GET"

        exc = RuntimeError("Unexpected error: redis password wrong")
        response = asyncio.run(general_exception_handler(request, exc))

        data = json.loads(bytes(response.body).decode())
        assert response.status_code == 500
        assert data["error"]["code"] == "internal_server_error"
        assert "redis password" not in data["error"]["message"]
        assert "request_id" in data["error"]

    def test_never_leaks_stack_trace(self):
        request = AsyncMock()
        request.url.path = "/test"
        request.method = "GET"

        response = asyncio.run(general_exception_handler(request, ValueError("details")))

        response_text = bytes(response.body).decode()
        assert "Traceback" not in response_text
        assert "ValueError" not in response_text


def test_setup_registers_handlers(app_with_handlers: FastAPI):
    assert AppError in app_with_handlers.exception_handlers
    assert Exception in app_with_handlers.exception_handlers


def test_multiple_setups_do_not_fail():
    app = FastAPI()

    setup_exception_handlers(app)
    setup_exception_handlers(app)

    assert AppError in app.exception_handlers
