"""
Unit tests for server exception handlers.

Tests cover the agent core error to HTTP status mapping, the owner-safe
response body, and the global handler for unexpected exceptions.
"""

import json
from unittest.mock import Mock, patch

import pytest
from fastapi import FastAPI, Request
from httpx import ASGITransport, AsyncClient

from leasewise_ai.agent_core.errors import (
    ConcurrencyConflict,
    DuplicateActionError,
    ExpiredGateError,
    GraduationNotEligibleError,
    InvalidTransitionError,
    LeasewiseError,
    NotFoundError,
    PolicyViolation,
    ToolExecutionError,
)
from leasewise_ai.server.exception_handlers import setup_exception_handlers
from leasewise_ai.server.exception_handlers.global_handler import (
    global_exception_handler,
    leasewise_exception_handler,
    status_for,
)


@pytest.fixture
def mock_request():
    """Create a mock request object."""
    request = Mock(spec=Request)
    request.method = "POST"
    request.url.path = "/api/v1/test"
    request.query_params = {}
    request.client = Mock()
    request.client.host = "127.0.0.1"
    return request


class TestStatusMapping:
    @pytest.mark.parametrize(
        ("exc", "status_code"),
        [
            (PolicyViolation("process_payment"), 403),
            (DuplicateActionError("t1", "a1"), 409),
            (ConcurrencyConflict("busy"), 409),
            (InvalidTransitionError("task t1 is completed"), 409),
            (GraduationNotEligibleError("not yet"), 409),
            (ExpiredGateError("late"), 410),
            (NotFoundError("task", "t1"), 404),
            (ToolExecutionError("send_message", "twilio 500"), 502),
            (LeasewiseError("boom"), 500),
        ],
    )
    def test_status_for(self, exc, status_code):
        assert status_for(exc) == status_code

    @pytest.mark.asyncio
    async def test_body_carries_owner_safe_message(self, mock_request):
        exc = ToolExecutionError("send_message", "twilio 500: token sk_live_123 rejected")

        with patch("leasewise_ai.server.exception_handlers.global_handler.logger") as mock_logger:
            response = await leasewise_exception_handler(mock_request, exc)

        body = json.loads(response.body)
        assert response.status_code == 502
        assert body == {
            "detail": "This step failed and was rolled back.",
            "user_message": "This step failed and was rolled back.",
            "error_type": "ToolExecutionError",
        }
        # The diagnostic text is logged, not returned.
        assert "sk_live_123" in mock_logger.warning.call_args[0][0]

    @pytest.mark.asyncio
    async def test_custom_user_message(self, mock_request):
        exc = PolicyViolation("terminate_lease")
        exc.user_message = "Ending a lease always needs you."
        with patch("leasewise_ai.server.exception_handlers.global_handler.logger"):
            response = await leasewise_exception_handler(mock_request, exc)
        assert json.loads(response.body)["user_message"] == "Ending a lease always needs you."


class TestGlobalExceptionHandler:
    @pytest.mark.asyncio
    async def test_exception_handler_logs_error(self, mock_request):
        exc = ValueError("Test error")

        with patch("leasewise_ai.server.exception_handlers.global_handler.logger") as mock_logger:
            response = await global_exception_handler(mock_request, exc)

        mock_logger.error.assert_called_once()
        call_args = mock_logger.error.call_args
        assert "Unhandled exception" in call_args[0][0]
        assert call_args[1]["extra"]["error_type"] == "ValueError"
        assert response.status_code == 500

    @pytest.mark.asyncio
    async def test_response_has_error_id_and_generic_message(self, mock_request):
        exc = RuntimeError("connection string postgres://secret")

        with patch("leasewise_ai.server.exception_handlers.global_handler.logger"):
            response = await global_exception_handler(mock_request, exc)

        body = json.loads(response.body)
        assert body["detail"] == "Internal server error"
        assert body["error_id"] == id(exc)
        assert body["error_type"] == "RuntimeError"
        assert "secret" not in response.body.decode()

    @pytest.mark.asyncio
    async def test_handles_request_without_client(self, mock_request):
        mock_request.client = None
        with patch("leasewise_ai.server.exception_handlers.global_handler.logger") as mock_logger:
            await global_exception_handler(mock_request, KeyError("x"))
        assert mock_logger.error.call_args[1]["extra"]["client"] == "unknown"


class TestSetupExceptionHandlers:
    @pytest.mark.asyncio
    async def test_registered_handlers_map_routes(self):
        app = FastAPI()
        setup_exception_handlers(app)

        @app.get("/refused")
        async def refused():
            raise PolicyViolation("process_payment")

        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://localhost") as client:
            response = await client.get("/refused")

        assert response.status_code == 403
        assert response.json()["error_type"] == "PolicyViolation"

    def test_both_handlers_registered(self):
        app = FastAPI()
        setup_exception_handlers(app)
        assert LeasewiseError in app.exception_handlers
        assert Exception in app.exception_handlers
