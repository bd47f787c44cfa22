"""
Exception Handlers for FastAPI Application.

This module maps agent core errors to HTTP responses and provides a global
handler that catches all unhandled exceptions and logs detailed information
including error ID, request context, and full traceback.

Every refusal carries an owner-safe ``user_message``; diagnostic messages
(which may contain raw tool errors) are only logged.
"""

import traceback
from typing import Tuple, Type

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from leasewise_ai.agent_core.errors import (
    ConcurrencyConflict,
    DuplicateActionError,
    ExpiredGateError,
    InvalidTransitionError,
    LeasewiseError,
    NotFoundError,
    PolicyViolation,
    ToolExecutionError,
)
from leasewise_ai.core.logging_config import get_logger

logger = get_logger(__name__)

_STATUS_BY_ERROR: Tuple[Tuple[Type[LeasewiseError], int], ...] = (
    (PolicyViolation, 403),
    (DuplicateActionError, 409),
    (ConcurrencyConflict, 409),
    (ExpiredGateError, 410),
    (NotFoundError, 404),
    (InvalidTransitionError, 409),
    (ToolExecutionError, 502),
)


def status_for(exc: LeasewiseError) -> int:
    """HTTP status for an agent core error (500 for anything unmapped)."""
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status_code
    return 500


async def leasewise_exception_handler(request: Request, exc: LeasewiseError) -> JSONResponse:
    """
    Handle refusals raised by the agent core.

    Args:
        request: The HTTP request that caused the exception
        exc: The agent core error

    Returns:
        JSONResponse with the owner-safe message and the error type
    """
    status_code = status_for(exc)
    logger.warning(
        f"{type(exc).__name__} in {request.method} {request.url.path}: {exc}",
        extra={
            'method': request.method,
            'path': request.url.path,
            'error_type': type(exc).__name__,
        },
    )
    return JSONResponse(
        status_code=status_code,
        content={
            'detail': exc.user_message,
            'user_message': exc.user_message,
            'error_type': type(exc).__name__,
        },
    )


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Global exception handler to log detailed error information.

    This handler is called for any unhandled exception in the application.
    It logs the full error context and returns a JSON response with an error ID
    that clients can use to reference the error when reporting issues.

    Args:
        request: The HTTP request that caused the exception
        exc: The exception that was raised

    Returns:
        JSONResponse with error details and error ID
    """
    # Generate unique error ID for tracking
    error_id = id(exc)

    logger.error(
        f'Unhandled exception [{error_id}] in {request.method} {request.url.path}: {str(exc)}',
        exc_info=True,
        extra={
            'error_id': error_id,
            'method': request.method,
            'path': request.url.path,
            'query_params': dict(request.query_params),
            'client': request.client.host if request.client else 'unknown',
            'error_type': type(exc).__name__,
            'traceback': traceback.format_exc(),
        },
    )

    return JSONResponse(
        status_code=500,
        content={
            'detail': 'Internal server error',
            'user_message': LeasewiseError.default_user_message,
            'error_id': error_id,
            'error_type': type(exc).__name__,
        },
    )


def setup_exception_handlers(app: FastAPI) -> None:
    """
    Register exception handlers with the FastAPI application.

    This function should be called during application initialization to set up
    all custom exception handlers.

    Args:
        app: The FastAPI application instance
    """
    app.add_exception_handler(LeasewiseError, leasewise_exception_handler)
    app.add_exception_handler(Exception, global_exception_handler)
    logger.debug("Exception handlers registered successfully")
