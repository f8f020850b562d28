"""
Shared API Middleware
======================

Common middleware and exception handlers for the FastAPI application.
"""

import time
import uuid
from datetime import datetime, timezone
from typing import Callable

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from helpdesk.config import settings
from helpdesk.core import (
    ApplicationException,
    ExternalServiceException,
    LLMOutputValidationException,
    ResourceNotFoundException,
    ValidationException,
)
from helpdesk.shared.infrastructure.logging import correlation_id_var, get_logger

logger = get_logger(__name__)

RETRY_MESSAGE = "The AI pipeline could not complete this request. Please retry shortly."


class CorrelationIDMiddleware(BaseHTTPMiddleware):
    """
    Adds correlation ID to requests for tracing.

    The id is stored on ``request.state`` and in a context variable so
    pipeline logs emitted during the request carry it too.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        correlation_id = request.headers.get("X-Correlation-ID", str(uuid.uuid4()))
        request.state.correlation_id = correlation_id
        token = correlation_id_var.set(correlation_id)
        try:
            response = await call_next(request)
        finally:
            correlation_id_var.reset(token)
        response.headers["X-Correlation-ID"] = correlation_id
        return response


class MetricsMiddleware(BaseHTTPMiddleware):
    """
    Tracks request metrics for monitoring.

    Records response times and status codes for observability.
    """

    def __init__(self, app: ASGIApp):
        super().__init__(app)
        self.request_count = 0
        self.total_response_time = 0.0

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start_time = time.perf_counter()
        self.request_count += 1

        response = await call_next(request)

        response_time = time.perf_counter() - start_time
        self.total_response_time += response_time

        response.headers["X-Response-Time"] = f"{response_time:.3f}s"
        return response


class LoggingMiddleware(BaseHTTPMiddleware):
    """
    Logs all requests and responses.

    Provides audit trail and debugging information.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        correlation_id = getattr(request.state, "correlation_id", "unknown")
        start_time = time.perf_counter()

        logger.info(
            "Request started",
            extra={
                "correlation_id": correlation_id,
                "method": request.method,
                "path": request.url.path,
                "client": request.client.host if request.client else None
            }
        )

        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                "Request failed",
                extra={
                    "correlation_id": correlation_id,
                    "method": request.method,
                    "path": request.url.path,
                    "error": str(e),
                    "response_time_ms": int((time.perf_counter() - start_time) * 1000)
                }
            )
            raise

        logger.info(
            "Request completed",
            extra={
                "correlation_id": correlation_id,
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "response_time_ms": int((time.perf_counter() - start_time) * 1000)
            }
        )
        return response


def _error_body(request: Request, detail: str, **extra) -> dict:
    return {
        "detail": detail,
        "correlation_id": getattr(request.state, "correlation_id", "unknown"),
        "timestamp": datetime.now(timezone.utc).isoformat(),
        **extra
    }


async def not_found_handler(request: Request, exc: ResourceNotFoundException) -> JSONResponse:
    """Missing tickets, messages and sources map to 404."""
    return JSONResponse(status_code=404, content=_error_body(request, exc.message))


async def validation_handler(request: Request, exc: ValidationException) -> JSONResponse:
    """Rejected input maps to 422."""
    return JSONResponse(
        status_code=422,
        content=_error_body(request, exc.message, details=exc.details)
    )


async def upstream_failure_handler(request: Request, exc: ApplicationException) -> JSONResponse:
    """
    Provider failures and malformed model output map to 502.

    The response carries retry guidance only; provider internals stay in
    the logs.
    """
    retryable = getattr(exc, "retryable", True)
    logger.error(
        "AI pipeline step failed",
        extra={
            "correlation_id": getattr(request.state, "correlation_id", "unknown"),
            "path": request.url.path,
            "error_type": type(exc).__name__,
            "error_message": exc.message,
            "retryable": retryable
        }
    )
    return JSONResponse(
        status_code=502,
        content=_error_body(request, RETRY_MESSAGE, retryable=retryable)
    )


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Global exception handler for unhandled exceptions.

    Returns consistent error responses for all exceptions.
    """
    correlation_id = getattr(request.state, "correlation_id", "unknown")

    logger.error(
        "Unhandled exception",
        extra={
            "correlation_id": correlation_id,
            "path": request.url.path,
            "method": request.method,
            "error_type": type(exc).__name__,
            "error_message": str(exc)
        }
    )

    is_dev = settings.environment == "development"

    return JSONResponse(
        status_code=500,
        content=_error_body(
            request,
            "Internal server error",
            debug_info=str(exc) if is_dev else None
        )
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Attach the application exception mapping to ``app``."""
    app.add_exception_handler(ResourceNotFoundException, not_found_handler)
    app.add_exception_handler(LLMOutputValidationException, upstream_failure_handler)
    app.add_exception_handler(ValidationException, validation_handler)
    app.add_exception_handler(ExternalServiceException, upstream_failure_handler)
    app.add_exception_handler(Exception, global_exception_handler)
