"""
Shared API Middleware
======================

Request tracing, access logging and exception-to-response mapping.
"""

import time
import uuid
from typing import Callable
from datetime import datetime, timezone

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from src.config import settings
from src.core import (
    ApplicationException,
    ResourceNotFoundException,
    ValidationException,
    DomainException,
)
from src.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


def _correlation_id(request: Request) -> str:
    return getattr(request.state, "correlation_id", "unknown")


class CorrelationIDMiddleware(BaseHTTPMiddleware):
    """
    Adds correlation ID to requests for tracing.

    Reuses an incoming X-Correlation-ID header, otherwise generates one.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        correlation_id = request.headers.get("X-Correlation-ID", str(uuid.uuid4()))
        request.state.correlation_id = correlation_id

        response = await call_next(request)
        response.headers["X-Correlation-ID"] = correlation_id
        return response


class ResponseTimeMiddleware(BaseHTTPMiddleware):
    """Adds X-Response-Time to every response."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start_time = time.perf_counter()
        response = await call_next(request)
        response.headers["X-Response-Time"] = f"{time.perf_counter() - start_time:.3f}s"
        return response


class LoggingMiddleware(BaseHTTPMiddleware):
    """Logs every request with status code and latency."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        correlation_id = _correlation_id(request)
        start_time = time.perf_counter()

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


async def application_exception_handler(request: Request, exc: ApplicationException) -> JSONResponse:
    """
    Map application exceptions to HTTP errors.

    - ResourceNotFoundException -> 404
    - ValidationException / DomainException -> 400
    - anything else (repository, LLM, configuration) -> 500
    """
    if isinstance(exc, ResourceNotFoundException):
        status_code = 404
    elif isinstance(exc, (ValidationException, DomainException)):
        status_code = 400
    else:
        status_code = 500
        logger.error(
            "Application error",
            extra={
                "correlation_id": _correlation_id(request),
                "path": request.url.path,
                "error_type": type(exc).__name__,
                "error_message": exc.message,
                "details": exc.details
            }
        )

    return JSONResponse(
        status_code=status_code,
        content={
            "success": False,
            "error": exc.message if status_code < 500 else "Internal server error",
            "correlation_id": _correlation_id(request),
        }
    )


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Global exception handler for unhandled exceptions.

    Internal details are only returned in development.
    """
    correlation_id = _correlation_id(request)

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

    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error": "Internal server error",
            "correlation_id": correlation_id,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "debug_info": str(exc) if settings.environment == "development" else None
        }
    )
