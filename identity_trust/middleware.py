"""
Custom middleware for the identity verification service.
"""

import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict

import structlog
from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from identity_trust.models.internal_models import RequestContext

logger = structlog.get_logger()

CORRELATION_HEADER = "X-Correlation-ID"


def get_correlation_id(request: Request) -> str:
    """Correlation id bound by RequestLoggingMiddleware, or the raw header."""
    return getattr(request.state, "correlation_id", None) or request.headers.get(CORRELATION_HEADER, "unknown")


def request_context_from(request: Request) -> RequestContext:
    """Origin of a request, recorded on access log entries."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        ip_address = forwarded.split(",")[0].strip()
    else:
        ip_address = request.client.host if request.client else None
    return RequestContext(ip_address=ip_address, user_agent=request.headers.get("User-Agent"))


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Middleware for request/response logging with correlation ID support.
    """

    def __init__(self, app, exclude_paths: set = None):
        super().__init__(app)
        self.exclude_paths = exclude_paths or {"/healthz", "/docs", "/redoc", "/openapi.json"}

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        correlation_id = request.headers.get(CORRELATION_HEADER, f"req_{int(time.time() * 1000)}")
        request.state.correlation_id = correlation_id

        if request.url.path in self.exclude_paths:
            return await call_next(request)

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(correlation_id=correlation_id)

        start_time = time.time()
        logger.info(
            "Request started",
            method=request.method,
            path=request.url.path,
            user_agent=request.headers.get("User-Agent", "unknown")
        )

        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                "Request failed",
                error=str(e),
                error_type=type(e).__name__,
                process_time_ms=round((time.time() - start_time) * 1000, 2)
            )
            return JSONResponse(
                status_code=500,
                content={
                    "error": "InternalServerError",
                    "message": "An unexpected error occurred",
                    "correlation_id": correlation_id,
                    "timestamp": datetime.now(timezone.utc).isoformat(),
                    "retryable": False
                },
                headers={CORRELATION_HEADER: correlation_id}
            )

        logger.info(
            "Request completed",
            status_code=response.status_code,
            process_time_ms=round((time.time() - start_time) * 1000, 2)
        )
        response.headers[CORRELATION_HEADER] = correlation_id
        return response


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """
    Middleware to add security headers to responses.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        response = await call_next(request)

        response.headers.update({
            "X-Content-Type-Options": "nosniff",
            "X-Frame-Options": "DENY",
            "Strict-Transport-Security": "max-age=31536000; includeSubDomains",
            "Referrer-Policy": "strict-origin-when-cross-origin"
        })
        return response


# Process-wide request counters served at /metrics
_request_metrics: Dict[str, float] = {
    "request_count": 0,
    "error_count": 0,
    "total_processing_time": 0.0,
}


class MetricsMiddleware(BaseHTTPMiddleware):
    """
    Middleware to collect basic metrics about requests.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start_time = time.time()
        try:
            response = await call_next(request)
        except Exception:
            _record_request(time.time() - start_time, failed=True)
            raise

        _record_request(time.time() - start_time, failed=response.status_code >= 400)
        return response


def _record_request(processing_time: float, failed: bool) -> None:
    _request_metrics["request_count"] += 1
    _request_metrics["total_processing_time"] += processing_time
    if failed:
        _request_metrics["error_count"] += 1


def get_metrics() -> Dict[str, Any]:
    """Get current application metrics."""
    count = _request_metrics["request_count"]
    errors = _request_metrics["error_count"]
    avg_processing_time = _request_metrics["total_processing_time"] / count if count else 0

    return {
        "total_requests": int(count),
        "error_count": int(errors),
        "error_rate": errors / count if count else 0,
        "avg_processing_time_ms": round(avg_processing_time * 1000, 2)
    }
