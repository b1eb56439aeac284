"""
Mapping of service errors to HTTP error responses.
"""

from datetime import datetime, timezone

import structlog
from fastapi import HTTPException

from identity_trust.models.api_models import ErrorResponse
from identity_trust.services.exceptions import (
    AlreadyFinalized,
    AuditWriteFailed,
    ExternalVerifierTimeout,
    InvalidTransition,
    RecordNotFound,
    StoreContention,
    VerificationServiceError,
)

logger = structlog.get_logger()

STATUS_CODES = {
    RecordNotFound: 404,
    InvalidTransition: 409,
    AlreadyFinalized: 409,
    AuditWriteFailed: 503,
    StoreContention: 503,
    ExternalVerifierTimeout: 504,
}


def error_detail(error_type: str, message: str, correlation_id: str, retryable: bool = False) -> dict:
    """Create standardized error body."""
    return ErrorResponse(
        error=error_type,
        message=message,
        correlation_id=correlation_id,
        timestamp=datetime.now(timezone.utc),
        retryable=retryable
    ).model_dump(mode="json")


def http_error(status_code: int, error_type: str, message: str, correlation_id: str) -> HTTPException:
    return HTTPException(
        status_code=status_code,
        detail=error_detail(error_type, message, correlation_id)
    )


def to_http_exception(error: Exception, correlation_id: str) -> HTTPException:
    """
    Translate a service error into an HTTPException.

    Args:
        error: Exception raised by a service call
        correlation_id: Request correlation ID

    Returns:
        HTTPException carrying a standardized error body
    """
    if isinstance(error, VerificationServiceError):
        status_code = next(
            (code for cls, code in STATUS_CODES.items() if isinstance(error, cls)),
            500
        )
        logger.warning(
            "Verification request rejected",
            error_type=type(error).__name__,
            error=str(error),
            status_code=status_code
        )
        return HTTPException(
            status_code=status_code,
            detail=error_detail(type(error).__name__, str(error), correlation_id, error.retryable)
        )

    if isinstance(error, ValueError):
        return http_error(422, "ValidationError", str(error), correlation_id)

    logger.error("Unexpected error", error_type=type(error).__name__, error=str(error))
    return http_error(500, "InternalServerError", "An unexpected error occurred", correlation_id)
