"""
Guard check consumed right before a protected action executes.
"""

import structlog
from fastapi import APIRouter, Request, Response

from identity_trust.api.errors import to_http_exception
from identity_trust.middleware import get_correlation_id
from identity_trust.models.api_models import GuardCheckRequest, GuardCheckResponse
from identity_trust.observability import trace_function
from identity_trust.services.container import get_services
from identity_trust.services.exceptions import VerificationServiceError

logger = structlog.get_logger()
router = APIRouter(prefix="/api/v1", tags=["guard"])


@router.post("/guard/check", response_model=GuardCheckResponse)
@trace_function("guard_endpoint")
async def check_guard(
    request: GuardCheckRequest,
    http_request: Request,
    response: Response
) -> GuardCheckResponse:
    """
    Decide whether the protected action may proceed.

    The answer reflects state at the time of the call and must not be cached.
    """
    correlation_id = get_correlation_id(http_request)
    response.headers["Cache-Control"] = "no-store"

    try:
        result = await get_services().guard.check_access(request.userId, request.action)
    except VerificationServiceError as e:
        raise to_http_exception(e, correlation_id)

    logger.info(
        "Guard check",
        user_id=request.userId,
        action=request.action,
        decision=result.decision.value
    )
    return GuardCheckResponse(
        decision=result.decision,
        reason=result.reason,
        oneciStatus=result.oneci_status,
        nextStep=result.next_step
    )
