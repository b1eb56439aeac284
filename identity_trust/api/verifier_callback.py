"""
Webhook receiving results from external national-ID, CNAM and biometric verifiers.
"""

import hmac
from typing import Optional

import structlog
from fastapi import APIRouter, Header, Path, Request

from identity_trust.api.errors import http_error, to_http_exception
from identity_trust.config import settings
from identity_trust.middleware import get_correlation_id, request_context_from
from identity_trust.models.api_models import VerifierCallbackRequest, VerificationRecordResponse
from identity_trust.models.internal_models import VerifierCallback
from identity_trust.observability import trace_function
from identity_trust.services.container import get_services
from identity_trust.services.exceptions import VerificationServiceError

logger = structlog.get_logger()
router = APIRouter(prefix="/api/v1", tags=["verifier-callbacks"])


def _token_matches(token: Optional[str]) -> bool:
    secret = settings.verifier_callback_secret
    if not secret:
        return True
    return token is not None and hmac.compare_digest(token, secret)


@router.post("/verifier-callbacks/{provider}", response_model=VerificationRecordResponse)
@trace_function("verifier_callback")
async def handle_verifier_callback(
    request: VerifierCallbackRequest,
    http_request: Request,
    provider: str = Path(..., pattern=r"^[a-z0-9_-]{1,64}$"),
    x_verifier_token: Optional[str] = Header(None)
) -> VerificationRecordResponse:
    """
    Apply a verifier result to the user's channel.

    The result is recorded as "system:<provider>". Replayed callbacks are
    acknowledged without a second transition.
    """
    correlation_id = get_correlation_id(http_request)

    if not _token_matches(x_verifier_token):
        logger.warning("Verifier callback rejected", provider=provider, reason="invalid token")
        raise http_error(401, "Unauthorized", "Invalid verifier token", correlation_id)

    logger.info(
        "Verifier callback received",
        provider=provider,
        user_id=request.userId,
        channel=request.channel.value,
        decision=request.decision.value
    )

    try:
        callback = VerifierCallback(
            user_id=request.userId,
            channel=request.channel,
            decision=request.decision,
            provider=provider,
            external_reference=request.externalReference,
            score=request.score
        )
        record = await get_services().workflow.handle_verifier_callback(
            callback, request_context_from(http_request)
        )
    except (VerificationServiceError, ValueError) as e:
        raise to_http_exception(e, correlation_id)

    return VerificationRecordResponse.from_record(record)
