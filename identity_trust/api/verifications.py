"""
Applicant-facing verification endpoints: submission intake, record and score reads.
"""

from datetime import datetime, timezone

import structlog
from fastapi import APIRouter, Request

from identity_trust.api.errors import to_http_exception
from identity_trust.middleware import get_correlation_id
from identity_trust.models.api_models import (
    ScoreResponse,
    SubmissionRequest,
    VerificationRecordResponse,
)
from identity_trust.models.internal_models import VerificationSubmission
from identity_trust.observability import trace_function
from identity_trust.services.container import get_services
from identity_trust.services.exceptions import VerificationServiceError
from identity_trust.services.scoring import potential_gain, recommendation_for

logger = structlog.get_logger()
router = APIRouter(prefix="/api/v1", tags=["verifications"])


@router.post(
    "/verifications/{user_id}/submissions",
    response_model=VerificationRecordResponse,
    status_code=201
)
@trace_function("submission_endpoint")
async def submit_verification(
    user_id: str,
    request: SubmissionRequest,
    http_request: Request
) -> VerificationRecordResponse:
    """
    Accept documents or a biometric capture for one channel.

    ONECI and CNAM go to human review; a first face submission is matched
    by the biometric provider when one is configured.

    Returns:
        The updated record (without raw documents) and current trust score
    """
    correlation_id = get_correlation_id(http_request)
    services = get_services()

    logger.info(
        "Submission received",
        user_id=user_id,
        channel=request.channel.value,
        document_count=len(request.documentRefs)
    )

    try:
        submission = VerificationSubmission(
            user_id=user_id,
            channel=request.channel,
            submitted_at=datetime.now(timezone.utc),
            document_refs=request.documentRefs,
            biometric_capture_ref=request.biometricCaptureRef,
            identity_number=request.identityNumber,
        )
        record = await services.intake.submit(submission)
    except (VerificationServiceError, ValueError) as e:
        raise to_http_exception(e, correlation_id)

    logger.info(
        "Submission accepted",
        user_id=user_id,
        channel=request.channel.value,
        status=record.status_of(request.channel).value,
        trust_score=record.trust_score
    )
    return VerificationRecordResponse.from_record(record)


@router.get("/verifications/{user_id}", response_model=VerificationRecordResponse)
async def get_verification(user_id: str) -> VerificationRecordResponse:
    """
    Current verification record.

    Users without a record get every channel as not_submitted.
    """
    record = await get_services().store.get_record_or_default(user_id)
    return VerificationRecordResponse.from_record(record)


@router.get("/verifications/{user_id}/score", response_model=ScoreResponse)
async def get_score(user_id: str) -> ScoreResponse:
    """Read-only trust score with its breakdown and advisory recommendation."""
    _, score, breakdown = await get_services().store.score_breakdown(user_id)
    return ScoreResponse(
        userId=user_id,
        score=score,
        breakdown=breakdown,
        recommendation=recommendation_for(score),
        potentialGain=potential_gain(breakdown)
    )


@router.post("/verifications/{user_id}/score/refresh", response_model=VerificationRecordResponse)
async def refresh_score(user_id: str, http_request: Request) -> VerificationRecordResponse:
    """
    Recompute the stored trust score after profile signals changed.

    Called by the documents subsystem when supporting documents or rental
    history attestations are added or removed.
    """
    correlation_id = get_correlation_id(http_request)
    try:
        record = await get_services().store.refresh_score(user_id)
    except VerificationServiceError as e:
        raise to_http_exception(e, correlation_id)

    logger.info("Trust score refreshed", user_id=user_id, trust_score=record.trust_score)
    return VerificationRecordResponse.from_record(record)
