"""
Administrator endpoints: review queue, decisions, audited raw-data reads and
access log compliance queries.

Administrators identify themselves with the X-Admin-Id header, set by the
upstream admin gateway after authentication.
"""

from datetime import datetime
from typing import List, Optional

import structlog
from fastapi import APIRouter, Header, Query, Request
from fastapi.responses import PlainTextResponse

from identity_trust.api.errors import http_error, to_http_exception
from identity_trust.middleware import get_correlation_id, request_context_from
from identity_trust.models.api_models import (
    AccessLogEntryResponse,
    AccessLogPageResponse,
    AdminDecisionRequest,
    SensitiveDataItem,
    SensitiveDataResponse,
    VerificationRecordResponse,
    VerificationStatsResponse,
)
from identity_trust.models.internal_models import (
    AccessLogFilters,
    AccessType,
    AdminReviewDecision,
    Channel,
    ChannelStatus,
    PendingReviewFilters,
)
from identity_trust.observability import trace_function
from identity_trust.services.container import get_services
from identity_trust.services.exceptions import VerificationServiceError

logger = structlog.get_logger()
router = APIRouter(prefix="/api/v1/admin", tags=["admin"])


def _require_admin(admin_id: Optional[str], correlation_id: str) -> str:
    if not admin_id or not admin_id.strip():
        raise http_error(401, "Unauthorized", "X-Admin-Id header is required", correlation_id)
    return admin_id.strip()


def _access_log_filters(
    admin_id: Optional[str],
    target_user_id: Optional[str],
    access_type: Optional[AccessType],
    start: Optional[datetime],
    end: Optional[datetime],
    limit: int = 50,
    offset: int = 0
) -> AccessLogFilters:
    return AccessLogFilters(
        admin_id=admin_id,
        target_user_id=target_user_id,
        access_type=access_type,
        start=start,
        end=end,
        limit=limit,
        offset=offset
    )


@router.get("/reviews", response_model=List[VerificationRecordResponse])
async def list_pending_reviews(
    http_request: Request,
    status: Optional[List[ChannelStatus]] = Query(None),
    channel: Optional[Channel] = None,
    submitted_after: Optional[datetime] = None,
    submitted_before: Optional[datetime] = None,
    limit: int = Query(100, ge=1, le=500),
    x_admin_id: Optional[str] = Header(None)
) -> List[VerificationRecordResponse]:
    """Records with a channel awaiting a decision, oldest first."""
    correlation_id = get_correlation_id(http_request)
    _require_admin(x_admin_id, correlation_id)

    filters = PendingReviewFilters(
        channel=channel,
        submitted_after=submitted_after,
        submitted_before=submitted_before,
        limit=limit
    )
    if status:
        filters.statuses = status

    records = await get_services().workflow.list_pending_reviews(filters)
    return [VerificationRecordResponse.from_record(r) for r in records]


@router.post("/reviews/decisions", response_model=VerificationRecordResponse)
@trace_function("admin_decision_endpoint")
async def decide(
    request: AdminDecisionRequest,
    http_request: Request,
    x_admin_id: Optional[str] = Header(None)
) -> VerificationRecordResponse:
    """
    Approve or reject one channel of one user.

    Repeating a decision already applied returns the current record. A
    conflicting decision on a finalised channel is refused with 409.
    """
    correlation_id = get_correlation_id(http_request)
    admin_id = _require_admin(x_admin_id, correlation_id)

    logger.info(
        "Admin decision received",
        admin_id=admin_id,
        target_user_id=request.targetUserId,
        channel=request.channel.value,
        decision=request.decision.value
    )

    try:
        decision = AdminReviewDecision(
            target_user_id=request.targetUserId,
            channel=request.channel,
            decision=request.decision,
            admin_id=admin_id,
            notes=request.notes
        )
        record = await get_services().workflow.decide(decision, request_context_from(http_request))
    except (VerificationServiceError, ValueError) as e:
        raise to_http_exception(e, correlation_id)

    return VerificationRecordResponse.from_record(record)


@router.get("/stats", response_model=VerificationStatsResponse)
async def verification_stats(
    http_request: Request,
    x_admin_id: Optional[str] = Header(None)
) -> VerificationStatsResponse:
    """Totals by outcome, verified counts per channel, review turnaround and average trust score."""
    correlation_id = get_correlation_id(http_request)
    _require_admin(x_admin_id, correlation_id)

    stats = await get_services().workflow.stats()
    return VerificationStatsResponse.from_stats(stats)


@router.get("/verifications/{user_id}/sensitive", response_model=SensitiveDataResponse)
@trace_function("sensitive_read_endpoint")
async def read_sensitive_data(
    user_id: str,
    http_request: Request,
    access_type: AccessType = AccessType.FULL_VIEW,
    x_admin_id: Optional[str] = Header(None)
) -> SensitiveDataResponse:
    """
    Raw documents and biometric references for one user.

    Every call writes one access log entry before any data is returned; when
    that write fails the request fails with 503 and nothing is released.
    """
    correlation_id = get_correlation_id(http_request)
    admin_id = _require_admin(x_admin_id, correlation_id)

    try:
        items = await get_services().store.read_sensitive_data(
            admin_id, user_id, access_type, request_context_from(http_request)
        )
    except (VerificationServiceError, ValueError) as e:
        raise to_http_exception(e, correlation_id)

    logger.info(
        "Sensitive data released",
        admin_id=admin_id,
        target_user_id=user_id,
        access_type=access_type.value
    )
    return SensitiveDataResponse(
        userId=user_id,
        accessType=access_type,
        items=[SensitiveDataItem.from_data(item) for item in items]
    )


@router.get("/audit-logs", response_model=AccessLogPageResponse)
async def query_audit_logs(
    http_request: Request,
    admin_id: Optional[str] = None,
    target_user_id: Optional[str] = None,
    access_type: Optional[AccessType] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    limit: int = Query(50, ge=1),
    offset: int = Query(0, ge=0),
    x_admin_id: Optional[str] = Header(None)
) -> AccessLogPageResponse:
    """Access log entries, newest first."""
    correlation_id = get_correlation_id(http_request)
    _require_admin(x_admin_id, correlation_id)

    filters = _access_log_filters(admin_id, target_user_id, access_type, start, end, limit, offset)
    try:
        page = await get_services().audit_logger.query(filters)
    except (VerificationServiceError, ValueError) as e:
        raise to_http_exception(e, correlation_id)

    return AccessLogPageResponse(
        entries=[AccessLogEntryResponse.from_entry(e) for e in page.entries],
        total=page.total,
        limit=page.limit,
        offset=page.offset,
        hasMore=page.has_more
    )


@router.get("/audit-logs/export", response_class=PlainTextResponse)
async def export_audit_logs(
    http_request: Request,
    admin_id: Optional[str] = None,
    target_user_id: Optional[str] = None,
    access_type: Optional[AccessType] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    delimiter: str = ",",
    x_admin_id: Optional[str] = Header(None)
) -> PlainTextResponse:
    """Every matching entry as a delimited report download."""
    correlation_id = get_correlation_id(http_request)
    requester = _require_admin(x_admin_id, correlation_id)

    filters = _access_log_filters(admin_id, target_user_id, access_type, start, end)
    try:
        report = await get_services().audit_logger.export_report(filters, delimiter=delimiter)
    except (VerificationServiceError, ValueError) as e:
        raise to_http_exception(e, correlation_id)

    logger.info("Access log exported", requested_by=requester)
    return PlainTextResponse(
        report,
        media_type="text/csv",
        headers={"Content-Disposition": 'attachment; filename="verification_access_log.csv"'}
    )
