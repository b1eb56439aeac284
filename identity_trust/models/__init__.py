"""Data models for the identity verification service."""

from .api_models import (
    AccessLogEntryResponse,
    AccessLogPageResponse,
    AdminDecisionRequest,
    ErrorResponse,
    GuardCheckRequest,
    GuardCheckResponse,
    HealthResponse,
    ScoreResponse,
    SensitiveDataResponse,
    SubmissionRequest,
    VerificationRecordResponse,
    VerifierCallbackRequest,
)
from .internal_models import (
    AccessLogEntry,
    AccessLogFilters,
    AccessType,
    AdminReviewDecision,
    Channel,
    ChannelStatus,
    Decision,
    GuardDecision,
    GuardResult,
    ProfileSignals,
    Recommendation,
    RequestContext,
    VerificationRecord,
    VerificationSubmission,
    VerifierCallback,
)

__all__ = [
    "AccessLogEntryResponse",
    "AccessLogPageResponse",
    "AdminDecisionRequest",
    "ErrorResponse",
    "GuardCheckRequest",
    "GuardCheckResponse",
    "HealthResponse",
    "ScoreResponse",
    "SensitiveDataResponse",
    "SubmissionRequest",
    "VerificationRecordResponse",
    "VerifierCallbackRequest",
    "AccessLogEntry",
    "AccessLogFilters",
    "AccessType",
    "AdminReviewDecision",
    "Channel",
    "ChannelStatus",
    "Decision",
    "GuardDecision",
    "GuardResult",
    "ProfileSignals",
    "Recommendation",
    "RequestContext",
    "VerificationRecord",
    "VerificationSubmission",
    "VerifierCallback",
]
