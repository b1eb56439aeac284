"""Pydantic models for API requests and responses."""

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .internal_models import (
    AccessLogEntry,
    AccessType,
    Channel,
    ChannelStatus,
    Decision,
    GuardDecision,
    Recommendation,
    SensitiveVerificationData,
    VerificationRecord,
    VerificationStats,
)


class SubmissionRequest(BaseModel):
    """Request model for the submission intake endpoint."""

    channel: Channel = Field(..., description="Verification channel the documents are for")
    documentRefs: List[str] = Field(default_factory=list, description="Stored document references (ONECI, CNAM)")
    biometricCaptureRef: Optional[str] = Field(None, description="Stored selfie capture reference (face)")
    identityNumber: Optional[str] = Field(None, max_length=64, description="National ID or social security number")

    @model_validator(mode='after')
    def validate_payload(self):
        """Each channel needs its own kind of evidence."""
        if self.channel is Channel.FACE and not self.biometricCaptureRef:
            raise ValueError('Face submissions require biometricCaptureRef')
        if self.channel is not Channel.FACE and not self.documentRefs:
            raise ValueError(f'{self.channel.value.upper()} submissions require documentRefs')
        return self


class VerificationRecordResponse(BaseModel):
    """
    Verification record as exposed to clients.

    Never carries raw documents or the face similarity score; those are only
    released through the audited sensitive-data read.
    """

    userId: str
    oneciStatus: ChannelStatus
    cnamStatus: ChannelStatus
    faceStatus: ChannelStatus
    oneciVerifiedAt: Optional[datetime] = None
    cnamVerifiedAt: Optional[datetime] = None
    faceVerifiedAt: Optional[datetime] = None
    trustScore: int = Field(..., ge=0, le=100)
    scoreUpdatedAt: Optional[datetime] = None
    adminReviewNotes: Optional[str] = None
    adminReviewedBy: Optional[str] = None
    adminReviewedAt: Optional[datetime] = None
    updatedAt: Optional[datetime] = None

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "userId": "3f1c0a4e-6d4b-4d0e-9a71-0c6d3f0b9b12",
            "oneciStatus": "verified",
            "cnamStatus": "not_submitted",
            "faceStatus": "verified",
            "trustScore": 90
        }
    })

    @classmethod
    def from_record(cls, record: VerificationRecord) -> "VerificationRecordResponse":
        return cls(
            userId=record.user_id,
            oneciStatus=record.oneci_status,
            cnamStatus=record.cnam_status,
            faceStatus=record.face_status,
            oneciVerifiedAt=record.oneci_verified_at,
            cnamVerifiedAt=record.cnam_verified_at,
            faceVerifiedAt=record.face_verified_at,
            trustScore=record.trust_score,
            scoreUpdatedAt=record.score_updated_at,
            adminReviewNotes=record.admin_review_notes,
            adminReviewedBy=record.admin_reviewed_by,
            adminReviewedAt=record.admin_reviewed_at,
            updatedAt=record.updated_at,
        )


class ScoreResponse(BaseModel):
    """Read-only trust score for dashboards."""

    userId: str
    score: int = Field(..., ge=0, le=100)
    breakdown: Dict[str, int]
    recommendation: Recommendation
    potentialGain: int = Field(..., ge=0, le=100)


class GuardCheckRequest(BaseModel):
    """Request model for the guard check endpoint."""

    userId: str = Field(..., min_length=1)
    action: str = Field("submit_application", min_length=1, max_length=64)


class GuardCheckResponse(BaseModel):
    """Guard decision, consumed immediately before the protected action."""

    decision: GuardDecision
    reason: str
    oneciStatus: ChannelStatus
    nextStep: Optional[str] = None


class AdminDecisionRequest(BaseModel):
    """Request model for an administrator decision."""

    targetUserId: str = Field(..., min_length=1)
    channel: Channel
    decision: Decision
    notes: Optional[str] = Field(None, max_length=2000)


class VerifierCallbackRequest(BaseModel):
    """Result pushed by an external verifier."""

    userId: str = Field(..., min_length=1)
    channel: Channel
    decision: Decision
    externalReference: Optional[str] = Field(None, max_length=255)
    score: Optional[float] = Field(None, ge=0.0, le=100.0, description="Provider similarity / confidence score")


class SensitiveDataItem(BaseModel):
    channel: Channel
    status: ChannelStatus
    documentRefs: List[str]
    biometricCaptureRef: Optional[str] = None
    identityNumber: Optional[str] = None
    faceSimilarityScore: Optional[float] = None
    submittedAt: Optional[datetime] = None

    @classmethod
    def from_data(cls, data: SensitiveVerificationData) -> "SensitiveDataItem":
        return cls(
            channel=data.channel,
            status=data.status,
            documentRefs=data.document_refs,
            biometricCaptureRef=data.biometric_capture_ref,
            identityNumber=data.identity_number,
            faceSimilarityScore=data.face_similarity_score,
            submittedAt=data.submitted_at,
        )


class SensitiveDataResponse(BaseModel):
    """Raw verification payloads, released after the access entry is written."""

    userId: str
    accessType: AccessType
    items: List[SensitiveDataItem]


class VerificationStatsResponse(BaseModel):
    """Aggregate review figures for the admin dashboard."""

    total: int
    pending: int
    verified: int
    rejected: int
    verifiedByChannel: Dict[Channel, int]
    avgProcessingTimeHours: float
    avgTrustScore: float

    @classmethod
    def from_stats(cls, stats: VerificationStats) -> "VerificationStatsResponse":
        return cls(
            total=stats.total,
            pending=stats.pending,
            verified=stats.verified,
            rejected=stats.rejected,
            verifiedByChannel=stats.verified_by_channel,
            avgProcessingTimeHours=round(stats.avg_processing_time_hours, 2),
            avgTrustScore=round(stats.avg_trust_score, 1),
        )


class AccessLogEntryResponse(BaseModel):
    id: Optional[str]
    adminId: str
    targetUserId: str
    accessType: AccessType
    accessedAt: datetime
    ipAddress: Optional[str] = None
    userAgent: Optional[str] = None

    @classmethod
    def from_entry(cls, entry: AccessLogEntry) -> "AccessLogEntryResponse":
        return cls(
            id=entry.id,
            adminId=entry.admin_id,
            targetUserId=entry.target_user_id,
            accessType=entry.access_type,
            accessedAt=entry.accessed_at,
            ipAddress=entry.ip_address,
            userAgent=entry.user_agent,
        )


class AccessLogPageResponse(BaseModel):
    entries: List[AccessLogEntryResponse]
    total: int
    limit: int
    offset: int
    hasMore: bool


class HealthResponse(BaseModel):
    """Response model for health check endpoint."""

    status: str = Field(..., description="Service health status")
    timestamp: datetime = Field(..., description="Health check timestamp")
    version: str = Field("1.0.0", description="Service version")


class ErrorResponse(BaseModel):
    """Standard error response model."""

    error: str = Field(..., description="Error type or category")
    message: str = Field(..., description="Human-readable error message")
    correlation_id: str = Field(..., description="Request correlation ID for tracing")
    timestamp: datetime = Field(..., description="Error timestamp")
    retryable: bool = Field(False, description="Whether retrying the same request may succeed")

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "error": "AlreadyFinalized",
            "message": "oneci verification for user 42 is already verified",
            "correlation_id": "req_123456789",
            "timestamp": "2024-01-01T12:00:00Z",
            "retryable": False
        }
    })
