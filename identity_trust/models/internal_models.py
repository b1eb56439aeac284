"""Internal data models for the identity verification service."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class Channel(str, Enum):
    """Independent verification channels."""

    ONECI = "oneci"  # national identity document
    CNAM = "cnam"  # social security / employer
    FACE = "face"  # biometric selfie-to-ID match


class ChannelStatus(str, Enum):
    """Per-channel verification state."""

    NOT_SUBMITTED = "not_submitted"
    PENDING = "pending"
    PENDING_REVIEW = "pending_review"
    VERIFIED = "verified"
    REJECTED = "rejected"

    @property
    def is_terminal(self) -> bool:
        return self in (ChannelStatus.VERIFIED, ChannelStatus.REJECTED)

    @property
    def is_awaiting_decision(self) -> bool:
        return self in (ChannelStatus.PENDING, ChannelStatus.PENDING_REVIEW)


class Decision(str, Enum):
    """Outcome of an admin review or an external verifier."""

    APPROVE = "approve"
    REJECT = "reject"

    @property
    def target_status(self) -> ChannelStatus:
        if self is Decision.APPROVE:
            return ChannelStatus.VERIFIED
        return ChannelStatus.REJECTED


class AccessType(str, Enum):
    """Kind of sensitive data an administrator (or provider) examined."""

    FULL_VIEW = "full_view"
    ONECI_DATA = "oneci_data"
    CNAM_DATA = "cnam_data"
    FACE_DATA = "face_data"

    @classmethod
    def for_channel(cls, channel: Channel) -> "AccessType":
        return cls(f"{channel.value}_data")

    @property
    def channels(self) -> List[Channel]:
        """Channels whose raw payload this access type exposes."""
        if self is AccessType.FULL_VIEW:
            return list(Channel)
        return [Channel(self.value[:-len("_data")])]


class GuardDecision(str, Enum):
    """Result of a guard check in front of a protected action."""

    ALLOWED = "allowed"
    PENDING = "pending"
    BLOCKED = "blocked"


class Recommendation(str, Enum):
    """Advisory label derived from the trust score."""

    RECOMMENDED = "recommended"
    CONDITIONAL = "conditional"
    NOT_RECOMMENDED = "not_recommended"


@dataclass
class VerificationRecord:
    """Per-user verification state, owned by the record store."""

    user_id: str
    oneci_status: ChannelStatus = ChannelStatus.NOT_SUBMITTED
    cnam_status: ChannelStatus = ChannelStatus.NOT_SUBMITTED
    face_status: ChannelStatus = ChannelStatus.NOT_SUBMITTED
    oneci_verified_at: Optional[datetime] = None
    cnam_verified_at: Optional[datetime] = None
    face_verified_at: Optional[datetime] = None
    face_similarity_score: Optional[float] = None
    trust_score: int = 0  # derived, only written by the record store
    score_updated_at: Optional[datetime] = None
    admin_review_notes: Optional[str] = None
    admin_reviewed_by: Optional[str] = None
    admin_reviewed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        """Coerce raw column values into enums and check score ranges."""
        for channel in Channel:
            attr = f"{channel.value}_status"
            setattr(self, attr, ChannelStatus(getattr(self, attr)))
        if not 0 <= self.trust_score <= 100:
            raise ValueError(f"Trust score must be between 0 and 100, got {self.trust_score}")
        if self.face_similarity_score is not None and not (0.0 <= self.face_similarity_score <= 100.0):
            raise ValueError(
                f"Face similarity score must be between 0 and 100, got {self.face_similarity_score}"
            )

    def status_of(self, channel: Channel) -> ChannelStatus:
        return getattr(self, f"{channel.value}_status")

    def verified_at(self, channel: Channel) -> Optional[datetime]:
        return getattr(self, f"{channel.value}_verified_at")

    @property
    def statuses(self) -> Dict[Channel, ChannelStatus]:
        return {channel: self.status_of(channel) for channel in Channel}


@dataclass
class ProfileSignals:
    """Supporting signals read from the profile and documents subsystems."""

    documents_present: bool = False
    rental_history_present: bool = False
    alternate_id_verified: bool = False  # legacy passport verification


@dataclass
class VerificationSubmission:
    """Raw documents or biometric capture submitted for one channel."""

    user_id: str
    channel: Channel
    submitted_at: datetime
    document_refs: List[str] = field(default_factory=list)
    biometric_capture_ref: Optional[str] = None
    identity_number: Optional[str] = None  # national ID or social security number
    id: Optional[str] = None  # Database-generated ID

    def __post_init__(self):
        """Validate the payload against the channel it targets."""
        self.channel = Channel(self.channel)
        if self.channel is Channel.FACE:
            if not self.biometric_capture_ref:
                raise ValueError("Face submissions require a biometric capture reference")
        elif not self.document_refs:
            raise ValueError(f"{self.channel.value.upper()} submissions require at least one document")


@dataclass(frozen=True)
class RequestContext:
    """Where a privileged read came from."""

    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


@dataclass(frozen=True)
class AccessLogEntry:
    """Immutable record of one privileged read of sensitive data."""

    admin_id: str
    target_user_id: str
    access_type: AccessType
    accessed_at: datetime
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    id: Optional[str] = None  # Database-generated ID


@dataclass
class AccessLogFilters:
    """Compliance query filters for the access log."""

    admin_id: Optional[str] = None
    target_user_id: Optional[str] = None
    access_type: Optional[AccessType] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    limit: int = 50
    offset: int = 0


@dataclass
class AccessLogPage:
    entries: List[AccessLogEntry]
    total: int
    limit: int
    offset: int

    @property
    def has_more(self) -> bool:
        return self.offset + len(self.entries) < self.total


@dataclass
class AdminReviewDecision:
    """An administrator's decision on one channel of one user."""

    target_user_id: str
    channel: Channel
    decision: Decision
    admin_id: str
    notes: Optional[str] = None

    def __post_init__(self):
        self.channel = Channel(self.channel)
        self.decision = Decision(self.decision)
        if not self.admin_id:
            raise ValueError("admin_id is required")
        if self.decision is Decision.REJECT and not (self.notes and self.notes.strip()):
            raise ValueError("Review notes are required when rejecting a verification")


@dataclass
class VerifierCallback:
    """Result pushed by an external national-ID, CNAM or biometric provider."""

    user_id: str
    channel: Channel
    decision: Decision
    provider: str
    external_reference: Optional[str] = None
    score: Optional[float] = None

    def __post_init__(self):
        self.channel = Channel(self.channel)
        self.decision = Decision(self.decision)
        if self.score is not None and not (0.0 <= self.score <= 100.0):
            raise ValueError(f"Provider score must be between 0 and 100, got {self.score}")

    @property
    def actor_id(self) -> str:
        return f"system:{self.provider}"


@dataclass
class PendingReviewFilters:
    """Filters for the admin review queue."""

    statuses: List[ChannelStatus] = field(
        default_factory=lambda: [ChannelStatus.PENDING_REVIEW, ChannelStatus.PENDING]
    )
    channel: Optional[Channel] = None
    submitted_after: Optional[datetime] = None
    submitted_before: Optional[datetime] = None
    limit: int = 100


@dataclass
class SensitiveVerificationData:
    """Raw verification payload for one channel. Only released after an audit write."""

    user_id: str
    channel: Channel
    status: ChannelStatus
    document_refs: List[str] = field(default_factory=list)
    biometric_capture_ref: Optional[str] = None
    identity_number: Optional[str] = None
    face_similarity_score: Optional[float] = None
    submitted_at: Optional[datetime] = None


@dataclass
class GuardResult:
    decision: GuardDecision
    reason: str
    oneci_status: ChannelStatus
    next_step: Optional[str] = None

    @property
    def may_proceed(self) -> bool:
        return self.decision is not GuardDecision.BLOCKED


@dataclass
class VerificationNotification:
    """Event sent to the notification subsystem after a decision."""

    user_id: str
    channel: Channel
    status: ChannelStatus
    trust_score: int
    created_at: datetime
    notes: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        return {
            "type": "verification_decision",
            "user_id": self.user_id,
            "channel": self.channel.value,
            "status": self.status.value,
            "trust_score": self.trust_score,
            "notes": self.notes,
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class VerificationStats:
    """Aggregate review figures for the admin dashboard."""

    total: int
    pending: int
    verified: int
    rejected: int
    verified_by_channel: Dict[Channel, int]
    avg_processing_time_hours: float
    avg_trust_score: float
