"""
Administrator review workflow and external verifier callbacks.

A decision, whether from an administrator or from a provider callback:
1. writes one access entry for the data examined (before anything commits)
2. applies the transition through the record store, which recomputes the score
3. emits a notification to the affected user

Replaying a decision the channel already carries changes nothing: no second
transition, access entry or notification.
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional

from identity_trust.clients.notification_client import NotificationClient
from identity_trust.models.internal_models import (
    AccessType,
    AdminReviewDecision,
    Channel,
    ChannelStatus,
    Decision,
    PendingReviewFilters,
    RequestContext,
    VerificationNotification,
    VerificationRecord,
    VerificationStats,
    VerifierCallback,
)
from identity_trust.observability import record_decision_metrics, trace_function
from identity_trust.services.audit_logger import AccessAuditLogger
from identity_trust.services.record_store import VerificationRecordStore

logger = logging.getLogger(__name__)


class AdminReviewWorkflow:
    """State-transition service for pending verification submissions."""

    def __init__(
        self,
        store: VerificationRecordStore,
        audit_logger: AccessAuditLogger,
        notifier: Optional[NotificationClient] = None
    ):
        self.store = store
        self.audit_logger = audit_logger
        self.notifier = notifier or NotificationClient()

    async def list_pending_reviews(
        self,
        filters: Optional[PendingReviewFilters] = None
    ) -> List[VerificationRecord]:
        """Records with a channel awaiting a decision, oldest first."""
        filters = filters or PendingReviewFilters()
        records = await self.store.list_records(filters)
        logger.info(f"Listed {len(records)} verification records awaiting review")
        return records

    @trace_function("review.decide")
    async def decide(
        self,
        decision: AdminReviewDecision,
        context: Optional[RequestContext] = None
    ) -> VerificationRecord:
        """
        Apply an administrator decision.

        Raises:
            AlreadyFinalized: If the channel already carries the other decision
            InvalidTransition: If the channel was never submitted
            AuditWriteFailed: If the access entry could not be written
        """
        return await self._apply(
            user_id=decision.target_user_id,
            channel=decision.channel,
            decision=decision.decision,
            actor_id=decision.admin_id,
            access_type=AccessType.FULL_VIEW,
            notes=decision.notes,
            context=context,
            source="admin"
        )

    @trace_function("review.verifier_callback")
    async def handle_verifier_callback(
        self,
        callback: VerifierCallback,
        context: Optional[RequestContext] = None
    ) -> VerificationRecord:
        """
        Apply a result pushed by an external verifier.

        Same semantics as decide, attributed to "system:<provider>" with a
        channel-specific access type.
        """
        notes = f"{callback.provider} reference {callback.external_reference}" if callback.external_reference else None
        return await self._apply(
            user_id=callback.user_id,
            channel=callback.channel,
            decision=callback.decision,
            actor_id=callback.actor_id,
            access_type=AccessType.for_channel(callback.channel),
            notes=notes,
            context=context,
            source=callback.provider,
            similarity_score=callback.score
        )

    async def _apply(
        self,
        user_id: str,
        channel: Channel,
        decision: Decision,
        actor_id: str,
        access_type: AccessType,
        notes: Optional[str],
        context: Optional[RequestContext],
        source: str,
        similarity_score: Optional[float] = None
    ) -> VerificationRecord:
        transitioned = False

        async def log_access(_: VerificationRecord) -> None:
            nonlocal transitioned
            await self.audit_logger.record(actor_id, user_id, access_type, context)
            transitioned = True

        async def notify_user(record: VerificationRecord) -> None:
            logger.info(
                f"{actor_id} applied {decision.value} on {channel.value} for user {user_id}; "
                f"trust score now {record.trust_score}"
            )
            await self.notifier.notify(VerificationNotification(
                user_id=user_id,
                channel=channel,
                status=record.status_of(channel),
                trust_score=record.trust_score,
                notes=notes,
                created_at=datetime.now(timezone.utc)
            ))

        # notify_user runs inside the store's shielded unit, not after it returns
        record = await self.store.apply_decision(
            user_id,
            channel,
            decision,
            reviewer=actor_id,
            notes=notes,
            similarity_score=similarity_score,
            before_commit=log_access,
            after_commit=notify_user
        )

        record_decision_metrics(channel.value, decision.value, source, applied=transitioned)

        if not transitioned:
            logger.info(f"Replayed {decision.value} on {channel.value} for user {user_id}; already applied")
        return record

    async def stats(self) -> VerificationStats:
        """
        Aggregate review figures for the admin dashboard.

        Processing time runs from record creation to the latest review; the
        average trust score only counts users who earned points.
        """
        records = await self.store.list_all_records()

        def any_status(record: VerificationRecord, *statuses: ChannelStatus) -> bool:
            return any(s in statuses for s in record.statuses.values())

        reviewed = [r for r in records if r.admin_reviewed_at and r.created_at]
        processing_hours = [
            (r.admin_reviewed_at - r.created_at).total_seconds() / 3600 for r in reviewed
        ]
        scores = [r.trust_score for r in records if r.trust_score > 0]

        return VerificationStats(
            total=len(records),
            pending=sum(1 for r in records if any_status(r, ChannelStatus.PENDING, ChannelStatus.PENDING_REVIEW)),
            verified=sum(1 for r in records if any_status(r, ChannelStatus.VERIFIED)),
            rejected=sum(1 for r in records if any_status(r, ChannelStatus.REJECTED)),
            verified_by_channel={
                channel: sum(1 for r in records if r.status_of(channel) is ChannelStatus.VERIFIED)
                for channel in Channel
            },
            avg_processing_time_hours=sum(processing_hours) / len(processing_hours) if processing_hours else 0.0,
            avg_trust_score=sum(scores) / len(scores) if scores else 0.0,
        )
