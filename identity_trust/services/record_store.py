"""
Durable per-user verification state.

This module provides the VerificationRecordStore, the only writer of
verification records. It:
- creates records lazily on first submission
- applies channel transitions through the state machine
- recomputes the trust score on every write
- purges raw submission payloads once a channel reaches a terminal state
- exposes raw payloads only through an audited accessor

Writes for one user are serialised by a per-user lock. Each write runs as a
single shielded unit so a caller timeout cannot leave a half-applied
transition. Reads take no lock.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import replace
from datetime import datetime, timezone
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

from identity_trust.config import settings
from identity_trust.models.internal_models import (
    AccessType,
    Channel,
    ChannelStatus,
    Decision,
    PendingReviewFilters,
    RequestContext,
    SensitiveVerificationData,
    VerificationRecord,
    VerificationSubmission,
)
from identity_trust.observability import record_score_metrics, trace_function
from identity_trust.services.audit_logger import AccessAuditLogger, audited_read
from identity_trust.services.exceptions import (
    AlreadyFinalized,
    InvalidTransition,
    RecordNotFound,
    StoreContention,
)
from identity_trust.services.scoring import compute_score
from identity_trust.services.state_machine import submission_target, validate_transition

logger = logging.getLogger(__name__)

CommitHook = Callable[[VerificationRecord], Awaitable[None]]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class VerificationRecordStore:
    """Ground truth for verification state."""

    def __init__(
        self,
        db_manager,
        audit_logger: Optional[AccessAuditLogger] = None,
        lock_timeout: Optional[float] = None,
        lock_retries: Optional[int] = None,
        retry_base_delay: float = 0.05
    ):
        """
        Initialize the record store.

        Args:
            db_manager: Database manager exposing records, submissions and profiles
            audit_logger: Required for sensitive reads; without it they fail closed
            lock_timeout: Seconds to wait for the per-user lock per attempt
            lock_retries: Lock attempts before raising StoreContention
            retry_base_delay: Initial backoff between lock attempts
        """
        self.db = db_manager
        self.audit_logger = audit_logger
        self.lock_timeout = lock_timeout if lock_timeout is not None else settings.lock_timeout_seconds
        self.lock_retries = lock_retries or settings.lock_retry_attempts
        self.retry_base_delay = retry_base_delay
        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}

    @asynccontextmanager
    async def _user_lock(self, user_id: str):
        lock = self._locks.setdefault(user_id, asyncio.Lock())
        self._lock_users[user_id] = self._lock_users.get(user_id, 0) + 1

        try:
            for attempt in range(self.lock_retries):
                try:
                    await asyncio.wait_for(lock.acquire(), timeout=self.lock_timeout)
                    break
                except asyncio.TimeoutError:
                    if attempt < self.lock_retries - 1:
                        delay = self.retry_base_delay * (2 ** attempt)
                        logger.warning(
                            f"Write lock for user {user_id} busy (attempt {attempt + 1}/{self.lock_retries}), "
                            f"retrying in {delay}s"
                        )
                        await asyncio.sleep(delay)
            else:
                raise StoreContention(f"Could not acquire write lock for user {user_id}")

            try:
                yield
            finally:
                lock.release()
        finally:
            # drop the lock once nobody holds or waits for it
            self._lock_users[user_id] -= 1
            if not self._lock_users[user_id]:
                del self._lock_users[user_id]
                self._locks.pop(user_id, None)

    # Reads

    async def get_record(self, user_id: str) -> VerificationRecord:
        """
        Get the verification record for a user.

        Raises:
            RecordNotFound: If the user never submitted anything
        """
        record = await self.db.records.get(user_id)
        if record is None:
            raise RecordNotFound(user_id)
        return record

    async def get_record_or_default(self, user_id: str) -> VerificationRecord:
        """Get the record, or an unsaved all-not_submitted one."""
        try:
            return await self.get_record(user_id)
        except RecordNotFound:
            return VerificationRecord(user_id=user_id)

    async def score_breakdown(self, user_id: str) -> Tuple[VerificationRecord, int, Dict[str, int]]:
        """Current record with its score and per-criterion breakdown."""
        record = await self.get_record_or_default(user_id)
        signals = await self.db.profiles.get_signals(user_id)
        score, breakdown = compute_score(record, signals)
        if score != record.trust_score:
            logger.warning(
                f"Stored trust score {record.trust_score} for user {user_id} lags signals ({score}); "
                f"a score refresh is due"
            )
        return record, score, breakdown

    async def list_records(self, filters: PendingReviewFilters) -> List[VerificationRecord]:
        """Records with at least one channel in one of the requested statuses."""
        return await self.db.records.list_by_status(
            filters.statuses,
            channel=filters.channel,
            updated_after=filters.submitted_after,
            updated_before=filters.submitted_before,
            limit=filters.limit
        )

    async def list_all_records(self) -> List[VerificationRecord]:
        return await self.db.records.list_all()

    @audited_read
    async def read_sensitive_data(
        self,
        admin_id: str,
        target_user_id: str,
        access_type: AccessType,
        context: Optional[RequestContext] = None
    ) -> List[SensitiveVerificationData]:
        """
        Raw submission payloads for the channels covered by access_type.

        Only reachable after the access entry has been written.
        """
        record = await self.get_record_or_default(target_user_id)
        results = []
        for channel in access_type.channels:
            submission = await self.db.submissions.get_latest(target_user_id, channel)
            results.append(SensitiveVerificationData(
                user_id=target_user_id,
                channel=channel,
                status=record.status_of(channel),
                document_refs=submission.document_refs if submission else [],
                biometric_capture_ref=submission.biometric_capture_ref if submission else None,
                identity_number=submission.identity_number if submission else None,
                face_similarity_score=record.face_similarity_score if channel is Channel.FACE else None,
                submitted_at=submission.submitted_at if submission else None,
            ))
        return results

    # Writes

    @trace_function("record_store.submit")
    async def submit(self, submission: VerificationSubmission) -> VerificationRecord:
        """
        Register a submission and move its channel to pending or pending_review.

        Creates the record on first submission.

        Raises:
            InvalidTransition: If the channel is verified or already awaiting a decision
        """
        return await asyncio.shield(self._submit(submission))

    async def _submit(self, submission: VerificationSubmission) -> VerificationRecord:
        user_id = submission.user_id
        channel = submission.channel

        async with self._user_lock(user_id):
            now = _utcnow()
            record = await self.db.records.get(user_id)
            expected = record.statuses if record else None
            if record is None:
                record = VerificationRecord(user_id=user_id, created_at=now)

            current = record.status_of(channel)
            target = submission_target(channel, current)

            changes = {f"{channel.value}_status": target, "updated_at": now}
            if channel is Channel.FACE:
                changes["face_similarity_score"] = None
            updated = replace(record, **changes)

            await self.db.submissions.save(submission)
            try:
                stored = await self._commit(updated, expected)
            except Exception:
                logger.error(f"Record write failed after storing {channel.value} submission for {user_id}; discarding payload")
                await self.db.submissions.purge(user_id, channel)
                raise

            logger.info(f"User {user_id} submitted {channel.value}: {current.value} -> {target.value}")
            return stored

    @trace_function("record_store.apply_decision")
    async def apply_decision(
        self,
        user_id: str,
        channel: Channel,
        decision: Decision,
        *,
        reviewer: Optional[str] = None,
        notes: Optional[str] = None,
        similarity_score: Optional[float] = None,
        before_commit: Optional[CommitHook] = None,
        after_commit: Optional[CommitHook] = None
    ) -> VerificationRecord:
        """
        Move a channel to verified or rejected.

        Re-applying the decision a channel already carries is a no-op that
        returns the current record without calling before_commit.

        Args:
            user_id: Target user
            channel: Channel being decided
            decision: approve or reject
            reviewer: Admin id or "system:<provider>" recorded as reviewer
            notes: Review notes
            similarity_score: Provider score, stored for the face channel
            before_commit: Coroutine run under the user lock just before a
                real transition is written; raising aborts the transition
            after_commit: Coroutine run once a real transition is written,
                after the lock is released but still shielded from the caller
                being cancelled

        Raises:
            InvalidTransition: If the channel was never submitted
            AlreadyFinalized: If the channel already carries the other decision
        """
        return await asyncio.shield(self._decide(
            user_id, Channel(channel), Decision(decision),
            reviewer, notes, similarity_score, before_commit, after_commit
        ))

    async def _decide(
        self,
        user_id: str,
        channel: Channel,
        decision: Decision,
        reviewer: Optional[str],
        notes: Optional[str],
        similarity_score: Optional[float],
        before_commit: Optional[CommitHook],
        after_commit: Optional[CommitHook]
    ) -> VerificationRecord:
        record, applied = await self._apply_decision(
            user_id, channel, decision, reviewer, notes, similarity_score, before_commit
        )
        if applied and after_commit is not None:
            await after_commit(record)
        return record

    async def _apply_decision(
        self,
        user_id: str,
        channel: Channel,
        decision: Decision,
        reviewer: Optional[str],
        notes: Optional[str],
        similarity_score: Optional[float],
        before_commit: Optional[CommitHook]
    ) -> Tuple[VerificationRecord, bool]:
        target = decision.target_status

        async with self._user_lock(user_id):
            record = await self.db.records.get(user_id)
            if record is None:
                raise InvalidTransition(channel, ChannelStatus.NOT_SUBMITTED, target)

            current = record.status_of(channel)
            if current is target:
                logger.info(f"{channel.value} for user {user_id} already {target.value}; nothing to apply")
                await self._purge_payload(user_id, channel)
                return record, False
            if current.is_terminal:
                raise AlreadyFinalized(user_id, channel, current)
            validate_transition(channel, current, target)

            now = _utcnow()
            changes = {f"{channel.value}_status": target, "updated_at": now}
            if target is ChannelStatus.VERIFIED and record.verified_at(channel) is None:
                changes[f"{channel.value}_verified_at"] = now
            if channel is Channel.FACE and similarity_score is not None:
                changes["face_similarity_score"] = similarity_score
            if reviewer:
                changes.update(
                    admin_reviewed_by=reviewer,
                    admin_review_notes=notes,
                    admin_reviewed_at=now
                )
            updated = replace(record, **changes)

            if before_commit is not None:
                await before_commit(updated)

            stored = await self._commit(updated, record.statuses)
            await self._purge_payload(user_id, channel)

            logger.info(f"User {user_id} {channel.value}: {current.value} -> {target.value} (score {stored.trust_score})")
            return stored, True

    @trace_function("record_store.refresh_score")
    async def refresh_score(self, user_id: str) -> VerificationRecord:
        """
        Recompute and store the trust score after profile signals changed.

        Raises:
            RecordNotFound: If the user has no record
        """
        return await asyncio.shield(self._refresh_score(user_id))

    async def _refresh_score(self, user_id: str) -> VerificationRecord:
        async with self._user_lock(user_id):
            record = await self.get_record(user_id)
            return await self._commit(record, record.statuses)

    async def _commit(
        self,
        record: VerificationRecord,
        expected: Optional[Dict[Channel, ChannelStatus]] = None
    ) -> VerificationRecord:
        """
        Recompute the score and write the record.

        With expected statuses the write only lands if the stored row still
        carries them, so a writer in another process cannot be overwritten.
        """
        signals = await self.db.profiles.get_signals(record.user_id)
        score, _ = compute_score(record, signals)
        scored = replace(record, trust_score=score, score_updated_at=_utcnow())
        if expected is None:
            stored = await self.db.records.upsert(scored)
        else:
            stored = await self.db.records.update_if_unchanged(scored, expected)
            if stored is None:
                raise StoreContention(f"Verification record for user {record.user_id} changed concurrently")
        record_score_metrics(score)
        return stored

    async def _purge_payload(self, user_id: str, channel: Channel) -> None:
        try:
            purged = await self.db.submissions.purge(user_id, channel)
        except Exception as e:
            logger.error(f"Failed to purge {channel.value} payload for user {user_id}: {e}")
            return
        if purged:
            logger.info(f"Purged {purged} {channel.value} payload(s) for user {user_id}")
