"""Supabase client for verification state, submissions and the access log."""

import asyncio
import logging
from dataclasses import replace
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

from supabase import create_client, Client
from postgrest.exceptions import APIError

from ..config import settings
from ..models.internal_models import (
    AccessLogEntry,
    AccessLogFilters,
    AccessType,
    Channel,
    ChannelStatus,
    ProfileSignals,
    VerificationRecord,
    VerificationSubmission,
)

logger = logging.getLogger(__name__)

RECORD_TIMESTAMP_FIELDS = (
    "oneci_verified_at",
    "cnam_verified_at",
    "face_verified_at",
    "score_updated_at",
    "admin_reviewed_at",
    "created_at",
    "updated_at",
)


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromisoformat(value.replace('Z', '+00:00'))


def _format_timestamp(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def record_to_row(record: VerificationRecord) -> Dict[str, Any]:
    """Serialize a verification record to a user_verifications row."""
    row: Dict[str, Any] = {
        "user_id": record.user_id,
        "oneci_status": record.oneci_status.value,
        "cnam_status": record.cnam_status.value,
        "face_status": record.face_status.value,
        "face_similarity_score": record.face_similarity_score,
        "trust_score": record.trust_score,
        "admin_review_notes": record.admin_review_notes,
        "admin_reviewed_by": record.admin_reviewed_by,
    }
    for name in RECORD_TIMESTAMP_FIELDS:
        row[name] = _format_timestamp(getattr(record, name))
    return row


def record_from_row(row: Dict[str, Any]) -> VerificationRecord:
    """Build a verification record from a user_verifications row."""
    values = {name: _parse_timestamp(row.get(name)) for name in RECORD_TIMESTAMP_FIELDS}
    return VerificationRecord(
        user_id=row["user_id"],
        oneci_status=row.get("oneci_status") or ChannelStatus.NOT_SUBMITTED,
        cnam_status=row.get("cnam_status") or ChannelStatus.NOT_SUBMITTED,
        face_status=row.get("face_status") or ChannelStatus.NOT_SUBMITTED,
        face_similarity_score=row.get("face_similarity_score"),
        trust_score=row.get("trust_score") or 0,
        admin_review_notes=row.get("admin_review_notes"),
        admin_reviewed_by=row.get("admin_reviewed_by"),
        **values
    )


class SupabaseClient:
    """Client for Supabase database operations."""

    def __init__(self, url: Optional[str] = None, key: Optional[str] = None):
        """Initialize Supabase client with configuration."""
        self._client: Optional[Client] = None
        self._url = url or settings.supabase_url
        self._key = key or settings.supabase_key

    @property
    def client(self) -> Client:
        """Get or create Supabase client instance."""
        if self._client is None:
            self._client = create_client(self._url, self._key)
        return self._client

    async def health_check(self) -> bool:
        """Check if database connection is healthy."""
        try:
            self.client.table("user_verifications").select("user_id", count="exact").limit(0).execute()
            return True
        except Exception as e:
            logger.error(f"Database health check failed: {e}")
            return False


class VerificationRecordRepository:
    """Repository for per-user verification records."""

    table = "user_verifications"

    def __init__(self, supabase_client: SupabaseClient):
        self.client = supabase_client

    async def get(self, user_id: str) -> Optional[VerificationRecord]:
        """Retrieve the verification record for a user."""
        try:
            result = self.client.client.table(self.table).select("*").eq("user_id", user_id).execute()
            if not result.data:
                return None
            return record_from_row(result.data[0])
        except APIError as e:
            logger.error(f"Database error retrieving verification record for {user_id}: {e}")
            raise

    async def upsert(self, record: VerificationRecord) -> VerificationRecord:
        """Write the whole record in a single statement."""
        try:
            result = self.client.client.table(self.table).upsert(
                record_to_row(record),
                on_conflict="user_id"
            ).execute()

            if not result.data:
                raise ValueError("Failed to upsert verification record")

            logger.info(f"Upserted verification record for user {record.user_id}")
            return record_from_row(result.data[0])

        except APIError as e:
            logger.error(f"Database error upserting verification record for {record.user_id}: {e}")
            raise

    async def update_if_unchanged(
        self,
        record: VerificationRecord,
        expected: Dict[Channel, ChannelStatus]
    ) -> Optional[VerificationRecord]:
        """
        Write the record only if its channel statuses still match expected.

        Returns None when another writer changed the row first.
        """
        try:
            query = self.client.client.table(self.table).update(record_to_row(record)).eq("user_id", record.user_id)
            for channel, status in expected.items():
                query = query.eq(f"{channel.value}_status", status.value)
            result = query.execute()

            if not result.data:
                logger.warning(f"Verification record for {record.user_id} changed concurrently; update skipped")
                return None
            return record_from_row(result.data[0])

        except APIError as e:
            logger.error(f"Database error updating verification record for {record.user_id}: {e}")
            raise

    async def list_all(self) -> List[VerificationRecord]:
        """Every verification record, for aggregate statistics."""
        try:
            result = self.client.client.table(self.table).select("*").execute()
            return [record_from_row(row) for row in result.data]
        except APIError as e:
            logger.error(f"Database error listing verification records: {e}")
            raise

    async def list_by_status(
        self,
        statuses: Sequence[ChannelStatus],
        channel: Optional[Channel] = None,
        updated_after: Optional[datetime] = None,
        updated_before: Optional[datetime] = None,
        limit: int = 100
    ) -> List[VerificationRecord]:
        """List records with at least one matching channel status, oldest first."""
        channels = [channel] if channel else list(Channel)
        status_list = ",".join(status.value for status in statuses)
        clause = ",".join(f"{c.value}_status.in.({status_list})" for c in channels)

        try:
            query = self.client.client.table(self.table).select("*").or_(clause)
            if updated_after:
                query = query.gte("updated_at", updated_after.isoformat())
            if updated_before:
                query = query.lte("updated_at", updated_before.isoformat())
            result = query.order("updated_at").limit(limit).execute()
            return [record_from_row(row) for row in result.data]
        except APIError as e:
            logger.error(f"Database error listing verification records: {e}")
            raise


class SubmissionRepository:
    """Repository for raw submission payloads awaiting a decision."""

    table = "verification_submissions"

    def __init__(self, supabase_client: SupabaseClient):
        self.client = supabase_client

    async def save(self, submission: VerificationSubmission) -> VerificationSubmission:
        """Store a submission payload."""
        data = {
            "user_id": submission.user_id,
            "channel": submission.channel.value,
            "document_refs": submission.document_refs,
            "biometric_capture_ref": submission.biometric_capture_ref,
            "identity_number": submission.identity_number,
            "submitted_at": submission.submitted_at.isoformat(),
        }
        try:
            result = self.client.client.table(self.table).insert(data).execute()
            if not result.data:
                raise ValueError("Failed to store submission")
            return replace(submission, id=str(result.data[0]["id"]))
        except APIError as e:
            logger.error(f"Database error storing {submission.channel.value} submission for {submission.user_id}: {e}")
            raise

    async def get_latest(self, user_id: str, channel: Channel) -> Optional[VerificationSubmission]:
        """Most recent retained submission for a channel."""
        try:
            result = (
                self.client.client.table(self.table)
                .select("*")
                .eq("user_id", user_id)
                .eq("channel", channel.value)
                .order("submitted_at", desc=True)
                .limit(1)
                .execute()
            )
            if not result.data:
                return None
            row = result.data[0]
            return VerificationSubmission(
                id=str(row["id"]),
                user_id=row["user_id"],
                channel=Channel(row["channel"]),
                document_refs=row.get("document_refs") or [],
                biometric_capture_ref=row.get("biometric_capture_ref"),
                identity_number=row.get("identity_number"),
                submitted_at=_parse_timestamp(row["submitted_at"]),
            )
        except APIError as e:
            logger.error(f"Database error retrieving {channel.value} submission for {user_id}: {e}")
            raise

    async def purge(self, user_id: str, channel: Channel) -> int:
        """Delete every retained payload for a channel. Returns the number removed."""
        try:
            result = (
                self.client.client.table(self.table)
                .delete()
                .eq("user_id", user_id)
                .eq("channel", channel.value)
                .execute()
            )
            purged = len(result.data or [])
            logger.info(f"Purged {purged} {channel.value} submission(s) for user {user_id}")
            return purged
        except APIError as e:
            logger.error(f"Database error purging {channel.value} submissions for {user_id}: {e}")
            raise


class AccessLogRepository:
    """Append-only repository for sensitive data access entries."""

    table = "verification_access_log"

    def __init__(self, supabase_client: SupabaseClient):
        self.client = supabase_client

    async def insert(self, entry: AccessLogEntry) -> AccessLogEntry:
        """Append one access entry."""
        data = {
            "admin_id": entry.admin_id,
            "target_user_id": entry.target_user_id,
            "access_type": entry.access_type.value,
            "accessed_at": entry.accessed_at.isoformat(),
            "ip_address": entry.ip_address,
            "user_agent": entry.user_agent,
        }
        result = self.client.client.table(self.table).insert(data).execute()
        if not result.data:
            raise ValueError("Failed to create access log entry")
        return replace(entry, id=str(result.data[0]["id"]))

    async def query(self, filters: AccessLogFilters) -> Tuple[List[AccessLogEntry], int]:
        """Return one page of entries, newest first, with the total match count."""
        try:
            query = self.client.client.table(self.table).select("*", count="exact")
            if filters.admin_id:
                query = query.eq("admin_id", filters.admin_id)
            if filters.target_user_id:
                query = query.eq("target_user_id", filters.target_user_id)
            if filters.access_type:
                query = query.eq("access_type", filters.access_type.value)
            if filters.start:
                query = query.gte("accessed_at", filters.start.isoformat())
            if filters.end:
                query = query.lte("accessed_at", filters.end.isoformat())

            result = (
                query.order("accessed_at", desc=True)
                .range(filters.offset, filters.offset + filters.limit - 1)
                .execute()
            )

            entries = [
                AccessLogEntry(
                    id=str(row["id"]),
                    admin_id=row["admin_id"],
                    target_user_id=row["target_user_id"],
                    access_type=AccessType(row["access_type"]),
                    accessed_at=_parse_timestamp(row["accessed_at"]),
                    ip_address=row.get("ip_address"),
                    user_agent=row.get("user_agent"),
                )
                for row in result.data
            ]
            return entries, result.count or 0

        except APIError as e:
            logger.error(f"Database error querying access log: {e}")
            raise


class ProfileRepository:
    """Read-only access to the profile signals that feed the trust score."""

    def __init__(self, supabase_client: SupabaseClient):
        self.client = supabase_client

    async def get_signals(self, user_id: str) -> ProfileSignals:
        """Collect document, rental history and alternate ID signals for a user."""
        try:
            db = self.client.client
            profile = db.table("profiles").select("passport_verified").eq("id", user_id).execute()
            documents = (
                db.table("user_documents")
                .select("id", count="exact")
                .eq("user_id", user_id)
                .limit(0)
                .execute()
            )
            history = (
                db.table("rental_history_attestations")
                .select("id", count="exact")
                .eq("user_id", user_id)
                .limit(0)
                .execute()
            )
            return ProfileSignals(
                documents_present=(documents.count or 0) > 0,
                rental_history_present=(history.count or 0) > 0,
                alternate_id_verified=bool(profile.data and profile.data[0].get("passport_verified")),
            )
        except APIError as e:
            logger.error(f"Database error reading profile signals for {user_id}: {e}")
            raise


class DatabaseManager:
    """High-level database manager that coordinates repositories."""

    def __init__(self, client: Optional[SupabaseClient] = None):
        """Initialize database manager with client and repositories."""
        self.client = client or SupabaseClient()
        self.records = VerificationRecordRepository(self.client)
        self.submissions = SubmissionRepository(self.client)
        self.access_logs = AccessLogRepository(self.client)
        self.profiles = ProfileRepository(self.client)

    async def health_check(self) -> bool:
        """Check overall database health."""
        return await self.client.health_check()

    async def retry_operation(self, operation, max_retries: int = 3, base_delay: float = 0.1):
        """Retry database operations with exponential backoff."""
        last_exception = None

        for attempt in range(max_retries):
            try:
                return await operation()
            except Exception as e:
                last_exception = e
                if attempt < max_retries - 1:
                    delay = base_delay * (2 ** attempt)
                    logger.warning(f"Database operation failed (attempt {attempt + 1}/{max_retries}), retrying in {delay}s: {e}")
                    await asyncio.sleep(delay)
                else:
                    logger.error(f"Database operation failed after {max_retries} attempts: {e}")

        raise last_exception
