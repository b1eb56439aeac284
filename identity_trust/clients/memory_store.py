"""In-memory repositories mirroring the Supabase ones.

Used by the test suite and by local development with STORAGE_BACKEND=memory.
Every read and write copies, so callers never share mutable state with the store.
"""

import copy
import itertools
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence, Tuple

from identity_trust.clients.supabase_client import DatabaseManager
from identity_trust.models.internal_models import (
    AccessLogEntry,
    AccessLogFilters,
    Channel,
    ChannelStatus,
    ProfileSignals,
    VerificationRecord,
    VerificationSubmission,
)


class InMemoryVerificationRecordRepository:

    def __init__(self):
        self._records: Dict[str, VerificationRecord] = {}

    async def get(self, user_id: str) -> Optional[VerificationRecord]:
        record = self._records.get(user_id)
        return copy.deepcopy(record) if record else None

    async def upsert(self, record: VerificationRecord) -> VerificationRecord:
        self._records[record.user_id] = copy.deepcopy(record)
        return copy.deepcopy(record)

    async def update_if_unchanged(
        self,
        record: VerificationRecord,
        expected: Dict[Channel, ChannelStatus]
    ) -> Optional[VerificationRecord]:
        current = self._records.get(record.user_id)
        if current is None or any(current.status_of(c) is not s for c, s in expected.items()):
            return None
        return await self.upsert(record)

    async def list_all(self) -> List[VerificationRecord]:
        return [copy.deepcopy(r) for r in self._records.values()]

    async def list_by_status(
        self,
        statuses: Sequence[ChannelStatus],
        channel: Optional[Channel] = None,
        updated_after: Optional[datetime] = None,
        updated_before: Optional[datetime] = None,
        limit: int = 100
    ) -> List[VerificationRecord]:
        channels = [channel] if channel else list(Channel)
        results = []
        for record in self._records.values():
            if not any(record.status_of(c) in statuses for c in channels):
                continue
            if updated_after and (record.updated_at is None or record.updated_at < updated_after):
                continue
            if updated_before and (record.updated_at is None or record.updated_at > updated_before):
                continue
            results.append(copy.deepcopy(record))
        results.sort(key=lambda r: r.updated_at or datetime.min.replace(tzinfo=timezone.utc))
        return results[:limit]


class InMemorySubmissionRepository:

    def __init__(self):
        self._submissions: List[VerificationSubmission] = []
        self._ids = itertools.count(1)

    async def save(self, submission: VerificationSubmission) -> VerificationSubmission:
        stored = copy.deepcopy(submission)
        stored.id = str(next(self._ids))
        self._submissions.append(stored)
        return copy.deepcopy(stored)

    async def get_latest(self, user_id: str, channel: Channel) -> Optional[VerificationSubmission]:
        matches = [
            s for s in self._submissions
            if s.user_id == user_id and s.channel is channel
        ]
        if not matches:
            return None
        return copy.deepcopy(max(matches, key=lambda s: s.submitted_at))

    async def purge(self, user_id: str, channel: Channel) -> int:
        before = len(self._submissions)
        self._submissions = [
            s for s in self._submissions
            if not (s.user_id == user_id and s.channel is channel)
        ]
        return before - len(self._submissions)

    def retained_for(self, user_id: str) -> List[VerificationSubmission]:
        return [copy.deepcopy(s) for s in self._submissions if s.user_id == user_id]


class InMemoryAccessLogRepository:
    """Append-only list. Entries are frozen dataclasses."""

    def __init__(self):
        self._entries: List[AccessLogEntry] = []
        self._ids = itertools.count(1)

    async def insert(self, entry: AccessLogEntry) -> AccessLogEntry:
        stored = AccessLogEntry(
            id=str(next(self._ids)),
            admin_id=entry.admin_id,
            target_user_id=entry.target_user_id,
            access_type=entry.access_type,
            accessed_at=entry.accessed_at,
            ip_address=entry.ip_address,
            user_agent=entry.user_agent,
        )
        self._entries.append(stored)
        return stored

    async def query(self, filters: AccessLogFilters) -> Tuple[List[AccessLogEntry], int]:
        matches = [
            e for e in self._entries
            if (filters.admin_id is None or e.admin_id == filters.admin_id)
            and (filters.target_user_id is None or e.target_user_id == filters.target_user_id)
            and (filters.access_type is None or e.access_type is filters.access_type)
            and (filters.start is None or e.accessed_at >= filters.start)
            and (filters.end is None or e.accessed_at <= filters.end)
        ]
        matches.sort(key=lambda e: (e.accessed_at, int(e.id)), reverse=True)
        page = matches[filters.offset:filters.offset + filters.limit]
        return page, len(matches)

    @property
    def entries(self) -> List[AccessLogEntry]:
        return list(self._entries)


class InMemoryProfileRepository:

    def __init__(self):
        self._signals: Dict[str, ProfileSignals] = {}

    async def get_signals(self, user_id: str) -> ProfileSignals:
        return copy.deepcopy(self._signals.get(user_id, ProfileSignals()))

    def set_signals(self, user_id: str, signals: ProfileSignals) -> None:
        self._signals[user_id] = copy.deepcopy(signals)


class InMemoryDatabaseManager(DatabaseManager):
    """Database manager backed by process memory instead of Supabase."""

    def __init__(self):
        self.client = None
        self.records = InMemoryVerificationRecordRepository()
        self.submissions = InMemorySubmissionRepository()
        self.access_logs = InMemoryAccessLogRepository()
        self.profiles = InMemoryProfileRepository()

    async def health_check(self) -> bool:
        return True
