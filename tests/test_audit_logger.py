"""
Tests for the sensitive-access audit log.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from identity_trust.models.internal_models import (
    AccessLogEntry,
    AccessLogFilters,
    AccessType,
    Channel,
    RequestContext,
)
from identity_trust.services.audit_logger import AccessAuditLogger
from identity_trust.services.exceptions import AuditWriteFailed
from identity_trust.services.record_store import VerificationRecordStore
from identity_trust.utils.report_utils import ReportFormatError, sanitize_cell

from conftest import make_submission


class TestAccessAuditLogger:
    """Test cases for AccessAuditLogger."""

    @pytest.fixture
    def audit_logger(self, db):
        return AccessAuditLogger(db, max_retries=2, base_delay=0.0, page_size_max=3)

    @pytest.fixture
    def context(self):
        return RequestContext(ip_address="10.0.0.8", user_agent="Mozilla/5.0")

    class TestRecord:
        """Tests for writing entries."""

        @pytest.mark.asyncio
        async def test_record_persists_entry(self, audit_logger, db, context):
            before = datetime.now(timezone.utc)
            entry = await audit_logger.record("admin-1", "user-1", AccessType.ONECI_DATA, context)
            after = datetime.now(timezone.utc)

            assert entry.id is not None
            assert entry.admin_id == "admin-1"
            assert entry.target_user_id == "user-1"
            assert entry.access_type is AccessType.ONECI_DATA
            assert entry.ip_address == "10.0.0.8"
            assert entry.user_agent == "Mozilla/5.0"
            assert before <= entry.accessed_at <= after
            assert db.access_logs.entries == [entry]

        @pytest.mark.asyncio
        async def test_record_accepts_raw_access_type(self, audit_logger):
            entry = await audit_logger.record("admin-1", "user-1", "full_view")

            assert entry.access_type is AccessType.FULL_VIEW
            assert entry.ip_address is None

        @pytest.mark.asyncio
        async def test_record_requires_ids(self, audit_logger):
            with pytest.raises(ValueError):
                await audit_logger.record("", "user-1", AccessType.FULL_VIEW)

        @pytest.mark.asyncio
        async def test_transient_failure_is_retried(self, audit_logger, db):
            insert = db.access_logs.insert
            calls = []

            async def fail_once(entry):
                calls.append(entry)
                if len(calls) == 1:
                    raise RuntimeError("timeout")
                return await insert(entry)

            db.access_logs.insert = fail_once
            entry = await audit_logger.record("admin-1", "user-1", AccessType.FACE_DATA)

            assert len(calls) == 2
            assert entry.id == "1"

        @pytest.mark.asyncio
        async def test_persistent_failure_fails_closed(self, audit_logger, db):
            db.access_logs.insert = AsyncMock(side_effect=RuntimeError("database unavailable"))

            with pytest.raises(AuditWriteFailed) as exc_info:
                await audit_logger.record("admin-1", "user-1", AccessType.FULL_VIEW)

            assert exc_info.value.retryable
            assert db.access_logs.insert.await_count == 2

    class TestQuery:
        """Tests for compliance queries."""

        @pytest.mark.asyncio
        async def test_pagination_newest_first(self, audit_logger):
            for i in range(5):
                await audit_logger.record(f"admin-{i % 2}", "user-1", AccessType.FULL_VIEW)

            first = await audit_logger.query(AccessLogFilters(limit=2))
            last = await audit_logger.query(AccessLogFilters(limit=2, offset=4))

            assert first.total == 5
            assert [e.id for e in first.entries] == ["5", "4"]
            assert first.has_more
            assert [e.id for e in last.entries] == ["1"]
            assert not last.has_more

        @pytest.mark.asyncio
        async def test_filters(self, audit_logger):
            await audit_logger.record("admin-1", "user-1", AccessType.ONECI_DATA)
            await audit_logger.record("admin-2", "user-1", AccessType.FACE_DATA)
            await audit_logger.record("admin-1", "user-2", AccessType.FACE_DATA)

            by_admin = await audit_logger.query(AccessLogFilters(admin_id="admin-1"))
            by_type = await audit_logger.query(AccessLogFilters(access_type=AccessType.FACE_DATA))
            by_target = await audit_logger.query(
                AccessLogFilters(target_user_id="user-1", access_type=AccessType.ONECI_DATA)
            )

            assert by_admin.total == 2
            assert by_type.total == 2
            assert by_target.total == 1

        @pytest.mark.asyncio
        async def test_time_range(self, audit_logger):
            await audit_logger.record("admin-1", "user-1", AccessType.FULL_VIEW)
            now = datetime.now(timezone.utc)

            past = await audit_logger.query(AccessLogFilters(end=now - timedelta(hours=1)))
            recent = await audit_logger.query(AccessLogFilters(start=now - timedelta(hours=1)))

            assert past.total == 0
            assert recent.total == 1

        @pytest.mark.asyncio
        async def test_inverted_range_is_rejected(self, audit_logger):
            now = datetime.now(timezone.utc)

            with pytest.raises(ValueError):
                await audit_logger.query(AccessLogFilters(start=now, end=now - timedelta(days=1)))

        @pytest.mark.asyncio
        async def test_page_size_is_clamped(self, audit_logger):
            filters = AccessLogFilters(limit=1000)

            page = await audit_logger.query(filters)

            assert page.limit == 3
            assert filters.limit == 1000

    class TestExport:
        """Tests for the delimited compliance report."""

        @pytest.mark.asyncio
        async def test_export_covers_every_page(self, audit_logger):
            for _ in range(7):
                await audit_logger.record("admin-1", "user-1", AccessType.FULL_VIEW)

            report = await audit_logger.export_report(AccessLogFilters(limit=1, offset=5))
            lines = report.strip("\n").split("\n")

            assert lines[0] == "id,accessed_at,admin_id,target_user_id,access_type,ip_address,user_agent"
            assert len(lines) == 8

        @pytest.mark.asyncio
        async def test_export_ignores_entries_written_while_paging(self, audit_logger, db):
            for _ in range(7):
                await audit_logger.record("admin-1", "user-1", AccessType.FULL_VIEW)
            query = db.access_logs.query

            async def query_then_write(filters):
                page = await query(filters)
                await db.access_logs.insert(AccessLogEntry(
                    admin_id="admin-2",
                    target_user_id="user-2",
                    access_type=AccessType.FACE_DATA,
                    accessed_at=datetime.now(timezone.utc) + timedelta(seconds=5)
                ))
                return page

            db.access_logs.query = query_then_write
            report = await audit_logger.export_report()

            ids = [line.split(",")[0] for line in report.strip("\n").split("\n")[1:]]
            assert sorted(ids, key=int) == [str(i) for i in range(1, 8)]
            assert "admin-2" not in report

        @pytest.mark.asyncio
        async def test_export_neutralises_formulas(self, audit_logger):
            await audit_logger.record(
                "admin-1", "user-1", AccessType.FULL_VIEW,
                RequestContext(ip_address="10.0.0.1", user_agent="=1+1")
            )

            report = await audit_logger.export_report(delimiter=";")
            row = report.strip("\n").split("\n")[1].split(";")

            assert row[4] == "full_view"
            assert row[5] == "10.0.0.1"
            assert row[6] == "'=1+1"

        @pytest.mark.asyncio
        async def test_export_rejects_unknown_delimiter(self, audit_logger):
            with pytest.raises(ReportFormatError):
                await audit_logger.export_report(delimiter="#")

        def test_sanitize_cell(self):
            assert sanitize_cell(None) == ""
            assert sanitize_cell("@SUM(A1)") == "'@SUM(A1)"
            assert sanitize_cell(AccessType.CNAM_DATA) == "cnam_data"
            assert sanitize_cell(datetime(2024, 1, 2, tzinfo=timezone.utc)) == "2024-01-02T00:00:00+00:00"


class TestAuditedRead:
    """Test cases for the audited sensitive-data accessor."""

    @pytest.mark.asyncio
    async def test_exactly_one_entry_before_release(self, services, db, user_id, admin_id):
        await services.store.submit(make_submission(user_id, Channel.ONECI))
        seen_entries = []
        get_latest = db.submissions.get_latest

        async def observe(*args):
            seen_entries.append(len(db.access_logs.entries))
            return await get_latest(*args)

        db.submissions.get_latest = observe

        items = await services.store.read_sensitive_data(admin_id, user_id, AccessType.ONECI_DATA)
        released_at = datetime.now(timezone.utc)

        assert seen_entries == [1]
        assert len(items) == 1
        assert items[0].document_refs == [f"documents/{user_id}/oneci-front.jpg"]
        assert items[0].identity_number == "CI0012345678"

        entries = db.access_logs.entries
        assert len(entries) == 1
        assert entries[0].admin_id == admin_id
        assert entries[0].access_type is AccessType.ONECI_DATA
        assert entries[0].accessed_at <= released_at

    @pytest.mark.asyncio
    async def test_full_view_covers_every_channel(self, services, user_id, admin_id):
        await services.store.submit(make_submission(user_id, Channel.FACE))

        items = await services.store.read_sensitive_data(admin_id, user_id, AccessType.FULL_VIEW)

        assert [item.channel for item in items] == list(Channel)
        face = items[-1]
        assert face.biometric_capture_ref == f"captures/{user_id}/selfie.jpg"

    @pytest.mark.asyncio
    async def test_failed_audit_write_releases_nothing(self, services, db, user_id, admin_id):
        await services.store.submit(make_submission(user_id, Channel.ONECI))
        db.access_logs.insert = AsyncMock(side_effect=RuntimeError("database unavailable"))
        db.submissions.get_latest = AsyncMock()

        with pytest.raises(AuditWriteFailed):
            await services.store.read_sensitive_data(admin_id, user_id, AccessType.FULL_VIEW)

        db.submissions.get_latest.assert_not_called()

    @pytest.mark.asyncio
    async def test_store_without_audit_logger_fails_closed(self, db, user_id, admin_id):
        store = VerificationRecordStore(db)

        with pytest.raises(AuditWriteFailed):
            await store.read_sensitive_data(admin_id, user_id, AccessType.FULL_VIEW)
