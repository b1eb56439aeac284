"""
Append-only audit log of privileged reads of sensitive verification data.

This module provides:
- AccessAuditLogger, which records and queries access entries
- audited_read, the decorator that makes the audit write a precondition of
  every sensitive-field accessor

Entries are written before the data they describe is released. When the
write fails the read fails too.
"""

import logging
from dataclasses import replace
from datetime import datetime, timezone
from functools import wraps
from typing import Optional

from identity_trust.config import settings
from identity_trust.models.internal_models import (
    AccessLogEntry,
    AccessLogFilters,
    AccessLogPage,
    AccessType,
    RequestContext,
)
from identity_trust.observability import record_audit_metrics
from identity_trust.services.exceptions import AuditWriteFailed
from identity_trust.utils.report_utils import format_delimited_report

logger = logging.getLogger(__name__)

REPORT_HEADERS = (
    "id",
    "accessed_at",
    "admin_id",
    "target_user_id",
    "access_type",
    "ip_address",
    "user_agent",
)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class AccessAuditLogger:
    """
    Records and queries access log entries.

    There is intentionally no update or delete operation.
    """

    def __init__(
        self,
        db_manager,
        max_retries: Optional[int] = None,
        base_delay: float = 0.05,
        page_size_max: Optional[int] = None
    ):
        """
        Initialize the audit logger.

        Args:
            db_manager: Database manager exposing access_logs and retry_operation
            max_retries: Write attempts before failing closed
            base_delay: Initial backoff between write attempts in seconds
            page_size_max: Upper bound for query page sizes
        """
        self.db = db_manager
        self.max_retries = max_retries or settings.audit_write_retries
        self.base_delay = base_delay
        self.page_size_max = page_size_max or settings.audit_page_size_max

    async def record(
        self,
        admin_id: str,
        target_user_id: str,
        access_type: AccessType,
        context: Optional[RequestContext] = None
    ) -> AccessLogEntry:
        """
        Persist one access entry.

        Args:
            admin_id: Administrator (or "system:<provider>") reading the data
            target_user_id: User whose data is read
            access_type: Kind of sensitive data read
            context: Request origin (IP address, user agent)

        Returns:
            The stored entry

        Raises:
            AuditWriteFailed: If the entry could not be persisted after retries
        """
        if not admin_id or not target_user_id:
            raise ValueError("admin_id and target_user_id are required for an access entry")

        access_type = AccessType(access_type)
        context = context or RequestContext()
        entry = AccessLogEntry(
            admin_id=admin_id,
            target_user_id=target_user_id,
            access_type=access_type,
            accessed_at=datetime.now(timezone.utc),
            ip_address=context.ip_address,
            user_agent=context.user_agent,
        )

        try:
            stored = await self.db.retry_operation(
                lambda: self.db.access_logs.insert(entry),
                max_retries=self.max_retries,
                base_delay=self.base_delay
            )
        except Exception as e:
            logger.error(
                f"Access log write failed for admin {admin_id} on user {target_user_id} "
                f"({access_type.value}): {e}"
            )
            record_audit_metrics(access_type.value, success=False)
            raise AuditWriteFailed(f"Failed to record {access_type.value} access: {e}")

        record_audit_metrics(access_type.value, success=True)
        logger.info(
            f"Recorded {access_type.value} access by {admin_id} on user {target_user_id}"
        )
        return stored

    async def query(self, filters: Optional[AccessLogFilters] = None) -> AccessLogPage:
        """
        Read one page of access entries for compliance review, newest first.

        Args:
            filters: Admin, target user, access type, time range and paging

        Returns:
            AccessLogPage with the entries and the total match count
        """
        filters = filters or AccessLogFilters()
        if filters.start and filters.end and filters.start > filters.end:
            raise ValueError("Time range start must not be after its end")
        if filters.offset < 0:
            raise ValueError("Offset must not be negative")

        filters = replace(filters, limit=max(1, min(filters.limit, self.page_size_max)))
        entries, total = await self.db.access_logs.query(filters)
        return AccessLogPage(entries=entries, total=total, limit=filters.limit, offset=filters.offset)

    async def export_report(
        self,
        filters: Optional[AccessLogFilters] = None,
        delimiter: str = ","
    ) -> str:
        """
        Export every entry matching the filters as a delimited report.

        Paging fields on the filters are ignored; the whole range is exported.
        The range ends at the moment the export starts so entries written
        while paging cannot shift later pages.
        """
        filters = filters or AccessLogFilters()
        started_at = datetime.now(timezone.utc)
        start, end = _as_utc(filters.start), _as_utc(filters.end)
        if not (start and start > started_at):
            end = min(end, started_at) if end else started_at
        filters = replace(filters, offset=0, limit=self.page_size_max, start=start, end=end)

        rows = []
        while True:
            page = await self.query(filters)
            rows.extend(
                (e.id, e.accessed_at, e.admin_id, e.target_user_id, e.access_type, e.ip_address, e.user_agent)
                for e in page.entries
            )
            if not page.has_more or not page.entries:
                break
            filters.offset += len(page.entries)

        logger.info(f"Exported {len(rows)} access log entries")
        return format_delimited_report(REPORT_HEADERS, rows, delimiter=delimiter)


def audited_read(func):
    """
    Wrap a sensitive-field accessor so the audit write happens first.

    The wrapped coroutine must be a method taking
    (admin_id, target_user_id, access_type, context) and its owner must
    expose an ``audit_logger`` attribute. Without one the read fails closed.
    """
    @wraps(func)
    async def wrapper(
        self,
        admin_id: str,
        target_user_id: str,
        access_type: AccessType,
        context: Optional[RequestContext] = None
    ):
        audit_logger: Optional[AccessAuditLogger] = getattr(self, "audit_logger", None)
        if audit_logger is None:
            raise AuditWriteFailed("Sensitive data requested without an audit logger")

        access_type = AccessType(access_type)
        await audit_logger.record(admin_id, target_user_id, access_type, context)
        return await func(self, admin_id, target_user_id, access_type, context)

    return wrapper
