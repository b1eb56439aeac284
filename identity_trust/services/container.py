"""Wiring of the verification services."""

import logging
from dataclasses import dataclass
from typing import Optional

from identity_trust.clients.biometric_client import BiometricVerifierClient
from identity_trust.clients.notification_client import NotificationClient
from identity_trust.clients.supabase_client import DatabaseManager
from identity_trust.config import settings
from identity_trust.services.audit_logger import AccessAuditLogger
from identity_trust.services.guard import VerificationGuard
from identity_trust.services.intake_service import SubmissionIntake
from identity_trust.services.record_store import VerificationRecordStore
from identity_trust.services.review_workflow import AdminReviewWorkflow

logger = logging.getLogger(__name__)


@dataclass
class VerificationServices:
    db: DatabaseManager
    audit_logger: AccessAuditLogger
    store: VerificationRecordStore
    guard: VerificationGuard
    workflow: AdminReviewWorkflow
    intake: SubmissionIntake


def create_database_manager(backend: Optional[str] = None) -> DatabaseManager:
    """Database manager for the configured storage backend."""
    backend = backend or settings.storage_backend
    if backend == "memory":
        from identity_trust.clients.memory_store import InMemoryDatabaseManager
        logger.warning("Using in-memory storage; state is lost on restart")
        return InMemoryDatabaseManager()
    return DatabaseManager()


def build_services(
    db_manager: Optional[DatabaseManager] = None,
    notifier: Optional[NotificationClient] = None,
    biometric_client: Optional[BiometricVerifierClient] = None
) -> VerificationServices:
    """Build the full service graph over one database manager."""
    db = db_manager or create_database_manager()
    audit_logger = AccessAuditLogger(db)
    store = VerificationRecordStore(db, audit_logger=audit_logger)
    workflow = AdminReviewWorkflow(store, audit_logger, notifier=notifier)
    return VerificationServices(
        db=db,
        audit_logger=audit_logger,
        store=store,
        guard=VerificationGuard(store),
        workflow=workflow,
        intake=SubmissionIntake(store, workflow, biometric_client=biometric_client),
    )


# Global services instance
_services: Optional[VerificationServices] = None


def get_services() -> VerificationServices:
    """
    Get the global verification services.

    Returns:
        VerificationServices: built on first use from settings
    """
    global _services
    if _services is None:
        _services = build_services()
    return _services


def set_services(services: Optional[VerificationServices]) -> None:
    """Replace the global services (startup wiring and tests)."""
    global _services
    _services = services
