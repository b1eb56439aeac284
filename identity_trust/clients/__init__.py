"""Client modules for storage and external service integrations."""

from identity_trust.clients.supabase_client import (
    SupabaseClient,
    VerificationRecordRepository,
    SubmissionRepository,
    AccessLogRepository,
    ProfileRepository,
    DatabaseManager
)

from identity_trust.clients.biometric_client import (
    BiometricVerifierClient,
    BiometricVerifierError
)

from identity_trust.clients.notification_client import NotificationClient

__all__ = [
    "SupabaseClient",
    "VerificationRecordRepository",
    "SubmissionRepository",
    "AccessLogRepository",
    "ProfileRepository",
    "DatabaseManager",
    "BiometricVerifierClient",
    "BiometricVerifierError",
    "NotificationClient"
]
