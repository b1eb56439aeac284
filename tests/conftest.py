"""
Shared fixtures for the identity trust service tests.
"""

import os

# Settings are read at import time; tests run against in-memory storage.
os.environ.setdefault("STORAGE_BACKEND", "memory")

from datetime import datetime, timezone
from unittest.mock import AsyncMock, Mock

import pytest

from identity_trust.clients.biometric_client import BiometricVerifierClient
from identity_trust.clients.memory_store import InMemoryDatabaseManager
from identity_trust.models.internal_models import Channel, VerificationSubmission
from identity_trust.services.container import build_services


def make_submission(user_id: str, channel: Channel, **overrides) -> VerificationSubmission:
    """Valid submission for a channel."""
    fields = dict(
        user_id=user_id,
        channel=channel,
        submitted_at=datetime.now(timezone.utc),
    )
    if channel is Channel.FACE:
        fields["biometric_capture_ref"] = f"captures/{user_id}/selfie.jpg"
    else:
        fields["document_refs"] = [f"documents/{user_id}/{channel.value}-front.jpg"]
        fields["identity_number"] = "CI0012345678"
    fields.update(overrides)
    return VerificationSubmission(**fields)


@pytest.fixture
def db():
    """Fresh in-memory database manager."""
    return InMemoryDatabaseManager()


@pytest.fixture
def notifier():
    """Notification client double that records every event."""
    notifier = Mock()
    notifier.notify = AsyncMock(return_value=True)
    return notifier


@pytest.fixture
def services(db, notifier):
    """Service graph over in-memory storage with the biometric provider disabled."""
    return build_services(
        db_manager=db,
        notifier=notifier,
        biometric_client=BiometricVerifierClient(base_url="")
    )


@pytest.fixture
def user_id():
    return "user-7f3a"


@pytest.fixture
def admin_id():
    return "admin-42"
