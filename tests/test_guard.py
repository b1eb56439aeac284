"""
Tests for the verification guard.
"""

import pytest

from identity_trust.models.internal_models import (
    Channel,
    ChannelStatus,
    Decision,
    GuardDecision,
    ProfileSignals,
    VerificationRecord,
)
from identity_trust.services.guard import RESUBMIT_STEP, SUBMIT_STEP

from conftest import make_submission


class TestVerificationGuard:
    """Test cases for VerificationGuard.check_access."""

    @pytest.mark.asyncio
    async def test_unknown_user_is_blocked(self, services, user_id):
        result = await services.guard.check_access(user_id, "submit_application")

        assert result.decision is GuardDecision.BLOCKED
        assert result.oneci_status is ChannelStatus.NOT_SUBMITTED
        assert result.next_step == SUBMIT_STEP
        assert not result.may_proceed

    @pytest.mark.asyncio
    async def test_pending_review_is_provisional(self, services, user_id):
        await services.store.submit(make_submission(user_id, Channel.ONECI))

        result = await services.guard.check_access(user_id, "submit_application")

        assert result.decision is GuardDecision.PENDING
        assert result.may_proceed

    @pytest.mark.asyncio
    async def test_verified_identity_is_allowed(self, services, user_id):
        await services.store.submit(make_submission(user_id, Channel.ONECI))
        await services.store.apply_decision(user_id, Channel.ONECI, Decision.APPROVE)

        result = await services.guard.check_access(user_id, "submit_application")

        assert result.decision is GuardDecision.ALLOWED
        assert result.next_step is None

    @pytest.mark.asyncio
    async def test_rejected_identity_must_resubmit(self, services, user_id):
        await services.store.submit(make_submission(user_id, Channel.ONECI))
        await services.store.apply_decision(
            user_id, Channel.ONECI, Decision.REJECT, notes="Document illegible"
        )

        result = await services.guard.check_access(user_id, "submit_application")

        assert result.decision is GuardDecision.BLOCKED
        assert result.next_step == RESUBMIT_STEP

    @pytest.mark.asyncio
    async def test_alternate_identity_document_is_allowed(self, services, db, user_id):
        db.profiles.set_signals(user_id, ProfileSignals(alternate_id_verified=True))

        result = await services.guard.check_access(user_id, "submit_application")

        assert result.decision is GuardDecision.ALLOWED
        assert result.oneci_status is ChannelStatus.NOT_SUBMITTED

    @pytest.mark.asyncio
    async def test_other_channels_do_not_unlock_the_guard(self, services, db, user_id):
        await db.records.upsert(VerificationRecord(
            user_id=user_id,
            cnam_status=ChannelStatus.VERIFIED,
            face_status=ChannelStatus.VERIFIED,
        ))

        result = await services.guard.check_access(user_id, "submit_application")

        assert result.decision is GuardDecision.BLOCKED

    @pytest.mark.parametrize("status", [s for s in ChannelStatus if s is not ChannelStatus.VERIFIED])
    @pytest.mark.asyncio
    async def test_never_allowed_without_identity(self, services, db, user_id, status):
        await db.records.upsert(VerificationRecord(user_id=user_id, oneci_status=status))

        result = await services.guard.check_access(user_id, "submit_application")

        assert result.decision is not GuardDecision.ALLOWED

    @pytest.mark.asyncio
    async def test_decision_is_visible_on_next_check(self, services, user_id):
        await services.store.submit(make_submission(user_id, Channel.ONECI))
        before = await services.guard.check_access(user_id, "submit_application")

        await services.store.apply_decision(user_id, Channel.ONECI, Decision.APPROVE)
        after = await services.guard.check_access(user_id, "submit_application")

        assert before.decision is GuardDecision.PENDING
        assert after.decision is GuardDecision.ALLOWED
