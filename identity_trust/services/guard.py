"""Policy gate in front of protected actions such as submitting a rental application."""

import logging

from identity_trust.models.internal_models import ChannelStatus, GuardDecision, GuardResult
from identity_trust.observability import record_guard_metrics, trace_function
from identity_trust.services.record_store import VerificationRecordStore

logger = logging.getLogger(__name__)

SUBMIT_STEP = "submit_oneci_verification"
RESUBMIT_STEP = "resubmit_oneci_verification"


class VerificationGuard:
    """
    Decides whether a protected action may proceed.

    Every call reads the latest record and profile signals. Nothing is cached
    because verifier callbacks and admin decisions change state at any time.
    """

    def __init__(self, store: VerificationRecordStore):
        self.store = store

    @trace_function("guard.check_access")
    async def check_access(self, user_id: str, action: str) -> GuardResult:
        """
        Evaluate the guard policy for one user and action.

        Args:
            user_id: Applicant attempting the action
            action: Protected action name, e.g. "submit_application"

        Returns:
            GuardResult with allowed, pending (provisional) or blocked
        """
        record = await self.store.get_record_or_default(user_id)
        signals = await self.store.db.profiles.get_signals(user_id)
        status = record.oneci_status

        if status is ChannelStatus.VERIFIED:
            result = GuardResult(GuardDecision.ALLOWED, "Identity verified", status)
        elif signals.alternate_id_verified:
            result = GuardResult(GuardDecision.ALLOWED, "Alternate identity document accepted", status)
        elif status.is_awaiting_decision:
            result = GuardResult(
                GuardDecision.PENDING,
                "Identity verification is being processed; the action may proceed provisionally",
                status
            )
        elif status is ChannelStatus.REJECTED:
            result = GuardResult(
                GuardDecision.BLOCKED,
                "Identity verification was rejected; submit corrected documents to continue",
                status,
                next_step=RESUBMIT_STEP
            )
        else:
            result = GuardResult(
                GuardDecision.BLOCKED,
                "Identity verification is required before this action",
                status,
                next_step=SUBMIT_STEP
            )

        record_guard_metrics(result.decision.value, action)
        logger.info(f"Guard {result.decision.value} for user {user_id} on {action} (oneci={status.value})")
        return result
