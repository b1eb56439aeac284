"""
Submission intake.

Stores the submission and, for a first face submission, asks the biometric
provider for a synchronous match. A provider that times out or errors leaves
the face channel pending until its callback arrives.
"""

import logging
from typing import Optional

from identity_trust.clients.biometric_client import BiometricVerifierClient, BiometricVerifierError
from identity_trust.models.internal_models import (
    Channel,
    ChannelStatus,
    VerificationRecord,
    VerificationSubmission,
    VerifierCallback,
)
from identity_trust.services.exceptions import ExternalVerifierTimeout
from identity_trust.services.record_store import VerificationRecordStore
from identity_trust.services.review_workflow import AdminReviewWorkflow

logger = logging.getLogger(__name__)


class SubmissionIntake:

    def __init__(
        self,
        store: VerificationRecordStore,
        workflow: AdminReviewWorkflow,
        biometric_client: Optional[BiometricVerifierClient] = None
    ):
        self.store = store
        self.workflow = workflow
        self.biometric_client = biometric_client or BiometricVerifierClient()

    async def submit(self, submission: VerificationSubmission) -> VerificationRecord:
        """
        Accept a submission and return the updated record.

        Raises:
            InvalidTransition: If the channel cannot take a submission now
        """
        record = await self.store.submit(submission)

        if (
            submission.channel is Channel.FACE
            and record.face_status is ChannelStatus.PENDING
            and self.biometric_client.enabled
        ):
            record = await self._match_face(submission, record)

        return record

    async def _match_face(
        self,
        submission: VerificationSubmission,
        record: VerificationRecord
    ) -> VerificationRecord:
        try:
            decision, score, reference = await self.biometric_client.verify_face(
                submission.user_id,
                submission.biometric_capture_ref,
                submission.document_refs
            )
        except ExternalVerifierTimeout as e:
            logger.warning(f"Face match for user {submission.user_id} left pending: {e}")
            return record
        except BiometricVerifierError as e:
            logger.error(f"Face match for user {submission.user_id} left pending after provider error: {e}")
            return record

        callback = VerifierCallback(
            user_id=submission.user_id,
            channel=Channel.FACE,
            decision=decision,
            provider=self.biometric_client.provider,
            external_reference=reference,
            score=score
        )
        return await self.workflow.handle_verifier_callback(callback)
