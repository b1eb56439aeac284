"""
HTTP client for the external biometric face-match provider.

The provider owns the matching algorithm. This client only sends the capture
reference and reads back a decision and a 0-100 similarity score.
"""

import logging
from typing import Optional, Tuple

import httpx

from identity_trust.config import settings
from identity_trust.models.internal_models import Decision
from identity_trust.services.exceptions import ExternalVerifierTimeout, VerificationServiceError

logger = logging.getLogger(__name__)


class BiometricVerifierError(VerificationServiceError):
    """Raised when the biometric provider returns an unusable answer."""
    pass


class BiometricVerifierClient:
    """
    Synchronous face-match call against the biometric provider.

    A response carrying only a score is judged against the configured
    similarity threshold.
    """

    provider = "biometric"

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        similarity_threshold: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.base_url = base_url if base_url is not None else settings.biometric_verifier_url
        self.timeout = timeout if timeout is not None else settings.biometric_verifier_timeout
        self.similarity_threshold = (
            similarity_threshold if similarity_threshold is not None
            else settings.face_similarity_threshold
        )
        self._transport = transport

    @property
    def enabled(self) -> bool:
        return bool(self.base_url)

    async def verify_face(
        self,
        user_id: str,
        capture_ref: str,
        document_refs: Optional[list] = None
    ) -> Tuple[Decision, Optional[float], Optional[str]]:
        """
        Ask the provider to match a selfie capture against the ID photo.

        Args:
            user_id: Applicant being verified
            capture_ref: Reference to the stored biometric capture
            document_refs: Optional ID document references for the match

        Returns:
            Tuple of (decision, similarity_score, external_reference)

        Raises:
            ExternalVerifierTimeout: If the provider does not answer in time
            BiometricVerifierError: If the provider errors or answers garbage
        """
        payload = {
            "user_id": user_id,
            "capture_ref": capture_ref,
            "document_refs": document_refs or [],
        }

        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport
            ) as client:
                response = await client.post("/face-match", json=payload)
                response.raise_for_status()
                body = response.json()
        except httpx.TimeoutException as e:
            logger.warning(f"Biometric provider timed out for user {user_id}: {e}")
            raise ExternalVerifierTimeout(f"Biometric provider timed out after {self.timeout}s")
        except httpx.HTTPError as e:
            logger.error(f"Biometric provider call failed for user {user_id}: {e}")
            raise BiometricVerifierError(f"Biometric provider call failed: {e}")
        except ValueError as e:
            raise BiometricVerifierError(f"Biometric provider returned invalid JSON: {e}")

        return self._interpret(body)

    def _interpret(self, body: dict) -> Tuple[Decision, Optional[float], Optional[str]]:
        score = body.get("score")
        if score is not None:
            score = float(score)
            if not 0.0 <= score <= 100.0:
                raise BiometricVerifierError(f"Similarity score out of range: {score}")

        raw_decision = body.get("decision")
        if raw_decision:
            try:
                decision = Decision(raw_decision)
            except ValueError:
                raise BiometricVerifierError(f"Unknown provider decision: {raw_decision}")
        elif score is not None:
            decision = Decision.APPROVE if score >= self.similarity_threshold else Decision.REJECT
        else:
            raise BiometricVerifierError("Provider response has neither decision nor score")

        return decision, score, body.get("reference")
