"""
Trust score computation.

The score is a pure function of a verification record and the applicant's
profile signals. It never touches storage so it can be recomputed anywhere
and tested in isolation.

Weights:
- ONECI identity verified: +40
- Face verification verified: +30
- Supporting documents present: +20
- Rental / payment history attestations present: +10

Only verified channels contribute. The sum is clamped to [0, 100].
"""

from typing import Dict, Tuple

from identity_trust.models.internal_models import (
    ChannelStatus,
    ProfileSignals,
    Recommendation,
    VerificationRecord,
)

ONECI_WEIGHT = 40
FACE_WEIGHT = 30
DOCUMENTS_WEIGHT = 20
RENTAL_HISTORY_WEIGHT = 10

MAX_SCORE = 100
MIN_SCORE = 0

RECOMMENDED_THRESHOLD = 75
CONDITIONAL_THRESHOLD = 50

BREAKDOWN_WEIGHTS: Dict[str, int] = {
    "oneci_verified": ONECI_WEIGHT,
    "face_verified": FACE_WEIGHT,
    "documents_present": DOCUMENTS_WEIGHT,
    "rental_history_present": RENTAL_HISTORY_WEIGHT,
}


def compute_score(
    record: VerificationRecord,
    signals: ProfileSignals
) -> Tuple[int, Dict[str, int]]:
    """
    Compute the trust score for a record.

    Args:
        record: Current verification record
        signals: Supporting profile signals

    Returns:
        Tuple of (score, breakdown) where breakdown maps each criterion to
        the points it earned
    """
    breakdown = {
        "oneci_verified": ONECI_WEIGHT if record.oneci_status is ChannelStatus.VERIFIED else 0,
        "face_verified": FACE_WEIGHT if record.face_status is ChannelStatus.VERIFIED else 0,
        "documents_present": DOCUMENTS_WEIGHT if signals.documents_present else 0,
        "rental_history_present": RENTAL_HISTORY_WEIGHT if signals.rental_history_present else 0,
    }
    score = max(MIN_SCORE, min(MAX_SCORE, sum(breakdown.values())))
    return score, breakdown


def recommendation_for(score: int) -> Recommendation:
    """Advisory label shown to property owners. Never used to block."""
    if score >= RECOMMENDED_THRESHOLD:
        return Recommendation.RECOMMENDED
    if score >= CONDITIONAL_THRESHOLD:
        return Recommendation.CONDITIONAL
    return Recommendation.NOT_RECOMMENDED


def potential_gain(breakdown: Dict[str, int]) -> int:
    """Points the applicant can still earn."""
    return sum(
        weight for key, weight in BREAKDOWN_WEIGHTS.items()
        if breakdown.get(key, 0) == 0
    )
