"""Per-channel verification state machine."""

from typing import Dict, FrozenSet

from identity_trust.models.internal_models import Channel, ChannelStatus
from identity_trust.services.exceptions import InvalidTransition

NS = ChannelStatus.NOT_SUBMITTED
P = ChannelStatus.PENDING
PR = ChannelStatus.PENDING_REVIEW
V = ChannelStatus.VERIFIED
R = ChannelStatus.REJECTED

ALLOWED_TRANSITIONS: Dict[ChannelStatus, FrozenSet[ChannelStatus]] = {
    NS: frozenset({P, PR}),
    P: frozenset({V, R}),
    PR: frozenset({V, R}),
    V: frozenset(),
    R: frozenset({PR}),  # resubmission
}

# ONECI and CNAM need a human adjudicator; face is resolved by the biometric provider.
INITIAL_SUBMISSION_STATUS: Dict[Channel, ChannelStatus] = {
    Channel.ONECI: PR,
    Channel.CNAM: PR,
    Channel.FACE: P,
}


def can_transition(current: ChannelStatus, target: ChannelStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


def validate_transition(channel: Channel, current: ChannelStatus, target: ChannelStatus) -> None:
    """Raise InvalidTransition unless current -> target is allowed."""
    if not can_transition(current, target):
        raise InvalidTransition(channel, current, target)


def submission_target(channel: Channel, current: ChannelStatus) -> ChannelStatus:
    """
    Status a channel moves to when the user submits documents for it.

    First submissions follow the channel policy; a resubmission after a
    rejection always goes back to human review.
    """
    if current is R:
        target = PR
    else:
        target = INITIAL_SUBMISSION_STATUS[channel]
    validate_transition(channel, current, target)
    return target
