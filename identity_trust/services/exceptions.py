"""Error taxonomy for the verification pipeline."""


class VerificationServiceError(Exception):
    """Base exception for verification service errors."""

    retryable = False


class RecordNotFound(VerificationServiceError):
    """Raised when a user has no verification record yet.

    Callers facing end users treat this as every channel being not_submitted.
    """

    def __init__(self, user_id: str):
        super().__init__(f"No verification record for user {user_id}")
        self.user_id = user_id


class InvalidTransition(VerificationServiceError):
    """Raised when a channel state change is not allowed by the state machine."""

    def __init__(self, channel, current, target):
        super().__init__(
            f"Invalid {channel.value} transition: {current.value} -> {target.value}"
        )
        self.channel = channel
        self.current = current
        self.target = target


class AlreadyFinalized(VerificationServiceError):
    """Raised when a conflicting decision targets a channel that is already terminal."""

    def __init__(self, user_id: str, channel, status):
        super().__init__(
            f"{channel.value} verification for user {user_id} is already {status.value}"
        )
        self.user_id = user_id
        self.channel = channel
        self.status = status


class AuditWriteFailed(VerificationServiceError):
    """Raised when an access log entry could not be persisted.

    The read it would have authorized must not proceed.
    """

    retryable = True


class ExternalVerifierTimeout(VerificationServiceError):
    """Raised when an external verifier does not answer in time.

    The channel stays pending; the provider retries through its callback.
    """

    retryable = True


class StoreContention(VerificationServiceError):
    """Raised when the per-user write lock could not be acquired after retries."""

    retryable = True
