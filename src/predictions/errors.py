"""Engine error taxonomy.

Every error carries a machine-readable ``kind`` for callers to branch on and a
``public_message`` that is safe to show to the requester.
"""

from typing import Optional

from shared_types import ErrorKind


class EngineError(Exception):
    """Base class for errors surfaced by the prediction engine."""

    kind: ErrorKind = ErrorKind.TRANSIENT
    public_message = "An unexpected error occurred. Please try again."

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.public_message)
        if message:
            self.public_message = message


class ValidationError(EngineError):
    """Malformed or out-of-range client input. Never retried."""

    kind = ErrorKind.VALIDATION
    public_message = "Please enter a valid date"

    def __init__(self, message: Optional[str] = None, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class ConflictError(EngineError):
    """The identity already holds an active prediction."""

    kind = ErrorKind.CONFLICT
    public_message = "You've already submitted a prediction. Use update instead."


class NotFoundError(EngineError):
    """Unknown recovery token.

    Deliberately generic: a wrong token and a missing record look the same.
    """

    kind = ErrorKind.NOT_FOUND
    public_message = "No prediction found for this recovery token."


class RateLimitError(EngineError):
    """Request window exhausted for this identity and operation class."""

    kind = ErrorKind.RATE_LIMITED

    def __init__(self, retry_after: int, limit: Optional[int] = None):
        self.retry_after = max(1, int(retry_after))
        self.limit = limit
        super().__init__(
            f"You're submitting too quickly. Please wait {self.retry_after} seconds and try again."
        )


class VerificationError(EngineError):
    """Human-verification challenge failed."""

    kind = ErrorKind.BOT_DETECTED
    public_message = "Verification failed. Please complete the challenge and try again."


class TransientStoreError(EngineError):
    """Store stayed busy or unavailable after bounded retries."""

    kind = ErrorKind.TRANSIENT
    public_message = "Unable to process request. Please try again."


class ConfigurationError(RuntimeError):
    """Fatal misconfiguration detected at startup (missing salt, bad version)."""
