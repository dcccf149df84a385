"""
Typed errors raised by the engine.

Every upward-facing operation either returns a value or raises one of these.
Translation to transport-level concerns (status codes) belongs to the API layer.
"""

from typing import Optional


class EngineError(Exception):
    """Base class for all engine errors."""

    retryable: bool = False

    def __init__(self, message: str, *, key: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.key = key


class ValidationError(EngineError):
    """An effect, attribute or input is outside its contractual bounds."""

    def __init__(self, message: str, errors: Optional[list] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.errors = errors or [message]


class DuplicateVoteError(EngineError):
    """The participant already voted on this decision."""

    def __init__(self, participant_id: str, decision_id: str):
        super().__init__(
            f"Participant {participant_id} has already voted on decision {decision_id}"
        )
        self.participant_id = participant_id
        self.decision_id = decision_id


class NoVotesCastError(EngineError):
    """A decision was resolved with zero votes and no fallback is configured."""

    def __init__(self, decision_id: str):
        super().__init__(f"No votes were cast for decision {decision_id}")
        self.decision_id = decision_id


class NotFoundError(EngineError):
    """No active decision, or no stored data for a key."""


class StoreUnavailableError(EngineError):
    """The underlying key-value store is unreachable. Callers may retry."""

    retryable = True


class CorruptedRecordError(EngineError):
    """A stored record failed to parse or failed its integrity check."""


class LeaseUnavailableError(EngineError):
    """Another resolution cycle currently holds the lease."""

    retryable = True
