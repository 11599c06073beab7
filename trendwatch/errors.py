"""Exception hierarchy for the trend engine.

Per-entity failures (FetchError, PersistenceError) are isolated by the
ingestion pipeline and counted in the cycle result. Insufficient history is
never an error: it yields velocity 0 or a skipped rule.
"""

from typing import Optional


class TrendwatchError(Exception):
    """Base class for all engine errors."""
    pass


class FetchError(TrendwatchError):
    """Raised when the data source is unreachable or returns a malformed payload."""

    def __init__(
        self,
        message: str,
        entity_type: Optional[str] = None,
        external_id: Optional[str] = None,
    ):
        super().__init__(message)
        self.entity_type = entity_type
        self.external_id = external_id


class CircuitOpenError(FetchError):
    """Raised when the circuit breaker is open and requests are blocked."""
    pass


class PersistenceError(TrendwatchError):
    """Raised when a snapshot/entity write fails. The whole unit is rolled back."""
    pass


class DeliveryError(TrendwatchError):
    """Raised by email/webhook senders when a notification cannot be delivered."""
    pass
