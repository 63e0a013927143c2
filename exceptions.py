"""Error hierarchy for contact reconciliation."""

from typing import Optional


class ReconciliationError(Exception):
    """Base class for errors raised while resolving an identity."""


class InvalidRequest(ReconciliationError):
    """Neither identifier supplied, or a supplied identifier is malformed."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.field = field


class StoreUnavailable(ReconciliationError):
    """The contact store could not complete an operation."""


class ConsistencyError(ReconciliationError):
    """Stored contacts violate the primary/secondary linkage rules."""
