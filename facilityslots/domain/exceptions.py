"""
Domain-specific exception hierarchy for the availability engine.
"""


class SlotEngineError(Exception):
    """Base class for all application-level errors."""


class InvalidArgumentError(SlotEngineError):
    """Raised when a caller passes a malformed date, duration or range."""


class NotFoundError(SlotEngineError):
    """Raised when a facility, class or class session does not exist."""


class RepositoryError(SlotEngineError):
    """Raised when booking data cannot be fetched or stored."""


class BookingConflictError(SlotEngineError):
    """Raised when a new booking overlaps an existing one on its facility."""

    def __init__(self, message: str, conflicting_ids=None):
        super().__init__(message)
        self.conflicting_ids = list(conflicting_ids or [])
