# finance_tracker/core/errors.py
from typing import Optional


class FinanceTrackerError(Exception):
    """Base class for errors raised by finance_tracker."""


class ValidationError(FinanceTrackerError):
    """A category or transaction payload failed validation."""

    def __init__(self, message: str, field: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.field = field


class PersistenceError(FinanceTrackerError):
    """The backing store failed to read or write."""


class NotFoundError(FinanceTrackerError):
    pass


class PermissionDeniedError(FinanceTrackerError):
    pass


class RunInProgressError(FinanceTrackerError, RuntimeError):
    """Raised when a recurring run is requested while another is active."""
