class FitTrackerError(Exception):
    """Base class for errors raised by the workout store."""


class ValidationError(FitTrackerError, ValueError):
    """Input rejected before anything was written."""


class NoActiveSessionError(ValidationError):
    """A draft without a start time was handed to the commit pipeline."""

    def __init__(self, message: str = "no active session") -> None:
        super().__init__(message)


class NotFoundError(FitTrackerError, LookupError):
    """The targeted row does not exist."""


class StorageError(FitTrackerError, RuntimeError):
    """The storage engine failed; any open transaction was rolled back."""
