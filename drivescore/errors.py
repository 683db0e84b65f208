class DriveScoreError(Exception):
    """Base class for errors raised by the scoring service."""


class ValidationError(DriveScoreError):
    """Malformed ingest payload. Rejected before anything is written."""


class DependencyError(DriveScoreError):
    """A map or weather provider failed. Callers degrade instead of aborting."""


class NotConfiguredError(DependencyError, NotImplementedError):
    """Provider selected but has no working implementation."""


class PersistenceError(DriveScoreError):
    """A database write failed while finalizing or ingesting."""

    def __init__(self, operation: str, cause: Exception = None):
        self.operation = operation
        self.cause = cause
        message = f"Failed to {operation}"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)
