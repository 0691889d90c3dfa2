"""
Error taxonomy for database lifecycle and backup operations.

Routers translate these into HTTP status codes; everything else surfaces as a
generic 500 with the cause logged server-side.
"""

from typing import List, Optional


class DataForgeError(Exception):
    """Base class for all DataForge errors."""


class AlreadyExistsError(DataForgeError):
    """Raised when a database with the requested name already exists."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Database already exists: {name}")


class NotFoundError(DataForgeError):
    """Raised when an instance or one of its dependent resources is absent."""

    def __init__(self, message: str = "Database not found"):
        super().__init__(message)


class UnknownEngineError(DataForgeError):
    """Raised when no strategy is registered for an engine tag."""

    def __init__(self, engine: str, supported: Optional[List[str]] = None):
        self.engine = engine
        self.supported = supported or []
        message = f"Unknown database engine: {engine}"
        if self.supported:
            message += f" (supported: {', '.join(self.supported)})"
        super().__init__(message)


class BackupConfigurationAbsentError(DataForgeError):
    """Raised when an instance has no scheduled backup CronJob to clone."""

    def __init__(self, name: str):
        self.name = name
        super().__init__("Backup configuration not found")


class ChannelFailureError(DataForgeError):
    """Raised when an exec, log or object-store stream fails mid-transfer."""


class CompensationFailure(DataForgeError):
    """
    A rollback or cleanup step that failed.

    Collected and logged by the saga; never raised to the caller because it
    would mask the original error.
    """

    def __init__(self, step: str, cause: BaseException):
        self.step = step
        self.cause = cause
        super().__init__(f"Compensation for step '{step}' failed: {cause}")
