"""
Error kinds raised by the task repositories.
"""
from typing import Optional


class TrackerError(Exception):
    """Base class for task tracker errors."""
    pass


class NotFound(TrackerError):
    """Raised when an operation targets a task id that does not exist."""

    def __init__(self, task_id: int):
        super().__init__(f"Task {task_id} not found")
        self.task_id = task_id


class StorageUnavailable(TrackerError):
    """Raised when the backing store cannot be read or written.

    The failed operation has not been applied.
    """

    def __init__(self, message: str, backend: Optional[str] = None):
        super().__init__(message)
        self.backend = backend


class ValidationSkipped(TrackerError):
    """Raised for a single malformed stored record.

    List scans catch this, log it and move on to the next record.
    """
    pass
