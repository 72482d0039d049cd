"""Exceptions raised by the study timer."""


class StudyTimerError(Exception):
    """Base exception for the study timer."""


class ValidationError(StudyTimerError, ValueError):
    """Raised when caller input is rejected before any state changes."""


class NotFoundError(StudyTimerError, KeyError):
    """Raised when a category id does not exist."""

    def __str__(self) -> str:
        # KeyError repr-quotes its message; keep it readable.
        return str(self.args[0]) if self.args else ""


class StorageError(StudyTimerError):
    """Raised when the data directory cannot be used."""
