"""Exceptions raised across the PM Lite package."""
from typing import Optional


class PMLiteError(Exception):
    """Base class for all PM Lite errors."""
    pass


class ConfigError(PMLiteError):
    """Raised when configuration is invalid or incomplete."""
    pass


class ValidationError(PMLiteError):
    """Raised when a record fails a save-time rule (e.g. empty title)."""
    pass


class DecodeError(PMLiteError):
    """Raised when stored or received data does not match the record shape."""
    pass


class RemoteError(PMLiteError):
    """Raised when a call to the hosted backend fails."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class BackupError(PMLiteError):
    """Raised when a backup document cannot be imported."""
    pass


class NotFoundError(PMLiteError):
    """Raised when a task or project id is unknown."""
    pass
