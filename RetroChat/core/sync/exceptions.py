"""
Error taxonomy shared by the backend adapters and the sync engine.
"""


class SyncError(Exception):
    """Base exception for backend and sync failures."""

    def __init__(self, message: str, details: dict = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} - Details: {self.details}"
        return self.message


class DeniedError(SyncError):
    """The backend refused the request for authorization reasons."""
    pass


class NotFoundError(SyncError):
    """The requested entity no longer exists."""
    pass


class NetworkUnavailableError(SyncError):
    """The backend could not be reached or failed on its side."""
    pass


class InvalidError(SyncError):
    """Client-side validation failed; nothing was sent."""
    pass


class BannedError(SyncError):
    """The current account is banned; the session has been closed."""
    pass


__all__ = [
    'SyncError',
    'DeniedError',
    'NotFoundError',
    'NetworkUnavailableError',
    'InvalidError',
    'BannedError',
]
