"""Exceptions raised by the sync pipeline.

Library errors are translated into these at the seam where they occur
(HTTP client, decoders, store) so collectors only ever handle SyncError.
"""

from typing import Any


class SyncError(Exception):
    """Base exception for all sync errors."""

    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.context = context or {}


class NetworkError(SyncError):
    """Raised on transport failure or a non-success HTTP status from an exchange."""


class DecodeError(SyncError):
    """Raised when a response body is malformed or does not match the expected schema."""


class StorageError(SyncError):
    """Raised when a read or write transaction against the store fails."""
