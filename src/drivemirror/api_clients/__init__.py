"""Remote store clients."""

from .base import (
    RemoteStore,
    RemoteStoreError,
    RemoteListFailed,
    RemoteWriteFailed,
    RemoteDeleteFailed
)

from .google_drive import GoogleDriveStore, escape_query_value

__all__ = [
    # Interface and exceptions
    "RemoteStore",
    "RemoteStoreError",
    "RemoteListFailed",
    "RemoteWriteFailed",
    "RemoteDeleteFailed",

    # Implementations
    "GoogleDriveStore",
    "escape_query_value"
]
