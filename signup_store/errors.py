"""
Exception taxonomy for the sign-up store.

Business outcomes (duplicates, missing records) and system failures share one
base class so the service and HTTP layers can map them to status codes without
string matching. The fatal branch (`FatalStoreError`) marks failures an
operator has to act on: a full disk, a read-only data directory, or a write
that kept failing after retries.
"""

from __future__ import annotations

from typing import Optional


class SignupStoreError(Exception):
    """Base class for every error raised by the store."""


class ValidationError(SignupStoreError):
    """Caller-supplied fields are missing or malformed."""

    def __init__(self, message: str, field: Optional[str] = None) -> None:
        super().__init__(message)
        self.field = field


class DuplicateError(SignupStoreError):
    """The email and/or phone is already present in the table."""

    def __init__(self, field: str) -> None:
        super().__init__(f"Details already exist with this {field}. One entry per customer!")
        self.field = field


class NotFoundError(SignupStoreError):
    """A delete or update target is absent."""


class CorruptionError(SignupStoreError):
    """A local or downloaded file failed header or row validation."""


class RemoteStoreError(SignupStoreError):
    """A single call to the remote object store failed."""


class SyncError(SignupStoreError):
    """Remote upload or download failed after all retries."""


class BusyError(SignupStoreError):
    """The coordinator lock could not be acquired in time."""


class FatalStoreError(SignupStoreError):
    """Failures that leave the store unable to persist."""


class ResourceError(FatalStoreError):
    """Insufficient disk space or missing write permission."""


class WriteError(FatalStoreError):
    """Persisting the table failed after retries (or during recreation)."""


__all__ = [
    "SignupStoreError",
    "ValidationError",
    "DuplicateError",
    "NotFoundError",
    "CorruptionError",
    "RemoteStoreError",
    "SyncError",
    "BusyError",
    "FatalStoreError",
    "ResourceError",
    "WriteError",
]
