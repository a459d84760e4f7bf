"""
Infrastructure package for the sign-up store.

Centralizes I/O concerns: the atomic CSV persistence layer, the remote object
stores and the sync policy on top of them. Keep this layer focused on files,
network and resource management, decoupled from the coordinator's ordering
rules.
"""

from signup_store.infrastructure.factory import build_object_store
from signup_store.infrastructure.persistence import CsvPersistence, atomic_write
from signup_store.infrastructure.remote import (
    DownloadOutcome,
    LocalDirectoryObjectStore,
    ObjectStore,
    RemoteSync,
    UploadOutcome,
)

__all__ = [
    "CsvPersistence",
    "DownloadOutcome",
    "LocalDirectoryObjectStore",
    "ObjectStore",
    "RemoteSync",
    "UploadOutcome",
    "atomic_write",
    "build_object_store",
]
