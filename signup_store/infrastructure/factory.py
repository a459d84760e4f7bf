"""
Object store factory.

Selects the remote backend named by `settings.remote_backend`. The Drive
client is only imported when that backend is requested so local development
does not build a Google API client.
"""

from __future__ import annotations

from signup_store.config import Settings, get_settings
from signup_store.infrastructure.remote import LocalDirectoryObjectStore, ObjectStore
from signup_store.utils.logging import get_logger

log = get_logger(__name__)


def build_object_store(settings: Settings | None = None) -> ObjectStore:
    """
    Build the configured object store.

    Parameters
    ----------
    settings : Settings | None
        Settings to read; defaults to the cached process settings.

    Returns
    -------
    ObjectStore
        A `LocalDirectoryObjectStore` for ``local`` or a
        `GoogleDriveObjectStore` for ``drive``.
    """
    settings = settings or get_settings()
    if settings.remote_backend == "drive":
        from signup_store.infrastructure.drive import GoogleDriveObjectStore

        log.info("[REMOTE] using Google Drive backend", extra={"folder": settings.remote_folder})
        return GoogleDriveObjectStore.from_settings(settings)

    log.info("[REMOTE] using local directory backend", extra={"root": str(settings.remote_root)})
    return LocalDirectoryObjectStore(settings.remote_root)


__all__ = ["build_object_store"]
