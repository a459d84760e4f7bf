"""
Remote mirror of the table file.

The remote side is abstracted as a tiny object store (`ObjectStore`): list by
folder and name, stream an object's bytes, create, update. Exactly one object
with the canonical name is expected per folder, so find-then-create-or-update
is the only access pattern.

`RemoteSync` layers the sync policy on top: skip downloads while local changes
are pending, validate a download before installing it, refuse to upload an
empty or truncated file, and retry store calls with exponential backoff
(tenacity). Local persistence stays the source of truth: a failed upload never
rolls back the local write, it only leaves the dirty flag set.
"""

from __future__ import annotations

import enum
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Iterator, List, Protocol, TypeVar, runtime_checkable

from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from signup_store.config import Settings
from signup_store.errors import CorruptionError, RemoteStoreError, SyncError
from signup_store.infrastructure.persistence import CsvPersistence, atomic_write
from signup_store.state import SyncState
from signup_store.utils.logging import get_logger

log = get_logger(__name__)

T = TypeVar("T")


class DownloadOutcome(str, enum.Enum):
    DOWNLOADED = "downloaded"
    NO_REMOTE_COPY = "no_remote_copy"
    SKIPPED_DIRTY = "skipped_dirty"
    REMOTE_CORRUPT = "remote_corrupt"


class UploadOutcome(str, enum.Enum):
    CREATED = "created"
    UPDATED = "updated"


@runtime_checkable
class ObjectStore(Protocol):
    """
    Minimal object store interface.

    Implementations raise `RemoteStoreError` (or `OSError` for transport
    failures) so `RemoteSync` can retry them uniformly.
    """

    def list(self, folder: str, name: str) -> List[str]:
        """Return ids of the objects called `name` in `folder`."""
        ...

    def get(self, object_id: str) -> Iterator[bytes]:
        """Stream the object's bytes in chunks."""
        ...

    def create(self, folder: str, name: str, data: bytes) -> str:
        """Create a new object and return its id."""
        ...

    def update(self, object_id: str, data: bytes) -> None:
        """Replace the contents of an existing object."""
        ...


class LocalDirectoryObjectStore:
    """
    Object store backed by a directory tree: `<root>/<folder>/<name>`.

    Object ids are the POSIX path relative to the root. Useful for development
    and as a shared-drive mirror when no cloud store is configured.
    """

    def __init__(self, root: Path | str, chunk_size: int = 64 * 1024) -> None:
        self.root = Path(root)
        self.chunk_size = chunk_size

    def _resolve(self, object_id: str) -> Path:
        root = self.root.resolve()
        path = (root / object_id).resolve()
        if root not in path.parents:
            raise RemoteStoreError(f"Object id escapes the store root: {object_id!r}")
        return path

    def list(self, folder: str, name: str) -> List[str]:
        path = self.root / folder / name
        return [f"{folder}/{name}"] if path.is_file() else []

    def get(self, object_id: str) -> Iterator[bytes]:
        path = self._resolve(object_id)
        if not path.is_file():
            raise RemoteStoreError(f"No such object: {object_id}")
        return self._iter_chunks(path)

    def _iter_chunks(self, path: Path) -> Iterator[bytes]:
        with path.open("rb") as f:
            while True:
                chunk = f.read(self.chunk_size)
                if not chunk:
                    break
                yield chunk

    def create(self, folder: str, name: str, data: bytes) -> str:
        object_id = f"{folder}/{name}"
        atomic_write(self._resolve(object_id), [data])
        return object_id

    def update(self, object_id: str, data: bytes) -> None:
        path = self._resolve(object_id)
        if not path.is_file():
            raise RemoteStoreError(f"No such object: {object_id}")
        atomic_write(path, [data])


class RemoteSync:
    """
    Download/upload the table file with retry and dirty-aware skipping.

    Parameters
    ----------
    store : ObjectStore
        Remote object store.
    persistence : CsvPersistence
        Owner of the local file; used to validate downloads and to read the
        bytes to upload.
    state : SyncState
        Shared sync state; `dirty` gates downloads and is cleared on upload.
    folder, object_name : str
        Location of the single remote object.
    max_attempts : int
        Attempts per store call before `SyncError`.
    backoff_seconds, backoff_max_seconds : float
        Exponential backoff multiplier and cap between attempts.
    """

    def __init__(
        self,
        store: ObjectStore,
        persistence: CsvPersistence,
        state: SyncState,
        folder: str,
        object_name: str,
        max_attempts: int = 3,
        backoff_seconds: float = 1.0,
        backoff_max_seconds: float = 10.0,
    ) -> None:
        self.store = store
        self.persistence = persistence
        self.state = state
        self.folder = folder
        self.object_name = object_name
        self.max_attempts = max(1, max_attempts)
        self.backoff_seconds = backoff_seconds
        self.backoff_max_seconds = backoff_max_seconds

    @classmethod
    def from_settings(
        cls,
        store: ObjectStore,
        persistence: CsvPersistence,
        state: SyncState,
        settings: Settings,
    ) -> "RemoteSync":
        return cls(
            store,
            persistence,
            state,
            folder=settings.remote_folder,
            object_name=settings.remote_object_name,
            max_attempts=settings.sync_max_attempts,
            backoff_seconds=settings.sync_backoff_seconds,
            backoff_max_seconds=settings.sync_backoff_max_seconds,
        )

    def _call(self, action: str, fn: Callable[..., T], *args: object) -> T:
        try:
            for attempt in Retrying(
                stop=stop_after_attempt(self.max_attempts),
                wait=wait_exponential(
                    multiplier=self.backoff_seconds, max=self.backoff_max_seconds
                ),
                retry=retry_if_exception_type((RemoteStoreError, OSError)),
                before_sleep=before_sleep_log(log, logging.WARNING),
                reraise=True,
            ):
                with attempt:
                    return fn(*args)
        except (RemoteStoreError, OSError) as exc:
            raise SyncError(
                f"Remote {action} failed after {self.max_attempts} attempts: {exc}"
            ) from exc
        raise AssertionError("unreachable")  # pragma: no cover

    def _find(self) -> List[str]:
        ids = self._call("list", self.store.list, self.folder, self.object_name)
        if len(ids) > 1:
            log.warning(
                "[SYNC] multiple remote copies found, using the first",
                extra={"folder": self.folder, "object_name": self.object_name, "count": len(ids)},
            )
        self.state.remote_present = bool(ids)
        return ids

    def _stage(self, object_id: str) -> Path:
        local = self.persistence.path
        staged = local.with_name(f".{local.name}.download")
        atomic_write(staged, self.store.get(object_id))
        return staged

    def download(self, force: bool = False) -> DownloadOutcome:
        """
        Fetch the remote copy into the local path.

        Skipped while local changes are pending unless `force` is set. The
        object is streamed to a staging file and only replaces the local file
        once it parses as a valid table.
        """
        if self.state.dirty and not force:
            log.info("[SYNC DOWNLOAD] skipped, local changes pending upload")
            return DownloadOutcome.SKIPPED_DIRTY

        ids = self._find()
        if not ids:
            log.info(
                "[SYNC DOWNLOAD] no remote copy",
                extra={"folder": self.folder, "object_name": self.object_name},
            )
            return DownloadOutcome.NO_REMOTE_COPY

        self.persistence.ensure_resources()
        staged = self._call("download", self._stage, ids[0])
        try:
            with staged.open("rb") as f:
                self.persistence.parse(f.read())
        except CorruptionError as exc:
            self.state.mark_dirty()
            if self.persistence.exists():
                staged.unlink(missing_ok=True)
                log.warning(
                    "[SYNC DOWNLOAD] remote copy corrupt, keeping local table",
                    extra={"object_id": ids[0], "reason": str(exc)},
                )
            else:
                os.replace(staged, self.persistence.path)
                log.warning(
                    "[SYNC DOWNLOAD] remote copy corrupt, installed for salvage",
                    extra={"object_id": ids[0], "reason": str(exc)},
                )
            return DownloadOutcome.REMOTE_CORRUPT

        os.replace(staged, self.persistence.path)
        self.state.mark_downloaded(datetime.now(timezone.utc))
        log.info(
            "[SYNC DOWNLOAD] remote copy installed",
            extra={"object_id": ids[0], "path": str(self.persistence.path)},
        )
        return DownloadOutcome.DOWNLOADED

    def upload(self) -> UploadOutcome:
        """
        Create or update the remote object from the local file.

        Raises
        ------
        SyncError
            When the local file is missing or implausibly small (not retried),
            or when the store kept failing.
        """
        path = self.persistence.path
        if not path.is_file():
            raise SyncError(f"Local table file does not exist: {path}")
        size = path.stat().st_size
        minimum = self.persistence.header_size()
        if size < minimum:
            raise SyncError(f"Local table file is empty or truncated: {size} < {minimum} bytes")

        data = self.persistence.snapshot()
        ids = self._find()
        if ids:
            self._call("update", self.store.update, ids[0], data)
            outcome = UploadOutcome.UPDATED
            object_id = ids[0]
        else:
            object_id = self._call("create", self.store.create, self.folder, self.object_name, data)
            outcome = UploadOutcome.CREATED

        self.state.remote_present = True
        self.state.mark_uploaded(datetime.now(timezone.utc))
        log.info(
            f"[SYNC UPLOAD] {outcome.value}",
            extra={"object_id": object_id, "bytes": len(data)},
        )
        return outcome


__all__ = [
    "DownloadOutcome",
    "LocalDirectoryObjectStore",
    "ObjectStore",
    "RemoteSync",
    "UploadOutcome",
]
