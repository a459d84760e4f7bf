"""
Pytest configuration for the sign-up store.

Provides fixtures for:
- Settings pointed at a per-test temporary data directory
- An in-memory object store with failure injection
- Persistence, remote sync, coordinator and service wired together
"""

from __future__ import annotations

import itertools
from collections import Counter
from datetime import date
from typing import Dict, Iterator, List, Tuple

import pytest

from signup_store.config import Settings
from signup_store.coordinator import SyncCoordinator
from signup_store.errors import RemoteStoreError
from signup_store.infrastructure.persistence import CsvPersistence
from signup_store.infrastructure.remote import RemoteSync
from signup_store.service import SignupService
from signup_store.state import SyncState

FIXED_TODAY = date(2024, 5, 1)
HEADER = b"Name,Email,Phone,Date,Prize\n"


class MemoryObjectStore:
    """
    Object store kept in a dict, with per-action failure injection.

    `fail("create", 2)` makes the next two `create` calls raise
    `RemoteStoreError`; `calls` counts every call, failed or not.
    """

    def __init__(self) -> None:
        self.objects: Dict[str, bytes] = {}
        self.locations: Dict[str, Tuple[str, str]] = {}
        self.calls: Counter[str] = Counter()
        self._failures: Counter[str] = Counter()
        self._ids = itertools.count(1)

    def fail(self, action: str, times: int = 1) -> None:
        self._failures[action] += times

    def put(self, folder: str, name: str, data: bytes) -> str:
        """Seed an object without going through the counters."""
        object_id = f"obj-{next(self._ids)}"
        self.objects[object_id] = data
        self.locations[object_id] = (folder, name)
        return object_id

    def _tick(self, action: str) -> None:
        self.calls[action] += 1
        if self._failures[action] > 0:
            self._failures[action] -= 1
            raise RemoteStoreError(f"injected {action} failure")

    def list(self, folder: str, name: str) -> List[str]:
        self._tick("list")
        return [oid for oid, loc in self.locations.items() if loc == (folder, name)]

    def get(self, object_id: str) -> Iterator[bytes]:
        self._tick("get")
        if object_id not in self.objects:
            raise RemoteStoreError(f"No such object: {object_id}")
        return iter([self.objects[object_id]])

    def create(self, folder: str, name: str, data: bytes) -> str:
        self._tick("create")
        return self.put(folder, name, data)

    def update(self, object_id: str, data: bytes) -> None:
        self._tick("update")
        if object_id not in self.objects:
            raise RemoteStoreError(f"No such object: {object_id}")
        self.objects[object_id] = data

    def only_object(self) -> bytes:
        assert len(self.objects) == 1
        return next(iter(self.objects.values()))


@pytest.fixture
def settings(tmp_path) -> Settings:
    """
    Settings with every path under `tmp_path` and no waiting anywhere.
    """
    return Settings(
        _env_file=None,
        data_dir=tmp_path / "data",
        remote_root=tmp_path / "remote",
        min_free_bytes=0,
        write_retry_delay_seconds=0.0,
        sync_backoff_seconds=0.0,
        sync_backoff_max_seconds=0.0,
        sync_interval_seconds=0.0,
        lock_timeout_seconds=2.0,
        log_level="DEBUG",
    )


@pytest.fixture
def store() -> MemoryObjectStore:
    return MemoryObjectStore()


@pytest.fixture
def persistence(settings: Settings) -> CsvPersistence:
    return CsvPersistence.from_settings(settings)


@pytest.fixture
def sync_state() -> SyncState:
    return SyncState()


@pytest.fixture
def remote_sync(
    store: MemoryObjectStore,
    persistence: CsvPersistence,
    sync_state: SyncState,
    settings: Settings,
) -> RemoteSync:
    return RemoteSync.from_settings(store, persistence, sync_state, settings)


@pytest.fixture
def coordinator(settings: Settings, store: MemoryObjectStore) -> Iterator[SyncCoordinator]:
    coord = SyncCoordinator.from_settings(settings, store=store)
    yield coord
    coord.stop(flush=False)


@pytest.fixture
def service(coordinator: SyncCoordinator, settings: Settings) -> SignupService:
    return SignupService(coordinator, prizes=settings.prizes, today=lambda: FIXED_TODAY)
