from __future__ import annotations

import threading
import time
from typing import Callable, List

import pytest

from signup_store.coordinator import FifoLock, Mutation, SyncCoordinator
from signup_store.domain.models import Record
from signup_store.domain.table import RecordTable
from signup_store.errors import BusyError, DuplicateError
from signup_store.state import SyncPhase

from conftest import HEADER, MemoryObjectStore

ANN = Record(name="Ann", email="ann@x.com", phone="5551234567")
BOB = Record(name="Bob", email="bob@x.com", phone="5559876543")
WAIT_SECONDS = 5.0


def _wait_until(predicate: Callable[[], bool], timeout: float = WAIT_SECONDS) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


def _insert(record: Record) -> Callable[[RecordTable], Mutation[str]]:
    def apply(table: RecordTable) -> Mutation[str]:
        return Mutation(table.insert(record), record.name)

    return apply


class TestFifoLock:
    def test_waiters_are_served_in_arrival_order(self) -> None:
        lock = FifoLock()
        order: List[int] = []
        assert lock.acquire()

        def worker(index: int) -> None:
            assert lock.acquire(timeout=WAIT_SECONDS)
            order.append(index)
            lock.release()

        threads = []
        for index in range(4):
            thread = threading.Thread(target=worker, args=(index,))
            thread.start()
            threads.append(thread)
            assert _wait_until(lambda: lock.waiting == index + 1)

        lock.release()
        for thread in threads:
            thread.join(WAIT_SECONDS)

        assert order == [0, 1, 2, 3]
        assert not lock.locked()

    def test_acquire_times_out_while_held(self) -> None:
        lock = FifoLock()
        assert lock.acquire()
        results: List[bool] = []

        thread = threading.Thread(target=lambda: results.append(lock.acquire(timeout=0.05)))
        thread.start()
        thread.join(WAIT_SECONDS)

        assert results == [False]
        assert lock.waiting == 0
        lock.release()

    def test_release_by_other_thread_is_rejected(self) -> None:
        lock = FifoLock()
        assert lock.acquire()
        errors: List[Exception] = []

        def release() -> None:
            try:
                lock.release()
            except RuntimeError as exc:
                errors.append(exc)

        thread = threading.Thread(target=release)
        thread.start()
        thread.join(WAIT_SECONDS)

        assert len(errors) == 1
        assert lock.held_by_current_thread()
        lock.release()


def test_run_exclusive_raises_busy_on_lock_timeout(coordinator: SyncCoordinator) -> None:
    release = threading.Event()
    holder = threading.Thread(
        target=lambda: coordinator.run_exclusive(lambda: release.wait(WAIT_SECONDS), label="hold")
    )
    holder.start()
    try:
        assert _wait_until(lambda: coordinator.busy)
        with pytest.raises(BusyError):
            coordinator.run_exclusive(lambda: None, timeout=0.05)
    finally:
        release.set()
        holder.join(WAIT_SECONDS)
    assert not coordinator.busy


def test_nested_exclusive_call_is_rejected(coordinator: SyncCoordinator) -> None:
    with pytest.raises(RuntimeError, match="Nested"):
        coordinator.run_exclusive(lambda: coordinator.run_exclusive(lambda: 1))
    assert not coordinator.busy


def test_mutate_persists_and_uploads(
    coordinator: SyncCoordinator, store: MemoryObjectStore
) -> None:
    outcome = coordinator.mutate(_insert(ANN))

    assert outcome.result == "Ann"
    assert outcome.changed is True
    assert outcome.warning is None
    assert coordinator.state.dirty is False
    assert coordinator.state.phase is SyncPhase.IDLE
    assert store.only_object() == coordinator.persistence.path.read_bytes()


def test_unchanged_mutation_skips_write_and_upload(
    coordinator: SyncCoordinator, store: MemoryObjectStore
) -> None:
    outcome = coordinator.mutate(lambda table: Mutation(table, None, changed=False))

    assert outcome.changed is False
    assert store.calls["create"] == 0
    assert coordinator.persistence.path.read_bytes() == HEADER


def test_failing_callback_leaves_file_and_phase_clean(
    coordinator: SyncCoordinator, store: MemoryObjectStore
) -> None:
    coordinator.mutate(_insert(ANN))
    before = coordinator.persistence.path.read_bytes()

    with pytest.raises(DuplicateError):
        coordinator.mutate(_insert(ANN))

    assert coordinator.persistence.path.read_bytes() == before
    assert coordinator.state.phase is SyncPhase.IDLE
    assert not coordinator.busy


def test_failed_upload_keeps_dirty_until_later_sync(
    coordinator: SyncCoordinator, store: MemoryObjectStore
) -> None:
    store.fail("create", 3)

    outcome = coordinator.mutate(_insert(ANN))

    assert outcome.changed is True
    assert outcome.warning is not None and "remote sync pending" in outcome.warning
    assert coordinator.state.dirty is True
    assert coordinator.state.last_error is not None
    assert len(coordinator.read(lambda table: list(table))) == 1

    report = coordinator.sync_now()

    assert report == {"attempted": True, "outcome": "created", "error": None, "dirty": False}
    assert coordinator.state.last_error is None
    assert b"ann@x.com" in store.only_object()


def test_sync_now_without_changes_does_nothing(
    coordinator: SyncCoordinator, store: MemoryObjectStore
) -> None:
    report = coordinator.sync_now()
    assert report["attempted"] is False
    assert store.calls["list"] == 0


def test_read_picks_up_remote_changes_when_clean(
    coordinator: SyncCoordinator, store: MemoryObjectStore
) -> None:
    coordinator.mutate(_insert(ANN))
    store.update(next(iter(store.objects)), HEADER + b"Bob,bob@x.com,5559876543,,\n")

    names = coordinator.read(lambda table: [record.name for record in table])

    assert names == ["Bob"]


def test_pending_local_changes_are_not_overwritten_by_download(
    coordinator: SyncCoordinator, store: MemoryObjectStore
) -> None:
    coordinator.mutate(_insert(ANN))
    object_id = next(iter(store.objects))
    store.fail("update", 3)
    coordinator.mutate(_insert(BOB))
    assert coordinator.state.dirty is True

    store.objects[object_id] = HEADER + b"Zed,zed@x.com,5550009999,,\n"
    names = coordinator.read(lambda table: [record.name for record in table])

    assert names == ["Ann", "Bob"]


def test_pull_without_remote_copy_initializes_local(coordinator: SyncCoordinator) -> None:
    assert coordinator.pull() == "no_remote_copy"
    assert coordinator.persistence.path.read_bytes() == HEADER


def test_start_against_empty_remote_creates_header_only_file(
    coordinator: SyncCoordinator,
) -> None:
    table = coordinator.start(background=False)

    assert len(table) == 0
    assert coordinator.persistence.path.read_bytes() == HEADER
    assert coordinator.state.remote_present is False


def test_periodic_timer_uploads_pending_changes(
    coordinator: SyncCoordinator, store: MemoryObjectStore
) -> None:
    coordinator.sync_interval = 0.05
    coordinator.start(background=True)
    store.fail("create", 3)

    coordinator.mutate(_insert(ANN))

    assert _wait_until(lambda: not coordinator.state.dirty)
    assert b"ann@x.com" in store.only_object()
    coordinator.stop()


def test_stop_flushes_pending_changes(
    coordinator: SyncCoordinator, store: MemoryObjectStore
) -> None:
    coordinator.start(background=False)
    store.fail("create", 3)
    coordinator.mutate(_insert(ANN))
    assert coordinator.state.dirty is True

    coordinator.stop(flush=True)

    assert coordinator.state.dirty is False
    assert store.calls["create"] == 4


class _TimerBlockingStore(MemoryObjectStore):
    """Holds uploads made by the periodic thread until `release` is set."""

    def __init__(self) -> None:
        super().__init__()
        self.entered = threading.Event()
        self.release = threading.Event()

    def create(self, folder: str, name: str, data: bytes) -> str:
        if threading.current_thread().name == "PeriodicSync":
            self.entered.set()
            self.release.wait(WAIT_SECONDS)
        return super().create(folder, name, data)


def test_stop_skips_flush_while_periodic_sync_in_flight(settings) -> None:
    store = _TimerBlockingStore()
    coordinator = SyncCoordinator.from_settings(settings, store=store)
    coordinator.sync_interval = 0.05
    coordinator.stop_timeout = 0.1
    coordinator.start(background=True)
    store.fail("create", 3)
    coordinator.mutate(_insert(ANN))
    assert store.entered.wait(WAIT_SECONDS)

    started = time.monotonic()
    coordinator.stop(flush=True)

    assert time.monotonic() - started < coordinator.lock_timeout
    assert store.calls["create"] == 3
    store.release.set()
    assert _wait_until(lambda: not coordinator.state.dirty)
    assert store.calls["create"] == 4


def test_context_manager_starts_and_stops(settings, store: MemoryObjectStore) -> None:
    with SyncCoordinator.from_settings(settings, store=store) as coordinator:
        assert coordinator.persistence.exists()
    assert coordinator._timer is None
