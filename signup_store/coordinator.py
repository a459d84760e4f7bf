"""
Coordinator that serializes every table-touching operation.

All reads and writes of the local file go through `SyncCoordinator.run_exclusive`,
which holds a single FIFO lock for the duration of the operation. On top of
that the coordinator runs full sync cycles:

- `read`:   download-if-clean -> load (repairing if needed) -> callback
- `mutate`: download-if-clean -> load -> callback -> persist -> mark dirty -> upload
- `sync_now`: upload when dirty (also run by the periodic timer thread)
- `pull`:   explicit download, optionally forced over pending local changes

A failed upload after a successful local write is reported as a warning on
the mutation outcome; the dirty flag stays set so the periodic sync retries.

Usage:
    from signup_store.coordinator import SyncCoordinator

    with SyncCoordinator.from_settings(get_settings()) as coordinator:
        rows = coordinator.read(lambda table: len(table))
"""

from __future__ import annotations

import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, Generic, Optional, Tuple, TypedDict, TypeVar

from signup_store.config import Settings
from signup_store.domain.table import RecordTable
from signup_store.errors import BusyError, SyncError
from signup_store.infrastructure.factory import build_object_store
from signup_store.infrastructure.persistence import CsvPersistence
from signup_store.infrastructure.remote import ObjectStore, RemoteSync, UploadOutcome
from signup_store.state import SyncPhase, SyncState
from signup_store.utils.logging import get_logger
from signup_store.utils.profiler import ProfileStats, profile_block

log = get_logger(__name__)

R = TypeVar("R")

_DEFAULT_TIMEOUT = object()


class FifoLock:
    """
    Mutual exclusion with first-come-first-served hand-off and timeouts.

    Waiters queue tickets; the lock is granted only to the ticket at the head
    of the queue, so a steady stream of requests cannot starve the periodic
    sync thread (or vice versa).
    """

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._waiters: Deque[object] = deque()
        self._owner: Optional[int] = None

    def acquire(self, timeout: Optional[float] = None) -> bool:
        ticket = object()
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._cond:
            self._waiters.append(ticket)
            while self._owner is not None or self._waiters[0] is not ticket:
                remaining = None if deadline is None else deadline - time.monotonic()
                if remaining is not None and remaining <= 0:
                    self._waiters.remove(ticket)
                    self._cond.notify_all()
                    return False
                self._cond.wait(remaining)
            self._waiters.popleft()
            self._owner = threading.get_ident()
            return True

    def release(self) -> None:
        with self._cond:
            if self._owner != threading.get_ident():
                raise RuntimeError("FifoLock released by a thread that does not hold it")
            self._owner = None
            self._cond.notify_all()

    def locked(self) -> bool:
        with self._cond:
            return self._owner is not None

    def held_by_current_thread(self) -> bool:
        with self._cond:
            return self._owner == threading.get_ident()

    @property
    def waiting(self) -> int:
        with self._cond:
            return len(self._waiters)


@dataclass(frozen=True)
class Mutation(Generic[R]):
    """What a mutate callback hands back: the new table and its own result."""

    table: RecordTable
    result: R
    changed: bool = True


@dataclass(frozen=True)
class MutationOutcome(Generic[R]):
    result: R
    changed: bool
    upload: Optional[UploadOutcome] = None
    warning: Optional[str] = None


class SyncReport(TypedDict):
    attempted: bool
    outcome: Optional[str]
    error: Optional[str]
    dirty: bool


class SyncCoordinator:
    """
    Owns the sync state, the single lock and the periodic upload thread.

    Parameters
    ----------
    persistence : CsvPersistence
        Local table file.
    remote : RemoteSync
        Remote mirror; its `state` becomes the coordinator's state.
    lock_timeout : float | None
        Seconds to wait for the lock before `BusyError`; None waits forever.
    sync_interval : float
        Seconds between periodic upload attempts; 0 disables the timer.
    download_on_request : bool
        Whether each cycle refreshes from the remote when nothing is pending.
    stop_timeout : float
        Seconds `stop` waits for an in-flight periodic sync before giving up
        on the final flush.
    """

    def __init__(
        self,
        persistence: CsvPersistence,
        remote: RemoteSync,
        lock_timeout: Optional[float] = 10.0,
        sync_interval: float = 300.0,
        download_on_request: bool = True,
        stop_timeout: float = 5.0,
    ) -> None:
        self.persistence = persistence
        self.remote = remote
        self.state: SyncState = remote.state
        self.lock_timeout = lock_timeout
        self.sync_interval = sync_interval
        self.download_on_request = download_on_request
        self.stop_timeout = stop_timeout
        self._lock = FifoLock()
        self._stop_event = threading.Event()
        self._timer: Optional[threading.Thread] = None
        self._started = False

    @classmethod
    def from_settings(
        cls, settings: Settings, store: Optional[ObjectStore] = None
    ) -> "SyncCoordinator":
        persistence = CsvPersistence.from_settings(settings)
        state = SyncState()
        remote = RemoteSync.from_settings(
            store or build_object_store(settings), persistence, state, settings
        )
        return cls(
            persistence,
            remote,
            lock_timeout=settings.lock_timeout_seconds,
            sync_interval=settings.sync_interval_seconds,
            download_on_request=settings.download_on_request,
        )

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    # -- exclusive execution -------------------------------------------

    def run_exclusive(
        self,
        operation: Callable[[], R],
        timeout: object = _DEFAULT_TIMEOUT,
        label: str = "operation",
    ) -> R:
        """
        Run `operation` while holding the coordinator lock.

        Raises
        ------
        BusyError
            When the lock could not be acquired within the timeout.
        RuntimeError
            When called from inside another exclusive operation.
        """
        if self._lock.held_by_current_thread():
            raise RuntimeError(f"Nested exclusive operation '{label}' is not allowed")

        wait_timeout = self.lock_timeout if timeout is _DEFAULT_TIMEOUT else timeout
        with profile_block(f"{label}:wait", track_memory=False) as wait_stats:
            acquired = self._lock.acquire(timeout=wait_timeout)  # type: ignore[arg-type]
        if not acquired:
            log.warning(
                f"[COORDINATOR] lock timeout for {label}",
                extra={"operation": label, "wait_ms": wait_stats.duration_ms},
            )
            raise BusyError("Server busy, please retry shortly")

        stats: Optional[ProfileStats] = None
        try:
            with profile_block(label) as stats:
                return operation()
        finally:
            self._lock.release()
            if stats is not None:
                log.debug(
                    f"[COORDINATOR] {label} finished",
                    extra={**stats.as_log_extra(), "wait_ms": wait_stats.duration_ms},
                )

    # -- cycle steps (lock held) ---------------------------------------

    def _refresh(self, download: bool) -> None:
        if not download or self.state.dirty:
            self.state.advance(SyncPhase.LOADED)
            return
        self.state.advance(SyncPhase.DOWNLOADING)
        try:
            self.remote.download()
        except SyncError as exc:
            self.state.record_error(str(exc))
            log.warning(
                "[SYNC DOWNLOAD] failed, continuing with local table",
                extra={"error": str(exc)},
            )
        self.state.advance(SyncPhase.LOADED)

    def _upload(self) -> Tuple[Optional[UploadOutcome], Optional[str]]:
        self.state.advance(SyncPhase.UPLOADING)
        try:
            outcome = self.remote.upload()
        except SyncError as exc:
            self.state.record_error(str(exc))
            self.state.advance(SyncPhase.SYNC_FAILED)
            self.state.advance(SyncPhase.IDLE)
            log.warning("[SYNC UPLOAD] failed, will retry periodically", extra={"error": str(exc)})
            return None, f"Saved locally; remote sync pending ({exc})"
        self.state.advance(SyncPhase.IDLE)
        return outcome, None

    def _cycle(self, body: Callable[[], R]) -> Callable[[], R]:
        def run() -> R:
            try:
                return body()
            except BaseException:
                self.state.reset()
                raise

        return run

    # -- public operations ---------------------------------------------

    def read(self, fn: Callable[[RecordTable], R], label: str = "read") -> R:
        """Load the current table under the lock and return `fn(table)`."""

        def body() -> R:
            self._refresh(self.download_on_request)
            table = self.persistence.load_or_repair()
            result = fn(table)
            self.state.advance(SyncPhase.IDLE)
            return result

        return self.run_exclusive(self._cycle(body), label=label)

    def mutate(
        self, fn: Callable[[RecordTable], Mutation[R]], label: str = "mutate"
    ) -> MutationOutcome[R]:
        """
        Apply `fn` to the current table and persist the result.

        Exceptions raised by `fn` (duplicates, validation) abort the cycle
        without touching the file.
        """

        def body() -> MutationOutcome[R]:
            self._refresh(self.download_on_request)
            table = self.persistence.load_or_repair()
            mutation = fn(table)
            if not mutation.changed:
                self.state.advance(SyncPhase.IDLE)
                return MutationOutcome(result=mutation.result, changed=False)

            self.state.advance(SyncPhase.MUTATED)
            self.persistence.write(mutation.table)
            self.state.mark_dirty()
            self.state.advance(SyncPhase.PERSISTED)
            upload, warning = self._upload()
            return MutationOutcome(
                result=mutation.result, changed=True, upload=upload, warning=warning
            )

        return self.run_exclusive(self._cycle(body), label=label)

    def sync_now(self, force: bool = False) -> SyncReport:
        """Upload the local table if it has pending changes (or when forced)."""

        def body() -> SyncReport:
            if not self.state.dirty and not force:
                return SyncReport(attempted=False, outcome=None, error=None, dirty=False)
            upload, warning = self._upload()
            return SyncReport(
                attempted=True,
                outcome=upload.value if upload else None,
                error=warning,
                dirty=self.state.dirty,
            )

        return self.run_exclusive(self._cycle(body), label="sync")

    def pull(self, force: bool = False) -> str:
        """Download the remote copy; `force` overrides pending local changes."""

        def body() -> str:
            self.state.advance(SyncPhase.DOWNLOADING)
            outcome = self.remote.download(force=force)
            self.state.advance(SyncPhase.LOADED)
            self.persistence.load_or_repair()
            self.state.advance(SyncPhase.IDLE)
            return outcome.value

        return self.run_exclusive(self._cycle(body), label="pull")

    # -- lifecycle -----------------------------------------------------

    def start(self, background: bool = True) -> RecordTable:
        """
        Initial download plus local initialization, then the periodic timer.

        Returns the table loaded at startup.
        """

        def body() -> RecordTable:
            self._refresh(download=True)
            table = self.persistence.load_or_repair()
            self.state.advance(SyncPhase.IDLE)
            return table

        table = self.run_exclusive(self._cycle(body), label="startup")
        log.info(
            "[COORDINATOR] started",
            extra={"rows": len(table), "path": str(self.persistence.path), **self.state.snapshot()},
        )
        if background and self.sync_interval > 0 and self._timer is None:
            self._stop_event.clear()
            self._timer = threading.Thread(
                target=self._periodic_loop, name="PeriodicSync", daemon=True
            )
            self._timer.start()
        self._started = True
        return table

    def _periodic_loop(self) -> None:
        while not self._stop_event.wait(self.sync_interval):
            try:
                report = self.sync_now()
            except BusyError:
                log.info("[SYNC PERIODIC] coordinator busy, skipping this tick")
                continue
            except Exception:  # noqa: BLE001 - the timer must outlive a bad tick
                log.exception("[SYNC PERIODIC] unexpected failure")
                continue
            if report["attempted"]:
                log.info("[SYNC PERIODIC] tick", extra=dict(report))

    def stop(self, flush: bool = True) -> None:
        """Stop the timer and, optionally, try one last upload."""
        self._stop_event.set()
        timer_running = False
        if self._timer is not None:
            self._timer.join(timeout=self.stop_timeout)
            timer_running = self._timer.is_alive()
            self._timer = None
        if flush and self._started and self.state.dirty:
            if timer_running:
                log.warning("[COORDINATOR] final sync skipped, periodic sync still in flight")
            else:
                self._flush()
        self._started = False
        log.info("[COORDINATOR] stopped", extra=self.state.snapshot())

    def _flush(self) -> None:
        try:
            self.sync_now()
        except BusyError:
            log.warning("[COORDINATOR] final sync skipped, coordinator busy")

    def __enter__(self) -> "SyncCoordinator":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        del exc_type, exc, tb
        self.stop()


__all__ = [
    "FifoLock",
    "Mutation",
    "MutationOutcome",
    "SyncCoordinator",
    "SyncReport",
]
