from __future__ import annotations

from datetime import datetime, timezone

import pytest

from signup_store.state import SyncPhase, SyncState

MUTATION_CYCLE = [
    SyncPhase.DOWNLOADING,
    SyncPhase.LOADED,
    SyncPhase.MUTATED,
    SyncPhase.PERSISTED,
    SyncPhase.UPLOADING,
    SyncPhase.IDLE,
]


def test_full_mutation_cycle_is_legal() -> None:
    state = SyncState()
    for phase in MUTATION_CYCLE:
        state.advance(phase)
    assert state.phase is SyncPhase.IDLE


def test_failed_upload_returns_to_idle_through_sync_failed() -> None:
    state = SyncState()
    state.advance(SyncPhase.UPLOADING)
    state.advance(SyncPhase.SYNC_FAILED)
    state.advance(SyncPhase.IDLE)
    assert state.phase is SyncPhase.IDLE


@pytest.mark.parametrize(
    ("path", "illegal"),
    [
        ([], SyncPhase.MUTATED),
        ([SyncPhase.LOADED, SyncPhase.MUTATED], SyncPhase.IDLE),
        ([SyncPhase.UPLOADING], SyncPhase.LOADED),
    ],
)
def test_illegal_transition_raises(path: list[SyncPhase], illegal: SyncPhase) -> None:
    state = SyncState()
    for phase in path:
        state.advance(phase)
    with pytest.raises(RuntimeError):
        state.advance(illegal)


def test_reset_keeps_dirty_flag() -> None:
    state = SyncState()
    state.advance(SyncPhase.LOADED)
    state.advance(SyncPhase.MUTATED)
    state.mark_dirty()

    state.reset()

    assert state.phase is SyncPhase.IDLE
    assert state.dirty is True


def test_mark_uploaded_clears_dirty_and_error() -> None:
    state = SyncState()
    state.mark_dirty()
    state.record_error("boom")
    when = datetime(2024, 5, 1, tzinfo=timezone.utc)

    state.mark_uploaded(when)

    snapshot = state.snapshot()
    assert snapshot["dirty"] is False
    assert snapshot["last_error"] is None
    assert snapshot["last_upload_at"] == when.isoformat()
    assert snapshot["phase"] == "idle"
