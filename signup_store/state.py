"""
Process-wide sync state.

`SyncState` carries the dirty flag and the phase of the current sync cycle.
Phases move along an explicit transition table instead of ad hoc boolean
checks; the "skip the download when local changes are pending" rule is the
`IDLE -> LOADED` edge.

    IDLE -> DOWNLOADING -> LOADED -> MUTATED -> PERSISTED -> UPLOADING -> IDLE
                                                              UPLOADING -> SYNC_FAILED -> IDLE
"""
from __future__ import annotations

import enum
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, FrozenSet, Optional


class SyncPhase(str, enum.Enum):
    IDLE = "idle"
    DOWNLOADING = "downloading"
    LOADED = "loaded"
    MUTATED = "mutated"
    PERSISTED = "persisted"
    UPLOADING = "uploading"
    SYNC_FAILED = "sync_failed"


TRANSITIONS: Dict[SyncPhase, FrozenSet[SyncPhase]] = {
    SyncPhase.IDLE: frozenset({SyncPhase.DOWNLOADING, SyncPhase.LOADED, SyncPhase.UPLOADING}),
    SyncPhase.DOWNLOADING: frozenset({SyncPhase.LOADED, SyncPhase.IDLE}),
    SyncPhase.LOADED: frozenset({SyncPhase.MUTATED, SyncPhase.IDLE}),
    SyncPhase.MUTATED: frozenset({SyncPhase.PERSISTED}),
    SyncPhase.PERSISTED: frozenset({SyncPhase.UPLOADING, SyncPhase.IDLE}),
    SyncPhase.UPLOADING: frozenset({SyncPhase.IDLE, SyncPhase.SYNC_FAILED}),
    SyncPhase.SYNC_FAILED: frozenset({SyncPhase.IDLE}),
}


@dataclass
class SyncState:
    dirty: bool = False
    phase: SyncPhase = SyncPhase.IDLE
    remote_present: Optional[bool] = None
    last_upload_at: Optional[datetime] = None
    last_download_at: Optional[datetime] = None
    last_error: Optional[str] = None
    _guard: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def advance(self, target: SyncPhase) -> None:
        with self._guard:
            if target not in TRANSITIONS[self.phase]:
                raise RuntimeError(f"Illegal sync transition {self.phase.value} -> {target.value}")
            self.phase = target

    def reset(self) -> None:
        """Return to IDLE after an aborted cycle; the dirty flag is untouched."""
        with self._guard:
            self.phase = SyncPhase.IDLE

    def mark_dirty(self) -> None:
        with self._guard:
            self.dirty = True

    def mark_uploaded(self, when: datetime) -> None:
        with self._guard:
            self.dirty = False
            self.last_upload_at = when
            self.last_error = None

    def mark_downloaded(self, when: datetime) -> None:
        """The local file now mirrors the remote copy."""
        with self._guard:
            self.dirty = False
            self.last_download_at = when

    def record_error(self, message: str) -> None:
        with self._guard:
            self.last_error = message

    def snapshot(self) -> Dict[str, Any]:
        with self._guard:
            return {
                "dirty": self.dirty,
                "phase": self.phase.value,
                "remote_present": self.remote_present,
                "last_upload_at": self.last_upload_at.isoformat() if self.last_upload_at else None,
                "last_download_at": (
                    self.last_download_at.isoformat() if self.last_download_at else None
                ),
                "last_error": self.last_error,
            }


__all__ = ["SyncPhase", "SyncState", "TRANSITIONS"]
