"""
Timing utilities for coordinator operations.

Every table-touching operation runs inside the coordinator's critical section;
this module measures how long an operation waited for the lock and how long it
held it, plus the process RSS before and after (psutil), so slow uploads or
lock convoys show up in the logs.

Usage examples:
    from signup_store.utils.profiler import profile_block

    with profile_block("submit") as stats:
        service.submit(...)

    print(stats.duration_seconds, stats.rss_delta_bytes)
"""

from __future__ import annotations

import contextlib
import time
from dataclasses import dataclass, field
from typing import Any, Generator, Optional

import psutil


@dataclass
class ProfileStats:
    """
    Container for a single operation's measurements.
    """

    label: str
    start_ts: float = field(default=0.0)
    end_ts: float = field(default=0.0)
    duration_seconds: float = field(default=0.0)
    rss_start_bytes: Optional[int] = field(default=None)
    rss_end_bytes: Optional[int] = field(default=None)
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def duration_ms(self) -> float:
        return round(self.duration_seconds * 1000.0, 2)

    @property
    def rss_delta_bytes(self) -> Optional[int]:
        if self.rss_start_bytes is None or self.rss_end_bytes is None:
            return None
        return self.rss_end_bytes - self.rss_start_bytes

    def as_log_extra(self) -> dict[str, Any]:
        """Flatten the stats into a dict suitable for `extra=`."""
        payload: dict[str, Any] = {
            "operation": self.label,
            "duration_ms": self.duration_ms,
        }
        if self.rss_delta_bytes is not None:
            payload["rss_delta_bytes"] = self.rss_delta_bytes
        payload.update(self.extra)
        return payload


def _current_rss() -> Optional[int]:
    try:
        return psutil.Process().memory_info().rss
    except psutil.Error:
        return None


@contextlib.contextmanager
def profile_block(label: str, track_memory: bool = True) -> Generator[ProfileStats, None, None]:
    """
    Context manager to time a block of code.

    Parameters
    ----------
    label : str
        Human-friendly label for the profiled block (usually the operation name).
    track_memory : bool
        Whether to sample RSS at the start and end of the block.

    Notes
    -----
    Stats are finalized even when the block raises, so callers can log the
    duration of failed operations from a ``finally`` clause.
    """
    stats = ProfileStats(label=label)
    if track_memory:
        stats.rss_start_bytes = _current_rss()

    stats.start_ts = time.perf_counter()
    try:
        yield stats
    finally:
        stats.end_ts = time.perf_counter()
        stats.duration_seconds = stats.end_ts - stats.start_ts
        if track_memory:
            stats.rss_end_bytes = _current_rss()


__all__ = ["ProfileStats", "profile_block"]
