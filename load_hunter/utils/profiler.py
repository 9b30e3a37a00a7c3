"""
Tick profiling for the Load Hunter worker.

Each sweep tick runs inside ``profile_block`` so its wall-clock duration and
the process RSS at the end of the tick can be logged alongside the tick's own
counters. Useful for spotting a tenant whose backlog makes sweeps slower than
their interval.

Usage:
    from load_hunter.utils.profiler import profile_block

    with profile_block("lifecycle") as stats:
        await sweeper.sweep(tenant_id)

    log.info("tick", extra=stats.as_log_extra())
"""

from __future__ import annotations

import contextlib
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Generator, Optional

import psutil


@dataclass
class ProfileStats:
    """
    Container for tick measurements.
    """

    label: str
    start_ts: float = field(default=0.0)
    end_ts: float = field(default=0.0)
    duration_seconds: float = field(default=0.0)
    rss_bytes: Optional[int] = field(default=None)
    extra: Dict[str, Any] = field(default_factory=dict)

    def as_log_extra(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "tick": self.label,
            "duration_ms": round(self.duration_seconds * 1000, 1),
        }
        if self.rss_bytes is not None:
            payload["rss_bytes"] = self.rss_bytes
        payload.update(self.extra)
        return payload


@contextlib.contextmanager
def profile_block(label: str, measure_rss: bool = True) -> Generator[ProfileStats, None, None]:
    """
    Context manager measuring the duration of a block.

    Parameters
    ----------
    label : str
        Human-friendly label for the profiled block.
    measure_rss : bool
        Whether to snapshot the process RSS when the block exits.
    """
    stats = ProfileStats(label=label)
    stats.start_ts = time.perf_counter()
    try:
        yield stats
    finally:
        stats.end_ts = time.perf_counter()
        stats.duration_seconds = stats.end_ts - stats.start_ts
        if measure_rss:
            try:
                stats.rss_bytes = psutil.Process().memory_info().rss
            except psutil.Error:
                stats.rss_bytes = None


__all__ = ["ProfileStats", "profile_block"]
