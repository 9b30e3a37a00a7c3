"""
Load Hunter - continuous matching of freight-load postings to vehicle hunts.

Postings arrive as an append-only stream; each saved hunt (a per-vehicle
search profile) is evaluated forward-only against them, producing a
de-duplicated queue of candidate matches that dispatchers triage:

- Hunt activation with a pinned floor and a bounded backfill
- Forward matching driven by change events and periodic sweeps
- Missed detection and expiration sweeps that never override a decision
- Operator actions (skip, bid, waitlist, undecided, book) with audit rows
- Read-side grouping of sibling matches per posting
"""

from __future__ import annotations

__version__ = "0.1.0"
__license__ = "MIT"

# Public API exports
from load_hunter.config import Settings, get_settings
from load_hunter.infrastructure.memory_store import MemoryStore
from load_hunter.infrastructure.store import MatchStore
from load_hunter.service import LoadHunterService
from load_hunter.utils.logging import configure_logging, get_logger
from load_hunter.utils.profiler import ProfileStats, profile_block
from load_hunter.worker import MatchingWorker, TenantLanes, build_worker

__all__ = [
    # Version info
    "__version__",
    "__license__",
    # Configuration
    "Settings",
    "get_settings",
    # Persistence
    "MatchStore",
    "MemoryStore",
    # Runtime
    "LoadHunterService",
    "MatchingWorker",
    "TenantLanes",
    "build_worker",
    # Logging
    "configure_logging",
    "get_logger",
    # Profiling
    "ProfileStats",
    "profile_block",
]
