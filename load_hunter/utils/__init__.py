"""
Utilities package for Load Hunter.

Exports shared helpers for logging and tick profiling.
Keep this package lightweight and free of domain-specific logic.
"""

from load_hunter.utils.logging import configure_logging, get_logger
from load_hunter.utils.profiler import ProfileStats, profile_block

__all__ = [
    "configure_logging",
    "get_logger",
    "ProfileStats",
    "profile_block",
]
