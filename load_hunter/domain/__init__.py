"""
Domain package for Load Hunter.

Exports the core domain models and errors used across matching, stores and
the worker. Keep this package focused on data definitions and validation.
"""

from load_hunter.domain.errors import (
    GeocoderUnavailableError,
    HuntNotFoundError,
    InvalidTransitionError,
    LoadHunterError,
    MatchNotFoundError,
    StoreUnavailableError,
    VehicleNotFoundError,
)
from load_hunter.domain.models import (
    ChangeEvent,
    Coordinates,
    EventKind,
    HuntPlan,
    HuntState,
    Match,
    MatchAction,
    MatchEntry,
    MatchGroup,
    MatchResult,
    MatchStatus,
    MissedRecord,
    OperatorAction,
    Place,
    Posting,
    PostingStatus,
    Vehicle,
)

__all__ = [
    # Models
    "ChangeEvent",
    "Coordinates",
    "EventKind",
    "HuntPlan",
    "HuntState",
    "Match",
    "MatchAction",
    "MatchEntry",
    "MatchGroup",
    "MatchResult",
    "MatchStatus",
    "MissedRecord",
    "OperatorAction",
    "Place",
    "Posting",
    "PostingStatus",
    "Vehicle",
    # Errors
    "GeocoderUnavailableError",
    "HuntNotFoundError",
    "InvalidTransitionError",
    "LoadHunterError",
    "MatchNotFoundError",
    "StoreUnavailableError",
    "VehicleNotFoundError",
]
