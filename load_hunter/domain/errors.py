"""
Error taxonomy for Load Hunter.

Only ``StoreUnavailableError`` is fatal to the worker; every other error is
handled where it arises (logged, degraded, or reported back to the caller).
"""

from __future__ import annotations


class LoadHunterError(Exception):
    """Base class for domain errors."""


class HuntNotFoundError(LoadHunterError, LookupError):
    def __init__(self, hunt_id: str) -> None:
        super().__init__(f"Hunt plan '{hunt_id}' not found")
        self.hunt_id = hunt_id


class MatchNotFoundError(LoadHunterError, LookupError):
    def __init__(self, match_id: str) -> None:
        super().__init__(f"Match '{match_id}' not found")
        self.match_id = match_id


class VehicleNotFoundError(LoadHunterError, LookupError):
    def __init__(self, vehicle_id: str) -> None:
        super().__init__(f"Vehicle '{vehicle_id}' not found")
        self.vehicle_id = vehicle_id


class InvalidTransitionError(LoadHunterError, ValueError):
    """An operator action does not apply to the match's current status."""

    def __init__(self, match_id: str, current: str, action: str) -> None:
        super().__init__(f"Cannot {action} match '{match_id}' while it is {current}")
        self.match_id = match_id
        self.current = current
        self.action = action


class GeocoderUnavailableError(LoadHunterError):
    """The geocoding provider could not be reached or kept failing."""


class StoreUnavailableError(LoadHunterError):
    """Persistence is unreachable after retries; the worker must stop."""


__all__ = [
    "GeocoderUnavailableError",
    "HuntNotFoundError",
    "InvalidTransitionError",
    "LoadHunterError",
    "MatchNotFoundError",
    "StoreUnavailableError",
    "VehicleNotFoundError",
]
