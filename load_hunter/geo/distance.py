"""Great-circle distance between coordinate pairs."""

from __future__ import annotations

import math

from load_hunter.domain.models import Coordinates

EARTH_RADIUS_MILES = 3959.0


def haversine_miles(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Return the great-circle distance in miles between two lat/lng points."""
    dlat = math.radians(lat2 - lat1)
    dlng = math.radians(lng2 - lng1)
    a = (
        math.sin(dlat / 2) ** 2
        + math.cos(math.radians(lat1))
        * math.cos(math.radians(lat2))
        * math.sin(dlng / 2) ** 2
    )
    return EARTH_RADIUS_MILES * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def distance_between(a: Coordinates, b: Coordinates) -> float:
    return haversine_miles(a.lat, a.lng, b.lat, b.lng)


__all__ = ["EARTH_RADIUS_MILES", "distance_between", "haversine_miles"]
