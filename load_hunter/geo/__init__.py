"""
Geography package for Load Hunter: distance math and location resolution.
"""

from load_hunter.geo.distance import EARTH_RADIUS_MILES, distance_between, haversine_miles
from load_hunter.geo.resolver import GeocodingProvider, LocationCache, LocationResolver, cache_key

__all__ = [
    "EARTH_RADIUS_MILES",
    "GeocodingProvider",
    "LocationCache",
    "LocationResolver",
    "cache_key",
    "distance_between",
    "haversine_miles",
]
