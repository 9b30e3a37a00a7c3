"""
Posting-versus-hunt predicate.

Gates run cheapest first and short-circuit: date, vehicle type, load
capacity, origin geography, then destination. Missing posting data on the
date/type/capacity/destination axes never disqualifies a posting; origin
geography is mandatory.
"""

from __future__ import annotations

from typing import Optional, Tuple

from load_hunter.domain.models import (
    Coordinates,
    HuntPlan,
    MatchResult,
    Place,
    Posting,
    normalize_postal,
)
from load_hunter.geo.distance import distance_between
from load_hunter.geo.resolver import LocationResolver
from load_hunter.matching.canonical import TypeCanonicalizer


class MatchPredicate:
    """
    Decide whether one posting satisfies one hunt's criteria.

    Geocoding happens lazily: the posting's origin is only resolved once the
    cheaper gates have passed and the hunt itself has a point to measure from.
    """

    def __init__(
        self,
        resolver: LocationResolver,
        canonicalizer: Optional[TypeCanonicalizer] = None,
    ) -> None:
        self.resolver = resolver
        self.canonicalizer = canonicalizer or TypeCanonicalizer()

    async def evaluate(self, posting: Posting, hunt: HuntPlan) -> MatchResult:
        if not self._date_ok(posting, hunt):
            return MatchResult(matches=False, reason="date")
        if not self._type_ok(posting, hunt):
            return MatchResult(matches=False, reason="type")
        if not self._capacity_ok(posting, hunt):
            return MatchResult(matches=False, reason="capacity")

        within, distance = await self._origin_ok(posting, hunt)
        if not within:
            return MatchResult(matches=False, distance=distance, reason="geography")
        if not await self._destination_ok(posting, hunt):
            return MatchResult(matches=False, distance=distance, reason="destination")
        return MatchResult(matches=True, distance=distance)

    @staticmethod
    def _date_ok(posting: Posting, hunt: HuntPlan) -> bool:
        if hunt.earliest_pickup is None or posting.pickup_date is None:
            return True
        return posting.pickup_date >= hunt.earliest_pickup

    def _type_ok(self, posting: Posting, hunt: HuntPlan) -> bool:
        if not hunt.vehicle_types or not posting.vehicle_type:
            return True
        return self.canonicalizer.accepts(posting.vehicle_type, hunt.vehicle_types)

    @staticmethod
    def _capacity_ok(posting: Posting, hunt: HuntPlan) -> bool:
        if hunt.load_capacity is None or not posting.weight:
            return True
        return posting.weight <= hunt.load_capacity

    async def _origin_ok(self, posting: Posting, hunt: HuntPlan) -> Tuple[bool, Optional[float]]:
        hunt_point = hunt.origin_point
        if hunt_point is None and hunt.postal_code:
            hunt_point = await self.resolver.resolve(hunt.postal_code)

        if hunt_point is not None:
            posting_point = await self.place_point(posting.origin)
            if posting_point is not None:
                distance = distance_between(hunt_point, posting_point)
                return distance <= hunt.radius_miles, distance

        hunt_zip = normalize_postal(hunt.postal_code)
        posting_zip = posting.origin.normalized_postal
        if hunt_zip and posting_zip:
            return hunt_zip == posting_zip, None
        return False, None

    async def _destination_ok(self, posting: Posting, hunt: HuntPlan) -> bool:
        if hunt.destination_point is None or hunt.destination_radius_miles is None:
            return True
        if posting.destination is None:
            return True
        point = await self.place_point(posting.destination)
        if point is None:
            return True
        return distance_between(hunt.destination_point, point) <= hunt.destination_radius_miles

    async def place_point(self, place: Place) -> Optional[Coordinates]:
        """Parsed coordinates, else "City, ST", else the postal code."""
        if place.coordinates is not None:
            return place.coordinates
        if place.city_state:
            point = await self.resolver.resolve(place.city_state)
            if point is not None:
                return point
        if place.postal_code:
            return await self.resolver.resolve(place.postal_code)
        return None


__all__ = ["MatchPredicate"]
