from __future__ import annotations

from datetime import date

import pytest

from conftest import HUB, north_of
from load_hunter.domain.models import Coordinates, Place

FORTY_MILES = 40.0


@pytest.mark.asyncio
async def test_reference_hunt_matches_nearby_large_straight(predicate, make_hunt, make_posting) -> None:
    hunt = make_hunt()
    posting = make_posting(
        1,
        origin=Place(coordinates=north_of(HUB, FORTY_MILES)),
        vehicle_type="large straight",
        pickup_date=date(2024, 1, 12),
    )

    result = await predicate.evaluate(posting, hunt)

    assert result.matches is True
    assert result.distance == pytest.approx(FORTY_MILES, abs=0.01)


@pytest.mark.asyncio
async def test_other_equipment_type_is_rejected(predicate, make_hunt, make_posting) -> None:
    result = await predicate.evaluate(make_posting(2, vehicle_type="reefer"), make_hunt())

    assert result.matches is False
    assert result.reason == "type"


@pytest.mark.asyncio
async def test_pickup_before_earliest_date_is_rejected(predicate, make_hunt, make_posting) -> None:
    result = await predicate.evaluate(make_posting(3, pickup_date=date(2024, 1, 5)), make_hunt())

    assert result.matches is False
    assert result.reason == "date"


@pytest.mark.asyncio
async def test_pickup_timestamp_is_truncated_to_day(predicate, make_hunt, make_posting) -> None:
    posting = make_posting(4, pickup_date="2024-01-10 23:30 CST")

    result = await predicate.evaluate(posting, make_hunt())

    assert posting.pickup_date == date(2024, 1, 10)
    assert result.matches is True


@pytest.mark.asyncio
async def test_missing_optional_posting_fields_do_not_disqualify(predicate, make_hunt, make_posting) -> None:
    posting = make_posting(5, vehicle_type=None, pickup_date=None, weight=None)

    result = await predicate.evaluate(posting, make_hunt(load_capacity=5000))

    assert result.matches is True


@pytest.mark.asyncio
async def test_mapped_raw_type_is_canonicalized(predicate, make_hunt, make_posting) -> None:
    result = await predicate.evaluate(make_posting(6, vehicle_type="Lg-Straight"), make_hunt())

    assert result.matches is True


@pytest.mark.asyncio
async def test_hunt_without_type_filter_accepts_anything(predicate, make_hunt, make_posting) -> None:
    result = await predicate.evaluate(make_posting(7, vehicle_type="reefer"), make_hunt(vehicle_types=[]))

    assert result.matches is True


@pytest.mark.asyncio
async def test_weight_above_capacity_is_rejected(predicate, make_hunt, make_posting) -> None:
    hunt = make_hunt(load_capacity=10_000)

    heavy = await predicate.evaluate(make_posting(8, weight=12_000), hunt)
    light = await predicate.evaluate(make_posting(9, weight=9_000), hunt)

    assert heavy.reason == "capacity"
    assert light.matches is True


@pytest.mark.asyncio
async def test_outside_radius_is_rejected(predicate, make_hunt, make_posting) -> None:
    posting = make_posting(10, origin=Place(coordinates=north_of(HUB, 150)))

    result = await predicate.evaluate(posting, make_hunt())

    assert result.matches is False
    assert result.reason == "geography"
    assert result.distance == pytest.approx(150, abs=0.01)


@pytest.mark.asyncio
async def test_posting_origin_resolved_from_city_state(predicate, geocoder, make_hunt, make_posting) -> None:
    geocoder.add("Macon, GA", north_of(HUB, 60))
    posting = make_posting(11, origin=Place(city="Macon", state="GA", postal_code="31201"))

    result = await predicate.evaluate(posting, make_hunt())

    assert result.matches is True
    assert result.distance == pytest.approx(60, abs=0.01)
    assert geocoder.calls == ["macon, ga"]


@pytest.mark.asyncio
async def test_posting_origin_falls_back_to_postal_code(predicate, geocoder, make_hunt, make_posting) -> None:
    geocoder.add("31201", north_of(HUB, 20))
    posting = make_posting(12, origin=Place(city="Unknown", state="GA", postal_code="31201"))

    result = await predicate.evaluate(posting, make_hunt())

    assert result.matches is True
    assert geocoder.calls == ["unknown, ga", "31201"]


@pytest.mark.asyncio
async def test_cheap_gates_run_before_geocoding(predicate, geocoder, make_hunt, make_posting) -> None:
    posting = make_posting(
        13,
        origin=Place(city="Macon", state="GA"),
        pickup_date=date(2024, 1, 1),
    )

    result = await predicate.evaluate(posting, make_hunt())

    assert result.reason == "date"
    assert geocoder.calls == []


@pytest.mark.asyncio
async def test_postal_equality_when_coordinates_unavailable(predicate, make_hunt, make_posting) -> None:
    hunt = make_hunt(origin_point=None, postal_code="30303-1234")
    same_zip = make_posting(14, origin=Place(postal_code="30303"))
    other_zip = make_posting(15, origin=Place(postal_code="30304"))

    matched = await predicate.evaluate(same_zip, hunt)
    missed = await predicate.evaluate(other_zip, hunt)

    assert matched.matches is True
    assert matched.distance is None
    assert missed.matches is False
    assert missed.reason == "geography"


@pytest.mark.asyncio
async def test_hunt_postal_code_resolved_to_point(predicate, geocoder, make_hunt, make_posting) -> None:
    geocoder.add("30303", HUB)
    hunt = make_hunt(origin_point=None, postal_code="30303")
    posting = make_posting(16, origin=Place(postal_code="31999", coordinates=north_of(HUB, 30)))

    result = await predicate.evaluate(posting, hunt)

    assert result.matches is True
    assert result.distance == pytest.approx(30, abs=0.01)


@pytest.mark.asyncio
async def test_geography_is_mandatory(predicate, make_hunt, make_posting) -> None:
    posting = make_posting(17, origin=Place(city="Nowhere", state="ZZ"))

    result = await predicate.evaluate(posting, make_hunt())

    assert result.matches is False
    assert result.reason == "geography"


@pytest.mark.asyncio
async def test_destination_outside_radius_is_rejected(predicate, make_hunt, make_posting) -> None:
    hunt = make_hunt(destination_point=Coordinates(lat=35.0, lng=-84.0), destination_radius_miles=50)
    near = make_posting(18, destination=Place(coordinates=Coordinates(lat=35.2, lng=-84.0)))
    far = make_posting(19, destination=Place(coordinates=Coordinates(lat=30.0, lng=-84.0)))
    unknown = make_posting(20, destination=Place(city="Nowhere", state="ZZ"))

    assert (await predicate.evaluate(near, hunt)).matches is True
    assert (await predicate.evaluate(far, hunt)).reason == "destination"
    assert (await predicate.evaluate(unknown, hunt)).matches is True
