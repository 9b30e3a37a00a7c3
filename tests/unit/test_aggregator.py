from __future__ import annotations

from datetime import timedelta

import pytest

from conftest import BASE_TIME
from load_hunter.domain.models import Match, MatchEntry
from load_hunter.matching.aggregator import MatchAggregator


@pytest.fixture
def aggregator() -> MatchAggregator:
    return MatchAggregator()


def _entry(make_posting, seq: int, vehicle_id: str, distance, minutes: int = 0) -> MatchEntry:
    posting = make_posting(seq)
    match = Match(
        id=f"{posting.id}-{vehicle_id}",
        tenant_id=posting.tenant_id,
        posting_id=posting.id,
        hunt_id=f"h-{vehicle_id}",
        vehicle_id=vehicle_id,
        distance_miles=distance,
        matched_at=BASE_TIME + timedelta(minutes=minutes),
    )
    return MatchEntry(match=match, posting=posting)


def test_closest_vehicle_is_primary(aggregator, make_posting) -> None:
    entries = [
        _entry(make_posting, 1, "v1", 40.0),
        _entry(make_posting, 1, "v2", 12.5),
        _entry(make_posting, 1, "v3", None),
    ]

    [group] = aggregator.group(entries)

    assert group.primary.match.vehicle_id == "v2"
    assert [entry.match.vehicle_id for entry in group.siblings] == ["v1", "v3"]
    assert group.match_count == 3
    assert group.is_grouped


def test_viewer_vehicle_wins_over_distance(aggregator, make_posting) -> None:
    entries = [_entry(make_posting, 1, "v1", 80.0), _entry(make_posting, 1, "v2", 5.0)]

    [group] = aggregator.group(entries, viewer_vehicle_ids=["v1"])

    assert group.primary.match.vehicle_id == "v1"
    assert group.siblings[0].match.vehicle_id == "v2"


def test_zip_only_matches_sort_after_measured_ones(aggregator, make_posting) -> None:
    entries = [_entry(make_posting, 1, "v1", None), _entry(make_posting, 1, "v2", 99.0)]

    [group] = aggregator.group(entries)

    assert group.primary.match.vehicle_id == "v2"


def test_groups_are_newest_posting_first(aggregator, make_posting) -> None:
    entries = [
        _entry(make_posting, 3, "v1", 10.0),
        _entry(make_posting, 7, "v1", 10.0),
        _entry(make_posting, 5, "v1", 10.0),
        _entry(make_posting, 7, "v2", 3.0),
    ]

    groups = aggregator.group(entries)

    assert [group.primary.posting.seq for group in groups] == [7, 5, 3]
    assert not groups[1].is_grouped


def test_grouping_off_yields_one_row_per_match(aggregator, make_posting) -> None:
    entries = [
        _entry(make_posting, 1, "v1", 10.0, minutes=1),
        _entry(make_posting, 1, "v2", 3.0, minutes=2),
        _entry(make_posting, 2, "v1", 8.0),
    ]

    groups = aggregator.group(entries, grouping=False)

    assert len(groups) == 3
    assert all(group.match_count == 1 for group in groups)
    assert [group.primary.match.id for group in groups] == ["p2-v1", "p1-v2", "p1-v1"]


def test_empty_input(aggregator) -> None:
    assert aggregator.group([]) == []
