from __future__ import annotations

from datetime import timedelta

import pytest

from conftest import OTHER_TENANT
from load_hunter.domain.models import MatchStatus, Place, PostingStatus


async def _live_hunt(store, worker, make_hunt, hunt_id: str = "h1", vehicle_id: str = "v1") -> None:
    await store.create_hunt(make_hunt(hunt_id, vehicle_id=vehicle_id))
    await worker.cursor.activate(hunt_id)


@pytest.mark.asyncio
async def test_only_postings_above_floor_match_whatever_the_delivery_order(
    worker, store, make_hunt, make_posting, clock
) -> None:
    old = clock.now - timedelta(minutes=30)
    for seq in (1, 2, 3):
        await store.ingest_posting(make_posting(seq, received_at=old))
    await _live_hunt(store, worker, make_hunt)
    assert (await store.get_hunt("h1")).floor_marker == 3

    p5 = await store.ingest_posting(make_posting(5))
    p4 = await store.ingest_posting(make_posting(4))

    assert await worker.forward.match_postings("tenant-a", [p5]) == 1
    assert await worker.forward.match_postings("tenant-a", [p4]) == 1
    assert await worker.forward.match_postings("tenant-a", [await store.get_posting("p2")]) == 0

    matched = sorted(entry.posting.seq for entry in await store.list_entries("tenant-a", [MatchStatus.ACTIVE]))
    assert matched == [4, 5]


@pytest.mark.asyncio
async def test_activating_hunts_are_not_evaluated(worker, store, make_hunt, make_posting) -> None:
    await store.create_hunt(make_hunt())
    await store.start_activation("h1", 0)
    posting = await store.ingest_posting(make_posting(1))

    assert await worker.forward.match_postings("tenant-a", [posting]) == 0
    assert await worker.forward.sweep("tenant-a") == 0


@pytest.mark.asyncio
async def test_repeated_evaluation_keeps_one_match_per_pair(worker, store, make_hunt, make_posting) -> None:
    await _live_hunt(store, worker, make_hunt)
    posting = await store.ingest_posting(make_posting(1))

    assert await worker.forward.match_postings("tenant-a", [posting]) == 1
    assert await worker.forward.match_postings("tenant-a", [posting]) == 0
    assert await worker.forward.sweep("tenant-a") == 0

    assert len(await store.matches_for_posting("p1")) == 1


@pytest.mark.asyncio
async def test_reevaluation_never_resets_a_decided_match(worker, store, make_hunt, make_posting) -> None:
    await _live_hunt(store, worker, make_hunt)
    await store.ingest_posting(make_posting(1))
    await store.ingest_posting(make_posting(2))
    await worker.forward.sweep("tenant-a")

    [match] = await store.matches_for_posting("p2")
    await store.transition_match(
        match.id, (MatchStatus.ACTIVE,), MatchStatus.WAITLIST, at=match.matched_at
    )
    await worker.forward.sweep("tenant-a")

    [again] = await store.matches_for_posting("p2")
    assert again.id == match.id
    assert again.status is MatchStatus.WAITLIST


@pytest.mark.asyncio
async def test_sweep_walks_every_batch(worker, store, make_hunt, make_posting) -> None:
    await _live_hunt(store, worker, make_hunt)
    for seq in range(1, 6):
        await store.ingest_posting(make_posting(seq))

    # batch size is 2 in the test settings
    assert await worker.forward.sweep("tenant-a") == 5


@pytest.mark.asyncio
async def test_sweep_skips_closed_and_expired_postings(
    worker, store, make_hunt, make_posting, clock
) -> None:
    await _live_hunt(store, worker, make_hunt)
    await store.ingest_posting(make_posting(1, status=PostingStatus.BID))
    await store.ingest_posting(make_posting(2, expires_at=clock.now - timedelta(minutes=1)))
    await store.ingest_posting(make_posting(3, received_at=clock.now - timedelta(minutes=121)))
    await store.ingest_posting(make_posting(4, expires_at=clock.now + timedelta(minutes=5)))

    assert await worker.forward.sweep("tenant-a") == 1
    assert [match.hunt_id for match in await store.matches_for_posting("p4")] == ["h1"]


@pytest.mark.asyncio
async def test_postings_without_location_are_never_geocoded(
    worker, store, make_hunt, make_posting, geocoder
) -> None:
    await _live_hunt(store, worker, make_hunt)
    posting = await store.ingest_posting(make_posting(1, origin=Place()))

    assert await worker.forward.match_postings("tenant-a", [posting]) == 0
    assert geocoder.calls == []


@pytest.mark.asyncio
async def test_postings_of_other_tenants_are_ignored(worker, store, make_hunt, make_posting) -> None:
    await _live_hunt(store, worker, make_hunt)
    foreign = await store.ingest_posting(make_posting(1, id="foreign", tenant_id=OTHER_TENANT))

    assert await worker.forward.match_postings("tenant-a", [foreign]) == 0
    assert await worker.forward.sweep("tenant-a") == 0


@pytest.mark.asyncio
async def test_every_live_hunt_sees_the_posting(worker, store, make_hunt, make_posting) -> None:
    await _live_hunt(store, worker, make_hunt, "h1", "v1")
    await _live_hunt(store, worker, make_hunt, "h2", "v2")
    posting = await store.ingest_posting(make_posting(1))

    assert await worker.forward.match_postings("tenant-a", [posting]) == 2
    assert {match.vehicle_id for match in await store.matches_for_posting("p1")} == {"v1", "v2"}
