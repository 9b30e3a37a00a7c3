"""
Hunt and queue service: the surface offered to dispatch tooling.

Hunt writes (create/enable/disable/delete) run inside the tenant's lane so
they never interleave with a sweep of the same tenant. Operator decisions go
straight to ``MatchActions``; their guarded store writes already resolve
races with the sweeps.
"""

from __future__ import annotations

from datetime import date
from typing import Dict, Iterable, List, Optional, Sequence

from load_hunter.config import Settings, get_settings
from load_hunter.domain.errors import HuntNotFoundError, VehicleNotFoundError
from load_hunter.domain.models import (
    Coordinates,
    HuntPlan,
    Match,
    MatchEntry,
    MatchGroup,
    MatchStatus,
)
from load_hunter.infrastructure.store import MatchStore
from load_hunter.matching.actions import MatchActions
from load_hunter.matching.aggregator import MatchAggregator
from load_hunter.matching.cursor import CursorController
from load_hunter.utils.logging import get_logger
from load_hunter.worker import MatchingWorker, TenantLanes

log = get_logger(__name__)

MISSED_BUCKET = "missed"

BUCKETS: Dict[str, Optional[MatchStatus]] = {
    "live": MatchStatus.ACTIVE,
    "skipped": MatchStatus.SKIPPED,
    "bid": MatchStatus.BID,
    "booked": MatchStatus.BOOKED,
    "waitlist": MatchStatus.WAITLIST,
    "undecided": MatchStatus.UNDECIDED,
    "expired": MatchStatus.EXPIRED,
    MISSED_BUCKET: None,
}


class LoadHunterService:
    def __init__(
        self,
        store: MatchStore,
        cursor: CursorController,
        lanes: Optional[TenantLanes] = None,
        actions: Optional[MatchActions] = None,
        aggregator: Optional[MatchAggregator] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        settings = settings or get_settings()
        self.store = store
        self.cursor = cursor
        self.lanes = lanes or TenantLanes()
        self.actions = actions or MatchActions(store, clock=cursor.clock)
        self.aggregator = aggregator or MatchAggregator()
        self.default_radius = settings.default_pickup_radius_miles

    @classmethod
    def for_worker(cls, worker: MatchingWorker) -> "LoadHunterService":
        """Share the worker's store, cursor controller and tenant lanes."""
        return cls(worker.store, worker.cursor, lanes=worker.lanes, settings=worker.settings)

    async def _require_hunt(self, hunt_id: str) -> HuntPlan:
        hunt = await self.store.get_hunt(hunt_id)
        if hunt is None or hunt.deleted_at is not None:
            raise HuntNotFoundError(hunt_id)
        return hunt

    # Hunts
    async def create_hunt(
        self,
        tenant_id: str,
        vehicle_id: str,
        name: str = "",
        vehicle_types: Sequence[str] = (),
        origin_point: Optional[Coordinates] = None,
        radius_miles: Optional[float] = None,
        postal_code: Optional[str] = None,
        earliest_pickup: Optional[date] = None,
        destination_point: Optional[Coordinates] = None,
        destination_radius_miles: Optional[float] = None,
        load_capacity: Optional[float] = None,
        enabled: bool = False,
    ) -> HuntPlan:
        """
        Create a hunt plan for one of the tenant's vehicles.

        Vehicle types are stored canonicalized. When ``enabled`` is set the
        hunt is activated (floor pinned, backfilled) before returning.

        Raises
        ------
        VehicleNotFoundError
            If the vehicle is unknown or belongs to another tenant.
        """
        vehicle = await self.store.get_vehicle(vehicle_id)
        if vehicle is None or vehicle.tenant_id != tenant_id:
            raise VehicleNotFoundError(vehicle_id)

        canonicalizer = self.cursor.predicate.canonicalizer
        canonical_types: List[str] = []
        for raw in vehicle_types:
            canonical = canonicalizer.canonicalize(raw)
            if canonical and canonical not in canonical_types:
                canonical_types.append(canonical)

        hunt = HuntPlan(
            tenant_id=tenant_id,
            vehicle_id=vehicle_id,
            name=name or f"Hunt {vehicle.unit_number or vehicle_id}",
            vehicle_types=canonical_types,
            origin_point=origin_point,
            radius_miles=radius_miles or self.default_radius,
            postal_code=postal_code,
            earliest_pickup=earliest_pickup,
            destination_point=destination_point,
            destination_radius_miles=destination_radius_miles,
            load_capacity=load_capacity,
        )
        async with self.lanes.lock(tenant_id):
            hunt = await self.store.create_hunt(hunt)
        log.info("[HUNT CREATED]", extra={"hunt_id": hunt.id, "tenant_id": tenant_id})
        if enabled:
            return await self.enable_hunt(hunt.id)
        return hunt

    async def enable_hunt(self, hunt_id: str) -> HuntPlan:
        hunt = await self._require_hunt(hunt_id)
        async with self.lanes.lock(hunt.tenant_id):
            await self.cursor.activate(hunt_id)
        return await self._require_hunt(hunt_id)

    async def disable_hunt(self, hunt_id: str) -> HuntPlan:
        hunt = await self._require_hunt(hunt_id)
        async with self.lanes.lock(hunt.tenant_id):
            return await self.cursor.deactivate(hunt_id)

    async def delete_hunt(self, hunt_id: str) -> int:
        """Soft delete: disable, rename, stamp and purge the hunt's matches."""
        hunt = await self._require_hunt(hunt_id)
        deleted_at = self.cursor.clock()
        new_name = f"{hunt.name} [deleted {deleted_at:%Y%m%d%H%M%S}]"
        async with self.lanes.lock(hunt.tenant_id):
            purged = await self.store.soft_delete_hunt(hunt_id, new_name, deleted_at)
        log.info("[HUNT DELETED]", extra={"hunt_id": hunt_id, "purged": purged})
        return purged

    async def list_hunts(self, tenant_id: str, enabled_only: bool = False) -> List[HuntPlan]:
        return await self.store.list_hunts(tenant_id, enabled_only=enabled_only)

    # Decisions
    async def skip(self, match_id: str, actor: Optional[str] = None, notes: Optional[str] = None) -> Match:
        return await self.actions.skip(match_id, actor=actor, notes=notes)

    async def bid(
        self,
        match_id: str,
        rate: Optional[float] = None,
        actor: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Match:
        return await self.actions.bid(match_id, rate=rate, actor=actor, notes=notes)

    async def waitlist(self, match_id: str, actor: Optional[str] = None, notes: Optional[str] = None) -> Match:
        return await self.actions.waitlist(match_id, actor=actor, notes=notes)

    async def mark_undecided(self, match_id: str, actor: Optional[str] = None) -> Match:
        return await self.actions.mark_undecided(match_id, actor=actor)

    async def book(
        self,
        match_id: str,
        booked_load_id: Optional[str] = None,
        actor: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Match:
        return await self.actions.book(match_id, booked_load_id=booked_load_id, actor=actor, notes=notes)

    # Queues
    async def live_queue(
        self,
        tenant_id: str,
        viewer_vehicle_ids: Optional[Iterable[str]] = None,
        grouping: bool = True,
        mine_only: bool = False,
    ) -> List[MatchGroup]:
        """
        Active matches, one row per posting unless grouping is off.

        With ``mine_only`` only postings matched by one of the viewer's
        vehicles are shown; their groups still carry every sibling.

        Raises
        ------
        ValueError
            If ``mine_only`` is set without any viewer vehicle.
        """
        viewer = list(viewer_vehicle_ids or ())
        entries = await self.store.list_entries(tenant_id, [MatchStatus.ACTIVE])
        if mine_only:
            if not viewer:
                raise ValueError("Showing only the viewer's matches needs at least one vehicle id")
            own = await self.store.list_entries(tenant_id, [MatchStatus.ACTIVE], vehicle_ids=viewer)
            if not grouping:
                entries = own
            else:
                postings = {entry.posting.id for entry in own}
                entries = [entry for entry in entries if entry.posting.id in postings]
        return self.aggregator.group(entries, viewer, grouping=grouping)

    async def bucket(self, tenant_id: str, name: str) -> List[MatchEntry]:
        """
        Matches in one decision bucket, newest posting first.

        Raises
        ------
        ValueError
            If ``name`` is not a known bucket.
        """
        if name not in BUCKETS:
            raise ValueError(f"Unknown bucket '{name}'. Available: {', '.join(BUCKETS)}")
        if name == MISSED_BUCKET:
            return await self._missed_entries(tenant_id)
        return await self.store.list_entries(tenant_id, [BUCKETS[name]])

    async def _missed_entries(self, tenant_id: str) -> List[MatchEntry]:
        entries: List[MatchEntry] = []
        for record in await self.store.list_missed(tenant_id):
            match = await self.store.get_match(record.match_id)
            posting = await self.store.get_posting(record.posting_id)
            if match is not None and posting is not None:
                entries.append(MatchEntry(match=match, posting=posting))
        return entries

    async def bucket_counts(self, tenant_id: str) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for name, status in BUCKETS.items():
            if status is None:
                counts[name] = len(await self.store.list_missed(tenant_id))
            else:
                counts[name] = len(await self.store.list_entries(tenant_id, [status]))
        return counts


__all__ = ["BUCKETS", "LoadHunterService"]
