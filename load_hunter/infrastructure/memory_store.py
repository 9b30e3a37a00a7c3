"""
Process-local implementation of ``MatchStore``.

Backs dry runs and the unit tests. Each method completes without awaiting
anything, so under asyncio every call is atomic just like a single-statement
transaction in the PostgreSQL store. When an ``EventBus`` is attached, posting
inserts, hunt changes and new matches are published the way the database
triggers publish them.
"""

from __future__ import annotations

from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

from load_hunter.domain.models import (
    ChangeEvent,
    EventKind,
    HuntPlan,
    Match,
    MatchAction,
    MatchEntry,
    MatchStatus,
    MissedRecord,
    Posting,
    PostingStatus,
    Vehicle,
)
from load_hunter.infrastructure.notifications import EventBus


class MemoryStore:
    """Dict-backed store with the same guarantees as the PostgreSQL one."""

    def __init__(self, events: Optional[EventBus] = None) -> None:
        self.events = events
        self._vehicles: Dict[str, Vehicle] = {}
        self._hunts: Dict[str, HuntPlan] = {}
        self._postings: Dict[str, Posting] = {}
        self._matches: Dict[str, Match] = {}
        self._match_keys: Dict[Tuple[str, str], str] = {}
        self._missed: Dict[str, MissedRecord] = {}
        self._actions: List[MatchAction] = []

    def _publish(self, kind: EventKind, tenant_id: str, entity_id: str, op: str, seq: Optional[int] = None) -> None:
        if self.events is not None:
            self.events.publish(
                ChangeEvent(kind=kind, tenant_id=tenant_id, entity_id=entity_id, op=op, seq=seq)
            )

    # Vehicles
    def add_vehicle(self, vehicle: Vehicle) -> Vehicle:
        self._vehicles[vehicle.id] = vehicle
        return vehicle

    async def get_vehicle(self, vehicle_id: str) -> Optional[Vehicle]:
        return self._vehicles.get(vehicle_id)

    # Hunts
    async def create_hunt(self, hunt: HuntPlan) -> HuntPlan:
        if hunt.id in self._hunts:
            raise ValueError(f"Hunt plan '{hunt.id}' already exists")
        self._hunts[hunt.id] = hunt
        self._publish(EventKind.HUNT, hunt.tenant_id, hunt.id, "insert")
        return hunt

    async def get_hunt(self, hunt_id: str) -> Optional[HuntPlan]:
        return self._hunts.get(hunt_id)

    async def list_hunts(self, tenant_id: str, enabled_only: bool = False) -> List[HuntPlan]:
        return [
            hunt
            for hunt in self._hunts.values()
            if hunt.tenant_id == tenant_id
            and hunt.deleted_at is None
            and (hunt.enabled or not enabled_only)
        ]

    async def list_tenants(self) -> List[str]:
        return sorted({hunt.tenant_id for hunt in self._hunts.values() if hunt.enabled})

    async def list_active_match_tenants(self) -> List[str]:
        return sorted({match.tenant_id for match in self._matches.values() if match.active})

    def _update_hunt(self, hunt_id: str, **fields) -> Optional[HuntPlan]:
        hunt = self._hunts.get(hunt_id)
        if hunt is None:
            return None
        updated = hunt.model_copy(update=fields)
        self._hunts[hunt_id] = updated
        self._publish(EventKind.HUNT, updated.tenant_id, hunt_id, "update")
        return updated

    async def start_activation(self, hunt_id: str, floor_marker: int) -> Optional[HuntPlan]:
        return self._update_hunt(
            hunt_id, enabled=True, floor_marker=floor_marker, initial_backfill_done=False
        )

    async def finish_activation(self, hunt_id: str, floor_marker: int) -> bool:
        hunt = self._hunts.get(hunt_id)
        if hunt is None or not hunt.enabled or hunt.floor_marker != floor_marker:
            return False
        self._update_hunt(hunt_id, initial_backfill_done=True)
        return True

    async def clear_activation(self, hunt_id: str) -> Optional[HuntPlan]:
        return self._update_hunt(
            hunt_id, enabled=False, floor_marker=None, initial_backfill_done=False
        )

    async def soft_delete_hunt(self, hunt_id: str, new_name: str, deleted_at: datetime) -> int:
        if self._update_hunt(
            hunt_id,
            enabled=False,
            floor_marker=None,
            initial_backfill_done=False,
            name=new_name,
            deleted_at=deleted_at,
        ) is None:
            return 0
        doomed = [match for match in self._matches.values() if match.hunt_id == hunt_id]
        for match in doomed:
            del self._matches[match.id]
            del self._match_keys[match.key]
            self._missed.pop(match.id, None)
        purged = {match.id for match in doomed}
        self._actions = [action for action in self._actions if action.match_id not in purged]
        return len(doomed)

    # Postings
    async def ingest_posting(self, posting: Posting) -> Posting:
        self._postings[posting.id] = posting
        self._publish(EventKind.POSTING, posting.tenant_id, posting.id, "insert", seq=posting.seq)
        return posting

    async def get_posting(self, posting_id: str) -> Optional[Posting]:
        return self._postings.get(posting_id)

    async def max_posting_seq(self, tenant_id: str) -> int:
        return max(
            (posting.seq for posting in self._postings.values() if posting.tenant_id == tenant_id),
            default=0,
        )

    async def recent_new_postings(
        self, tenant_id: str, received_since: datetime, max_seq: int
    ) -> List[Posting]:
        return sorted(
            (
                posting
                for posting in self._postings.values()
                if posting.tenant_id == tenant_id
                and posting.status is PostingStatus.NEW
                and posting.received_at >= received_since
                and posting.seq <= max_seq
            ),
            key=lambda posting: posting.seq,
        )

    async def pending_postings(
        self,
        tenant_id: str,
        after_seq: int,
        now: datetime,
        fallback_since: datetime,
        limit: int,
    ) -> List[Posting]:
        def unexpired(posting: Posting) -> bool:
            if posting.expires_at is not None:
                return posting.expires_at > now
            return posting.received_at >= fallback_since

        eligible = sorted(
            (
                posting
                for posting in self._postings.values()
                if posting.tenant_id == tenant_id
                and posting.seq > after_seq
                and posting.status is PostingStatus.NEW
                and unexpired(posting)
            ),
            key=lambda posting: posting.seq,
        )
        return eligible[:limit]

    async def advance_posting_status(self, posting_id: str, status: PostingStatus) -> bool:
        posting = self._postings.get(posting_id)
        if posting is None or posting.status not in status.predecessors():
            return False
        self._postings[posting_id] = posting.model_copy(update={"status": status})
        return True

    # Matches
    async def insert_matches(self, matches: Sequence[Match]) -> int:
        inserted = 0
        for match in matches:
            if match.key in self._match_keys:
                continue
            self._matches[match.id] = match
            self._match_keys[match.key] = match.id
            inserted += 1
            self._publish(EventKind.MATCH, match.tenant_id, match.id, "insert")
        return inserted

    async def get_match(self, match_id: str) -> Optional[Match]:
        return self._matches.get(match_id)

    async def matches_for_posting(self, posting_id: str) -> List[Match]:
        return [match for match in self._matches.values() if match.posting_id == posting_id]

    async def list_entries(
        self,
        tenant_id: str,
        statuses: Iterable[MatchStatus],
        vehicle_ids: Optional[Iterable[str]] = None,
    ) -> List[MatchEntry]:
        wanted: Set[MatchStatus] = set(statuses)
        vehicles = set(vehicle_ids) if vehicle_ids is not None else None
        entries = [
            MatchEntry(match=match, posting=self._postings[match.posting_id])
            for match in self._matches.values()
            if match.tenant_id == tenant_id
            and match.status in wanted
            and (vehicles is None or match.vehicle_id in vehicles)
        ]
        entries.sort(key=lambda entry: (entry.posting.seq, entry.match.matched_at), reverse=True)
        return entries

    def _guarded_update(
        self, match_id: str, allowed_from: Iterable[MatchStatus], **fields
    ) -> Optional[Match]:
        match = self._matches.get(match_id)
        if match is None or match.status not in set(allowed_from):
            return None
        updated = match.model_copy(update=fields)
        self._matches[match_id] = updated
        self._publish(EventKind.MATCH, updated.tenant_id, match_id, "update")
        return updated

    async def transition_match(
        self,
        match_id: str,
        allowed_from: Iterable[MatchStatus],
        to_status: MatchStatus,
        at: datetime,
        booked_load_id: Optional[str] = None,
    ) -> Optional[Match]:
        fields = {"status": to_status, "actioned_at": at}
        if booked_load_id is not None:
            fields["booked_load_id"] = booked_load_id
        return self._guarded_update(match_id, allowed_from, **fields)

    async def place_bid(
        self,
        match_id: str,
        allowed_from: Iterable[MatchStatus],
        rate: Optional[float],
        actor: Optional[str],
        at: datetime,
    ) -> Tuple[Optional[Match], int]:
        updated = self._guarded_update(
            match_id,
            allowed_from,
            status=MatchStatus.BID,
            actioned_at=at,
            bid_rate=rate,
            bid_by=actor,
        )
        if updated is None:
            return None, 0
        skipped = 0
        for sibling in await self.matches_for_posting(updated.posting_id):
            if sibling.id == match_id:
                continue
            if self._guarded_update(
                sibling.id, (MatchStatus.ACTIVE,), status=MatchStatus.SKIPPED, actioned_at=at
            ):
                skipped += 1
        return updated, skipped

    async def expire_matches(
        self, tenant_id: str, now: datetime, fallback_before: datetime
    ) -> List[str]:
        expired: List[str] = []
        for match in list(self._matches.values()):
            if match.tenant_id != tenant_id or not match.active:
                continue
            posting = self._postings[match.posting_id]
            if posting.expires_at is not None:
                lapsed = posting.expires_at < now
            else:
                lapsed = match.matched_at < fallback_before
            if lapsed and self._guarded_update(
                match.id, (MatchStatus.ACTIVE,), status=MatchStatus.EXPIRED, actioned_at=now
            ):
                expired.append(match.id)
        return expired

    # Missed / audit
    async def aged_active_entries(self, tenant_id: str, matched_before: datetime) -> List[MatchEntry]:
        return [
            MatchEntry(match=match, posting=self._postings[match.posting_id])
            for match in self._matches.values()
            if match.tenant_id == tenant_id
            and match.active
            and match.matched_at < matched_before
            and self._postings[match.posting_id].status is PostingStatus.NEW
        ]

    async def insert_missed(self, records: Sequence[MissedRecord]) -> int:
        inserted = 0
        for record in records:
            if record.match_id in self._missed:
                continue
            self._missed[record.match_id] = record
            inserted += 1
        return inserted

    async def list_missed(self, tenant_id: str) -> List[MissedRecord]:
        records = [record for record in self._missed.values() if record.tenant_id == tenant_id]
        return sorted(records, key=lambda record: record.missed_at, reverse=True)

    async def record_action(self, action: MatchAction) -> None:
        self._actions.append(action)

    async def list_actions(self, match_id: str) -> List[MatchAction]:
        return [action for action in self._actions if action.match_id == match_id]


__all__ = ["MemoryStore"]
