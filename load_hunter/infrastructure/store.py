"""
Persistence contract for Load Hunter.

Concrete stores (process-local memory, PostgreSQL) implement ``MatchStore``.
The contract carries the guarantees the matching core depends on:

- ``insert_matches`` ignores rows whose (posting, hunt) pair already exists;
- status transitions are guarded by the statuses they may start from, so a
  sweep never overwrites a decision an operator recorded a moment earlier;
- reads by sequence id are keyset reads ordered by ``seq``.
"""

from __future__ import annotations

from datetime import datetime
from typing import Iterable, List, Optional, Protocol, Sequence, Tuple, runtime_checkable

from load_hunter.domain.models import (
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


@runtime_checkable
class MatchStore(Protocol):
    """
    Storage operations used by the cursor controller, the forward matcher,
    the lifecycle sweeper, operator actions and the read path.
    """

    # Vehicles (read-only to the matcher)
    async def get_vehicle(self, vehicle_id: str) -> Optional[Vehicle]:
        ...

    # Hunts
    async def create_hunt(self, hunt: HuntPlan) -> HuntPlan:
        ...

    async def get_hunt(self, hunt_id: str) -> Optional[HuntPlan]:
        ...

    async def list_hunts(self, tenant_id: str, enabled_only: bool = False) -> List[HuntPlan]:
        ...

    async def list_tenants(self) -> List[str]:
        """Tenants with at least one enabled hunt."""
        ...

    async def list_active_match_tenants(self) -> List[str]:
        """Tenants with at least one ``active`` match, whatever their hunts' state."""
        ...

    async def start_activation(self, hunt_id: str, floor_marker: int) -> Optional[HuntPlan]:
        """Enable the hunt with a fresh floor and ``initial_backfill_done=False``."""
        ...

    async def finish_activation(self, hunt_id: str, floor_marker: int) -> bool:
        """
        Mark the backfill done, only if the hunt is still enabled with the
        same floor. Returns False when a concurrent disable/re-activation won.
        """
        ...

    async def clear_activation(self, hunt_id: str) -> Optional[HuntPlan]:
        """Disable the hunt and reset its cursor fields."""
        ...

    async def soft_delete_hunt(self, hunt_id: str, new_name: str, deleted_at: datetime) -> int:
        """Disable, rename and stamp the hunt; purge its matches. Returns purged count."""
        ...

    # Postings
    async def ingest_posting(self, posting: Posting) -> Posting:
        """Persist a posting; the returned copy carries the stored ``seq``."""
        ...

    async def get_posting(self, posting_id: str) -> Optional[Posting]:
        ...

    async def max_posting_seq(self, tenant_id: str) -> int:
        """Highest sequence id for the tenant, 0 when there are no postings."""
        ...

    async def recent_new_postings(
        self, tenant_id: str, received_since: datetime, max_seq: int
    ) -> List[Posting]:
        ...

    async def pending_postings(
        self,
        tenant_id: str,
        after_seq: int,
        now: datetime,
        fallback_since: datetime,
        limit: int,
    ) -> List[Posting]:
        """
        Postings still ``new`` and unexpired with ``seq > after_seq``, ordered by
        seq. A posting without an expiry counts as unexpired while it was
        received at or after ``fallback_since``.
        """
        ...

    async def advance_posting_status(self, posting_id: str, status: PostingStatus) -> bool:
        """
        Move a posting forward (``new`` -> ``skipped``/``waitlist`` -> ``bid``
        -> ``booked``); never back to an earlier rank, never back to ``new``.
        """
        ...

    # Matches
    async def insert_matches(self, matches: Sequence[Match]) -> int:
        """Insert, ignoring existing (posting, hunt) pairs. Returns inserted count."""
        ...

    async def get_match(self, match_id: str) -> Optional[Match]:
        ...

    async def matches_for_posting(self, posting_id: str) -> List[Match]:
        ...

    async def list_entries(
        self,
        tenant_id: str,
        statuses: Iterable[MatchStatus],
        vehicle_ids: Optional[Iterable[str]] = None,
    ) -> List[MatchEntry]:
        ...

    async def transition_match(
        self,
        match_id: str,
        allowed_from: Iterable[MatchStatus],
        to_status: MatchStatus,
        at: datetime,
        booked_load_id: Optional[str] = None,
    ) -> Optional[Match]:
        """Guarded status update; None when the match is not in ``allowed_from``."""
        ...

    async def place_bid(
        self,
        match_id: str,
        allowed_from: Iterable[MatchStatus],
        rate: Optional[float],
        actor: Optional[str],
        at: datetime,
    ) -> Tuple[Optional[Match], int]:
        """
        Atomically move the match to ``bid`` and every other ``active`` match
        for the same posting to ``skipped``. Returns (match, siblings skipped).
        """
        ...

    async def expire_matches(
        self, tenant_id: str, now: datetime, fallback_before: datetime
    ) -> List[str]:
        """
        Guarded ``active -> expired`` for matches whose posting expired before
        ``now`` (or, lacking an expiry, matched before ``fallback_before``).
        """
        ...

    # Missed / audit
    async def aged_active_entries(self, tenant_id: str, matched_before: datetime) -> List[MatchEntry]:
        """Active matches older than the cutoff whose posting is still ``new``."""
        ...

    async def insert_missed(self, records: Sequence[MissedRecord]) -> int:
        """Insert, ignoring match ids already archived. Returns inserted count."""
        ...

    async def list_missed(self, tenant_id: str) -> List[MissedRecord]:
        ...

    async def record_action(self, action: MatchAction) -> None:
        ...

    async def list_actions(self, match_id: str) -> List[MatchAction]:
        ...


__all__ = ["MatchStore"]
