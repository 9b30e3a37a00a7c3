"""
Hunt activation and deactivation.

``activate`` pins the hunt's floor to the newest posting sequence id, backfills
the recent ``new`` postings at or below that floor, then flips the hunt live.
From then on the forward matcher only evaluates postings above the floor.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Callable, List, Optional

from load_hunter.config import Settings, get_settings
from load_hunter.domain.errors import HuntNotFoundError
from load_hunter.domain.models import HuntPlan, Match, Posting, utc_now
from load_hunter.infrastructure.store import MatchStore
from load_hunter.matching.predicate import MatchPredicate
from load_hunter.utils.logging import get_logger

log = get_logger(__name__)

Clock = Callable[[], datetime]


async def evaluate_postings(
    predicate: MatchPredicate,
    hunt: HuntPlan,
    postings: List[Posting],
    now: datetime,
) -> List[Match]:
    """Evaluate postings against one hunt and build the matches to insert."""
    matches: List[Match] = []
    for posting in postings:
        if not posting.has_location_signal:
            continue
        result = await predicate.evaluate(posting, hunt)
        if result.matches:
            matches.append(
                Match(
                    tenant_id=hunt.tenant_id,
                    posting_id=posting.id,
                    hunt_id=hunt.id,
                    vehicle_id=hunt.vehicle_id,
                    distance_miles=result.distance,
                    matched_at=now,
                )
            )
    return matches


class CursorController:
    """
    Owns ``floor_marker`` and ``initial_backfill_done`` on hunt plans.

    Parameters
    ----------
    store : MatchStore
        Persistence backend.
    predicate : MatchPredicate
        Shared posting-versus-hunt predicate.
    settings : Settings | None
        Supplies the backfill lookback window.
    clock : callable | None
        Returns the current UTC time; injected by tests.
    """

    def __init__(
        self,
        store: MatchStore,
        predicate: MatchPredicate,
        settings: Optional[Settings] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        settings = settings or get_settings()
        self.store = store
        self.predicate = predicate
        self.lookback = timedelta(minutes=settings.backfill_lookback_minutes)
        self.clock = clock or utc_now

    async def _require(self, hunt_id: str) -> HuntPlan:
        hunt = await self.store.get_hunt(hunt_id)
        if hunt is None or hunt.deleted_at is not None:
            raise HuntNotFoundError(hunt_id)
        return hunt

    async def activate(self, hunt_id: str, floor_marker: Optional[int] = None) -> int:
        """
        Enable a hunt and backfill it.

        Parameters
        ----------
        hunt_id : str
            Hunt to activate.
        floor_marker : int | None
            Re-use an existing floor (resuming an interrupted activation);
            when None the tenant's current maximum sequence id is read.

        Returns
        -------
        int
            Matches inserted by the backfill; 0 when the activation lost a
            race with a concurrent disable or re-activation.
        """
        hunt = await self._require(hunt_id)
        if floor_marker is None:
            floor_marker = await self.store.max_posting_seq(hunt.tenant_id)
        hunt = await self.store.start_activation(hunt_id, floor_marker)
        if hunt is None:
            raise HuntNotFoundError(hunt_id)
        log.info(
            "[ACTIVATE] floor pinned",
            extra={"hunt_id": hunt_id, "tenant_id": hunt.tenant_id, "floor_marker": floor_marker},
        )

        now = self.clock()
        candidates = await self.store.recent_new_postings(
            hunt.tenant_id, received_since=now - self.lookback, max_seq=floor_marker
        )
        matches = await evaluate_postings(self.predicate, hunt, candidates, now)

        current = await self.store.get_hunt(hunt_id)
        if current is None or not current.enabled or current.floor_marker != floor_marker:
            log.info(
                "[BACKFILL DROPPED] hunt changed during backfill",
                extra={"hunt_id": hunt_id, "candidates": len(candidates)},
            )
            return 0

        inserted = await self.store.insert_matches(matches)
        if not await self.store.finish_activation(hunt_id, floor_marker):
            log.info("[BACKFILL SUPERSEDED]", extra={"hunt_id": hunt_id, "inserted": inserted})
            return inserted
        log.info(
            "[BACKFILL DONE]",
            extra={
                "hunt_id": hunt_id,
                "candidates": len(candidates),
                "matched": len(matches),
                "inserted": inserted,
            },
        )
        return inserted

    async def deactivate(self, hunt_id: str) -> HuntPlan:
        await self._require(hunt_id)
        hunt = await self.store.clear_activation(hunt_id)
        if hunt is None:
            raise HuntNotFoundError(hunt_id)
        log.info("[DEACTIVATE]", extra={"hunt_id": hunt_id, "tenant_id": hunt.tenant_id})
        return hunt

    async def resume_pending(self, tenant_id: str) -> int:
        """Finish activations interrupted by a restart or still in flight elsewhere."""
        resumed = 0
        for hunt in await self.store.list_hunts(tenant_id, enabled_only=True):
            if hunt.initial_backfill_done:
                continue
            await self.activate(hunt.id, floor_marker=hunt.floor_marker)
            resumed += 1
        return resumed


__all__ = ["CursorController", "evaluate_postings"]
