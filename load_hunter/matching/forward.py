"""
Steady-state forward matching.

Only live hunts are evaluated, and a hunt only ever sees postings whose
sequence id is above its floor, whatever order the postings arrive in.
Results are written with insert-ignore, so a repeated evaluation (an event
followed by a sweep, a redelivered notification) is harmless.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Callable, Iterable, List, Optional

from load_hunter.config import Settings, get_settings
from load_hunter.domain.models import HuntPlan, Match, Posting, PostingStatus, utc_now
from load_hunter.infrastructure.store import MatchStore
from load_hunter.matching.cursor import evaluate_postings
from load_hunter.matching.predicate import MatchPredicate
from load_hunter.utils.logging import get_logger

log = get_logger(__name__)


class ForwardMatcher:
    def __init__(
        self,
        store: MatchStore,
        predicate: MatchPredicate,
        settings: Optional[Settings] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        settings = settings or get_settings()
        self.store = store
        self.predicate = predicate
        self.batch_size = settings.match_batch_size
        self.expiry_fallback = timedelta(minutes=settings.expiry_fallback_minutes)
        self.clock = clock or utc_now

    async def live_hunts(self, tenant_id: str) -> List[HuntPlan]:
        return [hunt for hunt in await self.store.list_hunts(tenant_id, enabled_only=True) if hunt.is_live]

    def is_open(self, posting: Posting, now: datetime) -> bool:
        """Still ``new`` and not yet expired."""
        if posting.status is not PostingStatus.NEW:
            return False
        if posting.expires_at is not None:
            return posting.expires_at > now
        return posting.received_at >= now - self.expiry_fallback

    async def match_postings(
        self,
        tenant_id: str,
        postings: Iterable[Posting],
        hunts: Optional[List[HuntPlan]] = None,
    ) -> int:
        """
        Evaluate the given postings against every live hunt of the tenant.

        Returns the number of matches actually inserted.
        """
        if hunts is None:
            hunts = await self.live_hunts(tenant_id)
        now = self.clock()
        candidates = [
            posting
            for posting in postings
            if posting.tenant_id == tenant_id and self.is_open(posting, now)
        ]
        if not hunts or not candidates:
            return 0

        matches: List[Match] = []
        for hunt in hunts:
            above_floor = [posting for posting in candidates if hunt.accepts_after(posting.seq)]
            matches.extend(await evaluate_postings(self.predicate, hunt, above_floor, now))
        if not matches:
            return 0
        inserted = await self.store.insert_matches(matches)
        log.debug(
            "[FORWARD MATCH]",
            extra={
                "tenant_id": tenant_id,
                "postings": len(candidates),
                "hunts": len(hunts),
                "matched": len(matches),
                "inserted": inserted,
            },
        )
        return inserted

    async def sweep(self, tenant_id: str) -> int:
        """Keyset walk over open postings above the lowest live floor."""
        hunts = await self.live_hunts(tenant_id)
        if not hunts:
            return 0
        after_seq = min(hunt.floor_marker or 0 for hunt in hunts)
        inserted = 0
        scanned = 0
        while True:
            now = self.clock()
            batch = await self.store.pending_postings(
                tenant_id,
                after_seq=after_seq,
                now=now,
                fallback_since=now - self.expiry_fallback,
                limit=self.batch_size,
            )
            if not batch:
                break
            scanned += len(batch)
            inserted += await self.match_postings(tenant_id, batch, hunts)
            after_seq = batch[-1].seq
            if len(batch) < self.batch_size:
                break
        log.info(
            "[FORWARD SWEEP]",
            extra={"tenant_id": tenant_id, "hunts": len(hunts), "scanned": scanned, "inserted": inserted},
        )
        return inserted


__all__ = ["ForwardMatcher"]
