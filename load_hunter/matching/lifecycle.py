"""
Time-based match transitions: missed detection and expiration.

Both sweeps only ever read ``active`` matches and every write is guarded, so
an operator decision recorded between the read and the write always wins.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from load_hunter.config import Settings, get_settings
from load_hunter.domain.models import MissedRecord, utc_now
from load_hunter.infrastructure.store import MatchStore
from load_hunter.utils.logging import get_logger

log = get_logger(__name__)


@dataclass(frozen=True)
class SweepOutcome:
    tenant_id: str
    missed: int = 0
    expired: int = 0


class LifecycleSweeper:
    def __init__(
        self,
        store: MatchStore,
        settings: Optional[Settings] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        settings = settings or get_settings()
        self.store = store
        self.missed_after = timedelta(minutes=settings.missed_threshold_minutes)
        self.expiry_fallback = timedelta(minutes=settings.expiry_fallback_minutes)
        self.clock = clock or utc_now

    async def detect_missed(self, tenant_id: str) -> int:
        """
        Archive active matches nobody acted on within the threshold.

        The match itself stays ``active``; the archive is keyed by match id so
        repeated sweeps write one record per match.
        """
        now = self.clock()
        entries = await self.store.aged_active_entries(tenant_id, matched_before=now - self.missed_after)
        records: List[MissedRecord] = [
            MissedRecord(
                match_id=entry.match.id,
                tenant_id=entry.match.tenant_id,
                posting_id=entry.match.posting_id,
                hunt_id=entry.match.hunt_id,
                vehicle_id=entry.match.vehicle_id,
                matched_at=entry.match.matched_at,
                missed_at=now,
                posting_received_at=entry.posting.received_at,
            )
            for entry in entries
        ]
        inserted = await self.store.insert_missed(records)
        if inserted:
            log.info("[MISSED]", extra={"tenant_id": tenant_id, "archived": inserted})
        return inserted

    async def expire(self, tenant_id: str) -> int:
        now = self.clock()
        expired = await self.store.expire_matches(
            tenant_id, now=now, fallback_before=now - self.expiry_fallback
        )
        if expired:
            log.info("[EXPIRED]", extra={"tenant_id": tenant_id, "expired": len(expired)})
        return len(expired)

    async def sweep(self, tenant_id: str) -> SweepOutcome:
        missed = await self.detect_missed(tenant_id)
        expired = await self.expire(tenant_id)
        return SweepOutcome(tenant_id=tenant_id, missed=missed, expired=expired)


__all__ = ["LifecycleSweeper", "SweepOutcome"]
