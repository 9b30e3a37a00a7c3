"""
Operator decisions on matches.

Each action is a guarded transition from an explicit set of statuses; the
guard is enforced by the store, so concurrent sweeps and concurrent operators
resolve to whichever write lands first. A successful action may advance the
posting's own status and always appends an audit row.
"""

from __future__ import annotations

from datetime import datetime
from typing import Callable, Dict, Optional, Tuple

from load_hunter.domain.errors import InvalidTransitionError, MatchNotFoundError
from load_hunter.domain.models import (
    Match,
    MatchAction,
    MatchStatus,
    OperatorAction,
    PostingStatus,
    utc_now,
)
from load_hunter.infrastructure.store import MatchStore
from load_hunter.utils.logging import get_logger

log = get_logger(__name__)

ALLOWED_FROM: Dict[OperatorAction, Tuple[MatchStatus, ...]] = {
    OperatorAction.SKIP: (MatchStatus.ACTIVE, MatchStatus.UNDECIDED),
    OperatorAction.BID: (MatchStatus.ACTIVE, MatchStatus.UNDECIDED, MatchStatus.WAITLIST),
    OperatorAction.WAITLIST: (MatchStatus.ACTIVE, MatchStatus.UNDECIDED),
    OperatorAction.UNDECIDED: (MatchStatus.ACTIVE,),
    OperatorAction.BOOK: (
        MatchStatus.ACTIVE,
        MatchStatus.UNDECIDED,
        MatchStatus.WAITLIST,
        MatchStatus.BID,
    ),
}

TARGET_STATUS: Dict[OperatorAction, MatchStatus] = {
    OperatorAction.SKIP: MatchStatus.SKIPPED,
    OperatorAction.BID: MatchStatus.BID,
    OperatorAction.WAITLIST: MatchStatus.WAITLIST,
    OperatorAction.UNDECIDED: MatchStatus.UNDECIDED,
    OperatorAction.BOOK: MatchStatus.BOOKED,
}

_POSTING_STATUS: Dict[OperatorAction, PostingStatus] = {
    OperatorAction.BID: PostingStatus.BID,
    OperatorAction.WAITLIST: PostingStatus.WAITLIST,
    OperatorAction.BOOK: PostingStatus.BOOKED,
}


class MatchActions:
    def __init__(self, store: MatchStore, clock: Optional[Callable[[], datetime]] = None) -> None:
        self.store = store
        self.clock = clock or utc_now

    async def skip(self, match_id: str, actor: Optional[str] = None, notes: Optional[str] = None) -> Match:
        return await self.apply(match_id, OperatorAction.SKIP, actor=actor, notes=notes)

    async def bid(
        self,
        match_id: str,
        rate: Optional[float] = None,
        actor: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Match:
        return await self.apply(match_id, OperatorAction.BID, actor=actor, rate=rate, notes=notes)

    async def waitlist(self, match_id: str, actor: Optional[str] = None, notes: Optional[str] = None) -> Match:
        return await self.apply(match_id, OperatorAction.WAITLIST, actor=actor, notes=notes)

    async def mark_undecided(self, match_id: str, actor: Optional[str] = None) -> Match:
        return await self.apply(match_id, OperatorAction.UNDECIDED, actor=actor)

    async def book(
        self,
        match_id: str,
        booked_load_id: Optional[str] = None,
        actor: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Match:
        return await self.apply(
            match_id, OperatorAction.BOOK, actor=actor, notes=notes, booked_load_id=booked_load_id
        )

    async def apply(
        self,
        match_id: str,
        action: OperatorAction,
        actor: Optional[str] = None,
        rate: Optional[float] = None,
        notes: Optional[str] = None,
        booked_load_id: Optional[str] = None,
    ) -> Match:
        """
        Apply one operator action.

        Raises
        ------
        MatchNotFoundError
            If the match does not exist.
        InvalidTransitionError
            If the match's persisted status does not allow the action.
        """
        action = OperatorAction(action)
        if await self.store.get_match(match_id) is None:
            raise MatchNotFoundError(match_id)

        now = self.clock()
        allowed = ALLOWED_FROM[action]
        skipped_siblings = 0
        if action is OperatorAction.BID:
            updated, skipped_siblings = await self.store.place_bid(
                match_id, allowed, rate=rate, actor=actor, at=now
            )
        else:
            updated = await self.store.transition_match(
                match_id, allowed, TARGET_STATUS[action], at=now, booked_load_id=booked_load_id
            )
        if updated is None:
            current = await self.store.get_match(match_id)
            if current is None:
                raise MatchNotFoundError(match_id)
            raise InvalidTransitionError(match_id, current.status.value, action.value)

        await self._advance_posting(updated, action)
        await self.store.record_action(
            MatchAction(
                tenant_id=updated.tenant_id,
                match_id=match_id,
                action=action,
                actor=actor,
                rate=rate,
                notes=notes,
                created_at=now,
            )
        )
        log.info(
            f"[ACTION] {action.value}",
            extra={
                "match_id": match_id,
                "posting_id": updated.posting_id,
                "actor": actor,
                "siblings_skipped": skipped_siblings,
            },
        )
        return updated

    async def _advance_posting(self, match: Match, action: OperatorAction) -> None:
        if action is OperatorAction.SKIP:
            siblings = await self.store.matches_for_posting(match.posting_id)
            if not any(sibling.active for sibling in siblings):
                await self.store.advance_posting_status(match.posting_id, PostingStatus.SKIPPED)
            return
        target = _POSTING_STATUS.get(action)
        if target is not None:
            await self.store.advance_posting_status(match.posting_id, target)


__all__ = ["ALLOWED_FROM", "MatchActions", "TARGET_STATUS"]
