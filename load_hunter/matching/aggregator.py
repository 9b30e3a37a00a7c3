"""
Read-side shaping of matches into queue rows.
"""

from __future__ import annotations

from typing import Dict, Iterable, List, Optional

from load_hunter.domain.models import MatchEntry, MatchGroup


def _distance_key(entry: MatchEntry):
    distance = entry.match.distance_miles
    return (distance is None, distance if distance is not None else 0.0, entry.match.matched_at)


def _newest_first(group: MatchGroup):
    return (group.primary.posting.seq, group.primary.match.matched_at)


class MatchAggregator:
    """
    Collapse matches for the same posting into one group.

    The primary entry is the viewer's own vehicle when one of theirs matched,
    otherwise the closest one; entries without a distance sort last. Pure:
    never touches the store.
    """

    def group(
        self,
        entries: Iterable[MatchEntry],
        viewer_vehicle_ids: Optional[Iterable[str]] = None,
        grouping: bool = True,
    ) -> List[MatchGroup]:
        entries = list(entries)
        if not grouping:
            groups = [MatchGroup(primary=entry) for entry in entries]
            return sorted(groups, key=_newest_first, reverse=True)

        viewer = set(viewer_vehicle_ids or ())
        by_posting: Dict[str, List[MatchEntry]] = {}
        for entry in entries:
            by_posting.setdefault(entry.posting.id, []).append(entry)

        groups: List[MatchGroup] = []
        for members in by_posting.values():
            ranked = sorted(members, key=_distance_key)
            own = [entry for entry in ranked if entry.match.vehicle_id in viewer]
            primary = own[0] if own else ranked[0]
            siblings = [entry for entry in ranked if entry is not primary]
            groups.append(MatchGroup(primary=primary, siblings=siblings))
        return sorted(groups, key=_newest_first, reverse=True)


__all__ = ["MatchAggregator"]
