"""
PostgreSQL implementation of ``MatchStore`` (psycopg 3 async + psycopg_pool).

Every public method runs on one pooled connection; the pool's connection
context commits on success and rolls back on error. Transient
``psycopg.OperationalError`` failures are retried with tenacity; once retries
are exhausted they surface as ``StoreUnavailableError``.
"""

from __future__ import annotations

import functools
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import psycopg
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from load_hunter.domain.errors import StoreUnavailableError
from load_hunter.domain.models import (
    Coordinates,
    HuntPlan,
    Match,
    MatchAction,
    MatchEntry,
    MatchStatus,
    MissedRecord,
    Place,
    Posting,
    PostingStatus,
    Vehicle,
)
from load_hunter.infrastructure.db_factory import PoolManager
from load_hunter.utils.logging import get_logger

log = get_logger(__name__)

Row = Dict[str, Any]


def _store_call(func):
    """Retry transient connection failures, then report the store as unavailable."""
    retrying = retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception_type(psycopg.OperationalError),
        reraise=True,
    )(func)

    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        try:
            return await retrying(*args, **kwargs)
        except psycopg.OperationalError as exc:
            log.error("[STORE UNAVAILABLE]", extra={"operation": func.__name__, "error": str(exc)})
            raise StoreUnavailableError(f"{func.__name__} failed: {exc}") from exc

    return wrapper


def _point(lat: Optional[float], lng: Optional[float]) -> Optional[Coordinates]:
    if lat is None or lng is None:
        return None
    return Coordinates(lat=lat, lng=lng)


def _lat(point: Optional[Coordinates]) -> Optional[float]:
    return point.lat if point is not None else None


def _lng(point: Optional[Coordinates]) -> Optional[float]:
    return point.lng if point is not None else None


def _values(statuses: Iterable[MatchStatus]) -> List[str]:
    return [MatchStatus(status).value for status in statuses]


def _vehicle(row: Row) -> Vehicle:
    return Vehicle(
        id=row["id"],
        tenant_id=row["tenant_id"],
        unit_number=row["unit_number"],
        asset_type=row["asset_type"],
        status=row["status"],
        last_position=_point(row["last_lat"], row["last_lng"]),
        odometer=row["odometer"],
    )


def _hunt(row: Row) -> HuntPlan:
    return HuntPlan(
        id=row["id"],
        tenant_id=row["tenant_id"],
        vehicle_id=row["vehicle_id"],
        name=row["name"],
        vehicle_types=list(row["vehicle_types"] or []),
        origin_point=_point(row["origin_lat"], row["origin_lng"]),
        radius_miles=row["radius_miles"],
        postal_code=row["postal_code"],
        earliest_pickup=row["earliest_pickup"],
        destination_point=_point(row["destination_lat"], row["destination_lng"]),
        destination_radius_miles=row["destination_radius_miles"],
        load_capacity=row["load_capacity"],
        enabled=row["enabled"],
        floor_marker=row["floor_marker"],
        initial_backfill_done=row["initial_backfill_done"],
        created_at=row["created_at"],
        deleted_at=row["deleted_at"],
    )


def _posting(row: Row) -> Posting:
    destination = Place(
        city=row["dest_city"],
        state=row["dest_state"],
        postal_code=row["dest_postal"],
        coordinates=_point(row["dest_lat"], row["dest_lng"]),
    )
    return Posting(
        id=row["id"],
        tenant_id=row["tenant_id"],
        seq=row["seq"],
        received_at=row["received_at"],
        expires_at=row["expires_at"],
        status=row["status"],
        origin=Place(
            city=row["origin_city"],
            state=row["origin_state"],
            postal_code=row["origin_postal"],
            coordinates=_point(row["origin_lat"], row["origin_lng"]),
        ),
        destination=destination if destination.has_signal else None,
        vehicle_type=row["vehicle_type"],
        pickup_date=row["pickup_date"],
        weight=row["weight"],
        has_issues=row["has_issues"],
    )


def _match(row: Row) -> Match:
    return Match(
        id=row["id"],
        tenant_id=row["tenant_id"],
        posting_id=row["posting_id"],
        hunt_id=row["hunt_id"],
        vehicle_id=row["vehicle_id"],
        distance_miles=row["distance_miles"],
        status=row["status"],
        matched_at=row["matched_at"],
        actioned_at=row["actioned_at"],
        bid_rate=row["bid_rate"],
        bid_by=row["bid_by"],
        booked_load_id=row["booked_load_id"],
    )


_HUNT_ACTIVATION = """
UPDATE public.hunt_plans
   SET enabled = %s, floor_marker = %s, initial_backfill_done = FALSE
 WHERE id = %s
RETURNING *
"""

_POSTING_INSERT = """
INSERT INTO public.postings (
    id, tenant_id, received_at, expires_at, status,
    origin_city, origin_state, origin_postal, origin_lat, origin_lng,
    dest_city, dest_state, dest_postal, dest_lat, dest_lng,
    vehicle_type, pickup_date, weight, has_issues
) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
ON CONFLICT (id) DO UPDATE SET id = EXCLUDED.id
RETURNING seq
"""

_MATCH_INSERT = """
INSERT INTO public.matches (
    id, tenant_id, posting_id, hunt_id, vehicle_id, distance_miles, status, matched_at
) VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
ON CONFLICT (posting_id, hunt_id) DO NOTHING
"""

_PENDING_POSTINGS = """
SELECT *
  FROM public.postings
 WHERE tenant_id = %s
   AND seq > %s
   AND status = 'new'
   AND (expires_at > %s OR (expires_at IS NULL AND received_at >= %s))
 ORDER BY seq
 LIMIT %s
"""

_EXPIRE_MATCHES = """
UPDATE public.matches AS m
   SET status = 'expired', actioned_at = %(now)s
  FROM public.postings AS p
 WHERE p.id = m.posting_id
   AND m.tenant_id = %(tenant_id)s
   AND m.status = 'active'
   AND (
        (p.expires_at IS NOT NULL AND p.expires_at < %(now)s)
     OR (p.expires_at IS NULL AND m.matched_at < %(fallback_before)s)
   )
RETURNING m.id
"""

_AGED_ACTIVE = """
SELECT m.*
  FROM public.matches AS m
  JOIN public.postings AS p ON p.id = m.posting_id
 WHERE m.tenant_id = %s
   AND m.status = 'active'
   AND m.matched_at < %s
   AND p.status = 'new'
"""


class PostgresStore:
    """``MatchStore`` over a ``PoolManager``-owned async connection pool."""

    def __init__(self, pools: PoolManager) -> None:
        self._pools = pools

    async def _fetch_all(self, query: str, params: Any = None) -> List[Row]:
        async with self._pools.pool.connection() as conn:
            async with conn.cursor() as cur:
                await cur.execute(query, params)
                return await cur.fetchall()

    async def _fetch_one(self, query: str, params: Any = None) -> Optional[Row]:
        async with self._pools.pool.connection() as conn:
            async with conn.cursor() as cur:
                await cur.execute(query, params)
                return await cur.fetchone()

    async def _postings_by_id(self, posting_ids: Sequence[str]) -> Dict[str, Posting]:
        if not posting_ids:
            return {}
        rows = await self._fetch_all(
            "SELECT * FROM public.postings WHERE id = ANY(%s)", (list(posting_ids),)
        )
        return {row["id"]: _posting(row) for row in rows}

    async def _entries(self, match_rows: List[Row]) -> List[MatchEntry]:
        matches = [_match(row) for row in match_rows]
        postings = await self._postings_by_id(sorted({match.posting_id for match in matches}))
        return [
            MatchEntry(match=match, posting=postings[match.posting_id])
            for match in matches
            if match.posting_id in postings
        ]

    # Vehicles
    @_store_call
    async def add_vehicle(self, vehicle: Vehicle) -> Vehicle:
        position = vehicle.last_position
        await self._fetch_one(
            """
            INSERT INTO public.vehicles
                (id, tenant_id, unit_number, asset_type, status, last_lat, last_lng, odometer)
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
            ON CONFLICT (id) DO NOTHING
            RETURNING id
            """,
            (
                vehicle.id,
                vehicle.tenant_id,
                vehicle.unit_number,
                vehicle.asset_type,
                vehicle.status,
                _lat(position),
                _lng(position),
                vehicle.odometer,
            ),
        )
        return vehicle

    @_store_call
    async def get_vehicle(self, vehicle_id: str) -> Optional[Vehicle]:
        row = await self._fetch_one("SELECT * FROM public.vehicles WHERE id = %s", (vehicle_id,))
        return _vehicle(row) if row else None

    # Hunts
    @_store_call
    async def create_hunt(self, hunt: HuntPlan) -> HuntPlan:
        row = await self._fetch_one(
            """
            INSERT INTO public.hunt_plans (
                id, tenant_id, vehicle_id, name, vehicle_types, origin_lat, origin_lng,
                radius_miles, postal_code, earliest_pickup, destination_lat, destination_lng,
                destination_radius_miles, load_capacity, enabled, floor_marker,
                initial_backfill_done, created_at
            ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            RETURNING *
            """,
            (
                hunt.id,
                hunt.tenant_id,
                hunt.vehicle_id,
                hunt.name,
                list(hunt.vehicle_types),
                _lat(hunt.origin_point),
                _lng(hunt.origin_point),
                hunt.radius_miles,
                hunt.postal_code,
                hunt.earliest_pickup,
                _lat(hunt.destination_point),
                _lng(hunt.destination_point),
                hunt.destination_radius_miles,
                hunt.load_capacity,
                hunt.enabled,
                hunt.floor_marker,
                hunt.initial_backfill_done,
                hunt.created_at,
            ),
        )
        return _hunt(row)

    @_store_call
    async def get_hunt(self, hunt_id: str) -> Optional[HuntPlan]:
        row = await self._fetch_one("SELECT * FROM public.hunt_plans WHERE id = %s", (hunt_id,))
        return _hunt(row) if row else None

    @_store_call
    async def list_hunts(self, tenant_id: str, enabled_only: bool = False) -> List[HuntPlan]:
        query = "SELECT * FROM public.hunt_plans WHERE tenant_id = %s AND deleted_at IS NULL"
        if enabled_only:
            query += " AND enabled"
        rows = await self._fetch_all(query + " ORDER BY created_at", (tenant_id,))
        return [_hunt(row) for row in rows]

    @_store_call
    async def list_tenants(self) -> List[str]:
        rows = await self._fetch_all(
            "SELECT DISTINCT tenant_id FROM public.hunt_plans "
            "WHERE enabled AND deleted_at IS NULL ORDER BY tenant_id"
        )
        return [row["tenant_id"] for row in rows]

    @_store_call
    async def list_active_match_tenants(self) -> List[str]:
        rows = await self._fetch_all(
            "SELECT DISTINCT tenant_id FROM public.matches WHERE status = 'active' ORDER BY tenant_id"
        )
        return [row["tenant_id"] for row in rows]

    @_store_call
    async def start_activation(self, hunt_id: str, floor_marker: int) -> Optional[HuntPlan]:
        row = await self._fetch_one(_HUNT_ACTIVATION, (True, floor_marker, hunt_id))
        return _hunt(row) if row else None

    @_store_call
    async def finish_activation(self, hunt_id: str, floor_marker: int) -> bool:
        row = await self._fetch_one(
            """
            UPDATE public.hunt_plans
               SET initial_backfill_done = TRUE
             WHERE id = %s AND enabled AND floor_marker = %s
            RETURNING id
            """,
            (hunt_id, floor_marker),
        )
        return row is not None

    @_store_call
    async def clear_activation(self, hunt_id: str) -> Optional[HuntPlan]:
        row = await self._fetch_one(_HUNT_ACTIVATION, (False, None, hunt_id))
        return _hunt(row) if row else None

    @_store_call
    async def soft_delete_hunt(self, hunt_id: str, new_name: str, deleted_at: datetime) -> int:
        async with self._pools.pool.connection() as conn:
            async with conn.transaction():
                async with conn.cursor() as cur:
                    await cur.execute(
                        """
                        UPDATE public.hunt_plans
                           SET enabled = FALSE, floor_marker = NULL,
                               initial_backfill_done = FALSE, name = %s, deleted_at = %s
                         WHERE id = %s
                        """,
                        (new_name, deleted_at, hunt_id),
                    )
                    if cur.rowcount == 0:
                        return 0
                    await cur.execute("DELETE FROM public.matches WHERE hunt_id = %s", (hunt_id,))
                    return cur.rowcount

    # Postings
    @_store_call
    async def ingest_posting(self, posting: Posting) -> Posting:
        origin = posting.origin
        destination = posting.destination or Place()
        row = await self._fetch_one(
            _POSTING_INSERT,
            (
                posting.id,
                posting.tenant_id,
                posting.received_at,
                posting.expires_at,
                posting.status.value,
                origin.city,
                origin.state,
                origin.postal_code,
                _lat(origin.coordinates),
                _lng(origin.coordinates),
                destination.city,
                destination.state,
                destination.postal_code,
                _lat(destination.coordinates),
                _lng(destination.coordinates),
                posting.vehicle_type,
                posting.pickup_date,
                posting.weight,
                posting.has_issues,
            ),
        )
        return posting.model_copy(update={"seq": row["seq"]})

    @_store_call
    async def get_posting(self, posting_id: str) -> Optional[Posting]:
        row = await self._fetch_one("SELECT * FROM public.postings WHERE id = %s", (posting_id,))
        return _posting(row) if row else None

    @_store_call
    async def max_posting_seq(self, tenant_id: str) -> int:
        row = await self._fetch_one(
            "SELECT COALESCE(MAX(seq), 0) AS max_seq FROM public.postings WHERE tenant_id = %s",
            (tenant_id,),
        )
        return int(row["max_seq"])

    @_store_call
    async def recent_new_postings(
        self, tenant_id: str, received_since: datetime, max_seq: int
    ) -> List[Posting]:
        rows = await self._fetch_all(
            """
            SELECT * FROM public.postings
             WHERE tenant_id = %s AND status = 'new' AND received_at >= %s AND seq <= %s
             ORDER BY seq
            """,
            (tenant_id, received_since, max_seq),
        )
        return [_posting(row) for row in rows]

    @_store_call
    async def pending_postings(
        self,
        tenant_id: str,
        after_seq: int,
        now: datetime,
        fallback_since: datetime,
        limit: int,
    ) -> List[Posting]:
        rows = await self._fetch_all(
            _PENDING_POSTINGS, (tenant_id, after_seq, now, fallback_since, limit)
        )
        return [_posting(row) for row in rows]

    @_store_call
    async def advance_posting_status(self, posting_id: str, status: PostingStatus) -> bool:
        allowed_from = [previous.value for previous in status.predecessors()]
        if not allowed_from:
            return False
        row = await self._fetch_one(
            "UPDATE public.postings SET status = %s WHERE id = %s AND status = ANY(%s) RETURNING id",
            (status.value, posting_id, allowed_from),
        )
        return row is not None

    # Matches
    @_store_call
    async def insert_matches(self, matches: Sequence[Match]) -> int:
        if not matches:
            return 0
        inserted = 0
        async with self._pools.pool.connection() as conn:
            async with conn.transaction():
                async with conn.cursor() as cur:
                    for match in matches:
                        await cur.execute(
                            _MATCH_INSERT,
                            (
                                match.id,
                                match.tenant_id,
                                match.posting_id,
                                match.hunt_id,
                                match.vehicle_id,
                                match.distance_miles,
                                match.status.value,
                                match.matched_at,
                            ),
                        )
                        inserted += cur.rowcount
        return inserted

    @_store_call
    async def get_match(self, match_id: str) -> Optional[Match]:
        row = await self._fetch_one("SELECT * FROM public.matches WHERE id = %s", (match_id,))
        return _match(row) if row else None

    @_store_call
    async def matches_for_posting(self, posting_id: str) -> List[Match]:
        rows = await self._fetch_all(
            "SELECT * FROM public.matches WHERE posting_id = %s ORDER BY matched_at", (posting_id,)
        )
        return [_match(row) for row in rows]

    @_store_call
    async def list_entries(
        self,
        tenant_id: str,
        statuses: Iterable[MatchStatus],
        vehicle_ids: Optional[Iterable[str]] = None,
    ) -> List[MatchEntry]:
        query = "SELECT * FROM public.matches WHERE tenant_id = %s AND status = ANY(%s)"
        params: List[Any] = [tenant_id, _values(statuses)]
        if vehicle_ids is not None:
            query += " AND vehicle_id = ANY(%s)"
            params.append(list(vehicle_ids))
        entries = await self._entries(await self._fetch_all(query, params))
        entries.sort(key=lambda entry: (entry.posting.seq, entry.match.matched_at), reverse=True)
        return entries

    @_store_call
    async def transition_match(
        self,
        match_id: str,
        allowed_from: Iterable[MatchStatus],
        to_status: MatchStatus,
        at: datetime,
        booked_load_id: Optional[str] = None,
    ) -> Optional[Match]:
        row = await self._fetch_one(
            """
            UPDATE public.matches
               SET status = %s, actioned_at = %s,
                   booked_load_id = COALESCE(%s, booked_load_id)
             WHERE id = %s AND status = ANY(%s)
            RETURNING *
            """,
            (to_status.value, at, booked_load_id, match_id, _values(allowed_from)),
        )
        return _match(row) if row else None

    @_store_call
    async def place_bid(
        self,
        match_id: str,
        allowed_from: Iterable[MatchStatus],
        rate: Optional[float],
        actor: Optional[str],
        at: datetime,
    ) -> Tuple[Optional[Match], int]:
        async with self._pools.pool.connection() as conn:
            async with conn.transaction():
                async with conn.cursor() as cur:
                    await cur.execute(
                        """
                        UPDATE public.matches
                           SET status = 'bid', actioned_at = %s, bid_rate = %s, bid_by = %s
                         WHERE id = %s AND status = ANY(%s)
                        RETURNING *
                        """,
                        (at, rate, actor, match_id, _values(allowed_from)),
                    )
                    row = await cur.fetchone()
                    if row is None:
                        return None, 0
                    await cur.execute(
                        """
                        UPDATE public.matches
                           SET status = 'skipped', actioned_at = %s
                         WHERE posting_id = %s AND id <> %s AND status = 'active'
                        """,
                        (at, row["posting_id"], match_id),
                    )
                    return _match(row), cur.rowcount

    @_store_call
    async def expire_matches(
        self, tenant_id: str, now: datetime, fallback_before: datetime
    ) -> List[str]:
        rows = await self._fetch_all(
            _EXPIRE_MATCHES,
            {"tenant_id": tenant_id, "now": now, "fallback_before": fallback_before},
        )
        return [row["id"] for row in rows]

    # Missed / audit
    @_store_call
    async def aged_active_entries(self, tenant_id: str, matched_before: datetime) -> List[MatchEntry]:
        return await self._entries(await self._fetch_all(_AGED_ACTIVE, (tenant_id, matched_before)))

    @_store_call
    async def insert_missed(self, records: Sequence[MissedRecord]) -> int:
        if not records:
            return 0
        inserted = 0
        async with self._pools.pool.connection() as conn:
            async with conn.transaction():
                async with conn.cursor() as cur:
                    for record in records:
                        await cur.execute(
                            """
                            INSERT INTO public.missed_records (
                                match_id, tenant_id, posting_id, hunt_id, vehicle_id,
                                matched_at, missed_at, posting_received_at
                            ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
                            ON CONFLICT (match_id) DO NOTHING
                            """,
                            (
                                record.match_id,
                                record.tenant_id,
                                record.posting_id,
                                record.hunt_id,
                                record.vehicle_id,
                                record.matched_at,
                                record.missed_at,
                                record.posting_received_at,
                            ),
                        )
                        inserted += cur.rowcount
        return inserted

    @_store_call
    async def list_missed(self, tenant_id: str) -> List[MissedRecord]:
        rows = await self._fetch_all(
            "SELECT * FROM public.missed_records WHERE tenant_id = %s ORDER BY missed_at DESC",
            (tenant_id,),
        )
        return [MissedRecord.model_validate(row) for row in rows]

    @_store_call
    async def record_action(self, action: MatchAction) -> None:
        await self._fetch_one(
            """
            INSERT INTO public.match_actions
                (id, tenant_id, match_id, action, actor, rate, notes, created_at)
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
            ON CONFLICT (id) DO NOTHING
            RETURNING id
            """,
            (
                action.id,
                action.tenant_id,
                action.match_id,
                action.action.value,
                action.actor,
                action.rate,
                action.notes,
                action.created_at,
            ),
        )

    @_store_call
    async def list_actions(self, match_id: str) -> List[MatchAction]:
        rows = await self._fetch_all(
            "SELECT * FROM public.match_actions WHERE match_id = %s ORDER BY created_at",
            (match_id,),
        )
        return [MatchAction.model_validate(row) for row in rows]


__all__ = ["PostgresStore"]
