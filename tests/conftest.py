"""
Pytest configuration for Load Hunter.

Provides fixtures for:
- Settings override for unit and integration tests
- A fake geocoder, a controllable clock and a memory store
- Posting/hunt factories and the wired worker/service
- Database connection management for integration tests
"""

from __future__ import annotations

import os
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Dict, Generator, List, Optional

import psycopg
import pytest

from load_hunter.config import Settings
from load_hunter.domain.errors import GeocoderUnavailableError
from load_hunter.domain.models import Coordinates, HuntPlan, Place, Posting, Vehicle
from load_hunter.geo.resolver import LocationCache, LocationResolver, cache_key
from load_hunter.infrastructure.memory_store import MemoryStore
from load_hunter.matching.canonical import TypeCanonicalizer
from load_hunter.matching.predicate import MatchPredicate
from load_hunter.service import LoadHunterService
from load_hunter.worker import MatchingWorker

TENANT = "tenant-a"
OTHER_TENANT = "tenant-b"
BASE_TIME = datetime(2024, 1, 10, 12, 0, tzinfo=timezone.utc)
HUB = Coordinates(lat=33.0, lng=-84.0)
# One degree of latitude under a 3959-mile earth radius.
MILES_PER_DEGREE_LAT = 69.0975


def north_of(origin: Coordinates, miles: float) -> Coordinates:
    return Coordinates(lat=origin.lat + miles / MILES_PER_DEGREE_LAT, lng=origin.lng)


class FakeGeocoder:
    """In-memory geocoder keyed by normalized query; records every call."""

    def __init__(self, known: Optional[Dict[str, Coordinates]] = None) -> None:
        self.known = {cache_key(key): value for key, value in (known or {}).items()}
        self.failing: set[str] = set()
        self.calls: List[str] = []

    def add(self, text: str, point: Coordinates) -> None:
        self.known[cache_key(text)] = point

    def fail(self, text: str) -> None:
        self.failing.add(cache_key(text))

    async def geocode(self, query: str) -> Optional[Coordinates]:
        self.calls.append(query)
        if query in self.failing:
            raise GeocoderUnavailableError(f"provider down for {query}")
        return self.known.get(query)


class FakeClock:
    def __init__(self, now: datetime = BASE_TIME) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta) -> datetime:
        self.now = self.now + timedelta(**delta)
        return self.now


@pytest.fixture
def test_settings() -> Settings:
    """
    Settings fixture with test-specific overrides.

    Sweep cadence is shortened so worker tests finish quickly.
    """
    return Settings(
        db_host=os.getenv("DB_HOST", "localhost"),
        db_port=int(os.getenv("DB_PORT", "5432")),
        db_user=os.getenv("DB_USER", "postgres"),
        db_password=os.getenv("DB_PASSWORD", "postgres"),
        db_name=os.getenv("DB_NAME", "load_hunter"),
        log_level="DEBUG",
        geocoder_token=None,
        vehicle_type_map_path=None,
        default_pickup_radius_miles=100.0,
        backfill_lookback_minutes=15,
        missed_threshold_minutes=15,
        expiry_fallback_minutes=120,
        match_batch_size=2,
        forward_sweep_seconds=0.01,
        lifecycle_sweep_seconds=0.01,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def geocoder() -> FakeGeocoder:
    return FakeGeocoder()


@pytest.fixture
def resolver(geocoder: FakeGeocoder) -> LocationResolver:
    return LocationResolver(geocoder, LocationCache())


@pytest.fixture
def canonicalizer() -> TypeCanonicalizer:
    return TypeCanonicalizer({"LG STRAIGHT": "LARGE STRAIGHT", "26 BOX": "LARGE STRAIGHT"})


@pytest.fixture
def predicate(resolver: LocationResolver, canonicalizer: TypeCanonicalizer) -> MatchPredicate:
    return MatchPredicate(resolver, canonicalizer)


@pytest.fixture
def store() -> MemoryStore:
    store = MemoryStore()
    store.add_vehicle(Vehicle(id="v1", tenant_id=TENANT, unit_number="101"))
    store.add_vehicle(Vehicle(id="v2", tenant_id=TENANT, unit_number="102"))
    store.add_vehicle(Vehicle(id="v3", tenant_id=OTHER_TENANT, unit_number="201"))
    return store


@pytest.fixture
def worker(
    store: MemoryStore, predicate: MatchPredicate, test_settings: Settings, clock: FakeClock
) -> MatchingWorker:
    return MatchingWorker(store, predicate, settings=test_settings, clock=clock)


@pytest.fixture
def service(worker: MatchingWorker) -> LoadHunterService:
    return LoadHunterService.for_worker(worker)


@pytest.fixture
def make_posting(clock: FakeClock) -> Callable[..., Posting]:
    """Factory for postings near HUB; keyword overrides win."""

    def _make(seq: int, **overrides) -> Posting:
        fields = {
            "id": f"p{seq}",
            "tenant_id": TENANT,
            "seq": seq,
            "received_at": clock.now,
            "origin": Place(city="Atlanta", state="GA", postal_code="30303", coordinates=north_of(HUB, 10)),
            "vehicle_type": "Large Straight",
            "pickup_date": date(2024, 1, 12),
        }
        fields.update(overrides)
        return Posting(**fields)

    return _make


@pytest.fixture
def make_hunt() -> Callable[..., HuntPlan]:
    def _make(hunt_id: str = "h1", vehicle_id: str = "v1", **overrides) -> HuntPlan:
        fields = {
            "id": hunt_id,
            "tenant_id": TENANT,
            "vehicle_id": vehicle_id,
            "name": f"Hunt {hunt_id}",
            "vehicle_types": ["LARGE STRAIGHT"],
            "origin_point": HUB,
            "radius_miles": 100.0,
            "earliest_pickup": date(2024, 1, 10),
        }
        fields.update(overrides)
        return HuntPlan(**fields)

    return _make


# Integration (PostgreSQL)


@pytest.fixture(scope="session")
def test_dsn() -> str:
    """
    Database connection string for integration tests.
    """
    return (
        f"postgresql://{os.getenv('DB_USER', 'postgres')}:{os.getenv('DB_PASSWORD', 'postgres')}"
        f"@{os.getenv('DB_HOST', 'localhost')}:{os.getenv('DB_PORT', '5432')}"
        f"/{os.getenv('DB_NAME', 'load_hunter')}"
    )


@pytest.fixture(scope="session")
def db_connection_available(test_dsn: str) -> bool:
    """
    Check if database is reachable.

    Used to conditionally skip integration tests when DB is not available.
    """
    try:
        with psycopg.connect(test_dsn, connect_timeout=5) as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT 1;")
                cur.fetchone()
        return True
    except psycopg.Error:
        return False


@pytest.fixture(scope="session")
def db_connection(
    test_dsn: str, db_connection_available: bool
) -> Generator[psycopg.Connection, None, None]:
    """
    Provide a session-scoped database connection with the schema applied.

    Skips tests if database is not available.
    """
    if not db_connection_available:
        pytest.skip("Database not available for integration tests")

    conn = psycopg.connect(test_dsn)
    try:
        init_sql_path = Path(__file__).parent.parent / "db" / "init.sql"
        with conn.cursor() as cur:
            cur.execute(init_sql_path.read_text(encoding="utf-8"))
        conn.commit()
        yield conn
    finally:
        conn.close()


@pytest.fixture
def clean_tables(db_connection: psycopg.Connection):
    """
    Empty every Load Hunter table before and after each test function.
    """
    truncate = (
        "TRUNCATE TABLE public.match_actions, public.missed_records, public.matches, "
        "public.postings, public.hunt_plans, public.vehicles RESTART IDENTITY CASCADE;"
    )
    with db_connection.cursor() as cur:
        cur.execute(truncate)
    db_connection.commit()
    yield
    with db_connection.cursor() as cur:
        cur.execute(truncate)
    db_connection.commit()
