"""
Infrastructure package for Load Hunter.

Centralizes I/O concerns: the store contract and its memory/PostgreSQL
implementations, connection pooling, change notifications and the geocoding
provider. Keep this layer free of matching logic.
"""

from load_hunter.infrastructure.db_factory import PoolManager, build_dsn, get_sync_connection
from load_hunter.infrastructure.geocoder import MapboxGeocoder
from load_hunter.infrastructure.memory_store import MemoryStore
from load_hunter.infrastructure.notifications import EventBus, PgNotificationListener, Subscription
from load_hunter.infrastructure.pg_store import PostgresStore
from load_hunter.infrastructure.store import MatchStore

__all__ = [
    "EventBus",
    "MapboxGeocoder",
    "MatchStore",
    "MemoryStore",
    "PgNotificationListener",
    "PoolManager",
    "PostgresStore",
    "Subscription",
    "build_dsn",
    "get_sync_connection",
]
