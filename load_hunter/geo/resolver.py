"""
Location resolution with a process-scoped memo.

The resolver turns a postal code or "City, ST" into coordinates through a
geocoding provider. Every answer, including "not found" and provider failure,
is memoized in an injected ``LocationCache`` so one unresolvable string costs
one external call per process. Concurrent lookups of the same key share the
same in-flight call.
"""

from __future__ import annotations

import asyncio
import re
from collections import OrderedDict
from typing import Dict, Optional, Protocol, Tuple, runtime_checkable

from load_hunter.domain.errors import GeocoderUnavailableError
from load_hunter.domain.models import Coordinates
from load_hunter.utils.logging import get_logger

log = get_logger(__name__)

_WHITESPACE = re.compile(r"\s+")
_COMMA = re.compile(r"\s*,\s*")


@runtime_checkable
class GeocodingProvider(Protocol):
    """External geocoder: coordinates for a query, or None when nothing matches."""

    async def geocode(self, query: str) -> Optional[Coordinates]:
        ...


class LocationCache:
    """
    Memo of resolved locations, ``None`` values included.

    Unbounded by default; with ``max_entries`` set it evicts least recently
    used keys.
    """

    def __init__(self, max_entries: int = 0) -> None:
        self.max_entries = max_entries
        self._entries: "OrderedDict[str, Optional[Coordinates]]" = OrderedDict()
        self._inflight: Dict[str, asyncio.Future] = {}
        self.hits = 0
        self.misses = 0

    def lookup(self, key: str) -> Tuple[bool, Optional[Coordinates]]:
        if key in self._entries:
            self.hits += 1
            self._entries.move_to_end(key)
            return True, self._entries[key]
        self.misses += 1
        return False, None

    def store(self, key: str, value: Optional[Coordinates]) -> None:
        self._entries[key] = value
        self._entries.move_to_end(key)
        if self.max_entries and len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)

    def pending(self, key: str) -> Optional[asyncio.Future]:
        return self._inflight.get(key)

    def begin(self, key: str) -> asyncio.Future:
        future = asyncio.get_running_loop().create_future()
        self._inflight[key] = future
        return future

    def finish(self, key: str) -> None:
        self._inflight.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()
        self.hits = 0
        self.misses = 0

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)


def cache_key(text: str) -> str:
    """Whitespace-collapsed, lower-cased form used as the memo key."""
    collapsed = _WHITESPACE.sub(" ", text.strip())
    return _COMMA.sub(", ", collapsed).lower()


class LocationResolver:
    """
    Resolve free-text locations to coordinates.

    A provider failure is treated exactly like "not found": callers see
    ``None`` and must read it as "cannot evaluate geography for this pair".
    """

    def __init__(self, provider: GeocodingProvider, cache: Optional[LocationCache] = None) -> None:
        self.provider = provider
        self.cache = cache if cache is not None else LocationCache()

    async def resolve(self, text: Optional[str]) -> Optional[Coordinates]:
        if not text or not text.strip():
            return None
        key = cache_key(text)

        hit, value = self.cache.lookup(key)
        if hit:
            return value

        pending = self.cache.pending(key)
        if pending is not None:
            try:
                return await asyncio.shield(pending)
            except asyncio.CancelledError:
                if pending.cancelled():
                    return None
                raise

        future = self.cache.begin(key)
        try:
            value = await self._lookup(key)
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception:  # noqa: BLE001 - any provider fault resolves to "not found"
            log.exception("[GEOCODE FAILED] unexpected provider error", extra={"location": key})
            value = None
        try:
            self.cache.store(key, value)
            future.set_result(value)
            return value
        finally:
            self.cache.finish(key)

    async def _lookup(self, key: str) -> Optional[Coordinates]:
        try:
            coords = await self.provider.geocode(key)
        except GeocoderUnavailableError as exc:
            log.warning(
                "[GEOCODE UNAVAILABLE] caching negative result",
                extra={"location": key, "error": str(exc)},
            )
            return None
        if coords is None:
            log.debug("[GEOCODE MISS] no result", extra={"location": key})
        return coords


__all__ = ["GeocodingProvider", "LocationCache", "LocationResolver", "cache_key"]
