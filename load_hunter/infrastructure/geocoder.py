"""
Mapbox forward-geocoding provider over httpx.

Transient failures (timeouts, connection errors, 429 and 5xx answers) are
retried with exponential backoff via tenacity; once retries are exhausted the
provider raises ``GeocoderUnavailableError`` and the resolver degrades the
lookup to "not found".
"""

from __future__ import annotations

from typing import Any, Optional
from urllib.parse import quote

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from load_hunter.config import Settings, get_settings
from load_hunter.domain.errors import GeocoderUnavailableError
from load_hunter.domain.models import Coordinates
from load_hunter.utils.logging import get_logger

log = get_logger(__name__)


class _TransientGeocodeError(Exception):
    """Retryable provider answer (rate limit or server error)."""


class MapboxGeocoder:
    """
    Geocode free-text locations with the Mapbox places endpoint.

    The client is owned by the geocoder unless one is injected; call
    ``aclose()`` (or use it as an async context manager) when done.
    """

    def __init__(
        self,
        token: Optional[str] = None,
        base_url: Optional[str] = None,
        country: Optional[str] = None,
        timeout: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        settings = settings or get_settings()
        self._token = token if token is not None else settings.geocoder_token
        self._base_url = (base_url or settings.geocoder_base_url).rstrip("/")
        self._country = country or settings.geocoder_country
        self._timeout = timeout or settings.geocoder_timeout_seconds
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=self._timeout)

    async def __aenter__(self) -> "MapboxGeocoder":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def geocode(self, query: str) -> Optional[Coordinates]:
        if not self._token:
            raise GeocoderUnavailableError("GEOCODER_TOKEN is not configured")
        try:
            payload = await self._request(query)
        except (_TransientGeocodeError, httpx.TransportError) as exc:
            raise GeocoderUnavailableError(f"Geocoding '{query}' failed: {exc}") from exc
        except httpx.HTTPStatusError as exc:
            raise GeocoderUnavailableError(
                f"Geocoding '{query}' rejected with HTTP {exc.response.status_code}"
            ) from exc
        except ValueError as exc:
            raise GeocoderUnavailableError(f"Geocoding '{query}' returned a non-JSON body") from exc
        return _first_center(payload)

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
        retry=retry_if_exception_type((_TransientGeocodeError, httpx.TransportError)),
        reraise=True,
    )
    async def _request(self, query: str) -> Any:
        url = f"{self._base_url}/{quote(query, safe='')}.json"
        params = {"access_token": self._token, "limit": 1, "country": self._country}
        response = await self._client.get(url, params=params, timeout=self._timeout)
        if response.status_code == 429 or response.status_code >= 500:
            raise _TransientGeocodeError(f"HTTP {response.status_code}")
        response.raise_for_status()
        return response.json()


def _first_center(payload: Any) -> Optional[Coordinates]:
    """Coordinates of the first feature; Mapbox centers are [lng, lat]."""
    if not isinstance(payload, dict):
        return None
    features = payload.get("features") or []
    if not features:
        return None
    center = features[0].get("center") if isinstance(features[0], dict) else None
    if not center or len(center) < 2:
        return None
    try:
        return Coordinates(lat=float(center[1]), lng=float(center[0]))
    except (TypeError, ValueError):
        log.warning("[GEOCODE] malformed center in response", extra={"center": center})
        return None


__all__ = ["MapboxGeocoder"]
