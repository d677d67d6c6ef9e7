"""Address -> coordinates lookups against OpenStreetMap Nominatim.

Nominatim's usage policy allows at most one request per second and requires a
descriptive User-Agent. The limiter is owned by the geocoder instance; the
service shares one instance per process (see ``deps.get_geocoder``).
"""
from __future__ import annotations
import asyncio
import logging
import math
import time
from typing import Awaitable, Callable

import httpx

from .config import get_settings
from .geo import Coordinates, is_valid_lat_lng

logger = logging.getLogger(__name__)


class RateLimiter:
    """Enforces a minimum gap between consecutive acquisitions.

    ``clock`` and ``sleep`` are injectable so tests can drive time by hand.
    """

    def __init__(
        self,
        min_interval: float = 1.0,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.min_interval = min_interval
        self._clock = clock
        self._sleep = sleep
        self._last: float | None = None
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        async with self._lock:
            if self._last is not None:
                wait = self.min_interval - (self._clock() - self._last)
                if wait > 0:
                    await self._sleep(wait)
            self._last = self._clock()


class NominatimGeocoder:
    def __init__(
        self,
        *,
        base_url: str,
        user_agent: str,
        limiter: RateLimiter | None = None,
        client: httpx.AsyncClient | None = None,
        timeout: float = 10.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.user_agent = user_agent
        self.limiter = limiter or RateLimiter()
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient()
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def geocode(self, address: str | None) -> Coordinates | None:
        """Resolve ``address`` to coordinates, or None on any failure."""
        if not address or not isinstance(address, str) or not address.strip():
            return None
        query = address.strip()

        await self.limiter.acquire()
        try:
            r = await self._get_client().get(
                f"{self.base_url}/search",
                params={"q": query, "format": "json", "limit": 1},
                headers={"User-Agent": self.user_agent},
                timeout=self.timeout,
            )
        except httpx.HTTPError as exc:
            logger.warning("geocode request failed for %r: %s", query, exc)
            return None

        if not r.is_success:
            logger.warning("geocode for %r returned HTTP %s", query, r.status_code)
            return None
        try:
            data = r.json()
        except ValueError:
            logger.warning("geocode for %r returned a non-JSON body", query)
            return None

        if not isinstance(data, list) or not data:
            return None
        first = data[0]
        if not isinstance(first, dict) or not first.get("lat") or not first.get("lon"):
            return None
        try:
            lat, lng = float(first["lat"]), float(first["lon"])
        except (TypeError, ValueError):
            return None
        if not (math.isfinite(lat) and math.isfinite(lng)) or not is_valid_lat_lng(lat, lng):
            return None
        return Coordinates(lat=lat, lng=lng)


def build_geocoder() -> NominatimGeocoder:
    settings = get_settings()
    return NominatimGeocoder(
        base_url=settings.geocoder_base_url,
        user_agent=settings.geocoder_user_agent,
        limiter=RateLimiter(settings.geocoder_min_interval_seconds),
        timeout=settings.geocoder_timeout_seconds,
    )
