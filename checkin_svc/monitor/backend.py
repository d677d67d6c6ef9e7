"""The three server operations the geofence monitor depends on.

``HttpCheckinBackend`` talks to the ``/location`` routes of a running service
with the attendee's bearer token; ``LocalCheckinBackend`` calls the service
layer directly (workers, tests, embedding).
"""
from __future__ import annotations
import logging
import uuid
from typing import Any, Awaitable, Callable, Protocol

import httpx
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..core.geocoding import NominatimGeocoder
from ..services import attendance as store
from ..services.geofence import RadiusCheck, auto_check_out, check_in_radius
from ..services.outcomes import Failure, Outcome

logger = logging.getLogger(__name__)


class CheckinBackend(Protocol):
    async def track_location(self, event_id: uuid.UUID, user_id: uuid.UUID, lat: float, lng: float) -> Outcome[Any]:
        ...

    async def check_in_radius(
        self, event_id: uuid.UUID, user_id: uuid.UUID, lat: float, lng: float, radius: float | None = None
    ) -> Outcome[RadiusCheck]:
        ...

    async def auto_check_out(self, event_id: uuid.UUID, user_id: uuid.UUID) -> Outcome[Any]:
        ...


class LocalCheckinBackend:
    def __init__(self, session_maker: async_sessionmaker[AsyncSession], geocoder: NominatimGeocoder):
        self._session_maker = session_maker
        self._geocoder = geocoder

    async def _run(self, name: str, op: Callable[[AsyncSession], Awaitable[Outcome[Any]]]) -> Outcome[Any]:
        try:
            async with self._session_maker() as db:
                return await op(db)
        except (SQLAlchemyError, OSError) as exc:
            logger.warning("%s failed: %s", name, exc)
            return Outcome.fail(Failure.UNAVAILABLE, str(exc))

    async def track_location(self, event_id, user_id, lat, lng):
        return await self._run(
            "track_location",
            lambda db: store.record_location(db, event_id=event_id, user_id=user_id, lat=lat, lng=lng),
        )

    async def check_in_radius(self, event_id, user_id, lat, lng, radius=None):
        return await self._run(
            "check_in_radius",
            lambda db: check_in_radius(
                db, self._geocoder, event_id=event_id, user_id=user_id, lat=lat, lng=lng, radius=radius
            ),
        )

    async def auto_check_out(self, event_id, user_id):
        return await self._run(
            "auto_check_out",
            lambda db: auto_check_out(db, self._geocoder, event_id=event_id, user_id=user_id),
        )


def _failure_from_response(r: httpx.Response) -> Outcome[Any]:
    try:
        body = r.json()
    except ValueError:
        body = None
    detail = body.get("detail") if isinstance(body, dict) else None
    if isinstance(detail, dict):
        try:
            return Outcome.fail(Failure(detail.get("code")), detail.get("message") or "")
        except ValueError:
            pass
    if r.status_code == 422:
        return Outcome.fail(Failure.INVALID_INPUT, str(detail))
    return Outcome.fail(Failure.UNAVAILABLE, f"HTTP {r.status_code}: {detail}")


class HttpCheckinBackend:
    """Calls the service as the signed-in attendee; ``user_id`` comes from the token."""

    def __init__(self, *, base_url: str, token: str, client: httpx.AsyncClient | None = None, timeout: float = 10.0):
        self.base_url = base_url.rstrip("/")
        self._headers = {"Authorization": f"Bearer {token}"}
        self._client = client or httpx.AsyncClient()
        self._timeout = timeout

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _post(self, path: str, payload: dict | None = None) -> httpx.Response | Outcome[Any]:
        try:
            return await self._client.post(
                f"{self.base_url}{path}", json=payload, headers=self._headers, timeout=self._timeout
            )
        except httpx.HTTPError as exc:
            logger.warning("POST %s failed: %s", path, exc)
            return Outcome.fail(Failure.UNAVAILABLE, str(exc))

    async def track_location(self, event_id, user_id, lat, lng):
        r = await self._post(f"/location/events/{event_id}/track", {"lat": lat, "lng": lng})
        if isinstance(r, Outcome):
            return r
        if not r.is_success:
            return _failure_from_response(r)
        try:
            return Outcome.success(r.json())
        except ValueError as exc:
            return _undecodable(r, exc)

    async def check_in_radius(self, event_id, user_id, lat, lng, radius=None):
        r = await self._post(
            f"/location/events/{event_id}/radius", {"lat": lat, "lng": lng, "radius": radius}
        )
        if isinstance(r, Outcome):
            return r
        if not r.is_success:
            return _failure_from_response(r)
        try:
            body = r.json()
            return Outcome.success(RadiusCheck(in_radius=bool(body["in_radius"]), distance_m=float(body["distance_m"])))
        except (ValueError, KeyError, TypeError) as exc:
            return _undecodable(r, exc)

    async def auto_check_out(self, event_id, user_id):
        r = await self._post(f"/location/events/{event_id}/auto-checkout")
        if isinstance(r, Outcome):
            return r
        if not r.is_success:
            return _failure_from_response(r)
        try:
            body = r.json()
            if body.get("status") == "back_in_radius":
                return Outcome.fail(Failure.BACK_IN_RADIUS, "User is back in radius")
            return Outcome.success(body.get("record"))
        except (ValueError, AttributeError) as exc:
            return _undecodable(r, exc)


def _undecodable(r: httpx.Response, exc: Exception) -> Outcome[Any]:
    logger.warning("unreadable %s response from %s: %r", r.status_code, r.request.url, exc)
    return Outcome.fail(Failure.UNAVAILABLE, f"HTTP {r.status_code}: unreadable body")
