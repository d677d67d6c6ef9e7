from __future__ import annotations
import logging
import math
import uuid
from dataclasses import dataclass
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import get_settings
from ..core.geo import haversine_m, is_valid_lat_lng
from ..core.geocoding import NominatimGeocoder
from ..models import Attendance
from .attendance import check_out, get_active
from .outcomes import AUTOMATIC, Failure, Outcome
from .venues import resolve_event_coordinates

logger = logging.getLogger(__name__)

@dataclass(frozen=True)
class RadiusCheck:
    in_radius: bool
    distance_m: float

def _as_uuid(value: Any) -> uuid.UUID | None:
    if isinstance(value, uuid.UUID):
        return value
    if not isinstance(value, str):
        return None
    try:
        return uuid.UUID(value)
    except ValueError:
        return None

def _effective_radius(radius: Any) -> float:
    default = get_settings().geofence_radius_meters
    if radius is None or isinstance(radius, bool) or not isinstance(radius, (int, float)):
        return default
    if not math.isfinite(radius) or radius <= 0:
        return default
    return float(radius)

async def check_in_radius(
    db: AsyncSession,
    geocoder: NominatimGeocoder,
    *,
    event_id: uuid.UUID | str,
    user_id: uuid.UUID | str,
    lat: float,
    lng: float,
    radius: float | None = None,
) -> Outcome[RadiusCheck]:
    ev, usr = _as_uuid(event_id), _as_uuid(user_id)
    if ev is None or usr is None:
        return Outcome.fail(Failure.INVALID_INPUT, "Invalid ID format")
    if not is_valid_lat_lng(lat, lng):
        return Outcome.fail(Failure.INVALID_INPUT, "Invalid latitude/longitude values")
    radius_m = _effective_radius(radius)

    venue = await resolve_event_coordinates(db, geocoder, ev)
    if venue is None:
        return Outcome.fail(
            Failure.VENUE_COORDINATES_REQUIRED,
            "Event location is required for automatic check-out",
        )

    distance = haversine_m(lat, lng, venue.lat, venue.lng)
    return Outcome.success(RadiusCheck(in_radius=distance <= radius_m, distance_m=distance))

async def auto_check_out(
    db: AsyncSession,
    geocoder: NominatimGeocoder,
    *,
    event_id: uuid.UUID,
    user_id: uuid.UUID,
) -> Outcome[Attendance]:
    """Check a user out after the monitor saw them outside the geofence.

    The stored last location is re-checked first, since the user may have
    walked back in between the monitor's decision and this call. With no
    stored sample the caller's claim is trusted.
    """
    current = await get_active(db, event_id=event_id, user_id=user_id)
    if current is None:
        return Outcome.fail(Failure.NOT_CHECKED_IN, "User is not checked in")

    if current.last_location_lat is not None and current.last_location_lng is not None:
        check = await check_in_radius(
            db, geocoder,
            event_id=event_id, user_id=user_id,
            lat=current.last_location_lat, lng=current.last_location_lng,
        )
        if not check.ok:
            return Outcome.fail(check.failure, check.message)
        if check.value.in_radius:
            logger.info("auto check-out skipped: user %s is back in radius of event %s", user_id, event_id)
            return Outcome.fail(Failure.BACK_IN_RADIUS, "User is back in radius")

    return await check_out(db, event_id=event_id, user_id=user_id, initiator=AUTOMATIC)
