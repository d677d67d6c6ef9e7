from __future__ import annotations
import logging
import uuid
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update

from ..core.geo import Coordinates, parse_coordinate_text
from ..core.geocoding import NominatimGeocoder
from ..models import Event

logger = logging.getLogger(__name__)

async def resolve_event_coordinates(
    db: AsyncSession,
    geocoder: NominatimGeocoder,
    event_id: uuid.UUID,
) -> Coordinates | None:
    """Venue coordinates for an event, filling the event's cache on a miss.

    Once cached the coordinates are never recomputed, even if the event's
    ``location`` text is edited later.
    """
    row = (await db.execute(
        select(Event.location, Event.location_lat, Event.location_lng).where(Event.id == event_id)
    )).one_or_none()
    if row is None:
        return None
    location, cached_lat, cached_lng = row

    if cached_lat is not None and cached_lng is not None:
        return Coordinates(lat=float(cached_lat), lng=float(cached_lng))

    if not location or not location.strip():
        return None

    coords = parse_coordinate_text(location)
    if coords is None:
        coords = await geocoder.geocode(location)
    if coords is None:
        return None

    try:
        await db.execute(
            update(Event)
            .where(Event.id == event_id)
            .values(location_lat=coords.lat, location_lng=coords.lng)
            .execution_options(synchronize_session=False)
        )
        await db.commit()
    except SQLAlchemyError as exc:
        # the resolution itself succeeded; the next caller just misses the cache
        logger.warning("could not cache coordinates for event %s: %s", event_id, exc)
        await db.rollback()
    return coords
