from __future__ import annotations
import uuid
from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from ..deps import get_db, get_claims, get_geocoder, current_user_id
from ..core.config import get_settings
from ..core.geocoding import NominatimGeocoder
from ..core.nats import publish_attendance
from ..core.redis import allow_request
from ..schemas import AttendanceRead, AutoCheckoutRead, LocationSample, RadiusCheckCreate, RadiusCheckRead
from ..services import attendance as store
from ..services.geofence import auto_check_out, check_in_radius
from ..services.outcomes import Failure
from .attendance import attendance_event, to_read
from .errors import raise_for_failure

# The three calls the geofence monitor makes for the signed-in attendee.
router = APIRouter(prefix="/location", tags=["location"])

@router.post("/events/{event_id}/track", response_model=AttendanceRead)
async def track_location(
    event_id: uuid.UUID,
    payload: LocationSample,
    request: Request,
    claims: dict = Depends(get_claims),
    db: AsyncSession = Depends(get_db),
):
    ip = request.client.host if request.client else "unknown"
    if not await allow_request(ip, "location.track"):
        raise HTTPException(status_code=429, detail="Too many requests")
    outcome = await store.record_location(
        db, event_id=event_id, user_id=current_user_id(claims), lat=payload.lat, lng=payload.lng
    )
    raise_for_failure(outcome)
    return to_read(outcome.value)

@router.post("/events/{event_id}/radius", response_model=RadiusCheckRead)
async def radius_check(
    event_id: uuid.UUID,
    payload: RadiusCheckCreate,
    claims: dict = Depends(get_claims),
    db: AsyncSession = Depends(get_db),
    geocoder: NominatimGeocoder = Depends(get_geocoder),
):
    outcome = await check_in_radius(
        db, geocoder,
        event_id=event_id, user_id=current_user_id(claims),
        lat=payload.lat, lng=payload.lng, radius=payload.radius,
    )
    raise_for_failure(outcome)
    return RadiusCheckRead(in_radius=outcome.value.in_radius, distance_m=outcome.value.distance_m)

@router.post("/events/{event_id}/auto-checkout", response_model=AutoCheckoutRead)
async def auto_checkout(
    event_id: uuid.UUID,
    claims: dict = Depends(get_claims),
    db: AsyncSession = Depends(get_db),
    geocoder: NominatimGeocoder = Depends(get_geocoder),
):
    outcome = await auto_check_out(db, geocoder, event_id=event_id, user_id=current_user_id(claims))
    # an expected result for the monitor, not an error
    if outcome.failure is Failure.BACK_IN_RADIUS:
        return AutoCheckoutRead(status="back_in_radius")
    raise_for_failure(outcome)
    await publish_attendance(
        get_settings().nats_subject_checked_out,
        attendance_event(outcome.value, method=outcome.value.checkout_method.value),
    )
    return AutoCheckoutRead(status="checked_out", record=to_read(outcome.value))
