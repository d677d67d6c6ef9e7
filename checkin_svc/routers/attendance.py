from __future__ import annotations
import uuid
from datetime import datetime, timezone
from fastapi import APIRouter, Depends, HTTPException, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession

from ..deps import get_db, get_claims, require_admin, current_user_id
from ..core.config import get_settings
from ..core.nats import publish_attendance
from ..core.qr import render_png, user_code
from ..core.redis import allow_request
from ..models import Attendance
from ..schemas import AttendanceRead, CheckinStatusRead, ScanCreate
from ..services import attendance as store
from ..services.outcomes import Admin
from .errors import raise_for_failure

router = APIRouter(prefix="/checkin", tags=["checkin"])

def _now_iso():
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")

def to_read(r: Attendance) -> AttendanceRead:
    return AttendanceRead(
        id=r.id, event_id=r.event_id, user_id=r.user_id, is_checked_in=r.is_checked_in,
        checked_in_at=r.checked_in_at, checked_out_at=r.checked_out_at,
        entry_method=r.entry_method.value,
        checked_in_by=r.checked_in_by, checked_out_by=r.checked_out_by,
        checkout_method=r.checkout_method.value if r.checkout_method else None,
        last_location_lat=r.last_location_lat, last_location_lng=r.last_location_lng,
        last_location_at=r.last_location_at,
    )

def attendance_event(r: Attendance, **extra) -> dict:
    return {
        "event_id": str(r.event_id),
        "user_id": str(r.user_id),
        "attendance_id": str(r.id),
        "at": _now_iso(),
        "idempotency_key": f"{r.event_id}:{r.user_id}:{r.id}",
        **extra,
    }

# --- 1) Admin scans an attendee's QR
@router.post("/events/{event_id}/scan", response_model=AttendanceRead, status_code=201)
async def scan_and_checkin(
    event_id: uuid.UUID,
    payload: ScanCreate,
    request: Request,
    claims: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    ip = request.client.host if request.client else "unknown"
    if not await allow_request(ip, "checkin.scan"):
        raise HTTPException(status_code=429, detail="Too many requests")

    outcome = await store.check_in(
        db,
        event_id=event_id,
        user_id=payload.user_id,
        scanned_code=payload.code,
        admin_id=current_user_id(claims),
    )
    raise_for_failure(outcome)
    await publish_attendance(get_settings().nats_subject_checked_in, attendance_event(outcome.value))
    return to_read(outcome.value)

# --- 2) Admin checks an attendee out manually
@router.post("/events/{event_id}/users/{user_id}/checkout", response_model=AttendanceRead)
async def admin_checkout(
    event_id: uuid.UUID,
    user_id: uuid.UUID,
    claims: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    outcome = await store.check_out(
        db, event_id=event_id, user_id=user_id, initiator=Admin(current_user_id(claims))
    )
    raise_for_failure(outcome)
    await publish_attendance(
        get_settings().nats_subject_checked_out,
        attendance_event(outcome.value, method=outcome.value.checkout_method.value),
    )
    return to_read(outcome.value)

# --- 3) Admin roster of currently checked-in attendees
@router.get("/events/{event_id}/roster", response_model=list[AttendanceRead])
async def roster(event_id: uuid.UUID, claims: dict = Depends(require_admin), db: AsyncSession = Depends(get_db)):
    rows = await store.list_checked_in(db, event_id)
    return [to_read(r) for r in rows]

@router.get("/events/{event_id}/users/{user_id}/status", response_model=CheckinStatusRead)
async def attendee_status(
    event_id: uuid.UUID,
    user_id: uuid.UUID,
    claims: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    checked_in = await store.is_checked_in(db, event_id=event_id, user_id=user_id)
    return CheckinStatusRead(event_id=event_id, user_id=user_id, checked_in=checked_in)

# --- 4) Attendee's own active record (null when not checked in)
@router.get("/events/{event_id}/me", response_model=AttendanceRead | None)
async def my_checkin(event_id: uuid.UUID, claims: dict = Depends(get_claims), db: AsyncSession = Depends(get_db)):
    row = await store.get_active(db, event_id=event_id, user_id=current_user_id(claims))
    return to_read(row) if row else None

# PNG of the attendee's code for the door scanner
@router.get("/events/{event_id}/me/qr.png")
async def my_qr_png(event_id: uuid.UUID, claims: dict = Depends(get_claims)):
    data = user_code(user_id=current_user_id(claims), event_id=event_id)
    return Response(content=render_png(data), media_type="image/png")
