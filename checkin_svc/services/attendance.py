from __future__ import annotations
import logging
import uuid
from datetime import datetime, timezone
from typing import List
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update

from ..core.geo import is_valid_lat_lng
from ..core.qr import validate_user_code
from ..models import Attendance, CheckoutMethod, EntryMethod
from .outcomes import Admin, Failure, Initiator, Outcome

logger = logging.getLogger(__name__)

def _now():
    return datetime.now(timezone.utc)

async def get_active(db: AsyncSession, *, event_id: uuid.UUID, user_id: uuid.UUID) -> Attendance | None:
    return (await db.execute(
        select(Attendance).where(
            Attendance.event_id == event_id,
            Attendance.user_id == user_id,
            Attendance.is_checked_in.is_(True),
        )
    )).scalar_one_or_none()

async def is_checked_in(db: AsyncSession, *, event_id: uuid.UUID, user_id: uuid.UUID) -> bool:
    return await get_active(db, event_id=event_id, user_id=user_id) is not None

async def list_checked_in(db: AsyncSession, event_id: uuid.UUID) -> List[Attendance]:
    rows = await db.execute(
        select(Attendance)
        .where(Attendance.event_id == event_id, Attendance.is_checked_in.is_(True))
        .order_by(Attendance.checked_in_at.desc())
    )
    return list(rows.scalars().all())

async def check_in(
    db: AsyncSession,
    *,
    event_id: uuid.UUID,
    user_id: uuid.UUID,
    scanned_code: str,
    admin_id: uuid.UUID,
) -> Outcome[Attendance]:
    """Create the active record for a scanned attendee.

    The admin's authority over the event is checked by the caller.
    """
    err = validate_user_code(scanned_code, user_id=user_id, event_id=event_id)
    if err:
        return Outcome.fail(Failure.INVALID_QR, err)

    if await get_active(db, event_id=event_id, user_id=user_id):
        return Outcome.fail(Failure.ALREADY_CHECKED_IN, "User is already checked in")

    obj = Attendance(
        event_id=event_id,
        user_id=user_id,
        is_checked_in=True,
        checked_in_at=_now(),
        entry_method=EntryMethod.QR_SCAN,
        checked_in_by=admin_id,
    )
    db.add(obj)
    try:
        await db.commit()
    except IntegrityError:
        # a concurrent scan won the partial unique index
        await db.rollback()
        return Outcome.fail(Failure.ALREADY_CHECKED_IN, "User is already checked in")
    await db.refresh(obj)
    logger.info("checked in user %s at event %s (admin %s)", user_id, event_id, admin_id)
    return Outcome.success(obj)

async def check_out(
    db: AsyncSession,
    *,
    event_id: uuid.UUID,
    user_id: uuid.UUID,
    initiator: Initiator,
) -> Outcome[Attendance]:
    current = await get_active(db, event_id=event_id, user_id=user_id)
    if current is None:
        return Outcome.fail(Failure.NOT_CHECKED_IN, "User is not checked in")

    if isinstance(initiator, Admin):
        method, by = CheckoutMethod.ADMIN, initiator.admin_id
    else:
        method, by = CheckoutMethod.AUTOMATIC, None

    # conditional on still being active: a racing check-out updates nothing
    res = await db.execute(
        update(Attendance)
        .where(Attendance.id == current.id, Attendance.is_checked_in.is_(True))
        .values(
            is_checked_in=False,
            checked_out_at=_now(),
            checkout_method=method,
            checked_out_by=by,
        )
        .execution_options(synchronize_session=False)
    )
    if res.rowcount == 0:
        await db.rollback()
        return Outcome.fail(Failure.NOT_CHECKED_IN, "User is not checked in")
    await db.commit()
    await db.refresh(current)
    logger.info("checked out user %s at event %s (%s)", user_id, event_id, method.value)
    return Outcome.success(current)

async def record_location(
    db: AsyncSession,
    *,
    event_id: uuid.UUID,
    user_id: uuid.UUID,
    lat: float,
    lng: float,
) -> Outcome[Attendance]:
    if not is_valid_lat_lng(lat, lng):
        return Outcome.fail(Failure.INVALID_INPUT, "Invalid latitude/longitude values")

    current = await get_active(db, event_id=event_id, user_id=user_id)
    if current is None:
        return Outcome.fail(Failure.NOT_CHECKED_IN, "User is not checked in")

    # last writer wins; no ordering across retried samples
    res = await db.execute(
        update(Attendance)
        .where(Attendance.id == current.id, Attendance.is_checked_in.is_(True))
        .values(last_location_lat=float(lat), last_location_lng=float(lng), last_location_at=_now())
        .execution_options(synchronize_session=False)
    )
    if res.rowcount == 0:
        await db.rollback()
        return Outcome.fail(Failure.NOT_CHECKED_IN, "User is not checked in")
    await db.commit()
    await db.refresh(current)
    logger.debug("location for user %s at event %s: %s,%s", user_id, event_id, lat, lng)
    return Outcome.success(current)
