import uuid

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from checkin_svc.core.qr import user_code
from checkin_svc.models import Attendance, CheckoutMethod, EntryMethod
from checkin_svc.services import attendance as store
from checkin_svc.services.outcomes import AUTOMATIC, Admin, Failure


async def count_active(session_maker, event_id, user_id):
    async with session_maker() as s:
        return await s.scalar(
            select(func.count()).select_from(Attendance).where(
                Attendance.event_id == event_id,
                Attendance.user_id == user_id,
                Attendance.is_checked_in.is_(True),
            )
        )


@pytest.mark.asyncio
async def test_check_in_creates_active_record(db, event_id, user_id, admin_id):
    outcome = await store.check_in(
        db, event_id=event_id, user_id=user_id,
        scanned_code=user_code(user_id=user_id, event_id=event_id), admin_id=admin_id,
    )
    assert outcome.ok
    rec = outcome.value
    assert rec.is_checked_in
    assert rec.entry_method is EntryMethod.QR_SCAN
    assert rec.checked_in_by == admin_id
    assert rec.checked_out_at is None
    assert await store.is_checked_in(db, event_id=event_id, user_id=user_id)


@pytest.mark.asyncio
async def test_second_check_in_is_rejected(session_maker, checked_in, event_id, user_id, admin_id):
    async with session_maker() as s:
        outcome = await store.check_in(
            s, event_id=event_id, user_id=user_id,
            scanned_code=user_code(user_id=user_id, event_id=event_id), admin_id=admin_id,
        )
    assert outcome.failure is Failure.ALREADY_CHECKED_IN
    assert await count_active(session_maker, event_id, user_id) == 1


@pytest.mark.asyncio
async def test_check_in_with_foreign_code(db, event_id, user_id, admin_id):
    other = uuid.uuid4()
    outcome = await store.check_in(
        db, event_id=event_id, user_id=user_id,
        scanned_code=user_code(user_id=other, event_id=event_id), admin_id=admin_id,
    )
    assert outcome.failure is Failure.INVALID_QR
    assert outcome.message == "QR code does not match user"
    assert not await store.is_checked_in(db, event_id=event_id, user_id=user_id)


@pytest.mark.asyncio
async def test_lost_race_reports_already_checked_in(monkeypatch, session_maker, checked_in, event_id, user_id, admin_id):
    async def nothing_active(db, *, event_id, user_id):
        return None

    # the pre-check misses the concurrent insert; the partial index catches it
    monkeypatch.setattr(store, "get_active", nothing_active)
    async with session_maker() as s:
        outcome = await store.check_in(
            s, event_id=event_id, user_id=user_id,
            scanned_code=user_code(user_id=user_id, event_id=event_id), admin_id=admin_id,
        )
    assert outcome.failure is Failure.ALREADY_CHECKED_IN
    assert await count_active(session_maker, event_id, user_id) == 1


@pytest.mark.asyncio
async def test_partial_index_rejects_second_active_row(db, event_id, user_id):
    db.add(Attendance(event_id=event_id, user_id=user_id, is_checked_in=True))
    await db.commit()
    db.add(Attendance(event_id=event_id, user_id=user_id, is_checked_in=True))
    with pytest.raises(IntegrityError):
        await db.commit()
    await db.rollback()


@pytest.mark.asyncio
async def test_partial_index_allows_history(db, event_id, user_id):
    db.add(Attendance(event_id=event_id, user_id=user_id, is_checked_in=False))
    db.add(Attendance(event_id=event_id, user_id=user_id, is_checked_in=False))
    db.add(Attendance(event_id=event_id, user_id=user_id, is_checked_in=True))
    await db.commit()


@pytest.mark.asyncio
async def test_check_out_without_record(session_maker, event_id, user_id, admin_id):
    async with session_maker() as s:
        outcome = await store.check_out(s, event_id=event_id, user_id=user_id, initiator=Admin(admin_id))
    assert outcome.failure is Failure.NOT_CHECKED_IN
    async with session_maker() as s:
        assert await s.scalar(select(func.count()).select_from(Attendance)) == 0


@pytest.mark.asyncio
async def test_admin_check_out(session_maker, checked_in, event_id, user_id, admin_id):
    async with session_maker() as s:
        outcome = await store.check_out(s, event_id=event_id, user_id=user_id, initiator=Admin(admin_id))
    assert outcome.ok
    rec = outcome.value
    assert not rec.is_checked_in
    assert rec.checked_out_at is not None
    assert rec.checkout_method is CheckoutMethod.ADMIN
    assert rec.checked_out_by == admin_id


@pytest.mark.asyncio
async def test_automatic_check_out_has_no_admin(session_maker, checked_in, event_id, user_id):
    async with session_maker() as s:
        outcome = await store.check_out(s, event_id=event_id, user_id=user_id, initiator=AUTOMATIC)
    assert outcome.value.checkout_method is CheckoutMethod.AUTOMATIC
    assert outcome.value.checked_out_by is None


@pytest.mark.asyncio
async def test_check_in_again_after_check_out(session_maker, checked_in, event_id, user_id, admin_id):
    code = user_code(user_id=user_id, event_id=event_id)
    async with session_maker() as s:
        assert (await store.check_out(s, event_id=event_id, user_id=user_id, initiator=Admin(admin_id))).ok
        again = await store.check_in(s, event_id=event_id, user_id=user_id, scanned_code=code, admin_id=admin_id)
    assert again.ok
    assert again.value.id != checked_in.id
    async with session_maker() as s:
        assert await s.scalar(select(func.count()).select_from(Attendance)) == 2


@pytest.mark.asyncio
async def test_roster_lists_only_active(session_maker, checked_in, event_id, admin_id):
    others = [uuid.uuid4(), uuid.uuid4()]
    async with session_maker() as s:
        for uid in others:
            code = user_code(user_id=uid, event_id=event_id)
            assert (await store.check_in(s, event_id=event_id, user_id=uid, scanned_code=code, admin_id=admin_id)).ok
        await store.check_out(s, event_id=event_id, user_id=others[0], initiator=Admin(admin_id))
        rows = await store.list_checked_in(s, event_id)
    assert {r.user_id for r in rows} == {checked_in.user_id, others[1]}


@pytest.mark.asyncio
async def test_record_location(session_maker, checked_in, event_id, user_id):
    async with session_maker() as s:
        outcome = await store.record_location(s, event_id=event_id, user_id=user_id, lat=37.0, lng=-122.0)
    assert outcome.ok
    assert (outcome.value.last_location_lat, outcome.value.last_location_lng) == (37.0, -122.0)
    assert outcome.value.last_location_at is not None


@pytest.mark.asyncio
async def test_record_location_rejects_bad_input(db, checked_in, event_id, user_id):
    outcome = await store.record_location(db, event_id=event_id, user_id=user_id, lat=120.0, lng=0.0)
    assert outcome.failure is Failure.INVALID_INPUT


@pytest.mark.asyncio
async def test_record_location_requires_active_record(db, event_id, user_id):
    outcome = await store.record_location(db, event_id=event_id, user_id=user_id, lat=1.0, lng=1.0)
    assert outcome.failure is Failure.NOT_CHECKED_IN


async def stale_active_row(monkeypatch, session_maker, event_id, user_id, admin_id):
    """Load the active row, then let an admin check the user out behind its back."""
    async with session_maker() as s:
        stale = await store.get_active(s, event_id=event_id, user_id=user_id)
    async with session_maker() as s:
        assert (await store.check_out(s, event_id=event_id, user_id=user_id, initiator=Admin(admin_id))).ok

    async def still_active(db, *, event_id, user_id):
        return stale

    monkeypatch.setattr(store, "get_active", still_active)
    return stale


@pytest.mark.asyncio
async def test_check_out_that_loses_the_race_changes_nothing(monkeypatch, session_maker, checked_in, event_id, user_id, admin_id):
    await stale_active_row(monkeypatch, session_maker, event_id, user_id, admin_id)
    async with session_maker() as s:
        first = await s.get(Attendance, checked_in.id)
    async with session_maker() as s:
        outcome = await store.check_out(s, event_id=event_id, user_id=user_id, initiator=AUTOMATIC)
    assert outcome.failure is Failure.NOT_CHECKED_IN

    async with session_maker() as s:
        rec = await s.get(Attendance, checked_in.id)
    assert rec.checkout_method is CheckoutMethod.ADMIN
    assert rec.checked_out_by == admin_id
    assert rec.checked_out_at == first.checked_out_at


@pytest.mark.asyncio
async def test_location_sample_after_a_concurrent_check_out_is_dropped(monkeypatch, session_maker, checked_in, event_id, user_id, admin_id):
    await stale_active_row(monkeypatch, session_maker, event_id, user_id, admin_id)
    async with session_maker() as s:
        outcome = await store.record_location(s, event_id=event_id, user_id=user_id, lat=37.0, lng=-122.0)
    assert outcome.failure is Failure.NOT_CHECKED_IN

    async with session_maker() as s:
        rec = await s.get(Attendance, checked_in.id)
    assert rec.last_location_lat is None
    assert rec.last_location_at is None
