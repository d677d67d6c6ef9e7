import math
import os
import uuid

# settings are read once and cached; set them before the app modules load
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("AUTH_JWKS_URL", "http://auth.test/.well-known/jwks.json")
os.environ.setdefault("RL_ENABLED", "false")
os.environ.setdefault("PUBLISH_EVENTS", "false")

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from checkin_svc.core.geo import EARTH_RADIUS_M, Coordinates
from checkin_svc.core.qr import user_code
from checkin_svc.models import Base, Event
from checkin_svc.services import attendance as store

VENUE = Coordinates(lat=37.8719, lng=-122.2585)


def north_of(point: Coordinates, meters: float) -> Coordinates:
    """A point ``meters`` due north; exact on the haversine sphere."""
    return Coordinates(lat=point.lat + math.degrees(meters / EARTH_RADIUS_M), lng=point.lng)


class StubGeocoder:
    """Stands in for NominatimGeocoder; counts lookups."""

    def __init__(self, result: Coordinates | None = None):
        self.result = result
        self.calls: list[str] = []

    async def geocode(self, address):
        self.calls.append(address)
        return self.result


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_maker):
    async with session_maker() as session:
        yield session


@pytest.fixture
def geocoder():
    return StubGeocoder()


@pytest.fixture
def user_id():
    return uuid.uuid4()


@pytest.fixture
def admin_id():
    return uuid.uuid4()


async def make_event(session_maker, *, location=None, lat=None, lng=None) -> uuid.UUID:
    async with session_maker() as s:
        ev = Event(title="Campus fair", location=location, location_lat=lat, location_lng=lng)
        s.add(ev)
        await s.commit()
        return ev.id


@pytest_asyncio.fixture
async def event_id(session_maker):
    return await make_event(session_maker, location=f"{VENUE.lat},{VENUE.lng}")


@pytest_asyncio.fixture
async def checked_in(session_maker, event_id, user_id, admin_id):
    async with session_maker() as s:
        outcome = await store.check_in(
            s,
            event_id=event_id,
            user_id=user_id,
            scanned_code=user_code(user_id=user_id, event_id=event_id),
            admin_id=admin_id,
        )
    assert outcome.ok
    return outcome.value
