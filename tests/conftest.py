"""
Shared fixtures. Tests run against a throwaway SQLite file (aiosqlite) so the
conditional updates and partial unique indexes are exercised for real.
"""
import os
import tempfile

_DB_FILE = os.path.join(tempfile.gettempdir(), f"ride_dispatch_test_{os.getpid()}.db")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_DB_FILE}"

import pytest
import pytest_asyncio

import app.models  # noqa: F401  (registers tables on Base.metadata)
from app.database import AsyncSessionLocal, Base, engine
from app.services import riders as directory
from app.services.dispatch import offer_registry
from app.services.timers import offer_timers
from tests.factories import PICKUP, RecordingNotifier


@pytest_asyncio.fixture
async def db():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    async with AsyncSessionLocal() as session:
        yield session
    offer_timers.cancel_all()
    offer_registry.clear()
    await engine.dispose()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def make_rider(db):
    """Register an approved, online and available rider at a position."""
    counter = {"n": 0}

    async def _make(
        lat: float = PICKUP.lat,
        lng: float = PICKUP.lng,
        vehicle_type: str = "BIKE",
        rating: float = 5.0,
        name: str | None = None,
    ):
        counter["n"] += 1
        n = counter["n"]
        rider = await directory.register_rider(
            db,
            user_id=f"rider-user-{n}",
            name=name or f"Rider {n}",
            plate_number=f"LAG-{n:03d}-XY",
            vehicle_type=vehicle_type,
        )
        await directory.approve_rider(db, rider.id)
        await directory.set_online(db, rider.id, True)
        await directory.set_availability(db, rider.id, True)
        await directory.update_position(db, rider.id, lat, lng)
        if rating != 5.0:
            rider.rating = rating
            await db.commit()
            await db.refresh(rider)
        return rider

    return _make
