"""
Rider directory: candidate search plus the availability, online and position
flags of the rider aggregate.

Candidate search is a linear scan of eligible riders with Haversine distance.
A rider is eligible for offers only when APPROVED, available, online,
holding a fresh last-known position and not already serving a ride.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.models.ride import Ride
from app.models.rider import Rider
from app.schemas.schemas import RiderStatusEnum, RideStatusEnum
from app.services.exceptions import InvalidStateError, NotFoundError
from app.services.geo import distance_km

logger = logging.getLogger(__name__)
settings = get_settings()

ASSIGNED_STATUSES = (
    RideStatusEnum.ACCEPTED.value,
    RideStatusEnum.ARRIVED.value,
    RideStatusEnum.IN_PROGRESS.value,
)


@dataclass(frozen=True)
class RiderCandidate:
    rider_id: str
    user_id: str
    name: str
    rating: float
    lat: float
    lng: float
    distance_km: float


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------

async def get_rider(db: AsyncSession, rider_id: str) -> Rider:
    rider = await db.get(Rider, rider_id)
    if rider is None:
        raise NotFoundError("Rider not found")
    return rider


async def get_rider_by_user(db: AsyncSession, user_id: str) -> Rider | None:
    result = await db.execute(select(Rider).where(Rider.user_id == user_id))
    return result.scalar_one_or_none()


async def find_candidates(
    db: AsyncSession,
    lat: float,
    lng: float,
    vehicle_type: str,
    radius_km: float,
) -> list[RiderCandidate]:
    """Eligible riders within `radius_km` of (lat, lng), nearest first, at most `candidate_limit`."""
    query = select(Rider).where(
        Rider.vehicle_type == vehicle_type,
        Rider.status == RiderStatusEnum.APPROVED.value,
        Rider.is_available.is_(True),
        Rider.is_online.is_(True),
        Rider.lat.is_not(None),
        Rider.lng.is_not(None),
        ~_serving_ride(Rider.id),
    )
    if settings.location_max_age_seconds > 0:
        cutoff = datetime.now(timezone.utc) - timedelta(seconds=settings.location_max_age_seconds)
        query = query.where(Rider.location_updated_at >= cutoff)

    result = await db.execute(query.order_by(Rider.created_at, Rider.id))
    candidates = []
    for rider in result.scalars():
        d = distance_km(lat, lng, rider.lat, rider.lng)
        if d <= radius_km:
            candidates.append(
                RiderCandidate(
                    rider_id=rider.id,
                    user_id=rider.user_id,
                    name=rider.name,
                    rating=rider.rating,
                    lat=rider.lat,
                    lng=rider.lng,
                    distance_km=d,
                )
            )
    # stable: equal distances keep discovery order
    candidates.sort(key=lambda c: c.distance_km)
    return candidates[: settings.candidate_limit]


def _serving_ride(rider_id):
    """EXISTS clause: the rider holds an ACCEPTED, ARRIVED or IN_PROGRESS ride."""
    return (
        select(Ride.id)
        .where(Ride.rider_id == rider_id, Ride.status.in_(ASSIGNED_STATUSES))
        .exists()
    )


async def search_riders(
    db: AsyncSession,
    status: str | None = None,
    vehicle_type: str | None = None,
    is_available: bool | None = None,
    is_online: bool | None = None,
    limit: int = 50,
) -> list[Rider]:
    """Filter the directory; a filter left as None is not applied. Newest first."""
    query = select(Rider)
    if status is not None:
        query = query.where(Rider.status == status)
    if vehicle_type is not None:
        query = query.where(Rider.vehicle_type == vehicle_type)
    if is_available is not None:
        query = query.where(Rider.is_available.is_(is_available))
    if is_online is not None:
        query = query.where(Rider.is_online.is_(is_online))
    result = await db.execute(query.order_by(Rider.created_at.desc(), Rider.id).limit(limit))
    return list(result.scalars().all())


async def list_pending_riders(db: AsyncSession, limit: int = 50) -> list[Rider]:
    return await search_riders(db, status=RiderStatusEnum.PENDING.value, limit=limit)


async def list_approved_riders(db: AsyncSession, limit: int = 50) -> list[Rider]:
    """Approved riders, best rated first."""
    result = await db.execute(
        select(Rider)
        .where(Rider.status == RiderStatusEnum.APPROVED.value)
        .order_by(Rider.rating.desc(), Rider.created_at, Rider.id)
        .limit(limit)
    )
    return list(result.scalars().all())


# ---------------------------------------------------------------------------
# Registration and approval
# ---------------------------------------------------------------------------

async def register_rider(
    db: AsyncSession,
    user_id: str,
    name: str,
    plate_number: str,
    vehicle_type: str,
    phone: str | None = None,
) -> Rider:
    if await get_rider_by_user(db, user_id) is not None:
        raise InvalidStateError("User already has a rider profile")

    existing = await db.execute(select(Rider.id).where(Rider.plate_number == plate_number))
    if existing.first() is not None:
        raise InvalidStateError("This plate number is already registered")

    rider = Rider(
        user_id=user_id,
        name=name,
        phone=phone,
        plate_number=plate_number,
        vehicle_type=vehicle_type,
        status=RiderStatusEnum.PENDING.value,
    )
    db.add(rider)
    await db.commit()
    await db.refresh(rider)
    logger.info("Registered rider=%s user=%s", rider.id, user_id)
    return rider


async def approve_rider(db: AsyncSession, rider_id: str) -> Rider:
    rider = await get_rider(db, rider_id)
    rider.status = RiderStatusEnum.APPROVED.value
    rider.approved_at = datetime.now(timezone.utc)
    return await _save(db, rider)


async def reject_rider(db: AsyncSession, rider_id: str) -> Rider:
    rider = await get_rider(db, rider_id)
    rider.status = RiderStatusEnum.REJECTED.value
    return await _save(db, rider)


async def suspend_rider(db: AsyncSession, rider_id: str) -> Rider:
    """Suspension also takes the rider off the offer pool."""
    rider = await get_rider(db, rider_id)
    rider.status = RiderStatusEnum.SUSPENDED.value
    rider.is_available = False
    rider.is_online = False
    return await _save(db, rider)


# ---------------------------------------------------------------------------
# Flags and position
# ---------------------------------------------------------------------------

async def set_availability(db: AsyncSession, rider_id: str, is_available: bool) -> Rider:
    """
    Single conditional UPDATE: the approval check and the no-assigned-ride
    check are evaluated by the database in the same statement as the write.
    """
    rider = await get_rider(db, rider_id)
    conditions = [Rider.id == rider_id, Rider.status == RiderStatusEnum.APPROVED.value]
    if is_available:
        # availability is restored by the ride itself on completion or cancellation
        conditions.append(~_serving_ride(rider_id))

    result = await db.execute(
        update(Rider)
        .where(*conditions)
        .values(is_available=is_available)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        await db.rollback()
        await db.refresh(rider)
        if rider.status != RiderStatusEnum.APPROVED.value:
            raise InvalidStateError("Only approved riders can change availability")
        raise InvalidStateError("Rider is serving a ride")
    return await _save(db, rider)


async def set_online(db: AsyncSession, rider_id: str, is_online: bool) -> Rider:
    rider = await get_rider(db, rider_id)
    rider.is_online = is_online
    return await _save(db, rider)


async def update_position(db: AsyncSession, rider_id: str, lat: float, lng: float) -> Rider:
    """Last write wins."""
    rider = await get_rider(db, rider_id)
    rider.lat = lat
    rider.lng = lng
    rider.location_updated_at = datetime.now(timezone.utc)
    return await _save(db, rider)


async def rider_statistics(db: AsyncSession, rider_id: str) -> dict:
    rider = await get_rider(db, rider_id)
    total = rider.total_rides
    earnings = rider.total_earnings or Decimal("0")
    completion_rate = rider.completed_rides / total * 100 if total else 0.0
    cancellation_rate = rider.cancelled_rides / total * 100 if total else 0.0
    if rider.completed_rides:
        average = (earnings / rider.completed_rides).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    else:
        average = Decimal("0.00")
    return {
        "rider_id": rider.id,
        "total_rides": total,
        "completed_rides": rider.completed_rides,
        "cancelled_rides": rider.cancelled_rides,
        "completion_rate": round(completion_rate, 2),
        "cancellation_rate": round(cancellation_rate, 2),
        "total_earnings": earnings,
        "average_earnings_per_ride": average,
        "rating": rider.rating,
    }


async def _save(db: AsyncSession, rider: Rider) -> Rider:
    await db.commit()
    await db.refresh(rider)
    return rider
