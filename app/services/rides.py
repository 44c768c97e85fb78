"""
Ride lifecycle.

State machine:
  PENDING → ACCEPTED → ARRIVED → IN_PROGRESS → COMPLETED
  CANCELLED is reachable from every non-terminal state.

Every transition is a compare-and-swap on the status that was read
(`update_if`), so a concurrent writer makes the loser fail with
InvalidStateError instead of silently overwriting. Side effects on the rider
(availability, counters, earnings) are written in the same transaction.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.database import update_if
from app.models.ride import Ride
from app.models.rider import Rider
from app.schemas.schemas import (
    PaymentMethodEnum, PaymentStatusEnum, Place, RiderStatusEnum, RideStatusEnum,
)
from app.services.exceptions import (
    ActiveRideExistsError, InvalidStateError, NotFoundError,
    RiderUnavailableError, UnauthorizedError,
)
from app.services.geo import distance_km, estimate_eta
from app.services.notifier import Notifier, rider_topic, user_topic
from app.services.pricing import calculate_fare
from app.services.riders import RiderCandidate, find_candidates, get_rider, get_rider_by_user

logger = logging.getLogger(__name__)
settings = get_settings()

SYSTEM_ACTOR = "system"

S = RideStatusEnum
ALLOWED_TRANSITIONS: dict[str, set[str]] = {
    S.PENDING.value: {S.ACCEPTED.value, S.CANCELLED.value},
    S.ACCEPTED.value: {S.ARRIVED.value, S.CANCELLED.value},
    S.ARRIVED.value: {S.IN_PROGRESS.value, S.CANCELLED.value},
    S.IN_PROGRESS.value: {S.COMPLETED.value, S.CANCELLED.value},
    S.COMPLETED.value: set(),
    S.CANCELLED.value: set(),
}
TERMINAL_STATUSES = (S.COMPLETED.value, S.CANCELLED.value)
ACTIVE_STATUSES = (S.PENDING.value, S.ACCEPTED.value, S.ARRIVED.value, S.IN_PROGRESS.value)
ASSIGNED_STATUSES = (S.ACCEPTED.value, S.ARRIVED.value, S.IN_PROGRESS.value)


def can_transition(current: str, target: str) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, set())


@dataclass
class RideCreation:
    ride: Ride
    nearby_riders: list[RiderCandidate]


def ride_summary(ride: Ride) -> dict:
    """Payload shared by offers and lifecycle events."""
    return {
        "ride_id": ride.id,
        "status": ride.status,
        "vehicle_type": ride.vehicle_type,
        "pickup": {"lat": ride.pickup_lat, "lng": ride.pickup_lng, "address": ride.pickup_address},
        "dropoff": {"lat": ride.dropoff_lat, "lng": ride.dropoff_lng, "address": ride.dropoff_address},
        "distance_km": ride.distance_km,
        "estimated_fare": float(ride.final_fare),
        "currency": settings.currency,
    }


def rider_brief(rider: Rider) -> dict:
    return {
        "id": rider.id,
        "name": rider.name,
        "plate_number": rider.plate_number,
        "vehicle_type": rider.vehicle_type,
        "rating": rider.rating,
        "lat": rider.lat,
        "lng": rider.lng,
    }


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------

async def get_ride(db: AsyncSession, ride_id: str) -> Ride:
    ride = await db.get(Ride, ride_id)
    if ride is None:
        raise NotFoundError("Ride not found")
    return ride


async def participant_actor(db: AsyncSession, ride: Ride, user_id: str) -> str:
    """
    Resolve the calling user to a participant of `ride`: the requester's user
    id, or the assigned rider's id. Anyone else is refused.
    """
    if ride.user_id == user_id:
        return user_id
    rider = await get_rider_by_user(db, user_id)
    if rider is None or ride.rider_id != rider.id:
        raise UnauthorizedError("You are not a participant of this ride")
    return rider.id


async def get_active_ride_for_user(db: AsyncSession, user_id: str) -> Ride | None:
    result = await db.execute(
        select(Ride)
        .where(Ride.user_id == user_id, Ride.status.in_(ACTIVE_STATUSES))
        .order_by(Ride.created_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def get_active_ride_for_rider(db: AsyncSession, rider_id: str) -> Ride | None:
    result = await db.execute(
        select(Ride)
        .where(Ride.rider_id == rider_id, Ride.status.in_(ASSIGNED_STATUSES))
        .order_by(Ride.created_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def ride_history_for_user(db: AsyncSession, user_id: str, limit: int = 20) -> list[Ride]:
    result = await db.execute(
        select(Ride).where(Ride.user_id == user_id).order_by(Ride.created_at.desc()).limit(limit)
    )
    return list(result.scalars())


async def ride_history_for_rider(db: AsyncSession, rider_id: str, limit: int = 20) -> list[Ride]:
    result = await db.execute(
        select(Ride).where(Ride.rider_id == rider_id).order_by(Ride.created_at.desc()).limit(limit)
    )
    return list(result.scalars())


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------

async def create_ride(
    db: AsyncSession,
    user_id: str,
    vehicle_type: str,
    pickup: Place,
    dropoff: Place,
    notes: str | None = None,
    requester_name: str | None = None,
    requester_phone: str | None = None,
) -> RideCreation:
    """
    Create a PENDING ride with distance, duration estimate and fare filled in.
    Also returns the unranked riders currently near the pickup.
    """
    if await get_active_ride_for_user(db, user_id) is not None:
        raise ActiveRideExistsError("You already have an active ride")

    distance = distance_km(pickup.lat, pickup.lng, dropoff.lat, dropoff.lng)
    fare = calculate_fare(distance)

    ride = Ride(
        user_id=user_id,
        requester_name=requester_name,
        requester_phone=requester_phone,
        vehicle_type=vehicle_type,
        pickup_lat=pickup.lat,
        pickup_lng=pickup.lng,
        pickup_address=pickup.address,
        dropoff_lat=dropoff.lat,
        dropoff_lng=dropoff.lng,
        dropoff_address=dropoff.address,
        distance_km=distance,
        estimated_duration_min=estimate_eta(distance).eta_minutes,
        base_fare=fare.base,
        per_km_rate=fare.per_km,
        total_fare=fare.total,
        final_fare=fare.total,
        notes=notes,
        status=S.PENDING.value,
        payment_method=PaymentMethodEnum.CASH.value,
        payment_status=PaymentStatusEnum.PENDING.value,
    )
    db.add(ride)
    try:
        await db.commit()
    except IntegrityError:
        # partial unique index on (user_id) for active rides
        await db.rollback()
        raise ActiveRideExistsError("You already have an active ride")
    await db.refresh(ride)
    logger.info("Created ride=%s user=%s distance=%.2fkm fare=%s", ride.id, user_id, distance, fare.total)

    nearby = await find_candidates(db, pickup.lat, pickup.lng, vehicle_type, settings.dispatch_radius_km)
    return RideCreation(ride=ride, nearby_riders=nearby)


async def accept_ride(
    db: AsyncSession,
    ride_id: str,
    rider_id: str,
    notifier: Notifier | None = None,
) -> Ride:
    """
    PENDING → ACCEPTED and rider.is_available → False, in one transaction.

    Both writes are conditional: the ride must still be PENDING and the rider
    still available when the UPDATE runs. A rider who loses the race gets
    InvalidStateError (ride already taken).
    """
    ride = await get_ride(db, ride_id)
    if ride.status != S.PENDING.value:
        raise InvalidStateError("Ride is not available for acceptance")

    rider = await get_rider(db, rider_id)
    if rider.status != RiderStatusEnum.APPROVED.value:
        raise RiderUnavailableError("Rider is not approved")
    if not (rider.is_available and rider.is_online):
        raise RiderUnavailableError("Rider is not available")

    now = datetime.now(timezone.utc)
    try:
        taken = await update_if(
            db, Ride, ride_id, {"status": S.PENDING.value},
            status=S.ACCEPTED.value, rider_id=rider_id, accepted_at=now,
        )
        if not taken:
            await db.rollback()
            logger.info("Ride %s already taken; rider=%s lost the race", ride_id, rider_id)
            raise InvalidStateError("Ride is no longer available")

        reserved = await update_if(db, Rider, rider_id, {"is_available": True}, is_available=False)
        if not reserved:
            await db.rollback()
            raise RiderUnavailableError("Rider is not available")
        await db.commit()
    except IntegrityError:
        # partial unique index on (rider_id) for assigned rides
        await db.rollback()
        raise RiderUnavailableError("Rider is already serving a ride")

    await db.refresh(ride)
    await db.refresh(rider)
    logger.info("Ride %s accepted by rider=%s", ride_id, rider_id)

    if notifier:
        await notifier.publish(user_topic(ride.user_id), "ride:accepted", {
            "ride_id": ride.id,
            "rider": rider_brief(rider),
            "message": f"{rider.name} is on the way!",
        })
    return ride


async def mark_arrived(
    db: AsyncSession,
    ride_id: str,
    rider_id: str,
    notifier: Notifier | None = None,
) -> Ride:
    ride = await _rider_transition(db, ride_id, rider_id, S.ARRIVED, arrived_at=datetime.now(timezone.utc))
    if notifier:
        await notifier.publish(user_topic(ride.user_id), "ride:rider-arrived", {
            "ride_id": ride.id,
            "message": "Your rider has arrived at the pickup location",
        })
    return ride


async def start_ride(
    db: AsyncSession,
    ride_id: str,
    rider_id: str,
    notifier: Notifier | None = None,
) -> Ride:
    ride = await _rider_transition(db, ride_id, rider_id, S.IN_PROGRESS, started_at=datetime.now(timezone.utc))
    if notifier:
        await notifier.publish(user_topic(ride.user_id), "ride:started", {"ride_id": ride.id})
    return ride


async def complete_ride(
    db: AsyncSession,
    ride_id: str,
    rider_id: str,
    notifier: Notifier | None = None,
) -> Ride:
    """
    IN_PROGRESS → COMPLETED. Cash rides are settled on completion. The rider's
    counters and earnings grow and they become available again.
    """
    ride = await get_ride(db, ride_id)
    values = {"completed_at": datetime.now(timezone.utc)}
    if ride.payment_method == PaymentMethodEnum.CASH.value:
        values["payment_status"] = PaymentStatusEnum.COMPLETED.value

    ride = await _rider_transition(
        db, ride_id, rider_id, S.COMPLETED,
        rider_values={
            "total_rides": Rider.total_rides + 1,
            "completed_rides": Rider.completed_rides + 1,
            "total_earnings": Rider.total_earnings + ride.final_fare,
            "is_available": True,
        },
        **values,
    )
    if notifier:
        await notifier.publish(user_topic(ride.user_id), "ride:completed", {
            "ride_id": ride.id,
            "final_fare": float(ride.final_fare),
            "currency": settings.currency,
        })
    return ride


async def cancel_ride(
    db: AsyncSession,
    ride_id: str,
    actor_id: str,
    reason: str | None = None,
    notifier: Notifier | None = None,
) -> Ride:
    """
    Cancel from any non-terminal state. The actor must be the requester, the
    assigned rider, or SYSTEM_ACTOR. An assigned rider is released and their
    cancellation counters grow.
    """
    ride = await get_ride(db, ride_id)
    if ride.status in TERMINAL_STATUSES:
        raise InvalidStateError("Cannot cancel this ride")
    if actor_id not in (ride.user_id, SYSTEM_ACTOR) and (ride.rider_id is None or actor_id != ride.rider_id):
        raise UnauthorizedError("You are not a participant of this ride")

    ride = await _cas_transition(db, ride, S.CANCELLED, cancelled_at=datetime.now(timezone.utc),
                                 cancelled_by=actor_id, cancellation_reason=reason)
    logger.info("Ride %s cancelled by %s (%s)", ride.id, actor_id, reason)
    if notifier:
        await _publish_cancellation(notifier, ride)
    return ride


async def cancel_if_pending(
    db: AsyncSession,
    ride_id: str,
    reason: str,
    notifier: Notifier | None = None,
) -> Ride | None:
    """
    System cancellation of a ride nobody accepted. Re-checked against the
    stored status at write time; returns None when the ride left PENDING.
    """
    cancelled = await update_if(
        db, Ride, ride_id, {"status": S.PENDING.value},
        status=S.CANCELLED.value,
        cancelled_at=datetime.now(timezone.utc),
        cancelled_by=SYSTEM_ACTOR,
        cancellation_reason=reason,
    )
    if not cancelled:
        await db.rollback()
        return None
    await db.commit()

    ride = await get_ride(db, ride_id)
    await db.refresh(ride)
    logger.warning("Ride %s cancelled (%s)", ride_id, reason)
    if notifier:
        await _publish_cancellation(notifier, ride)
    return ride


# ---------------------------------------------------------------------------
# Internals
# ---------------------------------------------------------------------------

async def _rider_transition(
    db: AsyncSession,
    ride_id: str,
    rider_id: str,
    target: RideStatusEnum,
    rider_values: dict | None = None,
    **values,
) -> Ride:
    ride = await get_ride(db, ride_id)
    if not can_transition(ride.status, target.value):
        raise InvalidStateError(f"Cannot move ride from {ride.status} to {target.value}")
    if ride.rider_id != rider_id:
        raise UnauthorizedError("You are not assigned to this ride")
    return await _cas_transition(db, ride, target, rider_values=rider_values, **values)


async def _cas_transition(
    db: AsyncSession,
    ride: Ride,
    target: RideStatusEnum,
    rider_values: dict | None = None,
    **values,
) -> Ride:
    current = ride.status
    if not can_transition(current, target.value):
        raise InvalidStateError(f"Cannot move ride from {current} to {target.value}")

    swapped = await update_if(db, Ride, ride.id, {"status": current}, status=target.value, **values)
    if not swapped:
        await db.rollback()
        raise InvalidStateError("Ride status changed concurrently")

    if ride.rider_id:
        if rider_values is None and target is S.CANCELLED:
            rider_values = {
                "total_rides": Rider.total_rides + 1,
                "cancelled_rides": Rider.cancelled_rides + 1,
                "is_available": True,
            }
        if rider_values:
            await update_if(db, Rider, ride.rider_id, {}, **rider_values)

    await db.commit()
    await db.refresh(ride)
    if ride.rider_id:
        rider = await db.get(Rider, ride.rider_id)
        if rider is not None:
            await db.refresh(rider)
    logger.info("Ride %s %s → %s", ride.id, current, target.value)
    return ride


async def _publish_cancellation(notifier: Notifier, ride: Ride) -> None:
    payload = {
        "ride_id": ride.id,
        "cancelled_by": ride.cancelled_by,
        "reason": ride.cancellation_reason,
    }
    await notifier.publish(user_topic(ride.user_id), "ride:cancelled", payload)
    if ride.rider_id:
        await notifier.publish(rider_topic(ride.rider_id), "ride:cancelled", payload)
