"""
Live tracking: position ingest, distance/ETA to the current target,
milestone notifications and geofence (arrival) detection.

Tracking never changes ride state. Geofence events tell a consumer that
`mark_arrived` / `complete_ride` can be called.
"""
import logging
from collections import OrderedDict
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.models.ride import Ride
from app.schemas.schemas import (
    RideStatusEnum, RiderLocation, TargetLocation, TrackingResult, TrackingSnapshot,
)
from app.services.exceptions import InvalidStateError, UnauthorizedError
from app.services.geo import distance_km, estimate_eta
from app.services.notifier import Notifier, rider_topic, user_topic
from app.services.riders import get_rider, update_position
from app.services.rides import ASSIGNED_STATUSES, get_active_ride_for_rider, get_ride

logger = logging.getLogger(__name__)
settings = get_settings()

PICKUP = "pickup"
DROPOFF = "dropoff"


@dataclass(frozen=True)
class Milestone:
    kind: str         # "distance" (km) or "time" (minutes)
    threshold: float
    epsilon: float
    label: str

    def contains(self, value: float) -> bool:
        return self.threshold - self.epsilon < value <= self.threshold

    def key(self, target: str) -> str:
        return f"{target}:{self.kind}:{self.threshold}"


MILESTONES = (
    Milestone("distance", 5, 0.1, "5 km"),
    Milestone("distance", 2, 0.1, "2 km"),
    Milestone("distance", 1, 0.1, "1 km"),
    Milestone("distance", 0.5, 0.1, "500 meters"),
    Milestone("time", 5, 0.5, "5 minutes"),
    Milestone("time", 2, 0.5, "2 minutes"),
    Milestone("time", 1, 0.5, "1 minute"),
)


class MilestoneLog:
    """
    Remembers which one-shot notifications fired for each ride. A key is
    re-armed once the live value moves back outside its window, so each
    threshold fires at most once per crossing.
    """

    def __init__(self, max_rides: int = 10_000) -> None:
        self._fired: OrderedDict[str, set[str]] = OrderedDict()
        self._max_rides = max_rides

    def first_time(self, ride_id: str, key: str) -> bool:
        fired = self._fired.setdefault(ride_id, set())
        self._fired.move_to_end(ride_id)
        while len(self._fired) > self._max_rides:
            self._fired.popitem(last=False)
        if key in fired:
            return False
        fired.add(key)
        return True

    def rearm(self, ride_id: str, key: str) -> None:
        fired = self._fired.get(ride_id)
        if fired:
            fired.discard(key)

    def forget(self, ride_id: str) -> None:
        self._fired.pop(ride_id, None)


milestone_log = MilestoneLog()


def resolve_target(ride: Ride) -> tuple[str, float, float] | None:
    """Pickup while the rider is on the way or waiting, dropoff during the trip."""
    if ride.status in (RideStatusEnum.ACCEPTED.value, RideStatusEnum.ARRIVED.value):
        return PICKUP, ride.pickup_lat, ride.pickup_lng
    if ride.status == RideStatusEnum.IN_PROGRESS.value:
        return DROPOFF, ride.dropoff_lat, ride.dropoff_lng
    return None


def milestone_message(milestone: Milestone, target: str) -> str:
    if target == PICKUP:
        if milestone.kind == "distance":
            return f"Rider is {milestone.label} away"
        return f"Rider will arrive in {milestone.label}"
    if milestone.kind == "distance":
        return f"{milestone.label} to your destination"
    return f"Arriving at your destination in {milestone.label}"


async def ingest_location(
    db: AsyncSession,
    rider_id: str,
    lat: float,
    lng: float,
    notifier: Notifier,
    heading: float | None = None,
    speed_kmh: float | None = None,
    accuracy: float | None = None,
    *,
    log: MilestoneLog = milestone_log,
) -> TrackingResult:
    """
    Store the rider's position and, when they are serving a ride, push the
    live distance/ETA to the requester and evaluate milestones and geofence.
    """
    await update_position(db, rider_id, lat, lng)

    ride = await get_active_ride_for_rider(db, rider_id)
    if ride is None:
        return TrackingResult(rider_id=rider_id)

    target, target_lat, target_lng = resolve_target(ride)
    remaining = distance_km(lat, lng, target_lat, target_lng)
    eta = estimate_eta(remaining, speed_kmh)

    await notifier.publish(user_topic(ride.user_id), "rider:location-update", {
        "ride_id": ride.id,
        "location": {"lat": lat, "lng": lng, "heading": heading, "speed": speed_kmh, "accuracy": accuracy},
        "distance_remaining": remaining,
        "eta": eta.model_dump(mode="json"),
        "target": target,
    })

    fired = await _check_milestones(ride, target, remaining, eta.eta_minutes, notifier, log)
    geofence = await _check_geofence(ride, target, remaining, notifier, log)

    return TrackingResult(
        rider_id=rider_id,
        ride_id=ride.id,
        target=target,
        distance_remaining=remaining,
        eta=eta,
        milestones=fired,
        geofence=geofence,
    )


async def get_tracking(db: AsyncSession, ride_id: str) -> TrackingSnapshot:
    """On-demand distance/ETA for polling clients."""
    ride = await get_ride(db, ride_id)
    if ride.rider_id is None:
        return TrackingSnapshot(
            ride_id=ride.id, status=ride.status, has_rider=False, trackable=False,
            message="No rider assigned yet",
        )

    resolved = resolve_target(ride)
    if resolved is None:
        return TrackingSnapshot(
            ride_id=ride.id, status=ride.status, has_rider=True, trackable=False,
            message="Ride is not in active tracking state",
        )

    target, target_lat, target_lng = resolved
    target_location = TargetLocation(lat=target_lat, lng=target_lng, label=target)
    rider = await get_rider(db, ride.rider_id)
    if rider.lat is None or rider.lng is None:
        return TrackingSnapshot(
            ride_id=ride.id, status=ride.status, has_rider=True, trackable=True,
            message="Rider location unavailable", target=target_location,
        )

    remaining = distance_km(rider.lat, rider.lng, target_lat, target_lng)
    return TrackingSnapshot(
        ride_id=ride.id,
        status=ride.status,
        has_rider=True,
        trackable=True,
        rider_location=RiderLocation(lat=rider.lat, lng=rider.lng, updated_at=rider.location_updated_at),
        target=target_location,
        distance_remaining=remaining,
        eta=estimate_eta(remaining),
    )


async def start_tracking(db: AsyncSession, ride_id: str, rider_id: str, notifier: Notifier) -> None:
    ride = await get_ride(db, ride_id)
    if ride.rider_id != rider_id:
        raise UnauthorizedError("You are not assigned to this ride")
    if ride.status not in ASSIGNED_STATUSES:
        raise InvalidStateError("Ride is not in a trackable state")
    await notifier.publish(user_topic(ride.user_id), "ride:tracking-started", {
        "ride_id": ride.id,
        "message": "Real-time tracking activated",
    })


async def stop_tracking(
    db: AsyncSession,
    ride_id: str,
    notifier: Notifier,
    *,
    log: MilestoneLog = milestone_log,
) -> None:
    ride = await get_ride(db, ride_id)
    log.forget(ride.id)
    await notifier.publish(user_topic(ride.user_id), "ride:tracking-stopped", {
        "ride_id": ride.id,
        "message": "Real-time tracking ended",
    })


async def _check_milestones(
    ride: Ride,
    target: str,
    remaining_km: float,
    eta_minutes: int,
    notifier: Notifier,
    log: MilestoneLog,
) -> list[str]:
    fired = []
    for milestone in MILESTONES:
        value = remaining_km if milestone.kind == "distance" else eta_minutes
        key = milestone.key(target)
        if milestone.contains(value):
            if log.first_time(ride.id, key):
                fired.append(key)
                await notifier.publish(user_topic(ride.user_id), "ride:milestone", {
                    "ride_id": ride.id,
                    "type": milestone.kind,
                    "value": milestone.threshold,
                    "target": target,
                    "message": milestone_message(milestone, target),
                })
        elif value > milestone.threshold:
            log.rearm(ride.id, key)
    return fired


async def _check_geofence(
    ride: Ride,
    target: str,
    remaining_km: float,
    notifier: Notifier,
    log: MilestoneLog,
) -> str | None:
    key = f"geofence:{target}"
    if remaining_km > settings.geofence_radius_km:
        log.rearm(ride.id, key)
        return None

    if ride.status == RideStatusEnum.ACCEPTED.value and target == PICKUP:
        user_message = "Your rider has arrived at the pickup location!"
        rider_message = "You have arrived at the pickup location"
    elif ride.status == RideStatusEnum.IN_PROGRESS.value and target == DROPOFF:
        user_message = "You have arrived at your destination!"
        rider_message = "You have arrived at the dropoff location"
    else:
        return None

    if not log.first_time(ride.id, key):
        return None

    logger.info("Ride %s geofence entered at %s (%.2fkm)", ride.id, target, remaining_km)
    await notifier.publish(user_topic(ride.user_id), "ride:geofence-entered", {
        "ride_id": ride.id, "location": target, "message": user_message,
    })
    await notifier.publish(rider_topic(ride.rider_id), "ride:geofence-entered", {
        "ride_id": ride.id, "location": target, "message": rider_message,
    })
    return target
