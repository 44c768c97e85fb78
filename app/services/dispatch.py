"""
Ride dispatch engine.

Flow:
  1. Search eligible riders of the ride's vehicle type around the pickup
  2. Nothing within the radius → search once more with the radius doubled
  3. Rank candidates (distance | rating | balanced)
  4. Fan the offer out to every candidate's channel concurrently
  5. Arm the expiry timer; a ride still PENDING when it fires is cancelled
  6. Whoever calls accept first wins the conditional update; every other
     notified candidate gets a "no longer available" retraction
"""
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config import get_settings
from app.database import AsyncSessionLocal
from app.models.ride import Ride
from app.schemas.schemas import CandidateBrief, DispatchResult, RankingModeEnum, RideStatusEnum
from app.services.exceptions import InvalidStateError, NoCandidatesError
from app.services.notifier import Notifier, rider_topic, user_topic
from app.services.riders import RiderCandidate, find_candidates
from app.services.rides import accept_ride, cancel_if_pending, get_ride, ride_summary
from app.services.timers import DelayedTasks, offer_timers

logger = logging.getLogger(__name__)
settings = get_settings()

NO_RIDERS_REASON = "No riders available"
RADIUS_EXPANSION_FACTOR = 2
RATING_WEIGHT = 0.4
DISTANCE_WEIGHT = 0.6


@dataclass
class DispatchPreferences:
    radius_km: float = field(default_factory=lambda: settings.dispatch_radius_km)
    offer_timeout_seconds: float = field(default_factory=lambda: settings.offer_timeout_seconds)
    ranking: RankingModeEnum = field(default_factory=lambda: RankingModeEnum(settings.default_ranking))


@dataclass
class DispatchOffer:
    """One matching attempt. Replaced on re-dispatch, dropped on accept or expiry."""
    ride_id: str
    candidate_ids: list[str]
    radius_km: float
    expires_at: datetime
    declined: set[str] = field(default_factory=set)


class OfferRegistry:
    def __init__(self) -> None:
        self._offers: dict[str, DispatchOffer] = {}

    def put(self, offer: DispatchOffer) -> None:
        self._offers[offer.ride_id] = offer

    def get(self, ride_id: str) -> DispatchOffer | None:
        return self._offers.get(ride_id)

    def pop(self, ride_id: str) -> DispatchOffer | None:
        return self._offers.pop(ride_id, None)

    def clear(self) -> None:
        self._offers.clear()


offer_registry = OfferRegistry()


def rank_candidates(candidates: list[RiderCandidate], mode: RankingModeEnum) -> list[RiderCandidate]:
    """Stable sort, so ties keep discovery order."""
    if mode == RankingModeEnum.rating:
        return sorted(candidates, key=lambda c: -c.rating)
    if mode == RankingModeEnum.balanced:
        return sorted(candidates, key=lambda c: -(c.rating * RATING_WEIGHT - c.distance_km * DISTANCE_WEIGHT))
    return sorted(candidates, key=lambda c: c.distance_km)


async def dispatch_ride(
    db: AsyncSession,
    ride_id: str,
    notifier: Notifier,
    prefs: DispatchPreferences | None = None,
    *,
    timers: DelayedTasks = offer_timers,
    registry: OfferRegistry = offer_registry,
    session_factory: async_sessionmaker = AsyncSessionLocal,
) -> DispatchResult:
    """
    Offer a PENDING ride to nearby riders and return without waiting for
    answers. Raises NoCandidatesError when even the doubled radius is empty;
    the expiry timer is armed either way so the ride does not stay PENDING
    forever.
    """
    prefs = prefs or DispatchPreferences()
    ride = await get_ride(db, ride_id)
    if ride.status != RideStatusEnum.PENDING.value:
        raise InvalidStateError("Only pending rides can be dispatched")

    radius = prefs.radius_km
    candidates = await find_candidates(db, ride.pickup_lat, ride.pickup_lng, ride.vehicle_type, radius)
    if not candidates:
        radius = prefs.radius_km * RADIUS_EXPANSION_FACTOR
        logger.info("No riders within %.1fkm for ride=%s, expanding to %.1fkm", prefs.radius_km, ride_id, radius)
        candidates = await find_candidates(db, ride.pickup_lat, ride.pickup_lng, ride.vehicle_type, radius)

    timeout = prefs.offer_timeout_seconds
    _arm_expiry(ride_id, timeout, notifier, timers, registry, session_factory)

    if not candidates:
        registry.pop(ride_id)
        raise NoCandidatesError("No available riders found in your area", radius_km=radius)

    ranked = rank_candidates(candidates, RankingModeEnum(prefs.ranking))
    registry.put(
        DispatchOffer(
            ride_id=ride_id,
            candidate_ids=[c.rider_id for c in ranked],
            radius_km=radius,
            expires_at=datetime.now(timezone.utc) + timedelta(seconds=timeout),
        )
    )

    summary = ride_summary(ride)
    summary["requester"] = {"id": ride.user_id, "name": ride.requester_name, "phone": ride.requester_phone}
    await _fan_out(
        notifier,
        [
            (c.rider_id, {**summary, "distance_from_you": c.distance_km, "expires_in": timeout})
            for c in ranked
        ],
        "ride:new-request",
    )
    logger.info("Offered ride=%s to %d rider(s) within %.1fkm", ride_id, len(ranked), radius)

    nearest = min(ranked, key=lambda c: c.distance_km)
    return DispatchResult(
        notified_count=len(ranked),
        radius_km=radius,
        nearest_candidate=CandidateBrief(
            rider_id=nearest.rider_id,
            name=nearest.name,
            rating=nearest.rating,
            distance_km=nearest.distance_km,
        ),
        expires_in=timeout,
    )


async def accept_offer(
    db: AsyncSession,
    ride_id: str,
    rider_id: str,
    notifier: Notifier,
    *,
    timers: DelayedTasks = offer_timers,
    registry: OfferRegistry = offer_registry,
) -> Ride:
    """Accept on behalf of a rider, then retract the offer from everyone else."""
    ride = await accept_ride(db, ride_id, rider_id, notifier)
    timers.cancel(ride_id)
    offer = registry.pop(ride_id)
    if offer:
        others = [rid for rid in offer.candidate_ids if rid != rider_id]
        await _fan_out(notifier, [(rid, {"ride_id": ride_id}) for rid in others], "ride:no-longer-available")
    return ride


async def decline_offer(
    db: AsyncSession,
    ride_id: str,
    rider_id: str,
    *,
    registry: OfferRegistry = offer_registry,
) -> None:
    """Advisory: the ride stays open to the other candidates."""
    await get_ride(db, ride_id)
    offer = registry.get(ride_id)
    if offer:
        offer.declined.add(rider_id)
    logger.info("Rider %s declined ride %s", rider_id, ride_id)


async def withdraw_offer(
    ride_id: str,
    notifier: Notifier,
    *,
    timers: DelayedTasks = offer_timers,
    registry: OfferRegistry = offer_registry,
) -> None:
    """Stop the expiry timer and retract outstanding offers (e.g. requester cancelled)."""
    timers.cancel(ride_id)
    offer = registry.pop(ride_id)
    if offer:
        await _fan_out(notifier, [(rid, {"ride_id": ride_id}) for rid in offer.candidate_ids], "ride:no-longer-available")


async def expire_offer(
    ride_id: str,
    notifier: Notifier,
    *,
    registry: OfferRegistry = offer_registry,
    session_factory: async_sessionmaker = AsyncSessionLocal,
) -> bool:
    """
    Offer deadline reached. Cancels the ride only if it is still PENDING at
    write time; returns True when it did.
    """
    offer = registry.pop(ride_id)
    async with session_factory() as db:
        ride = await cancel_if_pending(db, ride_id, NO_RIDERS_REASON)
    if ride is None:
        logger.debug("Offer for ride=%s expired after the ride moved on", ride_id)
        return False

    logger.info("Ride %s expired - no rider accepted", ride_id)
    await notifier.publish(user_topic(ride.user_id), "ride:no-riders-available", {
        "ride_id": ride.id,
        "message": "No riders available at the moment. Please try again.",
    })
    if offer:
        await _fan_out(notifier, [(rid, {"ride_id": ride_id}) for rid in offer.candidate_ids], "ride:no-longer-available")
    return True


def _arm_expiry(
    ride_id: str,
    timeout: float,
    notifier: Notifier,
    timers: DelayedTasks,
    registry: OfferRegistry,
    session_factory: async_sessionmaker,
) -> None:
    async def _expire() -> None:
        await expire_offer(ride_id, notifier, registry=registry, session_factory=session_factory)

    timers.schedule(ride_id, timeout, _expire)


async def _fan_out(notifier: Notifier, messages: list[tuple[str, dict[str, Any]]], event: str) -> None:
    """Publish to each rider concurrently; one failed publish does not stop the rest."""
    results = await asyncio.gather(
        *(notifier.publish(rider_topic(rider_id), event, payload) for rider_id, payload in messages),
        return_exceptions=True,
    )
    for (rider_id, _), result in zip(messages, results):
        if isinstance(result, Exception):
            logger.error("Failed to send %s to rider=%s: %s", event, rider_id, result)
