"""
Rides router: POST /v1/rides, GET /v1/rides/active|history|{id},
              POST /v1/rides/{id}/accept|decline|arrived|start|complete|cancel
"""
import logging

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.database import get_db
from app.middleware.auth import get_current_rider, get_current_user, get_current_user_id
from app.models.ride import Ride
from app.models.rider import Rider
from app.schemas.schemas import (
    CancelRideRequest, CandidateBrief, FareResponse, Place,
    RideCreateRequest, RideCreateResponse, RideResponse,
)
from app.services import rides as lifecycle
from app.services.dispatch import (
    DispatchPreferences, accept_offer, decline_offer, dispatch_ride, withdraw_offer,
)
from app.services.exceptions import NoCandidatesError
from app.services.notifier import Notifier, get_notifier

logger = logging.getLogger(__name__)
settings = get_settings()
router = APIRouter(prefix="/v1/rides", tags=["Rides"])


def ride_to_response(ride: Ride) -> RideResponse:
    return RideResponse(
        id=ride.id,
        user_id=ride.user_id,
        requester_name=ride.requester_name,
        requester_phone=ride.requester_phone,
        rider_id=ride.rider_id,
        vehicle_type=ride.vehicle_type,
        status=ride.status,
        pickup=Place(lat=ride.pickup_lat, lng=ride.pickup_lng, address=ride.pickup_address),
        dropoff=Place(lat=ride.dropoff_lat, lng=ride.dropoff_lng, address=ride.dropoff_address),
        distance_km=ride.distance_km,
        estimated_duration_min=ride.estimated_duration_min,
        fare=FareResponse(
            base_fare=float(ride.base_fare),
            per_km_rate=float(ride.per_km_rate),
            total_fare=float(ride.total_fare),
            discount=float(ride.discount),
            final_fare=float(ride.final_fare),
            currency=settings.currency,
        ),
        payment_method=ride.payment_method,
        payment_status=ride.payment_status,
        notes=ride.notes,
        accepted_at=ride.accepted_at,
        arrived_at=ride.arrived_at,
        started_at=ride.started_at,
        completed_at=ride.completed_at,
        cancelled_at=ride.cancelled_at,
        cancelled_by=ride.cancelled_by,
        cancellation_reason=ride.cancellation_reason,
        created_at=ride.created_at,
    )


@router.post("", status_code=status.HTTP_201_CREATED, response_model=RideCreateResponse)
async def create_ride(
    payload: RideCreateRequest,
    db: AsyncSession = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
    token_data: dict = Depends(get_current_user),
    notifier: Notifier = Depends(get_notifier),
):
    # 1. Create the PENDING ride (distance, fare, nearby snapshot)
    created = await lifecycle.create_ride(
        db, user_id, payload.vehicle_type.value, payload.pickup, payload.dropoff, payload.notes,
        requester_name=token_data.get("name"),
        requester_phone=token_data.get("phone"),
    )

    # 2. Offer it to nearby riders; acceptance arrives later via /accept
    prefs = DispatchPreferences(ranking=payload.ranking) if payload.ranking else None
    try:
        dispatch = await dispatch_ride(db, created.ride.id, notifier, prefs)
        message = f"Notified {dispatch.notified_count} rider(s)"
    except NoCandidatesError as exc:
        dispatch = None
        message = exc.message

    return RideCreateResponse(
        ride=ride_to_response(created.ride),
        nearby_riders=[
            CandidateBrief(rider_id=c.rider_id, name=c.name, rating=c.rating, distance_km=c.distance_km)
            for c in created.nearby_riders
        ],
        dispatch=dispatch,
        message=message,
    )


@router.get("/active", response_model=RideResponse | None)
async def get_active_ride(
    db: AsyncSession = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    ride = await lifecycle.get_active_ride_for_user(db, user_id)
    return ride_to_response(ride) if ride else None


@router.get("/history", response_model=list[RideResponse])
async def get_ride_history(
    limit: int = 20,
    db: AsyncSession = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    rides = await lifecycle.ride_history_for_user(db, user_id, min(limit, 100))
    return [ride_to_response(r) for r in rides]


@router.get("/{ride_id}", response_model=RideResponse)
async def get_ride(
    ride_id: str,
    db: AsyncSession = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    ride = await lifecycle.get_ride(db, ride_id)
    await lifecycle.participant_actor(db, ride, user_id)
    return ride_to_response(ride)


@router.post("/{ride_id}/accept", response_model=RideResponse)
async def accept_ride(
    ride_id: str,
    db: AsyncSession = Depends(get_db),
    rider: Rider = Depends(get_current_rider),
    notifier: Notifier = Depends(get_notifier),
):
    """First accept wins; a late rider gets 409 (ride already taken)."""
    ride = await accept_offer(db, ride_id, rider.id, notifier)
    return ride_to_response(ride)


@router.post("/{ride_id}/decline", status_code=status.HTTP_200_OK)
async def decline_ride(
    ride_id: str,
    db: AsyncSession = Depends(get_db),
    rider: Rider = Depends(get_current_rider),
):
    await decline_offer(db, ride_id, rider.id)
    return {"ride_id": ride_id, "message": "Ride declined"}


@router.post("/{ride_id}/arrived", response_model=RideResponse)
async def mark_arrived(
    ride_id: str,
    db: AsyncSession = Depends(get_db),
    rider: Rider = Depends(get_current_rider),
    notifier: Notifier = Depends(get_notifier),
):
    ride = await lifecycle.mark_arrived(db, ride_id, rider.id, notifier)
    return ride_to_response(ride)


@router.post("/{ride_id}/start", response_model=RideResponse)
async def start_ride(
    ride_id: str,
    db: AsyncSession = Depends(get_db),
    rider: Rider = Depends(get_current_rider),
    notifier: Notifier = Depends(get_notifier),
):
    ride = await lifecycle.start_ride(db, ride_id, rider.id, notifier)
    return ride_to_response(ride)


@router.post("/{ride_id}/complete", response_model=RideResponse)
async def complete_ride(
    ride_id: str,
    db: AsyncSession = Depends(get_db),
    rider: Rider = Depends(get_current_rider),
    notifier: Notifier = Depends(get_notifier),
):
    ride = await lifecycle.complete_ride(db, ride_id, rider.id, notifier)
    return ride_to_response(ride)


@router.post("/{ride_id}/cancel", response_model=RideResponse)
async def cancel_ride(
    ride_id: str,
    payload: CancelRideRequest,
    db: AsyncSession = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
    notifier: Notifier = Depends(get_notifier),
):
    """Requester or assigned rider may cancel."""
    ride = await lifecycle.get_ride(db, ride_id)
    actor_id = await lifecycle.participant_actor(db, ride, user_id)

    ride = await lifecycle.cancel_ride(db, ride_id, actor_id, payload.reason, notifier)
    await withdraw_offer(ride_id, notifier)
    return ride_to_response(ride)
