"""
Location router: PATCH /v1/location/update, GET /v1/location/tracking/{ride_id},
                 POST /v1/location/tracking/{ride_id}/start|stop, GET /v1/location/route
"""
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.middleware.auth import get_current_rider, get_current_user_id
from app.models.rider import Rider
from app.schemas.schemas import LocationUpdateRequest, RoutePolyline, TrackingResult, TrackingSnapshot
from app.services.geo import route_polyline
from app.services.notifier import Notifier, get_notifier
from app.services.rides import get_ride, participant_actor
from app.services.tracking import get_tracking, ingest_location, start_tracking, stop_tracking

router = APIRouter(prefix="/v1/location", tags=["Location"])


@router.patch("/update", response_model=TrackingResult)
async def update_location(
    payload: LocationUpdateRequest,
    db: AsyncSession = Depends(get_db),
    rider: Rider = Depends(get_current_rider),
    notifier: Notifier = Depends(get_notifier),
):
    """High-frequency endpoint called by the rider app every few seconds."""
    return await ingest_location(
        db,
        rider.id,
        payload.lat,
        payload.lng,
        notifier,
        heading=payload.heading,
        speed_kmh=payload.speed,
        accuracy=payload.accuracy,
    )


@router.get("/tracking/{ride_id}", response_model=TrackingSnapshot)
async def get_ride_tracking(
    ride_id: str,
    db: AsyncSession = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    await participant_actor(db, await get_ride(db, ride_id), user_id)
    return await get_tracking(db, ride_id)


@router.post("/tracking/{ride_id}/start", status_code=status.HTTP_200_OK)
async def start_ride_tracking(
    ride_id: str,
    db: AsyncSession = Depends(get_db),
    rider: Rider = Depends(get_current_rider),
    notifier: Notifier = Depends(get_notifier),
):
    await start_tracking(db, ride_id, rider.id, notifier)
    return {"ride_id": ride_id, "message": "Location tracking started"}


@router.post("/tracking/{ride_id}/stop", status_code=status.HTTP_200_OK)
async def stop_ride_tracking(
    ride_id: str,
    db: AsyncSession = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
    notifier: Notifier = Depends(get_notifier),
):
    """Either participant may stop the live session."""
    await participant_actor(db, await get_ride(db, ride_id), user_id)
    await stop_tracking(db, ride_id, notifier)
    return {"ride_id": ride_id, "message": "Location tracking stopped"}


@router.get("/route", response_model=RoutePolyline)
async def get_route(
    start_lat: float = Query(..., ge=-90, le=90),
    start_lng: float = Query(..., ge=-180, le=180),
    end_lat: float = Query(..., ge=-90, le=90),
    end_lng: float = Query(..., ge=-180, le=180),
):
    return route_polyline(start_lat, start_lng, end_lat, end_lng)
