"""
Riders router: POST /v1/riders (register), GET /v1/riders/me,
               PATCH /v1/riders/me/availability|online, GET /v1/riders/me/stats|history|active-ride,
               GET /v1/riders/pending|approved|search, GET /v1/riders/{id}[/stats],
               POST /v1/riders/{id}/approve|reject|suspend (admin)
"""
import logging

from fastapi import APIRouter, Depends
from fastapi import status as http_status
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.middleware.auth import get_current_rider, get_current_user_id, require_admin
from app.models.rider import Rider
from app.routers.rides import ride_to_response
from app.schemas.schemas import (
    RideResponse, RiderRegisterRequest, RiderResponse, RiderStatsResponse, RiderStatusEnum,
    ToggleRequest, VehicleTypeEnum,
)
from app.services import riders as directory
from app.services.rides import get_active_ride_for_rider, ride_history_for_rider

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/v1/riders", tags=["Riders"])


@router.post("", status_code=http_status.HTTP_201_CREATED, response_model=RiderResponse)
async def register_rider(
    payload: RiderRegisterRequest,
    db: AsyncSession = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    """Create a rider profile for the calling user. Starts PENDING approval."""
    rider = await directory.register_rider(
        db,
        user_id=user_id,
        name=payload.name,
        plate_number=payload.plate_number,
        vehicle_type=payload.vehicle_type.value,
        phone=payload.phone,
    )
    return RiderResponse.model_validate(rider)


@router.get("/me", response_model=RiderResponse)
async def get_me(rider: Rider = Depends(get_current_rider)):
    return RiderResponse.model_validate(rider)


@router.patch("/me/availability", response_model=RiderResponse)
async def toggle_availability(
    payload: ToggleRequest,
    db: AsyncSession = Depends(get_db),
    rider: Rider = Depends(get_current_rider),
):
    rider = await directory.set_availability(db, rider.id, payload.value)
    return RiderResponse.model_validate(rider)


@router.patch("/me/online", response_model=RiderResponse)
async def toggle_online(
    payload: ToggleRequest,
    db: AsyncSession = Depends(get_db),
    rider: Rider = Depends(get_current_rider),
):
    rider = await directory.set_online(db, rider.id, payload.value)
    return RiderResponse.model_validate(rider)


@router.get("/me/stats", response_model=RiderStatsResponse)
async def get_stats(
    db: AsyncSession = Depends(get_db),
    rider: Rider = Depends(get_current_rider),
):
    return RiderStatsResponse(**await directory.rider_statistics(db, rider.id))


@router.get("/me/active-ride", response_model=RideResponse | None)
async def get_active_ride(
    db: AsyncSession = Depends(get_db),
    rider: Rider = Depends(get_current_rider),
):
    ride = await get_active_ride_for_rider(db, rider.id)
    return ride_to_response(ride) if ride else None


@router.get("/me/history", response_model=list[RideResponse])
async def get_history(
    limit: int = 20,
    db: AsyncSession = Depends(get_db),
    rider: Rider = Depends(get_current_rider),
):
    rides = await ride_history_for_rider(db, rider.id, min(limit, 100))
    return [ride_to_response(r) for r in rides]


@router.get("/pending", response_model=list[RiderResponse])
async def list_pending(
    limit: int = 50,
    db: AsyncSession = Depends(get_db),
    admin_id: str = Depends(require_admin),
):
    """Riders awaiting approval, newest applications first."""
    riders = await directory.list_pending_riders(db, min(limit, 100))
    return [RiderResponse.model_validate(r) for r in riders]


@router.get("/approved", response_model=list[RiderResponse])
async def list_approved(
    limit: int = 50,
    db: AsyncSession = Depends(get_db),
    admin_id: str = Depends(require_admin),
):
    riders = await directory.list_approved_riders(db, min(limit, 100))
    return [RiderResponse.model_validate(r) for r in riders]


@router.get("/search", response_model=list[RiderResponse])
async def search(
    status: RiderStatusEnum | None = None,
    vehicle_type: VehicleTypeEnum | None = None,
    is_available: bool | None = None,
    is_online: bool | None = None,
    limit: int = 50,
    db: AsyncSession = Depends(get_db),
    admin_id: str = Depends(require_admin),
):
    riders = await directory.search_riders(
        db,
        status=status.value if status else None,
        vehicle_type=vehicle_type.value if vehicle_type else None,
        is_available=is_available,
        is_online=is_online,
        limit=min(limit, 100),
    )
    return [RiderResponse.model_validate(r) for r in riders]


@router.get("/{rider_id}", response_model=RiderResponse)
async def get_rider(
    rider_id: str,
    db: AsyncSession = Depends(get_db),
    admin_id: str = Depends(require_admin),
):
    return RiderResponse.model_validate(await directory.get_rider(db, rider_id))


@router.get("/{rider_id}/stats", response_model=RiderStatsResponse)
async def get_rider_stats(
    rider_id: str,
    db: AsyncSession = Depends(get_db),
    admin_id: str = Depends(require_admin),
):
    return RiderStatsResponse(**await directory.rider_statistics(db, rider_id))


@router.post("/{rider_id}/approve", response_model=RiderResponse)
async def approve_rider(
    rider_id: str,
    db: AsyncSession = Depends(get_db),
    admin_id: str = Depends(require_admin),
):
    rider = await directory.approve_rider(db, rider_id)
    logger.info("Rider %s approved by %s", rider_id, admin_id)
    return RiderResponse.model_validate(rider)


@router.post("/{rider_id}/reject", response_model=RiderResponse)
async def reject_rider(
    rider_id: str,
    db: AsyncSession = Depends(get_db),
    admin_id: str = Depends(require_admin),
):
    rider = await directory.reject_rider(db, rider_id)
    logger.info("Rider %s rejected by %s", rider_id, admin_id)
    return RiderResponse.model_validate(rider)


@router.post("/{rider_id}/suspend", response_model=RiderResponse)
async def suspend_rider(
    rider_id: str,
    db: AsyncSession = Depends(get_db),
    admin_id: str = Depends(require_admin),
):
    rider = await directory.suspend_rider(db, rider_id)
    logger.info("Rider %s suspended by %s", rider_id, admin_id)
    return RiderResponse.model_validate(rider)
