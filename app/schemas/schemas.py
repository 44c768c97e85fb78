from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class VehicleTypeEnum(str, Enum):
    BIKE = "BIKE"
    TRICYCLE = "TRICYCLE"
    BUS = "BUS"
    TRUCK = "TRUCK"


class RiderStatusEnum(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    SUSPENDED = "SUSPENDED"


class RideStatusEnum(str, Enum):
    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    ARRIVED = "ARRIVED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class PaymentMethodEnum(str, Enum):
    CASH = "CASH"
    CARD = "CARD"
    WALLET = "WALLET"


class PaymentStatusEnum(str, Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class RankingModeEnum(str, Enum):
    distance = "distance"
    rating = "rating"
    balanced = "balanced"


# ---------------------------------------------------------------------------
# Shared
# ---------------------------------------------------------------------------

class GeoPoint(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)


class Place(GeoPoint):
    address: str = ""


class EtaEstimate(BaseModel):
    distance_remaining: float
    eta_minutes: int
    arrival_at: datetime


# ---------------------------------------------------------------------------
# Ride schemas
# ---------------------------------------------------------------------------

class RideCreateRequest(BaseModel):
    vehicle_type: VehicleTypeEnum
    pickup: Place
    dropoff: Place
    notes: Optional[str] = Field(default=None, max_length=1000)
    ranking: Optional[RankingModeEnum] = None


class FareResponse(BaseModel):
    base_fare: float
    per_km_rate: float
    total_fare: float
    discount: float
    final_fare: float
    currency: str


class RideResponse(BaseModel):
    id: str
    user_id: str
    requester_name: Optional[str] = None
    requester_phone: Optional[str] = None
    rider_id: Optional[str] = None
    vehicle_type: VehicleTypeEnum
    status: RideStatusEnum
    pickup: Place
    dropoff: Place
    distance_km: float
    estimated_duration_min: int
    fare: FareResponse
    payment_method: PaymentMethodEnum
    payment_status: PaymentStatusEnum
    notes: Optional[str] = None
    accepted_at: Optional[datetime] = None
    arrived_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancelled_by: Optional[str] = None
    cancellation_reason: Optional[str] = None
    created_at: datetime


class CandidateBrief(BaseModel):
    rider_id: str
    name: str
    rating: float
    distance_km: float


class DispatchResult(BaseModel):
    notified_count: int
    radius_km: float
    nearest_candidate: Optional[CandidateBrief] = None
    expires_in: float


class RideCreateResponse(BaseModel):
    ride: RideResponse
    nearby_riders: list[CandidateBrief]
    dispatch: Optional[DispatchResult] = None
    message: str


class CancelRideRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=500)


# ---------------------------------------------------------------------------
# Rider schemas
# ---------------------------------------------------------------------------

class RiderRegisterRequest(BaseModel):
    name: str = Field(..., min_length=2, max_length=255)
    phone: Optional[str] = Field(default=None, min_length=10, max_length=20)
    plate_number: str = Field(..., min_length=3, max_length=20)
    vehicle_type: VehicleTypeEnum


class RiderResponse(BaseModel):
    id: str
    user_id: str
    name: str
    plate_number: str
    vehicle_type: VehicleTypeEnum
    status: RiderStatusEnum
    is_available: bool
    is_online: bool
    lat: Optional[float] = None
    lng: Optional[float] = None
    rating: float
    created_at: datetime

    model_config = {"from_attributes": True}


class ToggleRequest(BaseModel):
    value: bool


class RiderStatsResponse(BaseModel):
    rider_id: str
    total_rides: int
    completed_rides: int
    cancelled_rides: int
    completion_rate: float
    cancellation_rate: float
    total_earnings: Decimal
    average_earnings_per_ride: Decimal
    rating: float


# ---------------------------------------------------------------------------
# Tracking schemas
# ---------------------------------------------------------------------------

class LocationUpdateRequest(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)
    heading: Optional[float] = Field(default=None, ge=0, le=360)
    speed: Optional[float] = Field(default=None, ge=0)
    accuracy: Optional[float] = Field(default=None, ge=0)


class TrackingResult(BaseModel):
    rider_id: str
    ride_id: Optional[str] = None
    target: Optional[str] = None
    distance_remaining: Optional[float] = None
    eta: Optional[EtaEstimate] = None
    milestones: list[str] = []
    geofence: Optional[str] = None


class RiderLocation(BaseModel):
    lat: float
    lng: float
    updated_at: Optional[datetime] = None


class TargetLocation(GeoPoint):
    label: str


class TrackingSnapshot(BaseModel):
    ride_id: str
    status: RideStatusEnum
    has_rider: bool
    trackable: bool
    message: Optional[str] = None
    rider_location: Optional[RiderLocation] = None
    target: Optional[TargetLocation] = None
    distance_remaining: Optional[float] = None
    eta: Optional[EtaEstimate] = None


class RoutePolyline(BaseModel):
    points: list[GeoPoint]
    distance_km: float
