"""
Distance and ETA arithmetic. Pure functions, no I/O.
"""
import math
from datetime import datetime, timedelta, timezone
from math import radians, sin, cos, sqrt, atan2

from app.config import get_settings
from app.schemas.schemas import EtaEstimate, GeoPoint, RoutePolyline

settings = get_settings()

EARTH_RADIUS_KM = 6371

# ETA buffer: 20% of travel time, never less than 2 nor more than 5 minutes
BUFFER_RATIO = 0.2
MIN_BUFFER_MIN = 2
MAX_BUFFER_MIN = 5


def distance_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle (Haversine) distance in km, rounded to 2 decimals."""
    phi1, phi2 = radians(lat1), radians(lat2)
    dphi = radians(lat2 - lat1)
    dlambda = radians(lng2 - lng1)
    a = sin(dphi / 2) ** 2 + cos(phi1) * cos(phi2) * sin(dlambda / 2) ** 2
    return round(2 * EARTH_RADIUS_KM * atan2(sqrt(a), sqrt(1 - a)), 2)


def estimate_eta(
    distance: float,
    speed_kmh: float | None = None,
    now: datetime | None = None,
) -> EtaEstimate:
    """
    Minutes to cover `distance` km at `speed_kmh` (falls back to the urban
    default when missing or not positive), plus a clamped safety buffer,
    rounded up to a whole minute.
    """
    speed = speed_kmh if speed_kmh and speed_kmh > 0 else settings.default_speed_kmh
    travel_min = distance * 60 / speed
    buffer_min = min(MAX_BUFFER_MIN, max(MIN_BUFFER_MIN, travel_min * BUFFER_RATIO))
    total_min = math.ceil(round(travel_min + buffer_min, 6))

    now = now or datetime.now(timezone.utc)
    return EtaEstimate(
        distance_remaining=round(distance, 2),
        eta_minutes=total_min,
        arrival_at=now + timedelta(minutes=total_min),
    )


def route_polyline(start_lat: float, start_lng: float, end_lat: float, end_lng: float) -> RoutePolyline:
    """Straight line between the two points; no routing provider is wired in."""
    return RoutePolyline(
        points=[GeoPoint(lat=start_lat, lng=start_lng), GeoPoint(lat=end_lat, lng=end_lng)],
        distance_km=distance_km(start_lat, start_lng, end_lat, end_lng),
    )
