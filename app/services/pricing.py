"""
Fare calculation.
"""
from decimal import Decimal, ROUND_HALF_UP
from typing import NamedTuple

from app.config import get_settings

settings = get_settings()


class FareBreakdown(NamedTuple):
    base: Decimal
    per_km: Decimal
    total: Decimal


def _to_dec(value: float) -> Decimal:
    return Decimal(str(round(value, 2))).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def calculate_fare(
    distance_km: float,
    base_fare: float | None = None,
    per_km_rate: float | None = None,
) -> FareBreakdown:
    """
    total = base + distance_km * per_km, rounded to 2 decimals.
    Rates default to the configured values.
    """
    base = settings.base_fare if base_fare is None else base_fare
    per_km = settings.per_km_rate if per_km_rate is None else per_km_rate
    total = base + distance_km * per_km
    return FareBreakdown(_to_dec(base), _to_dec(per_km), _to_dec(total))
