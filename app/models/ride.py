import uuid
from datetime import datetime
from decimal import Decimal
from sqlalchemy import String, Float, Integer, Numeric, Text, DateTime, ForeignKey, Index, func, text
from sqlalchemy.orm import Mapped, mapped_column
from app.database import Base


class Ride(Base):
    __tablename__ = "rides"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    # requester
    user_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    requester_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    requester_phone: Mapped[str | None] = mapped_column(String(20), nullable=True)
    rider_id: Mapped[str | None] = mapped_column(String, ForeignKey("riders.id"), nullable=True, index=True)
    vehicle_type: Mapped[str] = mapped_column(String(20), nullable=False)

    pickup_lat: Mapped[float] = mapped_column(Float, nullable=False)
    pickup_lng: Mapped[float] = mapped_column(Float, nullable=False)
    pickup_address: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    dropoff_lat: Mapped[float] = mapped_column(Float, nullable=False)
    dropoff_lng: Mapped[float] = mapped_column(Float, nullable=False)
    dropoff_address: Mapped[str] = mapped_column(String(500), nullable=False, default="")

    distance_km: Mapped[float] = mapped_column(Float, nullable=False)
    estimated_duration_min: Mapped[int] = mapped_column(Integer, nullable=False)

    base_fare: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    per_km_rate: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    total_fare: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    discount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=Decimal("0"))
    final_fare: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)

    # PENDING | ACCEPTED | ARRIVED | IN_PROGRESS | COMPLETED | CANCELLED
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="PENDING", index=True)
    # CASH | CARD | WALLET
    payment_method: Mapped[str] = mapped_column(String(20), nullable=False, default="CASH")
    # PENDING | COMPLETED | FAILED
    payment_status: Mapped[str] = mapped_column(String(20), nullable=False, default="PENDING")
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    accepted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    arrived_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_by: Mapped[str | None] = mapped_column(String, nullable=True)
    cancellation_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), index=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        # one live ride per requester, one assigned ride per rider
        Index(
            "uq_rides_user_active", "user_id", unique=True,
            postgresql_where=text("status IN ('PENDING', 'ACCEPTED', 'ARRIVED', 'IN_PROGRESS')"),
            sqlite_where=text("status IN ('PENDING', 'ACCEPTED', 'ARRIVED', 'IN_PROGRESS')"),
        ),
        Index(
            "uq_rides_rider_assigned", "rider_id", unique=True,
            postgresql_where=text("status IN ('ACCEPTED', 'ARRIVED', 'IN_PROGRESS')"),
            sqlite_where=text("status IN ('ACCEPTED', 'ARRIVED', 'IN_PROGRESS')"),
        ),
    )
