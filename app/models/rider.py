import uuid
from datetime import datetime
from decimal import Decimal
from sqlalchemy import String, Float, Integer, Boolean, Numeric, DateTime, func
from sqlalchemy.orm import Mapped, mapped_column
from app.database import Base


class Rider(Base):
    __tablename__ = "riders"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id: Mapped[str] = mapped_column(String, unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    phone: Mapped[str | None] = mapped_column(String(20), nullable=True)
    plate_number: Mapped[str] = mapped_column(String(20), unique=True, nullable=False)
    # BIKE | TRICYCLE | BUS | TRUCK
    vehicle_type: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    # PENDING | APPROVED | REJECTED | SUSPENDED
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="PENDING", index=True)
    is_available: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_online: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    lat: Mapped[float | None] = mapped_column(Float, nullable=True)
    lng: Mapped[float | None] = mapped_column(Float, nullable=True)
    location_updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    rating: Mapped[float] = mapped_column(Float, nullable=False, default=5.0)
    total_rides: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    completed_rides: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    cancelled_rides: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_earnings: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))

    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
