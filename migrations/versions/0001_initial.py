"""Initial schema: riders, rides"""
from alembic import op
import sqlalchemy as sa

revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None

ACTIVE = "status IN ('PENDING', 'ACCEPTED', 'ARRIVED', 'IN_PROGRESS')"
ASSIGNED = "status IN ('ACCEPTED', 'ARRIVED', 'IN_PROGRESS')"


def upgrade() -> None:
    op.create_table(
        "riders",
        sa.Column("id", sa.String, primary_key=True),
        sa.Column("user_id", sa.String, unique=True, nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("phone", sa.String(20), nullable=True),
        sa.Column("plate_number", sa.String(20), unique=True, nullable=False),
        sa.Column("vehicle_type", sa.String(20), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="PENDING"),
        sa.Column("is_available", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("is_online", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("lat", sa.Float, nullable=True),
        sa.Column("lng", sa.Float, nullable=True),
        sa.Column("location_updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rating", sa.Float, nullable=False, server_default="5.0"),
        sa.Column("total_rides", sa.Integer, nullable=False, server_default="0"),
        sa.Column("completed_rides", sa.Integer, nullable=False, server_default="0"),
        sa.Column("cancelled_rides", sa.Integer, nullable=False, server_default="0"),
        sa.Column("total_earnings", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("idx_riders_user", "riders", ["user_id"])
    op.create_index("idx_riders_status", "riders", ["status"])
    op.create_index(
        "idx_riders_dispatch", "riders", ["vehicle_type", "status", "is_available", "is_online"]
    )

    op.create_table(
        "rides",
        sa.Column("id", sa.String, primary_key=True),
        sa.Column("user_id", sa.String, nullable=False),
        sa.Column("requester_name", sa.String(255), nullable=True),
        sa.Column("requester_phone", sa.String(20), nullable=True),
        sa.Column("rider_id", sa.String, sa.ForeignKey("riders.id"), nullable=True),
        sa.Column("vehicle_type", sa.String(20), nullable=False),
        sa.Column("pickup_lat", sa.Float, nullable=False),
        sa.Column("pickup_lng", sa.Float, nullable=False),
        sa.Column("pickup_address", sa.String(500), nullable=False, server_default=""),
        sa.Column("dropoff_lat", sa.Float, nullable=False),
        sa.Column("dropoff_lng", sa.Float, nullable=False),
        sa.Column("dropoff_address", sa.String(500), nullable=False, server_default=""),
        sa.Column("distance_km", sa.Float, nullable=False),
        sa.Column("estimated_duration_min", sa.Integer, nullable=False),
        sa.Column("base_fare", sa.Numeric(10, 2), nullable=False),
        sa.Column("per_km_rate", sa.Numeric(10, 2), nullable=False),
        sa.Column("total_fare", sa.Numeric(10, 2), nullable=False),
        sa.Column("discount", sa.Numeric(10, 2), nullable=False, server_default="0"),
        sa.Column("final_fare", sa.Numeric(10, 2), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="PENDING"),
        sa.Column("payment_method", sa.String(20), nullable=False, server_default="CASH"),
        sa.Column("payment_status", sa.String(20), nullable=False, server_default="PENDING"),
        sa.Column("notes", sa.Text, nullable=True),
        sa.Column("accepted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("arrived_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_by", sa.String, nullable=True),
        sa.Column("cancellation_reason", sa.String(500), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("idx_rides_status", "rides", ["status"])
    op.create_index("idx_rides_user", "rides", ["user_id"])
    op.create_index("idx_rides_rider", "rides", ["rider_id"])
    op.create_index("idx_rides_created", "rides", ["created_at"])
    op.create_index(
        "uq_rides_user_active", "rides", ["user_id"], unique=True,
        postgresql_where=sa.text(ACTIVE),
    )
    op.create_index(
        "uq_rides_rider_assigned", "rides", ["rider_id"], unique=True,
        postgresql_where=sa.text(ASSIGNED),
    )


def downgrade() -> None:
    op.drop_table("rides")
    op.drop_table("riders")
