from alembic import op
import sqlalchemy as sa

revision = "0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "vehicles",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("capacity_kg", sa.Integer(), nullable=False),
        sa.Column("tyres", sa.Integer(), nullable=False),
        sa.Column("vehicle_type", sa.String(length=20), nullable=False, server_default="truck"),
        sa.Column("registration_number", sa.String(length=32), nullable=True, unique=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("capacity_kg > 0", name="ck_vehicles_capacity_positive"),
        sa.CheckConstraint("tyres >= 2", name="ck_vehicles_tyres_min"),
    )
    op.create_index("ix_vehicles_is_active", "vehicles", ["is_active"])
    op.create_index("ix_vehicles_capacity_active", "vehicles", ["capacity_kg", "is_active"])
    op.create_index("ix_vehicles_type_active", "vehicles", ["vehicle_type", "is_active"])

    op.create_table(
        "bookings",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("vehicle_id", sa.Integer(), sa.ForeignKey("vehicles.id"), nullable=False),
        sa.Column("customer_id", sa.String(length=100), nullable=False),
        sa.Column("origin_code", sa.String(length=6), nullable=False),
        sa.Column("destination_code", sa.String(length=6), nullable=False),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("estimated_ride_duration_hours", sa.Float(), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("actual_start_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("actual_end_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("estimated_cost", sa.Float(), nullable=True),
        sa.Column("total_distance", sa.Float(), nullable=True),
        sa.Column("idempotency_key", sa.String(length=128), nullable=True, unique=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("end_time > start_time", name="ck_bookings_end_after_start"),
    )
    op.create_index("ix_bookings_vehicle_id", "bookings", ["vehicle_id"])
    op.create_index("ix_bookings_customer_id", "bookings", ["customer_id"])
    op.create_index("ix_bookings_status", "bookings", ["status"])
    op.create_index("ix_bookings_vehicle_window", "bookings", ["vehicle_id", "start_time", "end_time"])
    op.create_index("ix_bookings_customer_status", "bookings", ["customer_id", "status"])
    op.create_index("ix_bookings_status_start", "bookings", ["status", "start_time"])


def downgrade():
    op.drop_table("bookings")
    op.drop_table("vehicles")
