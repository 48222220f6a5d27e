from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import relationship

from .db import Base
from .timeutils import utcnow


class Vehicle(Base):
    __tablename__ = "vehicles"

    id = Column(Integer, primary_key=True)
    name = Column(String(100), nullable=False)
    capacity_kg = Column(Integer, nullable=False)
    tyres = Column(Integer, nullable=False)
    vehicle_type = Column(String(20), nullable=False, default="truck")
    registration_number = Column(String(32), unique=True, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True, index=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        CheckConstraint("capacity_kg > 0", name="ck_vehicles_capacity_positive"),
        CheckConstraint("tyres >= 2", name="ck_vehicles_tyres_min"),
        Index("ix_vehicles_capacity_active", "capacity_kg", "is_active"),
        Index("ix_vehicles_type_active", "vehicle_type", "is_active"),
    )


class Booking(Base):
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True)
    vehicle_id = Column(Integer, ForeignKey("vehicles.id"), nullable=False, index=True)
    customer_id = Column(String(100), nullable=False, index=True)

    origin_code = Column(String(6), nullable=False)
    destination_code = Column(String(6), nullable=False)

    start_time = Column(DateTime(timezone=True), nullable=False)
    end_time = Column(DateTime(timezone=True), nullable=False)
    estimated_ride_duration_hours = Column(Float, nullable=False)

    status = Column(String(20), nullable=False, index=True)  # pending/confirmed/in_progress/completed/cancelled

    actual_start_time = Column(DateTime(timezone=True), nullable=True)
    actual_end_time = Column(DateTime(timezone=True), nullable=True)

    notes = Column(Text, nullable=True)
    estimated_cost = Column(Float, nullable=True)
    total_distance = Column(Float, nullable=True)
    idempotency_key = Column(String(128), unique=True, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    vehicle = relationship("Vehicle", lazy="joined")

    __table_args__ = (
        CheckConstraint("end_time > start_time", name="ck_bookings_end_after_start"),
        Index("ix_bookings_vehicle_window", "vehicle_id", "start_time", "end_time"),
        Index("ix_bookings_customer_status", "customer_id", "status"),
        Index("ix_bookings_status_start", "status", "start_time"),
    )
