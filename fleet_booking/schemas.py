from datetime import datetime
from typing import List

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator

from .enums import BookingStatus, VehicleType
from .timeutils import as_utc


def _utc(value):
    if isinstance(value, datetime):
        return as_utc(value)
    return value


# ---- records returned by the stores ----

class VehicleSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    capacity_kg: int
    tyres: int
    vehicle_type: VehicleType
    registration_number: str | None = None


class VehicleRecord(VehicleSummary):
    is_active: bool
    created_at: datetime
    updated_at: datetime

    @field_validator("created_at", "updated_at")
    @classmethod
    def normalize_times(cls, value):
        return _utc(value)

    @computed_field
    @property
    def capacity_tonnes(self) -> float:
        return round(self.capacity_kg / 1000, 2)


class BookingRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    vehicle_id: int
    customer_id: str
    origin_code: str
    destination_code: str
    start_time: datetime
    end_time: datetime
    estimated_ride_duration_hours: float
    status: BookingStatus
    actual_start_time: datetime | None = None
    actual_end_time: datetime | None = None
    notes: str | None = None
    estimated_cost: float | None = None
    total_distance: float | None = None
    idempotency_key: str | None = None
    created_at: datetime
    updated_at: datetime
    vehicle: VehicleSummary | None = None

    @field_validator(
        "start_time",
        "end_time",
        "actual_start_time",
        "actual_end_time",
        "created_at",
        "updated_at",
    )
    @classmethod
    def normalize_times(cls, value):
        return _utc(value)

    @computed_field
    @property
    def route(self) -> str:
        return f"{self.origin_code} → {self.destination_code}"

    @computed_field
    @property
    def actual_duration_hours(self) -> float | None:
        if self.actual_start_time and self.actual_end_time:
            seconds = (self.actual_end_time - self.actual_start_time).total_seconds()
            return round(seconds / 3600, 2)
        return None


class NewBooking(BaseModel):
    """Fully resolved booking handed to BookingStore.create_if_no_conflict."""

    vehicle_id: int
    customer_id: str
    origin_code: str
    destination_code: str
    start_time: datetime
    end_time: datetime
    estimated_ride_duration_hours: float
    status: BookingStatus = BookingStatus.CONFIRMED
    estimated_cost: float | None = None
    total_distance: float | None = None
    notes: str | None = None
    idempotency_key: str | None = None


class BookingFilter(BaseModel):
    status: BookingStatus | None = None
    vehicle_id: int | None = None
    customer_id: str | None = None
    origin_code: str | None = None
    destination_code: str | None = None
    from_date: datetime | None = None
    to_date: datetime | None = None
    skip: int = Field(default=0, ge=0)
    limit: int = Field(default=50, ge=1, le=500)


class BookingPage(BaseModel):
    bookings: List[BookingRecord]
    total: int
    skip: int
    limit: int


# ---- requests ----

class CreateVehicleRequest(BaseModel):
    name: str = Field(min_length=2, max_length=100)
    capacity_kg: int = Field(gt=0, le=100000)
    tyres: int = Field(ge=2)
    vehicle_type: VehicleType = VehicleType.TRUCK
    registration_number: str | None = Field(default=None, max_length=32)
    is_active: bool = True


class UpdateVehicleRequest(BaseModel):
    name: str | None = Field(default=None, min_length=2, max_length=100)
    capacity_kg: int | None = Field(default=None, gt=0, le=100000)
    tyres: int | None = Field(default=None, ge=2)
    vehicle_type: VehicleType | None = None
    registration_number: str | None = Field(default=None, max_length=32)
    is_active: bool | None = None


class CreateBookingRequest(BaseModel):
    vehicle_id: int
    customer_id: str = Field(min_length=1, max_length=100)
    origin_code: str
    destination_code: str
    start_time: datetime
    end_time: datetime | None = None
    estimated_ride_duration_hours: float | None = None
    estimated_cost: float | None = Field(default=None, ge=0)
    total_distance: float | None = Field(default=None, ge=0)
    notes: str | None = Field(default=None, max_length=1000)


class UpdateStatusRequest(BaseModel):
    status: BookingStatus
    notes: str | None = Field(default=None, max_length=1000)


class CancelBookingRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=1000)


class ConflictCheckRequest(BaseModel):
    vehicle_id: int
    start_time: datetime
    end_time: datetime
    exclude_booking_id: int | None = None
    include_completed: bool = False


# ---- responses ----

class AvailableVehicle(VehicleRecord):
    is_available: bool = True
    estimated_ride_duration_hours: float
    enhanced_duration_hours: float | None = None
    estimated_end_time: datetime


class SearchParams(BaseModel):
    capacity_required: int
    origin_code: str
    destination_code: str
    start_time: datetime
    end_time: datetime
    vehicle_type: VehicleType | None = None


class AvailabilityResult(BaseModel):
    available_vehicles: List[AvailableVehicle]
    estimated_ride_duration_hours: float
    duration_display: str
    estimated_end_time: datetime
    total_available: int
    total_suitable: int
    search: SearchParams


class ConflictCheckResult(BaseModel):
    has_conflicts: bool
    conflicts: List[BookingRecord]


class DeletedBooking(BaseModel):
    id: int
    status: BookingStatus
    deleted_at: datetime
