"""
Contracts the engine consumes.

``VehicleCatalog`` and ``BookingStore`` are the only ways the engine touches
persistence. ``stores.py`` provides the SQLAlchemy implementation; anything
else that honours these signatures can be plugged in, as long as
``create_if_no_conflict`` is atomic per vehicle.
"""
from datetime import datetime
from typing import List, Protocol

from .enums import BookingStatus, StatusFilter, VehicleType
from .schemas import (
    BookingFilter,
    BookingPage,
    BookingRecord,
    CreateVehicleRequest,
    NewBooking,
    VehicleRecord,
)


class VehicleCatalog(Protocol):
    async def create(self, data: CreateVehicleRequest) -> VehicleRecord:
        """Raises DuplicateVehicleError on a taken registration number."""
        ...

    async def get_by_id(self, vehicle_id: int) -> VehicleRecord:
        """Raises VehicleNotFoundError."""
        ...

    async def find_suitable(
        self,
        min_capacity: int,
        vehicle_type: VehicleType | None = None,
        active_only: bool = True,
    ) -> List[VehicleRecord]:
        ...

    async def list_vehicles(
        self,
        is_active: bool | None = None,
        vehicle_type: VehicleType | None = None,
        skip: int = 0,
        limit: int = 50,
        q: str | None = None,
        min_capacity: int | None = None,
        max_capacity: int | None = None,
    ) -> List[VehicleRecord]:
        """Newest first. ``q`` matches name or registration number, case-insensitively."""
        ...

    async def update(self, vehicle_id: int, changes: dict) -> VehicleRecord:
        """
        Apply name/capacity_kg/tyres/vehicle_type/registration_number changes.
        Raises VehicleNotFoundError or DuplicateVehicleError.
        """
        ...

    async def set_active(self, vehicle_id: int, active: bool) -> VehicleRecord:
        ...


class BookingStore(Protocol):
    async def create_if_no_conflict(self, draft: NewBooking) -> BookingRecord:
        """
        Check for overlapping non-terminal bookings on draft.vehicle_id and
        insert as one atomic unit. Raises BookingConflictError with nothing
        written. If draft.idempotency_key already exists, returns that booking.
        """
        ...

    async def get_by_id(self, booking_id: int) -> BookingRecord:
        """Raises BookingNotFoundError."""
        ...

    async def get_by_idempotency_key(self, key: str) -> BookingRecord | None:
        ...

    async def find_overlapping(
        self,
        vehicle_id: int,
        start: datetime,
        end: datetime,
        status_filter: StatusFilter,
        exclude_id: int | None = None,
    ) -> List[BookingRecord]:
        ...

    async def update_status(
        self,
        booking_id: int,
        expected: BookingStatus,
        new_status: BookingStatus,
        fields: dict | None = None,
    ) -> BookingRecord:
        """
        Compare-and-set on status. Raises InvalidStatusTransitionError if the
        stored status is no longer ``expected``.
        """
        ...

    async def delete_terminal(self, booking_id: int) -> BookingRecord:
        """Delete a completed/cancelled booking. Raises NotDeletableError otherwise."""
        ...

    async def list_bookings(self, filters: BookingFilter) -> BookingPage:
        ...

    async def list_upcoming(self, now: datetime, until: datetime, limit: int = 50) -> List[BookingRecord]:
        ...

    async def deactivate_vehicle_if_idle(self, vehicle_id: int, now: datetime) -> VehicleRecord:
        """
        Mark the vehicle inactive unless it has open bookings ending after
        ``now``. Serialized with create_if_no_conflict for the same vehicle.
        Raises VehicleHasActiveBookingsError.
        """
        ...
