"""
Booking lifecycle: creation, status transitions, cancellation and purge.

Bookings are only ever written through this module. ``create`` hands a fully
resolved draft to ``BookingStore.create_if_no_conflict``, which checks for
overlaps and inserts as one atomic unit per vehicle, so no two active bookings
on a vehicle can overlap no matter how many requests race. Status changes
follow ``ALLOWED_TRANSITIONS`` and are compare-and-set in the store.
"""
import logging
from datetime import timedelta
from typing import List

from .conflicts import IntervalConflictDetector, parse_window
from .duration import (
    compute_end_time,
    estimate_duration,
    normalize_location_code,
    validate_duration_hours,
)
from .enums import CANCELLABLE_STATUSES, TERMINAL_STATUSES, BookingStatus, StatusFilter
from .errors import (
    BookingConflictError,
    InvalidDurationError,
    InvalidStatusTransitionError,
    NotCancellableError,
    NotDeletableError,
    VehicleInactiveError,
)
from .events import (
    BOOKING_CANCELLED,
    BOOKING_CREATED,
    BOOKING_DELETED,
    BOOKING_STATUS_CHANGED,
    VEHICLE_CREATED,
    VEHICLE_DEACTIVATED,
    VEHICLE_UPDATED,
    booking_data,
    vehicle_data,
)
from .interfaces import BookingStore, VehicleCatalog
from .schemas import (
    BookingFilter,
    BookingPage,
    BookingRecord,
    ConflictCheckResult,
    CreateVehicleRequest,
    DeletedBooking,
    NewBooking,
    UpdateVehicleRequest,
    VehicleRecord,
)
from .timeutils import parse_instant, utcnow

logger = logging.getLogger(__name__)

DEFAULT_CANCEL_REASON = "Cancelled by user"
UPCOMING_WINDOW_HOURS = 24

ALLOWED_TRANSITIONS = {
    BookingStatus.PENDING: {BookingStatus.CONFIRMED, BookingStatus.CANCELLED},
    BookingStatus.CONFIRMED: {BookingStatus.IN_PROGRESS, BookingStatus.CANCELLED},
    BookingStatus.IN_PROGRESS: {BookingStatus.COMPLETED, BookingStatus.CANCELLED},
    BookingStatus.COMPLETED: set(),
    BookingStatus.CANCELLED: set(),
}


def validate_transition(current: BookingStatus, target: BookingStatus) -> None:
    """Raise InvalidStatusTransitionError unless current -> target is an edge of the table."""
    allowed = ALLOWED_TRANSITIONS.get(current, set())
    if target not in allowed:
        raise InvalidStatusTransitionError(current.value, target.value)


def _status_value(status) -> str:
    return status.value if hasattr(status, "value") else str(status)


class BookingLifecycle:
    def __init__(
        self,
        vehicles: VehicleCatalog,
        bookings: BookingStore,
        detector: IntervalConflictDetector | None = None,
        publisher=None,
        clock=utcnow,
        cancellation_cutoff: timedelta = timedelta(hours=1),
    ):
        self._vehicles = vehicles
        self._bookings = bookings
        self._detector = detector or IntervalConflictDetector(bookings)
        self._publisher = publisher
        self._clock = clock
        self._cancellation_cutoff = cancellation_cutoff

    async def _emit(self, event_type: str, data: dict):
        if self._publisher is None:
            return
        try:
            await self._publisher.emit(event_type, data)
        except Exception as e:
            logger.warning("Failed to publish %s: %s", event_type, e)

    # ---- create ----

    async def create(
        self,
        vehicle_id: int,
        customer_id: str,
        origin_code,
        destination_code,
        start_time,
        duration_hours: float | None = None,
        end_time=None,
        estimated_cost: float | None = None,
        total_distance: float | None = None,
        notes: str | None = None,
        idempotency_key: str | None = None,
    ) -> BookingRecord:
        origin = normalize_location_code(origin_code)
        destination = normalize_location_code(destination_code)

        if idempotency_key:
            existing = await self._bookings.get_by_idempotency_key(idempotency_key)
            if existing is not None:
                logger.info("Returning booking %s for idempotency key %s", existing.id, idempotency_key)
                return existing

        vehicle = await self._vehicles.get_by_id(vehicle_id)
        if not vehicle.is_active:
            raise VehicleInactiveError(vehicle_id)

        if duration_hours is None:
            hours = estimate_duration(origin, destination)
        else:
            hours = validate_duration_hours(duration_hours)

        try:
            start = parse_instant(start_time)
        except (ValueError, OverflowError) as e:
            raise InvalidDurationError(f"Invalid start time: {start_time!r}") from e

        if end_time is None:
            end = compute_end_time(start, hours)
        else:
            start, end = parse_window(start, end_time)

        draft = NewBooking(
            vehicle_id=vehicle.id,
            customer_id=customer_id,
            origin_code=origin,
            destination_code=destination,
            start_time=start,
            end_time=end,
            estimated_ride_duration_hours=hours,
            estimated_cost=estimated_cost,
            total_distance=total_distance,
            notes=notes,
            idempotency_key=idempotency_key,
        )

        try:
            booking = await self._bookings.create_if_no_conflict(draft)
        except BookingConflictError as e:
            logger.warning(
                "Booking conflict on vehicle %s for %s - %s (conflicts with %s)",
                vehicle_id,
                start.isoformat(),
                end.isoformat(),
                e.conflicting_ids,
            )
            raise

        logger.info(
            "Booking %s created for vehicle %s, customer %s, %s - %s",
            booking.id,
            booking.vehicle_id,
            booking.customer_id,
            booking.start_time.isoformat(),
            booking.end_time.isoformat(),
        )
        await self._emit(BOOKING_CREATED, booking_data(booking))
        return booking

    # ---- status ----

    def _ensure_cancellable(self, booking: BookingRecord):
        if booking.status not in CANCELLABLE_STATUSES:
            raise NotCancellableError(
                f"Booking {booking.id} is {booking.status.value} and cannot be cancelled"
            )
        if booking.start_time <= self._clock() + self._cancellation_cutoff:
            minutes = int(self._cancellation_cutoff.total_seconds() // 60)
            raise NotCancellableError(
                f"Booking {booking.id} starts within {minutes} minutes and can no longer be cancelled"
            )

    async def transition_status(self, booking_id: int, new_status, notes: str | None = None) -> BookingRecord:
        booking = await self._bookings.get_by_id(booking_id)

        try:
            target = BookingStatus(new_status)
        except ValueError as e:
            raise InvalidStatusTransitionError(booking.status.value, _status_value(new_status)) from e

        validate_transition(booking.status, target)
        if target == BookingStatus.CANCELLED:
            self._ensure_cancellable(booking)
        return await self._apply_transition(booking, target, notes)

    async def _apply_transition(self, booking: BookingRecord, target: BookingStatus, notes) -> BookingRecord:
        booking_id = booking.id
        now = self._clock()
        fields = {}
        if target == BookingStatus.IN_PROGRESS and booking.actual_start_time is None:
            fields["actual_start_time"] = now
        if target == BookingStatus.COMPLETED and booking.actual_end_time is None:
            fields["actual_end_time"] = now
        if notes is not None:
            fields["notes"] = notes

        updated = await self._bookings.update_status(booking_id, booking.status, target, fields)

        logger.info(
            "Booking %s status changed %s -> %s", booking_id, booking.status.value, target.value
        )
        await self._emit(
            BOOKING_STATUS_CHANGED,
            booking_data(updated, previous_status=booking.status.value),
        )
        if target == BookingStatus.CANCELLED:
            await self._emit(BOOKING_CANCELLED, booking_data(updated, reason=updated.notes))
        return updated

    async def cancel(self, booking_id: int, reason: str | None = None) -> BookingRecord:
        """Cancel a pending or confirmed booking; anything else is NotCancellable."""
        booking = await self._bookings.get_by_id(booking_id)
        self._ensure_cancellable(booking)
        validate_transition(booking.status, BookingStatus.CANCELLED)
        return await self._apply_transition(
            booking, BookingStatus.CANCELLED, reason or DEFAULT_CANCEL_REASON
        )

    # ---- purge ----

    async def delete(self, booking_id: int) -> DeletedBooking:
        booking = await self._bookings.get_by_id(booking_id)
        if booking.status not in TERMINAL_STATUSES:
            raise NotDeletableError(
                f"Booking {booking_id} is {booking.status.value}; only completed or cancelled bookings can be deleted"
            )

        deleted = await self._bookings.delete_terminal(booking_id)
        result = DeletedBooking(id=deleted.id, status=deleted.status, deleted_at=self._clock())

        logger.info("Booking %s (%s) deleted", deleted.id, deleted.status.value)
        await self._emit(BOOKING_DELETED, booking_data(deleted, deleted_at=result.deleted_at.isoformat()))
        return result

    # ---- conflicts ----

    async def check_conflicts(
        self,
        vehicle_id: int,
        start_time,
        end_time,
        exclude_id: int | None = None,
        include_completed: bool = False,
    ) -> ConflictCheckResult:
        status_filter = StatusFilter.NOT_CANCELLED if include_completed else StatusFilter.ACTIVE
        conflicts = await self._detector.find_overlaps(
            vehicle_id,
            start_time,
            end_time,
            status_filter=status_filter,
            exclude_id=exclude_id,
        )
        conflicts = sorted(conflicts, key=lambda b: (b.start_time, b.id))
        return ConflictCheckResult(has_conflicts=bool(conflicts), conflicts=conflicts)

    # ---- reads ----

    async def get_booking(self, booking_id: int) -> BookingRecord:
        return await self._bookings.get_by_id(booking_id)

    async def list_bookings(self, filters: BookingFilter | None = None) -> BookingPage:
        return await self._bookings.list_bookings(filters or BookingFilter())

    async def upcoming(self, hours: int = UPCOMING_WINDOW_HOURS, limit: int = 50) -> List[BookingRecord]:
        if hours <= 0:
            raise InvalidDurationError(f"Upcoming window must be positive, got {hours!r}")
        now = self._clock()
        return await self._bookings.list_upcoming(now, now + timedelta(hours=hours), limit=limit)

    # ---- vehicles ----

    async def create_vehicle(self, data: CreateVehicleRequest) -> VehicleRecord:
        vehicle = await self._vehicles.create(data)
        logger.info("Vehicle %s created (%s, %skg)", vehicle.id, vehicle.name, vehicle.capacity_kg)
        await self._emit(VEHICLE_CREATED, vehicle_data(vehicle))
        return vehicle

    async def deactivate_vehicle(self, vehicle_id: int) -> VehicleRecord:
        vehicle = await self._vehicles.get_by_id(vehicle_id)
        if not vehicle.is_active:
            return vehicle

        vehicle = await self._bookings.deactivate_vehicle_if_idle(vehicle_id, self._clock())
        logger.info("Vehicle %s deactivated", vehicle_id)
        await self._emit(VEHICLE_DEACTIVATED, vehicle_data(vehicle))
        return vehicle

    async def update_vehicle(self, vehicle_id: int, data: UpdateVehicleRequest) -> VehicleRecord:
        """
        Partial update. Only fields present in the request are applied; a
        registration number is re-checked against every other vehicle.
        ``is_active=False`` goes through ``deactivate_vehicle`` so open
        bookings still block it.
        """
        changes = data.model_dump(exclude_unset=True)
        changes = {k: v for k, v in changes.items() if v is not None or k == "registration_number"}
        active = changes.pop("is_active", None)

        vehicle = await self._vehicles.get_by_id(vehicle_id)
        if active is False and vehicle.is_active:
            vehicle = await self.deactivate_vehicle(vehicle_id)
        elif active is True and not vehicle.is_active:
            vehicle = await self._vehicles.set_active(vehicle_id, True)

        if changes:
            vehicle = await self._vehicles.update(vehicle_id, changes)

        if changes or active is not None:
            fields = sorted(changes) + (["is_active"] if active is not None else [])
            logger.info("Vehicle %s updated (%s)", vehicle_id, ", ".join(fields))
            payload = vehicle_data(vehicle)
            payload["changed_fields"] = fields
            await self._emit(VEHICLE_UPDATED, payload)
        return vehicle
