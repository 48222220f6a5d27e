"""
Error kinds raised by the booking engine.

Every error carries a stable ``kind`` so callers can branch on it regardless
of transport, plus the HTTP status the router renders it with. Only
``StoreUnavailableError`` is retryable; the engine itself never retries.
"""


class FleetError(Exception):
    kind = "FleetError"
    status_code = 500
    retryable = False

    def __init__(self, message: str | None = None):
        super().__init__(message or self.kind)
        self.message = message or self.kind

    def to_dict(self) -> dict:
        return {"kind": self.kind, "message": self.message}


class InvalidLocationCodeError(FleetError):
    kind = "InvalidLocationCode"
    status_code = 400


class InvalidDurationError(FleetError):
    kind = "InvalidDuration"
    status_code = 400


class InvalidCapacityError(FleetError):
    kind = "InvalidCapacity"
    status_code = 400


class InvalidVehicleTypeError(FleetError):
    kind = "InvalidVehicleType"
    status_code = 400


class VehicleNotFoundError(FleetError):
    kind = "VehicleNotFound"
    status_code = 404

    def __init__(self, vehicle_id):
        super().__init__(f"Vehicle {vehicle_id} not found")
        self.vehicle_id = vehicle_id


class VehicleInactiveError(FleetError):
    kind = "VehicleInactive"
    status_code = 409

    def __init__(self, vehicle_id):
        super().__init__(f"Vehicle {vehicle_id} is not active and cannot be booked")
        self.vehicle_id = vehicle_id


class DuplicateVehicleError(FleetError):
    kind = "DuplicateVehicle"
    status_code = 409


class VehicleHasActiveBookingsError(FleetError):
    kind = "VehicleHasActiveBookings"
    status_code = 409


class BookingNotFoundError(FleetError):
    kind = "BookingNotFound"
    status_code = 404

    def __init__(self, booking_id):
        super().__init__(f"Booking {booking_id} not found")
        self.booking_id = booking_id


class BookingConflictError(FleetError):
    kind = "BookingConflict"
    status_code = 409

    def __init__(self, vehicle_id, conflicting_ids: list | None = None):
        super().__init__(
            f"Vehicle {vehicle_id} is not available for the selected time slot"
        )
        self.vehicle_id = vehicle_id
        self.conflicting_ids = conflicting_ids or []


class InvalidStatusTransitionError(FleetError):
    kind = "InvalidStatusTransition"
    status_code = 400

    def __init__(self, current: str, target: str):
        super().__init__(f"Cannot change booking status from '{current}' to '{target}'")
        self.current = current
        self.target = target


class NotCancellableError(FleetError):
    kind = "NotCancellable"
    status_code = 409


class NotDeletableError(FleetError):
    kind = "NotDeletable"
    status_code = 409


class StoreUnavailableError(FleetError):
    kind = "StoreUnavailable"
    status_code = 503
    retryable = True
