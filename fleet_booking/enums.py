from enum import Enum

from .errors import InvalidVehicleTypeError


class VehicleType(str, Enum):
    TRUCK = "truck"
    VAN = "van"
    PICKUP = "pickup"
    TRAILER = "trailer"
    MOTORCYCLE = "motorcycle"
    OTHER = "other"


class BookingStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class StatusFilter(str, Enum):
    """Which bookings count as candidates when looking for overlaps."""

    ACTIVE = "active"  # excludes cancelled and completed
    NOT_CANCELLED = "not_cancelled"


TERMINAL_STATUSES = frozenset({BookingStatus.COMPLETED, BookingStatus.CANCELLED})
CANCELLABLE_STATUSES = frozenset({BookingStatus.PENDING, BookingStatus.CONFIRMED})
OPEN_STATUSES = frozenset(
    {BookingStatus.PENDING, BookingStatus.CONFIRMED, BookingStatus.IN_PROGRESS}
)


def excluded_statuses(status_filter: StatusFilter) -> frozenset:
    if status_filter == StatusFilter.ACTIVE:
        return TERMINAL_STATUSES
    return frozenset({BookingStatus.CANCELLED})


def parse_vehicle_type(value) -> VehicleType | None:
    """Accept a VehicleType or its case-insensitive name; None passes through."""
    if value is None or isinstance(value, VehicleType):
        return value
    try:
        return VehicleType(str(value).strip().lower())
    except ValueError as e:
        allowed = ", ".join(t.value for t in VehicleType)
        raise InvalidVehicleTypeError(f"Unknown vehicle type {value!r}; expected one of {allowed}") from e
