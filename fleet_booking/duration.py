"""
Ride duration estimates.

The base estimate is a deliberately simplified proxy for travel time, not a
distance model: ``abs(dest - origin) % 24`` hours over the two 6-digit
location codes, with a floor of half an hour so a booking never has zero
length. ``110001 -> 110025`` therefore yields 0.5 hours (24 % 24 == 0, then
clamped), not 24.

The enhanced estimate is advisory and only shown alongside search results.
Booking windows are always computed from the base estimate.
"""
import math
import re
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP

from .errors import InvalidDurationError, InvalidLocationCodeError
from .timeutils import parse_instant

MIN_DURATION_HOURS = 0.5
MIN_LOCATION_CODE = 100000
MAX_LOCATION_CODE = 999999

VEHICLE_TYPE_FACTORS = {
    "motorcycle": 0.8,
    "pickup": 1.0,
    "van": 1.1,
    "truck": 1.3,
    "trailer": 1.5,
    "other": 1.0,
}

DEFAULT_TRAFFIC_FACTOR = 1.2
MIN_TRAFFIC_FACTOR = 1.0
MAX_TRAFFIC_FACTOR = 3.0

LOADING_SHARE = 0.1
MIN_LOADING_HOURS = 0.5
MAX_LOADING_HOURS = 2.0

_CODE_RE = re.compile(r"^\d{6}$")


def normalize_location_code(code) -> str:
    """Return the code as a 6-digit string or raise InvalidLocationCodeError."""
    if isinstance(code, bool) or code is None:
        raise InvalidLocationCodeError(f"Invalid location code: {code!r}")

    text = str(code).strip()
    if not _CODE_RE.match(text):
        raise InvalidLocationCodeError(f"Location code must be exactly 6 digits: {code!r}")

    value = int(text)
    if value < MIN_LOCATION_CODE or value > MAX_LOCATION_CODE:
        raise InvalidLocationCodeError(
            f"Location code must be between {MIN_LOCATION_CODE} and {MAX_LOCATION_CODE}: {code!r}"
        )
    return text


def estimate_duration(origin_code, destination_code) -> float:
    origin = int(normalize_location_code(origin_code))
    destination = int(normalize_location_code(destination_code))

    hours = abs(destination - origin) % 24
    return max(float(hours), MIN_DURATION_HOURS)


def _round2(value: float) -> float:
    return float(Decimal(str(value)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def estimate_enhanced_duration(
    origin_code,
    destination_code,
    vehicle_type: str | None = None,
    traffic_factor: float | None = None,
    include_loading_time: bool = False,
) -> float:
    base = estimate_duration(origin_code, destination_code)
    enhanced = base

    key = vehicle_type.value if hasattr(vehicle_type, "value") else vehicle_type
    enhanced *= VEHICLE_TYPE_FACTORS.get(key, 1.0)

    if traffic_factor is None:
        traffic_factor = DEFAULT_TRAFFIC_FACTOR
    # out of range is ignored rather than rejected
    if MIN_TRAFFIC_FACTOR <= traffic_factor <= MAX_TRAFFIC_FACTOR:
        enhanced *= traffic_factor

    if include_loading_time:
        loading = min(base * LOADING_SHARE, MAX_LOADING_HOURS)
        enhanced += max(loading, MIN_LOADING_HOURS)

    return _round2(enhanced)


def validate_duration_hours(duration_hours) -> float:
    if isinstance(duration_hours, bool) or not isinstance(duration_hours, (int, float)):
        raise InvalidDurationError(f"Duration must be a positive number, got {duration_hours!r}")
    if not math.isfinite(duration_hours) or duration_hours <= 0:
        raise InvalidDurationError(f"Duration must be a positive number, got {duration_hours!r}")
    return float(duration_hours)


def compute_end_time(start_time, duration_hours) -> datetime:
    hours = validate_duration_hours(duration_hours)
    try:
        start = parse_instant(start_time)
    except (ValueError, OverflowError) as e:
        raise InvalidDurationError(f"Invalid start time: {start_time!r}") from e

    try:
        return start + timedelta(hours=hours)
    except OverflowError as e:
        raise InvalidDurationError(f"Duration {hours}h overflows start time {start.isoformat()}") from e


def format_duration(hours: float) -> str:
    if isinstance(hours, bool) or not isinstance(hours, (int, float)) or hours < 0:
        return "Invalid duration"

    whole = int(math.floor(hours))
    minutes = int(round((hours - whole) * 60))
    if minutes == 60:
        whole, minutes = whole + 1, 0

    if whole == 0:
        return f"{minutes} minutes"
    label = f"{whole} hour{'s' if whole != 1 else ''}"
    if minutes == 0:
        return label
    return f"{label} {minutes} minutes"
