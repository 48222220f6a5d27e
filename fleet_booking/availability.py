import asyncio
import logging
from typing import List

from .conflicts import IntervalConflictDetector
from .duration import (
    DEFAULT_TRAFFIC_FACTOR,
    compute_end_time,
    estimate_duration,
    estimate_enhanced_duration,
    format_duration,
    normalize_location_code,
)
from .enums import StatusFilter, VehicleType, parse_vehicle_type
from .errors import InvalidCapacityError, InvalidDurationError
from .interfaces import VehicleCatalog
from .schemas import AvailabilityResult, AvailableVehicle, SearchParams, VehicleRecord
from .timeutils import parse_instant

logger = logging.getLogger(__name__)

DEFAULT_CONCURRENCY = 10


def validate_capacity(capacity_required) -> int:
    if isinstance(capacity_required, bool) or not isinstance(capacity_required, int) or capacity_required <= 0:
        raise InvalidCapacityError(f"Capacity must be a positive integer, got {capacity_required!r}")
    return capacity_required


class AvailabilityEngine:
    """
    Answers "which vehicles can carry this load for this window".

    Suitable vehicles come from the catalog; each one is then checked for
    overlapping active bookings, at most ``concurrency`` checks at a time.
    The search is read-only: a vehicle listed as available can still lose
    the slot to a concurrent create.
    """

    def __init__(
        self,
        vehicles: VehicleCatalog,
        detector: IntervalConflictDetector,
        concurrency: int = DEFAULT_CONCURRENCY,
    ):
        self._vehicles = vehicles
        self._detector = detector
        self._concurrency = max(1, concurrency)

    async def find_available(
        self,
        capacity_required,
        origin_code,
        destination_code,
        start_time,
        vehicle_type: VehicleType | None = None,
        include_enhanced_duration: bool = False,
    ) -> AvailabilityResult:
        capacity = validate_capacity(capacity_required)
        origin = normalize_location_code(origin_code)
        destination = normalize_location_code(destination_code)
        vehicle_type = parse_vehicle_type(vehicle_type)

        try:
            start = parse_instant(start_time)
        except (ValueError, OverflowError) as e:
            raise InvalidDurationError(f"Invalid start time: {start_time!r}") from e

        hours = estimate_duration(origin, destination)
        end = compute_end_time(start, hours)

        suitable = await self._vehicles.find_suitable(capacity, vehicle_type=vehicle_type, active_only=True)

        semaphore = asyncio.Semaphore(self._concurrency)

        async def is_free(vehicle: VehicleRecord) -> bool:
            async with semaphore:
                overlapping = await self._detector.find_overlaps(
                    vehicle.id, start, end, status_filter=StatusFilter.ACTIVE
                )
            return not overlapping

        free = await asyncio.gather(*(is_free(v) for v in suitable))

        available: List[AvailableVehicle] = []
        for vehicle, ok in zip(suitable, free):
            if not ok:
                continue
            enhanced = None
            if include_enhanced_duration:
                enhanced = estimate_enhanced_duration(
                    origin,
                    destination,
                    vehicle_type=vehicle.vehicle_type,
                    traffic_factor=DEFAULT_TRAFFIC_FACTOR,
                    include_loading_time=True,
                )
            available.append(
                AvailableVehicle(
                    **vehicle.model_dump(exclude={"capacity_tonnes"}),
                    estimated_ride_duration_hours=hours,
                    enhanced_duration_hours=enhanced,
                    estimated_end_time=end,
                )
            )

        # smallest vehicle that fits first, newest first among equals
        available.sort(key=lambda v: (v.capacity_kg, -v.created_at.timestamp()))

        logger.info(
            "Availability %s -> %s at %s for %skg: %s of %s suitable vehicles free",
            origin,
            destination,
            start.isoformat(),
            capacity,
            len(available),
            len(suitable),
        )

        return AvailabilityResult(
            available_vehicles=available,
            estimated_ride_duration_hours=hours,
            duration_display=format_duration(hours),
            estimated_end_time=end,
            total_available=len(available),
            total_suitable=len(suitable),
            search=SearchParams(
                capacity_required=capacity,
                origin_code=origin,
                destination_code=destination,
                start_time=start,
                end_time=end,
                vehicle_type=vehicle_type,
            ),
        )
