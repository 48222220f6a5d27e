from datetime import datetime
from typing import List

from .enums import StatusFilter
from .errors import InvalidDurationError
from .interfaces import BookingStore
from .schemas import BookingRecord
from .timeutils import parse_instant


def overlaps(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    return a_start < b_end and a_end > b_start


def parse_window(start, end) -> tuple[datetime, datetime]:
    try:
        s = parse_instant(start)
        e = parse_instant(end)
    except (ValueError, OverflowError) as exc:
        raise InvalidDurationError(f"Invalid time window: {start!r} - {end!r}") from exc
    if e <= s:
        raise InvalidDurationError("End time must be after start time")
    return s, e


class IntervalConflictDetector:
    """
    Finds bookings on a vehicle whose [start, end) window overlaps a candidate one.

    Cancelled bookings are never candidates. Whether completed bookings count
    is up to the caller, who must pass ``status_filter`` explicitly. Results
    come back in store order.
    """

    def __init__(self, bookings: BookingStore):
        self._bookings = bookings

    async def find_overlaps(
        self,
        vehicle_id: int,
        start,
        end,
        *,
        status_filter: StatusFilter,
        exclude_id: int | None = None,
    ) -> List[BookingRecord]:
        s, e = parse_window(start, end)
        return await self._bookings.find_overlapping(
            vehicle_id, s, e, status_filter=StatusFilter(status_filter), exclude_id=exclude_id
        )

    async def has_conflict(self, vehicle_id: int, start, end, *, status_filter: StatusFilter) -> bool:
        return bool(await self.find_overlaps(vehicle_id, start, end, status_filter=status_filter))
