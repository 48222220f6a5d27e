import asyncio
import logging
from datetime import datetime
from typing import List

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError

from .enums import (
    CANCELLABLE_STATUSES,
    OPEN_STATUSES,
    TERMINAL_STATUSES,
    BookingStatus,
    StatusFilter,
    VehicleType,
    excluded_statuses,
    parse_vehicle_type,
)
from .errors import (
    BookingConflictError,
    BookingNotFoundError,
    DuplicateVehicleError,
    InvalidStatusTransitionError,
    NotDeletableError,
    StoreUnavailableError,
    VehicleHasActiveBookingsError,
    VehicleInactiveError,
    VehicleNotFoundError,
)
from .locks import VehicleLocks
from .models import Booking, Vehicle
from .schemas import (
    BookingFilter,
    BookingPage,
    BookingRecord,
    CreateVehicleRequest,
    NewBooking,
    VehicleRecord,
)
from .timeutils import as_utc, utcnow

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 5.0


async def run_guarded(what: str, coro, timeout: float):
    """Bound a store call and turn infrastructure failures into StoreUnavailableError."""
    try:
        return await asyncio.wait_for(coro, timeout=timeout)
    except asyncio.TimeoutError as e:
        raise StoreUnavailableError(f"{what} timed out after {timeout}s; outcome unknown") from e
    except (OperationalError, InterfaceError) as e:
        logger.error("%s failed: %s", what, e)
        raise StoreUnavailableError(f"{what} failed: store unavailable") from e


def _values(statuses) -> list[str]:
    return [s.value for s in statuses]


def overlap_query(
    vehicle_id: int,
    start: datetime,
    end: datetime,
    status_filter: StatusFilter,
    exclude_id: int | None = None,
):
    # half-open [start, end): touching boundaries do not overlap
    stmt = select(Booking).where(
        Booking.vehicle_id == vehicle_id,
        Booking.status.not_in(_values(excluded_statuses(status_filter))),
        Booking.start_time < as_utc(end),
        Booking.end_time > as_utc(start),
    )
    if exclude_id is not None:
        stmt = stmt.where(Booking.id != exclude_id)
    return stmt


def _registration(value) -> str | None:
    return (value or "").strip().upper() or None


def _name(value: str) -> str:
    return " ".join(value.split())


def open_bookings_count_query(vehicle_id: int, now: datetime):
    return select(func.count()).select_from(Booking).where(
        Booking.vehicle_id == vehicle_id,
        Booking.status.in_(_values(OPEN_STATUSES)),
        Booking.end_time > as_utc(now),
    )


class SqlVehicleCatalog:
    def __init__(self, sessions, timeout: float = DEFAULT_TIMEOUT):
        self._sessions = sessions
        self._timeout = timeout

    async def create(self, data: CreateVehicleRequest) -> VehicleRecord:
        return await run_guarded("create vehicle", self._create(data), self._timeout)

    async def _create(self, data: CreateVehicleRequest) -> VehicleRecord:
        registration = _registration(data.registration_number)

        async with self._sessions() as db:
            if registration:
                res = await db.execute(select(Vehicle).where(Vehicle.registration_number == registration))
                if res.scalar_one_or_none():
                    raise DuplicateVehicleError(
                        f"Vehicle with registration number {registration} already exists"
                    )

            vehicle = Vehicle(
                name=_name(data.name),
                capacity_kg=data.capacity_kg,
                tyres=data.tyres,
                vehicle_type=data.vehicle_type.value,
                registration_number=registration,
                is_active=data.is_active,
            )
            db.add(vehicle)
            try:
                await db.commit()
            except IntegrityError as e:
                await db.rollback()
                raise DuplicateVehicleError(
                    f"Vehicle with registration number {registration} already exists"
                ) from e

            return VehicleRecord.model_validate(vehicle)

    async def get_by_id(self, vehicle_id: int) -> VehicleRecord:
        return await run_guarded("get vehicle", self._get(vehicle_id), self._timeout)

    async def _get(self, vehicle_id: int) -> VehicleRecord:
        async with self._sessions() as db:
            vehicle = await db.get(Vehicle, vehicle_id)
            if not vehicle:
                raise VehicleNotFoundError(vehicle_id)
            return VehicleRecord.model_validate(vehicle)

    async def find_suitable(
        self,
        min_capacity: int,
        vehicle_type: VehicleType | None = None,
        active_only: bool = True,
    ) -> List[VehicleRecord]:
        return await run_guarded(
            "find suitable vehicles",
            self._find_suitable(min_capacity, vehicle_type, active_only),
            self._timeout,
        )

    async def _find_suitable(self, min_capacity, vehicle_type, active_only) -> List[VehicleRecord]:
        stmt = select(Vehicle).where(Vehicle.capacity_kg >= min_capacity)
        if active_only:
            stmt = stmt.where(Vehicle.is_active.is_(True))
        vehicle_type = parse_vehicle_type(vehicle_type)
        if vehicle_type:
            stmt = stmt.where(Vehicle.vehicle_type == vehicle_type.value)
        stmt = stmt.order_by(Vehicle.capacity_kg.asc())

        async with self._sessions() as db:
            res = await db.execute(stmt)
            return [VehicleRecord.model_validate(v) for v in res.scalars().all()]

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
        stmt = select(Vehicle)
        if is_active is not None:
            stmt = stmt.where(Vehicle.is_active.is_(is_active))
        vehicle_type = parse_vehicle_type(vehicle_type)
        if vehicle_type:
            stmt = stmt.where(Vehicle.vehicle_type == vehicle_type.value)
        if min_capacity is not None:
            stmt = stmt.where(Vehicle.capacity_kg >= min_capacity)
        if max_capacity is not None:
            stmt = stmt.where(Vehicle.capacity_kg <= max_capacity)
        if q and q.strip():
            term = q.strip()
            stmt = stmt.where(
                or_(
                    Vehicle.name.icontains(term, autoescape=True),
                    Vehicle.registration_number.icontains(term, autoescape=True),
                )
            )
        stmt = stmt.order_by(Vehicle.created_at.desc(), Vehicle.id.desc()).offset(skip).limit(limit)

        async def op():
            async with self._sessions() as db:
                res = await db.execute(stmt)
                return [VehicleRecord.model_validate(v) for v in res.scalars().all()]

        return await run_guarded("list vehicles", op(), self._timeout)

    async def update(self, vehicle_id: int, changes: dict) -> VehicleRecord:
        return await run_guarded("update vehicle", self._update(vehicle_id, changes), self._timeout)

    async def _update(self, vehicle_id: int, changes: dict) -> VehicleRecord:
        async with self._sessions() as db:
            vehicle = await db.get(Vehicle, vehicle_id)
            if not vehicle:
                raise VehicleNotFoundError(vehicle_id)

            if "registration_number" in changes:
                registration = _registration(changes["registration_number"])
                if registration and registration != vehicle.registration_number:
                    res = await db.execute(
                        select(Vehicle.id).where(
                            Vehicle.registration_number == registration, Vehicle.id != vehicle_id
                        )
                    )
                    if res.scalar_one_or_none() is not None:
                        raise DuplicateVehicleError(
                            f"Vehicle with registration number {registration} already exists"
                        )
                vehicle.registration_number = registration
            if "name" in changes:
                vehicle.name = _name(changes["name"])
            if "capacity_kg" in changes:
                vehicle.capacity_kg = changes["capacity_kg"]
            if "tyres" in changes:
                vehicle.tyres = changes["tyres"]
            if "vehicle_type" in changes:
                vehicle.vehicle_type = parse_vehicle_type(changes["vehicle_type"]).value
            vehicle.updated_at = utcnow()

            try:
                await db.commit()
            except IntegrityError as e:
                await db.rollback()
                raise DuplicateVehicleError(
                    f"Vehicle with registration number {vehicle.registration_number} already exists"
                ) from e

            return VehicleRecord.model_validate(vehicle)

    async def set_active(self, vehicle_id: int, active: bool) -> VehicleRecord:
        return await run_guarded("set vehicle active", self._set_active(vehicle_id, active), self._timeout)

    async def _set_active(self, vehicle_id: int, active: bool) -> VehicleRecord:
        async with self._sessions() as db:
            vehicle = await db.get(Vehicle, vehicle_id)
            if not vehicle:
                raise VehicleNotFoundError(vehicle_id)
            vehicle.is_active = active
            vehicle.updated_at = utcnow()
            await db.commit()
            return VehicleRecord.model_validate(vehicle)


class SqlBookingStore:
    """
    Booking persistence over an async SQLAlchemy session factory.

    create_if_no_conflict holds the per-vehicle lock and a row lock on the
    vehicle (SELECT ... FOR UPDATE, honoured by PostgreSQL) across the overlap
    query and the insert, and commits before either lock is released. Two
    overlapping creates for the same vehicle can therefore never both commit.
    """

    def __init__(self, sessions, locks: VehicleLocks | None = None, timeout: float = DEFAULT_TIMEOUT):
        self._sessions = sessions
        self._locks = locks or VehicleLocks()
        self._timeout = timeout

    # ---- create ----

    async def create_if_no_conflict(self, draft: NewBooking) -> BookingRecord:
        return await run_guarded("create booking", self._create(draft), self._timeout)

    async def _create(self, draft: NewBooking) -> BookingRecord:
        async with self._locks.hold(draft.vehicle_id):
            try:
                return await self._check_and_insert(draft)
            except IntegrityError:
                # another process inserted the same idempotency key first
                if draft.idempotency_key:
                    existing = await self._get_by_key(draft.idempotency_key)
                    if existing is not None:
                        return existing
                raise

    async def _check_and_insert(self, draft: NewBooking) -> BookingRecord:
        async with self._sessions() as db:
            async with db.begin():
                if draft.idempotency_key:
                    res = await db.execute(
                        select(Booking).where(Booking.idempotency_key == draft.idempotency_key)
                    )
                    existing = res.scalar_one_or_none()
                    if existing is not None:
                        logger.info(
                            "Idempotent replay of booking %s (key %s)", existing.id, draft.idempotency_key
                        )
                        return BookingRecord.model_validate(existing)

                res = await db.execute(
                    select(Vehicle).where(Vehicle.id == draft.vehicle_id).with_for_update()
                )
                vehicle = res.scalar_one_or_none()
                if not vehicle:
                    raise VehicleNotFoundError(draft.vehicle_id)
                if not vehicle.is_active:
                    raise VehicleInactiveError(draft.vehicle_id)

                res = await db.execute(
                    overlap_query(draft.vehicle_id, draft.start_time, draft.end_time, StatusFilter.ACTIVE)
                )
                conflicts = res.scalars().all()
                if conflicts:
                    raise BookingConflictError(draft.vehicle_id, [b.id for b in conflicts])

                now = utcnow()
                booking = Booking(
                    vehicle_id=draft.vehicle_id,
                    customer_id=draft.customer_id,
                    origin_code=draft.origin_code,
                    destination_code=draft.destination_code,
                    start_time=as_utc(draft.start_time),
                    end_time=as_utc(draft.end_time),
                    estimated_ride_duration_hours=draft.estimated_ride_duration_hours,
                    status=draft.status.value,
                    estimated_cost=draft.estimated_cost,
                    total_distance=draft.total_distance,
                    notes=draft.notes,
                    idempotency_key=draft.idempotency_key,
                    created_at=now,
                    updated_at=now,
                )
                booking.vehicle = vehicle
                db.add(booking)
                await db.flush()

            return BookingRecord.model_validate(booking)

    # ---- reads ----

    async def get_by_id(self, booking_id: int) -> BookingRecord:
        return await run_guarded("get booking", self._get(booking_id), self._timeout)

    async def _get(self, booking_id: int) -> BookingRecord:
        async with self._sessions() as db:
            res = await db.execute(select(Booking).where(Booking.id == booking_id))
            booking = res.scalar_one_or_none()
            if not booking:
                raise BookingNotFoundError(booking_id)
            return BookingRecord.model_validate(booking)

    async def get_by_idempotency_key(self, key: str) -> BookingRecord | None:
        return await run_guarded("get booking by idempotency key", self._get_by_key(key), self._timeout)

    async def _get_by_key(self, key: str) -> BookingRecord | None:
        async with self._sessions() as db:
            res = await db.execute(select(Booking).where(Booking.idempotency_key == key))
            booking = res.scalar_one_or_none()
            return BookingRecord.model_validate(booking) if booking else None

    async def find_overlapping(
        self,
        vehicle_id: int,
        start: datetime,
        end: datetime,
        status_filter: StatusFilter,
        exclude_id: int | None = None,
    ) -> List[BookingRecord]:
        async def op():
            async with self._sessions() as db:
                res = await db.execute(overlap_query(vehicle_id, start, end, status_filter, exclude_id))
                return [BookingRecord.model_validate(b) for b in res.scalars().all()]

        return await run_guarded("find overlapping bookings", op(), self._timeout)

    async def list_bookings(self, filters: BookingFilter) -> BookingPage:
        conditions = []
        if filters.status:
            conditions.append(Booking.status == filters.status.value)
        if filters.vehicle_id is not None:
            conditions.append(Booking.vehicle_id == filters.vehicle_id)
        if filters.customer_id:
            conditions.append(Booking.customer_id == filters.customer_id)
        if filters.origin_code:
            conditions.append(Booking.origin_code == filters.origin_code)
        if filters.destination_code:
            conditions.append(Booking.destination_code == filters.destination_code)
        if filters.from_date:
            conditions.append(Booking.start_time >= as_utc(filters.from_date))
        if filters.to_date:
            conditions.append(Booking.start_time <= as_utc(filters.to_date))

        async def op():
            async with self._sessions() as db:
                total = await db.scalar(select(func.count()).select_from(Booking).where(*conditions))
                res = await db.execute(
                    select(Booking)
                    .where(*conditions)
                    .order_by(Booking.created_at.desc(), Booking.id.desc())
                    .offset(filters.skip)
                    .limit(filters.limit)
                )
                bookings = [BookingRecord.model_validate(b) for b in res.scalars().all()]
                return BookingPage(bookings=bookings, total=total or 0, skip=filters.skip, limit=filters.limit)

        return await run_guarded("list bookings", op(), self._timeout)

    async def list_upcoming(self, now: datetime, until: datetime, limit: int = 50) -> List[BookingRecord]:
        stmt = (
            select(Booking)
            .where(
                Booking.start_time >= as_utc(now),
                Booking.start_time <= as_utc(until),
                Booking.status.in_(_values(CANCELLABLE_STATUSES)),
            )
            .order_by(Booking.start_time.asc())
            .limit(limit)
        )

        async def op():
            async with self._sessions() as db:
                res = await db.execute(stmt)
                return [BookingRecord.model_validate(b) for b in res.scalars().all()]

        return await run_guarded("list upcoming bookings", op(), self._timeout)

    # ---- writes ----

    async def deactivate_vehicle_if_idle(self, vehicle_id: int, now: datetime) -> VehicleRecord:
        return await run_guarded(
            "deactivate vehicle", self._deactivate_if_idle(vehicle_id, now), self._timeout
        )

    async def _deactivate_if_idle(self, vehicle_id: int, now: datetime) -> VehicleRecord:
        # same lock and row lock as create_if_no_conflict
        async with self._locks.hold(vehicle_id):
            async with self._sessions() as db:
                async with db.begin():
                    res = await db.execute(
                        select(Vehicle).where(Vehicle.id == vehicle_id).with_for_update()
                    )
                    vehicle = res.scalar_one_or_none()
                    if not vehicle:
                        raise VehicleNotFoundError(vehicle_id)

                    if vehicle.is_active:
                        open_count = (await db.scalar(open_bookings_count_query(vehicle_id, now))) or 0
                        if open_count:
                            raise VehicleHasActiveBookingsError(
                                f"Cannot deactivate vehicle {vehicle_id}: it has {open_count} active booking(s)"
                            )
                        vehicle.is_active = False
                        vehicle.updated_at = utcnow()

                return VehicleRecord.model_validate(vehicle)

    async def update_status(
        self,
        booking_id: int,
        expected: BookingStatus,
        new_status: BookingStatus,
        fields: dict | None = None,
    ) -> BookingRecord:
        return await run_guarded(
            "update booking status",
            self._update_status(booking_id, expected, new_status, fields or {}),
            self._timeout,
        )

    async def _update_status(self, booking_id, expected, new_status, fields) -> BookingRecord:
        async with self._sessions() as db:
            async with db.begin():
                res = await db.execute(
                    update(Booking)
                    .where(Booking.id == booking_id, Booking.status == expected.value)
                    .values(status=new_status.value, updated_at=utcnow(), **fields)
                    .execution_options(synchronize_session=False)
                )
                if res.rowcount == 0:
                    current = await db.get(Booking, booking_id)
                    if not current:
                        raise BookingNotFoundError(booking_id)
                    # lost a race with another transition
                    raise InvalidStatusTransitionError(current.status, new_status.value)

        return await self._get(booking_id)

    async def delete_terminal(self, booking_id: int) -> BookingRecord:
        return await run_guarded("delete booking", self._delete_terminal(booking_id), self._timeout)

    async def _delete_terminal(self, booking_id: int) -> BookingRecord:
        terminal = _values(TERMINAL_STATUSES)
        async with self._sessions() as db:
            async with db.begin():
                res = await db.execute(select(Booking).where(Booking.id == booking_id))
                booking = res.scalar_one_or_none()
                if not booking:
                    raise BookingNotFoundError(booking_id)
                record = BookingRecord.model_validate(booking)
                if booking.status not in terminal:
                    raise NotDeletableError(
                        f"Booking {booking_id} is {booking.status}; only completed or cancelled bookings can be deleted"
                    )

                res = await db.execute(
                    delete(Booking)
                    .where(Booking.id == booking_id, Booking.status.in_(terminal))
                    .execution_options(synchronize_session=False)
                )
                if res.rowcount == 0:
                    raise NotDeletableError(f"Booking {booking_id} changed while deleting")

        return record
