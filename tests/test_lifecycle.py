from datetime import timedelta

import pytest

from fleet_booking.enums import BookingStatus, VehicleType
from fleet_booking.errors import (
    BookingConflictError,
    BookingNotFoundError,
    DuplicateVehicleError,
    InvalidDurationError,
    InvalidLocationCodeError,
    InvalidStatusTransitionError,
    InvalidVehicleTypeError,
    NotCancellableError,
    NotDeletableError,
    VehicleHasActiveBookingsError,
    VehicleInactiveError,
    VehicleNotFoundError,
)
from fleet_booking.lifecycle import ALLOWED_TRANSITIONS, validate_transition
from fleet_booking.schemas import BookingFilter, CreateVehicleRequest, UpdateVehicleRequest
from fleet_booking.timeutils import utcnow

H = timedelta(hours=1)


# ---- create ----

async def test_create_defaults_to_estimate_and_confirmed(make_vehicle, make_booking, publisher, base_time):
    vehicle = await make_vehicle()

    booking = await make_booking(vehicle.id, base_time)

    assert booking.status == BookingStatus.CONFIRMED
    assert booking.estimated_ride_duration_hours == 2.0
    assert booking.end_time == base_time + 2 * H
    assert booking.vehicle.id == vehicle.id
    assert booking.route == "110001 → 110003"
    assert "booking.created" in publisher.types()


async def test_create_with_explicit_duration(make_vehicle, make_booking, base_time):
    vehicle = await make_vehicle()

    booking = await make_booking(vehicle.id, base_time, duration_hours=1.5)

    assert booking.estimated_ride_duration_hours == 1.5
    assert booking.end_time == base_time + timedelta(hours=1.5)


async def test_create_accepts_iso_strings(make_vehicle, make_booking, base_time):
    vehicle = await make_vehicle()

    booking = await make_booking(vehicle.id, base_time.isoformat(), (base_time + H).isoformat())

    assert booking.start_time == base_time
    assert booking.end_time == base_time + H


async def test_create_rejects_end_before_start(make_vehicle, make_booking, base_time):
    vehicle = await make_vehicle()

    with pytest.raises(InvalidDurationError):
        await make_booking(vehicle.id, base_time, base_time)
    with pytest.raises(InvalidDurationError):
        await make_booking(vehicle.id, base_time, duration_hours=0)


async def test_create_rejects_bad_codes(make_vehicle, make_booking, base_time):
    vehicle = await make_vehicle()

    with pytest.raises(InvalidLocationCodeError):
        await make_booking(vehicle.id, base_time, origin_code="1234")


async def test_create_unknown_vehicle(make_booking, base_time):
    with pytest.raises(VehicleNotFoundError):
        await make_booking(999, base_time)


async def test_create_inactive_vehicle(lifecycle, make_vehicle, make_booking, base_time):
    vehicle = await make_vehicle()
    await lifecycle.deactivate_vehicle(vehicle.id)

    with pytest.raises(VehicleInactiveError):
        await make_booking(vehicle.id, base_time)


async def test_overlapping_create_is_rejected(lifecycle, make_vehicle, make_booking, base_time):
    vehicle = await make_vehicle()
    await make_booking(vehicle.id, base_time + 2 * H, base_time + 4 * H)

    with pytest.raises(BookingConflictError) as exc:
        await make_booking(vehicle.id, base_time + 2.5 * H, base_time + 5 * H)

    assert exc.value.vehicle_id == vehicle.id
    page = await lifecycle.list_bookings(BookingFilter(vehicle_id=vehicle.id))
    assert page.total == 1


async def test_adjacent_bookings_are_allowed(make_vehicle, make_booking, base_time):
    vehicle = await make_vehicle()
    await make_booking(vehicle.id, base_time, base_time + H)

    booking = await make_booking(vehicle.id, base_time + H, base_time + 2 * H)

    assert booking.start_time == base_time + H


async def test_completed_booking_frees_the_slot(lifecycle, make_vehicle, make_booking, base_time):
    vehicle = await make_vehicle()
    first = await make_booking(vehicle.id, base_time, base_time + 2 * H)
    await lifecycle.transition_status(first.id, BookingStatus.IN_PROGRESS)
    await lifecycle.transition_status(first.id, BookingStatus.COMPLETED)

    second = await make_booking(vehicle.id, base_time, base_time + 2 * H)

    assert second.id != first.id


async def test_idempotent_create_returns_existing(lifecycle, make_vehicle, make_booking, publisher, base_time):
    vehicle = await make_vehicle()

    first = await make_booking(vehicle.id, base_time, idempotency_key="req-1")
    again = await make_booking(vehicle.id, base_time + 10 * H, idempotency_key="req-1")

    assert again.id == first.id
    assert again.start_time == first.start_time
    assert (await lifecycle.list_bookings()).total == 1
    assert publisher.types().count("booking.created") == 1


# ---- transitions ----

ALL_STATUSES = list(BookingStatus)


@pytest.mark.parametrize("current", ALL_STATUSES)
@pytest.mark.parametrize("target", ALL_STATUSES)
def test_transition_table(current, target):
    if target in ALLOWED_TRANSITIONS[current]:
        validate_transition(current, target)
    else:
        with pytest.raises(InvalidStatusTransitionError):
            validate_transition(current, target)


def test_terminal_states_have_no_exits():
    assert ALLOWED_TRANSITIONS[BookingStatus.COMPLETED] == set()
    assert ALLOWED_TRANSITIONS[BookingStatus.CANCELLED] == set()


async def test_invalid_transition_names_both_states(lifecycle, make_vehicle, make_booking, base_time):
    vehicle = await make_vehicle()
    booking = await make_booking(vehicle.id, base_time)

    with pytest.raises(InvalidStatusTransitionError) as exc:
        await lifecycle.transition_status(booking.id, BookingStatus.COMPLETED)

    assert exc.value.current == "confirmed"
    assert exc.value.target == "completed"
    assert "confirmed" in exc.value.message and "completed" in exc.value.message


async def test_unknown_status_is_invalid_transition(lifecycle, make_vehicle, make_booking, base_time):
    vehicle = await make_vehicle()
    booking = await make_booking(vehicle.id, base_time)

    with pytest.raises(InvalidStatusTransitionError):
        await lifecycle.transition_status(booking.id, "teleported")


async def test_progress_and_completion_stamp_times(lifecycle, make_vehicle, make_booking, publisher, base_time):
    vehicle = await make_vehicle()
    booking = await make_booking(vehicle.id, base_time)

    started = await lifecycle.transition_status(booking.id, BookingStatus.IN_PROGRESS, notes="Loaded")
    finished = await lifecycle.transition_status(booking.id, BookingStatus.COMPLETED)

    assert started.actual_start_time is not None
    assert started.notes == "Loaded"
    assert finished.actual_start_time == started.actual_start_time
    assert finished.actual_end_time is not None
    assert finished.actual_duration_hours is not None
    assert finished.notes == "Loaded"
    assert publisher.types().count("booking.status_changed") == 2


async def test_terminal_booking_rejects_everything(lifecycle, make_vehicle, make_booking, base_time):
    vehicle = await make_vehicle()
    booking = await make_booking(vehicle.id, base_time)
    await lifecycle.cancel(booking.id)

    for target in ALL_STATUSES:
        with pytest.raises(InvalidStatusTransitionError):
            await lifecycle.transition_status(booking.id, target)


async def test_stale_compare_and_set_loses(services, lifecycle, make_vehicle, make_booking, base_time):
    vehicle = await make_vehicle()
    booking = await make_booking(vehicle.id, base_time)
    await lifecycle.cancel(booking.id)

    # a writer that read "confirmed" before the cancel landed
    with pytest.raises(InvalidStatusTransitionError):
        await services.bookings.update_status(booking.id, BookingStatus.CONFIRMED, BookingStatus.IN_PROGRESS)

    assert (await lifecycle.get_booking(booking.id)).status == BookingStatus.CANCELLED


async def test_transition_missing_booking(lifecycle):
    with pytest.raises(BookingNotFoundError):
        await lifecycle.transition_status(404, BookingStatus.CONFIRMED)


# ---- cancel ----

async def test_cancel_records_default_reason(lifecycle, make_vehicle, make_booking, publisher, base_time):
    vehicle = await make_vehicle()
    booking = await make_booking(vehicle.id, base_time)

    cancelled = await lifecycle.cancel(booking.id)

    assert cancelled.status == BookingStatus.CANCELLED
    assert cancelled.notes == "Cancelled by user"
    assert "booking.cancelled" in publisher.types()


async def test_cancel_with_reason(lifecycle, make_vehicle, make_booking, base_time):
    vehicle = await make_vehicle()
    booking = await make_booking(vehicle.id, base_time)

    cancelled = await lifecycle.cancel(booking.id, reason="Customer rescheduled")

    assert cancelled.notes == "Customer rescheduled"


async def test_cancel_too_close_to_start(lifecycle, make_vehicle, make_booking):
    vehicle = await make_vehicle()
    booking = await make_booking(vehicle.id, utcnow() + timedelta(minutes=30))

    with pytest.raises(NotCancellableError):
        await lifecycle.cancel(booking.id)
    with pytest.raises(NotCancellableError):
        await lifecycle.transition_status(booking.id, BookingStatus.CANCELLED)


async def test_cancel_in_progress_is_not_allowed(lifecycle, make_vehicle, make_booking, base_time):
    vehicle = await make_vehicle()
    booking = await make_booking(vehicle.id, base_time)
    await lifecycle.transition_status(booking.id, BookingStatus.IN_PROGRESS)

    with pytest.raises(NotCancellableError):
        await lifecycle.cancel(booking.id)


async def test_cancel_completed_booking_is_not_cancellable(lifecycle, make_vehicle, make_booking, base_time):
    vehicle = await make_vehicle()
    booking = await make_booking(vehicle.id, base_time)
    await lifecycle.transition_status(booking.id, BookingStatus.IN_PROGRESS)
    await lifecycle.transition_status(booking.id, BookingStatus.COMPLETED)

    with pytest.raises(NotCancellableError):
        await lifecycle.cancel(booking.id)
    # the generic transition still reports the missing edge
    with pytest.raises(InvalidStatusTransitionError):
        await lifecycle.transition_status(booking.id, BookingStatus.CANCELLED)


async def test_cancel_twice_is_not_cancellable(lifecycle, make_vehicle, make_booking, publisher, base_time):
    vehicle = await make_vehicle()
    booking = await make_booking(vehicle.id, base_time)
    await lifecycle.cancel(booking.id, reason="first")

    with pytest.raises(NotCancellableError):
        await lifecycle.cancel(booking.id, reason="second")

    assert (await lifecycle.get_booking(booking.id)).notes == "first"
    assert publisher.types().count("booking.cancelled") == 1


# ---- delete ----

async def test_delete_completed_booking(lifecycle, make_vehicle, make_booking, publisher, base_time):
    vehicle = await make_vehicle()
    booking = await make_booking(vehicle.id, base_time)
    await lifecycle.transition_status(booking.id, BookingStatus.IN_PROGRESS)
    await lifecycle.transition_status(booking.id, BookingStatus.COMPLETED)

    deleted = await lifecycle.delete(booking.id)

    assert deleted.id == booking.id
    assert deleted.status == BookingStatus.COMPLETED
    assert "booking.deleted" in publisher.types()
    with pytest.raises(BookingNotFoundError):
        await lifecycle.get_booking(booking.id)


async def test_delete_confirmed_booking_fails(lifecycle, make_vehicle, make_booking, base_time):
    vehicle = await make_vehicle()
    booking = await make_booking(vehicle.id, base_time)

    with pytest.raises(NotDeletableError):
        await lifecycle.delete(booking.id)

    assert (await lifecycle.get_booking(booking.id)).status == BookingStatus.CONFIRMED


async def test_store_refuses_to_delete_open_booking(services, make_vehicle, make_booking, base_time):
    vehicle = await make_vehicle()
    booking = await make_booking(vehicle.id, base_time)

    with pytest.raises(NotDeletableError):
        await services.bookings.delete_terminal(booking.id)


# ---- reads ----

async def test_list_bookings_filters(lifecycle, make_vehicle, make_booking, base_time):
    vehicle = await make_vehicle()
    await make_booking(vehicle.id, base_time, customer_id="alice")
    await make_booking(vehicle.id, base_time + 5 * H, customer_id="bob")
    await make_booking(vehicle.id, base_time + 10 * H, customer_id="alice")

    alice = await lifecycle.list_bookings(BookingFilter(customer_id="alice"))
    page = await lifecycle.list_bookings(BookingFilter(skip=1, limit=1))
    later = await lifecycle.list_bookings(BookingFilter(from_date=base_time + 4 * H))

    assert alice.total == 2
    assert {b.customer_id for b in alice.bookings} == {"alice"}
    assert page.total == 3 and len(page.bookings) == 1
    assert later.total == 2


async def test_upcoming_bookings(lifecycle, make_vehicle, make_booking):
    vehicle = await make_vehicle()
    now = utcnow()
    soon = await make_booking(vehicle.id, now + 2 * H)
    await make_booking(vehicle.id, now + 72 * H)
    past = await make_booking(vehicle.id, now - 5 * H)

    upcoming = await lifecycle.upcoming()

    ids = [b.id for b in upcoming]
    assert ids == [soon.id]
    assert past.id not in ids


# ---- vehicles ----

async def test_duplicate_registration(make_vehicle):
    await make_vehicle(registration_number="ka-01-ab-1234")

    with pytest.raises(DuplicateVehicleError):
        await make_vehicle(registration_number="KA-01-AB-1234")


async def test_vehicle_fields_are_normalized(lifecycle):
    vehicle = await lifecycle.create_vehicle(
        CreateVehicleRequest(name="  Heavy   Hauler ", capacity_kg=12500, tyres=10, registration_number="mh12xy")
    )

    assert vehicle.name == "Heavy Hauler"
    assert vehicle.registration_number == "MH12XY"
    assert vehicle.capacity_tonnes == 12.5


async def test_update_vehicle_applies_only_given_fields(lifecycle, make_vehicle, publisher):
    vehicle = await make_vehicle(capacity_kg=5000, name="Truck", registration_number="DL01AA0001")

    updated = await lifecycle.update_vehicle(
        vehicle.id, UpdateVehicleRequest(name="  Big   Truck ", capacity_kg=7500)
    )

    assert updated.name == "Big Truck"
    assert updated.capacity_kg == 7500
    assert updated.tyres == vehicle.tyres
    assert updated.registration_number == "DL01AA0001"
    assert updated.vehicle_type == VehicleType.TRUCK
    event_type, data = publisher.events[-1]
    assert event_type == "vehicle.updated"
    assert data["changed_fields"] == ["capacity_kg", "name"]


async def test_update_vehicle_rejects_taken_registration(lifecycle, make_vehicle):
    await make_vehicle(registration_number="DL01AA0001")
    other = await make_vehicle(registration_number="DL01AA0002")

    with pytest.raises(DuplicateVehicleError):
        await lifecycle.update_vehicle(other.id, UpdateVehicleRequest(registration_number="dl01aa0001"))

    assert (await lifecycle._vehicles.get_by_id(other.id)).registration_number == "DL01AA0002"


async def test_update_vehicle_keeps_its_own_registration(lifecycle, make_vehicle):
    vehicle = await make_vehicle(registration_number="DL01AA0001")

    updated = await lifecycle.update_vehicle(
        vehicle.id, UpdateVehicleRequest(registration_number="dl01aa0001", vehicle_type="van")
    )

    assert updated.registration_number == "DL01AA0001"
    assert updated.vehicle_type == VehicleType.VAN


async def test_update_vehicle_deactivation_is_guarded(lifecycle, make_vehicle, make_booking, base_time):
    vehicle = await make_vehicle()
    booking = await make_booking(vehicle.id, base_time)

    with pytest.raises(VehicleHasActiveBookingsError):
        await lifecycle.update_vehicle(vehicle.id, UpdateVehicleRequest(is_active=False))

    await lifecycle.cancel(booking.id)
    retired = await lifecycle.update_vehicle(vehicle.id, UpdateVehicleRequest(is_active=False))
    assert retired.is_active is False

    restored = await lifecycle.update_vehicle(vehicle.id, UpdateVehicleRequest(is_active=True))
    assert restored.is_active is True


async def test_update_missing_vehicle(lifecycle):
    with pytest.raises(VehicleNotFoundError):
        await lifecycle.update_vehicle(999, UpdateVehicleRequest(name="Ghost"))


async def test_search_vehicles_by_name_or_registration(services, make_vehicle):
    tata = await make_vehicle(name="Tata Ace", registration_number="DL01AA0001")
    eicher = await make_vehicle(name="Eicher Pro", registration_number="MH12ZZ9999")

    by_name = await services.vehicles.list_vehicles(q="tata")
    by_registration = await services.vehicles.list_vehicles(q="zz99")
    wildcard = await services.vehicles.list_vehicles(q="%")

    assert [v.id for v in by_name] == [tata.id]
    assert [v.id for v in by_registration] == [eicher.id]
    assert wildcard == []


async def test_list_vehicles_capacity_range(services, make_vehicle):
    await make_vehicle(capacity_kg=1000, name="Small")
    mid = await make_vehicle(capacity_kg=4000, name="Mid")
    await make_vehicle(capacity_kg=9000, name="Large")

    vehicles = await services.vehicles.list_vehicles(min_capacity=2000, max_capacity=5000)

    assert [v.id for v in vehicles] == [mid.id]


async def test_unknown_vehicle_type_filter(services):
    with pytest.raises(InvalidVehicleTypeError):
        await services.vehicles.list_vehicles(vehicle_type="spaceship")


async def test_deactivate_blocked_by_open_booking(lifecycle, make_vehicle, make_booking, publisher, base_time):
    vehicle = await make_vehicle()
    booking = await make_booking(vehicle.id, base_time)

    with pytest.raises(VehicleHasActiveBookingsError):
        await lifecycle.deactivate_vehicle(vehicle.id)

    await lifecycle.cancel(booking.id)
    deactivated = await lifecycle.deactivate_vehicle(vehicle.id)

    assert deactivated.is_active is False
    assert "vehicle.deactivated" in publisher.types()


async def test_deactivate_keeps_existing_bookings(services, lifecycle, make_vehicle, make_booking):
    vehicle = await make_vehicle()
    past = await make_booking(vehicle.id, utcnow() - 10 * H)

    await lifecycle.deactivate_vehicle(vehicle.id)

    assert (await lifecycle.get_booking(past.id)).status == BookingStatus.CONFIRMED


async def test_publisher_failure_does_not_fail_operation(services, make_vehicle, base_time):
    class Broken:
        async def emit(self, event_type, data):
            raise RuntimeError("broker down")

    services.lifecycle._publisher = Broken()

    vehicle = await make_vehicle()
    booking = await services.lifecycle.create(vehicle.id, "c", "110001", "110003", base_time)

    assert booking.id
