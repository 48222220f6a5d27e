from datetime import timedelta

import pytest

from fleet_booking.enums import BookingStatus, VehicleType
from fleet_booking.errors import InvalidCapacityError, InvalidLocationCodeError, InvalidVehicleTypeError

H = timedelta(hours=1)


async def test_suitable_vehicle_is_available(services, make_vehicle, base_time):
    vehicle = await make_vehicle(capacity_kg=5000)
    start = base_time + 2 * H

    result = await services.availability.find_available(3000, "110001", "110025", start)

    assert [v.id for v in result.available_vehicles] == [vehicle.id]
    assert result.estimated_ride_duration_hours == 0.5
    assert result.estimated_end_time == start + timedelta(minutes=30)
    assert result.duration_display == "30 minutes"
    assert result.available_vehicles[0].estimated_end_time == start + timedelta(minutes=30)


async def test_filters_capacity_type_and_active(services, lifecycle, make_vehicle, base_time):
    small = await make_vehicle(capacity_kg=1000, name="Small")
    van = await make_vehicle(capacity_kg=4000, vehicle_type=VehicleType.VAN, name="Van")
    truck = await make_vehicle(capacity_kg=8000, name="Big")
    retired = await make_vehicle(capacity_kg=9000, name="Retired")
    await lifecycle.deactivate_vehicle(retired.id)

    everything = await services.availability.find_available(2000, "110001", "110003", base_time)
    trucks = await services.availability.find_available(
        2000, "110001", "110003", base_time, vehicle_type=VehicleType.TRUCK
    )

    assert [v.id for v in everything.available_vehicles] == [van.id, truck.id]
    assert small.id not in [v.id for v in everything.available_vehicles]
    assert [v.id for v in trucks.available_vehicles] == [truck.id]


async def test_booked_vehicle_is_suitable_but_not_available(services, make_vehicle, make_booking, base_time):
    busy = await make_vehicle(capacity_kg=5000, name="Busy")
    free = await make_vehicle(capacity_kg=6000, name="Free")
    await make_booking(busy.id, base_time, base_time + 3 * H)

    result = await services.availability.find_available(3000, "110001", "110003", base_time + H)

    assert [v.id for v in result.available_vehicles] == [free.id]
    assert result.total_suitable == 2
    assert result.total_available == 1


async def test_completed_and_cancelled_bookings_do_not_block(
    services, lifecycle, make_vehicle, make_booking, base_time
):
    vehicle = await make_vehicle()
    done = await make_booking(vehicle.id, base_time, base_time + 2 * H)
    await lifecycle.transition_status(done.id, BookingStatus.IN_PROGRESS)
    await lifecycle.transition_status(done.id, BookingStatus.COMPLETED)
    dropped = await make_booking(vehicle.id, base_time + 2 * H, base_time + 4 * H)
    await lifecycle.cancel(dropped.id)

    result = await services.availability.find_available(1000, "110001", "110003", base_time + H)

    assert [v.id for v in result.available_vehicles] == [vehicle.id]


async def test_sorted_by_capacity_then_newest(services, make_vehicle, base_time):
    big = await make_vehicle(capacity_kg=9000, name="Big")
    older = await make_vehicle(capacity_kg=5000, name="Older")
    newer = await make_vehicle(capacity_kg=5000, name="Newer")

    result = await services.availability.find_available(1000, "110001", "110003", base_time)

    assert [v.id for v in result.available_vehicles] == [newer.id, older.id, big.id]


async def test_enhanced_duration_on_request(services, make_vehicle, base_time):
    await make_vehicle(capacity_kg=5000)

    plain = await services.availability.find_available(1000, "110001", "110025", base_time)
    enhanced = await services.availability.find_available(
        1000, "110001", "110025", base_time, include_enhanced_duration=True
    )

    assert plain.available_vehicles[0].enhanced_duration_hours is None
    # 0.5 * 1.3 (truck) * 1.2 (traffic) + 0.5 loading
    assert enhanced.available_vehicles[0].enhanced_duration_hours == 1.28
    assert enhanced.estimated_ride_duration_hours == 0.5


@pytest.mark.parametrize("capacity", [0, -5, 2.5, "100", True])
async def test_invalid_capacity(services, base_time, capacity):
    with pytest.raises(InvalidCapacityError):
        await services.availability.find_available(capacity, "110001", "110003", base_time)


async def test_invalid_location_code(services, base_time):
    with pytest.raises(InvalidLocationCodeError):
        await services.availability.find_available(1000, "11001", "110003", base_time)


async def test_unknown_vehicle_type(services, base_time):
    with pytest.raises(InvalidVehicleTypeError) as exc:
        await services.availability.find_available(1000, "110001", "110003", base_time, vehicle_type="spaceship")

    assert exc.value.status_code == 400
    assert "truck" in str(exc.value)


async def test_vehicle_type_name_is_case_insensitive(services, make_vehicle, base_time):
    van = await make_vehicle(capacity_kg=3000, vehicle_type=VehicleType.VAN, name="Van")
    await make_vehicle(capacity_kg=3000, name="Truck")

    result = await services.availability.find_available(1000, "110001", "110003", base_time, vehicle_type="VAN")

    assert [v.id for v in result.available_vehicles] == [van.id]
    assert result.search.vehicle_type == VehicleType.VAN


async def test_empty_fleet(services, base_time):
    result = await services.availability.find_available(1000, "110001", "110003", base_time)

    assert result.available_vehicles == []
    assert result.total_suitable == 0
    assert result.search.capacity_required == 1000
