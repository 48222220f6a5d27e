from datetime import timedelta

import pytest
from httpx import ASGITransport, AsyncClient

from fleet_booking.config import Settings
from fleet_booking.enums import VehicleType
from fleet_booking.main import create_app
from fleet_booking.schemas import CreateVehicleRequest
from fleet_booking.services import build_services
from fleet_booking.timeutils import utcnow


class RecordingPublisher:
    def __init__(self):
        self.events = []

    async def emit(self, event_type, data):
        self.events.append((event_type, data))

    async def close(self):
        pass

    def types(self):
        return [event_type for event_type, _ in self.events]


@pytest.fixture
def settings(tmp_path):
    return Settings(
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'fleet.db'}",
        _env_file=None,
    )


@pytest.fixture
def publisher():
    return RecordingPublisher()


@pytest.fixture
async def services(settings, publisher):
    services = build_services(settings, publisher=publisher)
    await services.database.create_all()
    yield services
    await services.close()


@pytest.fixture
def lifecycle(services):
    return services.lifecycle


@pytest.fixture
def base_time():
    # far enough ahead that cancellation cutoffs never get in the way
    return (utcnow() + timedelta(days=3)).replace(minute=0, second=0, microsecond=0)


@pytest.fixture
def make_vehicle(lifecycle):
    async def _make(capacity_kg=5000, vehicle_type=VehicleType.TRUCK, name="Truck", **kwargs):
        return await lifecycle.create_vehicle(
            CreateVehicleRequest(
                name=name,
                capacity_kg=capacity_kg,
                tyres=kwargs.pop("tyres", 6),
                vehicle_type=vehicle_type,
                **kwargs,
            )
        )

    return _make


@pytest.fixture
def make_booking(lifecycle):
    async def _make(vehicle_id, start, end=None, customer_id="cust-1", **kwargs):
        return await lifecycle.create(
            vehicle_id=vehicle_id,
            customer_id=customer_id,
            origin_code=kwargs.pop("origin_code", "110001"),
            destination_code=kwargs.pop("destination_code", "110003"),
            start_time=start,
            end_time=end,
            **kwargs,
        )

    return _make


@pytest.fixture
async def client(settings, services):
    app = create_app(settings, services=services)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
