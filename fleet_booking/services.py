import logging
from dataclasses import dataclass
from datetime import timedelta

import redis.asyncio as redis

from .availability import AvailabilityEngine
from .config import Settings
from .conflicts import IntervalConflictDetector
from .db import Database
from .lifecycle import BookingLifecycle
from .locks import VehicleLocks
from .publisher import RabbitPublisher
from .stores import SqlBookingStore, SqlVehicleCatalog

logger = logging.getLogger(__name__)


@dataclass
class FleetServices:
    database: Database
    vehicles: SqlVehicleCatalog
    bookings: SqlBookingStore
    detector: IntervalConflictDetector
    availability: AvailabilityEngine
    lifecycle: BookingLifecycle
    publisher: RabbitPublisher | None = None
    redis_client: object | None = None

    async def close(self):
        if self.publisher is not None:
            try:
                await self.publisher.close()
            except Exception as e:
                logger.warning("Error closing RabbitMQ connection: %s", e)
        if self.redis_client is not None:
            try:
                await self.redis_client.aclose()
            except Exception as e:
                logger.warning("Error closing Redis connection: %s", e)
        await self.database.close()


def build_services(settings: Settings, publisher=None) -> FleetServices:
    """Construct the store handles and engine objects for one process."""
    database = Database(settings.DATABASE_URL, echo=settings.SQL_ECHO)

    redis_client = None
    if settings.REDIS_URL:
        redis_client = redis.from_url(settings.REDIS_URL, decode_responses=True)
        logger.info("Distributed vehicle locks enabled")

    locks = VehicleLocks(
        redis_client,
        lock_timeout=settings.LOCK_TIMEOUT_SECONDS,
        wait_timeout=settings.LOCK_WAIT_SECONDS,
    )

    if publisher is None:
        publisher = RabbitPublisher(settings.RABBIT_URL)

    timeout = settings.STORE_TIMEOUT_SECONDS
    vehicles = SqlVehicleCatalog(database.sessions, timeout=timeout)
    bookings = SqlBookingStore(database.sessions, locks=locks, timeout=timeout)
    detector = IntervalConflictDetector(bookings)

    return FleetServices(
        database=database,
        vehicles=vehicles,
        bookings=bookings,
        detector=detector,
        availability=AvailabilityEngine(
            vehicles, detector, concurrency=settings.AVAILABILITY_CONCURRENCY
        ),
        lifecycle=BookingLifecycle(
            vehicles,
            bookings,
            detector,
            publisher=publisher,
            cancellation_cutoff=timedelta(minutes=settings.CANCELLATION_CUTOFF_MINUTES),
        ),
        publisher=publisher,
        redis_client=redis_client,
    )
