import asyncio
import logging
from contextlib import asynccontextmanager

from redis.exceptions import LockError, RedisError

from .errors import StoreUnavailableError

logger = logging.getLogger(__name__)


def lock_key(vehicle_id) -> str:
    return f"vehicle_lock:{vehicle_id}"


class VehicleLocks:
    """
    Per-vehicle mutual exclusion held across a booking's conflict check and insert.

    Always serializes callers in this process with an asyncio.Lock per vehicle.
    When a redis client is given, also takes a redis lock so separate processes
    serialize on the same vehicle.
    """

    def __init__(self, redis_client=None, lock_timeout: float = 10.0, wait_timeout: float = 5.0):
        self._redis = redis_client
        self._lock_timeout = lock_timeout
        self._wait_timeout = wait_timeout
        self._local: dict[int, asyncio.Lock] = {}
        self._waiters: dict[int, int] = {}

    @property
    def in_use(self) -> int:
        """Vehicles with a current holder or waiter."""
        return len(self._local)

    @property
    def distributed(self) -> bool:
        return self._redis is not None

    @asynccontextmanager
    async def hold(self, vehicle_id: int):
        local = self._local.setdefault(vehicle_id, asyncio.Lock())
        self._waiters[vehicle_id] = self._waiters.get(vehicle_id, 0) + 1
        try:
            async with local:
                if self._redis is None:
                    yield
                else:
                    async with self._hold_redis(vehicle_id):
                        yield
        finally:
            # last holder or waiter out drops the entry
            self._waiters[vehicle_id] -= 1
            if not self._waiters[vehicle_id]:
                del self._waiters[vehicle_id]
                del self._local[vehicle_id]

    @asynccontextmanager
    async def _hold_redis(self, vehicle_id: int):
        lock = self._redis.lock(
            lock_key(vehicle_id),
            timeout=self._lock_timeout,
            blocking_timeout=self._wait_timeout,
        )
        try:
            acquired = await lock.acquire()
        except RedisError as e:
            raise StoreUnavailableError(f"Lock service unavailable: {e}") from e
        if not acquired:
            raise StoreUnavailableError(
                f"Timed out after {self._wait_timeout}s waiting for vehicle {vehicle_id} lock"
            )

        try:
            yield
        finally:
            try:
                await lock.release()
            except LockError:
                # expired before release; the transaction has already committed or rolled back
                logger.warning("Lock for vehicle %s expired before release", vehicle_id)
            except RedisError as e:
                logger.warning("Failed to release lock for vehicle %s: %s", vehicle_id, e)
