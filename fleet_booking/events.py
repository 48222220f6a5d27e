import json
import uuid
from datetime import datetime, timezone

from .schemas import BookingRecord, VehicleRecord

BOOKING_CREATED = "booking.created"
BOOKING_STATUS_CHANGED = "booking.status_changed"
BOOKING_CANCELLED = "booking.cancelled"
BOOKING_DELETED = "booking.deleted"
VEHICLE_CREATED = "vehicle.created"
VEHICLE_DEACTIVATED = "vehicle.deactivated"
VEHICLE_UPDATED = "vehicle.updated"


def build_event(event_type: str, data: dict) -> dict:
    return {
        "event_id": str(uuid.uuid4()),
        "event_type": event_type,
        "occurred_at": datetime.now(timezone.utc).isoformat(),
        "data": data,
    }


def to_json(event: dict) -> str:
    return json.dumps(event, separators=(",", ":"), ensure_ascii=False)


def booking_data(booking: BookingRecord, **extra) -> dict:
    data = {
        "booking_id": booking.id,
        "vehicle_id": booking.vehicle_id,
        "customer_id": booking.customer_id,
        "origin_code": booking.origin_code,
        "destination_code": booking.destination_code,
        "start_time": booking.start_time.isoformat(),
        "end_time": booking.end_time.isoformat(),
        "status": booking.status.value,
    }
    data.update(extra)
    return data


def vehicle_data(vehicle: VehicleRecord) -> dict:
    return {
        "vehicle_id": vehicle.id,
        "name": vehicle.name,
        "capacity_kg": vehicle.capacity_kg,
        "vehicle_type": vehicle.vehicle_type.value,
        "is_active": vehicle.is_active,
    }
