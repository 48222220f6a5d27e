from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Header, Query, Request

from .enums import BookingStatus, VehicleType
from .schemas import (
    AvailabilityResult,
    BookingFilter,
    BookingPage,
    BookingRecord,
    CancelBookingRequest,
    ConflictCheckRequest,
    ConflictCheckResult,
    CreateBookingRequest,
    CreateVehicleRequest,
    DeletedBooking,
    UpdateStatusRequest,
    UpdateVehicleRequest,
    VehicleRecord,
)
from .services import FleetServices

router = APIRouter()


def get_services(request: Request) -> FleetServices:
    return request.app.state.services


# ---- vehicles ----

@router.post("/vehicles", response_model=VehicleRecord, status_code=201)
async def create_vehicle(data: CreateVehicleRequest, services: FleetServices = Depends(get_services)):
    return await services.lifecycle.create_vehicle(data)


@router.get("/vehicles", response_model=List[VehicleRecord])
async def list_vehicles(
    is_active: Optional[bool] = None,
    vehicle_type: Optional[VehicleType] = None,
    q: Optional[str] = Query(None, max_length=100),
    min_capacity: Optional[int] = Query(None, ge=0),
    max_capacity: Optional[int] = Query(None, ge=0),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=500),
    services: FleetServices = Depends(get_services),
):
    return await services.vehicles.list_vehicles(
        is_active=is_active,
        vehicle_type=vehicle_type,
        skip=skip,
        limit=limit,
        q=q,
        min_capacity=min_capacity,
        max_capacity=max_capacity,
    )


@router.get("/vehicles/search", response_model=List[VehicleRecord])
async def search_vehicles(
    q: str = Query(..., min_length=1, max_length=100),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=500),
    services: FleetServices = Depends(get_services),
):
    return await services.vehicles.list_vehicles(q=q, skip=skip, limit=limit)


@router.get("/vehicles/available", response_model=AvailabilityResult)
async def find_available_vehicles(
    capacity_required: int,
    origin_code: str,
    destination_code: str,
    start_time: datetime,
    vehicle_type: Optional[VehicleType] = None,
    include_enhanced_duration: bool = False,
    services: FleetServices = Depends(get_services),
):
    return await services.availability.find_available(
        capacity_required,
        origin_code,
        destination_code,
        start_time,
        vehicle_type=vehicle_type,
        include_enhanced_duration=include_enhanced_duration,
    )


@router.get("/vehicles/{vehicle_id}", response_model=VehicleRecord)
async def get_vehicle(vehicle_id: int, services: FleetServices = Depends(get_services)):
    return await services.vehicles.get_by_id(vehicle_id)


@router.put("/vehicles/{vehicle_id}", response_model=VehicleRecord)
async def update_vehicle(
    vehicle_id: int,
    data: UpdateVehicleRequest,
    services: FleetServices = Depends(get_services),
):
    return await services.lifecycle.update_vehicle(vehicle_id, data)


@router.post("/vehicles/{vehicle_id}/deactivate", response_model=VehicleRecord)
async def deactivate_vehicle(vehicle_id: int, services: FleetServices = Depends(get_services)):
    return await services.lifecycle.deactivate_vehicle(vehicle_id)


# ---- bookings ----

@router.post("/bookings", response_model=BookingRecord, status_code=201)
async def create_booking(
    data: CreateBookingRequest,
    idempotency_key: Optional[str] = Header(default=None, max_length=128),
    services: FleetServices = Depends(get_services),
):
    return await services.lifecycle.create(
        vehicle_id=data.vehicle_id,
        customer_id=data.customer_id,
        origin_code=data.origin_code,
        destination_code=data.destination_code,
        start_time=data.start_time,
        duration_hours=data.estimated_ride_duration_hours,
        end_time=data.end_time,
        estimated_cost=data.estimated_cost,
        total_distance=data.total_distance,
        notes=data.notes,
        idempotency_key=idempotency_key,
    )


@router.get("/bookings", response_model=BookingPage)
async def list_bookings(
    status: Optional[BookingStatus] = None,
    vehicle_id: Optional[int] = None,
    customer_id: Optional[str] = None,
    origin_code: Optional[str] = None,
    destination_code: Optional[str] = None,
    from_date: Optional[datetime] = None,
    to_date: Optional[datetime] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=500),
    services: FleetServices = Depends(get_services),
):
    filters = BookingFilter(
        status=status,
        vehicle_id=vehicle_id,
        customer_id=customer_id,
        origin_code=origin_code,
        destination_code=destination_code,
        from_date=from_date,
        to_date=to_date,
        skip=skip,
        limit=limit,
    )
    return await services.lifecycle.list_bookings(filters)


@router.get("/bookings/upcoming", response_model=List[BookingRecord])
async def upcoming_bookings(
    hours: int = Query(24, ge=1, le=168),
    limit: int = Query(50, ge=1, le=500),
    services: FleetServices = Depends(get_services),
):
    return await services.lifecycle.upcoming(hours=hours, limit=limit)


@router.post("/bookings/check-conflicts", response_model=ConflictCheckResult)
async def check_conflicts(data: ConflictCheckRequest, services: FleetServices = Depends(get_services)):
    return await services.lifecycle.check_conflicts(
        data.vehicle_id,
        data.start_time,
        data.end_time,
        exclude_id=data.exclude_booking_id,
        include_completed=data.include_completed,
    )


@router.get("/bookings/{booking_id}", response_model=BookingRecord)
async def get_booking(booking_id: int, services: FleetServices = Depends(get_services)):
    return await services.lifecycle.get_booking(booking_id)


@router.patch("/bookings/{booking_id}/status", response_model=BookingRecord)
async def update_booking_status(
    booking_id: int,
    data: UpdateStatusRequest,
    services: FleetServices = Depends(get_services),
):
    return await services.lifecycle.transition_status(booking_id, data.status, notes=data.notes)


@router.post("/bookings/{booking_id}/cancel", response_model=BookingRecord)
async def cancel_booking(
    booking_id: int,
    data: Optional[CancelBookingRequest] = None,
    services: FleetServices = Depends(get_services),
):
    reason = data.reason if data else None
    return await services.lifecycle.cancel(booking_id, reason=reason)


@router.delete("/bookings/{booking_id}", response_model=DeletedBooking)
async def delete_booking(booking_id: int, services: FleetServices = Depends(get_services)):
    return await services.lifecycle.delete(booking_id)
