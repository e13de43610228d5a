"""Booking endpoints.

Domain errors raised by the booking service are translated to HTTP responses
by the exception handlers registered in ``main.py``.
"""

from datetime import date as Date, timedelta
from typing import List, Optional
from uuid import UUID
from fastapi import APIRouter, Body, Path

from src.tour_booking.infrastructure.services import get_service_factory
from ..schemas.booking_schemas import (
    AvailabilityRequest,
    AvailabilityResponse,
    BookingResponse,
    CancelBookingRequest,
    CommitBookingRequest,
    DayScheduleResponse,
    PriceBreakdownResponse,
    QuoteRequest,
    ReleaseExpiredHoldsRequest,
    ReleaseExpiredHoldsResponse,
    TimelineEventResponse,
)

router = APIRouter()


@router.post("/availability")
async def check_availability(request: AvailabilityRequest) -> AvailabilityResponse:
    """Feasible start times for a tour, with a suggested vehicle and driver."""
    async with get_service_factory().get_booking_service() as booking_service:
        result = await booking_service.check_availability(request.to_domain())
    return AvailabilityResponse.from_result(result)


@router.post("/quote")
async def quote_price(request: QuoteRequest) -> PriceBreakdownResponse:
    """Price a tour without reserving anything."""
    async with get_service_factory().get_booking_service() as booking_service:
        price = await booking_service.quote_price(request.to_domain(), request.vehicle_type)
    return PriceBreakdownResponse.from_breakdown(price)


@router.post("/", status_code=201)
async def create_booking(request: CommitBookingRequest) -> BookingResponse:
    """Hold a booking at the selected start time."""
    async with get_service_factory().get_booking_service() as booking_service:
        booking = await booking_service.commit_booking(request.to_domain(), request.start_time)
    return BookingResponse.from_entity(booking)


@router.post("/holds/release-expired")
async def release_expired_holds(
    request: Optional[ReleaseExpiredHoldsRequest] = Body(None),
) -> ReleaseExpiredHoldsResponse:
    """Release every hold older than the given or configured age."""
    max_age = None
    if request is not None and request.max_age_minutes is not None:
        max_age = timedelta(minutes=request.max_age_minutes)
    async with get_service_factory().get_booking_service() as booking_service:
        released = await booking_service.release_expired_holds(max_age)
    return ReleaseExpiredHoldsResponse(
        released_count=len(released),
        booking_numbers=[str(b.booking_number) for b in released],
    )


@router.get("/schedule/{date}")
async def get_day_schedule(date: Date = Path(..., description="Date in YYYY-MM-DD format")) -> DayScheduleResponse:
    """Held and confirmed bookings of a day grouped by vehicle and driver."""
    async with get_service_factory().get_booking_service() as booking_service:
        schedule = await booking_service.get_day_schedule(date)
    return DayScheduleResponse.from_schedule(schedule)


@router.get("/number/{booking_number}")
async def get_booking_by_number(booking_number: str = Path(..., max_length=32)) -> BookingResponse:
    """Look a booking up by its confirmation number."""
    async with get_service_factory().get_booking_service() as booking_service:
        booking = await booking_service.get_booking_by_number(booking_number)
    return BookingResponse.from_entity(booking)


@router.get("/{booking_id}")
async def get_booking(booking_id: UUID = Path(..., description="Booking ID")) -> BookingResponse:
    async with get_service_factory().get_booking_service() as booking_service:
        booking = await booking_service.get_booking(booking_id)
    return BookingResponse.from_entity(booking)


@router.get("/{booking_id}/timeline")
async def get_booking_timeline(booking_id: UUID = Path(..., description="Booking ID")) -> List[TimelineEventResponse]:
    async with get_service_factory().get_booking_service() as booking_service:
        events = await booking_service.get_timeline(booking_id)
    return [TimelineEventResponse.from_event(event) for event in events]


@router.post("/{booking_id}/release")
async def release_booking(booking_id: UUID = Path(..., description="Booking ID")) -> BookingResponse:
    """Release a held booking and free its vehicle and driver."""
    async with get_service_factory().get_booking_service() as booking_service:
        booking = await booking_service.release_booking(booking_id)
    return BookingResponse.from_entity(booking)


@router.post("/{booking_id}/confirm")
async def confirm_booking(booking_id: UUID = Path(..., description="Booking ID")) -> BookingResponse:
    async with get_service_factory().get_booking_service() as booking_service:
        booking = await booking_service.confirm_booking(booking_id)
    return BookingResponse.from_entity(booking)


@router.post("/{booking_id}/complete")
async def complete_booking(booking_id: UUID = Path(..., description="Booking ID")) -> BookingResponse:
    async with get_service_factory().get_booking_service() as booking_service:
        booking = await booking_service.complete_booking(booking_id)
    return BookingResponse.from_entity(booking)


@router.post("/{booking_id}/cancel")
async def cancel_booking(
    booking_id: UUID = Path(..., description="Booking ID"),
    request: Optional[CancelBookingRequest] = Body(None),
) -> BookingResponse:
    """Administrative cancellation of a held or confirmed booking."""
    reason = request.reason if request else ""
    async with get_service_factory().get_booking_service() as booking_service:
        booking = await booking_service.cancel_booking(booking_id, reason)
    return BookingResponse.from_entity(booking)
