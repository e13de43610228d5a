"""Pydantic schemas for booking API requests and responses."""

from datetime import datetime, date as Date, time as Time
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from src.tour_booking.application.services.availability_engine import AvailabilityResult, AvailableSlot
from src.tour_booking.application.services.booking_service import DaySchedule
from src.tour_booking.domain.entities.booking import Booking, BookingRequest, TimelineEvent
from src.tour_booking.domain.value_objects.price_breakdown import PriceBreakdown


class TourRequest(BaseModel):
    """Tour parameters shared by availability, quote and booking requests."""
    date: Date = Field(..., description="Tour date")
    duration_hours: int = Field(..., description="Tour length in whole hours")
    party_size: int = Field(..., description="Number of guests")
    vehicle_type: Optional[str] = Field(None, max_length=50, description="Desired vehicle type, e.g. sprinter")

    @field_validator('vehicle_type')
    @classmethod
    def normalize_vehicle_type(cls, v: Optional[str]) -> Optional[str]:
        if v is None or not v.strip():
            return None
        return v.strip().lower()

    def to_domain(self, start: Optional[Time] = None) -> BookingRequest:
        return BookingRequest(
            date=self.date,
            duration_minutes=self.duration_hours * 60,
            party_size=self.party_size,
            start=start,
            vehicle_type=self.vehicle_type,
        )


class AvailabilityRequest(TourRequest):
    """Request model for an availability check."""
    start_time: Optional[Time] = Field(None, description="Only check this start time")

    def to_domain(self, start: Optional[Time] = None) -> BookingRequest:
        return super().to_domain(start or self.start_time)


class QuoteRequest(TourRequest):
    """Request model for a price quote."""


class CommitBookingRequest(TourRequest):
    """Request model for creating a booking."""
    start_time: Time = Field(..., description="Selected start time from the availability check")


class CancelBookingRequest(BaseModel):
    """Request model for an administrative cancellation."""
    reason: str = Field("", max_length=500)


class ReleaseExpiredHoldsRequest(BaseModel):
    """Request model for reaping stale holds."""
    max_age_minutes: Optional[int] = Field(None, ge=1, description="Defaults to the configured hold expiry")


class SlotResponse(BaseModel):
    """Response model for one feasible start."""
    start_time: str = Field(..., description="Start time in HH:MM format")
    end_time: str = Field(..., description="End time in HH:MM format")
    time_range: str
    vehicle_ids: List[int]
    driver_ids: List[int]

    @classmethod
    def from_slot(cls, slot: AvailableSlot) -> "SlotResponse":
        return cls(
            start_time=slot.window.start.strftime("%H:%M"),
            end_time=slot.window.end.strftime("%H:%M"),
            time_range=slot.window.format_time_range(),
            vehicle_ids=list(slot.vehicle_ids),
            driver_ids=list(slot.driver_ids),
        )


class AvailabilityResponse(BaseModel):
    """Response model for an availability check."""
    date: Date
    available: bool
    slots: List[SlotResponse]
    suggested_vehicle_id: Optional[int] = None
    suggested_driver_id: Optional[int] = None
    reason: Optional[str] = None
    detail: str = ""

    @classmethod
    def from_result(cls, result: AvailabilityResult) -> "AvailabilityResponse":
        return cls(
            date=result.request.date,
            available=result.available,
            slots=[SlotResponse.from_slot(slot) for slot in result.slots],
            suggested_vehicle_id=result.suggested_vehicle_id,
            suggested_driver_id=result.suggested_driver_id,
            reason=result.reason.value if result.reason else None,
            detail=result.detail,
        )


class PriceModifierResponse(BaseModel):
    name: str
    amount: int


class PriceBreakdownResponse(BaseModel):
    """Price breakdown; every amount is in minor units (cents)."""
    base: int
    modifiers: List[PriceModifierResponse]
    subtotal: int
    deposit_amount: int
    balance_amount: int
    total: int
    currency: str
    rule_name: Optional[str] = None

    @classmethod
    def from_breakdown(cls, price: PriceBreakdown) -> "PriceBreakdownResponse":
        return cls(
            base=price.base,
            modifiers=[PriceModifierResponse(name=m.name, amount=m.amount) for m in price.modifiers],
            subtotal=price.subtotal,
            deposit_amount=price.deposit_amount,
            balance_amount=price.balance_amount,
            total=price.total,
            currency=price.currency,
            rule_name=price.rule_name,
        )


class BookingResponse(BaseModel):
    """Response model for booking operations."""
    id: UUID
    booking_number: str
    date: Date
    start_time: str
    end_time: str
    vehicle_id: int
    driver_id: int
    party_size: int
    status: str
    price: PriceBreakdownResponse
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_entity(cls, booking: Booking) -> "BookingResponse":
        return cls(
            id=booking.id,
            booking_number=str(booking.booking_number),
            date=booking.date,
            start_time=booking.window.start.strftime("%H:%M"),
            end_time=booking.window.end.strftime("%H:%M"),
            vehicle_id=booking.vehicle_id,
            driver_id=booking.driver_id,
            party_size=booking.party_size,
            status=booking.status.value,
            price=PriceBreakdownResponse.from_breakdown(booking.price),
            created_at=booking.created_at,
            updated_at=booking.updated_at,
        )


class TimelineEventResponse(BaseModel):
    """Response model for one booking history entry."""
    event_type: str
    description: str
    data: Dict[str, Any]
    created_at: datetime

    @classmethod
    def from_event(cls, event: TimelineEvent) -> "TimelineEventResponse":
        return cls(
            event_type=event.event_type.value,
            description=event.description,
            data=dict(event.data),
            created_at=event.created_at,
        )


class DayScheduleResponse(BaseModel):
    """Live bookings of a day, with booking numbers grouped per resource."""
    date: Date
    bookings: List[BookingResponse]
    by_vehicle: Dict[int, List[str]]
    by_driver: Dict[int, List[str]]

    @classmethod
    def from_schedule(cls, schedule: DaySchedule) -> "DayScheduleResponse":
        return cls(
            date=schedule.date,
            bookings=[BookingResponse.from_entity(b) for b in schedule.bookings],
            by_vehicle={rid: [str(b.booking_number) for b in items] for rid, items in schedule.by_vehicle.items()},
            by_driver={rid: [str(b.booking_number) for b in items] for rid, items in schedule.by_driver.items()},
        )


class ReleaseExpiredHoldsResponse(BaseModel):
    released_count: int
    booking_numbers: List[str]
