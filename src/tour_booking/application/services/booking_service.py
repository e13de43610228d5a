"""Booking service implementing the booking use cases."""

from dataclasses import dataclass, field
from datetime import date, time, timedelta
from typing import Dict, List, Optional, Union
from uuid import UUID

from ..ports.repositories import BookingStore
from ...domain.entities.booking import Booking, BookingRequest, TimelineEvent
from ...domain.exceptions import BookingNotFound
from ...domain.value_objects.booking_number import BookingNumber
from ...domain.value_objects.price_breakdown import PriceBreakdown
from .availability_engine import AvailabilityEngine, AvailabilityResult
from .booking_coordinator import BookingCoordinator
from .pricing_evaluator import PricingEvaluator
from .snapshots import SnapshotProvider


@dataclass
class DaySchedule:
    """Live bookings of one day grouped by the resources they occupy."""

    date: date
    bookings: List[Booking] = field(default_factory=list)
    by_vehicle: Dict[int, List[Booking]] = field(default_factory=dict)
    by_driver: Dict[int, List[Booking]] = field(default_factory=dict)


class BookingService:
    """Application service for tour bookings.

    Availability and pricing queries are read-only and never lock. Every write
    goes through the coordinator.
    """

    def __init__(
        self,
        engine: AvailabilityEngine,
        evaluator: PricingEvaluator,
        snapshots: SnapshotProvider,
        booking_store: BookingStore,
        coordinator: BookingCoordinator,
        hold_expiry: timedelta = timedelta(minutes=15),
    ):
        self._engine = engine
        self._evaluator = evaluator
        self._snapshots = snapshots
        self._booking_store = booking_store
        self._coordinator = coordinator
        self._hold_expiry = hold_expiry

    async def check_availability(self, request: BookingRequest) -> AvailabilityResult:
        """Feasible start times and a suggested vehicle/driver pair."""
        self._engine.validate(request)
        resources = await self._snapshots.resources(request.date)
        rules = await self._snapshots.rules()
        bookings = await self._booking_store.list_active_for_date(request.date)
        return self._engine.evaluate(request, resources, rules, bookings)

    async def quote_price(self, request: BookingRequest, vehicle_type: Optional[str] = None) -> PriceBreakdown:
        """Price a request against the current rule snapshot."""
        self._engine.validate(request)
        rules = await self._snapshots.rules()
        return self._evaluator.price(request, vehicle_type, rules)

    async def commit_booking(self, request: BookingRequest, selected_start: time) -> Booking:
        """Hold a booking for ``selected_start``; the only way bookings are created."""
        return await self._coordinator.commit(request, selected_start)

    async def release_booking(self, booking_id: UUID) -> Booking:
        return await self._coordinator.release(booking_id)

    async def confirm_booking(self, booking_id: UUID) -> Booking:
        return await self._coordinator.confirm(booking_id)

    async def complete_booking(self, booking_id: UUID) -> Booking:
        return await self._coordinator.complete(booking_id)

    async def cancel_booking(self, booking_id: UUID, reason: str = "") -> Booking:
        return await self._coordinator.cancel(booking_id, reason)

    async def release_expired_holds(self, max_age: Optional[timedelta] = None) -> List[Booking]:
        """Release holds older than ``max_age`` (default: the configured hold expiry)."""
        return await self._coordinator.release_expired_holds(max_age or self._hold_expiry)

    async def get_booking(self, booking_id: UUID) -> Booking:
        booking = await self._booking_store.find_by_id(booking_id)
        if booking is None:
            raise BookingNotFound(f"Booking not found: {booking_id}")
        return booking

    async def get_booking_by_number(self, booking_number: Union[str, BookingNumber]) -> Booking:
        if isinstance(booking_number, str):
            try:
                booking_number = BookingNumber.parse(booking_number)
            except ValueError:
                raise BookingNotFound(f"Booking not found: {booking_number}") from None
        booking = await self._booking_store.find_by_number(booking_number)
        if booking is None:
            raise BookingNotFound(f"Booking not found: {booking_number}")
        return booking

    async def get_timeline(self, booking_id: UUID) -> List[TimelineEvent]:
        """Timeline events in the order they were written."""
        await self.get_booking(booking_id)
        return await self._booking_store.list_timeline(booking_id)

    async def get_day_schedule(self, target_date: date) -> DaySchedule:
        bookings = await self._booking_store.list_active_for_date(target_date)
        schedule = DaySchedule(date=target_date, bookings=bookings)
        for booking in bookings:
            schedule.by_vehicle.setdefault(booking.vehicle_id, []).append(booking)
            schedule.by_driver.setdefault(booking.driver_id, []).append(booking)
        return schedule
