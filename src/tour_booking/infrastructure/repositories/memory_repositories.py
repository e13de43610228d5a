"""In-memory repository implementations for testing and development."""

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, date
from typing import AsyncIterator, Callable, Dict, Iterable, List, Optional
from uuid import UUID

from src.tour_booking.application.ports.repositories import (
    BookingStore,
    BookingTransaction,
    ResourceDirectory,
    RuleStore,
)
from src.tour_booking.domain.entities.booking import (
    Booking,
    BookingStatus,
    ItineraryShell,
    ResourceAssignment,
    TimelineEvent,
)
from src.tour_booking.domain.entities.resource import Resource
from src.tour_booking.domain.entities.rules import AvailabilityRule, PricingRule
from src.tour_booking.domain.value_objects.booking_number import BookingNumber


def _clone(booking: Booking) -> Booking:
    """Detached copy so callers never mutate stored state directly."""
    return Booking(
        booking_number=booking.booking_number,
        window=booking.window,
        vehicle_id=booking.vehicle_id,
        driver_id=booking.driver_id,
        party_size=booking.party_size,
        price=booking.price,
        booking_id=booking.id,
        status=booking.status,
        created_at=booking.created_at,
        updated_at=booking.updated_at,
    )


class InMemoryBookingTransaction(BookingTransaction):
    """Stages writes until the owning store applies them."""

    def __init__(self, store: "InMemoryBookingStore"):
        self._store = store
        self._sequences: Dict[int, int] = {}
        self._operations: List[Callable[[], None]] = []
        self.holds_sequence_lock = False

    async def next_booking_number(self, prefix: str, year: int) -> BookingNumber:
        # Held until the transaction ends, like a row lock on the counter.
        if not self.holds_sequence_lock:
            await self._store.sequence_lock.acquire()
            self.holds_sequence_lock = True
        current = self._sequences.get(year, self._store.sequence_value(year))
        self._sequences[year] = current + 1
        return BookingNumber(prefix, year, current + 1)

    async def add_booking(self, booking: Booking) -> None:
        snapshot = _clone(booking)
        self._operations.append(lambda: self._store._insert_booking(snapshot))

    async def update_booking(self, booking: Booking) -> None:
        snapshot = _clone(booking)
        self._operations.append(lambda: self._store._replace_booking(snapshot))

    async def add_assignment(self, assignment: ResourceAssignment) -> None:
        self._operations.append(lambda: self._store._assignments.__setitem__(assignment.booking_id, assignment))

    async def delete_assignment(self, booking_id: UUID) -> bool:
        existed = booking_id in self._store._assignments
        self._operations.append(lambda: self._store._assignments.pop(booking_id, None))
        return existed

    async def add_itinerary(self, itinerary: ItineraryShell) -> None:
        self._operations.append(lambda: self._store._itineraries.__setitem__(itinerary.booking_id, itinerary))

    async def append_event(self, event: TimelineEvent) -> None:
        self._operations.append(lambda: self._store._timeline.append(event))

    def apply(self) -> None:
        store = self._store
        saved = (dict(store._bookings), dict(store._assignments), dict(store._itineraries), list(store._timeline))
        try:
            for operation in self._operations:
                operation()
        except Exception:
            store._bookings, store._assignments, store._itineraries, store._timeline = saved
            raise
        store._sequences.update(self._sequences)


class InMemoryBookingStore(BookingStore):
    """In-memory implementation of the booking store.

    Staged writes are applied in one step when the transaction context exits
    cleanly and dropped otherwise, sequence allocations included.
    """

    def __init__(self):
        self._bookings: Dict[UUID, Booking] = {}
        self._assignments: Dict[UUID, ResourceAssignment] = {}
        self._itineraries: Dict[UUID, ItineraryShell] = {}
        self._timeline: List[TimelineEvent] = []
        self._sequences: Dict[int, int] = {}
        self.sequence_lock = asyncio.Lock()

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[InMemoryBookingTransaction]:
        tx = InMemoryBookingTransaction(self)
        try:
            yield tx
            tx.apply()
        finally:
            if tx.holds_sequence_lock:
                self.sequence_lock.release()

    def sequence_value(self, year: int) -> int:
        """Last committed sequence number for a year."""
        return self._sequences.get(year, 0)

    def _insert_booking(self, booking: Booking) -> None:
        if booking.id in self._bookings:
            raise ValueError(f"Booking already exists: {booking.id}")
        if any(b.booking_number == booking.booking_number for b in self._bookings.values()):
            raise ValueError(f"Duplicate booking number: {booking.booking_number}")
        self._bookings[booking.id] = booking

    def _replace_booking(self, booking: Booking) -> None:
        if booking.id not in self._bookings:
            raise ValueError(f"Booking not found: {booking.id}")
        self._bookings[booking.id] = booking

    async def find_by_id(self, booking_id: UUID) -> Optional[Booking]:
        booking = self._bookings.get(booking_id)
        return _clone(booking) if booking else None

    async def find_by_number(self, booking_number: BookingNumber) -> Optional[Booking]:
        for booking in self._bookings.values():
            if booking.booking_number == booking_number:
                return _clone(booking)
        return None

    async def list_active_for_date(self, target_date: date) -> List[Booking]:
        return sorted(
            (_clone(b) for b in self._bookings.values() if b.date == target_date and b.occupies_resources),
            key=lambda b: (b.window.start, b.booking_number),
        )

    async def list_held_created_before(self, cutoff: datetime) -> List[Booking]:
        return sorted(
            (
                _clone(b) for b in self._bookings.values()
                if b.status == BookingStatus.HELD and b.created_at < cutoff
            ),
            key=lambda b: b.created_at,
        )

    async def list_timeline(self, booking_id: UUID) -> List[TimelineEvent]:
        return [event for event in self._timeline if event.booking_id == booking_id]

    async def find_assignment(self, booking_id: UUID) -> Optional[ResourceAssignment]:
        return self._assignments.get(booking_id)

    async def find_itinerary(self, booking_id: UUID) -> Optional[ItineraryShell]:
        return self._itineraries.get(booking_id)

    def all_bookings(self) -> List[Booking]:
        return [_clone(b) for b in self._bookings.values()]


class InMemoryResourceDirectory(ResourceDirectory):
    """In-memory implementation of the resource directory."""

    def __init__(self, resources: Optional[Iterable[Resource]] = None):
        self._resources: Dict[tuple, Resource] = {}
        for resource in resources or []:
            self.add(resource)

    def add(self, resource: Resource) -> None:
        self._resources[(resource.kind, resource.id)] = resource

    async def list_active_resources(self, target_date: date) -> List[Resource]:
        return [r for r in self._resources.values() if r.is_active]


class InMemoryRuleStore(RuleStore):
    """In-memory implementation of the rule store."""

    def __init__(
        self,
        availability_rules: Optional[Iterable[AvailabilityRule]] = None,
        pricing_rules: Optional[Iterable[PricingRule]] = None,
        holidays: Optional[Iterable[date]] = None,
    ):
        self.availability_rules: List[AvailabilityRule] = list(availability_rules or [])
        self.pricing_rules: List[PricingRule] = list(pricing_rules or [])
        self.holidays: List[date] = list(holidays or [])

    async def list_availability_rules(self) -> List[AvailabilityRule]:
        return list(self.availability_rules)

    async def list_pricing_rules(self) -> List[PricingRule]:
        return list(self.pricing_rules)

    async def list_holidays(self) -> List[date]:
        return list(self.holidays)
