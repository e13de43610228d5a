"""Booking entity and the records committed alongside it."""

from dataclasses import dataclass, field
from datetime import date, datetime, time
from enum import Enum
from typing import Any, Dict, Optional
from uuid import UUID, uuid4

from ..clock import utcnow
from ..exceptions import InvalidStatusTransition
from ..value_objects.booking_number import BookingNumber
from ..value_objects.price_breakdown import PriceBreakdown
from ..value_objects.time_window import TimeWindow


class BookingStatus(Enum):
    """Booking status enumeration."""
    HELD = "held"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


VALID_STATUS_TRANSITIONS = {
    BookingStatus.HELD: {BookingStatus.CONFIRMED, BookingStatus.CANCELLED},
    BookingStatus.CONFIRMED: {BookingStatus.COMPLETED, BookingStatus.CANCELLED},
    BookingStatus.COMPLETED: set(),
    BookingStatus.CANCELLED: set(),
}


@dataclass(frozen=True)
class BookingRequest:
    """Caller intent for a tour. Never persisted."""

    date: date
    duration_minutes: int
    party_size: int
    start: Optional[time] = None
    vehicle_type: Optional[str] = None

    @property
    def duration_hours(self) -> float:
        return self.duration_minutes / 60

    def at(self, start: time) -> "BookingRequest":
        """Same request pinned to a specific start time."""
        return BookingRequest(
            date=self.date,
            duration_minutes=self.duration_minutes,
            party_size=self.party_size,
            start=start,
            vehicle_type=self.vehicle_type,
        )

    def window(self) -> TimeWindow:
        """Window of a pinned request."""
        if self.start is None:
            raise ValueError("Request has no start time")
        return TimeWindow.starting_at(self.date, self.start, self.duration_minutes)


class Booking:
    """Booking entity representing a committed tour reservation."""

    def __init__(
        self,
        booking_number: BookingNumber,
        window: TimeWindow,
        vehicle_id: int,
        driver_id: int,
        party_size: int,
        price: PriceBreakdown,
        booking_id: Optional[UUID] = None,
        status: BookingStatus = BookingStatus.HELD,
        created_at: Optional[datetime] = None,
        updated_at: Optional[datetime] = None
    ):
        if party_size < 1:
            raise ValueError("Party size must be at least 1")
        self._id = booking_id or uuid4()
        self._booking_number = booking_number
        self._window = window
        self._vehicle_id = vehicle_id
        self._driver_id = driver_id
        self._party_size = party_size
        self._price = price
        self._status = status
        self._created_at = created_at or utcnow()
        self._updated_at = updated_at or self._created_at

    @property
    def id(self) -> UUID:
        return self._id

    @property
    def booking_number(self) -> BookingNumber:
        return self._booking_number

    @property
    def window(self) -> TimeWindow:
        return self._window

    @property
    def date(self) -> date:
        return self._window.date

    @property
    def vehicle_id(self) -> int:
        return self._vehicle_id

    @property
    def driver_id(self) -> int:
        return self._driver_id

    @property
    def party_size(self) -> int:
        return self._party_size

    @property
    def price(self) -> PriceBreakdown:
        return self._price

    @property
    def status(self) -> BookingStatus:
        return self._status

    @property
    def created_at(self) -> datetime:
        return self._created_at

    @property
    def updated_at(self) -> datetime:
        return self._updated_at

    @property
    def occupies_resources(self) -> bool:
        """Every booking except a cancelled one keeps its window blocked."""
        return self._status != BookingStatus.CANCELLED

    def uses_resource(self, vehicle_id: Optional[int] = None, driver_id: Optional[int] = None) -> bool:
        return (vehicle_id is not None and vehicle_id == self._vehicle_id) or (
            driver_id is not None and driver_id == self._driver_id
        )

    def confirm(self) -> None:
        """Confirm a held booking."""
        self._transition(BookingStatus.CONFIRMED)

    def complete(self) -> None:
        """Mark a confirmed booking as completed."""
        self._transition(BookingStatus.COMPLETED)

    def cancel(self) -> None:
        """Cancel a held or confirmed booking."""
        self._transition(BookingStatus.CANCELLED)

    def release(self) -> None:
        """Give up a hold that was never finalized."""
        if self._status != BookingStatus.HELD:
            raise InvalidStatusTransition(
                f"Only held bookings can be released (booking {self._booking_number} is {self._status.value})"
            )
        self._transition(BookingStatus.CANCELLED)

    def _transition(self, new_status: BookingStatus) -> None:
        if new_status not in VALID_STATUS_TRANSITIONS[self._status]:
            raise InvalidStatusTransition(
                f"Cannot transition booking {self._booking_number} from "
                f"{self._status.value} to {new_status.value}"
            )
        self._status = new_status
        self._updated_at = utcnow()

    def __eq__(self, other: object) -> bool:
        """Check equality based on booking ID."""
        if not isinstance(other, Booking):
            return False
        return self._id == other._id

    def __hash__(self) -> int:
        return hash(self._id)

    def __str__(self) -> str:
        return f"Booking({self._booking_number}, {self._window.date} {self._window.time_range}, {self._status.value})"


@dataclass(frozen=True)
class ResourceAssignment:
    """Vehicle and driver held by a live booking."""

    booking_id: UUID
    vehicle_id: int
    driver_id: int
    window: TimeWindow


@dataclass(frozen=True)
class ItineraryShell:
    """Empty itinerary header created with each booking."""

    booking_id: UUID
    window: TimeWindow
    itinerary_id: UUID = field(default_factory=uuid4)


class TimelineEventType(Enum):
    """Booking timeline event types."""
    HELD = "booking_held"
    CONFIRMED = "booking_confirmed"
    COMPLETED = "booking_completed"
    RELEASED = "booking_released"
    CANCELLED = "booking_cancelled"


@dataclass(frozen=True)
class TimelineEvent:
    """Append-only booking history entry."""

    booking_id: UUID
    event_type: TimelineEventType
    description: str
    data: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utcnow)
