"""Port interfaces for repositories (Dependency Inversion Principle)."""

from abc import ABC, abstractmethod
from datetime import datetime, date
from typing import AsyncContextManager, List, Optional, TYPE_CHECKING
from uuid import UUID

if TYPE_CHECKING:
    from src.tour_booking.domain.entities.booking import (
        Booking,
        ItineraryShell,
        ResourceAssignment,
        TimelineEvent,
    )
    from src.tour_booking.domain.entities.resource import Resource
    from src.tour_booking.domain.entities.rules import AvailabilityRule, PricingRule
    from src.tour_booking.domain.value_objects.booking_number import BookingNumber


class BookingTransaction(ABC):
    """One all-or-nothing unit of booking writes.

    Nothing staged through a transaction is visible to readers until the
    owning ``BookingStore.transaction()`` context exits cleanly. An exception
    inside the context discards every staged write, sequence allocation
    included.
    """

    @abstractmethod
    async def next_booking_number(self, prefix: str, year: int) -> "BookingNumber":
        """Allocate the next sequence number for ``year``."""
        raise NotImplementedError

    @abstractmethod
    async def add_booking(self, booking: "Booking") -> None:
        """Insert a new booking."""
        raise NotImplementedError

    @abstractmethod
    async def update_booking(self, booking: "Booking") -> None:
        """Persist a status change of an existing booking."""
        raise NotImplementedError

    @abstractmethod
    async def add_assignment(self, assignment: "ResourceAssignment") -> None:
        """Insert the resource assignment of a booking."""
        raise NotImplementedError

    @abstractmethod
    async def delete_assignment(self, booking_id: UUID) -> bool:
        """Delete the resource assignment of a booking."""
        raise NotImplementedError

    @abstractmethod
    async def add_itinerary(self, itinerary: "ItineraryShell") -> None:
        """Insert the itinerary shell of a booking."""
        raise NotImplementedError

    @abstractmethod
    async def append_event(self, event: "TimelineEvent") -> None:
        """Append a timeline event."""
        raise NotImplementedError


class BookingStore(ABC):
    """Port interface for booking persistence."""

    @abstractmethod
    def transaction(self) -> AsyncContextManager[BookingTransaction]:
        """Open a unit of work that commits on clean exit and rolls back on error."""
        raise NotImplementedError

    @abstractmethod
    async def find_by_id(self, booking_id: UUID) -> Optional["Booking"]:
        """Find booking by ID."""
        raise NotImplementedError

    @abstractmethod
    async def find_by_number(self, booking_number: "BookingNumber") -> Optional["Booking"]:
        """Find booking by its customer-facing number."""
        raise NotImplementedError

    @abstractmethod
    async def list_active_for_date(self, target_date: date) -> List["Booking"]:
        """All non-cancelled bookings on a date, read authoritatively."""
        raise NotImplementedError

    @abstractmethod
    async def list_held_created_before(self, cutoff: datetime) -> List["Booking"]:
        """Held bookings whose hold started before ``cutoff``."""
        raise NotImplementedError

    @abstractmethod
    async def list_timeline(self, booking_id: UUID) -> List["TimelineEvent"]:
        """Timeline events of a booking in insertion order."""
        raise NotImplementedError

    @abstractmethod
    async def find_assignment(self, booking_id: UUID) -> Optional["ResourceAssignment"]:
        """Current resource assignment of a booking, if any."""
        raise NotImplementedError

    @abstractmethod
    async def find_itinerary(self, booking_id: UUID) -> Optional["ItineraryShell"]:
        """Itinerary shell created with a booking."""
        raise NotImplementedError


class ResourceDirectory(ABC):
    """Port interface for the fleet and roster directory."""

    @abstractmethod
    async def list_active_resources(self, target_date: date) -> List["Resource"]:
        """Vehicles and drivers in service on a date."""
        raise NotImplementedError


class RuleStore(ABC):
    """Port interface for availability and pricing rule configuration."""

    @abstractmethod
    async def list_availability_rules(self) -> List["AvailabilityRule"]:
        """All availability rules, active or not."""
        raise NotImplementedError

    @abstractmethod
    async def list_pricing_rules(self) -> List["PricingRule"]:
        """All pricing rules, active or not."""
        raise NotImplementedError

    @abstractmethod
    async def list_holidays(self) -> List[date]:
        """Dates priced as holidays."""
        raise NotImplementedError
