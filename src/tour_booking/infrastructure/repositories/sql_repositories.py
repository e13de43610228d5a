"""SQLAlchemy repository implementations."""

from contextlib import asynccontextmanager
from datetime import datetime, date
from decimal import Decimal
from typing import AsyncIterator, List, Optional
from uuid import UUID

from sqlalchemy import select, delete
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from src.tour_booking.application.ports.repositories import (
    BookingStore,
    BookingTransaction,
    ResourceDirectory,
    RuleStore,
)
from src.tour_booking.domain.clock import utcnow
from src.tour_booking.domain.entities.booking import (
    Booking,
    BookingStatus,
    ItineraryShell,
    ResourceAssignment,
    TimelineEvent,
    TimelineEventType,
)
from src.tour_booking.domain.entities.resource import Resource, ResourceKind
from src.tour_booking.domain.entities.rules import AvailabilityRule, PricingRule
from src.tour_booking.domain.value_objects.booking_number import BookingNumber
from src.tour_booking.domain.value_objects.price_breakdown import PriceBreakdown
from src.tour_booking.domain.value_objects.time_window import TimeWindow
from src.tour_booking.infrastructure.database.connection import DatabaseManager
from src.tour_booking.infrastructure.database.models import (
    AvailabilityRuleModel,
    BookingModel,
    BookingSequenceModel,
    BookingTimelineModel,
    HolidayModel,
    ItineraryModel,
    PricingRuleModel,
    ResourceAssignmentModel,
    ResourceModel,
)
from src.tour_booking.infrastructure.logging import get_logger, log_database_operation
from src.tour_booking.infrastructure.rule_loader import load_availability_rule, load_pricing_condition


def next_sequence_statement(year: int):
    """Upsert of the per-year counter returning the allocated value.

    The row lock taken by the upsert is held until the enclosing transaction
    ends, so concurrent commits for one year serialize on it and a rollback
    gives the number back.
    """
    now = utcnow()
    return (
        pg_insert(BookingSequenceModel)
        .values(year=year, last_value=1, updated_at=now)
        .on_conflict_do_update(
            index_elements=[BookingSequenceModel.year],
            set_={"last_value": BookingSequenceModel.last_value + 1, "updated_at": now},
        )
        .returning(BookingSequenceModel.last_value)
    )


def occupied_bookings_query(target_date: date):
    """Bookings of a date that still block their vehicle and driver."""
    return (
        select(BookingModel)
        .where(BookingModel.tour_date == target_date, BookingModel.status != BookingStatus.CANCELLED)
        .order_by(BookingModel.start_time, BookingModel.booking_sequence)
    )


def booking_model_to_entity(model: BookingModel) -> Booking:
    """Convert database model to domain entity."""
    return Booking(
        booking_number=BookingNumber.parse(model.booking_number),
        window=TimeWindow(model.tour_date, model.start_time, model.end_time),
        vehicle_id=model.vehicle_id,
        driver_id=model.driver_id,
        party_size=model.party_size,
        price=PriceBreakdown.from_dict(model.price_breakdown),
        booking_id=model.id,
        status=model.status,
        created_at=model.created_at,
        updated_at=model.updated_at,
    )


class SQLAlchemyBookingTransaction(BookingTransaction):
    """Booking writes inside one database session."""

    def __init__(self, session: AsyncSession):
        self._session = session
        self._logger = get_logger(__name__)

    async def next_booking_number(self, prefix: str, year: int) -> BookingNumber:
        log_database_operation(self._logger, "UPSERT", "booking_sequences", year=year)
        result = await self._session.execute(next_sequence_statement(year))
        return BookingNumber(prefix, year, result.scalar_one())

    async def add_booking(self, booking: Booking) -> None:
        log_database_operation(self._logger, "INSERT", "bookings", booking_number=str(booking.booking_number))
        self._session.add(BookingModel(
            id=booking.id,
            booking_number=str(booking.booking_number),
            booking_year=booking.booking_number.year,
            booking_sequence=booking.booking_number.sequence,
            tour_date=booking.window.date,
            start_time=booking.window.start,
            end_time=booking.window.end,
            vehicle_id=booking.vehicle_id,
            driver_id=booking.driver_id,
            party_size=booking.party_size,
            status=booking.status,
            total_amount=booking.price.total,
            deposit_amount=booking.price.deposit_amount,
            balance_amount=booking.price.balance_amount,
            price_breakdown=booking.price.to_dict(),
            created_at=booking.created_at,
            updated_at=booking.updated_at,
        ))
        await self._session.flush()

    async def update_booking(self, booking: Booking) -> None:
        log_database_operation(self._logger, "UPDATE", "bookings", booking_number=str(booking.booking_number))
        model = await self._session.get(BookingModel, booking.id)
        if model is None:
            raise ValueError(f"Booking not found: {booking.id}")
        model.status = booking.status
        model.updated_at = booking.updated_at
        await self._session.flush()

    async def add_assignment(self, assignment: ResourceAssignment) -> None:
        log_database_operation(self._logger, "INSERT", "resource_assignments", booking_id=str(assignment.booking_id))
        self._session.add(ResourceAssignmentModel(
            booking_id=assignment.booking_id,
            vehicle_id=assignment.vehicle_id,
            driver_id=assignment.driver_id,
            tour_date=assignment.window.date,
            start_time=assignment.window.start,
            end_time=assignment.window.end,
        ))
        await self._session.flush()

    async def delete_assignment(self, booking_id: UUID) -> bool:
        log_database_operation(self._logger, "DELETE", "resource_assignments", booking_id=str(booking_id))
        result = await self._session.execute(
            delete(ResourceAssignmentModel).where(ResourceAssignmentModel.booking_id == booking_id)
        )
        return result.rowcount > 0

    async def add_itinerary(self, itinerary: ItineraryShell) -> None:
        log_database_operation(self._logger, "INSERT", "itineraries", booking_id=str(itinerary.booking_id))
        self._session.add(ItineraryModel(
            id=itinerary.itinerary_id,
            booking_id=itinerary.booking_id,
            tour_date=itinerary.window.date,
            start_time=itinerary.window.start,
            end_time=itinerary.window.end,
        ))
        await self._session.flush()

    async def append_event(self, event: TimelineEvent) -> None:
        log_database_operation(self._logger, "INSERT", "booking_timeline", event_type=event.event_type.value)
        self._session.add(BookingTimelineModel(
            booking_id=event.booking_id,
            event_type=event.event_type.value,
            event_description=event.description,
            event_data=event.data,
            created_at=event.created_at,
        ))
        await self._session.flush()


class SQLAlchemyBookingStore(BookingStore):
    """SQLAlchemy implementation of the booking store."""

    def __init__(self, database_manager: DatabaseManager):
        self._db = database_manager
        self._logger = get_logger(__name__)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[SQLAlchemyBookingTransaction]:
        async with self._db.get_session() as session:
            yield SQLAlchemyBookingTransaction(session)

    async def find_by_id(self, booking_id: UUID) -> Optional[Booking]:
        """Find booking by ID."""
        async with self._db.get_session() as session:
            model = await session.get(BookingModel, booking_id)
            return booking_model_to_entity(model) if model else None

    async def find_by_number(self, booking_number: BookingNumber) -> Optional[Booking]:
        async with self._db.get_session() as session:
            result = await session.execute(
                select(BookingModel).where(BookingModel.booking_number == str(booking_number))
            )
            model = result.scalar_one_or_none()
            return booking_model_to_entity(model) if model else None

    async def list_active_for_date(self, target_date: date) -> List[Booking]:
        log_database_operation(self._logger, "SELECT", "bookings", target_date=target_date.isoformat())
        async with self._db.get_session() as session:
            result = await session.execute(occupied_bookings_query(target_date))
            return [booking_model_to_entity(model) for model in result.scalars().all()]

    async def list_held_created_before(self, cutoff: datetime) -> List[Booking]:
        async with self._db.get_session() as session:
            result = await session.execute(
                select(BookingModel)
                .where(BookingModel.status == BookingStatus.HELD, BookingModel.created_at < cutoff)
                .order_by(BookingModel.created_at)
            )
            return [booking_model_to_entity(model) for model in result.scalars().all()]

    async def list_timeline(self, booking_id: UUID) -> List[TimelineEvent]:
        async with self._db.get_session() as session:
            result = await session.execute(
                select(BookingTimelineModel)
                .where(BookingTimelineModel.booking_id == booking_id)
                .order_by(BookingTimelineModel.id)
            )
            return [
                TimelineEvent(
                    booking_id=model.booking_id,
                    event_type=TimelineEventType(model.event_type),
                    description=model.event_description,
                    data=dict(model.event_data or {}),
                    created_at=model.created_at,
                )
                for model in result.scalars().all()
            ]

    async def find_assignment(self, booking_id: UUID) -> Optional[ResourceAssignment]:
        async with self._db.get_session() as session:
            model = await session.get(ResourceAssignmentModel, booking_id)
            if model is None:
                return None
            return ResourceAssignment(
                booking_id=model.booking_id,
                vehicle_id=model.vehicle_id,
                driver_id=model.driver_id,
                window=TimeWindow(model.tour_date, model.start_time, model.end_time),
            )

    async def find_itinerary(self, booking_id: UUID) -> Optional[ItineraryShell]:
        async with self._db.get_session() as session:
            result = await session.execute(select(ItineraryModel).where(ItineraryModel.booking_id == booking_id))
            model = result.scalar_one_or_none()
            if model is None:
                return None
            return ItineraryShell(
                booking_id=model.booking_id,
                window=TimeWindow(model.tour_date, model.start_time, model.end_time),
                itinerary_id=model.id,
            )


class SQLAlchemyResourceDirectory(ResourceDirectory):
    """Reads vehicles and drivers from the ``resources`` table."""

    def __init__(self, database_manager: DatabaseManager):
        self._db = database_manager

    async def list_active_resources(self, target_date: date) -> List[Resource]:
        async with self._db.get_session() as session:
            result = await session.execute(
                select(ResourceModel)
                .where(ResourceModel.is_active.is_(True))
                .order_by(ResourceModel.kind, ResourceModel.resource_id)
            )
            return [
                Resource(
                    resource_id=model.resource_id,
                    kind=ResourceKind(model.kind),
                    name=model.name,
                    capacity=model.capacity,
                    vehicle_type=model.vehicle_type,
                    is_active=model.is_active,
                )
                for model in result.scalars().all()
            ]


class SQLAlchemyRuleStore(RuleStore):
    """Reads availability rules, pricing rules and holidays."""

    def __init__(self, database_manager: DatabaseManager):
        self._db = database_manager

    async def list_availability_rules(self) -> List[AvailabilityRule]:
        async with self._db.get_session() as session:
            result = await session.execute(select(AvailabilityRuleModel).order_by(AvailabilityRuleModel.id))
            return [
                load_availability_rule({
                    **(model.rule_data or {}),
                    "id": model.id,
                    "rule_type": model.rule_type,
                    "is_active": model.is_active,
                })
                for model in result.scalars().all()
            ]

    async def list_pricing_rules(self) -> List[PricingRule]:
        async with self._db.get_session() as session:
            result = await session.execute(select(PricingRuleModel).order_by(PricingRuleModel.id))
            return [self._pricing_model_to_entity(model) for model in result.scalars().all()]

    async def list_holidays(self) -> List[date]:
        async with self._db.get_session() as session:
            result = await session.execute(select(HolidayModel.holiday_date).order_by(HolidayModel.holiday_date))
            return list(result.scalars().all())

    @staticmethod
    def _pricing_model_to_entity(model: PricingRuleModel) -> PricingRule:
        return PricingRule(
            rule_id=model.id,
            name=model.name,
            conditions=tuple(load_pricing_condition(c) for c in (model.conditions or [])),
            base_price=model.base_price,
            per_hour=model.price_per_hour,
            per_person=model.price_per_person,
            multiplier=Decimal(str(model.multiplier)),
            min_price=model.min_price,
            max_price=model.max_price,
            priority=model.priority,
            active=model.is_active,
            valid_from=model.valid_from,
            valid_until=model.valid_until,
        )
