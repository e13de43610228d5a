"""SQLAlchemy database models."""

from uuid import uuid4

from sqlalchemy import (
    Column, String, Date, DateTime, Time, Boolean, Integer, Text, Enum as SQLEnum, ForeignKey, JSON, Numeric,
    UniqueConstraint, Index,
)
from sqlalchemy.dialects.postgresql import UUID as PostgresUUID
from sqlalchemy.orm import declarative_base

from src.tour_booking.domain.clock import utcnow
from src.tour_booking.domain.entities.booking import BookingStatus

Base = declarative_base()


class BookingModel(Base):
    """SQLAlchemy model for bookings."""

    __tablename__ = "bookings"
    __table_args__ = (
        UniqueConstraint("booking_year", "booking_sequence", name="uq_bookings_year_sequence"),
        Index("ix_bookings_tour_date_status", "tour_date", "status"),
    )

    # Primary key
    id = Column(PostgresUUID(as_uuid=True), primary_key=True, default=uuid4)

    # Customer-facing number, PREFIX-YYYY-NNNNN
    booking_number = Column(String(32), nullable=False, unique=True, index=True)
    booking_year = Column(Integer, nullable=False)
    booking_sequence = Column(Integer, nullable=False)

    # Tour window
    tour_date = Column(Date, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)

    # Assigned resources
    vehicle_id = Column(Integer, nullable=False, index=True)
    driver_id = Column(Integer, nullable=False, index=True)
    party_size = Column(Integer, nullable=False)

    status = Column(SQLEnum(BookingStatus), nullable=False, default=BookingStatus.HELD)

    # Pricing, minor units
    total_amount = Column(Integer, nullable=False)
    deposit_amount = Column(Integer, nullable=False)
    balance_amount = Column(Integer, nullable=False)
    price_breakdown = Column(JSON, nullable=False)

    # Timestamps
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    def __repr__(self) -> str:
        return f"<BookingModel(id={self.id}, booking_number='{self.booking_number}', status='{self.status}')>"


class ResourceAssignmentModel(Base):
    """SQLAlchemy model for live vehicle/driver assignments."""

    __tablename__ = "resource_assignments"

    booking_id = Column(
        PostgresUUID(as_uuid=True), ForeignKey("bookings.id", ondelete="CASCADE"), primary_key=True
    )
    vehicle_id = Column(Integer, nullable=False, index=True)
    driver_id = Column(Integer, nullable=False, index=True)
    tour_date = Column(Date, nullable=False, index=True)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    def __repr__(self) -> str:
        return f"<ResourceAssignmentModel(booking_id={self.booking_id}, vehicle={self.vehicle_id}, driver={self.driver_id})>"


class BookingSequenceModel(Base):
    """One counter row per booking year."""

    __tablename__ = "booking_sequences"

    year = Column(Integer, primary_key=True)
    last_value = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)


class BookingTimelineModel(Base):
    """Append-only booking history."""

    __tablename__ = "booking_timeline"

    id = Column(Integer, primary_key=True, autoincrement=True)
    booking_id = Column(
        PostgresUUID(as_uuid=True), ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False, index=True
    )
    event_type = Column(String(50), nullable=False)
    event_description = Column(Text, nullable=False)
    event_data = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    def __repr__(self) -> str:
        return f"<BookingTimelineModel(booking_id={self.booking_id}, event_type='{self.event_type}')>"


class ItineraryModel(Base):
    """Itinerary header created with each booking."""

    __tablename__ = "itineraries"

    id = Column(PostgresUUID(as_uuid=True), primary_key=True, default=uuid4)
    booking_id = Column(
        PostgresUUID(as_uuid=True), ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    tour_date = Column(Date, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)


class ResourceModel(Base):
    """Vehicles and drivers known to the resource directory."""

    __tablename__ = "resources"

    kind = Column(String(20), primary_key=True)  # 'vehicle' or 'driver'
    resource_id = Column(Integer, primary_key=True)
    name = Column(String(100), nullable=False)
    capacity = Column(Integer, nullable=True)
    vehicle_type = Column(String(50), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    def __repr__(self) -> str:
        return f"<ResourceModel(kind='{self.kind}', resource_id={self.resource_id}, name='{self.name}')>"


class AvailabilityRuleModel(Base):
    """Availability constraint; ``rule_data`` holds the type-specific fields."""

    __tablename__ = "availability_rules"

    id = Column(Integer, primary_key=True, autoincrement=True)
    rule_type = Column(String(30), nullable=False)  # blackout_date, buffer_time, capacity_limit, maintenance_block
    rule_data = Column(JSON, nullable=False, default=dict)
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)


class PricingRuleModel(Base):
    """Pricing rule; money columns are minor units."""

    __tablename__ = "pricing_rules"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(100), nullable=False)
    conditions = Column(JSON, nullable=False, default=list)

    base_price = Column(Integer, nullable=False, default=0)
    price_per_hour = Column(Integer, nullable=False, default=0)
    price_per_person = Column(Integer, nullable=False, default=0)
    multiplier = Column(Numeric(6, 3), nullable=False, default=1)
    min_price = Column(Integer, nullable=True)
    max_price = Column(Integer, nullable=True)

    priority = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)
    valid_from = Column(Date, nullable=True)
    valid_until = Column(Date, nullable=True)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    def __repr__(self) -> str:
        return f"<PricingRuleModel(id={self.id}, name='{self.name}', priority={self.priority})>"


class HolidayModel(Base):
    """Dates priced as holidays."""

    __tablename__ = "holidays"

    holiday_date = Column(Date, primary_key=True)
    name = Column(String(100), nullable=False, default="")
