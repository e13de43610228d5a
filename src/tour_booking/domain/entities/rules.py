"""Availability constraints and pricing rules.

Rules arrive from the rule store as a versioned ``RuleSnapshot``. Pricing
conditions are a closed set of condition kinds combined by logical AND; each
kind reports the dimensions it constrains, which is what rule specificity is
measured on.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, time
from decimal import Decimal
from enum import Enum
from typing import FrozenSet, List, Optional, Tuple

from ..clock import utcnow
from .resource import Resource, ResourceKind
from ..value_objects.time_window import TimeWindow

WEEKEND_DAYS = frozenset({5, 6})


class Season(Enum):
    """Tour seasons by calendar month."""
    SPRING = "spring"
    SUMMER = "summer"
    FALL = "fall"
    WINTER = "winter"


def season_for(day: date) -> Season:
    """Meteorological season of a date (northern hemisphere)."""
    if day.month in (3, 4, 5):
        return Season.SPRING
    if day.month in (6, 7, 8):
        return Season.SUMMER
    if day.month in (9, 10, 11):
        return Season.FALL
    return Season.WINTER


# ---------------------------------------------------------------------------
# Availability rules
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class AvailabilityRule:
    """Base class for availability constraints."""

    rule_id: int
    active: bool = field(default=True, kw_only=True)


@dataclass(frozen=True)
class BlackoutRule(AvailabilityRule):
    """Date range during which one resource, or every resource, is unavailable."""

    start_date: date
    end_date: date
    reason: str = ""
    resource_kind: Optional[ResourceKind] = None
    resource_id: Optional[int] = None

    def __post_init__(self) -> None:
        if self.end_date < self.start_date:
            raise ValueError("Blackout end date must not be before its start date")
        if (self.resource_kind is None) != (self.resource_id is None):
            raise ValueError("Blackout resource kind and id must be given together")

    @property
    def is_global(self) -> bool:
        return self.resource_id is None

    def covers(self, day: date) -> bool:
        return self.start_date <= day <= self.end_date

    def blocks(self, resource: Resource, day: date) -> bool:
        if not self.covers(day):
            return False
        return self.is_global or (resource.kind, resource.id) == (self.resource_kind, self.resource_id)


@dataclass(frozen=True)
class BufferRule(AvailabilityRule):
    """Idle minutes required between two bookings sharing a resource."""

    minutes: int
    applies_to: Optional[ResourceKind] = None

    def __post_init__(self) -> None:
        if self.minutes < 0:
            raise ValueError("Buffer minutes cannot be negative")

    def applies(self, kind: ResourceKind) -> bool:
        return self.applies_to is None or self.applies_to == kind


@dataclass(frozen=True)
class CapacityRule(AvailabilityRule):
    """Ceiling on bookings per day, optionally for one vehicle type."""

    max_daily_bookings: Optional[int] = None
    max_concurrent_bookings: Optional[int] = None
    vehicle_type: Optional[str] = None

    def __post_init__(self) -> None:
        if self.max_daily_bookings is None and self.max_concurrent_bookings is None:
            raise ValueError("Capacity rule needs a daily or a concurrent limit")
        for limit in (self.max_daily_bookings, self.max_concurrent_bookings):
            if limit is not None and limit < 0:
                raise ValueError("Capacity limits cannot be negative")


@dataclass(frozen=True)
class MaintenanceRule(AvailabilityRule):
    """Resource taken out of service for part of a day."""

    resource_kind: ResourceKind
    resource_id: int
    window: TimeWindow
    reason: str = ""

    def blocks(self, resource: Resource, day: date) -> bool:
        return self.window.date == day and (resource.kind, resource.id) == (self.resource_kind, self.resource_id)


# ---------------------------------------------------------------------------
# Pricing conditions
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PricingContext:
    """Facts about a request that pricing conditions are evaluated against."""

    date: date
    duration_minutes: int
    party_size: int
    vehicle_type: Optional[str]
    is_holiday: bool

    @property
    def day_of_week(self) -> int:
        return self.date.weekday()

    @property
    def is_weekend(self) -> bool:
        return self.day_of_week in WEEKEND_DAYS

    @property
    def season(self) -> Season:
        return season_for(self.date)


class PricingCondition:
    """One tagged condition kind."""

    kind: str = ""
    dimensions: FrozenSet[str] = frozenset()

    def matches(self, context: PricingContext) -> bool:
        raise NotImplementedError


@dataclass(frozen=True)
class VehicleTypeCondition(PricingCondition):
    vehicle_type: str

    kind = "vehicle_type"
    dimensions = frozenset({"vehicle_type"})

    def matches(self, context: PricingContext) -> bool:
        return context.vehicle_type is not None and context.vehicle_type.lower() == self.vehicle_type.lower()


@dataclass(frozen=True)
class DurationCondition(PricingCondition):
    """Duration bucket, inclusive on both ends."""

    min_minutes: int
    max_minutes: int

    kind = "duration"
    dimensions = frozenset({"duration"})

    def __post_init__(self) -> None:
        if self.max_minutes < self.min_minutes:
            raise ValueError("Duration bucket maximum is below its minimum")

    def matches(self, context: PricingContext) -> bool:
        return self.min_minutes <= context.duration_minutes <= self.max_minutes


@dataclass(frozen=True)
class DayOfWeekCondition(PricingCondition):
    """Single weekday, 0 = Monday. Also pins the weekend flag."""

    day_of_week: int

    kind = "day_of_week"
    dimensions = frozenset({"day_of_week", "weekend"})

    def __post_init__(self) -> None:
        if not 0 <= self.day_of_week <= 6:
            raise ValueError("Day of week must be between 0 (Monday) and 6 (Sunday)")

    def matches(self, context: PricingContext) -> bool:
        return context.day_of_week == self.day_of_week


@dataclass(frozen=True)
class WeekendCondition(PricingCondition):
    is_weekend: bool

    kind = "weekend"
    dimensions = frozenset({"weekend"})

    def matches(self, context: PricingContext) -> bool:
        return context.is_weekend == self.is_weekend


@dataclass(frozen=True)
class HolidayCondition(PricingCondition):
    is_holiday: bool

    kind = "holiday"
    dimensions = frozenset({"holiday"})

    def matches(self, context: PricingContext) -> bool:
        return context.is_holiday == self.is_holiday


@dataclass(frozen=True)
class SeasonCondition(PricingCondition):
    season: Season

    kind = "season"
    dimensions = frozenset({"season"})

    def matches(self, context: PricingContext) -> bool:
        return context.season == self.season


@dataclass(frozen=True)
class DateRangeCondition(PricingCondition):
    """Inclusive date range; either end may be open."""

    start_date: Optional[date] = None
    end_date: Optional[date] = None

    kind = "date_range"
    dimensions = frozenset({"date_range"})

    def __post_init__(self) -> None:
        if self.start_date is None and self.end_date is None:
            raise ValueError("Date range condition needs at least one bound")
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError("Date range end is before its start")

    def matches(self, context: PricingContext) -> bool:
        if self.start_date is not None and context.date < self.start_date:
            return False
        if self.end_date is not None and context.date > self.end_date:
            return False
        return True


# ---------------------------------------------------------------------------
# Pricing rules
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PricingRule:
    """Conditions mapped to a price formula. Money fields are in cents."""

    rule_id: int
    name: str
    conditions: Tuple[PricingCondition, ...] = ()
    base_price: int = 0
    per_hour: int = 0
    per_person: int = 0
    multiplier: Decimal = Decimal("1")
    min_price: Optional[int] = None
    max_price: Optional[int] = None
    priority: int = 0
    active: bool = True
    valid_from: Optional[date] = None
    valid_until: Optional[date] = None

    def __post_init__(self) -> None:
        if self.multiplier < 0:
            raise ValueError("Pricing multiplier cannot be negative")
        for amount in (self.base_price, self.per_hour, self.per_person):
            if amount < 0:
                raise ValueError("Pricing amounts cannot be negative")
        if self.min_price is not None and self.max_price is not None and self.max_price < self.min_price:
            raise ValueError("Maximum price is below minimum price")
        if self.valid_from and self.valid_until and self.valid_until < self.valid_from:
            raise ValueError("Rule validity ends before it starts")

    @property
    def dimensions(self) -> FrozenSet[str]:
        """Condition dimensions this rule constrains."""
        dims = set()
        for condition in self.conditions:
            dims |= condition.dimensions
        if self.valid_from is not None or self.valid_until is not None:
            dims.add("date_range")
        return frozenset(dims)

    @property
    def specificity(self) -> int:
        return len(self.dimensions)

    def is_valid_on(self, day: date) -> bool:
        if self.valid_from is not None and day < self.valid_from:
            return False
        if self.valid_until is not None and day > self.valid_until:
            return False
        return True

    def matches(self, context: PricingContext) -> bool:
        return (
            self.active
            and self.is_valid_on(context.date)
            and all(condition.matches(context) for condition in self.conditions)
        )


@dataclass(frozen=True)
class RuleSnapshot:
    """Immutable, versioned view of the rule store."""

    version: int
    availability_rules: Tuple[AvailabilityRule, ...] = ()
    pricing_rules: Tuple[PricingRule, ...] = ()
    holidays: FrozenSet[date] = frozenset()
    taken_at: datetime = field(default_factory=utcnow)

    def _active(self, rule_type: type) -> List:
        return [r for r in self.availability_rules if isinstance(r, rule_type) and r.active]

    def blackouts_on(self, day: date) -> List[BlackoutRule]:
        return [r for r in self._active(BlackoutRule) if r.covers(day)]

    def maintenance_on(self, day: date) -> List[MaintenanceRule]:
        return [r for r in self._active(MaintenanceRule) if r.window.date == day]

    @property
    def capacity_rules(self) -> List[CapacityRule]:
        return self._active(CapacityRule)

    def buffer_minutes_for(self, kind: ResourceKind) -> int:
        """Largest buffer any active rule imposes on a resource kind."""
        return max((r.minutes for r in self._active(BufferRule) if r.applies(kind)), default=0)

    def is_holiday(self, day: date) -> bool:
        return day in self.holidays

    def pricing_context(self, day: date, duration_minutes: int, party_size: int,
                        vehicle_type: Optional[str]) -> PricingContext:
        return PricingContext(
            date=day,
            duration_minutes=duration_minutes,
            party_size=party_size,
            vehicle_type=vehicle_type.lower() if vehicle_type else None,
            is_holiday=self.is_holiday(day),
        )
