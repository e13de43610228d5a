"""Build resources, availability rules and pricing rules from JSON-style configuration.

Definitions arrive as plain dicts (database JSON columns or a seed file) and
are validated with pydantic models before they are mapped onto the domain
rules. Condition kinds and rule types are discriminated unions, so anything
unknown is rejected with ``RuleConfigurationError`` instead of being skipped.

Money in rule files is written in major units as integers or strings
(``"450.00"``); floats are refused.
"""

import json
from dataclasses import dataclass, field
from datetime import date as Date, time as Time
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Annotated, Any, Callable, Dict, List, Literal, Mapping, Optional, Union

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, TypeAdapter, ValidationError, field_validator

from src.tour_booking.domain.entities.resource import Resource, ResourceKind
from src.tour_booking.domain.entities.rules import (
    AvailabilityRule,
    BlackoutRule,
    BufferRule,
    CapacityRule,
    DateRangeCondition,
    DayOfWeekCondition,
    DurationCondition,
    HolidayCondition,
    MaintenanceRule,
    PricingCondition,
    PricingRule,
    Season,
    SeasonCondition,
    VehicleTypeCondition,
    WeekendCondition,
)
from src.tour_booking.domain.exceptions import RuleConfigurationError
from src.tour_booking.domain.value_objects.money import to_minor_units
from src.tour_booking.domain.value_objects.time_window import TimeWindow
from src.tour_booking.infrastructure.logging import get_logger

logger = get_logger(__name__)


def _minor_units(value: Any) -> Any:
    if isinstance(value, float):
        raise ValueError("amounts must be integers or decimal strings, not a float")
    try:
        return to_minor_units(value)
    except (InvalidOperation, TypeError) as exc:
        raise ValueError(f"not a valid amount: {value!r}") from exc


def _no_float(value: Any) -> Any:
    if isinstance(value, float):
        raise ValueError("must be a decimal string, not a float")
    return value


def _all_means_none(value: Any) -> Any:
    return None if value == "all" else value


Money = Annotated[int, BeforeValidator(_minor_units)]
Multiplier = Annotated[Decimal, BeforeValidator(_no_float), Field(ge=0)]
AnyResourceKind = Annotated[Optional[ResourceKind], BeforeValidator(_all_means_none)]


class ConfigModel(BaseModel):
    """Base for rule configuration models; unknown keys are errors."""

    model_config = ConfigDict(extra="forbid")


# ---------------------------------------------------------------------------
# Pricing conditions
# ---------------------------------------------------------------------------

class VehicleTypeConditionConfig(ConfigModel):
    kind: Literal["vehicle_type"]
    vehicle_type: str = Field(..., min_length=1)

    def to_domain(self) -> PricingCondition:
        return VehicleTypeCondition(self.vehicle_type.lower())


class DurationConditionConfig(ConfigModel):
    kind: Literal["duration"]
    min_hours: Decimal = Field(..., ge=0)
    max_hours: Decimal = Field(..., ge=0)

    def to_domain(self) -> PricingCondition:
        return DurationCondition(int(self.min_hours * 60), int(self.max_hours * 60))


class DayOfWeekConditionConfig(ConfigModel):
    kind: Literal["day_of_week"]
    day_of_week: int = Field(..., ge=0, le=6, description="0 = Monday")

    def to_domain(self) -> PricingCondition:
        return DayOfWeekCondition(self.day_of_week)


class WeekendConditionConfig(ConfigModel):
    kind: Literal["weekend"]
    is_weekend: bool = True

    def to_domain(self) -> PricingCondition:
        return WeekendCondition(self.is_weekend)


class HolidayConditionConfig(ConfigModel):
    kind: Literal["holiday"]
    is_holiday: bool = True

    def to_domain(self) -> PricingCondition:
        return HolidayCondition(self.is_holiday)


class SeasonConditionConfig(ConfigModel):
    kind: Literal["season"]
    season: Season

    @field_validator('season', mode='before')
    @classmethod
    def lowercase_season(cls, v: Any) -> Any:
        return v.lower() if isinstance(v, str) else v

    def to_domain(self) -> PricingCondition:
        return SeasonCondition(self.season)


class DateRangeConditionConfig(ConfigModel):
    kind: Literal["date_range"]
    start_date: Optional[Date] = None
    end_date: Optional[Date] = None

    def to_domain(self) -> PricingCondition:
        return DateRangeCondition(self.start_date, self.end_date)


PricingConditionConfig = Annotated[
    Union[
        VehicleTypeConditionConfig,
        DurationConditionConfig,
        DayOfWeekConditionConfig,
        WeekendConditionConfig,
        HolidayConditionConfig,
        SeasonConditionConfig,
        DateRangeConditionConfig,
    ],
    Field(discriminator="kind"),
]


class PricingRuleConfig(ConfigModel):
    id: int
    name: Optional[str] = None
    conditions: List[PricingConditionConfig] = Field(default_factory=list)
    base_price: Money = 0
    price_per_hour: Money = 0
    price_per_person: Money = 0
    multiplier: Multiplier = Decimal("1")
    min_price: Optional[Money] = None
    max_price: Optional[Money] = None
    priority: int = 0
    is_active: bool = True
    valid_from: Optional[Date] = None
    valid_until: Optional[Date] = None

    def to_domain(self) -> PricingRule:
        return PricingRule(
            rule_id=self.id,
            name=self.name or f"rule-{self.id}",
            conditions=tuple(c.to_domain() for c in self.conditions),
            base_price=self.base_price,
            per_hour=self.price_per_hour,
            per_person=self.price_per_person,
            multiplier=self.multiplier,
            min_price=self.min_price,
            max_price=self.max_price,
            priority=self.priority,
            active=self.is_active,
            valid_from=self.valid_from,
            valid_until=self.valid_until,
        )


# ---------------------------------------------------------------------------
# Availability rules
# ---------------------------------------------------------------------------

class AvailabilityRuleBase(ConfigModel):
    id: int
    is_active: bool = True


class BlackoutRuleConfig(AvailabilityRuleBase):
    rule_type: Literal["blackout_date"]
    start_date: Date
    end_date: Optional[Date] = None
    reason: str = ""
    resource_kind: AnyResourceKind = None
    resource_id: Optional[int] = None

    def to_domain(self) -> AvailabilityRule:
        return BlackoutRule(
            self.id, self.start_date, self.end_date or self.start_date, self.reason,
            self.resource_kind, self.resource_id, active=self.is_active,
        )


class BufferRuleConfig(AvailabilityRuleBase):
    rule_type: Literal["buffer_time"]
    buffer_minutes: int = Field(..., ge=0)
    applies_to: AnyResourceKind = None

    def to_domain(self) -> AvailabilityRule:
        return BufferRule(self.id, self.buffer_minutes, self.applies_to, active=self.is_active)


class CapacityRuleConfig(AvailabilityRuleBase):
    rule_type: Literal["capacity_limit"]
    max_daily_bookings: Optional[int] = Field(None, ge=0)
    max_concurrent_bookings: Optional[int] = Field(None, ge=0)
    vehicle_type: Optional[str] = None

    def to_domain(self) -> AvailabilityRule:
        return CapacityRule(
            self.id,
            self.max_daily_bookings,
            self.max_concurrent_bookings,
            self.vehicle_type.lower() if self.vehicle_type else None,
            active=self.is_active,
        )


class MaintenanceRuleConfig(AvailabilityRuleBase):
    rule_type: Literal["maintenance_block"]
    resource_kind: ResourceKind = ResourceKind.VEHICLE
    resource_id: int
    date: Date
    start_time: Time
    end_time: Time
    reason: str = ""

    def to_domain(self) -> AvailabilityRule:
        return MaintenanceRule(
            self.id, self.resource_kind, self.resource_id,
            TimeWindow(self.date, self.start_time, self.end_time), self.reason, active=self.is_active,
        )


AvailabilityRuleConfig = Annotated[
    Union[BlackoutRuleConfig, BufferRuleConfig, CapacityRuleConfig, MaintenanceRuleConfig],
    Field(discriminator="rule_type"),
]


# ---------------------------------------------------------------------------
# Resources and seed documents
# ---------------------------------------------------------------------------

class ResourceConfig(ConfigModel):
    kind: ResourceKind
    id: int
    name: str = ""
    capacity: Optional[int] = None
    vehicle_type: Optional[str] = None
    is_active: bool = True

    def to_domain(self) -> Resource:
        return Resource(
            resource_id=self.id,
            kind=self.kind,
            name=self.name,
            capacity=self.capacity,
            vehicle_type=self.vehicle_type,
            is_active=self.is_active,
        )


class SeedDocument(ConfigModel):
    resources: List[ResourceConfig] = Field(default_factory=list)
    availability_rules: List[AvailabilityRuleConfig] = Field(default_factory=list)
    pricing_rules: List[PricingRuleConfig] = Field(default_factory=list)
    holidays: List[Date] = Field(default_factory=list)


_CONDITION_ADAPTER = TypeAdapter(PricingConditionConfig)
_AVAILABILITY_ADAPTER = TypeAdapter(AvailabilityRuleConfig)


def _describe(exc: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(part) for part in error['loc']) or 'value'}: {error['msg']}"
        for error in exc.errors()
    )


def _validate(validate: Callable[[Any], Any], data: Any, what: str) -> Any:
    try:
        return validate(data)
    except ValidationError as exc:
        raise RuleConfigurationError(f"Invalid {what}: {_describe(exc)}") from exc


def _to_domain(config: Any, what: str) -> Any:
    try:
        return config.to_domain()
    except ValueError as exc:
        # Cross-field checks made by the domain objects themselves.
        raise RuleConfigurationError(f"Invalid {what}: {exc}") from exc


def _build(validate: Callable[[Any], Any], data: Any, what: str) -> Any:
    return _to_domain(_validate(validate, data, what), what)


def load_pricing_condition(data: Mapping[str, Any]) -> PricingCondition:
    return _build(_CONDITION_ADAPTER.validate_python, data, "pricing condition")


def dump_pricing_condition(condition: PricingCondition) -> Dict[str, Any]:
    """Inverse of ``load_pricing_condition``, for JSON storage."""
    if isinstance(condition, VehicleTypeCondition):
        return {"kind": condition.kind, "vehicle_type": condition.vehicle_type}
    if isinstance(condition, DurationCondition):
        return {"kind": condition.kind, "min_hours": condition.min_minutes / 60, "max_hours": condition.max_minutes / 60}
    if isinstance(condition, DayOfWeekCondition):
        return {"kind": condition.kind, "day_of_week": condition.day_of_week}
    if isinstance(condition, WeekendCondition):
        return {"kind": condition.kind, "is_weekend": condition.is_weekend}
    if isinstance(condition, HolidayCondition):
        return {"kind": condition.kind, "is_holiday": condition.is_holiday}
    if isinstance(condition, SeasonCondition):
        return {"kind": condition.kind, "season": condition.season.value}
    if isinstance(condition, DateRangeCondition):
        return {
            "kind": condition.kind,
            "start_date": condition.start_date.isoformat() if condition.start_date else None,
            "end_date": condition.end_date.isoformat() if condition.end_date else None,
        }
    raise RuleConfigurationError(f"Cannot serialize condition {condition!r}")


def load_pricing_rule(data: Mapping[str, Any]) -> PricingRule:
    return _build(PricingRuleConfig.model_validate, data, f"pricing rule {data.get('id')!r}")


def load_availability_rule(data: Mapping[str, Any]) -> AvailabilityRule:
    return _build(_AVAILABILITY_ADAPTER.validate_python, data, f"availability rule {data.get('id')!r}")


def load_resource(data: Mapping[str, Any]) -> Resource:
    return _build(ResourceConfig.model_validate, data, f"resource {data.get('id')!r}")


@dataclass
class SeedData:
    """Resources and rules read from a seed file."""

    resources: List[Resource] = field(default_factory=list)
    availability_rules: List[AvailabilityRule] = field(default_factory=list)
    pricing_rules: List[PricingRule] = field(default_factory=list)
    holidays: List[Date] = field(default_factory=list)


def load_seed_document(document: Mapping[str, Any]) -> SeedData:
    seed = _validate(SeedDocument.model_validate, document, "seed document")
    return SeedData(
        resources=[_to_domain(r, f"resource {r.id}") for r in seed.resources],
        availability_rules=[_to_domain(r, f"availability rule {r.id}") for r in seed.availability_rules],
        pricing_rules=[_to_domain(r, f"pricing rule {r.id}") for r in seed.pricing_rules],
        holidays=list(seed.holidays),
    )


def load_seed_file(path: Union[str, Path]) -> SeedData:
    """Read ``resources``, ``availability_rules``, ``pricing_rules`` and ``holidays`` from JSON."""
    with open(path, encoding="utf-8") as handle:
        seed = load_seed_document(json.load(handle))
    logger.info(
        "Seed data loaded",
        extra={
            "seed_file": str(path),
            "resource_count": len(seed.resources),
            "availability_rule_count": len(seed.availability_rules),
            "pricing_rule_count": len(seed.pricing_rules),
            "holiday_count": len(seed.holidays),
        },
    )
    return seed
