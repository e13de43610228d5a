"""Unit tests for availability rules, pricing conditions and rule snapshots."""

import pytest
from datetime import date, time
from decimal import Decimal

from src.tour_booking.domain.entities.resource import Resource, ResourceKind
from src.tour_booking.domain.entities.rules import (
    BlackoutRule,
    BufferRule,
    CapacityRule,
    DateRangeCondition,
    DayOfWeekCondition,
    DurationCondition,
    HolidayCondition,
    MaintenanceRule,
    PricingContext,
    PricingRule,
    RuleSnapshot,
    Season,
    SeasonCondition,
    VehicleTypeCondition,
    WeekendCondition,
    season_for,
)
from src.tour_booking.domain.value_objects.time_window import TimeWindow

FRIDAY = date(2026, 10, 23)
SATURDAY = date(2026, 10, 24)


def context(day: date = FRIDAY, duration_minutes: int = 360, vehicle_type=None, is_holiday=False) -> PricingContext:
    return PricingContext(
        date=day, duration_minutes=duration_minutes, party_size=4,
        vehicle_type=vehicle_type, is_holiday=is_holiday,
    )


class TestAvailabilityRules:
    """Test cases for availability rule types."""

    def test_global_blackout_blocks_everything(self):
        rule = BlackoutRule(1, date(2026, 12, 24), date(2026, 12, 26), "Holidays")
        van = Resource(1, ResourceKind.VEHICLE, capacity=14)

        assert rule.is_global
        assert rule.blocks(van, date(2026, 12, 25))
        assert not rule.blocks(van, date(2026, 12, 27))

    def test_resource_blackout_blocks_one_resource(self):
        rule = BlackoutRule(1, FRIDAY, FRIDAY, resource_kind=ResourceKind.DRIVER, resource_id=2)

        assert not rule.is_global
        assert rule.blocks(Resource(2, ResourceKind.DRIVER), FRIDAY)
        assert not rule.blocks(Resource(1, ResourceKind.DRIVER), FRIDAY)
        assert not rule.blocks(Resource(2, ResourceKind.VEHICLE, capacity=4), FRIDAY)

    def test_blackout_kind_and_id_go_together(self):
        with pytest.raises(ValueError):
            BlackoutRule(1, FRIDAY, FRIDAY, resource_kind=ResourceKind.VEHICLE)

    def test_blackout_range_order(self):
        with pytest.raises(ValueError):
            BlackoutRule(1, SATURDAY, FRIDAY)

    def test_buffer_rule(self):
        everyone = BufferRule(1, 60)
        drivers = BufferRule(2, 30, ResourceKind.DRIVER)

        assert everyone.applies(ResourceKind.VEHICLE)
        assert drivers.applies(ResourceKind.DRIVER)
        assert not drivers.applies(ResourceKind.VEHICLE)
        with pytest.raises(ValueError):
            BufferRule(3, -5)

    def test_capacity_rule_needs_a_limit(self):
        with pytest.raises(ValueError):
            CapacityRule(1)
        assert CapacityRule(1, max_daily_bookings=10).max_concurrent_bookings is None

    def test_maintenance_blocks_its_resource_on_its_day(self):
        rule = MaintenanceRule(
            1, ResourceKind.VEHICLE, 3, TimeWindow(FRIDAY, time(8, 0), time(12, 0)), "Oil change",
        )

        assert rule.blocks(Resource(3, ResourceKind.VEHICLE, capacity=6), FRIDAY)
        assert not rule.blocks(Resource(3, ResourceKind.VEHICLE, capacity=6), SATURDAY)
        assert not rule.blocks(Resource(3, ResourceKind.DRIVER), FRIDAY)


class TestPricingConditions:
    """Test cases for pricing condition kinds."""

    def test_vehicle_type_is_case_insensitive(self):
        condition = VehicleTypeCondition("Sprinter")

        assert condition.matches(context(vehicle_type="sprinter"))
        assert not condition.matches(context(vehicle_type="sedan"))
        assert not condition.matches(context(vehicle_type=None))

    def test_duration_bucket_is_inclusive(self):
        condition = DurationCondition(240, 360)

        assert condition.matches(context(duration_minutes=240))
        assert condition.matches(context(duration_minutes=360))
        assert not condition.matches(context(duration_minutes=420))
        with pytest.raises(ValueError):
            DurationCondition(360, 240)

    def test_day_of_week(self):
        saturday = DayOfWeekCondition(5)

        assert saturday.matches(context(SATURDAY))
        assert not saturday.matches(context(FRIDAY))
        with pytest.raises(ValueError):
            DayOfWeekCondition(7)

    def test_weekend_and_holiday_flags(self):
        assert WeekendCondition(True).matches(context(SATURDAY))
        assert WeekendCondition(False).matches(context(FRIDAY))
        assert HolidayCondition(True).matches(context(is_holiday=True))
        assert not HolidayCondition(True).matches(context())

    def test_season(self):
        assert season_for(date(2026, 1, 15)) == Season.WINTER
        assert season_for(date(2026, 4, 15)) == Season.SPRING
        assert season_for(date(2026, 7, 15)) == Season.SUMMER
        assert season_for(FRIDAY) == Season.FALL
        assert SeasonCondition(Season.FALL).matches(context())

    def test_date_range_open_ends(self):
        assert DateRangeCondition(start_date=FRIDAY).matches(context(SATURDAY))
        assert not DateRangeCondition(end_date=date(2026, 10, 22)).matches(context())
        with pytest.raises(ValueError):
            DateRangeCondition()


class TestPricingRule:
    """Test cases for pricing rule matching and specificity."""

    def test_specificity_counts_dimensions(self):
        weekend = PricingRule(1, "Weekend", conditions=(WeekendCondition(True),))
        saturday = PricingRule(2, "Saturday", conditions=(DayOfWeekCondition(5),))
        sprinter_saturday = PricingRule(
            3, "Sprinter Saturday", conditions=(DayOfWeekCondition(5), VehicleTypeCondition("sprinter")),
        )

        assert PricingRule(4, "Default").specificity == 0
        assert weekend.specificity == 1
        assert saturday.specificity == 2
        assert sprinter_saturday.specificity == 3

    def test_same_dimension_counts_once(self):
        rule = PricingRule(
            1, "Weekend Saturday", conditions=(WeekendCondition(True), DayOfWeekCondition(5)),
        )

        assert rule.dimensions == frozenset({"weekend", "day_of_week"})
        assert rule.specificity == 2

    def test_validity_window_is_a_date_range_dimension(self):
        rule = PricingRule(
            1, "Autumn promo",
            conditions=(DateRangeCondition(start_date=date(2026, 9, 1)),),
            valid_until=date(2026, 11, 30),
        )

        assert rule.specificity == 1
        assert rule.matches(context())
        assert not rule.matches(context(date(2026, 12, 1)))

    def test_inactive_rule_never_matches(self):
        assert not PricingRule(1, "Retired", active=False).matches(context())

    def test_all_conditions_must_match(self):
        rule = PricingRule(
            1, "Sprinter weekend", conditions=(VehicleTypeCondition("sprinter"), WeekendCondition(True)),
        )

        assert rule.matches(context(SATURDAY, vehicle_type="sprinter"))
        assert not rule.matches(context(FRIDAY, vehicle_type="sprinter"))
        assert not rule.matches(context(SATURDAY, vehicle_type="sedan"))

    def test_invalid_amounts(self):
        with pytest.raises(ValueError):
            PricingRule(1, "Bad", multiplier=Decimal("-1"))
        with pytest.raises(ValueError):
            PricingRule(1, "Bad", base_price=-100)
        with pytest.raises(ValueError):
            PricingRule(1, "Bad", min_price=5000, max_price=1000)


class TestRuleSnapshot:
    """Test cases for RuleSnapshot lookups."""

    def test_buffer_is_largest_applicable(self):
        snapshot = RuleSnapshot(
            version=1,
            availability_rules=(
                BufferRule(1, 30),
                BufferRule(2, 90, ResourceKind.DRIVER),
                BufferRule(3, 120, active=False),
            ),
        )

        assert snapshot.buffer_minutes_for(ResourceKind.VEHICLE) == 30
        assert snapshot.buffer_minutes_for(ResourceKind.DRIVER) == 90
        assert RuleSnapshot(version=1).buffer_minutes_for(ResourceKind.VEHICLE) == 0

    def test_rule_lookups_skip_inactive(self):
        snapshot = RuleSnapshot(
            version=2,
            availability_rules=(
                BlackoutRule(1, FRIDAY, FRIDAY),
                BlackoutRule(2, SATURDAY, SATURDAY, active=False),
                CapacityRule(3, max_daily_bookings=5),
                CapacityRule(4, max_daily_bookings=1, active=False),
            ),
        )

        assert [r.rule_id for r in snapshot.blackouts_on(FRIDAY)] == [1]
        assert snapshot.blackouts_on(SATURDAY) == []
        assert [r.rule_id for r in snapshot.capacity_rules] == [3]

    def test_pricing_context(self):
        snapshot = RuleSnapshot(version=1, holidays=frozenset({FRIDAY}))

        ctx = snapshot.pricing_context(FRIDAY, 360, 8, "SPRINTER")

        assert ctx.is_holiday
        assert ctx.vehicle_type == "sprinter"
        assert not ctx.is_weekend
        assert ctx.day_of_week == 4
