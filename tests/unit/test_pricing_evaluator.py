"""Unit tests for the pricing rule evaluator."""

import logging
import pytest
from datetime import date, time
from decimal import Decimal

from src.tour_booking.application.services.pricing_evaluator import PricingEvaluator
from src.tour_booking.domain.entities.booking import BookingRequest
from src.tour_booking.domain.entities.rules import (
    DayOfWeekCondition,
    HolidayCondition,
    PricingRule,
    RuleSnapshot,
    VehicleTypeCondition,
    WeekendCondition,
)
from src.tour_booking.domain.exceptions import AmbiguousRuleError, NoMatchingRuleError
from src.tour_booking.domain.value_objects.price_breakdown import PriceModifier

FRIDAY = date(2026, 10, 23)
SATURDAY = date(2026, 10, 24)
SUNDAY = date(2026, 10, 25)


def request(day: date = FRIDAY, hours: int = 4, party_size: int = 6, vehicle_type=None) -> BookingRequest:
    return BookingRequest(date=day, duration_minutes=hours * 60, party_size=party_size,
                          start=time(10, 0), vehicle_type=vehicle_type)


def snapshot(*pricing_rules: PricingRule, holidays=()) -> RuleSnapshot:
    return RuleSnapshot(version=3, pricing_rules=tuple(pricing_rules), holidays=frozenset(holidays))


@pytest.fixture
def evaluator():
    return PricingEvaluator(deposit_percent=50)


class TestRuleSelection:
    """Test cases for winning rule selection."""

    def test_more_specific_rule_wins_on_equal_priority(self, evaluator):
        """Saturday-only beats weekend at the same priority."""
        weekend = PricingRule(1, "Weekend", conditions=(WeekendCondition(True),), base_price=100000,
                              multiplier=Decimal("1.2"), priority=10)
        saturday = PricingRule(2, "Saturday", conditions=(DayOfWeekCondition(5),), base_price=100000,
                               multiplier=Decimal("1.3"), priority=10)
        rules = snapshot(weekend, saturday)

        price = evaluator.price(request(SATURDAY), None, rules)

        assert price.rule_id == 2
        assert price.total == 130000

        sunday_price = evaluator.price(request(SUNDAY), None, rules)
        assert sunday_price.rule_id == 1
        assert sunday_price.total == 120000

    def test_priority_beats_specificity(self, evaluator):
        specific = PricingRule(1, "Saturday sprinter", priority=5,
                               conditions=(DayOfWeekCondition(5), VehicleTypeCondition("sprinter")))
        generic = PricingRule(2, "House rate", priority=20)

        winner = evaluator.select_rule(
            snapshot().pricing_context(SATURDAY, 240, 4, "sprinter"), [specific, generic],
        )

        assert winner.rule_id == 2

    def test_tie_is_a_configuration_error(self, evaluator, caplog):
        first = PricingRule(11, "Friday A", conditions=(DayOfWeekCondition(4),), priority=5, base_price=1000)
        second = PricingRule(12, "Friday B", conditions=(DayOfWeekCondition(4),), priority=5, base_price=2000)

        with caplog.at_level(logging.CRITICAL):
            with pytest.raises(AmbiguousRuleError) as exc_info:
                evaluator.price(request(FRIDAY, hours=6), None, snapshot(first, second))

        assert exc_info.value.rule_ids == [11, 12]
        assert exc_info.value.priority == 5
        assert exc_info.value.specificity == 2
        assert any(record.levelno == logging.CRITICAL for record in caplog.records)

    def test_tie_below_the_winner_is_not_an_error(self, evaluator):
        winner = PricingRule(1, "Winner", priority=10)
        loser_a = PricingRule(2, "A", priority=1)
        loser_b = PricingRule(3, "B", priority=1)

        assert evaluator.price(request(), None, snapshot(loser_a, winner, loser_b)).rule_id == 1

    def test_no_matching_rule(self, evaluator):
        weekend_only = PricingRule(1, "Weekend", conditions=(WeekendCondition(True),))

        with pytest.raises(NoMatchingRuleError):
            evaluator.price(request(FRIDAY), None, snapshot(weekend_only))

    def test_inactive_and_expired_rules_are_skipped(self, evaluator):
        retired = PricingRule(1, "Retired", priority=50, active=False)
        expired = PricingRule(2, "Summer promo", priority=40, valid_until=date(2026, 8, 31))
        current = PricingRule(3, "Standard", priority=0)

        assert evaluator.price(request(), None, snapshot(retired, expired, current)).rule_id == 3

    def test_vehicle_type_argument(self, evaluator):
        sprinter = PricingRule(1, "Sprinter", conditions=(VehicleTypeCondition("sprinter"),),
                               base_price=60000, priority=10)
        standard = PricingRule(2, "Standard", base_price=40000)
        rules = snapshot(sprinter, standard)

        assert evaluator.price(request(), "SPRINTER", rules).rule_id == 1
        assert evaluator.price(request(), None, rules).rule_id == 2
        assert evaluator.price(request(vehicle_type="sprinter"), None, rules).rule_id == 1

    def test_holiday_rule(self, evaluator):
        holiday = PricingRule(1, "Holiday", conditions=(HolidayCondition(True),), priority=30,
                              multiplier=Decimal("1.5"), base_price=10000)
        standard = PricingRule(2, "Standard", base_price=10000)

        price = evaluator.price(request(), None, snapshot(holiday, standard, holidays=[FRIDAY]))

        assert price.rule_id == 1
        assert price.total == 15000


class TestPriceComputation:
    """Test cases for the price formula."""

    def test_linear_formula(self, evaluator):
        rule = PricingRule(1, "Standard", base_price=15000, per_hour=9500, min_price=40000)

        price = evaluator.price(request(hours=4), None, snapshot(rule))

        assert price.base == 15000
        assert price.modifiers == (PriceModifier("hourly", 38000),)
        assert price.subtotal == 53000
        assert price.total == 53000
        assert price.deposit_amount == 26500
        assert price.balance_amount == 26500
        assert price.rule_name == "Standard"

    def test_per_person(self, evaluator):
        rule = PricingRule(1, "Per head", base_price=10000, per_person=2500)

        price = evaluator.price(request(party_size=6), None, snapshot(rule))

        assert price.total == 25000
        assert price.modifiers == (PriceModifier("per_person", 15000),)

    def test_minimum_price(self, evaluator):
        rule = PricingRule(1, "Minimum", per_hour=5000, min_price=40000)

        price = evaluator.price(request(hours=4), None, snapshot(rule))

        assert price.subtotal == 40000
        assert price.total == 40000
        assert PriceModifier("minimum_price", 20000) in price.modifiers

    def test_multiplier_then_cap_when_both_bounds_set(self, evaluator):
        rule = PricingRule(1, "Capped", per_hour=10000, min_price=10000, max_price=50000,
                           multiplier=Decimal("1.5"))

        price = evaluator.price(request(hours=4), None, snapshot(rule))

        assert price.subtotal == 40000
        assert price.total == 50000
        assert price.modifiers == (
            PriceModifier("hourly", 40000),
            PriceModifier("multiplier", 20000),
            PriceModifier("final_cap", -10000),
        )

    def test_multiplier_not_reclamped_with_one_bound(self, evaluator):
        rule = PricingRule(1, "Max only", per_hour=10000, max_price=50000, multiplier=Decimal("1.5"))

        price = evaluator.price(request(hours=4), None, snapshot(rule))

        assert price.subtotal == 40000
        assert price.total == 60000

    def test_maximum_price_before_multiplier(self, evaluator):
        rule = PricingRule(1, "Max only", per_hour=20000, max_price=50000)

        price = evaluator.price(request(hours=4), None, snapshot(rule))

        assert price.total == 50000
        assert PriceModifier("maximum_price", -30000) in price.modifiers

    def test_multiplier_rounds_half_even(self, evaluator):
        rule = PricingRule(1, "Odd", base_price=10001, multiplier=Decimal("1.5"))

        price = evaluator.price(request(), None, snapshot(rule))

        assert price.total == 15002

    def test_modifiers_reconcile(self, evaluator):
        rule = PricingRule(1, "Everything", base_price=12345, per_hour=6789, per_person=1111,
                           multiplier=Decimal("1.37"), min_price=50000, max_price=90000)

        for hours in (4, 5, 6, 7, 8):
            price = evaluator.price(request(hours=hours, party_size=3), None, snapshot(rule))
            assert price.base + sum(m.amount for m in price.modifiers) == price.total
            assert price.deposit_amount + price.balance_amount == price.total

    def test_deposit_percent(self):
        rule = PricingRule(1, "Odd total", base_price=10001)

        price = PricingEvaluator(deposit_percent=30).price(request(), None, snapshot(rule))

        assert price.deposit_amount == 3000
        assert price.balance_amount == 7001

    def test_invalid_deposit_percent(self):
        with pytest.raises(ValueError):
            PricingEvaluator(deposit_percent=150)

    def test_deterministic(self, evaluator):
        rule = PricingRule(1, "Standard", base_price=15000, per_hour=9500, multiplier=Decimal("1.15"))
        rules = snapshot(rule)

        assert evaluator.price(request(), None, rules) == evaluator.price(request(), None, rules)
