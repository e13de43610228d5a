"""Pricing rule evaluation."""

from decimal import Decimal
from typing import List, Optional

from ...domain.entities.booking import BookingRequest
from ...domain.entities.rules import PricingContext, PricingRule, RuleSnapshot
from ...domain.exceptions import AmbiguousRuleError, NoMatchingRuleError
from ...domain.value_objects.money import Numeric, apply_rate, clamp, round_half_even
from ...domain.value_objects.price_breakdown import PriceBreakdown, PriceModifier
from ...infrastructure.logging import get_logger

logger = get_logger(__name__)


class PricingEvaluator:
    """Selects the winning pricing rule for a request and prices it.

    The winner is the matching rule with the highest priority, then the highest
    specificity. A tie on both keys is a rule configuration defect and raises
    ``AmbiguousRuleError`` instead of picking one.
    """

    def __init__(self, deposit_percent: Numeric = 50, currency: str = "USD"):
        if not 0 <= Decimal(str(deposit_percent)) <= 100:
            raise ValueError("Deposit percent must be between 0 and 100")
        self._deposit_percent = deposit_percent
        self._currency = currency

    @property
    def deposit_percent(self) -> Numeric:
        return self._deposit_percent

    def price(self, request: BookingRequest, vehicle_type: Optional[str], rules: RuleSnapshot) -> PriceBreakdown:
        """Price ``request`` for a vehicle type against one rule snapshot."""
        context = rules.pricing_context(
            request.date, request.duration_minutes, request.party_size,
            vehicle_type or request.vehicle_type,
        )
        rule = self.select_rule(context, rules.pricing_rules)
        breakdown = self.compute(rule, context)
        logger.debug(
            "Price computed",
            extra={
                "rule_id": rule.rule_id,
                "rules_version": rules.version,
                "total": breakdown.total,
            },
        )
        return breakdown

    def select_rule(self, context: PricingContext, pricing_rules: List[PricingRule]) -> PricingRule:
        candidates = [rule for rule in pricing_rules if rule.matches(context)]
        if not candidates:
            raise NoMatchingRuleError(
                f"No pricing rule matches {context.date.isoformat()} for "
                f"{context.duration_minutes / 60:g}h, party of {context.party_size}"
                + (f", vehicle type {context.vehicle_type}" if context.vehicle_type else "")
            )

        candidates.sort(key=lambda rule: (rule.priority, rule.specificity), reverse=True)
        winner = candidates[0]
        tied = [
            rule for rule in candidates
            if (rule.priority, rule.specificity) == (winner.priority, winner.specificity)
        ]
        if len(tied) > 1:
            dimensions = sorted(set().union(*(rule.dimensions for rule in tied)))
            error = AmbiguousRuleError(
                rule_ids=sorted(rule.rule_id for rule in tied),
                priority=winner.priority,
                specificity=winner.specificity,
                dimensions=dimensions,
            )
            logger.critical(
                "Ambiguous pricing rule configuration",
                extra={
                    "rule_ids": error.rule_ids,
                    "priority": error.priority,
                    "specificity": error.specificity,
                    "pricing_date": context.date.isoformat(),
                },
            )
            raise error
        return winner

    def compute(self, rule: PricingRule, context: PricingContext) -> PriceBreakdown:
        """Apply a rule's formula to a context.

        linear = base + per_hour * hours + per_person * party
        subtotal = clamp(linear)
        total = subtotal * multiplier, clamped again only when both bounds are set
        """
        hourly = round_half_even(Decimal(rule.per_hour) * Decimal(context.duration_minutes) / Decimal(60))
        per_person = rule.per_person * context.party_size
        linear = rule.base_price + hourly + per_person

        subtotal = clamp(linear, rule.min_price, rule.max_price)
        multiplied = apply_rate(subtotal, rule.multiplier)
        total = multiplied
        if rule.min_price is not None and rule.max_price is not None:
            total = clamp(multiplied, rule.min_price, rule.max_price)

        modifiers: List[PriceModifier] = []

        def add(name: str, amount: int) -> None:
            if amount:
                modifiers.append(PriceModifier(name, amount))

        add("hourly", hourly)
        add("per_person", per_person)
        if subtotal > linear:
            add("minimum_price", subtotal - linear)
        elif subtotal < linear:
            add("maximum_price", subtotal - linear)
        add("multiplier", multiplied - subtotal)
        add("final_cap", total - multiplied)

        return PriceBreakdown.build(
            base=rule.base_price,
            modifiers=modifiers,
            subtotal=subtotal,
            total=total,
            deposit_percent=self._deposit_percent,
            rule_id=rule.rule_id,
            rule_name=rule.name,
            currency=self._currency,
        )
