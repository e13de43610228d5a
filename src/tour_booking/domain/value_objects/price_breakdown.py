"""Price breakdown value objects."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from .money import Numeric, split_installments


@dataclass(frozen=True)
class PriceModifier:
    """One named adjustment applied on top of the base price."""

    name: str
    amount: int

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "amount": self.amount}


@dataclass(frozen=True)
class PriceBreakdown:
    """Immutable price quote in minor units.

    ``deposit_amount + balance_amount == total`` and
    ``base + sum(modifiers) == total`` hold for every instance.
    """

    base: int
    modifiers: Tuple[PriceModifier, ...]
    subtotal: int
    deposit_amount: int
    balance_amount: int
    total: int
    rule_id: Optional[int] = None
    rule_name: Optional[str] = None
    currency: str = field(default="USD")

    def __post_init__(self) -> None:
        if self.deposit_amount + self.balance_amount != self.total:
            raise ValueError("Deposit and balance must add up to the total")
        if self.base + sum(m.amount for m in self.modifiers) != self.total:
            raise ValueError("Base and modifiers must add up to the total")
        if self.total < 0:
            raise ValueError("Total cannot be negative")

    @classmethod
    def build(
        cls,
        base: int,
        modifiers: List[PriceModifier],
        subtotal: int,
        total: int,
        deposit_percent: Numeric,
        rule_id: Optional[int] = None,
        rule_name: Optional[str] = None,
        currency: str = "USD",
    ) -> "PriceBreakdown":
        """Create a breakdown, deriving the balance from the deposit."""
        deposit, balance = split_installments(total, [deposit_percent])
        return cls(
            base=base,
            modifiers=tuple(modifiers),
            subtotal=subtotal,
            deposit_amount=deposit,
            balance_amount=balance,
            total=total,
            rule_id=rule_id,
            rule_name=rule_name,
            currency=currency,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for storage in a JSON column."""
        return {
            "base": self.base,
            "modifiers": [m.to_dict() for m in self.modifiers],
            "subtotal": self.subtotal,
            "deposit_amount": self.deposit_amount,
            "balance_amount": self.balance_amount,
            "total": self.total,
            "rule_id": self.rule_id,
            "rule_name": self.rule_name,
            "currency": self.currency,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PriceBreakdown":
        return cls(
            base=data["base"],
            modifiers=tuple(PriceModifier(m["name"], m["amount"]) for m in data.get("modifiers", [])),
            subtotal=data["subtotal"],
            deposit_amount=data["deposit_amount"],
            balance_amount=data["balance_amount"],
            total=data["total"],
            rule_id=data.get("rule_id"),
            rule_name=data.get("rule_name"),
            currency=data.get("currency", "USD"),
        )
