"""Customer-facing booking number value object."""

import re
from dataclasses import dataclass

_PATTERN = re.compile(r"^(?P<prefix>[A-Z][A-Z0-9]*)-(?P<year>\d{4})-(?P<sequence>\d{5,})$")


@dataclass(frozen=True, order=True)
class BookingNumber:
    """Immutable ``PREFIX-YYYY-NNNNN`` booking number."""

    prefix: str
    year: int
    sequence: int

    def __post_init__(self) -> None:
        """Validate booking number parts."""
        if not re.match(r"^[A-Z][A-Z0-9]*$", self.prefix):
            raise ValueError(f"Invalid booking number prefix: {self.prefix!r}")
        if not 1000 <= self.year <= 9999:
            raise ValueError(f"Invalid booking year: {self.year}")
        if self.sequence < 1:
            raise ValueError("Booking sequence numbers start at 1")

    @classmethod
    def parse(cls, value: str) -> "BookingNumber":
        match = _PATTERN.match(value.strip().upper())
        if not match:
            raise ValueError(f"Invalid booking number: {value!r}")
        return cls(match["prefix"], int(match["year"]), int(match["sequence"]))

    def __str__(self) -> str:
        return f"{self.prefix}-{self.year:04d}-{self.sequence:05d}"
