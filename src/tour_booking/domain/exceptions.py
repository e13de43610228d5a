"""Domain error taxonomy for the booking core."""

from typing import Iterable, Optional, Sequence


class BookingError(Exception):
    """Base class for every error the booking core raises to its callers."""

    retryable: bool = False
    code: str = "booking_error"


class InvalidRequest(BookingError, ValueError):
    """Malformed booking input, rejected before any engine work."""

    code = "invalid_request"


class InvalidDuration(InvalidRequest):
    """Requested duration is not one of the configured durations."""

    code = "invalid_duration"

    def __init__(self, duration_minutes: int, allowed_minutes: Iterable[int]):
        self.duration_minutes = duration_minutes
        self.allowed_minutes = sorted(allowed_minutes)
        allowed_hours = ", ".join(f"{m / 60:g}h" for m in self.allowed_minutes)
        super().__init__(
            f"Duration {duration_minutes / 60:g}h is not allowed (allowed: {allowed_hours})"
        )


class OutOfWindow(InvalidRequest):
    """Requested date falls outside the booking horizon."""

    code = "out_of_window"


class SlotNoLongerAvailable(BookingError):
    """The selected slot was taken between query and commit."""

    retryable = True
    code = "slot_no_longer_available"


class AmbiguousRuleError(BookingError):
    """Two pricing rules tie on priority and specificity for one request.

    This is a configuration defect in the rule store. The message is meant
    for operators; callers facing end customers must not echo it.
    """

    code = "ambiguous_pricing_rule"

    def __init__(self, rule_ids: Sequence[int], priority: int, specificity: int,
                 dimensions: Optional[Sequence[str]] = None):
        self.rule_ids = list(rule_ids)
        self.priority = priority
        self.specificity = specificity
        self.dimensions = list(dimensions or [])
        super().__init__(
            f"Pricing rules {self.rule_ids} tie at priority {priority} "
            f"and specificity {specificity} (dimensions: {', '.join(self.dimensions) or 'none'})"
        )


class NoMatchingRuleError(BookingError):
    """No active pricing rule matches the request."""

    code = "no_matching_pricing_rule"


class PersistenceError(BookingError):
    """Commit failed in the persistence layer; the unit of work was rolled back."""

    code = "persistence_error"


class BookingNotFound(BookingError):
    """Booking lookup by id or number found nothing."""

    code = "booking_not_found"


class InvalidStatusTransition(BookingError, ValueError):
    """Requested lifecycle transition is not allowed from the current status."""

    code = "invalid_status_transition"


class RuleConfigurationError(BookingError, ValueError):
    """A rule definition could not be loaded (unknown kind, bad values)."""

    code = "rule_configuration_error"
