"""Availability and conflict engine.

Pure computation over a resource snapshot, a rule snapshot and the existing
bookings of one day. Nothing here takes locks or touches storage, so any
number of availability checks can run side by side.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from enum import Enum
from typing import Callable, Dict, FrozenSet, Iterable, List, Optional, Sequence, Tuple

from ...domain.clock import utcnow
from ...domain.entities.booking import Booking, BookingRequest
from ...domain.entities.resource import Resource, ResourceKind, ResourceSnapshot
from ...domain.entities.rules import CapacityRule, RuleSnapshot
from ...domain.exceptions import InvalidDuration, InvalidRequest, OutOfWindow
from ...domain.value_objects.time_window import Interval, TimeWindow, minutes_of, time_of
from ...infrastructure.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class BookingPolicy:
    """Operating constraints the engine validates requests against."""

    opening_time: time = time(8, 0)
    closing_time: time = time(22, 0)
    allowed_durations_minutes: FrozenSet[int] = frozenset({240, 300, 360, 420, 480})
    slot_granularity_minutes: int = 60
    max_advance_days: int = 365

    def __post_init__(self) -> None:
        if self.opening_time >= self.closing_time:
            raise ValueError("Opening time must be before closing time")
        if self.slot_granularity_minutes < 1:
            raise ValueError("Slot granularity must be at least one minute")
        if not self.allowed_durations_minutes:
            raise ValueError("At least one booking duration must be allowed")

    @property
    def operating_hours(self) -> Interval:
        return Interval(minutes_of(self.opening_time), minutes_of(self.closing_time))


class SlotGenerator:
    """Generates candidate start times for a day at the policy granularity."""

    def __init__(self, policy: BookingPolicy):
        self._policy = policy

    def candidate_starts(self, duration_minutes: int) -> List[int]:
        """Every start, in minutes since midnight, whose tour ends by closing time."""
        hours = self._policy.operating_hours
        step = self._policy.slot_granularity_minutes
        return list(range(hours.start, hours.end - duration_minutes + 1, step))

    def is_aligned(self, start: time, duration_minutes: int) -> bool:
        """Whether ``start`` is exactly one of the generated starts."""
        if start.second or start.microsecond or start.tzinfo is not None:
            return False
        return minutes_of(start) in self.candidate_starts(duration_minutes)


class UnavailableReason(Enum):
    """Why a request has no feasible slot."""
    BLACKOUT = "blackout"
    NO_ELIGIBLE_VEHICLE = "no_eligible_vehicle"
    NO_ELIGIBLE_DRIVER = "no_eligible_driver"
    CAPACITY_LIMIT = "capacity_limit"
    NO_OVERLAP = "no_overlap"


@dataclass(frozen=True)
class AvailableSlot:
    """A feasible start with the resources free for the whole window."""

    window: TimeWindow
    vehicle_ids: Tuple[int, ...]
    driver_ids: Tuple[int, ...]

    @property
    def start(self) -> time:
        return self.window.start

    @property
    def suggested_pair(self) -> Tuple[int, int]:
        """Lowest-id vehicle and driver."""
        return min(self.vehicle_ids), min(self.driver_ids)


@dataclass(frozen=True)
class AvailabilityResult:
    """Outcome of an availability check."""

    request: BookingRequest
    available: bool
    slots: Tuple[AvailableSlot, ...] = ()
    reason: Optional[UnavailableReason] = None
    detail: str = ""
    rules_version: Optional[int] = None
    checked_at: datetime = field(default_factory=utcnow)

    def __post_init__(self) -> None:
        if self.available and not self.slots:
            raise ValueError("An available result needs at least one slot")
        if not self.available and self.reason is None:
            raise ValueError("An unavailable result needs a reason")

    @property
    def start_times(self) -> List[time]:
        return [slot.start for slot in self.slots]

    @property
    def suggested_vehicle_id(self) -> Optional[int]:
        return self.slots[0].suggested_pair[0] if self.slots else None

    @property
    def suggested_driver_id(self) -> Optional[int]:
        return self.slots[0].suggested_pair[1] if self.slots else None

    def slot_at(self, start: time) -> Optional[AvailableSlot]:
        return next((slot for slot in self.slots if slot.start == start), None)


class AvailabilityEngine:
    """Computes feasible start times and candidate vehicle/driver pairs."""

    def __init__(self, policy: Optional[BookingPolicy] = None,
                 clock: Optional[Callable[[], datetime]] = None):
        self._policy = policy or BookingPolicy()
        self._clock = clock or utcnow
        self._slot_generator = SlotGenerator(self._policy)

    @property
    def policy(self) -> BookingPolicy:
        return self._policy

    def validate(self, request: BookingRequest) -> None:
        """Reject malformed requests before any availability work."""
        if request.party_size < 1:
            raise InvalidRequest("Party size must be at least 1")
        if request.duration_minutes not in self._policy.allowed_durations_minutes:
            raise InvalidDuration(request.duration_minutes, self._policy.allowed_durations_minutes)

        now = self._clock()
        today = now.date()
        if request.date < today:
            raise OutOfWindow(f"Cannot book tours in the past ({request.date.isoformat()})")
        horizon = today + timedelta(days=self._policy.max_advance_days)
        if request.date > horizon:
            raise OutOfWindow(
                f"Tours can be booked at most {self._policy.max_advance_days} days ahead "
                f"(latest {horizon.isoformat()})"
            )

        if request.start is not None:
            if not self._slot_generator.is_aligned(request.start, request.duration_minutes):
                raise InvalidRequest(
                    f"Start {request.start.isoformat()} is not a bookable slot "
                    f"between {self._policy.opening_time.strftime('%H:%M')} and "
                    f"{self._policy.closing_time.strftime('%H:%M')}"
                )
            if request.date == today and minutes_of(request.start) < minutes_of(now.time()):
                raise OutOfWindow("Requested start time has already passed")

    def evaluate(
        self,
        request: BookingRequest,
        resources: ResourceSnapshot,
        rules: RuleSnapshot,
        bookings: Sequence[Booking],
    ) -> AvailabilityResult:
        """Find every feasible start for ``request`` and the resources free at each."""
        self.validate(request)
        day = request.date

        def unavailable(reason: UnavailableReason, detail: str) -> AvailabilityResult:
            logger.info(
                "No availability",
                extra={"date": day.isoformat(), "reason": reason.value, "detail": detail},
            )
            return AvailabilityResult(
                request=request, available=False, reason=reason, detail=detail,
                rules_version=rules.version,
            )

        blackouts = rules.blackouts_on(day)
        global_blackouts = [rule for rule in blackouts if rule.is_global]
        if global_blackouts:
            return unavailable(
                UnavailableReason.BLACKOUT,
                "; ".join(rule.reason or "Date unavailable" for rule in global_blackouts),
            )

        live = [b for b in bookings if b.occupies_resources and b.date == day]
        vehicles, drivers, blacked_out = self._eligible_resources(request, resources, rules)
        if not vehicles:
            if blacked_out.get(ResourceKind.VEHICLE):
                return unavailable(UnavailableReason.BLACKOUT, "All suitable vehicles are blacked out")
            return unavailable(
                UnavailableReason.NO_ELIGIBLE_VEHICLE,
                f"No vehicles available with capacity for {request.party_size} guests",
            )
        if not drivers:
            if blacked_out.get(ResourceKind.DRIVER):
                return unavailable(UnavailableReason.BLACKOUT, "All drivers are blacked out")
            return unavailable(UnavailableReason.NO_ELIGIBLE_DRIVER, "No drivers on the roster for this date")

        free = self._free_intervals(vehicles + drivers, rules, live, day)

        if request.start is not None:
            starts = [minutes_of(request.start)]
        else:
            starts = self._slot_generator.candidate_starts(request.duration_minutes)
            if day == self._clock().date():
                now_minute = minutes_of(self._clock().time())
                starts = [s for s in starts if s >= now_minute]

        slots: List[AvailableSlot] = []
        overlap_found = False
        for start in starts:
            interval = Interval(start, start + request.duration_minutes)
            vehicle_ids = [v.id for v in vehicles if self._fits(free[v], interval)]
            driver_ids = [d.id for d in drivers if self._fits(free[d], interval)]
            if not vehicle_ids or not driver_ids:
                continue
            overlap_found = True

            vehicle_ids = [
                vid for vid in vehicle_ids
                if self._within_capacity(resources.find(ResourceKind.VEHICLE, vid), interval, rules, live, resources)
            ]
            if not vehicle_ids:
                continue
            slots.append(AvailableSlot(
                window=TimeWindow(day, time_of(interval.start), time_of(interval.end)),
                vehicle_ids=tuple(vehicle_ids),
                driver_ids=tuple(driver_ids),
            ))

        if not slots:
            if overlap_found:
                return unavailable(UnavailableReason.CAPACITY_LIMIT, "Daily booking capacity reached")
            return unavailable(
                UnavailableReason.NO_OVERLAP,
                "No vehicle and driver are free together for the requested duration",
            )

        logger.debug(
            "Availability computed",
            extra={"date": day.isoformat(), "slot_count": len(slots), "rules_version": rules.version},
        )
        return AvailabilityResult(
            request=request, available=True, slots=tuple(slots), rules_version=rules.version,
        )

    def _eligible_resources(
        self, request: BookingRequest, resources: ResourceSnapshot, rules: RuleSnapshot,
    ) -> Tuple[List[Resource], List[Resource], Dict[ResourceKind, int]]:
        """Drop inactive, undersized, wrong-type and blacked-out resources."""
        blackouts = [rule for rule in rules.blackouts_on(request.date) if not rule.is_global]
        blacked_out: Dict[ResourceKind, int] = {}
        wanted_type = request.vehicle_type.lower() if request.vehicle_type else None

        def keep(resource: Resource) -> bool:
            if not resource.is_active:
                return False
            if resource.is_vehicle:
                if not resource.can_carry(request.party_size):
                    return False
                if wanted_type and resource.vehicle_type != wanted_type:
                    return False
            if any(rule.blocks(resource, request.date) for rule in blackouts):
                blacked_out[resource.kind] = blacked_out.get(resource.kind, 0) + 1
                return False
            return True

        vehicles = [v for v in resources.vehicles if keep(v)]
        drivers = [d for d in resources.drivers if keep(d)]
        return vehicles, drivers, blacked_out

    def _free_intervals(
        self, candidates: Iterable[Resource], rules: RuleSnapshot, bookings: Sequence[Booking], day: date,
    ) -> Dict[Resource, List[Interval]]:
        """Operating hours minus buffered bookings and maintenance, per resource."""
        hours = self._policy.operating_hours
        maintenance = rules.maintenance_on(day)
        free: Dict[Resource, List[Interval]] = {}
        for resource in candidates:
            buffer_minutes = rules.buffer_minutes_for(resource.kind)
            occupied = [
                booking.window.interval.expanded(buffer_minutes)
                for booking in bookings
                if self._uses(booking, resource)
            ]
            occupied.extend(rule.window.interval for rule in maintenance if rule.blocks(resource, day))
            free[resource] = hours.subtract(occupied)
        return free

    @staticmethod
    def _uses(booking: Booking, resource: Resource) -> bool:
        if resource.is_vehicle:
            return booking.uses_resource(vehicle_id=resource.id)
        return booking.uses_resource(driver_id=resource.id)

    @staticmethod
    def _fits(free: Sequence[Interval], interval: Interval) -> bool:
        return any(piece.contains(interval) for piece in free)

    def _within_capacity(
        self,
        vehicle: Optional[Resource],
        interval: Interval,
        rules: RuleSnapshot,
        bookings: Sequence[Booking],
        resources: ResourceSnapshot,
    ) -> bool:
        """Check that one more booking on ``vehicle`` stays under every capacity ceiling."""
        vehicle_type = vehicle.vehicle_type if vehicle else None
        for rule in rules.capacity_rules:
            if rule.vehicle_type and rule.vehicle_type.lower() != vehicle_type:
                continue
            in_scope = [b for b in bookings if self._in_capacity_scope(rule, b, resources)]
            if rule.max_daily_bookings is not None and len(in_scope) + 1 > rule.max_daily_bookings:
                return False
            if rule.max_concurrent_bookings is not None:
                concurrent = sum(1 for b in in_scope if b.window.interval.overlaps(interval))
                if concurrent + 1 > rule.max_concurrent_bookings:
                    return False
        return True

    @staticmethod
    def _in_capacity_scope(rule: CapacityRule, booking: Booking, resources: ResourceSnapshot) -> bool:
        if not rule.vehicle_type:
            return True
        vehicle = resources.find(ResourceKind.VEHICLE, booking.vehicle_id)
        return vehicle is not None and vehicle.vehicle_type == rule.vehicle_type.lower()
