"""Booking transaction coordinator.

Commits run through ``validating -> locking -> assigning -> persisting ->
committed``; any phase may end in ``aborted``. Only locking blocks. Locks are
held from locking through persisting and are released on every exit path.
"""

import asyncio
from datetime import datetime, time, timedelta
from enum import Enum
from typing import Callable, Iterable, List, Optional, Tuple
from uuid import UUID

from ...domain.clock import utcnow
from ...domain.entities.booking import (
    Booking,
    BookingStatus,
    BookingRequest,
    ItineraryShell,
    ResourceAssignment,
    TimelineEvent,
    TimelineEventType,
)
from ...domain.entities.resource import ResourceKind, ResourceSnapshot
from ...domain.entities.rules import RuleSnapshot
from ...domain.exceptions import (
    BookingError,
    BookingNotFound,
    InvalidStatusTransition,
    PersistenceError,
    SlotNoLongerAvailable,
)
from ...domain.value_objects.price_breakdown import PriceBreakdown
from ...infrastructure.logging import (
    get_logger,
    log_booking_event,
    log_commit_phase,
    log_transition_rejected,
)
from ..ports.locks import LockKey, ResourceLockManager
from ..ports.repositories import BookingStore
from .availability_engine import AvailabilityEngine, AvailableSlot
from .pricing_evaluator import PricingEvaluator
from .snapshots import SnapshotProvider

logger = get_logger(__name__)


class CommitPhase(Enum):
    """States of a booking commit."""
    VALIDATING = "validating"
    LOCKING = "locking"
    ASSIGNING = "assigning"
    PERSISTING = "persisting"
    COMMITTED = "committed"
    ABORTED = "aborted"


def resource_lock_keys(vehicle_ids: Iterable[int], driver_ids: Iterable[int]) -> List[LockKey]:
    keys = {LockKey.for_resource(ResourceKind.VEHICLE.value, vid) for vid in vehicle_ids}
    keys |= {LockKey.for_resource(ResourceKind.DRIVER.value, did) for did in driver_ids}
    return sorted(keys)


class BookingCoordinator:
    """Commits bookings and applies lifecycle transitions under resource locks.

    The coordinator never retries. Contention surfaces as the retryable
    ``SlotNoLongerAvailable`` and storage failures as ``PersistenceError``;
    the caller decides what to do next.
    """

    def __init__(
        self,
        engine: AvailabilityEngine,
        evaluator: PricingEvaluator,
        snapshots: SnapshotProvider,
        booking_store: BookingStore,
        lock_manager: ResourceLockManager,
        booking_prefix: str = "WWT",
        commit_timeout: float = 10.0,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._engine = engine
        self._evaluator = evaluator
        self._snapshots = snapshots
        self._store = booking_store
        self._locks = lock_manager
        self._prefix = booking_prefix
        self._commit_timeout = commit_timeout
        self._clock = clock or utcnow

    async def commit(self, request: BookingRequest, selected_start: time) -> Booking:
        """Commit a held booking for ``request`` starting at ``selected_start``."""
        pinned = request.at(selected_start)
        phase = CommitPhase.VALIDATING
        log_commit_phase(logger, phase.value, booking_date=pinned.date.isoformat())

        try:
            resources = await self._snapshots.resources(pinned.date)
            rules = await self._snapshots.rules()
            bookings = await self._store.list_active_for_date(pinned.date)
            candidate = self._feasible_slot(pinned, resources, rules, bookings)
            if candidate is None:
                raise SlotNoLongerAvailable(
                    f"{pinned.date.isoformat()} {selected_start.strftime('%H:%M')} is no longer available"
                )
            vehicle_id, _ = candidate.suggested_pair
            validated_type = self._vehicle_type(resources, vehicle_id)
            price = self._evaluator.price(pinned, validated_type, rules)

            keys = resource_lock_keys(candidate.vehicle_ids, candidate.driver_ids)
            if rules.capacity_rules:
                keys.append(LockKey.for_day_capacity(pinned.date))
                keys.sort()

            loop = asyncio.get_running_loop()
            deadline = loop.time() + self._commit_timeout

            def remaining() -> float:
                return max(deadline - loop.time(), 0.0)

            phase = CommitPhase.LOCKING
            log_commit_phase(logger, phase.value, lock_keys=[str(k) for k in keys])
            try:
                async with self._locks.acquire(keys, timeout=remaining()):
                    phase = CommitPhase.ASSIGNING
                    log_commit_phase(logger, phase.value)
                    current = await asyncio.wait_for(
                        self._store.list_active_for_date(pinned.date), remaining()
                    )
                    vehicle_id, driver_id = self._assign(pinned, candidate, resources, rules, current)

                    assigned_type = self._vehicle_type(resources, vehicle_id)
                    if assigned_type != validated_type:
                        price = self._evaluator.price(pinned, assigned_type, rules)

                    phase = CommitPhase.PERSISTING
                    log_commit_phase(logger, phase.value, vehicle_id=vehicle_id, driver_id=driver_id)
                    booking = await self._run_to_completion(
                        self._write_new_booking(pinned, vehicle_id, driver_id, price),
                        remaining(),
                    )
            except asyncio.TimeoutError as exc:
                raise PersistenceError(
                    f"Commit did not finish within {self._commit_timeout:g}s "
                    f"(timed out while {phase.value}); nothing was written"
                ) from exc
        except SlotNoLongerAvailable as exc:
            logger.info(
                "Slot no longer available",
                extra={"commit_phase": phase.value, "booking_date": pinned.date.isoformat(), "detail": str(exc)},
            )
            log_commit_phase(logger, CommitPhase.ABORTED.value, aborted_in=phase.value)
            raise
        except PersistenceError:
            logger.error(
                "Booking commit failed and was rolled back",
                exc_info=True,
                extra={"commit_phase": phase.value, "booking_date": pinned.date.isoformat()},
            )
            log_commit_phase(logger, CommitPhase.ABORTED.value, aborted_in=phase.value)
            raise
        except BookingError:
            log_commit_phase(logger, CommitPhase.ABORTED.value, aborted_in=phase.value)
            raise

        log_commit_phase(logger, CommitPhase.COMMITTED.value, booking_number=str(booking.booking_number))
        log_booking_event(
            logger, "held", str(booking.booking_number),
            vehicle_id=booking.vehicle_id, driver_id=booking.driver_id, total=booking.price.total,
        )
        return booking

    def _feasible_slot(
        self, pinned: BookingRequest, resources: ResourceSnapshot, rules: RuleSnapshot, bookings: List[Booking],
    ) -> Optional[AvailableSlot]:
        result = self._engine.evaluate(pinned, resources, rules, bookings)
        if not result.available:
            return None
        return result.slot_at(pinned.start)

    def _assign(
        self,
        pinned: BookingRequest,
        candidate: AvailableSlot,
        resources: ResourceSnapshot,
        rules: RuleSnapshot,
        current: List[Booking],
    ) -> Tuple[int, int]:
        """Lowest-id vehicle and driver that are locked and still free."""
        fresh = self._feasible_slot(pinned, resources, rules, current)
        if fresh is None:
            raise SlotNoLongerAvailable(
                f"{pinned.date.isoformat()} {pinned.start.strftime('%H:%M')} was taken by another booking"
            )
        vehicles = sorted(set(fresh.vehicle_ids) & set(candidate.vehicle_ids))
        drivers = sorted(set(fresh.driver_ids) & set(candidate.driver_ids))
        if not vehicles or not drivers:
            raise SlotNoLongerAvailable(
                f"No vehicle and driver remain free at {pinned.start.strftime('%H:%M')} on {pinned.date.isoformat()}"
            )
        return vehicles[0], drivers[0]

    @staticmethod
    def _vehicle_type(resources: ResourceSnapshot, vehicle_id: int) -> Optional[str]:
        vehicle = resources.find(ResourceKind.VEHICLE, vehicle_id)
        return vehicle.vehicle_type if vehicle else None

    async def _run_to_completion(self, work, timeout: float):
        """Run a unit of work that caller cancellation cannot interrupt.

        The timeout still applies: on expiry the unit of work is cancelled from
        inside, rolls back, and ``asyncio.TimeoutError`` propagates.
        """
        task = asyncio.ensure_future(asyncio.wait_for(work, timeout))
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            if task.cancelled():
                raise
            logger.warning("Cancellation requested while persisting; finishing the unit of work")
            while not task.done():
                try:
                    await asyncio.shield(task)
                except asyncio.CancelledError:
                    continue
            return task.result()

    async def _write_new_booking(
        self, pinned: BookingRequest, vehicle_id: int, driver_id: int, price: PriceBreakdown,
    ) -> Booking:
        created_at = self._clock()
        window = pinned.window()
        try:
            async with self._store.transaction() as tx:
                number = await tx.next_booking_number(self._prefix, created_at.year)
                booking = Booking(
                    booking_number=number,
                    window=window,
                    vehicle_id=vehicle_id,
                    driver_id=driver_id,
                    party_size=pinned.party_size,
                    price=price,
                    created_at=created_at,
                )
                await tx.add_booking(booking)
                await tx.add_assignment(ResourceAssignment(booking.id, vehicle_id, driver_id, window))
                await tx.add_itinerary(ItineraryShell(booking.id, window))
                await tx.append_event(TimelineEvent(
                    booking_id=booking.id,
                    event_type=TimelineEventType.HELD,
                    description=f"Booking {number} held for {window.date.isoformat()} {window.format_time_range()}",
                    data={
                        "vehicle_id": vehicle_id,
                        "driver_id": driver_id,
                        "party_size": pinned.party_size,
                        "total": price.total,
                        "deposit_amount": price.deposit_amount,
                        "pricing_rule_id": price.rule_id,
                    },
                    created_at=created_at,
                ))
        except BookingError:
            raise
        except Exception as exc:
            raise PersistenceError(f"Could not persist booking: {exc}") from exc
        return booking

    # ------------------------------------------------------------------
    # Lifecycle transitions
    # ------------------------------------------------------------------

    async def release(self, booking_id: UUID) -> Booking:
        """Release a held booking and free its resources."""
        return await self._transition(
            booking_id, lambda b: b.release(), TimelineEventType.RELEASED, "Hold released", drop_assignment=True,
        )

    async def confirm(self, booking_id: UUID) -> Booking:
        return await self._transition(
            booking_id, lambda b: b.confirm(), TimelineEventType.CONFIRMED, "Booking confirmed",
        )

    async def complete(self, booking_id: UUID) -> Booking:
        return await self._transition(
            booking_id, lambda b: b.complete(), TimelineEventType.COMPLETED, "Tour completed", drop_assignment=True,
        )

    async def cancel(self, booking_id: UUID, reason: str = "") -> Booking:
        """Administrative cancellation of a held or confirmed booking."""
        description = f"Booking cancelled: {reason}" if reason else "Booking cancelled"
        return await self._transition(
            booking_id, lambda b: b.cancel(), TimelineEventType.CANCELLED, description,
            drop_assignment=True, data={"reason": reason} if reason else None,
        )

    async def release_expired_holds(self, max_age: timedelta) -> List[Booking]:
        """Release every hold older than ``max_age``."""
        cutoff = self._clock() - max_age
        expired = await self._store.list_held_created_before(cutoff)
        released: List[Booking] = []
        for booking in expired:
            try:
                released.append(await self._transition(
                    booking.id, lambda b: b.release(), TimelineEventType.RELEASED,
                    "Hold expired", drop_assignment=True, data={"expired_before": cutoff.isoformat()},
                ))
            except InvalidStatusTransition:
                logger.info(
                    "Hold finalized before it could be released",
                    extra={"booking_number": str(booking.booking_number)},
                )
        if released:
            logger.info("Expired holds released", extra={"released_count": len(released)})
        return released

    async def _transition(
        self,
        booking_id: UUID,
        apply: Callable[[Booking], None],
        event_type: TimelineEventType,
        description: str,
        drop_assignment: bool = False,
        data: Optional[dict] = None,
    ) -> Booking:
        booking = await self._store.find_by_id(booking_id)
        if booking is None:
            raise BookingNotFound(f"Booking not found: {booking_id}")

        keys = resource_lock_keys([booking.vehicle_id], [booking.driver_id])
        try:
            async with self._locks.acquire(keys, timeout=self._commit_timeout):
                # Status may have moved while waiting for the locks.
                booking = await self._store.find_by_id(booking_id)
                if booking is None:
                    raise BookingNotFound(f"Booking not found: {booking_id}")
                previous = booking.status
                try:
                    apply(booking)
                except InvalidStatusTransition as exc:
                    log_transition_rejected(logger, str(booking.booking_number), str(exc))
                    raise
                await self._run_to_completion(
                    self._write_transition(booking, event_type, description, drop_assignment, previous, data),
                    self._commit_timeout,
                )
        except asyncio.TimeoutError as exc:
            raise PersistenceError(f"Status change of booking {booking_id} timed out") from exc

        log_booking_event(logger, event_type.value, str(booking.booking_number), status=booking.status.value)
        return booking

    async def _write_transition(
        self,
        booking: Booking,
        event_type: TimelineEventType,
        description: str,
        drop_assignment: bool,
        previous: BookingStatus,
        data: Optional[dict],
    ) -> None:
        event_data = {"from_status": previous.value, "to_status": booking.status.value}
        event_data.update(data or {})
        try:
            async with self._store.transaction() as tx:
                await tx.update_booking(booking)
                if drop_assignment:
                    await tx.delete_assignment(booking.id)
                await tx.append_event(TimelineEvent(
                    booking_id=booking.id,
                    event_type=event_type,
                    description=description,
                    data=event_data,
                    created_at=booking.updated_at,
                ))
        except BookingError:
            raise
        except Exception as exc:
            raise PersistenceError(f"Could not update booking {booking.booking_number}: {exc}") from exc
