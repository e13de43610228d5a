"""Unit tests for the booking transaction coordinator."""

import asyncio
import pytest
from datetime import date, datetime, time, timedelta
from unittest.mock import AsyncMock, patch
from uuid import uuid4

from src.tour_booking.application.ports.locks import LockKey
from src.tour_booking.application.services.availability_engine import AvailabilityEngine
from src.tour_booking.application.services.booking_coordinator import (
    BookingCoordinator,
    resource_lock_keys,
)
from src.tour_booking.application.services.pricing_evaluator import PricingEvaluator
from src.tour_booking.application.services.snapshots import SnapshotProvider
from src.tour_booking.domain.entities.booking import (
    BookingRequest,
    BookingStatus,
    TimelineEventType,
)
from src.tour_booking.domain.entities.resource import Resource, ResourceKind
from src.tour_booking.domain.entities.rules import CapacityRule, PricingRule, VehicleTypeCondition
from src.tour_booking.domain.exceptions import (
    BookingNotFound,
    InvalidRequest,
    InvalidStatusTransition,
    PersistenceError,
    SlotNoLongerAvailable,
)
from src.tour_booking.infrastructure.locks import AsyncioResourceLockManager
from src.tour_booking.infrastructure.repositories.memory_repositories import (
    InMemoryBookingStore,
    InMemoryBookingTransaction,
    InMemoryResourceDirectory,
    InMemoryRuleStore,
)

NOW = datetime(2026, 10, 18, 7, 0)
TOUR_DATE = date(2026, 10, 23)
STANDARD = PricingRule(1, "Standard", base_price=15000, per_hour=9500)


class MutableClock:
    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class Stack:
    """Coordinator wired to in-memory adapters."""

    def __init__(self, resources, availability_rules=(), pricing_rules=(STANDARD,), commit_timeout=10.0):
        self.clock = MutableClock()
        self.store = InMemoryBookingStore()
        self.locks = AsyncioResourceLockManager()
        self.snapshots = SnapshotProvider(
            InMemoryResourceDirectory(resources),
            InMemoryRuleStore(list(availability_rules), list(pricing_rules)),
        )
        self.coordinator = BookingCoordinator(
            engine=AvailabilityEngine(clock=self.clock),
            evaluator=PricingEvaluator(deposit_percent=50),
            snapshots=self.snapshots,
            booking_store=self.store,
            lock_manager=self.locks,
            commit_timeout=commit_timeout,
            clock=self.clock,
        )

    def nothing_locked(self, vehicle_ids=(1, 2), driver_ids=(1, 2)) -> bool:
        return not any(self.locks.is_locked(k) for k in resource_lock_keys(vehicle_ids, driver_ids))


def vehicle(resource_id: int, vehicle_type: str = "sprinter", capacity: int = 14) -> Resource:
    return Resource(resource_id, ResourceKind.VEHICLE, capacity=capacity, vehicle_type=vehicle_type)


def driver(resource_id: int) -> Resource:
    return Resource(resource_id, ResourceKind.DRIVER)


def tour(hours: int = 6, party_size: int = 8, vehicle_type=None) -> BookingRequest:
    return BookingRequest(date=TOUR_DATE, duration_minutes=hours * 60, party_size=party_size,
                          vehicle_type=vehicle_type)


@pytest.fixture
def single_pair():
    return Stack([vehicle(1), driver(1)])


@pytest.fixture
def two_pairs():
    return Stack([vehicle(1), vehicle(2), driver(1), driver(2)])


class TestLockKeys:
    """Test cases for lock key construction."""

    def test_sorted_and_deduplicated(self):
        keys = resource_lock_keys([2, 1, 2], [1])

        assert keys == [
            LockKey.for_resource("driver", 1),
            LockKey.for_resource("vehicle", 1),
            LockKey.for_resource("vehicle", 2),
        ]


class TestCommit:
    """Test cases for BookingCoordinator.commit."""

    @pytest.mark.asyncio
    async def test_commit_holds_a_booking(self, single_pair):
        booking = await single_pair.coordinator.commit(tour(), time(10, 0))

        assert str(booking.booking_number) == "WWT-2026-00001"
        assert booking.status == BookingStatus.HELD
        assert (booking.vehicle_id, booking.driver_id) == (1, 1)
        assert booking.window.end == time(16, 0)
        assert booking.price.total == 15000 + 6 * 9500
        assert booking.created_at == NOW

        store = single_pair.store
        assert await store.find_by_id(booking.id) == booking
        assert (await store.find_assignment(booking.id)).vehicle_id == 1
        assert await store.find_itinerary(booking.id) is not None
        events = await store.list_timeline(booking.id)
        assert [e.event_type for e in events] == [TimelineEventType.HELD]
        assert events[0].data["total"] == booking.price.total
        assert single_pair.nothing_locked()

    @pytest.mark.asyncio
    async def test_sequence_increments(self, two_pairs):
        first = await two_pairs.coordinator.commit(tour(), time(8, 0))
        second = await two_pairs.coordinator.commit(tour(), time(8, 0))
        third = await two_pairs.coordinator.commit(tour(hours=4), time(18, 0))

        assert [b.booking_number.sequence for b in (first, second, third)] == [1, 2, 3]
        assert {(first.vehicle_id, first.driver_id), (second.vehicle_id, second.driver_id)} == {(1, 1), (2, 2)}

    @pytest.mark.asyncio
    async def test_unavailable_slot(self, single_pair):
        await single_pair.coordinator.commit(tour(), time(10, 0))

        with pytest.raises(SlotNoLongerAvailable) as exc_info:
            await single_pair.coordinator.commit(tour(), time(12, 0))

        assert exc_info.value.retryable
        assert single_pair.store.sequence_value(2026) == 1

    @pytest.mark.asyncio
    async def test_invalid_request_is_not_a_lost_race(self, single_pair):
        with pytest.raises(InvalidRequest):
            await single_pair.coordinator.commit(tour(), time(10, 30))

        assert single_pair.store.all_bookings() == []

    @pytest.mark.asyncio
    async def test_start_with_seconds_is_invalid(self, single_pair):
        with pytest.raises(InvalidRequest):
            await single_pair.coordinator.commit(tour(), time(10, 0, 30))

        assert single_pair.store.all_bookings() == []

    @pytest.mark.asyncio
    async def test_two_simultaneous_commits_for_the_last_pair(self, single_pair):
        results = await asyncio.gather(
            single_pair.coordinator.commit(tour(), time(10, 0)),
            single_pair.coordinator.commit(tour(), time(10, 0)),
            return_exceptions=True,
        )

        bookings = [r for r in results if not isinstance(r, Exception)]
        errors = [r for r in results if isinstance(r, Exception)]
        assert len(bookings) == 1
        assert len(errors) == 1
        assert isinstance(errors[0], SlotNoLongerAvailable)
        assert str(bookings[0].booking_number) == "WWT-2026-00001"
        assert len(single_pair.store.all_bookings()) == 1
        assert single_pair.nothing_locked()

    @pytest.mark.asyncio
    async def test_many_commits_never_double_book(self, two_pairs):
        results = await asyncio.gather(
            *(two_pairs.coordinator.commit(tour(), time(10, 0)) for _ in range(6)),
            return_exceptions=True,
        )

        bookings = [r for r in results if not isinstance(r, Exception)]
        errors = [r for r in results if isinstance(r, Exception)]
        assert len(bookings) == 2
        assert all(isinstance(e, SlotNoLongerAvailable) for e in errors)
        assert sorted(b.booking_number.sequence for b in bookings) == [1, 2]
        assert len({b.vehicle_id for b in bookings}) == 2
        assert len({b.driver_id for b in bookings}) == 2

    @pytest.mark.asyncio
    async def test_capacity_is_serialized_across_resources(self):
        stack = Stack(
            [vehicle(1), vehicle(2), driver(1), driver(2)],
            availability_rules=[CapacityRule(1, max_daily_bookings=1)],
        )

        results = await asyncio.gather(
            stack.coordinator.commit(tour(hours=4), time(8, 0)),
            stack.coordinator.commit(tour(hours=4), time(14, 0)),
            return_exceptions=True,
        )

        assert sum(1 for r in results if not isinstance(r, Exception)) == 1
        assert sum(1 for r in results if isinstance(r, SlotNoLongerAvailable)) == 1
        assert not stack.locks.is_locked(LockKey.for_day_capacity(TOUR_DATE))

    @pytest.mark.asyncio
    async def test_price_follows_assigned_vehicle_type(self):
        stack = Stack(
            [vehicle(1, "sedan", capacity=4), driver(1)],
            pricing_rules=(
                STANDARD,
                PricingRule(2, "Sedan", conditions=(VehicleTypeCondition("sedan"),), base_price=9000, priority=5),
            ),
        )

        booking = await stack.coordinator.commit(tour(party_size=2), time(9, 0))

        assert booking.price.rule_id == 2

    @pytest.mark.asyncio
    async def test_failed_write_rolls_back_everything(self, single_pair):
        with patch.object(
            InMemoryBookingTransaction, "add_itinerary", AsyncMock(side_effect=RuntimeError("disk full")),
        ):
            with pytest.raises(PersistenceError):
                await single_pair.coordinator.commit(tour(), time(10, 0))

        assert single_pair.store.all_bookings() == []
        assert single_pair.store.sequence_value(2026) == 0
        assert single_pair.nothing_locked()

        booking = await single_pair.coordinator.commit(tour(), time(10, 0))
        assert str(booking.booking_number) == "WWT-2026-00001"

    @pytest.mark.asyncio
    async def test_timeout_becomes_persistence_error(self):
        stack = Stack([vehicle(1), driver(1)], commit_timeout=0.05)

        async def stall(*args, **kwargs):
            await asyncio.sleep(1)

        with patch.object(InMemoryBookingTransaction, "add_booking", AsyncMock(side_effect=stall)):
            with pytest.raises(PersistenceError):
                await stack.coordinator.commit(tour(), time(10, 0))

        assert stack.store.all_bookings() == []
        assert stack.store.sequence_value(2026) == 0
        assert not stack.store.sequence_lock.locked()
        assert stack.nothing_locked()

    @pytest.mark.asyncio
    async def test_cancellation_during_persist_still_commits(self, single_pair):
        started = asyncio.Event()
        proceed = asyncio.Event()
        original = InMemoryBookingTransaction.add_itinerary

        async def slow_itinerary(self, itinerary):
            started.set()
            await proceed.wait()
            await original(self, itinerary)

        with patch.object(InMemoryBookingTransaction, "add_itinerary", slow_itinerary):
            task = asyncio.create_task(single_pair.coordinator.commit(tour(), time(10, 0)))
            await started.wait()
            task.cancel()
            await asyncio.sleep(0)
            proceed.set()
            booking = await task

        stored = await single_pair.store.find_by_id(booking.id)
        assert stored is not None
        assert await single_pair.store.find_itinerary(booking.id) is not None
        assert single_pair.nothing_locked()


class TestLifecycle:
    """Test cases for booking status transitions."""

    @pytest.mark.asyncio
    async def test_confirm_then_complete(self, single_pair):
        booking = await single_pair.coordinator.commit(tour(), time(10, 0))

        confirmed = await single_pair.coordinator.confirm(booking.id)
        assert confirmed.status == BookingStatus.CONFIRMED
        assert await single_pair.store.find_assignment(booking.id) is not None

        completed = await single_pair.coordinator.complete(booking.id)
        assert completed.status == BookingStatus.COMPLETED
        assert await single_pair.store.find_assignment(booking.id) is None

        events = await single_pair.store.list_timeline(booking.id)
        assert [e.event_type for e in events] == [
            TimelineEventType.HELD,
            TimelineEventType.CONFIRMED,
            TimelineEventType.COMPLETED,
        ]
        assert events[1].data == {"from_status": "held", "to_status": "confirmed"}

    @pytest.mark.asyncio
    async def test_completed_booking_keeps_its_window_blocked(self, single_pair):
        booking = await single_pair.coordinator.commit(tour(), time(10, 0))
        await single_pair.coordinator.confirm(booking.id)
        await single_pair.coordinator.complete(booking.id)

        with pytest.raises(SlotNoLongerAvailable):
            await single_pair.coordinator.commit(tour(), time(10, 0))

        assert len(single_pair.store.all_bookings()) == 1

    @pytest.mark.asyncio
    async def test_release_frees_the_slot(self, single_pair):
        booking = await single_pair.coordinator.commit(tour(), time(10, 0))

        released = await single_pair.coordinator.release(booking.id)
        again = await single_pair.coordinator.commit(tour(), time(10, 0))

        assert released.status == BookingStatus.CANCELLED
        assert str(again.booking_number) == "WWT-2026-00002"

    @pytest.mark.asyncio
    async def test_release_only_holds(self, single_pair):
        booking = await single_pair.coordinator.commit(tour(), time(10, 0))
        await single_pair.coordinator.confirm(booking.id)

        with pytest.raises(InvalidStatusTransition):
            await single_pair.coordinator.release(booking.id)

        assert (await single_pair.store.find_by_id(booking.id)).status == BookingStatus.CONFIRMED
        assert single_pair.nothing_locked()

    @pytest.mark.asyncio
    async def test_cancel_with_reason(self, single_pair):
        booking = await single_pair.coordinator.commit(tour(), time(10, 0))
        await single_pair.coordinator.confirm(booking.id)

        cancelled = await single_pair.coordinator.cancel(booking.id, reason="Weather")

        assert cancelled.status == BookingStatus.CANCELLED
        events = await single_pair.store.list_timeline(booking.id)
        assert events[-1].event_type == TimelineEventType.CANCELLED
        assert events[-1].data["reason"] == "Weather"
        assert events[-1].data["from_status"] == "confirmed"
        assert await single_pair.store.list_active_for_date(TOUR_DATE) == []

    @pytest.mark.asyncio
    async def test_unknown_booking(self, single_pair):
        with pytest.raises(BookingNotFound):
            await single_pair.coordinator.confirm(uuid4())


class TestExpiredHolds:
    """Test cases for releasing stale holds."""

    @pytest.mark.asyncio
    async def test_releases_only_stale_holds(self, two_pairs):
        stale = await two_pairs.coordinator.commit(tour(), time(8, 0))
        confirmed = await two_pairs.coordinator.commit(tour(), time(8, 0))
        await two_pairs.coordinator.confirm(confirmed.id)
        two_pairs.clock.now = NOW + timedelta(minutes=10)
        fresh = await two_pairs.coordinator.commit(tour(hours=4), time(18, 0))

        two_pairs.clock.now = NOW + timedelta(minutes=20)
        released = await two_pairs.coordinator.release_expired_holds(timedelta(minutes=15))

        assert [b.id for b in released] == [stale.id]
        assert (await two_pairs.store.find_by_id(stale.id)).status == BookingStatus.CANCELLED
        assert (await two_pairs.store.find_by_id(confirmed.id)).status == BookingStatus.CONFIRMED
        assert (await two_pairs.store.find_by_id(fresh.id)).status == BookingStatus.HELD
        events = await two_pairs.store.list_timeline(stale.id)
        assert events[-1].event_type == TimelineEventType.RELEASED
        assert "expired_before" in events[-1].data

    @pytest.mark.asyncio
    async def test_nothing_to_release(self, single_pair):
        await single_pair.coordinator.commit(tour(), time(10, 0))

        assert await single_pair.coordinator.release_expired_holds(timedelta(minutes=15)) == []
