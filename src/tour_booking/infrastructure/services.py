"""Dependency injection and service factory."""

from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncGenerator, Callable, Optional

from src.tour_booking.application.ports.locks import ResourceLockManager
from src.tour_booking.application.ports.repositories import BookingStore, ResourceDirectory, RuleStore
from src.tour_booking.application.services.availability_engine import AvailabilityEngine, BookingPolicy
from src.tour_booking.application.services.booking_coordinator import BookingCoordinator
from src.tour_booking.application.services.booking_service import BookingService
from src.tour_booking.application.services.pricing_evaluator import PricingEvaluator
from src.tour_booking.application.services.snapshots import SnapshotProvider
from src.tour_booking.domain.clock import utcnow, wall_clock
from src.tour_booking.infrastructure.database.connection import DatabaseManager
from src.tour_booking.infrastructure.locks import AsyncioResourceLockManager, PostgresAdvisoryLockManager
from src.tour_booking.infrastructure.logging import get_logger
from src.tour_booking.infrastructure.repositories.memory_repositories import (
    InMemoryBookingStore,
    InMemoryResourceDirectory,
    InMemoryRuleStore,
)
from src.tour_booking.infrastructure.repositories.sql_repositories import (
    SQLAlchemyBookingStore,
    SQLAlchemyResourceDirectory,
    SQLAlchemyRuleStore,
)
from src.tour_booking.infrastructure.rule_loader import load_seed_file
from src.tour_booking.presentation.api.config import Settings, get_settings

logger = get_logger(__name__)


class ServiceFactory:
    """Factory for creating application services with proper dependencies.

    Adapters given explicitly win over the configured backends, which is how
    tests wire in-memory stores and a fixed clock.
    """

    def __init__(
        self,
        settings: Settings,
        booking_store: Optional[BookingStore] = None,
        resource_directory: Optional[ResourceDirectory] = None,
        rule_store: Optional[RuleStore] = None,
        lock_manager: Optional[ResourceLockManager] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.settings = settings
        self.database_manager: Optional[DatabaseManager] = None
        if settings.storage_backend == "sql" or settings.lock_backend == "postgres":
            self.database_manager = DatabaseManager(
                settings.database_url,
                echo=settings.db_echo,
                pool_size=settings.db_pool_size,
                max_overflow=settings.db_max_overflow,
            )
        self._booking_store = booking_store
        self._resource_directory = resource_directory
        self._rule_store = rule_store
        self._lock_manager = lock_manager
        self._clock = clock
        self._booking_service: Optional[BookingService] = None
        self._connected = False

    async def initialize(self):
        """Initialize the service factory."""
        if self._connected:
            return
        if self.database_manager is not None:
            await self.database_manager.connect()
        self._booking_service = self._build_booking_service()
        self._connected = True
        logger.info(
            "Services initialized",
            extra={
                "storage_backend": self.settings.storage_backend,
                "lock_backend": self.settings.lock_backend,
            },
        )

    async def shutdown(self):
        """Shutdown the service factory."""
        if self._connected:
            if self.database_manager is not None:
                await self.database_manager.disconnect()
            self._booking_service = None
            self._connected = False

    def _build_adapters(self) -> None:
        settings = self.settings
        if settings.storage_backend == "sql":
            self._booking_store = self._booking_store or SQLAlchemyBookingStore(self.database_manager)
            self._resource_directory = self._resource_directory or SQLAlchemyResourceDirectory(self.database_manager)
            self._rule_store = self._rule_store or SQLAlchemyRuleStore(self.database_manager)
        else:
            seed = load_seed_file(settings.seed_file) if settings.seed_file else None
            self._booking_store = self._booking_store or InMemoryBookingStore()
            self._resource_directory = self._resource_directory or InMemoryResourceDirectory(
                seed.resources if seed else None
            )
            self._rule_store = self._rule_store or InMemoryRuleStore(
                seed.availability_rules if seed else None,
                seed.pricing_rules if seed else None,
                seed.holidays if seed else None,
            )

        if self._lock_manager is None:
            if settings.lock_backend == "postgres":
                self._lock_manager = PostgresAdvisoryLockManager(self.database_manager.engine)
            else:
                self._lock_manager = AsyncioResourceLockManager()

    def _build_booking_service(self) -> BookingService:
        settings = self.settings
        self._build_adapters()

        policy = BookingPolicy(
            opening_time=settings.opening_time,
            closing_time=settings.closing_time,
            allowed_durations_minutes=frozenset(settings.allowed_duration_minutes),
            slot_granularity_minutes=settings.slot_granularity_minutes,
            max_advance_days=settings.max_advance_days,
        )
        local_clock = wall_clock(self._clock or utcnow, settings.timezone)
        engine = AvailabilityEngine(policy, clock=local_clock)
        evaluator = PricingEvaluator(deposit_percent=settings.deposit_percent, currency=settings.currency)
        snapshots = SnapshotProvider(
            self._resource_directory, self._rule_store, ttl_seconds=settings.snapshot_ttl_seconds,
        )
        coordinator = BookingCoordinator(
            engine=engine,
            evaluator=evaluator,
            snapshots=snapshots,
            booking_store=self._booking_store,
            lock_manager=self._lock_manager,
            booking_prefix=settings.booking_number_prefix,
            commit_timeout=settings.commit_timeout_seconds,
            clock=self._clock,
        )
        return BookingService(
            engine=engine,
            evaluator=evaluator,
            snapshots=snapshots,
            booking_store=self._booking_store,
            coordinator=coordinator,
            hold_expiry=settings.hold_expiry,
        )

    @asynccontextmanager
    async def get_booking_service(self) -> AsyncGenerator[BookingService, None]:
        """Get the booking service; it opens its own units of work."""
        if self._booking_service is None:
            raise RuntimeError("Services not initialized. Call initialize() first.")
        yield self._booking_service


# Global service factory instance
_service_factory: ServiceFactory | None = None


def get_service_factory() -> ServiceFactory:
    """Get the global service factory instance."""
    global _service_factory

    if _service_factory is None:
        _service_factory = ServiceFactory(get_settings())

    return _service_factory


def set_service_factory(factory: Optional[ServiceFactory]) -> None:
    """Replace the global service factory (tests and scripts)."""
    global _service_factory
    _service_factory = factory


async def initialize_services():
    """Initialize application services."""
    factory = get_service_factory()
    await factory.initialize()


async def shutdown_services():
    """Shutdown application services."""
    factory = get_service_factory()
    await factory.shutdown()
