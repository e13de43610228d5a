"""Cached snapshots of the resource directory and the rule store."""

import asyncio
import time
from datetime import date
from typing import Callable, Dict, Optional, Tuple

from ...domain.entities.resource import ResourceSnapshot
from ...domain.entities.rules import RuleSnapshot
from ...infrastructure.logging import get_logger
from ..ports.repositories import ResourceDirectory, RuleStore

logger = get_logger(__name__)


class SnapshotProvider:
    """Serves resource and rule snapshots refreshed at a bounded interval.

    Both collaborators are read-many/write-rarely, so a snapshot may be up to
    ``ttl_seconds`` old. Existing bookings are never cached here; callers read
    them from the booking store directly.
    """

    def __init__(
        self,
        resource_directory: ResourceDirectory,
        rule_store: RuleStore,
        ttl_seconds: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._resource_directory = resource_directory
        self._rule_store = rule_store
        self._ttl = ttl_seconds
        self._clock = clock
        self._lock = asyncio.Lock()
        self._rules: Optional[Tuple[float, RuleSnapshot]] = None
        self._resources: Dict[date, Tuple[float, ResourceSnapshot]] = {}
        self._version = 0

    def _fresh(self, loaded_at: float) -> bool:
        return self._clock() - loaded_at < self._ttl

    async def rules(self) -> RuleSnapshot:
        """Current rule snapshot. Each reload gets a new version number."""
        cached = self._rules
        if cached and self._fresh(cached[0]):
            return cached[1]

        async with self._lock:
            cached = self._rules
            if cached and self._fresh(cached[0]):
                return cached[1]

            availability_rules = await self._rule_store.list_availability_rules()
            pricing_rules = await self._rule_store.list_pricing_rules()
            holidays = await self._rule_store.list_holidays()
            self._version += 1
            snapshot = RuleSnapshot(
                version=self._version,
                availability_rules=tuple(availability_rules),
                pricing_rules=tuple(pricing_rules),
                holidays=frozenset(holidays),
            )
            self._rules = (self._clock(), snapshot)
            logger.debug(
                "Rule snapshot loaded",
                extra={
                    "rules_version": snapshot.version,
                    "availability_rule_count": len(availability_rules),
                    "pricing_rule_count": len(pricing_rules),
                },
            )
            return snapshot

    async def resources(self, target_date: date) -> ResourceSnapshot:
        """Active vehicles and drivers for a date."""
        cached = self._resources.get(target_date)
        if cached and self._fresh(cached[0]):
            return cached[1]

        async with self._lock:
            cached = self._resources.get(target_date)
            if cached and self._fresh(cached[0]):
                return cached[1]

            resources = await self._resource_directory.list_active_resources(target_date)
            snapshot = ResourceSnapshot(date=target_date, resources=tuple(resources))
            now = self._clock()
            self._resources = {
                day: entry for day, entry in self._resources.items() if now - entry[0] < self._ttl
            }
            self._resources[target_date] = (now, snapshot)
            return snapshot

    def invalidate(self) -> None:
        """Drop every cached snapshot."""
        self._rules = None
        self._resources.clear()
