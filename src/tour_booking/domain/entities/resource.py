"""Schedulable resources: vehicles and drivers."""

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Dict, List, Optional, Tuple

from ..clock import utcnow


class ResourceKind(Enum):
    """Resource kind enumeration."""
    VEHICLE = "vehicle"
    DRIVER = "driver"


class Resource:
    """A vehicle or a driver as seen by the booking core.

    Owned by the fleet/roster directory; the core only reads it.
    """

    def __init__(
        self,
        resource_id: int,
        kind: ResourceKind,
        name: str = "",
        capacity: Optional[int] = None,
        vehicle_type: Optional[str] = None,
        is_active: bool = True,
    ):
        if kind == ResourceKind.VEHICLE:
            if capacity is None or capacity < 1:
                raise ValueError("Vehicles must have a capacity of at least 1")
        elif capacity is not None or vehicle_type is not None:
            raise ValueError("Only vehicles carry capacity and vehicle type")

        self._id = resource_id
        self._kind = kind
        self._name = name or f"{kind.value}-{resource_id}"
        self._capacity = capacity
        self._vehicle_type = vehicle_type.lower() if vehicle_type else None
        self._is_active = is_active

    @property
    def id(self) -> int:
        return self._id

    @property
    def kind(self) -> ResourceKind:
        return self._kind

    @property
    def name(self) -> str:
        return self._name

    @property
    def capacity(self) -> Optional[int]:
        """Seats, vehicles only."""
        return self._capacity

    @property
    def vehicle_type(self) -> Optional[str]:
        """Vehicle class such as ``sprinter`` or ``sedan``, vehicles only."""
        return self._vehicle_type

    @property
    def is_active(self) -> bool:
        return self._is_active

    @property
    def is_vehicle(self) -> bool:
        return self._kind == ResourceKind.VEHICLE

    @property
    def is_driver(self) -> bool:
        return self._kind == ResourceKind.DRIVER

    def can_carry(self, party_size: int) -> bool:
        """Check whether a vehicle seats the whole party."""
        return self.is_vehicle and (self._capacity or 0) >= party_size

    def __eq__(self, other: object) -> bool:
        """Resources are identified by kind and id."""
        if not isinstance(other, Resource):
            return False
        return (self._kind, self._id) == (other._kind, other._id)

    def __hash__(self) -> int:
        return hash((self._kind, self._id))

    def __str__(self) -> str:
        return f"Resource({self._kind.value}:{self._id}, {self._name})"

    def __repr__(self) -> str:
        return str(self)


@dataclass(frozen=True)
class ResourceSnapshot:
    """Point-in-time view of the active resources for one date."""

    date: date
    resources: Tuple[Resource, ...]
    taken_at: datetime = field(default_factory=utcnow)

    @property
    def vehicles(self) -> List[Resource]:
        return sorted((r for r in self.resources if r.is_vehicle), key=lambda r: r.id)

    @property
    def drivers(self) -> List[Resource]:
        return sorted((r for r in self.resources if r.is_driver), key=lambda r: r.id)

    def find(self, kind: ResourceKind, resource_id: int) -> Optional[Resource]:
        return self._index().get((kind, resource_id))

    def _index(self) -> Dict[Tuple[ResourceKind, int], Resource]:
        return {(r.kind, r.id): r for r in self.resources}
