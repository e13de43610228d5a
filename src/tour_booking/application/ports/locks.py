"""Port interface for per-resource write locks."""

from abc import ABC, abstractmethod
from datetime import date
from typing import AsyncContextManager, Iterable, NamedTuple, Optional


class LockKey(NamedTuple):
    """Sortable lock identifier.

    Keys compare by namespace first, so every lock manager that acquires keys
    in sorted order acquires them in the same global order.
    """

    namespace: str
    value: str

    @classmethod
    def for_resource(cls, kind: str, resource_id: int) -> "LockKey":
        return cls(kind, f"{resource_id:012d}")

    @classmethod
    def for_day_capacity(cls, day: date) -> "LockKey":
        return cls("capacity", day.isoformat())

    def __str__(self) -> str:
        return f"{self.namespace}:{self.value}"


class ResourceLockManager(ABC):
    """Exclusive locks over a small, bounded set of keys."""

    @abstractmethod
    def acquire(self, keys: Iterable[LockKey], timeout: Optional[float] = None) -> AsyncContextManager[None]:
        """Hold every key for the duration of the context.

        Keys are taken in ascending order and released on every exit path.
        Raises ``asyncio.TimeoutError`` when ``timeout`` elapses first, with
        nothing left held.
        """
        raise NotImplementedError
