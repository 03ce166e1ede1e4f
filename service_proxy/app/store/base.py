"""
Coordination store contract and shared-first/local-fallback dispatch.
"""

from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Optional, TypeVar, TYPE_CHECKING

from shared.errors import StoreError
from shared.logging import get_logger

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector

T = TypeVar("T")


class CoordinationStore(ABC):
    """Key/value-with-expiry, atomic counter and ordered-set operations.

    TTLs are milliseconds. Implementations raise StoreError on backend failure.
    """

    name = "store"

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        ...

    @abstractmethod
    async def set(self, key: str, value: str, ttl_ms: Optional[int] = None) -> None:
        ...

    @abstractmethod
    async def set_if_absent(self, key: str, value: str, ttl_ms: Optional[int] = None) -> bool:
        """Create key atomically. Returns False if it already existed."""

    @abstractmethod
    async def increment_by(self, key: str, delta: int) -> int:
        """Atomically add delta. An absent key is created at delta."""

    @abstractmethod
    async def expire(self, key: str, ttl_ms: int) -> None:
        ...

    @abstractmethod
    async def add_to_ordered_set(self, key: str, score: float, member: str) -> None:
        ...

    @abstractmethod
    async def remove_range_by_score(self, key: str, min_score: float, max_score: float) -> int:
        """Remove members with min_score <= score <= max_score."""

    @abstractmethod
    async def count_ordered_set(self, key: str) -> int:
        ...

    @abstractmethod
    async def ping(self) -> bool:
        ...

    async def close(self) -> None:
        return None


class CoordinationBackends:
    """The shared store (when configured) plus the per-process fallback.

    Which backends exist is decided once at construction. Each operation runs
    against the shared store first; a StoreError re-runs it against the local
    store. Callers never see StoreError.
    """

    def __init__(self, local: CoordinationStore, shared: Optional[CoordinationStore] = None,
                 metrics: Optional["MetricsCollector"] = None):
        self.local = local
        self.shared = shared
        self.metrics = metrics
        self.logger = get_logger("proxy.store")

    @property
    def has_shared(self) -> bool:
        return self.shared is not None

    async def run(self, operation: str, fn: Callable[[CoordinationStore], Awaitable[T]]) -> T:
        if self.shared is not None:
            try:
                return await fn(self.shared)
            except StoreError as e:
                self.logger.warning("coordination_store_fallback", operation=operation, error=str(e))
                if self.metrics:
                    self.metrics.record_store_fallback(operation)
        return await fn(self.local)

    async def close(self) -> None:
        if self.shared is not None:
            await self.shared.close()
