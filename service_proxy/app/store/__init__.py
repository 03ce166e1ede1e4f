"""
Coordination store package for the proxy.

All per-caller state (replay records, rate windows, bans, quota counters)
lives behind the CoordinationStore contract. Redis is the shared backend; the
local store is the per-process fallback.
"""

from typing import Callable, Optional, TYPE_CHECKING

from .base import CoordinationStore, CoordinationBackends
from .local_store import LocalCoordinationStore
from .redis_store import RedisCoordinationStore

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.config import ProxyConfig
    from shared.metrics import MetricsCollector


def build_backends(config: "ProxyConfig", metrics: Optional["MetricsCollector"] = None,
                   clock: Optional[Callable[[], float]] = None) -> CoordinationBackends:
    """Decide once which backends exist: Redis when REDIS_URL is set, local always."""
    shared = None
    if config.redis_url:
        shared = RedisCoordinationStore(config.redis_url, timeout_seconds=config.store_timeout_seconds)
    return CoordinationBackends(LocalCoordinationStore(clock=clock), shared=shared, metrics=metrics)


__all__ = [
    "CoordinationStore",
    "CoordinationBackends",
    "LocalCoordinationStore",
    "RedisCoordinationStore",
    "build_backends",
]
