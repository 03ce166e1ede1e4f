"""
Retry policy for resilient downstream calls.
"""

import random
from typing import Callable, Optional


class RetryConfig:
    """Configuration for retry behavior. Delays are in seconds."""

    def __init__(self,
                 max_attempts: int = 4,
                 base_delay: float = 0.5,
                 max_delay: float = 8.0,
                 exponential_base: float = 2.0,
                 jitter_bound: float = 0.2):
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.jitter_bound = jitter_bound

    @classmethod
    def from_config(cls, config) -> "RetryConfig":
        """Build from a ProxyConfig (millisecond fields)."""
        return cls(
            max_attempts=config.retry_max_attempts,
            base_delay=config.retry_initial_ms / 1000.0,
            max_delay=config.retry_max_ms / 1000.0,
            jitter_bound=config.retry_jitter_ms / 1000.0,
        )


class RetryAttempt:
    """In-flight retry state for a single outbound call."""

    def __init__(self, config: RetryConfig, rand: Optional[Callable[[], float]] = None):
        self.config = config
        self.attempt = 0
        self.delay = config.base_delay
        self._rand = rand or random.random

    def next_wait(self) -> float:
        """Wait before the next attempt, then double the base delay up to the ceiling.

        The wait is ``min(delay, max_delay)`` plus jitter in ``[0, jitter_bound)``.
        """
        wait = min(self.delay, self.config.max_delay) + self._rand() * self.config.jitter_bound
        self.delay = min(self.delay * self.config.exponential_base, self.config.max_delay)
        return wait
