"""
Rate limiting package for the proxy.

Holds the sliding-window limiter that enforces per-identity request budgets
and escalating temporary bans on abuse.
"""

from .sliding_window import RateLimitDecision, SlidingWindowRateLimiter

__all__ = ["RateLimitDecision", "SlidingWindowRateLimiter"]
