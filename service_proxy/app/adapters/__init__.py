"""
Adapters package for the Proxy Service.

Contains the HTTP client wrapper for the downstream AI service. The adapter
encapsulates:

- Retry policy with capped exponential backoff and jitter
- Cancellation between attempts
- Retry metrics and logging

Keep adapters thin and side-effect free outside of explicit calls.
"""

from .downstream_client import ResilientDownstreamClient

__all__ = ["ResilientDownstreamClient"]
