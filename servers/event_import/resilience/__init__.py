"""Resilience helpers for calls to the upstream search API."""

from .retry import backoff_delay, retry_async

__all__ = [
    "backoff_delay",
    "retry_async",
]
