"""
Resilience Module
=================

- backoff: Fixed and exponential delay strategies
- retry: RetryExecutor on tenacity with cancellation and deadlines
"""

from polystore.resilience.backoff import BackoffPolicy, DelayStrategy, FixedDelay
from polystore.resilience.retry import DEFAULT_POLICY, RetryExecutor, RetryPolicy, retry_call

__all__ = [
    "BackoffPolicy",
    "DelayStrategy",
    "FixedDelay",
    "DEFAULT_POLICY",
    "RetryExecutor",
    "RetryPolicy",
    "retry_call",
]
