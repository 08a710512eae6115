"""Resilience module for node execution.

Provides retry policies and resettable timeouts.
"""

from flowchord.resilience.retry import RetryPolicy
from flowchord.resilience.timeout import Deadline, TimeoutManager

__all__ = [
    "Deadline",
    "RetryPolicy",
    "TimeoutManager",
]
