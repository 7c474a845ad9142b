"""
Polling - periodic reads with failure backoff
"""

from .scheduler import (
    ConnectionHealth,
    RetryScheduler,
    SchedulerGroup,
    compute_backoff_delay,
)

__all__ = [
    "ConnectionHealth",
    "RetryScheduler",
    "SchedulerGroup",
    "compute_backoff_delay",
]
