"""
Rate limiting package for the limiter service.

Holds the dual-window token bucket, the sequential drain that consumes it, and
the snapshot poller used by observers.
"""

from .token_bucket import BucketSnapshot, TokenBucketPair
from .sequential import (
    DrainResult,
    DrainRun,
    OutcomeStatus,
    SequentialLimiter,
    TaskOutcome,
)
from .observer import SnapshotPoller, format_countdown

__all__ = [
    "BucketSnapshot",
    "DrainResult",
    "DrainRun",
    "OutcomeStatus",
    "SequentialLimiter",
    "SnapshotPoller",
    "TaskOutcome",
    "TokenBucketPair",
    "format_countdown",
]
