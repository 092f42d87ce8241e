"""
End-to-end drain flow: config -> bucket pair -> sequential limiter -> observer.
"""

import asyncio
import time

import pytest

from service_ratelimiter.app.ratelimit import (
    OutcomeStatus,
    SequentialLimiter,
    SnapshotPoller,
    TokenBucketPair,
)
from shared.config import load_rate_limit_config
from shared.metrics import MetricsCollector


class TestDrainFlow:
    """Drain a mixed queue under shortened windows and watch it from the poller."""

    @pytest.mark.asyncio
    async def test_mixed_queue_under_quota(self):
        config = load_rate_limit_config(
            rate_limit_per_second=4,
            rate_limit_per_minute=10,
            buffer_percentage=50,
            second_window_seconds=0.1,
            minute_window_seconds=0.5,
            poll_interval_seconds=0.01,
        )
        metrics = MetricsCollector("integration")
        bucket = TokenBucketPair.from_config(config, metrics=metrics)
        limiter = SequentialLimiter(bucket, metrics=metrics)
        snapshots = []
        poller = SnapshotPoller(bucket, interval=0.01, on_snapshot=snapshots.append)
        progress = []

        def make(index):
            async def produce():
                await asyncio.sleep(0.001)
                if index % 4 == 3:
                    raise RuntimeError(f"upstream rejected {index}")
                return index * 10
            return produce

        async with bucket:
            poller.start()
            started = time.monotonic()
            result = await limiter.drain(
                [make(i) for i in range(12)],
                on_progress=lambda done, pending: progress.append((done, pending)),
            )
            elapsed = time.monotonic() - started
            await poller.stop()

        assert [o.index for o in result.outcomes] == list(range(12))
        assert [o.status for o in result.outcomes].count(OutcomeStatus.FAILED) == 3
        assert result.values()[:3] == [0, 10, 20]
        assert progress == [(i, 12 - i) for i in range(1, 13)]

        # 2 tokens per 0.1s slice and 5 per 0.5s minute-window
        assert elapsed >= 0.5
        for snapshot in snapshots:
            assert 0 <= snapshot.second_remaining <= bucket.second_capacity
            assert 0 <= snapshot.minute_remaining <= bucket.minute_capacity

        assert metrics.sample("tokens_acquired_total") == 12.0
        assert metrics.sample("tasks_total", status="failed") == 3.0
