"""
Unit tests for the snapshot poller.
"""

import asyncio
from unittest.mock import MagicMock

import pytest

from service_ratelimiter.app.ratelimit.observer import SnapshotPoller, format_countdown
from service_ratelimiter.app.ratelimit.token_bucket import TokenBucketPair


class TestSnapshotPoller:
    """Test cases for SnapshotPoller."""

    @pytest.fixture
    def bucket(self):
        return TokenBucketPair(5, 100)

    def test_latest_is_available_before_start(self, bucket):
        poller = SnapshotPoller(bucket)

        assert poller.latest.second_remaining == 5
        assert poller.latest.minute_remaining == 100

    @pytest.mark.asyncio
    async def test_poll_publishes_to_callback(self, bucket):
        seen = []
        poller = SnapshotPoller(bucket, on_snapshot=seen.append)

        await bucket.acquire_one()
        snapshot = poller.poll()

        assert seen == [snapshot]
        assert snapshot.second_remaining == 4
        assert poller.latest is snapshot

    @pytest.mark.asyncio
    async def test_polls_on_cadence(self, bucket):
        seen = []
        poller = SnapshotPoller(bucket, interval=0.02, on_snapshot=seen.append)

        poller.start()
        await asyncio.sleep(0.15)
        await poller.stop()
        count = len(seen)
        await asyncio.sleep(0.05)

        assert count >= 3
        assert len(seen) == count

    @pytest.mark.asyncio
    async def test_failing_callback_does_not_stop_polling(self, bucket):
        callback = MagicMock(side_effect=RuntimeError("display gone"))
        poller = SnapshotPoller(bucket, interval=0.01, on_snapshot=callback)
        poller.logger = MagicMock()

        poller.start()
        await asyncio.sleep(0.05)
        await poller.stop()

        assert callback.call_count >= 2
        poller.logger.error.assert_called()

    @pytest.mark.asyncio
    async def test_polling_does_not_mutate_bucket(self, bucket):
        poller = SnapshotPoller(bucket, interval=0.01)

        poller.start()
        await asyncio.sleep(0.05)
        await poller.stop()

        assert bucket.second_remaining == 5
        assert bucket.minute_remaining == 100

    @pytest.mark.asyncio
    async def test_stop_without_start(self, bucket):
        await SnapshotPoller(bucket).stop()


class TestFormatCountdown:
    """Countdown labels."""

    @pytest.mark.parametrize("seconds, expected", [
        (0, "0 minutes 0 seconds"),
        (59.9, "0 minutes 59 seconds"),
        (60, "1 minutes 0 seconds"),
        (125.4, "2 minutes 5 seconds"),
        (-3, "0 minutes 0 seconds"),
    ])
    def test_format(self, seconds, expected):
        assert format_countdown(seconds) == expected
