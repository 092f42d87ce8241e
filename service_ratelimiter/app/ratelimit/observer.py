"""
Pull-based snapshot polling for display and telemetry consumers.
"""

import asyncio
from typing import Callable, Optional

from shared.logging import get_logger

from .token_bucket import BucketSnapshot, TokenBucketPair

SnapshotCallback = Callable[[BucketSnapshot], None]


class SnapshotPoller:
    """Reads the bucket snapshot on a fixed cadence and keeps the latest one."""

    def __init__(self,
                 bucket: TokenBucketPair,
                 interval: float = 0.1,
                 on_snapshot: Optional[SnapshotCallback] = None):
        self.bucket = bucket
        self.interval = interval
        self.on_snapshot = on_snapshot
        self.logger = get_logger("ratelimiter.observer")
        self._latest: BucketSnapshot = bucket.snapshot()
        self._task: Optional[asyncio.Task] = None

    @property
    def latest(self) -> BucketSnapshot:
        return self._latest

    def poll(self) -> BucketSnapshot:
        """Take one snapshot now and publish it."""
        self._latest = self.bucket.snapshot()
        if self.on_snapshot is not None:
            self.on_snapshot(self._latest)
        return self._latest

    async def _run(self) -> None:
        while True:
            try:
                self.poll()
            except Exception as e:
                # A broken consumer must not stop the polling loop
                self.logger.error("Snapshot callback failed", error=str(e))
            await asyncio.sleep(self.interval)

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run(), name="snapshot-poller")

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass


def format_countdown(seconds: float) -> str:
    """Render a countdown as whole minutes and seconds, e.g. "1 minutes 5 seconds"."""
    seconds = max(seconds, 0.0)
    minutes = int(seconds // 60)
    remainder = int(seconds % 60)
    return f"{minutes} minutes {remainder} seconds"
