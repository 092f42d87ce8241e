"""
Rate limiter service: exposes the bucket snapshot, drain progress and a demo run.
"""

import asyncio
import uuid
from typing import Any, Dict, List, Optional

from fastapi import status
from pydantic import BaseModel, Field

from shared.base_service import BaseService
from shared.errors import RunConflictError

from .ratelimit import SequentialLimiter, SnapshotPoller, TokenBucketPair, format_countdown


class DemoRequest(BaseModel):
    """Queue of synthetic tasks, each resolving with its index after a delay."""
    count: int = Field(default=100, ge=0, le=100_000)
    delay_ms: int = Field(default=10, ge=0, le=60_000)


class DemoAccepted(BaseModel):
    run_id: str
    total: int


class SnapshotResponse(BaseModel):
    tokensPerSecondRemaining: float
    tokensPerMinuteRemaining: float
    perSecondCountdownSeconds: float
    perMinuteCountdownSeconds: float
    perMinuteCountdownLabel: str


def build_demo_queue(count: int, delay_ms: int) -> List[Any]:
    """Producers that each sleep for delay_ms and return their own index."""
    delay = delay_ms / 1000

    def make(index: int):
        async def produce() -> int:
            await asyncio.sleep(delay)
            return index
        return produce

    return [make(i) for i in range(count)]


class RateLimiterService(BaseService):
    """Rate limiter service implementation."""

    def __init__(self, **config_overrides: Any):
        super().__init__("ratelimiter", 8020, **config_overrides)
        self.bucket = TokenBucketPair.from_config(self.config, metrics=self.metrics)
        self.limiter = SequentialLimiter(self.bucket, fail_fast=self.config.fail_fast, metrics=self.metrics)
        self.poller = SnapshotPoller(self.bucket, interval=self.config.poll_interval_seconds)
        self._demo_task: Optional[asyncio.Task] = None
        self._cancel_event: Optional[asyncio.Event] = None

    async def on_startup(self) -> None:
        self.bucket.start()
        self.poller.start()
        self.logger.info(
            "Rate limiter service started",
            second_capacity=self.bucket.second_capacity,
            minute_capacity=self.bucket.minute_capacity,
        )

    async def on_shutdown(self) -> None:
        if self._cancel_event is not None:
            self._cancel_event.set()
        if self._demo_task is not None:
            await asyncio.gather(self._demo_task, return_exceptions=True)
        await self.poller.stop()
        await self.bucket.stop()
        self.logger.info("Rate limiter service stopped")

    async def _check_dependencies(self) -> Dict[str, str]:
        return {"refill_timers": "running" if self.bucket.running else "stopped"}

    def _demo_running(self) -> bool:
        return self._demo_task is not None and not self._demo_task.done()

    def _log_progress(self, total: int):
        step = max(1, total // 10)

        def on_progress(completed: int, pending: int) -> None:
            if completed % step == 0 or pending == 0:
                self.logger.info("Drain progress", completed=completed, pending=pending, total=total)

        return on_progress

    async def _run_demo(self, run_id: str, count: int, delay_ms: int) -> None:
        result = await self.limiter.drain(
            build_demo_queue(count, delay_ms),
            on_progress=self._log_progress(count),
            cancel_event=self._cancel_event,
            run_id=run_id,
        )
        self.logger.info(
            "Demo run finished",
            run_id=run_id,
            completed=result.completed_count,
            failed=len(result.failures()),
            cancelled=result.cancelled,
        )

    def _setup_routes(self):
        """Set up API routes."""
        super()._setup_routes()

        @self.app.get("/ratelimit/snapshot", response_model=SnapshotResponse)
        async def get_snapshot():
            """Latest polled snapshot of both token windows."""
            snapshot = self.poller.latest
            return SnapshotResponse(
                **snapshot.to_observer_dict(),
                perMinuteCountdownLabel=format_countdown(snapshot.seconds_until_minute_refill),
            )

        @self.app.get("/ratelimit/progress")
        async def get_progress():
            """Progress of the active drain, or of the last one."""
            return self.limiter.progress()

        @self.app.post("/ratelimit/demo", response_model=DemoAccepted, status_code=status.HTTP_202_ACCEPTED)
        async def start_demo(request: DemoRequest):
            """Drain a queue of synthetic tasks under the configured quotas."""
            if self._demo_running() or self.limiter.busy:
                current = self.limiter.current_run
                raise RunConflictError(current.run_id if current else "pending")

            run_id = str(uuid.uuid4())
            self._cancel_event = asyncio.Event()
            self._demo_task = asyncio.create_task(
                self._run_demo(run_id, request.count, request.delay_ms),
                name=f"demo-{run_id}",
            )
            return DemoAccepted(run_id=run_id, total=request.count)

        @self.app.post("/ratelimit/demo/cancel")
        async def cancel_demo():
            """Stop the demo drain before it acquires its next token."""
            running = self._demo_running()
            if running and self._cancel_event is not None:
                self._cancel_event.set()
            return {"cancelled": running}


def create_app():
    """Create FastAPI application."""
    service = RateLimiterService()
    return service.app


if __name__ == "__main__":
    service = RateLimiterService()
    service.run()
