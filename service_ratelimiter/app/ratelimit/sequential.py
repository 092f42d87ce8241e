"""
Sequential drain of async task producers under the token bucket pair.
"""

import asyncio
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from shared.errors import TaskFailure
from shared.logging import clear_context, get_logger, set_run_id
from shared.metrics import MetricsCollector

from .token_bucket import TokenBucketPair

TaskProducer = Callable[[], Awaitable[Any]]
ProgressCallback = Callable[[int, int], None]


class OutcomeStatus(str, Enum):
    """Outcome kinds recorded for each drained task."""
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True)
class TaskOutcome:
    """Result of invoking one queued producer."""
    index: int
    status: OutcomeStatus
    value: Any = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.status is OutcomeStatus.SUCCEEDED


@dataclass
class DrainRun:
    """State of one drain invocation."""
    run_id: str
    total: int
    outcomes: List[TaskOutcome] = field(default_factory=list)
    cancelled: bool = False
    started_at: float = field(default_factory=time.time)
    finished_at: Optional[float] = None

    @property
    def completed_count(self) -> int:
        return len(self.outcomes)

    @property
    def pending_count(self) -> int:
        return self.total - self.completed_count

    @property
    def running(self) -> bool:
        return self.finished_at is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "total": self.total,
            "completed": self.completed_count,
            "pending": self.pending_count,
            "failed": sum(1 for outcome in self.outcomes if not outcome.ok),
            "running": self.running,
            "cancelled": self.cancelled,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
        }


@dataclass(frozen=True)
class DrainResult:
    """Ordered outcomes of a finished (or cancelled) drain."""
    run_id: str
    outcomes: List[TaskOutcome]
    cancelled: bool = False

    @property
    def completed_count(self) -> int:
        return len(self.outcomes)

    def values(self) -> List[Any]:
        """Success values in queue order; failed slots hold None."""
        return [outcome.value for outcome in self.outcomes]

    def failures(self) -> List[TaskOutcome]:
        return [outcome for outcome in self.outcomes if not outcome.ok]


class SequentialLimiter:
    """Run task producers one at a time, each gated by one token."""

    def __init__(self,
                 bucket: TokenBucketPair,
                 fail_fast: bool = False,
                 metrics: Optional[MetricsCollector] = None):
        self.bucket = bucket
        self.fail_fast = fail_fast
        self.metrics = metrics
        self.logger = get_logger("ratelimiter.sequential")
        self._run_lock = asyncio.Lock()
        self._current: Optional[DrainRun] = None

    @property
    def current_run(self) -> Optional[DrainRun]:
        """The active run, or the last finished one."""
        return self._current

    @property
    def busy(self) -> bool:
        return self._run_lock.locked()

    def progress(self) -> Dict[str, Any]:
        if self._current is None:
            return {"run_id": None, "total": 0, "completed": 0, "pending": 0,
                    "failed": 0, "running": False, "cancelled": False}
        return self._current.to_dict()

    async def _acquire(self, cancel_event: Optional[asyncio.Event]) -> bool:
        """Wait for a token; False when cancellation won the race."""
        if cancel_event is None:
            await self.bucket.acquire_one()
            return True
        if cancel_event.is_set():
            return False

        acquire = asyncio.ensure_future(self.bucket.acquire_one())
        cancelled = asyncio.ensure_future(cancel_event.wait())
        try:
            await asyncio.wait({acquire, cancelled}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for pending in (acquire, cancelled):
                if not pending.done():
                    pending.cancel()
            await asyncio.gather(acquire, cancelled, return_exceptions=True)

        if cancel_event.is_set():
            # A token granted in the same tick is forfeited
            return False
        acquire.result()
        return True

    async def drain(self,
                    queue: Sequence[TaskProducer],
                    on_progress: Optional[ProgressCallback] = None,
                    cancel_event: Optional[asyncio.Event] = None,
                    fail_fast: Optional[bool] = None,
                    run_id: Optional[str] = None) -> DrainResult:
        """Process every producer in order, one token per task.

        Failures are captured as FAILED outcomes unless fail-fast is on, in
        which case the first failure raises TaskFailure and aborts the run.
        """
        producers = list(queue)
        abort_on_failure = self.fail_fast if fail_fast is None else fail_fast

        if self._run_lock.locked():
            self.logger.info("Drain queued behind active run", active_run_id=self._current.run_id if self._current else None)

        async with self._run_lock:
            run = DrainRun(run_id=run_id or str(uuid.uuid4()), total=len(producers))
            self._current = run
            set_run_id(run.run_id)
            self.logger.info("Drain started", total=run.total, fail_fast=abort_on_failure)

            try:
                for index, producer in enumerate(producers):
                    if not await self._acquire(cancel_event):
                        run.cancelled = True
                        break

                    try:
                        value = await producer()
                    except Exception as exc:
                        outcome = TaskOutcome(index=index, status=OutcomeStatus.FAILED, error=exc)
                        self.logger.warning(
                            "Task failed",
                            index=index,
                            error_type=type(exc).__name__,
                            error=str(exc),
                        )
                        if self.metrics:
                            self.metrics.record_task(outcome.status.value)
                        if abort_on_failure:
                            raise TaskFailure(index, run.outcomes) from exc
                    else:
                        outcome = TaskOutcome(index=index, status=OutcomeStatus.SUCCEEDED, value=value)
                        if self.metrics:
                            self.metrics.record_task(outcome.status.value)

                    run.outcomes.append(outcome)
                    if on_progress is not None:
                        on_progress(run.completed_count, run.pending_count)
            except TaskFailure:
                self._finish(run, "aborted")
                raise
            except BaseException:
                self._finish(run, "errored")
                raise
            finally:
                clear_context()

            self._finish(run, "cancelled" if run.cancelled else "completed")
            return DrainResult(run_id=run.run_id, outcomes=list(run.outcomes), cancelled=run.cancelled)

    def _finish(self, run: DrainRun, state: str) -> None:
        run.finished_at = time.time()
        if self.metrics:
            self.metrics.increment_counter("drain_runs_total", state=state)

        log = self.logger.warning if state in ("aborted", "errored") else self.logger.info
        log(
            f"Drain {state}",
            run_id=run.run_id,
            total=run.total,
            completed=run.completed_count,
            duration_seconds=round(run.finished_at - run.started_at, 3),
        )
