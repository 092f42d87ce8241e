"""
Dual-window token bucket for client-side request throttling.

Two counters (per-second and per-minute) are each reset to capacity on a fixed
wall-clock cadence by their own timer task. A caller proceeds only after taking
one token from both counters.
"""

import asyncio
import math
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from shared.config import RateLimitConfig
from shared.errors import ConfigurationError, StarvationWarning
from shared.logging import get_logger
from shared.metrics import MetricsCollector


class BucketSnapshot(BaseModel):
    """Read-only view of the bucket pair at one instant."""

    model_config = ConfigDict(frozen=True)

    second_remaining: float = Field(serialization_alias="tokensPerSecondRemaining")
    minute_remaining: float = Field(serialization_alias="tokensPerMinuteRemaining")
    seconds_until_second_refill: float = Field(serialization_alias="perSecondCountdownSeconds")
    seconds_until_minute_refill: float = Field(serialization_alias="perMinuteCountdownSeconds")
    second_refills: int = Field(default=0, serialization_alias="secondRefills")
    minute_refills: int = Field(default=0, serialization_alias="minuteRefills")

    def to_observer_dict(self) -> Dict[str, float]:
        """Shape consumed by display clients."""
        return self.model_dump(
            by_alias=True,
            include={
                "second_remaining",
                "minute_remaining",
                "seconds_until_second_refill",
                "seconds_until_minute_refill",
            },
        )


@dataclass
class _Window:
    name: str
    length: float
    capacity: float
    remaining: float
    next_refill_at: float
    refills: int = 0

    def refill(self) -> None:
        self.remaining = self.capacity


def _require_positive(name: str, value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigurationError(f"{name} must be numeric", details={name: repr(value)})
    if math.isnan(value) or value <= 0:
        raise ConfigurationError(f"{name} must be greater than zero", details={name: value})
    return float(value)


class TokenBucketPair:
    """Per-second and per-minute token counters sharing one acquire path."""

    def __init__(self,
                 second_capacity: float,
                 minute_capacity: float,
                 second_window: float = 1.0,
                 minute_window: float = 60.0,
                 poll_interval: float = 0.1,
                 starvation_threshold: float = 5.0,
                 realign_second_on_minute_refill: bool = False,
                 metrics: Optional[MetricsCollector] = None,
                 clock: Callable[[], float] = time.monotonic):
        self.second_capacity = _require_positive("second_capacity", second_capacity)
        self.minute_capacity = _require_positive("minute_capacity", minute_capacity)
        self.poll_interval = _require_positive("poll_interval", poll_interval)
        self.starvation_threshold = _require_positive("starvation_threshold", starvation_threshold)
        self.realign_second_on_minute_refill = realign_second_on_minute_refill
        self.metrics = metrics
        self.logger = get_logger("ratelimiter.token_bucket")
        self._clock = clock

        now = clock()
        self._second = _Window(
            name="second",
            length=_require_positive("second_window", second_window),
            capacity=self.second_capacity,
            remaining=self.second_capacity,
            next_refill_at=now + second_window,
        )
        self._minute = _Window(
            name="minute",
            length=_require_positive("minute_window", minute_window),
            capacity=self.minute_capacity,
            remaining=self.minute_capacity,
            next_refill_at=now + minute_window,
        )

        # Guards every mutation of the two windows; refills notify waiters
        self._condition = asyncio.Condition()
        self._timers: list = []

    @classmethod
    def from_config(cls, config: RateLimitConfig, metrics: Optional[MetricsCollector] = None) -> "TokenBucketPair":
        """Build a bucket pair from loaded settings."""
        return cls(
            second_capacity=config.second_capacity,
            minute_capacity=config.minute_capacity,
            second_window=config.second_window_seconds,
            minute_window=config.minute_window_seconds,
            poll_interval=config.poll_interval_seconds,
            starvation_threshold=config.starvation_threshold_seconds,
            realign_second_on_minute_refill=config.realign_second_on_minute_refill,
            metrics=metrics,
        )

    @property
    def second_remaining(self) -> float:
        return self._second.remaining

    @property
    def minute_remaining(self) -> float:
        return self._minute.remaining

    @property
    def next_second_refill_at(self) -> float:
        return self._second.next_refill_at

    @property
    def next_minute_refill_at(self) -> float:
        return self._minute.next_refill_at

    @property
    def running(self) -> bool:
        return any(not timer.done() for timer in self._timers)

    def _has_tokens(self) -> bool:
        return self._second.remaining > 0 and self._minute.remaining > 0

    async def acquire_one(self) -> float:
        """Take one token from both windows, waiting until both have one.

        Returns the number of seconds spent waiting.
        """
        started = self._clock()
        warned = False

        async with self._condition:
            while not self._has_tokens():
                try:
                    await asyncio.wait_for(self._condition.wait(), timeout=self.poll_interval)
                except asyncio.TimeoutError:
                    pass

                waited = self._clock() - started
                if not warned and waited >= self.starvation_threshold:
                    warned = True
                    self.logger.warning(
                        "Token acquisition starving",
                        category=StarvationWarning.__name__,
                        waited_seconds=round(waited, 3),
                        second_remaining=self._second.remaining,
                        minute_remaining=self._minute.remaining,
                    )
                    if self.metrics:
                        self.metrics.increment_counter("starvation_warnings_total")

            self._second.remaining = max(self._second.remaining - 1, 0)
            self._minute.remaining = max(self._minute.remaining - 1, 0)
            second_left = self._second.remaining
            minute_left = self._minute.remaining

        waited = self._clock() - started
        if self.metrics:
            self.metrics.record_token_acquired(waited)
            self.metrics.set_gauge("tokens_remaining", second_left, window="second")
            self.metrics.set_gauge("tokens_remaining", minute_left, window="minute")
        return waited

    def snapshot(self) -> BucketSnapshot:
        """Current remaining counts and countdowns, without side effects."""
        now = self._clock()
        return BucketSnapshot(
            second_remaining=self._second.remaining,
            minute_remaining=self._minute.remaining,
            seconds_until_second_refill=max(self._second.next_refill_at - now, 0.0),
            seconds_until_minute_refill=max(self._minute.next_refill_at - now, 0.0),
            second_refills=self._second.refills,
            minute_refills=self._minute.refills,
        )

    def _advance(self, window: _Window, now: float) -> None:
        window.next_refill_at += window.length
        if window.next_refill_at <= now:
            # Missed windows are dropped, never banked
            self.logger.warning(
                "Refill timer lagging, re-anchoring schedule",
                window=window.name,
                lag_seconds=round(now - window.next_refill_at, 3),
            )
            window.next_refill_at = now + window.length

    async def _refill_second(self) -> None:
        async with self._condition:
            now = self._clock()
            self._second.refill()
            self._second.refills += 1
            self._advance(self._second, now)
            self._condition.notify_all()

        if self.metrics:
            self.metrics.record_refill("second", self._second.remaining)

    async def _refill_minute(self) -> None:
        async with self._condition:
            now = self._clock()
            self._minute.refill()
            self._minute.refills += 1
            self._advance(self._minute, now)

            # A fresh minute also means a fresh second-slice
            self._second.refill()
            if self.realign_second_on_minute_refill:
                self._second.next_refill_at = now + self._second.length
            self._condition.notify_all()

        if self.metrics:
            self.metrics.record_refill("minute", self._minute.remaining)
            self.metrics.set_gauge("tokens_remaining", self._second.remaining, window="second")

    async def _run_timer(self, window: _Window, refill: Callable) -> None:
        while True:
            delay = window.next_refill_at - self._clock()
            if delay > 0:
                # Re-check after sleeping; the schedule may have been pushed out
                await asyncio.sleep(delay)
                continue
            await refill()

    def start(self) -> None:
        """Start both refill timers on the running event loop."""
        if self.running:
            return

        now = self._clock()
        self._second.next_refill_at = now + self._second.length
        self._minute.next_refill_at = now + self._minute.length
        self._timers = [
            asyncio.create_task(self._run_timer(self._second, self._refill_second), name="refill-second"),
            asyncio.create_task(self._run_timer(self._minute, self._refill_minute), name="refill-minute"),
        ]
        self.logger.info(
            "Refill timers started",
            second_capacity=self.second_capacity,
            minute_capacity=self.minute_capacity,
            second_window=self._second.length,
            minute_window=self._minute.length,
        )

    async def stop(self) -> None:
        """Cancel the refill timers and wait for them to finish."""
        timers, self._timers = self._timers, []
        for timer in timers:
            timer.cancel()
        for timer in timers:
            try:
                await timer
            except asyncio.CancelledError:
                pass
        if timers:
            self.logger.info("Refill timers stopped")

    async def __aenter__(self) -> "TokenBucketPair":
        self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()
