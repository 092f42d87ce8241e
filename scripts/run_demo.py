#!/usr/bin/env python3
"""
Drain a queue of synthetic tasks through the rate limiter and report progress.

Each task resolves with its own index after a short simulated latency. Quotas
come from RATE_LIMIT_PER_SECOND / RATE_LIMIT_PER_MINUTE / BUFFER_PERCENTAGE
unless overridden on the command line. Ctrl+C stops the drain before the next
token is taken and prints what completed.
"""

import argparse
import asyncio
import json
import signal
import sys
from typing import Any, Dict, Optional

from service_ratelimiter.app.main import build_demo_queue
from service_ratelimiter.app.ratelimit import SequentialLimiter, SnapshotPoller, TokenBucketPair, format_countdown
from shared.config import load_rate_limit_config
from shared.errors import ConfigurationError, TaskFailure
from shared.logging import configure_logging, get_logger


async def run(
    *,
    count: int,
    delay_ms: int,
    overrides: Dict[str, Any],
    report_every: float,
) -> dict:
    """Execute the demo drain and return the summary."""
    config = load_rate_limit_config(**overrides)
    configure_logging("demo", config.log_level)
    logger = get_logger("demo.runner")

    bucket = TokenBucketPair.from_config(config)
    limiter = SequentialLimiter(bucket, fail_fast=config.fail_fast)
    cancel = asyncio.Event()

    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, cancel.set)
    except NotImplementedError:  # pragma: no cover - Windows event loops
        pass

    def report(snapshot):
        logger.info(
            "Tokens",
            per_second=round(snapshot.second_remaining),
            per_minute=round(snapshot.minute_remaining),
            next_second_refill=f"{snapshot.seconds_until_second_refill:.2f}s",
            next_minute_refill=format_countdown(snapshot.seconds_until_minute_refill),
        )

    def on_progress(completed: int, pending: int) -> None:
        if pending == 0 or completed % max(1, count // 20) == 0:
            logger.info(
                "Progress",
                completed=completed,
                pending=pending,
                percent=round(completed / count * 100, 2),
            )

    poller = SnapshotPoller(bucket, interval=report_every, on_snapshot=report)
    async with bucket:
        poller.start()
        try:
            result = await limiter.drain(
                build_demo_queue(count, delay_ms),
                on_progress=on_progress,
                cancel_event=cancel,
            )
        finally:
            await poller.stop()

    return {
        "run_id": result.run_id,
        "total": count,
        "completed": result.completed_count,
        "failed": len(result.failures()),
        "cancelled": result.cancelled,
    }


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Drain synthetic tasks under per-second and per-minute quotas.")
    parser.add_argument("--count", type=int, default=10000, help="Number of tasks to queue")
    parser.add_argument("--delay-ms", type=int, default=10, help="Simulated latency per task")
    parser.add_argument("--per-second", type=float, default=None, help="Override RATE_LIMIT_PER_SECOND")
    parser.add_argument("--per-minute", type=float, default=None, help="Override RATE_LIMIT_PER_MINUTE")
    parser.add_argument("--buffer", type=float, default=None, help="Override BUFFER_PERCENTAGE")
    parser.add_argument("--fail-fast", action="store_true", default=None, help="Abort on the first failing task")
    parser.add_argument("--report-every", type=float, default=1.0, help="Seconds between token reports")
    return parser.parse_args()


def _overrides(args: argparse.Namespace) -> Dict[str, Any]:
    candidates: Dict[str, Optional[Any]] = {
        "rate_limit_per_second": args.per_second,
        "rate_limit_per_minute": args.per_minute,
        "buffer_percentage": args.buffer,
        "fail_fast": args.fail_fast,
    }
    return {key: value for key, value in candidates.items() if value is not None}


def main() -> int:
    args = _parse_args()
    try:
        summary = asyncio.run(
            run(
                count=args.count,
                delay_ms=args.delay_ms,
                overrides=_overrides(args),
                report_every=args.report_every,
            )
        )
    except ConfigurationError as exc:
        print(f"[demo] invalid configuration: {exc.message} {json.dumps(exc.details)}", file=sys.stderr)
        return 2
    except TaskFailure as exc:
        print(f"[demo] aborted: {exc.message}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        return 130

    print(json.dumps(summary, indent=2))
    return 1 if summary["cancelled"] else 0


if __name__ == "__main__":
    raise SystemExit(main())
