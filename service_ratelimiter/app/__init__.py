"""
Rate limiter service package.

Throttles a queue of async work items against a per-second and a per-minute
quota and drains it one item at a time.

Structure:
- app.main: FastAPI app exposing the observer snapshot, drain progress and a demo run.
- app.ratelimit: Token bucket pair, sequential drain and snapshot poller.
"""
