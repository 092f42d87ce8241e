"""
Shared error handling for the rate limiter service.
"""

from typing import Dict, Any, List, Optional
from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """Standard error response format."""

    run_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)


class RateLimiterException(Exception):
    """Base exception for the rate limiter."""

    status_code = 400

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self, run_id: Optional[str] = None) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            run_id=run_id,
            code=self.code,
            message=self.message,
            details=self.details
        )


class ConfigurationError(RateLimiterException):
    """Non-positive or non-numeric rate, window or buffer settings."""

    def __init__(self, message: str = "Invalid configuration", details: Optional[Dict[str, Any]] = None):
        super().__init__("CONFIGURATION_ERROR", message, details)


class TaskFailure(RateLimiterException):
    """A queued task failed while the drain was running in fail-fast mode."""

    status_code = 500

    def __init__(self, index: int, outcomes: Optional[List[Any]] = None, message: Optional[str] = None):
        self.index = index
        self.outcomes = list(outcomes or [])
        super().__init__(
            "TASK_FAILURE",
            message or f"Task {index} failed",
            {"index": index, "completed": len(self.outcomes)}
        )


class RunConflictError(RateLimiterException):
    """A drain was requested while another one is still running."""

    status_code = 409

    def __init__(self, run_id: str, message: str = "A drain is already running"):
        super().__init__("RUN_CONFLICT", message, {"active_run_id": run_id})


class StarvationWarning(UserWarning):
    """Log category for token waits that exceed the starvation threshold.

    Never raised; refills are periodic so a waiting caller always makes progress.
    """
