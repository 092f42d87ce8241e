"""
Shared utilities for the rate limiter service.

This package aggregates common building blocks:

- config: Limiter and service configuration via pydantic-settings
- logging: Structured logging with drain run correlation
- metrics: Prometheus metrics helpers
- errors: Canonical error types and responses
- base_service: FastAPI service skeleton with health and metrics routes

Do not import from service_* packages into shared/.
"""
