"""
Shared utilities for the clinic scheduling service.

This package aggregates common building blocks consumed by the service:

- config: Service configuration via pydantic-settings
- logging: Structured logging with request / tenant correlation
- metrics: Prometheus metrics helpers
- errors: Canonical error types and responses
- retry: Retry helpers for upstream reads
- base_service: FastAPI service skeleton (health, metrics, error mapping)

Any cross-service logic should live here to avoid import cycles. Do not
import from service_* packages into shared/.
"""
