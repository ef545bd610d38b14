"""
Shared utilities for the RequestKit rules engine.

This package aggregates common building blocks consumed by the engine
and its HTTP surface:

- config: Engine configuration via pydantic-settings
- logging: Structured logging with conversion/profile correlation
- metrics: Prometheus metrics helpers
- errors: Canonical error types and responses
- base_service: FastAPI service scaffolding (health, metrics, errors)

Do not import from service_* packages into shared/.
"""
