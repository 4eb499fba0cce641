"""Observability: structured logging and Prometheus metrics.

Logging uses structlog with contextvars so every log line emitted while
handling a request carries the actor, organization, and request id.
"""
