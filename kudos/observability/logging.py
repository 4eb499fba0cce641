"""Structured logging configuration using structlog.

Provides JSON logging for production and console logging for development,
with request context binding and redaction of secrets and contact details.
"""

import re
import sys
from collections.abc import MutableMapping
from typing import Any, cast

import structlog
from structlog.types import EventDict, WrappedLogger

# Keys whose values never reach the log output
SENSITIVE_KEYS: frozenset[str] = frozenset({
    "password",
    "secret",
    "token",
    "client_token",
    "idempotency_key",
    "api_key",
    "authorization",
    "webhook_url",
    "email",
    "recipient_email",
    "giver_email",
    "phone",
    "access_token",
    "refresh_token",
})

EMAIL_PATTERN = re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}")
WEBHOOK_PATTERN = re.compile(r"https://hooks\.slack\.com/\S+|https://\S+\.webhook\.office\.com/\S+")

LEVELS = {
    "DEBUG": 10,
    "INFO": 20,
    "WARNING": 30,
    "ERROR": 40,
    "CRITICAL": 50,
}


class PIIRedactor:
    """Processor that redacts secrets and contact details from log events.

    Known sensitive keys are replaced wholesale; string values are scanned
    for email addresses and incoming-webhook URLs.
    """

    def __call__(
        self,
        _logger: WrappedLogger,
        _method_name: str,
        event_dict: EventDict,
    ) -> EventDict:
        return cast(EventDict, self._redact(event_dict))

    def _redact(self, data: MutableMapping[str, Any]) -> dict[str, Any]:
        result: dict[str, Any] = {}
        for key, value in data.items():
            if key.lower() in SENSITIVE_KEYS:
                result[key] = "[REDACTED]"
            else:
                result[key] = self._redact_value(value)
        return result

    def _redact_value(self, value: Any) -> Any:
        if isinstance(value, dict):
            return self._redact(value)
        if isinstance(value, str):
            value = EMAIL_PATTERN.sub("[EMAIL]", value)
            return WEBHOOK_PATTERN.sub("[WEBHOOK]", value)
        if isinstance(value, (list, tuple)):
            return [self._redact_value(item) for item in value]
        return value


def setup_logging(
    level: str = "INFO",
    format: str = "json",
    redact_pii: bool = True,
) -> None:
    """Configure structured logging.

    Args:
        level: Minimum log level (DEBUG, INFO, WARNING, ERROR)
        format: "json" for production, "console" for development
        redact_pii: Whether to redact secrets and contact details
    """
    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if redact_pii:
        processors.append(PIIRedactor())

    if format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            LEVELS.get(level.upper(), 20)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(sys.stderr),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a logger instance bound to the given name.

    Args:
        name: Logger name (typically __name__ of the module)

    Returns:
        A bound structlog logger
    """
    return cast(structlog.stdlib.BoundLogger, structlog.get_logger(name))


def bind_request_context(**context: Any) -> None:
    """Bind values to every log line emitted in the current context.

    None values are skipped so callers can pass optional identifiers.
    """
    structlog.contextvars.bind_contextvars(
        **{key: value for key, value in context.items() if value is not None}
    )


def clear_request_context() -> None:
    """Drop all values bound with bind_request_context."""
    structlog.contextvars.clear_contextvars()
