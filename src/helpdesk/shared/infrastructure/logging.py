"""
Structured Logging
==================

JSON logs on stdout, one object per line.

Every record carries the ISO timestamp, environment and, while an HTTP
request is being handled, its correlation id. Workflow code passes
``run_id``/``step``/``ticket_id`` through ``extra``. Values under secret
looking keys are masked.

Usage:
    from helpdesk.shared.infrastructure.logging import get_logger

    logger = get_logger(__name__)
    logger.info("Ticket triaged", extra={"ticket_id": "..."})
"""

import logging
import sys
import time
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Iterator, Optional

from pythonjsonlogger import jsonlogger

REDACTED = "***REDACTED***"
_SECRET_MARKERS = ("password", "api_key", "authorization", "secret")

# Set by CorrelationIDMiddleware for the duration of a request
correlation_id_var: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)


def _is_secret(key: str) -> bool:
    lowered = key.lower()
    if any(marker in lowered for marker in _SECRET_MARKERS):
        return True
    # prompt_tokens/completion_tokens are counts, not credentials
    return "token" in lowered and not lowered.endswith("tokens")


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """JSON formatter adding timestamp, environment, correlation id and masking."""

    def __init__(self, *args: Any, environment: str = "unknown", **kwargs: Any):
        super().__init__(*args, **kwargs)
        self._environment = environment

    def add_fields(
        self,
        log_record: dict[str, Any],
        record: logging.LogRecord,
        message_dict: dict[str, Any],
    ) -> None:
        super().add_fields(log_record, record, message_dict)

        log_record.setdefault("timestamp", datetime.now(timezone.utc).isoformat())
        log_record.setdefault("environment", self._environment)

        correlation_id = getattr(record, "correlation_id", None) or correlation_id_var.get()
        if correlation_id:
            log_record["correlation_id"] = correlation_id

        for key, value in list(log_record.items()):
            if isinstance(value, str) and _is_secret(key):
                log_record[key] = REDACTED


def setup_logging(level: str = "INFO", environment: str = "development") -> None:
    """Install the JSON handler on the root logger (replacing existing handlers)."""
    numeric_level = getattr(logging, level.upper())

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        CustomJsonFormatter(
            "%(asctime)s %(name)s %(levelname)s %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%S",
            environment=environment,
        )
    )

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(numeric_level)

    for noisy in ("uvicorn.access", "sqlalchemy.engine", "apscheduler", "httpx", "watchdog"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


@contextmanager
def log_latency(logger: logging.Logger, operation: str, **extra_context: Any) -> Iterator[None]:
    """
    Log how long the wrapped block took, and whether it raised.

    Usage:
        with log_latency(logger, "mail_delivery", to=message.to):
            await transport.send(message)
    """
    start = time.perf_counter()
    try:
        yield
    except Exception as e:
        logger.warning(
            f"{operation} failed",
            extra={
                "operation": operation,
                "latency_ms": round((time.perf_counter() - start) * 1000, 2),
                "error_type": type(e).__name__,
                **extra_context,
            },
        )
        raise
    logger.info(
        f"{operation} completed",
        extra={
            "operation": operation,
            "latency_ms": round((time.perf_counter() - start) * 1000, 2),
            **extra_context,
        },
    )
