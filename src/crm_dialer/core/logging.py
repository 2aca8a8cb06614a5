"""Structured logging for the CRM dialer (structlog).

Phone numbers passed as log fields are masked to their last four digits.
Webhook handling binds the Vapi call id so every line logged while
processing a server message carries it.
"""

from __future__ import annotations

import logging
import sys
from typing import Any

import structlog

from crm_dialer.core.phone import digits_only

SERVICE_NAME = "crm-dialer"

# Fields whose values are phone numbers
PHONE_FIELDS = frozenset({"phone", "phone_number", "customer_number", "number"})

NOISY_LOGGERS = ("httpx", "httpcore", "googleapiclient.discovery_cache", "aiosqlite")


def mask_phone(value: Any) -> Any:
    """``"+1 (617) 555-0100"`` -> ``"***0100"``."""
    if not isinstance(value, str):
        return value
    digits = digits_only(value)
    if len(digits) < 4:
        return value
    return f"***{digits[-4:]}"


def mask_phone_numbers(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    for key in PHONE_FIELDS.intersection(event_dict):
        event_dict[key] = mask_phone(event_dict[key])
    return event_dict


def setup_logging(
    level: str = "INFO",
    json_output: bool = False,
    environment: str | None = None,
) -> None:
    """Configure structlog and the stdlib root logger.

    Args:
        level: Log level name; unknown names fall back to INFO
        json_output: Render JSON lines instead of the colored console format
        environment: Added to every entry when given
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=log_level)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(log_level, logging.WARNING))

    static_fields: dict[str, Any] = {"service": SERVICE_NAME}
    if environment:
        static_fields["environment"] = environment

    def add_static_fields(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
        for key, value in static_fields.items():
            event_dict.setdefault(key, value)
        return event_dict

    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        add_static_fields,
        mask_phone_numbers,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if json_output:
        renderer: Any = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(
            colors=sys.stdout.isatty(),
            exception_formatter=structlog.dev.plain_traceback,
        )
    processors.append(renderer)

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def bind_call_context(vapi_call_id: str | None = None, **fields: Any) -> None:
    """Attach call identifiers to all log lines of the current task."""
    if vapi_call_id:
        fields["vapi_call_id"] = vapi_call_id
    structlog.contextvars.bind_contextvars(**fields)


def clear_call_context() -> None:
    structlog.contextvars.clear_contextvars()


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a logger, typically ``get_logger(__name__)``."""
    return structlog.get_logger(name)
