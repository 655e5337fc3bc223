"""Structured logging configuration using structlog."""

import logging
import re
import sys
from typing import Any

import structlog
from structlog.types import EventDict, Processor

REDACTED = "***REDACTED***"

# Keys whose values never reach a log line
SENSITIVE_KEYS = (
    "card_number",
    "card_cvv",
    "cvv",
    "security_code",
    "password",
    "secret",
    "secret_key",
    "api_key",
    "access_token",
    "authorization",
    "tbk-api-key-secret",
)

# 13-19 digit runs that look like a PAN, keeping the last four digits
_PAN_PATTERN = re.compile(r"\b(\d{9,15})(\d{4})\b")


def _is_sensitive(key: str) -> bool:
    lowered = key.lower()
    return any(marker in lowered for marker in SENSITIVE_KEYS)


def _redact(value: Any) -> Any:
    if isinstance(value, dict):
        return {
            key: REDACTED if isinstance(key, str) and _is_sensitive(key) else _redact(item)
            for key, item in value.items()
        }
    if isinstance(value, (list, tuple)):
        return type(value)(_redact(item) for item in value)
    if isinstance(value, str):
        return _PAN_PATTERN.sub(lambda m: "*" * len(m.group(1)) + m.group(2), value)
    return value


def redact_sensitive_fields(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Mask card data and credentials anywhere in the event."""
    for key in list(event_dict):
        if _is_sensitive(key):
            event_dict[key] = REDACTED
        else:
            event_dict[key] = _redact(event_dict[key])
    return event_dict


def add_service_name(service_name: str) -> Processor:
    def processor(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
        event_dict.setdefault("service", service_name)
        return event_dict

    return processor


def configure_logging(
    log_level: str = "INFO",
    format_as_json: bool = True,
    service_name: str | None = None,
) -> None:
    """
    Configure structured logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        format_as_json: If True, output logs as JSON; otherwise use console format
        service_name: Added to every event as ``service`` when given
    """
    # Configure standard logging
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
    )

    # Build processor chain
    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if service_name:
        processors.append(add_service_name(service_name))

    # Redaction runs last, right before rendering
    processors.append(redact_sensitive_fields)

    # Add appropriate renderer
    if format_as_json:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    # Configure structlog
    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
