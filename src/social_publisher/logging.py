"""Structured logging configuration.

Log events are key/value pairs rendered by structlog, either as JSON lines
(``LOG_FORMAT=json``) or for the console. OAuth secrets must never reach a log
sink, so every event passes through ``redact_secrets`` first.
"""

import logging
import sys
from collections.abc import MutableMapping
from typing import Any

import structlog

from social_publisher.config import settings

REDACTED = "[redacted]"

# Event keys whose values are credentials
SECRET_KEYS = frozenset(
    {
        "access_token",
        "refresh_token",
        "client_secret",
        "code",
        "state",
        "authorization",
        "encrypted_access_token",
        "encrypted_refresh_token",
    }
)

_configured = False


def redact_secrets(
    logger: Any, method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    """Replace credential values in an event, including one level of nested dicts."""
    for key, value in event_dict.items():
        if key.lower() in SECRET_KEYS and value is not None:
            event_dict[key] = REDACTED
        elif isinstance(value, dict):
            event_dict[key] = {
                k: REDACTED if k.lower() in SECRET_KEYS and v is not None else v
                for k, v in value.items()
            }
    return event_dict


def setup_logging() -> None:
    """Route structlog and stdlib logging through one handler on stdout.

    The API, the worker and the CLI all call this at import time; only the
    first call installs the handler.
    """
    global _configured
    if _configured:
        return

    renderer: Any
    if settings.log_format == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())

    pre_chain: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        redact_secrets,
    ]

    structlog.configure(
        processors=[
            *pre_chain,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=pre_chain,
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        )
    )

    root = logging.getLogger()
    root.addHandler(handler)
    root.setLevel(settings.log_level.upper())

    # httpx logs full request URLs, which carry tokens on the Graph APIs
    for name, level in (
        ("httpx", logging.WARNING),
        ("httpcore", logging.WARNING),
        ("uvicorn.access", logging.WARNING),
        ("celery", logging.INFO),
    ):
        logging.getLogger(name).setLevel(level)

    _configured = True


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a logger instance for a module."""
    return structlog.get_logger(name)
