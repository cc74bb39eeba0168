"""Structured logging for archive runs, built on structlog.

Log lines go to stderr so that the CLI report on stdout stays clean. Every
logger lives under the ``mvarchive`` namespace, and the project being archived
is carried in context variables so that table, batch and cleanup events all
name it without each component binding it again.
"""

import logging
import re
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any, Optional

import structlog

LOGGER_NAMESPACE = "mvarchive"

_SECRET_KEYS = frozenset({"password", "dsn"})
_DSN_PASSWORD = re.compile(r"(postgres(?:ql)?://[^:/@\s]+:)[^@\s]+@")


def redact_secrets(
    logger: Any, method_name: str, event_dict: structlog.typing.EventDict
) -> structlog.typing.EventDict:
    """Mask passwords in event fields and in connection strings inside values."""
    for key, value in event_dict.items():
        if key in _SECRET_KEYS:
            event_dict[key] = "***"
        elif isinstance(value, str) and "://" in value:
            event_dict[key] = _DSN_PASSWORD.sub(r"\1***@", value)
    return event_dict


def configure_logging(
    log_level: str = "INFO",
    log_format: str = "console",
    correlation_id: Optional[str] = None,
) -> structlog.BoundLogger:
    """Configure structured logging for an archive run.

    Args:
        log_level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: 'json' for one object per line, anything else for console
        correlation_id: Run identifier bound into the context of every event

    Returns:
        Logger for the CLI itself
    """
    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=level, force=True)
    # asyncpg logs connection chatter at DEBUG
    logging.getLogger("asyncpg").setLevel(max(level, logging.INFO))

    renderer: Any
    if log_format == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            redact_secrets,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    structlog.contextvars.clear_contextvars()
    if correlation_id:
        structlog.contextvars.bind_contextvars(correlation_id=correlation_id)

    return get_logger("cli")


def get_logger(component: Optional[str] = None) -> structlog.BoundLogger:
    """Logger named ``mvarchive.<component>``, or ``mvarchive`` without one."""
    if component:
        return structlog.get_logger(f"{LOGGER_NAMESPACE}.{component}")
    return structlog.get_logger(LOGGER_NAMESPACE)


@contextmanager
def project_context(project_key: str) -> Iterator[None]:
    """Attach ``project_key`` to every event logged inside the block."""
    with structlog.contextvars.bound_contextvars(project_key=project_key):
        yield
