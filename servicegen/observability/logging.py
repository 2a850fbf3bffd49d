"""Structured logging for servicegen.

The transformer is a build tool whose stdout may carry generated code, so all
log output goes to stderr. Events are rendered either for a console or as
JSON lines for CI log collectors.

Usage:
    from servicegen.observability import get_logger, configure_logging

    # INFO to stderr is installed on import; the CLI reconfigures from settings
    configure_logging(level="INFO", format="console")

    logger = get_logger(__name__)

    # Every event logged inside the block carries the source file
    with bind_source_file("app/main.py"):
        logger.info("loader_generated", entry="app", inputs=2)
"""

import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator, Optional

import structlog
from structlog.types import EventDict, Processor


# Context variable for the file currently being transformed
source_file_var: ContextVar[Optional[str]] = ContextVar("source_file", default=None)


def add_source_file(
    logger: logging.Logger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Add the file being transformed to log entries.

    Args:
        logger: Logger instance
        method_name: Name of the logging method
        event_dict: Event dictionary to modify

    Returns:
        Modified event dictionary with source_file
    """
    source_file = source_file_var.get()
    if source_file:
        event_dict.setdefault("source_file", source_file)
    return event_dict


def add_log_level(
    logger: logging.Logger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Add log level to event dictionary."""
    if method_name == "warn":
        # structlog uses "warn" but we want "warning" for consistency
        method_name = "warning"
    event_dict["level"] = method_name
    return event_dict


def configure_logging(level: str = "INFO", format: str = "console") -> None:
    """Configure structured logging for the transformer.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        format: Output format ("json" or "console")

    Example:
        >>> configure_logging(level="DEBUG", format="console")
    """
    logging_level = getattr(logging, level.upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(logging_level)
    handler.setFormatter(logging.Formatter("%(message)s"))

    # Clear existing handlers to allow reconfiguration
    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(logging_level)
    root_logger.addHandler(handler)

    shared_processors: list[Processor] = [
        structlog.stdlib.filter_by_level,
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        add_source_file,
        add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if format == "json":
        renderer: Processor = structlog.processors.JSONRenderer(sort_keys=True)
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())

    structlog.configure(
        processors=shared_processors + [renderer],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Configured structlog BoundLogger
    """
    return structlog.get_logger(name)


@contextmanager
def bind_source_file(source_file: Optional[str]) -> Iterator[None]:
    """Attach ``source_file`` to every event logged inside the block."""
    token = source_file_var.set(source_file)
    try:
        yield
    finally:
        source_file_var.reset(token)


# Initialize with default configuration so library use never logs to stdout
configure_logging(level="INFO", format="console")


__all__ = [
    "bind_source_file",
    "configure_logging",
    "get_logger",
]
