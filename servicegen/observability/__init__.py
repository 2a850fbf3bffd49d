"""Observability helpers for servicegen.

Components:
    - logging: Structured logging with structlog

Usage:
    from servicegen.observability import get_logger

    logger = get_logger(__name__)
    logger.info("loader_generated", entry="app")
"""

from servicegen.observability.logging import (
    bind_source_file,
    configure_logging,
    get_logger,
)

__all__ = [
    "bind_source_file",
    "configure_logging",
    "get_logger",
]
