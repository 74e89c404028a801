"""Structured logging utilities for Analytics X-Ray.

This module provides structured logging using structlog.
Logs emitted while a tab is being evaluated carry its tab_id for tracing.
"""

import logging
import sys
import time
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator, Optional

import structlog
from structlog.types import EventDict, Processor

# Context variable for tab tracking
tab_id_var: ContextVar[Optional[int]] = ContextVar("tab_id", default=None)


def add_tab_id(logger: logging.Logger, method_name: str, event_dict: EventDict) -> EventDict:
    """Add tab_id to log context if available."""
    tab_id = tab_id_var.get()
    if tab_id is not None:
        event_dict["tab_id"] = tab_id
    return event_dict


def add_timestamp(logger: logging.Logger, method_name: str, event_dict: EventDict) -> EventDict:
    """Add epoch timestamp to log entries."""
    event_dict["timestamp"] = time.time()
    return event_dict


def configure_logging(
    log_level: str = "INFO",
    json_output: bool = True
) -> None:
    """Configure structured logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_output: If True, output JSON format. If False, use console format.
    """
    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        add_tab_id,
        add_timestamp,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if json_output:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.extend([
            structlog.dev.ConsoleRenderer(colors=True),
        ])

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level.upper())
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stdout),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str = "xray") -> structlog.stdlib.BoundLogger:
    """Get a configured logger instance.

    Args:
        name: Logger name (typically module name)

    Returns:
        Configured structlog logger
    """
    return structlog.get_logger(name)


@contextmanager
def tab_context(tab_id: int) -> Iterator[None]:
    """Attach tab_id to every log emitted inside the block.

    The previous value is restored on exit, so nested evaluations of
    different tabs do not leak into each other.
    """
    token = tab_id_var.set(tab_id)
    try:
        yield
    finally:
        tab_id_var.reset(token)


# Initialize logging with sensible defaults
# This will be reconfigured by main.py based on environment
configure_logging()
