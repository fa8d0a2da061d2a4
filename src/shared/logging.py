"""Structured logging setup for the Airtable MCP Server.

Uses structlog for consistent, machine-parseable log output.
"""

import asyncio
import logging
import sys
from typing import Any, Optional, TextIO

import structlog
from structlog.types import Processor


def setup_logging(
    log_level: str = "INFO",
    json_output: bool = False,
    stream: Optional[TextIO] = None,
) -> None:
    """
    Configure structured logging for the application.

    Args:
        log_level: Minimum log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_output: If True, output JSON; otherwise, use colored console output
        stream: Destination stream. Defaults to stdout; the stdio transport
            passes stderr because stdout carries protocol messages.
    """
    stream = stream or sys.stdout

    # Shared processors for both development and production
    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.stdlib.ExtraAdder(),
    ]

    if json_output:
        # Production: JSON output
        processors: list[Processor] = [
            *shared_processors,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        # Development: Colored console output
        processors = [
            *shared_processors,
            structlog.dev.ConsoleRenderer(colors=stream.isatty()),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level.upper())
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=stream),
        cache_logger_on_first_use=True,
    )

    # Also configure standard library logging (uvicorn, httpx)
    logging.basicConfig(
        format="%(message)s",
        stream=stream,
        level=getattr(logging, log_level.upper()),
        force=True,
    )


def get_logger(name: str | None = None, **initial_context: Any) -> structlog.BoundLogger:
    """
    Get a configured logger instance.

    Args:
        name: Logger name (typically module name)
        **initial_context: Initial context values to bind to logger

    Returns:
        A bound structlog logger instance
    """
    logger = structlog.get_logger(name)
    if initial_context:
        logger = logger.bind(**initial_context)
    return logger


def bind_context(**context: Any) -> None:
    """Bind context values to all loggers in the current context."""
    structlog.contextvars.bind_contextvars(**context)


def install_loop_exception_logging(loop: asyncio.AbstractEventLoop) -> None:
    """Log failures of tasks nobody awaited instead of printing them."""
    logger = get_logger("asyncio")

    def handle_exception(loop: asyncio.AbstractEventLoop, context: dict[str, Any]) -> None:
        exception = context.get("exception")
        logger.error(
            "Unhandled asyncio failure",
            message=context.get("message"),
            error=str(exception) if exception else None,
            exc_info=exception,
        )

    loop.set_exception_handler(handle_exception)
