"""Logging setup for fanssh."""

import logging
import sys
from typing import Any

import structlog


def verbosity_to_level(verbosity: int) -> int:
    """Map the -v count to a stdlib logging level.

    Args:
        verbosity: Number of -v flags given.

    Returns:
        int: WARNING for 0, INFO for 1, DEBUG for 2 or more.
    """
    if verbosity <= 0:
        return logging.WARNING
    if verbosity == 1:
        return logging.INFO
    return logging.DEBUG


def configure_logging(verbosity: int = 0) -> None:
    """Configure structlog to write human-readable lines to stderr.

    Args:
        verbosity: Number of -v flags given. asyncssh's own logging is only
            shown from three upward.
    """
    level = verbosity_to_level(verbosity)

    shared_processors: list[Any] = [
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="%H:%M:%S"),
        structlog.processors.StackInfoRenderer(),
    ]

    structlog.configure(
        processors=shared_processors
        + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processor=structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()),
            foreign_pre_chain=shared_processors,
        )
    )

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    logging.getLogger("asyncssh").setLevel(
        logging.DEBUG if verbosity >= 3 else logging.WARNING
    )


def get_logger(name: str, **context: Any) -> structlog.stdlib.BoundLogger:
    """Get a logger with bound context.

    Args:
        name: Logger name, usually the module's __name__.
        **context: Values bound to every event, e.g. job or host.

    Returns:
        BoundLogger with context
    """
    logger = structlog.get_logger(name)
    if context:
        logger = logger.bind(**context)
    return logger
