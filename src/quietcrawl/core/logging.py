"""
Logging setup - structlog over the standard library logger.

Modules log with structlog.get_logger(__name__) and snake_case event names;
configure_logging() decides the level and whether output is console or JSON.
"""

import logging
import sys

import structlog


def configure_logging(level: str = "INFO", json_output: bool = False):
    """
    Configure structlog for the whole process.

    Args:
        level: DEBUG, INFO, WARNING or ERROR
        json_output: Render one JSON object per line instead of console output
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=log_level,
        force=True,
    )

    renderer = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_logger_name,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
        ]
        + ([structlog.processors.format_exc_info] if json_output else [])
        + [renderer],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )
