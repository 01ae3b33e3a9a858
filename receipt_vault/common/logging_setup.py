"""
Structured logging setup (structlog, JSON output)

Every module logs through `structlog.get_logger()` with snake_case event
names and keyword context. Entry points (worker process init, scripts) call
configure_logging() once.
"""
import logging

import structlog


def configure_logging(log_level: str = "INFO") -> None:
    """
    Configure structlog's JSON processor chain.

    Args:
        log_level: Minimum level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer()
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
