"""Structured logging setup.

Every module obtains its logger through get_logger(__name__) and logs
event-style messages with keyword context:

    logger.warning("Could not identify node", instance_id=instance_id)

Log records are rendered by structlog and emitted through the standard
library logging module, so application and third-party output (httpx,
SQLAlchemy, uvicorn) share one handler and one level.

configure_logging() is called once from the application lifespan handler.
"""

import logging
import sys
from typing import Any

import structlog


def configure_logging(level: str = "INFO", json_output: bool = True) -> None:
    """Configure structlog and the standard library root logger.

    Args:
        level: Minimum log level name (e.g., INFO, DEBUG).
        json_output: Render JSON lines when True, human-readable console
            output otherwise.
    """
    log_level = logging.getLevelName(level.upper())
    if not isinstance(log_level, int):
        log_level = logging.INFO

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=log_level)

    renderer: Any = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Return a structlog logger bound to the given module name.

    Args:
        name: Logger name, conventionally __name__.

    Returns:
        A bound structlog logger.
    """
    return structlog.stdlib.get_logger(name)
