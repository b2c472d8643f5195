"""
Logging setup for the SMART client.

structlog renders either JSON or console output on top of the standard
library's logging. Every request sent through the gateway binds a short
``request_id`` so its ``--->`` and ``<---`` lines can be matched up.
"""

import logging
import sys
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field

import structlog


@dataclass
class LoggingConfig:
    """Logging configuration."""

    quiet_loggers: dict[str, int] = field(
        default_factory=lambda: {
            "aiohttp": logging.WARNING,
            "asyncio": logging.WARNING,
            "uvicorn.access": logging.WARNING,
        }
    )
    request_id_length: int = 8
    colors: bool = True


_logging_config = LoggingConfig()


def set_request_id(request_id: str | None = None) -> str:
    """Bind a request id to the current context; one is generated if not given."""
    request_id = request_id or uuid.uuid4().hex[: _logging_config.request_id_length]
    structlog.contextvars.bind_contextvars(request_id=request_id)
    return request_id


def _renderers(json_format: bool) -> list[Callable]:
    if json_format:
        return [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    return [structlog.dev.ConsoleRenderer(colors=_logging_config.colors)]


def configure_logging(
    level: str = "INFO",
    json_format: bool = True,
) -> None:
    """
    Configure structlog and the standard library root logger.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR)
        json_format: JSON lines if True, colored console output otherwise
    """
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            *_renderers(json_format),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, level.upper(), logging.INFO),
    )
    for name, quiet_level in _logging_config.quiet_loggers.items():
        logging.getLogger(name).setLevel(quiet_level)


def enable_verbose_logging() -> None:
    """Lower the root log level to DEBUG, used for the ``verbose`` auth setting."""
    logging.getLogger().setLevel(logging.DEBUG)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
