"""
Structured logging for the poller.

Services log through structlog with keyword fields; repositories and
transports use plain stdlib loggers. Both end up on stdout with the
same level. Output is JSON or coloured console text, chosen by
``LOG_FORMAT`` (``auto`` picks JSON in production).

Scheduler code binds ``source_id`` and ``tick`` with bind_context() so
every line logged during a check carries them.
"""

import logging
import sys

import structlog
from structlog.types import Processor

from feed_poller.config.settings import Settings, get_settings

_QUIET_LOGGERS = ("httpx", "httpcore", "asyncio", "asyncpg")


def _use_json(settings: Settings) -> bool:
    if settings.log_format == "auto":
        return settings.is_production
    return settings.log_format == "json"


def setup_logging(level: str | None = None) -> None:
    """
    Configure structlog and stdlib logging.

    Args:
        level: Overrides settings.log_level (the CLI passes DEBUG for --debug)
    """
    settings = get_settings()
    level_name = (level or settings.log_level).upper()

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]
    if _use_json(settings):
        processors += [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        stream=sys.stdout,
        level=getattr(logging, level_name),
        force=True,
    )
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def bind_context(**kwargs) -> None:
    """Bind fields to every log line emitted from the current task."""
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()
