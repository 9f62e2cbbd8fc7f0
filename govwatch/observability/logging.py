"""
structlog setup for govwatch.

Log lines always go to stderr: stdout belongs to limit tables, alert
output and ``--format json`` event streams. Production environments get
one JSON object per line; everything else gets the colored dev renderer.
The org label and deployment id are bound as context variables so every
line emitted during a session carries them.
"""

import logging
import sys

import structlog
from structlog.types import Processor

from govwatch.config.settings import get_settings

# HTTP client internals log every request at INFO.
QUIET_LOGGERS = ("httpx", "httpcore", "asyncio")


def build_processors(json_logs: bool) -> list[Processor]:
    """Processor chain ending in a JSON or console renderer."""
    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]
    if json_logs:
        processors += [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))
    return processors


def setup_logging(level: str | None = None, json_logs: bool | None = None) -> None:
    """
    Route structlog and stdlib logging through one stderr handler.

    Args:
        level: Log level name; ``GOVWATCH_LOG_LEVEL`` when omitted
        json_logs: Force JSON lines on or off; follows the environment when omitted
    """
    settings = get_settings()
    if json_logs is None:
        json_logs = settings.is_production

    structlog.configure(
        processors=build_processors(json_logs),
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=getattr(logging, level or settings.log_level),
    )
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def bind_context(**kwargs) -> None:
    """Attach fields (``org``, ``operation_id``) to every later log line."""
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()
