"""
structlog setup for dashcore.

Aggregation passes and scheduler runs bind their identifiers (run_id, job,
granularity) into the context, so every store and engine log line emitted
during a pass can be correlated without threading ids through calls.
"""

import logging
import sys
from contextlib import contextmanager
from typing import Any, Iterator, Optional

import structlog
from structlog.types import EventDict, Processor

from dashcore.config import Settings, get_settings

# Libraries whose INFO output drowns the pass logs.
_NOISY_LOGGERS = ("httpx", "httpcore", "uvicorn.access")


def add_severity(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    event_dict["severity"] = method_name.upper()
    return event_dict


def _processors(settings: Settings) -> list[Processor]:
    if settings.log_format == "json" and not settings.dev_mode:
        renderer: Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=not settings.testing)

    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        add_severity,
        renderer,
    ]


def configure_logging(settings: Optional[Settings] = None) -> None:
    """
    Route structlog through stdlib logging at the configured level.

    JSON lines in production; console output in dev mode and tests.
    """
    settings = settings or get_settings()
    level = getattr(logging, settings.log_level.upper(), logging.INFO)

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    structlog.configure(
        processors=_processors(settings),
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


@contextmanager
def log_context(**values: Any) -> Iterator[None]:
    """
    Bind values to every log line emitted in this thread until the block exits.

    Nested blocks add to the outer context; None values are not bound.
    """
    bound = {key: value for key, value in values.items() if value is not None}
    with structlog.contextvars.bound_contextvars(**bound):
        yield


def get_logger(name: str = __name__) -> structlog.BoundLogger:
    return structlog.get_logger(name)
