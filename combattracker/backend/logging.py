"""structlog setup: key/value events on stdout, console or JSON lines."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
import logging
import sys
from typing import Any

import structlog
from structlog.types import EventDict, Processor, WrappedLogger
from structlog.typing import FilteringBoundLogger


def _add_app_name(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    event_dict["app"] = "combattracker"
    return event_dict


def _renderer(json_format: bool) -> list[Processor]:
    if json_format:
        return [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    return [structlog.dev.ConsoleRenderer(exception_formatter=structlog.dev.plain_traceback)]


def configure_logging(*, level: str = "INFO", json_format: bool = False) -> None:
    """Route structlog and stdlib logging to stdout at `level`."""
    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            _add_app_name,
            *_renderer(json_format),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # uvicorn and psycopg log through stdlib
    logging.basicConfig(format="%(levelname)s %(name)s: %(message)s", level=numeric_level, stream=sys.stdout, force=True)
    logging.getLogger("httpx").setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> FilteringBoundLogger:
    return structlog.get_logger(name)


@contextmanager
def request_context(**values: Any) -> Iterator[None]:
    """Attach `values` to every event logged inside the block."""
    with structlog.contextvars.bound_contextvars(**values):
        yield
