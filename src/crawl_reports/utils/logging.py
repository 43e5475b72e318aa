from __future__ import annotations

import contextvars
import logging
import sys
import uuid
from contextlib import contextmanager
from typing import Iterator, Optional, Union

_RUN_ID: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "crawl_reports_run_id", default=None
)

LOG_FORMAT = "%(asctime)s %(levelname)s [%(run_id)s] %(name)s: %(message)s"


class _RunIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:  # pragma: no cover - trivial
        record.run_id = _RUN_ID.get() or "-"
        return True


LogLevel = Union[int, str]


def _coerce_level(level: LogLevel) -> int:
    if isinstance(level, int):
        return level
    return logging._nameToLevel.get(level.upper(), logging.INFO)


def init_logger(name: str, level: LogLevel = "INFO") -> logging.Logger:
    """Configure ``name`` with a single stderr handler tagged by run id.

    Child loggers (``crawl_reports.pipeline`` and friends) propagate here, so
    the run id filter sits on the handler as well as on the logger itself.
    """
    logger = logging.getLogger(name)
    level_value = _coerce_level(level)
    logger.setLevel(level_value)

    if not any(isinstance(f, _RunIdFilter) for f in logger.filters):
        logger.addFilter(_RunIdFilter())

    # Replace our own handler so it follows the current sys.stderr.
    for handler in list(logger.handlers):
        if any(isinstance(f, _RunIdFilter) for f in handler.filters):
            logger.removeHandler(handler)
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.addFilter(_RunIdFilter())
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)

    for handler in logger.handlers:
        handler.setLevel(level_value)

    logger.propagate = False
    return logger


@contextmanager
def run_context(logger: logging.Logger) -> Iterator[str]:
    if not any(isinstance(f, _RunIdFilter) for f in logger.filters):
        logger.addFilter(_RunIdFilter())

    run_id = uuid.uuid4().hex[:12]
    token = _RUN_ID.set(run_id)
    try:
        yield run_id
    finally:
        _RUN_ID.reset(token)


__all__ = ["LOG_FORMAT", "init_logger", "run_context"]
