"""Structured logging helpers with run correlation context.

Every record carries the run id (the sync's correlation token, so log lines
match the marker names seen in either database) and the current phase.
"""

from __future__ import annotations

import contextvars
import logging
import time
import uuid
from contextlib import contextmanager
from typing import Iterator, Optional

_RUN_ID_VAR: contextvars.ContextVar[str] = contextvars.ContextVar(
    "run_id", default="-"
)
_PHASE_VAR: contextvars.ContextVar[str] = contextvars.ContextVar(
    "phase", default="-"
)

LOG_FORMAT = (
    "%(asctime)s | %(levelname)s | run_id=%(run_id)s | phase=%(phase)s | "
    "%(name)s | %(message)s"
)

logger = logging.getLogger(__name__)


class _RunContextFilter(logging.Filter):
    """Inject run correlation fields into all log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.run_id = _RUN_ID_VAR.get("-")
        record.phase = _PHASE_VAR.get("-")
        return True


def _ensure_filter_on_root_handlers() -> None:
    root_logger = logging.getLogger()
    for handler in root_logger.handlers:
        has_filter = any(isinstance(f, _RunContextFilter) for f in handler.filters)
        if not has_filter:
            handler.addFilter(_RunContextFilter())


def configure_structured_logging(level: int = logging.INFO) -> None:
    """Configure root logging format with run/phase context."""
    root_logger = logging.getLogger()
    if not root_logger.handlers:
        logging.basicConfig(level=level, format=LOG_FORMAT)
    else:
        root_logger.setLevel(level)
        formatter = logging.Formatter(LOG_FORMAT)
        for handler in root_logger.handlers:
            handler.setFormatter(formatter)
    _ensure_filter_on_root_handlers()
    # The driver logs every routing/pool event at DEBUG.
    logging.getLogger("neo4j").setLevel(max(level, logging.WARNING))


def new_run_token() -> str:
    """Short random hex token, safe inside Cypher identifiers."""
    return uuid.uuid4().hex[:16]


def set_run_id(run_id: Optional[str] = None) -> str:
    """Set or generate run correlation ID."""
    value = run_id or new_run_token()
    _RUN_ID_VAR.set(value)
    return value


def get_run_id() -> str:
    """Get current run correlation ID."""
    return _RUN_ID_VAR.get("-")


def get_phase() -> str:
    return _PHASE_VAR.get("-")


@contextmanager
def phase_scope(phase: str) -> Iterator[None]:
    """Set phase context for emitted logs and log the phase duration."""
    token = _PHASE_VAR.set(phase)
    started = time.monotonic()
    try:
        yield
    except BaseException:
        logger.error(
            "Phase %s aborted after %.2fs", phase, time.monotonic() - started
        )
        raise
    else:
        logger.info(
            "Phase %s finished in %.2fs", phase, time.monotonic() - started
        )
    finally:
        _PHASE_VAR.reset(token)
