"""
Logging configuration — process-wide setup plus run-scoped context.

``setup_logging`` is called once by the CLI. Level precedence:

    --debug / --verbose / --quiet  >  SAPPHIRE_LOG_LEVEL  >  WARNING

While a reconciliation run is active (``run_context``), every record
carries the run id, so interleaved console output and the optional
log file (SAPPHIRE_LOG_FILE, SAPPHIRE_LOG_FILE_LEVEL) can be matched
against the audit ledger.
"""

from __future__ import annotations

import contextvars
import logging
import os
import sys
from contextlib import contextmanager
from typing import Iterator

ENV_LEVEL = "SAPPHIRE_LOG_LEVEL"
ENV_FILE = "SAPPHIRE_LOG_FILE"
ENV_FILE_LEVEL = "SAPPHIRE_LOG_FILE_LEVEL"

NO_RUN = "-"

_current_run: contextvars.ContextVar[str] = contextvars.ContextVar("sapphire_run_id", default=NO_RUN)

# level → (format, datefmt); WARNING and above print the bare message
_CONSOLE_FORMATS = {
    logging.DEBUG: ("%(asctime)s %(levelname)-5s %(run_id)s %(name)s:%(lineno)d  %(message)s", "%H:%M:%S"),
    logging.INFO: ("%(asctime)s %(run_id)s %(message)s", "%H:%M:%S"),
}
_FILE_FORMAT = ("%(asctime)s %(levelname)-5s %(run_id)s %(name)s:%(lineno)d  %(message)s", "%Y-%m-%d %H:%M:%S")

_NOISY_LOGGERS = ("urllib3", "asyncio")


class RunContextFilter(logging.Filter):
    """Stamps ``record.run_id`` from the active run (or ``-``)."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.run_id = _current_run.get()
        return True


@contextmanager
def run_context(run_id: str) -> Iterator[None]:
    """Tag every log record emitted inside the block with ``run_id``."""
    token = _current_run.set(run_id or NO_RUN)
    try:
        yield
    finally:
        _current_run.reset(token)


def current_run_id() -> str:
    return _current_run.get()


def resolve_level(flag_level: str | None = None) -> str:
    """CLI flag, else the environment, else WARNING."""
    return flag_level or os.environ.get(ENV_LEVEL) or "WARNING"


def _parse_level(level: str | None) -> int:
    numeric = getattr(logging, (level or "").upper(), None)
    return numeric if isinstance(numeric, int) else logging.WARNING


def _handler(handler: logging.Handler, level: int, fmt: str, datefmt: str | None) -> logging.Handler:
    handler.setLevel(level)
    handler.addFilter(RunContextFilter())
    handler.setFormatter(logging.Formatter(fmt, datefmt=datefmt))
    return handler


def setup_logging(
    level: str = "WARNING",
    log_file: str | None = None,
    log_file_level: str | None = None,
    quiet_third_party: bool = True,
) -> None:
    """Configure the root logger for the whole process.

    Args:
        level: Console level name; unknown names fall back to WARNING.
        log_file: Optional log file (default: $SAPPHIRE_LOG_FILE).
        log_file_level: Level for the file (default: $SAPPHIRE_LOG_FILE_LEVEL, then ``level``).
        quiet_third_party: Hold library loggers at WARNING unless debugging.
    """
    console_level = _parse_level(level)
    fmt, datefmt = next(
        (f for lvl, f in sorted(_CONSOLE_FORMATS.items()) if console_level <= lvl),
        ("%(message)s", None),
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(_handler(logging.StreamHandler(sys.stderr), console_level, fmt, datefmt))
    root_level = console_level

    log_file = log_file or os.environ.get(ENV_FILE)
    if log_file:
        file_level = _parse_level(log_file_level or os.environ.get(ENV_FILE_LEVEL) or level)
        root.addHandler(
            _handler(logging.FileHandler(log_file, encoding="utf-8"), file_level, *_FILE_FORMAT)
        )
        root_level = min(root_level, file_level)

    root.setLevel(root_level)

    if quiet_third_party and console_level > logging.DEBUG:
        for name in _NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)
