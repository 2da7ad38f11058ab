"""
Logging for showsync.

Every module logs through logging.getLogger(__name__), so all records end up
in the 'showsync' tree and one handler on that logger catches the CLI, the
sync engine and the import script alike.

    from showsync.logging_config import configure_logging, log_call

    configure_logging()          # once per process; repeat calls are no-ops

    @log_call
    def sync_travel_grid(session_id, people=None, store=None):
        ...

File: logs/showsync.log, rotated at 5 MB, 3 backups kept.
Level: LOG_LEVEL (unknown names fall back to INFO).

A sync of one flight looks like:

    2026-05-01 14:32:01 | DEBUG    | showsync | CALL sync_flight | args=(Flight(id='f1', ...))
    2026-05-01 14:32:01 | INFO     | showsync.engine.schedule_sync | Synced advancing_flights/f1: 1 removed, 1 created, 0 skipped
    2026-05-01 14:32:01 | INFO     | showsync | OK   sync_flight | 12ms
"""

import functools
import logging
import logging.handlers
import os
import time
from pathlib import Path

_LOG_DIR = Path(__file__).parent.parent / "logs"
_LOG_FILE = _LOG_DIR / "showsync.log"
_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
_MAX_BYTES = 5 * 1024 * 1024
_BACKUP_COUNT = 3

# Grid rows and field batches can be long; CALL lines keep the head of each argument
_MAX_ARG_CHARS = 200


def configure_logging() -> logging.Logger:
    """Attach the rotating file handler to the 'showsync' logger once and return it."""
    _LOG_DIR.mkdir(exist_ok=True)

    logger = logging.getLogger("showsync")
    if logger.handlers:
        return logger

    level_name = os.environ.get("LOG_LEVEL", "INFO").upper()
    logger.setLevel(getattr(logging, level_name, logging.INFO))

    handler = logging.handlers.RotatingFileHandler(
        _LOG_FILE,
        maxBytes=_MAX_BYTES,
        backupCount=_BACKUP_COUNT,
        encoding="utf-8",
    )
    handler.setFormatter(logging.Formatter(_FORMAT, datefmt=_DATE_FORMAT))
    logger.addHandler(handler)
    return logger


def _short_repr(value) -> str:
    text = repr(value)
    if len(text) > _MAX_ARG_CHARS:
        return text[:_MAX_ARG_CHARS] + "..."
    return text


def log_call(func):
    """
    Log CALL (DEBUG) with the arguments, then OK (INFO) or FAIL (ERROR) with
    the elapsed milliseconds. Exceptions are re-raised unchanged.
    """
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        logger = logging.getLogger("showsync")
        name = func.__name__
        start = time.perf_counter()

        parts = [_short_repr(a) for a in args] + [f"{k}={_short_repr(v)}" for k, v in kwargs.items()]
        logger.debug(f"CALL {name} | args=({', '.join(parts) if parts else '-'})")

        try:
            result = func(*args, **kwargs)
        except Exception as exc:
            ms = int((time.perf_counter() - start) * 1000)
            logger.error(f"FAIL {name} | {type(exc).__name__}: {exc} | {ms}ms")
            raise

        ms = int((time.perf_counter() - start) * 1000)
        logger.info(f"OK   {name} | {ms}ms")
        return result

    return wrapper
