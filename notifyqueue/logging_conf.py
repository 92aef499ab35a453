"""Logging setup: console, rotating file and optional BetterStack shipping.

Queue and import log calls pass identifiers through `extra=`. The context
filter renders whichever of them a record carries as a bracketed prefix, so
a line can be traced back to its notification row or import index.
"""
import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from logtail import LogtailHandler

from notifyqueue import settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(threadName)s - %(levelname)s - %(context)s%(message)s"
LOG_FILE_NAME = "notifyqueue.log"
LOG_FILE_MAX_BYTES = 10 * 1024 * 1024
LOG_FILE_BACKUPS = 5

# record attribute -> label in the rendered prefix
CONTEXT_FIELDS = (
    ("notification_id", "notification"),
    ("event_type", "event"),
    ("workspace_id", "workspace"),
    ("retry_count", "retry"),
    ("import_index", "import"),
)


class ContextFilter(logging.Filter):
    """Sets `record.context` from the identifiers passed via `extra=`."""

    def filter(self, record: logging.LogRecord) -> bool:
        parts = [
            f"{label}={getattr(record, field)}"
            for field, label in CONTEXT_FIELDS
            if getattr(record, field, None) is not None
        ]
        record.context = f"[{' '.join(parts)}] " if parts else ""
        return True


def _level():
    return getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)


def _file_handler(log_dir: Path) -> RotatingFileHandler:
    log_dir.mkdir(parents=True, exist_ok=True)
    return RotatingFileHandler(
        log_dir / LOG_FILE_NAME, maxBytes=LOG_FILE_MAX_BYTES, backupCount=LOG_FILE_BACKUPS
    )


def _betterstack_handler() -> LogtailHandler:
    handler_kwargs = {"source_token": settings.BETTERSTACK_SOURCE_TOKEN}
    if settings.BETTERSTACK_INGEST_HOST:
        handler_kwargs["host"] = settings.BETTERSTACK_INGEST_HOST
    return LogtailHandler(**handler_kwargs)


def setup_logging(log_dir: Optional[Path] = None) -> logging.Logger:
    """Replace the root handlers and return the package logger.

    A log directory that cannot be created disables file logging instead of
    failing startup.
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(_level())
    root_logger.handlers = []
    formatter = logging.Formatter(LOG_FORMAT)
    context = ContextFilter()

    def attach(handler, level):
        handler.setLevel(level)
        handler.setFormatter(formatter)
        handler.addFilter(context)
        root_logger.addHandler(handler)

    attach(logging.StreamHandler(sys.stdout), _level())

    log_dir = Path(log_dir or settings.LOGS_DIR)
    try:
        attach(_file_handler(log_dir), logging.INFO)
    except OSError as e:
        root_logger.warning(f"File logging disabled, cannot write to {log_dir}: {e}")

    if settings.BETTERSTACK_SOURCE_TOKEN:
        try:
            attach(_betterstack_handler(), logging.DEBUG)
            host_info = settings.BETTERSTACK_INGEST_HOST or "default (in.logs.betterstack.com)"
            root_logger.info(f"BetterStack logging enabled (host: {host_info})")
        except Exception as e:
            root_logger.warning(f"Failed to initialize BetterStack logging: {e}")

    for noisy in ("urllib3", "psycopg2"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
    return logging.getLogger("notifyqueue")


logger = setup_logging()
