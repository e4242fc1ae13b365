"""
Logging and retention helper service.
"""
from __future__ import annotations

import json
import logging
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timedelta
from pathlib import Path
from typing import Iterator, Optional


_FILE_HANDLER_TAG = "journal_file_handler"

# User whose input is being handled (accessible from any thread/coroutine).
user_id_ctx: ContextVar[Optional[int]] = ContextVar("user_id", default=None)


@contextmanager
def user_context(user_id: int) -> Iterator[None]:
    """Tag log records emitted inside the block with ``user_id``."""
    token = user_id_ctx.set(user_id)
    try:
        yield
    finally:
        user_id_ctx.reset(token)


class StructuredFormatter(logging.Formatter):
    """
    JSON structured log formatter that includes the current user id.
    """

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        user_id = user_id_ctx.get()
        if user_id is not None:
            payload["user_id"] = user_id
        if record.exc_info and record.exc_info[1]:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def configure_structured_logging(log_level: str = "INFO") -> None:
    """
    Reconfigure root logger to use structured JSON formatting.
    Preserves existing file handlers but upgrades their formatter.
    """
    root = logging.getLogger()
    level = getattr(logging, log_level.upper(), logging.INFO)
    root.setLevel(level)

    formatter = StructuredFormatter()
    for handler in root.handlers:
        handler.setFormatter(formatter)

    # Add console handler if none exists
    if not any(isinstance(h, logging.StreamHandler) and not isinstance(h, logging.FileHandler) for h in root.handlers):
        console = logging.StreamHandler()
        console.setLevel(level)
        console.setFormatter(formatter)
        root.addHandler(console)


def configure_file_logging(log_directory: str) -> Path:
    """Configure root logger to also write into the journal log file."""
    log_dir = Path(log_directory).expanduser().resolve()
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / "journal.log"

    root_logger = logging.getLogger()
    existing = next((h for h in root_logger.handlers if getattr(h, "name", "") == _FILE_HANDLER_TAG), None)
    if existing:
        root_logger.removeHandler(existing)
        existing.close()

    file_handler = logging.FileHandler(log_file, encoding="utf-8")
    file_handler.name = _FILE_HANDLER_TAG
    file_handler.setLevel(logging.INFO)
    file_handler.setFormatter(StructuredFormatter())
    root_logger.addHandler(file_handler)
    if root_logger.level > logging.INFO:
        root_logger.setLevel(logging.INFO)
    return log_dir


def cleanup_old_files(directory: str, retention_days: int) -> int:
    """Delete files older than retention_days in directory. Returns deleted file count."""
    target_dir = Path(directory).expanduser().resolve()
    if not target_dir.exists():
        return 0

    cutoff = datetime.now() - timedelta(days=retention_days)
    deleted = 0
    for path in target_dir.iterdir():
        if not path.is_file():
            continue
        try:
            modified = datetime.fromtimestamp(path.stat().st_mtime)
            if modified < cutoff:
                path.unlink(missing_ok=True)
                deleted += 1
        except OSError:
            continue
    return deleted


def setup_logging(settings) -> Path:
    """Apply the configured log level, JSON formatting, log file and retention."""
    log_dir = configure_file_logging(settings.log_directory)
    configure_structured_logging(settings.log_level)
    removed = cleanup_old_files(str(log_dir), settings.log_retention_days)
    if removed:
        logging.getLogger(__name__).info("Removed %d log files older than %d days", removed,
                                         settings.log_retention_days)
    return log_dir
