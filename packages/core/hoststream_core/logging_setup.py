"""Structured local logging and crash hook setup."""

from __future__ import annotations

import faulthandler
import json
import logging
import logging.handlers
import os
import sys
import threading
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from .config import app_dir


_LOGGER_NAME = "hoststream"
_LOG_FILE = "hoststream.log"
_FAULT_FILE = "fault.log"

# Structured fields copied from `extra=` into the JSON line when present.
_EXTRA_FIELDS = ("event", "crash_id", "state", "error", "attempt", "topic")

_fault_stream = None


def log_dir() -> Path:
    path = app_dir() / "logs"
    path.mkdir(parents=True, exist_ok=True)
    return path


def _resolve_level(default: int) -> int:
    name = os.environ.get("HOSTSTREAM_LOG_LEVEL", "").strip().upper()
    if not name:
        return default
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else default


class JsonFormatter(logging.Formatter):
    """One JSON object per line; structured `extra` fields become top-level keys."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts_utc": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "thread": record.threadName,
            "msg": record.getMessage(),
        }
        payload.update({name: getattr(record, name) for name in _EXTRA_FIELDS if hasattr(record, name)})
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=True, default=str)


def configure_logging(keep_files: int = 7, console: bool = True, level: int = logging.INFO) -> logging.Logger:
    logger = logging.getLogger(_LOGGER_NAME)
    if logger.handlers:
        return logger

    logger.setLevel(_resolve_level(level))
    file_handler = logging.handlers.TimedRotatingFileHandler(
        filename=str(log_dir() / _LOG_FILE),
        when="midnight",
        backupCount=max(2, keep_files),
        encoding="utf-8",
    )
    file_handler.setFormatter(JsonFormatter())
    logger.addHandler(file_handler)

    if console:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)-7s %(name)s: %(message)s", "%H:%M:%S"))
        logger.addHandler(console_handler)

    # Connection failures are logged once by the manager, not by websocket-client.
    logging.getLogger("websocket").setLevel(logging.CRITICAL)

    logger.info("logging configured", extra={"event": "logging_configured"})
    return logger


def get_logger() -> logging.Logger:
    return logging.getLogger(_LOGGER_NAME)


def _report_crash(logger: logging.Logger, event: str, exc_info) -> None:
    crash_id = str(uuid.uuid4())
    logger.critical(
        "%s crash_id=%s",
        event.replace("_", " "),
        crash_id,
        exc_info=exc_info,
        extra={"event": event, "crash_id": crash_id},
    )


def install_crash_hooks() -> None:
    """Route uncaught exceptions from any thread into the log and dump native faults to fault.log."""
    global _fault_stream
    logger = get_logger()

    sys.excepthook = lambda exc_type, exc_value, exc_tb: _report_crash(
        logger, "uncaught_exception", (exc_type, exc_value, exc_tb)
    )
    threading.excepthook = lambda args: _report_crash(
        logger, "thread_exception", (args.exc_type, args.exc_value, args.exc_traceback)
    )

    if _fault_stream is None:
        _fault_stream = (log_dir() / _FAULT_FILE).open("a", encoding="utf-8")
        faulthandler.enable(file=_fault_stream, all_threads=True)
        logger.info("fault handler enabled", extra={"event": "fault_handler_enabled"})
