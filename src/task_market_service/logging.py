"""
Structured JSON logging for the task market service.

Every line is one JSON object. Correlation ids passed through ``extra``
(task, user, offer, checkout session, processor event) are lifted to the
top level so a single task's history can be grepped across managers; any
other extra fields are nested under ``"extra"``.
"""

from __future__ import annotations

import json
import logging
import os
import sys
import time
from datetime import UTC, datetime
from logging.handlers import TimedRotatingFileHandler
from typing import Any

ROOT_LOGGER_NAME = "task_market_service"

LOG_LEVELS: tuple[str, ...] = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

CORRELATION_FIELDS: tuple[str, ...] = (
    "task_id",
    "user_id",
    "offer_id",
    "session_id",
    "event_id",
)

_MASKED_SUFFIXES: tuple[str, ...] = ("secret", "token", "password")

# Attributes present on every LogRecord; anything else came in via ``extra``.
_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {
    "message",
    "asctime",
}


def _masked(key: str, value: Any) -> Any:
    if key.lower().endswith(_MASKED_SUFFIXES):
        return "***"
    return value


class JSONFormatter(logging.Formatter):
    """Render a record as a single JSON line."""

    def __init__(self, service_name: str) -> None:
        super().__init__()
        self._service_name = service_name

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, tz=UTC)
        entry: dict[str, Any] = {
            "ts": created.isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "level": record.levelname,
            "service": self._service_name,
            "logger": record.name,
            "message": record.getMessage(),
        }

        extra: dict[str, Any] = {}
        for key, value in vars(record).items():
            if key in _RECORD_ATTRS:
                continue
            if key in CORRELATION_FIELDS:
                entry[key] = value
            else:
                extra[key] = _masked(key, value)
        if extra:
            entry["extra"] = extra

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


class DailyRotatingFileHandler(TimedRotatingFileHandler):
    """
    File handler that starts a new ``<prefix>-YYYY-MM-DD.log`` at UTC midnight.

    The stock handler renames the active file on rollover; here each day
    simply gets its own file, so nothing is renamed while being tailed.
    """

    def __init__(self, directory: str, prefix: str) -> None:
        self._directory = directory
        self._prefix = prefix
        super().__init__(self._path_for_today(), when="midnight", utc=True)

    def _path_for_today(self) -> str:
        day = datetime.now(tz=UTC).date().isoformat()
        return os.path.join(self._directory, f"{self._prefix}-{day}.log")

    def doRollover(self) -> None:  # noqa: N802
        if self.stream:
            self.stream.close()
            self.stream = None  # type: ignore[assignment]
        self.baseFilename = os.path.abspath(self._path_for_today())
        if not self.delay:
            self.stream = self._open()
        self.rolloverAt = self.computeRollover(int(time.time()))


def setup_logging(level: str, service_name: str, log_directory: str) -> logging.Logger:
    """
    Attach stdout and daily-file JSON handlers to the package root logger.

    Safe to call more than once (the API and the sweep command both call
    it); previous handlers are closed and replaced.

    Raises:
        ValueError: If level is not one of LOG_LEVELS
    """
    name = level.upper()
    if name not in LOG_LEVELS:
        raise ValueError(f"Invalid log level: {level}. Must be one of {list(LOG_LEVELS)}")
    numeric_level = logging.getLevelName(name)

    root = logging.getLogger(ROOT_LOGGER_NAME)
    for old in list(root.handlers):
        old.close()
        root.removeHandler(old)
    root.setLevel(numeric_level)
    root.propagate = False

    os.makedirs(log_directory, exist_ok=True)
    formatter = JSONFormatter(service_name)
    handlers: list[logging.Handler] = [
        logging.StreamHandler(sys.stdout),
        DailyRotatingFileHandler(log_directory, prefix=service_name),
    ]
    for handler in handlers:
        handler.setLevel(numeric_level)
        handler.setFormatter(formatter)
        root.addHandler(handler)

    return root


def get_logger(name: str) -> logging.Logger:
    """Module logger; pass ``__name__`` so it nests under the package root."""
    return logging.getLogger(name)
