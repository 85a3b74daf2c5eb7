"""Logging configuration helpers."""

from __future__ import annotations

import logging
import os
import time
from logging.config import dictConfig
from typing import Any, Dict


class ISO8601UTCFormatter(logging.Formatter):
    """Formatter that outputs timestamps in ISO-8601 UTC."""

    converter = time.gmtime
    default_time_format = "%Y-%m-%dT%H:%M:%S"
    # Milliseconds are appended below, with the Z suffix.
    default_msec_format = None

    def formatTime(self, record: logging.LogRecord, datefmt: str | None = None) -> str:  # noqa: N802
        formatted = super().formatTime(record, datefmt=datefmt)
        if record.msecs:
            return f"{formatted}.{int(record.msecs):03d}Z"
        return f"{formatted}Z"


def preview(text: str | None, limit: int = 80) -> str:
    """Single-line, truncated rendering of user text for log lines."""
    if not text:
        return ""
    flat = " ".join(text.split())
    if len(flat) <= limit:
        return flat
    return flat[: limit - 3] + "..."


def setup_logging(level: str, log_dir: str = "logs") -> None:
    """Configure application logging."""

    os.makedirs(log_dir, exist_ok=True)

    config: Dict[str, Any] = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "structured": {
                "()": ISO8601UTCFormatter,
                "format": "%(asctime)s %(levelname)s %(name)s %(message)s",
            }
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "structured",
                "level": level,
            },
            "file": {
                "class": "logging.handlers.RotatingFileHandler",
                "formatter": "structured",
                "level": level,
                "filename": os.path.join(log_dir, "mina_ai.log"),
                "maxBytes": 5 * 1024 * 1024,  # 5 MB
                "backupCount": 3,
                "encoding": "utf-8",
            },
        },
        "loggers": {
            # discord.py is chatty at INFO during reconnects
            "discord": {"level": "WARNING"},
        },
        "root": {
            "handlers": ["console", "file"],
            "level": level,
        },
    }

    dictConfig(config)
