# src/logging/logger.py - v2
"""Logger factory and formatters for the toolkit.

Console output goes to stderr: stdout belongs to the programs `exec` runs.
Exception text is scrubbed like messages; no traceback is written in text
mode.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

from runmanifest.logging.context import get_context
from runmanifest.logging.handlers import ScrubCredentialsFilter, create_rotating_handler
from runmanifest.manifest.redactor import scrub_message

ROOT_LOGGER = "runmanifest"


def _timestamp() -> datetime:
    return datetime.now(timezone.utc)


class JsonFormatter(logging.Formatter):
    """One JSON object per line; run context nested under "context"."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": _timestamp().isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        context = get_context().as_dict()
        if context:
            entry["context"] = context

        data = getattr(record, "data", None)
        if data:
            entry["data"] = data

        if record.exc_info and record.exc_info[1] is not None:
            entry["exception"] = scrub_message(self.formatException(record.exc_info))

        return json.dumps(entry, default=str)


class TextFormatter(logging.Formatter):
    """`2026-01-01 12:00:00 [INFO    ] logger [command] (STEP) - message`."""

    def format(self, record: logging.LogRecord) -> str:
        ctx = get_context()
        line = f"{_timestamp():%Y-%m-%d %H:%M:%S} [{record.levelname:8s}] {record.name}"
        if ctx.command:
            line += f" [{ctx.command}]"
        if ctx.step:
            line += f" ({ctx.step})"
        line += f" - {record.getMessage()}"

        if record.exc_info and record.exc_info[1] is not None:
            exc = record.exc_info[1]
            line += f" [{type(exc).__name__}: {scrub_message(str(exc))}]"
        return line


def get_logger(name: str) -> logging.Logger:
    """Named logger under the toolkit namespace; configured by setup_logging()."""
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")


def setup_logging(
    level: str = "INFO",
    log_format: str = "text",
    log_file: str | None = None,
    rotation: str = "10MB",
    retention: int = 30,
) -> None:
    """(Re)configure the toolkit logger. Safe to call repeatedly.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR).
        log_format: "json" or "text".
        log_file: Optional rotating log file in addition to stderr.
        rotation: Max file size before rotation (e.g. "10MB").
        retention: Number of rotated files to keep.
    """
    root = logging.getLogger(ROOT_LOGGER)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    root.handlers.clear()

    formatter: logging.Formatter = JsonFormatter() if log_format == "json" else TextFormatter()

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    handlers[0].addFilter(ScrubCredentialsFilter())
    if log_file:
        handlers.append(create_rotating_handler(log_file, rotation=rotation, retention=retention))

    for handler in handlers:
        handler.setFormatter(formatter)
        root.addHandler(handler)
