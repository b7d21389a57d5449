"""Logging setup for PastForward runs.

Log calls made on behalf of one task key pass their run context through
``extra=run_context(...)``; both formatters render it, so every line about a
key can be traced back to the run (token) and path (run or regenerate) that
produced it.
"""

from __future__ import annotations

import json
import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Mapping

LOGGER_NAME = "PastForward"
LOG_FILENAME = "pastforward.log"
CONTEXT_FIELDS = ("mode", "key", "origin", "run_token")

_LEVEL_COLORS = {
    logging.DEBUG: "\033[36m",
    logging.INFO: "\033[32m",
    logging.WARNING: "\033[33m",
    logging.ERROR: "\033[31m",
    logging.CRITICAL: "\033[35m",
}
_RESET = "\033[0m"


def run_context(**fields: Any) -> Dict[str, Any]:
    """Build an ``extra`` mapping from the known context fields, skipping ``None``."""

    unknown = set(fields) - set(CONTEXT_FIELDS)
    if unknown:
        raise ValueError(f"Unknown log context field(s): {', '.join(sorted(unknown))}")
    return {name: value for name, value in fields.items() if value is not None}


def record_context(record: logging.LogRecord) -> Dict[str, Any]:
    return {
        name: getattr(record, name)
        for name in CONTEXT_FIELDS
        if getattr(record, name, None) is not None
    }


class RunFormatter(logging.Formatter):
    """Plain text formatter that appends ``[key=... origin=...]`` when present."""

    def __init__(self, fmt: str, *, use_color: bool = False) -> None:
        super().__init__(fmt)
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        context = record_context(record)
        if context:
            message += " [" + " ".join(f"{name}={value}" for name, value in context.items()) + "]"
        color = _LEVEL_COLORS.get(record.levelno) if self.use_color else None
        return f"{color}{message}{_RESET}" if color else message


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(record_context(record))
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


def configure_logging(config: Mapping[str, object]) -> logging.Logger:
    """Attach a console handler and, when ``log_dir`` is set, a rotating file log."""

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.DEBUG)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    console_handler = logging.StreamHandler()
    console_handler.setLevel(_coerce_level(config.get("console_level")))
    console_handler.setFormatter(
        RunFormatter(
            "%(asctime)s [%(levelname)s] %(message)s",
            use_color=bool(config.get("color", True)) and sys.stderr.isatty(),
        )
    )
    logger.addHandler(console_handler)

    log_dir = config.get("log_dir") or config.get("logs")
    if log_dir:
        path = Path(str(log_dir))
        path.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            path / LOG_FILENAME,
            maxBytes=10 * 1024 * 1024,
            backupCount=5,
            encoding="utf-8",
        )
        file_handler.setLevel(_coerce_level(config.get("file_level")))
        if config.get("json_logs"):
            file_handler.setFormatter(JsonFormatter())
        else:
            file_handler.setFormatter(RunFormatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s"))
        logger.addHandler(file_handler)

    return logger


def _coerce_level(level: object) -> int:
    if isinstance(level, int):
        return level
    if isinstance(level, str):
        value = getattr(logging, level.upper(), None)
        if isinstance(value, int):
            return value
    return logging.INFO


__all__ = [
    "CONTEXT_FIELDS",
    "JsonFormatter",
    "LOGGER_NAME",
    "RunFormatter",
    "configure_logging",
    "record_context",
    "run_context",
]
