"""Structured logging utilities for the orchestration engine."""

from __future__ import annotations

import json
import logging
from logging import Logger
from pathlib import Path
from typing import Any, Dict, Optional

from rich.console import Console
from rich.logging import RichHandler

_RESERVED = set(vars(logging.makeLogRecord({})).keys()) | {"message", "asctime"}


def configure_logging(
    log_file: Optional[str | Path] = None,
    *,
    level: int | str = logging.INFO,
    verbose: bool = False,
) -> Logger:
    """Configure console and optional audit logging for the package.

    Args:
        log_file: Optional path to a JSON lines log file for audit trails.
        level: Logging level applied to the package logger.
        verbose: Force ``DEBUG`` regardless of ``level``.

    Returns:
        The configured ``arbiter_orchestrator`` logger.
    """

    console = Console(stderr=True)
    handler = RichHandler(console=console, show_time=False, show_path=False)
    handler.setFormatter(logging.Formatter("%(message)s"))

    logger = logging.getLogger("arbiter_orchestrator")
    logger.setLevel(logging.DEBUG if verbose else level)
    for existing in list(logger.handlers):
        logger.removeHandler(existing)
        existing.close()
    logger.addHandler(handler)

    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(path, encoding="utf-8")
        file_handler.setFormatter(StructuredJsonFormatter())
        logger.addHandler(file_handler)

    logger.debug("Logging initialised", extra={"component": "logging"})
    return logger


class StructuredJsonFormatter(logging.Formatter):
    """Formatter that emits JSON lines, including any ``extra=`` context."""

    def format(self, record: logging.LogRecord) -> str:  # noqa: D401
        base: Dict[str, Any] = {
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
        }
        context = {key: value for key, value in vars(record).items() if key not in _RESERVED}
        if context:
            base["context"] = {key: _jsonable(value) for key, value in context.items()}
        if record.exc_info:
            base["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(base)


def _jsonable(value: Any) -> Any:
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    if isinstance(value, (list, tuple)):
        return [_jsonable(item) for item in value]
    if isinstance(value, dict):
        return {str(key): _jsonable(item) for key, item in value.items()}
    return str(value)


__all__ = ["StructuredJsonFormatter", "configure_logging"]
