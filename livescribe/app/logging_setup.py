from __future__ import annotations

import json
import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

from livescribe.app.config import app_paths

# Attributes every LogRecord carries; anything else on a record came in via `extra`.
_STANDARD_ATTRS = frozenset(logging.LogRecord("", 0, "", 0, "", None, None).__dict__) | {"message", "asctime"}

LOG_FILE_NAME = "livescribe.log"
LOG_MAX_BYTES = 1_000_000
LOG_BACKUPS = 5


class JsonLineFormatter(logging.Formatter):
    """One JSON object per line: fixed header fields, then the event fields."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, object] = {
            "ts": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update(
            (key, value)
            for key, value in vars(record).items()
            if key not in _STANDARD_ATTRS and not key.startswith("_")
        )
        if record.exc_info:
            entry["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


def log_event(logger: logging.Logger | None, level: int, event: str, /, **fields: Any) -> None:
    if logger is None:
        return
    # `extra` may not shadow record attributes; logging raises KeyError for those.
    safe = {(f"field_{k}" if k in _STANDARD_ATTRS else k): v for k, v in fields.items()}
    logger.log(level, event, extra=safe)


def setup_app_logger(
    name: str = "livescribe",
    *,
    debug: bool = False,
    console: bool = False,
) -> tuple[logging.Logger, Path, Path]:
    """
    Route the package logger to a rotating JSON-lines file under the config dir.

    Component loggers (``livescribe.live.session`` and friends) propagate here.
    With ``console`` set, warnings and errors are echoed to stderr as plain text.
    """
    log_dir = app_paths().config_dir / "logs"
    log_dir.mkdir(parents=True, exist_ok=True)
    log_path = log_dir / LOG_FILE_NAME

    logger = logging.getLogger(name)
    logger.setLevel(logging.DEBUG if debug else logging.INFO)
    logger.propagate = False
    for old in list(logger.handlers):
        logger.removeHandler(old)
        old.close()

    file_handler = RotatingFileHandler(log_path, maxBytes=LOG_MAX_BYTES, backupCount=LOG_BACKUPS, encoding="utf-8")
    file_handler.setFormatter(JsonLineFormatter(datefmt="%Y-%m-%dT%H:%M:%S"))
    logger.addHandler(file_handler)

    if console:
        stream_handler = logging.StreamHandler(sys.stderr)
        stream_handler.setLevel(logging.WARNING)
        stream_handler.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))
        logger.addHandler(stream_handler)
    return logger, log_dir, log_path
