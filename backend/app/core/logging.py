from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from logging.handlers import RotatingFileHandler
from typing import Any

from .config import Settings

REQUEST_FIELDS = ("request_id", "path", "method", "status", "duration_ms", "user")
FILE_HANDLER_NAME = "lifetrack-file"
CONSOLE_HANDLER_NAME = "lifetrack-console"


class JsonFormatter(logging.Formatter):
    """One JSON object per record; request fields and ``extra_fields`` are merged in."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(
            (name, getattr(record, name))
            for name in REQUEST_FIELDS
            if getattr(record, name, None) is not None
        )

        extra_fields = getattr(record, "extra_fields", None)
        if isinstance(extra_fields, dict):
            payload.update(extra_fields)
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)

        return json.dumps(payload, ensure_ascii=False, default=str)


def _named_handler(handler: logging.Handler, name: str) -> logging.Handler:
    handler.set_name(name)
    handler.setFormatter(JsonFormatter())
    return handler


def configure_logging(settings: Settings) -> None:
    """Attach the JSON file and console handlers to the root logger once."""

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, settings.log_level, logging.INFO))

    installed = {handler.get_name() for handler in root_logger.handlers}
    if FILE_HANDLER_NAME not in installed:
        root_logger.addHandler(
            _named_handler(
                RotatingFileHandler(settings.log_file, maxBytes=1_000_000, backupCount=3),
                FILE_HANDLER_NAME,
            )
        )
    if CONSOLE_HANDLER_NAME not in installed:
        root_logger.addHandler(_named_handler(logging.StreamHandler(), CONSOLE_HANDLER_NAME))
