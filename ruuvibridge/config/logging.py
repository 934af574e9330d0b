"""Logging helpers for the Ruuvi bridge daemon."""

from __future__ import annotations

import logging
import os
from datetime import datetime, timezone
from logging import Handler
from logging.config import dictConfig
from logging.handlers import SysLogHandler
from pathlib import Path
from typing import Any

import msgspec

from ..util import is_truthy
from .model import RuntimeConfig

SYSLOG_SOCKET = Path("/dev/log")
LOG_STREAM_ENV = "RUUVIBRIDGE_LOG_STREAM"

_STANDARD_ATTRS = frozenset(
    logging.LogRecord("", 0, "", 0, "", None, None).__dict__
) | {"message", "asctime", "taskName"}


def _jsonable(value: Any) -> Any:
    match value:
        case None | str() | int() | float():
            return value
        case bytes() | bytearray() | memoryview():
            # Radio payloads are binary; show bytes, never a decoded string.
            return "[" + bytes(value).hex(" ").upper() + "]"
        case _:
            return str(value)


def _utc_stamp(created: float) -> str:
    return datetime.fromtimestamp(created, tz=timezone.utc).isoformat().replace("+00:00", "Z")


class StructuredLogFormatter(logging.Formatter):
    """One JSON object per record.

    Loggers under ``ruuvibridge.`` are reported by their short name. Values
    passed through ``extra=`` land in an ``extra`` object.
    """

    NAMESPACE = "ruuvibridge."

    def short_name(self, name: str) -> str:
        return name.removeprefix(self.NAMESPACE)

    def context(self, record: logging.LogRecord) -> dict[str, Any]:
        return {
            key: _jsonable(value)
            for key, value in vars(record).items()
            if key not in _STANDARD_ATTRS and not key.startswith("_")
        }

    def format(self, record: logging.LogRecord) -> str:
        document: dict[str, Any] = {
            "ts": _utc_stamp(record.created),
            "level": record.levelname,
            "logger": self.short_name(record.name),
            "message": record.getMessage(),
        }
        if context := self.context(record):
            document["extra"] = context
        if record.exc_info:
            document["exception"] = self.formatException(record.exc_info)
        return msgspec.json.encode(document).decode("utf-8")


def _build_handler() -> Handler:
    if is_truthy(os.environ.get(LOG_STREAM_ENV)) or not SYSLOG_SOCKET.exists():
        return logging.StreamHandler()

    syslog_handler = SysLogHandler(
        address=str(SYSLOG_SOCKET),
        facility=SysLogHandler.LOG_DAEMON,
    )
    syslog_handler.ident = "ruuvibridge "
    return syslog_handler


def configure_logging(config: RuntimeConfig) -> None:
    """Configure root logging based on runtime settings."""

    level_name = "DEBUG" if config.debug_logging else "INFO"

    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "structured": {
                    "()": "ruuvibridge.config.logging.StructuredLogFormatter",
                }
            },
            "handlers": {
                "ruuvibridge": {
                    "()": _build_handler,
                    "level": level_name,
                    "formatter": "structured",
                }
            },
            "root": {
                "level": level_name,
                "handlers": ["ruuvibridge"],
            },
        }
    )

    logging.getLogger("ruuvibridge").info("Logging configured at level %s", level_name)
