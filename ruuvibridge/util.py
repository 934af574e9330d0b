"""Small helpers shared by the Ruuvi bridge modules."""

from __future__ import annotations

import logging

__all__ = [
    "is_truthy",
    "log_payload",
]

_ENABLED_WORDS = ("1", "true", "yes", "on", "enable", "enabled")


def log_payload(logger_instance: logging.Logger, level: int, reason: str, payload: bytes) -> None:
    """Log a manufacturer payload as spaced uppercase hex with its byte count."""
    if logger_instance.isEnabledFor(level):
        logger_instance.log(level, "%s (%d bytes): %s", reason, len(payload), payload.hex(" ").upper())


def is_truthy(value: object) -> bool:
    """Interpret an environment or config switch; unset and unknown words are off."""
    match value:
        case None:
            return False
        case bool() | int() | float():
            return bool(value)
        case _:
            return str(value).strip().lower() in _ENABLED_WORDS
