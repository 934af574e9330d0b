"""Settings loader for the Ruuvi bridge daemon.

Configuration is read from a TOML file (``--config``, default
``./config.toml``). A missing file is not an error: the daemon starts with
built-in defaults, which run no sinks, and logs a warning. A file that
exists but cannot be parsed or validated raises :class:`ConfigError`.
"""

from __future__ import annotations

import logging
import tomllib
from pathlib import Path
from typing import Any

from marshmallow import ValidationError

from ..const import DEFAULT_CONFIG_PATH
from .model import RuntimeConfig
from .schema import build_runtime_schema

logger = logging.getLogger(__name__)


class ConfigError(ValueError):
    """Raised when the configuration file is present but unusable."""


def _read_raw_config(path: Path) -> dict[str, Any] | None:
    try:
        with path.open("rb") as handle:
            return tomllib.load(handle)
    except FileNotFoundError:
        return None
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"{path}: invalid TOML: {exc}") from exc
    except OSError as exc:
        raise ConfigError(f"{path}: cannot read configuration: {exc}") from exc


def load_runtime_config(path: str | Path = DEFAULT_CONFIG_PATH, *, strict: bool = False) -> RuntimeConfig:
    """Load configuration from *path*, falling back to defaults.

    With *strict*, keys the schema does not know are rejected instead of
    ignored.
    """

    config_path = Path(path)
    raw = _read_raw_config(config_path)
    if raw is None:
        logger.warning("Configuration file %s not found; using defaults.", config_path)
        raw = {}

    try:
        config = build_runtime_schema(strict=strict).load(raw)
    except ValidationError as exc:
        raise ConfigError(f"{config_path}: {exc.messages}") from exc
    except ValueError as exc:
        raise ConfigError(f"{config_path}: {exc}") from exc

    return config


__all__ = ["ConfigError", "RuntimeConfig", "load_runtime_config"]
