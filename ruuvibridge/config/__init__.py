"""Configuration loading, validation and logging setup."""

from .model import BufferConfig, InfluxDbConfig, MetricsConfig, MqttConfig, RuntimeConfig
from .settings import ConfigError, load_runtime_config

__all__ = [
    "BufferConfig",
    "ConfigError",
    "InfluxDbConfig",
    "MetricsConfig",
    "MqttConfig",
    "RuntimeConfig",
    "load_runtime_config",
]
