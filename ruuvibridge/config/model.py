"""Data model for Ruuvi bridge configuration."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from ..const import (
    DEFAULT_DEBUG_LOGGING,
    DEFAULT_INFLUXDB3_DATABASE,
    DEFAULT_INFLUXDB3_URL,
    DEFAULT_INFLUXDB_MEASUREMENT,
    DEFAULT_INFLUXDB_TIMEOUT,
    DEFAULT_INFLUXDB_URL,
    DEFAULT_METRICS_ENABLED,
    DEFAULT_METRICS_HOST,
    DEFAULT_METRICS_PORT,
    DEFAULT_MINIMUM_INTERVAL,
    DEFAULT_MOCK_INTERVAL,
    DEFAULT_MQTT_CLIENT_ID,
    DEFAULT_MQTT_HOST,
    DEFAULT_MQTT_KEEPALIVE,
    DEFAULT_MQTT_PORT,
    DEFAULT_MQTT_QOS,
    DEFAULT_MQTT_TOPIC_PREFIX,
    DEFAULT_USE_MOCK,
)
from ..protocol.measurement import normalise_mac

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class BufferConfig:
    """Delivery buffer sizing; non-positive values select the defaults."""

    max_size: int = 0
    retry_interval: float = 0.0


@dataclass(slots=True)
class MqttConfig:
    enabled: bool = False
    host: str = DEFAULT_MQTT_HOST
    port: int = DEFAULT_MQTT_PORT
    username: str | None = None
    password: str | None = field(default=None, repr=False)
    tls: bool = False
    tls_insecure: bool = False
    cafile: str | None = None
    certfile: str | None = None
    keyfile: str | None = None
    client_id: str = DEFAULT_MQTT_CLIENT_ID
    topic_prefix: str = DEFAULT_MQTT_TOPIC_PREFIX
    qos: int = DEFAULT_MQTT_QOS
    retain: bool = False
    keepalive: int = DEFAULT_MQTT_KEEPALIVE
    minimum_interval: float = DEFAULT_MINIMUM_INTERVAL
    homeassistant_prefix: str = ""
    buffer: BufferConfig = field(default_factory=BufferConfig)

    def __post_init__(self) -> None:
        self.homeassistant_prefix = self.homeassistant_prefix.strip("/")
        segments = [segment for segment in self.topic_prefix.split("/") if segment]
        self.topic_prefix = "/".join(segments)
        if self.enabled and not self.tls:
            logger.warning(
                "MQTT TLS is disabled; MQTT credentials and payloads "
                "will be sent in plaintext."
            )


@dataclass(slots=True)
class InfluxDbConfig:
    enabled: bool = False
    url: str = DEFAULT_INFLUXDB_URL
    auth_token: str = field(default="", repr=False)
    org: str = ""
    bucket: str = ""
    measurement: str = DEFAULT_INFLUXDB_MEASUREMENT
    timeout: float = DEFAULT_INFLUXDB_TIMEOUT
    minimum_interval: float = DEFAULT_MINIMUM_INTERVAL
    buffer: BufferConfig = field(default_factory=BufferConfig)


@dataclass(slots=True)
class InfluxDb3Config:
    enabled: bool = False
    url: str = DEFAULT_INFLUXDB3_URL
    auth_token: str = field(default="", repr=False)
    database: str = DEFAULT_INFLUXDB3_DATABASE
    measurement: str = DEFAULT_INFLUXDB_MEASUREMENT
    timeout: float = DEFAULT_INFLUXDB_TIMEOUT
    minimum_interval: float = DEFAULT_MINIMUM_INTERVAL
    buffer: BufferConfig = field(default_factory=BufferConfig)


@dataclass(slots=True)
class MetricsConfig:
    enabled: bool = DEFAULT_METRICS_ENABLED
    host: str = DEFAULT_METRICS_HOST
    port: int = DEFAULT_METRICS_PORT


@dataclass(slots=True)
class RuntimeConfig:
    """Strongly typed configuration for the daemon."""

    debug_logging: bool = DEFAULT_DEBUG_LOGGING
    use_mock: bool = DEFAULT_USE_MOCK
    mock_interval: float = DEFAULT_MOCK_INTERVAL
    enabled_tags: tuple[str, ...] = ()
    tag_names: dict[str, str] = field(default_factory=dict)
    matter_enabled: bool = False
    mqtt: MqttConfig = field(default_factory=MqttConfig)
    influxdb: InfluxDbConfig = field(default_factory=InfluxDbConfig)
    influxdb3: InfluxDb3Config = field(default_factory=InfluxDb3Config)
    metrics: MetricsConfig = field(default_factory=MetricsConfig)

    def __post_init__(self) -> None:
        self.enabled_tags = tuple(normalise_mac(tag) for tag in self.enabled_tags)
        self.tag_names = {normalise_mac(mac): name for mac, name in self.tag_names.items()}
        if not (self.mqtt.enabled or self.influxdb.enabled or self.influxdb3.enabled):
            logger.warning("No sinks enabled; decoded measurements will be dropped.")


__all__ = [
    "BufferConfig",
    "InfluxDb3Config",
    "InfluxDbConfig",
    "MetricsConfig",
    "MqttConfig",
    "RuntimeConfig",
]
