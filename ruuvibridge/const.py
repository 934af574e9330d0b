"""Default values and tunables shared across the Ruuvi bridge packages."""

from __future__ import annotations

from typing import Final

DEFAULT_CONFIG_PATH: Final[str] = "./config.toml"
DEFAULT_DEBUG_LOGGING: Final[bool] = False
DEFAULT_USE_MOCK: Final[bool] = False
DEFAULT_MOCK_INTERVAL: Final[float] = 2.0

# Delivery buffer
DEFAULT_BUFFER_MAX_SIZE: Final[int] = 500_000
DEFAULT_RETRY_INTERVAL: Final[float] = 30.0
MAX_RETRY_INTERVAL: Final[float] = 300.0
BUFFER_STATS_LOG_INTERVAL: Final[float] = 300.0

# MQTT sink
DEFAULT_MQTT_HOST: Final[str] = "localhost"
DEFAULT_MQTT_PORT: Final[int] = 1883
DEFAULT_MQTT_CLIENT_ID: Final[str] = "ruuvi-bridge"
DEFAULT_MQTT_TOPIC_PREFIX: Final[str] = "ruuvi_measurements"
DEFAULT_MQTT_QOS: Final[int] = 0
DEFAULT_MQTT_KEEPALIVE: Final[int] = 60

# InfluxDB sink
DEFAULT_INFLUXDB_URL: Final[str] = "http://localhost:8086"
DEFAULT_INFLUXDB_MEASUREMENT: Final[str] = "ruuvi_measurements"
DEFAULT_INFLUXDB_TIMEOUT: Final[float] = 10.0

# InfluxDB v3 sink
DEFAULT_INFLUXDB3_URL: Final[str] = "http://localhost:8181"
DEFAULT_INFLUXDB3_DATABASE: Final[str] = "ruuvi"

DEFAULT_MINIMUM_INTERVAL: Final[float] = 0.0

# Metrics
DEFAULT_METRICS_ENABLED: Final[bool] = False
DEFAULT_METRICS_HOST: Final[str] = "127.0.0.1"
DEFAULT_METRICS_PORT: Final[int] = 9131

# Supervision
SUPERVISOR_DEFAULT_MIN_BACKOFF: Final[float] = 1.0
SUPERVISOR_DEFAULT_MAX_BACKOFF: Final[float] = 30.0
SUPERVISOR_DEFAULT_RESTART_INTERVAL: Final[float] = 60.0
SUPERVISOR_MIN_RESTART_WINDOW: Final[float] = 10.0
