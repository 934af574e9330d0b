"""Downstream sinks and the resilient delivery buffer that fronts them."""

from __future__ import annotations

from ..config.model import RuntimeConfig
from .base import BufferedPoint, Sink, SinkError, WriteFn
from .buffer import ResilientSink
from .influxdb import InfluxDbSink, InfluxDbSinkError
from .influxdb3 import InfluxDb3Sink, InfluxDb3SinkError
from .mqtt import MqttSink, MqttSinkError


def create_sinks(config: RuntimeConfig) -> list[Sink]:
    """Instantiate every sink enabled in *config*."""
    sinks: list[Sink] = []
    if config.mqtt.enabled:
        sinks.append(MqttSink(config.mqtt))
    if config.influxdb.enabled:
        sinks.append(InfluxDbSink(config.influxdb))
    if config.influxdb3.enabled:
        sinks.append(InfluxDb3Sink(config.influxdb3))
    return sinks


__all__ = [
    "BufferedPoint",
    "InfluxDb3Sink",
    "InfluxDb3SinkError",
    "InfluxDbSink",
    "InfluxDbSinkError",
    "MqttSink",
    "MqttSinkError",
    "ResilientSink",
    "Sink",
    "SinkError",
    "WriteFn",
    "create_sinks",
]
