"""Marshmallow schema for RuntimeConfig validation."""

from __future__ import annotations

from typing import Any, Dict
from urllib.parse import urlparse

from marshmallow import (
    EXCLUDE,
    RAISE,
    Schema,
    ValidationError,
    fields,
    post_load,
    pre_load,
    validate,
    validates_schema,
)

from ..const import (
    DEFAULT_INFLUXDB3_DATABASE,
    DEFAULT_INFLUXDB3_URL,
    DEFAULT_INFLUXDB_MEASUREMENT,
    DEFAULT_INFLUXDB_TIMEOUT,
    DEFAULT_INFLUXDB_URL,
    DEFAULT_METRICS_HOST,
    DEFAULT_METRICS_PORT,
    DEFAULT_MOCK_INTERVAL,
    DEFAULT_MQTT_CLIENT_ID,
    DEFAULT_MQTT_HOST,
    DEFAULT_MQTT_KEEPALIVE,
    DEFAULT_MQTT_PORT,
    DEFAULT_MQTT_TOPIC_PREFIX,
)
from .model import BufferConfig, InfluxDb3Config, InfluxDbConfig, MetricsConfig, MqttConfig, RuntimeConfig


class BufferConfigSchema(Schema):
    """Buffer sizing; zero or negative values fall back to built-in defaults."""

    class Meta:
        unknown = EXCLUDE

    max_size = fields.Int(load_default=0)
    retry_interval = fields.Float(load_default=0.0)

    @post_load
    def make_buffer(self, data: Dict[str, Any], **kwargs: Any) -> BufferConfig:
        return BufferConfig(**data)


class MqttConfigSchema(Schema):
    class Meta:
        unknown = EXCLUDE

    enabled = fields.Bool(load_default=False)
    host = fields.Str(load_default=DEFAULT_MQTT_HOST, validate=validate.Length(min=1))
    port = fields.Int(load_default=DEFAULT_MQTT_PORT, validate=validate.Range(min=1, max=65535))
    username = fields.Str(load_default=None, allow_none=True)
    password = fields.Str(load_default=None, allow_none=True)
    tls = fields.Bool(load_default=False)
    tls_insecure = fields.Bool(load_default=False)
    cafile = fields.Str(load_default=None, allow_none=True)
    certfile = fields.Str(load_default=None, allow_none=True)
    keyfile = fields.Str(load_default=None, allow_none=True)
    client_id = fields.Str(load_default=DEFAULT_MQTT_CLIENT_ID, validate=validate.Length(min=1))
    topic_prefix = fields.Str(load_default=DEFAULT_MQTT_TOPIC_PREFIX)
    qos = fields.Int(load_default=0, validate=validate.OneOf((0, 1, 2)))
    retain = fields.Bool(load_default=False)
    keepalive = fields.Int(load_default=DEFAULT_MQTT_KEEPALIVE, validate=validate.Range(min=1))
    minimum_interval = fields.Float(load_default=0.0, validate=validate.Range(min=0.0))
    homeassistant_prefix = fields.Str(load_default="")
    buffer = fields.Nested(BufferConfigSchema, load_default=BufferConfig)

    @pre_load
    def normalize_topic(self, data: Dict[str, Any], **kwargs: Any) -> Dict[str, Any]:
        if "topic_prefix" in data:
            segments = [segment for segment in str(data["topic_prefix"]).split("/") if segment]
            # An empty prefix is kept empty so validation rejects it.
            data = {**data, "topic_prefix": "/".join(segments)}
        return data

    @validates_schema
    def validate_topic(self, data: Dict[str, Any], **kwargs: Any) -> None:
        if not data.get("topic_prefix"):
            raise ValidationError("topic_prefix must contain at least one segment", field_name="topic_prefix")

    @validates_schema
    def validate_mtls(self, data: Dict[str, Any], **kwargs: Any) -> None:
        if bool(data.get("certfile")) != bool(data.get("keyfile")):
            raise ValidationError(
                "Both certfile and keyfile must be provided for mTLS.",
                field_name="certfile",
            )

    @post_load
    def make_config(self, data: Dict[str, Any], **kwargs: Any) -> MqttConfig:
        return MqttConfig(**data)


class InfluxDbConfigSchema(Schema):
    class Meta:
        unknown = EXCLUDE

    enabled = fields.Bool(load_default=False)
    url = fields.Str(load_default=DEFAULT_INFLUXDB_URL)
    auth_token = fields.Str(load_default="")
    org = fields.Str(load_default="")
    bucket = fields.Str(load_default="")
    measurement = fields.Str(load_default=DEFAULT_INFLUXDB_MEASUREMENT, validate=validate.Length(min=1))
    timeout = fields.Float(load_default=DEFAULT_INFLUXDB_TIMEOUT, validate=validate.Range(min=0.1))
    minimum_interval = fields.Float(load_default=0.0, validate=validate.Range(min=0.0))
    buffer = fields.Nested(BufferConfigSchema, load_default=BufferConfig)

    @validates_schema
    def validate_target(self, data: Dict[str, Any], **kwargs: Any) -> None:
        if not data.get("enabled"):
            return
        parsed = urlparse(data["url"])
        if parsed.scheme not in {"http", "https"} or not parsed.netloc:
            raise ValidationError(f"url '{data['url']}' must be an http(s) URL", field_name="url")
        if not data.get("bucket"):
            raise ValidationError("bucket must be configured", field_name="bucket")

    @post_load
    def make_config(self, data: Dict[str, Any], **kwargs: Any) -> InfluxDbConfig:
        return InfluxDbConfig(**data)


class InfluxDb3ConfigSchema(Schema):
    class Meta:
        unknown = EXCLUDE

    enabled = fields.Bool(load_default=False)
    url = fields.Str(load_default=DEFAULT_INFLUXDB3_URL)
    auth_token = fields.Str(load_default="")
    database = fields.Str(load_default=DEFAULT_INFLUXDB3_DATABASE)
    measurement = fields.Str(load_default=DEFAULT_INFLUXDB_MEASUREMENT, validate=validate.Length(min=1))
    timeout = fields.Float(load_default=DEFAULT_INFLUXDB_TIMEOUT, validate=validate.Range(min=0.1))
    minimum_interval = fields.Float(load_default=0.0, validate=validate.Range(min=0.0))
    buffer = fields.Nested(BufferConfigSchema, load_default=BufferConfig)

    @validates_schema
    def validate_target(self, data: Dict[str, Any], **kwargs: Any) -> None:
        if not data.get("enabled"):
            return
        parsed = urlparse(data["url"])
        if parsed.scheme not in {"http", "https"} or not parsed.netloc:
            raise ValidationError(f"url '{data['url']}' must be an http(s) URL", field_name="url")
        if not data.get("database", "").strip():
            raise ValidationError("database must be configured", field_name="database")

    @post_load
    def make_config(self, data: Dict[str, Any], **kwargs: Any) -> InfluxDb3Config:
        return InfluxDb3Config(**data)


class MetricsConfigSchema(Schema):
    class Meta:
        unknown = EXCLUDE

    enabled = fields.Bool(load_default=False)
    host = fields.Str(load_default=DEFAULT_METRICS_HOST)
    port = fields.Int(load_default=DEFAULT_METRICS_PORT, validate=validate.Range(min=0, max=65535))

    @post_load
    def make_config(self, data: Dict[str, Any], **kwargs: Any) -> MetricsConfig:
        return MetricsConfig(**data)


class MatterConfigSchema(Schema):
    class Meta:
        unknown = EXCLUDE

    enabled = fields.Bool(load_default=False)


class RuntimeConfigSchema(Schema):
    """Declarative validation schema for the bridge configuration file."""

    class Meta:
        unknown = EXCLUDE

    debug = fields.Bool(load_default=False)
    use_mock = fields.Bool(load_default=False)
    mock_interval = fields.Float(load_default=DEFAULT_MOCK_INTERVAL, validate=validate.Range(min=0.01))
    enabled_tags = fields.List(fields.Str(validate=validate.Length(min=1)), load_default=list)
    tag_names = fields.Dict(keys=fields.Str(), values=fields.Str(), load_default=dict)

    mqtt = fields.Nested(MqttConfigSchema, load_default=MqttConfig)
    influxdb = fields.Nested(InfluxDbConfigSchema, load_default=InfluxDbConfig)
    influxdb3 = fields.Nested(InfluxDb3ConfigSchema, load_default=InfluxDb3Config)
    metrics = fields.Nested(MetricsConfigSchema, load_default=MetricsConfig)
    matter = fields.Nested(MatterConfigSchema, load_default=dict)

    @post_load
    def make_config(self, data: Dict[str, Any], **kwargs: Any) -> RuntimeConfig:
        return RuntimeConfig(
            debug_logging=data["debug"],
            use_mock=data["use_mock"],
            mock_interval=data["mock_interval"],
            enabled_tags=tuple(data["enabled_tags"]),
            tag_names=dict(data["tag_names"]),
            matter_enabled=bool(data["matter"].get("enabled", False)),
            mqtt=data["mqtt"],
            influxdb=data["influxdb"],
            influxdb3=data["influxdb3"],
            metrics=data["metrics"],
        )


def _propagate_unknown(schema: Schema, unknown: str) -> None:
    for field in schema.fields.values():
        if isinstance(field, fields.Nested):
            field.unknown = unknown
            _propagate_unknown(field.schema, unknown)


def build_runtime_schema(*, strict: bool = False) -> RuntimeConfigSchema:
    """Return a schema that ignores unknown keys, or rejects them if *strict*."""
    unknown = RAISE if strict else EXCLUDE
    schema = RuntimeConfigSchema(unknown=unknown)
    _propagate_unknown(schema, unknown)
    return schema


__all__ = [
    "BufferConfigSchema",
    "InfluxDb3ConfigSchema",
    "InfluxDbConfigSchema",
    "MetricsConfigSchema",
    "MqttConfigSchema",
    "RuntimeConfigSchema",
    "build_runtime_schema",
]
