"""InfluxDB v2 sink writing line protocol over HTTP."""

from __future__ import annotations

import logging
import time

import httpx

from ..config.model import InfluxDbConfig
from ..protocol.measurement import Measurement
from .base import BufferedPoint, SinkError

logger = logging.getLogger("ruuvibridge.sinks.influxdb")

_NON_FIELD_KEYS = frozenset({"data_format", "mac", "timestamp"})


class InfluxDbSinkError(SinkError):
    def __init__(self, reason: str) -> None:
        super().__init__("influxdb", reason)


def _escape_key(value: str) -> str:
    return value.replace("\\", "\\\\").replace(",", "\\,").replace("=", "\\=").replace(" ", "\\ ")


def _escape_measurement(value: str) -> str:
    return value.replace("\\", "\\\\").replace(",", "\\,").replace(" ", "\\ ")


def _format_field(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return f"{value}i"
    if isinstance(value, float):
        return repr(value)
    escaped = str(value).replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def to_line_protocol(
    measurement: Measurement,
    *,
    name: str,
    tag_name: str | None = None,
) -> str:
    """Render *measurement* as one InfluxDB line protocol record.

    The address, format and optional friendly name are tags; every other
    populated value is a field. The timestamp is in nanoseconds.
    """
    tags = [f"mac={_escape_key(measurement.mac or 'unknown')}", f"dataFormat={measurement.data_format.label}"]
    if tag_name:
        tags.append(f"name={_escape_key(tag_name)}")

    values = measurement.to_dict()
    fields = [
        f"{_escape_key(key)}={_format_field(value)}"
        for key, value in values.items()
        if key not in _NON_FIELD_KEYS and value is not None
    ]
    if not fields:
        raise ValueError("measurement carries no field values")

    timestamp = measurement.timestamp if measurement.timestamp is not None else time.time()
    return f"{_escape_measurement(name)},{','.join(tags)} {','.join(fields)} {int(timestamp * 1_000_000_000)}"


class InfluxDbSink:
    name = "influxdb"

    def __init__(self, config: InfluxDbConfig, *, client: httpx.Client | None = None) -> None:
        self.config = config
        self.minimum_interval = config.minimum_interval
        self._client = client or httpx.Client(timeout=config.timeout)
        self._write_url = f"{config.url.rstrip('/')}/api/v2/write"
        self._params = {"org": config.org, "bucket": config.bucket, "precision": "ns"}
        self._headers = {"Content-Type": "text/plain; charset=utf-8"}
        if config.auth_token:
            self._headers["Authorization"] = f"Token {config.auth_token}"

    def start(self) -> None:
        logger.info("Writing to InfluxDB %s (org=%s bucket=%s)", self.config.url, self.config.org, self.config.bucket)

    def build_point(self, measurement: Measurement, *, tag_name: str | None = None) -> BufferedPoint:
        return BufferedPoint(
            data=to_line_protocol(measurement, name=self.config.measurement, tag_name=tag_name)
        )

    def write_point(self, point: BufferedPoint) -> None:
        try:
            response = self._client.post(
                self._write_url,
                params=self._params,
                headers=self._headers,
                content=point.data.encode("utf-8"),
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise InfluxDbSinkError(
                f"write rejected with HTTP {exc.response.status_code}: {exc.response.text.strip()}"
            ) from exc
        except httpx.HTTPError as exc:
            raise InfluxDbSinkError(f"write failed: {exc}") from exc

    def close(self) -> None:
        self._client.close()


__all__ = ["InfluxDbSink", "InfluxDbSinkError", "to_line_protocol"]
