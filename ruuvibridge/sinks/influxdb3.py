"""InfluxDB v3 sink writing line protocol to a database."""

from __future__ import annotations

import logging

import httpx

from ..config.model import InfluxDb3Config
from ..protocol.measurement import Measurement
from .base import BufferedPoint, SinkError
from .influxdb import to_line_protocol

logger = logging.getLogger("ruuvibridge.sinks.influxdb3")


class InfluxDb3SinkError(SinkError):
    def __init__(self, reason: str) -> None:
        super().__init__("influxdb3", reason)


class InfluxDb3Sink:
    """Post each point to ``/api/v3/write_lp`` of an InfluxDB 3 server.

    Version 3 drops organisations and buckets in favour of a single database
    name and accepts bearer tokens.
    """

    name = "influxdb3"

    def __init__(self, config: InfluxDb3Config, *, client: httpx.Client | None = None) -> None:
        self.config = config
        self.minimum_interval = config.minimum_interval
        self._client = client or httpx.Client(timeout=config.timeout)
        self._endpoint = f"{config.url.rstrip('/')}/api/v3/write_lp"
        self._query = {"db": config.database, "precision": "nanosecond"}
        self._headers = {"Content-Type": "text/plain; charset=utf-8"}
        if config.auth_token:
            self._headers["Authorization"] = f"Bearer {config.auth_token}"

    def start(self) -> None:
        logger.info("Writing to InfluxDB 3 %s (database=%s)", self.config.url, self.config.database)

    def build_point(self, measurement: Measurement, *, tag_name: str | None = None) -> BufferedPoint:
        line = to_line_protocol(measurement, name=self.config.measurement, tag_name=tag_name)
        return BufferedPoint(data=line)

    def write_point(self, point: BufferedPoint) -> None:
        try:
            response = self._client.post(
                self._endpoint,
                params=self._query,
                headers=self._headers,
                content=point.data.encode("utf-8"),
            )
        except httpx.HTTPError as exc:
            raise InfluxDb3SinkError(f"write to {self.config.database} failed: {exc}") from exc
        if response.is_error:
            raise InfluxDb3SinkError(
                f"database {self.config.database} refused write "
                f"(HTTP {response.status_code}): {response.text.strip()}"
            )

    def close(self) -> None:
        self._client.close()


__all__ = ["InfluxDb3Sink", "InfluxDb3SinkError"]
