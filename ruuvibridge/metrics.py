"""Prometheus exporter for gateway and delivery buffer statistics."""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Callable, Iterator
from typing import Any, cast

from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, generate_latest
from prometheus_client.core import GaugeMetricFamily
from prometheus_client.registry import Collector

logger = logging.getLogger("ruuvibridge.metrics")

_SANITIZE_RE = re.compile(r"[^a-zA-Z0-9_]")
_GAUGE_DOC = "Ruuvi bridge auto-generated metric"

# snapshot key -> (metric suffix, help)
_BUFFER_GAUGES: dict[str, tuple[str, str]] = {
    "pending": ("pending_points", "Points queued for retry"),
    "dropped": ("dropped_points", "Points evicted because the buffer was full"),
    "max_size": ("max_points", "Buffer capacity"),
    "retry_interval": ("retry_interval_seconds", "Current retry backoff interval"),
}

SnapshotFn = Callable[[], dict[str, Any]]


def _sanitize_metric_name(name: str) -> str:
    cleaned = _SANITIZE_RE.sub("_", name.lower())
    cleaned = cleaned.strip("_") or "ruuvibridge_metric"
    if cleaned[0].isdigit():
        cleaned = f"_{cleaned}"
    return cleaned


class _GatewayCollector(Collector):
    def __init__(self, snapshot: SnapshotFn) -> None:
        self._snapshot = snapshot

    def collect(self) -> Iterator[Any]:
        snapshot = dict(self._snapshot())
        sinks = cast(dict[str, dict[str, Any]], snapshot.pop("sinks", {}))
        snapshot.pop("enabled_tags", None)

        for name, value in self._flatten("ruuvibridge", snapshot):
            metric = GaugeMetricFamily(_sanitize_metric_name(name), _GAUGE_DOC)
            metric.add_metric((), value)
            yield metric

        for key, (suffix, doc) in _BUFFER_GAUGES.items():
            metric = GaugeMetricFamily(f"ruuvibridge_buffer_{suffix}", doc, labels=("sink",))
            for sink_name, buffer in sinks.items():
                value = buffer.get(key)
                if isinstance(value, (int, float)):
                    metric.add_metric((sink_name,), float(value))
            yield metric

        running = GaugeMetricFamily(
            "ruuvibridge_buffer_running", "1 while the retry thread is active", labels=("sink",)
        )
        for sink_name, buffer in sinks.items():
            running.add_metric((sink_name,), 1.0 if buffer.get("state") == "running" else 0.0)
        yield running

    def _flatten(self, prefix: str, value: Any) -> Iterator[tuple[str, float]]:
        if isinstance(value, dict):
            for raw_key, sub_value in cast(dict[Any, Any], value).items():
                yield from self._flatten(f"{prefix}_{raw_key}", sub_value)
            return
        if isinstance(value, bool):
            yield (prefix, 1.0 if value else 0.0)
            return
        if isinstance(value, (int, float)):
            yield (prefix, float(value))


class PrometheusExporter:
    """Serve gateway snapshots in the Prometheus text format."""

    def __init__(self, snapshot: SnapshotFn, host: str, port: int) -> None:
        self._host = host
        self._port = port
        self._server: asyncio.AbstractServer | None = None
        self._resolved_port: int | None = None
        self._registry = CollectorRegistry()
        self._registry.register(_GatewayCollector(snapshot))

    @property
    def port(self) -> int:
        return self._resolved_port or self._port

    async def start(self) -> None:
        if self._server is not None:
            return
        self._server = await asyncio.start_server(
            self._handle_client,
            host=self._host,
            port=self._port,
        )
        sockets = self._server.sockets or []
        if sockets:
            sockname = sockets[0].getsockname()
            if isinstance(sockname, tuple) and len(sockname) >= 2 and isinstance(sockname[1], int):
                self._resolved_port = sockname[1]
        logger.info(
            "Prometheus exporter listening",
            extra={"host": self._host, "port": self.port},
        )

    async def stop(self) -> None:
        if self._server is None:
            return
        self._server.close()
        await self._server.wait_closed()
        self._server = None
        logger.info("Prometheus exporter stopped")

    async def run(self) -> None:
        await self.start()
        assert self._server is not None
        try:
            await self._server.serve_forever()
        finally:
            await self.stop()

    async def _handle_client(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ) -> None:
        try:
            request_line = await reader.readline()
            if not request_line:
                return
            parts = request_line.decode("ascii", errors="ignore").split()
            if len(parts) < 2:
                await self._write_response(writer, 400, b"")
                return
            method, path = parts[0], parts[1]
            while True:
                line = await reader.readline()
                if not line or line in {b"\r\n", b"\n"}:
                    break
            if method != "GET" or path not in {"/metrics", "/"}:
                await self._write_response(writer, 404, b"")
                return
            await self._write_response(
                writer,
                200,
                self.render(),
                content_type=CONTENT_TYPE_LATEST,
            )
        except (OSError, ValueError) as exc:
            logger.warning("Prometheus client request error: %s", exc)
        finally:
            try:
                writer.close()
                await writer.wait_closed()
            except (OSError, RuntimeError):
                logger.debug("Error closing metrics client connection", exc_info=True)

    async def _write_response(
        self,
        writer: asyncio.StreamWriter,
        status: int,
        body: bytes,
        *,
        content_type: str = "text/plain; charset=utf-8",
    ) -> None:
        phrases = {200: "OK", 400: "Bad Request", 404: "Not Found"}
        status_line = f"HTTP/1.1 {status} {phrases.get(status, 'Error')}\r\n"
        headers = f"Content-Type: {content_type}\r\nContent-Length: {len(body)}\r\nConnection: close\r\n\r\n"
        writer.write(status_line.encode("ascii") + headers.encode("ascii") + body)
        await writer.drain()

    def render(self) -> bytes:
        return generate_latest(self._registry)


__all__ = ["PrometheusExporter"]
