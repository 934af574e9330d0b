"""Ingestion loop: decode, filter and fan measurements out to the sinks."""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from collections.abc import AsyncIterable, Callable, Mapping, Sequence
from typing import Any

import msgspec

from .config.model import BufferConfig, RuntimeConfig
from .filter import TagFilter
from .matter import MatterBridge
from .protocol import Measurement, parse
from .scanner import Advertisement
from .sinks import ResilientSink, Sink

logger = logging.getLogger("ruuvibridge.gateway")


class GatewayStats(msgspec.Struct):
    received: int = 0
    decode_failures: int = 0
    filtered: int = 0
    forwarded: int = 0
    throttled: int = 0
    per_format: dict[str, int] = msgspec.field(default_factory=dict)


class SinkRoute:
    """A sink, the delivery buffer in front of it, and its per-tag throttle."""

    __slots__ = ("sink", "buffer", "_last_sent")

    def __init__(self, sink: Sink, buffer: ResilientSink) -> None:
        self.sink = sink
        self.buffer = buffer
        self._last_sent: dict[str, float] = {}

    def due(self, mac: str, now: float) -> bool:
        interval = self.sink.minimum_interval
        if interval <= 0:
            return True
        last = self._last_sent.get(mac)
        return last is None or now - last >= interval

    def mark_sent(self, mac: str, now: float) -> None:
        if self.sink.minimum_interval > 0:
            self._last_sent[mac] = now


class Gateway:
    def __init__(
        self,
        tag_filter: TagFilter,
        sinks: Sequence[Sink],
        *,
        buffers: Mapping[str, BufferConfig] | None = None,
        tag_names: Mapping[str, str] | None = None,
        matter_bridge: MatterBridge | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        buffers = buffers or {}
        self.tag_filter = tag_filter
        self.tag_names = dict(tag_names or {})
        self.matter_bridge = matter_bridge or MatterBridge()
        self.routes = [
            SinkRoute(sink, ResilientSink(sink.name, buffers.get(sink.name), sink.write_point))
            for sink in sinks
        ]
        self.stats = GatewayStats()
        self._clock = clock
        self._lock = threading.Lock()
        self._closed = False

    @classmethod
    def from_config(cls, config: RuntimeConfig, sinks: Sequence[Sink]) -> Gateway:
        return cls(
            TagFilter(config.enabled_tags),
            sinks,
            buffers={
                "mqtt": config.mqtt.buffer,
                "influxdb": config.influxdb.buffer,
                "influxdb3": config.influxdb3.buffer,
            },
            tag_names=config.tag_names,
            matter_bridge=MatterBridge(config.matter_enabled),
        )

    def start(self) -> None:
        self.matter_bridge.start()
        for route in self.routes:
            route.sink.start()
        logger.info(
            "Gateway started with sinks: %s",
            ", ".join(route.sink.name for route in self.routes) or "none",
        )

    def handle_advertisement(self, advertisement: Advertisement) -> Measurement | None:
        """Process one advertisement; return the forwarded measurement, if any."""
        measurement, ok = parse(advertisement.manufacturer_data)
        with self._lock:
            self.stats.received += 1
            if not ok or measurement is None:
                self.stats.decode_failures += 1
                return None
            label = measurement.data_format.label
            self.stats.per_format[label] = self.stats.per_format.get(label, 0) + 1

        measurement = measurement.with_reception(
            mac=advertisement.address,
            rssi=advertisement.rssi,
            timestamp=advertisement.timestamp,
        )
        mac = measurement.mac or advertisement.address
        if not self.tag_filter.is_enabled(mac):
            with self._lock:
                self.stats.filtered += 1
            return None

        self.matter_bridge.update_tag(measurement)

        tag_name = self.tag_names.get(mac)
        now = self._clock()
        for route in self.routes:
            if not route.due(mac, now):
                with self._lock:
                    self.stats.throttled += 1
                continue
            try:
                point = route.sink.build_point(measurement, tag_name=tag_name)
            except ValueError as exc:
                logger.warning("%s cannot serialise measurement from %s: %s", route.sink.name, mac, exc)
                continue
            route.mark_sent(mac, now)
            route.buffer.write(point)

        with self._lock:
            self.stats.forwarded += 1
        return measurement

    async def run(self, source: AsyncIterable[Advertisement]) -> None:
        """Consume *source* until it ends; sink writes run off the event loop."""
        async for advertisement in source:
            await asyncio.to_thread(self.handle_advertisement, advertisement)

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            stats = msgspec.to_builtins(self.stats)
        stats["sinks"] = {route.sink.name: route.buffer.snapshot() for route in self.routes}
        stats["enabled_tags"] = self.tag_filter.enabled_tags()
        return stats

    def close(self, timeout: float = 5.0) -> None:
        if self._closed:
            return
        self._closed = True
        for route in self.routes:
            route.buffer.stop()
        for route in self.routes:
            if not route.buffer.join(timeout):
                logger.warning("%s retry thread did not exit within %.1fs", route.sink.name, timeout)
            try:
                route.sink.close()
            except Exception:
                logger.exception("Error closing %s sink", route.sink.name)


__all__ = ["Gateway", "GatewayStats", "SinkRoute"]
