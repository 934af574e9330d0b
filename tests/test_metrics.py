"""Tests for the Prometheus exporter."""

from __future__ import annotations

import asyncio
from typing import Any

import pytest

from ruuvibridge.metrics import PrometheusExporter


def _snapshot() -> dict[str, Any]:
    return {
        "received": 12,
        "decode_failures": 2,
        "filtered": 1,
        "forwarded": 9,
        "throttled": 0,
        "per_format": {"5": 10, "E1": 2},
        "enabled_tags": ["AA:BB:CC:DD:EE:FF"],
        "sinks": {
            "mqtt": {
                "name": "mqtt",
                "state": "running",
                "pending": 4,
                "dropped": 1,
                "max_size": 500000,
                "retry_interval": 60.0,
                "base_retry_interval": 30.0,
                "oldest_timestamp": None,
            },
            "influxdb": {
                "name": "influxdb",
                "state": "stopped",
                "pending": 0,
                "dropped": 0,
                "max_size": 10,
                "retry_interval": 30.0,
                "base_retry_interval": 30.0,
                "oldest_timestamp": None,
            },
        },
    }


def test_render_flattens_counters_and_labels_buffers() -> None:
    output = PrometheusExporter(_snapshot, "127.0.0.1", 0).render().decode("utf-8")

    assert "ruuvibridge_received 12.0" in output
    assert "ruuvibridge_decode_failures 2.0" in output
    assert "ruuvibridge_per_format_5 10.0" in output
    assert "ruuvibridge_per_format_e1 2.0" in output
    assert 'ruuvibridge_buffer_pending_points{sink="mqtt"} 4.0' in output
    assert 'ruuvibridge_buffer_dropped_points{sink="mqtt"} 1.0' in output
    assert 'ruuvibridge_buffer_max_points{sink="influxdb"} 10.0' in output
    assert 'ruuvibridge_buffer_retry_interval_seconds{sink="mqtt"} 60.0' in output
    assert 'ruuvibridge_buffer_running{sink="mqtt"} 1.0' in output
    assert 'ruuvibridge_buffer_running{sink="influxdb"} 0.0' in output
    assert "enabled_tags" not in output


async def _request(port: int, path: str) -> bytes:
    reader, writer = await asyncio.open_connection("127.0.0.1", port)
    writer.write(f"GET {path} HTTP/1.1\r\nHost: localhost\r\n\r\n".encode("ascii"))
    await writer.drain()
    response = await reader.read()
    writer.close()
    await writer.wait_closed()
    return response


@pytest.mark.asyncio
async def test_exporter_serves_metrics_over_http() -> None:
    exporter = PrometheusExporter(_snapshot, "127.0.0.1", 0)
    await exporter.start()
    try:
        assert exporter.port != 0

        response = await _request(exporter.port, "/metrics")
        assert response.startswith(b"HTTP/1.1 200 OK\r\n")
        assert b"ruuvibridge_forwarded 9.0" in response

        missing = await _request(exporter.port, "/nope")
        assert missing.startswith(b"HTTP/1.1 404 Not Found\r\n")
    finally:
        await exporter.stop()


@pytest.mark.asyncio
async def test_exporter_run_stops_on_cancel() -> None:
    exporter = PrometheusExporter(_snapshot, "127.0.0.1", 0)
    task = asyncio.create_task(exporter.run())
    for _ in range(100):
        if exporter.port != 0:
            break
        await asyncio.sleep(0.01)

    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
