"""Advertisement sources feeding the gateway.

The radio itself belongs to the host. Two adapters are provided: a simulated
scanner used in development (``use_mock``), and a line reader for a host tool
that prints one advertisement per line as ``ADDRESS RSSI HEX``.
"""

from __future__ import annotations

import asyncio
import logging
import random
import sys
import time
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Protocol

import msgspec

from .const import DEFAULT_MOCK_INTERVAL
from .protocol import DataFormat, Measurement, encode, normalise_mac

logger = logging.getLogger("ruuvibridge.scanner")


class Advertisement(msgspec.Struct, frozen=True):
    address: str
    rssi: int
    manufacturer_data: bytes
    timestamp: float = msgspec.field(default_factory=time.time)


class AdvertisementSource(Protocol):
    def __aiter__(self) -> AsyncIterator[Advertisement]: ...


@dataclass(slots=True)
class MockTag:
    mac: str
    temperature: float
    humidity: float
    pressure: int
    voltage: int
    sequence: int

    def step(self, rng: random.Random) -> None:
        """Advance the random walk by one sample."""
        self.temperature = min(80.0, max(-30.0, self.temperature + (rng.random() - 0.5) * 0.1))
        self.humidity = min(99.0, max(0.0, self.humidity + (rng.random() - 0.5) * 0.2))
        self.pressure += rng.randint(-1, 1)
        # 0xFFFF is the "not available" marker.
        self.sequence = (self.sequence + 1) % 0xFFFF

    def frame(self, rng: random.Random) -> bytes:
        return encode(
            Measurement(
                data_format=DataFormat.FORMAT_5,
                temperature=self.temperature,
                humidity=self.humidity,
                pressure=self.pressure,
                acceleration_x=rng.randrange(1000),
                acceleration_y=rng.randrange(1000),
                acceleration_z=rng.randrange(1000),
                battery_voltage=self.voltage,
                tx_power=-32,
                movement_counter=rng.randrange(255),
                measurement_sequence=self.sequence,
                mac=self.mac,
            )
        )


def default_mock_tags() -> list[MockTag]:
    return [
        MockTag("AA:BB:CC:DD:EE:FF", temperature=24.0, humidity=45.0, pressure=101300, voltage=3000, sequence=0),
        MockTag("11:22:33:44:55:66", temperature=80.0, humidity=10.0, pressure=100000, voltage=2800, sequence=1000),
    ]


class MockScanner:
    """Emit a format 5 frame per simulated tag every *interval* seconds."""

    def __init__(
        self,
        tags: list[MockTag] | None = None,
        *,
        interval: float = DEFAULT_MOCK_INTERVAL,
        rng: random.Random | None = None,
        limit: int | None = None,
    ) -> None:
        self.tags = tags if tags is not None else default_mock_tags()
        self.interval = interval
        self._rng = rng or random.Random()
        self._limit = limit

    def sample(self) -> list[Advertisement]:
        advertisements = []
        for tag in self.tags:
            tag.step(self._rng)
            advertisements.append(
                Advertisement(
                    address=tag.mac,
                    rssi=-50 - self._rng.randrange(40),
                    manufacturer_data=tag.frame(self._rng),
                )
            )
        return advertisements

    async def __aiter__(self) -> AsyncIterator[Advertisement]:
        logger.info("Starting mock BLE scanner with %d tag(s)", len(self.tags))
        rounds = 0
        while self._limit is None or rounds < self._limit:
            await asyncio.sleep(self.interval)
            for advertisement in self.sample():
                yield advertisement
            rounds += 1


def parse_line(line: str) -> Advertisement | None:
    """Parse ``ADDRESS RSSI HEX``; return ``None`` for malformed lines."""
    parts = line.split()
    if len(parts) != 3:
        return None
    address, rssi_text, payload_hex = parts
    try:
        rssi = int(rssi_text)
        payload = bytes.fromhex(payload_hex)
    except ValueError:
        return None
    return Advertisement(address=normalise_mac(address), rssi=rssi, manufacturer_data=payload)


class StreamScanner:
    """Read advertisements line by line from an asyncio stream."""

    def __init__(self, reader: asyncio.StreamReader) -> None:
        self._reader = reader
        self.malformed = 0

    @classmethod
    async def from_stdin(cls) -> StreamScanner:
        loop = asyncio.get_running_loop()
        reader = asyncio.StreamReader()
        await loop.connect_read_pipe(lambda: asyncio.StreamReaderProtocol(reader), sys.stdin)
        return cls(reader)

    async def __aiter__(self) -> AsyncIterator[Advertisement]:
        while True:
            try:
                raw = await self._reader.readline()
            except ValueError as exc:
                # The reader drops the oversized chunk before raising.
                self.malformed += 1
                logger.warning("Skipping oversized advertisement line: %s", exc)
                continue
            if not raw:
                logger.info("Advertisement stream closed")
                return
            line = raw.decode("ascii", errors="replace").strip()
            if not line or line.startswith("#"):
                continue
            advertisement = parse_line(line)
            if advertisement is None:
                self.malformed += 1
                logger.warning("Skipping malformed advertisement line: %r", line[:120])
                continue
            yield advertisement


__all__ = [
    "Advertisement",
    "AdvertisementSource",
    "MockScanner",
    "MockTag",
    "StreamScanner",
    "default_mock_tags",
    "parse_line",
]
