"""Normalized sensor measurement produced by the format decoders."""

from __future__ import annotations

from enum import IntEnum
from typing import Any

import msgspec


class DataFormat(IntEnum):
    """Format version byte of a Ruuvi manufacturer-data payload."""

    FORMAT_3 = 0x03
    FORMAT_5 = 0x05
    FORMAT_6 = 0x06
    FORMAT_E1 = 0xE1

    @property
    def label(self) -> str:
        return f"{self.value:X}"


class Measurement(msgspec.Struct, frozen=True, omit_defaults=True, kw_only=True):
    """A decoded sensor reading.

    Every field other than ``data_format`` is optional because the layouts
    differ in what they carry, and a field whose raw value is the layout's
    "not available" marker decodes to ``None``.

    Units: temperature in °C, humidity in %, pressure in Pa, acceleration in
    mG, battery voltage in mV, tx power in dBm, particulate matter in µg/m³,
    CO2 in ppm and luminosity in lux. ``timestamp`` is the receipt time in
    UNIX seconds.
    """

    data_format: DataFormat
    temperature: float | None = None
    humidity: float | None = None
    pressure: int | None = None
    acceleration_x: int | None = None
    acceleration_y: int | None = None
    acceleration_z: int | None = None
    battery_voltage: int | None = None
    tx_power: int | None = None
    movement_counter: int | None = None
    measurement_sequence: int | None = None
    pm1_0: float | None = None
    pm2_5: float | None = None
    pm4_0: float | None = None
    pm10_0: float | None = None
    co2: int | None = None
    voc_index: int | None = None
    nox_index: int | None = None
    luminosity: float | None = None
    calibration_in_progress: bool | None = None
    mac: str | None = None
    rssi: int | None = None
    timestamp: float | None = None

    def with_reception(
        self,
        *,
        mac: str | None = None,
        rssi: int | None = None,
        timestamp: float | None = None,
    ) -> Measurement:
        """Return a copy stamped with receipt metadata.

        An address decoded from the payload takes precedence over the
        advertiser address.
        """
        return msgspec.structs.replace(
            self,
            mac=self.mac or (normalise_mac(mac) if mac else None),
            rssi=rssi if rssi is not None else self.rssi,
            timestamp=timestamp if timestamp is not None else self.timestamp,
        )

    def to_dict(self) -> dict[str, Any]:
        return msgspec.to_builtins(self)

    def to_json(self) -> bytes:
        return msgspec.json.encode(self)


def format_mac(raw: bytes) -> str:
    """Render address bytes as ``AA:BB:CC:DD:EE:FF``."""
    return ":".join(f"{byte:02X}" for byte in raw)


def normalise_mac(value: str) -> str:
    """Canonicalise an address string to uppercase colon-separated hex."""
    digits = "".join(ch for ch in value if ch not in ":-. ").upper()
    if len(digits) % 2:
        return value.strip().upper()
    return ":".join(digits[index : index + 2] for index in range(0, len(digits), 2))


__all__ = ["DataFormat", "Measurement", "format_mac", "normalise_mac"]
