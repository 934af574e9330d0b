"""Binary layouts of the Ruuvi manufacturer-data formats.

Each layout is declared once with ``construct`` so that the same schema is
used for decoding scanned frames and for building frames (mock scanner,
tests). All multi-byte integers are big-endian and every layout starts with
the vendor identifier followed by the format byte.

Layout summary (offsets include the 2-byte vendor identifier):

    Format 3  (16 bytes)  humidity, signed-magnitude temperature, pressure,
                          acceleration, battery voltage
    Format 5  (26 bytes)  temperature, humidity, pressure, acceleration,
                          packed voltage/tx power, movement, sequence, MAC
    Format 6  (22 bytes)  temperature, humidity, pressure, PM2.5, CO2,
                          VOC/NOx indices, log-encoded luminosity,
                          8-bit sequence, flags, low half of MAC
    Format E1 (42 bytes)  temperature, humidity, pressure, PM1.0-PM10, CO2,
                          VOC/NOx indices, luminosity, 24-bit sequence,
                          flags, MAC
"""

from __future__ import annotations

import math
from typing import Any, Final

from construct import (  # type: ignore
    BitsInteger,
    BitStruct,
    Bytes,
    Const,
    Flag,
    Int8ub,
    Int16sb,
    Int16ub,
    Int24ub,
    Padding,
    Terminated,
    Struct as BinStruct,
)

from .measurement import DataFormat, Measurement, format_mac

VENDOR_ID: Final[bytes] = bytes([0x99, 0x04])  # 0x0499, little-endian on air

PRESSURE_OFFSET: Final[int] = 50_000
TEMPERATURE_STEP: Final[float] = 0.005
HUMIDITY_STEP: Final[float] = 0.0025
FORMAT_3_HUMIDITY_STEP: Final[float] = 0.5
PM_STEP: Final[float] = 0.1
LUMINOSITY_STEP: Final[float] = 0.01
BATTERY_OFFSET: Final[int] = 1600
TX_POWER_OFFSET: Final[int] = -40
TX_POWER_STEP: Final[int] = 2

INT16_INVALID: Final[int] = -32768
UINT8_INVALID: Final[int] = 0xFF
UINT16_INVALID: Final[int] = 0xFFFF
UINT24_INVALID: Final[int] = 0xFFFFFF
VOLTAGE_INVALID: Final[int] = 0x7FF
TX_POWER_INVALID: Final[int] = 0x1F
INDEX_INVALID: Final[int] = 0x1FF

# Format 6 luminosity: 0..254 maps logarithmically onto 0..65535 lux.
LUMINOSITY_LOG_MAX_CODE: Final[int] = 254
LUMINOSITY_LOG_DELTA: Final[float] = math.log(65536) / LUMINOSITY_LOG_MAX_CODE

FLAG_CALIBRATION: Final[int] = 0x01
FLAG_NOX_LSB: Final[int] = 0x40
FLAG_VOC_LSB: Final[int] = 0x80


FORMAT_3_STRUCT: Final = BinStruct(
    "vendor_id" / Const(VENDOR_ID),
    "data_format" / Const(DataFormat.FORMAT_3.value, Int8ub),
    "humidity" / Int8ub,
    "temperature" / BitStruct("negative" / Flag, "integer" / BitsInteger(7)),
    "temperature_fraction" / Int8ub,
    "pressure" / Int16ub,
    "acceleration_x" / Int16sb,
    "acceleration_y" / Int16sb,
    "acceleration_z" / Int16sb,
    "battery_voltage" / Int16ub,
    Terminated,
)

FORMAT_5_STRUCT: Final = BinStruct(
    "vendor_id" / Const(VENDOR_ID),
    "data_format" / Const(DataFormat.FORMAT_5.value, Int8ub),
    "temperature" / Int16sb,
    "humidity" / Int16ub,
    "pressure" / Int16ub,
    "acceleration_x" / Int16sb,
    "acceleration_y" / Int16sb,
    "acceleration_z" / Int16sb,
    "power" / BitStruct("voltage" / BitsInteger(11), "tx_power" / BitsInteger(5)),
    "movement_counter" / Int8ub,
    "measurement_sequence" / Int16ub,
    "mac" / Bytes(6),
    Terminated,
)

FORMAT_6_STRUCT: Final = BinStruct(
    "vendor_id" / Const(VENDOR_ID),
    "data_format" / Const(DataFormat.FORMAT_6.value, Int8ub),
    "temperature" / Int16sb,
    "humidity" / Int16ub,
    "pressure" / Int16ub,
    "pm2_5" / Int16ub,
    "co2" / Int16ub,
    "voc_high" / Int8ub,
    "nox_high" / Int8ub,
    "luminosity" / Int8ub,
    Padding(1),
    "measurement_sequence" / Int8ub,
    "flags" / Int8ub,
    "mac_low" / Bytes(3),
    Terminated,
)

FORMAT_E1_STRUCT: Final = BinStruct(
    "vendor_id" / Const(VENDOR_ID),
    "data_format" / Const(DataFormat.FORMAT_E1.value, Int8ub),
    "temperature" / Int16sb,
    "humidity" / Int16ub,
    "pressure" / Int16ub,
    "pm1_0" / Int16ub,
    "pm2_5" / Int16ub,
    "pm4_0" / Int16ub,
    "pm10_0" / Int16ub,
    "co2" / Int16ub,
    "voc_high" / Int8ub,
    "nox_high" / Int8ub,
    "luminosity" / Int24ub,
    Padding(3),
    "measurement_sequence" / Int24ub,
    "flags" / Int8ub,
    Padding(5),
    "mac" / Bytes(6),
    Terminated,
)

LAYOUTS: Final[dict[DataFormat, Any]] = {
    DataFormat.FORMAT_3: FORMAT_3_STRUCT,
    DataFormat.FORMAT_5: FORMAT_5_STRUCT,
    DataFormat.FORMAT_6: FORMAT_6_STRUCT,
    DataFormat.FORMAT_E1: FORMAT_E1_STRUCT,
}

# Terminated has no static size, so lengths are declared rather than computed.
FORMAT_LENGTHS: Final[dict[DataFormat, int]] = {
    DataFormat.FORMAT_3: 16,
    DataFormat.FORMAT_5: 26,
    DataFormat.FORMAT_6: 22,
    DataFormat.FORMAT_E1: 42,
}


# --- Field scaling helpers ---


def _scaled(raw: int, invalid: int, step: float, digits: int) -> float | None:
    if raw == invalid:
        return None
    return round(raw * step, digits)


def _plain(raw: int, invalid: int) -> int | None:
    return None if raw == invalid else raw


def _pressure(raw: int) -> int | None:
    return None if raw == UINT16_INVALID else raw + PRESSURE_OFFSET


def _index(high: int, flags: int, lsb_mask: int) -> int | None:
    value = (high << 1) | (1 if flags & lsb_mask else 0)
    return None if value == INDEX_INVALID else value


def _mac(raw: bytes) -> str | None:
    if raw == b"\xff" * len(raw):
        return None
    return format_mac(raw)


def _unscale(value: float | None, invalid: int, step: float) -> int:
    if value is None:
        return invalid
    return int(round(value / step))


def _unpressure(value: int | None) -> int:
    if value is None:
        return UINT16_INVALID
    return int(value) - PRESSURE_OFFSET


def _unplain(value: int | None, invalid: int) -> int:
    return invalid if value is None else int(value)


def _split_index(value: int | None) -> tuple[int, bool]:
    raw = INDEX_INVALID if value is None else int(value)
    if not 0 <= raw <= INDEX_INVALID:
        raise ValueError(f"index value {raw} outside 9-bit range")
    return raw >> 1, bool(raw & 1)


def _mac_bytes(mac: str | None, length: int) -> bytes:
    if mac is None:
        return b"\xff" * length
    raw = bytes.fromhex(mac.replace(":", "").replace("-", ""))
    if len(raw) != 6:
        raise ValueError(f"address {mac!r} is not 6 bytes")
    return raw[-length:]


def decode_luminosity_code(code: int) -> float | None:
    if code == UINT8_INVALID:
        return None
    return round(math.exp(code * LUMINOSITY_LOG_DELTA) - 1, 2)


def encode_luminosity_code(lux: float | None) -> int:
    if lux is None:
        return UINT8_INVALID
    code = round(math.log(max(0.0, lux) + 1) / LUMINOSITY_LOG_DELTA)
    return min(LUMINOSITY_LOG_MAX_CODE, max(0, code))


# --- Format 3 ---


def decode_format_3(container: Any) -> Measurement:
    temperature = container.temperature.integer + container.temperature_fraction / 100
    if container.temperature.negative:
        temperature = -temperature
    return Measurement(
        data_format=DataFormat.FORMAT_3,
        temperature=round(temperature, 2),
        humidity=round(container.humidity * FORMAT_3_HUMIDITY_STEP, 1),
        pressure=_pressure(container.pressure),
        acceleration_x=container.acceleration_x,
        acceleration_y=container.acceleration_y,
        acceleration_z=container.acceleration_z,
        battery_voltage=container.battery_voltage,
    )


def encode_format_3(measurement: Measurement) -> dict[str, Any]:
    temperature = measurement.temperature or 0.0
    hundredths = int(round(abs(temperature) * 100))
    return {
        "humidity": int(round((measurement.humidity or 0.0) / FORMAT_3_HUMIDITY_STEP)),
        "temperature": {"negative": temperature < 0, "integer": hundredths // 100},
        "temperature_fraction": hundredths % 100,
        "pressure": _unpressure(measurement.pressure),
        "acceleration_x": measurement.acceleration_x or 0,
        "acceleration_y": measurement.acceleration_y or 0,
        "acceleration_z": measurement.acceleration_z or 0,
        "battery_voltage": measurement.battery_voltage or 0,
    }


# --- Format 5 ---


def decode_format_5(container: Any) -> Measurement:
    voltage = container.power.voltage
    tx_power = container.power.tx_power
    return Measurement(
        data_format=DataFormat.FORMAT_5,
        temperature=_scaled(container.temperature, INT16_INVALID, TEMPERATURE_STEP, 3),
        humidity=_scaled(container.humidity, UINT16_INVALID, HUMIDITY_STEP, 4),
        pressure=_pressure(container.pressure),
        acceleration_x=_plain(container.acceleration_x, INT16_INVALID),
        acceleration_y=_plain(container.acceleration_y, INT16_INVALID),
        acceleration_z=_plain(container.acceleration_z, INT16_INVALID),
        battery_voltage=None if voltage == VOLTAGE_INVALID else voltage + BATTERY_OFFSET,
        tx_power=None if tx_power == TX_POWER_INVALID else tx_power * TX_POWER_STEP + TX_POWER_OFFSET,
        movement_counter=_plain(container.movement_counter, UINT8_INVALID),
        measurement_sequence=_plain(container.measurement_sequence, UINT16_INVALID),
        mac=_mac(container.mac),
    )


def encode_format_5(measurement: Measurement) -> dict[str, Any]:
    voltage = (
        VOLTAGE_INVALID
        if measurement.battery_voltage is None
        else measurement.battery_voltage - BATTERY_OFFSET
    )
    tx_power = (
        TX_POWER_INVALID
        if measurement.tx_power is None
        else (measurement.tx_power - TX_POWER_OFFSET) // TX_POWER_STEP
    )
    return {
        "temperature": _unscale(measurement.temperature, INT16_INVALID, TEMPERATURE_STEP),
        "humidity": _unscale(measurement.humidity, UINT16_INVALID, HUMIDITY_STEP),
        "pressure": _unpressure(measurement.pressure),
        "acceleration_x": _unplain(measurement.acceleration_x, INT16_INVALID),
        "acceleration_y": _unplain(measurement.acceleration_y, INT16_INVALID),
        "acceleration_z": _unplain(measurement.acceleration_z, INT16_INVALID),
        "power": {"voltage": voltage, "tx_power": tx_power},
        "movement_counter": _unplain(measurement.movement_counter, UINT8_INVALID),
        "measurement_sequence": _unplain(measurement.measurement_sequence, UINT16_INVALID),
        "mac": _mac_bytes(measurement.mac, 6),
    }


# --- Format 6 ---


def decode_format_6(container: Any) -> Measurement:
    flags = container.flags
    return Measurement(
        data_format=DataFormat.FORMAT_6,
        temperature=_scaled(container.temperature, INT16_INVALID, TEMPERATURE_STEP, 3),
        humidity=_scaled(container.humidity, UINT16_INVALID, HUMIDITY_STEP, 4),
        pressure=_pressure(container.pressure),
        pm2_5=_scaled(container.pm2_5, UINT16_INVALID, PM_STEP, 1),
        co2=_plain(container.co2, UINT16_INVALID),
        voc_index=_index(container.voc_high, flags, FLAG_VOC_LSB),
        nox_index=_index(container.nox_high, flags, FLAG_NOX_LSB),
        luminosity=decode_luminosity_code(container.luminosity),
        measurement_sequence=container.measurement_sequence,
        calibration_in_progress=bool(flags & FLAG_CALIBRATION),
    )


def _encode_flags(measurement: Measurement, voc_lsb: bool, nox_lsb: bool) -> int:
    flags = 0
    if measurement.calibration_in_progress:
        flags |= FLAG_CALIBRATION
    if voc_lsb:
        flags |= FLAG_VOC_LSB
    if nox_lsb:
        flags |= FLAG_NOX_LSB
    return flags


def encode_format_6(measurement: Measurement) -> dict[str, Any]:
    voc_high, voc_lsb = _split_index(measurement.voc_index)
    nox_high, nox_lsb = _split_index(measurement.nox_index)
    return {
        "temperature": _unscale(measurement.temperature, INT16_INVALID, TEMPERATURE_STEP),
        "humidity": _unscale(measurement.humidity, UINT16_INVALID, HUMIDITY_STEP),
        "pressure": _unpressure(measurement.pressure),
        "pm2_5": _unscale(measurement.pm2_5, UINT16_INVALID, PM_STEP),
        "co2": _unplain(measurement.co2, UINT16_INVALID),
        "voc_high": voc_high,
        "nox_high": nox_high,
        "luminosity": encode_luminosity_code(measurement.luminosity),
        "measurement_sequence": (measurement.measurement_sequence or 0) & 0xFF,
        "flags": _encode_flags(measurement, voc_lsb, nox_lsb),
        "mac_low": _mac_bytes(measurement.mac, 3),
    }


# --- Format E1 ---


def decode_format_e1(container: Any) -> Measurement:
    flags = container.flags
    return Measurement(
        data_format=DataFormat.FORMAT_E1,
        temperature=_scaled(container.temperature, INT16_INVALID, TEMPERATURE_STEP, 3),
        humidity=_scaled(container.humidity, UINT16_INVALID, HUMIDITY_STEP, 4),
        pressure=_pressure(container.pressure),
        pm1_0=_scaled(container.pm1_0, UINT16_INVALID, PM_STEP, 1),
        pm2_5=_scaled(container.pm2_5, UINT16_INVALID, PM_STEP, 1),
        pm4_0=_scaled(container.pm4_0, UINT16_INVALID, PM_STEP, 1),
        pm10_0=_scaled(container.pm10_0, UINT16_INVALID, PM_STEP, 1),
        co2=_plain(container.co2, UINT16_INVALID),
        voc_index=_index(container.voc_high, flags, FLAG_VOC_LSB),
        nox_index=_index(container.nox_high, flags, FLAG_NOX_LSB),
        luminosity=_scaled(container.luminosity, UINT24_INVALID, LUMINOSITY_STEP, 2),
        measurement_sequence=_plain(container.measurement_sequence, UINT24_INVALID),
        calibration_in_progress=bool(flags & FLAG_CALIBRATION),
        mac=_mac(container.mac),
    )


def encode_format_e1(measurement: Measurement) -> dict[str, Any]:
    voc_high, voc_lsb = _split_index(measurement.voc_index)
    nox_high, nox_lsb = _split_index(measurement.nox_index)
    return {
        "temperature": _unscale(measurement.temperature, INT16_INVALID, TEMPERATURE_STEP),
        "humidity": _unscale(measurement.humidity, UINT16_INVALID, HUMIDITY_STEP),
        "pressure": _unpressure(measurement.pressure),
        "pm1_0": _unscale(measurement.pm1_0, UINT16_INVALID, PM_STEP),
        "pm2_5": _unscale(measurement.pm2_5, UINT16_INVALID, PM_STEP),
        "pm4_0": _unscale(measurement.pm4_0, UINT16_INVALID, PM_STEP),
        "pm10_0": _unscale(measurement.pm10_0, UINT16_INVALID, PM_STEP),
        "co2": _unplain(measurement.co2, UINT16_INVALID),
        "voc_high": voc_high,
        "nox_high": nox_high,
        "luminosity": _unscale(measurement.luminosity, UINT24_INVALID, LUMINOSITY_STEP),
        "measurement_sequence": _unplain(measurement.measurement_sequence, UINT24_INVALID),
        "flags": _encode_flags(measurement, voc_lsb, nox_lsb),
        "mac": _mac_bytes(measurement.mac, 6),
    }


__all__ = [
    "FORMAT_LENGTHS",
    "LAYOUTS",
    "VENDOR_ID",
    "decode_format_3",
    "decode_format_5",
    "decode_format_6",
    "decode_format_e1",
    "encode_format_3",
    "encode_format_5",
    "encode_format_6",
    "encode_format_e1",
]
