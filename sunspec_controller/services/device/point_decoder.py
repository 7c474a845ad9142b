"""
SunSpec Point Decoder

Turns raw holding registers into point values:
- big-endian integer, float and string decoding
- "not implemented" sentinels reported as None
- scale factor (sunssf) and static scale application
- bulk scan for which points a device actually implements
- encoding of values for writes
"""

import math
import re
import struct

from sunspec_controller.common import constants
from sunspec_controller.common.exceptions import (
    CommunicationError,
    RegisterReadError,
    WriteError,
    WriteTypeUnsupportedError,
)
from sunspec_controller.common.logging_setup import get_service_logger
from sunspec_controller.common.models import NON_DATA_TYPES, ModelDefinition, PointDefinition
from .modbus_client import ModbusSession

logger = get_service_logger("device.decoder")

Value = int | float | str | None

NOT_IMPLEMENTED = {
    "int16": -0x8000,
    "sint16": -0x8000,
    "sunssf": -0x8000,
    "uint16": 0xFFFF,
    "enum16": 0xFFFF,
    "bitfield16": 0xFFFF,
    "int32": -0x80000000,
    "sint32": -0x80000000,
    "uint32": 0xFFFFFFFF,
    "acc32": 0xFFFFFFFF,
    "enum32": 0xFFFFFFFF,
    "bitfield32": 0xFFFFFFFF,
    "int64": -0x8000000000000000,
    "uint64": 0xFFFFFFFFFFFFFFFF,
    "acc64": 0xFFFFFFFFFFFFFFFF,
}

SIGNED_TYPES = frozenset({"int16", "sint16", "sunssf", "int32", "sint32", "int64"})
FLOAT_FORMATS = {"float32": (">f", 2), "float64": (">d", 4)}

STRING_FILTER = re.compile(r"[^a-zA-Z0-9\-._ ]")


def _integer_width(point_type: str) -> int:
    if "64" in point_type:
        return 4
    if "32" in point_type:
        return 2
    return 1


def _combine(registers: list[int]) -> int:
    value = 0
    for reg in registers:
        value = (value << 16) | (reg & 0xFFFF)
    return value


def decode_string(registers: list[int]) -> str:
    raw_bytes = b"".join(reg.to_bytes(2, byteorder="big") for reg in registers)
    text = raw_bytes.decode("ascii", errors="ignore")
    return STRING_FILTER.sub("", text).strip()


def decode_value(point_type: str, registers: list[int]) -> Value:
    """
    Decode raw registers for a SunSpec type.

    Returns None when the value is the type's "not implemented" sentinel.
    Unknown types decode as unsigned 16-bit without a sentinel.
    """
    if not registers:
        return None

    if point_type == "string":
        return decode_string(registers)

    if point_type in FLOAT_FORMATS:
        fmt, count = FLOAT_FORMATS[point_type]
        if len(registers) < count:
            return None
        packed = struct.pack(f">{count}H", *registers[:count])
        value = struct.unpack(fmt, packed)[0]
        if math.isnan(value):
            return None
        return value

    if point_type not in NOT_IMPLEMENTED:
        return registers[0]

    width = _integer_width(point_type)
    if len(registers) < width:
        return None

    value = _combine(registers[:width])
    if point_type in SIGNED_TYPES:
        bits = 16 * width
        if value >= 1 << (bits - 1):
            value -= 1 << bits

    if value == NOT_IMPLEMENTED[point_type]:
        return None
    return value


def is_implemented(point: PointDefinition, registers: list[int]) -> bool:
    return decode_value(point.type, registers) is not None


def implemented_points(model: ModelDefinition, registers: list[int]) -> list[str]:
    """
    Names of points whose value is not a sentinel.

    registers holds a read starting at the model header. Padding and
    scale factor points are skipped, as are points past the read window.
    """
    names = []
    for offset, point in model.iter_layout():
        if point.type in NON_DATA_TYPES:
            continue
        size = point.register_size
        if offset + size > len(registers):
            continue
        if is_implemented(point, registers[offset:offset + size]):
            names.append(point.name)
    return names


def encode_value(point: PointDefinition, value: int | float) -> list[int]:
    """
    Encode a value into registers for writing.

    Static scale is divided out and the value rounded to an integer.

    Raises:
        WriteTypeUnsupportedError: point type has no write encoding
        WriteError: value out of range for the type
    """
    if point.static_scale:
        value = value / point.static_scale
    raw = int(round(value))

    point_type = point.type
    if point_type in ("uint16", "enum16", "bitfield16"):
        bounds, width = (0, 0xFFFF), 1
    elif point_type in ("int16", "sint16"):
        bounds, width = (-0x8000, 0x7FFF), 1
    elif point_type == "uint32":
        bounds, width = (0, 0xFFFFFFFF), 2
    elif point_type in ("int32", "sint32"):
        bounds, width = (-0x80000000, 0x7FFFFFFF), 2
    else:
        raise WriteTypeUnsupportedError(point.name, point_type, value)

    if not bounds[0] <= raw <= bounds[1]:
        raise WriteError(f"Value {raw} out of range for {point.name} ({point_type})", value=raw)

    raw &= (1 << (16 * width)) - 1
    return [(raw >> (16 * (width - 1 - i))) & 0xFFFF for i in range(width)]


class PointDecoder:
    """
    Reads and decodes points of a located model.

    Args:
        round_values: Round numeric results
        round_precision: Decimal places when rounding
        scale_exempt_points: Point names returned without sunssf scaling
    """

    def __init__(
        self,
        round_values: bool = True,
        round_precision: int = 2,
        scale_exempt_points: tuple[str, ...] = constants.SCALE_EXEMPT_POINTS,
    ):
        self.round_values = round_values
        self.round_precision = round_precision
        self.scale_exempt_points = frozenset(scale_exempt_points)

    async def read_point(
        self,
        session: ModbusSession,
        model: ModelDefinition,
        model_address: int,
        point: PointDefinition,
    ) -> Value:
        offset = model.offset_of(point.name)
        registers = await session.read_holding_registers(
            model_address + offset, point.register_size
        )
        value = decode_value(point.type, registers)
        if value is None or isinstance(value, str):
            return value

        value = await self.apply_scale(session, model, model_address, point, value)
        return self.round(value)

    async def apply_scale(
        self,
        session: ModbusSession,
        model: ModelDefinition,
        model_address: int,
        point: PointDefinition,
        value: int | float,
    ) -> int | float:
        if point.static_scale:
            return value * point.static_scale
        if not point.sf or point.name in self.scale_exempt_points:
            return value

        sf = await self.read_scale_factor(session, model, model_address, point.sf)
        if sf is None:
            return value
        return value * 10 ** sf

    async def read_scale_factor(
        self,
        session: ModbusSession,
        model: ModelDefinition,
        model_address: int,
        sf_name: str,
    ) -> int | None:
        """Scale factor exponent, or None when undefined, unimplemented or unreadable."""
        if not model.has_point(sf_name):
            return None

        address = model_address + model.offset_of(sf_name)
        try:
            registers = await session.read_holding_registers(address, 1)
        except (RegisterReadError, CommunicationError) as e:
            logger.debug(f"Scale factor {sf_name} unreadable at {address}: {e}")
            return None

        sf = decode_value("sunssf", registers)
        return sf if isinstance(sf, int) else None

    def round(self, value: int | float) -> int | float:
        if self.round_values and isinstance(value, float):
            return round(value, self.round_precision)
        return value

    async def scan_implemented_points(
        self,
        session: ModbusSession,
        model: ModelDefinition,
        model_address: int,
        length: int,
    ) -> list[str]:
        """Read up to MAX_SCAN_REGISTERS of a model in one request and list implemented points."""
        count = min(length, constants.MAX_SCAN_REGISTERS)
        if count <= 0:
            return []
        registers = await session.read_holding_registers(model_address, count)
        return implemented_points(model, registers)
