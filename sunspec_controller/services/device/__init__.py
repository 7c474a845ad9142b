"""
Device Service - SunSpec over Modbus TCP

Responsibilities:
- Pool and serialize Modbus TCP sessions per host:port
- Walk SunSpec model chains and cache model addresses
- Decode, scale and encode SunSpec points
"""

from .address_cache import AddressCache, JsonAddressCache, MemoryAddressCache
from .connection_pool import ConnectionPool, is_fatal_error
from .model_chain import ModelBlock, ModelChainWalker
from .modbus_client import ModbusSession
from .point_decoder import PointDecoder, decode_value, encode_value
from .register_reader import PointReader, PointReading, PointRequest
from .register_writer import PointWriter, WriteResult
from .service import DeviceService

__all__ = [
    "AddressCache",
    "JsonAddressCache",
    "MemoryAddressCache",
    "ConnectionPool",
    "is_fatal_error",
    "ModelBlock",
    "ModelChainWalker",
    "ModbusSession",
    "PointDecoder",
    "decode_value",
    "encode_value",
    "PointReader",
    "PointReading",
    "PointRequest",
    "PointWriter",
    "WriteResult",
    "DeviceService",
]
