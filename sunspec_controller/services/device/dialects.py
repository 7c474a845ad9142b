"""
Vendor Dialects

Some devices answer Modbus but do not expose a SunSpec chain. These are
recognised by vendor signatures and addressed as a single pseudo-model
whose registers start at 0.
"""

from typing import Any

from sunspec_controller.common import constants
from sunspec_controller.common.config import Dialect
from sunspec_controller.common.exceptions import RegisterReadError
from .modbus_client import ModbusSession

VENDOR_IDENTITIES: dict[Dialect, dict[str, str]] = {
    Dialect.SMA_EDMM: {"Mn": "SMA", "Md": "Data Manager"},
    Dialect.CONEXT_XW_503: {"Mn": "Schneider", "Md": "Conext XW (503)"},
}

VENDOR_MODEL_IDS = frozenset(d.value for d in VENDOR_IDENTITIES)


def is_vendor_model(model_id: object) -> bool:
    return str(model_id) in VENDOR_MODEL_IDS


def vendor_model_map(dialect: Dialect) -> dict[str, Any]:
    """Model map recorded for a vendor dialect device."""
    return {
        dialect.value: {"start": 0, "length": 0},
        "info": dict(VENDOR_IDENTITIES[dialect]),
        constants.MAP_SCAN_KEY: constants.SCAN_VENDOR,
    }


async def has_sma_signature(session: ModbusSession) -> bool:
    """SMA Data Manager device class at 30051."""
    try:
        hi, lo = await session.read_holding_registers(constants.SMA_SIGNATURE_ADDRESS, 2)
    except RegisterReadError:
        return False
    return ((hi << 16) | lo) in constants.SMA_DEVICE_CLASSES


async def has_conext_response(session: ModbusSession) -> bool:
    """Conext XW gateways answer a read of the device name block at 0."""
    try:
        await session.read_holding_registers(
            constants.CONEXT_PROBE_ADDRESS, constants.CONEXT_PROBE_COUNT
        )
    except RegisterReadError:
        return False
    return True
