"""
Model Address Cache

Remembers where each model lives on each device so steady-state reads
skip the chain walk. Entries are trusted until a read proves otherwise.

Persisted layout (JSON):

    {
      "192.168.1.10": {                     # bare host when port is 502
        "1": {
          "1":   {"start": 40002, "length": 66, "implementedFields": [...]},
          "103": {"start": 40070, "length": 50},
          "info": {"Mn": "Fronius", "Md": "Symo", "SN": "123"},
          "scan": "full"                    # or "partial", "vendor"
        }
      },
      "192.168.1.20:1502": {...}
    }
"""

import json
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

from sunspec_controller.common import constants
from sunspec_controller.common.config import DeviceIdentity
from sunspec_controller.common.logging_setup import get_service_logger
from sunspec_controller.common.models import ModelId
from .model_chain import ModelBlock

logger = get_service_logger("device.cache")

INFO_KEY = "info"


def device_key(host: str, port: int) -> str:
    if port == constants.DEFAULT_MODBUS_PORT:
        return host
    return f"{host}:{port}"


class AddressCache(ABC):
    """Storage for per-device model maps"""

    @abstractmethod
    def get_device_map(self, identity: DeviceIdentity) -> dict[str, Any] | None:
        """Model map for a device, or None if never scanned."""

    @abstractmethod
    def set_device_map(self, identity: DeviceIdentity, model_map: dict[str, Any]) -> None:
        """Replace the model map for a device."""

    @abstractmethod
    def forget(self, identity: DeviceIdentity, model_id: ModelId | None = None) -> None:
        """Drop one model entry, or the whole device when model_id is None."""

    def persist(self) -> None:
        """Flush to backing storage. No-op for volatile caches."""

    def get_address(self, identity: DeviceIdentity, model_id: ModelId) -> int | None:
        model_map = self.get_device_map(identity)
        if not model_map:
            return None
        entry = model_map.get(str(model_id))
        if not isinstance(entry, dict) or "start" not in entry:
            return None
        return int(entry["start"])

    def set_block(
        self,
        identity: DeviceIdentity,
        block: ModelBlock,
        implemented_fields: list[str] | None = None,
    ) -> None:
        model_map = dict(self.get_device_map(identity) or {})
        entry: dict[str, Any] = {"start": block.start, "length": block.length}
        if implemented_fields is not None:
            entry["implementedFields"] = list(implemented_fields)
        model_map[str(block.model_id)] = entry
        self.set_device_map(identity, model_map)


class MemoryAddressCache(AddressCache):
    """In-process cache, lost on exit"""

    def __init__(self, data: dict[str, Any] | None = None):
        self._data: dict[str, dict[str, dict[str, Any]]] = data or {}

    def get_device_map(self, identity: DeviceIdentity) -> dict[str, Any] | None:
        units = self._data.get(device_key(identity.host, identity.port))
        if not units:
            return None
        return units.get(str(identity.unit_id))

    def set_device_map(self, identity: DeviceIdentity, model_map: dict[str, Any]) -> None:
        key = device_key(identity.host, identity.port)
        self._data.setdefault(key, {})[str(identity.unit_id)] = model_map

    def forget(self, identity: DeviceIdentity, model_id: ModelId | None = None) -> None:
        key = device_key(identity.host, identity.port)
        units = self._data.get(key)
        if not units:
            return

        unit_key = str(identity.unit_id)
        if model_id is None:
            units.pop(unit_key, None)
        elif unit_key in units:
            units[unit_key].pop(str(model_id), None)
            # The map no longer describes the whole chain
            units[unit_key].pop(constants.MAP_SCAN_KEY, None)

        if not units:
            self._data.pop(key, None)

    def snapshot(self) -> dict[str, Any]:
        return json.loads(json.dumps(self._data))


class JsonAddressCache(MemoryAddressCache):
    """
    Cache persisted to a JSON file.

    A missing or unreadable file starts an empty cache.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)
        super().__init__(self._load())

    def _load(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}

        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            logger.error(f"Error loading address cache {self.path}: {e}")
            return {}

        if not isinstance(data, dict):
            logger.error(f"Address cache {self.path} is not a JSON object, ignoring")
            return {}

        logger.info(f"Loaded address cache with {len(data)} devices from {self.path}")
        return data

    def persist(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")

        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(self._data, f, indent=2)
        os.replace(tmp_path, self.path)

        logger.debug(f"Address cache saved to {self.path}")
