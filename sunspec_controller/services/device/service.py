"""
Device Service - SunSpec over Modbus TCP

Responsible for:
- Pooled, serialized Modbus sessions per device
- Locating models and reading/writing points
- Scanning device model maps into the address cache
"""

from typing import Any

from sunspec_controller.common import constants
from sunspec_controller.common.config import DeviceIdentity, Dialect, EngineSettings
from sunspec_controller.common.logging_setup import get_service_logger
from sunspec_controller.common.models import ModelId, ModelIndex, load_model_index_file
from .address_cache import AddressCache, JsonAddressCache, MemoryAddressCache
from .connection_pool import ConnectionPool, SessionFactory
from .dialects import VENDOR_MODEL_IDS
from .model_chain import ModelChainWalker
from .model_scanner import ModelScanner
from .modbus_client import ModbusSession
from .point_decoder import PointDecoder, Value
from .register_reader import ModelLocator, PointReader, PointReading, PointRequest
from .register_writer import PointWriter, WriteResult

logger = get_service_logger("device")


class DeviceService:
    """
    Entry point for point-level device access.

    Wires the connection pool, chain walker, decoder and address cache
    together. Use as an async context manager or call start()/stop().
    """

    def __init__(
        self,
        settings: EngineSettings | None = None,
        models: ModelIndex | None = None,
        cache: AddressCache | None = None,
        session_factory: SessionFactory | None = None,
    ):
        self.settings = settings or EngineSettings()
        self.models = models if models is not None else load_model_index_file(
            self.settings.model_index_file
        )

        if cache is not None:
            self.cache = cache
        elif self.settings.cache_file:
            self.cache = JsonAddressCache(self.settings.cache_file)
        else:
            self.cache = MemoryAddressCache()

        pool_settings = self.settings.pool
        read_settings = self.settings.read

        self.connection_pool = ConnectionPool(
            session_factory=session_factory,
            idle_timeout=pool_settings.idle_timeout_s,
            sweep_interval=pool_settings.sweep_interval_s,
            cooldown=pool_settings.cooldown_s,
            default_timeout=pool_settings.timeout_s,
        )
        self.walker = ModelChainWalker(max_hops=read_settings.max_model_hops)
        self.decoder = PointDecoder(
            round_values=read_settings.round_values,
            round_precision=read_settings.round_precision,
            scale_exempt_points=read_settings.scale_exempt_points,
        )
        self.locator = ModelLocator(
            self.cache,
            self.walker,
            validate_cache_hits=read_settings.validate_cache_hits,
        )
        self.point_reader = PointReader(
            self.connection_pool, self.models, self.locator, self.decoder
        )
        self.point_writer = PointWriter(self.connection_pool, self.models, self.locator)
        self.model_scanner = ModelScanner(self.walker, self.decoder, self.models)

    async def start(self) -> None:
        await self.connection_pool.start()
        logger.info(f"Device service started with {len(self.models)} model definitions")

    async def stop(self) -> None:
        await self.connection_pool.stop()
        self.cache.persist()
        logger.info("Device service stopped")

    async def __aenter__(self) -> "DeviceService":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    async def read_point(
        self,
        host: str,
        port: int,
        unit_id: int,
        model_id: ModelId,
        point_name: str,
        timeout: float | None = None,
    ) -> Value:
        return await self.point_reader.read_point(
            host, port, unit_id, model_id, point_name, timeout
        )

    async def read_points(
        self,
        requests: list[PointRequest],
        port: int,
        timeout: float | None = None,
    ) -> list[PointReading]:
        return await self.point_reader.read_points(requests, port, timeout)

    async def write_point(
        self,
        host: str,
        port: int,
        unit_id: int,
        model_id: ModelId,
        point_name: str,
        value: int | float,
        timeout: float | None = None,
        verify: bool = False,
    ) -> WriteResult:
        return await self.point_writer.write_point(
            host, port, unit_id, model_id, point_name, value, timeout, verify
        )

    async def scan_device_models(
        self,
        host: str,
        port: int,
        unit_id: int,
        timeout: float | None = None,
        fast: bool = False,
        dialect: Dialect | None = None,
    ) -> dict[str, Any]:
        """
        Scan a unit's model map and store it in the address cache.

        Args:
            host: Device host
            port: Device TCP port
            unit_id: Modbus unit ID
            timeout: Per-request timeout in seconds
            fast: Stop after the common model
            dialect: Known dialect from discovery

        Returns:
            Model map (empty if the unit speaks no known dialect)
        """
        async def action(session: ModbusSession) -> dict[str, Any]:
            return await self.model_scanner.scan(session, fast=fast, dialect=dialect)

        model_map = await self.connection_pool.submit(host, port, unit_id, action, timeout)

        if model_map:
            identity = DeviceIdentity(host, port, unit_id)
            self.cache.set_device_map(identity, model_map)
            self.cache.persist()
        return model_map

    async def get_device_models(
        self,
        host: str,
        port: int,
        unit_id: int,
        timeout: float | None = None,
        refresh: bool = False,
    ) -> dict[str, Any]:
        """
        Full model map for a unit, from the cache when it holds a full scan.

        Cached maps from a complete chain walk or a vendor dialect are
        reused; partial maps (fast scans, address write-through) are
        rescanned.
        """
        identity = DeviceIdentity(host, port, unit_id)
        cached = self.cache.get_device_map(identity)
        scan = cached.get(constants.MAP_SCAN_KEY) if cached else None
        if scan in (constants.SCAN_FULL, constants.SCAN_VENDOR) and not refresh:
            return cached

        dialect = None
        if cached:
            vendor = VENDOR_MODEL_IDS.intersection(cached)
            if vendor:
                dialect = Dialect(vendor.pop())

        return await self.scan_device_models(
            host, port, unit_id, timeout, fast=False, dialect=dialect
        )

    def get_stats(self) -> dict:
        return {
            "models_loaded": len(self.models),
            "pool": self.connection_pool.get_stats(),
        }
