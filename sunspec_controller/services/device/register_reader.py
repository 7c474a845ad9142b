"""
Point Reader

Reads SunSpec points through the connection pool. Model addresses come
from the address cache when known and from a chain walk otherwise; walk
results are written back to the cache.
"""

import asyncio
from dataclasses import dataclass

from sunspec_controller.common.config import DeviceIdentity
from sunspec_controller.common.exceptions import (
    ConfigError,
    DeviceError,
    ModelNotFoundError,
    RegisterReadError,
    SunSpecError,
)
from sunspec_controller.common.logging_setup import (
    get_service_logger,
    log_point_error,
    log_point_read,
    log_transport_fault,
)
from sunspec_controller.common.models import ModelDefinition, ModelId, ModelIndex
from .address_cache import AddressCache
from .connection_pool import ConnectionPool
from .dialects import is_vendor_model
from .model_chain import ModelChainWalker
from .modbus_client import ModbusSession
from .point_decoder import PointDecoder, Value

logger = get_service_logger("device.reader")


@dataclass
class PointRequest:
    """One point to read in a batch. port falls back to the batch port."""
    host: str
    unit_id: int
    model_id: ModelId
    point_name: str
    port: int | None = None


@dataclass
class PointReading:
    """Result of a point read"""
    host: str
    port: int
    unit_id: int
    model_id: ModelId
    point_name: str
    value: Value = None
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict:
        return {
            "host": self.host,
            "port": self.port,
            "unit_id": self.unit_id,
            "model": self.model_id,
            "point": self.point_name,
            "value": self.value,
            "error": self.error,
        }


class ModelLocator:
    """
    Resolves model header addresses for a device.

    Cached addresses are trusted unless validate_cache_hits is set, in
    which case the header is re-read and a mismatch triggers a fresh walk.
    """

    def __init__(
        self,
        cache: AddressCache,
        walker: ModelChainWalker,
        validate_cache_hits: bool = False,
    ):
        self._cache = cache
        self._walker = walker
        self.validate_cache_hits = validate_cache_hits

    async def locate(
        self,
        session: ModbusSession,
        identity: DeviceIdentity,
        model_id: ModelId,
    ) -> int:
        if is_vendor_model(model_id):
            return 0

        cached = self._cache.get_address(identity, model_id)
        if cached is not None:
            if not self.validate_cache_hits:
                return cached
            if await self._walker.verify_model_at(session, cached, model_id):
                return cached
            logger.info(f"Cached address {cached} for model {model_id} on {identity} is stale")
            self._cache.forget(identity, model_id)

        if not isinstance(model_id, int):
            raise ModelNotFoundError(model_id, identity.host, identity.port, identity.unit_id)

        block = await self._walker.find_model(session, model_id)
        self._cache.set_block(identity, block)
        self._cache.persist()
        return block.start


class PointReader:
    """
    Reads single points and batches of points.

    Features:
    - One pooled action per point, or per device in a batch
    - Batch groups for different devices run concurrently
    - Point-level unit ID overrides
    """

    def __init__(
        self,
        connection_pool: ConnectionPool,
        models: ModelIndex,
        locator: ModelLocator,
        decoder: PointDecoder,
    ):
        self._pool = connection_pool
        self._models = models
        self._locator = locator
        self._decoder = decoder

    async def read_point(
        self,
        host: str,
        port: int,
        unit_id: int,
        model_id: ModelId,
        point_name: str,
        timeout: float | None = None,
    ) -> Value:
        """
        Read one point.

        Raises:
            ConfigError: model or point not defined (PointNotFoundError)
            ModelNotFoundError: model absent from the device chain
            DeviceError: transport or device failure
        """
        model = self._models.require(model_id)
        model.get_point(point_name)
        identity = DeviceIdentity(host, port, unit_id)

        async def action(session: ModbusSession) -> Value:
            return await self._read_with_session(session, identity, model, point_name)

        try:
            value = await self._pool.submit(host, port, unit_id, action, timeout)
        except DeviceError as e:
            log_transport_fault(logger, identity, f"read {model_id}.{point_name}", e)
            raise

        log_point_read(logger, identity, model_id, point_name, value)
        return value

    async def read_points(
        self,
        requests: list[PointRequest],
        port: int,
        timeout: float | None = None,
    ) -> list[PointReading]:
        """
        Read a batch of points, grouped by device.

        Results keep the order of requests. A failed point or group yields
        readings with value None and an error message.
        """
        readings = [
            PointReading(
                host=r.host,
                port=r.port or port,
                unit_id=r.unit_id,
                model_id=r.model_id,
                point_name=r.point_name,
            )
            for r in requests
        ]

        groups: dict[DeviceIdentity, list[int]] = {}
        for index, reading in enumerate(readings):
            identity = DeviceIdentity(reading.host, reading.port, reading.unit_id)
            groups.setdefault(identity, []).append(index)

        await asyncio.gather(*(
            self._read_group(identity, indexes, readings, timeout)
            for identity, indexes in groups.items()
        ))
        return readings

    async def _read_group(
        self,
        identity: DeviceIdentity,
        indexes: list[int],
        readings: list[PointReading],
        timeout: float | None,
    ) -> None:
        completed: set[int] = set()

        async def action(session: ModbusSession) -> None:
            for index in indexes:
                reading = readings[index]
                model = self._models.get(reading.model_id)
                if model is None:
                    reading.error = f"No definition loaded for model {reading.model_id}"
                    completed.add(index)
                    continue

                session.select_unit(identity.unit_id)
                try:
                    reading.value = await self._read_with_session(
                        session, identity, model, reading.point_name
                    )
                except (ConfigError, ModelNotFoundError, RegisterReadError) as e:
                    reading.error = str(e)
                    log_point_error(logger, identity, reading.model_id, reading.point_name, e)
                completed.add(index)

        try:
            await self._pool.submit(identity.host, identity.port, identity.unit_id, action, timeout)
        except SunSpecError as e:
            log_transport_fault(logger, identity, "batch read", e)
            for index in indexes:
                if index not in completed:
                    readings[index].error = str(e)

    async def _read_with_session(
        self,
        session: ModbusSession,
        identity: DeviceIdentity,
        model: ModelDefinition,
        point_name: str,
    ) -> Value:
        point = model.get_point(point_name)
        if point.unit_id:
            session.select_unit(point.unit_id)

        address = await self._locator.locate(session, identity, model.model_id)
        return await self._decoder.read_point(session, model, address, point)
