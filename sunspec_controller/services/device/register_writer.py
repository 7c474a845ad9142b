"""
Point Writer

Writes SunSpec points with optional read-back verification.
"""

import asyncio
from dataclasses import dataclass

from sunspec_controller.common.config import DeviceIdentity
from sunspec_controller.common.exceptions import CommandNotTakenError, DeviceError
from sunspec_controller.common.logging_setup import (
    get_service_logger,
    log_point_write,
    log_transport_fault,
)
from sunspec_controller.common.models import ModelId, ModelIndex
from .connection_pool import ConnectionPool
from .modbus_client import ModbusSession
from .point_decoder import encode_value
from .register_reader import ModelLocator

logger = get_service_logger("device.writer")


@dataclass
class WriteResult:
    """Result of a write operation"""
    success: bool
    address: int
    written_registers: list[int]
    verified: bool = False
    read_back_registers: list[int] | None = None

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "address": self.address,
            "written": self.written_registers,
            "verified": self.verified,
            "read_back": self.read_back_registers,
        }


class PointWriter:
    """
    Writes points through the connection pool.

    The value is encoded by point type, written at the point's address
    and, when verify is set, read back after a short delay.
    """

    VERIFY_DELAY_S = 0.2

    def __init__(
        self,
        connection_pool: ConnectionPool,
        models: ModelIndex,
        locator: ModelLocator,
    ):
        self._pool = connection_pool
        self._models = models
        self._locator = locator

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
        """
        Write one point.

        Raises:
            ConfigError: model or point not defined
            WriteTypeUnsupportedError: point type cannot be written
            CommandNotTakenError: read-back differs from what was written
            DeviceError: transport or device failure
        """
        model = self._models.require(model_id)
        point = model.get_point(point_name)
        registers = encode_value(point, value)
        identity = DeviceIdentity(host, port, unit_id)
        label = f"{model_id}.{point_name}"

        async def action(session: ModbusSession) -> WriteResult:
            if point.unit_id:
                session.select_unit(point.unit_id)

            model_address = await self._locator.locate(session, identity, model_id)
            address = model_address + model.offset_of(point_name)
            await session.write_registers(address, registers)

            if not verify:
                return WriteResult(success=True, address=address, written_registers=registers)

            await asyncio.sleep(self.VERIFY_DELAY_S)
            read_back = await session.read_holding_registers(address, len(registers))
            if read_back != registers:
                logger.warning(
                    f"Write verification failed for {identity} {label} "
                    f"@{address}: wrote {registers}, read {read_back}"
                )
                raise CommandNotTakenError(
                    host, port, unit_id,
                    register=address,
                    expected_value=value,
                    actual_value=str(read_back),
                )

            return WriteResult(
                success=True,
                address=address,
                written_registers=registers,
                verified=True,
                read_back_registers=read_back,
            )

        try:
            result = await self._pool.submit(host, port, unit_id, action, timeout)
        except DeviceError as e:
            log_transport_fault(logger, identity, f"write {label}", e)
            raise

        log_point_write(logger, identity, model_id, point_name, value, result.address)
        return result
