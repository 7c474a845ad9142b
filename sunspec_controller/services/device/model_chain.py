"""
SunSpec Model Chain Walker

Locates models in a device's SunSpec register map. The map starts with
the "SunS" marker at 40000 followed by a linked chain of models, each a
two-register header (model ID, length) and `length` registers of body.
The chain ends with model ID 0xFFFF.
"""

from dataclasses import dataclass
from typing import AsyncIterator

from sunspec_controller.common import constants
from sunspec_controller.common.exceptions import (
    MalformedDeviceError,
    ModelNotFoundError,
    RegisterReadError,
)
from sunspec_controller.common.logging_setup import get_service_logger
from .modbus_client import ModbusSession

logger = get_service_logger("device.chain")


@dataclass(frozen=True)
class ModelBlock:
    """A model located in the register map. start is the header address."""
    model_id: int
    start: int
    length: int

    @property
    def end(self) -> int:
        return self.start + constants.MODEL_HEADER_LENGTH + self.length


async def has_sunspec_marker(session: ModbusSession) -> bool:
    """
    Check for the "SunS" marker at the base address.

    A device exception response counts as no marker. Transport faults
    propagate.
    """
    try:
        registers = await session.read_holding_registers(constants.SUNSPEC_BASE_ADDRESS, 2)
    except RegisterReadError:
        return False
    return tuple(registers[:2]) == constants.SUNSPEC_MARKER


class ModelChainWalker:
    """Walks the model chain with a bounded number of hops"""

    def __init__(self, max_hops: int = constants.DEFAULT_MAX_MODEL_HOPS):
        self.max_hops = max_hops

    async def resolve_base_address(self, session: ModbusSession) -> int:
        """
        Address of the first model header.

        Devices without the marker are still walked from the default chain
        start, which is the same address.
        """
        if await has_sunspec_marker(session):
            return constants.SUNSPEC_CHAIN_START
        logger.debug(
            f"No SunSpec marker on {session.host}:{session.port}/{session.unit_id}, "
            f"assuming chain at {constants.SUNSPEC_CHAIN_START}"
        )
        return constants.SUNSPEC_CHAIN_START

    async def iter_models(
        self,
        session: ModbusSession,
        base_address: int | None = None,
    ) -> AsyncIterator[ModelBlock]:
        """
        Yield every model in chain order.

        Raises:
            MalformedDeviceError: more than max_hops models before the end marker
        """
        if base_address is None:
            base_address = await self.resolve_base_address(session)

        address = base_address
        # max_hops model headers plus the end marker
        for hops in range(self.max_hops + 1):
            model_id, length = await session.read_holding_registers(address, 2)
            if model_id == constants.END_OF_CHAIN:
                return
            if hops == self.max_hops:
                break
            yield ModelBlock(model_id=model_id, start=address, length=length)
            address += constants.MODEL_HEADER_LENGTH + length

        raise MalformedDeviceError(self.max_hops, session.host, session.port, session.unit_id)

    async def find_model(
        self,
        session: ModbusSession,
        model_id: int,
        base_address: int | None = None,
    ) -> ModelBlock:
        """
        Locate a model by ID.

        Raises:
            ModelNotFoundError: end marker reached first
            MalformedDeviceError: more than max_hops models before the end marker
        """
        async for block in self.iter_models(session, base_address):
            if block.model_id == model_id:
                logger.debug(
                    f"Model {model_id} at {block.start} on "
                    f"{session.host}:{session.port}/{session.unit_id}"
                )
                return block

        raise ModelNotFoundError(model_id, session.host, session.port, session.unit_id)

    async def list_models(
        self,
        session: ModbusSession,
        base_address: int | None = None,
    ) -> list[ModelBlock]:
        return [block async for block in self.iter_models(session, base_address)]

    async def verify_model_at(self, session: ModbusSession, address: int, model_id: int) -> bool:
        """True if the header at address still carries model_id."""
        try:
            registers = await session.read_holding_registers(address, 2)
        except RegisterReadError:
            return False
        return registers[0] == model_id
