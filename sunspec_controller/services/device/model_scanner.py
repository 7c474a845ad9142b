"""
Device Model Scanner

Builds the model map of a device: every model in its SunSpec chain with
start address, length and the points the device implements, plus the
manufacturer/model/serial identity from the common model.
"""

from typing import Any

from sunspec_controller.common import constants
from sunspec_controller.common.config import Dialect
from sunspec_controller.common.exceptions import (
    MalformedDeviceError,
    RegisterReadError,
)
from sunspec_controller.common.logging_setup import get_service_logger
from sunspec_controller.common.models import ModelDefinition, ModelIndex
from .dialects import has_sma_signature, vendor_model_map
from .model_chain import ModelChainWalker, has_sunspec_marker
from .modbus_client import ModbusSession
from .point_decoder import PointDecoder

logger = get_service_logger("device.scanner")

IDENTITY_POINTS = ("Mn", "Md", "SN")


class ModelScanner:
    """Scans the model chain of one unit"""

    def __init__(
        self,
        walker: ModelChainWalker,
        decoder: PointDecoder,
        models: ModelIndex,
    ):
        self._walker = walker
        self._decoder = decoder
        self._models = models

    async def scan(
        self,
        session: ModbusSession,
        fast: bool = False,
        dialect: Dialect | None = None,
    ) -> dict[str, Any]:
        """
        Scan the selected unit.

        Args:
            session: Session with the unit already selected
            fast: Stop after the common model (identity only)
            dialect: Known dialect; vendor dialects skip the chain walk

        Returns:
            Model map keyed by model ID string, plus "info" and the "scan"
            marker ("full" once the end marker was reached, else "partial").
            Empty when the unit has neither a SunSpec marker nor a vendor
            signature.
        """
        if dialect is not None and dialect != Dialect.SUNSPEC:
            return vendor_model_map(dialect)

        device = f"{session.host}:{session.port}/{session.unit_id}"

        if not await has_sunspec_marker(session):
            if await has_sma_signature(session):
                logger.info(f"Detected SMA device at {device} during model scan")
                return vendor_model_map(Dialect.SMA_EDMM)
            logger.debug(f"No SunSpec marker at {device}")
            return {}

        model_map: dict[str, Any] = {}
        complete = False
        try:
            async for block in self._walker.iter_models(session, constants.SUNSPEC_CHAIN_START):
                entry: dict[str, Any] = {"start": block.start, "length": block.length}
                model_map[str(block.model_id)] = entry

                definition = self._models.get(block.model_id)
                if definition is None:
                    continue

                try:
                    entry["implementedFields"] = await self._decoder.scan_implemented_points(
                        session, definition, block.start, block.length
                    )
                except RegisterReadError as e:
                    logger.warning(f"Point scan failed for model {block.model_id} on {device}: {e}")

                if block.model_id == constants.COMMON_MODEL_ID:
                    info = await self.read_identity(session, definition, block.start)
                    if info:
                        model_map["info"] = info
                    if fast:
                        break
            else:
                complete = True
        except (MalformedDeviceError, RegisterReadError) as e:
            logger.warning(f"Model scan of {device} stopped early: {e}")

        if model_map:
            model_map[constants.MAP_SCAN_KEY] = (
                constants.SCAN_FULL if complete else constants.SCAN_PARTIAL
            )
        found = [k for k in model_map if k not in ("info", constants.MAP_SCAN_KEY)]
        logger.info(f"Scanned {device}: models {found}")
        return model_map

    async def read_identity(
        self,
        session: ModbusSession,
        common: ModelDefinition,
        address: int,
    ) -> dict[str, Any]:
        """Manufacturer, model and serial number from the common model."""
        info = {}
        for name in IDENTITY_POINTS:
            if not common.has_point(name):
                continue
            try:
                info[name] = await self._decoder.read_point(
                    session, common, address, common.get_point(name)
                )
            except RegisterReadError as e:
                logger.warning(f"Identity read of {name} failed: {e}")
                return {}
        return info
