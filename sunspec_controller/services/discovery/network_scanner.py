"""
Network Scanner

Finds Modbus TCP hosts and classifies the unit IDs behind them by
register map dialect (SunSpec, SMA Data Manager, Conext XW gateway).
"""

import asyncio
from dataclasses import dataclass
from typing import Callable

from sunspec_controller.common import constants
from sunspec_controller.common.config import Dialect
from sunspec_controller.common.exceptions import SunSpecError
from sunspec_controller.common.logging_setup import get_service_logger
from sunspec_controller.services.device.connection_pool import ConnectionPool
from sunspec_controller.services.device.dialects import has_conext_response, has_sma_signature
from sunspec_controller.services.device.model_chain import has_sunspec_marker
from sunspec_controller.services.device.modbus_client import ModbusSession
from .address_range import default_unit_ids

logger = get_service_logger("discovery.scanner")


@dataclass(frozen=True)
class UnitMatch:
    """A unit ID that answered with a known dialect"""
    unit_id: int
    dialect: Dialect


async def probe_host(
    host: str,
    port: int = constants.DEFAULT_MODBUS_PORT,
    timeout: float = constants.DEFAULT_PORT_CHECK_TIMEOUT,
) -> bool:
    """
    Check whether a TCP port accepts connections.

    Args:
        host: Host to check
        port: TCP port
        timeout: Connect timeout in seconds

    Returns:
        True if the connection was accepted
    """
    try:
        reader, writer = await asyncio.wait_for(
            asyncio.open_connection(host, port),
            timeout=timeout,
        )
    except (asyncio.TimeoutError, OSError):
        return False

    writer.close()
    try:
        await writer.wait_closed()
    except OSError as e:
        logger.debug(f"Probe socket to {host}:{port} closed with error: {e}")
    return True


class NetworkScanner:
    """
    Probes hosts and classifies their unit IDs.

    Unit classification runs as a single pooled action per host, so it
    never interleaves with reads to the same endpoint.
    """

    def __init__(
        self,
        connection_pool: ConnectionPool,
        port_check_timeout: float = constants.DEFAULT_PORT_CHECK_TIMEOUT,
    ):
        self._pool = connection_pool
        self.port_check_timeout = port_check_timeout

    async def probe_host(self, host: str, port: int) -> bool:
        return await probe_host(host, port, self.port_check_timeout)

    async def classify_units(
        self,
        host: str,
        port: int,
        timeout: float,
        unit_ids: list[int] | None = None,
        should_stop: Callable[[], bool] | None = None,
        on_status: Callable[[str], None] | None = None,
    ) -> list[UnitMatch]:
        """
        Classify unit IDs on one host.

        Args:
            host: Host to scan
            port: TCP port
            timeout: Per-request timeout in seconds
            unit_ids: IDs to try; None or empty uses the default priority order
            should_stop: Cancellation check, consulted before each ID
            on_status: Receives progress messages

        Returns:
            Matches in probe order. Empty if the host could not be opened.
        """
        ids = unit_ids or default_unit_ids(port)

        async def action(session: ModbusSession) -> list[UnitMatch]:
            matches = []
            for unit_id in ids:
                if should_stop and should_stop():
                    logger.info(f"Unit scan of {host}:{port} cancelled")
                    break

                session.select_unit(unit_id)
                dialect = await self.classify_unit(session, port)
                if dialect is None:
                    continue

                matches.append(UnitMatch(unit_id=unit_id, dialect=dialect))
                message = f"Found {dialect.value} ID {unit_id} at {host}"
                logger.info(message)
                if on_status:
                    on_status(message)
            return matches

        try:
            return await self._pool.submit(host, port, ids[0], action, timeout)
        except SunSpecError as e:
            logger.warning(f"Could not open {host}:{port} for unit scan: {e}")
            return []

    async def classify_unit(self, session: ModbusSession, port: int) -> Dialect | None:
        """Dialect of the selected unit, or None. Probe failures count as no match."""
        try:
            if await has_sunspec_marker(session):
                return Dialect.SUNSPEC
        except (SunSpecError, ValueError) as e:
            logger.debug(f"SunSpec probe failed for unit {session.unit_id}: {e}")

        try:
            if port != constants.CONEXT_GATEWAY_PORT:
                if await has_sma_signature(session):
                    return Dialect.SMA_EDMM
            elif await has_conext_response(session):
                return Dialect.CONEXT_XW_503
        except (SunSpecError, ValueError) as e:
            logger.debug(f"Vendor probe failed for unit {session.unit_id}: {e}")

        return None
