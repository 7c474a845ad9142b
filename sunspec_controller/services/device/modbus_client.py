"""
Async Modbus Session

Wrapper around pymodbus AsyncModbusTcpClient exposing the narrow
transport surface the engine needs: connect, unit selection, timeout,
holding register read/write, close and close notification.

Transport failures are raised as typed exceptions carrying a FaultKind
so callers can tell a dead link from a device-level error response.
"""

import asyncio
import errno
from typing import Callable

from pymodbus.client import AsyncModbusTcpClient
from pymodbus.exceptions import ConnectionException, ModbusException, ModbusIOException

from sunspec_controller.common import constants
from sunspec_controller.common.exceptions import (
    CommunicationError,
    FaultKind,
    OperationTimeoutError,
    RegisterReadError,
    WriteError,
)
from sunspec_controller.common.logging_setup import get_service_logger

logger = get_service_logger("device.modbus")


def classify_os_error(error: OSError) -> FaultKind:
    """Map a socket-level OSError to a FaultKind"""
    if isinstance(error, ConnectionResetError) or error.errno == errno.ECONNRESET:
        return FaultKind.CONNECTION_RESET
    if isinstance(error, BrokenPipeError) or error.errno == errno.EPIPE:
        return FaultKind.BROKEN_PIPE
    if isinstance(error, ConnectionRefusedError) or error.errno == errno.ECONNREFUSED:
        return FaultKind.REFUSED
    if error.errno == errno.ETIMEDOUT:
        return FaultKind.TIMEOUT
    return FaultKind.NOT_CONNECTED


class ModbusSession:
    """
    One Modbus TCP session to a host:port.

    The selected unit ID applies to every subsequent request until
    changed. Every request carries the current timeout.
    """

    def __init__(
        self,
        host: str,
        port: int = constants.DEFAULT_MODBUS_PORT,
        timeout: float = constants.DEFAULT_TIMEOUT,
    ):
        self.host = host
        self.port = port
        self.timeout = timeout
        self.unit_id = 1

        self._client: AsyncModbusTcpClient | None = None
        self._close_listeners: list[Callable[["ModbusSession"], None]] = []
        self._closed = False

    @property
    def is_open(self) -> bool:
        return (
            not self._closed
            and self._client is not None
            and self._client.connected
        )

    def add_close_listener(self, listener: Callable[["ModbusSession"], None]) -> None:
        """Register a callback fired once when the session closes or drops."""
        self._close_listeners.append(listener)

    async def connect(self) -> None:
        """
        Open the TCP connection.

        Raises:
            OperationTimeoutError: connect did not finish within the timeout
            CommunicationError: connection refused or dropped
        """
        self._client = AsyncModbusTcpClient(
            host=self.host,
            port=self.port,
            timeout=self.timeout,
            retries=0,
        )

        try:
            connected = await asyncio.wait_for(self._client.connect(), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            self._client.close()
            raise OperationTimeoutError(
                "connect", self.timeout, self.host, self.port, self.unit_id
            ) from e
        except OSError as e:
            self._client.close()
            raise CommunicationError(
                f"Connection error: {e}",
                self.host,
                self.port,
                self.unit_id,
                kind=classify_os_error(e),
            ) from e

        if not connected:
            self._client.close()
            raise CommunicationError(
                f"Failed to connect to {self.host}:{self.port}",
                self.host,
                self.port,
                self.unit_id,
                kind=FaultKind.REFUSED,
            )

        logger.debug(f"Connected to Modbus device at {self.host}:{self.port}")

    def select_unit(self, unit_id: int) -> None:
        self.unit_id = unit_id

    def set_timeout(self, timeout: float) -> None:
        self.timeout = timeout

    async def read_holding_registers(self, address: int, count: int) -> list[int]:
        """
        Read holding registers from the selected unit.

        Args:
            address: Starting register address
            count: Number of registers to read

        Returns:
            Raw 16-bit register values

        Raises:
            RegisterReadError: device answered with a Modbus exception
            CommunicationError: link-level failure (FaultKind set)
        """
        client = self._require_client()
        response = await self._call(
            f"read {address}+{count}",
            client.read_holding_registers(address=address, count=count, device_id=self.unit_id),
        )

        if response.isError():
            raise RegisterReadError(
                f"Modbus error: {response}",
                self.host,
                self.port,
                self.unit_id,
                address=address,
            )

        return list(response.registers)

    async def write_registers(self, address: int, values: list[int]) -> None:
        """Write consecutive holding registers on the selected unit."""
        client = self._require_client()
        response = await self._call(
            f"write {address}",
            client.write_registers(address=address, values=values, device_id=self.unit_id),
        )

        if response.isError():
            raise WriteError(
                f"Write failed: {response}",
                self.host,
                self.port,
                self.unit_id,
                register=address,
                value=values[0] if values else None,
            )

        logger.debug(
            f"Write successful: {self.host}:{self.port} unit={self.unit_id} "
            f"reg={address} values={values}"
        )

    def close(self) -> None:
        """Close the session. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True

        if self._client is not None:
            self._client.close()
            self._client = None

        logger.debug(f"Disconnected from {self.host}:{self.port}")
        self._notify_closed()

    async def _call(self, operation: str, request):
        try:
            return await asyncio.wait_for(request, timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise OperationTimeoutError(
                operation, self.timeout, self.host, self.port, self.unit_id
            ) from e
        except ConnectionException as e:
            self._drop()
            raise CommunicationError(
                f"Port Not Open: {e}",
                self.host,
                self.port,
                self.unit_id,
                kind=FaultKind.NOT_CONNECTED,
            ) from e
        except ModbusIOException as e:
            # pymodbus raises this when no response arrived for the transaction
            raise OperationTimeoutError(
                operation, self.timeout, self.host, self.port, self.unit_id
            ) from e
        except ModbusException as e:
            raise CommunicationError(
                f"Modbus exception: {e}",
                self.host,
                self.port,
                self.unit_id,
                kind=FaultKind.PROTOCOL,
            ) from e
        except OSError as e:
            self._drop()
            raise CommunicationError(
                f"Connection error: {e}",
                self.host,
                self.port,
                self.unit_id,
                kind=classify_os_error(e),
            ) from e

    def _require_client(self) -> AsyncModbusTcpClient:
        if self._client is None or self._closed:
            raise CommunicationError(
                f"Port Not Open: {self.host}:{self.port}",
                self.host,
                self.port,
                self.unit_id,
                kind=FaultKind.NOT_CONNECTED,
            )
        if not self._client.connected:
            self._drop()
            raise CommunicationError(
                f"Port Not Open: {self.host}:{self.port}",
                self.host,
                self.port,
                self.unit_id,
                kind=FaultKind.NOT_CONNECTED,
            )
        return self._client

    def _drop(self) -> None:
        """Link lost underneath us"""
        if not self._closed:
            logger.info(f"Connection to {self.host}:{self.port} dropped")
            self.close()

    def _notify_closed(self) -> None:
        listeners, self._close_listeners = self._close_listeners, []
        for listener in listeners:
            try:
                listener(self)
            except Exception as e:
                logger.warning(f"Close listener failed for {self.host}:{self.port}: {e}")
