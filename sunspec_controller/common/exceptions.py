"""
Custom Exception Classes for the SunSpec Engine

Hierarchical exception structure for error handling across services.
"""

from enum import Enum


class FaultKind(str, Enum):
    """Transport fault categories"""
    CONNECTION_RESET = "connection_reset"
    BROKEN_PIPE = "broken_pipe"
    TIMEOUT = "timeout"
    NOT_CONNECTED = "not_connected"
    REFUSED = "refused"
    PROTOCOL = "protocol"


class SunSpecError(Exception):
    """Base exception for all engine errors"""

    def __init__(self, message: str, recoverable: bool = True):
        self.message = message
        self.recoverable = recoverable
        super().__init__(message)


class ConfigError(SunSpecError):
    """Configuration-related errors"""

    def __init__(self, message: str, recoverable: bool = False):
        super().__init__(f"Config Error: {message}", recoverable)


class PointNotFoundError(ConfigError):
    """Requested point is not part of the model definition"""

    def __init__(self, point_name: str, model_id: int):
        self.point_name = point_name
        self.model_id = model_id
        super().__init__(f"Point {point_name} not defined in model {model_id}")


class DeviceError(SunSpecError):
    """Device communication errors"""

    def __init__(
        self,
        message: str,
        host: str | None = None,
        port: int | None = None,
        unit_id: int | None = None,
        recoverable: bool = True,
    ):
        self.host = host
        self.port = port
        self.unit_id = unit_id
        super().__init__(f"Device Error: {message}", recoverable)


class CommunicationError(DeviceError):
    """Modbus/network communication errors"""

    def __init__(
        self,
        message: str,
        host: str | None = None,
        port: int | None = None,
        unit_id: int | None = None,
        kind: FaultKind | None = None,
    ):
        self.kind = kind
        super().__init__(message, host, port, unit_id, recoverable=True)


class OperationTimeoutError(CommunicationError):
    """A transport operation did not complete in time"""

    def __init__(
        self,
        operation: str,
        timeout: float,
        host: str | None = None,
        port: int | None = None,
        unit_id: int | None = None,
    ):
        self.operation = operation
        self.timeout = timeout
        super().__init__(
            f"Transaction timed out: {operation} after {timeout:.1f}s",
            host,
            port,
            unit_id,
            kind=FaultKind.TIMEOUT,
        )


class RegisterReadError(DeviceError):
    """Device answered a read with a Modbus exception response"""

    def __init__(
        self,
        message: str,
        host: str | None = None,
        port: int | None = None,
        unit_id: int | None = None,
        address: int | None = None,
    ):
        self.address = address
        super().__init__(message, host, port, unit_id, recoverable=True)


class ModelNotFoundError(DeviceError):
    """Model chain ended without the requested model"""

    def __init__(
        self,
        model_id: int,
        host: str | None = None,
        port: int | None = None,
        unit_id: int | None = None,
    ):
        self.model_id = model_id
        super().__init__(
            f"Model {model_id} not found in SunSpec chain",
            host,
            port,
            unit_id,
            recoverable=False,
        )


class MalformedDeviceError(DeviceError):
    """Model chain did not terminate within the hop limit"""

    def __init__(
        self,
        hops: int,
        host: str | None = None,
        port: int | None = None,
        unit_id: int | None = None,
    ):
        self.hops = hops
        super().__init__(
            f"SunSpec chain not terminated after {hops} models",
            host,
            port,
            unit_id,
            recoverable=False,
        )


class WriteError(DeviceError):
    """Register write failed errors"""

    def __init__(
        self,
        message: str,
        host: str | None = None,
        port: int | None = None,
        unit_id: int | None = None,
        register: int | None = None,
        value: int | float | None = None,
    ):
        self.register = register
        self.value = value
        super().__init__(message, host, port, unit_id, recoverable=True)


class WriteTypeUnsupportedError(WriteError):
    """Point type cannot be encoded for writing"""

    def __init__(self, point_name: str, point_type: str, value: int | float | None = None):
        self.point_name = point_name
        self.point_type = point_type
        super().__init__(
            f"Write not supported for {point_name} of type {point_type}",
            value=value,
        )
        self.recoverable = False


class CommandNotTakenError(WriteError):
    """Device did not hold the written value"""

    def __init__(
        self,
        host: str | None = None,
        port: int | None = None,
        unit_id: int | None = None,
        register: int | None = None,
        expected_value: int | float | None = None,
        actual_value: int | float | str | None = None,
    ):
        self.expected_value = expected_value
        self.actual_value = actual_value
        message = f"Command not taken: expected {expected_value}, got {actual_value}"
        super().__init__(message, host, port, unit_id, register, expected_value)
