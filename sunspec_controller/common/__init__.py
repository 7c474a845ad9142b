"""
Common Utilities

Shared modules used across all services:
- constants.py - Register map constants and engine defaults
- config.py - Configuration dataclasses
- models.py - SunSpec model definitions
- exceptions.py - Custom exception classes
- logging_setup.py - Structured logging setup
"""

from .config import (
    Dialect,
    DeviceIdentity,
    EngineSettings,
    PoolSettings,
    ReadSettings,
    DiscoverySettings,
    RetrySettings,
    load_engine_settings,
    load_config_file,
)
from .models import (
    PointDefinition,
    ModelDefinition,
    ModelIndex,
    ModelId,
    normalize_model_id,
    load_model_index,
    load_model_index_file,
)
from .exceptions import (
    FaultKind,
    SunSpecError,
    ConfigError,
    PointNotFoundError,
    DeviceError,
    CommunicationError,
    OperationTimeoutError,
    RegisterReadError,
    ModelNotFoundError,
    MalformedDeviceError,
    WriteError,
    WriteTypeUnsupportedError,
    CommandNotTakenError,
)
from .logging_setup import (
    configure_logging,
    get_service_logger,
    log_point_read,
    log_point_error,
    log_point_write,
    log_transport_fault,
)

__all__ = [
    # Config
    "Dialect",
    "DeviceIdentity",
    "EngineSettings",
    "PoolSettings",
    "ReadSettings",
    "DiscoverySettings",
    "RetrySettings",
    "load_engine_settings",
    "load_config_file",
    # Models
    "PointDefinition",
    "ModelDefinition",
    "ModelIndex",
    "ModelId",
    "normalize_model_id",
    "load_model_index",
    "load_model_index_file",
    # Exceptions
    "FaultKind",
    "SunSpecError",
    "ConfigError",
    "PointNotFoundError",
    "DeviceError",
    "CommunicationError",
    "OperationTimeoutError",
    "RegisterReadError",
    "ModelNotFoundError",
    "MalformedDeviceError",
    "WriteError",
    "WriteTypeUnsupportedError",
    "CommandNotTakenError",
    # Logging
    "configure_logging",
    "get_service_logger",
    "log_point_read",
    "log_point_error",
    "log_point_write",
    "log_transport_fault",
]
