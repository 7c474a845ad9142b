"""
Configuration Dataclasses

Type-safe configuration structures for the engine.
Settings are loaded from a YAML file or a plain dictionary.
"""

from dataclasses import dataclass, field
from pathlib import Path
from enum import Enum

import yaml

from . import constants
from .exceptions import ConfigError


class Dialect(str, Enum):
    """Register map dialect detected on a unit"""
    SUNSPEC = "sunspec"
    SMA_EDMM = "sma_edmm"
    CONEXT_XW_503 = "conext_xw_503"


@dataclass(frozen=True)
class DeviceIdentity:
    """A Modbus device addressed by host, TCP port and unit ID"""
    host: str
    port: int = constants.DEFAULT_MODBUS_PORT
    unit_id: int = 1

    def __str__(self) -> str:
        return f"{self.host}:{self.port}/{self.unit_id}"


@dataclass
class PoolSettings:
    """Connection pool behaviour"""
    idle_timeout_s: float = constants.POOL_IDLE_TIMEOUT
    sweep_interval_s: float = constants.POOL_SWEEP_INTERVAL
    cooldown_s: float = constants.POOL_COOLDOWN
    timeout_s: float = constants.DEFAULT_TIMEOUT


@dataclass
class ReadSettings:
    """Point read and decode behaviour"""
    max_model_hops: int = constants.DEFAULT_MAX_MODEL_HOPS
    validate_cache_hits: bool = False
    round_values: bool = True
    round_precision: int = 2
    scale_exempt_points: tuple[str, ...] = constants.SCALE_EXEMPT_POINTS


@dataclass
class DiscoverySettings:
    """Network scan behaviour"""
    port: int = constants.DEFAULT_MODBUS_PORT
    timeout_s: float = constants.DEFAULT_TIMEOUT
    port_check_timeout_s: float = constants.DEFAULT_PORT_CHECK_TIMEOUT
    address_range: str = ""
    unit_ids: str = ""
    session_history: int = constants.DISCOVERY_SESSION_HISTORY


@dataclass
class RetrySettings:
    """Polling cadence and failure backoff"""
    interval_s: float = 10.0
    base_delay_s: float = constants.BASE_RETRY_DELAY
    max_delay_s: float = constants.MAX_RETRY_DELAY


@dataclass
class EngineSettings:
    """Complete engine configuration"""
    pool: PoolSettings = field(default_factory=PoolSettings)
    read: ReadSettings = field(default_factory=ReadSettings)
    discovery: DiscoverySettings = field(default_factory=DiscoverySettings)
    retry: RetrySettings = field(default_factory=RetrySettings)
    cache_file: str | None = None
    model_index_file: str | None = None


def load_engine_settings(data: dict) -> EngineSettings:
    """Load EngineSettings from dictionary (e.g., from a YAML file)"""
    if not isinstance(data, dict):
        raise ConfigError("Engine settings must be a mapping")

    pool_data = data.get("pool", {})
    pool = PoolSettings(
        idle_timeout_s=float(pool_data.get("idle_timeout_s", constants.POOL_IDLE_TIMEOUT)),
        sweep_interval_s=float(pool_data.get("sweep_interval_s", constants.POOL_SWEEP_INTERVAL)),
        cooldown_s=float(pool_data.get("cooldown_s", constants.POOL_COOLDOWN)),
        timeout_s=float(pool_data.get("timeout_s", constants.DEFAULT_TIMEOUT)),
    )

    read_data = data.get("read", {})
    read = ReadSettings(
        max_model_hops=int(read_data.get("max_model_hops", constants.DEFAULT_MAX_MODEL_HOPS)),
        validate_cache_hits=bool(read_data.get("validate_cache_hits", False)),
        round_values=bool(read_data.get("round_values", True)),
        round_precision=int(read_data.get("round_precision", 2)),
        scale_exempt_points=tuple(
            read_data.get("scale_exempt_points", constants.SCALE_EXEMPT_POINTS)
        ),
    )

    discovery_data = data.get("discovery", {})
    discovery = DiscoverySettings(
        port=int(discovery_data.get("port", constants.DEFAULT_MODBUS_PORT)),
        timeout_s=float(discovery_data.get("timeout_s", constants.DEFAULT_TIMEOUT)),
        port_check_timeout_s=float(
            discovery_data.get("port_check_timeout_s", constants.DEFAULT_PORT_CHECK_TIMEOUT)
        ),
        address_range=str(discovery_data.get("address_range", "")),
        unit_ids=str(discovery_data.get("unit_ids", "")),
        session_history=int(
            discovery_data.get("session_history", constants.DISCOVERY_SESSION_HISTORY)
        ),
    )

    retry_data = data.get("retry", {})
    retry = RetrySettings(
        interval_s=float(retry_data.get("interval_s", 10.0)),
        base_delay_s=float(retry_data.get("base_delay_s", constants.BASE_RETRY_DELAY)),
        max_delay_s=float(retry_data.get("max_delay_s", constants.MAX_RETRY_DELAY)),
    )

    if read.max_model_hops < 1:
        raise ConfigError("read.max_model_hops must be at least 1")
    if discovery.session_history < 0:
        raise ConfigError("discovery.session_history must not be negative")
    if retry.base_delay_s <= 0 or retry.max_delay_s < retry.base_delay_s:
        raise ConfigError("retry delays must satisfy 0 < base_delay_s <= max_delay_s")

    return EngineSettings(
        pool=pool,
        read=read,
        discovery=discovery,
        retry=retry,
        cache_file=data.get("cache_file"),
        model_index_file=data.get("model_index_file"),
    )


def load_config_file(path: str | Path) -> EngineSettings:
    """
    Load engine settings from a YAML file.

    Args:
        path: Path to the YAML settings file

    Returns:
        Parsed EngineSettings
    """
    path = Path(path)
    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except FileNotFoundError as e:
        raise ConfigError(f"Settings file not found: {path}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    return load_engine_settings(data)
