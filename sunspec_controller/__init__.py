"""
SunSpec Controller

Discovery, addressing and point access for SunSpec devices over
Modbus TCP.
"""

from .common.config import EngineSettings, load_config_file, load_engine_settings
from .common.models import ModelIndex, load_model_index, load_model_index_file
from .services.device import DeviceService, PointRequest
from .services.discovery import DiscoveryService, ScanSession
from .services.polling import RetryScheduler

__version__ = "1.0.0"

__all__ = [
    "EngineSettings",
    "load_config_file",
    "load_engine_settings",
    "ModelIndex",
    "load_model_index",
    "load_model_index_file",
    "DeviceService",
    "PointRequest",
    "DiscoveryService",
    "ScanSession",
    "RetryScheduler",
]
