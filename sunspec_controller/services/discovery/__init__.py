"""
Discovery Service - Network scanning for Modbus devices

Responsibilities:
- Expand address ranges and unit ID lists
- Probe Modbus TCP ports
- Classify unit IDs by register map dialect
- Record discovered model maps in the address cache
"""

from .address_range import expand_address_range, expand_unit_ids, default_unit_ids
from .network_scanner import NetworkScanner, UnitMatch, probe_host
from .scan_session import DiscoveredUnit, ScanSession, ScanStatus
from .service import DiscoveryService

__all__ = [
    "expand_address_range",
    "expand_unit_ids",
    "default_unit_ids",
    "NetworkScanner",
    "UnitMatch",
    "probe_host",
    "DiscoveredUnit",
    "ScanSession",
    "ScanStatus",
    "DiscoveryService",
]
