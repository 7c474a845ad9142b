"""
Protocol Constants

SunSpec register map constants, vendor signatures and engine defaults.
Durations are in seconds.
"""

# Modbus transport
DEFAULT_MODBUS_PORT = 502
CONEXT_GATEWAY_PORT = 503
MIN_UNIT_ID = 1
MAX_UNIT_ID = 247

DEFAULT_TIMEOUT = 6.0
DEFAULT_PORT_CHECK_TIMEOUT = 0.3

# SunSpec register map
SUNSPEC_BASE_ADDRESS = 40000
SUNSPEC_CHAIN_START = 40002
SUNSPEC_MARKER = (0x5375, 0x6E53)  # "SunS"
END_OF_CHAIN = 0xFFFF
MODEL_HEADER_LENGTH = 2
COMMON_MODEL_ID = 1
DEFAULT_MAX_MODEL_HOPS = 100

# Largest single read used for implemented-point scans
MAX_SCAN_REGISTERS = 120

# Official model definitions, one JSON file per model
SUNSPEC_MODELS_URL = "https://raw.githubusercontent.com/sunspec/models/master/json"
OFFICIAL_MODEL_IDS = (
    1, 101, 102, 103, 111, 112, 113,
    120, 121, 122, 123, 124, 125, 126, 127, 128, 129, 130, 131, 132,
    160,
)
MODEL_DOWNLOAD_TIMEOUT = 30.0

# SMA Data Manager (EDMM) signature
SMA_SIGNATURE_ADDRESS = 30051
SMA_DEVICE_CLASSES = frozenset({8128, 9397, 19135})

# Schneider Conext XW gateway probe
CONEXT_PROBE_ADDRESS = 0
CONEXT_PROBE_COUNT = 8

# Connection pool
POOL_IDLE_TIMEOUT = 20.0
POOL_SWEEP_INTERVAL = 5.0
POOL_COOLDOWN = 0.1

# Transport fault text that means the link is unusable
FATAL_ERROR_MARKERS = (
    "ECONNRESET",
    "EPIPE",
    "ETIMEDOUT",
    "Port Not Open",
    "Transaction timed out",
)

# Retry scheduler
BASE_RETRY_DELAY = 1.0
MAX_RETRY_DELAY = 30.0
MIN_POLL_INTERVAL = 1.0

# Unit IDs tried first during discovery
PRIORITY_UNIT_IDS = (1, 126, 2, 3, 4, 100, 200)
CONEXT_PRIORITY_UNIT_IDS = tuple(range(10, 36)) + (1, 2, 201)

# Points never scaled by their sunssf
SCALE_EXEMPT_POINTS = ("W", "VA")

# Model map marker recording how complete a cached map is
MAP_SCAN_KEY = "scan"
SCAN_FULL = "full"
SCAN_PARTIAL = "partial"
SCAN_VENDOR = "vendor"

LOCAL_SUBNET_TOKENS = ("0.0.0.0/0", "0.0.0.0")

# Finished scan sessions kept for status queries
DISCOVERY_SESSION_HISTORY = 20
