"""
Structured Logging Setup

All engine loggers live under the "sunspec" logger, which owns the only
handler. Output goes to stderr so JSON printed on stdout by the CLI stays
parseable.

Environment:
    SUNSPEC_LOG_LEVEL   DEBUG, INFO (default), WARNING, ERROR
    SUNSPEC_LOG_FORMAT  json (default) or text
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any

from .config import DeviceIdentity
from .exceptions import CommunicationError, OperationTimeoutError

ROOT_LOGGER = "sunspec"

# Attributes every LogRecord has; anything else came in through `extra`
_RECORD_ATTRS = frozenset(logging.LogRecord("", 0, "", 0, "", (), None).__dict__) | {
    "message",
    "asctime",
    "taskName",
}

_configured = False


class JsonFormatter(logging.Formatter):
    """One JSON object per record, extra fields flattened in"""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        log_data.update(
            (key, value) for key, value in record.__dict__.items() if key not in _RECORD_ATTRS
        )
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_data, default=str)


class ServiceLoggerAdapter(logging.LoggerAdapter):
    """Adds the service name to every record, keeping caller-supplied extras"""

    def process(self, msg: str, kwargs: dict) -> tuple[str, dict]:
        kwargs["extra"] = {**self.extra, **kwargs.get("extra", {})}
        return msg, kwargs


def configure_logging(
    log_level: str | None = None,
    json_format: bool | None = None,
) -> logging.Logger:
    """
    Install the handler on the "sunspec" logger.

    Unset arguments fall back to SUNSPEC_LOG_LEVEL / SUNSPEC_LOG_FORMAT.
    Calling again replaces the handler, so the CLI can override the
    environment after services created their loggers.
    """
    global _configured

    if log_level is None:
        log_level = os.environ.get("SUNSPEC_LOG_LEVEL", "INFO")
    if json_format is None:
        json_format = os.environ.get("SUNSPEC_LOG_FORMAT", "json").lower() == "json"

    handler = logging.StreamHandler(sys.stderr)
    if json_format:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter(
            "%(asctime)s [%(levelname)s] %(service)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        ))

    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))
    logger.handlers.clear()
    logger.addHandler(handler)
    logger.propagate = False

    _configured = True
    return logger


def get_service_logger(service_name: str) -> ServiceLoggerAdapter:
    """Logger adapter for one service, e.g. "device.pool"."""
    if not _configured:
        configure_logging()
    logger = logging.getLogger(f"{ROOT_LOGGER}.{service_name}")
    return ServiceLoggerAdapter(logger, {"service": service_name})


def _point_fields(identity: DeviceIdentity, model_id: Any, point: str) -> dict[str, Any]:
    return {
        "host": identity.host,
        "port": identity.port,
        "unit_id": identity.unit_id,
        "model": model_id,
        "point": point,
    }


def log_point_read(
    logger: logging.LoggerAdapter,
    identity: DeviceIdentity,
    model_id: Any,
    point: str,
    value: Any,
) -> None:
    logger.debug(
        f"Read {identity} {model_id}.{point} = {value}",
        extra={**_point_fields(identity, model_id, point), "value": value},
    )


def log_point_error(
    logger: logging.LoggerAdapter,
    identity: DeviceIdentity,
    model_id: Any,
    point: str,
    error: Exception,
) -> None:
    """A single point failed while the link stayed usable"""
    logger.warning(
        f"Failed to read {identity} {model_id}.{point}: {error}",
        extra={**_point_fields(identity, model_id, point), "error_type": type(error).__name__},
    )


def log_point_write(
    logger: logging.LoggerAdapter,
    identity: DeviceIdentity,
    model_id: Any,
    point: str,
    value: Any,
    address: int,
) -> None:
    logger.info(
        f"Write {identity} {model_id}.{point}@{address} = {value}",
        extra={**_point_fields(identity, model_id, point), "value": value, "address": address},
    )


def log_transport_fault(
    logger: logging.LoggerAdapter,
    identity: DeviceIdentity,
    operation: str,
    error: Exception,
) -> None:
    """Timeouts are routine on lossy links and log as warnings; other faults as errors."""
    fields = {
        "host": identity.host,
        "port": identity.port,
        "unit_id": identity.unit_id,
        "operation": operation,
        "error_type": type(error).__name__,
    }
    if isinstance(error, CommunicationError):
        fields["fault"] = error.kind.value if error.kind else None

    log_method = logger.warning if isinstance(error, OperationTimeoutError) else logger.error
    log_method(f"{operation} failed on {identity}: {error}", extra=fields)
