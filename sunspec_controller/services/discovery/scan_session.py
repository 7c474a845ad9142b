"""
Scan Session

Per-invocation discovery state: cancellation flag, status text,
progress counters and results. Each discovery run owns one session, so
concurrent scans never share state.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable
from uuid import uuid4

from sunspec_controller.common.config import Dialect


class ScanStatus(str, Enum):
    """Status of a discovery scan"""
    PENDING = "pending"
    SCANNING = "scanning"
    IDENTIFYING = "identifying"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass
class DiscoveredUnit:
    """A unit that answered with a known dialect"""
    host: str
    port: int
    unit_id: int
    dialect: Dialect
    models: dict[str, Any] = field(default_factory=dict)

    @property
    def info(self) -> dict[str, Any]:
        return self.models.get("info", {})

    def to_dict(self) -> dict[str, Any]:
        return {
            "host": self.host,
            "port": self.port,
            "unit_id": self.unit_id,
            "dialect": self.dialect.value,
            "models": self.models,
        }


StatusListener = Callable[["ScanSession"], None]


@dataclass
class ScanSession:
    """Handle for one discovery run"""
    scan_id: str = field(default_factory=lambda: uuid4().hex)
    status: ScanStatus = ScanStatus.PENDING
    status_text: str = ""
    total_hosts: int = 0
    scanned_hosts: int = 0
    responsive_hosts: int = 0
    results: dict[str, dict[int, DiscoveredUnit]] = field(default_factory=dict)
    started_at: datetime | None = None
    completed_at: datetime | None = None
    last_error: str | None = None
    listeners: list[StatusListener] = field(default_factory=list)
    _cancel_requested: bool = field(default=False, repr=False)

    def cancel(self) -> None:
        """Ask the scan to stop before the next host or unit ID."""
        self._cancel_requested = True

    def should_stop(self) -> bool:
        return self._cancel_requested

    @property
    def is_running(self) -> bool:
        return self.status in (ScanStatus.SCANNING, ScanStatus.IDENTIFYING)

    @property
    def is_complete(self) -> bool:
        return self.status in (
            ScanStatus.COMPLETED,
            ScanStatus.CANCELLED,
            ScanStatus.FAILED,
        )

    @property
    def units_found(self) -> int:
        return sum(len(units) for units in self.results.values())

    def update(self, text: str, status: ScanStatus | None = None) -> None:
        """Set status text (and optionally status) and notify listeners."""
        self.status_text = text
        if status is not None:
            self.status = status
        for listener in list(self.listeners):
            listener(self)

    def add_result(self, unit: DiscoveredUnit) -> None:
        self.results.setdefault(unit.host, {})[unit.unit_id] = unit

    def to_dict(self) -> dict[str, Any]:
        return {
            "scan_id": self.scan_id,
            "status": self.status.value,
            "status_text": self.status_text,
            "total_hosts": self.total_hosts,
            "scanned_hosts": self.scanned_hosts,
            "responsive_hosts": self.responsive_hosts,
            "units_found": self.units_found,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "last_error": self.last_error,
            "results": {
                host: {str(uid): unit.to_dict() for uid, unit in units.items()}
                for host, units in self.results.items()
            },
        }

    def mark_started(self) -> None:
        self.started_at = datetime.now(timezone.utc)

    def mark_finished(self, status: ScanStatus, text: str) -> None:
        self.completed_at = datetime.now(timezone.utc)
        self.update(text, status)
