"""
Modbus Connection Pool

Keeps one session per host:port and serializes every action on it.
Actions submitted for the same endpoint run one at a time in submission
order, with a short cool-down between them. Sessions that hit a fatal
transport fault are dropped and reopened on the next action.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, TypeVar

from sunspec_controller.common import constants
from sunspec_controller.common.exceptions import FaultKind
from sunspec_controller.common.logging_setup import get_service_logger
from .modbus_client import ModbusSession

logger = get_service_logger("device.pool")

T = TypeVar("T")

SessionFactory = Callable[[str, int, float], ModbusSession]
Action = Callable[[ModbusSession], Awaitable[T]]

FATAL_FAULT_KINDS = frozenset({
    FaultKind.CONNECTION_RESET,
    FaultKind.BROKEN_PIPE,
    FaultKind.TIMEOUT,
    FaultKind.NOT_CONNECTED,
})


def is_fatal_error(error: BaseException) -> bool:
    """
    True when the error means the session can no longer be used.

    Typed faults are decided by their FaultKind. Anything else falls back
    to matching well-known transport error text.
    """
    kind = getattr(error, "kind", None)
    if isinstance(kind, FaultKind):
        return kind in FATAL_FAULT_KINDS
    if isinstance(error, (asyncio.TimeoutError, ConnectionResetError, BrokenPipeError)):
        return True
    message = str(error)
    return any(marker in message for marker in constants.FATAL_ERROR_MARKERS)


@dataclass
class PoolEntry:
    """Pooled session and the queue guarding it"""
    key: str
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    session: ModbusSession | None = None
    last_used: float = field(default_factory=time.monotonic)
    pending: int = 0
    use_count: int = 0


class ConnectionPool:
    """
    Modbus connection pool.

    - One entry per host:port, created on first use
    - Strict FIFO execution per entry, entries independent of each other
    - Reconnect on demand when the pooled session is gone or closed
    - Invalidate on fatal faults, leave state alone on device-level errors
    - Background sweep of idle entries
    """

    def __init__(
        self,
        session_factory: SessionFactory | None = None,
        idle_timeout: float = constants.POOL_IDLE_TIMEOUT,
        sweep_interval: float = constants.POOL_SWEEP_INTERVAL,
        cooldown: float = constants.POOL_COOLDOWN,
        default_timeout: float = constants.DEFAULT_TIMEOUT,
    ):
        self._session_factory = session_factory or ModbusSession
        self._entries: dict[str, PoolEntry] = {}
        self._idle_timeout = idle_timeout
        self._sweep_interval = sweep_interval
        self._cooldown = cooldown
        self._default_timeout = default_timeout
        self._cleanup_task: asyncio.Task | None = None
        self._running = False

    @staticmethod
    def key_for(host: str, port: int) -> str:
        return f"{host}:{port}"

    async def start(self) -> None:
        """Start the idle sweep"""
        if self._running:
            return
        self._running = True
        self._cleanup_task = asyncio.create_task(self._cleanup_loop())
        logger.info("Connection pool started")

    async def stop(self) -> None:
        """Stop the sweep and close all sessions"""
        self._running = False

        if self._cleanup_task:
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass
            self._cleanup_task = None

        for entry in self._entries.values():
            self._close_entry_session(entry)
        self._entries.clear()

        logger.info("Connection pool stopped")

    async def submit(
        self,
        host: str,
        port: int,
        unit_id: int,
        action: Action,
        timeout: float | None = None,
    ) -> Any:
        """
        Run an action against the pooled session for host:port.

        Args:
            host: Target host
            port: Target TCP port
            unit_id: Unit ID selected before the action runs
            action: Coroutine function receiving the session
            timeout: Per-request timeout in seconds (pool default if None)

        Returns:
            Whatever the action returns

        Raises:
            CommunicationError: the session could not be opened
            Exception: anything the action raised, unchanged
        """
        key = self.key_for(host, port)
        entry = self._entries.get(key)
        if entry is None:
            entry = PoolEntry(key=key)
            self._entries[key] = entry

        timeout = timeout if timeout is not None else self._default_timeout
        entry.pending += 1
        try:
            async with entry.lock:
                try:
                    session = await self._ensure_session(entry, host, port, timeout)
                    session.select_unit(unit_id)
                    entry.use_count += 1

                    try:
                        return await action(session)
                    except Exception as e:
                        if is_fatal_error(e):
                            logger.info(f"Fatal error on {key}, invalidating session: {e}")
                            self._invalidate_entry(entry)
                        raise
                finally:
                    entry.last_used = time.monotonic()
                    if self._cooldown > 0:
                        await asyncio.sleep(self._cooldown)
        finally:
            entry.pending -= 1

    def invalidate(self, host: str, port: int) -> None:
        """Close and forget the pooled session for host:port. Idempotent."""
        entry = self._entries.get(self.key_for(host, port))
        if entry is not None:
            self._invalidate_entry(entry)

    async def _ensure_session(
        self,
        entry: PoolEntry,
        host: str,
        port: int,
        timeout: float,
    ) -> ModbusSession:
        session = entry.session
        if session is not None and session.is_open:
            session.set_timeout(timeout)
            return session

        if session is not None:
            self._close_entry_session(entry)

        session = self._session_factory(host, port, timeout)
        await session.connect()
        session.add_close_listener(lambda closed: self._on_session_closed(entry, closed))
        entry.session = session
        logger.debug(f"Created new connection: {entry.key}")
        return session

    def _on_session_closed(self, entry: PoolEntry, session: ModbusSession) -> None:
        if entry.session is session:
            entry.session = None
            logger.debug(f"Session closed: {entry.key}")

    def _invalidate_entry(self, entry: PoolEntry) -> None:
        if entry.session is not None:
            self._close_entry_session(entry)
            logger.debug(f"Invalidated connection: {entry.key}")

    def _close_entry_session(self, entry: PoolEntry) -> None:
        session, entry.session = entry.session, None
        if session is None:
            return
        try:
            session.close()
        except Exception as e:
            logger.warning(f"Error closing session {entry.key}: {e}")

    async def _cleanup_loop(self) -> None:
        """Periodic cleanup of idle connections"""
        while self._running:
            await asyncio.sleep(self._sweep_interval)

            try:
                self.cleanup_idle_connections()
            except Exception as e:
                logger.warning(f"Error in cleanup loop: {e}")

    def cleanup_idle_connections(self) -> int:
        """
        Remove entries idle longer than the idle timeout and not in use.

        Returns:
            Number of entries removed
        """
        now = time.monotonic()
        to_remove = [
            key
            for key, entry in self._entries.items()
            if entry.pending == 0
            and not entry.lock.locked()
            and now - entry.last_used > self._idle_timeout
        ]

        for key in to_remove:
            entry = self._entries.pop(key)
            self._close_entry_session(entry)
            logger.debug(f"Closed idle connection: {key}")

        if to_remove:
            logger.info(f"Cleaned up {len(to_remove)} idle connections")
        return len(to_remove)

    def has_entry(self, host: str, port: int) -> bool:
        return self.key_for(host, port) in self._entries

    def get_session(self, host: str, port: int) -> ModbusSession | None:
        entry = self._entries.get(self.key_for(host, port))
        return entry.session if entry else None

    def get_stats(self) -> dict:
        """Get connection pool statistics"""
        now = time.monotonic()
        return {
            "total_connections": len(self._entries),
            "connections": {
                key: {
                    "use_count": entry.use_count,
                    "connected": entry.session is not None and entry.session.is_open,
                    "pending": entry.pending,
                    "idle_s": round(now - entry.last_used, 1),
                }
                for key, entry in self._entries.items()
            },
        }
