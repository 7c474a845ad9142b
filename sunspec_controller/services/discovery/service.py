"""
Discovery Service

Drives a network scan end to end:
1. Expand the address and unit ID specifications
2. Probe each host's Modbus port
3. Classify responding unit IDs by dialect
4. Read each unit's identity (fast model scan) into the address cache
"""

import asyncio

from sunspec_controller.common.exceptions import SunSpecError
from sunspec_controller.common.config import DiscoverySettings
from sunspec_controller.common.logging_setup import get_service_logger
from sunspec_controller.services.device.service import DeviceService
from .address_range import expand_address_range, expand_unit_ids
from .network_scanner import NetworkScanner
from .scan_session import DiscoveredUnit, ScanSession, ScanStatus

logger = get_service_logger("discovery")


class DiscoveryService:
    """
    Network discovery of SunSpec and vendor-dialect Modbus devices.

    Every run gets its own ScanSession; runs can be awaited directly with
    discover() or started in the background with start_discovery().
    """

    def __init__(
        self,
        device_service: DeviceService,
        settings: DiscoverySettings | None = None,
    ):
        self._devices = device_service
        self.settings = settings or device_service.settings.discovery
        self.scanner = NetworkScanner(
            device_service.connection_pool,
            port_check_timeout=self.settings.port_check_timeout_s,
        )
        self._sessions: dict[str, ScanSession] = {}
        self._tasks: dict[str, asyncio.Task] = {}

    async def discover(
        self,
        address_spec: str | None = None,
        port: int | None = None,
        timeout: float | None = None,
        unit_id_spec: str | None = None,
        session: ScanSession | None = None,
    ) -> ScanSession:
        """
        Scan an address range for devices.

        Args:
            address_spec: Hosts to scan (see address_range); settings default if None
            port: Modbus TCP port; settings default if None
            timeout: Per-request timeout in seconds; settings default if None
            unit_id_spec: Unit IDs to try; empty scans the default list
            session: Existing session handle to report into

        Returns:
            The session, finished, with results per host and unit ID

        Raises:
            ConfigError: malformed address specification
        """
        session = session or ScanSession()
        self._register(session)

        address_spec = address_spec if address_spec is not None else self.settings.address_range
        port = port if port is not None else self.settings.port
        timeout = timeout if timeout is not None else self.settings.timeout_s
        unit_id_spec = unit_id_spec if unit_id_spec is not None else self.settings.unit_ids

        session.mark_started()
        try:
            hosts = expand_address_range(address_spec)
            unit_ids = expand_unit_ids(unit_id_spec)
            session.total_hosts = len(hosts)
            session.update(f"Scanning {len(hosts)} hosts on port {port}", ScanStatus.SCANNING)
            logger.info(
                f"Discovery {session.scan_id} started: {len(hosts)} hosts, port {port}, "
                f"unit IDs {unit_ids or 'default'}"
            )

            for host in hosts:
                if session.should_stop():
                    break
                await self._scan_host(session, host, port, timeout, unit_ids)

        except Exception as e:
            session.last_error = str(e)
            session.mark_finished(ScanStatus.FAILED, f"Scan failed: {e}")
            logger.error(f"Discovery {session.scan_id} failed: {e}")
            self._prune()
            raise

        if session.should_stop():
            session.mark_finished(ScanStatus.CANCELLED, "Scan Cancelled")
        else:
            session.mark_finished(ScanStatus.COMPLETED, "Scan Complete")

        logger.info(
            f"Discovery {session.scan_id} {session.status.value}: "
            f"{session.units_found} units on {len(session.results)} hosts"
        )
        self._prune()
        return session

    async def _scan_host(
        self,
        session: ScanSession,
        host: str,
        port: int,
        timeout: float,
        unit_ids: list[int] | None,
    ) -> None:
        session.update(f"Checking {host}:{port}...")
        responsive = await self.scanner.probe_host(host, port)
        session.scanned_hosts += 1
        if not responsive:
            return

        session.responsive_hosts += 1
        session.update(f"Scanning IDs on {host}...")
        matches = await self.scanner.classify_units(
            host,
            port,
            timeout,
            unit_ids,
            should_stop=session.should_stop,
            on_status=session.update,
        )

        for match in matches:
            if session.should_stop():
                break

            session.update(
                f"Reading Model Data from {host}:{match.unit_id}...",
                ScanStatus.IDENTIFYING,
            )
            try:
                models = await self._devices.scan_device_models(
                    host, port, match.unit_id, timeout, fast=True, dialect=match.dialect
                )
            except SunSpecError as e:
                logger.warning(f"Identity read failed for {host}:{port}/{match.unit_id}: {e}")
                models = {}

            session.add_result(DiscoveredUnit(
                host=host,
                port=port,
                unit_id=match.unit_id,
                dialect=match.dialect,
                models=models,
            ))
            session.update(f"Found unit {match.unit_id} at {host}", ScanStatus.SCANNING)

    def start_discovery(
        self,
        address_spec: str | None = None,
        port: int | None = None,
        timeout: float | None = None,
        unit_id_spec: str | None = None,
    ) -> ScanSession:
        """Run discover() in a background task and return its session at once."""
        session = ScanSession()
        self._register(session)
        task = asyncio.create_task(
            self.discover(address_spec, port, timeout, unit_id_spec, session=session)
        )
        self._tasks[session.scan_id] = task
        task.add_done_callback(lambda t: self._on_task_done(session.scan_id, t))
        return session

    def _on_task_done(self, scan_id: str, task: asyncio.Task) -> None:
        self._tasks.pop(scan_id, None)
        # Retrieve the exception; failures are already recorded on the session
        if not task.cancelled() and task.exception() is not None:
            logger.debug(f"Background discovery {scan_id} ended with {task.exception()!r}")
        self._prune()

    def _register(self, session: ScanSession) -> None:
        self._prune()
        self._sessions[session.scan_id] = session

    def _prune(self) -> None:
        """Drop the oldest finished sessions beyond the configured history."""
        finished = [
            scan_id for scan_id, s in self._sessions.items()
            if s.is_complete and scan_id not in self._tasks
        ]
        excess = len(finished) - self.settings.session_history
        for scan_id in finished[:max(excess, 0)]:
            del self._sessions[scan_id]

    def get_session(self, scan_id: str) -> ScanSession | None:
        return self._sessions.get(scan_id)

    def cancel(self, scan_id: str) -> bool:
        session = self._sessions.get(scan_id)
        if session is None or session.is_complete:
            return False
        session.cancel()
        session.update("Cancelling...")
        return True

    async def wait(self, scan_id: str) -> ScanSession | None:
        """Wait for a background scan to finish."""
        session = self._sessions.get(scan_id)
        task = self._tasks.get(scan_id)
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)
        return session

    def list_sessions(self) -> list[ScanSession]:
        return list(self._sessions.values())
