"""
Retry Scheduler for Periodic Reads

Provides RetryScheduler, which runs a read cycle on a steady interval and
switches to exponential backoff while the cycle keeps failing.

- Success: next cycle after the steady interval, failure count reset
- Failure: next cycle after min(base * 2^(failures-1), cap)
- Retries are unbounded
- A cycle never starts before the previous one has finished

Usage:
    async def read_inverter():
        return await devices.read_point("192.168.1.10", 502, 1, 103, "W")

    scheduler = RetryScheduler(read_inverter, 10.0, name="inverter")
    await scheduler.start()

    # Later:
    scheduler.stop()
    print(scheduler.health.consecutive_failures)
"""

import asyncio
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

from sunspec_controller.common import constants
from sunspec_controller.common.exceptions import OperationTimeoutError
from sunspec_controller.common.logging_setup import get_service_logger

logger = get_service_logger("scheduler")


def compute_backoff_delay(
    failures: int,
    base_delay: float = constants.BASE_RETRY_DELAY,
    max_delay: float = constants.MAX_RETRY_DELAY,
) -> float:
    """Delay before the next attempt after `failures` consecutive failures."""
    if failures <= 0:
        return 0.0
    return min(base_delay * 2 ** (failures - 1), max_delay)


@dataclass
class ConnectionHealth:
    """Failure tracking for one scheduled reader"""
    consecutive_failures: int = 0
    last_success: datetime | None = None
    last_error_time: datetime | None = None
    last_error: str | None = None
    current_backoff: float = 0.0

    def record_success(self) -> None:
        self.consecutive_failures = 0
        self.current_backoff = 0.0
        self.last_success = datetime.now(timezone.utc)

    def record_failure(
        self,
        error: Exception,
        base_delay: float = constants.BASE_RETRY_DELAY,
        max_delay: float = constants.MAX_RETRY_DELAY,
    ) -> float:
        self.consecutive_failures += 1
        self.last_error = str(error)
        self.last_error_time = datetime.now(timezone.utc)
        self.current_backoff = compute_backoff_delay(
            self.consecutive_failures, base_delay, max_delay
        )
        return self.current_backoff

    def to_dict(self) -> dict:
        return {
            "consecutive_failures": self.consecutive_failures,
            "last_success": self.last_success.isoformat() if self.last_success else None,
            "last_error_time": self.last_error_time.isoformat() if self.last_error_time else None,
            "last_error": self.last_error,
            "current_backoff_s": self.current_backoff,
        }


class RetryScheduler:
    """
    Periodic executor with failure-adaptive backoff.

    Attributes:
        interval: Steady interval in seconds between successful cycles
        action: Async function run each cycle
        health: Failure and success tracking
    """

    def __init__(
        self,
        action: Callable[[], Awaitable[Any]],
        interval_seconds: float,
        base_delay: float = constants.BASE_RETRY_DELAY,
        max_delay: float = constants.MAX_RETRY_DELAY,
        name: str = "unnamed",
        on_result: Callable[[Any], None] | None = None,
    ):
        """
        Initialize a retry scheduler.

        Args:
            action: Async function to call each cycle
            interval_seconds: Steady interval, at least MIN_POLL_INTERVAL
            base_delay: First retry delay after a failure
            max_delay: Retry delay cap
            name: Name for logging/identification
            on_result: Receives the action result after each successful cycle
        """
        if interval_seconds < constants.MIN_POLL_INTERVAL:
            logger.warning(
                f"Scheduler '{name}' interval {interval_seconds}s is too fast, "
                f"enforcing minimum {constants.MIN_POLL_INTERVAL}s"
            )
            interval_seconds = constants.MIN_POLL_INTERVAL

        self.action = action
        self.interval = interval_seconds
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.name = name
        self.on_result = on_result
        self.health = ConnectionHealth()

        self._running = False
        self._task: asyncio.Task | None = None
        self._execution_count = 0
        self._last_execution_time = 0.0

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def is_backing_off(self) -> bool:
        return self.health.consecutive_failures > 0

    async def start(self) -> None:
        """Start the loop in a background task. The first cycle runs immediately."""
        if self._running:
            return

        self._running = True
        self._task = asyncio.create_task(self._run())

    def stop(self) -> None:
        """Stop the loop and any pending retry."""
        self._running = False
        if self._task:
            self._task.cancel()
            self._task = None

    async def run_cycle(self) -> float:
        """
        Run the action once and update health.

        Returns:
            Seconds to wait before the next cycle
        """
        start = time.monotonic()
        try:
            result = await self.action()
            if self.on_result:
                self.on_result(result)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            delay = self.health.record_failure(e, self.base_delay, self.max_delay)
            log_method = logger.warning if isinstance(e, OperationTimeoutError) else logger.error
            log_method(
                f"Scheduler '{self.name}' cycle failed "
                f"({self.health.consecutive_failures} in a row), retry in {delay:.1f}s: {e}"
            )
            return delay
        finally:
            self._last_execution_time = time.monotonic() - start

        if self.health.consecutive_failures:
            logger.info(
                f"Scheduler '{self.name}' recovered after "
                f"{self.health.consecutive_failures} failures"
            )
        self.health.record_success()
        self._execution_count += 1
        return self.interval

    async def _run(self) -> None:
        while self._running:
            delay = await self.run_cycle()
            if not self._running:
                break
            try:
                await asyncio.sleep(delay)
            except asyncio.CancelledError:
                break

    @property
    def execution_count(self) -> int:
        """Total number of successful executions."""
        return self._execution_count

    def get_stats(self) -> dict:
        """Get scheduler statistics for observability."""
        return {
            "name": self.name,
            "interval_s": self.interval,
            "execution_count": self._execution_count,
            "last_execution_s": round(self._last_execution_time, 3),
            "health": self.health.to_dict(),
        }


class SchedulerGroup:
    """
    Manage multiple retry schedulers together.

    Provides a single interface to start/stop multiple schedulers
    and aggregate their statistics.
    """

    def __init__(
        self,
        base_delay: float = constants.BASE_RETRY_DELAY,
        max_delay: float = constants.MAX_RETRY_DELAY,
    ):
        self._schedulers: dict[str, RetryScheduler] = {}
        self._base_delay = base_delay
        self._max_delay = max_delay

    def add(
        self,
        name: str,
        interval_seconds: float,
        action: Callable[[], Awaitable[Any]],
        on_result: Callable[[Any], None] | None = None,
    ) -> RetryScheduler:
        """Add a scheduler to the group."""
        scheduler = RetryScheduler(
            action,
            interval_seconds,
            base_delay=self._base_delay,
            max_delay=self._max_delay,
            name=name,
            on_result=on_result,
        )
        self._schedulers[name] = scheduler
        return scheduler

    async def start_all(self) -> None:
        """Start all schedulers."""
        for scheduler in self._schedulers.values():
            await scheduler.start()

    def stop_all(self) -> None:
        """Stop all schedulers."""
        for scheduler in self._schedulers.values():
            scheduler.stop()

    def get_stats(self) -> dict:
        """Get aggregated statistics for all schedulers."""
        return {
            name: scheduler.get_stats()
            for name, scheduler in self._schedulers.items()
        }

    def get(self, name: str) -> RetryScheduler | None:
        """Get a specific scheduler by name."""
        return self._schedulers.get(name)
