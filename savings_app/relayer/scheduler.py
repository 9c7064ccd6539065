"""
Relayer scheduler.

Discovery runs at a low frequency and execution at a high frequency, each in
its own thread so a slow scan never delays due executions. Both loops share
one stop event and exit at their next wait.
"""

import threading
from typing import Callable, Optional

from ..logging.config import get_relayer_logger
from .discovery import DiscoveryResult, PlanDiscovery
from .executor import ExecutionResult, PlanExecutor

logger = get_relayer_logger(__name__)


class RelayerScheduler:
    """Drives discovery and execution loops."""

    def __init__(
        self,
        discovery: PlanDiscovery,
        executor: PlanExecutor,
        discovery_interval: float = 300.0,
        execution_interval: float = 60.0
    ):
        self.discovery = discovery
        self.executor = executor
        self.discovery_interval = discovery_interval
        self.execution_interval = execution_interval
        self._stop = threading.Event()
        self._threads: list[threading.Thread] = []

    @property
    def running(self) -> bool:
        return any(thread.is_alive() for thread in self._threads)

    def run_once(self) -> tuple[list[DiscoveryResult], list[ExecutionResult]]:
        """One discovery catch-up followed by one execution pass."""
        return self.discovery.run_until_caught_up(), self.executor.run_once()

    def start(self) -> None:
        if self.running:
            raise RuntimeError("Scheduler already running")
        self._stop.clear()
        self._threads = [
            threading.Thread(
                target=self._loop,
                args=("discovery", self.discovery.run_until_caught_up, self.discovery_interval),
                name="relayer-discovery",
                daemon=True,
            ),
            threading.Thread(
                target=self._loop,
                args=("execution", self.executor.run_once, self.execution_interval),
                name="relayer-execution",
                daemon=True,
            ),
        ]
        for thread in self._threads:
            thread.start()
        logger.info("Relayer scheduler started",
                    discovery_interval=self.discovery_interval,
                    execution_interval=self.execution_interval)

    def stop(self, timeout: Optional[float] = 30.0) -> None:
        self._stop.set()
        for thread in self._threads:
            thread.join(timeout=timeout)
        self.executor.close()
        logger.info("Relayer scheduler stopped")

    def request_stop(self) -> None:
        """Signal both loops to exit; safe to call from a signal handler."""
        self._stop.set()

    def wait(self) -> None:
        """Block until ``stop`` is called."""
        self._stop.wait()

    def _loop(self, name: str, task: Callable[[], object], interval: float) -> None:
        while not self._stop.is_set():
            try:
                task()
            except Exception as e:
                # Retried on the next tick
                logger.error(f"{name.capitalize()} pass failed",
                             loop=name, error_type=type(e).__name__, error=str(e),
                             exc_info=True)
            self._stop.wait(interval)
