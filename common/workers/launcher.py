"""
Worker launcher: telemetry, signals and lifecycle for long-running workers.
"""

import asyncio
import signal
from typing import Callable, Optional

from common.core.telemetry import _initialize_telemetry, get_logger
from common.workers.base_worker import PeriodicWorker


class WorkerLauncher:
    """Runs a worker until SIGINT/SIGTERM, then lets it finish its pass."""

    def __init__(self):
        self.logger = get_logger(__name__)
        self.worker_instance: Optional[PeriodicWorker] = None

    def _request_stop(self, signum: int) -> None:
        self.logger.info(f"Received signal {signum}, initiating graceful shutdown...")
        if self.worker_instance:
            asyncio.ensure_future(self.worker_instance.stop())

    def _register_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for signum in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(signum, self._request_stop, signum)

    async def _run_worker_async(
        self, worker_instance: PeriodicWorker, worker_name: str, once: bool
    ):
        self.worker_instance = worker_instance

        if once:
            self.logger.info(f"Running a single {worker_name} pass...")
            await worker_instance.run_once()
            return

        self._register_signal_handlers()
        try:
            self.logger.info(f"Starting {worker_name}...")
            await worker_instance.start()
        except Exception as e:
            self.logger.error(f"Worker failed with error: {e}", exc_info=True)
            raise
        finally:
            self.logger.info("Worker shutdown complete")

    def run(
        self,
        worker_factory: Callable[[], PeriodicWorker],
        worker_name: str,
        once: bool = False,
    ):
        """
        Main entry point to run a worker.

        Args:
            worker_factory: Function/class that creates the worker instance
            worker_name: Human readable name for logging
            once: Run a single pass and exit (cron-style scheduling)
        """
        _initialize_telemetry()

        self.logger.info(f"Configuring {worker_name}...")
        worker_instance = worker_factory()

        asyncio.run(self._run_worker_async(worker_instance, worker_name, once))
