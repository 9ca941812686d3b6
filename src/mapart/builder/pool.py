"""Fixed pool of worker processes sharing one ledger."""

from __future__ import annotations

import logging
import multiprocessing
import os
import signal
import time
from multiprocessing.process import BaseProcess
from pathlib import Path

from mapart.builder.worker import create_worker
from mapart.config import Settings
from mapart.ledger.repository import LedgerRepository
from mapart.logs import configure_logging
from mapart.world.registry import open_world

logger = logging.getLogger(__name__)


def run_worker_process(
    settings_json: str,
    db_path: str,
    index: int,
    pool_size: int,
    log_level: str = "INFO",
) -> None:
    """Entry point of one spawned worker process.

    A ``PersistenceError`` escaping the loop ends the process with a non-zero
    exit code after the held band has been released.
    """

    settings = Settings.from_json(settings_json)
    worker_id = settings.pool.worker_names[index]
    configure_logging(log_level, worker_name=worker_id)

    ledger = LedgerRepository(
        Path(db_path),
        sqlite_busy_timeout_ms=settings.sqlite_busy_timeout_ms,
    )
    world = open_world(worker_id, settings)
    try:
        worker = create_worker(
            settings,
            ledger=ledger,
            world=world,
            worker_id=worker_id,
            index=index,
            pool_size=pool_size,
        )
        summary = worker.run_loop()
        logger.info(
            "[%s] Worker exited: ticks=%d claimed=%d completed=%d released=%d",
            worker_id,
            summary.ticks,
            summary.bands_claimed,
            summary.bands_completed,
            summary.bands_released,
        )
    finally:
        world.close()
        ledger.close()


class WorkerPool:
    """Spawns one process per configured worker name.

    The schema must be migrated before ``start``; workers never migrate.
    """

    def __init__(self, settings: Settings, *, log_level: str = "INFO") -> None:
        self.settings = settings
        self.log_level = log_level
        self._context = multiprocessing.get_context("spawn")
        self._processes: list[BaseProcess] = []

    @property
    def processes(self) -> list[BaseProcess]:
        return list(self._processes)

    def start(self) -> None:
        if self._processes:
            raise RuntimeError("Worker pool is already running.")
        names = self.settings.pool.worker_names
        settings_json = self.settings.to_json()
        for index, name in enumerate(names):
            process = self._context.Process(
                target=run_worker_process,
                args=(settings_json, str(self.settings.db_path), index, len(names), self.log_level),
                name=name,
            )
            process.start()
            self._processes.append(process)
            logger.info("Started worker %s (pid=%s).", name, process.pid)

    def join(self, timeout: float | None = None) -> None:
        for process in self._processes:
            process.join(timeout)

    def alive(self) -> list[str]:
        return [process.name for process in self._processes if process.is_alive()]

    def shutdown(self) -> list[int | None]:
        """Ask every worker to stop, then terminate stragglers after the grace period."""

        for process in self._processes:
            if process.is_alive() and process.pid is not None:
                os.kill(process.pid, signal.SIGINT)

        deadline = time.monotonic() + self.settings.pool.shutdown_grace_seconds
        for process in self._processes:
            process.join(max(0.0, deadline - time.monotonic()))

        for process in self._processes:
            if process.is_alive():
                logger.warning("Worker %s ignored shutdown; terminating.", process.name)
                process.terminate()
                process.join()

        exit_codes = [process.exitcode for process in self._processes]
        self._processes = []
        return exit_codes
