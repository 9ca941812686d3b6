"""Tick-driven worker that claims bands, builds them and restocks."""

from __future__ import annotations

import logging
import math
import signal
import time
from collections import Counter
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum

from mapart.builder.placer import StripPlacer
from mapart.builder.restocker import Restocker
from mapart.config import Settings, WorkerSettings
from mapart.errors import PersistenceError
from mapart.ledger.models import ProjectView
from mapart.ledger.repository import LedgerRepository
from mapart.world.base import WorldSession

logger = logging.getLogger(__name__)


class WorkerState(str, Enum):
    """In-memory worker lifecycle states."""

    IDLE = "idle"
    CLAIMING = "claiming"
    BUILDING = "building"
    RESTOCKING = "restocking"


@dataclass(slots=True)
class WorkerRunSummary:
    """Aggregate worker counters for CLI reporting."""

    ticks: int = 0
    bands_claimed: int = 0
    bands_adopted: int = 0
    bands_completed: int = 0
    bands_released: int = 0
    passes: int = 0
    restocks: int = 0
    restock_failures: int = 0
    claims_lost: int = 0
    ledger_errors: int = 0


class BuilderWorker:
    """One builder identity driving a world session through the band lifecycle.

    ``tick`` performs one step of the state machine. ``run_loop`` calls it on a
    fixed interval until a stop is requested, rides out transient ledger
    errors, and always releases a held band on the way out.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        ledger: LedgerRepository,
        world: WorldSession,
        placer: StripPlacer,
        restocker: Restocker,
        worker_id: str,
        index: int = 0,
        pool_size: int = 1,
        settings: WorkerSettings | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.ledger = ledger
        self.world = world
        self.placer = placer
        self.restocker = restocker
        self.worker_id = worker_id
        self.index = index
        self.pool_size = pool_size
        self.settings = settings or WorkerSettings()
        self.state = WorkerState.IDLE
        self.current_band: int | None = None
        self.summary = WorkerRunSummary()
        self._stop_requested = False
        self._adoption_checked = False
        self._claim_lost = False
        self._cooldown_ticks = 0
        self._consecutive_restock_failures = 0
        self._waiting_logged = False
        self._project_checked_at = 0.0
        self._project_halted = False
        self._consecutive_errors = 0
        self._sleep = sleep

        self.placer.should_yield = self._should_yield
        self.placer.heartbeat = self._heartbeat
        self.restocker.heartbeat = self._heartbeat

    @property
    def cooldown_ticks(self) -> int:
        return self._cooldown_ticks

    # -- loop -----------------------------------------------------------------

    def tick(self) -> WorkerState:
        """Run one pass of the state machine and return the resulting state."""

        self.summary.ticks += 1
        project = self.ledger.get_project_state()
        if not _is_buildable(project):
            if self.state is not WorkerState.IDLE:
                logger.info("[%s] Project inactive or paused; idling.", self.worker_id)
            self.placer.pause()
            self.state = WorkerState.IDLE
            self._reconcile_claim()
            return self.state

        self._reconcile_claim()

        if self.current_band is None and self._cooldown_ticks > 0:
            self._cooldown_ticks -= 1
            self.state = WorkerState.IDLE
            return self.state

        if self.state is WorkerState.IDLE and self.current_band is not None:
            self.state = WorkerState.BUILDING
            self.placer.resume()

        if self.current_band is None:
            self._claim()

        if self.state is WorkerState.BUILDING:
            self._build()
        elif self.state is WorkerState.RESTOCKING:
            self._restock()
        return self.state

    def run_loop(self, *, max_ticks: int | None = None) -> WorkerRunSummary:
        """Tick until stopped (or ``max_ticks``); the held band is released on exit.

        A tick that fails on the ledger is retried with capped exponential backoff;
        ``max_consecutive_errors`` failures in a row end the loop with the error.
        """

        with self._signal_handlers():
            try:
                stagger = self.settings.startup_stagger_seconds * self.index
                if stagger > 0:
                    logger.info("[%s] Waiting %.1fs before starting.", self.worker_id, stagger)
                    self._sleep_with_stop(stagger)
                while not self._stop_requested:
                    if max_ticks is not None and self.summary.ticks >= max_ticks:
                        break
                    try:
                        self.tick()
                    except PersistenceError as error:
                        self._sleep_with_stop(self._ledger_error_backoff(error))
                        continue
                    self._consecutive_errors = 0
                    self._sleep_with_stop(self.settings.tick_seconds)
            finally:
                self.shutdown()
        return self.summary

    def request_stop(self) -> None:
        self._stop_requested = True
        self.placer.stop()

    def shutdown(self) -> None:
        """Stop the placement engine and release any held band."""

        self.placer.stop()
        band_index = self.current_band
        if band_index is None:
            self.state = WorkerState.IDLE
            return
        self.current_band = None
        self.state = WorkerState.IDLE
        attempts = max(1, self.settings.release_attempts)
        for attempt in range(1, attempts + 1):
            try:
                self.ledger.release_band(band_index, worker_id=self.worker_id)
            except PersistenceError as error:
                if attempt == attempts:
                    logger.error(
                        "[%s] Could not release band %d on shutdown after %d attempts, "
                        "stale recovery will free it: %s",
                        self.worker_id,
                        band_index,
                        attempts,
                        error,
                    )
                    return
                delay = self._backoff_seconds(attempt)
                logger.warning(
                    "[%s] Releasing band %d failed (attempt %d/%d), retrying in %.1fs: %s",
                    self.worker_id,
                    band_index,
                    attempt,
                    attempts,
                    delay,
                    error,
                )
                self._sleep(delay)
                continue
            break
        self.summary.bands_released += 1
        logger.info("[%s] Released band %d on shutdown.", self.worker_id, band_index)

    # -- steps ----------------------------------------------------------------

    def _claim(self) -> None:
        if not self._adoption_checked:
            self._adoption_checked = True
            adopted = self.ledger.find_band_assigned_to(self.worker_id)
            if adopted is not None:
                self._hold(adopted)
                self.summary.bands_adopted += 1
                logger.info("[%s] Resuming band %d from a previous run.", self.worker_id, adopted)
                return

        if self.settings.stale_band_seconds > 0:
            self.ledger.release_stale_bands(
                stale_after=timedelta(seconds=self.settings.stale_band_seconds),
            )

        self.state = WorkerState.CLAIMING
        band_index = self.ledger.claim_band(self.worker_id)
        if band_index is not None:
            self._hold(band_index)
            self.summary.bands_claimed += 1
            logger.info("[%s] Claimed band %d.", self.worker_id, band_index)
            return

        stats = self.ledger.completion_stats()
        if stats.is_finished:
            if not self._waiting_logged:
                logger.info(
                    "[%s] No bands left (%d/%d cells placed); waiting for a new project.",
                    self.worker_id,
                    stats.placed_cells,
                    stats.total_cells,
                )
                self._waiting_logged = True
            self.state = WorkerState.IDLE

    def _build(self) -> None:
        band_index = self.current_band
        if band_index is None:
            self.state = WorkerState.CLAIMING
            return

        required = self._required_materials(band_index)
        if not required:
            self.ledger.complete_band(band_index, worker_id=self.worker_id)
            self.summary.bands_completed += 1
            logger.info("[%s] Completed band %d.", self.worker_id, band_index)
            self.current_band = None
            self.state = WorkerState.CLAIMING
            return

        if not self._has_materials(required):
            logger.info(
                "[%s] Missing materials for band %d; restocking.",
                self.worker_id,
                band_index,
            )
            self.state = WorkerState.RESTOCKING
            return

        self.summary.passes += 1
        finished = self.placer.build_band(band_index)
        if self._claim_lost:
            self._drop_lost_claim()
        elif not finished:
            logger.debug("[%s] Pass over band %d interrupted.", self.worker_id, band_index)

    def _restock(self) -> None:
        band_index = self.current_band
        if band_index is None:
            self.state = WorkerState.IDLE
            return

        self.summary.restocks += 1
        restocked = self.restocker.restock(self._required_materials(band_index))
        if self._claim_lost:
            self._drop_lost_claim()
            return
        if restocked:
            self._consecutive_restock_failures = 0
            self.state = WorkerState.BUILDING
            return

        self.summary.restock_failures += 1
        self._consecutive_restock_failures += 1
        self.ledger.release_band(band_index, worker_id=self.worker_id)
        self.summary.bands_released += 1
        self.current_band = None
        self.state = WorkerState.IDLE
        self._cooldown_ticks = self._cooldown_ticks_for(self._consecutive_restock_failures)
        logger.warning(
            "[%s] Restock failed; released band %d and cooling down for %d ticks.",
            self.worker_id,
            band_index,
            self._cooldown_ticks,
        )

    # -- helpers --------------------------------------------------------------

    def _required_materials(self, band_index: int) -> Counter[str]:
        return Counter(
            placement.material for placement in self.ledger.placements_for_band(band_index)
        )

    def _has_materials(self, required: Counter[str]) -> bool:
        inventory = self.world.inventory()
        return all(inventory.get(material, 0) >= count for material, count in required.items())

    def _cooldown_ticks_for(self, failures: int) -> int:
        base = self.settings.restock_cooldown_seconds
        seconds = min(
            base * 2 ** max(0, failures - 1),
            max(base, self.settings.restock_cooldown_max_seconds),
        )
        if seconds <= 0:
            return 0
        if self.settings.tick_seconds <= 0:
            return 1
        return math.ceil(seconds / self.settings.tick_seconds)

    def _backoff_seconds(self, failures: int) -> float:
        base = self.settings.error_backoff_seconds
        return min(
            base * 2 ** max(0, failures - 1),
            max(base, self.settings.error_backoff_max_seconds),
        )

    def _ledger_error_backoff(self, error: PersistenceError) -> float:
        """Count a failed tick; re-raise once the ledger keeps failing."""

        self._consecutive_errors += 1
        self.summary.ledger_errors += 1
        limit = self.settings.max_consecutive_errors
        if self._consecutive_errors >= limit:
            logger.error(
                "[%s] Giving up after %d consecutive ledger errors: %s",
                self.worker_id,
                self._consecutive_errors,
                error,
            )
            raise error
        delay = self._backoff_seconds(self._consecutive_errors)
        logger.warning(
            "[%s] Ledger error (%d/%d), retrying in %.1fs: %s",
            self.worker_id,
            self._consecutive_errors,
            limit,
            delay,
            error,
        )
        return delay

    def _reconcile_claim(self) -> None:
        if self.current_band is None:
            return
        if not self.ledger.touch_band(self.current_band, worker_id=self.worker_id):
            self._drop_lost_claim()

    def _hold(self, band_index: int) -> None:
        self.current_band = band_index
        self.state = WorkerState.BUILDING
        self._claim_lost = False
        self._waiting_logged = False
        self.placer.resume()

    def _drop_lost_claim(self) -> None:
        logger.warning(
            "[%s] Band %d is no longer assigned to this worker; dropping it.",
            self.worker_id,
            self.current_band,
        )
        self.summary.claims_lost += 1
        self.current_band = None
        self._claim_lost = False
        self.state = WorkerState.IDLE

    def _heartbeat(self) -> None:
        if self.current_band is None or self._claim_lost:
            return
        if not self.ledger.touch_band(self.current_band, worker_id=self.worker_id):
            self._claim_lost = True
            self.placer.stop()

    def _should_yield(self) -> bool:
        if self._stop_requested:
            return True
        now = time.monotonic()
        if now - self._project_checked_at >= self.settings.pause_poll_seconds:
            self._project_checked_at = now
            self._project_halted = not _is_buildable(self.ledger.get_project_state())
        return self._project_halted

    def _sleep_with_stop(self, seconds: float) -> None:
        deadline = time.monotonic() + seconds
        while not self._stop_requested and time.monotonic() < deadline:
            time.sleep(min(0.1, max(0.0, deadline - time.monotonic())))

    @contextmanager
    def _signal_handlers(self) -> Iterator[None]:
        if not hasattr(signal, "SIGINT"):
            yield
            return

        original_sigint = signal.getsignal(signal.SIGINT)
        original_sigterm = signal.getsignal(signal.SIGTERM)

        def _handler(signum: int, _: object | None) -> None:
            try:
                name = signal.Signals(signum).name
            except ValueError:
                name = str(signum)
            logger.info("[%s] Received %s; shutting down.", self.worker_id, name)
            self.request_stop()

        try:
            signal.signal(signal.SIGINT, _handler)
            signal.signal(signal.SIGTERM, _handler)
        except ValueError:
            # Signal handlers can only be installed in main thread.
            yield
            return
        try:
            yield
        finally:
            signal.signal(signal.SIGINT, original_sigint)
            signal.signal(signal.SIGTERM, original_sigterm)


def _is_buildable(project: ProjectView | None) -> bool:
    return project is not None and project.is_active and not project.is_paused


def create_worker(
    settings: Settings,
    *,
    ledger: LedgerRepository,
    world: WorldSession,
    worker_id: str,
    index: int = 0,
    pool_size: int = 1,
) -> BuilderWorker:
    """Wire a worker with a placer and restocker built from ``settings``."""

    placement = settings.placement
    placer = StripPlacer(
        world=world,
        ledger=ledger,
        layout=settings.layout,
        batch_rows=placement.batch_rows,
        reach=placement.reach,
        max_attempts=placement.max_attempts,
        retry_backoff_seconds=placement.retry_backoff_seconds,
        navigation_timeout_seconds=placement.navigation_timeout_seconds,
        pause_poll_seconds=settings.worker.pause_poll_seconds,
    )
    restocker = Restocker(
        world=world,
        layout=settings.layout,
        navigation_timeout_seconds=placement.navigation_timeout_seconds,
    )
    return BuilderWorker(
        ledger=ledger,
        world=world,
        placer=placer,
        restocker=restocker,
        worker_id=worker_id,
        index=index,
        pool_size=pool_size,
        settings=settings.worker,
    )
