"""Controllers for mapart CLI commands."""

from __future__ import annotations

import logging
import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from mapart.builder.pool import WorkerPool
from mapart.builder.worker import create_worker
from mapart.config import Settings
from mapart.imaging.dithering import quantize
from mapart.imaging.loader import load_pixels
from mapart.imaging.preview import save_preview
from mapart.ledger.models import BandStatus, CompletionStats
from mapart.ledger.repository import LedgerRepository
from mapart.world.registry import open_world

logger = logging.getLogger(__name__)

POOL_POLL_SECONDS = 1.0


@dataclass(slots=True)
class StartCommand:
    """CLI input for starting a new project from an image."""

    db_path: Path | None
    image: str
    algorithm: str
    launch: bool = False
    log_level: str = "INFO"
    preview: Path | None = None


@dataclass(slots=True)
class ProjectCommand:
    """CLI input for commands that only need the ledger."""

    db_path: Path | None


@dataclass(slots=True)
class ContinueCommand:
    """CLI input for resuming a paused project."""

    db_path: Path | None
    launch: bool = False
    log_level: str = "INFO"


@dataclass(slots=True)
class BandsCommand:
    """CLI input for band listing."""

    db_path: Path | None
    status: str | None
    events: int


@dataclass(slots=True)
class WorkerCommand:
    """CLI input for one foreground worker."""

    db_path: Path | None
    name: str | None
    index: int
    pool_size: int
    max_ticks: int | None = None


@dataclass(slots=True)
class PoolCommand:
    """CLI input for running the configured worker pool."""

    db_path: Path | None
    log_level: str = "INFO"


class MapartCliController:
    """Translate CLI commands into ledger, imaging and worker calls."""

    def start(self, command: StartCommand) -> list[str]:
        settings = _settings(command.db_path)
        layout = settings.layout
        pixels = load_pixels(
            command.image,
            width=layout.grid_width,
            height=layout.grid_height,
            assets_dir=settings.assets_dir,
        )
        grid = quantize(pixels, command.algorithm)
        preview = save_preview(grid, command.preview) if command.preview is not None else None
        with _repository(settings) as repository:
            project = repository.start_project(
                source=command.image,
                algorithm=command.algorithm,
                grid=grid,
                band_width=layout.band_width,
            )

        lines = [
            f"Started project: {project.image_source}",
            f"Algorithm: {project.algorithm}",
            f"Grid: {project.grid_width}x{project.grid_height}",
            f"Bands: {project.total_bands} (width {project.band_width})",
        ]
        if preview is not None:
            lines.append(f"Preview: {preview}")
        if command.launch:
            lines.extend(self._run_pool(settings, log_level=command.log_level))
        return lines

    def pause(self, command: ProjectCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _repository(settings) as repository:
            if not repository.set_paused(True):
                return ["No project to pause."]
        return ["Project paused. Workers keep their bands and idle until `continue`."]

    def resume(self, command: ContinueCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _repository(settings) as repository:
            if not repository.set_paused(False):
                return ["No project to continue. Use `start` first."]
        lines = ["Project resumed."]
        if command.launch:
            lines.extend(self._run_pool(settings, log_level=command.log_level))
        return lines

    def clear(self, command: ProjectCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _repository(settings) as repository:
            repository.clear_project()
        return ["Project cleared."]

    def status(self, command: ProjectCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _repository(settings) as repository:
            stats = repository.completion_stats()
        return _render_status(stats)

    def bands(self, command: BandsCommand) -> list[str]:
        settings = _settings(command.db_path)
        status_filter = BandStatus(command.status.lower()) if command.status else None
        with _repository(settings) as repository:
            bands = repository.list_bands(status=status_filter)
            events = repository.list_band_events(limit=command.events) if command.events else []

        lines = [f"Bands: {len(bands)}"]
        for band in bands:
            heartbeat = band.heartbeat_at.isoformat() if band.heartbeat_at else "-"
            lines.append(
                f"  #{band.band_index} status={band.status.value} "
                f"holder={band.assigned_to or '-'} heartbeat={heartbeat}",
            )
        if events:
            lines.append(f"Recent events: {len(events)}")
            for event in events:
                lines.append(
                    f"  {event.created_at.isoformat()} band=#{event.band_index} "
                    f"{event.event_type} worker={event.worker_id or '-'}",
                )
        return lines

    def run_worker(self, command: WorkerCommand) -> list[str]:
        settings = _settings(command.db_path)
        if command.name is not None:
            worker_id = command.name
        elif 0 <= command.index < len(settings.pool.worker_names):
            worker_id = settings.pool.worker_names[command.index]
        else:
            raise ValueError(
                f"Worker index {command.index} has no configured name; pass --name.",
            )

        with _repository(settings) as repository:
            world = open_world(worker_id, settings)
            try:
                worker = create_worker(
                    settings,
                    ledger=repository,
                    world=world,
                    worker_id=worker_id,
                    index=command.index,
                    pool_size=command.pool_size,
                )
                summary = worker.run_loop(max_ticks=command.max_ticks)
            finally:
                world.close()

        return [
            f"Worker {worker_id} summary: "
            f"ticks={summary.ticks} claimed={summary.bands_claimed} "
            f"adopted={summary.bands_adopted} completed={summary.bands_completed} "
            f"released={summary.bands_released} passes={summary.passes} "
            f"restocks={summary.restocks} restock_failures={summary.restock_failures} "
            f"claims_lost={summary.claims_lost} ledger_errors={summary.ledger_errors}",
        ]

    def run_pool(self, command: PoolCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _repository(settings):
            pass
        return self._run_pool(settings, log_level=command.log_level)

    def _run_pool(self, settings: Settings, *, log_level: str) -> list[str]:
        pool = WorkerPool(settings, log_level=log_level)
        pool.start()
        try:
            while pool.alive():
                time.sleep(POOL_POLL_SECONDS)
        except KeyboardInterrupt:
            logger.info("Interrupted; stopping %d workers.", len(pool.processes))
        finally:
            exit_codes = pool.shutdown()

        failed = sum(1 for code in exit_codes if code not in (0, None))
        return [f"Pool stopped: workers={len(exit_codes)} failed={failed}"]


def _render_status(stats: CompletionStats) -> list[str]:
    project = stats.project
    if project is None:
        return ["No project."]
    state = "paused" if project.is_paused else ("active" if project.is_active else "inactive")
    lines = [
        f"Project: {project.image_source} ({project.algorithm})",
        f"State: {state}",
        f"Grid: {project.grid_width}x{project.grid_height}",
        f"Cells placed: {stats.placed_cells}/{stats.total_cells} "
        f"({stats.percent_complete:.1f}%)",
        f"Bands: total={stats.total_bands} pending={stats.pending_bands} "
        f"assigned={stats.assigned_bands} completed={stats.completed_bands}",
    ]
    if stats.is_finished:
        lines.append("All bands completed.")
    return lines


def _settings(db_path: Path | None) -> Settings:
    settings = Settings.from_env(db_path=db_path)
    settings.validate()
    return settings


@contextmanager
def _repository(settings: Settings) -> Iterator[LedgerRepository]:
    repository = LedgerRepository(
        settings.db_path,
        sqlite_busy_timeout_ms=settings.sqlite_busy_timeout_ms,
    )
    repository.init_schema()
    try:
        yield repository
    finally:
        repository.close()
