from __future__ import annotations

import time
from pathlib import Path

import allure
import pytest

from mapart.builder.pool import WorkerPool
from mapart.config import PoolSettings, Settings, WorkerSettings
from mapart.ledger.repository import LedgerRepository
from mapart.site import SiteLayout
from mapart.world.base import BlockPos

pytestmark = [
    allure.epic("Builder"),
    allure.feature("Worker Pool"),
]

TALL_LAYOUT = SiteLayout(origin=BlockPos(0, 64, 0), grid_width=8, grid_height=16, band_width=4)


def _pool_settings(db_path: Path, layout: SiteLayout) -> Settings:
    return Settings(
        db_path=db_path,
        worker=WorkerSettings(
            tick_seconds=0.05,
            startup_stagger_seconds=0,
            pause_poll_seconds=0.1,
        ),
        pool=PoolSettings(worker_names=("builder-1", "builder-2"), shutdown_grace_seconds=10),
        layout=layout,
    )


def test_pool_refuses_double_start(tmp_path: Path) -> None:
    pool = WorkerPool(_pool_settings(tmp_path / "pool.db", TALL_LAYOUT))
    pool._processes = [object()]  # type: ignore[list-item]

    with pytest.raises(RuntimeError, match="already running"):
        pool.start()


def test_pool_workers_share_bands_and_release_on_shutdown(
    tmp_path: Path,
    grid_factory,
) -> None:
    db_path = tmp_path / "pool.db"
    ledger = LedgerRepository(db_path)
    ledger.init_schema()
    ledger.start_project(
        source="art.png",
        algorithm="none",
        grid=grid_factory(8, 16),
        band_width=4,
    )

    pool = WorkerPool(_pool_settings(db_path, TALL_LAYOUT), log_level="WARNING")
    pool.start()
    try:
        deadline = time.monotonic() + 60
        while time.monotonic() < deadline:
            if ledger.completion_stats().is_finished:
                break
            time.sleep(0.2)
        assert sorted(pool.alive()) == ["builder-1", "builder-2"]
    finally:
        exit_codes = pool.shutdown()

    stats = ledger.completion_stats()
    assert stats.completed_bands == 4
    assert stats.placed_cells == 128
    assert exit_codes == [0, 0]
    workers = {
        event.worker_id for event in ledger.list_band_events(limit=100)
        if event.event_type == "claimed"
    }
    assert workers <= {"builder-1", "builder-2"}
    assert ledger.list_bands()[0].status.value == "completed"
    ledger.close()
