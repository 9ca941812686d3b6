"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import pytest

from mapart.imaging.palette import PALETTE
from mapart.ledger.models import GridCell
from mapart.ledger.repository import LedgerRepository
from mapart.site import SiteLayout
from mapart.world.base import BlockPos
from mapart.world.simulated import SimulatedWorld


def make_grid(width: int, height: int, *, colors: int = 3) -> list[list[GridCell]]:
    """Deterministic ``grid[z][x]`` cycling through the first ``colors`` palette entries."""

    return [
        [PALETTE[(x + z) % colors].to_grid_cell() for x in range(width)] for z in range(height)
    ]


@pytest.fixture()
def ledger(tmp_path: Path) -> Iterator[LedgerRepository]:
    repository = LedgerRepository(tmp_path / "ledger.db")
    repository.init_schema()
    try:
        yield repository
    finally:
        repository.close()


@pytest.fixture()
def small_layout() -> SiteLayout:
    return SiteLayout(origin=BlockPos(0, 64, 0), grid_width=8, grid_height=8, band_width=4)


@pytest.fixture()
def world(small_layout: SiteLayout) -> SimulatedWorld:
    return SimulatedWorld.for_layout(small_layout, username="builder-1")


@pytest.fixture()
def grid_factory():
    return make_grid
