from __future__ import annotations

import allure
import pytest

from mapart.builder.placer import StripPlacer, needs_sneak_to_place_on
from mapart.ledger.models import Placement
from mapart.ledger.repository import LedgerRepository
from mapart.site import SiteLayout
from mapart.world.base import Block, BlockPos
from mapart.world.simulated import GROUND, SimulatedWorld

pytestmark = [
    allure.epic("Builder"),
    allure.feature("Batch Placement"),
]

MATERIALS = ("white_carpet", "light_gray_carpet", "gray_carpet")


@pytest.fixture()
def project(ledger: LedgerRepository, grid_factory) -> LedgerRepository:
    ledger.start_project(source="art.png", algorithm="none", grid=grid_factory(8, 8), band_width=4)
    return ledger


@pytest.fixture()
def stocked_world(world: SimulatedWorld) -> SimulatedWorld:
    for material in MATERIALS:
        world.give(material, 64)
    return world


def _placer(
    world: SimulatedWorld,
    ledger: LedgerRepository,
    layout: SiteLayout,
    **kwargs,
) -> StripPlacer:
    kwargs.setdefault("sleep", lambda _: None)
    return StripPlacer(world=world, ledger=ledger, layout=layout, **kwargs)


def _cells(*coords: tuple[int, int]) -> list[Placement]:
    return [Placement(x=x, z=z, material="white_carpet") for x, z in coords]


def test_three_cells_in_two_rows_form_one_batch(
    stocked_world: SimulatedWorld,
    project: LedgerRepository,
    small_layout: SiteLayout,
) -> None:
    placer = _placer(stocked_world, project, small_layout)

    batches = placer._group_into_batches(_cells((1, 0), (0, 1), (0, 0)))

    assert len(batches) == 1
    assert [[(cell.x, cell.z) for cell in row] for row in batches[0].rows] == [
        [(0, 0), (0, 1)],
        [(1, 0)],
    ]


def test_batches_hold_four_consecutive_rows(
    stocked_world: SimulatedWorld,
    project: LedgerRepository,
    small_layout: SiteLayout,
) -> None:
    placer = _placer(stocked_world, project, small_layout)
    cells = _cells(*[(x, z) for x in range(6) for z in (3, 0)])

    batches = placer._group_into_batches(cells)

    assert [len(batch.rows) for batch in batches] == [4, 2]
    assert [cell.x for cell in batches[1].cells] == [4, 4, 5, 5]
    assert [cell.z for cell in batches[0].rows[0]] == [0, 3]


def test_stand_position_is_first_perimeter_spot_within_reach(
    stocked_world: SimulatedWorld,
    project: LedgerRepository,
    small_layout: SiteLayout,
) -> None:
    placer = _placer(stocked_world, project, small_layout)
    batch = placer._group_into_batches(project.placements_for_band(0))[0]

    stand = placer._find_batch_stand_position(batch)

    assert stand == BlockPos(-4, 64, -2)
    targets = [small_layout.cell_position(cell.x, cell.z) for cell in batch.cells]
    assert max(stand.distance_to(target) for target in targets) <= 4.5


def test_stand_position_skips_blocked_footprints(
    stocked_world: SimulatedWorld,
    project: LedgerRepository,
    small_layout: SiteLayout,
) -> None:
    stocked_world.set_block(BlockPos(-4, 65, -2), GROUND)
    placer = _placer(stocked_world, project, small_layout)
    batch = placer._group_into_batches(project.placements_for_band(0))[0]

    assert placer._find_batch_stand_position(batch) == BlockPos(-4, 64, -1)


def test_occupiable_accepts_carpet_floor_only(
    stocked_world: SimulatedWorld,
    project: LedgerRepository,
    small_layout: SiteLayout,
) -> None:
    placer = _placer(stocked_world, project, small_layout)
    stocked_world.set_block(BlockPos(-1, 64, -1), Block(name="red_carpet", is_empty=False))
    stocked_world.set_block(BlockPos(-2, 64, -2), Block(name="dirt", is_empty=False))

    assert placer._is_occupiable(BlockPos(-1, 64, -1)) is True
    assert placer._is_occupiable(BlockPos(-2, 64, -2)) is False
    assert placer._is_occupiable(BlockPos(-3, 63, -3)) is False


def test_build_band_places_every_cell_from_two_stand_positions(
    stocked_world: SimulatedWorld,
    project: LedgerRepository,
    small_layout: SiteLayout,
) -> None:
    placer = _placer(stocked_world, project, small_layout)

    assert placer.build_band(0) is True

    assert project.placements_for_band(0) == []
    assert project.completion_stats().placed_cells == 32
    assert stocked_world.navigations == [BlockPos(-4, 64, -2), BlockPos(-6, 64, -4)]
    summary = placer.last_summary
    assert summary is not None
    assert summary.placed == 32
    assert summary.batches == 2
    assert summary.fallback_batches == 0
    block = stocked_world.block_at(small_layout.cell_position(3, 2))
    assert block is not None
    assert block.name == MATERIALS[(3 + 2) % 3]


def test_three_movement_failures_skip_cell_and_batch_continues(
    stocked_world: SimulatedWorld,
    project: LedgerRepository,
    small_layout: SiteLayout,
) -> None:
    failures = {"left": 3}

    def fail_first_three(_: BlockPos) -> bool:
        if failures["left"] > 0:
            failures["left"] -= 1
            return True
        return False

    sleeps: list[float] = []
    stocked_world.navigation_fault = fail_first_three
    placer = _placer(
        stocked_world,
        project,
        small_layout,
        retry_backoff_seconds=0.5,
        sleep=sleeps.append,
    )

    assert placer.build_band(0) is True

    remaining = project.placements_for_band(0)
    assert [(cell.x, cell.z) for cell in remaining] == [(0, 0)]
    assert sleeps == [0.5, 0.5]
    summary = placer.last_summary
    assert summary is not None
    assert summary.skipped_cells == [(0, 0)]
    assert summary.placed == 31


def test_correct_block_is_marked_and_wrong_block_is_replaced(
    stocked_world: SimulatedWorld,
    project: LedgerRepository,
    small_layout: SiteLayout,
) -> None:
    correct = MATERIALS[(1 + 1) % 3]
    stocked_world.set_block(small_layout.cell_position(1, 1), Block(name=correct, is_empty=False))
    stocked_world.set_block(small_layout.cell_position(2, 2), Block(name="dirt", is_empty=False))
    placer = _placer(stocked_world, project, small_layout)

    assert placer.build_band(0) is True

    summary = placer.last_summary
    assert summary is not None
    assert summary.already_placed == 1
    assert summary.placed == 31
    replaced = stocked_world.block_at(small_layout.cell_position(2, 2))
    assert replaced is not None
    assert replaced.name == MATERIALS[(2 + 2) % 3]


def test_sneak_is_engaged_over_interactive_blocks_and_always_released(
    stocked_world: SimulatedWorld,
    project: LedgerRepository,
    small_layout: SiteLayout,
) -> None:
    target = small_layout.cell_position(0, 0)
    stocked_world.add_container(target.offset(0, -1, 0), [])
    stocked_world.placement_fault = lambda pos: pos == target
    placer = _placer(stocked_world, project, small_layout)

    assert placer.build_band(0) is True

    assert stocked_world.sneak_log == [True, False, True, False, True, False]
    assert stocked_world.sneaking is False
    assert [(cell.x, cell.z) for cell in project.placements_for_band(0)] == [(0, 0)]


def test_needs_sneak_for_containers_and_shulker_boxes() -> None:
    assert needs_sneak_to_place_on(Block(name="chest", is_empty=False)) is True
    assert needs_sneak_to_place_on(Block(name="lime_shulker_box", is_empty=False)) is True
    assert needs_sneak_to_place_on(Block(name="stone", is_empty=False)) is False
    assert needs_sneak_to_place_on(None) is False


def test_unreachable_batches_fall_back_to_single_cells(
    stocked_world: SimulatedWorld,
    project: LedgerRepository,
    small_layout: SiteLayout,
) -> None:
    placer = _placer(stocked_world, project, small_layout, reach=1.0)

    assert placer.build_band(1) is True

    summary = placer.last_summary
    assert summary is not None
    assert summary.fallback_batches == summary.batches == 2
    assert summary.placed == 32
    assert project.placements_for_band(1) == []


def test_should_yield_stops_the_pass_between_cells(
    stocked_world: SimulatedWorld,
    project: LedgerRepository,
    small_layout: SiteLayout,
) -> None:
    calls = {"count": 0}

    def yield_after_five() -> bool:
        calls["count"] += 1
        return calls["count"] > 5

    placer = _placer(stocked_world, project, small_layout)
    placer.should_yield = yield_after_five

    assert placer.build_band(0) is False
    assert placer.is_stopped is True
    assert len(project.placements_for_band(0)) == 27

    placer.should_yield = None
    assert placer.build_band(0) is True
    assert project.placements_for_band(0) == []


def test_paused_engine_waits_until_resumed(
    stocked_world: SimulatedWorld,
    project: LedgerRepository,
    small_layout: SiteLayout,
) -> None:
    polls: list[float] = []
    placer = _placer(stocked_world, project, small_layout, pause_poll_seconds=0.25)

    def resume_on_poll(seconds: float) -> None:
        polls.append(seconds)
        placer.resume()

    placer._sleep = resume_on_poll
    placer.pause()

    assert placer.build_band(0) is True
    assert polls == [0.25]
    assert placer.is_paused is False


def test_heartbeat_runs_before_every_cell_and_retry(
    stocked_world: SimulatedWorld,
    project: LedgerRepository,
    small_layout: SiteLayout,
) -> None:
    failures = {"left": 2}

    def fail_twice(_: BlockPos) -> bool:
        if failures["left"] > 0:
            failures["left"] -= 1
            return True
        return False

    beats: list[int] = []
    stocked_world.navigation_fault = fail_twice
    placer = _placer(stocked_world, project, small_layout)
    placer.heartbeat = lambda: beats.append(1)

    assert placer.build_band(0) is True

    assert len(beats) == 32 + 2
    assert project.placements_for_band(0) == []


def test_heartbeat_that_stops_the_engine_ends_the_pass(
    stocked_world: SimulatedWorld,
    project: LedgerRepository,
    small_layout: SiteLayout,
) -> None:
    beats: list[int] = []
    placer = _placer(stocked_world, project, small_layout)

    def lose_claim_on_third_beat() -> None:
        beats.append(1)
        if len(beats) == 3:
            placer.stop()

    placer.heartbeat = lose_claim_on_third_beat

    assert placer.build_band(0) is False
    assert len(project.placements_for_band(0)) == 30
