from __future__ import annotations

import allure

from mapart.builder.restocker import Restocker
from mapart.site import SiteLayout
from mapart.world.base import BlockPos
from mapart.world.simulated import SimulatedWorld

pytestmark = [
    allure.epic("Builder"),
    allure.feature("Restocking"),
]


def _restocker(world: SimulatedWorld, layout: SiteLayout) -> Restocker:
    return Restocker(world=world, layout=layout, navigation_timeout_seconds=5.0)


def test_restock_discards_then_withdraws_exact_counts(
    world: SimulatedWorld,
    small_layout: SiteLayout,
) -> None:
    world.give("dirt", 5)
    world.give("white_carpet", 3)

    ok = _restocker(world, small_layout).restock({"gray_carpet": 10, "white_carpet": 100})

    assert ok is True
    assert world.inventory() == {"white_carpet": 100, "gray_carpet": 10}
    assert world.tossed == {"dirt": 5, "white_carpet": 3}
    assert world.navigations == [
        small_layout.disposal_position,
        BlockPos(-2, 65, 3),
        BlockPos(-10, 65, 3),
    ]
    assert world.opened_containers == world.closed_containers == 2


def test_shortfall_fails_round_but_other_materials_are_collected(
    small_layout: SiteLayout,
) -> None:
    world = SimulatedWorld.for_layout(small_layout, username="builder-1", stacks_per_container=1)

    ok = _restocker(world, small_layout).restock({"white_carpet": 400, "gray_carpet": 10})

    assert ok is False
    assert world.inventory() == {"white_carpet": 64 * 5, "gray_carpet": 10}
    assert world.opened_containers == world.closed_containers == 6


def test_stack_scan_stops_at_first_missing_container(
    world: SimulatedWorld,
    small_layout: SiteLayout,
) -> None:
    base = small_layout.store_base("white_carpet")
    assert base is not None
    gap = base.offset(0, 2, 0)
    world.containers.pop(gap)
    world.blocks.pop(gap)
    per_container = 27 * 64

    ok = _restocker(world, small_layout).restock({"white_carpet": per_container * 3})

    assert ok is False
    assert world.inventory() == {"white_carpet": per_container * 2}


def test_movement_failure_to_store_counts_as_shortfall(
    world: SimulatedWorld,
    small_layout: SiteLayout,
) -> None:
    white_base = small_layout.store_base("white_carpet")
    world.navigation_fault = lambda goal: goal == white_base

    ok = _restocker(world, small_layout).restock({"white_carpet": 5, "gray_carpet": 5})

    assert ok is False
    assert world.inventory() == {"gray_carpet": 5}


def test_unreachable_disposal_point_fails_the_round(
    world: SimulatedWorld,
    small_layout: SiteLayout,
) -> None:
    world.give("white_carpet", 7)
    world.navigation_fault = lambda goal: goal == small_layout.disposal_position

    ok = _restocker(world, small_layout).restock({"white_carpet": 5})

    assert ok is False
    assert world.inventory() == {"white_carpet": 7}
    assert world.opened_containers == 0


def test_material_without_store_is_a_shortfall(
    world: SimulatedWorld,
    small_layout: SiteLayout,
) -> None:
    ok = _restocker(world, small_layout).restock({"glass": 1, "white_carpet": 1})

    assert ok is False
    assert world.inventory() == {"white_carpet": 1}


def test_heartbeat_runs_before_every_walk(
    world: SimulatedWorld,
    small_layout: SiteLayout,
) -> None:
    beats: list[int] = []
    restocker = _restocker(world, small_layout)
    restocker.heartbeat = lambda: beats.append(len(world.navigations))

    assert restocker.restock({"gray_carpet": 10, "white_carpet": 100}) is True

    assert beats == [0, 1, 2]


def test_discard_faces_the_configured_direction(small_layout: SiteLayout) -> None:
    layout = SiteLayout.from_dict(
        {**small_layout.to_dict(), "disposal_yaw": 90, "disposal_pitch": -60},
    )
    world = SimulatedWorld.for_layout(layout, username="builder-1")
    world.give("dirt", 1)

    assert _restocker(world, layout).discard_inventory() is True

    assert world.looks == [(90.0, -60.0)]
    assert world.tossed == {"dirt": 1}
