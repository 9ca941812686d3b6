from __future__ import annotations

import allure
import pytest

from mapart.imaging.palette import PALETTE
from mapart.site import SiteLayout, StoreSpot
from mapart.world.base import BlockPos

pytestmark = [
    allure.epic("Configuration"),
    allure.feature("Site Layout"),
]


def test_cells_extend_towards_negative_x_and_z(small_layout: SiteLayout) -> None:
    assert small_layout.cell_position(0, 0) == BlockPos(0, 64, 0)
    assert small_layout.cell_position(3, 5) == BlockPos(-3, 64, -5)
    assert small_layout.min_bound == BlockPos(-7, 64, -7)
    assert small_layout.max_bound == BlockPos(0, 64, 0)


def test_contains_checks_footprint_only(small_layout: SiteLayout) -> None:
    assert small_layout.contains(BlockPos(-7, 200, 0)) is True
    assert small_layout.contains(BlockPos(1, 64, 0)) is False
    assert small_layout.contains(BlockPos(0, 64, -8)) is False


def test_default_stores_follow_palette_order() -> None:
    layout = SiteLayout()

    assert layout.store_order == tuple(color.material for color in PALETTE)
    assert layout.store_base("white_carpet") == BlockPos(61, 282, 578)
    assert layout.store_base("light_gray_carpet") == BlockPos(57, 282, 578)
    assert layout.store_base("glass") is None
    assert layout.disposal_position == BlockPos(64, 281, 577)


def test_validate_rejects_duplicate_store_materials() -> None:
    layout = SiteLayout(
        stores=(
            StoreSpot("white_carpet", BlockPos(0, 1, 0)),
            StoreSpot("white_carpet", BlockPos(4, 1, 0)),
        ),
    )

    with pytest.raises(ValueError, match="once"):
        layout.validate()


def test_from_dict_rejects_non_list_stores() -> None:
    with pytest.raises(ValueError, match="stores"):
        SiteLayout.from_dict({"stores": {"material": "white_carpet"}})


def test_disposal_angles_load_and_round_trip() -> None:
    layout = SiteLayout.from_dict(
        {"origin": [0, 64, 0], "disposal_yaw": 180, "disposal_pitch": -30.5},
    )

    assert layout.disposal_yaw == pytest.approx(180.0)
    assert layout.disposal_pitch == pytest.approx(-30.5)
    restored = SiteLayout.from_dict(layout.to_dict())
    assert (restored.disposal_yaw, restored.disposal_pitch) == (180.0, -30.5)
    assert SiteLayout().disposal_pitch == pytest.approx(-45.0)
