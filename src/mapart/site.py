"""Site geometry: where the map art lies and where its stores stand."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path

from mapart.imaging.palette import PALETTE
from mapart.world.base import BlockPos


@dataclass(frozen=True, slots=True)
class StoreSpot:
    """Base container of one material's vertical container stack."""

    material: str
    offset: BlockPos


def _default_stores() -> tuple[StoreSpot, ...]:
    return tuple(
        StoreSpot(material=color.material, offset=BlockPos(-2 - 4 * index, 1, 3))
        for index, color in enumerate(PALETTE)
    )


@dataclass(frozen=True, slots=True)
class SiteLayout:
    """World placement of the grid.

    Cell ``(x, z)`` lies at ``origin - (x, 0, z)``: the grid extends towards
    negative world x and z from ``origin``. Store order is the restock order.
    Disposal yaw and pitch are in degrees.
    """

    origin: BlockPos = BlockPos(63, 281, 575)
    grid_width: int = 128
    grid_height: int = 128
    band_width: int = 4
    disposal_offset: BlockPos = BlockPos(1, 0, 2)
    disposal_yaw: float = -90.0
    disposal_pitch: float = -45.0
    store_stack_height: int = 5
    stores: tuple[StoreSpot, ...] = field(default_factory=_default_stores)

    @property
    def min_bound(self) -> BlockPos:
        return self.origin.offset(-(self.grid_width - 1), 0, -(self.grid_height - 1))

    @property
    def max_bound(self) -> BlockPos:
        return self.origin

    def cell_position(self, x: int, z: int) -> BlockPos:
        return self.origin.offset(-x, 0, -z)

    def contains(self, pos: BlockPos) -> bool:
        """Whether ``pos`` lies inside the grid footprint (any height)."""

        low, high = self.min_bound, self.max_bound
        return low.x <= pos.x <= high.x and low.z <= pos.z <= high.z

    @property
    def disposal_position(self) -> BlockPos:
        return self.origin.plus(self.disposal_offset)

    @property
    def store_order(self) -> tuple[str, ...]:
        return tuple(store.material for store in self.stores)

    def store_base(self, material: str) -> BlockPos | None:
        for store in self.stores:
            if store.material == material:
                return self.origin.plus(store.offset)
        return None

    def validate(self) -> None:
        if self.grid_width <= 0 or self.grid_height <= 0:
            raise ValueError("Layout grid_width and grid_height must be > 0.")
        if self.band_width <= 0:
            raise ValueError("Layout band_width must be > 0.")
        if self.store_stack_height <= 0:
            raise ValueError("Layout store_stack_height must be > 0.")
        materials = [store.material for store in self.stores]
        if len(set(materials)) != len(materials):
            raise ValueError("Layout stores must name each material once.")

    @classmethod
    def from_json(cls, path: Path) -> SiteLayout:
        """Load a layout file; omitted keys keep their defaults."""

        payload = json.loads(path.read_text("utf-8"))
        if not isinstance(payload, dict):
            raise ValueError(f"Layout file must contain a JSON object: {path}")
        return cls.from_dict(payload)

    @classmethod
    def from_dict(cls, payload: dict[str, object]) -> SiteLayout:
        defaults = cls()
        stores_raw = payload.get("stores")
        stores = defaults.stores
        if stores_raw is not None:
            if not isinstance(stores_raw, list):
                raise ValueError("Layout 'stores' must be a list.")
            stores = tuple(
                StoreSpot(material=str(item["material"]), offset=BlockPos.of(item["offset"]))
                for item in stores_raw
            )
        return cls(
            origin=BlockPos.of(payload["origin"]) if "origin" in payload else defaults.origin,  # type: ignore[arg-type]
            grid_width=int(payload.get("grid_width", defaults.grid_width)),  # type: ignore[arg-type]
            grid_height=int(payload.get("grid_height", defaults.grid_height)),  # type: ignore[arg-type]
            band_width=int(payload.get("band_width", defaults.band_width)),  # type: ignore[arg-type]
            disposal_offset=(
                BlockPos.of(payload["disposal_offset"])  # type: ignore[arg-type]
                if "disposal_offset" in payload
                else defaults.disposal_offset
            ),
            disposal_yaw=float(payload.get("disposal_yaw", defaults.disposal_yaw)),  # type: ignore[arg-type]
            disposal_pitch=float(payload.get("disposal_pitch", defaults.disposal_pitch)),  # type: ignore[arg-type]
            store_stack_height=int(
                payload.get("store_stack_height", defaults.store_stack_height),  # type: ignore[arg-type]
            ),
            stores=stores,
        )

    def to_dict(self) -> dict[str, object]:
        return {
            "origin": [self.origin.x, self.origin.y, self.origin.z],
            "grid_width": self.grid_width,
            "grid_height": self.grid_height,
            "band_width": self.band_width,
            "disposal_offset": [
                self.disposal_offset.x,
                self.disposal_offset.y,
                self.disposal_offset.z,
            ],
            "disposal_yaw": self.disposal_yaw,
            "disposal_pitch": self.disposal_pitch,
            "store_stack_height": self.store_stack_height,
            "stores": [
                {
                    "material": store.material,
                    "offset": [store.offset.x, store.offset.y, store.offset.z],
                }
                for store in self.stores
            ],
        }
