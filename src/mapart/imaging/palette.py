"""Carpet color palette used for map art."""

from __future__ import annotations

from dataclasses import dataclass

from mapart.ledger.models import GridCell


@dataclass(frozen=True, slots=True)
class PaletteColor:
    name: str
    rgb: tuple[int, int, int]

    @property
    def material(self) -> str:
        return f"{self.name}_carpet"

    def to_grid_cell(self) -> GridCell:
        return GridCell(color_name=self.name, material=self.material)


PALETTE: tuple[PaletteColor, ...] = (
    PaletteColor("white", (221, 221, 221)),
    PaletteColor("light_gray", (170, 170, 170)),
    PaletteColor("gray", (85, 85, 85)),
    PaletteColor("black", (25, 25, 25)),
    PaletteColor("brown", (136, 85, 51)),
    PaletteColor("red", (170, 51, 51)),
    PaletteColor("orange", (221, 119, 51)),
    PaletteColor("yellow", (238, 204, 51)),
    PaletteColor("lime", (119, 187, 51)),
    PaletteColor("green", (85, 119, 51)),
    PaletteColor("cyan", (51, 136, 153)),
    PaletteColor("light_blue", (85, 153, 221)),
    PaletteColor("blue", (51, 68, 170)),
    PaletteColor("purple", (119, 51, 187)),
    PaletteColor("magenta", (187, 68, 187)),
    PaletteColor("pink", (238, 136, 170)),
)

PALETTE_BY_NAME = {color.name: color for color in PALETTE}


def closest_color(r: float, g: float, b: float) -> PaletteColor:
    """Palette entry with the smallest squared RGB distance (first wins on ties)."""

    best = PALETTE[0]
    best_distance = float("inf")
    for color in PALETTE:
        cr, cg, cb = color.rgb
        distance = (r - cr) ** 2 + (g - cg) ** 2 + (b - cb) ** 2
        if distance < best_distance:
            best_distance = distance
            best = color
    return best
