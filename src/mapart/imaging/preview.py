"""Render a quantized grid back into an image for checking before building."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from pathlib import Path

from PIL import Image

from mapart.errors import ProjectInputError
from mapart.imaging.palette import PALETTE_BY_NAME
from mapart.ledger.models import GridCell

logger = logging.getLogger(__name__)


def render_preview(grid: Sequence[Sequence[GridCell]], *, scale: int = 1) -> Image.Image:
    """Paint ``grid[z][x]`` with its carpet colors, turned back upright."""

    if scale < 1:
        raise ValueError("scale must be >= 1")
    height = len(grid)
    width = len(grid[0]) if height else 0
    image = Image.new("RGB", (width, height))
    access = image.load()
    for z, row in enumerate(grid):
        for x, cell in enumerate(row):
            access[x, z] = PALETTE_BY_NAME[cell.color_name].rgb
    image = image.transpose(Image.Transpose.ROTATE_180)
    if scale > 1:
        image = image.resize((width * scale, height * scale), Image.Resampling.NEAREST)
    return image


def save_preview(grid: Sequence[Sequence[GridCell]], path: Path, *, scale: int = 4) -> Path:
    image = render_preview(grid, scale=scale)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        image.save(path)
    except (OSError, ValueError) as error:
        raise ProjectInputError(f"Cannot write preview {str(path)!r}: {error}") from error
    logger.info("Wrote preview %s", path)
    return path
