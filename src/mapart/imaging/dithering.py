"""Error-diffusion quantization of RGB pixels onto the carpet palette."""

from __future__ import annotations

from collections.abc import Sequence

from mapart.errors import ProjectInputError
from mapart.imaging.palette import closest_color
from mapart.ledger.models import GridCell

# (dx, dy, weight) triples; weights are already divided by the kernel divisor.
DiffusionKernel = tuple[tuple[int, int, float], ...]


def _kernel(divisor: int, *entries: tuple[int, int, int]) -> DiffusionKernel:
    return tuple((dx, dy, weight / divisor) for dx, dy, weight in entries)


KERNELS: dict[str, DiffusionKernel] = {
    "none": (),
    "floydSteinberg": _kernel(16, (1, 0, 7), (-1, 1, 3), (0, 1, 5), (1, 1, 1)),
    "jarvisJudiceNinke": _kernel(
        48,
        (1, 0, 7),
        (2, 0, 5),
        (-2, 1, 3),
        (-1, 1, 5),
        (0, 1, 7),
        (1, 1, 5),
        (2, 1, 3),
        (-2, 2, 1),
        (-1, 2, 3),
        (0, 2, 5),
        (1, 2, 3),
        (2, 2, 1),
    ),
    "stucki": _kernel(
        42,
        (1, 0, 8),
        (2, 0, 4),
        (-2, 1, 2),
        (-1, 1, 4),
        (0, 1, 8),
        (1, 1, 4),
        (2, 1, 2),
        (-2, 2, 1),
        (-1, 2, 2),
        (0, 2, 4),
        (1, 2, 2),
        (2, 2, 1),
    ),
    "atkinson": _kernel(8, (1, 0, 1), (2, 0, 1), (-1, 1, 1), (0, 1, 1), (1, 1, 1), (0, 2, 1)),
    "sierra": _kernel(
        32,
        (1, 0, 5),
        (2, 0, 3),
        (-2, 1, 2),
        (-1, 1, 4),
        (0, 1, 5),
        (1, 1, 4),
        (2, 1, 2),
        (-1, 2, 2),
        (0, 2, 3),
        (1, 2, 2),
    ),
    "burkes": _kernel(
        32,
        (1, 0, 8),
        (2, 0, 4),
        (-2, 1, 2),
        (-1, 1, 4),
        (0, 1, 8),
        (1, 1, 4),
        (2, 1, 2),
    ),
}

DEFAULT_ALGORITHM = "floydSteinberg"
SUPPORTED_ALGORITHMS = tuple(KERNELS)


def quantize(
    pixels: Sequence[Sequence[tuple[int, int, int]]],
    algorithm: str = DEFAULT_ALGORITHM,
) -> list[list[GridCell]]:
    """Map ``pixels[z][x]`` RGB rows onto palette cells.

    Quantization error is diffused left-to-right, top-to-bottom with the
    kernel named by ``algorithm``; channels are clamped to 0..255.
    """

    kernel = KERNELS.get(algorithm)
    if kernel is None:
        raise ProjectInputError(
            f"Unknown dithering algorithm: {algorithm!r}. "
            f"Valid options are: {', '.join(SUPPORTED_ALGORITHMS)}",
        )
    height = len(pixels)
    if height == 0:
        raise ProjectInputError("Source image has no pixels.")
    width = len(pixels[0])

    work = [[[float(channel) for channel in pixel] for pixel in row] for row in pixels]
    grid: list[list[GridCell]] = []
    for y in range(height):
        out_row: list[GridCell] = []
        for x in range(width):
            old = work[y][x]
            color = closest_color(*old)
            out_row.append(color.to_grid_cell())
            error = [old[channel] - color.rgb[channel] for channel in range(3)]
            for dx, dy, weight in kernel:
                nx, ny = x + dx, y + dy
                if 0 <= nx < width and 0 <= ny < height:
                    target = work[ny][nx]
                    for channel in range(3):
                        target[channel] = min(
                            255.0,
                            max(0.0, target[channel] + error[channel] * weight),
                        )
        grid.append(out_row)
    return grid
