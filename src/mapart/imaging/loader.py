"""Load a source image from disk or over HTTP and scale it to the grid."""

from __future__ import annotations

import io
import logging
from pathlib import Path
from urllib.parse import urlparse

import httpx
from PIL import Image, UnidentifiedImageError

from mapart.errors import ProjectInputError

logger = logging.getLogger(__name__)


def load_pixels(
    source: str,
    *,
    width: int,
    height: int,
    assets_dir: Path | None = None,
    timeout_seconds: float = 30.0,
) -> list[list[tuple[int, int, int]]]:
    """Return ``height`` rows of ``width`` RGB tuples for ``source``.

    ``source`` is an http(s) URL, a path, or a file name inside ``assets_dir``.
    The scaled image is turned 180 degrees because cell ``(x, z)`` is laid at
    ``origin - (x, 0, z)``, so the finished map reads upright.
    """

    raw = _read_source(source, assets_dir=assets_dir, timeout_seconds=timeout_seconds)
    try:
        with Image.open(io.BytesIO(raw)) as image:
            rgb = (
                image.convert("RGB")
                .resize((width, height), Image.Resampling.LANCZOS)
                .transpose(Image.Transpose.ROTATE_180)
            )
    except (UnidentifiedImageError, OSError) as error:
        raise ProjectInputError(f"Cannot decode image {source!r}: {error}") from error

    access = rgb.load()
    return [[access[x, z][:3] for x in range(width)] for z in range(height)]


def _read_source(source: str, *, assets_dir: Path | None, timeout_seconds: float) -> bytes:
    parsed = urlparse(source)
    if parsed.scheme in {"http", "https"}:
        logger.info("Downloading source image %s", source)
        try:
            response = httpx.get(source, timeout=timeout_seconds, follow_redirects=True)
            response.raise_for_status()
        except httpx.HTTPError as error:
            raise ProjectInputError(f"Cannot download image {source!r}: {error}") from error
        return response.content

    candidates = [Path(source)]
    if assets_dir is not None:
        candidates.append(assets_dir / source)
    for candidate in candidates:
        if candidate.is_file():
            return candidate.read_bytes()
    raise ProjectInputError(f"Image not found: {source!r}")
