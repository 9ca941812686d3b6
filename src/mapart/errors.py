"""Error taxonomy shared by the ledger, the builder and the CLI."""

from __future__ import annotations


class MapartError(Exception):
    """Base class for mapart errors."""


class PersistenceError(MapartError):
    """Ledger I/O failed; the caller retries on its next tick."""


class MovementFailure(MapartError):
    """Navigation primitive failed or timed out."""


class PlacementFailure(MapartError):
    """Equip, clear or place action failed in the world."""


class ProjectInputError(MapartError):
    """Source image, algorithm or target grid cannot be turned into a project."""
