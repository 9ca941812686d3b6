"""Static table of world backends selectable by configuration."""

from __future__ import annotations

from collections.abc import Callable

from mapart.config import Settings
from mapart.world.base import WorldSession
from mapart.world.simulated import SimulatedWorld

WorldFactory = Callable[[str, Settings], WorldSession]


def _simulated(username: str, settings: Settings) -> WorldSession:
    return SimulatedWorld.for_layout(settings.layout, username=username)


WORLD_BACKENDS: dict[str, WorldFactory] = {
    "simulated": _simulated,
}


def open_world(username: str, settings: Settings) -> WorldSession:
    """Open a session with the backend named by ``settings.worker.world_backend``."""

    backend = settings.worker.world_backend
    factory = WORLD_BACKENDS.get(backend)
    if factory is None:
        raise ValueError(
            f"Unknown world backend: {backend!r}. "
            f"Registered backends: {', '.join(sorted(WORLD_BACKENDS))}",
        )
    return factory(username, settings)
