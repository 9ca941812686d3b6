"""World session interface consumed by the builder modules."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Protocol


@dataclass(frozen=True, slots=True)
class BlockPos:
    """Integer world coordinate."""

    x: int
    y: int
    z: int

    def offset(self, dx: int, dy: int, dz: int) -> BlockPos:
        return BlockPos(self.x + dx, self.y + dy, self.z + dz)

    def plus(self, other: BlockPos) -> BlockPos:
        return BlockPos(self.x + other.x, self.y + other.y, self.z + other.z)

    def distance_to(self, other: BlockPos) -> float:
        return math.sqrt(
            (self.x - other.x) ** 2 + (self.y - other.y) ** 2 + (self.z - other.z) ** 2,
        )

    @classmethod
    def of(cls, values: list[int] | tuple[int, int, int]) -> BlockPos:
        x, y, z = values
        return cls(int(x), int(y), int(z))


UP = BlockPos(0, 1, 0)


@dataclass(frozen=True, slots=True)
class Block:
    """What the world reports at one position."""

    name: str
    is_empty: bool

    @property
    def is_air(self) -> bool:
        return self.name == "air"


@dataclass(frozen=True, slots=True)
class ItemStack:
    material: str
    count: int


class ContainerWindow(Protocol):
    """An opened container. Must be closed by the caller."""

    @property
    def slots(self) -> list[ItemStack | None]:
        """Container slots, excluding the player's inventory."""

    def withdraw(self, material: str, count: int) -> None:
        """Move ``count`` items of ``material`` into the player's inventory."""

    def close(self) -> None:
        """Close the window."""


class WorldSession(Protocol):
    """Capabilities a builder worker needs from the world.

    Connection management and reconnects live behind this interface.
    Navigation raises ``MovementFailure``; actions raise ``PlacementFailure``.
    """

    username: str

    def navigate_to(self, goal: BlockPos, *, reach: float, timeout_seconds: float) -> None:
        """Walk until within ``reach`` of ``goal`` (0 means stand on it)."""

    def look_at(self, target: BlockPos) -> None:
        """Face ``target``."""

    def look(self, yaw: float, pitch: float) -> None:
        """Face an absolute direction; ``yaw`` and ``pitch`` in degrees."""

    def block_at(self, pos: BlockPos) -> Block | None:
        """Block at ``pos`` or None when the chunk is not loaded."""

    def dig(self, pos: BlockPos) -> None:
        """Break the block at ``pos``."""

    def equip(self, material: str) -> None:
        """Hold ``material`` in hand; fails when none is carried."""

    def place_block(self, reference: BlockPos, face: BlockPos) -> None:
        """Place the held item against ``reference`` on ``face``."""

    def set_sneak(self, enabled: bool) -> None:
        """Engage or disengage the sneaking stance."""

    def inventory(self) -> dict[str, int]:
        """Held item counts by material."""

    def toss_all(self) -> int:
        """Drop every held stack; returns the number of stacks dropped."""

    def open_container(self, pos: BlockPos) -> ContainerWindow:
        """Open the container at ``pos``."""

    def close(self) -> None:
        """Disconnect from the world."""
