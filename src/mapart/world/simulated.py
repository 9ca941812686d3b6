"""Deterministic in-memory world used for dry runs and tests."""

from __future__ import annotations

import logging
import math
from collections.abc import Callable
from dataclasses import dataclass, field

from mapart.errors import MovementFailure, PlacementFailure
from mapart.site import SiteLayout
from mapart.world.base import Block, BlockPos, ItemStack

logger = logging.getLogger(__name__)

AIR = Block(name="air", is_empty=True)
GROUND = Block(name="stone", is_empty=False)
CONTAINER = Block(name="chest", is_empty=False)
STACK_SIZE = 64
CONTAINER_SLOTS = 54


@dataclass(slots=True)
class SimulatedContainer:
    """Open window over one simulated container."""

    world: SimulatedWorld
    pos: BlockPos
    closed: bool = False

    @property
    def slots(self) -> list[ItemStack | None]:
        return list(self.world.containers[self.pos])

    def withdraw(self, material: str, count: int) -> None:
        if self.closed:
            raise PlacementFailure(f"Container at {self.pos} is closed.")
        slots = self.world.containers[self.pos]
        available = sum(stack.count for stack in slots if stack and stack.material == material)
        if available < count:
            raise PlacementFailure(
                f"Container at {self.pos} holds {available} of {material}, asked {count}.",
            )
        remaining = count
        for index, stack in enumerate(slots):
            if remaining <= 0:
                break
            if stack is None or stack.material != material:
                continue
            taken = min(stack.count, remaining)
            remaining -= taken
            left = stack.count - taken
            slots[index] = ItemStack(material, left) if left > 0 else None
        self.world.give(material, count)

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self.world.closed_containers += 1


@dataclass(slots=True)
class SimulatedWorld:
    """World session whose blocks, containers and inventory live in dicts.

    Positions below ``ground_y`` are solid ground, everything else not set
    explicitly is air. ``navigation_fault`` and ``placement_fault`` let
    callers inject failures for a goal or target position.
    """

    username: str
    ground_y: int | None = None
    blocks: dict[BlockPos, Block] = field(default_factory=dict)
    containers: dict[BlockPos, list[ItemStack | None]] = field(default_factory=dict)
    held: dict[str, int] = field(default_factory=dict)
    position: BlockPos | None = None
    equipped: str | None = None
    sneaking: bool = False
    navigation_fault: Callable[[BlockPos], bool] | None = None
    placement_fault: Callable[[BlockPos], bool] | None = None
    navigations: list[BlockPos] = field(default_factory=list)
    sneak_log: list[bool] = field(default_factory=list)
    looks: list[tuple[float, float]] = field(default_factory=list)
    tossed: dict[str, int] = field(default_factory=dict)
    opened_containers: int = 0
    closed_containers: int = 0
    connected: bool = True

    @classmethod
    def for_layout(
        cls,
        layout: SiteLayout,
        *,
        username: str,
        stacks_per_container: int = 27,
    ) -> SimulatedWorld:
        """World with ground under the grid and a filled container stack per store."""

        world = cls(username=username, ground_y=layout.origin.y)
        for store in layout.stores:
            base = layout.origin.plus(store.offset)
            for level in range(layout.store_stack_height):
                world.add_container(
                    base.offset(0, level, 0),
                    [ItemStack(store.material, STACK_SIZE)] * stacks_per_container,
                )
        return world

    # -- setup helpers ----------------------------------------------------------

    def set_block(self, pos: BlockPos, block: Block) -> None:
        self.blocks[pos] = block

    def add_container(self, pos: BlockPos, stacks: list[ItemStack]) -> None:
        slots: list[ItemStack | None] = list(stacks)[:CONTAINER_SLOTS]
        slots.extend([None] * (CONTAINER_SLOTS - len(slots)))
        self.containers[pos] = slots
        self.blocks[pos] = CONTAINER

    def give(self, material: str, count: int) -> None:
        self.held[material] = self.held.get(material, 0) + count

    # -- WorldSession -----------------------------------------------------------

    def navigate_to(self, goal: BlockPos, *, reach: float, timeout_seconds: float) -> None:
        self.navigations.append(goal)
        if self.navigation_fault is not None and self.navigation_fault(goal):
            raise MovementFailure(
                f"{self.username}: no path to {goal} within {timeout_seconds:.0f}s",
            )
        self.position = goal

    def look_at(self, target: BlockPos) -> None:
        return None

    def look(self, yaw: float, pitch: float) -> None:
        self.looks.append((yaw, pitch))

    def block_at(self, pos: BlockPos) -> Block | None:
        block = self.blocks.get(pos)
        if block is not None:
            return block
        if self.ground_y is not None and pos.y < self.ground_y:
            return GROUND
        return AIR

    def dig(self, pos: BlockPos) -> None:
        if pos in self.containers:
            raise PlacementFailure(f"Refusing to dig container at {pos}.")
        self.blocks.pop(pos, None)
        if self.ground_y is not None and pos.y < self.ground_y:
            self.blocks[pos] = AIR

    def equip(self, material: str) -> None:
        if self.held.get(material, 0) <= 0:
            raise PlacementFailure(f"{self.username} holds no {material}.")
        self.equipped = material

    def place_block(self, reference: BlockPos, face: BlockPos) -> None:
        target = reference.plus(face)
        if self.placement_fault is not None and self.placement_fault(target):
            raise PlacementFailure(f"Placement at {target} was rejected.")
        reference_block = self.block_at(reference)
        if reference_block is None or reference_block.is_empty:
            raise PlacementFailure(f"No solid reference block at {reference}.")
        current = self.block_at(target)
        if current is not None and not current.is_empty:
            raise PlacementFailure(f"Target {target} is occupied by {current.name}.")
        material = self.equipped
        if material is None or self.held.get(material, 0) <= 0:
            raise PlacementFailure(f"{self.username} has nothing to place.")
        self.held[material] -= 1
        if self.held[material] == 0:
            del self.held[material]
            self.equipped = None
        self.blocks[target] = Block(name=material, is_empty=False)

    def set_sneak(self, enabled: bool) -> None:
        self.sneaking = enabled
        self.sneak_log.append(enabled)

    def inventory(self) -> dict[str, int]:
        return dict(self.held)

    def toss_all(self) -> int:
        stacks = 0
        for material, count in self.held.items():
            stacks += math.ceil(count / STACK_SIZE)
            self.tossed[material] = self.tossed.get(material, 0) + count
        self.held.clear()
        self.equipped = None
        return stacks

    def open_container(self, pos: BlockPos) -> SimulatedContainer:
        if pos not in self.containers:
            raise PlacementFailure(f"No container at {pos}.")
        self.opened_containers += 1
        return SimulatedContainer(world=self, pos=pos)

    def close(self) -> None:
        if self.connected:
            self.connected = False
            logger.debug("Simulated world session for %s closed.", self.username)
