"""Material acquisition from the site's container stores."""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping

from mapart.errors import MovementFailure, PlacementFailure
from mapart.site import SiteLayout
from mapart.world.base import BlockPos, ContainerWindow, WorldSession

logger = logging.getLogger(__name__)

CONTAINER_BLOCKS = frozenset({"chest", "trapped_chest", "barrel"})
CONTAINER_REACH = 2.0
DISPOSAL_REACH = 1.0


class Restocker:
    """Refill a worker's inventory with exactly what a band still needs.

    A round discards everything carried at the disposal point, then walks the
    stores in layout order. Each store is a vertical stack of containers that
    is scanned bottom-up until the material's need is covered or the stack
    ends. A shortfall on one material does not stop the round.
    The optional ``heartbeat`` hook runs before every walk so a long round
    does not let the held band go stale.
    """

    def __init__(
        self,
        *,
        world: WorldSession,
        layout: SiteLayout,
        navigation_timeout_seconds: float = 30.0,
    ) -> None:
        self.world = world
        self.layout = layout
        self.navigation_timeout_seconds = navigation_timeout_seconds
        self.heartbeat: Callable[[], None] | None = None

    def restock(self, required: Mapping[str, int]) -> bool:
        """Return True only when every required material reached its count."""

        if not self.discard_inventory():
            return False

        ok = True
        for material in self.layout.store_order:
            need = required.get(material, 0)
            if need <= 0:
                continue
            collected = self._collect(material, need)
            if collected < need:
                logger.warning(
                    "[%s] Short on %s: collected %d of %d.",
                    self.world.username,
                    material,
                    collected,
                    need,
                )
                ok = False

        unknown = sorted(
            material
            for material, count in required.items()
            if count > 0 and self.layout.store_base(material) is None
        )
        if unknown:
            logger.warning(
                "[%s] No store configured for: %s",
                self.world.username,
                ", ".join(unknown),
            )
            ok = False

        if ok:
            logger.info("[%s] Restock complete.", self.world.username)
        return ok

    def discard_inventory(self) -> bool:
        """Drop everything carried at the disposal point."""

        self._beat()
        target = self.layout.disposal_position
        try:
            self.world.navigate_to(
                target,
                reach=DISPOSAL_REACH,
                timeout_seconds=self.navigation_timeout_seconds,
            )
        except MovementFailure as error:
            logger.warning(
                "[%s] Cannot reach disposal point %s: %s",
                self.world.username,
                target,
                error,
            )
            return False
        self.world.look(self.layout.disposal_yaw, self.layout.disposal_pitch)
        stacks = self.world.toss_all()
        logger.debug("[%s] Discarded %d stacks.", self.world.username, stacks)
        return True

    def _collect(self, material: str, need: int) -> int:
        base = self.layout.store_base(material)
        if base is None:
            return 0

        collected = 0
        for level in range(self.layout.store_stack_height):
            if collected >= need:
                break
            pos = base.offset(0, level, 0)
            block = self.world.block_at(pos)
            if block is None or block.name not in CONTAINER_BLOCKS:
                break
            self._beat()
            try:
                self.world.navigate_to(
                    pos,
                    reach=CONTAINER_REACH,
                    timeout_seconds=self.navigation_timeout_seconds,
                )
            except MovementFailure as error:
                logger.warning(
                    "[%s] Cannot reach %s store at %s: %s",
                    self.world.username,
                    material,
                    pos,
                    error,
                )
                break
            collected += self._withdraw_from_container(pos, material, need - collected)
        return collected

    def _withdraw_from_container(self, pos: BlockPos, material: str, wanted: int) -> int:
        try:
            window = self.world.open_container(pos)
        except PlacementFailure as error:
            logger.warning("[%s] Cannot open container at %s: %s", self.world.username, pos, error)
            return 0
        try:
            return self._take_matching(window, material, wanted)
        finally:
            window.close()

    def _take_matching(self, window: ContainerWindow, material: str, wanted: int) -> int:
        taken = 0
        for stack in window.slots:
            if taken >= wanted:
                break
            if stack is None or stack.material != material:
                continue
            amount = min(stack.count, wanted - taken)
            try:
                window.withdraw(material, amount)
            except PlacementFailure as error:
                logger.warning(
                    "[%s] Withdrawing %d %s failed: %s",
                    self.world.username,
                    amount,
                    material,
                    error,
                )
                break
            taken += amount
        return taken

    def _beat(self) -> None:
        if self.heartbeat is not None:
            self.heartbeat()
