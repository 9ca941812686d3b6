"""Batch placement engine that lays the remaining cells of one band."""

from __future__ import annotations

import logging
import time
from collections import defaultdict
from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass, field

from mapart.errors import MovementFailure, PlacementFailure
from mapart.ledger.models import Placement
from mapart.ledger.repository import LedgerRepository
from mapart.site import SiteLayout
from mapart.world.base import UP, Block, BlockPos, WorldSession

logger = logging.getLogger(__name__)

# Placing on top of these opens their UI unless the player sneaks.
INTERACTIVE_BLOCKS = frozenset(
    {
        "chest",
        "trapped_chest",
        "ender_chest",
        "barrel",
        "furnace",
        "blast_furnace",
        "smoker",
        "dispenser",
        "dropper",
        "hopper",
        "crafting_table",
        "enchanting_table",
        "anvil",
        "chipped_anvil",
        "damaged_anvil",
        "brewing_stand",
        "beacon",
        "note_block",
        "jukebox",
        "loom",
        "cartography_table",
        "fletching_table",
        "grindstone",
        "smithing_table",
        "stonecutter",
    },
)

CELL_NEIGHBOURS = (
    BlockPos(0, 0, 1),
    BlockPos(0, 0, -1),
    BlockPos(1, 0, 0),
    BlockPos(-1, 0, 0),
)


def needs_sneak_to_place_on(block: Block | None) -> bool:
    if block is None:
        return False
    return block.name in INTERACTIVE_BLOCKS or "shulker_box" in block.name


@dataclass(slots=True)
class Batch:
    """Consecutive rows of a band placed from one stand position."""

    rows: list[list[Placement]]

    @property
    def cells(self) -> list[Placement]:
        return [cell for row in self.rows for cell in row]


@dataclass(slots=True)
class PlacementPassSummary:
    """Counters for one pass over a band."""

    band_index: int
    completed: bool = False
    cells: int = 0
    placed: int = 0
    already_placed: int = 0
    skipped: int = 0
    batches: int = 0
    fallback_batches: int = 0
    skipped_cells: list[tuple[int, int]] = field(default_factory=list)


class StripPlacer:
    """Turns a band's unplaced cells into batched navigate-and-place actions.

    Cells are grouped into batches of ``batch_rows`` consecutive rows. Each
    batch is placed from a single stand position on the perimeter of its
    bounding box when one is in reach of every cell, otherwise cell by cell
    from a neighbouring stand position. ``pause``/``resume``/``stop`` and the
    optional ``should_yield`` hook are honoured between every cell, and the
    optional ``heartbeat`` hook runs before every cell and retry.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        world: WorldSession,
        ledger: LedgerRepository,
        layout: SiteLayout,
        batch_rows: int = 4,
        reach: float = 4.5,
        max_attempts: int = 3,
        retry_backoff_seconds: float = 1.0,
        navigation_timeout_seconds: float = 30.0,
        pause_poll_seconds: float = 1.0,
        walkable_suffixes: tuple[str, ...] = ("_carpet",),
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.world = world
        self.ledger = ledger
        self.layout = layout
        self.batch_rows = batch_rows
        self.reach = reach
        self.max_attempts = max_attempts
        self.retry_backoff_seconds = retry_backoff_seconds
        self.navigation_timeout_seconds = navigation_timeout_seconds
        self.pause_poll_seconds = pause_poll_seconds
        self.walkable_suffixes = walkable_suffixes
        self.should_yield: Callable[[], bool] | None = None
        self.heartbeat: Callable[[], None] | None = None
        self._sleep = sleep
        self._paused = False
        self._stopped = False
        self._standing_at: BlockPos | None = None
        self.last_summary: PlacementPassSummary | None = None

    # -- control --------------------------------------------------------------

    def pause(self) -> None:
        self._paused = True

    def resume(self) -> None:
        self._paused = False

    def stop(self) -> None:
        self._stopped = True

    @property
    def is_paused(self) -> bool:
        return self._paused

    @property
    def is_stopped(self) -> bool:
        return self._stopped

    # -- execution ------------------------------------------------------------

    def build_band(self, band_index: int) -> bool:
        """Run one pass over the band's unplaced cells.

        Returns False when the pass was stopped before its end; counters of the
        pass are kept on ``last_summary``.
        Cells that kept failing are skipped and stay unplaced in the ledger.
        """

        self._stopped = False
        self._standing_at = None
        summary = PlacementPassSummary(band_index=band_index)
        self.last_summary = summary
        placements = self.ledger.placements_for_band(band_index)
        summary.cells = len(placements)
        if not placements:
            summary.completed = True
            return True

        batches = self._group_into_batches(placements)
        logger.info(
            "[%s] Building band %d: %d cells in %d batches.",
            self.world.username,
            band_index,
            len(placements),
            len(batches),
        )
        for batch in batches:
            summary.batches += 1
            stand = self._find_batch_stand_position(batch)
            if stand is None:
                summary.fallback_batches += 1
                logger.debug(
                    "[%s] No shared stand position for batch of %d cells; placing one by one.",
                    self.world.username,
                    len(batch.cells),
                )
            for cell in batch.cells:
                if not self._checkpoint():
                    logger.info(
                        "[%s] Band %d pass stopped.",
                        self.world.username,
                        band_index,
                    )
                    return False
                outcome = self._place_with_retries(cell, stand=stand)
                if outcome == "placed":
                    summary.placed += 1
                elif outcome == "already":
                    summary.already_placed += 1
                else:
                    summary.skipped += 1
                    summary.skipped_cells.append((cell.x, cell.z))

        summary.completed = True
        logger.info(
            "[%s] Band %d pass finished: placed=%d already=%d skipped=%d.",
            self.world.username,
            band_index,
            summary.placed,
            summary.already_placed,
            summary.skipped,
        )
        return True

    def _group_into_batches(self, placements: Sequence[Placement]) -> list[Batch]:
        rows: dict[int, list[Placement]] = defaultdict(list)
        for placement in placements:
            rows[placement.x].append(placement)
        ordered_rows = [sorted(rows[key], key=lambda cell: cell.z) for key in sorted(rows)]
        return [
            Batch(rows=ordered_rows[start : start + self.batch_rows])
            for start in range(0, len(ordered_rows), self.batch_rows)
        ]

    def _find_batch_stand_position(self, batch: Batch) -> BlockPos | None:
        targets = [self.layout.cell_position(cell.x, cell.z) for cell in batch.cells]
        min_x = min(pos.x for pos in targets)
        max_x = max(pos.x for pos in targets)
        min_z = min(pos.z for pos in targets)
        max_z = max(pos.z for pos in targets)
        y = targets[0].y

        for x in range(min_x - 1, max_x + 2):
            for z in range(min_z - 1, max_z + 2):
                on_perimeter = x in (min_x - 1, max_x + 1) or z in (min_z - 1, max_z + 1)
                if not on_perimeter:
                    continue
                candidate = BlockPos(x, y, z)
                if not self.layout.contains(candidate):
                    continue
                if any(candidate.distance_to(target) > self.reach for target in targets):
                    continue
                if self._is_occupiable(candidate):
                    return candidate
        return None

    def _find_cell_stand_position(self, target: BlockPos) -> BlockPos | None:
        for offset in CELL_NEIGHBOURS:
            candidate = target.plus(offset)
            if self.layout.contains(candidate) and self._is_occupiable(candidate):
                return candidate
        return None

    def _is_occupiable(self, pos: BlockPos) -> bool:
        foot = self.world.block_at(pos)
        head = self.world.block_at(pos.offset(0, 1, 0))
        if foot is None or head is None:
            return False
        foot_ok = foot.is_empty or foot.name.endswith(self.walkable_suffixes)
        return foot_ok and head.is_empty

    def _checkpoint(self) -> bool:
        """Heartbeat and block while paused; False means the pass must stop now."""

        while True:
            if self._stopped:
                return False
            if self.heartbeat is not None:
                self.heartbeat()
                if self._stopped:
                    return False
            if self.should_yield is not None and self.should_yield():
                self._stopped = True
                return False
            if not self._paused:
                return True
            self._sleep(self.pause_poll_seconds)

    def _place_with_retries(self, cell: Placement, *, stand: BlockPos | None) -> str:
        for attempt in range(1, self.max_attempts + 1):
            try:
                return self._place_cell(cell, stand=stand)
            except (MovementFailure, PlacementFailure) as error:
                self._standing_at = None
                logger.warning(
                    "[%s] Placing %s at (%d, %d) failed (attempt %d/%d): %s",
                    self.world.username,
                    cell.material,
                    cell.x,
                    cell.z,
                    attempt,
                    self.max_attempts,
                    error,
                )
                if attempt < self.max_attempts:
                    self._sleep(self.retry_backoff_seconds)
                    if self.heartbeat is not None:
                        self.heartbeat()

        logger.error(
            "[%s] Skipping cell (%d, %d) after %d attempts; it stays unplaced.",
            self.world.username,
            cell.x,
            cell.z,
            self.max_attempts,
        )
        return "skipped"

    def _place_cell(self, cell: Placement, *, stand: BlockPos | None) -> str:
        target = self.layout.cell_position(cell.x, cell.z)
        if stand is None:
            stand = self._find_cell_stand_position(target)
            if stand is None:
                raise PlacementFailure(f"No safe stand position next to {target}.")

        if self._standing_at != stand:
            self.world.navigate_to(
                stand,
                reach=0.0,
                timeout_seconds=self.navigation_timeout_seconds,
            )
            self._standing_at = stand
        self.world.look_at(target)

        current = self.world.block_at(target)
        if current is not None and current.name == cell.material:
            self.ledger.mark_cell_placed(cell.x, cell.z)
            return "already"
        if current is not None and not current.is_air:
            self.world.dig(target)

        self.world.equip(cell.material)
        below = target.offset(0, -1, 0)
        reference = self.world.block_at(below)
        if reference is None:
            raise PlacementFailure(f"Reference block at {below} is missing or unloaded.")

        with self._stance(sneak=needs_sneak_to_place_on(reference)):
            self.world.place_block(below, UP)

        self.ledger.mark_cell_placed(cell.x, cell.z)
        return "placed"

    @contextmanager
    def _stance(self, *, sneak: bool) -> Iterator[None]:
        if not sneak:
            yield
            return
        self.world.set_sneak(True)
        try:
            yield
        finally:
            self.world.set_sneak(False)
