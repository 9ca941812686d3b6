"""Domain models for the ledger."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class BandStatus(str, Enum):
    """Durable band lifecycle states."""

    PENDING = "pending"
    ASSIGNED = "assigned"
    COMPLETED = "completed"


class BandEventType(str, Enum):
    """Audit trail entries for band ownership changes."""

    CLAIMED = "claimed"
    RELEASED = "released"
    STALE_RELEASED = "stale_released"
    COMPLETED = "completed"


@dataclass(frozen=True, slots=True)
class GridCell:
    """Target assignment for one grid coordinate."""

    color_name: str
    material: str


@dataclass(frozen=True, slots=True)
class Placement:
    """One unplaced cell of a band."""

    x: int
    z: int
    material: str


@dataclass(slots=True)
class ProjectView:
    """Readable project record."""

    image_source: str
    algorithm: str
    is_active: bool
    is_paused: bool
    band_width: int
    total_bands: int
    grid_width: int
    grid_height: int
    created_at: datetime


@dataclass(slots=True)
class BandView:
    """Readable band record."""

    band_index: int
    status: BandStatus
    assigned_to: str | None
    assigned_at: datetime | None
    heartbeat_at: datetime | None


@dataclass(slots=True)
class BandEventView:
    """Band event entry for the audit trail."""

    event_id: int
    band_index: int
    event_type: str
    worker_id: str | None
    created_at: datetime


@dataclass(slots=True)
class CompletionStats:
    """Progress counters over cells and bands."""

    project: ProjectView | None
    total_cells: int = 0
    placed_cells: int = 0
    total_bands: int = 0
    pending_bands: int = 0
    assigned_bands: int = 0
    completed_bands: int = 0

    @property
    def percent_complete(self) -> float:
        if self.total_cells == 0:
            return 0.0
        return self.placed_cells * 100.0 / self.total_cells

    @property
    def is_finished(self) -> bool:
        """No band is left to claim or in progress."""

        return self.pending_bands == 0 and self.assigned_bands == 0
