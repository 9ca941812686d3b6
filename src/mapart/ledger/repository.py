"""Persistent band ledger backed by SQLModel + SQLite."""

from __future__ import annotations

import logging
import math
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from datetime import timedelta
from pathlib import Path

from sqlalchemy import delete as sa_delete
from sqlalchemy import func, insert, or_
from sqlalchemy import update as sa_update
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, col, select

from mapart.errors import PersistenceError
from mapart.ledger.alembic_runner import upgrade_head
from mapart.ledger.common import (
    build_sqlite_engine,
    to_db_datetime,
    to_utc_aware_datetime,
    utc_now,
)
from mapart.ledger.models import (
    BandEventType,
    BandEventView,
    BandStatus,
    BandView,
    CompletionStats,
    GridCell,
    Placement,
    ProjectView,
)
from mapart.ledger.tables import PROJECT_ROW_ID, BandEventRow, BandRow, CellRow, ProjectRow

logger = logging.getLogger(__name__)


class LedgerRepository:
    """Project, cell and band persistence facade.

    Every public method runs in its own transaction and raises
    ``PersistenceError`` when the database cannot be read or written.
    """

    def __init__(self, db_path: Path, *, sqlite_busy_timeout_ms: int = 5_000) -> None:
        self.db_path = db_path
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=sqlite_busy_timeout_ms)

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()

    def init_schema(self) -> None:
        """Run schema migrations up to head."""

        try:
            upgrade_head(self.db_path)
        except SQLAlchemyError as error:
            raise PersistenceError(f"Ledger migration failed: {error}") from error

    # -- project lifecycle ----------------------------------------------------

    def start_project(
        self,
        *,
        source: str,
        algorithm: str,
        grid: Sequence[Sequence[GridCell]],
        band_width: int,
    ) -> ProjectView:
        """Replace any existing project with a fresh one built from ``grid``.

        ``grid`` is indexed ``grid[z][x]``. This is destructive: all prior
        cells, bands and events are deleted in the same transaction.
        """

        if band_width < 1:
            raise ValueError(f"band_width must be >= 1, got {band_width}")
        grid_height = len(grid)
        if grid_height == 0 or len(grid[0]) == 0:
            raise ValueError("Target grid must contain at least one cell.")
        grid_width = len(grid[0])
        for z, row in enumerate(grid):
            if len(row) != grid_width:
                raise ValueError(
                    f"Target grid is ragged: row {z} has {len(row)} cells, expected {grid_width}.",
                )

        total_bands = math.ceil(grid_height / band_width)
        now = utc_now()
        cell_rows = [
            {
                "x": x,
                "z": z,
                "color_name": cell.color_name,
                "material": cell.material,
                "is_placed": False,
            }
            for z, row in enumerate(grid)
            for x, cell in enumerate(row)
        ]
        with self._session() as session:
            self._wipe(session)
            project = ProjectRow(
                id=PROJECT_ROW_ID,
                image_source=source,
                algorithm=algorithm,
                is_active=True,
                is_paused=False,
                band_width=band_width,
                total_bands=total_bands,
                grid_width=grid_width,
                grid_height=grid_height,
                created_at=to_db_datetime(now),
            )
            session.add(project)
            connection = session.connection()
            connection.execute(insert(CellRow.__table__), cell_rows)  # type: ignore[arg-type]
            connection.execute(
                insert(BandRow.__table__),  # type: ignore[arg-type]
                [
                    {"band_index": index, "status": BandStatus.PENDING.value}
                    for index in range(total_bands)
                ],
            )
            session.commit()
            session.refresh(project)
            view = _to_project_view(project)

        logger.info(
            "Started project source=%s algorithm=%s grid=%dx%d bands=%d",
            source,
            algorithm,
            grid_width,
            grid_height,
            total_bands,
        )
        return view

    def clear_project(self) -> None:
        """Delete the project with all of its cells, bands and events."""

        with self._session() as session:
            self._wipe(session)
            session.commit()

    def get_project_state(self) -> ProjectView | None:
        with self._session() as session:
            row = session.get(ProjectRow, PROJECT_ROW_ID)
            return _to_project_view(row) if row is not None else None

    def set_paused(self, paused: bool) -> bool:
        """Flip the pause flag; returns False when there is no project.

        Held bands get a fresh heartbeat so time spent paused never counts
        toward stale-band recovery.
        """

        with self._session() as session:
            result = session.exec(
                sa_update(ProjectRow)
                .where(col(ProjectRow.id) == PROJECT_ROW_ID)
                .values(is_paused=paused),
            )
            if result.rowcount == 1:
                session.exec(
                    sa_update(BandRow)
                    .where(col(BandRow.status) == BandStatus.ASSIGNED.value)
                    .values(heartbeat_at=to_db_datetime(utc_now())),
                )
            session.commit()
            return result.rowcount == 1

    # -- band ownership -------------------------------------------------------

    def claim_band(self, worker_id: str) -> int | None:
        """Claim the lowest pending band for ``worker_id``.

        Returns the band index only when the conditional update won and the
        re-read confirms the holder, otherwise ``None``.
        """

        now = to_db_datetime(utc_now())
        with self._session() as session:
            candidate = session.exec(
                select(BandRow.band_index)
                .where(BandRow.status == BandStatus.PENDING.value)
                .order_by(col(BandRow.band_index).asc())
                .limit(1),
            ).first()
            if candidate is None:
                return None

            result = session.exec(
                sa_update(BandRow)
                .where(
                    col(BandRow.band_index) == candidate,
                    col(BandRow.status) == BandStatus.PENDING.value,
                )
                .values(
                    status=BandStatus.ASSIGNED.value,
                    assigned_to=worker_id,
                    assigned_at=now,
                    heartbeat_at=now,
                ),
            )
            if result.rowcount != 1:
                session.rollback()
                return None

            holder = session.exec(
                select(BandRow.assigned_to).where(BandRow.band_index == candidate),
            ).one()
            if holder != worker_id:
                session.rollback()
                return None

            self._add_event(
                session=session,
                band_index=candidate,
                event_type=BandEventType.CLAIMED,
                worker_id=worker_id,
            )
            session.commit()
            return candidate

    def release_band(self, band_index: int, *, worker_id: str | None = None) -> None:
        """Return a band to ``pending`` regardless of its current holder."""

        with self._session() as session:
            row = session.get(BandRow, band_index)
            if row is None:
                return
            previous_status = row.status
            session.exec(
                sa_update(BandRow)
                .where(col(BandRow.band_index) == band_index)
                .values(
                    status=BandStatus.PENDING.value,
                    assigned_to=None,
                    assigned_at=None,
                    heartbeat_at=None,
                ),
            )
            if previous_status != BandStatus.PENDING.value:
                self._add_event(
                    session=session,
                    band_index=band_index,
                    event_type=BandEventType.RELEASED,
                    worker_id=worker_id,
                )
            session.commit()

    def complete_band(self, band_index: int, *, worker_id: str | None = None) -> None:
        """Mark a band completed. The caller must be its current holder."""

        with self._session() as session:
            result = session.exec(
                sa_update(BandRow)
                .where(col(BandRow.band_index) == band_index)
                .values(status=BandStatus.COMPLETED.value, heartbeat_at=to_db_datetime(utc_now())),
            )
            if result.rowcount == 1:
                self._add_event(
                    session=session,
                    band_index=band_index,
                    event_type=BandEventType.COMPLETED,
                    worker_id=worker_id,
                )
            session.commit()

    def touch_band(self, band_index: int, *, worker_id: str) -> bool:
        """Refresh the heartbeat of a held band.

        Returns False when the ledger no longer names ``worker_id`` as holder.
        """

        with self._session() as session:
            result = session.exec(
                sa_update(BandRow)
                .where(
                    col(BandRow.band_index) == band_index,
                    col(BandRow.status) == BandStatus.ASSIGNED.value,
                    col(BandRow.assigned_to) == worker_id,
                )
                .values(heartbeat_at=to_db_datetime(utc_now())),
            )
            session.commit()
            return result.rowcount == 1

    def band_holder(self, band_index: int) -> str | None:
        with self._session() as session:
            row = session.get(BandRow, band_index)
            if row is None or row.status != BandStatus.ASSIGNED.value:
                return None
            return row.assigned_to

    def find_band_assigned_to(self, worker_id: str) -> int | None:
        """Lowest band still assigned to ``worker_id`` (crash-restart adoption)."""

        with self._session() as session:
            return session.exec(
                select(BandRow.band_index)
                .where(
                    BandRow.status == BandStatus.ASSIGNED.value,
                    BandRow.assigned_to == worker_id,
                )
                .order_by(col(BandRow.band_index).asc())
                .limit(1),
            ).first()

    def release_stale_bands(self, *, stale_after: timedelta) -> list[int]:
        """Release assigned bands whose heartbeat is older than ``stale_after``.

        Nothing is released while the project is paused.
        """

        if stale_after.total_seconds() <= 0:
            raise ValueError("stale_after must be > 0")

        cutoff = to_db_datetime(utc_now() - stale_after)
        released: list[int] = []
        with self._session() as session:
            project = session.get(ProjectRow, PROJECT_ROW_ID)
            if project is not None and project.is_paused:
                return released
            stale_rows = session.exec(
                select(BandRow).where(
                    BandRow.status == BandStatus.ASSIGNED.value,
                    or_(
                        col(BandRow.heartbeat_at) < cutoff,
                        col(BandRow.heartbeat_at).is_(None),
                    ),
                ),
            ).all()
            for row in stale_rows:
                result = session.exec(
                    sa_update(BandRow)
                    .where(
                        col(BandRow.band_index) == row.band_index,
                        col(BandRow.status) == BandStatus.ASSIGNED.value,
                        col(BandRow.assigned_to) == row.assigned_to,
                    )
                    .values(
                        status=BandStatus.PENDING.value,
                        assigned_to=None,
                        assigned_at=None,
                        heartbeat_at=None,
                    ),
                )
                if result.rowcount != 1:
                    continue
                self._add_event(
                    session=session,
                    band_index=row.band_index,
                    event_type=BandEventType.STALE_RELEASED,
                    worker_id=row.assigned_to,
                )
                released.append(row.band_index)
            session.commit()

        for band_index in released:
            logger.warning("Released stale band %d after missed heartbeats.", band_index)
        return released

    def release_bands_held_by(self, worker_id: str) -> list[int]:
        """Release every band assigned to ``worker_id``."""

        with self._session() as session:
            held = session.exec(
                select(BandRow.band_index).where(
                    BandRow.status == BandStatus.ASSIGNED.value,
                    BandRow.assigned_to == worker_id,
                ),
            ).all()
        for band_index in held:
            self.release_band(band_index, worker_id=worker_id)
        return list(held)

    # -- cells ----------------------------------------------------------------

    def mark_cell_placed(self, x: int, z: int) -> None:
        """Set ``is_placed`` for one cell; calling it again is a no-op."""

        with self._session() as session:
            session.exec(
                sa_update(CellRow)
                .where(col(CellRow.x) == x, col(CellRow.z) == z)
                .values(is_placed=True),
            )
            session.commit()

    def placements_for_band(self, band_index: int) -> list[Placement]:
        """Unplaced cells in the z-range covered by ``band_index``."""

        with self._session() as session:
            project = session.get(ProjectRow, PROJECT_ROW_ID)
            if project is None:
                return []
            start_z = band_index * project.band_width
            end_z = min(start_z + project.band_width, project.grid_height)
            rows = session.exec(
                select(CellRow)
                .where(
                    CellRow.z >= start_z,
                    CellRow.z < end_z,
                    CellRow.is_placed == False,  # noqa: E712
                )
                .order_by(col(CellRow.x).asc(), col(CellRow.z).asc()),
            ).all()
        return [Placement(x=row.x, z=row.z, material=row.material) for row in rows]

    # -- reporting ------------------------------------------------------------

    def completion_stats(self) -> CompletionStats:
        with self._session() as session:
            project = session.get(ProjectRow, PROJECT_ROW_ID)
            if project is None:
                return CompletionStats(project=None)

            total_cells = session.exec(select(func.count()).select_from(CellRow)).one()
            placed_cells = session.exec(
                select(func.count())
                .select_from(CellRow)
                .where(CellRow.is_placed == True),  # noqa: E712
            ).one()
            band_counts = dict(
                session.exec(
                    select(BandRow.status, func.count()).group_by(BandRow.status),
                ).all(),
            )
            view = _to_project_view(project)

        return CompletionStats(
            project=view,
            total_cells=int(total_cells),
            placed_cells=int(placed_cells),
            total_bands=view.total_bands,
            pending_bands=int(band_counts.get(BandStatus.PENDING.value, 0)),
            assigned_bands=int(band_counts.get(BandStatus.ASSIGNED.value, 0)),
            completed_bands=int(band_counts.get(BandStatus.COMPLETED.value, 0)),
        )

    def list_bands(self, *, status: BandStatus | None = None) -> list[BandView]:
        with self._session() as session:
            statement = select(BandRow).order_by(col(BandRow.band_index).asc())
            if status is not None:
                statement = statement.where(BandRow.status == status.value)
            rows = session.exec(statement).all()
        return [_to_band_view(row) for row in rows]

    def list_band_events(
        self,
        *,
        band_index: int | None = None,
        limit: int = 50,
    ) -> list[BandEventView]:
        """Most recent band events first."""

        with self._session() as session:
            statement = (
                select(BandEventRow).order_by(col(BandEventRow.id).desc()).limit(limit)
            )
            if band_index is not None:
                statement = statement.where(BandEventRow.band_index == band_index)
            rows = session.exec(statement).all()
        return [
            BandEventView(
                event_id=row.id or 0,
                band_index=row.band_index,
                event_type=row.event_type,
                worker_id=row.worker_id,
                created_at=to_utc_aware_datetime(row.created_at),
            )
            for row in rows
        ]

    # -- internals ------------------------------------------------------------

    @contextmanager
    def _session(self) -> Iterator[Session]:
        try:
            with Session(self.engine) as session:
                yield session
        except SQLAlchemyError as error:
            raise PersistenceError(f"Ledger operation failed: {error}") from error

    def _wipe(self, session: Session) -> None:
        session.exec(sa_delete(BandEventRow))
        session.exec(sa_delete(BandRow))
        session.exec(sa_delete(CellRow))
        session.exec(sa_delete(ProjectRow))

    def _add_event(
        self,
        *,
        session: Session,
        band_index: int,
        event_type: BandEventType,
        worker_id: str | None,
    ) -> None:
        session.add(
            BandEventRow(
                band_index=band_index,
                event_type=event_type.value,
                worker_id=worker_id,
                created_at=to_db_datetime(utc_now()),
            ),
        )


def _to_project_view(row: ProjectRow) -> ProjectView:
    return ProjectView(
        image_source=row.image_source,
        algorithm=row.algorithm,
        is_active=bool(row.is_active),
        is_paused=bool(row.is_paused),
        band_width=row.band_width,
        total_bands=row.total_bands,
        grid_width=row.grid_width,
        grid_height=row.grid_height,
        created_at=to_utc_aware_datetime(row.created_at),
    )


def _to_band_view(row: BandRow) -> BandView:
    return BandView(
        band_index=row.band_index,
        status=BandStatus(row.status),
        assigned_to=row.assigned_to,
        assigned_at=to_utc_aware_datetime(row.assigned_at) if row.assigned_at else None,
        heartbeat_at=to_utc_aware_datetime(row.heartbeat_at) if row.heartbeat_at else None,
    )
