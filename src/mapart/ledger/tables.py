"""SQLModel ORM tables for the ledger."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import CheckConstraint, Column, DateTime, Index
from sqlmodel import Field, SQLModel

PROJECT_ROW_ID = 1


class ProjectRow(SQLModel, table=True):
    __tablename__ = "project"  # type: ignore[bad-override]
    __table_args__ = (CheckConstraint("id = 1", name="ck_project_singleton"),)

    id: int = Field(default=PROJECT_ROW_ID, primary_key=True)
    image_source: str
    algorithm: str
    is_active: bool = False
    is_paused: bool = False
    band_width: int
    total_bands: int
    grid_width: int
    grid_height: int
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class CellRow(SQLModel, table=True):
    __tablename__ = "cells"  # type: ignore[bad-override]
    __table_args__ = (Index("ix_cells_z_is_placed", "z", "is_placed"),)

    x: int = Field(primary_key=True)
    z: int = Field(primary_key=True)
    color_name: str
    material: str
    is_placed: bool = False


class BandRow(SQLModel, table=True):
    __tablename__ = "bands"  # type: ignore[bad-override]

    band_index: int = Field(primary_key=True)
    status: str = Field(default="pending", index=True)
    assigned_to: str | None = None
    assigned_at: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True),
    )
    heartbeat_at: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True),
    )


class BandEventRow(SQLModel, table=True):
    __tablename__ = "band_events"  # type: ignore[bad-override]

    id: int | None = Field(default=None, primary_key=True)
    band_index: int = Field(index=True)
    event_type: str
    worker_id: str | None = None
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
