"""Initial ledger schema: project, cells, bands and band events."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

revision = "20261018_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "project",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("image_source", sa.Text(), nullable=False),
        sa.Column("algorithm", sa.String(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_paused", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("band_width", sa.Integer(), nullable=False),
        sa.Column("total_bands", sa.Integer(), nullable=False),
        sa.Column("grid_width", sa.Integer(), nullable=False),
        sa.Column("grid_height", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("id = 1", name="ck_project_singleton"),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "cells",
        sa.Column("x", sa.Integer(), nullable=False),
        sa.Column("z", sa.Integer(), nullable=False),
        sa.Column("color_name", sa.String(), nullable=False),
        sa.Column("material", sa.String(), nullable=False),
        sa.Column("is_placed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.PrimaryKeyConstraint("x", "z"),
    )
    op.create_index("ix_cells_z_is_placed", "cells", ["z", "is_placed"], unique=False)

    op.create_table(
        "bands",
        sa.Column("band_index", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(), nullable=False, server_default="pending"),
        sa.Column("assigned_to", sa.String(), nullable=True),
        sa.Column("assigned_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("heartbeat_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("band_index"),
    )
    op.create_index("ix_bands_status", "bands", ["status"], unique=False)

    op.create_table(
        "band_events",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("band_index", sa.Integer(), nullable=False),
        sa.Column("event_type", sa.String(), nullable=False),
        sa.Column("worker_id", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_band_events_band_index", "band_events", ["band_index"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_band_events_band_index", table_name="band_events")
    op.drop_table("band_events")
    op.drop_index("ix_bands_status", table_name="bands")
    op.drop_table("bands")
    op.drop_index("ix_cells_z_is_placed", table_name="cells")
    op.drop_table("cells")
    op.drop_table("project")
