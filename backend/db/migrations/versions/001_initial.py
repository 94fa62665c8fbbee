"""001 create graph build history table

Revision ID: 001_initial
Revises: None
Create Date: 2026-10-19
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision: str = "001_initial"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # graph_build_runs - one row per finished similarity graph build
    op.create_table(
        "graph_build_runs",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("generation", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "finished_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column("duration_ms", sa.Integer(), nullable=False),
        sa.Column("user_count", sa.Integer(), server_default="0"),
        sa.Column("edge_count", sa.Integer(), server_default="0"),
        sa.Column("error_code", sa.String(50)),
    )
    op.create_index("ix_graph_build_runs_generation", "graph_build_runs", ["generation"])
    op.create_index("ix_graph_build_runs_status", "graph_build_runs", ["status"])


def downgrade() -> None:
    op.drop_index("ix_graph_build_runs_status", table_name="graph_build_runs")
    op.drop_index("ix_graph_build_runs_generation", table_name="graph_build_runs")
    op.drop_table("graph_build_runs")
