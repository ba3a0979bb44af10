"""Add engine snapshots and the authority audit log.

Revision ID: 0002
Revises: 0001
Create Date: 2026-10-16

Adds:
- engine_snapshots table (scoring fallback while an engine is unavailable)
- authority_audit_log table
- fallback_snapshot_id to engine_outages

"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0002"
down_revision: Union[str, None] = "0001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSONType = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def upgrade() -> None:
    op.create_table(
        "engine_snapshots",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("engine", sa.String(50), nullable=False),
        sa.Column("snapshot_type", sa.String(20), nullable=False),  # hourly, daily, weekly, manual
        sa.Column("reliability_score", sa.Float(), nullable=False),
        sa.Column("citation_completeness", sa.Float(), nullable=False),
        sa.Column("freshness_index", sa.Float(), nullable=False),
        sa.Column("authority_weight", sa.Float(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("total_queries", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("queries_in_period", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("success_rate", sa.Float(), nullable=True),
        sa.Column("avg_response_time_ms", sa.Float(), nullable=True),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["engine"], ["engine_authority.engine"], ondelete="CASCADE"),
        sa.CheckConstraint(
            "snapshot_type IN ('hourly', 'daily', 'weekly', 'manual')",
            name="ck_engine_snapshots_type",
        ),
    )
    op.create_index(
        "ix_engine_snapshots_latest",
        "engine_snapshots",
        ["engine", "snapshot_type", "created_at"],
    )

    op.create_table(
        "authority_audit_log",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("engine", sa.String(50), nullable=False),
        # reliability_change, sla_violation, auto_recovery, manual_override
        sa.Column("change_type", sa.String(50), nullable=False),
        sa.Column("previous_authority_weight", sa.Float(), nullable=True),
        sa.Column("new_authority_weight", sa.Float(), nullable=True),
        sa.Column("previous_reliability", sa.Float(), nullable=True),
        sa.Column("new_reliability", sa.Float(), nullable=True),
        sa.Column("explanation", sa.Text(), nullable=False),
        sa.Column("evidence", JSONType, nullable=True),
        sa.Column("triggered_by", sa.String(50), nullable=False),  # query_result, admin, system
        sa.Column(
            "created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["engine"], ["engine_authority.engine"], ondelete="CASCADE"),
    )
    op.create_index(
        "ix_authority_audit_log_engine_time", "authority_audit_log", ["engine", "created_at"]
    )

    op.add_column("engine_outages", sa.Column("fallback_snapshot_id", sa.Uuid(), nullable=True))
    op.create_foreign_key(
        "fk_engine_outages_fallback_snapshot",
        "engine_outages",
        "engine_snapshots",
        ["fallback_snapshot_id"],
        ["id"],
        ondelete="SET NULL",
    )


def downgrade() -> None:
    op.drop_constraint(
        "fk_engine_outages_fallback_snapshot", "engine_outages", type_="foreignkey"
    )
    op.drop_column("engine_outages", "fallback_snapshot_id")
    op.drop_index("ix_authority_audit_log_engine_time", table_name="authority_audit_log")
    op.drop_table("authority_audit_log")
    op.drop_index("ix_engine_snapshots_latest", table_name="engine_snapshots")
    op.drop_table("engine_snapshots")
