"""Initial schema

Revision ID: 0001
Revises:
Create Date: 2026-10-16

"""

import uuid
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision: str = "0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSONType = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")

# Engine seeds as of this revision: engine, display name, reliability,
# citation completeness, freshness, authority weight
ENGINE_SEEDS = [
    ("google_ai_mode", "Google AI Mode", 85.0, 90.0, 95.0, 1.15),
    ("chatgpt", "ChatGPT", 80.0, 75.0, 70.0, 1.0),
    ("perplexity", "Perplexity", 88.0, 95.0, 90.0, 1.12),
    ("bing_copilot", "Bing Copilot", 78.0, 85.0, 88.0, 1.05),
    ("gemini", "Gemini", 82.0, 80.0, 85.0, 1.02),
    ("claude", "Claude", 85.0, 70.0, 65.0, 0.95),
]

DEFAULT_WEIGHTS = {"visibility": 0.4, "citations": 0.3, "sentiment": 0.2, "rank": 0.1}
DEFAULT_ALGORITHM = {
    "mention_weight": 1.0,
    "rank_decay": 0.1,
    "sentiment_multiplier": {"positive": 1.2, "neutral": 1.0, "negative": 0.8},
    "citation_bonus": 0.15,
    "competitor_penalty": 0.05,
}


def upgrade() -> None:
    # Job queue
    op.create_table(
        "job_queue",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("owner_id", sa.Uuid(), nullable=False),
        sa.Column("job_type", sa.String(50), nullable=False),
        sa.Column("payload", JSONType, nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("priority", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "scheduled_for",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column("retry_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_retries", sa.Integer(), nullable=False, server_default="3"),
        sa.Column("result", JSONType, nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("claim_token", sa.String(64), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("retry_count <= max_retries", name="ck_job_queue_retry_budget"),
    )
    op.create_index("ix_job_queue_owner_id", "job_queue", ["owner_id"])
    op.create_index("ix_job_queue_job_type", "job_queue", ["job_type"])
    op.create_index("ix_job_queue_status", "job_queue", ["status"])
    op.create_index("ix_job_queue_due", "job_queue", ["status", "priority", "scheduled_for"])

    # Engine authority
    op.create_table(
        "engine_authority",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("engine", sa.String(50), nullable=False),
        sa.Column("display_name", sa.String(100), nullable=False),
        sa.Column("reliability_score", sa.Float(), nullable=False, server_default="50"),
        sa.Column("citation_completeness", sa.Float(), nullable=False, server_default="50"),
        sa.Column("freshness_index", sa.Float(), nullable=False, server_default="50"),
        sa.Column("authority_weight", sa.Float(), nullable=False, server_default="1.0"),
        sa.Column("total_queries", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("successful_queries", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("avg_response_time_ms", sa.Float(), nullable=False, server_default="0"),
        sa.Column("consecutive_failures", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_successful_query", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_failure", sa.DateTime(timezone=True), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="healthy"),
        sa.Column("status_message", sa.Text(), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("engine", name="uq_engine_authority_engine"),
        sa.CheckConstraint(
            "authority_weight >= 0.5 AND authority_weight <= 1.5",
            name="ck_engine_authority_weight_range",
        ),
    )
    op.create_index("ix_engine_authority_status", "engine_authority", ["status"])

    # Engine outages
    op.create_table(
        "engine_outages",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("engine", sa.String(50), nullable=False),
        sa.Column(
            "started_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.Column("ended_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("affected_queries", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("resolution_type", sa.String(50), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["engine"], ["engine_authority.engine"], ondelete="CASCADE"),
    )
    op.create_index("ix_engine_outages_engine", "engine_outages", ["engine"])
    op.create_index(
        "uq_engine_outages_open",
        "engine_outages",
        ["engine"],
        unique=True,
        postgresql_where=sa.text("ended_at IS NULL"),
        sqlite_where=sa.text("ended_at IS NULL"),
    )

    # Engine results
    op.create_table(
        "engine_results",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("prompt_id", sa.Uuid(), nullable=False),
        sa.Column("job_id", sa.Uuid(), nullable=True),
        sa.Column("engine", sa.String(50), nullable=False),
        sa.Column("mentioned", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("position", sa.Integer(), nullable=True),
        sa.Column("citation_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("citations", JSONType, nullable=True),
        sa.Column("sentiment", sa.String(20), nullable=False, server_default="neutral"),
        sa.Column("sentiment_score", sa.Float(), nullable=False, server_default="0"),
        sa.Column("competitors_mentioned", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("response_time_ms", sa.Float(), nullable=True),
        sa.Column("authority_weight_at_query", sa.Float(), nullable=True),
        sa.Column("raw_response", JSONType, nullable=True),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_engine_results_prompt_id", "engine_results", ["prompt_id"])
    op.create_index("ix_engine_results_engine", "engine_results", ["engine"])

    # Prompt scores
    op.create_table(
        "prompt_scores",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("prompt_id", sa.Uuid(), nullable=False),
        sa.Column("ai_visibility_score", sa.Float(), nullable=False),
        sa.Column("unweighted_avs", sa.Float(), nullable=False),
        sa.Column("citation_score", sa.Float(), nullable=False),
        sa.Column("brand_authority_score", sa.Float(), nullable=False),
        sa.Column("share_of_voice", sa.Float(), nullable=False),
        sa.Column("breakdown", JSONType, nullable=False),
        sa.Column("confidence", sa.Float(), nullable=False),
        sa.Column("is_estimated", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("degraded_engines", JSONType, nullable=False),
        sa.Column("scoring_version", sa.String(50), nullable=False),
        sa.Column("confidence_downgrade_reason", sa.Text(), nullable=True),
        sa.Column("last_full_confidence_score", sa.Float(), nullable=True),
        sa.Column("last_full_confidence_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "scored_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("prompt_id", name="uq_prompt_scores_prompt_id"),
    )

    # Scoring configs
    scoring_configs = op.create_table(
        "scoring_configs",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("version", sa.String(50), nullable=False),
        sa.Column("weights", JSONType, nullable=False),
        sa.Column("algorithm", JSONType, nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("version", name="uq_scoring_configs_version"),
    )
    op.create_index(
        "uq_scoring_configs_active",
        "scoring_configs",
        ["is_active"],
        unique=True,
        postgresql_where=sa.text("is_active"),
        sqlite_where=sa.text("is_active = 1"),
    )

    # Alerts
    op.create_table(
        "alerts",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("owner_id", sa.Uuid(), nullable=True),
        sa.Column("type", sa.String(50), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("severity", sa.String(20), nullable=False, server_default="warning"),
        sa.Column("data", JSONType, nullable=True),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_alerts_owner_id", "alerts", ["owner_id"])
    op.create_index("ix_alerts_type", "alerts", ["type"])

    # Seed data
    engine_authority = sa.table(
        "engine_authority",
        sa.column("id", sa.Uuid()),
        sa.column("engine", sa.String()),
        sa.column("display_name", sa.String()),
        sa.column("reliability_score", sa.Float()),
        sa.column("citation_completeness", sa.Float()),
        sa.column("freshness_index", sa.Float()),
        sa.column("authority_weight", sa.Float()),
    )
    op.bulk_insert(
        engine_authority,
        [
            {
                "id": uuid.uuid4(),
                "engine": engine,
                "display_name": display_name,
                "reliability_score": reliability,
                "citation_completeness": completeness,
                "freshness_index": freshness,
                "authority_weight": weight,
            }
            for engine, display_name, reliability, completeness, freshness, weight in ENGINE_SEEDS
        ],
    )
    op.bulk_insert(
        scoring_configs,
        [
            {
                "id": uuid.uuid4(),
                "version": "v1.0.0",
                "weights": DEFAULT_WEIGHTS,
                "algorithm": DEFAULT_ALGORITHM,
                "is_active": True,
                "description": "Built-in default scoring algorithm",
            }
        ],
    )


def downgrade() -> None:
    op.drop_table("alerts")
    op.drop_index("uq_scoring_configs_active", table_name="scoring_configs")
    op.drop_table("scoring_configs")
    op.drop_table("prompt_scores")
    op.drop_table("engine_results")
    op.drop_index("uq_engine_outages_open", table_name="engine_outages")
    op.drop_table("engine_outages")
    op.drop_table("engine_authority")
    op.drop_table("job_queue")
