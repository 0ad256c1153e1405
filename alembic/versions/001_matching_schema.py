"""Grant matching and AI analysis schema

Revision ID: 001
Revises:
Create Date: 2026-10-17

Creates the tables used by the matching core:
- grants (with AI processing columns) and organizations
- grant_semantic_tags: AI-extracted tags, one row per tag
- grant_ai_analysis: insert-only cache of compatibility analyses
- ai_interactions: audit log of provider calls and pipeline runs
- vector_embeddings: which entities are stored as vectors, per namespace
"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy import inspect
from sqlalchemy.dialects import postgresql

# Revision identifiers
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def table_exists(table_name: str) -> bool:
    """Check if a table exists."""
    bind = op.get_bind()
    inspector = inspect(bind)
    return table_name in inspector.get_table_names()


def column_exists(table_name: str, column_name: str) -> bool:
    """Check if a column exists in a table."""
    bind = op.get_bind()
    inspector = inspect(bind)
    columns = [col["name"] for col in inspector.get_columns(table_name)]
    return column_name in columns


def upgrade() -> None:
    """Create matching tables (idempotent)."""

    # ==========================================================================
    # grants
    # ==========================================================================
    if not table_exists("grants"):
        op.create_table(
            "grants",
            sa.Column("id", sa.String(36), primary_key=True),
            sa.Column("source", sa.Text(), nullable=True),
            sa.Column("title", sa.Text(), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("summary", sa.Text(), nullable=True),
            sa.Column("funder", sa.Text(), nullable=True),
            sa.Column("url", sa.Text(), nullable=True),
            sa.Column("amount_min", sa.Float(), nullable=True),
            sa.Column("amount_max", sa.Float(), nullable=True),
            sa.Column("deadline", sa.TIMESTAMP(timezone=True), nullable=True),
            sa.Column("categories", postgresql.JSONB(), nullable=True),
            sa.Column("eligibility_criteria", postgresql.JSONB(), nullable=True),
            sa.Column("application_process", sa.Text(), nullable=True),
            sa.Column("required_documents", postgresql.JSONB(), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.func.now()),
            sa.Column("updated_at", sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.func.now()),
        )
        op.create_index("ix_grants_created_at", "grants", ["created_at"])

    # AI processing columns, also added to a pre-existing grants table
    ai_columns = [
        sa.Column("ai_processed", sa.Boolean(), nullable=True, server_default=sa.false()),
        sa.Column("processing_status", sa.String(20), nullable=False, server_default="unprocessed"),
        sa.Column("processing_error", sa.Text(), nullable=True),
        sa.Column("vector_id", sa.String(255), nullable=True),
        sa.Column("ai_processed_at", sa.TIMESTAMP(timezone=True), nullable=True),
    ]
    for column in ai_columns:
        if not column_exists("grants", column.name):
            op.add_column("grants", column)

    op.create_index(
        "ix_grants_ai_processed",
        "grants",
        ["ai_processed", "is_active"],
        if_not_exists=True,
    )

    # ==========================================================================
    # organizations
    # ==========================================================================
    if not table_exists("organizations"):
        op.create_table(
            "organizations",
            sa.Column("id", sa.String(36), primary_key=True),
            sa.Column("name", sa.Text(), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("sector", sa.String(100), nullable=True),
            sa.Column("size", sa.String(50), nullable=True),
            sa.Column("location", sa.String(255), nullable=True),
            sa.Column("capabilities", postgresql.JSONB(), nullable=True),
            sa.Column("previous_grants", postgresql.JSONB(), nullable=True),
            sa.Column("profile_data", postgresql.JSONB(), nullable=True),
            sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.func.now()),
        )

    # ==========================================================================
    # grant_semantic_tags
    # ==========================================================================
    if not table_exists("grant_semantic_tags"):
        op.create_table(
            "grant_semantic_tags",
            sa.Column("id", sa.String(36), primary_key=True),
            sa.Column(
                "grant_id",
                sa.String(36),
                sa.ForeignKey("grants.id", ondelete="CASCADE"),
                nullable=False,
            ),
            sa.Column("tag_name", sa.String(100), nullable=False),
            sa.Column("tag_category", sa.String(50), nullable=True),
            sa.Column("confidence_score", sa.Float(), nullable=False, server_default="0"),
            sa.Column("extraction_method", sa.String(50), nullable=False, server_default="ai_generated"),
            sa.Column("model_used", sa.String(100), nullable=True),
            sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.func.now()),
            sa.UniqueConstraint("grant_id", "tag_name", "tag_category", name="uq_grant_semantic_tag"),
        )
        op.create_index("ix_grant_semantic_tags_grant", "grant_semantic_tags", ["grant_id"])

    # ==========================================================================
    # grant_ai_analysis
    # ==========================================================================
    if not table_exists("grant_ai_analysis"):
        op.create_table(
            "grant_ai_analysis",
            sa.Column("id", sa.String(36), primary_key=True),
            sa.Column(
                "grant_id",
                sa.String(36),
                sa.ForeignKey("grants.id", ondelete="CASCADE"),
                nullable=False,
            ),
            sa.Column(
                "organization_id",
                sa.String(36),
                sa.ForeignKey("organizations.id", ondelete="CASCADE"),
                nullable=False,
            ),
            sa.Column("user_id", sa.String(36), nullable=True),
            sa.Column("analysis_type", sa.String(50), nullable=False, server_default="compatibility"),
            sa.Column("analysis_result", postgresql.JSONB(), nullable=False),
            sa.Column("confidence_score", sa.Float(), nullable=False, server_default="0"),
            sa.Column("model_used", sa.String(100), nullable=False),
            sa.Column("grant_text_hash", sa.String(64), nullable=True),
            sa.Column("profile_text_hash", sa.String(64), nullable=True),
            sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.func.now()),
        )
        op.create_index(
            "ix_grant_ai_analysis_pair",
            "grant_ai_analysis",
            ["grant_id", "organization_id", "created_at"],
        )

    # ==========================================================================
    # ai_interactions
    # ==========================================================================
    if not table_exists("ai_interactions"):
        op.create_table(
            "ai_interactions",
            sa.Column("id", sa.String(36), primary_key=True),
            sa.Column("user_id", sa.String(36), nullable=True),
            sa.Column("organization_id", sa.String(36), nullable=True),
            sa.Column("interaction_type", sa.String(50), nullable=False),
            sa.Column("model_used", sa.String(100), nullable=False),
            sa.Column("input_text", sa.Text(), nullable=True),
            sa.Column("output_text", sa.Text(), nullable=True),
            sa.Column("input_tokens", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("output_tokens", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("total_tokens", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("estimated_cost_cents", sa.Float(), nullable=False, server_default="0"),
            sa.Column("response_time_ms", sa.Integer(), nullable=True),
            sa.Column("success", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("error_message", sa.Text(), nullable=True),
            sa.Column("metadata", postgresql.JSONB(), nullable=True),
            sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.func.now()),
        )
        op.create_index("ix_ai_interactions_type", "ai_interactions", ["interaction_type", "created_at"])
        op.create_index("ix_ai_interactions_org", "ai_interactions", ["organization_id", "created_at"])

    # ==========================================================================
    # vector_embeddings
    # ==========================================================================
    if not table_exists("vector_embeddings"):
        op.create_table(
            "vector_embeddings",
            sa.Column("id", sa.String(36), primary_key=True),
            sa.Column("entity_type", sa.String(50), nullable=False),
            sa.Column("entity_id", sa.String(36), nullable=False),
            sa.Column("vector_id", sa.String(255), nullable=False, unique=True),
            sa.Column("embedding_model", sa.String(100), nullable=False),
            sa.Column("namespace", sa.String(100), nullable=False, server_default="default"),
            sa.Column("dimensions", sa.Integer(), nullable=False, server_default="1536"),
            sa.Column("content_hash", sa.String(64), nullable=True),
            sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.func.now()),
            sa.Column("updated_at", sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.func.now()),
            sa.UniqueConstraint("entity_type", "entity_id", "namespace", name="uq_vector_embedding_entity"),
        )


def downgrade() -> None:
    """Drop matching tables; the grants AI columns are removed, grants is kept."""
    op.drop_table("vector_embeddings")
    op.drop_table("ai_interactions")
    op.drop_table("grant_ai_analysis")
    op.drop_table("grant_semantic_tags")

    op.drop_index("ix_grants_ai_processed", table_name="grants", if_exists=True)
    for column in ("ai_processed_at", "vector_id", "processing_error", "processing_status", "ai_processed"):
        if column_exists("grants", column):
            op.drop_column("grants", column)
