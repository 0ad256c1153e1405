"""
GrantMatch Database Models
SQLAlchemy ORM models for the grant matching and AI analysis core.
"""
import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import (
    JSON,
    TIMESTAMP,
    Boolean,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


def _new_id() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Base class for all database models."""

    pass


class Grant(Base):
    """
    Grant opportunities from various funding sources.

    Created by the ingestion pipeline; the matching core only updates the AI
    processing columns (processing_status, vector_id, ...) and never deletes
    rows. Inactive grants are soft-deactivated through is_active.
    """

    __tablename__ = "grants"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=_new_id,
        doc="Unique identifier for the grant",
    )
    source: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        doc="Data source (e.g., 'crawler', 'manual', 'grants_gov')",
    )
    title: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        doc="Grant title/name",
    )
    description: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        doc="Full grant description",
    )
    summary: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        doc="Short summary of the opportunity",
    )
    funder: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        doc="Funding body name",
    )
    url: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        doc="Link to the original announcement",
    )
    amount_min: Mapped[Optional[float]] = mapped_column(
        Float,
        nullable=True,
        doc="Minimum funding amount",
    )
    amount_max: Mapped[Optional[float]] = mapped_column(
        Float,
        nullable=True,
        doc="Maximum funding amount",
    )
    deadline: Mapped[Optional[datetime]] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=True,
        doc="Application deadline",
    )
    categories: Mapped[Optional[list[str]]] = mapped_column(
        JSONType,
        nullable=True,
        doc="Category tags assigned at ingestion",
    )
    eligibility_criteria: Mapped[Optional[dict[str, Any]]] = mapped_column(
        JSONType,
        nullable=True,
        doc="Structured eligibility requirements",
    )
    application_process: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        doc="How to apply",
    )
    required_documents: Mapped[Optional[list[str]]] = mapped_column(
        JSONType,
        nullable=True,
        doc="Documents the applicant must supply",
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        doc="Soft-deactivation flag",
    )

    # AI processing state
    ai_processed: Mapped[Optional[bool]] = mapped_column(
        Boolean,
        nullable=True,
        default=False,
        doc="True once the grant is embedded, stored and tagged",
    )
    processing_status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="unprocessed",
        doc="unprocessed, processing, processed or errored",
    )
    processing_error: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        doc="Message of the last failed processing run",
    )
    vector_id: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
        doc="Identifier of the grant's vector in the 'grants' namespace",
    )
    ai_processed_at: Mapped[Optional[datetime]] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        default=_utcnow,
        onupdate=_utcnow,
        server_default=func.now(),
    )

    semantic_tags: Mapped[list["GrantSemanticTag"]] = relationship(
        "GrantSemanticTag",
        back_populates="grant",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        Index("ix_grants_ai_processed", "ai_processed", "is_active"),
        Index("ix_grants_created_at", "created_at"),
    )


class Organization(Base):
    """Applicant organizations; owned by organization management, read-only here."""

    __tablename__ = "organizations"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    sector: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    size: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    location: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    capabilities: Mapped[Optional[list[str]]] = mapped_column(JSONType, nullable=True)
    previous_grants: Mapped[Optional[list[str]]] = mapped_column(JSONType, nullable=True)
    profile_data: Mapped[Optional[dict[str, Any]]] = mapped_column(JSONType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=func.now(),
    )


class GrantSemanticTag(Base):
    """AI-extracted tags for better searchability and categorization."""

    __tablename__ = "grant_semantic_tags"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    grant_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("grants.id", ondelete="CASCADE"),
        nullable=False,
    )
    tag_name: Mapped[str] = mapped_column(String(100), nullable=False)
    tag_category: Mapped[Optional[str]] = mapped_column(
        String(50),
        nullable=True,
        doc="sector, technology, stage, location or theme",
    )
    confidence_score: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    extraction_method: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        default="ai_generated",
    )
    model_used: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=func.now(),
    )

    grant: Mapped["Grant"] = relationship("Grant", back_populates="semantic_tags")

    __table_args__ = (
        UniqueConstraint("grant_id", "tag_name", "tag_category", name="uq_grant_semantic_tag"),
        Index("ix_grant_semantic_tags_grant", "grant_id"),
    )


class GrantAIAnalysis(Base):
    """
    Cached compatibility analysis for a (grant, organization) pair.

    Rows are insert-only: re-scoring a pair adds a new row and the most
    recent one wins. The text hashes record what the analysis was computed
    from, so a changed grant or profile invalidates the cached row.
    """

    __tablename__ = "grant_ai_analysis"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    grant_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("grants.id", ondelete="CASCADE"),
        nullable=False,
    )
    organization_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
    )
    user_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    analysis_type: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        default="compatibility",
    )
    analysis_result: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False)
    confidence_score: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    model_used: Mapped[str] = mapped_column(String(100), nullable=False)
    grant_text_hash: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    profile_text_hash: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        default=_utcnow,
    )

    __table_args__ = (
        Index(
            "ix_grant_ai_analysis_pair",
            "grant_id",
            "organization_id",
            "created_at",
        ),
    )


class AIInteraction(Base):
    """Append-only audit log of every embedding / chat call and pipeline run."""

    __tablename__ = "ai_interactions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    organization_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    interaction_type: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        doc="embedding, chat, grant_processing, grant_matching, semantic_search",
    )
    model_used: Mapped[str] = mapped_column(String(100), nullable=False)
    input_text: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    output_text: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    input_tokens: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    output_tokens: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_tokens: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    estimated_cost_cents: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    response_time_ms: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    metadata_: Mapped[Optional[dict[str, Any]]] = mapped_column(
        "metadata",
        JSONType,
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        default=_utcnow,
    )

    __table_args__ = (
        Index("ix_ai_interactions_type", "interaction_type", "created_at"),
        Index("ix_ai_interactions_org", "organization_id", "created_at"),
    )


class VectorEmbedding(Base):
    """Tracks which entities are stored as vectors, one row per entity and namespace."""

    __tablename__ = "vector_embeddings"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(36), nullable=False)
    vector_id: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    embedding_model: Mapped[str] = mapped_column(String(100), nullable=False)
    namespace: Mapped[str] = mapped_column(String(100), nullable=False, default="default")
    dimensions: Mapped[int] = mapped_column(Integer, nullable=False, default=1536)
    content_hash: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        default=_utcnow,
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        default=_utcnow,
        onupdate=_utcnow,
    )

    __table_args__ = (
        UniqueConstraint("entity_type", "entity_id", "namespace", name="uq_vector_embedding_entity"),
    )
