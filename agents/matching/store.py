"""
Matching Store
Persistence for grant processing state, semantic tags, vector tracking,
cached analyses and the AI interaction audit log.
"""

import hashlib
from datetime import datetime, timedelta, timezone
from typing import Optional

import structlog
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import delete, func, or_, select
from sqlalchemy.orm import sessionmaker

from backend.core.exceptions import NotFoundError
from backend.database import get_session_factory
from backend.models import (
    AIInteraction,
    Grant,
    GrantAIAnalysis,
    GrantSemanticTag,
    Organization,
    VectorEmbedding,
)

from .models import (
    AIInteractionData,
    GrantData,
    GrantState,
    MatchAnalysis,
    OrganizationProfile,
    state_from_columns,
    state_to_columns,
)

logger = structlog.get_logger().bind(agent="matching_store")

TAG_EXTRACTION_METHOD = "ai_generated"
TAG_CONFIDENCE = 85.0


def compute_text_hash(text: str) -> str:
    """SHA-256 of a text, used to detect changed grant or profile content."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class MatchingStore:
    """
    Database access for the matching pipeline.

    Every write runs in its own transaction, so a failed write leaves no
    partial rows. SQLAlchemy errors propagate to the caller.
    """

    def __init__(self, session_factory: Optional[sessionmaker] = None):
        self.session_factory = session_factory or get_session_factory()

    # =========================================================================
    # Grants
    # =========================================================================

    def get_grant(self, grant_id: str) -> Optional[GrantData]:
        with self.session_factory() as session:
            grant = session.get(Grant, grant_id)
            return GrantData.model_validate(grant) if grant else None

    def get_unprocessed_grants(self, limit: int = 10) -> list[GrantData]:
        """
        Active grants that still need processing, newest first.

        Mirrors state_from_columns: only a row with ai_processed set, a vector
        id and a status other than "processing" counts as Processed.
        """
        stmt = (
            select(Grant)
            .where(Grant.is_active.is_(True))
            .where(
                or_(
                    Grant.ai_processed.is_(None),
                    Grant.ai_processed.is_(False),
                    Grant.vector_id.is_(None),
                    Grant.processing_status == "processing",
                )
            )
            .order_by(Grant.created_at.desc())
            .limit(limit)
        )
        with self.session_factory() as session:
            return [GrantData.model_validate(g) for g in session.scalars(stmt)]

    def get_grant_state(self, grant_id: str) -> GrantState:
        with self.session_factory() as session:
            grant = session.get(Grant, grant_id)
            if grant is None:
                raise NotFoundError("Grant", grant_id)
            return state_from_columns(
                grant.processing_status,
                grant.ai_processed,
                grant.processing_error,
                grant.vector_id,
                [tag.tag_name for tag in grant.semantic_tags],
            )

    def update_grant_state(self, grant_id: str, state: GrantState) -> None:
        """Write a processing state onto the grants row."""
        with self.session_factory.begin() as session:
            grant = session.get(Grant, grant_id)
            if grant is None:
                raise NotFoundError("Grant", grant_id)
            for column, value in state_to_columns(state).items():
                setattr(grant, column, value)

        logger.debug("grant_state_updated", grant_id=grant_id, status=state.status)

    # =========================================================================
    # Semantic tags
    # =========================================================================

    def replace_semantic_tags(
        self,
        grant_id: str,
        tags: list[str],
        model_used: Optional[str] = None,
    ) -> int:
        """
        Replace the AI-generated tags of a grant, one row per distinct tag.

        Returns:
            Number of tag rows written.
        """
        unique_tags = list(dict.fromkeys(t for t in tags if t))

        with self.session_factory.begin() as session:
            session.execute(
                delete(GrantSemanticTag).where(
                    GrantSemanticTag.grant_id == grant_id,
                    GrantSemanticTag.extraction_method == TAG_EXTRACTION_METHOD,
                )
            )
            session.add_all(
                GrantSemanticTag(
                    grant_id=grant_id,
                    tag_name=tag,
                    confidence_score=TAG_CONFIDENCE,
                    extraction_method=TAG_EXTRACTION_METHOD,
                    model_used=model_used,
                )
                for tag in unique_tags
            )

        return len(unique_tags)

    def get_semantic_tags(self, grant_id: str) -> list[str]:
        stmt = (
            select(GrantSemanticTag.tag_name)
            .where(GrantSemanticTag.grant_id == grant_id)
            .order_by(GrantSemanticTag.tag_name)
        )
        with self.session_factory() as session:
            return list(session.scalars(stmt))

    # =========================================================================
    # Vector tracking
    # =========================================================================

    def upsert_vector_embedding(
        self,
        entity_type: str,
        entity_id: str,
        vector_id: str,
        namespace: str,
        embedding_model: str,
        dimensions: int,
        content_hash: Optional[str] = None,
    ) -> Optional[str]:
        """
        Track the vector stored for an entity in a namespace.

        Returns:
            The previously tracked vector id when it differs from the new one,
            so the caller can delete the stale vector; otherwise None.
        """
        with self.session_factory.begin() as session:
            row = session.scalars(
                select(VectorEmbedding).where(
                    VectorEmbedding.entity_type == entity_type,
                    VectorEmbedding.entity_id == entity_id,
                    VectorEmbedding.namespace == namespace,
                )
            ).first()

            previous = None
            if row is None:
                session.add(
                    VectorEmbedding(
                        entity_type=entity_type,
                        entity_id=entity_id,
                        vector_id=vector_id,
                        namespace=namespace,
                        embedding_model=embedding_model,
                        dimensions=dimensions,
                        content_hash=content_hash,
                    )
                )
            else:
                if row.vector_id != vector_id:
                    previous = row.vector_id
                row.vector_id = vector_id
                row.embedding_model = embedding_model
                row.dimensions = dimensions
                row.content_hash = content_hash

        return previous

    # =========================================================================
    # Analysis cache
    # =========================================================================

    def get_cached_analysis(
        self,
        grant_id: str,
        organization_id: str,
        grant_text_hash: str,
        profile_text_hash: str,
        ttl_hours: Optional[int] = None,
    ) -> Optional[MatchAnalysis]:
        """
        Most recent cached analysis for a (grant, organization) pair.

        The entry is only returned while both text hashes still match and, when
        ttl_hours is set, it is younger than the TTL.
        """
        stmt = (
            select(GrantAIAnalysis)
            .where(
                GrantAIAnalysis.grant_id == grant_id,
                GrantAIAnalysis.organization_id == organization_id,
            )
            .order_by(GrantAIAnalysis.created_at.desc())
            .limit(1)
        )
        with self.session_factory() as session:
            row = session.scalars(stmt).first()
            if row is None:
                return None

            if row.grant_text_hash != grant_text_hash or row.profile_text_hash != profile_text_hash:
                logger.debug("analysis_cache_stale", grant_id=grant_id, reason="text_changed")
                return None

            if ttl_hours is not None:
                age = datetime.now(timezone.utc) - _as_utc(row.created_at)
                if age > timedelta(hours=ttl_hours):
                    logger.debug("analysis_cache_stale", grant_id=grant_id, reason="expired")
                    return None

            try:
                return MatchAnalysis.model_validate(row.analysis_result)
            except PydanticValidationError as e:
                logger.warning("analysis_cache_unreadable", grant_id=grant_id, error=str(e))
                return None

    def cache_analysis(
        self,
        grant_id: str,
        organization_id: str,
        analysis: MatchAnalysis,
        model_used: str,
        grant_text_hash: str,
        profile_text_hash: str,
        user_id: Optional[str] = None,
    ) -> None:
        """Insert a cache row; existing rows are never updated."""
        with self.session_factory.begin() as session:
            session.add(
                GrantAIAnalysis(
                    grant_id=grant_id,
                    organization_id=organization_id,
                    user_id=user_id,
                    analysis_type="compatibility",
                    analysis_result=analysis.model_dump(mode="json"),
                    confidence_score=analysis.confidence,
                    model_used=model_used,
                    grant_text_hash=grant_text_hash,
                    profile_text_hash=profile_text_hash,
                )
            )

    # =========================================================================
    # Audit log
    # =========================================================================

    def record_ai_interaction(self, interaction: AIInteractionData) -> None:
        """Append one ai_interactions row. Usable directly as an interaction recorder."""
        with self.session_factory.begin() as session:
            session.add(
                AIInteraction(
                    user_id=interaction.user_id,
                    organization_id=interaction.organization_id,
                    interaction_type=interaction.interaction_type,
                    model_used=interaction.model_used,
                    input_text=interaction.input_text,
                    output_text=interaction.output_text,
                    input_tokens=interaction.input_tokens,
                    output_tokens=interaction.output_tokens,
                    total_tokens=interaction.total_tokens,
                    estimated_cost_cents=interaction.estimated_cost_cents,
                    response_time_ms=interaction.response_time_ms,
                    success=interaction.success,
                    error_message=interaction.error_message,
                    metadata_=interaction.metadata or None,
                )
            )

    # =========================================================================
    # Organizations
    # =========================================================================

    def get_organization_profile(self, organization_id: str) -> OrganizationProfile:
        """
        Raises:
            NotFoundError: If the organization does not exist.
        """
        with self.session_factory() as session:
            org = session.get(Organization, organization_id)
            if org is None:
                raise NotFoundError("Organization", organization_id)
            return OrganizationProfile(
                id=org.id,
                name=org.name,
                description=org.description or "",
                sector=org.sector,
                size=org.size,
                location=org.location,
                capabilities=org.capabilities or [],
                previous_grants=org.previous_grants or [],
            )

    # =========================================================================
    # Health counts
    # =========================================================================

    def count_processed_grants(self) -> int:
        stmt = select(func.count()).select_from(Grant).where(Grant.ai_processed.is_(True))
        with self.session_factory() as session:
            return session.scalar(stmt) or 0

    def count_vector_embeddings(self, entity_type: str = "grant") -> int:
        stmt = (
            select(func.count())
            .select_from(VectorEmbedding)
            .where(VectorEmbedding.entity_type == entity_type)
        )
        with self.session_factory() as session:
            return session.scalar(stmt) or 0

    def count_recent_interactions(self, hours: int = 24) -> int:
        since = datetime.now(timezone.utc) - timedelta(hours=hours)
        stmt = select(func.count()).select_from(AIInteraction).where(AIInteraction.created_at >= since)
        with self.session_factory() as session:
            return session.scalar(stmt) or 0
