"""
Matching Agent Pydantic Models
Data models for the embedding, vector index, analysis and matching pipeline.
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, SerializeAsAny, field_validator
from pydantic import ValidationError as PydanticValidationError


# =============================================================================
# Provider usage
# =============================================================================


class TokenUsage(BaseModel):
    """Token counts and estimated cost (in cents) of one or more provider calls."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    estimated_cost: float = Field(default=0.0, description="Estimated cost in cents")

    def __add__(self, other: "TokenUsage") -> "TokenUsage":
        return TokenUsage(
            prompt_tokens=self.prompt_tokens + other.prompt_tokens,
            completion_tokens=self.completion_tokens + other.completion_tokens,
            total_tokens=self.total_tokens + other.total_tokens,
            estimated_cost=self.estimated_cost + other.estimated_cost,
        )


class EmbeddingOptions(BaseModel):
    """Per-call overrides for the embedding client."""

    model: Optional[str] = Field(default=None, description="Embedding model to call")
    dimensions: Optional[int] = Field(default=None, gt=0, description="Override output width")


class EmbeddingResult(BaseModel):
    """A single embedding with its usage."""

    vector: list[float]
    model: str
    usage: TokenUsage


class BatchEmbeddingResult(BaseModel):
    """Embeddings in input order with summed usage."""

    vectors: list[list[float]]
    model: str
    usage: TokenUsage


class ChatOptions(BaseModel):
    """Per-call overrides for chat completions."""

    model: Optional[str] = None
    temperature: Optional[float] = Field(default=None, ge=0.0, le=2.0)
    max_tokens: Optional[int] = Field(default=None, gt=0)
    response_format: Literal["text", "json_object"] = "text"


class ChatCompletionResult(BaseModel):
    """Text content returned by a chat completion."""

    content: str
    model: str
    usage: TokenUsage


class AIInteractionData(BaseModel):
    """One audit entry for the ai_interactions table."""

    interaction_type: str
    model_used: str
    input_text: Optional[str] = None
    output_text: Optional[str] = None
    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0
    estimated_cost_cents: float = 0.0
    response_time_ms: Optional[int] = None
    success: bool = True
    error_message: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    user_id: Optional[str] = None
    organization_id: Optional[str] = None


InteractionRecorder = Callable[[AIInteractionData], None]


# =============================================================================
# Vector metadata
# =============================================================================


class VectorMetadata(BaseModel):
    """
    Metadata stored alongside a vector.

    Every shape carries a type discriminator and timestamps. Unknown keys are
    kept (extra="allow") so records written by newer code still round-trip.
    """

    model_config = ConfigDict(extra="allow")

    type: str
    title: Optional[str] = None
    content: Optional[str] = None
    source: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    created_ts: Optional[float] = Field(
        default=None,
        description="created_at as epoch seconds, used for range filters",
    )

    @field_validator("title", "content", "source", "created_at", "updated_at", mode="before")
    @classmethod
    def coerce_text(cls, value: Any) -> Any:
        """Numbers and datetimes are stored as strings."""
        if isinstance(value, datetime):
            if value.tzinfo is None:
                value = value.replace(tzinfo=timezone.utc)
            return value.isoformat()
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value

    def to_store(self) -> dict[str, Any]:
        """Flat dict accepted by the vector store (no None values)."""
        return self.model_dump(mode="json", exclude_none=True)


class GrantVectorMetadata(VectorMetadata):
    """Metadata of a grant vector in the 'grants' namespace."""

    type: Literal["grant"] = "grant"
    grant_id: str
    funder: Optional[str] = None
    deadline: Optional[str] = None
    amount_min: Optional[float] = None
    amount_max: Optional[float] = None
    categories: list[str] = Field(default_factory=list)
    url: Optional[str] = None


class OrganizationVectorMetadata(VectorMetadata):
    """Metadata of an organization-profile vector."""

    type: Literal["organization"] = "organization"
    organization_id: str
    sector: Optional[str] = None
    location: Optional[str] = None


class DocumentVectorMetadata(VectorMetadata):
    """Metadata of an application document chunk."""

    type: Literal["document"] = "document"
    document_id: str
    organization_id: Optional[str] = None
    application_id: Optional[str] = None
    chunk_index: int = 0
    total_chunks: int = 1


class GenericVectorMetadata(VectorMetadata):
    """Any other entity type."""


_METADATA_TYPES: dict[str, type[VectorMetadata]] = {
    "grant": GrantVectorMetadata,
    "organization": OrganizationVectorMetadata,
    "document": DocumentVectorMetadata,
}


def parse_metadata(raw: Optional[dict[str, Any]], strict: bool = False) -> VectorMetadata:
    """
    Validate vector metadata.

    Known types are validated against their shape; a record that does not fit
    (or has no type) falls back to GenericVectorMetadata. When even that fails,
    the offending base fields are dropped so reads never fail. With strict=True
    (the write path) the pydantic error is raised instead.
    """
    data = dict(raw or {})
    data["type"] = str(data.get("type") or "unknown")
    model = _METADATA_TYPES.get(data["type"])
    if model is not None:
        try:
            return model.model_validate(data)
        except PydanticValidationError:
            pass

    try:
        return GenericVectorMetadata.model_validate(data)
    except PydanticValidationError as e:
        if strict:
            raise
        invalid = {error["loc"][0] for error in e.errors() if error["loc"]}

    cleaned = {key: value for key, value in data.items() if key not in invalid}
    if model is not None:
        try:
            return model.model_validate(cleaned)
        except PydanticValidationError:
            pass
    return GenericVectorMetadata.model_validate(cleaned)


class VectorRecord(BaseModel):
    """A vector with its id and metadata, ready for upsert."""

    id: str = Field(..., min_length=1)
    values: list[float]
    metadata: SerializeAsAny[VectorMetadata]


class VectorMatch(BaseModel):
    """A search hit (or exact fetch, score 1.0) from the vector index."""

    id: str
    score: float
    metadata: SerializeAsAny[VectorMetadata]
    values: Optional[list[float]] = None


class DateRange(BaseModel):
    """Closed interval on the created timestamp of a vector."""

    start: datetime
    end: datetime


class HybridSearchFilters(BaseModel):
    """
    Structured filters for hybrid search.

    Scalar fields become equality predicates, list fields become membership
    predicates and date_range becomes a closed range. Extra keys are allowed
    and translated by the same rules.
    """

    model_config = ConfigDict(extra="allow")

    type: Optional[str] = None
    organization_id: Optional[str] = None
    grant_id: Optional[str] = None
    source: Optional[str] = None
    date_range: Optional[DateRange] = None
    tags: Optional[list[str]] = None
    categories: Optional[list[str]] = None


# =============================================================================
# Chunking
# =============================================================================


class ChunkStrategy(str, Enum):
    """How text is split before chunks are packed up to max_chunk_size."""

    PARAGRAPH = "paragraph"
    SENTENCE = "sentence"
    CHARACTER = "character"


class ChunkingOptions(BaseModel):
    """Sizes are in characters."""

    max_chunk_size: int = Field(default=1000, gt=0)
    chunk_overlap: int = Field(default=200, ge=0)
    min_chunk_size: int = Field(default=100, ge=0)
    strategy: ChunkStrategy = ChunkStrategy.PARAGRAPH
    respect_word_boundaries: bool = True


class SemanticChunkingOptions(ChunkingOptions):
    """Adjacent chunks at or above similarity_threshold are merged."""

    strategy: ChunkStrategy = ChunkStrategy.SENTENCE
    similarity_threshold: float = Field(default=0.8, ge=-1.0, le=1.0)
    max_merged_size_ratio: float = Field(default=1.5, ge=1.0)


class TextChunk(BaseModel):
    """A chunk of a longer text with its character span in the source."""

    id: str
    content: str
    start_index: int
    end_index: int
    chunk_index: int
    total_chunks: int = 0
    word_count: int = 0
    character_count: int = 0
    sentence_count: int = 0


class SimilarText(BaseModel):
    """A candidate text scored against a query by cosine similarity."""

    text: str
    similarity: float
    index: int


class StoredVector(BaseModel):
    """Id and embedding usage of a vector written by store_text_as_vector."""

    vector_id: str
    namespace: str
    usage: TokenUsage


class DocumentIndexResult(BaseModel):
    """Outcome of chunking, embedding and indexing one document."""

    document_id: str
    namespace: str
    vector_ids: list[str] = Field(default_factory=list)
    chunks: list[TextChunk] = Field(default_factory=list)
    usage: TokenUsage = Field(default_factory=TokenUsage)


# =============================================================================
# Analysis
# =============================================================================


class EligibilityStatus(str, Enum):
    """Eligibility verdict, declared from best to worst."""

    ELIGIBLE = "ELIGIBLE"
    PARTIALLY_ELIGIBLE = "PARTIALLY_ELIGIBLE"
    UNCLEAR = "UNCLEAR"
    NOT_ELIGIBLE = "NOT_ELIGIBLE"

    @classmethod
    def _missing_(cls, value: object) -> Optional["EligibilityStatus"]:
        if isinstance(value, str):
            normalized = value.strip().upper().replace(" ", "_").replace("-", "_")
            if normalized == "PARTIAL":
                return cls.PARTIALLY_ELIGIBLE
            for member in cls:
                if member.value == normalized:
                    return member
        return None

    @property
    def rank(self) -> int:
        """Sort key, higher is better."""
        return len(EligibilityStatus) - list(EligibilityStatus).index(self)


class MatchingCriterion(BaseModel):
    """One criterion of the compatibility analysis."""

    criterion: str
    matches: bool
    score: float = Field(..., ge=0.0, le=100.0)
    explanation: str = ""


class MatchAnalysis(BaseModel):
    """
    Result of LLM-based compatibility analysis between an entity and a grant.
    """

    overall_compatibility: float = Field(
        ...,
        ge=0.0,
        le=100.0,
        description="Overall compatibility score from 0-100",
    )
    eligibility_status: EligibilityStatus
    matching_criteria: list[MatchingCriterion] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)
    reasoning: str = ""
    confidence: float = Field(default=0.0, ge=0.0, le=100.0)

    @field_validator("confidence")
    @classmethod
    def scale_confidence(cls, value: float) -> float:
        """Models sometimes answer 0-1; store everything on the 0-100 scale."""
        if 0.0 < value <= 1.0:
            return round(value * 100, 2)
        return value


# =============================================================================
# Domain entities
# =============================================================================


class OrganizationProfile(BaseModel):
    """Organization data used for matching."""

    id: str
    name: str
    description: str = ""
    sector: Optional[str] = None
    size: Optional[str] = None
    location: Optional[str] = None
    capabilities: list[str] = Field(default_factory=list)
    previous_grants: list[str] = Field(default_factory=list)

    def to_profile_text(self) -> str:
        """Text representation for embedding and LLM analysis."""
        parts = [
            f"Organization: {self.name}",
            f"Description: {self.description}",
        ]
        if self.sector:
            parts.append(f"Sector: {self.sector}")
        if self.size:
            parts.append(f"Size: {self.size}")
        if self.location:
            parts.append(f"Location: {self.location}")
        if self.capabilities:
            parts.append(f"Capabilities: {', '.join(self.capabilities)}")
        if self.previous_grants:
            parts.append(f"Previous grants: {', '.join(self.previous_grants)}")
        return "\n".join(parts)


class GrantData(BaseModel):
    """
    Grant data used by the pipeline.

    Built from the ORM row with GrantData.model_validate(row).
    """

    model_config = ConfigDict(from_attributes=True)

    id: str
    title: str
    description: Optional[str] = None
    summary: Optional[str] = None
    funder: Optional[str] = None
    source: Optional[str] = None
    url: Optional[str] = None
    amount_min: Optional[float] = None
    amount_max: Optional[float] = None
    deadline: Optional[datetime] = None
    categories: list[str] = Field(default_factory=list)
    eligibility_criteria: Optional[dict[str, Any]] = None
    is_active: bool = True
    vector_id: Optional[str] = None

    @field_validator("categories", mode="before")
    @classmethod
    def none_to_list(cls, value: Any) -> Any:
        return value or []

    def to_embedding_text(self) -> str:
        """Descriptive text composed from title, description, funder and categories."""
        parts = [f"Title: {self.title}"]

        if self.description:
            parts.append(f"Description: {self.description}")

        if self.summary:
            parts.append(f"Summary: {self.summary}")

        if self.funder:
            parts.append(f"Funder: {self.funder}")

        if self.categories:
            parts.append(f"Categories: {', '.join(self.categories)}")

        if self.amount_min or self.amount_max:
            amounts = [f"{a:,.0f}" for a in (self.amount_min, self.amount_max) if a]
            parts.append(f"Funding: {' - '.join(amounts)}")

        if self.deadline:
            parts.append(f"Deadline: {self.deadline.strftime('%Y-%m-%d')}")

        if self.eligibility_criteria:
            criteria = "; ".join(
                f"{key}: {', '.join(map(str, value)) if isinstance(value, list) else value}"
                for key, value in self.eligibility_criteria.items()
            )
            parts.append(f"Eligibility: {criteria}")

        return "\n".join(parts)


# =============================================================================
# Grant processing state
# =============================================================================


class Unprocessed(BaseModel):
    status: Literal["unprocessed"] = "unprocessed"


class Processing(BaseModel):
    status: Literal["processing"] = "processing"


class Processed(BaseModel):
    status: Literal["processed"] = "processed"
    vector_id: str
    tags: list[str] = Field(default_factory=list)


class Errored(BaseModel):
    status: Literal["errored"] = "errored"
    message: str


GrantState = Union[Unprocessed, Processing, Processed, Errored]


def needs_processing(state: GrantState) -> bool:
    """Errored and interrupted runs are retried; only Processed is final."""
    return not isinstance(state, Processed)


def state_to_columns(state: GrantState) -> dict[str, Any]:
    """Column values written to the grants row for a state."""
    columns: dict[str, Any] = {
        "processing_status": state.status,
        "ai_processed": isinstance(state, Processed),
        "processing_error": None,
    }
    if isinstance(state, Processed):
        columns["vector_id"] = state.vector_id
        columns["ai_processed_at"] = datetime.now(timezone.utc)
    elif isinstance(state, Errored):
        columns["processing_error"] = state.message
        columns["ai_processed_at"] = datetime.now(timezone.utc)
    return columns


def state_from_columns(
    processing_status: Optional[str],
    ai_processed: Optional[bool],
    processing_error: Optional[str] = None,
    vector_id: Optional[str] = None,
    tags: Optional[list[str]] = None,
) -> GrantState:
    """Rebuild the state of a grants row, tolerating rows written before processing_status existed."""
    if processing_status == "processing":
        return Processing()
    if ai_processed and vector_id:
        return Processed(vector_id=vector_id, tags=tags or [])
    if processing_error:
        return Errored(message=processing_error)
    return Unprocessed()


# =============================================================================
# Pipeline results
# =============================================================================


class GrantProcessingResult(BaseModel):
    """Outcome of process_new_grant; never raised, always returned."""

    grant: GrantData
    vector_id: Optional[str] = None
    ai_processed: bool
    semantic_tags: list[str] = Field(default_factory=list)
    processing_error: Optional[str] = None
    state: GrantState


class MatchOptions(BaseModel):
    """Options for find_matching_grants."""

    top_k: Optional[int] = Field(default=None, gt=0, le=100)
    limit: Optional[int] = Field(default=None, gt=0)
    specific_query: Optional[str] = None
    filters: Optional[HybridSearchFilters] = None
    user_id: Optional[str] = None
    # Profiles not stored in organizations cannot be cached
    use_cache: bool = True


class GrantMatchResult(BaseModel):
    """A ranked grant match for an organization."""

    grant: GrantData
    match_score: float
    analysis: MatchAnalysis
    semantic_similarity: float
    reasoning: str
    recommendations: list[str] = Field(default_factory=list)
    from_cache: bool = False


class SemanticSearchResult(BaseModel):
    """A semantic search hit, optionally re-ranked with an AI score."""

    id: str
    grant_id: Optional[str] = None
    title: Optional[str] = None
    content: Optional[str] = None
    similarity: float
    metadata: SerializeAsAny[VectorMetadata]
    ai_score: Optional[float] = None
    reasoning: Optional[str] = None
    combined_score: Optional[float] = None


class BatchProcessResult(BaseModel):
    """Counts of a batch_process_grants run."""

    processed: int = 0
    failed: int = 0
    errors: list[str] = Field(default_factory=list)


# =============================================================================
# Health
# =============================================================================


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"


class ComponentHealth(BaseModel):
    """Health of one dependency."""

    status: HealthStatus
    details: dict[str, Any] = Field(default_factory=dict)
    error: Optional[str] = None


class ServiceHealth(BaseModel):
    """Aggregated health of the matching service."""

    status: HealthStatus
    grants_processed: int = 0
    vectors_stored: int = 0
    ai_interactions: int = 0
    components: dict[str, ComponentHealth] = Field(default_factory=dict)
    errors: list[str] = Field(default_factory=list)
