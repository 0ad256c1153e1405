"""
Matching Agent Module
Grant processing, organization-to-grant matching and semantic search using
vector similarity and LLM re-ranking.
"""
from .analyzer import RelevanceAnalyzer
from .chunking import chunk_text, estimate_token_count
from .embedder import EmbeddingClient
from .models import (
    BatchProcessResult,
    ChunkingOptions,
    ChunkStrategy,
    DocumentIndexResult,
    EligibilityStatus,
    GrantData,
    GrantMatchResult,
    GrantProcessingResult,
    GrantState,
    HybridSearchFilters,
    MatchAnalysis,
    MatchOptions,
    OrganizationProfile,
    SemanticSearchResult,
    SemanticChunkingOptions,
    ServiceHealth,
    StoredVector,
    TextChunk,
    needs_processing,
)
from .orchestrator import GrantMatchingOrchestrator
from .store import MatchingStore
from .vector_index import VectorIndexClient

__all__ = [
    # Orchestrator
    "GrantMatchingOrchestrator",
    # Clients
    "EmbeddingClient",
    "VectorIndexClient",
    "RelevanceAnalyzer",
    "MatchingStore",
    # Chunking
    "chunk_text",
    "estimate_token_count",
    # Models
    "BatchProcessResult",
    "ChunkingOptions",
    "ChunkStrategy",
    "DocumentIndexResult",
    "EligibilityStatus",
    "GrantData",
    "GrantMatchResult",
    "GrantProcessingResult",
    "GrantState",
    "HybridSearchFilters",
    "MatchAnalysis",
    "MatchOptions",
    "OrganizationProfile",
    "SemanticSearchResult",
    "SemanticChunkingOptions",
    "ServiceHealth",
    "StoredVector",
    "TextChunk",
    "needs_processing",
]
