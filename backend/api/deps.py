"""
FastAPI Dependencies
Builds the matching pipeline once per process and exposes it to the routers.
"""
from functools import lru_cache
from typing import Annotated

from fastapi import Depends

from agents.matching import (
    EmbeddingClient,
    GrantMatchingOrchestrator,
    MatchingStore,
    RelevanceAnalyzer,
    VectorIndexClient,
)
from backend.core.config import settings
from backend.database import get_session_factory


def build_orchestrator() -> GrantMatchingOrchestrator:
    """
    Wire the production clients together.

    Provider calls are audited into ai_interactions through the store.
    """
    store = MatchingStore(get_session_factory())
    return GrantMatchingOrchestrator(
        embedder=EmbeddingClient(settings, recorder=store.record_ai_interaction),
        vector_index=VectorIndexClient(settings),
        analyzer=RelevanceAnalyzer(settings, recorder=store.record_ai_interaction),
        store=store,
        settings=settings,
    )


@lru_cache
def get_orchestrator() -> GrantMatchingOrchestrator:
    """Process-wide orchestrator, built on first use."""
    return build_orchestrator()


OrchestratorDep = Annotated[GrantMatchingOrchestrator, Depends(get_orchestrator)]
