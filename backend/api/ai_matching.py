"""
AI Matching API Endpoints
Grant matching, semantic search, grant processing and service health.
"""
import time
from typing import Optional

import structlog
from fastapi import APIRouter, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from agents.matching import (
    BatchProcessResult,
    GrantMatchResult,
    GrantProcessingResult,
    HybridSearchFilters,
    MatchOptions,
    OrganizationProfile,
    SemanticSearchResult,
    ServiceHealth,
)
from agents.matching.models import HealthStatus
from backend.api.deps import OrchestratorDep
from backend.core.exceptions import ValidationError

logger = structlog.get_logger().bind(agent="ai_api")

router = APIRouter(prefix="/api/ai", tags=["AI Matching"])


# =============================================================================
# Schemas
# =============================================================================


class MatchRequest(BaseModel):
    """Either a full organization profile or the id of a stored organization."""

    organization_profile: Optional[OrganizationProfile] = None
    organization_id: Optional[str] = None
    filters: Optional[HybridSearchFilters] = None
    specific_query: Optional[str] = Field(None, description="Focus the analysis on a specific interest")
    limit: int = Field(default=10, ge=1, le=50)
    top_k: Optional[int] = Field(default=None, ge=1, le=100)
    user_id: Optional[str] = None


class MatchResponse(BaseModel):
    matches: list[GrantMatchResult]
    total_matches: int
    average_score: float
    ai_model: str
    processing_time_ms: int


class SemanticSearchRequest(BaseModel):
    query: str = Field(..., min_length=1)
    organization_id: Optional[str] = None
    filters: Optional[HybridSearchFilters] = None
    limit: int = Field(default=10, ge=1, le=50)
    user_id: Optional[str] = None


class SemanticSearchResponse(BaseModel):
    results: list[SemanticSearchResult]
    query: str
    total_results: int
    processing_time_ms: int


class BatchProcessRequest(BaseModel):
    limit: int = Field(default=10, ge=1, le=100)


class BatchProcessResponse(BatchProcessResult):
    processing_time_ms: int


def _elapsed_ms(start_time: float) -> int:
    return int((time.time() - start_time) * 1000)


# =============================================================================
# Endpoints
# =============================================================================


@router.post(
    "/grants/match",
    response_model=MatchResponse,
    summary="Find matching grants",
    description="Rank grants for an organization by AI compatibility analysis.",
)
def match_grants(request: MatchRequest, orchestrator: OrchestratorDep) -> MatchResponse:
    start_time = time.time()

    profile = request.organization_profile
    if profile is None:
        if not request.organization_id:
            raise ValidationError("organization_profile or organization_id is required")
        profile = orchestrator.store.get_organization_profile(request.organization_id)

    matches = orchestrator.find_matching_grants(
        profile,
        MatchOptions(
            top_k=request.top_k,
            limit=request.limit,
            specific_query=request.specific_query,
            filters=request.filters,
            user_id=request.user_id,
            use_cache=request.organization_profile is None,
        ),
    )

    average = sum(m.match_score for m in matches) / len(matches) if matches else 0.0
    logger.info("api_grant_matching", organization_id=profile.id, matches=len(matches))

    return MatchResponse(
        matches=matches,
        total_matches=len(matches),
        average_score=round(average, 2),
        ai_model=orchestrator.analyzer.model,
        processing_time_ms=_elapsed_ms(start_time),
    )


@router.post(
    "/grants/search/semantic",
    response_model=SemanticSearchResponse,
    summary="Semantic grant search",
    description="Search grants by meaning; re-ranked by AI when an organization is given.",
)
def semantic_search(
    request: SemanticSearchRequest,
    orchestrator: OrchestratorDep,
) -> SemanticSearchResponse:
    start_time = time.time()

    if not request.query.strip():
        raise ValidationError("query string is required and cannot be empty")

    results = orchestrator.semantic_search_grants(
        request.query,
        organization_id=request.organization_id,
        filters=request.filters,
        limit=request.limit,
        user_id=request.user_id,
    )

    return SemanticSearchResponse(
        results=results,
        query=request.query,
        total_results=len(results),
        processing_time_ms=_elapsed_ms(start_time),
    )


@router.post(
    "/grants/process-batch",
    response_model=BatchProcessResponse,
    summary="Process pending grants",
)
def process_batch(
    orchestrator: OrchestratorDep,
    request: Optional[BatchProcessRequest] = None,
) -> BatchProcessResponse:
    start_time = time.time()
    request = request or BatchProcessRequest()

    result = orchestrator.batch_process_grants(request.limit)

    return BatchProcessResponse(
        **result.model_dump(),
        processing_time_ms=_elapsed_ms(start_time),
    )


@router.post(
    "/grants/{grant_id}/process",
    response_model=GrantProcessingResult,
    summary="Process a single grant",
)
def process_grant(grant_id: str, orchestrator: OrchestratorDep) -> GrantProcessingResult:
    return orchestrator.process_grant_by_id(grant_id)


@router.get(
    "/health",
    response_model=ServiceHealth,
    summary="AI service health",
)
def health(orchestrator: OrchestratorDep) -> JSONResponse:
    report = orchestrator.health_check()
    status_code = (
        status.HTTP_200_OK
        if report.status == HealthStatus.HEALTHY
        else status.HTTP_503_SERVICE_UNAVAILABLE
    )
    return JSONResponse(status_code=status_code, content=report.model_dump(mode="json"))
