"""
Grant Matching Orchestrator
Coordinates embedding, vector storage, LLM analysis and persistence for grant
processing, organization matching and semantic search.
"""

import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Optional, TypeVar, Union

import structlog
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from backend.core.config import Settings, settings as default_settings
from backend.core.exceptions import GrantMatchingError, NotFoundError, ProviderError, ValidationError

from .analyzer import RelevanceAnalyzer
from .chunking import chunk_text
from .embedder import EmbeddingClient
from .models import (
    AIInteractionData,
    BatchProcessResult,
    ChunkingOptions,
    ComponentHealth,
    DocumentIndexResult,
    DocumentVectorMetadata,
    Errored,
    GrantData,
    GrantMatchResult,
    GrantProcessingResult,
    GrantVectorMetadata,
    HealthStatus,
    HybridSearchFilters,
    MatchAnalysis,
    MatchOptions,
    OrganizationProfile,
    Processed,
    Processing,
    SemanticSearchResult,
    ServiceHealth,
    StoredVector,
    VectorMatch,
    VectorMetadata,
    VectorRecord,
    parse_metadata,
)
from .store import MatchingStore, compute_text_hash
from .vector_index import VectorIndexClient

logger = structlog.get_logger().bind(agent="orchestrator")

T = TypeVar("T")

# Combined score for enhanced search: similarity (0-1) weighted 60%, AI score
# (0-100) scaled so that 100 contributes 0.4
SIMILARITY_WEIGHT = 0.6
AI_SCORE_WEIGHT = 0.004

METADATA_CONTENT_CHARS = 8000


def _grant_id_of(metadata: VectorMetadata) -> Optional[str]:
    return getattr(metadata, "grant_id", None)


def _entity_id_of(metadata: VectorMetadata) -> Optional[str]:
    for field in ("grant_id", "organization_id", "document_id"):
        value = getattr(metadata, field, None)
        if value:
            return str(value)
    return None


def combined_score(similarity: float, ai_score: Optional[float]) -> float:
    """Blend vector similarity with an AI compatibility score."""
    return similarity * SIMILARITY_WEIGHT + (ai_score or 0.0) * AI_SCORE_WEIGHT


def ranking_key(result: GrantMatchResult) -> tuple[float, float, int]:
    """Match score, then similarity, then eligibility; sort descending."""
    return (
        result.match_score,
        result.semantic_similarity,
        result.analysis.eligibility_status.rank,
    )


class GrantMatchingOrchestrator:
    """
    Grant processing and matching pipeline.

    Provider calls are retried with exponential back-off on ProviderError
    only; validation and parse errors fail immediately. The clients and the
    store are injected, so tests run the whole pipeline on in-memory fakes.
    """

    def __init__(
        self,
        embedder: EmbeddingClient,
        vector_index: VectorIndexClient,
        analyzer: RelevanceAnalyzer,
        store: MatchingStore,
        settings: Settings = default_settings,
    ):
        self.embedder = embedder
        self.vector_index = vector_index
        self.analyzer = analyzer
        self.store = store
        self.settings = settings
        self.namespace = settings.grants_namespace

    def _with_retry(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        retryer = Retrying(
            stop=stop_after_attempt(self.settings.provider_max_attempts),
            wait=wait_exponential(
                multiplier=1,
                min=self.settings.provider_retry_min_wait,
                max=self.settings.provider_retry_max_wait,
            ),
            retry=retry_if_exception_type(ProviderError),
            reraise=True,
        )
        return retryer(fn, *args, **kwargs)

    # =========================================================================
    # Grant processing
    # =========================================================================

    def process_grant_by_id(self, grant_id: str) -> GrantProcessingResult:
        """
        Load a grant and process it.

        Raises:
            NotFoundError: If the grant does not exist.
        """
        grant = self.store.get_grant(grant_id)
        if grant is None:
            raise NotFoundError("Grant", grant_id)
        return self.process_new_grant(grant)

    def process_new_grant(self, grant: GrantData) -> GrantProcessingResult:
        """
        Embed, index and tag a grant, then persist the outcome.

        Domain failures never raise: the grant is marked errored and the
        result carries the message. A vector previously stored for the grant
        is deleted once the new one is in place.
        """
        start_time = time.time()
        self.store.update_grant_state(grant.id, Processing())
        logger.info("grant_processing_started", grant_id=grant.id)

        vector_id: Optional[str] = None
        try:
            grant_text = grant.to_embedding_text()
            embedding = self._with_retry(self.embedder.embed, grant_text)

            vector_id = self.vector_index.generate_id("grant", grant.id)
            metadata = GrantVectorMetadata(
                grant_id=grant.id,
                title=grant.title,
                content=grant_text[:METADATA_CONTENT_CHARS],
                source=grant.source or "unknown",
                funder=grant.funder,
                deadline=grant.deadline.isoformat() if grant.deadline else None,
                amount_min=grant.amount_min,
                amount_max=grant.amount_max,
                categories=grant.categories,
                url=grant.url,
            )
            self._with_retry(
                self.vector_index.upsert,
                vector_id,
                embedding.vector,
                metadata,
                namespace=self.namespace,
            )

            tags = self._extract_tags(grant, grant_text)

        except GrantMatchingError as e:
            logger.error("grant_processing_failed", grant_id=grant.id, error=e.message)
            if vector_id is not None:
                self._discard_vector(vector_id)
            state = Errored(message=e.message)
            self.store.update_grant_state(grant.id, state)
            return GrantProcessingResult(
                grant=grant,
                vector_id=None,
                ai_processed=False,
                semantic_tags=[],
                processing_error=e.message,
                state=state,
            )

        previous_vector_id = self.store.upsert_vector_embedding(
            entity_type="grant",
            entity_id=grant.id,
            vector_id=vector_id,
            namespace=self.namespace,
            embedding_model=embedding.model,
            dimensions=len(embedding.vector),
            content_hash=compute_text_hash(grant_text),
        )
        if previous_vector_id is None and grant.vector_id and grant.vector_id != vector_id:
            previous_vector_id = grant.vector_id

        self.store.replace_semantic_tags(grant.id, tags, model_used=self.analyzer.model)
        state = Processed(vector_id=vector_id, tags=tags)
        self.store.update_grant_state(grant.id, state)

        self.store.record_ai_interaction(
            AIInteractionData(
                interaction_type="grant_processing",
                model_used=embedding.model,
                input_text=grant_text[:1000],
                input_tokens=embedding.usage.prompt_tokens,
                total_tokens=embedding.usage.total_tokens,
                estimated_cost_cents=embedding.usage.estimated_cost,
                response_time_ms=int((time.time() - start_time) * 1000),
                metadata={
                    "grant_id": grant.id,
                    "vector_id": vector_id,
                    "tags_generated": len(tags),
                },
            )
        )

        if previous_vector_id:
            self._discard_vector(previous_vector_id)

        logger.info(
            "grant_processed",
            grant_id=grant.id,
            vector_id=vector_id,
            tags=len(tags),
        )

        return GrantProcessingResult(
            grant=grant.model_copy(update={"vector_id": vector_id}),
            vector_id=vector_id,
            ai_processed=True,
            semantic_tags=tags,
            state=state,
        )

    def _extract_tags(self, grant: GrantData, grant_text: str) -> list[str]:
        """Tags are best effort: a failed extraction leaves the grant untagged."""
        try:
            return self._with_retry(self.analyzer.extract_tags, grant_text)
        except GrantMatchingError as e:
            logger.warning("semantic_tags_failed", grant_id=grant.id, error=e.message)
            return []

    def _discard_vector(self, vector_id: str) -> None:
        try:
            self.vector_index.delete(vector_id, namespace=self.namespace)
        except GrantMatchingError as e:
            logger.warning("stale_vector_delete_failed", vector_id=vector_id, error=e.message)

    def batch_process_grants(self, limit: Optional[int] = None) -> BatchProcessResult:
        """
        Process active grants not yet AI-processed, one after another.

        Returns:
            Counts of processed and failed grants; errors read "Grant <id>: <message>".
        """
        grants = self.store.get_unprocessed_grants(limit or self.settings.batch_process_limit)
        result = BatchProcessResult()

        logger.info("batch_processing_started", grants=len(grants))

        for grant in grants:
            try:
                outcome = self.process_new_grant(grant)
            except GrantMatchingError as e:
                result.failed += 1
                result.errors.append(f"Grant {grant.id}: {e.message}")
                continue

            if outcome.ai_processed:
                result.processed += 1
            else:
                result.failed += 1
                result.errors.append(f"Grant {grant.id}: {outcome.processing_error}")

        logger.info(
            "batch_processing_complete",
            processed=result.processed,
            failed=result.failed,
        )
        return result

    # =========================================================================
    # Matching
    # =========================================================================

    def find_matching_grants(
        self,
        org_profile: OrganizationProfile,
        options: Optional[MatchOptions] = None,
    ) -> list[GrantMatchResult]:
        """
        Rank grants for an organization.

        Candidates come from semantic search over the grants namespace; each
        is scored by the analyzer unless a fresh cached analysis exists.
        Candidates whose grant is missing or whose analysis fails are left out.

        Returns:
            Matches by match score, ties broken by semantic similarity.
        """
        options = options or MatchOptions()
        top_k = options.top_k or self.settings.matching_top_k

        profile_text = org_profile.to_profile_text()
        query_text = profile_text
        if options.specific_query:
            query_text = f"{profile_text}\nSpecific interest: {options.specific_query}"

        embedding = self._with_retry(
            self.embedder.embed,
            query_text,
            user_id=options.user_id,
            organization_id=org_profile.id,
        )

        filters = self._grant_filters(options.filters)
        hits = self._with_retry(
            self.vector_index.hybrid_search,
            embedding.vector,
            filters,
            top_k=top_k,
            namespace=self.namespace,
        )

        # Analyses depend on the query as well as on the profile
        profile_hash = compute_text_hash(f"{profile_text}\n{options.specific_query or ''}")

        candidates: list[tuple[GrantData, VectorMatch, str]] = []
        seen: set[str] = set()
        for hit in hits:
            grant_id = _grant_id_of(hit.metadata)
            if not grant_id or grant_id in seen:
                continue
            seen.add(grant_id)
            grant = self.store.get_grant(grant_id)
            if grant is None:
                logger.debug("match_candidate_missing", grant_id=grant_id)
                continue
            candidates.append((grant, hit, grant.to_embedding_text()))

        results: list[GrantMatchResult] = []
        to_analyze: list[tuple[GrantData, VectorMatch, str]] = []
        for grant, hit, grant_text in candidates:
            cached = None
            if options.use_cache:
                cached = self.store.get_cached_analysis(
                    grant.id,
                    org_profile.id,
                    compute_text_hash(grant_text),
                    profile_hash,
                    ttl_hours=self.settings.analysis_cache_ttl_hours,
                )
            if cached is not None:
                results.append(self._match_result(grant, hit, cached, from_cache=True))
            else:
                to_analyze.append((grant, hit, grant_text))

        def analyze(candidate: tuple[GrantData, VectorMatch, str]) -> Optional[MatchAnalysis]:
            grant, _, grant_text = candidate
            try:
                return self._with_retry(
                    self.analyzer.analyze,
                    profile_text,
                    grant_text,
                    options.specific_query,
                    user_id=options.user_id,
                    organization_id=org_profile.id,
                )
            except GrantMatchingError as e:
                logger.warning("grant_analysis_failed", grant_id=grant.id, error=e.message)
                return None

        if to_analyze:
            workers = max(1, min(self.settings.matching_max_concurrency, len(to_analyze)))
            with ThreadPoolExecutor(max_workers=workers) as pool:
                analyses = list(pool.map(analyze, to_analyze))

            for (grant, hit, grant_text), analysis in zip(to_analyze, analyses):
                if analysis is None:
                    continue
                if options.use_cache:
                    self.store.cache_analysis(
                        grant.id,
                        org_profile.id,
                        analysis,
                        model_used=self.analyzer.model,
                        grant_text_hash=compute_text_hash(grant_text),
                        profile_text_hash=profile_hash,
                        user_id=options.user_id,
                    )
                results.append(self._match_result(grant, hit, analysis))

        results.sort(key=ranking_key, reverse=True)
        if options.limit:
            results = results[: options.limit]

        self.store.record_ai_interaction(
            AIInteractionData(
                interaction_type="grant_matching",
                model_used=self.analyzer.model,
                input_text=profile_text[:1000],
                metadata={
                    "organization_id": org_profile.id,
                    "candidates": len(candidates),
                    "results_count": len(results),
                    "from_cache": sum(1 for r in results if r.from_cache),
                    "top_match_score": results[0].match_score if results else 0,
                },
                user_id=options.user_id,
                organization_id=org_profile.id,
            )
        )

        logger.info(
            "matching_grants_found",
            organization_id=org_profile.id,
            candidates=len(candidates),
            results=len(results),
        )
        return results

    @staticmethod
    def _match_result(
        grant: GrantData,
        hit: VectorMatch,
        analysis: MatchAnalysis,
        from_cache: bool = False,
    ) -> GrantMatchResult:
        return GrantMatchResult(
            grant=grant,
            match_score=analysis.overall_compatibility,
            analysis=analysis,
            semantic_similarity=hit.score,
            reasoning=analysis.reasoning,
            recommendations=analysis.recommendations,
            from_cache=from_cache,
        )

    @staticmethod
    def _search_result(hit: VectorMatch) -> SemanticSearchResult:
        return SemanticSearchResult(
            id=hit.id,
            grant_id=_grant_id_of(hit.metadata),
            title=hit.metadata.title,
            content=hit.metadata.content,
            similarity=hit.score,
            metadata=hit.metadata,
        )

    @staticmethod
    def _grant_filters(
        filters: Union[HybridSearchFilters, dict[str, Any], None],
    ) -> HybridSearchFilters:
        """Restrict a search to grant vectors, keeping any caller filters."""
        if filters is None:
            return HybridSearchFilters(type="grant")
        if isinstance(filters, dict):
            filters = HybridSearchFilters.model_validate(filters)
        return filters.model_copy(update={"type": filters.type or "grant"})

    # =========================================================================
    # Semantic search
    # =========================================================================

    def semantic_search_grants(
        self,
        query: str,
        organization_id: Optional[str] = None,
        filters: Union[HybridSearchFilters, dict[str, Any], None] = None,
        limit: int = 10,
        user_id: Optional[str] = None,
    ) -> list[SemanticSearchResult]:
        """
        Semantic search over grants.

        With an organization id the hits are re-ranked: each is analyzed
        against the organization profile and ordered by a 60/40 blend of
        vector similarity and AI score.

        Raises:
            NotFoundError: If organization_id does not exist.
            ValidationError: If the query is empty.
        """
        profile = self.store.get_organization_profile(organization_id) if organization_id else None

        embedding = self._with_retry(
            self.embedder.embed,
            query,
            user_id=user_id,
            organization_id=organization_id,
        )
        hits = self._with_retry(
            self.vector_index.hybrid_search,
            embedding.vector,
            self._grant_filters(filters),
            top_k=limit,
            namespace=self.namespace,
        )

        results = [self._search_result(hit) for hit in hits]

        if profile is not None and results:
            results = self._rerank(results, query, profile, user_id)

        self.store.record_ai_interaction(
            AIInteractionData(
                interaction_type="semantic_search",
                model_used=embedding.model,
                input_text=query[:1000],
                input_tokens=embedding.usage.prompt_tokens,
                total_tokens=embedding.usage.total_tokens,
                estimated_cost_cents=embedding.usage.estimated_cost,
                metadata={"results_count": len(results), "enhanced": profile is not None},
                user_id=user_id,
                organization_id=organization_id,
            )
        )

        logger.info(
            "semantic_search_complete",
            results=len(results),
            enhanced=profile is not None,
        )
        return results[:limit]

    def _rerank(
        self,
        results: list[SemanticSearchResult],
        query: str,
        profile: OrganizationProfile,
        user_id: Optional[str],
    ) -> list[SemanticSearchResult]:
        """Score the top hits with the analyzer and sort by combined score."""
        profile_text = profile.to_profile_text()
        rerank_count = min(self.settings.enhanced_search_rerank_limit, len(results))

        def score(result: SemanticSearchResult) -> SemanticSearchResult:
            candidate_text = result.content or result.title
            if not candidate_text:
                return result
            try:
                analysis = self._with_retry(
                    self.analyzer.analyze,
                    profile_text,
                    candidate_text,
                    query,
                    user_id=user_id,
                    organization_id=profile.id,
                )
            except GrantMatchingError as e:
                logger.warning("rerank_analysis_failed", vector_id=result.id, error=e.message)
                return result
            return result.model_copy(
                update={
                    "ai_score": analysis.overall_compatibility,
                    "reasoning": analysis.reasoning,
                }
            )

        workers = max(1, min(self.settings.matching_max_concurrency, rerank_count))
        with ThreadPoolExecutor(max_workers=workers) as pool:
            scored = list(pool.map(score, results[:rerank_count]))

        reranked = [
            r.model_copy(update={"combined_score": combined_score(r.similarity, r.ai_score)})
            for r in scored + results[rerank_count:]
        ]
        reranked.sort(key=lambda r: r.combined_score, reverse=True)
        return reranked

    # =========================================================================
    # Arbitrary content
    # =========================================================================

    def store_text_as_vector(
        self,
        text: str,
        metadata: Union[VectorMetadata, dict[str, Any]],
        namespace: Optional[str] = None,
    ) -> StoredVector:
        """
        Embed a text and store it under a freshly generated vector id.

        The id is built from the metadata type and its entity id (grant,
        organization or document id). Grants land in the grants namespace,
        everything else in the default one unless a namespace is given.
        """
        parsed = parse_metadata(metadata) if isinstance(metadata, dict) else metadata
        namespace = namespace or self._namespace_for(parsed.type)

        embedding = self._with_retry(self.embedder.embed, text)
        vector_id = self.vector_index.generate_id(parsed.type, _entity_id_of(parsed))
        self._with_retry(
            self.vector_index.upsert,
            vector_id,
            embedding.vector,
            metadata,
            namespace=namespace,
        )

        logger.info("text_stored_as_vector", vector_id=vector_id, namespace=namespace)
        return StoredVector(vector_id=vector_id, namespace=namespace, usage=embedding.usage)

    def index_document(
        self,
        document_id: str,
        text: str,
        organization_id: Optional[str] = None,
        application_id: Optional[str] = None,
        title: Optional[str] = None,
        options: Optional[ChunkingOptions] = None,
        namespace: Optional[str] = None,
    ) -> DocumentIndexResult:
        """
        Chunk a document and store one vector per chunk.

        Chunks are embedded together and written in a single batch; each
        vector carries the document id, its chunk position and the chunk text.

        Raises:
            ValidationError: If the text is blank.
        """
        chunks = chunk_text(text, options)
        if not chunks:
            raise ValidationError("Text cannot be empty")
        namespace = namespace or self.vector_index.default_namespace

        embeddings = self._with_retry(self.embedder.embed_batch, [chunk.content for chunk in chunks])

        records = [
            VectorRecord(
                id=self.vector_index.generate_id("document", f"{document_id}_chunk_{chunk.chunk_index}"),
                values=vector,
                metadata=DocumentVectorMetadata(
                    document_id=document_id,
                    organization_id=organization_id,
                    application_id=application_id,
                    title=title,
                    content=chunk.content[:METADATA_CONTENT_CHARS],
                    chunk_index=chunk.chunk_index,
                    total_chunks=chunk.total_chunks,
                ),
            )
            for chunk, vector in zip(chunks, embeddings.vectors)
        ]
        self._with_retry(self.vector_index.upsert_batch, records, namespace=namespace)

        self.store.record_ai_interaction(
            AIInteractionData(
                interaction_type="document_indexing",
                model_used=embeddings.model,
                input_text=text[:1000],
                input_tokens=embeddings.usage.prompt_tokens,
                total_tokens=embeddings.usage.total_tokens,
                estimated_cost_cents=embeddings.usage.estimated_cost,
                metadata={"document_id": document_id, "chunks": len(chunks)},
                organization_id=organization_id,
            )
        )

        logger.info("document_indexed", document_id=document_id, chunks=len(chunks))
        return DocumentIndexResult(
            document_id=document_id,
            namespace=namespace,
            vector_ids=[record.id for record in records],
            chunks=chunks,
            usage=embeddings.usage,
        )

    def find_similar_content(
        self,
        query: str,
        content_type: str,
        organization_id: Optional[str] = None,
        top_k: int = 10,
    ) -> list[SemanticSearchResult]:
        """Semantic search over vectors of one type, optionally of one organization."""
        embedding = self._with_retry(self.embedder.embed, query, organization_id=organization_id)
        hits = self._with_retry(
            self.vector_index.hybrid_search,
            embedding.vector,
            HybridSearchFilters(type=content_type, organization_id=organization_id),
            top_k=top_k,
            namespace=self._namespace_for(content_type),
        )
        return [self._search_result(hit) for hit in hits]

    def _namespace_for(self, entity_type: str) -> str:
        return self.namespace if entity_type == "grant" else self.vector_index.default_namespace

    # =========================================================================
    # Health
    # =========================================================================

    def health_check(self) -> ServiceHealth:
        """Counts from the database plus the health of every dependency; never raises."""
        errors: list[str] = []
        counts = {"grants_processed": 0, "vectors_stored": 0, "ai_interactions": 0}

        try:
            counts["grants_processed"] = self.store.count_processed_grants()
            counts["vectors_stored"] = self.store.count_vector_embeddings("grant")
            counts["ai_interactions"] = self.store.count_recent_interactions(hours=24)
        except Exception as e:
            logger.warning("health_check_counts_failed", error=str(e))
            errors.append(f"database: {e}")

        components: dict[str, ComponentHealth] = {
            "embedder": self.embedder.health_check(),
            "vector_index": self.vector_index.health_check(),
            "analyzer": self.analyzer.health_check(),
        }
        for name, component in components.items():
            if component.status != HealthStatus.HEALTHY:
                errors.append(f"{name}: {component.error or 'unhealthy'}")

        return ServiceHealth(
            status=HealthStatus.UNHEALTHY if errors else HealthStatus.HEALTHY,
            components=components,
            errors=errors,
            **counts,
        )
