"""
Embedding Client
Converts text to fixed-length vectors through the OpenAI embeddings API.
"""

import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Optional

import openai
import structlog

from backend.core.config import Settings, settings as default_settings
from backend.core.exceptions import ConfigurationError, GrantMatchingError, ProviderError, ValidationError

from .chunking import average_vectors, chunk_text, cosine_similarity, merge_chunks, renumber_chunks
from .models import (
    AIInteractionData,
    BatchEmbeddingResult,
    ComponentHealth,
    EmbeddingOptions,
    EmbeddingResult,
    HealthStatus,
    InteractionRecorder,
    SemanticChunkingOptions,
    SimilarText,
    TextChunk,
    TokenUsage,
)
from .pricing import embedding_cost_cents

logger = structlog.get_logger().bind(agent="embedder")

# Errors raised by the SDK, plus the ones an unexpected response shape produces
PROVIDER_EXCEPTIONS = (openai.OpenAIError, AttributeError, IndexError, KeyError, TypeError)


class EmbeddingClient:
    """
    Generates embeddings with OpenAI text-embedding-3-small (1536 dimensions
    by default).

    The client does not retry; the orchestrator owns the retry policy. Every
    call, successful or not, is reported to the optional interaction recorder.
    """

    def __init__(
        self,
        settings: Settings = default_settings,
        client: Optional[openai.OpenAI] = None,
        recorder: Optional[InteractionRecorder] = None,
        max_workers: Optional[int] = None,
    ):
        """
        Initialize embedding client.

        Args:
            settings: Application settings.
            client: Pre-built OpenAI client (tests inject a fake here).
            recorder: Callback receiving one audit entry per provider call.
            max_workers: Parallel requests used by embed_batch.

        Raises:
            ConfigurationError: If no client is given and OPENAI_API_KEY is not set.
        """
        self.settings = settings
        if client is None:
            if not settings.openai_api_key:
                raise ConfigurationError("OPENAI_API_KEY environment variable is required")
            client = openai.OpenAI(
                api_key=settings.openai_api_key,
                timeout=settings.openai_timeout_seconds,
                max_retries=0,
            )
        self.client = client
        self.recorder = recorder
        self.model = settings.embedding_model
        self.max_workers = max_workers or settings.matching_max_concurrency

    def embed(
        self,
        text: str,
        options: Optional[EmbeddingOptions] = None,
        user_id: Optional[str] = None,
        organization_id: Optional[str] = None,
    ) -> EmbeddingResult:
        """
        Generate an embedding for a single text.

        Text longer than embedding_max_chars is truncated before sending.

        Raises:
            ValidationError: If the text is empty or whitespace-only.
            ProviderError: If the API call fails or returns an unexpected shape.
        """
        if not text or not text.strip():
            raise ValidationError("Text cannot be empty")

        options = options or EmbeddingOptions()
        model = options.model or self.model

        limit = self.settings.embedding_max_chars
        if len(text) > limit:
            logger.debug("embedding_input_truncated", original_chars=len(text), limit=limit)
        limited_text = text[:limit]

        params: dict[str, Any] = {"model": model, "input": limited_text}
        if options.dimensions and model.startswith("text-embedding-3"):
            params["dimensions"] = options.dimensions

        start_time = time.time()
        try:
            response = self.client.embeddings.create(**params)
            vector = list(response.data[0].embedding)
            prompt_tokens = response.usage.prompt_tokens or 0
            total_tokens = response.usage.total_tokens or 0
        except PROVIDER_EXCEPTIONS as e:
            self._record(
                AIInteractionData(
                    interaction_type="embedding",
                    model_used=model,
                    input_text=limited_text[:1000],
                    response_time_ms=int((time.time() - start_time) * 1000),
                    success=False,
                    error_message=str(e),
                    user_id=user_id,
                    organization_id=organization_id,
                )
            )
            logger.error("embedding_failed", model=model, error=str(e))
            raise ProviderError(f"Failed to generate embedding: {e}") from e

        usage = TokenUsage(
            prompt_tokens=prompt_tokens,
            total_tokens=total_tokens,
            estimated_cost=embedding_cost_cents(total_tokens, model),
        )

        self._record(
            AIInteractionData(
                interaction_type="embedding",
                model_used=model,
                input_text=limited_text[:1000],
                input_tokens=prompt_tokens,
                total_tokens=total_tokens,
                estimated_cost_cents=usage.estimated_cost,
                response_time_ms=int((time.time() - start_time) * 1000),
                metadata={"dimensions": len(vector)},
                user_id=user_id,
                organization_id=organization_id,
            )
        )

        logger.info(
            "embedding_generated",
            model=model,
            dimensions=len(vector),
            tokens=total_tokens,
        )

        return EmbeddingResult(vector=vector, model=model, usage=usage)

    def embed_batch(
        self,
        texts: list[str],
        options: Optional[EmbeddingOptions] = None,
    ) -> BatchEmbeddingResult:
        """
        Generate embeddings for multiple texts.

        Issues one request per text on a bounded thread pool; the returned
        vectors are in input order and usage is summed.

        Raises:
            ValidationError: If the list is empty or contains an empty text.
            ProviderError: If any request fails.
        """
        if not texts:
            raise ValidationError("Texts array cannot be empty")

        for index, text in enumerate(texts):
            if not text or not text.strip():
                raise ValidationError(f"Text cannot be empty (index {index})")

        workers = max(1, min(self.max_workers, len(texts)))
        with ThreadPoolExecutor(max_workers=workers) as pool:
            results = list(pool.map(lambda t: self.embed(t, options), texts))

        usage = TokenUsage()
        for result in results:
            usage = usage + result.usage

        logger.info(
            "batch_embedding_complete",
            count=len(results),
            tokens=usage.total_tokens,
        )

        return BatchEmbeddingResult(
            vectors=[r.vector for r in results],
            model=results[0].model,
            usage=usage,
        )

    def semantic_chunks(
        self,
        text: str,
        options: Optional[SemanticChunkingOptions] = None,
    ) -> list[TextChunk]:
        """
        Chunk text, then merge adjacent chunks whose embeddings are similar.

        Two neighbours merge when their cosine similarity reaches
        similarity_threshold and the merged content stays within
        max_merged_size_ratio * max_chunk_size; the running embedding becomes
        the mean of the merged ones. When embedding fails the plain chunks are
        returned.
        """
        options = options or SemanticChunkingOptions()
        chunks = chunk_text(text, options)
        if len(chunks) <= 1:
            return chunks

        try:
            vectors = self.embed_batch([chunk.content for chunk in chunks]).vectors
        except GrantMatchingError as e:
            logger.warning("semantic_chunking_fallback", chunks=len(chunks), error=e.message)
            return chunks

        size_limit = options.max_chunk_size * options.max_merged_size_ratio
        merged: list[TextChunk] = []
        current, current_vector = chunks[0], vectors[0]

        for chunk, vector in zip(chunks[1:], vectors[1:]):
            similarity = cosine_similarity(current_vector, vector)
            if (
                similarity >= options.similarity_threshold
                and len(current.content) + len(chunk.content) <= size_limit
            ):
                current = merge_chunks(current, chunk)
                current_vector = average_vectors([current_vector, vector])
            else:
                merged.append(current)
                current, current_vector = chunk, vector
        merged.append(current)

        logger.info("semantic_chunking_complete", initial=len(chunks), merged=len(merged))
        return renumber_chunks(merged)

    def find_similar_texts(
        self,
        query: str,
        candidates: list[str],
        threshold: float = 0.7,
        top_k: Optional[int] = None,
    ) -> list[SimilarText]:
        """
        Rank candidate texts by cosine similarity to the query.

        Returns:
            Candidates at or above threshold, most similar first, at most top_k.

        Raises:
            ValidationError: If the query or a candidate is empty.
            ProviderError: If embedding fails.
        """
        if not candidates:
            return []

        vectors = self.embed_batch([query, *candidates]).vectors
        query_vector = vectors[0]

        results = [
            SimilarText(text=text, similarity=cosine_similarity(query_vector, vector), index=index)
            for index, (text, vector) in enumerate(zip(candidates, vectors[1:]))
        ]
        results = [r for r in results if r.similarity >= threshold]
        results.sort(key=lambda r: r.similarity, reverse=True)
        return results[:top_k] if top_k else results

    def health_check(self) -> ComponentHealth:
        """Embed a short fixed text; never raises."""
        try:
            result = self.embed("health check")
            return ComponentHealth(
                status=HealthStatus.HEALTHY,
                details={"model": result.model, "dimensions": len(result.vector)},
            )
        except Exception as e:
            logger.warning("embedding_health_check_failed", error=str(e))
            return ComponentHealth(status=HealthStatus.UNHEALTHY, error=str(e))

    def _record(self, interaction: AIInteractionData) -> None:
        """Forward an audit entry; a failing recorder never fails the call."""
        if self.recorder is None:
            return
        try:
            self.recorder(interaction)
        except Exception as e:
            logger.warning("interaction_record_failed", error=str(e))
