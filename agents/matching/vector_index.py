"""
Vector Index Client
Namespace-partitioned vector storage and similarity search on Pinecone.
"""

import time
import uuid
from datetime import datetime, timezone
from typing import Any, Optional, Union

import structlog
from pinecone import Pinecone, ServerlessSpec
from pydantic import ValidationError as PydanticValidationError

from backend.core.config import Settings, settings as default_settings
from backend.core.exceptions import ConfigurationError, ProviderError, ValidationError

from .models import (
    ComponentHealth,
    HealthStatus,
    HybridSearchFilters,
    VectorMatch,
    VectorMetadata,
    VectorRecord,
    parse_metadata,
)

logger = structlog.get_logger().bind(agent="vector_index")

MetadataInput = Union[VectorMetadata, dict[str, Any]]


def _to_epoch(value: Union[str, datetime]) -> float:
    """Epoch seconds of an ISO string or datetime; naive values are UTC."""
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.timestamp()


def build_filter(filters: Union[HybridSearchFilters, dict[str, Any], None]) -> Optional[dict[str, Any]]:
    """
    Translate structured filters into Pinecone's metadata filter dialect.

    Scalars become $eq, non-empty lists become $in and date_range becomes a
    closed $gte/$lte range on created_ts. Absent values emit no predicate;
    when nothing remains the result is None (no filter at all).
    """
    if filters is None:
        return None
    if isinstance(filters, dict):
        filters = HybridSearchFilters.model_validate(filters)

    date_range = filters.date_range
    data = filters.model_dump(exclude_none=True, exclude={"date_range"})

    pinecone_filter: dict[str, Any] = {}
    for key, value in data.items():
        if isinstance(value, (list, tuple, set)):
            if value:
                pinecone_filter[key] = {"$in": list(value)}
        else:
            pinecone_filter[key] = {"$eq": value}

    if date_range is not None:
        pinecone_filter["created_ts"] = {
            "$gte": _to_epoch(date_range.start),
            "$lte": _to_epoch(date_range.end),
        }

    return pinecone_filter or None


class VectorIndexClient:
    """
    Pinecone adapter for vector storage and similarity search.

    All operations are scoped to a namespace (default "default"). Vectors must
    match the configured dimensionality (1536 for text-embedding-3-small).
    """

    # Pinecone accepts at most 100 vectors per upsert request
    UPSERT_BATCH_SIZE = 100
    READY_POLL_INTERVAL = 5.0

    def __init__(
        self,
        settings: Settings = default_settings,
        index: Optional[Any] = None,
        pinecone_client: Optional[Pinecone] = None,
    ):
        """
        Initialize the vector index client.

        Args:
            settings: Application settings.
            index: Pre-built index handle (tests inject an in-memory fake).
            pinecone_client: Pre-built Pinecone client used for index management.

        Raises:
            ConfigurationError: If no index is given and PINECONE_API_KEY or the
                index name is not configured.
        """
        self.settings = settings
        self.index_name = settings.pinecone_index_name
        self.dimension = settings.embedding_dimensions
        self.default_namespace = settings.default_namespace

        if not self.index_name:
            raise ConfigurationError("PINECONE_INDEX_NAME must be configured")

        if pinecone_client is None and index is None:
            if not settings.pinecone_api_key:
                raise ConfigurationError("PINECONE_API_KEY environment variable is required")
            pinecone_client = Pinecone(api_key=settings.pinecone_api_key)

        self.pinecone = pinecone_client
        self._index = index

        logger.info(
            "vector_index_initialized",
            index_name=self.index_name,
            dimension=self.dimension,
        )

    @property
    def index(self) -> Any:
        """Lazy-loaded index handle."""
        if self._index is None:
            try:
                self._index = self.pinecone.Index(self.index_name)
            except Exception as e:
                raise ProviderError(f"Failed to connect to vector index: {e}") from e
        return self._index

    # =========================================================================
    # Index management
    # =========================================================================

    def ensure_index(self) -> bool:
        """
        Create the serverless index if it does not exist.

        Returns:
            True if the index was created, False if it already existed.
        """
        if self.pinecone is None:
            raise ConfigurationError("Index management requires a Pinecone client")

        try:
            existing = self.pinecone.list_indexes().names()
            if self.index_name in existing:
                logger.info("vector_index_exists", index_name=self.index_name)
                return False

            logger.info("vector_index_creating", index_name=self.index_name)
            self.pinecone.create_index(
                name=self.index_name,
                dimension=self.dimension,
                metric="cosine",
                spec=ServerlessSpec(
                    cloud=self.settings.pinecone_cloud,
                    region=self.settings.pinecone_region,
                ),
            )
        except Exception as e:
            logger.error("vector_index_init_failed", error=str(e))
            raise ProviderError(f"Failed to initialize vector database: {e}") from e

        self._wait_for_index_ready()
        logger.info("vector_index_created", index_name=self.index_name)
        return True

    def _wait_for_index_ready(self) -> None:
        """Poll index stats until the new index answers or the timeout passes."""
        deadline = time.time() + self.settings.pinecone_index_ready_timeout
        while time.time() < deadline:
            try:
                self.index.describe_index_stats()
                return
            except Exception:
                # Index not ready yet
                time.sleep(self.READY_POLL_INTERVAL)
        raise ProviderError("Index failed to become ready within timeout period")

    # =========================================================================
    # Writes
    # =========================================================================

    def _check_dimension(self, vector: list[float]) -> None:
        if vector is None or len(vector) != self.dimension:
            got = 0 if vector is None else len(vector)
            raise ValidationError(
                f"Invalid embedding dimension: expected {self.dimension}, got {got}"
            )

    def _stamp(self, metadata: MetadataInput) -> VectorMetadata:
        """Validate metadata and set updated_at (and created_at/created_ts when missing)."""
        if isinstance(metadata, dict):
            try:
                metadata = parse_metadata(metadata, strict=True)
            except PydanticValidationError as e:
                raise ValidationError(f"Invalid vector metadata: {e}") from e

        now = datetime.now(timezone.utc)
        update: dict[str, Any] = {"updated_at": now.isoformat()}
        created_at = metadata.created_at or now.isoformat()
        if not metadata.created_at:
            update["created_at"] = created_at
        if metadata.created_ts is None:
            try:
                update["created_ts"] = _to_epoch(created_at)
            except ValueError:
                update["created_ts"] = now.timestamp()
        return metadata.model_copy(update=update)

    def upsert(
        self,
        id: str,
        vector: list[float],
        metadata: MetadataInput,
        namespace: Optional[str] = None,
    ) -> VectorRecord:
        """
        Store (or replace) a vector.

        Re-upserting an id replaces the previous record in that namespace.

        Raises:
            ValidationError: On a missing id or wrong dimensionality; nothing is written.
            ProviderError: If the store rejects the write.
        """
        if not id:
            raise ValidationError("Vector id is required")
        self._check_dimension(vector)

        namespace = namespace or self.default_namespace
        record = VectorRecord(id=id, values=list(vector), metadata=self._stamp(metadata))

        try:
            self.index.upsert(
                vectors=[
                    {
                        "id": record.id,
                        "values": record.values,
                        "metadata": record.metadata.to_store(),
                    }
                ],
                namespace=namespace,
            )
        except Exception as e:
            logger.error("vector_upsert_failed", vector_id=id, namespace=namespace, error=str(e))
            raise ProviderError(f"Failed to store vector: {e}") from e

        logger.info(
            "vector_upserted",
            vector_id=id,
            entity_type=record.metadata.type,
            namespace=namespace,
        )
        return record

    def upsert_batch(
        self,
        records: list[VectorRecord],
        namespace: Optional[str] = None,
    ) -> int:
        """
        Store many vectors in chunks of UPSERT_BATCH_SIZE, one request per chunk.

        Every record is validated before the first write. A failing chunk does
        not stop the remaining ones; all failures are reported together in a
        single ProviderError afterwards.

        Returns:
            Number of records stored.
        """
        if not records:
            raise ValidationError("No vectors provided for batch storage")

        for record in records:
            self._check_dimension(record.values)

        namespace = namespace or self.default_namespace
        payload = [
            {
                "id": record.id,
                "values": list(record.values),
                "metadata": self._stamp(record.metadata).to_store(),
            }
            for record in records
        ]

        total_batches = (len(payload) + self.UPSERT_BATCH_SIZE - 1) // self.UPSERT_BATCH_SIZE
        failures: list[str] = []
        stored = 0

        for batch_number, start in enumerate(range(0, len(payload), self.UPSERT_BATCH_SIZE), 1):
            batch = payload[start : start + self.UPSERT_BATCH_SIZE]
            try:
                self.index.upsert(vectors=batch, namespace=namespace)
                stored += len(batch)
                logger.info(
                    "vector_batch_stored",
                    batch=batch_number,
                    total_batches=total_batches,
                    size=len(batch),
                )
            except Exception as e:
                failures.append(
                    f"batch {batch_number} (records {start + 1}-{start + len(batch)}): {e}"
                )
                logger.error(
                    "vector_batch_failed",
                    batch=batch_number,
                    total_batches=total_batches,
                    error=str(e),
                )

        if failures:
            raise ProviderError(
                f"Failed to store batch vectors: {len(failures)} of {total_batches} "
                f"batches failed: {'; '.join(failures)}"
            )

        logger.info("vector_batch_complete", stored=stored, namespace=namespace)
        return stored

    # =========================================================================
    # Reads
    # =========================================================================

    def search(
        self,
        query_vector: list[float],
        top_k: int = 10,
        namespace: Optional[str] = None,
        filter: Optional[dict[str, Any]] = None,
        include_values: bool = False,
    ) -> list[VectorMatch]:
        """
        Find the top_k most similar vectors, best first.

        Returns:
            Matches sorted by descending score; empty when nothing matches.
        """
        self._check_dimension(query_vector)
        namespace = namespace or self.default_namespace

        query: dict[str, Any] = {
            "vector": list(query_vector),
            "top_k": top_k,
            "namespace": namespace,
            "include_metadata": True,
            "include_values": include_values,
        }
        if filter:
            query["filter"] = filter

        try:
            response = self.index.query(**query)
        except Exception as e:
            logger.error("vector_search_failed", namespace=namespace, error=str(e))
            raise ProviderError(f"Failed to search vectors: {e}") from e

        matches = getattr(response, "matches", None) or []
        results = [
            VectorMatch(
                id=match.id,
                score=float(match.score or 0.0),
                metadata=parse_metadata(match.metadata),
                values=list(match.values) if include_values and getattr(match, "values", None) else None,
            )
            for match in matches
        ]
        results.sort(key=lambda m: m.score, reverse=True)

        logger.info("vector_search_complete", namespace=namespace, results=len(results))
        return results

    def hybrid_search(
        self,
        query_vector: list[float],
        filters: Union[HybridSearchFilters, dict[str, Any], None],
        top_k: int = 10,
        namespace: Optional[str] = None,
    ) -> list[VectorMatch]:
        """Similarity search restricted by structured metadata filters."""
        return self.search(
            query_vector,
            top_k=top_k,
            namespace=namespace,
            filter=build_filter(filters),
        )

    def fetch(self, id: str, namespace: Optional[str] = None) -> Optional[VectorMatch]:
        """
        Fetch a vector by id.

        Returns:
            The record with score 1.0 (exact fetch), or None if absent.
        """
        namespace = namespace or self.default_namespace
        try:
            response = self.index.fetch(ids=[id], namespace=namespace)
        except Exception as e:
            logger.error("vector_fetch_failed", vector_id=id, error=str(e))
            raise ProviderError(f"Failed to get vector: {e}") from e

        vectors = getattr(response, "vectors", None) or {}
        record = vectors.get(id)
        if record is None:
            return None

        return VectorMatch(id=id, score=1.0, metadata=parse_metadata(record.metadata))

    # =========================================================================
    # Deletes
    # =========================================================================

    def delete(self, id: str, namespace: Optional[str] = None) -> None:
        """Delete a vector by id."""
        namespace = namespace or self.default_namespace
        try:
            self.index.delete(ids=[id], namespace=namespace)
        except Exception as e:
            logger.error("vector_delete_failed", vector_id=id, error=str(e))
            raise ProviderError(f"Failed to delete vector: {e}") from e
        logger.info("vector_deleted", vector_id=id, namespace=namespace)

    def delete_by_filter(self, filter: dict[str, Any], namespace: Optional[str] = None) -> None:
        """Delete every vector in the namespace matching a metadata filter."""
        if not filter:
            raise ValidationError("A non-empty filter is required")
        namespace = namespace or self.default_namespace
        try:
            self.index.delete(filter=filter, namespace=namespace)
        except Exception as e:
            logger.error("vector_delete_by_filter_failed", namespace=namespace, error=str(e))
            raise ProviderError(f"Failed to delete vectors by filter: {e}") from e
        logger.info("vectors_deleted_by_filter", namespace=namespace)

    # =========================================================================
    # Introspection
    # =========================================================================

    def stats(self, namespace: Optional[str] = None) -> dict[str, Any]:
        """
        Index statistics, or the statistics of one namespace.

        Returns:
            {"dimension", "total_vector_count", "index_fullness", "namespaces"}
            or, for a namespace, {"namespace", "vector_count", "dimension"}.
        """
        try:
            raw = self.index.describe_index_stats()
        except Exception as e:
            logger.error("vector_stats_failed", error=str(e))
            raise ProviderError(f"Failed to get index statistics: {e}") from e

        namespaces = {
            name: {"vector_count": int(getattr(info, "vector_count", 0) or 0)}
            for name, info in (getattr(raw, "namespaces", None) or {}).items()
        }
        dimension = getattr(raw, "dimension", None) or self.dimension

        if namespace is not None:
            return {
                "namespace": namespace,
                "vector_count": namespaces.get(namespace, {}).get("vector_count", 0),
                "dimension": dimension,
            }

        return {
            "dimension": dimension,
            "total_vector_count": int(getattr(raw, "total_vector_count", 0) or 0),
            "index_fullness": float(getattr(raw, "index_fullness", 0.0) or 0.0),
            "namespaces": namespaces,
        }

    def list_namespaces(self) -> list[str]:
        """Names of all namespaces holding vectors."""
        return sorted(self.stats()["namespaces"].keys())

    def health_check(self) -> ComponentHealth:
        """Index existence, vector count and namespaces; never raises."""
        try:
            if self.pinecone is not None:
                if self.index_name not in self.pinecone.list_indexes().names():
                    return ComponentHealth(
                        status=HealthStatus.UNHEALTHY,
                        details={"index_exists": False, "vector_count": 0, "namespaces": []},
                        error="Index does not exist",
                    )
            stats = self.stats()
            return ComponentHealth(
                status=HealthStatus.HEALTHY,
                details={
                    "index_exists": True,
                    "vector_count": stats["total_vector_count"],
                    "namespaces": sorted(stats["namespaces"].keys()),
                },
            )
        except Exception as e:
            logger.warning("vector_index_health_check_failed", error=str(e))
            return ComponentHealth(
                status=HealthStatus.UNHEALTHY,
                details={"index_exists": False, "vector_count": 0, "namespaces": []},
                error=str(e),
            )

    # =========================================================================
    # Ids
    # =========================================================================

    @staticmethod
    def generate_id(entity_type: str, entity_id: Optional[str] = None) -> str:
        """
        Collision-resistant vector id: type, optional entity id, epoch millis
        and a random suffix.
        """
        timestamp = int(time.time() * 1000)
        random_suffix = uuid.uuid4().hex[:12]
        if entity_id:
            return f"{entity_type}_{entity_id}_{timestamp}_{random_suffix}"
        return f"{entity_type}_{timestamp}_{random_suffix}"
