"""
Tests for the AI Matching API endpoints.
The app runs against the in-memory pipeline through dependency overrides.
"""
from unittest.mock import MagicMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from backend.api.deps import get_orchestrator
from backend.main import app


@pytest_asyncio.fixture
async def api_client(orchestrator):
    """HTTP client for the app with the test orchestrator injected."""
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()


class TestMatchEndpoint:
    """Tests for POST /api/ai/grants/match."""

    @pytest.mark.asyncio
    async def test_match_by_organization_id(self, api_client, catalog, make_organization, fake_openai):
        fake_openai.chat.completions.scores = {"Tech Innovation Grant": 90}
        org = make_organization()

        response = await api_client.post("/api/ai/grants/match", json={"organization_id": org.id})

        assert response.status_code == 200
        data = response.json()
        assert data["total_matches"] == 3
        assert data["matches"][0]["grant"]["title"] == "Tech Innovation Grant"
        assert data["matches"][0]["match_score"] == 90
        assert data["ai_model"] == "gpt-4o-mini"
        assert data["average_score"] == pytest.approx((90 + 50 + 50) / 3, abs=0.01)
        assert data["processing_time_ms"] >= 0

    @pytest.mark.asyncio
    async def test_match_by_inline_profile(self, api_client, catalog):
        response = await api_client.post(
            "/api/ai/grants/match",
            json={
                "organization_profile": {
                    "id": "inline-org",
                    "name": "Ocean Labs",
                    "description": "Coastal ecosystems research group",
                },
                "limit": 2,
            },
        )

        assert response.status_code == 200
        assert response.json()["total_matches"] == 2

    @pytest.mark.asyncio
    async def test_profile_or_id_required(self, api_client):
        response = await api_client.post("/api/ai/grants/match", json={})

        assert response.status_code == 400
        assert response.json() == {
            "error": True,
            "message": "organization_profile or organization_id is required",
            "status_code": 400,
        }

    @pytest.mark.asyncio
    async def test_unknown_organization(self, api_client):
        response = await api_client.post(
            "/api/ai/grants/match",
            json={"organization_id": "org-does-not-exist"},
        )

        assert response.status_code == 404
        assert response.json()["message"] == "Organization not found: org-does-not-exist"

    @pytest.mark.asyncio
    async def test_limit_out_of_range(self, api_client):
        response = await api_client.post(
            "/api/ai/grants/match",
            json={"organization_id": "org-1", "limit": 0},
        )

        assert response.status_code == 422


class TestSemanticSearchEndpoint:
    """Tests for POST /api/ai/grants/search/semantic."""

    @pytest.mark.asyncio
    async def test_search(self, api_client, catalog):
        response = await api_client.post(
            "/api/ai/grants/search/semantic",
            json={"query": "technology innovation startups", "limit": 2},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["query"] == "technology innovation startups"
        assert data["total_results"] == 2
        assert data["results"][0]["title"] == "Tech Innovation Grant"
        assert data["results"][0]["metadata"]["grant_id"] == catalog["Tech Innovation Grant"].id

    @pytest.mark.asyncio
    async def test_enhanced_search(self, api_client, catalog, make_organization):
        org = make_organization()

        response = await api_client.post(
            "/api/ai/grants/search/semantic",
            json={"query": "technology", "organization_id": org.id},
        )

        assert response.status_code == 200
        results = response.json()["results"]
        assert all(r["combined_score"] is not None for r in results)

    @pytest.mark.asyncio
    async def test_blank_query(self, api_client):
        response = await api_client.post("/api/ai/grants/search/semantic", json={"query": "   "})

        assert response.status_code == 400
        assert response.json()["error"] is True

    @pytest.mark.asyncio
    async def test_missing_query(self, api_client):
        response = await api_client.post("/api/ai/grants/search/semantic", json={})

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_unknown_organization(self, api_client, catalog):
        response = await api_client.post(
            "/api/ai/grants/search/semantic",
            json={"query": "technology", "organization_id": "org-does-not-exist"},
        )

        assert response.status_code == 404


class TestProcessingEndpoints:
    """Tests for grant processing endpoints."""

    @pytest.mark.asyncio
    async def test_process_grant(self, api_client, make_grant):
        grant = make_grant()

        response = await api_client.post(f"/api/ai/grants/{grant.id}/process")

        assert response.status_code == 200
        data = response.json()
        assert data["ai_processed"] is True
        assert data["state"]["status"] == "processed"
        assert data["semantic_tags"] == ["technology", "innovation", "startup"]

    @pytest.mark.asyncio
    async def test_process_failure_reported_in_body(self, api_client, make_grant, fake_openai):
        grant = make_grant()
        fake_openai.embeddings.fail_next = 3

        response = await api_client.post(f"/api/ai/grants/{grant.id}/process")

        assert response.status_code == 200
        data = response.json()
        assert data["ai_processed"] is False
        assert data["state"]["status"] == "errored"
        assert "Failed to generate embedding" in data["processing_error"]

    @pytest.mark.asyncio
    async def test_process_missing_grant(self, api_client):
        response = await api_client.post("/api/ai/grants/missing/process")

        assert response.status_code == 404
        assert response.json()["message"] == "Grant not found: missing"

    @pytest.mark.asyncio
    async def test_process_batch_default_body(self, api_client, make_grant):
        make_grant()
        make_grant(title="Second Grant")

        response = await api_client.post("/api/ai/grants/process-batch")

        assert response.status_code == 200
        data = response.json()
        assert data["processed"] == 2
        assert data["failed"] == 0
        assert data["errors"] == []

    @pytest.mark.asyncio
    async def test_process_batch_limit(self, api_client, make_grant):
        for i in range(3):
            make_grant(title=f"Grant {i}")

        response = await api_client.post("/api/ai/grants/process-batch", json={"limit": 1})

        assert response.json()["processed"] == 1


class TestHealthEndpoint:
    """Tests for GET /api/ai/health."""

    @pytest.mark.asyncio
    async def test_healthy(self, api_client, catalog):
        response = await api_client.get("/api/ai/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["grants_processed"] == 3
        assert data["vectors_stored"] == 3

    @pytest.mark.asyncio
    async def test_unhealthy_returns_503(self, api_client, fake_index):
        fake_index.describe_index_stats = MagicMock(side_effect=RuntimeError("index offline"))

        response = await api_client.get("/api/ai/health")

        assert response.status_code == 503
        data = response.json()
        assert data["status"] == "unhealthy"
        assert data["components"]["vector_index"]["status"] == "unhealthy"


class TestRoot:
    @pytest.mark.asyncio
    async def test_root(self, api_client):
        response = await api_client.get("/")

        assert response.status_code == 200
        assert response.json()["name"] == "GrantMatch"
