"""
GrantMatch Test Configuration and Fixtures
Shared pytest fixtures for all test modules.
"""
import os
import tempfile
from datetime import datetime, timezone
from typing import Any, Callable

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from agents.matching.analyzer import RelevanceAnalyzer
from agents.matching.embedder import EmbeddingClient
from agents.matching.models import GrantData, OrganizationProfile
from agents.matching.orchestrator import GrantMatchingOrchestrator
from agents.matching.store import MatchingStore
from agents.matching.vector_index import VectorIndexClient
from backend.core.config import Settings
from backend.database import get_session_factory, init_db
from backend.models import Grant, Organization
from tests.fixtures.fakes import FakeOpenAI, FakePineconeIndex


# =============================================================================
# Settings and Database Fixtures
# =============================================================================


@pytest.fixture
def test_settings() -> Settings:
    """Settings with dummy keys and no retry back-off."""
    return Settings(
        _env_file=None,
        openai_api_key="test-openai-key",
        pinecone_api_key="test-pinecone-key",
        database_url="sqlite://",
        provider_retry_min_wait=0,
        provider_retry_max_wait=0,
        log_json=False,
    )


@pytest.fixture(scope="function")
def sync_engine():
    """Create a sync SQLite engine for testing."""
    # Use a unique temp file for each test to ensure complete isolation
    fd, db_path = tempfile.mkstemp(suffix=".db")
    os.close(fd)

    engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False},
        echo=False,
    )

    init_db(engine)

    yield engine

    engine.dispose()

    try:
        os.unlink(db_path)
    except OSError:
        pass


@pytest.fixture
def session_factory(sync_engine) -> sessionmaker:
    return get_session_factory(sync_engine)


@pytest.fixture
def store(session_factory) -> MatchingStore:
    return MatchingStore(session_factory)


# =============================================================================
# Client Fixtures
# =============================================================================


@pytest.fixture
def fake_openai() -> FakeOpenAI:
    return FakeOpenAI()


@pytest.fixture
def fake_index() -> FakePineconeIndex:
    return FakePineconeIndex()


@pytest.fixture
def embedder(test_settings, fake_openai, store) -> EmbeddingClient:
    return EmbeddingClient(test_settings, client=fake_openai, recorder=store.record_ai_interaction)


@pytest.fixture
def vector_index(test_settings, fake_index) -> VectorIndexClient:
    return VectorIndexClient(test_settings, index=fake_index)


@pytest.fixture
def analyzer(test_settings, fake_openai, store) -> RelevanceAnalyzer:
    return RelevanceAnalyzer(test_settings, client=fake_openai, recorder=store.record_ai_interaction)


@pytest.fixture
def orchestrator(embedder, vector_index, analyzer, store, test_settings) -> GrantMatchingOrchestrator:
    return GrantMatchingOrchestrator(
        embedder=embedder,
        vector_index=vector_index,
        analyzer=analyzer,
        store=store,
        settings=test_settings,
    )


# =============================================================================
# Data Fixtures
# =============================================================================


@pytest.fixture
def make_grant(session_factory) -> Callable[..., GrantData]:
    """Insert a grant row and return it as GrantData."""

    def _make_grant(**overrides: Any) -> GrantData:
        values: dict[str, Any] = {
            "title": "Tech Innovation Grant",
            "description": "Funding for technology startups building innovative software products.",
            "funder": "Enterprise Ireland",
            "source": "manual",
            "url": "https://example.org/grants/tech",
            "amount_min": 50000,
            "amount_max": 250000,
            "deadline": datetime(2027, 3, 31, tzinfo=timezone.utc),
            "categories": ["technology", "innovation"],
            "eligibility_criteria": {"applicant_types": ["SMEs", "Startups"]},
            "is_active": True,
        }
        values.update(overrides)
        with session_factory.begin() as session:
            grant = Grant(**values)
            session.add(grant)
            session.flush()
            return GrantData.model_validate(grant)

    return _make_grant


@pytest.fixture
def make_organization(session_factory) -> Callable[..., OrganizationProfile]:
    """Insert an organization row and return its profile."""

    def _make_organization(**overrides: Any) -> OrganizationProfile:
        values: dict[str, Any] = {
            "name": "Acme Robotics",
            "description": "Technology startup building innovative software for warehouse robots.",
            "sector": "technology",
            "size": "small",
            "location": "Dublin, Ireland",
            "capabilities": ["software", "robotics", "machine learning"],
            "previous_grants": ["Innovation Voucher 2024"],
        }
        values.update(overrides)
        with session_factory.begin() as session:
            org = Organization(**values)
            session.add(org)
            session.flush()
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

    return _make_organization


@pytest.fixture
def catalog(orchestrator, make_grant) -> dict[str, GrantData]:
    """Three processed grants in the index, keyed by title."""
    grants = [
        make_grant(),
        make_grant(
            title="Marine Biology Fund",
            description="Supports ocean research on coastal ecosystems.",
            funder="Marine Institute",
            categories=["marine", "research"],
            eligibility_criteria={"applicant_types": ["Universities"]},
        ),
        make_grant(
            title="Arts Council Bursary",
            description="Bursaries for visual artists and theatre makers.",
            funder="Arts Council",
            categories=["arts", "culture"],
            eligibility_criteria={"applicant_types": ["Individuals"]},
        ),
    ]
    for grant in grants:
        assert orchestrator.process_new_grant(grant).ai_processed
    return {grant.title: grant for grant in grants}
