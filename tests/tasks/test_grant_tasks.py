"""
Tests for grant processing Celery tasks.
Tasks are called directly with the in-memory orchestrator patched in.
"""
from datetime import timedelta
from unittest.mock import patch

import pytest

from backend.celery_app import TASK_ROUTES, celery_app
from backend.tasks.grants import batch_process_grants, process_grant


@pytest.fixture
def patched_orchestrator(orchestrator):
    with patch("backend.tasks.grants.get_orchestrator", return_value=orchestrator):
        yield orchestrator


class TestProcessGrantTask:
    """Tests for the single-grant task."""

    def test_processes_grant(self, patched_orchestrator, make_grant):
        grant = make_grant()

        result = process_grant(grant.id)

        assert result["grant_id"] == grant.id
        assert result["ai_processed"] is True
        assert result["vector_id"].startswith(f"grant_{grant.id}_")
        assert result["processing_error"] is None

    def test_failure_reported_not_raised(self, patched_orchestrator, make_grant, fake_openai):
        grant = make_grant()
        fake_openai.embeddings.fail_next = 3

        result = process_grant(grant.id)

        assert result["ai_processed"] is False
        assert "Failed to generate embedding" in result["processing_error"]

    def test_missing_grant_returns_none(self, patched_orchestrator):
        assert process_grant("missing") is None


class TestBatchProcessGrantsTask:
    """Tests for the scheduled batch task."""

    def test_returns_counts(self, patched_orchestrator, make_grant):
        make_grant()
        make_grant(title="Second Grant")

        result = batch_process_grants(limit=5)

        assert result == {"processed": 2, "failed": 0, "errors": []}

    def test_default_limit(self, patched_orchestrator, make_grant, test_settings):
        for i in range(test_settings.batch_process_limit + 2):
            make_grant(title=f"Grant {i}")

        result = batch_process_grants()

        assert result["processed"] == test_settings.batch_process_limit


class TestCeleryConfiguration:
    """Tests for queue routing and the beat schedule."""

    def test_routes(self):
        assert TASK_ROUTES["backend.tasks.grants.process_grant"] == {"queue": "high"}
        assert TASK_ROUTES["backend.tasks.grants.batch_process_grants"] == {"queue": "normal"}

    def test_batch_scheduled_every_fifteen_minutes(self):
        entry = celery_app.conf.beat_schedule["grant-ai-processing"]

        assert entry["task"] == "backend.tasks.grants.batch_process_grants"
        assert entry["schedule"] == timedelta(minutes=15)

    def test_tasks_registered(self):
        assert "backend.tasks.grants.process_grant" in celery_app.tasks
        assert "backend.tasks.grants.batch_process_grants" in celery_app.tasks
