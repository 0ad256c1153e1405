"""
GrantMatch Grant Processing Tasks

Celery tasks that embed, index and tag grants in the background.
"""
from typing import Any, Optional

import structlog
from celery import Task

from backend.api.deps import get_orchestrator
from backend.celery_app import celery_app
from backend.core.exceptions import NotFoundError

logger = structlog.get_logger().bind(agent="grant_tasks")


@celery_app.task(
    name="backend.tasks.grants.process_grant",
    bind=True,
    queue="high",
)
def process_grant(self: Task, grant_id: str) -> Optional[dict[str, Any]]:
    """
    Process a single grant.

    Args:
        grant_id: Id of the grant to process.

    Returns:
        Processing summary, or None if the grant does not exist.
    """
    orchestrator = get_orchestrator()

    try:
        result = orchestrator.process_grant_by_id(grant_id)
    except NotFoundError:
        logger.warning("grant_not_found", grant_id=grant_id)
        return None

    return {
        "grant_id": grant_id,
        "ai_processed": result.ai_processed,
        "vector_id": result.vector_id,
        "semantic_tags": result.semantic_tags,
        "processing_error": result.processing_error,
    }


@celery_app.task(
    name="backend.tasks.grants.batch_process_grants",
    bind=True,
    queue="normal",
)
def batch_process_grants(self: Task, limit: Optional[int] = None) -> dict[str, Any]:
    """
    Process pending grants (active and not yet AI-processed).

    Scheduled by beat every 15 minutes.
    """
    result = get_orchestrator().batch_process_grants(limit)

    logger.info(
        "batch_task_complete",
        processed=result.processed,
        failed=result.failed,
    )
    return result.model_dump()
