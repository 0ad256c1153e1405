"""
GrantMatch Celery Application Configuration

Configures the Celery task queue used for background grant processing,
including queues, retry policy, the beat schedule and monitoring hooks.
"""

import time
from datetime import timedelta
from typing import Any

import structlog
from celery import Celery, Task
from celery.signals import setup_logging, task_failure, task_postrun, task_prerun, task_retry
from kombu import Exchange, Queue
from sqlalchemy.exc import OperationalError

from backend.core.config import settings
from backend.core.logging import configure_logging

logger = structlog.get_logger().bind(agent="celery")


# =============================================================================
# Queue Definitions
# =============================================================================

default_exchange = Exchange("default", type="direct")
priority_exchange = Exchange("priority", type="direct")

TASK_QUEUES = (
    # High queue: single grant processing triggered by new grants
    Queue(
        "high",
        exchange=priority_exchange,
        routing_key="high",
        queue_arguments={"x-max-priority": 7},
    ),
    # Normal queue: scheduled batch processing
    Queue(
        "normal",
        exchange=default_exchange,
        routing_key="normal",
        queue_arguments={"x-max-priority": 3},
    ),
)

TASK_ROUTES = {
    "backend.tasks.grants.process_grant": {"queue": "high"},
    "backend.tasks.grants.batch_process_grants": {"queue": "normal"},
}


# =============================================================================
# Celery Application
# =============================================================================

def create_celery_app() -> Celery:
    """
    Create and configure the Celery application.

    Returns:
        Configured Celery application instance.
    """
    app = Celery(
        "grantmatch",
        broker=settings.celery_broker_url,
        backend=settings.celery_result_backend,
        include=["backend.tasks.grants"],
    )

    app.conf.update(
        # Serialization
        task_serializer="json",
        accept_content=["json"],
        result_serializer="json",

        # Queues
        task_queues=TASK_QUEUES,
        task_routes=TASK_ROUTES,
        task_default_queue="normal",
        task_default_exchange="default",
        task_default_routing_key="normal",

        # Time limits; a batch makes several provider calls per grant
        task_soft_time_limit=600,
        task_time_limit=900,

        # Retry policy
        task_default_retry_delay=10,
        task_max_retries=3,

        # Concurrency
        worker_concurrency=4,
        worker_prefetch_multiplier=1,

        # Results
        result_expires=86400,
        task_track_started=True,
        task_acks_late=True,
        task_reject_on_worker_lost=True,

        timezone="UTC",
        enable_utc=True,

        broker_connection_retry_on_startup=True,

        beat_schedule={
            "grant-ai-processing": {
                "task": "backend.tasks.grants.batch_process_grants",
                "schedule": timedelta(minutes=15),
                "kwargs": {"limit": settings.batch_process_limit},
                "options": {"queue": "normal"},
            },
        },
    )

    return app


celery_app = create_celery_app()


# =============================================================================
# Base Task with Retry Policy
# =============================================================================

class BaseTaskWithRetry(Task):
    """
    Base task class with exponential backoff on transient database errors.

    Provider failures are handled inside the matching pipeline and never
    reach the task layer as exceptions.
    """

    autoretry_for = (OperationalError,)
    max_retries = 3
    retry_backoff = True
    retry_backoff_max = 300
    retry_jitter = True

    def on_failure(self, exc: Exception, task_id: str, args: tuple, kwargs: dict, einfo: Any) -> None:
        logger.error(
            "task_failed",
            task=self.name,
            task_id=task_id,
            retries=self.request.retries,
            error=str(exc),
        )
        super().on_failure(exc, task_id, args, kwargs, einfo)


celery_app.Task = BaseTaskWithRetry


# =============================================================================
# Monitoring Hooks
# =============================================================================

_task_start_times: dict[str, float] = {}


@setup_logging.connect
def setup_logging_handler(**kwargs: Any) -> None:
    """Use the application's structlog configuration in workers."""
    configure_logging(settings)


@task_prerun.connect
def task_prerun_handler(sender: Task | None = None, task_id: str | None = None, **extra: Any) -> None:
    if task_id:
        _task_start_times[task_id] = time.time()


@task_postrun.connect
def task_postrun_handler(
    sender: Task | None = None,
    task_id: str | None = None,
    state: str | None = None,
    **extra: Any,
) -> None:
    """Log task latency."""
    if task_id and task_id in _task_start_times:
        latency = time.time() - _task_start_times.pop(task_id)
        logger.info(
            "task_completed",
            task=sender.name if sender else "unknown",
            task_id=task_id,
            latency_s=round(latency, 3),
            state=state,
        )


@task_failure.connect
def task_failure_handler(sender: Task | None = None, task_id: str | None = None, **kwargs: Any) -> None:
    if task_id:
        _task_start_times.pop(task_id, None)


@task_retry.connect
def task_retry_handler(sender: Task | None = None, request: Any = None, reason: Any = None, **kwargs: Any) -> None:
    logger.warning(
        "task_retrying",
        task=sender.name if sender else "unknown",
        task_id=request.id if request else "unknown",
        reason=str(reason),
    )


__all__ = ["celery_app", "BaseTaskWithRetry"]
