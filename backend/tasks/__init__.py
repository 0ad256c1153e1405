"""
GrantMatch Celery Tasks

Task Modules:
    - grants: AI processing of grants (embedding, indexing, semantic tags)

Queue Priorities:
    - high: single grant processing
    - normal: scheduled batch processing

Usage:
    from backend.tasks import grants

    grants.process_grant.delay("grant-id")
"""

__all__ = ["grants"]
