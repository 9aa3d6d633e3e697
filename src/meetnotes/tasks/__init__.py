"""Background execution for meetnotes.

Meeting processing runs detached from the request that triggers it, either as
an asyncio task inside the API process or as a Celery task with Redis as the
message broker and result backend.
"""
from __future__ import annotations

import logging

from celery import Celery

from meetnotes.core.settings import Settings, get_settings

logger = logging.getLogger(__name__)

PROCESS_MEETING_TASK = "meetnotes.tasks.worker.process_meeting"

# Global Celery app instance
_celery_app: Celery | None = None


def create_celery_app(settings: Settings) -> Celery:
    app = Celery(
        "meetnotes",
        broker=settings.redis_url,
        backend=settings.redis_url,
        include=["meetnotes.tasks.worker"],
    )
    app.conf.update(
        task_serializer="json",
        accept_content=["json"],
        result_serializer="json",
        timezone="UTC",
        enable_utc=True,

        # Worker settings
        worker_prefetch_multiplier=1,
        task_acks_late=True,

        result_expires=3600,  # 1 hour
        result_backend_transport_options={
            "retry_policy": {"timeout": 5.0}
        },

        task_routes={
            PROCESS_MEETING_TASK: {"queue": "processing"},
        },

        # A run is bounded by the AI retry envelope; this is a hard backstop
        task_time_limit=3600,
        task_soft_time_limit=3300,
    )
    return app


def get_celery_app() -> Celery:
    """Get or create the Celery application instance."""
    global _celery_app

    if _celery_app is None:
        _celery_app = create_celery_app(get_settings())
        logger.info("Celery application initialized with Redis broker")

    return _celery_app
