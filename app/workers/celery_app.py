"""
Celery application configuration.

This module configures the Celery app with Redis as broker and backend.
"""

from celery import Celery
from loguru import logger

from promptlab_core.config import settings

celery_app = Celery(
    "prompt_lab",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=[
        "app.workers.tasks",
    ],
)

celery_app.conf.update(
    # Serialization
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    # Timezone
    timezone="UTC",
    enable_utc=True,
    # Task tracking
    task_track_started=True,
    task_acks_late=True,  # Acknowledge after task completes (for reliability)
    # Results
    result_expires=3600,  # Results expire after 1 hour
    # Worker settings
    worker_prefetch_multiplier=1,
    worker_concurrency=4,
)

logger.info(f"Celery app configured with broker: {settings.CELERY_BROKER_URL}")
