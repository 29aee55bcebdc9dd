"""
Celery application for queue imports and maintenance.

Broker/backend: Redis (REDIS_URL env).
Default queue: newsqueue.
"""
from celery import Celery

from newsqueue.settings import get_settings

settings = get_settings()

celery_app = Celery(
    "newsqueue",
    broker=settings.redis_url,
    backend=settings.redis_url,
)

celery_app.conf.update(
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    worker_prefetch_multiplier=1,
    task_time_limit=30 * 60,
    task_soft_time_limit=25 * 60,
    task_default_queue="newsqueue",
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    # visibility_timeout must exceed task_time_limit to prevent redelivery
    broker_transport_options={"visibility_timeout": 3600},
)

celery_app.autodiscover_tasks(["newsqueue.worker"])
