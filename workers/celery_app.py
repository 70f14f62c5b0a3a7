"""Celery application configuration"""

from celery import Celery
from kombu import Queue

from tracker.config import settings

# Initialize Celery
celery_app = Celery(
    "content_tracker",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=[
        "tracker.tasks.tracking_tasks",
        "workers.worker_config",
    ]
)

# Celery configuration
celery_app.conf.update(
    # Serialization
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",

    # Time settings
    timezone="UTC",
    enable_utc=True,

    # Task tracking
    task_track_started=True,
    task_time_limit=1800,  # 30 minutes max per refresh batch
    task_soft_time_limit=1500,

    # Worker settings
    worker_prefetch_multiplier=1,
    worker_max_tasks_per_child=100,

    # Task acknowledgment
    task_acks_late=True,
    task_reject_on_worker_lost=True,

    # Results
    result_expires=86400,  # Results expire after 24 hours

    # Task routing
    task_routes={
        "tracking.*": {"queue": "refresh"},
    },

    task_queues=(
        Queue("default", routing_key="default"),
        Queue("refresh", routing_key="refresh"),
    ),

    # Default queue
    task_default_queue="default",
)

# Celery beat schedule for periodic tasks
celery_app.conf.beat_schedule = {
    "refresh-tracked-posts": {
        "task": "tracking.refresh_stale_items",
        "schedule": 3600.0,  # Every hour
    },
}


if __name__ == "__main__":
    celery_app.start()
