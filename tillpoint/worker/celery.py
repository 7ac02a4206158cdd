"""
Celery configuration for background task processing.
"""
from celery import Celery

from tillpoint.core.config import get_settings

settings = get_settings()

# Create Celery app
celery = Celery(
    "tillpoint",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=["tillpoint.worker.tasks"]
)

# Celery configuration
celery.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=30 * 60,
    task_soft_time_limit=25 * 60,
    worker_prefetch_multiplier=1,
    worker_max_tasks_per_child=1000,
    result_expires=3600,
    beat_schedule={
        "reconcile-inventory": {
            "task": "tillpoint.worker.tasks.reconcile_inventory",
            "schedule": 86400.0,  # Daily
        },
        "check-barcode-pool": {
            "task": "tillpoint.worker.tasks.check_barcode_pool",
            "schedule": 1800.0,  # Every 30 minutes
        },
        "cleanup-expired-alerts": {
            "task": "tillpoint.worker.tasks.cleanup_expired_alerts",
            "schedule": 1800.0,  # Every 30 minutes
        },
        "expire-stale-pending": {
            "task": "tillpoint.worker.tasks.expire_stale_pending",
            "schedule": 3600.0,  # Hourly
        },
    }
)

if __name__ == "__main__":
    celery.start()
