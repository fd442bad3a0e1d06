"""
Celery application configuration.
"""

from celery import Celery
from celery.schedules import crontab

from app.config import settings

# Create Celery app
celery_app = Celery(
    "chartpay",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=[
        "app.workers.payment_sweep",
        "app.workers.side_effects",
    ],
)

# Celery configuration
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=300,  # 5 minutes
    worker_prefetch_multiplier=1,
    task_acks_late=True,
)

# Beat schedule for periodic tasks
celery_app.conf.beat_schedule = {
    # Reconcile pending payments the webhook and poller missed
    "payment-sweep": {
        "task": "app.workers.payment_sweep.sweep_pending_payments",
        "schedule": crontab(minute=f"*/{settings.sweep_interval_minutes}"),
    },
    # Drain the side-effect outbox (retries, missed kicks)
    "side-effects": {
        "task": "app.workers.side_effects.process_side_effects",
        "schedule": crontab(minute="*"),
    },
}
