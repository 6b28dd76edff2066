"""
Celery app for background payment work.

Redis is both broker and result backend. Tasks run one at a time per
worker process and are acknowledged after they finish, so a crashed sweep
is picked up again instead of lost.
"""

from celery import Celery
from celery.schedules import crontab

from app.config import settings

celery_app = Celery(
    "condo_payments",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["app.workers.payment_reconciliation"],
)

celery_app.conf.update(
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="America/Santiago",
    enable_utc=True,
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    # Lock TTL in the sweep is shorter than this
    task_time_limit=300,
    result_expires=3600,
    task_default_queue="payments",
)

celery_app.conf.beat_schedule = {
    "reconcile-stale-payments": {
        "task": "app.workers.payment_reconciliation.reconcile_stale_payments",
        "schedule": crontab(minute="*/10"),
        "options": {"expires": 9 * 60},
    },
}
