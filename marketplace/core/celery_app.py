"""
Marketplace — Celery application

Uses Redis as both broker and result backend. Beat drives the reconciliation
sweeps; the pending-order expiry only runs once an operator configures
PENDING_ORDER_EXPIRY_MINUTES.
"""
from celery import Celery
from marketplace.core.config import get_settings

settings = get_settings()

celery_app = Celery(
    "marketplace",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=["marketplace.tasks.reconciliation_tasks"],
)

celery_app.conf.update(
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    task_acks_late=True,           # Only ack after task completes (fault-tolerant)
    task_reject_on_worker_lost=True,
    worker_prefetch_multiplier=1,  # One sweep at a time per worker
    task_track_started=True,
)

beat_schedule = {
    "redeliver-undelivered": {
        "task": "marketplace.redeliver_undelivered",
        "schedule": float(settings.RECONCILE_INTERVAL_SECONDS),
    },
}
if settings.PENDING_ORDER_EXPIRY_MINUTES:
    beat_schedule["expire-pending-orders"] = {
        "task": "marketplace.expire_pending_orders",
        "schedule": float(settings.RECONCILE_INTERVAL_SECONDS),
    }
celery_app.conf.beat_schedule = beat_schedule
