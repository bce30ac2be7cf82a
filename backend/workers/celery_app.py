"""
Celery Application Configuration
"""

from celery import Celery
from celery.schedules import crontab

from core.config import get_settings

settings = get_settings()

celery_app = Celery(
    "agrichain",
    broker=settings.redis_url,
    backend=settings.redis_url,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    worker_prefetch_multiplier=1,
    task_routes={
        "workers.policy_expiry.*": {"queue": "maintenance"},
    },
    # ── Celery Beat Schedule ─────────────────────────────────────────
    beat_schedule={
        "expire-insurance-policies-daily": {
            "task": "workers.policy_expiry.expire_insurance_policies",
            "schedule": crontab(hour=0, minute=5),
            "options": {"queue": "maintenance"},
        },
        "reconcile-ledger-daily": {
            "task": "workers.policy_expiry.reconcile_balances",
            "schedule": crontab(hour=1, minute=0),
            "options": {"queue": "maintenance"},
        },
    },
)

# Auto-discover tasks
celery_app.autodiscover_tasks(["workers"], related_name="policy_expiry")
