"""
Celery Application Configuration
"""

from celery import Celery
from celery.schedules import crontab

from core.config import get_settings

settings = get_settings()

celery_app = Celery(
    "opslens",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["workers.fraud_rescore", "workers.stock_alerts"],
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
        "workers.fraud_rescore.*": {"queue": "fraud"},
        "workers.stock_alerts.*": {"queue": "inventory"},
    },
    # ── Celery Beat Schedule ─────────────────────────────────────────
    beat_schedule={
        "raise-low-stock-alerts-hourly": {
            "task": "workers.stock_alerts.raise_low_stock_alerts",
            "schedule": crontab(minute=15),
            "options": {"queue": "inventory"},
        },
    },
)
