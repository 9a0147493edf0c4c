"""
Celery Application Configuration
"""

from celery import Celery
from celery.schedules import crontab

from core.config import get_settings

settings = get_settings()

celery_app = Celery(
    "carriersync",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["workers.invoice_import", "workers.tracking", "workers.scheduler"],
)

_env = settings.app_env

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    # Queues are split per environment: <queue>-<app_env>
    task_routes={
        "workers.invoice_import.import_invoice_files": {"queue": f"invoice_import-{_env}"},
        "workers.invoice_import.process_invoice": {"queue": f"invoice_process-{_env}"},
        "workers.tracking.process_tracking_number": {"queue": f"tracking-{_env}"},
        "workers.tracking.validate_tracking_number": {"queue": f"validate_tracking_numbers-{_env}"},
        "workers.scheduler.*": {"queue": f"scheduler-{_env}"},
    },
    # ── Celery Beat Schedule ─────────────────────────────────────────
    beat_schedule={
        # ── Invoice Import ──────────────────────────────────────────
        "claim-invoice-files-hourly": {
            "task": "workers.scheduler.claim_pending_invoice_files",
            "schedule": crontab(minute=0),
            "options": {"queue": f"scheduler-{_env}"},
        },
        # ── Tracking ────────────────────────────────────────────────
        "refresh-open-tracking-numbers-2h": {
            "task": "workers.scheduler.dispatch_open_tracking_numbers",
            "schedule": crontab(minute=15, hour="*/2"),
            "options": {"queue": f"scheduler-{_env}"},
        },
    },
)
