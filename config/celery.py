"""
Celery configuration for the Catalog Ingestion service.

Source runs go to the ingest queue; estimator refreshes and housekeeping
run on the default queue.
"""

import os
from celery import Celery
from celery.schedules import crontab

# Set the default Django settings module for the 'celery' program.
os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

app = Celery("catalog_ingest")

# - namespace='CELERY' means all celery-related configuration keys
#   should have a `CELERY_` prefix.
app.config_from_object("django.conf:settings", namespace="CELERY")

# Load task modules from all registered Django apps.
app.autodiscover_tasks()

app.conf.task_queues = {
    "ingest": {
        "exchange": "ingest",
        "routing_key": "ingest",
    },
    "default": {
        "exchange": "default",
        "routing_key": "default",
    },
}

app.conf.task_default_queue = "default"
app.conf.task_default_exchange = "default"
app.conf.task_default_routing_key = "default"

app.conf.task_routes = {
    "ingestion.tasks.ingest_source": {"queue": "ingest"},
    "ingestion.tasks.reprocess_raw_responses": {"queue": "ingest"},
    "ingestion.tasks.check_due_sources": {"queue": "default"},
    "ingestion.tasks.refresh_source_totals": {"queue": "default"},
    "ingestion.tasks.deactivate_expired_sales": {"queue": "default"},
}

app.conf.beat_schedule = {
    "check-due-sources-every-15-minutes": {
        "task": "ingestion.tasks.check_due_sources",
        "schedule": crontab(minute="*/15"),
    },
    "refresh-source-totals-hourly": {
        "task": "ingestion.tasks.refresh_source_totals",
        "schedule": crontab(minute=5),
        "kwargs": {"force_refresh": True},
    },
    "deactivate-expired-sales-every-30-minutes": {
        "task": "ingestion.tasks.deactivate_expired_sales",
        "schedule": crontab(minute="*/30"),
    },
}
