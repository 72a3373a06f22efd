"""Celery application configuration for marketplace background tasks."""

from celery import Celery
from celery.schedules import crontab

from marketplace.config import settings

celery = Celery("marketplace")

celery.conf.update(
    broker_url=settings.celery_broker_url,
    result_backend=settings.celery_result_backend,
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    task_routes={
        "marketplace.modules.warehouse.tasks.*": {"queue": "carrier-onboarding"},
        "marketplace.modules.events.tasks.*": {"queue": "events"},
    },
    # --- Reliability settings ---
    task_default_retry_delay=60,
    task_max_retries=3,
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    result_expires=86400,  # 24 hours
    broker_transport_options={
        "max_retries": 10,
        "interval_start": 0.2,
        "interval_step": 0.5,
        "interval_max": 5.0,
        "retry_on_timeout": True,
        "visibility_timeout": 3600,
    },
    # --- Beat schedule ---
    beat_schedule={
        "retry-failed-warehouses": {
            "task": "marketplace.modules.warehouse.tasks.retry_failed_warehouses",
            "schedule": settings.warehouse_retry_poll_seconds,
        },
        "relay-outbox": {
            "task": "marketplace.modules.events.tasks.relay_outbox",
            "schedule": settings.outbox_relay_poll_seconds,
        },
        "purge-outbox": {
            "task": "marketplace.modules.events.tasks.purge_outbox",
            "schedule": crontab(hour=3, minute=30),
        },
    },
)

celery.autodiscover_tasks([
    "marketplace.modules.warehouse",
    "marketplace.modules.events",
])
