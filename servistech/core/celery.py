"""
Celery configuration for background tasks
"""
from celery import Celery
from celery.schedules import crontab
import logging

from servistech.core.config import settings

logger = logging.getLogger(__name__)

celery_app = Celery(
    "servistech",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=[
        "servistech.modules.rates.tasks",
        "servistech.modules.targets.tasks",
        "servistech.modules.audit.tasks"
    ]
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="America/Caracas",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=10 * 60,  # 10 minutes
    task_soft_time_limit=8 * 60,  # 8 minutes
    worker_prefetch_multiplier=1,
    worker_max_tasks_per_child=1000,

    # Result backend settings
    result_expires=3600,  # 1 hour

    # Task routes for different queues
    task_routes={
        "servistech.modules.rates.tasks.*": {"queue": "rates"},
        "servistech.modules.targets.tasks.*": {"queue": "targets"},
        "servistech.modules.audit.tasks.*": {"queue": "audit"},
    },

    # Beat schedule for periodic tasks
    beat_schedule={
        "sync-exchange-rates": {
            "task": "servistech.modules.rates.tasks.sync_exchange_rates",
            "schedule": crontab(hour=settings.RATE_SYNC_HOUR, minute=0),
        },
        "recalculate-daily-targets": {
            "task": "servistech.modules.targets.tasks.recalculate_daily_targets",
            "schedule": crontab(hour=settings.TARGET_RECALC_HOUR, minute=55),
        }
    }
)

if __name__ == "__main__":
    celery_app.start()
