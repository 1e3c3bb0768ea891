"""Celery application configuration for scheduled ledger syncs."""

import os

from celery import Celery
from celery.schedules import crontab
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv(override=False)

celery_app = Celery(
    "ledger_tasks",
    broker=os.getenv("CELERY_BROKER_URL", "redis://localhost:6379/0"),
    backend=os.getenv("CELERY_RESULT_BACKEND", "redis://localhost:6379/0"),
    include=["tasks.sync_tasks"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=900,  # 15 minutes hard limit
    task_soft_time_limit=840,
    result_expires=3600,  # Keep results for 1 hour
    beat_schedule={
        "sync-all-linked-owners": {
            "task": "tasks.sync_tasks.sync_all_linked_owners",
            "schedule": crontab(minute=0, hour=f"*/{os.getenv('SYNC_SCHEDULE_HOURS', '6')}"),
        },
    },
)
