# src/tasks/__init__.py
"""Celery Tasks - Worker-Pipeline für Mail Helper.

ARCHITEKTUR (Business-Logic Separation Pattern):
┌─────────────────────────────┐
│ Scheduler (Celery beat)     │
│ schedule_account_syncs      │
└────────────┬────────────────┘
             │ enqueue_job(SyncJob)
             ↓
┌─────────────────────────────┐
│ Task (Celery Wrapper)       │
│ mail_sync_tasks.py          │
│ unsubscribe_tasks.py        │
│ - Session Management        │
│ - Retry (self.retry)        │
└────────────┬────────────────┘
             │ service.process(job)
             ↓
┌─────────────────────────────┐
│ Service (Business Logic)    │
│ mail_sync_service.py        │
│ unsubscribe_service.py      │
│ - Keine Celery-Abhängigkeit │
└─────────────────────────────┘

Auto-discovered durch celery_app.autodiscover_tasks() in celery_app.py
"""

from src.tasks.jobs import SyncJob, UnsubscribeJob, dispatch_job
from src.tasks.mail_sync_tasks import (
    enqueue_sync_job,
    schedule_account_syncs,
    sync_account,
)
from src.tasks.unsubscribe_tasks import enqueue_unsubscribe_job, unsubscribe_email


def enqueue_job(job):
    """Legt einen typisierten Job auf die passende Queue"""
    return dispatch_job(
        job,
        {
            SyncJob: enqueue_sync_job,
            UnsubscribeJob: enqueue_unsubscribe_job,
        },
    )


__all__ = [
    "sync_account",
    "schedule_account_syncs",
    "unsubscribe_email",
    "enqueue_sync_job",
    "enqueue_unsubscribe_job",
    "enqueue_job",
]
