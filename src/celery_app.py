# src/celery_app.py
"""Celery Application für die Worker-Pipeline (Sync + Unsubscribe).

INHALT:
- Redis als Message Broker und Result-Backend
- Zwei Queues: email-sync (Concurrency SYNC_CONCURRENCY) und
  unsubscribe (Concurrency 1, Browser-Sessions strikt seriell)
- Celery beat: Scheduler-Tick alle SYNC_INTERVAL_SECONDS
- At-least-once: acks_late + reject_on_worker_lost

VERWENDUNG:
    1. .env updaten mit:
       - ENCRYPTION_KEY=<64 hex>
       - CELERY_BROKER_URL=redis://localhost:6379/1
       - CELERY_RESULT_BACKEND=redis://localhost:6379/2

    2. Worker starten (je Queue ein Worker):
       celery -A src.celery_app worker -Q email-sync --concurrency=2 --loglevel=info
       celery -A src.celery_app worker -Q unsubscribe --concurrency=1 --loglevel=info

    3. Scheduler starten:
       celery -A src.celery_app beat --loglevel=info

    4. Jobs von außen einreihen:
       from src.tasks import enqueue_job
       from src.tasks.jobs import UnsubscribeJob
       enqueue_job(UnsubscribeJob(email_id="..."))

SIGTERM = Warm Shutdown: keine neuen Jobs, laufende Jobs laufen zu Ende.
Abgebrochene Jobs werden dank acks_late erneut zugestellt.
"""

import importlib
import logging
from pathlib import Path
from celery import Celery
from celery.signals import worker_init
from dotenv import load_dotenv

from src.helpers.settings import PipelineSettings

# Load .env.local first (priority), then .env (fallback)
project_root = Path(__file__).parent.parent
load_dotenv(project_root / ".env.local", override=True)
load_dotenv(project_root / ".env", override=False)

logger = logging.getLogger(__name__)

settings = PipelineSettings.from_env()

celery_app = Celery(
    "mail_helper",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="Europe/Berlin",
    enable_utc=True,
    task_track_started=True,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_time_limit=15 * 60,      # 15 Minuten Hard-Limit
    task_soft_time_limit=12 * 60,  # 12 Minuten Soft-Limit (lokale LLMs)
    worker_prefetch_multiplier=1,
    worker_concurrency=settings.sync_concurrency,
    task_default_queue="email-sync",
    task_routes={
        "tasks.sync_account": {"queue": "email-sync"},
        "tasks.schedule_account_syncs": {"queue": "email-sync"},
        "tasks.unsubscribe_email": {"queue": "unsubscribe"},
    },
    beat_schedule={
        "schedule-account-syncs": {
            "task": "tasks.schedule_account_syncs",
            "schedule": float(settings.sync_interval_seconds),
        },
    },
)

celery_app.autodiscover_tasks(["src.tasks"])


def consumed_queue_names(worker):
    """Queue-Namen die der Worker konsumiert (-Q Auswahl oder alle bekannten)"""
    queues = worker.app.amqp.queues
    selected = queues.consume_from if queues.consume_from is not None else queues
    return set(selected)


@worker_init.connect
def validate_worker_environment(sender=None, **kwargs):
    """Abbruch beim Worker-Start wenn kritische Variablen fehlen
    oder die Unsubscribe-Queue parallel konsumiert würde"""
    env_validator = importlib.import_module(".00_env_validator", "src")
    env_validator.EnvironmentValidator.validate()
    if sender is not None:
        env_validator.EnvironmentValidator.validate_worker_queues(
            consumed_queue_names(sender), sender.concurrency
        )


if __name__ == "__main__":
    celery_app.start()
