# src/tasks/mail_sync_tasks.py
"""
Mail Sync Tasks für Celery (Queue: email-sync)

- sync_account: dünner Wrapper um MailSyncService.process()
- schedule_account_syncs: Scheduler-Tick (Celery beat), ein SyncJob pro Account
- Startup-Tick über worker_ready (SYNC_ON_STARTUP)

Retry: SYNC_RETRY_POLICY (3 Versuche, 2s/4s Backoff) via self.retry().
"""

import logging
from typing import Any, Dict

from celery.signals import worker_ready

from src.celery_app import celery_app
from src.helpers.database import get_session, list_connected_accounts
from src.helpers.factories import (
    build_ai_client,
    build_token_provider,
    build_transport_factory,
)
from src.helpers.settings import PipelineSettings
from src.services.mail_sync_service import MailSyncService
from src.tasks.jobs import SYNC_QUEUE, SYNC_RETRY_POLICY, SyncJob

logger = logging.getLogger(__name__)


def _is_transient_error(exc: Exception) -> bool:
    """
    Erkennt ob Fehler transient ist (Netzwerk, Rate-Limit, Locks).

    Wird nur noch für die Log-Einordnung genutzt: die Queue wiederholt
    jeden job-fatalen Fehler bis zum Versuchslimit.
    """
    error_str = str(exc).lower()
    error_type = type(exc).__name__

    # Transient: Netzwerk-Probleme
    transient_keywords = [
        'timeout', 'timed out', 'connection', 'network',
        'temporary', 'unavailable', 'try again',
        'rate limit', 'too many requests', 'socket',
        'ssl', 'refused', 'locked',
    ]

    if any(keyword in error_str for keyword in transient_keywords):
        return True

    # Permanent: Auth/Permission
    permanent_keywords = [
        'authentication', 'credentials', 'unauthorized', 'forbidden',
        'invalid token', 'access denied', 'not found', 'decryption',
    ]

    if any(keyword in error_str for keyword in permanent_keywords):
        return False

    # Permanent: Programming Errors
    if error_type in ['ValueError', 'TypeError', 'AttributeError', 'KeyError']:
        return False

    # Default: Bei Unsicherheit retry versuchen
    return True


def enqueue_sync_job(job: SyncJob):
    """Legt einen SyncJob auf die email-sync Queue"""
    return sync_account.apply_async(args=[job.to_payload()], queue=SYNC_QUEUE)


@celery_app.task(
    bind=True,
    name="tasks.sync_account",
    max_retries=SYNC_RETRY_POLICY.max_retries,
)
def sync_account(self, payload: Dict[str, Any]):
    """Sync eines ConnectedAccounts (Payload: {"accountId", "fullSync"?})"""
    # Ungültige Payload ist permanent → kein Retry
    job = SyncJob.from_payload(payload)
    settings = PipelineSettings.from_env()

    session = get_session()
    try:
        service = MailSyncService(
            session=session,
            ai_client=build_ai_client(settings),
            token_provider=build_token_provider(settings),
            transport_factory=build_transport_factory(settings),
            settings=settings,
        )
        return service.process(job)

    except Exception as exc:
        session.rollback()
        kind = "transient" if _is_transient_error(exc) else "strukturell"
        logger.error(
            f"❌ Sync für Account {job.account_id} fehlgeschlagen ({kind}, "
            f"Versuch {self.request.retries + 1}/{SYNC_RETRY_POLICY.attempts}): "
            f"{type(exc).__name__}: {exc}"
        )
        raise self.retry(
            exc=exc, countdown=SYNC_RETRY_POLICY.countdown(self.request.retries)
        )

    finally:
        session.close()


@celery_app.task(bind=True, name="tasks.schedule_account_syncs")
def schedule_account_syncs(self):
    """Scheduler-Tick: ein SyncJob (fullSync=false) pro verbundenem Account.

    Enqueue-Fehler eines Accounts brechen die übrigen nicht ab.
    """
    session = get_session()
    scheduled = 0
    failed = 0
    try:
        for account in list_connected_accounts(session):
            try:
                enqueue_sync_job(SyncJob(account_id=account.id))
                scheduled += 1
                logger.info(f"📅 Sync geplant für Account {account.id}")
            except Exception as e:
                failed += 1
                logger.error(f"❌ Sync für Account {account.id} nicht planbar: {e}")
    finally:
        session.close()

    return {"scheduled": scheduled, "failed": failed}


@worker_ready.connect
def schedule_on_startup(sender=None, **kwargs):
    """Einmaliger Scheduler-Tick beim Start eines email-sync Workers"""
    if not PipelineSettings.from_env().sync_on_startup:
        return
    app = getattr(sender, "app", None) or celery_app
    consume_from = getattr(app.amqp.queues, "consume_from", None)
    if consume_from and SYNC_QUEUE not in consume_from:
        return
    logger.info("🚀 Worker bereit → initialer Scheduler-Tick")
    schedule_account_syncs.apply_async(queue=SYNC_QUEUE)
