# src/tasks/unsubscribe_tasks.py
"""
Unsubscribe Tasks für Celery (Queue: unsubscribe, Concurrency 1)

Retry: UNSUBSCRIBE_RETRY_POLICY (2 Versuche, 5s Backoff). CAPTCHA/Login-Wall
sind aufgezeichnete Fehlversuche und beenden die Task regulär.
"""

import logging
from typing import Any, Dict

from src.celery_app import celery_app
from src.helpers.database import get_session
from src.helpers.factories import build_token_provider, build_transport_factory
from src.helpers.settings import PipelineSettings
from src.services.unsubscribe_service import UnsubscribeService
from src.tasks.jobs import UNSUBSCRIBE_QUEUE, UNSUBSCRIBE_RETRY_POLICY, UnsubscribeJob
from src.tasks.mail_sync_tasks import _is_transient_error

logger = logging.getLogger(__name__)


def enqueue_unsubscribe_job(job: UnsubscribeJob):
    """Legt einen UnsubscribeJob auf die unsubscribe Queue"""
    return unsubscribe_email.apply_async(args=[job.to_payload()], queue=UNSUBSCRIBE_QUEUE)


@celery_app.task(
    bind=True,
    name="tasks.unsubscribe_email",
    max_retries=UNSUBSCRIBE_RETRY_POLICY.max_retries,
    # Browser-Sessions können hängen
    soft_time_limit=5 * 60,
    time_limit=6 * 60,
)
def unsubscribe_email(self, payload: Dict[str, Any]):
    """Unsubscribe für eine Email (Payload: {"emailId"})"""
    job = UnsubscribeJob.from_payload(payload)
    settings = PipelineSettings.from_env()

    session = get_session()
    try:
        service = UnsubscribeService(
            session=session,
            token_provider=build_token_provider(settings),
            transport_factory=build_transport_factory(settings),
            settings=settings,
        )
        return service.process(job)

    except Exception as exc:
        session.rollback()
        kind = "transient" if _is_transient_error(exc) else "strukturell"
        logger.error(
            f"❌ Unsubscribe für Email {job.email_id} fehlgeschlagen ({kind}, "
            f"Versuch {self.request.retries + 1}/{UNSUBSCRIBE_RETRY_POLICY.attempts}): "
            f"{type(exc).__name__}: {exc}"
        )
        raise self.retry(
            exc=exc, countdown=UNSUBSCRIBE_RETRY_POLICY.countdown(self.request.retries)
        )

    finally:
        session.close()
