"""
Unsubscribe Service - automatisches Abmelden von Mailinglisten

Methodenwahl (erste verfügbare gewinnt):
    1. mailto → Abmelde-Mail über die Gmail API senden
    2. link   → Browser-Automation (src/services/browser_automation.py)
    3. none   → nichts möglich

Pro Ausführung wird genau ein UnsubscribeAttempt geschrieben (im finally).
Einzige Ausnahme: die Email existiert nicht.
"""

import importlib
import logging
import os
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple
from urllib.parse import parse_qs, unquote, urlsplit

from src.helpers.database import get_email_with_account
from src.helpers.settings import PipelineSettings
from src.services.browser_automation import (
    BrowserTiming,
    launch_browser_session,
    run_unsubscribe_flow,
)
from src.services.errors import EmailNotFoundError

logger = logging.getLogger(__name__)

models = importlib.import_module(".02_models", "src")
google_oauth = importlib.import_module(".10_google_oauth", "src")

MAILTO_SUBJECT = "Unsubscribe"
MAILTO_BODY = "Please unsubscribe me from this mailing list."
NOTE_NO_METHOD = "No unsubscribe method available"


@dataclass
class UnsubscribeOutcome:
    method: str
    status: str
    notes: str

    def to_dict(self) -> Dict[str, Any]:
        return {"method": self.method, "status": self.status, "notes": self.notes}


def parse_mailto(target: str) -> Tuple[str, str, str]:
    """mailto-Ziel → (Empfänger, Betreff, Text)

    Akzeptiert 'list@example.com' und 'mailto:list@example.com?subject=..&body=..'.
    Fehlende Parameter werden mit den Standardtexten belegt.
    """
    value = (target or "").strip()
    if value.lower().startswith("mailto:"):
        value = value[len("mailto:"):]

    address, _, query = value.partition("?")
    params = {k.lower(): v for k, v in parse_qs(query).items()} if query else {}
    subject = (params.get("subject") or [MAILTO_SUBJECT])[0] or MAILTO_SUBJECT
    body = (params.get("body") or [MAILTO_BODY])[0] or MAILTO_BODY
    return unquote(address).strip(), subject, body


class UnsubscribeService:
    """Verarbeitet einen UnsubscribeJob; eine Instanz pro Job"""

    def __init__(
        self,
        session,
        token_provider,
        transport_factory: Callable[[str, Optional[str]], Any],
        browser_factory: Optional[Callable[[], Any]] = None,
        settings: Optional[PipelineSettings] = None,
        timing: Optional[BrowserTiming] = None,
    ):
        self.session = session
        self.token_provider = token_provider
        self.transport_factory = transport_factory
        self.settings = settings or PipelineSettings()
        self.timing = timing or BrowserTiming()
        self.browser_factory = browser_factory or (
            lambda: launch_browser_session(
                headless=self.settings.browser_headless, timing=self.timing
            )
        )

    def process(self, job) -> Dict[str, Any]:
        logger.info(f"🔄 Unsubscribe für Email {job.email_id}")

        loaded = get_email_with_account(self.session, job.email_id)
        if loaded is None:
            raise EmailNotFoundError(job.email_id)
        email, account = loaded

        email_id = email.id
        outcome = UnsubscribeOutcome(
            models.UnsubscribeMethod.NONE.value,
            models.UnsubscribeStatus.FAILED.value,
            "Unsubscribe aborted unexpectedly",
        )
        started = time.monotonic()
        try:
            if email.unsubscribe_mailto:
                outcome.method = models.UnsubscribeMethod.MAILTO.value
                outcome = self._via_mailto(email, account)
            elif email.unsubscribe_url:
                outcome.method = models.UnsubscribeMethod.LINK.value
                outcome = self._via_link(email)
            else:
                outcome = UnsubscribeOutcome(
                    models.UnsubscribeMethod.NONE.value,
                    models.UnsubscribeStatus.FAILED.value,
                    NOTE_NO_METHOD,
                )
        finally:
            self._record(email_id, outcome, time.monotonic() - started)

        if outcome.status == models.UnsubscribeStatus.SUCCESS.value:
            logger.info(f"✅ Unsubscribe {email_id} erfolgreich ({outcome.method}): {outcome.notes}")
        else:
            logger.warning(f"⚠️ Unsubscribe {email_id} fehlgeschlagen ({outcome.method}): {outcome.notes}")
        return {"email_id": email_id, **outcome.to_dict()}

    def _via_mailto(self, email, account) -> UnsubscribeOutcome:
        method = models.UnsubscribeMethod.MAILTO.value
        try:
            recipient, subject, body = parse_mailto(email.unsubscribe_mailto)
            if not recipient:
                raise ValueError("mailto target has no address")
            access_token = self.token_provider.decrypt(account.encrypted_access_token)
            refresh_token = self.token_provider.decrypt_optional(account.encrypted_refresh_token)
            transport = self.transport_factory(access_token, refresh_token)
            transport.send_message(google_oauth.create_raw_message(recipient, subject, body))
        except Exception as e:
            logger.warning(f"⚠️ Mailto-Unsubscribe fehlgeschlagen: {type(e).__name__}")
            return UnsubscribeOutcome(
                method, models.UnsubscribeStatus.FAILED.value, f"Failed to send email: {e}"
            )

        logger.info(f"📧 Abmelde-Mail gesendet an {recipient}")
        return UnsubscribeOutcome(
            method, models.UnsubscribeStatus.SUCCESS.value, "Unsubscribe email sent"
        )

    def _via_link(self, email) -> UnsubscribeOutcome:
        method = models.UnsubscribeMethod.LINK.value
        host = urlsplit(email.unsubscribe_url).netloc
        logger.info(f"🌐 Öffne Browser für {host}")
        try:
            with self.browser_factory() as page:
                result = run_unsubscribe_flow(
                    page, email.unsubscribe_url, sender=email.sender, timing=self.timing
                )
                self._screenshot(page, email.id)
        except Exception as e:
            logger.warning(f"⚠️ Link-Unsubscribe fehlgeschlagen: {type(e).__name__}")
            return UnsubscribeOutcome(
                method, models.UnsubscribeStatus.FAILED.value, f"Failed to process link: {e}"
            )
        return UnsubscribeOutcome(method, result.status, result.notes)

    def _screenshot(self, page, email_id: str) -> None:
        directory = self.settings.unsubscribe_screenshot_dir
        if not directory or page.is_closed():
            return
        path = os.path.join(directory, f"unsub-{email_id}.png")
        try:
            page.screenshot(path)
            logger.debug(f"Screenshot gespeichert: {path}")
        except Exception as e:
            logger.debug(f"Screenshot fehlgeschlagen: {type(e).__name__}")

    def _record(self, email_id: str, outcome: UnsubscribeOutcome, duration: float) -> None:
        try:
            self.session.add(
                models.UnsubscribeAttempt(
                    email_id=email_id,
                    method=outcome.method,
                    status=outcome.status,
                    notes=outcome.notes,
                    duration_seconds=round(duration, 2),
                )
            )
            self.session.commit()
        except Exception:
            self.session.rollback()
            logger.error(f"❌ UnsubscribeAttempt für {email_id} konnte nicht gespeichert werden")
            raise
