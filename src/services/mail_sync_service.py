"""
Mail Sync Service - Gmail → Datenbank (Sync Processor)

Workflow pro SyncJob:
═══════════════════════════════════════════════════════════════════════════

SCHRITT 1: LOAD + DECRYPT
    Account inkl. Kategorien seines Users laden (fehlt → AccountNotFoundError),
    OAuth-Tokens entschlüsseln (Fehler → TokenDecryptionError).

SCHRITT 2: MODUS BESTIMMEN
    history_cursor vorhanden und kein fullSync:
        → users.history.list ab Cursor
            needs_full_sync → genau ein Wiedereinstieg mit full_sync=True
            anderer Fehler  → Full-Modus für diesen Lauf, Cursor unverändert
            Erfolg          → neue IDs sammeln, Cursor SOFORT speichern
    sonst (Full-Modus):
        → ohne/veralteter Cursor: historyId VOR dem Listing lesen,
          nach der Verarbeitung als neuen Cursor speichern
        → messages.list "after:<epoch>" (Zeitfenster + Max-Results)

SCHRITT 3: PRO KANDIDAT (Fehler → loggen, überspringen)
    a) gmail_id schon in DB → skip
    b) Message holen + parsen
    c) Klassifizieren (nur wenn Kategorien existieren)
    d) Analysieren; ohne Unsubscribe-Angaben → Header/HTML-Fallback
    e) Remote archivieren (INBOX-Label entfernen)
    f) Email-Datensatz anlegen

═══════════════════════════════════════════════════════════════════════════
"""

import importlib
import logging
import time
from dataclasses import dataclass, replace
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.exc import IntegrityError

from src.helpers.database import email_exists, get_connected_account_with_categories
from src.helpers.settings import PipelineSettings
from src.services.errors import AccountNotFoundError, GmailAPIError
from src.services.message_parser import (
    extract_unsubscribe_info,
    parse_message,
    parse_received_at,
)

logger = logging.getLogger(__name__)

ai_client_mod = importlib.import_module(".03_ai_client", "src")

MODE_INCREMENTAL = "incremental"
MODE_FULL = "full"


@dataclass
class SyncStats:
    """Statistiken eines Sync-Laufs"""

    account_id: str
    mode: str = MODE_FULL
    candidates: int = 0
    created: int = 0
    skipped: int = 0
    failed: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "account_id": self.account_id,
            "mode": self.mode,
            "candidates": self.candidates,
            "created": self.created,
            "skipped": self.skipped,
            "failed": self.failed,
        }


class MailSyncService:
    """Verarbeitet einen SyncJob für genau einen ConnectedAccount.

    Alle Kollaborateure werden injiziert; eine Instanz pro Job.
    """

    def __init__(
        self,
        session,
        ai_client,
        token_provider,
        transport_factory: Callable[[str, Optional[str]], Any],
        settings: Optional[PipelineSettings] = None,
    ):
        """
        Args:
            session: SQLAlchemy Session
            ai_client: AIClient (complete())
            token_provider: TokenProvider (decrypt/decrypt_optional)
            transport_factory: (access_token, refresh_token) → GmailTransport
            settings: Zeitfenster/Max-Results für den Full-Sync
        """
        self.session = session
        self.ai_client = ai_client
        self.token_provider = token_provider
        self.transport_factory = transport_factory
        self.settings = settings or PipelineSettings()
        self.models = importlib.import_module(".02_models", "src")

    def process(self, job) -> Dict[str, Any]:
        return self._run(job, cursor_stale=False)

    def _run(self, job, cursor_stale: bool) -> Dict[str, Any]:
        logger.info(f"🔄 Sync für Account {job.account_id} (full_sync={job.full_sync})")

        # SCHRITT 1
        loaded = get_connected_account_with_categories(self.session, job.account_id)
        if loaded is None:
            raise AccountNotFoundError(job.account_id)
        account, categories = loaded

        access_token = self.token_provider.decrypt(account.encrypted_access_token)
        refresh_token = self.token_provider.decrypt_optional(account.encrypted_refresh_token)
        transport = self.transport_factory(access_token, refresh_token)

        # SCHRITT 2
        stats = SyncStats(account_id=account.id)
        message_ids: Optional[List[str]] = None

        if account.history_cursor and not job.full_sync:
            try:
                history = transport.list_history(account.history_cursor)
            except GmailAPIError as e:
                logger.warning(
                    f"⚠️ History API Fehler für Account {account.id}, Fallback auf Full-Sync: {e}"
                )
            else:
                if history.needs_full_sync:
                    logger.info("ℹ️ History-Cursor veraltet → einmaliger Full-Sync")
                    return self._run(replace(job, full_sync=True), cursor_stale=True)

                message_ids = history.added_message_ids()
                stats.mode = MODE_INCREMENTAL
                if history.new_cursor:
                    account.history_cursor = str(history.new_cursor)
                    self.session.commit()

        seed_cursor = None
        if message_ids is None:
            # historyId VOR dem Listing lesen, sonst fallen Nachrichten
            # zwischen Listing und Cursor-Speicherung durchs Raster
            if not account.history_cursor or cursor_stale:
                seed_cursor = self._read_history_id(transport)
            message_ids = self._list_full_window(transport)
            stats.mode = MODE_FULL

        stats.candidates = len(message_ids)
        logger.info(f"📧 {len(message_ids)} Kandidaten ({stats.mode}) für Account {account.id}")

        # SCHRITT 3
        for message_id in message_ids:
            self._process_candidate(transport, account, categories, message_id, stats)

        if seed_cursor:
            account.history_cursor = seed_cursor

        account.last_sync_at = self.models._utcnow()
        self.session.commit()

        logger.info(
            f"✅ Sync abgeschlossen für Account {account.id}: "
            f"{stats.created} neu, {stats.skipped} übersprungen, {stats.failed} Fehler"
        )
        return stats.to_dict()

    def _list_full_window(self, transport) -> List[str]:
        """Full-Modus: Zeitfenster-Query; Transport-Fehler hier sind job-fatal"""
        since = int(time.time()) - self.settings.full_sync_window_days * 24 * 60 * 60
        return transport.list_messages(
            f"after:{since}", max_results=self.settings.full_sync_max_results
        )

    def _read_history_id(self, transport) -> Optional[str]:
        """Aktuelle historyId als Startpunkt für den nächsten inkrementellen Lauf"""
        try:
            profile = transport.get_profile()
        except GmailAPIError as e:
            logger.warning(f"⚠️ historyId konnte nicht gelesen werden: {e}")
            return None
        history_id = profile.get("historyId")
        return str(history_id) if history_id else None

    def _classify(self, parsed: Dict[str, Any], categories) -> Optional[str]:
        if not categories:
            return None
        result = ai_client_mod.classify_email(self.ai_client, parsed, categories)
        if result.fallback:
            return None
        for category in categories:
            if category.name == result.category_name:
                return category.id
        return None

    def _analyze(self, parsed: Dict[str, Any]):
        analysis = ai_client_mod.analyze_email(self.ai_client, parsed)
        if not analysis.unsubscribe_url and not analysis.unsubscribe_mailto:
            info = extract_unsubscribe_info(parsed)
            analysis.unsubscribe_url = info["url"]
            analysis.unsubscribe_mailto = info["mailto"]
        return analysis

    def _process_candidate(
        self, transport, account, categories, message_id: str, stats: SyncStats
    ) -> None:
        try:
            if email_exists(self.session, message_id):
                logger.debug(f"Überspringe bereits verarbeitete Message {message_id}")
                stats.skipped += 1
                return

            parsed = parse_message(transport.get_message(message_id))
            category_id = self._classify(parsed, categories)
            analysis = self._analyze(parsed)
            received_at = parse_received_at(parsed["date"])

            transport.archive_message(message_id)

            email = self.models.Email(
                user_id=account.user_id,
                account_id=account.id,
                gmail_id=message_id,
                thread_id=parsed["thread_id"],
                subject=parsed["subject"],
                sender=parsed["sender"],
                received_at=received_at,
                snippet=parsed["snippet"],
                html=parsed["html"],
                text=parsed["text"],
                ai_summary=analysis.summary,
                category_id=category_id,
                unsubscribe_url=analysis.unsubscribe_url,
                unsubscribe_mailto=analysis.unsubscribe_mailto,
                archived_at=self.models._utcnow(),
            )
            self.session.add(email)
            self.session.commit()
            stats.created += 1
            logger.debug(f"Email gespeichert: {message_id}")

        except IntegrityError:
            # Paralleler Job war schneller
            self.session.rollback()
            stats.skipped += 1
            logger.info(f"ℹ️ Message {message_id} bereits eingelesen (Unique-Constraint)")

        except Exception as e:
            self.session.rollback()
            stats.failed += 1
            logger.warning(f"⚠️ Fehler bei Message {message_id}: {type(e).__name__}: {e}")
