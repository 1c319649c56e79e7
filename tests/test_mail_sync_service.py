"""Unit Tests für MailSyncService (Sync Processor)

Tests für src/services/mail_sync_service.py
"""

import importlib

import pytest

from src.helpers.settings import PipelineSettings
from src.services.errors import AccountNotFoundError, GmailAPIError, TokenDecryptionError
from src.services.mail_sync_service import MailSyncService
from src.tasks.jobs import SyncJob
from tests.conftest import FakeAIClient, FakeTransport, make_gmail_message

models = importlib.import_module(".02_models", "src")
google_oauth = importlib.import_module(".10_google_oauth", "src")


def _history(*ids, new_cursor="200", needs_full_sync=False):
    changes = [{"id": "h1", "messagesAdded": [{"message": {"id": i}} for i in ids]}]
    return google_oauth.HistoryResult(
        changes=changes if ids else [],
        new_cursor=None if needs_full_sync else new_cursor,
        needs_full_sync=needs_full_sync,
    )


@pytest.fixture
def run_sync(db_session, token_provider):
    def _run(account_id, transport, ai=None, full_sync=False, settings=None):
        service = MailSyncService(
            session=db_session,
            ai_client=ai or FakeAIClient(),
            token_provider=token_provider,
            transport_factory=lambda access, refresh: transport,
            settings=settings or PipelineSettings(),
        )
        return service.process(SyncJob(account_id=account_id, full_sync=full_sync))

    return _run


class TestLoadAndDecrypt:
    def test_missing_account_is_fatal(self, run_sync):
        with pytest.raises(AccountNotFoundError, match="Account nope not found"):
            run_sync("nope", FakeTransport())

    def test_undecryptable_token_is_fatal(self, db_session, make_account, run_sync):
        account = make_account()
        account.encrypted_access_token = "Zm9vYmFy"
        db_session.commit()

        with pytest.raises(TokenDecryptionError):
            run_sync(account.id, FakeTransport())

    def test_transport_receives_decrypted_tokens(self, db_session, make_account, token_provider):
        account = make_account()
        received = {}

        def factory(access, refresh):
            received["tokens"] = (access, refresh)
            return FakeTransport()

        MailSyncService(db_session, FakeAIClient(), token_provider, factory).process(
            SyncJob(account.id)
        )
        assert received["tokens"] == ("access-token", "refresh-token")


class TestFullSync:
    def test_one_already_ingested_creates_exactly_one(
        self, db_session, make_account, make_email, run_sync
    ):
        """Cursor NULL, 2 IDs im Fenster, eine schon eingelesen → 1 neu, 1 Archivierung"""
        account = make_account(history_cursor=None)
        make_email(account, gmail_id="m-old")
        transport = FakeTransport(
            messages=[make_gmail_message("m-old"), make_gmail_message("m-new")]
        )

        stats = run_sync(account.id, transport)

        assert stats["mode"] == "full"
        assert stats["created"] == 1
        assert stats["skipped"] == 1
        assert transport.archived == ["m-new"]
        assert transport.fetched == ["m-new"]
        assert db_session.query(models.Email).count() == 2

    def test_rerun_is_idempotent(self, db_session, make_account, run_sync):
        account = make_account()
        transport = FakeTransport(messages=[make_gmail_message("m1"), make_gmail_message("m2")])

        run_sync(account.id, transport, full_sync=True)
        stats = run_sync(account.id, transport, full_sync=True)

        assert stats["created"] == 0
        assert stats["skipped"] == 2
        assert db_session.query(models.Email).filter_by(gmail_id="m1").count() == 1
        assert transport.archived == ["m1", "m2"]

    def test_window_query_uses_settings(self, make_account, run_sync):
        account = make_account()
        transport = FakeTransport(messages=[])
        settings = PipelineSettings(full_sync_window_days=3, full_sync_max_results=25)

        run_sync(account.id, transport, settings=settings)

        query, max_results = transport.list_calls[0]
        assert query.startswith("after:")
        assert int(query.split(":")[1]) > 0
        assert max_results == 25

    def test_listing_failure_is_fatal(self, make_account, run_sync):
        account = make_account()
        transport = FakeTransport(list_error=GmailAPIError(503, "unavailable"))

        with pytest.raises(GmailAPIError):
            run_sync(account.id, transport)

    def test_seeds_cursor_when_absent(self, db_session, make_account, run_sync):
        account = make_account(history_cursor=None)
        transport = FakeTransport(messages=[], profile={"historyId": "777"})

        run_sync(account.id, transport)

        db_session.refresh(account)
        assert account.history_cursor == "777"
        assert account.last_sync_at is not None

    def test_message_arriving_mid_run_is_picked_up_next_time(
        self, db_session, make_account, run_sync
    ):
        """Cursor stammt von vor dem Listing → spät eingetroffene Mail kommt inkrementell"""
        account = make_account(history_cursor=None)

        class ArrivingMailbox(FakeTransport):
            def get_message(self, message_id):
                if message_id == "a":
                    self.messages["late"] = make_gmail_message("late")
                    self.profile = {"historyId": "101"}
                return super().get_message(message_id)

        transport = ArrivingMailbox(
            messages=[make_gmail_message("a")], profile={"historyId": "100"}
        )

        run_sync(account.id, transport)

        db_session.refresh(account)
        assert account.history_cursor == "100"

        transport.history = _history("late", new_cursor="101")
        stats = run_sync(account.id, transport)

        assert transport.history_calls == ["100"]
        assert stats["mode"] == "incremental"
        ids = {e.gmail_id for e in db_session.query(models.Email).all()}
        assert ids == {"a", "late"}

    def test_profile_error_leaves_cursor_empty(self, db_session, make_account, run_sync):
        account = make_account(history_cursor=None)

        class NoProfile(FakeTransport):
            def get_profile(self):
                raise GmailAPIError(503, "unavailable")

        stats = run_sync(account.id, NoProfile(messages=[make_gmail_message("m1")]))

        assert stats["created"] == 1
        db_session.refresh(account)
        assert account.history_cursor is None

    def test_forced_full_sync_keeps_valid_cursor(self, db_session, make_account, run_sync):
        account = make_account(history_cursor="100")
        transport = FakeTransport(messages=[], profile={"historyId": "777"})

        run_sync(account.id, transport, full_sync=True)

        db_session.refresh(account)
        assert account.history_cursor == "100"
        assert transport.history_calls == []


class TestIncrementalSync:
    def test_processes_added_ids_and_advances_cursor(self, db_session, make_account, run_sync):
        account = make_account(history_cursor="100")
        transport = FakeTransport(
            messages=[make_gmail_message("a"), make_gmail_message("b")],
            history=_history("a", "b", "a", new_cursor="250"),
        )

        stats = run_sync(account.id, transport)

        assert stats["mode"] == "incremental"
        assert stats["candidates"] == 2
        assert stats["created"] == 2
        assert transport.history_calls == ["100"]
        assert transport.list_calls == []
        db_session.refresh(account)
        assert account.history_cursor == "250"

    def test_cursor_advanced_before_items_processed(self, db_session, make_account, run_sync):
        account = make_account(history_cursor="100")
        transport = FakeTransport(
            messages=[make_gmail_message("a")],
            history=_history("a", new_cursor="300"),
            failing_ids={"a"},
        )

        stats = run_sync(account.id, transport)

        assert stats["failed"] == 1
        db_session.refresh(account)
        assert account.history_cursor == "300"

    def test_stale_cursor_triggers_exactly_one_full_sync(
        self, db_session, make_account, run_sync
    ):
        account = make_account(history_cursor="1")
        transport = FakeTransport(
            messages=[make_gmail_message("x")],
            history=_history(needs_full_sync=True),
            profile={"historyId": "900"},
        )

        stats = run_sync(account.id, transport)

        assert transport.history_calls == ["1"]
        assert len(transport.list_calls) == 1
        assert stats["mode"] == "full"
        assert stats["created"] == 1
        db_session.refresh(account)
        assert account.history_cursor == "900"

    def test_history_error_falls_back_without_touching_cursor(
        self, db_session, make_account, run_sync
    ):
        account = make_account(history_cursor="100")
        transport = FakeTransport(
            messages=[make_gmail_message("x")],
            history_error=GmailAPIError(500, "boom"),
        )

        stats = run_sync(account.id, transport)

        assert stats["mode"] == "full"
        assert stats["created"] == 1
        db_session.refresh(account)
        assert account.history_cursor == "100"

    def test_empty_incremental_result_does_not_list(self, make_account, run_sync):
        account = make_account(history_cursor="100")
        transport = FakeTransport(messages=[], history=_history(new_cursor="101"))

        stats = run_sync(account.id, transport)

        assert stats["candidates"] == 0
        assert transport.list_calls == []


class TestPerItemProcessing:
    def test_item_failure_is_skipped(self, db_session, make_account, run_sync):
        account = make_account()
        transport = FakeTransport(
            messages=[make_gmail_message("bad"), make_gmail_message("good")],
            failing_ids={"bad"},
        )

        stats = run_sync(account.id, transport)

        assert stats["failed"] == 1
        assert stats["created"] == 1
        assert transport.archived == ["good"]

    def test_matching_category_is_assigned(self, db_session, make_account, categories, run_sync):
        account = make_account()
        transport = FakeTransport(messages=[make_gmail_message("m1")])

        run_sync(account.id, transport)

        email = db_session.query(models.Email).filter_by(gmail_id="m1").one()
        assert email.category_id == categories[0].id
        assert email.ai_summary == "Kurze Zusammenfassung"

    def test_unknown_category_leaves_uncategorized(
        self, db_session, make_account, categories, run_sync
    ):
        account = make_account()
        ai = FakeAIClient(classify='{"categoryName": "Invented", "confidence": 0.99}')
        transport = FakeTransport(messages=[make_gmail_message("m1")])

        run_sync(account.id, transport, ai=ai)

        email = db_session.query(models.Email).filter_by(gmail_id="m1").one()
        assert email.category_id is None

    def test_classification_error_leaves_uncategorized(
        self, db_session, make_account, categories, run_sync
    ):
        account = make_account()
        ai = FakeAIClient(classify=RuntimeError("timeout"))
        transport = FakeTransport(messages=[make_gmail_message("m1")])

        stats = run_sync(account.id, transport, ai=ai)

        email = db_session.query(models.Email).filter_by(gmail_id="m1").one()
        assert stats["created"] == 1
        assert email.category_id is None

    def test_no_categories_skips_classification(self, db_session, make_account, run_sync):
        account = make_account()
        ai = FakeAIClient()
        transport = FakeTransport(messages=[make_gmail_message("m1")])

        run_sync(account.id, transport, ai=ai)

        assert ai.calls == ["analyze"]

    def test_unsubscribe_fallback_from_header(self, db_session, make_account, run_sync):
        account = make_account()
        transport = FakeTransport(
            messages=[
                make_gmail_message(
                    "m1",
                    list_unsubscribe="<mailto:leave@list.example>, <https://list.example/u?id=1>",
                )
            ]
        )

        run_sync(account.id, transport)

        email = db_session.query(models.Email).filter_by(gmail_id="m1").one()
        assert email.unsubscribe_mailto == "leave@list.example"
        assert email.unsubscribe_url == "https://list.example/u?id=1"

    def test_ai_unsubscribe_fields_win(self, db_session, make_account, run_sync):
        account = make_account()
        ai = FakeAIClient(
            analyze='{"summary": "s", "unsubscribeUrl": "https://ai.example/unsub"}'
        )
        transport = FakeTransport(
            messages=[make_gmail_message("m1", list_unsubscribe="<mailto:hdr@list.example>")]
        )

        run_sync(account.id, transport, ai=ai)

        email = db_session.query(models.Email).filter_by(gmail_id="m1").one()
        assert email.unsubscribe_url == "https://ai.example/unsub"
        assert email.unsubscribe_mailto is None

    def test_unparseable_date_defaults_to_now(self, db_session, make_account, run_sync):
        account = make_account()
        transport = FakeTransport(messages=[make_gmail_message("m1", date="gestern")])

        run_sync(account.id, transport)

        email = db_session.query(models.Email).filter_by(gmail_id="m1").one()
        assert email.received_at is not None
        assert email.archived_at is not None
