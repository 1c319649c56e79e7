"""Tests für die Admin-Skripte (scripts/)"""

import importlib.util
from pathlib import Path
from unittest.mock import Mock, patch

import pytest

SCRIPTS_DIR = Path(__file__).parent.parent / "scripts"


def _load(name):
    spec = importlib.util.spec_from_file_location(name, SCRIPTS_DIR / f"{name}.py")
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


@pytest.fixture(scope="module")
def enqueue_script():
    return _load("enqueue_job")


@pytest.fixture(scope="module")
def list_script():
    return _load("list_accounts")


class TestEnqueueScript:
    def test_sync_full(self, enqueue_script, capsys):
        with patch.object(enqueue_script, "enqueue_job", return_value=Mock(id="t-1")) as mock_enqueue:
            assert enqueue_script.main(["sync", "acc-1", "--full"]) == 0

        job = mock_enqueue.call_args.args[0]
        assert job.account_id == "acc-1"
        assert job.full_sync is True
        assert "email-sync" in capsys.readouterr().out

    def test_unsubscribe(self, enqueue_script):
        with patch.object(enqueue_script, "enqueue_job", return_value=Mock(id="t-2")) as mock_enqueue:
            assert enqueue_script.main(["unsubscribe", "e-1"]) == 0

        assert mock_enqueue.call_args.args[0].email_id == "e-1"

    def test_blank_id_rejected(self, enqueue_script):
        with patch.object(enqueue_script, "enqueue_job") as mock_enqueue:
            assert enqueue_script.main(["unsubscribe", "  "]) == 2

        mock_enqueue.assert_not_called()


def test_collect_account_rows(list_script, db_session, make_account, make_email):
    account = make_account(history_cursor="321")
    make_email(account, gmail_id="g1")
    make_email(account, gmail_id="g2")

    rows = list_script.collect_account_rows(db_session)

    assert rows == [[account.id, "owner@gmail.com", "owner@example.com", "321", "nie", 2]]
