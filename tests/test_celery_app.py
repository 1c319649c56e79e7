"""Tests für den worker_init Hook in src/celery_app.py"""

import importlib
from types import SimpleNamespace
from unittest.mock import patch

import pytest

from src.celery_app import consumed_queue_names, validate_worker_environment

env_validator = importlib.import_module(".00_env_validator", "src")


def _worker(consume_from, known=("email-sync",), concurrency=1):
    queues = {name: object() for name in known}
    queues_obj = type("Queues", (dict,), {})(queues)
    queues_obj.consume_from = consume_from
    app = SimpleNamespace(amqp=SimpleNamespace(queues=queues_obj))
    return SimpleNamespace(app=app, concurrency=concurrency)


def test_selected_queues_are_used():
    worker = _worker({"unsubscribe": object()})
    assert consumed_queue_names(worker) == {"unsubscribe"}


def test_without_selection_all_known_queues():
    worker = _worker(None, known=("email-sync", "unsubscribe"))
    assert consumed_queue_names(worker) == {"email-sync", "unsubscribe"}


@patch.object(env_validator.EnvironmentValidator, "validate", return_value=True)
def test_parallel_unsubscribe_worker_aborts(mock_validate, capsys):
    worker = _worker({"email-sync": object(), "unsubscribe": object()}, concurrency=2)

    with pytest.raises(SystemExit):
        validate_worker_environment(sender=worker)

    assert "--concurrency=1" in capsys.readouterr().out


@patch.object(env_validator.EnvironmentValidator, "validate", return_value=True)
def test_parallel_sync_worker_starts(mock_validate):
    worker = _worker({"email-sync": object()}, concurrency=4)

    validate_worker_environment(sender=worker)

    mock_validate.assert_called_once()
