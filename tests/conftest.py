# tests/conftest.py
"""Pytest Configuration & Shared Fixtures.

In-Memory SQLite pro Test, Fake-Transport / Fake-KI für die Prozessoren.
"""

import base64
import importlib

import pytest

models = importlib.import_module(".02_models", "src")
encryption = importlib.import_module(".08_encryption", "src")
google_oauth = importlib.import_module(".10_google_oauth", "src")

TEST_HEX_KEY = "0123456789abcdef" * 4


def b64url(text: str) -> str:
    return base64.urlsafe_b64encode(text.encode("utf-8")).decode().rstrip("=")


def make_gmail_message(
    message_id: str,
    subject: str = "Newsletter",
    sender: str = "News <news@example.com>",
    date: str = "Mon, 06 Jan 2025 10:00:00 +0000",
    text: str = "Hello",
    html: str | None = None,
    list_unsubscribe: str | None = None,
    snippet: str = "Hello snippet",
):
    """Gmail API Message (format=full) mit multipart/alternative Payload"""
    headers = [
        {"name": "Subject", "value": subject},
        {"name": "From", "value": sender},
        {"name": "To", "value": "me@example.com"},
        {"name": "Date", "value": date},
    ]
    if list_unsubscribe:
        headers.append({"name": "List-Unsubscribe", "value": list_unsubscribe})

    parts = [{"mimeType": "text/plain", "body": {"data": b64url(text)}}]
    if html is not None:
        parts.append({"mimeType": "text/html", "body": {"data": b64url(html)}})

    return {
        "id": message_id,
        "threadId": f"thread-{message_id}",
        "snippet": snippet,
        "payload": {"mimeType": "multipart/alternative", "headers": headers, "parts": parts},
    }


class FakeTransport:
    """Gmail-Transport Fake: zeichnet Aufrufe auf"""

    def __init__(
        self,
        messages=None,
        list_ids=None,
        history=None,
        history_error=None,
        list_error=None,
        send_error=None,
        profile=None,
        failing_ids=(),
    ):
        self.messages = {m["id"]: m for m in (messages or [])}
        self.list_ids = list(list_ids if list_ids is not None else self.messages)
        self.history = history
        self.history_error = history_error
        self.list_error = list_error
        self.send_error = send_error
        self.profile = profile if profile is not None else {"historyId": "5000"}
        self.failing_ids = set(failing_ids)

        self.list_calls = []
        self.history_calls = []
        self.fetched = []
        self.archived = []
        self.sent = []

    def list_messages(self, query, max_results=100):
        self.list_calls.append((query, max_results))
        if self.list_error:
            raise self.list_error
        return list(self.list_ids)

    def list_history(self, cursor):
        self.history_calls.append(cursor)
        if self.history_error:
            raise self.history_error
        return self.history

    def get_message(self, message_id):
        self.fetched.append(message_id)
        if message_id in self.failing_ids:
            raise google_oauth.GmailAPIError(500, "backend error")
        return self.messages[message_id]

    def archive_message(self, message_id):
        self.archived.append(message_id)
        return {}

    def send_message(self, raw):
        if self.send_error:
            raise self.send_error
        self.sent.append(raw)
        return {"id": "sent-1"}

    def get_profile(self):
        return self.profile


class FakeAIClient:
    """KI-Fake: Antworten für Klassifikation und Analyse getrennt.

    Eine Antwort kann ein String oder eine Exception sein.
    """

    def __init__(self, classify='{"categoryName": "Newsletters", "confidence": 0.9}',
                 analyze='{"summary": "Kurze Zusammenfassung"}'):
        self.classify_response = classify
        self.analyze_response = analyze
        self.calls = []

    def complete(self, messages, temperature=0.3, max_tokens=500):
        system = messages[0]["content"]
        kind = "classify" if "classification" in system else "analyze"
        self.calls.append(kind)
        response = self.classify_response if kind == "classify" else self.analyze_response
        if isinstance(response, Exception):
            raise response
        return response


# ===== DATABASE FIXTURES =====

@pytest.fixture
def db_session():
    """Frische In-Memory-Datenbank pro Test"""
    engine, Session = models.init_db("sqlite://")
    session = Session()
    yield session
    session.close()
    engine.dispose()


@pytest.fixture
def token_provider():
    return encryption.TokenProvider(TEST_HEX_KEY)


@pytest.fixture
def user(db_session):
    user = models.User(email="owner@example.com")
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture
def categories(db_session, user):
    items = [
        models.Category(user_id=user.id, name="Newsletters", description="Marketing und Newsletter"),
        models.Category(user_id=user.id, name="Receipts", description="Rechnungen"),
    ]
    db_session.add_all(items)
    db_session.commit()
    return items


@pytest.fixture
def make_account(db_session, user, token_provider):
    def _make(history_cursor=None, refresh_token="refresh-token"):
        account = models.ConnectedAccount(
            user_id=user.id,
            email="owner@gmail.com",
            encrypted_access_token=token_provider.encrypt("access-token"),
            encrypted_refresh_token=token_provider.encrypt(refresh_token) if refresh_token else None,
            history_cursor=history_cursor,
        )
        db_session.add(account)
        db_session.commit()
        return account

    return _make


@pytest.fixture
def make_email(db_session, user):
    def _make(account, gmail_id="gmail-1", **fields):
        email = models.Email(
            user_id=user.id,
            account_id=account.id,
            gmail_id=gmail_id,
            subject=fields.pop("subject", "Weekly deals"),
            sender=fields.pop("sender", "Deals <deals@shop.example>"),
            received_at=fields.pop("received_at", models._utcnow()),
            **fields,
        )
        db_session.add(email)
        db_session.commit()
        return email

    return _make


class FakeElement:
    """ElementDriver-Fake (Duck-Typing reicht für die Phasen)"""

    def __init__(self, text="", attrs=None, visible=True, label="", checked=False,
                 options=None, on_click=None):
        self._text = text
        self.attrs = dict(attrs or {})
        self.visible = visible
        self.label = label
        self.checked = checked
        self.options = list(options or [])
        self.on_click = on_click
        self.clicks = 0
        self.filled = None
        self.selected = None

    def is_visible(self):
        return self.visible

    def text(self):
        return self._text

    def get_attribute(self, name):
        return self.attrs.get(name)

    def click(self):
        self.clicks += 1
        if self.on_click:
            self.on_click()

    def input_value(self):
        return self.attrs.get("value", "")

    def is_checked(self):
        return self.checked

    def fill(self, value):
        self.filled = value
        self.attrs["value"] = value

    def check(self):
        self.checked = True

    def uncheck(self):
        self.checked = False

    def label_text(self):
        return self.label

    def option_items(self):
        return self.options

    def select_option(self, value):
        self.selected = value


class FakePage:
    """PageDriver-Fake: Elemente werden pro exaktem Selektor-String hinterlegt"""

    def __init__(self, text="", elements=None, goto_error=None):
        self.body = text
        self.elements = dict(elements or {})
        self.goto_error = goto_error
        self.closed = False
        self.visited = []
        self.waits = []
        self.screenshots = []

    def goto(self, url, timeout_ms):
        self.visited.append(url)
        if self.goto_error:
            raise self.goto_error

    def wait_for_timeout(self, ms):
        self.waits.append(ms)

    def text_content(self):
        return self.body

    def query_all(self, selector):
        return list(self.elements.get(selector, []))

    def count(self, selector):
        return len(self.query_all(selector))

    def is_closed(self):
        return self.closed

    def screenshot(self, path):
        self.screenshots.append(path)
