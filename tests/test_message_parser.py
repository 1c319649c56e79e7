"""Tests für Message-Parsing und deterministische Unsubscribe-Erkennung"""

from datetime import datetime

from src.services.message_parser import (
    decode_body,
    extract_unsubscribe_info,
    find_unsubscribe_link_in_html,
    parse_message,
    parse_received_at,
)
from tests.conftest import b64url, make_gmail_message


class TestParseMessage:
    def test_headers_and_bodies(self):
        message = make_gmail_message(
            "m1",
            subject="Deals",
            text="plain body",
            html="<p>html body</p>",
            list_unsubscribe="<mailto:x@list.example>",
        )

        parsed = parse_message(message)

        assert parsed["id"] == "m1"
        assert parsed["thread_id"] == "thread-m1"
        assert parsed["subject"] == "Deals"
        assert parsed["sender"] == "News <news@example.com>"
        assert parsed["text"] == "plain body"
        assert parsed["html"] == "<p>html body</p>"
        assert parsed["list_unsubscribe"] == "<mailto:x@list.example>"

    def test_nested_multipart(self):
        message = {
            "id": "m2",
            "payload": {
                "mimeType": "multipart/mixed",
                "headers": [{"name": "subject", "value": "Nested"}],
                "parts": [
                    {
                        "mimeType": "multipart/alternative",
                        "parts": [
                            {"mimeType": "text/plain", "body": {"data": b64url("inner")}},
                        ],
                    },
                    {"mimeType": "text/plain", "body": {"data": b64url("second")}},
                ],
            },
        }

        parsed = parse_message(message)

        assert parsed["subject"] == "Nested"
        assert parsed["text"] == "inner"
        assert parsed["html"] == ""
        assert parsed["list_unsubscribe"] is None

    def test_single_part_body(self):
        message = {
            "id": "m3",
            "payload": {"mimeType": "text/plain", "headers": [], "body": {"data": b64url("solo")}},
        }

        assert parse_message(message)["text"] == "solo"


def test_decode_body():
    assert decode_body("") == ""
    assert decode_body(b64url("Grüße")) == "Grüße"


class TestReceivedAt:
    def test_rfc2822_to_naive_utc(self):
        parsed = parse_received_at("Mon, 06 Jan 2025 12:00:00 +0200")
        assert parsed == datetime(2025, 1, 6, 10, 0, 0)
        assert parsed.tzinfo is None

    def test_iso_format(self):
        assert parse_received_at("2025-01-06T10:00:00+00:00") == datetime(2025, 1, 6, 10, 0)

    def test_fallback_to_now(self):
        now = datetime(2025, 5, 1, 8, 30)
        assert parse_received_at("irgendwann", now=now) == now
        assert parse_received_at(None, now=now) == now


class TestUnsubscribeDetection:
    def test_header_mailto_and_url(self):
        info = extract_unsubscribe_info({
            "list_unsubscribe": "<mailto:leave@list.example?subject=unsub>, <https://list.example/u>",
            "html": "",
        })
        assert info == {"url": "https://list.example/u", "mailto": "leave@list.example?subject=unsub"}

    def test_html_fallback_last_link_wins(self):
        html = """
            <a href="https://shop.example/unsubscribe?top=1">Unsubscribe</a>
            <p>Body</p>
            <a href="https://shop.example/home">Home</a>
            <a href="//shop.example/unsubscribe?footer=1&amp;u=2">Abmelden</a>
        """
        assert find_unsubscribe_link_in_html(html) == "https://shop.example/unsubscribe?footer=1&u=2"

    def test_html_text_match(self):
        html = '<a href="https://lists.example/x9">Opt-out of these emails</a>'
        assert find_unsubscribe_link_in_html(html) == "https://lists.example/x9"

    def test_non_http_links_ignored(self):
        html = '<a href="javascript:unsubscribe()">Unsubscribe</a>'
        assert find_unsubscribe_link_in_html(html) is None

    def test_header_url_skips_html_scan(self):
        info = extract_unsubscribe_info({
            "list_unsubscribe": "<https://hdr.example/u>",
            "html": '<a href="https://html.example/unsubscribe">Unsubscribe</a>',
        })
        assert info["url"] == "https://hdr.example/u"
        assert info["mailto"] is None

    def test_nothing_found(self):
        assert extract_unsubscribe_info({"list_unsubscribe": None, "html": "<p>Hi</p>"}) == {
            "url": None,
            "mailto": None,
        }
