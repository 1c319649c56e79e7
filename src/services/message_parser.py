"""Gmail Message Parsing + deterministische Unsubscribe-Erkennung.

parse_message() bildet eine Gmail API Message (format=full) auf ein flaches
Dict ab. extract_unsubscribe_info() ist der Fallback, wenn die KI-Analyse
keine Unsubscribe-Angaben liefert.
"""

import base64
import binascii
import logging
import re
from datetime import datetime, UTC
from email.utils import parsedate_to_datetime
from typing import Any, Dict, Optional

from bs4 import BeautifulSoup

logger = logging.getLogger(__name__)

UNSUBSCRIBE_KEYWORDS = re.compile(
    r"unsubscribe|opt[\s_-]?out|remove|stop receiving", re.IGNORECASE
)
_HEADER_MAILTO = re.compile(r"<mailto:([^>]+)>", re.IGNORECASE)
_HEADER_URL = re.compile(r"<(https?://[^>]+)>", re.IGNORECASE)


def decode_body(data: str) -> str:
    """base64url (Gmail, ohne Padding) → UTF-8 Text; kaputte Daten → ''"""
    if not data:
        return ""
    try:
        padded = data + "=" * (-len(data) % 4)
        return base64.urlsafe_b64decode(padded).decode("utf-8", errors="replace")
    except (binascii.Error, ValueError):
        logger.debug("Body nicht dekodierbar, ignoriere Part")
        return ""


def _extract_parts(payload: Optional[Dict[str, Any]], parts: Dict[str, str]) -> None:
    """Erster text/plain und erster text/html Part (rekursiv, Tiefe zuerst)"""
    if not payload:
        return

    data = (payload.get("body") or {}).get("data")
    if data:
        mime_type = payload.get("mimeType")
        if mime_type == "text/plain" and not parts["text"]:
            parts["text"] = data
        elif mime_type == "text/html" and not parts["html"]:
            parts["html"] = data

    for part in payload.get("parts") or []:
        _extract_parts(part, parts)


def parse_message(message: Dict[str, Any]) -> Dict[str, Any]:
    """Gmail Message → {id, thread_id, snippet, subject, sender, to, date,
    list_unsubscribe, text, html, headers}"""
    payload = message.get("payload") or {}
    headers = {
        (h.get("name") or "").lower(): h.get("value") or ""
        for h in payload.get("headers") or []
    }

    parts = {"text": "", "html": ""}
    _extract_parts(payload, parts)

    return {
        "id": message.get("id"),
        "thread_id": message.get("threadId"),
        "snippet": message.get("snippet") or "",
        "subject": headers.get("subject", ""),
        "sender": headers.get("from", ""),
        "to": headers.get("to", ""),
        "date": headers.get("date", ""),
        "list_unsubscribe": headers.get("list-unsubscribe") or None,
        "text": decode_body(parts["text"]),
        "html": decode_body(parts["html"]),
        "headers": headers,
    }


def parse_received_at(date_header: Optional[str], now: Optional[datetime] = None) -> datetime:
    """Date-Header → naive UTC; RFC 2822, dann ISO 8601, sonst now"""
    fallback = now or datetime.now(UTC).replace(tzinfo=None)
    if not date_header:
        return fallback

    parsed = None
    try:
        parsed = parsedate_to_datetime(date_header)
    except (TypeError, ValueError, IndexError):
        try:
            parsed = datetime.fromisoformat(date_header.strip())
        except ValueError:
            logger.debug(f"Unbekanntes Datumsformat: {date_header[:40]!r}")
            return fallback

    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(UTC).replace(tzinfo=None)
    return parsed


def _normalize_link(href: str) -> Optional[str]:
    """Nur absolute http(s)-Links; protokollrelative werden zu https"""
    url = (href or "").strip()
    if url.startswith("//"):
        return "https:" + url
    if url.lower().startswith(("http://", "https://")):
        return url
    return None


def find_unsubscribe_link_in_html(html: Optional[str]) -> Optional[str]:
    """Sucht Anker mit Unsubscribe-Schlüsselwort in Text oder href.

    Abmeldelinks stehen üblicherweise im Footer: bei mehreren Treffern gewinnt
    der letzte im Dokument. Entities (&amp; etc.) löst BeautifulSoup auf.
    """
    if not html:
        return None

    soup = BeautifulSoup(html, "html.parser")
    for anchor in reversed(soup.find_all("a", href=True)):
        href = anchor.get("href", "")
        text = anchor.get_text(" ", strip=True)
        if not (UNSUBSCRIBE_KEYWORDS.search(text) or UNSUBSCRIBE_KEYWORDS.search(href)):
            continue
        url = _normalize_link(href)
        if url:
            return url

    return None


def extract_unsubscribe_info(parsed: Dict[str, Any]) -> Dict[str, Optional[str]]:
    """List-Unsubscribe Header (<mailto:…>, <https://…>), danach HTML-Scan"""
    info: Dict[str, Optional[str]] = {"url": None, "mailto": None}

    header = parsed.get("list_unsubscribe")
    if header:
        mailto_match = _HEADER_MAILTO.search(header)
        if mailto_match:
            info["mailto"] = mailto_match.group(1).strip()
        url_match = _HEADER_URL.search(header)
        if url_match:
            info["url"] = url_match.group(1).strip()

    if not info["url"] and parsed.get("html"):
        info["url"] = find_unsubscribe_link_in_html(parsed["html"])

    return info
