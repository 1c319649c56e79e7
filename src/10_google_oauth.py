"""mail_helper - Google OAuth / Gmail REST Integration
Mail Transport der Worker-Pipeline (Listing, History, Labels, Versand)
"""

import base64
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import requests

from src.services.errors import GmailAPIError

logger = logging.getLogger(__name__)

GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GMAIL_API_BASE_URL = "https://gmail.googleapis.com/gmail/v1"
GMAIL_API_SCOPES = [
    "https://www.googleapis.com/auth/gmail.modify",
    "https://www.googleapis.com/auth/gmail.send",
]
INBOX_LABEL = "INBOX"


class GoogleOAuthManager:
    """Token-Refresh für Google OAuth 2.0"""

    @staticmethod
    def refresh_access_token(
        refresh_token: str, client_id: str, client_secret: str
    ) -> Optional[Dict]:
        """Erneuert Access Token mit Refresh Token

        Args:
            refresh_token: Google Refresh Token
            client_id: Google OAuth Client ID
            client_secret: Google OAuth Client Secret

        Returns:
            Dict mit neuem access_token, expires_in oder None bei Fehler
        """
        try:
            data = {
                "refresh_token": refresh_token,
                "client_id": client_id,
                "client_secret": client_secret,
                "grant_type": "refresh_token",
            }

            response = requests.post(GOOGLE_TOKEN_URL, data=data, timeout=10)
            response.raise_for_status()

            token_data = response.json()
            logger.info("✅ Access Token erfolgreich erneuert")
            return token_data

        except requests.exceptions.RequestException as e:
            logger.debug(f"Token refresh error details: {e}")
            logger.error("❌ Token Refresh fehlgeschlagen (credentials sanitized)")
            return None


@dataclass
class HistoryResult:
    """Antwort von users.history.list

    changes: History-Records (roh, wie von Gmail geliefert)
    new_cursor: neue historyId (None wenn needs_full_sync)
    needs_full_sync: Cursor zu alt/ungültig (HTTP 404)
    """

    changes: List[Dict[str, Any]] = field(default_factory=list)
    new_cursor: Optional[str] = None
    needs_full_sync: bool = False

    def added_message_ids(self) -> List[str]:
        """IDs aus messagesAdded, dedupliziert in Originalreihenfolge"""
        seen = set()
        ids = []
        for record in self.changes:
            for added in record.get("messagesAdded") or []:
                message_id = (added.get("message") or {}).get("id")
                if message_id and message_id not in seen:
                    seen.add(message_id)
                    ids.append(message_id)
        return ids


def create_raw_message(to: str, subject: str, body: str) -> str:
    """Baut eine minimale Plaintext-Mail als base64url (ohne Padding) für messages.send"""
    message = "\r\n".join(
        [
            f"To: {to}",
            f"Subject: {subject}",
            "MIME-Version: 1.0",
            'Content-Type: text/plain; charset="UTF-8"',
            "",
            body,
        ]
    )
    return base64.urlsafe_b64encode(message.encode("utf-8")).decode().rstrip("=")


class GmailTransport:
    """Gmail REST API Client (OAuth Bearer Token)

    Bei HTTP 401 wird einmalig per Refresh-Token ein neuer Access Token geholt
    und der Request wiederholt. Fehler werfen GmailAPIError.
    """

    def __init__(
        self,
        access_token: str,
        refresh_token: str | None = None,
        client_id: str | None = None,
        client_secret: str | None = None,
        base_url: str = GMAIL_API_BASE_URL,
        timeout: int = 15,
    ):
        self.access_token = access_token
        self.refresh_token = refresh_token
        self.client_id = client_id
        self.client_secret = client_secret
        self.base_url = base_url
        self.timeout = timeout

    def _can_refresh(self) -> bool:
        return bool(self.refresh_token and self.client_id and self.client_secret)

    def _refresh(self) -> bool:
        token_data = GoogleOAuthManager.refresh_access_token(
            refresh_token=self.refresh_token,
            client_id=self.client_id,
            client_secret=self.client_secret,
        )
        if not token_data or not token_data.get("access_token"):
            return False
        self.access_token = token_data["access_token"]
        return True

    def _request(
        self,
        method: str,
        endpoint: str,
        params: Dict | None = None,
        json_body: Dict | None = None,
    ) -> Dict:
        """Authenticated Request zur Gmail API"""
        url = f"{self.base_url}{endpoint}"
        refreshed = False

        while True:
            headers = {
                "Authorization": f"Bearer {self.access_token}",
                "Content-Type": "application/json",
            }
            try:
                response = requests.request(
                    method,
                    url,
                    headers=headers,
                    params=params,
                    json=json_body,
                    timeout=self.timeout,
                )
            except requests.exceptions.RequestException as e:
                logger.error(f"❌ Gmail API Request Fehler ({endpoint}): {type(e).__name__}")
                raise GmailAPIError(None, str(e)) from e

            if response.status_code == 401 and not refreshed and self._can_refresh():
                logger.info("🔄 Gmail Access Token abgelaufen, erneuere...")
                refreshed = True
                if self._refresh():
                    continue

            if response.status_code >= 400:
                raise GmailAPIError(response.status_code, response.text[:200])

            if not response.content:
                return {}
            try:
                return response.json()
            except ValueError as e:
                logger.error(f"❌ Gmail API Antwort ist kein JSON ({endpoint})")
                raise GmailAPIError(response.status_code, "invalid JSON") from e

    def list_messages(self, query: str, max_results: int = 100) -> List[str]:
        """Liste der Message-IDs für eine Gmail-Suchanfrage"""
        result = self._request(
            "GET",
            "/users/me/messages",
            params={"q": query, "maxResults": max_results},
        )
        return [m["id"] for m in result.get("messages", []) if m.get("id")]

    def get_message(self, message_id: str) -> Dict[str, Any]:
        """Vollständige Message (format=full)"""
        return self._request(
            "GET", f"/users/me/messages/{message_id}", params={"format": "full"}
        )

    def list_history(self, cursor: str) -> HistoryResult:
        """Änderungen seit cursor (nur messageAdded)

        HTTP 404 bedeutet: startHistoryId ist zu alt → needs_full_sync.
        """
        changes: List[Dict[str, Any]] = []
        params = {"startHistoryId": cursor, "historyTypes": "messageAdded"}
        new_cursor = None

        while True:
            try:
                result = self._request("GET", "/users/me/history", params=params)
            except GmailAPIError as e:
                if e.status_code == 404:
                    logger.info(f"ℹ️ History-Cursor {cursor} ungültig/zu alt")
                    return HistoryResult(changes=[], new_cursor=None, needs_full_sync=True)
                raise

            changes.extend(result.get("history", []))
            new_cursor = result.get("historyId") or new_cursor
            page_token = result.get("nextPageToken")
            if not page_token:
                break
            params = {**params, "pageToken": page_token}

        return HistoryResult(changes=changes, new_cursor=new_cursor, needs_full_sync=False)

    def get_profile(self) -> Dict[str, Any]:
        """users.getProfile (emailAddress, historyId)"""
        return self._request("GET", "/users/me/profile")

    def modify_labels(
        self,
        message_id: str,
        add: List[str] | None = None,
        remove: List[str] | None = None,
    ) -> Dict[str, Any]:
        return self._request(
            "POST",
            f"/users/me/messages/{message_id}/modify",
            json_body={"addLabelIds": add or [], "removeLabelIds": remove or []},
        )

    def archive_message(self, message_id: str) -> Dict[str, Any]:
        """Archivieren = INBOX-Label entfernen"""
        return self.modify_labels(message_id, add=[], remove=[INBOX_LABEL])

    def trash_message(self, message_id: str) -> Dict[str, Any]:
        return self._request("POST", f"/users/me/messages/{message_id}/trash")

    def send_message(self, raw_message: str) -> Dict[str, Any]:
        """Versendet eine base64url-kodierte RFC 2822 Nachricht"""
        return self._request(
            "POST", "/users/me/messages/send", json_body={"raw": raw_message}
        )
