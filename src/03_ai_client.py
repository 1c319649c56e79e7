"""
Mail Helper - KI-Client (Interface + Backends)
Unterstützt: OpenAI (Cloud, auch OpenAI-kompatible Endpoints), Ollama (lokal)

Die Pipeline nutzt zwei Verträge:
- classify_email(): ordnet eine Mail einer User-Kategorie zu
- analyze_email(): Kurz-Zusammenfassung + Unsubscribe-Kandidaten

Beide werfen nie; bei Fehlern liefern sie deterministische Fallbacks.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence
import json
import os
import re
import requests
import logging
import time

from src.services.errors import AIServiceError

logger = logging.getLogger(__name__)

UNCATEGORIZED = "Uncategorized"
NO_SUMMARY = "No summary available"


# Security Fix (Layer 3): Input Sanitization for Email Content
def _sanitize_email_input(text: str, max_length: int = 10000) -> str:
    """Sanitizes email content before sending to AI APIs.

    Prevents:
    - JSON injection via control characters
    - DoS via extremely long inputs
    """
    if not isinstance(text, str):
        return ""

    text = text[:max_length]
    # Steuerzeichen entfernen, Zeilenumbrüche/Tabs behalten
    text = re.sub(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f-\x9f]", "", text)

    return text.strip()


# Security Fix (Layer 3): Safe Error Logging (redact API keys)
def _safe_response_text(response) -> str:
    """Extracts response text safely without exposing API keys."""
    text = (response.text or "")[:200]
    return re.sub(r"\b[a-z]{2}-[a-zA-Z0-9]{20,}\b", "[REDACTED_KEY]", text)


def _parse_model_json(response_text: str) -> Dict[str, Any]:
    text = (response_text or "").strip()
    if not text:
        return {}
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError:
        start = text.find("{")
        end = text.rfind("}") + 1
        if start != -1 and end > start:
            try:
                parsed = json.loads(text[start:end])
            except json.JSONDecodeError as exc:
                logger.error("JSON Parse Error im Fallback: %s", exc)
                return {}
        else:
            return {}
    return parsed if isinstance(parsed, dict) else {}


class AIClient(ABC):
    """Abstraktes Interface für KI-Backends"""

    @abstractmethod
    def complete(
        self,
        messages: List[Dict[str, str]],
        temperature: float = 0.3,
        max_tokens: int = 500,
    ) -> str:
        """Chat-Completion: liefert den Text der ersten Antwort.

        Raises:
            AIServiceError: Backend nicht erreichbar oder Antwort ohne Inhalt
        """
        raise NotImplementedError


PROVIDER_REGISTRY: Dict[str, Dict[str, Any]] = {
    "openai": {
        "default_model": "gpt-4o-mini",
        "requires_api_key": True,
        "env_key": "OPENAI_API_KEY",
    },
    "ollama": {
        "default_model": "llama3.2:1b",
        "requires_api_key": False,
    },
}


class LocalOllamaClient(AIClient):
    """Lokales LLM via Ollama"""

    DEFAULT_MODEL = PROVIDER_REGISTRY["ollama"]["default_model"]

    def __init__(
        self,
        model: str | None = None,
        base_url: str | None = None,
    ) -> None:
        self.base_url = (
            base_url or os.getenv("OLLAMA_BASE_URL", "http://127.0.0.1:11434")
        ).rstrip("/")
        self.timeout = int(os.getenv("OLLAMA_TIMEOUT", "600"))
        self.model = (model or os.getenv("OLLAMA_MODEL") or self.DEFAULT_MODEL).strip()

    @property
    def chat_url(self) -> str:
        return f"{self.base_url}/api/chat"

    def complete(
        self,
        messages: List[Dict[str, str]],
        temperature: float = 0.3,
        max_tokens: int = 500,
    ) -> str:
        payload = {
            "model": self.model,
            "messages": messages,
            "stream": False,
            "options": {"temperature": temperature, "num_predict": max_tokens},
        }

        try:
            response = requests.post(self.chat_url, json=payload, timeout=self.timeout)
            response.raise_for_status()
            result = response.json()
        except (requests.exceptions.RequestException, ValueError) as e:
            logger.error("Ollama complete fehlgeschlagen: %s", type(e).__name__)
            raise AIServiceError(f"Ollama request failed: {type(e).__name__}") from e

        return (result.get("message") or {}).get("content", "") or ""


class OpenAIClient(AIClient):
    """OpenAI Chat Completions API (base_url für kompatible Endpoints)."""

    DEFAULT_BASE_URL = "https://api.openai.com/v1"

    def __init__(
        self,
        api_key: str,
        model: str | None = None,
        base_url: str | None = None,
    ):
        if not api_key:
            raise ValueError("OpenAI API Key fehlt")
        self.api_key = api_key
        self.model = model or PROVIDER_REGISTRY["openai"]["default_model"]
        self.base_url = (base_url or self.DEFAULT_BASE_URL).rstrip("/")
        self.timeout = int(os.getenv("OPENAI_TIMEOUT", "300"))
        self.max_retries = 3
        self.retry_delay = 2  # Sekunden

    @property
    def api_url(self) -> str:
        return f"{self.base_url}/chat/completions"

    def complete(
        self,
        messages: List[Dict[str, str]],
        temperature: float = 0.3,
        max_tokens: int = 500,
    ) -> str:
        payload = {
            "model": self.model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

        # Retry-Loop mit Exponential Backoff
        response = None
        for attempt in range(self.max_retries):
            try:
                response = requests.post(
                    self.api_url, json=payload, headers=headers, timeout=self.timeout
                )

                # Rate Limiting (429) → Retry mit Backoff
                if response.status_code == 429:
                    wait_time = self.retry_delay**attempt
                    logger.warning(
                        "OpenAI Rate Limit (429) - Retry %d/%d nach %ds",
                        attempt + 1,
                        self.max_retries,
                        wait_time,
                    )
                    if attempt < self.max_retries - 1:
                        time.sleep(wait_time)
                        continue
                    logger.error("OpenAI Rate Limit - Max Retries erreicht")
                    raise AIServiceError("OpenAI rate limit exceeded")

                response.raise_for_status()
                break  # Erfolgreich → Loop verlassen

            except (requests.exceptions.Timeout, requests.exceptions.ConnectionError) as exc:
                logger.error(
                    "OpenAI nicht erreichbar (model=%s, attempt=%d): %s",
                    self.model,
                    attempt + 1,
                    type(exc).__name__,
                )
                if attempt == self.max_retries - 1:
                    raise AIServiceError(f"OpenAI unreachable: {type(exc).__name__}") from exc
                time.sleep(self.retry_delay**attempt)

            except requests.exceptions.HTTPError as exc:
                if exc.response is not None and exc.response.status_code == 401:
                    logger.error("OpenAI Authentication failed (invalid API key)")
                else:
                    # Security: Redact API keys from error response
                    logger.error(
                        "OpenAI HTTP Error (model=%s): %s - %s",
                        self.model,
                        exc.response.status_code if exc.response is not None else "?",
                        _safe_response_text(exc.response) if exc.response is not None else "",
                    )
                raise AIServiceError("OpenAI HTTP error") from exc

            except requests.exceptions.RequestException as exc:
                logger.error(
                    "OpenAI Request Error (model=%s): %s",
                    self.model,
                    type(exc).__name__,
                )
                if attempt == self.max_retries - 1:
                    raise AIServiceError(f"OpenAI request failed: {type(exc).__name__}") from exc
                time.sleep(self.retry_delay**attempt)

        try:
            data = response.json()
        except ValueError as exc:
            logger.error("OpenAI lieferte kein JSON: %s", type(exc).__name__)
            raise AIServiceError("OpenAI returned non-JSON body") from exc

        choices = data.get("choices") or []
        if not choices:
            logger.error("OpenAI Antwort ohne choices (model=%s)", self.model)
            return ""

        return ((choices[0].get("message") or {}).get("content") or "").strip()


def resolve_model(provider: str, requested_model: Optional[str]) -> str:
    """Gewünschtes Modell oder Provider-Default"""
    if requested_model and requested_model.strip():
        return requested_model.strip()
    config = PROVIDER_REGISTRY.get((provider or "openai").lower()) or {}
    return config.get("default_model", PROVIDER_REGISTRY["openai"]["default_model"])


def build_client(
    provider: str = "openai", model: Optional[str] = None, **kwargs
) -> AIClient:
    provider_key = (provider or "openai").lower()
    config = PROVIDER_REGISTRY.get(provider_key)
    if not config:
        raise ValueError(f"Unbekanntes Backend: {provider}")

    resolved_model = resolve_model(provider_key, model)

    if not config["requires_api_key"]:
        return LocalOllamaClient(model=resolved_model, base_url=kwargs.get("base_url"))

    env_key = config["env_key"]
    api_key = kwargs.get("api_key") or os.getenv(env_key, "")
    if not api_key:
        raise RuntimeError(f"{env_key} ist nicht gesetzt")
    return OpenAIClient(
        api_key=api_key, model=resolved_model, base_url=kwargs.get("base_url")
    )


def get_ai_client(backend: str = "openai", **kwargs) -> AIClient:
    model = kwargs.pop("model", None)
    return build_client(backend, model=model, **kwargs)


# ---------------------------------------------------------------------------
# Pipeline-Verträge
# ---------------------------------------------------------------------------

CLASSIFY_SYSTEM_PROMPT = (
    "You are an email classification assistant. Classify emails into one of the "
    "provided categories. Respond ONLY with valid JSON in this exact format: "
    '{"categoryName": "Category Name", "confidence": 0.95}'
)

ANALYZE_SYSTEM_PROMPT = (
    "You are an email analysis assistant. Summarize the email in 1-3 clear, "
    "concise sentences, focusing on the main purpose and any action items. "
    "If the email contains a way to unsubscribe, report it. Respond ONLY with "
    "valid JSON in this exact format: "
    '{"summary": "...", "unsubscribeUrl": "https://... or null", '
    '"unsubscribeMailto": "address@example.com or null"}'
)


@dataclass
class ClassificationResult:
    """Ergebnis von classify_email()

    fallback=True heißt: die KI hat keine gültige Zuordnung geliefert,
    category_name ist nur der deterministische Platzhalter.
    """

    category_name: str
    confidence: float
    fallback: bool = False


@dataclass
class AnalysisResult:
    summary: str
    unsubscribe_url: Optional[str] = None
    unsubscribe_mailto: Optional[str] = None


def _email_field(email: Any, name: str) -> str:
    if isinstance(email, dict):
        value = email.get(name)
    else:
        value = getattr(email, name, None)
    return value or ""


def _email_content(email: Any, limit: int) -> str:
    body = (
        _email_field(email, "text")
        or _email_field(email, "html")
        or _email_field(email, "snippet")
    )
    subject = _email_field(email, "subject") or "No subject"
    sender = _email_field(email, "sender") or _email_field(email, "from") or "Unknown"
    return (
        f"Subject: {_sanitize_email_input(subject, max_length=500)}\n"
        f"From: {_sanitize_email_input(sender, max_length=500)}\n"
        f"Content: {_sanitize_email_input(body, max_length=limit)}"
    )


def _category_field(category: Any, name: str) -> Optional[str]:
    if isinstance(category, dict):
        return category.get(name)
    return getattr(category, name, None)


def classify_email(
    client: AIClient, email: Any, categories: Sequence[Any]
) -> ClassificationResult:
    """Ordnet eine Mail genau einer der übergebenen Kategorien zu.

    - keine Kategorien → ("Uncategorized", 0.0)
    - ungültige Struktur / unbekannter Name → erste Kategorie, 0.5, fallback
    - Exception oder kein JSON → erste Kategorie, 0.3, fallback
    """
    if not categories:
        return ClassificationResult(UNCATEGORIZED, 0.0, fallback=True)

    names = [_category_field(cat, "name") for cat in categories]
    first = names[0]
    category_list = "\n".join(
        f"{idx}. {_category_field(cat, 'name')}: "
        f"{_category_field(cat, 'description') or 'No description'}"
        for idx, cat in enumerate(categories, start=1)
    )
    messages = [
        {"role": "system", "content": CLASSIFY_SYSTEM_PROMPT},
        {
            "role": "user",
            "content": (
                f"Categories:\n{category_list}\n\n"
                f"Email to classify:\n{_email_content(email, 1000)}\n\n"
                "Classify this email into the most appropriate category. Return JSON only."
            ),
        },
    ]

    try:
        response = client.complete(messages, temperature=0.2, max_tokens=100)
        parsed = json.loads((response or "").strip())
    except Exception as exc:
        logger.warning("⚠️ Klassifikation fehlgeschlagen: %s", type(exc).__name__)
        return ClassificationResult(first, 0.3, fallback=True)

    if isinstance(parsed, dict):
        name = parsed.get("categoryName")
        confidence = parsed.get("confidence")
        if (
            name
            and isinstance(confidence, (int, float))
            and not isinstance(confidence, bool)
            and name in names
        ):
            return ClassificationResult(name, float(confidence))

    logger.info("ℹ️ KI-Klassifikation ungültig oder unbekannte Kategorie → Fallback")
    return ClassificationResult(first, 0.5, fallback=True)


def _snippet_summary(email: Any) -> str:
    snippet = _email_field(email, "snippet")
    return snippet[:100] if snippet else NO_SUMMARY


def _clean_optional(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    value = value.strip()
    if not value or value.lower() in ("null", "none", "n/a"):
        return None
    return value


def analyze_email(client: AIClient, email: Any) -> AnalysisResult:
    """Zusammenfassung (1-3 Sätze) + optionale Unsubscribe-URL/Mailto.

    Liefert das Modell kein JSON, wird der Antworttext als Summary genutzt.
    Bei Exceptions: Snippet-basierte Summary, keine Unsubscribe-Felder.
    """
    messages = [
        {"role": "system", "content": ANALYZE_SYSTEM_PROMPT},
        {"role": "user", "content": f"Analyze this email:\n\n{_email_content(email, 2000)}"},
    ]

    try:
        response = (client.complete(messages, temperature=0.3, max_tokens=300) or "").strip()
    except Exception as exc:
        logger.warning("⚠️ Analyse fehlgeschlagen: %s", type(exc).__name__)
        return AnalysisResult(summary=_snippet_summary(email))

    parsed = _parse_model_json(response)
    if not parsed:
        return AnalysisResult(summary=response or _snippet_summary(email))

    summary = _clean_optional(parsed.get("summary")) or _snippet_summary(email)
    url = _clean_optional(parsed.get("unsubscribeUrl"))
    if url and not url.lower().startswith(("http://", "https://")):
        url = None
    mailto = _clean_optional(parsed.get("unsubscribeMailto"))
    if mailto and mailto.lower().startswith("mailto:"):
        mailto = mailto[len("mailto:"):]

    return AnalysisResult(summary=summary, unsubscribe_url=url, unsubscribe_mailto=mailto)
