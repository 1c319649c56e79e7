# src/helpers/settings.py
"""Worker-Konfiguration aus Environment-Variablen.

Die .env-Dateien lädt src/celery_app.py (python-dotenv); hier wird nur
gelesen und typisiert.
"""

import os
from dataclasses import dataclass
from typing import Optional


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"{name} muss eine Ganzzahl sein (ist: {value!r})")


@dataclass(frozen=True)
class PipelineSettings:
    """Alle Einstellungen der Sync- und Unsubscribe-Pipeline"""

    encryption_key: str = ""
    google_client_id: Optional[str] = None
    google_client_secret: Optional[str] = None

    ai_backend: str = "openai"
    openai_api_key: Optional[str] = None
    openai_model: Optional[str] = None
    openai_base_url: Optional[str] = None
    ollama_base_url: Optional[str] = None
    ollama_model: Optional[str] = None

    sync_interval_seconds: int = 120
    full_sync_window_days: int = 7
    full_sync_max_results: int = 100
    sync_concurrency: int = 2
    sync_on_startup: bool = True

    unsubscribe_screenshot_dir: Optional[str] = None
    browser_headless: bool = True

    database_url: Optional[str] = None
    celery_broker_url: str = "redis://localhost:6379/1"
    celery_result_backend: str = "redis://localhost:6379/2"

    @classmethod
    def from_env(cls) -> "PipelineSettings":
        return cls(
            encryption_key=os.getenv("ENCRYPTION_KEY", ""),
            google_client_id=os.getenv("GOOGLE_CLIENT_ID") or None,
            google_client_secret=os.getenv("GOOGLE_CLIENT_SECRET") or None,
            ai_backend=(os.getenv("AI_BACKEND") or "openai").lower(),
            openai_api_key=os.getenv("OPENAI_API_KEY") or None,
            openai_model=os.getenv("OPENAI_MODEL") or None,
            openai_base_url=os.getenv("OPENAI_BASE_URL") or None,
            ollama_base_url=os.getenv("OLLAMA_BASE_URL") or None,
            ollama_model=os.getenv("OLLAMA_MODEL") or None,
            sync_interval_seconds=_env_int("SYNC_INTERVAL_SECONDS", 120),
            full_sync_window_days=_env_int("FULL_SYNC_WINDOW_DAYS", 7),
            full_sync_max_results=_env_int("FULL_SYNC_MAX_RESULTS", 100),
            sync_concurrency=_env_int("SYNC_CONCURRENCY", 2),
            sync_on_startup=_env_bool("SYNC_ON_STARTUP", True),
            unsubscribe_screenshot_dir=os.getenv("UNSUBSCRIBE_SCREENSHOT_DIR") or None,
            browser_headless=_env_bool("BROWSER_HEADLESS", True),
            database_url=os.getenv("DATABASE_URL") or None,
            celery_broker_url=os.getenv("CELERY_BROKER_URL", "redis://localhost:6379/1"),
            celery_result_backend=os.getenv(
                "CELERY_RESULT_BACKEND", "redis://localhost:6379/2"
            ),
        )

    def ai_client_kwargs(self) -> dict:
        """Argumente für get_ai_client() je nach Backend"""
        if self.ai_backend == "ollama":
            return {"model": self.ollama_model, "base_url": self.ollama_base_url}
        return {
            "model": self.openai_model,
            "api_key": self.openai_api_key,
            "base_url": self.openai_base_url,
        }
