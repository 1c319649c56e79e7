# src/helpers/factories.py
"""Konstruktion der Kollaborateure pro Job (keine Modul-Singletons)."""

import importlib
import logging

from src.helpers.settings import PipelineSettings

logger = logging.getLogger(__name__)


def build_transport_factory(settings: PipelineSettings):
    """(access_token, refresh_token) → GmailTransport mit OAuth-Refresh"""
    google_oauth = importlib.import_module(".10_google_oauth", "src")

    def factory(access_token: str, refresh_token: str | None = None):
        return google_oauth.GmailTransport(
            access_token=access_token,
            refresh_token=refresh_token,
            client_id=settings.google_client_id,
            client_secret=settings.google_client_secret,
        )

    return factory


def build_token_provider(settings: PipelineSettings):
    encryption = importlib.import_module(".08_encryption", "src")
    return encryption.TokenProvider(settings.encryption_key)


def build_ai_client(settings: PipelineSettings):
    ai_client_mod = importlib.import_module(".03_ai_client", "src")
    kwargs = settings.ai_client_kwargs()
    logger.debug(f"🤖 KI-Backend: {settings.ai_backend}")
    return ai_client_mod.get_ai_client(settings.ai_backend, **kwargs)
