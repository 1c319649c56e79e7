# src/helpers/__init__.py
"""Shared helper modules für Tasks, Services und Scripts."""

from .database import (
    get_db_session,
    get_session,
    list_connected_accounts,
    get_connected_account_with_categories,
    get_email_with_account,
    email_exists,
)
from .settings import PipelineSettings

__all__ = [
    # Database helpers
    "get_db_session",
    "get_session",
    "list_connected_accounts",
    "get_connected_account_with_categories",
    "get_email_with_account",
    "email_exists",
    # Configuration
    "PipelineSettings",
]
