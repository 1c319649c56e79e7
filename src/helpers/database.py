# src/helpers/database.py
"""Database session helpers für Celery Tasks und Scripts.

Beziehungen werden über explizite Queries (Fremdschlüssel) geladen, nicht
über ORM-Relationships.
"""

from contextlib import contextmanager
import importlib
import os

# Lazy imports to avoid circular dependencies
_SessionLocal = None
_models = None
_engine = None


def _default_database_url() -> str:
    database_path = os.path.join(
        os.path.dirname(os.path.dirname(os.path.dirname(__file__))),
        "emails.db",
    )
    return os.getenv("DATABASE_URL", f"sqlite:///{database_path}")


def _get_models():
    """Lazy load models module to avoid circular imports."""
    global _models
    if _models is None:
        _models = importlib.import_module(".02_models", "src")
    return _models


def _get_session_local():
    """Get or create SQLAlchemy SessionLocal factory (cached).

    Supports both SQLite and PostgreSQL based on DATABASE_URL
    (Engine-Konfiguration in init_db()).
    """
    global _SessionLocal, _engine
    if _SessionLocal is None:
        _engine, _SessionLocal = _get_models().init_db(_default_database_url())
    return _SessionLocal


@contextmanager
def get_db_session():
    """Context manager for database sessions.

    Usage:
        with get_db_session() as db:
            accounts = list_connected_accounts(db)
    """
    SessionLocal = _get_session_local()
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_session():
    """Get a new database session for Celery tasks.

    The caller is responsible for calling session.close() in a finally block!

    Usage in Celery tasks:
        session = get_session()
        try:
            # ... do work ...
        finally:
            session.close()  # WICHTIG!
    """
    SessionLocal = _get_session_local()
    return SessionLocal()


def list_connected_accounts(session):
    """Alle verbundenen Accounts (Scheduler-Tick)"""
    models = _get_models()
    return (
        session.query(models.ConnectedAccount)
        .order_by(models.ConnectedAccount.created_at)
        .all()
    )


def get_connected_account_with_categories(session, account_id: str):
    """Account + Kategorien seines Users.

    Returns:
        (account, categories) oder None wenn der Account nicht existiert
    """
    models = _get_models()
    account = session.query(models.ConnectedAccount).filter_by(id=account_id).first()
    if account is None:
        return None
    categories = (
        session.query(models.Category)
        .filter_by(user_id=account.user_id)
        .order_by(models.Category.created_at, models.Category.name)
        .all()
    )
    return account, categories


def get_email_with_account(session, email_id: str):
    """Email + zugehöriger ConnectedAccount (expliziter Join).

    Returns:
        (email, account) oder None wenn die Email nicht existiert
    """
    models = _get_models()
    row = (
        session.query(models.Email, models.ConnectedAccount)
        .join(
            models.ConnectedAccount,
            models.ConnectedAccount.id == models.Email.account_id,
        )
        .filter(models.Email.id == email_id)
        .first()
    )
    if row is None:
        return None
    return row[0], row[1]


def email_exists(session, gmail_id: str) -> bool:
    """Dedup-Check über den eindeutigen gmail_id-Schlüssel"""
    models = _get_models()
    return (
        session.query(models.Email.id).filter_by(gmail_id=gmail_id).first() is not None
    )
