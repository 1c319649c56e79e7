"""
Mail Helper - Datenbankmodelle (SQLAlchemy)
Worker-Pipeline: User, ConnectedAccount, Category, Email, UnsubscribeAttempt

Beziehungen laufen ausschließlich über Fremdschlüssel-IDs. Die Prozessoren
laden zusammengehörige Datensätze mit expliziten Queries (siehe
src/helpers/database.py) statt über einen In-Memory-Objektgraphen.
"""

import uuid
from datetime import datetime, UTC
from enum import Enum
from sqlalchemy import (
    create_engine,
    Column,
    String,
    Text,
    DateTime,
    Float,
    ForeignKey,
    UniqueConstraint,
    event,
)
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool


Base = declarative_base()


def _new_id() -> str:
    return uuid.uuid4().hex


def _utcnow() -> datetime:
    """Naive UTC-Zeit (SQLite speichert keine Zeitzonen)"""
    return datetime.now(UTC).replace(tzinfo=None)


class UnsubscribeMethod(str, Enum):
    """Gewählter Abmeldeweg eines Unsubscribe-Jobs"""

    MAILTO = "mailto"
    LINK = "link"
    NONE = "none"


class UnsubscribeStatus(str, Enum):
    """Ergebnis eines Unsubscribe-Versuchs"""

    SUCCESS = "success"
    FAILED = "failed"


class User(Base):
    """Besitzer von Kategorien und verbundenen Accounts.

    Wird von der Account-Verwaltung angelegt; die Pipeline liest nur.
    """

    __tablename__ = "users"

    id = Column(String(32), primary_key=True, default=_new_id)
    email = Column(String(255), unique=True, nullable=False, index=True)
    created_at = Column(DateTime, default=_utcnow)

    def __repr__(self):
        return f"<User(id={self.id})>"


class ConnectedAccount(Base):
    """Verbundenes Gmail-Konto (OAuth)

    Tokens liegen AES-256-GCM verschlüsselt vor (src/08_encryption.py).
    history_cursor = Gmail historyId des letzten inkrementellen Syncs,
    NULL bedeutet: nächster Sync ist ein Full-Sync.
    """

    __tablename__ = "connected_accounts"

    id = Column(String(32), primary_key=True, default=_new_id)
    user_id = Column(
        String(32), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    email = Column(String(255), nullable=False)

    encrypted_access_token = Column(Text, nullable=False)
    encrypted_refresh_token = Column(Text, nullable=True)

    # Opaque Position für users.history.list (startHistoryId)
    history_cursor = Column(String(64), nullable=True)
    last_sync_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=_utcnow)

    def __repr__(self):
        return f"<ConnectedAccount(id={self.id}, user={self.user_id}, cursor={self.history_cursor})>"


class Category(Base):
    """User-definierte Kategorie für die KI-Klassifikation (read-only für die Pipeline)"""

    __tablename__ = "categories"

    id = Column(String(32), primary_key=True, default=_new_id)
    user_id = Column(
        String(32), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    created_at = Column(DateTime, default=_utcnow)

    __table_args__ = (UniqueConstraint("user_id", "name", name="uq_user_category_name"),)

    def __repr__(self):
        return f"<Category(id={self.id}, name={self.name!r})>"


class Email(Base):
    """Eingelesene Nachricht (MessageRecord)

    gmail_id ist UNIQUE und der einzige Dedup-Schlüssel der Sync-Pipeline.
    Nach dem Anlegen wird der Datensatz von der Pipeline nicht mehr verändert.
    """

    __tablename__ = "emails"

    id = Column(String(32), primary_key=True, default=_new_id)
    user_id = Column(
        String(32), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    account_id = Column(
        String(32),
        ForeignKey("connected_accounts.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    gmail_id = Column(String(64), unique=True, nullable=False, index=True)
    thread_id = Column(String(64), nullable=True, index=True)

    subject = Column(Text, nullable=True)
    sender = Column(Text, nullable=True)
    received_at = Column(DateTime, nullable=False, index=True)
    snippet = Column(Text, nullable=True)
    html = Column(Text, nullable=True)
    text = Column(Text, nullable=True)

    ai_summary = Column(Text, nullable=True)
    category_id = Column(
        String(32), ForeignKey("categories.id", ondelete="SET NULL"), nullable=True, index=True
    )

    unsubscribe_url = Column(Text, nullable=True)
    unsubscribe_mailto = Column(Text, nullable=True)

    archived_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=_utcnow)

    def __repr__(self):
        return f"<Email(id={self.id}, gmail_id={self.gmail_id})>"


class UnsubscribeAttempt(Base):
    """Ergebnis genau einer Unsubscribe-Job-Ausführung"""

    __tablename__ = "unsubscribe_attempts"

    id = Column(String(32), primary_key=True, default=_new_id)
    email_id = Column(
        String(32), ForeignKey("emails.id", ondelete="CASCADE"), nullable=False, index=True
    )
    method = Column(String(20), nullable=False, default=UnsubscribeMethod.NONE.value)
    status = Column(String(20), nullable=False, default=UnsubscribeStatus.FAILED.value)
    notes = Column(Text, nullable=True)
    # Laufzeit der Automation in Sekunden (nur Diagnose)
    duration_seconds = Column(Float, nullable=True)
    created_at = Column(DateTime, default=_utcnow)

    def __repr__(self):
        return (
            f"<UnsubscribeAttempt(email={self.email_id}, method={self.method}, "
            f"status={self.status})>"
        )


# DB-Setup
def init_db(database_url: str = "sqlite:///emails.db"):
    """Initialisiert die Datenbank und gibt (engine, Session) zurück"""
    if database_url in ("sqlite://", "sqlite:///:memory:"):
        engine = create_engine(
            database_url,
            echo=False,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    elif database_url.startswith("sqlite"):
        engine = create_engine(
            database_url,
            echo=False,
            connect_args={"check_same_thread": False, "timeout": 30.0},
        )
    else:
        engine = create_engine(
            database_url,
            pool_size=10,
            max_overflow=20,
            pool_recycle=3600,
        )

    if engine.url.drivername.startswith("sqlite"):

        @event.listens_for(engine, "connect")
        def set_sqlite_pragma(dbapi_conn, connection_record):
            """SQLite-Pragmas für parallele Worker.

            - foreign_keys: FK-Constraints erzwingen
            - journal_mode=WAL: parallele Reads während Writes
            - busy_timeout: Retry statt sofortigem Fehler bei Lock-Konflikten
            """
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            if engine.url.database not in (None, "", ":memory:"):
                cursor.execute("PRAGMA journal_mode=WAL")
                cursor.execute("PRAGMA synchronous = NORMAL")
            cursor.execute("PRAGMA busy_timeout = 5000")
            cursor.close()

    Base.metadata.create_all(engine)
    Session = sessionmaker(bind=engine)
    return engine, Session
