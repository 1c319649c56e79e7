#!/usr/bin/env python3
"""
Liste alle verbundenen Gmail-Accounts mit Sync-Status.

Usage:
    python scripts/list_accounts.py
    python scripts/list_accounts.py --db sqlite:////path/to/emails.db
"""

import argparse
import importlib
import os
import sys

from sqlalchemy.exc import SQLAlchemyError
from tabulate import tabulate

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

models = importlib.import_module(".02_models", "src")


def collect_account_rows(session):
    """Zeilen für die Ausgabe: ID, E-Mail, User, Cursor, letzter Sync, #Emails"""
    rows = []
    accounts = (
        session.query(models.ConnectedAccount)
        .order_by(models.ConnectedAccount.email)
        .all()
    )
    for account in accounts:
        user = session.query(models.User).filter_by(id=account.user_id).first()
        email_count = session.query(models.Email).filter_by(account_id=account.id).count()
        rows.append(
            [
                account.id,
                account.email,
                user.email if user else "?",
                account.history_cursor or "– (Full-Sync)",
                account.last_sync_at.strftime("%Y-%m-%d %H:%M") if account.last_sync_at else "nie",
                email_count,
            ]
        )
    return rows


def list_accounts(database_url: str):
    """Liste alle ConnectedAccounts mit User-Zuordnung."""
    try:
        _, Session = models.init_db(database_url)
        session = Session()
    except SQLAlchemyError as e:
        print(f"❌ Datenbankfehler: {e}")
        sys.exit(1)

    try:
        rows = collect_account_rows(session)
    except SQLAlchemyError as e:
        print(f"❌ Datenbankfehler: {e}")
        sys.exit(1)
    finally:
        session.close()

    if not rows:
        print("ℹ️  Keine verbundenen Accounts gefunden.")
        return

    headers = ["ID", "Account", "User", "History-Cursor", "Letzter Sync", "Emails"]
    print(tabulate(rows, headers=headers, tablefmt="grid"))
    print(f"\n📊 Gesamt: {len(rows)} Account(s)")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(
        description="Liste alle verbundenen Gmail-Accounts (über alle User)"
    )
    parser.add_argument(
        "--db",
        default=os.getenv("DATABASE_URL", "sqlite:///emails.db"),
        help="Datenbank-URL (default: DATABASE_URL oder sqlite:///emails.db)",
    )

    args = parser.parse_args()
    list_accounts(args.db)
