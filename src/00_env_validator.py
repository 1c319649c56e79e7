"""
Mail Helper - Environment Validator
Prüft ob alle erforderlichen Umgebungsvariablen beim Worker-Start gesetzt sind
"""

import os
import re
import sys

UNSUBSCRIBE_QUEUE = "unsubscribe"


class EnvironmentValidator:
    """Validiert Umgebungsvariablen intelligent basierend auf Konfiguration"""

    CRITICAL_VARS = {
        "ENCRYPTION_KEY": {
            "description": "AES-256 Schlüssel für OAuth-Tokens (64 Hex-Zeichen)",
            "hint": 'Generiere mit: python -c "import secrets; print(secrets.token_hex(32))"',
            "pattern": r"^[0-9a-fA-F]{64}$",
        },
        "GOOGLE_CLIENT_ID": {
            "description": "Google OAuth Client ID (Token-Refresh)",
            "hint": "Google Cloud Console → APIs & Services → Credentials",
        },
        "GOOGLE_CLIENT_SECRET": {
            "description": "Google OAuth Client Secret (Token-Refresh)",
            "hint": "Google Cloud Console → APIs & Services → Credentials",
        },
    }

    AI_BACKEND_VARS = {
        "ollama": {
            "OLLAMA_BASE_URL": "Ollama Server URL (z.B. http://localhost:11434)",
        },
        "openai": {
            "OPENAI_API_KEY": "OpenAI API Key (sk-...)",
        },
    }

    INTEGER_VARS = (
        "SYNC_INTERVAL_SECONDS",
        "FULL_SYNC_WINDOW_DAYS",
        "FULL_SYNC_MAX_RESULTS",
        "SYNC_CONCURRENCY",
    )

    @staticmethod
    def validate():
        """Hauptvalidierungs-Methode"""
        errors = []
        warnings = []

        errors.extend(EnvironmentValidator._check_critical_vars())
        errors.extend(EnvironmentValidator._check_ai_backend())
        errors.extend(EnvironmentValidator._check_integer_vars())
        warnings.extend(EnvironmentValidator._check_optional_vars())

        if errors:
            EnvironmentValidator._print_errors(errors, warnings)
            sys.exit(1)

        if warnings:
            EnvironmentValidator._print_warnings(warnings)

        print("✅ Alle erforderlichen Umgebungsvariablen sind gesetzt\n")
        return True

    @staticmethod
    def validate_worker_queues(queues, concurrency):
        """Unsubscribe-Worker dürfen nur eine Browser-Session gleichzeitig fahren"""
        if UNSUBSCRIBE_QUEUE in set(queues) and (concurrency or 1) > 1:
            print("\n" + "=" * 70)
            print(f"🚨 FEHLER: Queue '{UNSUBSCRIBE_QUEUE}' mit concurrency={concurrency}")
            print("=" * 70 + "\n")
            print("   Unsubscribe-Jobs laufen seriell (eine Browser-Session).")
            print("   💡 Hinweis: eigener Worker mit --concurrency=1:")
            print(f"   celery -A src.celery_app worker -Q {UNSUBSCRIBE_QUEUE} --concurrency=1\n")
            sys.exit(1)
        return True

    @staticmethod
    def _check_critical_vars():
        """Prüft kritische Variablen die immer erforderlich sind"""
        errors = []

        for var, info in EnvironmentValidator.CRITICAL_VARS.items():
            value = os.getenv(var)
            invalid = not value or value.startswith("your-")
            if not invalid and info.get("pattern"):
                invalid = re.match(info["pattern"], value) is None
            if invalid:
                errors.append(
                    {
                        "var": var,
                        "description": info["description"],
                        "hint": info["hint"],
                        "severity": "CRITICAL",
                    }
                )

        return errors

    @staticmethod
    def _check_ai_backend():
        """Prüft AI-Backend basierend auf Konfiguration"""
        errors = []

        ai_backend = (os.getenv("AI_BACKEND") or "openai").lower()
        if ai_backend not in EnvironmentValidator.AI_BACKEND_VARS:
            errors.append(
                {
                    "var": "AI_BACKEND",
                    "description": f"Unbekanntes KI-Backend '{ai_backend}'",
                    "hint": "Erlaubt: " + ", ".join(EnvironmentValidator.AI_BACKEND_VARS),
                    "severity": "CRITICAL",
                }
            )
            return errors

        required_vars = EnvironmentValidator.AI_BACKEND_VARS[ai_backend]
        for var, description in required_vars.items():
            value = os.getenv(var)
            if not value or value.startswith("your-"):
                errors.append(
                    {
                        "var": var,
                        "description": description,
                        "hint": f"Setze {var} für AI_BACKEND={ai_backend}",
                        "severity": "CRITICAL",
                    }
                )

        return errors

    @staticmethod
    def _check_integer_vars():
        errors = []
        for var in EnvironmentValidator.INTEGER_VARS:
            value = os.getenv(var)
            if value and not (value.isdigit() and int(value) > 0):
                errors.append(
                    {
                        "var": var,
                        "description": f"{var} muss eine positive Ganzzahl sein",
                        "hint": f"z.B. {var}=2",
                        "severity": "CRITICAL",
                    }
                )
        return errors

    @staticmethod
    def _check_optional_vars():
        warnings = []
        if not os.getenv("CELERY_BROKER_URL"):
            warnings.append("CELERY_BROKER_URL nicht gesetzt → redis://localhost:6379/1")
        if not os.getenv("DATABASE_URL"):
            warnings.append("DATABASE_URL nicht gesetzt → lokale SQLite-Datei emails.db")
        return warnings

    @staticmethod
    def _print_errors(errors, warnings):
        """Gibt Fehler formatiert aus"""
        print("\n" + "=" * 70)
        print("🚨 FEHLER: Kritische Umgebungsvariablen fehlen oder sind ungültig")
        print("=" * 70 + "\n")

        for i, error in enumerate(errors, 1):
            print(f"{i}. ❌ {error['var']}")
            print(f"   Beschreibung: {error['description']}")
            print(f"   💡 Hinweis: {error['hint']}")
            print()

        print("=" * 70)
        print("📋 Lösung:")
        print("=" * 70)
        print("1. Kopiere .env.example zu .env (falls nicht vorhanden):")
        print("   cp .env.example .env\n")
        print("2. Bearbeite .env und setze die fehlenden Werte:\n")
        for error in errors:
            print(f"   {error['var']}=<wert>")
        print("\n3. Starte den Worker neu:")
        print("   celery -A src.celery_app worker -Q email-sync --concurrency=2\n")

        if warnings:
            print("=" * 70)
            print("⚠️  WARNUNGEN:")
            print("=" * 70 + "\n")
            for warning in warnings:
                print(f"⚠️  {warning}\n")

    @staticmethod
    def _print_warnings(warnings):
        """Gibt Warnungen aus"""
        print("\n⚠️  WARNUNGEN:\n")
        for warning in warnings:
            print(f"  ⚠️  {warning}")
        print()


def validate_environment():
    """Entry-Point für Environment Validation"""
    EnvironmentValidator.validate()


if __name__ == "__main__":
    validate_environment()
