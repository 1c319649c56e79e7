"""Fehlerklassen der Worker-Pipeline.

Job-fatale Fehler (Account/Email fehlt, Token nicht entschlüsselbar,
Transport-Ausfall beim Listing) verlassen den Prozessor und werden von der
Celery-Task per self.retry() erneut eingeplant.
"""


class PipelineError(Exception):
    """Basisklasse für alle Pipeline-Fehler"""


class AccountNotFoundError(PipelineError):
    def __init__(self, account_id: str):
        super().__init__(f"Account {account_id} not found")
        self.account_id = account_id


class EmailNotFoundError(PipelineError):
    def __init__(self, email_id: str):
        super().__init__(f"Email {email_id} not found")
        self.email_id = email_id


class TokenDecryptionError(PipelineError):
    """Token konnte nicht entschlüsselt werden (falscher Key oder beschädigt)"""


class GmailAPIError(PipelineError):
    """Fehlerhafte Antwort der Gmail REST API"""

    def __init__(self, status_code: int | None, message: str):
        super().__init__(f"Gmail API error ({status_code}): {message}")
        self.status_code = status_code


class AIServiceError(PipelineError):
    """KI-Backend nicht erreichbar oder Antwort unbrauchbar (wird im Client abgefangen)"""
