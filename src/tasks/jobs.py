# src/tasks/jobs.py
"""Job-Typen der Worker-Pipeline (Wire-Format + Retry-Policies).

Payloads auf der Queue sind JSON:
    SyncJob:        {"accountId": str, "fullSync": bool?}
    UnsubscribeJob: {"emailId": str}

Keine Celery-Abhängigkeit: dispatch_job() ist eine reine Funktion über
dem Job-Typ, die Tasks bleiben dünne Wrapper.
"""

from dataclasses import dataclass
from typing import Any, Callable, ClassVar, Dict, Mapping, Union

SYNC_QUEUE = "email-sync"
UNSUBSCRIBE_QUEUE = "unsubscribe"


@dataclass(frozen=True)
class RetryPolicy:
    """attempts = Gesamtversuche; Backoff exponentiell ab backoff_base_ms"""

    attempts: int
    backoff_base_ms: int

    @property
    def max_retries(self) -> int:
        return self.attempts - 1

    def countdown(self, retries: int) -> float:
        """Wartezeit in Sekunden vor dem nächsten Versuch (retries = bisherige Retries)"""
        return self.backoff_base_ms / 1000 * (2 ** retries)


SYNC_RETRY_POLICY = RetryPolicy(attempts=3, backoff_base_ms=2000)
UNSUBSCRIBE_RETRY_POLICY = RetryPolicy(attempts=2, backoff_base_ms=5000)


def _required_id(payload: Mapping[str, Any], key: str) -> str:
    value = payload.get(key) if isinstance(payload, Mapping) else None
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"Payload ohne gültiges '{key}': {payload!r}")
    return value.strip()


@dataclass(frozen=True)
class SyncJob:
    account_id: str
    full_sync: bool = False

    kind: ClassVar[str] = "sync"
    queue: ClassVar[str] = SYNC_QUEUE
    retry_policy: ClassVar[RetryPolicy] = SYNC_RETRY_POLICY

    def to_payload(self) -> Dict[str, Any]:
        return {"accountId": self.account_id, "fullSync": self.full_sync}

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "SyncJob":
        full_sync = payload.get("fullSync", False)
        if not isinstance(full_sync, bool):
            raise ValueError(f"'fullSync' muss bool sein: {full_sync!r}")
        return cls(account_id=_required_id(payload, "accountId"), full_sync=full_sync)


@dataclass(frozen=True)
class UnsubscribeJob:
    email_id: str

    kind: ClassVar[str] = "unsubscribe"
    queue: ClassVar[str] = UNSUBSCRIBE_QUEUE
    retry_policy: ClassVar[RetryPolicy] = UNSUBSCRIBE_RETRY_POLICY

    def to_payload(self) -> Dict[str, Any]:
        return {"emailId": self.email_id}

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "UnsubscribeJob":
        return cls(email_id=_required_id(payload, "emailId"))


Job = Union[SyncJob, UnsubscribeJob]

JOB_TYPES = {SyncJob.kind: SyncJob, UnsubscribeJob.kind: UnsubscribeJob}


def parse_job(kind: str, payload: Mapping[str, Any]) -> Job:
    """Payload + Job-Art ('sync' | 'unsubscribe') → typisierter Job"""
    job_type = JOB_TYPES.get((kind or "").lower())
    if job_type is None:
        raise ValueError(f"Unbekannte Job-Art: {kind!r}")
    return job_type.from_payload(payload)


def dispatch_job(job: Job, handlers: Mapping[type, Callable[[Any], Any]]) -> Any:
    """Ruft den Handler für den konkreten Job-Typ auf"""
    handler = handlers.get(type(job))
    if handler is None:
        raise TypeError(f"Kein Handler für {type(job).__name__}")
    return handler(job)
