#!/usr/bin/env python3
"""
Reiht einen Sync- oder Unsubscribe-Job manuell ein.

Usage:
    python scripts/enqueue_job.py sync <account_id>
    python scripts/enqueue_job.py sync <account_id> --full
    python scripts/enqueue_job.py unsubscribe <email_id>
"""

import argparse
import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from src.tasks import enqueue_job  # noqa: E402
from src.tasks.jobs import parse_job  # noqa: E402


def build_payload(kind: str, target_id: str, full: bool) -> dict:
    if kind == "sync":
        return {"accountId": target_id, "fullSync": full}
    return {"emailId": target_id}


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Job auf die Worker-Queue legen")
    parser.add_argument("kind", choices=["sync", "unsubscribe"], help="Job-Art")
    parser.add_argument("target_id", help="Account-ID (sync) oder Email-ID (unsubscribe)")
    parser.add_argument(
        "--full", action="store_true", help="Full-Sync erzwingen (nur für sync)"
    )
    args = parser.parse_args(argv)

    try:
        job = parse_job(args.kind, build_payload(args.kind, args.target_id, args.full))
    except ValueError as e:
        print(f"❌ Ungültiger Job: {e}")
        return 2

    result = enqueue_job(job)
    print(f"✅ {args.kind}-Job eingereiht auf '{job.queue}' (Task-ID: {result.id})")
    return 0


if __name__ == "__main__":
    sys.exit(main())
