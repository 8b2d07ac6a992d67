#!/usr/bin/env python3
"""
Operate order import jobs from the command line.

Uses the active engine configuration (STOREFRONT_CONFIG or the shipped
default) for the database and store credentials.

``start`` and ``resume`` run the job in this process until it completes,
fails or is paused from elsewhere.  With ``--detach`` they only record
the job as running; a worker (``recover``) carries it out later.

Usage:
    python3 scripts/import_cli.py start --tenant <id> [options]
    python3 scripts/import_cli.py status <job_id>
    python3 scripts/import_cli.py list --tenant <id>
    python3 scripts/import_cli.py pause|cancel <job_id>
    python3 scripts/import_cli.py resume <job_id> [--follow] [--detach]
    python3 scripts/import_cli.py failures <job_id>
    python3 scripts/import_cli.py recover

Examples:
    # Import the 100 oldest processing orders, refreshing duplicates,
    # and follow progress until the job stops
    python3 scripts/import_cli.py start --tenant acme --limit 100 \\
        --status processing --duplicates update --follow

    # Resume every job a crashed worker left behind
    python3 scripts/import_cli.py recover --follow
"""

from __future__ import annotations

import argparse
import json
import sys
from datetime import datetime
from pathlib import Path
from uuid import UUID

# Project root on sys.path
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

STATUS_CHOICES = ("any", "pending", "processing", "on-hold", "completed", "cancelled", "refunded", "failed")


def _limit(value: str) -> int | None:
    if value.lower() == "all":
        return None
    return int(value)


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Start, inspect and control order import jobs.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--config", type=Path, default=None, help="Engine config YAML (default: active config).")
    sub = parser.add_subparsers(dest="command", required=True)

    start = sub.add_parser("start", help="Start an import job.")
    start.add_argument("--tenant", required=True)
    start.add_argument("--duplicates", choices=("skip", "update"), default=None)
    start.add_argument("--page-size", type=int, default=None)
    start.add_argument("--limit", type=_limit, default=None, help="Max orders, or 'all' (default).")
    start.add_argument("--status", choices=STATUS_CHOICES, default="any")
    start.add_argument("--after", type=datetime.fromisoformat, default=None, help="Created after (ISO 8601).")
    start.add_argument("--before", type=datetime.fromisoformat, default=None, help="Created before (ISO 8601).")
    start.add_argument("--follow", action="store_true", help="Print each progress snapshot while running.")
    start.add_argument(
        "--detach",
        action="store_true",
        help="Only create the job; it runs when a worker picks it up (e.g. 'recover').",
    )

    for name in ("status", "pause", "resume", "cancel", "failures"):
        cmd = sub.add_parser(name, help=f"{name.capitalize()} a job.")
        cmd.add_argument("job_id", type=UUID)
        if name == "cancel":
            cmd.add_argument("--reason", default=None)
        if name == "resume":
            cmd.add_argument("--follow", action="store_true", help="Print each progress snapshot while running.")
            cmd.add_argument("--detach", action="store_true", help="Only mark the job running.")

    lst = sub.add_parser("list", help="List a tenant's jobs.")
    lst.add_argument("--tenant", required=True)

    rec = sub.add_parser("recover", help="Resume jobs left running by a previous process.")
    rec.add_argument("--follow", action="store_true")

    return parser.parse_args(argv)


def _print(data: dict) -> None:
    print(json.dumps(data, default=str, ensure_ascii=False))


def _job_dict(job) -> dict:
    return {
        "job_id": str(job.job_id),
        "tenant_id": job.tenant_id,
        "status": job.status.value,
        "current_page": job.checkpoint.current_page,
        "current_batch": job.checkpoint.current_batch,
        "total_batches": job.checkpoint.total_batches,
        **job.counters.to_dict(),
        "percentage": job.percentage,
        "last_error": job.last_error,
    }


def _run(orchestrator, job, args: argparse.Namespace):
    """Drain the job in this process unless --detach was given."""
    if args.detach:
        return job
    subscription = orchestrator.publisher.subscribe(job.job_id) if args.follow else None
    final = orchestrator.manager.drain(job.job_id)
    if subscription is not None:
        for snapshot in subscription.drain():
            _print(snapshot.to_dict())
        subscription.close()
    return final


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)

    # Lazy imports so we fail fast on args first
    from storefront_config import get_active_config
    from storefront_kernel.exceptions import StorefrontError
    from storefront_kernel.logging_config import configure_logging
    from storefront_import.orchestrator import ImportOrchestrator

    configure_logging()
    orchestrator = ImportOrchestrator.from_config(get_active_config(args.config))
    manager = orchestrator.manager

    try:
        if args.command == "start":
            options = {
                "duplicate_policy": args.duplicates,
                "page_size": args.page_size,
                "limit": args.limit,
                "status_filter": None if args.status == "any" else args.status,
                "created_after": args.after,
                "created_before": args.before,
            }
            job = manager.start_job(args.tenant, options)
            _print(_job_dict(_run(orchestrator, job, args)))
        elif args.command == "status":
            _print(_job_dict(manager.get_job(args.job_id)))
        elif args.command == "list":
            for job in manager.list_jobs(args.tenant):
                _print(_job_dict(job))
        elif args.command == "pause":
            _print(_job_dict(manager.pause_job(args.job_id)))
        elif args.command == "resume":
            job = manager.resume_job(args.job_id)
            _print(_job_dict(_run(orchestrator, job, args)))
        elif args.command == "cancel":
            _print(_job_dict(manager.cancel_job(args.job_id, reason=args.reason)))
        elif args.command == "failures":
            for failure in manager.list_failures(args.job_id):
                _print({
                    "page": failure.page,
                    "batch": failure.batch,
                    "external_id": failure.external_id,
                    "reason_code": failure.reason_code,
                    "message": failure.message,
                })
        elif args.command == "recover":
            job_ids = manager.recover()
            for job_id in job_ids:
                job = manager.drain(job_id) if args.follow else manager.get_job(job_id)
                _print(_job_dict(job))
    except StorefrontError as exc:
        print(f"ERROR [{exc.code}]: {exc}", file=sys.stderr)
        return 1
    finally:
        orchestrator.shutdown()
    return 0


if __name__ == "__main__":
    sys.exit(main())
