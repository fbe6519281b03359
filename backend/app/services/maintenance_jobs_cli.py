from __future__ import annotations

import argparse
from collections import Counter
from datetime import datetime, timezone
import json
from typing import Any

from sqlalchemy.orm import Session

from app.db.session import SessionLocal
from app.services.release_orchestrator import ReleaseOrchestrator, build_release_orchestrator


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _serialize_datetime(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def _print_payload(payload: dict[str, Any]) -> None:
    print(json.dumps(payload, sort_keys=True, default=str))


def _run_reevaluate_readiness(
    db: Session,
    orchestrator: ReleaseOrchestrator,
    *,
    limit: int,
) -> tuple[dict[str, Any], int]:
    outcome = orchestrator.reevaluate_pending_releases(db, limit=max(1, limit))
    payload = outcome.to_payload()
    payload["generated_at"] = _serialize_datetime(_utcnow())
    payload["status_counts"] = dict(Counter(result.status for result in outcome.results))
    exit_code = 0 if not outcome.failures else 2
    return payload, exit_code


def _run_scan_flags(db: Session, orchestrator: ReleaseOrchestrator) -> dict[str, Any]:
    result = orchestrator.scan_feature_flags(db)
    payload = result.to_payload()
    payload["job"] = "scan_feature_flags"
    payload["generated_at"] = _serialize_datetime(_utcnow())
    return payload


def main(argv: list[str] | None = None, *, orchestrator: ReleaseOrchestrator | None = None) -> int:
    parser = argparse.ArgumentParser(description="Run periodic release orchestration jobs")
    subparsers = parser.add_subparsers(dest="job", required=True)

    reevaluate_parser = subparsers.add_parser("reevaluate-readiness")
    reevaluate_parser.add_argument("--limit", type=int, default=100)

    subparsers.add_parser("scan-flags")

    args = parser.parse_args(argv)

    db = SessionLocal()
    try:
        engine = orchestrator or build_release_orchestrator()
        if args.job == "reevaluate-readiness":
            payload, exit_code = _run_reevaluate_readiness(db, engine, limit=args.limit)
            _print_payload(payload)
            return exit_code

        if args.job == "scan-flags":
            _print_payload(_run_scan_flags(db, engine))
            return 0

        _print_payload({"error": "unsupported_job", "job": args.job})
        return 1
    except Exception as exc:
        db.rollback()
        _print_payload(
            {
                "error": "maintenance_job_failed",
                "job": getattr(args, "job", "unknown"),
                "detail": str(exc),
                "generated_at": _serialize_datetime(_utcnow()),
            }
        )
        return 1
    finally:
        db.close()


if __name__ == "__main__":
    raise SystemExit(main())
