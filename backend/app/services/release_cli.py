from __future__ import annotations

import argparse
from datetime import date
import json
from pathlib import Path
from typing import Any

from app.db.session import SessionLocal
from app.domain.changes import change_from_payload
from app.domain.release_state_machine import ReleaseInvariantError, TransitionRuleError
from app.services.deployment_scheduler import SchedulingConstraints, parse_availability
from app.services.release_orchestrator import (
    PrepareReleaseRequest,
    ReadinessReview,
    ReleaseOrchestrator,
    build_release_orchestrator,
)
from app.services.release_registry import (
    evaluation_to_payload,
    flag_to_payload,
    get_deployment_window,
    get_release,
    get_rollback_plan,
    latest_readiness_evaluation,
    list_flags,
    list_releases,
    release_to_payload,
    rollback_plan_to_payload,
    window_to_payload,
)


def _print(payload: Any) -> None:
    print(json.dumps(payload, default=str))


def _load_change_file(path: str) -> tuple[list[dict[str, Any]], list[dict[str, Any]]]:
    raw = json.loads(Path(path).expanduser().read_text(encoding="utf-8"))
    if isinstance(raw, list):
        return raw, []
    if not isinstance(raw, dict):
        raise ValueError("change_file_must_be_list_or_object")
    return list(raw.get("changes") or []), list(raw.get("release_items") or [])


def _add_review_arguments(parser: argparse.ArgumentParser) -> None:
    tests = parser.add_mutually_exclusive_group()
    tests.add_argument("--tests-passing", dest="tests_passing", action="store_true", default=None)
    tests.add_argument("--tests-failing", dest="tests_passing", action="store_false")
    parser.add_argument("--coverage", type=float, default=None)
    parser.add_argument("--signed-off-by", default=None)
    parser.add_argument("--blackout-date", action="append", default=[])
    parser.add_argument("--unavailable-date", action="append", default=[])
    parser.add_argument("--preferred-days", default=None, help="Comma separated weekday names")
    parser.add_argument("--team-availability", default=None, help="HH:MM-HH:MM")
    parser.add_argument("--earliest-date", default=None)
    parser.add_argument("--actor-id", default=None)


def _review_from_args(args: argparse.Namespace, orchestrator: ReleaseOrchestrator) -> ReadinessReview:
    constraints: SchedulingConstraints | None = None
    if (
        args.blackout_date
        or args.unavailable_date
        or args.preferred_days
        or args.team_availability
        or args.earliest_date
    ):
        defaults = orchestrator.default_constraints()
        constraints = SchedulingConstraints(
            blackout_dates=frozenset(date.fromisoformat(value) for value in args.blackout_date),
            unavailable_dates=frozenset(date.fromisoformat(value) for value in args.unavailable_date),
            preferred_days=(
                tuple(day.strip().lower() for day in args.preferred_days.split(",") if day.strip())
                if args.preferred_days
                else defaults.preferred_days
            ),
            team_availability=(
                parse_availability(args.team_availability) if args.team_availability else defaults.team_availability
            ),
            earliest_date=date.fromisoformat(args.earliest_date) if args.earliest_date else None,
        )
    return ReadinessReview(
        tests_passing=args.tests_passing,
        test_coverage=args.coverage,
        signed_off_by=args.signed_off_by,
        constraints=constraints,
    )


def main(argv: list[str] | None = None, *, orchestrator: ReleaseOrchestrator | None = None) -> int:
    parser = argparse.ArgumentParser(description="Prepare and manage releases in the release orchestrator DB")
    subparsers = parser.add_subparsers(dest="command", required=True)

    prepare_parser = subparsers.add_parser("prepare")
    prepare_parser.add_argument("--current-version", required=True)
    prepare_parser.add_argument("--changes-file", required=True)
    prepare_parser.add_argument("--pre-release", default=None)
    prepare_parser.add_argument("--irreversible-schema-change", action="store_true")
    _add_review_arguments(prepare_parser)

    check_parser = subparsers.add_parser("check")
    check_parser.add_argument("--version", required=True)
    _add_review_arguments(check_parser)

    get_parser = subparsers.add_parser("get")
    get_parser.add_argument("--version", required=True)

    list_parser = subparsers.add_parser("list")
    list_parser.add_argument("--limit", type=int, default=50)
    list_parser.add_argument("--status", default=None)

    resolve_parser = subparsers.add_parser("resolve")
    resolve_parser.add_argument("--version", required=True)
    resolve_parser.add_argument("--decision", required=True, choices=["go", "no_go"])
    resolve_parser.add_argument("--reviewer-id", required=True)
    resolve_parser.add_argument("--reason", default=None)

    deployed_parser = subparsers.add_parser("deployed")
    deployed_parser.add_argument("--version", required=True)
    deployed_parser.add_argument("--actor-id", default=None)

    rolled_back_parser = subparsers.add_parser("rolled-back")
    rolled_back_parser.add_argument("--version", required=True)
    rolled_back_parser.add_argument("--reason", required=True)
    rolled_back_parser.add_argument("--actor-id", default=None)

    args = parser.parse_args(argv)

    db = SessionLocal()
    try:
        if args.command == "get":
            release = get_release(db=db, version=args.version)
            if release is None:
                _print({"error": "release_not_found", "version": args.version})
                return 2
            evaluation = latest_readiness_evaluation(db=db, version=args.version)
            window = get_deployment_window(db=db, version=args.version)
            plan = get_rollback_plan(db=db, version=args.version)
            _print(
                {
                    "release": release_to_payload(release),
                    "readiness": evaluation_to_payload(evaluation) if evaluation else None,
                    "window": window_to_payload(window) if window else None,
                    "rollback_plan": rollback_plan_to_payload(plan) if plan else None,
                    "flags": [flag_to_payload(flag) for flag in list_flags(db=db, release_version=args.version)],
                }
            )
            return 0

        if args.command == "list":
            records = list_releases(db=db, limit=args.limit, status=args.status)
            _print([release_to_payload(item) for item in records])
            return 0

        engine = orchestrator or build_release_orchestrator()

        if args.command == "prepare":
            changes, items = _load_change_file(args.changes_file)
            result = engine.prepare_release(
                db,
                PrepareReleaseRequest(
                    current_version=args.current_version,
                    changes=[change_from_payload(item) for item in changes],
                    pre_release=args.pre_release,
                    release_items=items,
                    review=_review_from_args(args, engine),
                    has_irreversible_schema_change=args.irreversible_schema_change,
                    actor_id=args.actor_id,
                ),
            )
        elif args.command == "check":
            result = engine.reevaluate_release(
                db, version=args.version, review=_review_from_args(args, engine), actor_id=args.actor_id
            )
        elif args.command == "resolve":
            result = engine.resolve_conditional_go(
                db,
                version=args.version,
                decision=args.decision,
                reviewer_id=args.reviewer_id,
                reason=args.reason,
            )
        elif args.command == "deployed":
            result = engine.mark_deployed(db, version=args.version, actor_id=args.actor_id)
        elif args.command == "rolled-back":
            result = engine.mark_rolled_back(db, version=args.version, reason=args.reason, actor_id=args.actor_id)
        else:
            _print({"error": "unsupported_command"})
            return 1

        _print(result.to_payload())
        return 0
    except (TransitionRuleError, ReleaseInvariantError) as exc:
        db.rollback()
        _print({"error": "invalid_release_state", "command": args.command, "detail": str(exc)})
        return 3
    except ValueError as exc:
        db.rollback()
        if str(exc) == "release_not_found":
            _print({"error": "release_not_found", "version": getattr(args, "version", None)})
            return 2
        _print({"error": "invalid_request", "command": args.command, "detail": str(exc)})
        return 1
    finally:
        db.close()


if __name__ == "__main__":
    raise SystemExit(main())
