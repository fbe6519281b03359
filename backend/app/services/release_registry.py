from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from sqlalchemy.orm import Session

from app.models import (
    DeploymentWindowRecord,
    FeatureFlag,
    ReadinessCheck,
    ReadinessEvaluation,
    Release,
    ReleaseEvent,
    ReleaseItem,
    RollbackPlanRecord,
)
from app.services.deployment_scheduler import DeploymentWindowProposal
from app.services.feature_flags import is_cleanup_eligible
from app.services.monitoring import MonitoringPlan
from app.services.readiness_gate import CHECK_CATALOG_VERSION, ReadinessOutcome
from app.services.release_event_log import append_release_event
from app.services.rollback_planner import RollbackPlan


def list_releases(
    *,
    db: Session,
    limit: int = 100,
    status: str | None = None,
) -> list[Release]:
    query = db.query(Release)
    if status:
        query = query.filter(Release.status == status)
    return query.order_by(Release.id.desc()).limit(limit).all()


def get_release(*, db: Session, version: str) -> Release | None:
    return db.query(Release).filter(Release.version == version).first()


def get_release_or_raise(*, db: Session, version: str) -> Release:
    release = get_release(db=db, version=version)
    if release is None:
        raise ValueError("release_not_found")
    return release


def latest_readiness_evaluation(*, db: Session, version: str) -> ReadinessEvaluation | None:
    return (
        db.query(ReadinessEvaluation)
        .filter(ReadinessEvaluation.release_version == version)
        .order_by(ReadinessEvaluation.id.desc())
        .first()
    )


def get_rollback_plan(*, db: Session, version: str) -> RollbackPlanRecord | None:
    """Active plan: the latest revision."""
    return (
        db.query(RollbackPlanRecord)
        .filter(RollbackPlanRecord.release_version == version)
        .order_by(RollbackPlanRecord.revision.desc())
        .first()
    )


def list_rollback_plan_revisions(*, db: Session, version: str) -> list[RollbackPlanRecord]:
    return (
        db.query(RollbackPlanRecord)
        .filter(RollbackPlanRecord.release_version == version)
        .order_by(RollbackPlanRecord.revision.asc())
        .all()
    )


def get_deployment_window(*, db: Session, version: str) -> DeploymentWindowRecord | None:
    return db.query(DeploymentWindowRecord).filter(DeploymentWindowRecord.release_version == version).first()


def list_release_events(*, db: Session, version: str, limit: int = 200) -> list[ReleaseEvent]:
    return (
        db.query(ReleaseEvent)
        .filter(ReleaseEvent.release_version == version)
        .order_by(ReleaseEvent.id.asc())
        .limit(limit)
        .all()
    )


def list_flags(
    *,
    db: Session,
    release_version: str | None = None,
    include_archived: bool = False,
) -> list[FeatureFlag]:
    query = db.query(FeatureFlag)
    if release_version:
        query = query.filter(FeatureFlag.release_version == release_version)
    if not include_archived:
        query = query.filter(FeatureFlag.archived_at.is_(None))
    return query.order_by(FeatureFlag.id.asc()).all()


def get_flag(*, db: Session, name: str) -> FeatureFlag | None:
    return db.query(FeatureFlag).filter(FeatureFlag.name == name).first()


def upsert_release_items(db: Session, *, version: str, items: list[dict[str, Any]]) -> list[ReleaseItem]:
    """Idempotent by (release version, item name); the caller owns the commit."""
    rows: list[ReleaseItem] = []
    for payload in items:
        name = str(payload.get("name") or "").strip()
        if not name:
            continue
        row = (
            db.query(ReleaseItem)
            .filter(ReleaseItem.release_version == version, ReleaseItem.name == name)
            .first()
        )
        if row is None:
            row = ReleaseItem(release_version=version, name=name)
            db.add(row)
        row.status = str(payload.get("status") or row.status or "planned")
        row.description = payload.get("description", row.description)
        row.needs_feature_flag = bool(payload.get("needs_feature_flag", row.needs_feature_flag or False))
        row.risk_level = payload.get("risk_level", row.risk_level)
        rows.append(row)
    db.flush()
    return rows


def record_readiness_evaluation(
    db: Session,
    *,
    version: str,
    outcome: ReadinessOutcome,
) -> ReadinessEvaluation:
    evaluation = ReadinessEvaluation(
        release_version=version,
        catalog_version=CHECK_CATALOG_VERSION,
        recommendation=outcome.recommendation.value,
        unresolved=outcome.unresolved,
        blocking_issues=list(outcome.blocking_issues),
        warnings=list(outcome.warnings),
        conditions=list(outcome.conditions),
        advisory_risk_level=outcome.advisory_risk_level.value if outcome.advisory_risk_level else None,
        risk_narrative=outcome.risk_narrative,
    )
    evaluation.checks = [
        ReadinessCheck(
            position=position,
            name=check.name,
            status=check.status.value,
            blocking=check.blocking,
            detail=check.detail,
        )
        for position, check in enumerate(outcome.checks)
    ]
    db.add(evaluation)
    db.flush()
    return evaluation


def save_rollback_plan(
    db: Session,
    *,
    plan: RollbackPlan,
    monitoring: MonitoringPlan | None,
) -> RollbackPlanRecord:
    """Plan rows are never updated.

    An active plan for the same risk tier is returned unchanged; a plan for a
    different tier is stored as the next revision and becomes the active one.
    """
    existing = get_rollback_plan(db=db, version=plan.release_version)
    if existing is not None and existing.risk_level == plan.risk_level.value:
        return existing
    record = RollbackPlanRecord(
        release_version=plan.release_version,
        revision=existing.revision + 1 if existing is not None else 1,
        rollback_target=plan.rollback_target,
        risk_level=plan.risk_level.value,
        estimated_minutes=plan.estimated_minutes,
        rollback_threshold_minutes=plan.rollback_threshold_minutes,
        below_target_speed=plan.below_target_speed,
        steps=plan.steps_payload(),
        triggers=list(plan.triggers),
        migrations_to_reverse=list(plan.migrations_to_reverse),
        data_backup_required=plan.data_backup_required,
        api_rollback_required=plan.api_rollback_required,
        monitoring=monitoring.to_payload() if monitoring is not None else None,
        used_fallback=plan.used_fallback,
    )
    db.add(record)
    db.flush()
    return record


def upsert_deployment_window(db: Session, *, proposal: DeploymentWindowProposal) -> DeploymentWindowRecord:
    record = get_deployment_window(db=db, version=proposal.release_version)
    if record is None:
        record = DeploymentWindowRecord(release_version=proposal.release_version)
        db.add(record)
    record.risk_level = proposal.risk_level.value
    record.timezone = proposal.timezone
    record.primary_date = proposal.primary.date
    record.primary_start_time = proposal.primary.start_time
    record.primary_end_time = proposal.primary.end_time
    record.backup_date = proposal.backup.date
    record.backup_start_time = proposal.backup.start_time
    record.backup_end_time = proposal.backup.end_time
    record.monitoring_end_time = proposal.monitoring_end_time
    record.rationale = proposal.rationale
    db.flush()
    return record


def archive_flag(
    *,
    db: Session,
    flag_name: str,
    age_days: int,
    actor_id: str | None = None,
    now: datetime | None = None,
) -> FeatureFlag:
    flag = db.query(FeatureFlag).filter(FeatureFlag.name == flag_name).with_for_update().first()
    if flag is None:
        raise ValueError("flag_not_found")
    if flag.archived_at is not None:
        return flag
    timestamp = now or datetime.now(timezone.utc)
    if not is_cleanup_eligible(flag, age_days=age_days, now=timestamp):
        raise ValueError("flag_not_cleanup_eligible")

    flag.archived_at = timestamp
    append_release_event(
        db,
        release_version=flag.release_version,
        event_type="feature_flag_archived",
        payload={"flag_name": flag.name},
        actor_id=actor_id,
        audit_action="feature_flag.archive",
    )
    db.commit()
    db.refresh(flag)
    return flag


def _iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


def release_to_payload(release: Release) -> dict[str, Any]:
    return {
        "version": release.version,
        "previous_version": release.previous_version,
        "bump_type": release.bump_type,
        "pre_release": release.pre_release,
        "risk_level": release.risk_level,
        "status": release.status,
        "blocked_reason": release.blocked_reason,
        "blocked_detail": release.blocked_detail,
        "total_changes": release.total_changes,
        "has_db_migration": release.has_db_migration,
        "has_api_change": release.has_api_change,
        "tests_passing": release.tests_passing,
        "signed_off_by": release.signed_off_by,
        "changelog_summary": release.changelog_summary,
        "created_at": _iso(release.created_at),
        "updated_at": _iso(release.updated_at),
        "deployed_at": _iso(release.deployed_at),
    }


def evaluation_to_payload(evaluation: ReadinessEvaluation) -> dict[str, Any]:
    return {
        "release_version": evaluation.release_version,
        "catalog_version": evaluation.catalog_version,
        "recommendation": evaluation.recommendation,
        "unresolved": evaluation.unresolved,
        "blocking_issues": list(evaluation.blocking_issues or []),
        "warnings": list(evaluation.warnings or []),
        "conditions": list(evaluation.conditions or []),
        "advisory_risk_level": evaluation.advisory_risk_level,
        "risk_narrative": evaluation.risk_narrative,
        "evaluated_at": _iso(evaluation.evaluated_at),
        "checks": [
            {"name": check.name, "status": check.status, "blocking": check.blocking, "detail": check.detail}
            for check in evaluation.checks
        ],
    }


def window_to_payload(record: DeploymentWindowRecord) -> dict[str, Any]:
    return {
        "release_version": record.release_version,
        "risk_level": record.risk_level,
        "timezone": record.timezone,
        "primary": {
            "date": record.primary_date.isoformat(),
            "start_time": f"{record.primary_start_time:%H:%M}",
            "end_time": f"{record.primary_end_time:%H:%M}",
        },
        "backup": {
            "date": record.backup_date.isoformat(),
            "start_time": f"{record.backup_start_time:%H:%M}",
            "end_time": f"{record.backup_end_time:%H:%M}",
        },
        "monitoring_end_time": _iso(record.monitoring_end_time),
        "rationale": record.rationale,
    }


def rollback_plan_to_payload(record: RollbackPlanRecord, *, include_steps: bool = True) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "release_version": record.release_version,
        "revision": record.revision,
        "rollback_target": record.rollback_target,
        "risk_level": record.risk_level,
        "estimated_minutes": record.estimated_minutes,
        "rollback_threshold_minutes": record.rollback_threshold_minutes,
        "below_target_speed": record.below_target_speed,
        "migrations_to_reverse": list(record.migrations_to_reverse or []),
        "data_backup_required": record.data_backup_required,
        "api_rollback_required": record.api_rollback_required,
        "used_fallback": record.used_fallback,
    }
    if include_steps:
        payload["steps"] = list(record.steps or [])
        payload["triggers"] = list(record.triggers or [])
        payload["monitoring"] = record.monitoring
    return payload


def flag_to_payload(flag: FeatureFlag) -> dict[str, Any]:
    return {
        "name": flag.name,
        "feature": flag.feature,
        "release_version": flag.release_version,
        "rollout_strategy": flag.rollout_strategy,
        "phases": list(flag.phases or []),
        "current_phase_index": flag.current_phase_index,
        "current_percentage": flag.current_percentage,
        "enabled": flag.enabled,
        "kill_switch_conditions": list(flag.kill_switch_conditions or []),
        "kill_switch_tripped": flag.kill_switch_tripped,
        "kill_switch_reason": flag.kill_switch_reason,
        "phase_started_at": _iso(flag.phase_started_at),
        "full_rollout_date": _iso(flag.full_rollout_date),
        "archived_at": _iso(flag.archived_at),
    }
