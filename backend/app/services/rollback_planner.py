from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
import logging
from typing import Any

from app.domain.changes import ChangeSetProfile
from app.domain.risk import RiskLevel, RiskTierTable
from app.services.observability import emit_structured_log
from app.services.oracle import AssessmentOracle, consult_oracle

DEFAULT_STEP_MINUTES = 5
REDEPLOY_MINUTES = 10
MIGRATION_REVERSAL_MINUTES = 10
API_RESTORE_MINUTES = 5


class RollbackPhase(str, Enum):
    PRE_ROLLBACK = "pre_rollback"
    ROLLBACK = "rollback"
    POST_ROLLBACK = "post_rollback"


@dataclass(frozen=True)
class RollbackStep:
    phase: RollbackPhase
    sequence: int
    action: str
    verification: str
    estimated_minutes: int


@dataclass(frozen=True)
class RollbackPlan:
    release_version: str
    rollback_target: str
    risk_level: RiskLevel
    estimated_minutes: int
    rollback_threshold_minutes: int
    below_target_speed: bool
    steps: list[RollbackStep]
    triggers: list[dict[str, str]]
    migrations_to_reverse: list[str] = field(default_factory=list)
    data_backup_required: bool = False
    api_rollback_required: bool = False
    used_fallback: bool = False

    def steps_for(self, phase: RollbackPhase) -> list[RollbackStep]:
        return [step for step in self.steps if step.phase == phase]

    def steps_payload(self) -> list[dict[str, Any]]:
        return [{**asdict(step), "phase": step.phase.value} for step in self.steps]


def _default_pre_steps(profile: ChangeSetProfile) -> list[tuple[str, str, int]]:
    steps = [
        ("Announce the rollback in the incident channel and freeze deployments", "Deploy pipeline reports frozen", 2),
    ]
    if profile.has_db_migration:
        steps.append(("Take a verified backup of every affected database", "Backup checksum recorded", 10))
    return steps


def _default_post_steps(rollback_target: str) -> list[tuple[str, str, int]]:
    return [
        ("Run health checks against all production endpoints", "All health checks green", 3),
        ("Compare error rate and latency with the pre-release baseline", "Metrics within baseline for 15 minutes", 5),
        (f"Confirm to stakeholders that {rollback_target} is live again", "Confirmation posted", 1),
    ]


def _manual_fallback_step(rollback_target: str, profile: ChangeSetProfile) -> list[tuple[str, str, int]]:
    minutes = REDEPLOY_MINUTES
    if profile.has_db_migration:
        minutes += MIGRATION_REVERSAL_MINUTES
    if profile.has_api_change:
        minutes += API_RESTORE_MINUTES
    return [
        (
            f"Manual rollback required: redeploy {rollback_target} following the standard runbook",
            f"Production reports version {rollback_target}",
            minutes,
        )
    ]


def _coerce_minutes(value: Any) -> int:
    if isinstance(value, bool):
        return DEFAULT_STEP_MINUTES
    if isinstance(value, (int, float)) and value > 0:
        return max(1, int(round(value)))
    return DEFAULT_STEP_MINUTES


def _oracle_steps(raw: Any) -> list[tuple[str, str, int]]:
    if not isinstance(raw, list):
        return []
    steps: list[tuple[str, str, int]] = []
    for item in raw:
        if not isinstance(item, dict):
            continue
        action = str(item.get("action") or "").strip()
        if not action:
            continue
        verification = str(item.get("verification") or "").strip() or "Operator confirms step completed"
        steps.append((action, verification, _coerce_minutes(item.get("estimated_minutes"))))
    return steps


def default_triggers(risk_level: RiskLevel, threshold_minutes: int, profile: ChangeSetProfile) -> list[dict[str, str]]:
    triggers = [
        {"name": "error_rate_breach", "condition": f"Error rate above 2x baseline for {threshold_minutes} minutes"},
        {"name": "health_check_failure", "condition": f"Health checks failing for {threshold_minutes} minutes"},
        {"name": "latency_regression", "condition": f"p95 latency above 1.5x baseline for {threshold_minutes} minutes"},
    ]
    if profile.has_db_migration:
        triggers.append({"name": "data_integrity_alert", "condition": "Data integrity checks report mismatches"})
    if risk_level == RiskLevel.CRITICAL:
        triggers.append({"name": "any_page_alert", "condition": "Any paging alert during the monitoring window"})
    return triggers


def _merge_triggers(base: list[dict[str, str]], raw: Any) -> list[dict[str, str]]:
    merged = list(base)
    known = {trigger["name"] for trigger in merged}
    if not isinstance(raw, list):
        return merged
    for item in raw:
        if isinstance(item, str) and item.strip():
            name, condition = item.strip().lower().replace(" ", "_")[:64], item.strip()
        elif isinstance(item, dict) and str(item.get("condition") or "").strip():
            condition = str(item["condition"]).strip()
            name = str(item.get("name") or condition).strip().lower().replace(" ", "_")[:64]
        else:
            continue
        if name in known:
            continue
        known.add(name)
        merged.append({"name": name, "condition": condition})
    return merged


def _number(phase: RollbackPhase, steps: list[tuple[str, str, int]]) -> list[RollbackStep]:
    return [
        RollbackStep(phase=phase, sequence=index, action=action, verification=verification, estimated_minutes=minutes)
        for index, (action, verification, minutes) in enumerate(steps, start=1)
    ]


def generate_rollback_plan(
    *,
    release_version: str,
    rollback_target: str,
    risk_level: RiskLevel,
    change_profile: ChangeSetProfile,
    risk_table: RiskTierTable,
    oracle: AssessmentOracle,
    oracle_timeout_seconds: float,
) -> RollbackPlan:
    threshold = risk_table.rollback_threshold_minutes(risk_level)

    assessment = consult_oracle(
        oracle,
        {
            "kind": "rollback_plan",
            "version": release_version,
            "rollback_to": rollback_target,
            "risk_level": risk_level.value,
            "rollback_threshold_minutes": threshold,
            "has_db_migration": change_profile.has_db_migration,
            "has_api_change": change_profile.has_api_change,
            "migration_names": change_profile.migration_names,
        },
        timeout_seconds=oracle_timeout_seconds,
        release_version=release_version,
    )
    fields = assessment.structured_fields if assessment is not None else {}

    pre_steps = _oracle_steps(fields.get("pre_rollback_steps")) or _default_pre_steps(change_profile)
    rollback_steps = _oracle_steps(fields.get("rollback_steps"))
    used_fallback = not rollback_steps
    if used_fallback:
        rollback_steps = _manual_fallback_step(rollback_target, change_profile)
    post_steps = _oracle_steps(fields.get("post_rollback_steps")) or _default_post_steps(rollback_target)

    steps = (
        _number(RollbackPhase.PRE_ROLLBACK, pre_steps)
        + _number(RollbackPhase.ROLLBACK, rollback_steps)
        + _number(RollbackPhase.POST_ROLLBACK, post_steps)
    )
    estimated_minutes = sum(step.estimated_minutes for step in steps if step.phase == RollbackPhase.ROLLBACK)

    migrations: list[str] = []
    if change_profile.has_db_migration:
        migrations = list(change_profile.migration_names)
        oracle_migrations = fields.get("migrations_to_reverse")
        if not migrations and isinstance(oracle_migrations, list):
            migrations = [str(item) for item in oracle_migrations if str(item).strip()]
        if not migrations:
            migrations = [f"all migrations introduced in {release_version}"]

    plan = RollbackPlan(
        release_version=release_version,
        rollback_target=rollback_target,
        risk_level=risk_level,
        estimated_minutes=estimated_minutes,
        rollback_threshold_minutes=threshold,
        below_target_speed=estimated_minutes <= threshold,
        steps=steps,
        triggers=_merge_triggers(default_triggers(risk_level, threshold, change_profile), fields.get("triggers")),
        migrations_to_reverse=migrations,
        data_backup_required=change_profile.has_db_migration,
        api_rollback_required=change_profile.has_api_change,
        used_fallback=used_fallback,
    )

    emit_structured_log(
        component="rollback_planner",
        event="rollback_plan_generated",
        level=logging.INFO if plan.below_target_speed else logging.WARNING,
        release_version=release_version,
        rollback_target=rollback_target,
        risk_level=risk_level.value,
        estimated_minutes=estimated_minutes,
        rollback_threshold_minutes=threshold,
        below_target_speed=plan.below_target_speed,
        used_fallback=used_fallback,
    )
    return plan
