from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
import logging
import re
from typing import Any

from sqlalchemy.orm import Session

from app.domain.release_state_machine import ReleaseState
from app.domain.risk import RiskLevel, RiskTierTable, coerce_risk_level, max_risk
from app.models import FeatureFlag, Release, ReleaseItem
from app.services.observability import emit_structured_log
from app.services.oracle import AssessmentOracle, consult_oracle
from app.services.release_event_log import append_release_event

ROLLOUT_STRATEGIES = {"immediate", "percentage_ramp", "canary", "beta_group", "internal_only"}
DEFAULT_ROLLOUT_STRATEGY = "percentage_ramp"

DEFAULT_PHASE_PERCENTAGES: dict[RiskLevel, tuple[int, ...]] = {
    RiskLevel.LOW: (25, 100),
    RiskLevel.MEDIUM: (10, 50, 100),
    RiskLevel.HIGH: (5, 25, 50, 100),
    RiskLevel.CRITICAL: (1, 5, 25, 50, 100),
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _normalize_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def flag_name_for(item_name: str | None) -> str:
    return "ff_" + re.sub(r"[^a-z0-9]", "_", (item_name or "unknown").lower())


def flag_state(flag: FeatureFlag) -> str:
    if flag.archived_at is not None:
        return "archived"
    if flag.kill_switch_tripped:
        return "killed"
    if flag.current_percentage >= 100:
        return "fully_rolled_out"
    if flag.enabled:
        return "ramping"
    return "disabled"


def default_phases(risk_level: RiskLevel, risk_table: RiskTierTable) -> list[dict[str, int]]:
    hours = risk_table.monitoring_hours(risk_level)
    return [
        {"percentage": percentage, "duration_hours": hours}
        for percentage in DEFAULT_PHASE_PERCENTAGES[risk_level]
    ]


def validate_phases(raw: Any) -> list[dict[str, int]] | None:
    """Accept a phase list only if percentages strictly increase and end at 100."""
    if not isinstance(raw, list) or not raw:
        return None
    phases: list[dict[str, int]] = []
    previous = 0
    for item in raw:
        if not isinstance(item, dict):
            return None
        percentage = item.get("percentage")
        duration = item.get("duration_hours", 0)
        if isinstance(percentage, bool) or not isinstance(percentage, (int, float)):
            return None
        if isinstance(duration, bool) or not isinstance(duration, (int, float)) or duration < 0:
            return None
        percentage = int(percentage)
        if percentage <= previous or percentage > 100:
            return None
        phases.append({"percentage": percentage, "duration_hours": int(duration)})
        previous = percentage
    if previous != 100:
        return None
    return phases


def _kill_switch_conditions(raw: Any, fallback: list[str]) -> list[str]:
    if isinstance(raw, list):
        conditions = [str(item).strip() for item in raw if str(item).strip()]
        if conditions:
            return conditions
    return list(fallback)


def ensure_release_flags(
    db: Session,
    *,
    release_version: str,
    risk_level: RiskLevel,
    risk_table: RiskTierTable,
    oracle: AssessmentOracle,
    oracle_timeout_seconds: float,
    kill_switch_conditions: list[str] | None = None,
) -> list[FeatureFlag]:
    """Create one disabled flag per flagged release item; existing names are returned unchanged."""
    items = (
        db.query(ReleaseItem)
        .filter(ReleaseItem.release_version == release_version, ReleaseItem.needs_feature_flag.is_(True))
        .order_by(ReleaseItem.id.asc())
        .all()
    )
    flags: list[FeatureFlag] = []
    seen: set[str] = set()
    for item in items:
        name = flag_name_for(item.name)
        if name in seen:
            continue
        seen.add(name)

        existing = db.query(FeatureFlag).filter(FeatureFlag.name == name).first()
        if existing is not None:
            flags.append(existing)
            continue

        item_risk = max_risk(risk_level, coerce_risk_level(item.risk_level))
        assessment = consult_oracle(
            oracle,
            {
                "kind": "flag_rollout",
                "version": release_version,
                "flag_name": name,
                "feature": item.name,
                "description": item.description,
                "risk_level": item_risk.value,
                "monitoring_hours": risk_table.monitoring_hours(item_risk),
            },
            timeout_seconds=oracle_timeout_seconds,
            release_version=release_version,
        )
        fields = assessment.structured_fields if assessment is not None else {}

        phases = validate_phases(fields.get("rollout_phases"))
        if phases is None:
            if fields.get("rollout_phases") is not None:
                emit_structured_log(
                    component="feature_flags",
                    event="oracle_phases_rejected",
                    level=logging.WARNING,
                    release_version=release_version,
                    flag_name=name,
                )
            phases = default_phases(item_risk, risk_table)
        strategy = str(fields.get("rollout_strategy") or "").strip().lower()
        if strategy not in ROLLOUT_STRATEGIES:
            strategy = DEFAULT_ROLLOUT_STRATEGY

        flag = FeatureFlag(
            name=name,
            feature=item.name,
            release_version=release_version,
            rollout_strategy=strategy,
            phases=phases,
            current_phase_index=0,
            current_percentage=0,
            enabled=False,
            configured=True,
            kill_switch_conditions=_kill_switch_conditions(
                fields.get("kill_switch_conditions"), kill_switch_conditions or []
            ),
            kill_switch_tripped=False,
        )
        db.add(flag)
        db.flush()
        append_release_event(
            db,
            release_version=release_version,
            event_type="feature_flag_created",
            payload={"flag_name": name, "rollout_strategy": strategy, "phases": phases},
        )
        emit_structured_log(
            component="feature_flags",
            event="feature_flag_created",
            release_version=release_version,
            flag_name=name,
            rollout_strategy=strategy,
            phase_count=len(phases),
        )
        flags.append(flag)
    return flags


def _get_flag_for_update(db: Session, flag_name: str) -> FeatureFlag:
    flag = db.query(FeatureFlag).filter(FeatureFlag.name == flag_name).with_for_update().first()
    if flag is None:
        raise ValueError("flag_not_found")
    return flag


def start_rollout(db: Session, *, flag_name: str, now: datetime | None = None) -> FeatureFlag:
    flag = _get_flag_for_update(db, flag_name)
    if flag.archived_at is not None:
        raise ValueError("flag_archived")
    if flag.kill_switch_tripped:
        raise ValueError("flag_kill_switch_active")
    if flag.enabled:
        return flag

    release = db.query(Release).filter(Release.version == flag.release_version).first()
    if release is None or release.status != ReleaseState.DEPLOYED.value:
        raise ValueError("release_not_deployed")

    timestamp = _normalize_utc(now or _utcnow())
    first_percentage = int(flag.phases[0]["percentage"]) if flag.phases else 100
    flag.enabled = True
    flag.current_phase_index = 0
    flag.current_percentage = max(flag.current_percentage, first_percentage)
    flag.phase_started_at = timestamp
    if flag.current_percentage >= 100 and flag.full_rollout_date is None:
        flag.full_rollout_date = timestamp

    append_release_event(
        db,
        release_version=flag.release_version,
        event_type="feature_flag_rollout_started",
        payload={"flag_name": flag.name, "percentage": flag.current_percentage},
    )
    db.commit()
    db.refresh(flag)
    emit_structured_log(
        component="feature_flags",
        event="feature_flag_rollout_started",
        release_version=flag.release_version,
        flag_name=flag.name,
        percentage=flag.current_percentage,
    )
    return flag


@dataclass(frozen=True)
class FlagAdvance:
    flag_name: str
    advanced: bool
    from_percentage: int
    to_percentage: int
    reason: str | None = None


def advance_flag(flag: FeatureFlag, *, now: datetime) -> FlagAdvance:
    """Move a flag from phase k to k+1 when its phase duration elapsed and no kill switch is active."""
    current = flag.current_percentage

    def _skip(reason: str) -> FlagAdvance:
        return FlagAdvance(flag.name, False, current, current, reason)

    if flag.archived_at is not None:
        return _skip("archived")
    if flag.kill_switch_tripped:
        return _skip("kill_switch_active")
    if not flag.enabled:
        return _skip("disabled")
    phases = flag.phases or []
    if flag.current_phase_index >= len(phases) - 1:
        return _skip("final_phase")
    if flag.phase_started_at is None:
        return _skip("phase_start_unknown")

    duration_hours = int(phases[flag.current_phase_index].get("duration_hours", 0))
    elapsed = _normalize_utc(now) - _normalize_utc(flag.phase_started_at)
    if elapsed < timedelta(hours=duration_hours):
        return _skip("phase_duration_not_elapsed")

    next_index = flag.current_phase_index + 1
    flag.current_phase_index = next_index
    flag.current_percentage = max(current, int(phases[next_index]["percentage"]))
    flag.phase_started_at = _normalize_utc(now)
    if flag.current_percentage >= 100 and flag.full_rollout_date is None:
        flag.full_rollout_date = _normalize_utc(now)
    return FlagAdvance(flag.name, True, current, flag.current_percentage)


def cleanup_candidates(db: Session, *, age_days: int, now: datetime | None = None) -> list[FeatureFlag]:
    cutoff = _normalize_utc(now or _utcnow()) - timedelta(days=age_days)
    return (
        db.query(FeatureFlag)
        .filter(
            FeatureFlag.current_percentage == 100,
            FeatureFlag.full_rollout_date.is_not(None),
            FeatureFlag.full_rollout_date <= cutoff,
            FeatureFlag.archived_at.is_(None),
        )
        .order_by(FeatureFlag.full_rollout_date.asc())
        .all()
    )


def is_cleanup_eligible(flag: FeatureFlag, *, age_days: int, now: datetime | None = None) -> bool:
    if flag.archived_at is not None or flag.current_percentage != 100 or flag.full_rollout_date is None:
        return False
    reference = _normalize_utc(now or _utcnow())
    return reference - _normalize_utc(flag.full_rollout_date) >= timedelta(days=age_days)


@dataclass(frozen=True)
class FlagScanResult:
    scanned: int
    advanced: list[FlagAdvance] = field(default_factory=list)
    held: list[FlagAdvance] = field(default_factory=list)
    cleanup_candidates: list[str] = field(default_factory=list)

    def to_payload(self) -> dict[str, Any]:
        return {
            "scanned": self.scanned,
            "advanced": [
                {"flag_name": item.flag_name, "from": item.from_percentage, "to": item.to_percentage}
                for item in self.advanced
            ],
            "held": [{"flag_name": item.flag_name, "reason": item.reason} for item in self.held],
            "cleanup_candidates": list(self.cleanup_candidates),
        }


def scan_feature_flags(db: Session, *, cleanup_age_days: int, now: datetime | None = None) -> FlagScanResult:
    timestamp = _normalize_utc(now or _utcnow())
    flags = (
        db.query(FeatureFlag)
        .filter(FeatureFlag.enabled.is_(True), FeatureFlag.archived_at.is_(None))
        .order_by(FeatureFlag.id.asc())
        .with_for_update()
        .all()
    )
    advanced: list[FlagAdvance] = []
    held: list[FlagAdvance] = []
    for flag in flags:
        result = advance_flag(flag, now=timestamp)
        if not result.advanced:
            held.append(result)
            continue
        advanced.append(result)
        append_release_event(
            db,
            release_version=flag.release_version,
            event_type="feature_flag_advanced",
            payload={
                "flag_name": flag.name,
                "from_percentage": result.from_percentage,
                "to_percentage": result.to_percentage,
                "phase_index": flag.current_phase_index,
            },
        )
        emit_structured_log(
            component="feature_flags",
            event="feature_flag_advanced",
            release_version=flag.release_version,
            flag_name=flag.name,
            from_percentage=result.from_percentage,
            to_percentage=result.to_percentage,
        )
    db.commit()

    candidates = [flag.name for flag in cleanup_candidates(db, age_days=cleanup_age_days, now=timestamp)]
    return FlagScanResult(scanned=len(flags), advanced=advanced, held=held, cleanup_candidates=candidates)


def _trip(db: Session, flag: FeatureFlag, reason: str, actor_id: str | None) -> None:
    if flag.kill_switch_tripped:
        return
    flag.enabled = False
    flag.kill_switch_tripped = True
    flag.kill_switch_reason = reason
    append_release_event(
        db,
        release_version=flag.release_version,
        event_type="feature_flag_killed",
        payload={"flag_name": flag.name, "reason": reason, "frozen_percentage": flag.current_percentage},
        actor_id=actor_id,
        audit_action="feature_flag.kill_switch",
    )
    emit_structured_log(
        component="feature_flags",
        event="feature_flag_killed",
        level=logging.WARNING,
        release_version=flag.release_version,
        flag_name=flag.name,
        reason=reason,
        frozen_percentage=flag.current_percentage,
    )


def trip_kill_switch(
    db: Session,
    *,
    flag_name: str,
    reason: str,
    actor_id: str | None = None,
) -> FeatureFlag:
    flag = _get_flag_for_update(db, flag_name)
    _trip(db, flag, reason, actor_id)
    db.commit()
    db.refresh(flag)
    return flag


def trip_release_kill_switches(
    db: Session,
    *,
    release_version: str,
    reason: str,
    actor_id: str | None = None,
) -> list[FeatureFlag]:
    """Trip every active flag of a release; the caller owns the commit."""
    flags = (
        db.query(FeatureFlag)
        .filter(FeatureFlag.release_version == release_version, FeatureFlag.archived_at.is_(None))
        .with_for_update()
        .all()
    )
    for flag in flags:
        _trip(db, flag, reason, actor_id)
    return flags
