from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
import logging
from typing import Any, Callable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import Settings, get_settings
from app.domain.changes import ChangeRecord, ChangeSetProfile, profile_changes
from app.domain.release_state_machine import (
    PENDING_STATES,
    BlockedReasonCode,
    ReleaseInvariantError,
    ReleaseState,
    TransitionRuleError,
    ensure_transition_allowed,
)
from app.domain.risk import RiskLevel, RiskTierTable, risk_tier_table_from_json
from app.domain.semver import BumpType
from app.models import DeploymentWindowRecord, ReadinessEvaluation, Release, RollbackPlanRecord
from app.services.changelog import generate_changelog
from app.services.deployment_scheduler import (
    NoWindowFound,
    SchedulingConstraints,
    WindowSlot,
    parse_availability,
    resolve_timezone,
    schedule_deployment_window,
    stored_window_violations,
)
from app.services.feature_flags import (
    FlagScanResult,
    ensure_release_flags,
    scan_feature_flags as run_flag_scan,
    trip_release_kill_switches,
)
from app.services.monitoring import build_monitoring_plan
from app.services.notifications import NotificationChannel, ReleaseSummary, build_notification_channel
from app.services.observability import emit_structured_log
from app.services.oracle import AssessmentOracle, build_assessment_oracle
from app.services.readiness_gate import (
    CheckStatus,
    ReadinessInputs,
    Recommendation,
    evaluate_readiness,
    load_store_readiness_data,
)
from app.services.release_event_log import append_release_event
from app.services.release_locks import lock_release_row, release_exclusion
from app.services.release_registry import (
    get_deployment_window,
    get_release,
    get_rollback_plan,
    latest_readiness_evaluation,
    list_flags,
    record_readiness_evaluation,
    rollback_plan_to_payload,
    save_rollback_plan,
    upsert_deployment_window,
    upsert_release_items,
    window_to_payload,
)
from app.services.risk_classifier import RiskSignals, classify_risk
from app.services.rollback_planner import generate_rollback_plan
from app.services.version_resolver import VersionResolution, resolve_version

CONDITIONAL_GO_DECISIONS = {"go", "no_go"}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ReadinessReview:
    """Facts about a release that live outside the record store."""

    tests_passing: bool | None = None
    test_coverage: float | None = None
    signed_off_by: str | None = None
    constraints: SchedulingConstraints | None = None


@dataclass(frozen=True)
class PrepareReleaseRequest:
    current_version: str
    changes: list[ChangeRecord]
    pre_release: str | None = None
    release_items: list[dict[str, Any]] = field(default_factory=list)
    review: ReadinessReview = field(default_factory=ReadinessReview)
    has_irreversible_schema_change: bool = False
    actor_id: str | None = None


@dataclass
class OrchestrationResult:
    version: str
    pass_kind: str
    status: str
    bump_type: str | None = None
    risk_level: str | None = None
    recommendation: str | None = None
    unresolved: bool = False
    blocked_reason: str | None = None
    blocked_detail: str | None = None
    blocking_issues: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    conditions: list[str] = field(default_factory=list)
    changelog_summary: str | None = None
    window: dict[str, Any] | None = None
    rollback: dict[str, Any] | None = None
    flags: list[str] = field(default_factory=list)
    version_overridden: bool = False
    error: str | None = None

    def summary(self) -> ReleaseSummary:
        return ReleaseSummary(
            version=self.version,
            pass_kind=self.pass_kind,
            status=self.status,
            bump_type=self.bump_type,
            risk_level=self.risk_level,
            recommendation=self.recommendation,
            blocked_reason=self.blocked_reason,
            blocking_issues=list(self.blocking_issues),
            conditions=list(self.conditions),
            window=self.window,
            rollback=self.rollback,
            detail=self.blocked_detail,
            error=self.error,
        )

    def to_payload(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "pass_kind": self.pass_kind,
            "status": self.status,
            "bump_type": self.bump_type,
            "risk_level": self.risk_level,
            "recommendation": self.recommendation,
            "unresolved": self.unresolved,
            "blocked_reason": self.blocked_reason,
            "blocked_detail": self.blocked_detail,
            "blocking_issues": list(self.blocking_issues),
            "warnings": list(self.warnings),
            "conditions": list(self.conditions),
            "changelog_summary": self.changelog_summary,
            "window": self.window,
            "rollback": self.rollback,
            "flags": list(self.flags),
            "version_overridden": self.version_overridden,
            "error": self.error,
        }


@dataclass(frozen=True)
class PendingReevaluationResult:
    results: list[OrchestrationResult]
    failures: list[dict[str, str]]

    def to_payload(self) -> dict[str, Any]:
        return {
            "job": "reevaluate_readiness",
            "evaluated": len(self.results),
            "results": [
                {
                    "version": result.version,
                    "status": result.status,
                    "recommendation": result.recommendation,
                    "blocked_reason": result.blocked_reason,
                }
                for result in self.results
            ],
            "failures": list(self.failures),
        }


def _window_slots(record: DeploymentWindowRecord) -> tuple[WindowSlot, WindowSlot]:
    return (
        WindowSlot(record.primary_date, record.primary_start_time, record.primary_end_time),
        WindowSlot(record.backup_date, record.backup_start_time, record.backup_end_time),
    )


def _stored_change_profile(release: Release) -> ChangeSetProfile:
    return ChangeSetProfile(
        total_changes=release.total_changes,
        has_db_migration=release.has_db_migration,
        has_api_change=release.has_api_change,
        has_breaking_api_change=release.has_breaking_api_change,
    )


class ReleaseOrchestrator:
    """Runs the release pipeline and owns every release status write.

    Each pass runs under the per-release exclusion and ends with exactly one
    notification, whatever the outcome.
    """

    def __init__(
        self,
        *,
        oracle: AssessmentOracle,
        notifier: NotificationChannel,
        settings: Settings | None = None,
        risk_table: RiskTierTable | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.oracle = oracle
        self.notifier = notifier
        self.risk_table = risk_table or risk_tier_table_from_json(self.settings.risk_tier_table_json)
        self.clock = clock or _utcnow

    @property
    def _oracle_timeout(self) -> float:
        return float(self.settings.oracle_timeout_seconds)

    def _now(self) -> datetime:
        value = self.clock()
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    def _today(self) -> date:
        return self._now().astimezone(resolve_timezone(self.settings.deployment_timezone)).date()

    def default_constraints(self) -> SchedulingConstraints:
        return SchedulingConstraints(
            preferred_days=tuple(day.lower() for day in self.settings.default_preferred_days),
            team_availability=parse_availability(self.settings.default_team_availability),
        )

    # Status writes

    def _transition(
        self,
        db: Session,
        release: Release,
        target: ReleaseState,
        *,
        blocked_reason: BlockedReasonCode | None = None,
        detail: str | None = None,
        actor_id: str | None = None,
    ) -> None:
        current = ReleaseState(release.status)
        if current == target and target != ReleaseState.BLOCKED:
            return
        ensure_transition_allowed(current, target, blocked_reason)

        release.status = target.value
        if target == ReleaseState.BLOCKED:
            release.blocked_reason = blocked_reason.value if blocked_reason else None
            release.blocked_detail = detail
        else:
            release.blocked_reason = None
            release.blocked_detail = None
        if target == ReleaseState.DEPLOYED:
            release.deployed_at = self._now()

        append_release_event(
            db,
            release_version=release.version,
            event_type="release_status_changed",
            status_from=current.value,
            status_to=target.value,
            payload={
                "blocked_reason": blocked_reason.value if blocked_reason else None,
                "detail": detail,
            },
            actor_id=actor_id,
            audit_action="release.transition",
        )
        emit_structured_log(
            component="release_orchestrator",
            event="release_status_changed",
            level=logging.WARNING if target == ReleaseState.BLOCKED else logging.INFO,
            release_version=release.version,
            status_from=current.value,
            status_to=target.value,
            blocked_reason=blocked_reason.value if blocked_reason else None,
        )

    @staticmethod
    def _ensure_ready_allowed(evaluation: ReadinessEvaluation | None) -> None:
        if evaluation is None:
            raise ReleaseInvariantError("ready_requires_readiness_evaluation")
        failing = [
            check.name
            for check in evaluation.checks
            if check.blocking and check.status != CheckStatus.PASS.value
        ]
        if failing:
            raise ReleaseInvariantError(f"ready_requires_passing_blocking_checks:{','.join(failing)}")

    def _apply_review(self, release: Release, review: ReadinessReview | None) -> None:
        if review is None:
            return
        if review.tests_passing is not None:
            release.tests_passing = review.tests_passing
        if review.test_coverage is not None:
            release.test_coverage = review.test_coverage
        if review.signed_off_by:
            release.signed_off_by = review.signed_off_by

    def _rollback_threshold(self, release: Release, plan_record: RollbackPlanRecord | None) -> int | None:
        if plan_record is None:
            return None
        if release.risk_level:
            return self.risk_table.rollback_threshold_minutes(release.risk_level)
        return plan_record.rollback_threshold_minutes

    # Passes

    def _run_pass(
        self,
        db: Session,
        *,
        version: str,
        pass_kind: str,
        run: Callable[[], OrchestrationResult],
    ) -> OrchestrationResult:
        try:
            result = run()
        except Exception as exc:
            self._notify_failure(db, version=version, pass_kind=pass_kind, exc=exc)
            raise
        self._notify(db, result)
        return result

    def prepare_release(self, db: Session, request: PrepareReleaseRequest) -> OrchestrationResult:
        try:
            resolution = resolve_version(
                changes=request.changes,
                current_version=request.current_version,
                oracle=self.oracle,
                oracle_timeout_seconds=self._oracle_timeout,
                pre_release=request.pre_release,
            )
        except Exception as exc:
            self._notify_failure(db, version=request.current_version, pass_kind="prepare", exc=exc)
            raise
        return self._run_pass(
            db,
            version=resolution.new_version,
            pass_kind="prepare",
            run=lambda: self._prepare_resolved(db, request, resolution),
        )

    def _prepare_resolved(
        self,
        db: Session,
        request: PrepareReleaseRequest,
        resolution: VersionResolution,
    ) -> OrchestrationResult:
        version = resolution.new_version
        profile = profile_changes(request.changes)

        with release_exclusion(version):
            release = lock_release_row(db, version)
            if release is None:
                release = Release(
                    version=version,
                    previous_version=request.current_version,
                    bump_type=resolution.bump_type.value,
                    pre_release=request.pre_release,
                    status=ReleaseState.DRAFT.value,
                    total_changes=profile.total_changes,
                    has_db_migration=profile.has_db_migration,
                    has_api_change=profile.has_api_change,
                    has_breaking_api_change=profile.has_breaking_api_change,
                    has_irreversible_schema_change=request.has_irreversible_schema_change,
                )
                db.add(release)
                append_release_event(
                    db,
                    release_version=version,
                    event_type="release_created",
                    status_to=ReleaseState.DRAFT.value,
                    payload={
                        "previous_version": request.current_version,
                        "bump_type": resolution.bump_type.value,
                        "rule_bump_type": resolution.rule_bump_type.value,
                        "overridden": resolution.overridden,
                        "total_changes": profile.total_changes,
                    },
                    actor_id=request.actor_id,
                    audit_action="release.create",
                )
            elif ReleaseState(release.status) in {ReleaseState.DEPLOYED, ReleaseState.ROLLED_BACK}:
                raise ReleaseInvariantError(f"release_already_{release.status}")
            else:
                append_release_event(
                    db,
                    release_version=version,
                    event_type="release_resumed",
                    payload={"status": release.status},
                    actor_id=request.actor_id,
                )

            self._apply_review(release, request.review)
            if request.release_items:
                upsert_release_items(db, version=version, items=request.release_items)

            changelog = generate_changelog(
                previous_version=release.previous_version,
                version=version,
                changes=request.changes,
                release_date=self._today(),
                oracle=self.oracle,
                oracle_timeout_seconds=self._oracle_timeout,
            )
            release.changelog_summary = changelog.summary
            release.changelog_markdown = changelog.markdown
            db.commit()

            result = self._evaluate_and_plan(
                db,
                release,
                pass_kind="prepare",
                review=request.review,
                change_profile=profile,
                changelog_generated=True,
                rollback_plan_ready=True,
                actor_id=request.actor_id,
            )
            result.version_overridden = resolution.overridden
        return result

    def reevaluate_release(
        self,
        db: Session,
        *,
        version: str,
        review: ReadinessReview | None = None,
        actor_id: str | None = None,
    ) -> OrchestrationResult:
        return self._run_pass(
            db,
            version=version,
            pass_kind="reevaluate",
            run=lambda: self._reevaluate(db, version=version, review=review, actor_id=actor_id),
        )

    def _reevaluate(
        self,
        db: Session,
        *,
        version: str,
        review: ReadinessReview | None,
        actor_id: str | None,
    ) -> OrchestrationResult:
        with release_exclusion(version):
            release = lock_release_row(db, version)
            if release is None:
                raise ValueError("release_not_found")
            state = ReleaseState(release.status)
            if state not in PENDING_STATES and state != ReleaseState.DRAFT:
                raise ReleaseInvariantError(f"release_not_pending:{release.status}")

            result = self._evaluate_and_plan(
                db,
                release,
                pass_kind="reevaluate",
                review=review,
                change_profile=_stored_change_profile(release),
                changelog_generated=release.changelog_markdown is not None,
                rollback_plan_ready=get_rollback_plan(db=db, version=version) is not None,
                actor_id=actor_id,
            )
        return result

    def reevaluate_pending_releases(self, db: Session, *, limit: int = 100) -> PendingReevaluationResult:
        states = sorted(state.value for state in PENDING_STATES | {ReleaseState.DRAFT})
        versions = [
            row.version
            for row in db.query(Release)
            .filter(Release.status.in_(states))
            .order_by(Release.id.asc())
            .limit(limit)
            .all()
        ]
        results: list[OrchestrationResult] = []
        failures: list[dict[str, str]] = []
        for version in versions:
            try:
                results.append(self.reevaluate_release(db, version=version))
            except (ReleaseInvariantError, TransitionRuleError) as exc:
                db.rollback()
                failures.append({"version": version, "error": str(exc)})
                emit_structured_log(
                    component="release_orchestrator",
                    event="reevaluation_skipped",
                    level=logging.WARNING,
                    release_version=version,
                    error=str(exc),
                )
        return PendingReevaluationResult(results=results, failures=failures)

    def resolve_conditional_go(
        self,
        db: Session,
        *,
        version: str,
        decision: str,
        reviewer_id: str,
        reason: str | None = None,
    ) -> OrchestrationResult:
        return self._run_pass(
            db,
            version=version,
            pass_kind="resolve_conditional_go",
            run=lambda: self._resolve_conditional_go(
                db, version=version, decision=decision, reviewer_id=reviewer_id, reason=reason
            ),
        )

    def _resolve_conditional_go(
        self,
        db: Session,
        *,
        version: str,
        decision: str,
        reviewer_id: str,
        reason: str | None,
    ) -> OrchestrationResult:
        normalized = decision.strip().lower().replace("-", "_")
        if normalized not in CONDITIONAL_GO_DECISIONS:
            raise ValueError(f"invalid_decision:{decision}")

        with release_exclusion(version):
            release = lock_release_row(db, version)
            if release is None:
                raise ValueError("release_not_found")
            evaluation = latest_readiness_evaluation(db=db, version=version)
            if (
                release.status != ReleaseState.READINESS_EVALUATED.value
                or evaluation is None
                or evaluation.recommendation != Recommendation.CONDITIONAL_GO.value
            ):
                raise ReleaseInvariantError("conditional_go_not_pending")

            append_release_event(
                db,
                release_version=version,
                event_type="conditional_go_resolved",
                payload={
                    "decision": normalized,
                    "reason": reason,
                    "conditions": list(evaluation.conditions or []),
                },
                actor_id=reviewer_id,
                audit_action="release.conditional_go_resolved",
            )
            if normalized == "go":
                self._ensure_ready_allowed(evaluation)
                self._transition(db, release, ReleaseState.READY, actor_id=reviewer_id)
                if get_deployment_window(db=db, version=version) is not None:
                    self._transition(db, release, ReleaseState.WINDOW_SCHEDULED, actor_id=reviewer_id)
            else:
                self._transition(
                    db,
                    release,
                    ReleaseState.BLOCKED,
                    blocked_reason=BlockedReasonCode.CONDITIONAL_GO_REJECTED,
                    detail=reason,
                    actor_id=reviewer_id,
                )
            db.commit()
            return self._build_result(db, release, pass_kind="resolve_conditional_go")

    def mark_deployed(self, db: Session, *, version: str, actor_id: str | None = None) -> OrchestrationResult:
        return self._run_pass(
            db,
            version=version,
            pass_kind="deployed",
            run=lambda: self._mark_deployed(db, version=version, actor_id=actor_id),
        )

    def _mark_deployed(self, db: Session, *, version: str, actor_id: str | None) -> OrchestrationResult:
        with release_exclusion(version):
            release = lock_release_row(db, version)
            if release is None:
                raise ValueError("release_not_found")
            self._transition(db, release, ReleaseState.DEPLOYED, actor_id=actor_id)
            db.commit()
            return self._build_result(db, release, pass_kind="deployed")

    def mark_rolled_back(
        self,
        db: Session,
        *,
        version: str,
        reason: str,
        actor_id: str | None = None,
    ) -> OrchestrationResult:
        return self._run_pass(
            db,
            version=version,
            pass_kind="rolled_back",
            run=lambda: self._mark_rolled_back(db, version=version, reason=reason, actor_id=actor_id),
        )

    def _mark_rolled_back(
        self,
        db: Session,
        *,
        version: str,
        reason: str,
        actor_id: str | None,
    ) -> OrchestrationResult:
        with release_exclusion(version):
            release = lock_release_row(db, version)
            if release is None:
                raise ValueError("release_not_found")
            self._transition(db, release, ReleaseState.ROLLED_BACK, detail=reason, actor_id=actor_id)
            trip_release_kill_switches(
                db,
                release_version=version,
                reason=f"release_rolled_back:{reason}",
                actor_id=actor_id,
            )
            db.commit()
            result = self._build_result(db, release, pass_kind="rolled_back")
            result.blocked_detail = reason
        return result

    def scan_feature_flags(self, db: Session) -> FlagScanResult:
        return run_flag_scan(db, cleanup_age_days=self.settings.flag_cleanup_age_days, now=self._now())

    # Pipeline

    def _evaluate_and_plan(
        self,
        db: Session,
        release: Release,
        *,
        pass_kind: str,
        review: ReadinessReview | None,
        change_profile: ChangeSetProfile,
        changelog_generated: bool,
        rollback_plan_ready: bool,
        actor_id: str | None,
    ) -> OrchestrationResult:
        """One transaction under the release row lock, committed once at the end."""
        version = release.version
        # A failed store read rolls back, so the row lock is (re)taken after the reads.
        store = load_store_readiness_data(db, version)
        if lock_release_row(db, version) is None:
            raise ValueError("release_not_found")
        self._apply_review(release, review)

        plan_record = get_rollback_plan(db=db, version=version)
        window_record = get_deployment_window(db=db, version=version)
        inputs = ReadinessInputs(
            open_blocker_titles=store.open_blocker_titles,
            release_item_statuses=store.release_item_statuses,
            feature_flags_configured=store.feature_flags_configured,
            tests_passing=release.tests_passing,
            test_coverage=release.test_coverage,
            changelog_generated=changelog_generated,
            rollback_plan_ready=rollback_plan_ready,
            rollback_estimate_minutes=plan_record.estimated_minutes if plan_record else None,
            rollback_threshold_minutes=self._rollback_threshold(release, plan_record),
            deployment_window_scheduled=window_record is not None,
            deployment_window_label=(
                f"{window_record.primary_date.isoformat()} {window_record.primary_start_time:%H:%M}"
                if window_record is not None
                else None
            ),
            signed_off=bool(release.signed_off_by),
            signed_off_by=release.signed_off_by,
        )
        outcome = evaluate_readiness(
            version=version,
            inputs=inputs,
            oracle=self.oracle,
            oracle_timeout_seconds=self._oracle_timeout,
        )

        self._transition(db, release, ReleaseState.READINESS_EVALUATED, actor_id=actor_id)
        record_readiness_evaluation(db, version=version, outcome=outcome)

        classification = classify_risk(
            RiskSignals(
                total_changes=release.total_changes,
                bump_type=BumpType(release.bump_type),
                has_db_migration=release.has_db_migration,
                has_irreversible_schema_change=release.has_irreversible_schema_change,
                has_api_change=release.has_api_change,
                has_breaking_api_change=release.has_breaking_api_change,
                all_checks_pass=all(check.status == CheckStatus.PASS for check in outcome.checks),
                readiness_warnings=tuple(outcome.warnings),
                advisory_level=outcome.advisory_risk_level,
            ),
            release_version=version,
        )
        risk_level = classification.level
        release.risk_level = risk_level.value
        db.flush()

        if plan_record is None or plan_record.risk_level != risk_level.value:
            previous_plan = plan_record
            plan = generate_rollback_plan(
                release_version=version,
                rollback_target=release.previous_version,
                risk_level=risk_level,
                change_profile=change_profile,
                risk_table=self.risk_table,
                oracle=self.oracle,
                oracle_timeout_seconds=self._oracle_timeout,
            )
            monitoring = build_monitoring_plan(
                release_version=version,
                risk_level=risk_level,
                risk_table=self.risk_table,
                oracle=self.oracle,
                oracle_timeout_seconds=self._oracle_timeout,
            )
            plan_record = save_rollback_plan(db, plan=plan, monitoring=monitoring)
            if previous_plan is None:
                append_release_event(
                    db,
                    release_version=version,
                    event_type="rollback_plan_created",
                    payload=rollback_plan_to_payload(plan_record, include_steps=False),
                )
            else:
                append_release_event(
                    db,
                    release_version=version,
                    event_type="rollback_plan_superseded",
                    payload={
                        **rollback_plan_to_payload(plan_record, include_steps=False),
                        "previous_revision": previous_plan.revision,
                        "previous_risk_level": previous_plan.risk_level,
                    },
                )
                emit_structured_log(
                    component="release_orchestrator",
                    event="rollback_plan_superseded",
                    release_version=version,
                    previous_risk_level=previous_plan.risk_level,
                    risk_level=risk_level.value,
                    revision=plan_record.revision,
                )
            db.flush()

        if outcome.recommendation == Recommendation.NO_GO:
            reason = (
                BlockedReasonCode.READINESS_UNRESOLVED if outcome.unresolved else BlockedReasonCode.READINESS_NO_GO
            )
            self._transition(
                db,
                release,
                ReleaseState.BLOCKED,
                blocked_reason=reason,
                detail="; ".join(outcome.blocking_issues) or None,
                actor_id=actor_id,
            )
            db.commit()
            return self._build_result(db, release, pass_kind=pass_kind)

        constraints = (review.constraints if review else None) or self.default_constraints()
        window = self._ensure_window(db, release, risk_level, constraints)
        if isinstance(window, NoWindowFound):
            self._transition(
                db,
                release,
                ReleaseState.BLOCKED,
                blocked_reason=BlockedReasonCode.NO_DEPLOYMENT_WINDOW,
                detail=window.reason,
                actor_id=actor_id,
            )
            db.commit()
            return self._build_result(db, release, pass_kind=pass_kind)

        ensure_release_flags(
            db,
            release_version=version,
            risk_level=risk_level,
            risk_table=self.risk_table,
            oracle=self.oracle,
            oracle_timeout_seconds=self._oracle_timeout,
            kill_switch_conditions=[str(trigger.get("condition")) for trigger in plan_record.triggers or []],
        )

        if outcome.recommendation == Recommendation.GO:
            self._ensure_ready_allowed(latest_readiness_evaluation(db=db, version=version))
            self._transition(db, release, ReleaseState.READY, actor_id=actor_id)
            self._transition(db, release, ReleaseState.WINDOW_SCHEDULED, actor_id=actor_id)
        db.commit()
        return self._build_result(db, release, pass_kind=pass_kind)

    def _ensure_window(
        self,
        db: Session,
        release: Release,
        risk_level: RiskLevel,
        constraints: SchedulingConstraints,
    ) -> DeploymentWindowRecord | NoWindowFound:
        version = release.version
        today = self._today()
        record = get_deployment_window(db=db, version=version)
        if record is not None:
            primary, backup = _window_slots(record)
            violations = stored_window_violations(
                primary, backup, risk_level=risk_level, constraints=constraints, today=today
            )
            if record.risk_level != risk_level.value:
                violations.append(f"risk_level_changed:{record.risk_level}->{risk_level.value}")
            if not violations:
                return record
            emit_structured_log(
                component="release_orchestrator",
                event="deployment_window_invalidated",
                level=logging.WARNING,
                release_version=version,
                violations=violations,
            )
            append_release_event(
                db,
                release_version=version,
                event_type="deployment_window_invalidated",
                payload={"violations": violations},
            )

        proposal = schedule_deployment_window(
            release_version=version,
            risk_level=risk_level,
            constraints=constraints,
            risk_table=self.risk_table,
            oracle=self.oracle,
            oracle_timeout_seconds=self._oracle_timeout,
            today=today,
            timezone_name=self.settings.deployment_timezone,
            lookahead_days=self.settings.schedule_lookahead_days,
            window_minutes=self.settings.deployment_window_minutes,
            max_oracle_attempts=self.settings.oracle_max_window_attempts,
        )
        if isinstance(proposal, NoWindowFound):
            if record is not None:
                db.delete(record)
            return proposal

        record = upsert_deployment_window(db, proposal=proposal)
        append_release_event(
            db,
            release_version=version,
            event_type="deployment_window_scheduled",
            payload={**window_to_payload(record), "source": proposal.source},
        )
        return record

    def _build_result(self, db: Session, release: Release, *, pass_kind: str) -> OrchestrationResult:
        evaluation = latest_readiness_evaluation(db=db, version=release.version)
        window = get_deployment_window(db=db, version=release.version)
        plan = get_rollback_plan(db=db, version=release.version)
        return OrchestrationResult(
            version=release.version,
            pass_kind=pass_kind,
            status=release.status,
            bump_type=release.bump_type,
            risk_level=release.risk_level,
            recommendation=evaluation.recommendation if evaluation else None,
            unresolved=bool(evaluation.unresolved) if evaluation else False,
            blocked_reason=release.blocked_reason,
            blocked_detail=release.blocked_detail,
            blocking_issues=list(evaluation.blocking_issues or []) if evaluation else [],
            warnings=list(evaluation.warnings or []) if evaluation else [],
            conditions=list(evaluation.conditions or []) if evaluation else [],
            changelog_summary=release.changelog_summary,
            window=window_to_payload(window) if window is not None else None,
            rollback=rollback_plan_to_payload(plan, include_steps=False) if plan is not None else None,
            flags=[flag.name for flag in list_flags(db=db, release_version=release.version)],
        )

    def _notify(self, db: Session, result: OrchestrationResult) -> None:
        try:
            self.notifier.send(db, result.summary())
        except Exception as exc:
            emit_structured_log(
                component="release_orchestrator",
                event="notification_failed",
                level=logging.WARNING,
                release_version=result.version,
                error=str(exc),
            )
        emit_structured_log(
            component="release_orchestrator",
            event="orchestration_pass_completed",
            release_version=result.version,
            pass_kind=result.pass_kind,
            status=result.status,
            recommendation=result.recommendation,
            blocked_reason=result.blocked_reason,
            error=result.error,
        )

    def _notify_failure(self, db: Session, *, version: str, pass_kind: str, exc: Exception) -> None:
        db.rollback()
        try:
            release = get_release(db=db, version=version)
        except SQLAlchemyError:
            db.rollback()
            release = None
        result = OrchestrationResult(
            version=version,
            pass_kind=pass_kind,
            status=release.status if release is not None else "unknown",
            bump_type=release.bump_type if release is not None else None,
            risk_level=release.risk_level if release is not None else None,
            blocked_reason=release.blocked_reason if release is not None else None,
            error=str(exc) or type(exc).__name__,
        )
        emit_structured_log(
            component="release_orchestrator",
            event="orchestration_pass_failed",
            level=logging.WARNING,
            release_version=version,
            pass_kind=pass_kind,
            error_type=type(exc).__name__,
            error=result.error,
        )
        self._notify(db, result)


def build_release_orchestrator(settings: Settings | None = None) -> ReleaseOrchestrator:
    resolved = settings or get_settings()
    return ReleaseOrchestrator(
        oracle=build_assessment_oracle(resolved),
        notifier=build_notification_channel(resolved),
        settings=resolved,
    )
