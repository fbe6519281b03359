from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
import logging
from typing import Callable

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.domain.risk import RiskLevel, coerce_risk_level
from app.models import Defect, FeatureFlag, ReleaseItem
from app.services.observability import emit_structured_log
from app.services.oracle import AssessmentOracle, consult_oracle

# Bump whenever a check is added, removed, or changes its blocking flag.
CHECK_CATALOG_VERSION = 1

BLOCKER_SEVERITIES = {"p0", "p1", "critical", "high"}
OPEN_DEFECT_STATUSES = {"open", "in_progress", "in progress"}
COMPLETE_ITEM_STATUSES = {"complete", "completed", "shipped"}


class CheckStatus(str, Enum):
    PASS = "pass"
    WARN = "warn"
    FAIL = "fail"
    UNKNOWN = "unknown"


class Recommendation(str, Enum):
    GO = "GO"
    CONDITIONAL_GO = "CONDITIONAL-GO"
    NO_GO = "NO-GO"


@dataclass(frozen=True)
class CheckDefinition:
    name: str
    title: str
    blocking: bool
    condition: str


CHECK_CATALOG: tuple[CheckDefinition, ...] = (
    CheckDefinition("no_open_blockers", "No P0/P1 open blockers", True, "Resolve all open P0/P1 defects"),
    CheckDefinition("release_items_complete", "All release items complete", True, "Complete or ship every release item"),
    CheckDefinition("feature_flags_configured", "Feature flags configured", False, "Configure every release feature flag"),
    CheckDefinition("test_suite_passes", "Test suite passes", True, "Confirm the test suite passes"),
    CheckDefinition("changelog_generated", "Changelog generated", False, "Generate the changelog"),
    CheckDefinition("rollback_plan_ready", "Rollback plan ready", True, "Create the rollback plan"),
    CheckDefinition(
        "rollback_within_target",
        "Rollback within target time",
        False,
        "Shorten the rollback procedure below the risk tier threshold",
    ),
    CheckDefinition(
        "deployment_window_scheduled",
        "Deployment window scheduled",
        False,
        "Schedule a deployment window",
    ),
    CheckDefinition("stakeholder_sign_off", "Stakeholder sign-off", False, "Obtain stakeholder sign-off"),
)

CATALOG_BY_NAME = {definition.name: definition for definition in CHECK_CATALOG}


@dataclass(frozen=True)
class ReadinessInputs:
    """Everything the predicate table looks at.

    ``None`` for a store-derived list means the record store could not be read,
    which turns the corresponding check into ``unknown``.
    """

    open_blocker_titles: list[str] | None = field(default_factory=list)
    release_item_statuses: list[str] | None = field(default_factory=list)
    feature_flags_configured: list[bool] | None = field(default_factory=list)
    tests_passing: bool | None = None
    test_coverage: float | None = None
    changelog_generated: bool = False
    rollback_plan_ready: bool = False
    rollback_estimate_minutes: int | None = None
    rollback_threshold_minutes: int | None = None
    deployment_window_scheduled: bool = False
    deployment_window_label: str | None = None
    signed_off: bool = False
    signed_off_by: str | None = None


@dataclass(frozen=True)
class CheckResult:
    name: str
    status: CheckStatus
    blocking: bool
    detail: str

    @property
    def title(self) -> str:
        definition = CATALOG_BY_NAME.get(self.name)
        return definition.title if definition else self.name


@dataclass(frozen=True)
class ReadinessOutcome:
    checks: list[CheckResult]
    recommendation: Recommendation
    blocking_issues: list[str]
    warnings: list[str]
    conditions: list[str]
    unresolved: bool = False
    advisory_risk_level: RiskLevel | None = None
    risk_narrative: str | None = None

    @property
    def summary(self) -> dict[str, int]:
        counts = {status.value: 0 for status in CheckStatus}
        for check in self.checks:
            counts[check.status.value] += 1
        return counts


def _check_open_blockers(inputs: ReadinessInputs) -> tuple[CheckStatus, str]:
    if inputs.open_blocker_titles is None:
        return CheckStatus.UNKNOWN, "Defect records unavailable"
    if not inputs.open_blocker_titles:
        return CheckStatus.PASS, "No critical or high severity bugs are open"
    titles = ", ".join(inputs.open_blocker_titles)
    return CheckStatus.FAIL, f"{len(inputs.open_blocker_titles)} P0/P1 bugs still open: {titles}"


def _check_release_items(inputs: ReadinessInputs) -> tuple[CheckStatus, str]:
    statuses = inputs.release_item_statuses
    if statuses is None:
        return CheckStatus.UNKNOWN, "Release item records unavailable"
    complete = sum(1 for status in statuses if status.strip().lower() in COMPLETE_ITEM_STATUSES)
    detail = f"{complete}/{len(statuses)} items complete"
    if complete == len(statuses):
        return CheckStatus.PASS, detail
    if complete > 0:
        return CheckStatus.WARN, detail
    return CheckStatus.FAIL, detail


def _check_feature_flags(inputs: ReadinessInputs) -> tuple[CheckStatus, str]:
    flags = inputs.feature_flags_configured
    if flags is None:
        return CheckStatus.UNKNOWN, "Feature flag records unavailable"
    configured = sum(1 for item in flags if item)
    detail = f"{configured}/{len(flags)} flags configured"
    return (CheckStatus.PASS if configured == len(flags) else CheckStatus.WARN), detail


def _check_tests(inputs: ReadinessInputs) -> tuple[CheckStatus, str]:
    if inputs.test_coverage is not None:
        detail = f"Coverage: {inputs.test_coverage}%"
    else:
        detail = "Test status unknown - manual verification needed"
    if inputs.tests_passing is True:
        return CheckStatus.PASS, detail
    if inputs.tests_passing is False:
        return CheckStatus.FAIL, detail
    return CheckStatus.UNKNOWN, detail


def _check_changelog(inputs: ReadinessInputs) -> tuple[CheckStatus, str]:
    if inputs.changelog_generated:
        return CheckStatus.PASS, "Changelog has been generated"
    return CheckStatus.FAIL, "Changelog not yet generated"


def _check_rollback_plan(inputs: ReadinessInputs) -> tuple[CheckStatus, str]:
    if inputs.rollback_plan_ready:
        return CheckStatus.PASS, "Rollback plan is documented"
    return CheckStatus.FAIL, "Rollback plan not yet created"


def _check_rollback_speed(inputs: ReadinessInputs) -> tuple[CheckStatus, str]:
    estimate = inputs.rollback_estimate_minutes
    threshold = inputs.rollback_threshold_minutes
    if estimate is None or threshold is None:
        return CheckStatus.UNKNOWN, "No rollback estimate available yet"
    detail = f"Estimated rollback {estimate}min against {threshold}min threshold"
    if estimate <= threshold:
        return CheckStatus.PASS, detail
    return CheckStatus.WARN, detail


def _check_deployment_window(inputs: ReadinessInputs) -> tuple[CheckStatus, str]:
    if inputs.deployment_window_scheduled:
        label = inputs.deployment_window_label or "a confirmed window"
        return CheckStatus.PASS, f"Scheduled for {label}"
    return CheckStatus.WARN, "No deployment window scheduled"


def _check_sign_off(inputs: ReadinessInputs) -> tuple[CheckStatus, str]:
    if inputs.signed_off:
        return CheckStatus.PASS, f"Signed off by: {inputs.signed_off_by or 'stakeholders'}"
    return CheckStatus.WARN, "Awaiting stakeholder sign-off"


PREDICATES: dict[str, Callable[[ReadinessInputs], tuple[CheckStatus, str]]] = {
    "no_open_blockers": _check_open_blockers,
    "release_items_complete": _check_release_items,
    "feature_flags_configured": _check_feature_flags,
    "test_suite_passes": _check_tests,
    "changelog_generated": _check_changelog,
    "rollback_plan_ready": _check_rollback_plan,
    "rollback_within_target": _check_rollback_speed,
    "deployment_window_scheduled": _check_deployment_window,
    "stakeholder_sign_off": _check_sign_off,
}


def evaluate_checks(inputs: ReadinessInputs) -> list[CheckResult]:
    results: list[CheckResult] = []
    for definition in CHECK_CATALOG:
        status, detail = PREDICATES[definition.name](inputs)
        results.append(
            CheckResult(name=definition.name, status=status, blocking=definition.blocking, detail=detail)
        )
    return results


def aggregate_checks(checks: list[CheckResult]) -> ReadinessOutcome:
    blocking_failures = [check for check in checks if check.blocking and check.status == CheckStatus.FAIL]
    blocking_unknown = [check for check in checks if check.blocking and check.status == CheckStatus.UNKNOWN]
    needs_attention = [
        check
        for check in checks
        if check.status == CheckStatus.WARN or (not check.blocking and check.status != CheckStatus.PASS)
    ]

    blocking_issues = [f"{check.title}: {check.detail}" for check in blocking_failures + blocking_unknown]
    warnings = [f"{check.title}: {check.detail}" for check in needs_attention]

    if blocking_failures:
        recommendation = Recommendation.NO_GO
        conditions: list[str] = []
    elif blocking_unknown:
        recommendation = Recommendation.NO_GO
        conditions = []
    elif needs_attention:
        recommendation = Recommendation.CONDITIONAL_GO
        conditions = [
            CATALOG_BY_NAME[check.name].condition if check.name in CATALOG_BY_NAME else f"Resolve {check.name}"
            for check in needs_attention
        ]
    else:
        recommendation = Recommendation.GO
        conditions = []

    return ReadinessOutcome(
        checks=list(checks),
        recommendation=recommendation,
        blocking_issues=blocking_issues,
        warnings=warnings,
        conditions=conditions,
        unresolved=bool(blocking_unknown) and not blocking_failures,
    )


def evaluate_readiness(
    *,
    version: str,
    inputs: ReadinessInputs,
    oracle: AssessmentOracle,
    oracle_timeout_seconds: float,
) -> ReadinessOutcome:
    outcome = aggregate_checks(evaluate_checks(inputs))

    assessment = consult_oracle(
        oracle,
        {
            "kind": "readiness",
            "version": version,
            "recommendation": outcome.recommendation.value,
            "checks": [
                {"name": check.name, "status": check.status.value, "blocking": check.blocking, "detail": check.detail}
                for check in outcome.checks
            ],
        },
        timeout_seconds=oracle_timeout_seconds,
        release_version=version,
    )
    advisory: RiskLevel | None = None
    narrative: str | None = None
    if assessment is not None:
        advisory = coerce_risk_level(assessment.structured_fields.get("risk_level"))
        narrative = assessment.rationale

    emit_structured_log(
        component="readiness_gate",
        event="readiness_evaluated",
        release_version=version,
        recommendation=outcome.recommendation.value,
        unresolved=outcome.unresolved,
        advisory_risk_level=advisory.value if advisory else None,
        **outcome.summary,
    )
    return ReadinessOutcome(
        checks=outcome.checks,
        recommendation=outcome.recommendation,
        blocking_issues=outcome.blocking_issues,
        warnings=outcome.warnings,
        conditions=outcome.conditions,
        unresolved=outcome.unresolved,
        advisory_risk_level=advisory,
        risk_narrative=narrative,
    )


@dataclass(frozen=True)
class StoreReadinessData:
    open_blocker_titles: list[str] | None
    release_item_statuses: list[str] | None
    feature_flags_configured: list[bool] | None


def _log_store_failure(version: str, source: str, exc: SQLAlchemyError) -> None:
    emit_structured_log(
        component="readiness_gate",
        event="record_store_read_failed",
        level=logging.WARNING,
        release_version=version,
        source=source,
        error=str(exc),
    )


def load_store_readiness_data(db: Session, version: str) -> StoreReadinessData:
    blockers: list[str] | None
    try:
        defects = (
            db.query(Defect)
            .filter(
                func.lower(Defect.severity).in_(sorted(BLOCKER_SEVERITIES)),
                func.lower(Defect.status).in_(sorted(OPEN_DEFECT_STATUSES)),
            )
            .order_by(Defect.id.asc())
            .all()
        )
        blockers = [defect.title for defect in defects]
    except SQLAlchemyError as exc:
        db.rollback()
        _log_store_failure(version, "defects", exc)
        blockers = None

    item_statuses: list[str] | None
    try:
        items = db.query(ReleaseItem).filter(ReleaseItem.release_version == version).all()
        item_statuses = [item.status for item in items]
    except SQLAlchemyError as exc:
        db.rollback()
        _log_store_failure(version, "release_items", exc)
        item_statuses = None

    flags_configured: list[bool] | None
    try:
        flags = db.query(FeatureFlag).filter(FeatureFlag.release_version == version).all()
        flags_configured = [bool(flag.configured) for flag in flags]
    except SQLAlchemyError as exc:
        db.rollback()
        _log_store_failure(version, "feature_flags", exc)
        flags_configured = None

    return StoreReadinessData(
        open_blocker_titles=blockers,
        release_item_statuses=item_statuses,
        feature_flags_configured=flags_configured,
    )
