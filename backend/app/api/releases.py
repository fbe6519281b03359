from __future__ import annotations

from datetime import date, datetime
from typing import Any, Literal

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from app.db.session import get_db_session
from app.domain.changes import ChangeRecord
from app.domain.release_state_machine import ReleaseInvariantError, TransitionRuleError
from app.domain.semver import InvalidVersionError
from app.services.deployment_scheduler import SchedulingConstraints, parse_availability
from app.services.release_orchestrator import (
    OrchestrationResult,
    PrepareReleaseRequest,
    ReadinessReview,
    ReleaseOrchestrator,
    build_release_orchestrator,
)
from app.services.release_registry import (
    evaluation_to_payload,
    get_deployment_window,
    get_release,
    get_rollback_plan,
    latest_readiness_evaluation,
    list_release_events,
    list_releases,
    rollback_plan_to_payload,
    window_to_payload,
)

router = APIRouter(prefix="/api/releases", tags=["releases"])

NOT_FOUND_CODES = {"release_not_found", "flag_not_found"}


def get_release_orchestrator() -> ReleaseOrchestrator:
    return build_release_orchestrator()


def value_error_to_http(exc: ValueError) -> HTTPException:
    message = str(exc)
    if isinstance(exc, (TransitionRuleError, ReleaseInvariantError)):
        return HTTPException(status_code=409, detail=message)
    if message in NOT_FOUND_CODES:
        return HTTPException(status_code=404, detail=message)
    if isinstance(exc, InvalidVersionError):
        return HTTPException(status_code=422, detail=message)
    if message in {"flag_kill_switch_active", "flag_archived", "release_not_deployed", "flag_not_cleanup_eligible"}:
        return HTTPException(status_code=409, detail=message)
    return HTTPException(status_code=400, detail=message)


class ChangeBody(BaseModel):
    type: str = ""
    description: str = ""
    breaking: bool = False
    has_db_migration: bool = False
    has_api_change: bool = False
    migration_name: str | None = None


class ReleaseItemBody(BaseModel):
    name: str
    status: str = "planned"
    description: str | None = None
    needs_feature_flag: bool = False
    risk_level: str | None = None


class ConstraintsBody(BaseModel):
    blackout_dates: list[date] = Field(default_factory=list)
    unavailable_dates: list[date] = Field(default_factory=list)
    preferred_days: list[str] | None = None
    team_availability: str | None = None
    earliest_date: date | None = None


class ReviewBody(BaseModel):
    tests_passing: bool | None = None
    test_coverage: float | None = None
    signed_off_by: str | None = None
    constraints: ConstraintsBody | None = None
    actor_id: str | None = None


class PrepareReleaseBody(ReviewBody):
    current_version: str
    changes: list[ChangeBody]
    pre_release: str | None = None
    release_items: list[ReleaseItemBody] = Field(default_factory=list)
    has_irreversible_schema_change: bool = False


class ResolveConditionalGoBody(BaseModel):
    decision: Literal["go", "no_go"]
    reviewer_id: str
    reason: str | None = None


class DeployedBody(BaseModel):
    actor_id: str | None = None


class RolledBackBody(BaseModel):
    reason: str
    actor_id: str | None = None


class ReleaseResponse(BaseModel):
    version: str
    previous_version: str
    bump_type: str
    pre_release: str | None
    risk_level: str | None
    status: str
    blocked_reason: str | None
    blocked_detail: str | None
    total_changes: int
    has_db_migration: bool
    has_api_change: bool
    tests_passing: bool | None
    signed_off_by: str | None
    changelog_summary: str | None
    created_at: datetime
    updated_at: datetime
    deployed_at: datetime | None


class OrchestrationResponse(BaseModel):
    version: str
    pass_kind: str
    status: str
    bump_type: str | None
    risk_level: str | None
    recommendation: str | None
    unresolved: bool
    blocked_reason: str | None
    blocked_detail: str | None
    blocking_issues: list[str]
    warnings: list[str]
    conditions: list[str]
    changelog_summary: str | None
    window: dict[str, Any] | None
    rollback: dict[str, Any] | None
    flags: list[str]
    version_overridden: bool
    error: str | None = None


class ReadinessCheckResponse(BaseModel):
    name: str
    status: str
    blocking: bool
    detail: str | None


class ReadinessResponse(BaseModel):
    release_version: str
    catalog_version: int
    recommendation: str
    unresolved: bool
    blocking_issues: list[str]
    warnings: list[str]
    conditions: list[str]
    advisory_risk_level: str | None
    risk_narrative: str | None
    evaluated_at: datetime | None
    checks: list[ReadinessCheckResponse]


class ReleaseEventResponse(BaseModel):
    id: int
    event_type: str
    status_from: str | None
    status_to: str | None
    payload: dict[str, Any] | None
    created_at: datetime


def _to_release_response(item) -> ReleaseResponse:
    return ReleaseResponse(
        version=item.version,
        previous_version=item.previous_version,
        bump_type=item.bump_type,
        pre_release=item.pre_release,
        risk_level=item.risk_level,
        status=item.status,
        blocked_reason=item.blocked_reason,
        blocked_detail=item.blocked_detail,
        total_changes=item.total_changes,
        has_db_migration=item.has_db_migration,
        has_api_change=item.has_api_change,
        tests_passing=item.tests_passing,
        signed_off_by=item.signed_off_by,
        changelog_summary=item.changelog_summary,
        created_at=item.created_at,
        updated_at=item.updated_at,
        deployed_at=item.deployed_at,
    )


def _to_orchestration_response(result: OrchestrationResult) -> OrchestrationResponse:
    return OrchestrationResponse(**result.to_payload())


def _review_from_body(body: ReviewBody, orchestrator: ReleaseOrchestrator) -> ReadinessReview:
    constraints: SchedulingConstraints | None = None
    if body.constraints is not None:
        defaults = orchestrator.default_constraints()
        try:
            availability = (
                parse_availability(body.constraints.team_availability)
                if body.constraints.team_availability
                else defaults.team_availability
            )
        except ValueError as exc:
            raise HTTPException(status_code=422, detail=f"invalid_team_availability:{exc}") from exc
        constraints = SchedulingConstraints(
            blackout_dates=frozenset(body.constraints.blackout_dates),
            unavailable_dates=frozenset(body.constraints.unavailable_dates),
            preferred_days=(
                tuple(day.strip().lower() for day in body.constraints.preferred_days if day.strip())
                if body.constraints.preferred_days is not None
                else defaults.preferred_days
            ),
            team_availability=availability,
            earliest_date=body.constraints.earliest_date,
        )
    return ReadinessReview(
        tests_passing=body.tests_passing,
        test_coverage=body.test_coverage,
        signed_off_by=body.signed_off_by,
        constraints=constraints,
    )


def _get_release_or_404(db: Session, version: str):
    record = get_release(db=db, version=version)
    if record is None:
        raise HTTPException(status_code=404, detail="Release not found")
    return record


@router.get("", response_model=list[ReleaseResponse])
def get_releases(
    limit: int = Query(default=100, ge=1, le=500),
    status: str | None = Query(default=None),
    db: Session = Depends(get_db_session),
) -> list[ReleaseResponse]:
    records = list_releases(db=db, limit=limit, status=status)
    return [_to_release_response(item) for item in records]


@router.post("", response_model=OrchestrationResponse)
def prepare_release(
    body: PrepareReleaseBody,
    db: Session = Depends(get_db_session),
    orchestrator: ReleaseOrchestrator = Depends(get_release_orchestrator),
) -> OrchestrationResponse:
    request = PrepareReleaseRequest(
        current_version=body.current_version,
        changes=[ChangeRecord(**change.model_dump()) for change in body.changes],
        pre_release=body.pre_release,
        release_items=[item.model_dump() for item in body.release_items],
        review=_review_from_body(body, orchestrator),
        has_irreversible_schema_change=body.has_irreversible_schema_change,
        actor_id=body.actor_id,
    )
    try:
        result = orchestrator.prepare_release(db, request)
    except ValueError as exc:
        db.rollback()
        raise value_error_to_http(exc) from exc
    return _to_orchestration_response(result)


@router.get("/{version}", response_model=ReleaseResponse)
def get_release_detail(version: str, db: Session = Depends(get_db_session)) -> ReleaseResponse:
    return _to_release_response(_get_release_or_404(db, version))


@router.post("/{version}/readiness", response_model=OrchestrationResponse)
def reevaluate_release(
    version: str,
    body: ReviewBody | None = None,
    db: Session = Depends(get_db_session),
    orchestrator: ReleaseOrchestrator = Depends(get_release_orchestrator),
) -> OrchestrationResponse:
    review_body = body or ReviewBody()
    try:
        result = orchestrator.reevaluate_release(
            db,
            version=version,
            review=_review_from_body(review_body, orchestrator),
            actor_id=review_body.actor_id,
        )
    except ValueError as exc:
        db.rollback()
        raise value_error_to_http(exc) from exc
    return _to_orchestration_response(result)


@router.get("/{version}/readiness", response_model=ReadinessResponse)
def get_latest_readiness(version: str, db: Session = Depends(get_db_session)) -> ReadinessResponse:
    _get_release_or_404(db, version)
    evaluation = latest_readiness_evaluation(db=db, version=version)
    if evaluation is None:
        raise HTTPException(status_code=404, detail="Readiness evaluation not found")
    return ReadinessResponse(**evaluation_to_payload(evaluation))


@router.post("/{version}/resolve", response_model=OrchestrationResponse)
def resolve_conditional_go(
    version: str,
    body: ResolveConditionalGoBody,
    db: Session = Depends(get_db_session),
    orchestrator: ReleaseOrchestrator = Depends(get_release_orchestrator),
) -> OrchestrationResponse:
    try:
        result = orchestrator.resolve_conditional_go(
            db,
            version=version,
            decision=body.decision,
            reviewer_id=body.reviewer_id,
            reason=body.reason,
        )
    except ValueError as exc:
        db.rollback()
        raise value_error_to_http(exc) from exc
    return _to_orchestration_response(result)


@router.post("/{version}/deployed", response_model=OrchestrationResponse)
def mark_deployed(
    version: str,
    body: DeployedBody | None = None,
    db: Session = Depends(get_db_session),
    orchestrator: ReleaseOrchestrator = Depends(get_release_orchestrator),
) -> OrchestrationResponse:
    try:
        result = orchestrator.mark_deployed(db, version=version, actor_id=body.actor_id if body else None)
    except ValueError as exc:
        db.rollback()
        raise value_error_to_http(exc) from exc
    return _to_orchestration_response(result)


@router.post("/{version}/rolled-back", response_model=OrchestrationResponse)
def mark_rolled_back(
    version: str,
    body: RolledBackBody,
    db: Session = Depends(get_db_session),
    orchestrator: ReleaseOrchestrator = Depends(get_release_orchestrator),
) -> OrchestrationResponse:
    try:
        result = orchestrator.mark_rolled_back(db, version=version, reason=body.reason, actor_id=body.actor_id)
    except ValueError as exc:
        db.rollback()
        raise value_error_to_http(exc) from exc
    return _to_orchestration_response(result)


@router.get("/{version}/rollback-plan", response_model=dict[str, Any])
def get_release_rollback_plan(version: str, db: Session = Depends(get_db_session)) -> dict[str, Any]:
    _get_release_or_404(db, version)
    plan = get_rollback_plan(db=db, version=version)
    if plan is None:
        raise HTTPException(status_code=404, detail="Rollback plan not found")
    return rollback_plan_to_payload(plan)


@router.get("/{version}/window", response_model=dict[str, Any])
def get_release_window(version: str, db: Session = Depends(get_db_session)) -> dict[str, Any]:
    _get_release_or_404(db, version)
    window = get_deployment_window(db=db, version=version)
    if window is None:
        raise HTTPException(status_code=404, detail="Deployment window not found")
    return window_to_payload(window)


@router.get("/{version}/events", response_model=list[ReleaseEventResponse])
def get_release_events(
    version: str,
    limit: int = Query(default=200, ge=1, le=1000),
    db: Session = Depends(get_db_session),
) -> list[ReleaseEventResponse]:
    _get_release_or_404(db, version)
    return [
        ReleaseEventResponse(
            id=event.id,
            event_type=event.event_type,
            status_from=event.status_from,
            status_to=event.status_to,
            payload=event.payload,
            created_at=event.created_at,
        )
        for event in list_release_events(db=db, version=version, limit=limit)
    ]
