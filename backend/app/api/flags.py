from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.api.releases import get_release_orchestrator, value_error_to_http
from app.db.session import get_db_session
from app.services.feature_flags import cleanup_candidates, flag_state, start_rollout, trip_kill_switch
from app.services.release_orchestrator import ReleaseOrchestrator
from app.services.release_registry import archive_flag, get_flag, list_flags

router = APIRouter(prefix="/api/flags", tags=["flags"])


class KillSwitchBody(BaseModel):
    reason: str
    actor_id: str | None = None


class ArchiveBody(BaseModel):
    actor_id: str | None = None


class FeatureFlagResponse(BaseModel):
    name: str
    feature: str
    release_version: str
    state: str
    rollout_strategy: str
    phases: list[dict[str, Any]]
    current_phase_index: int
    current_percentage: int
    enabled: bool
    kill_switch_conditions: list[str]
    kill_switch_tripped: bool
    kill_switch_reason: str | None
    phase_started_at: datetime | None
    full_rollout_date: datetime | None
    archived_at: datetime | None


class FlagScanResponse(BaseModel):
    scanned: int
    advanced: list[dict[str, Any]]
    held: list[dict[str, Any]]
    cleanup_candidates: list[str]


def _to_flag_response(flag) -> FeatureFlagResponse:
    return FeatureFlagResponse(
        name=flag.name,
        feature=flag.feature,
        release_version=flag.release_version,
        state=flag_state(flag),
        rollout_strategy=flag.rollout_strategy,
        phases=list(flag.phases or []),
        current_phase_index=flag.current_phase_index,
        current_percentage=flag.current_percentage,
        enabled=flag.enabled,
        kill_switch_conditions=list(flag.kill_switch_conditions or []),
        kill_switch_tripped=flag.kill_switch_tripped,
        kill_switch_reason=flag.kill_switch_reason,
        phase_started_at=flag.phase_started_at,
        full_rollout_date=flag.full_rollout_date,
        archived_at=flag.archived_at,
    )


@router.get("", response_model=list[FeatureFlagResponse])
def get_flags(
    release_version: str | None = Query(default=None),
    include_archived: bool = Query(default=False),
    db: Session = Depends(get_db_session),
) -> list[FeatureFlagResponse]:
    flags = list_flags(db=db, release_version=release_version, include_archived=include_archived)
    return [_to_flag_response(flag) for flag in flags]


@router.get("/cleanup-candidates", response_model=list[FeatureFlagResponse])
def get_cleanup_candidates(
    db: Session = Depends(get_db_session),
    orchestrator: ReleaseOrchestrator = Depends(get_release_orchestrator),
) -> list[FeatureFlagResponse]:
    flags = cleanup_candidates(db, age_days=orchestrator.settings.flag_cleanup_age_days, now=orchestrator.clock())
    return [_to_flag_response(flag) for flag in flags]


@router.post("/scan", response_model=FlagScanResponse)
def scan_flags(
    db: Session = Depends(get_db_session),
    orchestrator: ReleaseOrchestrator = Depends(get_release_orchestrator),
) -> FlagScanResponse:
    return FlagScanResponse(**orchestrator.scan_feature_flags(db).to_payload())


@router.get("/{flag_name}", response_model=FeatureFlagResponse)
def get_flag_detail(flag_name: str, db: Session = Depends(get_db_session)) -> FeatureFlagResponse:
    flag = get_flag(db=db, name=flag_name)
    if flag is None:
        raise HTTPException(status_code=404, detail="Feature flag not found")
    return _to_flag_response(flag)


@router.post("/{flag_name}/start", response_model=FeatureFlagResponse)
def start_flag_rollout(
    flag_name: str,
    db: Session = Depends(get_db_session),
    orchestrator: ReleaseOrchestrator = Depends(get_release_orchestrator),
) -> FeatureFlagResponse:
    try:
        flag = start_rollout(db, flag_name=flag_name, now=orchestrator.clock())
    except ValueError as exc:
        db.rollback()
        raise value_error_to_http(exc) from exc
    return _to_flag_response(flag)


@router.post("/{flag_name}/kill", response_model=FeatureFlagResponse)
def kill_flag(flag_name: str, body: KillSwitchBody, db: Session = Depends(get_db_session)) -> FeatureFlagResponse:
    try:
        flag = trip_kill_switch(db, flag_name=flag_name, reason=body.reason, actor_id=body.actor_id)
    except ValueError as exc:
        db.rollback()
        raise value_error_to_http(exc) from exc
    return _to_flag_response(flag)


@router.post("/{flag_name}/archive", response_model=FeatureFlagResponse)
def archive_feature_flag(
    flag_name: str,
    body: ArchiveBody | None = None,
    db: Session = Depends(get_db_session),
    orchestrator: ReleaseOrchestrator = Depends(get_release_orchestrator),
) -> FeatureFlagResponse:
    try:
        flag = archive_flag(
            db=db,
            flag_name=flag_name,
            age_days=orchestrator.settings.flag_cleanup_age_days,
            actor_id=body.actor_id if body else None,
            now=orchestrator.clock(),
        )
    except ValueError as exc:
        db.rollback()
        raise value_error_to_http(exc) from exc
    return _to_flag_response(flag)
