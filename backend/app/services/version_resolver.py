from __future__ import annotations

from dataclasses import dataclass
import logging

from app.domain.changes import ChangeRecord
from app.domain.semver import BumpType, bump_version
from app.services.observability import emit_structured_log
from app.services.oracle import AssessmentOracle, consult_oracle

ORACLE_CHANGE_LIMIT = 30


@dataclass(frozen=True)
class VersionResolution:
    bump_type: BumpType
    rule_bump_type: BumpType
    current_version: str
    new_version: str
    overridden: bool = False
    confidence: float | None = None
    rationale: str | None = None


def rule_based_bump(changes: list[ChangeRecord]) -> BumpType:
    if any(change.is_breaking for change in changes):
        return BumpType.MAJOR
    if any(change.is_feature for change in changes):
        return BumpType.MINOR
    return BumpType.PATCH


def _oracle_context(changes: list[ChangeRecord], rule_bump: BumpType, current_version: str) -> dict:
    return {
        "kind": "version_bump",
        "current_version": current_version,
        "rule_based_bump": rule_bump.value,
        "total_changes": len(changes),
        "has_breaking": any(change.is_breaking for change in changes),
        "has_feature": any(change.is_feature for change in changes),
        "has_fix": any(change.is_fix for change in changes),
        "changes": [change.compact() for change in changes[:ORACLE_CHANGE_LIMIT]],
    }


def resolve_version(
    *,
    changes: list[ChangeRecord],
    current_version: str,
    oracle: AssessmentOracle,
    oracle_timeout_seconds: float,
    pre_release: str | None = None,
) -> VersionResolution:
    rule_bump = rule_based_bump(changes)
    final_bump = rule_bump
    overridden = False
    confidence: float | None = None
    rationale: str | None = None

    assessment = consult_oracle(
        oracle,
        _oracle_context(changes, rule_bump, current_version),
        timeout_seconds=oracle_timeout_seconds,
    )
    if assessment is not None:
        confidence = assessment.confidence
        rationale = assessment.rationale
        fields = assessment.structured_fields
        if fields.get("override") is True:
            try:
                final_bump = BumpType(str(fields.get("bump_type", "")).strip().lower())
                overridden = final_bump != rule_bump
            except ValueError:
                emit_structured_log(
                    component="version_resolver",
                    event="oracle_override_ignored",
                    level=logging.WARNING,
                    bump_type=fields.get("bump_type"),
                )

    new_version = bump_version(current_version, final_bump, pre_release)
    emit_structured_log(
        component="version_resolver",
        event="version_bump_determined",
        release_version=new_version,
        current_version=current_version,
        bump_type=final_bump.value,
        rule_bump_type=rule_bump.value,
        overridden=overridden,
        total_changes=len(changes),
    )
    return VersionResolution(
        bump_type=final_bump,
        rule_bump_type=rule_bump,
        current_version=current_version,
        new_version=new_version,
        overridden=overridden,
        confidence=confidence,
        rationale=rationale,
    )
