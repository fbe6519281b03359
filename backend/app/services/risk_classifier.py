from __future__ import annotations

from dataclasses import dataclass

from app.domain.risk import RiskLevel, max_risk
from app.domain.semver import BumpType
from app.services.observability import emit_structured_log


@dataclass(frozen=True)
class RiskSignals:
    total_changes: int
    bump_type: BumpType
    has_db_migration: bool = False
    has_irreversible_schema_change: bool = False
    has_api_change: bool = False
    has_breaking_api_change: bool = False
    all_checks_pass: bool = False
    readiness_warnings: tuple[str, ...] = ()
    advisory_level: RiskLevel | None = None


@dataclass(frozen=True)
class RiskClassification:
    level: RiskLevel
    floor: RiskLevel
    reasons: list[str]


def risk_floor(signals: RiskSignals) -> tuple[RiskLevel, list[str]]:
    if signals.has_db_migration or signals.has_irreversible_schema_change:
        return RiskLevel.HIGH, ["data migration or schema change present"]
    if signals.has_breaking_api_change:
        return RiskLevel.MEDIUM, ["breaking API change present"]

    narrow_to_low = (
        not signals.has_api_change
        and signals.bump_type == BumpType.PATCH
        and signals.all_checks_pass
        and not signals.readiness_warnings
    )
    if narrow_to_low:
        return RiskLevel.LOW, ["patch-only change set with no migrations, no API changes and all checks passing"]
    return RiskLevel.MEDIUM, ["default tier"]


def classify_risk(signals: RiskSignals, *, release_version: str | None = None) -> RiskClassification:
    """Deterministic floor first; the oracle's advisory tier may only raise it."""
    floor, reasons = risk_floor(signals)
    level = max_risk(floor, signals.advisory_level)
    if level != floor:
        reasons = reasons + [f"raised to {level.value} by advisory assessment"]

    emit_structured_log(
        component="risk_classifier",
        event="risk_classified",
        release_version=release_version,
        risk_level=level.value,
        floor=floor.value,
        advisory_level=signals.advisory_level.value if signals.advisory_level else None,
    )
    return RiskClassification(level=level, floor=floor, reasons=reasons)
