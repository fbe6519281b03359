from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import json


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _RISK_ORDER.index(self)


_RISK_ORDER = [RiskLevel.LOW, RiskLevel.MEDIUM, RiskLevel.HIGH, RiskLevel.CRITICAL]


def max_risk(*levels: RiskLevel | None) -> RiskLevel:
    present = [level for level in levels if level is not None]
    if not present:
        return RiskLevel.MEDIUM
    return max(present, key=lambda level: level.rank)


def coerce_risk_level(value: object) -> RiskLevel | None:
    if isinstance(value, RiskLevel):
        return value
    if not isinstance(value, str):
        return None
    try:
        return RiskLevel(value.strip().lower())
    except ValueError:
        return None


@dataclass(frozen=True)
class RiskProfile:
    label: str
    monitoring_hours: int
    rollback_threshold_minutes: int


class RiskTierTable:
    """Lookup of numeric parameters per risk tier, injected into planners and schedulers."""

    def __init__(self, profiles: dict[RiskLevel, RiskProfile]) -> None:
        missing = [level.value for level in RiskLevel if level not in profiles]
        if missing:
            raise ValueError(f"risk_tier_table_missing_levels:{','.join(missing)}")
        self._profiles = dict(profiles)

    def profile(self, level: RiskLevel | str) -> RiskProfile:
        return self._profiles[RiskLevel(level)]

    def monitoring_hours(self, level: RiskLevel | str) -> int:
        return self.profile(level).monitoring_hours

    def rollback_threshold_minutes(self, level: RiskLevel | str) -> int:
        return self.profile(level).rollback_threshold_minutes

    def to_payload(self) -> dict[str, dict[str, object]]:
        return {
            level.value: {
                "label": profile.label,
                "monitoring_hours": profile.monitoring_hours,
                "rollback_threshold_minutes": profile.rollback_threshold_minutes,
            }
            for level, profile in self._profiles.items()
        }


def default_risk_tier_table() -> RiskTierTable:
    return RiskTierTable(
        {
            RiskLevel.LOW: RiskProfile("Low Risk", monitoring_hours=2, rollback_threshold_minutes=30),
            RiskLevel.MEDIUM: RiskProfile("Medium Risk", monitoring_hours=6, rollback_threshold_minutes=15),
            RiskLevel.HIGH: RiskProfile("High Risk", monitoring_hours=24, rollback_threshold_minutes=5),
            RiskLevel.CRITICAL: RiskProfile("Critical Risk", monitoring_hours=48, rollback_threshold_minutes=2),
        }
    )


def risk_tier_table_from_json(raw: str | None) -> RiskTierTable:
    """Build a table from a JSON override; levels not mentioned keep their defaults."""
    table = default_risk_tier_table()
    if not raw:
        return table

    overrides = json.loads(raw)
    if not isinstance(overrides, dict):
        raise ValueError("risk_tier_table_json_must_be_object")

    profiles: dict[RiskLevel, RiskProfile] = {}
    for level in RiskLevel:
        base = table.profile(level)
        item = overrides.get(level.value) or {}
        profiles[level] = RiskProfile(
            label=str(item.get("label", base.label)),
            monitoring_hours=int(item.get("monitoring_hours", base.monitoring_hours)),
            rollback_threshold_minutes=int(item.get("rollback_threshold_minutes", base.rollback_threshold_minutes)),
        )
    return RiskTierTable(profiles)
