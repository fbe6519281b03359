from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any

from app.domain.risk import RiskLevel, RiskTierTable
from app.services.oracle import AssessmentOracle, consult_oracle

CHECK_INTERVAL_SECONDS = {
    RiskLevel.LOW: 120,
    RiskLevel.MEDIUM: 60,
    RiskLevel.HIGH: 30,
    RiskLevel.CRITICAL: 15,
}
ALERT_SEVERITIES = {"info", "warning", "critical", "page"}


@dataclass(frozen=True)
class MonitoringMetric:
    name: str
    warning_threshold: str
    critical_threshold: str
    check_interval_seconds: int


@dataclass(frozen=True)
class MonitoringAlert:
    name: str
    condition: str
    severity: str
    auto_rollback: bool = False


@dataclass(frozen=True)
class MonitoringPlan:
    release_version: str
    risk_level: RiskLevel
    monitoring_hours: int
    rollback_threshold_minutes: int
    metrics: list[MonitoringMetric] = field(default_factory=list)
    alerts: list[MonitoringAlert] = field(default_factory=list)
    all_clear_criteria: list[str] = field(default_factory=list)

    def to_payload(self) -> dict[str, Any]:
        return {
            "release_version": self.release_version,
            "risk_level": self.risk_level.value,
            "monitoring_hours": self.monitoring_hours,
            "rollback_threshold_minutes": self.rollback_threshold_minutes,
            "metrics": [asdict(metric) for metric in self.metrics],
            "alerts": [asdict(alert) for alert in self.alerts],
            "all_clear_criteria": list(self.all_clear_criteria),
        }


def _default_alerts(risk_level: RiskLevel, threshold_minutes: int) -> list[MonitoringAlert]:
    auto_rollback = risk_level in {RiskLevel.HIGH, RiskLevel.CRITICAL}
    return [
        MonitoringAlert(
            name="error_rate_critical",
            condition=f"Error rate above 2x baseline for {threshold_minutes} minutes",
            severity="critical",
            auto_rollback=auto_rollback,
        ),
        MonitoringAlert(
            name="health_check_failing",
            condition=f"Any health check failing for {threshold_minutes} minutes",
            severity="page",
            auto_rollback=auto_rollback,
        ),
        MonitoringAlert(
            name="latency_degraded",
            condition="p95 latency above 1.5x baseline",
            severity="warning",
        ),
    ]


def _oracle_alerts(raw: Any) -> list[MonitoringAlert]:
    if not isinstance(raw, list):
        return []
    alerts: list[MonitoringAlert] = []
    for item in raw:
        if not isinstance(item, dict):
            continue
        name = str(item.get("name") or "").strip()
        condition = str(item.get("condition") or "").strip()
        if not name or not condition:
            continue
        severity = str(item.get("severity") or "warning").strip().lower()
        alerts.append(
            MonitoringAlert(
                name=name,
                condition=condition,
                severity=severity if severity in ALERT_SEVERITIES else "warning",
                auto_rollback=bool(item.get("auto_rollback", False)),
            )
        )
    return alerts


def build_monitoring_plan(
    *,
    release_version: str,
    risk_level: RiskLevel,
    risk_table: RiskTierTable,
    oracle: AssessmentOracle,
    oracle_timeout_seconds: float,
) -> MonitoringPlan:
    profile = risk_table.profile(risk_level)
    interval = CHECK_INTERVAL_SECONDS[risk_level]
    metrics = [
        MonitoringMetric("error_rate", "1.5x baseline", "2x baseline", interval),
        MonitoringMetric("p95_latency_ms", "1.25x baseline", "1.5x baseline", interval),
        MonitoringMetric("availability", "< 99.9%", "< 99.5%", interval),
    ]
    alerts = _default_alerts(risk_level, profile.rollback_threshold_minutes)

    assessment = consult_oracle(
        oracle,
        {
            "kind": "monitoring",
            "version": release_version,
            "risk_level": risk_level.value,
            "monitoring_hours": profile.monitoring_hours,
            "rollback_threshold_minutes": profile.rollback_threshold_minutes,
        },
        timeout_seconds=oracle_timeout_seconds,
        release_version=release_version,
    )
    if assessment is not None:
        known = {alert.name for alert in alerts}
        for alert in _oracle_alerts(assessment.structured_fields.get("alerts")):
            if alert.name not in known:
                alerts.append(alert)
                known.add(alert.name)

    return MonitoringPlan(
        release_version=release_version,
        risk_level=risk_level,
        monitoring_hours=profile.monitoring_hours,
        rollback_threshold_minutes=profile.rollback_threshold_minutes,
        metrics=metrics,
        alerts=alerts,
        all_clear_criteria=[
            f"No critical alert fired during the {profile.monitoring_hours}h monitoring window",
            "Error rate and latency within baseline at window end",
        ],
    )
