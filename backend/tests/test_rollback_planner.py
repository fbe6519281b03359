from __future__ import annotations

from pathlib import Path
import sys
import unittest

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

from app.domain.changes import ChangeSetProfile
from app.domain.risk import RiskLevel, default_risk_tier_table
from app.services.monitoring import build_monitoring_plan
from app.services.oracle import DisabledAssessmentOracle, OracleAssessment
from app.services.rollback_planner import RollbackPhase, generate_rollback_plan


class FixedOracle:
    def __init__(self, fields: dict) -> None:
        self.fields = fields

    def assess(self, context: dict) -> OracleAssessment:
        return OracleAssessment(structured_fields=self.fields)


def _profile(**overrides) -> ChangeSetProfile:
    values = dict(total_changes=3, has_db_migration=False, has_api_change=False, has_breaking_api_change=False)
    values.update(overrides)
    return ChangeSetProfile(**values)


class RollbackPlannerTests(unittest.TestCase):
    def setUp(self) -> None:
        self.table = default_risk_tier_table()

    def _plan(self, *, risk_level: RiskLevel, profile: ChangeSetProfile, oracle=None):
        return generate_rollback_plan(
            release_version="1.5.0",
            rollback_target="1.4.2",
            risk_level=risk_level,
            change_profile=profile,
            risk_table=self.table,
            oracle=oracle or DisabledAssessmentOracle(),
            oracle_timeout_seconds=1.0,
        )

    def test_fallback_plan_has_single_manual_step(self) -> None:
        plan = self._plan(risk_level=RiskLevel.MEDIUM, profile=_profile())
        self.assertTrue(plan.used_fallback)
        rollback_steps = plan.steps_for(RollbackPhase.ROLLBACK)
        self.assertEqual(len(rollback_steps), 1)
        self.assertIn("Manual rollback required", rollback_steps[0].action)
        self.assertEqual(plan.estimated_minutes, 10)
        self.assertEqual(plan.rollback_threshold_minutes, 15)
        self.assertTrue(plan.below_target_speed)
        self.assertEqual(plan.migrations_to_reverse, [])

    def test_fallback_estimate_grows_with_migrations_and_api_changes(self) -> None:
        plan = self._plan(
            risk_level=RiskLevel.HIGH,
            profile=_profile(has_db_migration=True, has_api_change=True, migration_names=["0042_add_orders"]),
        )
        self.assertEqual(plan.estimated_minutes, 25)
        self.assertFalse(plan.below_target_speed)
        self.assertTrue(plan.data_backup_required)
        self.assertTrue(plan.api_rollback_required)
        self.assertEqual(plan.migrations_to_reverse, ["0042_add_orders"])
        self.assertIn("data_integrity_alert", [trigger["name"] for trigger in plan.triggers])

    def test_unnamed_migrations_get_placeholder(self) -> None:
        plan = self._plan(risk_level=RiskLevel.HIGH, profile=_profile(has_db_migration=True))
        self.assertEqual(plan.migrations_to_reverse, ["all migrations introduced in 1.5.0"])

    def test_steps_are_grouped_by_phase_and_numbered(self) -> None:
        plan = self._plan(risk_level=RiskLevel.LOW, profile=_profile(has_db_migration=True))
        phases = [step.phase for step in plan.steps]
        self.assertEqual(phases, sorted(phases, key=list(RollbackPhase).index))
        for phase in RollbackPhase:
            sequences = [step.sequence for step in plan.steps_for(phase)]
            self.assertEqual(sequences, list(range(1, len(sequences) + 1)))

    def test_oracle_steps_replace_fallback_and_triggers_merge(self) -> None:
        oracle = FixedOracle(
            {
                "rollback_steps": [
                    {"action": "Flip traffic back to blue", "verification": "Blue serves 100%", "estimated_minutes": 3},
                    {"action": "Scale down green", "estimated_minutes": 2},
                    {"verification": "missing action is skipped"},
                ],
                "triggers": ["Checkout conversion drops 20%", {"name": "error_rate_breach", "condition": "dup"}],
            }
        )
        plan = self._plan(risk_level=RiskLevel.CRITICAL, profile=_profile(), oracle=oracle)
        self.assertFalse(plan.used_fallback)
        self.assertEqual(plan.estimated_minutes, 5)
        self.assertEqual(plan.rollback_threshold_minutes, 2)
        self.assertEqual(len(plan.steps_for(RollbackPhase.ROLLBACK)), 2)
        names = [trigger["name"] for trigger in plan.triggers]
        self.assertEqual(names.count("error_rate_breach"), 1)
        self.assertIn("any_page_alert", names)
        self.assertIn("checkout_conversion_drops_20%", names)

    def test_monitoring_plan_follows_tier_table(self) -> None:
        plan = build_monitoring_plan(
            release_version="1.5.0",
            risk_level=RiskLevel.HIGH,
            risk_table=self.table,
            oracle=DisabledAssessmentOracle(),
            oracle_timeout_seconds=1.0,
        )
        self.assertEqual(plan.monitoring_hours, 24)
        self.assertEqual(plan.rollback_threshold_minutes, 5)
        self.assertTrue(all(metric.check_interval_seconds == 30 for metric in plan.metrics))
        self.assertTrue(any(alert.auto_rollback for alert in plan.alerts))
        self.assertEqual(plan.to_payload()["risk_level"], "high")


if __name__ == "__main__":
    unittest.main()
