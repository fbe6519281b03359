from __future__ import annotations

import json
from pathlib import Path
import sys
import unittest

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

from app.domain.risk import RiskLevel, default_risk_tier_table, max_risk, risk_tier_table_from_json
from app.domain.semver import BumpType
from app.services.risk_classifier import RiskSignals, classify_risk


def _signals(**overrides) -> RiskSignals:
    values = dict(total_changes=2, bump_type=BumpType.PATCH, all_checks_pass=True)
    values.update(overrides)
    return RiskSignals(**values)


class RiskClassifierTests(unittest.TestCase):
    def test_migrations_force_high(self) -> None:
        self.assertEqual(classify_risk(_signals(has_db_migration=True)).level, RiskLevel.HIGH)
        self.assertEqual(classify_risk(_signals(has_irreversible_schema_change=True)).level, RiskLevel.HIGH)

    def test_breaking_api_change_is_at_least_medium(self) -> None:
        result = classify_risk(_signals(has_api_change=True, has_breaking_api_change=True, bump_type=BumpType.MAJOR))
        self.assertEqual(result.level, RiskLevel.MEDIUM)

    def test_clean_patch_narrows_to_low(self) -> None:
        self.assertEqual(classify_risk(_signals()).level, RiskLevel.LOW)

    def test_warnings_or_api_changes_keep_medium(self) -> None:
        self.assertEqual(classify_risk(_signals(readiness_warnings=("Stakeholder sign-off",))).level, RiskLevel.MEDIUM)
        self.assertEqual(classify_risk(_signals(has_api_change=True)).level, RiskLevel.MEDIUM)
        self.assertEqual(classify_risk(_signals(bump_type=BumpType.MINOR)).level, RiskLevel.MEDIUM)
        self.assertEqual(classify_risk(_signals(all_checks_pass=False)).level, RiskLevel.MEDIUM)

    def test_advisory_can_raise_but_never_lower(self) -> None:
        raised = classify_risk(_signals(advisory_level=RiskLevel.CRITICAL))
        self.assertEqual(raised.level, RiskLevel.CRITICAL)
        self.assertEqual(raised.floor, RiskLevel.LOW)
        self.assertIn("raised to critical by advisory assessment", raised.reasons)

        kept = classify_risk(_signals(has_db_migration=True, advisory_level=RiskLevel.LOW))
        self.assertEqual(kept.level, RiskLevel.HIGH)


class RiskTierTableTests(unittest.TestCase):
    def test_default_table_values(self) -> None:
        table = default_risk_tier_table()
        self.assertEqual(table.monitoring_hours(RiskLevel.LOW), 2)
        self.assertEqual(table.monitoring_hours("critical"), 48)
        self.assertEqual(table.rollback_threshold_minutes(RiskLevel.HIGH), 5)

    def test_json_override_merges_with_defaults(self) -> None:
        table = risk_tier_table_from_json(json.dumps({"high": {"monitoring_hours": 12}}))
        self.assertEqual(table.monitoring_hours(RiskLevel.HIGH), 12)
        self.assertEqual(table.rollback_threshold_minutes(RiskLevel.HIGH), 5)
        self.assertEqual(table.monitoring_hours(RiskLevel.MEDIUM), 6)
        with self.assertRaises(ValueError):
            risk_tier_table_from_json("[1, 2]")

    def test_max_risk_defaults_to_medium(self) -> None:
        self.assertEqual(max_risk(None), RiskLevel.MEDIUM)
        self.assertEqual(max_risk(RiskLevel.LOW, None, RiskLevel.HIGH), RiskLevel.HIGH)


if __name__ == "__main__":
    unittest.main()
