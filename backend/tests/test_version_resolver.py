from __future__ import annotations

from pathlib import Path
import sys
import time
import unittest

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

from app.domain.changes import ChangeRecord
from app.domain.semver import BumpType
from app.services.oracle import DisabledAssessmentOracle, OracleAssessment
from app.services.version_resolver import resolve_version, rule_based_bump


class FixedOracle:
    def __init__(self, assessment: OracleAssessment) -> None:
        self.assessment = assessment
        self.contexts: list[dict] = []

    def assess(self, context: dict) -> OracleAssessment:
        self.contexts.append(context)
        return self.assessment


class SlowOracle:
    def assess(self, context: dict) -> OracleAssessment:
        time.sleep(0.5)
        return OracleAssessment(structured_fields={"override": True, "bump_type": "major"})


def _changes(*types: str) -> list[ChangeRecord]:
    return [ChangeRecord(type=change_type, description=f"{change_type} change") for change_type in types]


class VersionResolverTests(unittest.TestCase):
    def test_fix_only_change_set_is_a_patch(self) -> None:
        resolution = resolve_version(
            changes=_changes("fix", "fix"),
            current_version="1.4.2",
            oracle=DisabledAssessmentOracle(),
            oracle_timeout_seconds=1.0,
        )
        self.assertEqual(resolution.bump_type, BumpType.PATCH)
        self.assertEqual(resolution.new_version, "1.4.3")
        self.assertFalse(resolution.overridden)

    def test_breaking_change_wins_over_feature(self) -> None:
        self.assertEqual(rule_based_bump(_changes("feature", "breaking")), BumpType.MAJOR)
        self.assertEqual(rule_based_bump(_changes("feat", "fix")), BumpType.MINOR)
        self.assertEqual(rule_based_bump(_changes("chore")), BumpType.PATCH)
        self.assertEqual(
            rule_based_bump([ChangeRecord(type="fix", description="BREAKING CHANGE: drop v1 endpoint")]),
            BumpType.MAJOR,
        )

    def test_oracle_override_is_honored(self) -> None:
        oracle = FixedOracle(
            OracleAssessment(confidence=0.9, rationale="new endpoint", structured_fields={"override": True, "bump_type": "Minor"})
        )
        resolution = resolve_version(
            changes=_changes("fix"),
            current_version="1.4.2",
            oracle=oracle,
            oracle_timeout_seconds=1.0,
        )
        self.assertEqual(resolution.new_version, "1.5.0")
        self.assertEqual(resolution.rule_bump_type, BumpType.PATCH)
        self.assertTrue(resolution.overridden)
        self.assertEqual(resolution.confidence, 0.9)
        self.assertEqual(oracle.contexts[0]["kind"], "version_bump")
        self.assertEqual(oracle.contexts[0]["rule_based_bump"], "patch")

    def test_oracle_without_override_flag_or_with_bad_type_is_ignored(self) -> None:
        for fields in ({"override": False, "bump_type": "major"}, {"override": True, "bump_type": "huge"}):
            resolution = resolve_version(
                changes=_changes("fix"),
                current_version="1.4.2",
                oracle=FixedOracle(OracleAssessment(structured_fields=fields)),
                oracle_timeout_seconds=1.0,
            )
            self.assertEqual(resolution.new_version, "1.4.3")
            self.assertFalse(resolution.overridden)

    def test_oracle_timeout_falls_back_to_rules(self) -> None:
        started = time.perf_counter()
        resolution = resolve_version(
            changes=_changes("feature"),
            current_version="2.0.0",
            oracle=SlowOracle(),
            oracle_timeout_seconds=0.05,
            pre_release="rc.1",
        )
        self.assertLess(time.perf_counter() - started, 0.45)
        self.assertEqual(resolution.new_version, "2.1.0-rc.1")
        self.assertFalse(resolution.overridden)


if __name__ == "__main__":
    unittest.main()
