from __future__ import annotations

from datetime import datetime, timedelta, timezone
import os
from pathlib import Path
import sys
import unittest

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")

from app.db.base import Base
from app.domain.risk import RiskLevel, default_risk_tier_table
from app.models import AuditLog, FeatureFlag, Release, ReleaseEvent, ReleaseItem
from app.services.feature_flags import (
    advance_flag,
    cleanup_candidates,
    ensure_release_flags,
    flag_name_for,
    flag_state,
    scan_feature_flags,
    start_rollout,
    trip_kill_switch,
    validate_phases,
)
from app.services.oracle import DisabledAssessmentOracle, OracleAssessment
from app.services.release_registry import archive_flag

T0 = datetime(2026, 10, 13, 12, 0, tzinfo=timezone.utc)


class PhaseOracle:
    def __init__(self, fields: dict) -> None:
        self.fields = fields

    def assess(self, context: dict) -> OracleAssessment:
        return OracleAssessment(structured_fields=self.fields)


class FeatureFlagTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = create_engine("sqlite+pysqlite:///:memory:")
        Base.metadata.create_all(self.engine)
        self.session_factory = sessionmaker(bind=self.engine, autoflush=False, autocommit=False)
        self.table = default_risk_tier_table()

    def tearDown(self) -> None:
        Base.metadata.drop_all(self.engine)
        self.engine.dispose()

    def _create_release(self, *, version: str = "1.5.0", status: str = "window_scheduled") -> None:
        with self.session_factory() as db:
            db.add(Release(version=version, previous_version="1.4.2", bump_type="minor", status=status))
            db.add(
                ReleaseItem(
                    release_version=version,
                    name="New Checkout",
                    description="Redesigned checkout flow",
                    status="complete",
                    needs_feature_flag=True,
                )
            )
            db.add(ReleaseItem(release_version=version, name="Copy tweaks", status="complete"))
            db.commit()

    def _ensure_flags(self, db, oracle=None, risk_level: RiskLevel = RiskLevel.MEDIUM) -> list[FeatureFlag]:
        flags = ensure_release_flags(
            db,
            release_version="1.5.0",
            risk_level=risk_level,
            risk_table=self.table,
            oracle=oracle or DisabledAssessmentOracle(),
            oracle_timeout_seconds=1.0,
            kill_switch_conditions=["Error rate above 2x baseline"],
        )
        db.commit()
        return flags

    def _deployed_flag(self, *, phases: list[dict] | None = None) -> None:
        self._create_release(status="deployed")
        with self.session_factory() as db:
            flag = self._ensure_flags(db)[0]
            if phases is not None:
                flag.phases = phases
                db.commit()
            start_rollout(db, flag_name="ff_new_checkout", now=T0)

    def test_flag_names_are_normalized(self) -> None:
        self.assertEqual(flag_name_for("New Checkout"), "ff_new_checkout")
        self.assertEqual(flag_name_for("API v2/Orders"), "ff_api_v2_orders")
        self.assertEqual(flag_name_for(None), "ff_unknown")

    def test_ensure_flags_creates_disabled_flag_per_flagged_item_once(self) -> None:
        self._create_release()
        with self.session_factory() as db:
            flags = self._ensure_flags(db)
            self.assertEqual([flag.name for flag in flags], ["ff_new_checkout"])
            flag = flags[0]
            self.assertFalse(flag.enabled)
            self.assertEqual(flag.current_percentage, 0)
            self.assertEqual(flag.rollout_strategy, "percentage_ramp")
            self.assertEqual([phase["percentage"] for phase in flag.phases], [10, 50, 100])
            self.assertTrue(all(phase["duration_hours"] == 6 for phase in flag.phases))
            self.assertEqual(flag.kill_switch_conditions, ["Error rate above 2x baseline"])
            self.assertEqual(flag_state(flag), "disabled")

            again = self._ensure_flags(db)
            self.assertEqual([item.id for item in again], [flag.id])
            self.assertEqual(db.query(FeatureFlag).count(), 1)
            self.assertEqual(
                db.query(ReleaseEvent).filter(ReleaseEvent.event_type == "feature_flag_created").count(),
                1,
            )

    def test_oracle_phases_are_validated(self) -> None:
        self.assertIsNone(validate_phases([{"percentage": 50}, {"percentage": 20}, {"percentage": 100}]))
        self.assertIsNone(validate_phases([{"percentage": 10}, {"percentage": 60}]))
        self.assertIsNone(validate_phases([]))
        self.assertEqual(
            validate_phases([{"percentage": 20, "duration_hours": 4}, {"percentage": 100}]),
            [{"percentage": 20, "duration_hours": 4}, {"percentage": 100, "duration_hours": 0}],
        )

        self._create_release()
        oracle = PhaseOracle(
            {
                "rollout_phases": [{"percentage": 50}, {"percentage": 10}, {"percentage": 100}],
                "rollout_strategy": "canary",
                "kill_switch_conditions": ["Checkout errors spike"],
            }
        )
        with self.session_factory() as db:
            flag = self._ensure_flags(db, oracle=oracle, risk_level=RiskLevel.CRITICAL)[0]
            self.assertEqual([phase["percentage"] for phase in flag.phases], [1, 5, 25, 50, 100])
            self.assertEqual(flag.rollout_strategy, "canary")
            self.assertEqual(flag.kill_switch_conditions, ["Checkout errors spike"])

    def test_rollout_requires_deployed_release(self) -> None:
        self._create_release(status="window_scheduled")
        with self.session_factory() as db:
            self._ensure_flags(db)
            with self.assertRaisesRegex(ValueError, "release_not_deployed"):
                start_rollout(db, flag_name="ff_new_checkout", now=T0)
            with self.assertRaisesRegex(ValueError, "flag_not_found"):
                start_rollout(db, flag_name="ff_missing", now=T0)

    def test_scan_advances_one_phase_after_duration_elapsed(self) -> None:
        self._deployed_flag()
        with self.session_factory() as db:
            early = scan_feature_flags(db, cleanup_age_days=30, now=T0 + timedelta(hours=1))
            self.assertEqual(early.advanced, [])
            self.assertEqual(early.held[0].reason, "phase_duration_not_elapsed")

            first = scan_feature_flags(db, cleanup_age_days=30, now=T0 + timedelta(hours=6))
            self.assertEqual([(item.from_percentage, item.to_percentage) for item in first.advanced], [(10, 50)])

            second = scan_feature_flags(db, cleanup_age_days=30, now=T0 + timedelta(hours=12))
            self.assertEqual([(item.from_percentage, item.to_percentage) for item in second.advanced], [(50, 100)])

            flag = db.query(FeatureFlag).filter(FeatureFlag.name == "ff_new_checkout").one()
            self.assertEqual(flag_state(flag), "fully_rolled_out")
            self.assertIsNotNone(flag.full_rollout_date)

            final = scan_feature_flags(db, cleanup_age_days=30, now=T0 + timedelta(hours=48))
            self.assertEqual(final.held[0].reason, "final_phase")

    def test_kill_switch_blocks_advancement_and_freezes_percentage(self) -> None:
        self._deployed_flag()
        with self.session_factory() as db:
            flag = trip_kill_switch(db, flag_name="ff_new_checkout", reason="error spike", actor_id="oncall")
            self.assertEqual(flag_state(flag), "killed")
            self.assertFalse(flag.enabled)
            self.assertEqual(flag.current_percentage, 10)

            result = scan_feature_flags(db, cleanup_age_days=30, now=T0 + timedelta(days=3))
            self.assertEqual(result.scanned, 0)
            self.assertEqual(advance_flag(flag, now=T0 + timedelta(days=3)).reason, "kill_switch_active")
            self.assertEqual(flag.current_percentage, 10)

            with self.assertRaisesRegex(ValueError, "flag_kill_switch_active"):
                start_rollout(db, flag_name="ff_new_checkout", now=T0)

            audit = db.query(AuditLog).filter(AuditLog.action == "feature_flag.kill_switch").one()
            self.assertEqual(audit.actor_id, "oncall")

    def test_percentage_never_regresses(self) -> None:
        flag = FeatureFlag(
            name="ff_manual",
            feature="Manual",
            release_version="1.5.0",
            phases=[
                {"percentage": 10, "duration_hours": 1},
                {"percentage": 50, "duration_hours": 1},
                {"percentage": 100, "duration_hours": 1},
            ],
            current_phase_index=0,
            current_percentage=60,
            enabled=True,
            kill_switch_tripped=False,
            kill_switch_conditions=[],
            phase_started_at=T0,
        )
        result = advance_flag(flag, now=T0 + timedelta(hours=2))
        self.assertTrue(result.advanced)
        self.assertEqual(flag.current_phase_index, 1)
        self.assertEqual(flag.current_percentage, 60)

    def test_cleanup_candidates_and_archive(self) -> None:
        self._deployed_flag(phases=[{"percentage": 100, "duration_hours": 0}])
        with self.session_factory() as db:
            self.assertEqual(cleanup_candidates(db, age_days=30, now=T0 + timedelta(days=10)), [])
            with self.assertRaisesRegex(ValueError, "flag_not_cleanup_eligible"):
                archive_flag(db=db, flag_name="ff_new_checkout", age_days=30, now=T0 + timedelta(days=10))
            db.rollback()

            candidates = cleanup_candidates(db, age_days=30, now=T0 + timedelta(days=31))
            self.assertEqual([flag.name for flag in candidates], ["ff_new_checkout"])

            archived = archive_flag(
                db=db, flag_name="ff_new_checkout", age_days=30, actor_id="dev-1", now=T0 + timedelta(days=31)
            )
            self.assertEqual(flag_state(archived), "archived")
            self.assertEqual(cleanup_candidates(db, age_days=30, now=T0 + timedelta(days=40)), [])


if __name__ == "__main__":
    unittest.main()
