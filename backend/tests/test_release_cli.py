from __future__ import annotations

from contextlib import redirect_stdout
from datetime import datetime, timedelta, timezone
import io
import json
import os
from pathlib import Path
import sys
import tempfile
import unittest
from unittest.mock import patch

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")

from app.core.config import Settings
from app.db.base import Base
from app.models import FeatureFlag
from app.services import maintenance_jobs_cli, release_cli
from app.services.notifications import OutboxNotificationChannel
from app.services.oracle import DisabledAssessmentOracle
from app.services.release_orchestrator import ReleaseOrchestrator

NOW = datetime(2026, 10, 12, 8, 0, tzinfo=timezone.utc)


class ReleaseCliTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = create_engine(
            "sqlite+pysqlite:///:memory:",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        Base.metadata.create_all(self.engine)
        self.session_factory = sessionmaker(bind=self.engine, autoflush=False, autocommit=False)
        self.orchestrator = ReleaseOrchestrator(
            oracle=DisabledAssessmentOracle(),
            notifier=OutboxNotificationChannel(),
            settings=Settings(deployment_timezone="UTC", oracle_url=None, notification_webhook_url=None),
            clock=lambda: NOW,
        )
        self.release_cli_patch = patch.object(release_cli, "SessionLocal", self.session_factory)
        self.maintenance_patch = patch.object(maintenance_jobs_cli, "SessionLocal", self.session_factory)
        self.release_cli_patch.start()
        self.maintenance_patch.start()
        self.tmpdir = tempfile.TemporaryDirectory()

    def tearDown(self) -> None:
        self.release_cli_patch.stop()
        self.maintenance_patch.stop()
        self.tmpdir.cleanup()
        Base.metadata.drop_all(self.engine)
        self.engine.dispose()

    def _run(self, module, argv: list[str]) -> tuple[int, object]:
        buffer = io.StringIO()
        with redirect_stdout(buffer):
            exit_code = module.main(argv, orchestrator=self.orchestrator)
        return exit_code, json.loads(buffer.getvalue())

    def _changes_file(self, payload) -> str:
        path = Path(self.tmpdir.name) / "changes.json"
        path.write_text(json.dumps(payload), encoding="utf-8")
        return str(path)

    def test_prepare_from_change_file_and_get(self) -> None:
        changes_file = self._changes_file(
            {
                "changes": [
                    {"type": "feature", "description": "Wishlists", "has_api_change": True},
                    {"type": "fix", "message": "Fix cart badge"},
                ],
                "release_items": [{"name": "Wishlists", "status": "complete", "needs_feature_flag": True}],
            }
        )
        exit_code, payload = self._run(
            release_cli,
            [
                "prepare",
                "--current-version",
                "1.4.2",
                "--changes-file",
                changes_file,
                "--tests-passing",
                "--coverage",
                "87.5",
                "--signed-off-by",
                "qa-lead",
                "--preferred-days",
                "wednesday",
            ],
        )
        self.assertEqual(exit_code, 0)
        self.assertEqual(payload["version"], "1.5.0")
        self.assertEqual(payload["bump_type"], "minor")
        self.assertEqual(payload["window"]["primary"]["date"], "2026-10-14")
        self.assertEqual(payload["flags"], ["ff_wishlists"])

        exit_code, detail = self._run(release_cli, ["get", "--version", "1.5.0"])
        self.assertEqual(exit_code, 0)
        self.assertEqual(detail["release"]["status"], "readiness_evaluated")
        self.assertEqual(detail["flags"][0]["name"], "ff_wishlists")
        self.assertEqual(len(detail["readiness"]["checks"]), 9)

        exit_code, listing = self._run(release_cli, ["list"])
        self.assertEqual([item["version"] for item in listing], ["1.5.0"])

    def test_failing_tests_and_state_errors_use_exit_codes(self) -> None:
        changes_file = self._changes_file([{"type": "fix", "description": "Fix rounding"}])
        exit_code, payload = self._run(
            release_cli,
            ["prepare", "--current-version", "1.4.2", "--changes-file", changes_file, "--tests-failing"],
        )
        self.assertEqual(exit_code, 0)
        self.assertEqual(payload["status"], "blocked")
        self.assertEqual(payload["blocked_reason"], "READINESS_NO_GO")

        exit_code, payload = self._run(release_cli, ["deployed", "--version", "1.4.3"])
        self.assertEqual(exit_code, 3)
        self.assertEqual(payload["error"], "invalid_release_state")

        exit_code, payload = self._run(release_cli, ["get", "--version", "9.9.9"])
        self.assertEqual(exit_code, 2)
        exit_code, payload = self._run(release_cli, ["check", "--version", "9.9.9"])
        self.assertEqual(exit_code, 2)
        self.assertEqual(payload["error"], "release_not_found")

    def test_check_then_resolve_and_deploy(self) -> None:
        changes_file = self._changes_file([{"type": "fix", "description": "Fix rounding"}])
        self._run(
            release_cli,
            ["prepare", "--current-version", "1.4.2", "--changes-file", changes_file, "--tests-passing"],
        )
        exit_code, payload = self._run(
            release_cli,
            ["resolve", "--version", "1.4.3", "--decision", "go", "--reviewer-id", "release-manager"],
        )
        self.assertEqual(exit_code, 0)
        self.assertEqual(payload["status"], "window_scheduled")

        exit_code, payload = self._run(release_cli, ["deployed", "--version", "1.4.3", "--actor-id", "deployer"])
        self.assertEqual(exit_code, 0)
        self.assertEqual(payload["status"], "deployed")

        exit_code, payload = self._run(release_cli, ["check", "--version", "1.4.3"])
        self.assertEqual(exit_code, 3)

    def test_maintenance_jobs(self) -> None:
        changes_file = self._changes_file(
            {
                "changes": [{"type": "fix", "description": "Fix rounding"}],
                "release_items": [{"name": "Rounding", "status": "complete", "needs_feature_flag": True}],
            }
        )
        self._run(
            release_cli,
            [
                "prepare",
                "--current-version",
                "1.4.2",
                "--changes-file",
                changes_file,
                "--tests-passing",
                "--signed-off-by",
                "qa-lead",
            ],
        )

        exit_code, payload = self._run(maintenance_jobs_cli, ["reevaluate-readiness", "--limit", "10"])
        self.assertEqual(exit_code, 0)
        self.assertEqual(payload["job"], "reevaluate_readiness")
        self.assertEqual(payload["status_counts"], {"window_scheduled": 1})

        exit_code, payload = self._run(maintenance_jobs_cli, ["scan-flags"])
        self.assertEqual(exit_code, 0)
        self.assertEqual(payload["job"], "scan_feature_flags")
        self.assertEqual(payload["scanned"], 0)

        with self.session_factory() as db:
            flag = db.query(FeatureFlag).one()
            flag.current_percentage = 100
            flag.full_rollout_date = NOW - timedelta(days=31)
            db.commit()

        exit_code, payload = self._run(maintenance_jobs_cli, ["scan-flags"])
        self.assertEqual(payload["cleanup_candidates"], ["ff_rounding"])


if __name__ == "__main__":
    unittest.main()
