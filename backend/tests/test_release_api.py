from __future__ import annotations

from datetime import datetime, timedelta, timezone
import os
from pathlib import Path
import sys
import unittest

from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")

from app.api.releases import get_release_orchestrator
from app.core.config import Settings
from app.db.base import Base
from app.db.session import get_db_session
from app.main import app
from app.models import FeatureFlag
from app.services.notifications import OutboxNotificationChannel
from app.services.oracle import DisabledAssessmentOracle
from app.services.release_orchestrator import ReleaseOrchestrator

NOW = datetime(2026, 10, 12, 8, 0, tzinfo=timezone.utc)


class ReleaseApiTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = create_engine(
            "sqlite+pysqlite:///:memory:",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        Base.metadata.create_all(self.engine)
        self.session_factory = sessionmaker(bind=self.engine, autoflush=False, autocommit=False)
        self.clock_value = NOW
        self.orchestrator = ReleaseOrchestrator(
            oracle=DisabledAssessmentOracle(),
            notifier=OutboxNotificationChannel(),
            settings=Settings(deployment_timezone="UTC", oracle_url=None, notification_webhook_url=None),
            clock=lambda: self.clock_value,
        )

        def override_db():
            db = self.session_factory()
            try:
                yield db
            finally:
                db.close()

        app.dependency_overrides[get_db_session] = override_db
        app.dependency_overrides[get_release_orchestrator] = lambda: self.orchestrator
        self.client = TestClient(app)

    def tearDown(self) -> None:
        app.dependency_overrides.clear()
        Base.metadata.drop_all(self.engine)
        self.engine.dispose()

    def _prepare(self, **overrides) -> dict:
        body = {
            "current_version": "1.4.2",
            "changes": [{"type": "fix", "description": "Fix checkout rounding"}],
            "tests_passing": True,
            "signed_off_by": "qa-lead",
            "release_items": [{"name": "New Checkout", "status": "complete", "needs_feature_flag": True}],
        }
        body.update(overrides)
        response = self.client.post("/api/releases", json=body)
        self.assertEqual(response.status_code, 200, response.text)
        return response.json()

    def test_health_endpoints(self) -> None:
        self.assertEqual(self.client.get("/health").json()["status"], "ok")
        self.assertEqual(self.client.get("/health/db").json()["database"], "reachable")

    def test_prepare_and_inspect_release(self) -> None:
        prepared = self._prepare()
        self.assertEqual(prepared["version"], "1.4.3")
        self.assertEqual(prepared["recommendation"], "CONDITIONAL-GO")
        self.assertEqual(prepared["flags"], ["ff_new_checkout"])

        detail = self.client.get("/api/releases/1.4.3")
        self.assertEqual(detail.status_code, 200)
        self.assertEqual(detail.json()["status"], "readiness_evaluated")
        self.assertEqual(detail.json()["signed_off_by"], "qa-lead")

        readiness = self.client.get("/api/releases/1.4.3/readiness").json()
        self.assertEqual(len(readiness["checks"]), 9)
        self.assertEqual(readiness["checks"][0]["name"], "no_open_blockers")

        plan = self.client.get("/api/releases/1.4.3/rollback-plan").json()
        self.assertEqual(plan["rollback_target"], "1.4.2")
        self.assertTrue(plan["steps"])

        window = self.client.get("/api/releases/1.4.3/window").json()
        self.assertEqual(window["primary"]["date"], "2026-10-13")

        events = self.client.get("/api/releases/1.4.3/events").json()
        self.assertEqual(events[0]["event_type"], "release_created")

        listing = self.client.get("/api/releases", params={"status": "readiness_evaluated"}).json()
        self.assertEqual([item["version"] for item in listing], ["1.4.3"])

    def test_trace_id_is_echoed(self) -> None:
        response = self.client.get("/health", headers={"x-trace-id": "trace-123"})
        self.assertEqual(response.headers["X-Trace-Id"], "trace-123")

    def test_missing_release_returns_404(self) -> None:
        self.assertEqual(self.client.get("/api/releases/9.9.9").status_code, 404)
        self.assertEqual(self.client.post("/api/releases/9.9.9/readiness").status_code, 404)
        self.assertEqual(
            self.client.post("/api/releases/9.9.9/deployed", json={"actor_id": "deployer"}).status_code,
            404,
        )

    def test_invalid_version_returns_422(self) -> None:
        response = self.client.post(
            "/api/releases",
            json={"current_version": "not-a-version!", "changes": [{"type": "fix"}]},
        )
        self.assertEqual(response.status_code, 422)

    def test_invalid_transition_returns_409(self) -> None:
        self._prepare()
        response = self.client.post("/api/releases/1.4.3/deployed", json={})
        self.assertEqual(response.status_code, 409)

    def test_full_lifecycle_through_api(self) -> None:
        self._prepare()
        check = self.client.post("/api/releases/1.4.3/readiness", json={"tests_passing": True})
        self.assertEqual(check.status_code, 200)
        self.assertEqual(check.json()["status"], "window_scheduled")

        self.assertEqual(self.client.post("/api/flags/ff_new_checkout/start").status_code, 409)

        deployed = self.client.post("/api/releases/1.4.3/deployed", json={"actor_id": "deployer"})
        self.assertEqual(deployed.json()["status"], "deployed")

        started = self.client.post("/api/flags/ff_new_checkout/start")
        self.assertEqual(started.status_code, 200)
        self.assertEqual(started.json()["state"], "ramping")
        self.assertEqual(started.json()["current_percentage"], 10)

        self.clock_value = NOW + timedelta(hours=6)
        scan = self.client.post("/api/flags/scan").json()
        self.assertEqual(scan["advanced"], [{"flag_name": "ff_new_checkout", "from": 10, "to": 50}])

        rolled_back = self.client.post(
            "/api/releases/1.4.3/rolled-back", json={"reason": "checkout errors", "actor_id": "oncall"}
        )
        self.assertEqual(rolled_back.json()["status"], "rolled_back")
        flag = self.client.get("/api/flags/ff_new_checkout").json()
        self.assertEqual(flag["state"], "killed")
        self.assertEqual(flag["current_percentage"], 50)

    def test_conditional_go_resolution_via_api(self) -> None:
        self._prepare()
        rejected = self.client.post(
            "/api/releases/1.4.3/resolve",
            json={"decision": "no_go", "reviewer_id": "release-manager", "reason": "not this week"},
        )
        self.assertEqual(rejected.status_code, 200)
        self.assertEqual(rejected.json()["blocked_reason"], "CONDITIONAL_GO_REJECTED")

        again = self.client.post(
            "/api/releases/1.4.3/resolve",
            json={"decision": "go", "reviewer_id": "release-manager"},
        )
        self.assertEqual(again.status_code, 409)

        bad = self.client.post("/api/releases/1.4.3/resolve", json={"decision": "maybe", "reviewer_id": "rm"})
        self.assertEqual(bad.status_code, 422)

    def test_scheduling_constraints_via_api(self) -> None:
        prepared = self._prepare(
            constraints={"blackout_dates": ["2026-10-13"], "preferred_days": ["Thursday"], "team_availability": "12:00-16:00"}
        )
        self.assertEqual(prepared["window"]["primary"]["date"], "2026-10-15")
        self.assertEqual(prepared["window"]["primary"]["start_time"], "13:00")

        bad = self.client.post(
            "/api/releases",
            json={
                "current_version": "2.0.0",
                "changes": [{"type": "fix"}],
                "constraints": {"team_availability": "18:00-08:00"},
            },
        )
        self.assertEqual(bad.status_code, 422)

    def test_flag_kill_switch_and_archive_endpoints(self) -> None:
        self._prepare()
        killed = self.client.post("/api/flags/ff_new_checkout/kill", json={"reason": "manual", "actor_id": "oncall"})
        self.assertEqual(killed.status_code, 200)
        self.assertTrue(killed.json()["kill_switch_tripped"])

        self.assertEqual(self.client.post("/api/flags/ff_missing/kill", json={"reason": "x"}).status_code, 404)
        self.assertEqual(self.client.post("/api/flags/ff_new_checkout/archive", json={}).status_code, 409)

        with self.session_factory() as db:
            flag = db.query(FeatureFlag).filter(FeatureFlag.name == "ff_new_checkout").one()
            flag.current_percentage = 100
            flag.full_rollout_date = NOW - timedelta(days=45)
            db.commit()

        candidates = self.client.get("/api/flags/cleanup-candidates").json()
        self.assertEqual([item["name"] for item in candidates], ["ff_new_checkout"])
        archived = self.client.post("/api/flags/ff_new_checkout/archive", json={"actor_id": "dev-1"})
        self.assertEqual(archived.status_code, 200)
        self.assertEqual(archived.json()["state"], "archived")
        self.assertEqual(self.client.get("/api/flags").json(), [])
        self.assertEqual(len(self.client.get("/api/flags", params={"include_archived": "true"}).json()), 1)


if __name__ == "__main__":
    unittest.main()
