from __future__ import annotations

import os
from pathlib import Path
import sys
import unittest
from unittest.mock import patch

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")

from app.db import seed
from app.db.base import Base
from app.models import AuditLog, Defect, Release, ReleaseItem
from app.services.readiness_gate import load_store_readiness_data


class SeedLocalDataTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = create_engine(
            "sqlite+pysqlite:///:memory:",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        Base.metadata.create_all(self.engine)
        self.session_factory = sessionmaker(bind=self.engine, autoflush=False, autocommit=False)

    def tearDown(self) -> None:
        Base.metadata.drop_all(self.engine)
        self.engine.dispose()

    def test_seed_is_idempotent_and_feeds_readiness_inputs(self) -> None:
        with patch.object(seed, "SessionLocal", self.session_factory):
            seed.seed_local_data()
            seed.seed_local_data()

        with self.session_factory() as db:
            self.assertEqual(db.query(Release).count(), 1)
            self.assertEqual(db.query(ReleaseItem).count(), 2)
            self.assertEqual(db.query(Defect).count(), 1)
            self.assertEqual(db.query(AuditLog).filter(AuditLog.action == "seed.local_data").count(), 1)

            store = load_store_readiness_data(db, seed.SEED_VERSION)
            self.assertEqual(store.open_blocker_titles, [])
            self.assertEqual(sorted(store.release_item_statuses), ["complete", "in_progress"])
            self.assertEqual(store.feature_flags_configured, [])


if __name__ == "__main__":
    unittest.main()
