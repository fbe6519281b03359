from __future__ import annotations

from app.db.session import SessionLocal
from app.models import Defect, Release
from app.services.release_event_log import append_audit_log, append_release_event
from app.services.release_registry import upsert_release_items

SEED_VERSION = "0.1.0"


def seed_local_data() -> None:
    db = SessionLocal()
    try:
        existing = db.query(Release).filter(Release.version == SEED_VERSION).first()
        if existing:
            return

        db.add(
            Release(
                version=SEED_VERSION,
                previous_version="0.0.0",
                bump_type="minor",
                status="draft",
                total_changes=2,
            )
        )
        upsert_release_items(
            db,
            version=SEED_VERSION,
            items=[
                {"name": "Local onboarding", "status": "complete", "needs_feature_flag": True},
                {"name": "Docs refresh", "status": "in_progress"},
            ],
        )
        db.add(Defect(title="Seeded cosmetic defect", severity="P3", status="open"))

        append_release_event(
            db,
            release_version=SEED_VERSION,
            event_type="release_created",
            status_to="draft",
            payload={"source": "seed"},
        )

        append_audit_log(db, action="seed.local_data", payload={"release_version": SEED_VERSION})

        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


if __name__ == "__main__":
    seed_local_data()
