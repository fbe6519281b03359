from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base
from app.models.common import utcnow


class RollbackPlanRecord(Base):
    """One row per plan revision; the highest revision is the active plan."""

    __tablename__ = "rollback_plans"
    __table_args__ = (UniqueConstraint("release_version", "revision", name="uq_rollback_plans_version_revision"),)

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    release_version: Mapped[str] = mapped_column(String(64), ForeignKey("releases.version"), index=True)
    revision: Mapped[int] = mapped_column(Integer, default=1)
    rollback_target: Mapped[str] = mapped_column(String(64))
    risk_level: Mapped[str] = mapped_column(String(16))
    estimated_minutes: Mapped[int] = mapped_column(Integer)
    rollback_threshold_minutes: Mapped[int] = mapped_column(Integer)
    below_target_speed: Mapped[bool] = mapped_column(Boolean)
    steps: Mapped[list] = mapped_column(JSON)
    triggers: Mapped[list] = mapped_column(JSON)
    migrations_to_reverse: Mapped[list] = mapped_column(JSON)
    data_backup_required: Mapped[bool] = mapped_column(Boolean, default=False)
    api_rollback_required: Mapped[bool] = mapped_column(Boolean, default=False)
    monitoring: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    used_fallback: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
