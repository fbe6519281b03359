from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base
from app.models.common import utcnow


class ReadinessEvaluation(Base):
    __tablename__ = "readiness_evaluations"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    release_version: Mapped[str] = mapped_column(String(64), ForeignKey("releases.version"), index=True)
    catalog_version: Mapped[int] = mapped_column(Integer)
    recommendation: Mapped[str] = mapped_column(String(32))
    unresolved: Mapped[bool] = mapped_column(Boolean, default=False)
    blocking_issues: Mapped[list | None] = mapped_column(JSON, nullable=True)
    warnings: Mapped[list | None] = mapped_column(JSON, nullable=True)
    conditions: Mapped[list | None] = mapped_column(JSON, nullable=True)
    advisory_risk_level: Mapped[str | None] = mapped_column(String(16), nullable=True)
    risk_narrative: Mapped[str | None] = mapped_column(Text, nullable=True)
    evaluated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    checks: Mapped[list["ReadinessCheck"]] = relationship(
        back_populates="evaluation",
        order_by="ReadinessCheck.position",
        cascade="all, delete-orphan",
    )


class ReadinessCheck(Base):
    __tablename__ = "readiness_checks"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    evaluation_id: Mapped[int] = mapped_column(ForeignKey("readiness_evaluations.id"), index=True)
    position: Mapped[int] = mapped_column(Integer)
    name: Mapped[str] = mapped_column(String(64))
    status: Mapped[str] = mapped_column(String(16))
    blocking: Mapped[bool] = mapped_column(Boolean)
    detail: Mapped[str | None] = mapped_column(Text, nullable=True)

    evaluation: Mapped[ReadinessEvaluation] = relationship(back_populates="checks")
