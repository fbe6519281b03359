from __future__ import annotations

from datetime import date, datetime, time

from sqlalchemy import Date, DateTime, ForeignKey, String, Text, Time
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base
from app.models.common import utcnow


class DeploymentWindowRecord(Base):
    __tablename__ = "deployment_windows"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    release_version: Mapped[str] = mapped_column(
        String(64), ForeignKey("releases.version"), unique=True, index=True
    )
    risk_level: Mapped[str] = mapped_column(String(16))
    timezone: Mapped[str] = mapped_column(String(64))
    primary_date: Mapped[date] = mapped_column(Date)
    primary_start_time: Mapped[time] = mapped_column(Time)
    primary_end_time: Mapped[time] = mapped_column(Time)
    backup_date: Mapped[date] = mapped_column(Date)
    backup_start_time: Mapped[time] = mapped_column(Time)
    backup_end_time: Mapped[time] = mapped_column(Time)
    monitoring_end_time: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    rationale: Mapped[str | None] = mapped_column(Text, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
