from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Float, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base
from app.models.common import utcnow


class Release(Base):
    __tablename__ = "releases"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    version: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    previous_version: Mapped[str] = mapped_column(String(64))
    bump_type: Mapped[str] = mapped_column(String(16))
    pre_release: Mapped[str | None] = mapped_column(String(64), nullable=True)
    risk_level: Mapped[str | None] = mapped_column(String(16), nullable=True, index=True)
    status: Mapped[str] = mapped_column(String(32), index=True)
    blocked_reason: Mapped[str | None] = mapped_column(String(64), nullable=True)
    blocked_detail: Mapped[str | None] = mapped_column(Text, nullable=True)
    total_changes: Mapped[int] = mapped_column(Integer, default=0)
    has_db_migration: Mapped[bool] = mapped_column(Boolean, default=False)
    has_api_change: Mapped[bool] = mapped_column(Boolean, default=False)
    has_breaking_api_change: Mapped[bool] = mapped_column(Boolean, default=False)
    has_irreversible_schema_change: Mapped[bool] = mapped_column(Boolean, default=False)
    tests_passing: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    test_coverage: Mapped[float | None] = mapped_column(Float, nullable=True)
    signed_off_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    changelog_summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    changelog_markdown: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
    deployed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
