from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

BREAKING_TYPES = {"breaking", "breaking change"}
FEATURE_TYPES = {"feature", "feat"}
FIX_TYPES = {"fix", "bugfix", "hotfix"}


@dataclass(frozen=True)
class ChangeRecord:
    type: str = ""
    description: str = ""
    breaking: bool = False
    has_db_migration: bool = False
    has_api_change: bool = False
    migration_name: str | None = None

    @property
    def normalized_type(self) -> str:
        return (self.type or "").strip().lower()

    @property
    def is_breaking(self) -> bool:
        if self.breaking or self.normalized_type in BREAKING_TYPES:
            return True
        return "breaking change" in (self.description or "").lower()

    @property
    def is_feature(self) -> bool:
        return self.normalized_type in FEATURE_TYPES

    @property
    def is_fix(self) -> bool:
        return self.normalized_type in FIX_TYPES

    def compact(self, description_limit: int = 200) -> dict[str, Any]:
        return {
            "type": self.type,
            "description": (self.description or "")[:description_limit],
            "breaking": self.is_breaking,
            "has_db_migration": self.has_db_migration,
            "has_api_change": self.has_api_change,
        }


def change_from_payload(payload: dict[str, Any]) -> ChangeRecord:
    description = payload.get("description") or payload.get("message") or ""
    migration_name = payload.get("migration_name")
    return ChangeRecord(
        type=str(payload.get("type") or ""),
        description=str(description),
        breaking=bool(payload.get("breaking", False)),
        has_db_migration=bool(payload.get("has_db_migration", False)),
        has_api_change=bool(payload.get("has_api_change", False)),
        migration_name=str(migration_name) if migration_name else None,
    )


@dataclass(frozen=True)
class ChangeSetProfile:
    total_changes: int
    has_db_migration: bool
    has_api_change: bool
    has_breaking_api_change: bool
    migration_names: list[str] = field(default_factory=list)


def profile_changes(changes: list[ChangeRecord]) -> ChangeSetProfile:
    migration_names: list[str] = []
    for change in changes:
        if change.has_db_migration and change.migration_name and change.migration_name not in migration_names:
            migration_names.append(change.migration_name)

    return ChangeSetProfile(
        total_changes=len(changes),
        has_db_migration=any(change.has_db_migration for change in changes),
        has_api_change=any(change.has_api_change for change in changes),
        has_breaking_api_change=any(change.has_api_change and change.is_breaking for change in changes),
        migration_names=migration_names,
    )
