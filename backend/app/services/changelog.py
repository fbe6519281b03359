from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date

from app.domain.changes import ChangeRecord
from app.services.oracle import AssessmentOracle, consult_oracle

SECTION_TITLES = [
    ("breaking", "Breaking Changes"),
    ("features", "New Features"),
    ("fixes", "Bug Fixes"),
    ("performance", "Performance"),
    ("documentation", "Documentation"),
    ("other", "Other Changes"),
]


@dataclass(frozen=True)
class Changelog:
    version: str
    previous_version: str
    release_date: date
    summary: str
    markdown: str
    sections: dict[str, list[str]] = field(default_factory=dict)

    @property
    def has_breaking_changes(self) -> bool:
        return bool(self.sections.get("breaking"))


def categorize_changes(changes: list[ChangeRecord]) -> dict[str, list[str]]:
    categorized: dict[str, list[str]] = {key: [] for key, _ in SECTION_TITLES}
    for change in changes:
        text = (change.description or change.type or "unspecified change").strip()
        if change.is_breaking:
            categorized["breaking"].append(text)
        elif change.is_feature:
            categorized["features"].append(text)
        elif change.is_fix:
            categorized["fixes"].append(text)
        elif change.normalized_type == "perf":
            categorized["performance"].append(text)
        elif change.normalized_type == "docs":
            categorized["documentation"].append(text)
        else:
            categorized["other"].append(text)
    return categorized


def _default_summary(sections: dict[str, list[str]]) -> str:
    counts = [f"{len(items)} {key}" for key, items in sections.items() if items]
    if not counts:
        return "Maintenance release with no recorded changes."
    return "Release contains " + ", ".join(counts) + "."


def render_markdown(version: str, release_date: date, summary: str, sections: dict[str, list[str]]) -> str:
    lines = [f"# {version} ({release_date.isoformat()})", "", summary, ""]
    for key, title in SECTION_TITLES:
        items = sections.get(key) or []
        if not items:
            continue
        lines.append(f"## {title}")
        lines.append("")
        lines.extend(f"- {item}" for item in items)
        lines.append("")
    return "\n".join(lines).rstrip() + "\n"


def generate_changelog(
    *,
    previous_version: str,
    version: str,
    changes: list[ChangeRecord],
    release_date: date,
    oracle: AssessmentOracle,
    oracle_timeout_seconds: float,
) -> Changelog:
    sections = categorize_changes(changes)
    summary = _default_summary(sections)

    assessment = consult_oracle(
        oracle,
        {
            "kind": "changelog",
            "version": version,
            "previous_version": previous_version,
            "release_date": release_date.isoformat(),
            "sections": sections,
        },
        timeout_seconds=oracle_timeout_seconds,
        release_version=version,
    )
    if assessment is not None:
        oracle_summary = assessment.structured_fields.get("summary") or assessment.rationale
        if isinstance(oracle_summary, str) and oracle_summary.strip():
            summary = oracle_summary.strip()

    return Changelog(
        version=version,
        previous_version=previous_version,
        release_date=release_date,
        summary=summary,
        markdown=render_markdown(version, release_date, summary, sections),
        sections=sections,
    )
