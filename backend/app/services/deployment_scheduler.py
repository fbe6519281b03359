from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone, tzinfo
import logging
from typing import Any
from zoneinfo import ZoneInfo

from app.domain.risk import RiskLevel, RiskTierTable
from app.services.observability import emit_structured_log
from app.services.oracle import AssessmentOracle, consult_oracle

WEEKDAY_NAMES = ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]
# Fridays and weekends are only allowed for low risk releases.
RESTRICTED_WEEKDAYS = {4, 5, 6}
DEFAULT_PREFERRED_DAYS = ("tuesday", "wednesday", "thursday")
DEFAULT_START_OFFSET_MINUTES = 60


@dataclass(frozen=True)
class AvailabilityHours:
    start: time
    end: time

    def label(self) -> str:
        return f"{self.start:%H:%M}-{self.end:%H:%M}"


def parse_clock(value: str) -> time:
    hours, minutes = value.strip().split(":", 1)
    return time(int(hours), int(minutes))


def parse_availability(raw: str | None) -> AvailabilityHours:
    if not raw:
        return AvailabilityHours(time(9, 0), time(17, 0))
    start_raw, end_raw = raw.split("-", 1)
    availability = AvailabilityHours(parse_clock(start_raw), parse_clock(end_raw))
    if availability.end <= availability.start:
        raise ValueError(f"invalid_team_availability:{raw}")
    return availability


def resolve_timezone(name: str) -> tzinfo:
    if name.strip().upper() == "UTC":
        return timezone.utc
    return ZoneInfo(name)


@dataclass(frozen=True)
class SchedulingConstraints:
    blackout_dates: frozenset[date] = frozenset()
    preferred_days: tuple[str, ...] = DEFAULT_PREFERRED_DAYS
    team_availability: AvailabilityHours = field(default_factory=lambda: AvailabilityHours(time(9, 0), time(17, 0)))
    unavailable_dates: frozenset[date] = frozenset()
    earliest_date: date | None = None

    def to_payload(self) -> dict[str, Any]:
        return {
            "blackout_dates": sorted(day.isoformat() for day in self.blackout_dates),
            "preferred_days": list(self.preferred_days),
            "team_availability": self.team_availability.label(),
            "unavailable_dates": sorted(day.isoformat() for day in self.unavailable_dates),
            "earliest_date": self.earliest_date.isoformat() if self.earliest_date else None,
        }


@dataclass(frozen=True)
class WindowSlot:
    date: date
    start_time: time
    end_time: time

    def label(self) -> str:
        return f"{self.date.isoformat()} {self.start_time:%H:%M}-{self.end_time:%H:%M}"

    def to_payload(self) -> dict[str, str]:
        return {
            "date": self.date.isoformat(),
            "day_of_week": WEEKDAY_NAMES[self.date.weekday()].capitalize(),
            "start_time": f"{self.start_time:%H:%M}",
            "end_time": f"{self.end_time:%H:%M}",
        }


@dataclass(frozen=True)
class DeploymentWindowProposal:
    release_version: str
    risk_level: RiskLevel
    primary: WindowSlot
    backup: WindowSlot
    monitoring_end_time: datetime
    timezone: str
    rationale: str
    source: str = "default"


@dataclass(frozen=True)
class NoWindowFound:
    release_version: str
    risk_level: RiskLevel
    reason: str
    searched_from: date
    searched_days: int


def is_date_allowed(day: date, risk_level: RiskLevel, constraints: SchedulingConstraints) -> bool:
    if day in constraints.blackout_dates or day in constraints.unavailable_dates:
        return False
    if risk_level != RiskLevel.LOW and day.weekday() in RESTRICTED_WEEKDAYS:
        return False
    return True


def candidate_dates(
    *,
    risk_level: RiskLevel,
    constraints: SchedulingConstraints,
    start: date,
    lookahead_days: int,
) -> list[date]:
    """Valid dates in the look-ahead, preferred weekdays first, then chronological."""
    preferred = {day.strip().lower() for day in constraints.preferred_days}
    valid = [
        start + timedelta(days=offset)
        for offset in range(lookahead_days)
        if is_date_allowed(start + timedelta(days=offset), risk_level, constraints)
    ]
    return sorted(valid, key=lambda day: (WEEKDAY_NAMES[day.weekday()] not in preferred, day))


def monitoring_end_time(primary: WindowSlot, monitoring_hours: int, tz: tzinfo) -> datetime:
    """Elapsed hours after the window closes, in UTC; local wall clocks shift across DST."""
    window_end = datetime.combine(primary.date, primary.end_time, tzinfo=tz).astimezone(timezone.utc)
    return window_end + timedelta(hours=monitoring_hours)


def _slot_for(day: date, start: time, window_minutes: int) -> WindowSlot:
    end = (datetime.combine(day, start) + timedelta(minutes=window_minutes)).time()
    return WindowSlot(date=day, start_time=start, end_time=end)


def _default_start(availability: AvailabilityHours, window_minutes: int) -> time:
    start_dt = datetime.combine(date.min, availability.start)
    end_dt = datetime.combine(date.min, availability.end)
    offset_start = start_dt + timedelta(minutes=DEFAULT_START_OFFSET_MINUTES)
    if offset_start + timedelta(minutes=window_minutes) <= end_dt:
        return offset_start.time()
    return availability.start


def window_violations(
    slot: WindowSlot,
    *,
    risk_level: RiskLevel,
    constraints: SchedulingConstraints,
    allowed_dates: set[date] | None = None,
) -> list[str]:
    violations: list[str] = []
    if allowed_dates is not None and slot.date not in allowed_dates:
        violations.append(f"date_not_allowed:{slot.date.isoformat()}")
    if not is_date_allowed(slot.date, risk_level, constraints):
        violations.append(f"date_violates_constraints:{slot.date.isoformat()}")
    if slot.end_time <= slot.start_time:
        violations.append("window_crosses_midnight")
    availability = constraints.team_availability
    if slot.start_time < availability.start or slot.end_time > availability.end:
        violations.append(f"outside_team_availability:{availability.label()}")
    return violations


def stored_window_violations(
    primary: WindowSlot,
    backup: WindowSlot,
    *,
    risk_level: RiskLevel,
    constraints: SchedulingConstraints,
    today: date,
) -> list[str]:
    earliest = constraints.earliest_date or (today + timedelta(days=1))
    violations: list[str] = []
    for label, slot in (("primary", primary), ("backup", backup)):
        if slot.date < earliest:
            violations.append(f"{label}:date_passed:{slot.date.isoformat()}")
        violations.extend(
            f"{label}:{item}"
            for item in window_violations(slot, risk_level=risk_level, constraints=constraints)
        )
    if primary.date == backup.date:
        violations.append("backup_same_date_as_primary")
    return violations


def _parse_oracle_slot(raw: Any, window_minutes: int) -> WindowSlot | None:
    if not isinstance(raw, dict):
        return None
    try:
        day = date.fromisoformat(str(raw.get("date")))
        start = parse_clock(str(raw.get("start_time")))
    except (TypeError, ValueError):
        return None
    return _slot_for(day, start, window_minutes)


def schedule_deployment_window(
    *,
    release_version: str,
    risk_level: RiskLevel,
    constraints: SchedulingConstraints,
    risk_table: RiskTierTable,
    oracle: AssessmentOracle,
    oracle_timeout_seconds: float,
    today: date,
    timezone_name: str,
    lookahead_days: int = 21,
    window_minutes: int = 120,
    max_oracle_attempts: int = 2,
) -> DeploymentWindowProposal | NoWindowFound:
    tz = resolve_timezone(timezone_name)
    start = constraints.earliest_date or (today + timedelta(days=1))
    availability = constraints.team_availability
    availability_minutes = (
        datetime.combine(date.min, availability.end) - datetime.combine(date.min, availability.start)
    ).total_seconds() / 60

    def _not_found(reason: str) -> NoWindowFound:
        emit_structured_log(
            component="deployment_scheduler",
            event="no_window_found",
            level=logging.WARNING,
            release_version=release_version,
            risk_level=risk_level.value,
            reason=reason,
            searched_from=start.isoformat(),
            searched_days=lookahead_days,
        )
        return NoWindowFound(
            release_version=release_version,
            risk_level=risk_level,
            reason=reason,
            searched_from=start,
            searched_days=lookahead_days,
        )

    if window_minutes > availability_minutes:
        return _not_found("team_availability_shorter_than_window")

    candidates = candidate_dates(
        risk_level=risk_level, constraints=constraints, start=start, lookahead_days=lookahead_days
    )
    if not candidates:
        return _not_found("no_valid_date_in_lookahead")
    if len(candidates) < 2:
        return _not_found("no_valid_backup_date_in_lookahead")

    allowed = set(candidates)
    default_start = _default_start(availability, window_minutes)
    primary = _slot_for(candidates[0], default_start, window_minutes)
    backup = _slot_for(candidates[1], default_start, window_minutes)
    preferred = {day.strip().lower() for day in constraints.preferred_days}
    rationale = (
        f"Earliest {'preferred ' if WEEKDAY_NAMES[primary.date.weekday()] in preferred else ''}"
        f"date satisfying {risk_level.value} risk constraints"
    )
    source = "default"

    violations: list[str] = []
    for attempt in range(1, max(0, max_oracle_attempts) + 1):
        context = {
            "kind": "deployment_window",
            "version": release_version,
            "risk_level": risk_level.value,
            "monitoring_hours": risk_table.monitoring_hours(risk_level),
            "window_minutes": window_minutes,
            "timezone": timezone_name,
            "constraints": constraints.to_payload(),
            "candidate_dates": [day.isoformat() for day in candidates],
            "attempt": attempt,
            "previous_violations": violations,
        }
        assessment = consult_oracle(
            oracle, context, timeout_seconds=oracle_timeout_seconds, release_version=release_version
        )
        if assessment is None:
            break

        proposed_primary = _parse_oracle_slot(assessment.structured_fields.get("primary"), window_minutes)
        proposed_backup = _parse_oracle_slot(assessment.structured_fields.get("backup"), window_minutes)
        if proposed_primary is None or proposed_backup is None:
            violations = ["proposal_incomplete"]
        else:
            violations = window_violations(
                proposed_primary, risk_level=risk_level, constraints=constraints, allowed_dates=allowed
            ) + window_violations(
                proposed_backup, risk_level=risk_level, constraints=constraints, allowed_dates=allowed
            )
            if proposed_primary.date == proposed_backup.date:
                violations.append("backup_same_date_as_primary")

        if not violations:
            primary, backup = proposed_primary, proposed_backup
            rationale = assessment.rationale or rationale
            source = "oracle"
            break

        emit_structured_log(
            component="deployment_scheduler",
            event="oracle_window_rejected",
            level=logging.WARNING,
            release_version=release_version,
            attempt=attempt,
            violations=violations,
        )

    proposal = DeploymentWindowProposal(
        release_version=release_version,
        risk_level=risk_level,
        primary=primary,
        backup=backup,
        monitoring_end_time=monitoring_end_time(primary, risk_table.monitoring_hours(risk_level), tz),
        timezone=timezone_name,
        rationale=rationale,
        source=source,
    )
    emit_structured_log(
        component="deployment_scheduler",
        event="deployment_window_scheduled",
        release_version=release_version,
        risk_level=risk_level.value,
        primary=primary.label(),
        backup=backup.label(),
        source=source,
    )
    return proposal
