from __future__ import annotations

from dataclasses import dataclass, field
import json
import logging
from typing import Any, Protocol
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import Settings
from app.models import ReleaseNotification
from app.services.observability import current_trace_id, emit_structured_log


@dataclass(frozen=True)
class ReleaseSummary:
    """Outcome of one orchestration pass, as sent to the notification channel."""

    version: str
    pass_kind: str
    status: str
    bump_type: str | None = None
    risk_level: str | None = None
    recommendation: str | None = None
    blocked_reason: str | None = None
    blocking_issues: list[str] = field(default_factory=list)
    conditions: list[str] = field(default_factory=list)
    window: dict[str, Any] | None = None
    rollback: dict[str, Any] | None = None
    detail: str | None = None
    error: str | None = None

    def subject(self) -> str:
        parts = [f"Release {self.version}"]
        if self.recommendation:
            parts.append(self.recommendation)
        parts.append(self.status)
        if self.blocked_reason:
            parts.append(self.blocked_reason)
        if self.error:
            parts.append(f"FAILED {self.error}")
        return " | ".join(parts)

    def to_payload(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "pass_kind": self.pass_kind,
            "status": self.status,
            "bump_type": self.bump_type,
            "risk_level": self.risk_level,
            "recommendation": self.recommendation,
            "blocked_reason": self.blocked_reason,
            "blocking_issues": list(self.blocking_issues),
            "conditions": list(self.conditions),
            "window": self.window,
            "rollback": self.rollback,
            "detail": self.detail,
            "error": self.error,
        }


class NotificationChannel(Protocol):
    def send(self, db: Session, summary: ReleaseSummary) -> None: ...


class OutboxNotificationChannel:
    """Stores each summary in the outbox table and optionally posts it to a webhook.

    Delivery is fire-and-forget: failures are logged and never raised.
    """

    def __init__(self, *, webhook_url: str | None = None, timeout_seconds: float = 5.0) -> None:
        self.webhook_url = webhook_url
        self.timeout_seconds = timeout_seconds

    def send(self, db: Session, summary: ReleaseSummary) -> None:
        payload = summary.to_payload()
        try:
            row = ReleaseNotification(
                release_version=summary.version,
                subject=summary.subject(),
                payload=json.loads(json.dumps(payload, default=str)),
                delivery_status="queued" if self.webhook_url else "stored",
            )
            db.add(row)
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            emit_structured_log(
                component="notifications",
                event="notification_store_failed",
                level=logging.WARNING,
                release_version=summary.version,
                error=str(exc),
            )
            return

        if not self.webhook_url:
            return

        delivered = self._post(payload, summary.version)
        try:
            row.delivery_status = "delivered" if delivered else "failed"
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            emit_structured_log(
                component="notifications",
                event="notification_status_update_failed",
                level=logging.WARNING,
                release_version=summary.version,
                error=str(exc),
            )

    def _post(self, payload: dict[str, Any], release_version: str) -> bool:
        headers = {"Content-Type": "application/json"}
        trace_id = current_trace_id()
        if trace_id:
            headers["X-Trace-Id"] = trace_id
        body = json.dumps(payload, default=str).encode("utf-8")
        request = Request(self.webhook_url, data=body, method="POST", headers=headers)
        try:
            with urlopen(request, timeout=self.timeout_seconds) as response:
                status_code = int(getattr(response, "status", 200))
        except HTTPError as exc:
            status_code = exc.code
        except (URLError, TimeoutError, OSError) as exc:
            emit_structured_log(
                component="notifications",
                event="notification_delivery_failed",
                level=logging.WARNING,
                release_version=release_version,
                error=str(exc),
            )
            return False

        if status_code >= 400:
            emit_structured_log(
                component="notifications",
                event="notification_delivery_failed",
                level=logging.WARNING,
                release_version=release_version,
                status_code=status_code,
            )
            return False
        return True


def build_notification_channel(settings: Settings) -> NotificationChannel:
    return OutboxNotificationChannel(
        webhook_url=settings.notification_webhook_url,
        timeout_seconds=settings.notification_timeout_seconds,
    )
