"""SQLAlchemy model package for the release orchestrator record store."""

from app.models.audit_log import AuditLog
from app.models.defect import Defect
from app.models.deployment_window import DeploymentWindowRecord
from app.models.feature_flag import FeatureFlag
from app.models.readiness import ReadinessCheck, ReadinessEvaluation
from app.models.release import Release
from app.models.release_event import ReleaseEvent
from app.models.release_item import ReleaseItem
from app.models.release_notification import ReleaseNotification
from app.models.rollback_plan import RollbackPlanRecord

__all__ = [
    "AuditLog",
    "Defect",
    "DeploymentWindowRecord",
    "FeatureFlag",
    "ReadinessCheck",
    "ReadinessEvaluation",
    "Release",
    "ReleaseEvent",
    "ReleaseItem",
    "ReleaseNotification",
    "RollbackPlanRecord",
]
