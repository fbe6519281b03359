"""initial release orchestrator schema

Revision ID: 20261016_0001
Revises: None
Create Date: 2026-10-16 09:30:00

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "20261016_0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "releases",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("version", sa.String(length=64), nullable=False),
        sa.Column("previous_version", sa.String(length=64), nullable=False),
        sa.Column("bump_type", sa.String(length=16), nullable=False),
        sa.Column("pre_release", sa.String(length=64), nullable=True),
        sa.Column("risk_level", sa.String(length=16), nullable=True),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("blocked_reason", sa.String(length=64), nullable=True),
        sa.Column("blocked_detail", sa.Text(), nullable=True),
        sa.Column("total_changes", sa.Integer(), nullable=False),
        sa.Column("has_db_migration", sa.Boolean(), nullable=False),
        sa.Column("has_api_change", sa.Boolean(), nullable=False),
        sa.Column("has_breaking_api_change", sa.Boolean(), nullable=False),
        sa.Column("has_irreversible_schema_change", sa.Boolean(), nullable=False),
        sa.Column("tests_passing", sa.Boolean(), nullable=True),
        sa.Column("test_coverage", sa.Float(), nullable=True),
        sa.Column("signed_off_by", sa.String(length=255), nullable=True),
        sa.Column("changelog_summary", sa.Text(), nullable=True),
        sa.Column("changelog_markdown", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("deployed_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_releases_version", "releases", ["version"], unique=True)
    op.create_index("ix_releases_status", "releases", ["status"], unique=False)
    op.create_index("ix_releases_risk_level", "releases", ["risk_level"], unique=False)

    op.create_table(
        "release_items",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("release_version", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("needs_feature_flag", sa.Boolean(), nullable=False),
        sa.Column("risk_level", sa.String(length=16), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_release_items_release_version", "release_items", ["release_version"], unique=False)

    op.create_table(
        "defects",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("severity", sa.String(length=8), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_defects_severity", "defects", ["severity"], unique=False)
    op.create_index("ix_defects_status", "defects", ["status"], unique=False)

    op.create_table(
        "readiness_evaluations",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("release_version", sa.String(length=64), nullable=False),
        sa.Column("catalog_version", sa.Integer(), nullable=False),
        sa.Column("recommendation", sa.String(length=32), nullable=False),
        sa.Column("unresolved", sa.Boolean(), nullable=False),
        sa.Column("blocking_issues", sa.JSON(), nullable=True),
        sa.Column("warnings", sa.JSON(), nullable=True),
        sa.Column("conditions", sa.JSON(), nullable=True),
        sa.Column("advisory_risk_level", sa.String(length=16), nullable=True),
        sa.Column("risk_narrative", sa.Text(), nullable=True),
        sa.Column("evaluated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["release_version"], ["releases.version"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_readiness_evaluations_release_version",
        "readiness_evaluations",
        ["release_version"],
        unique=False,
    )

    op.create_table(
        "readiness_checks",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("evaluation_id", sa.Integer(), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=64), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("blocking", sa.Boolean(), nullable=False),
        sa.Column("detail", sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(["evaluation_id"], ["readiness_evaluations.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_readiness_checks_evaluation_id", "readiness_checks", ["evaluation_id"], unique=False)

    op.create_table(
        "rollback_plans",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("release_version", sa.String(length=64), nullable=False),
        sa.Column("revision", sa.Integer(), nullable=False),
        sa.Column("rollback_target", sa.String(length=64), nullable=False),
        sa.Column("risk_level", sa.String(length=16), nullable=False),
        sa.Column("estimated_minutes", sa.Integer(), nullable=False),
        sa.Column("rollback_threshold_minutes", sa.Integer(), nullable=False),
        sa.Column("below_target_speed", sa.Boolean(), nullable=False),
        sa.Column("steps", sa.JSON(), nullable=False),
        sa.Column("triggers", sa.JSON(), nullable=False),
        sa.Column("migrations_to_reverse", sa.JSON(), nullable=False),
        sa.Column("data_backup_required", sa.Boolean(), nullable=False),
        sa.Column("api_rollback_required", sa.Boolean(), nullable=False),
        sa.Column("monitoring", sa.JSON(), nullable=True),
        sa.Column("used_fallback", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["release_version"], ["releases.version"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("release_version", "revision", name="uq_rollback_plans_version_revision"),
    )
    op.create_index("ix_rollback_plans_release_version", "rollback_plans", ["release_version"], unique=False)

    op.create_table(
        "deployment_windows",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("release_version", sa.String(length=64), nullable=False),
        sa.Column("risk_level", sa.String(length=16), nullable=False),
        sa.Column("timezone", sa.String(length=64), nullable=False),
        sa.Column("primary_date", sa.Date(), nullable=False),
        sa.Column("primary_start_time", sa.Time(), nullable=False),
        sa.Column("primary_end_time", sa.Time(), nullable=False),
        sa.Column("backup_date", sa.Date(), nullable=False),
        sa.Column("backup_start_time", sa.Time(), nullable=False),
        sa.Column("backup_end_time", sa.Time(), nullable=False),
        sa.Column("monitoring_end_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("rationale", sa.Text(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["release_version"], ["releases.version"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_deployment_windows_release_version",
        "deployment_windows",
        ["release_version"],
        unique=True,
    )

    op.create_table(
        "feature_flags",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("name", sa.String(length=128), nullable=False),
        sa.Column("feature", sa.String(length=255), nullable=False),
        sa.Column("release_version", sa.String(length=64), nullable=False),
        sa.Column("rollout_strategy", sa.String(length=32), nullable=False),
        sa.Column("phases", sa.JSON(), nullable=False),
        sa.Column("current_phase_index", sa.Integer(), nullable=False),
        sa.Column("current_percentage", sa.Integer(), nullable=False),
        sa.Column("enabled", sa.Boolean(), nullable=False),
        sa.Column("configured", sa.Boolean(), nullable=False),
        sa.Column("kill_switch_conditions", sa.JSON(), nullable=False),
        sa.Column("kill_switch_tripped", sa.Boolean(), nullable=False),
        sa.Column("kill_switch_reason", sa.Text(), nullable=True),
        sa.Column("phase_started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("full_rollout_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("archived_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_feature_flags_name", "feature_flags", ["name"], unique=True)
    op.create_index("ix_feature_flags_release_version", "feature_flags", ["release_version"], unique=False)

    op.create_table(
        "release_events",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("release_version", sa.String(length=64), nullable=False),
        sa.Column("event_type", sa.String(length=64), nullable=False),
        sa.Column("status_from", sa.String(length=32), nullable=True),
        sa.Column("status_to", sa.String(length=32), nullable=True),
        sa.Column("payload", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_release_events_release_version", "release_events", ["release_version"], unique=False)
    op.create_index("ix_release_events_event_type", "release_events", ["event_type"], unique=False)

    op.create_table(
        "audit_log",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("actor_id", sa.String(length=64), nullable=True),
        sa.Column("action", sa.String(length=128), nullable=False),
        sa.Column("payload_hash", sa.String(length=128), nullable=False),
        sa.Column("payload_json", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_audit_log_actor_id", "audit_log", ["actor_id"], unique=False)
    op.create_index("ix_audit_log_action", "audit_log", ["action"], unique=False)
    op.create_index("ix_audit_log_payload_hash", "audit_log", ["payload_hash"], unique=False)

    op.create_table(
        "release_notifications",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("release_version", sa.String(length=64), nullable=False),
        sa.Column("subject", sa.String(length=255), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("delivery_status", sa.String(length=32), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_release_notifications_release_version",
        "release_notifications",
        ["release_version"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("ix_release_notifications_release_version", table_name="release_notifications")
    op.drop_table("release_notifications")

    op.drop_index("ix_audit_log_payload_hash", table_name="audit_log")
    op.drop_index("ix_audit_log_action", table_name="audit_log")
    op.drop_index("ix_audit_log_actor_id", table_name="audit_log")
    op.drop_table("audit_log")

    op.drop_index("ix_release_events_event_type", table_name="release_events")
    op.drop_index("ix_release_events_release_version", table_name="release_events")
    op.drop_table("release_events")

    op.drop_index("ix_feature_flags_release_version", table_name="feature_flags")
    op.drop_index("ix_feature_flags_name", table_name="feature_flags")
    op.drop_table("feature_flags")

    op.drop_index("ix_deployment_windows_release_version", table_name="deployment_windows")
    op.drop_table("deployment_windows")

    op.drop_index("ix_rollback_plans_release_version", table_name="rollback_plans")
    op.drop_table("rollback_plans")

    op.drop_index("ix_readiness_checks_evaluation_id", table_name="readiness_checks")
    op.drop_table("readiness_checks")

    op.drop_index("ix_readiness_evaluations_release_version", table_name="readiness_evaluations")
    op.drop_table("readiness_evaluations")

    op.drop_index("ix_defects_status", table_name="defects")
    op.drop_index("ix_defects_severity", table_name="defects")
    op.drop_table("defects")

    op.drop_index("ix_release_items_release_version", table_name="release_items")
    op.drop_table("release_items")

    op.drop_index("ix_releases_risk_level", table_name="releases")
    op.drop_index("ix_releases_status", table_name="releases")
    op.drop_index("ix_releases_version", table_name="releases")
    op.drop_table("releases")
