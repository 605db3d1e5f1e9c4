"""Initial timeclock schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-01 00:00:00
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

user_role = postgresql.ENUM("INTERN", "ADMIN", "SYSTEM_ADMIN", name="user_role", create_type=False)
term_status = postgresql.ENUM("PENDING", "CONFIRMED", "CANCELLED", name="term_status", create_type=False)
attendance_event_type = postgresql.ENUM(
    "WORK_ONSITE_START",
    "WORK_ONSITE_END",
    "WORK_REMOTE_START",
    "WORK_REMOTE_END",
    "BREAK_OFFSITE_START",
    "BREAK_OFFSITE_END",
    name="attendance_event_type",
    create_type=False,
)
attendance_event_source = postgresql.ENUM(
    "WEB",
    "DISCORD",
    "ADMIN",
    "RETRO_APPROVED",
    name="attendance_event_source",
    create_type=False,
)
day_kind = postgresql.ENUM(
    "NON_WORKDAY",
    "WORKDAY_PRESENT",
    "WORKDAY_ABSENT",
    name="day_kind",
    create_type=False,
)
notice_type = postgresql.ENUM("LATE", "LEAVE", name="notice_type", create_type=False)
request_status = postgresql.ENUM("PENDING", "APPROVED", "REJECTED", name="request_status", create_type=False)
leave_type = postgresql.ENUM("SICK", "MENSTRUAL", "PERSONAL", "OTHER", name="leave_type", create_type=False)
retro_clock_type = postgresql.ENUM(
    "WORK_ONSITE_START",
    "WORK_ONSITE_END",
    "WORK_REMOTE_START",
    "WORK_REMOTE_END",
    "BREAK_START",
    "BREAK_END",
    name="retro_clock_type",
    create_type=False,
)
score_status = postgresql.ENUM("CALCULATING", "FINAL", name="score_status", create_type=False)
score_reason_type = postgresql.ENUM(
    "LATE",
    "EARLY_LEAVE",
    "RETRO",
    "BONUS",
    "MISCONDUCT",
    name="score_reason_type",
    create_type=False,
)
audit_actor_type = postgresql.ENUM("ADMIN", "INTERN", "SYSTEM", name="audit_actor_type", create_type=False)

ALL_ENUMS = (
    user_role,
    term_status,
    attendance_event_type,
    attendance_event_source,
    day_kind,
    notice_type,
    request_status,
    leave_type,
    retro_clock_type,
    score_status,
    score_reason_type,
    audit_actor_type,
)


def _created_at() -> sa.Column:
    return sa.Column(
        "created_at",
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=sa.text("CURRENT_TIMESTAMP"),
    )


def _updated_at() -> sa.Column:
    return sa.Column(
        "updated_at",
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=sa.text("CURRENT_TIMESTAMP"),
    )


def _int_zero(name: str) -> sa.Column:
    return sa.Column(name, sa.Integer(), nullable=False, server_default=sa.text("0"))


def _bool_false(name: str) -> sa.Column:
    return sa.Column(name, sa.Boolean(), nullable=False, server_default=sa.text("false"))


def upgrade() -> None:
    bind = op.get_bind()
    for enum_type in ALL_ENUMS:
        enum_type.create(bind, checkfirst=True)

    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("code", sa.String(length=32), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("role", user_role, nullable=False, server_default=sa.text("'INTERN'")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("discord_id", sa.String(length=64), nullable=True),
        sa.Column("password_hash", sa.String(length=255), nullable=True),
        sa.Column("access_token", sa.String(length=128), nullable=True),
        sa.Column("token_expires_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        sa.UniqueConstraint("email", name="uq_users_email"),
        sa.UniqueConstraint("discord_id", name="uq_users_discord_id"),
        sa.UniqueConstraint("access_token", name="uq_users_access_token"),
    )
    op.create_index("ix_users_code", "users", ["code"], unique=True)

    op.create_table(
        "internship_terms",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        sa.Column("status", term_status, nullable=False, server_default=sa.text("'PENDING'")),
        sa.Column(
            "base_schedule",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        _created_at(),
        _updated_at(),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_internship_terms_user_id", "internship_terms", ["user_id"])
    op.create_index("ix_internship_terms_start_date", "internship_terms", ["start_date"])
    op.create_index("ix_internship_terms_end_date", "internship_terms", ["end_date"])

    op.create_table(
        "retro_clock_requests",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("target_date", sa.Date(), nullable=False),
        sa.Column("target_time", sa.Time(timezone=False), nullable=False),
        sa.Column("type", retro_clock_type, nullable=False),
        sa.Column("reason", sa.String(length=1000), nullable=False),
        sa.Column("improvement_plan", sa.String(length=1000), nullable=False),
        sa.Column(
            "attachment_ids",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'[]'::jsonb"),
        ),
        sa.Column("status", request_status, nullable=False, server_default=sa.text("'PENDING'")),
        sa.Column("approver_id", sa.Integer(), nullable=True),
        sa.Column("review_notes", sa.String(length=1000), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["approver_id"], ["users.id"], ondelete="SET NULL"),
    )
    op.create_index("ix_retro_clock_requests_user_id", "retro_clock_requests", ["user_id"])
    op.create_index("ix_retro_clock_requests_target_date", "retro_clock_requests", ["target_date"])
    op.create_index("ix_retro_clock_requests_status", "retro_clock_requests", ["status"])

    op.create_table(
        "attendance_events",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("type", attendance_event_type, nullable=False),
        sa.Column("ts_utc", sa.DateTime(timezone=True), nullable=False),
        sa.Column("source", attendance_event_source, nullable=False, server_default=sa.text("'WEB'")),
        sa.Column("related_request_id", sa.Integer(), nullable=True),
        sa.Column(
            "metadata",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        _created_at(),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["related_request_id"], ["retro_clock_requests.id"], ondelete="SET NULL"),
    )
    op.create_index("ix_attendance_events_user_id", "attendance_events", ["user_id"])
    op.create_index("ix_attendance_events_ts_utc", "attendance_events", ["ts_utc"])
    op.create_index("ix_attendance_events_user_ts", "attendance_events", ["user_id", "ts_utc"])

    op.create_table(
        "day_summaries",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("day_date", sa.Date(), nullable=False),
        _int_zero("work_onsite_seconds"),
        _int_zero("work_remote_seconds"),
        _int_zero("total_work_seconds"),
        _int_zero("scheduled_work_seconds"),
        _bool_false("is_late"),
        _int_zero("late_minutes"),
        _bool_false("is_early_leave"),
        _int_zero("early_leave_minutes"),
        _bool_false("is_absent"),
        sa.Column("day_kind", day_kind, nullable=False, server_default=sa.text("'WORKDAY_PRESENT'")),
        _int_zero("lunch_break_seconds"),
        _int_zero("lunch_overlap_seconds"),
        _int_zero("break_offsite_seconds"),
        _bool_false("has_advance_notice"),
        sa.Column("status_notes", sa.String(length=1000), nullable=True),
        _created_at(),
        _updated_at(),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("user_id", "day_date", name="uq_day_summaries_user_day"),
    )
    op.create_index("ix_day_summaries_user_id", "day_summaries", ["user_id"])
    op.create_index("ix_day_summaries_day_date", "day_summaries", ["day_date"])

    op.create_table(
        "advance_notices",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("notice_type", notice_type, nullable=False),
        sa.Column("expected_date", sa.Date(), nullable=False),
        sa.Column("expected_minutes", sa.Integer(), nullable=True),
        sa.Column("reason", sa.String(length=1000), nullable=False),
        sa.Column("source", attendance_event_source, nullable=False, server_default=sa.text("'WEB'")),
        _bool_false("is_used"),
        sa.Column("related_event_id", sa.Integer(), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["related_event_id"], ["attendance_events.id"], ondelete="SET NULL"),
    )
    op.create_index("ix_advance_notices_user_id", "advance_notices", ["user_id"])
    op.create_index("ix_advance_notices_expected_date", "advance_notices", ["expected_date"])

    op.create_table(
        "leave_requests",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("start_ts_utc", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_ts_utc", sa.DateTime(timezone=True), nullable=False),
        sa.Column("type", leave_type, nullable=False),
        sa.Column("reason", sa.String(length=1000), nullable=False),
        _bool_false("has_advance_notice"),
        sa.Column("advance_notice_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "attachment_ids",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'[]'::jsonb"),
        ),
        sa.Column("status", request_status, nullable=False, server_default=sa.text("'PENDING'")),
        sa.Column("approver_id", sa.Integer(), nullable=True),
        sa.Column("review_notes", sa.String(length=1000), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["approver_id"], ["users.id"], ondelete="SET NULL"),
    )
    op.create_index("ix_leave_requests_user_id", "leave_requests", ["user_id"])
    op.create_index("ix_leave_requests_start_ts_utc", "leave_requests", ["start_ts_utc"])
    op.create_index("ix_leave_requests_status", "leave_requests", ["status"])

    op.create_table(
        "score_records",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("year_month", sa.String(length=7), nullable=False),
        sa.Column("base_score", sa.Numeric(6, 2), nullable=False, server_default=sa.text("100")),
        sa.Column("total_deduction", sa.Numeric(6, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("bonus_points", sa.Numeric(6, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("final_score", sa.Numeric(6, 2), nullable=False, server_default=sa.text("100")),
        sa.Column("status", score_status, nullable=False, server_default=sa.text("'CALCULATING'")),
        _created_at(),
        _updated_at(),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("user_id", "year_month", name="uq_score_records_user_month"),
    )
    op.create_index("ix_score_records_user_id", "score_records", ["user_id"])
    op.create_index("ix_score_records_year_month", "score_records", ["year_month"])

    op.create_table(
        "score_details",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("score_record_id", sa.Integer(), nullable=False),
        sa.Column("reason_type", score_reason_type, nullable=False),
        sa.Column("related_date", sa.Date(), nullable=True),
        sa.Column("points_delta", sa.Numeric(6, 2), nullable=False),
        _bool_false("has_advance_notice"),
        sa.Column("notes", sa.String(length=1000), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(["score_record_id"], ["score_records.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_score_details_score_record_id", "score_details", ["score_record_id"])

    op.create_table(
        "system_configs",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("key", sa.String(length=100), nullable=False),
        sa.Column("value", sa.Text(), nullable=False),
        sa.Column("category", sa.String(length=50), nullable=False),
        sa.Column("description", sa.String(length=500), nullable=True),
        sa.Column("updated_by", sa.String(length=255), nullable=False, server_default=sa.text("'system'")),
        _updated_at(),
    )
    op.create_index("ix_system_configs_key", "system_configs", ["key"], unique=True)
    op.create_index("ix_system_configs_category", "system_configs", ["category"])

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column(
            "ts_utc",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.Column("actor_type", audit_actor_type, nullable=False),
        sa.Column("actor_id", sa.String(length=255), nullable=False),
        sa.Column("action", sa.String(length=255), nullable=False),
        sa.Column("entity_type", sa.String(length=255), nullable=True),
        sa.Column("entity_id", sa.String(length=255), nullable=True),
        sa.Column("ip", sa.String(length=128), nullable=True),
        sa.Column("user_agent", sa.String(length=1024), nullable=True),
        sa.Column("success", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column(
            "details",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
    )
    op.create_index("ix_audit_logs_ts_utc", "audit_logs", ["ts_utc"])


def downgrade() -> None:
    op.drop_index("ix_audit_logs_ts_utc", table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_index("ix_system_configs_category", table_name="system_configs")
    op.drop_index("ix_system_configs_key", table_name="system_configs")
    op.drop_table("system_configs")
    op.drop_index("ix_score_details_score_record_id", table_name="score_details")
    op.drop_table("score_details")
    op.drop_index("ix_score_records_year_month", table_name="score_records")
    op.drop_index("ix_score_records_user_id", table_name="score_records")
    op.drop_table("score_records")
    op.drop_index("ix_leave_requests_status", table_name="leave_requests")
    op.drop_index("ix_leave_requests_start_ts_utc", table_name="leave_requests")
    op.drop_index("ix_leave_requests_user_id", table_name="leave_requests")
    op.drop_table("leave_requests")
    op.drop_index("ix_advance_notices_expected_date", table_name="advance_notices")
    op.drop_index("ix_advance_notices_user_id", table_name="advance_notices")
    op.drop_table("advance_notices")
    op.drop_index("ix_day_summaries_day_date", table_name="day_summaries")
    op.drop_index("ix_day_summaries_user_id", table_name="day_summaries")
    op.drop_table("day_summaries")
    op.drop_index("ix_attendance_events_user_ts", table_name="attendance_events")
    op.drop_index("ix_attendance_events_ts_utc", table_name="attendance_events")
    op.drop_index("ix_attendance_events_user_id", table_name="attendance_events")
    op.drop_table("attendance_events")
    op.drop_index("ix_retro_clock_requests_status", table_name="retro_clock_requests")
    op.drop_index("ix_retro_clock_requests_target_date", table_name="retro_clock_requests")
    op.drop_index("ix_retro_clock_requests_user_id", table_name="retro_clock_requests")
    op.drop_table("retro_clock_requests")
    op.drop_index("ix_internship_terms_end_date", table_name="internship_terms")
    op.drop_index("ix_internship_terms_start_date", table_name="internship_terms")
    op.drop_index("ix_internship_terms_user_id", table_name="internship_terms")
    op.drop_table("internship_terms")
    op.drop_index("ix_users_code", table_name="users")
    op.drop_table("users")

    bind = op.get_bind()
    for enum_type in reversed(ALL_ENUMS):
        enum_type.drop(bind, checkfirst=True)
