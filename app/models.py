from __future__ import annotations

import enum
from datetime import date, datetime, time, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    Time,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db import Base


class UserRole(str, enum.Enum):
    INTERN = "INTERN"
    ADMIN = "ADMIN"
    SYSTEM_ADMIN = "SYSTEM_ADMIN"


class TermStatus(str, enum.Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    CANCELLED = "CANCELLED"


class EventType(str, enum.Enum):
    WORK_ONSITE_START = "WORK_ONSITE_START"
    WORK_ONSITE_END = "WORK_ONSITE_END"
    WORK_REMOTE_START = "WORK_REMOTE_START"
    WORK_REMOTE_END = "WORK_REMOTE_END"
    BREAK_OFFSITE_START = "BREAK_OFFSITE_START"
    BREAK_OFFSITE_END = "BREAK_OFFSITE_END"


WORK_START_TYPES = frozenset({EventType.WORK_ONSITE_START, EventType.WORK_REMOTE_START})
WORK_END_TYPES = frozenset({EventType.WORK_ONSITE_END, EventType.WORK_REMOTE_END})


class EventSource(str, enum.Enum):
    WEB = "WEB"
    DISCORD = "DISCORD"
    ADMIN = "ADMIN"
    RETRO_APPROVED = "RETRO_APPROVED"


class DayKind(str, enum.Enum):
    NON_WORKDAY = "NON_WORKDAY"
    WORKDAY_PRESENT = "WORKDAY_PRESENT"
    WORKDAY_ABSENT = "WORKDAY_ABSENT"


class NoticeType(str, enum.Enum):
    LATE = "LATE"
    LEAVE = "LEAVE"


class RequestStatus(str, enum.Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class LeaveType(str, enum.Enum):
    SICK = "SICK"
    MENSTRUAL = "MENSTRUAL"
    PERSONAL = "PERSONAL"
    OTHER = "OTHER"


class RetroClockType(str, enum.Enum):
    WORK_ONSITE_START = "WORK_ONSITE_START"
    WORK_ONSITE_END = "WORK_ONSITE_END"
    WORK_REMOTE_START = "WORK_REMOTE_START"
    WORK_REMOTE_END = "WORK_REMOTE_END"
    BREAK_START = "BREAK_START"
    BREAK_END = "BREAK_END"


class ScoreStatus(str, enum.Enum):
    CALCULATING = "CALCULATING"
    FINAL = "FINAL"


class ScoreReasonType(str, enum.Enum):
    LATE = "LATE"
    EARLY_LEAVE = "EARLY_LEAVE"
    RETRO = "RETRO"
    BONUS = "BONUS"
    MISCONDUCT = "MISCONDUCT"


class AuditActorType(str, enum.Enum):
    ADMIN = "ADMIN"
    INTERN = "INTERN"
    SYSTEM = "SYSTEM"


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    code: Mapped[str] = mapped_column(String(32), nullable=False, unique=True, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    role: Mapped[UserRole] = mapped_column(
        Enum(UserRole, name="user_role"),
        nullable=False,
        default=UserRole.INTERN,
        server_default=text("'INTERN'"),
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))
    discord_id: Mapped[str | None] = mapped_column(String(64), nullable=True, unique=True)
    password_hash: Mapped[str | None] = mapped_column(String(255), nullable=True)
    access_token: Mapped[str | None] = mapped_column(String(128), nullable=True, unique=True)
    token_expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )

    terms: Mapped[list[InternshipTerm]] = relationship(back_populates="user")
    attendance_events: Mapped[list[AttendanceEvent]] = relationship(back_populates="user")


class InternshipTerm(Base):
    __tablename__ = "internship_terms"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    start_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    end_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    status: Mapped[TermStatus] = mapped_column(
        Enum(TermStatus, name="term_status"),
        nullable=False,
        default=TermStatus.PENDING,
        server_default=text("'PENDING'"),
    )
    # weekday name (monday..sunday) -> {"start": "HH:MM", "end": "HH:MM"}
    base_schedule: Mapped[dict[str, Any]] = mapped_column(
        JSONB,
        nullable=False,
        default=dict,
        server_default=text("'{}'::jsonb"),
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    user: Mapped[User] = relationship(back_populates="terms")


class AttendanceEvent(Base):
    __tablename__ = "attendance_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    type: Mapped[EventType] = mapped_column(Enum(EventType, name="attendance_event_type"), nullable=False)
    ts_utc: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    source: Mapped[EventSource] = mapped_column(
        Enum(EventSource, name="attendance_event_source"),
        nullable=False,
        default=EventSource.WEB,
        server_default=text("'WEB'"),
    )
    related_request_id: Mapped[int | None] = mapped_column(
        ForeignKey("retro_clock_requests.id", ondelete="SET NULL"),
        nullable=True,
    )
    event_metadata: Mapped[dict[str, Any]] = mapped_column(
        "metadata",
        JSONB,
        nullable=False,
        default=dict,
        server_default=text("'{}'::jsonb"),
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )

    user: Mapped[User] = relationship(back_populates="attendance_events")


class DaySummary(Base):
    __tablename__ = "day_summaries"
    __table_args__ = (UniqueConstraint("user_id", "day_date", name="uq_day_summaries_user_day"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    day_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    work_onsite_seconds: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))
    work_remote_seconds: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))
    total_work_seconds: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))
    scheduled_work_seconds: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))
    is_late: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=text("false"))
    late_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))
    is_early_leave: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=text("false"))
    early_leave_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))
    is_absent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=text("false"))
    day_kind: Mapped[DayKind] = mapped_column(
        Enum(DayKind, name="day_kind"),
        nullable=False,
        default=DayKind.WORKDAY_PRESENT,
        server_default=text("'WORKDAY_PRESENT'"),
    )
    lunch_break_seconds: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))
    lunch_overlap_seconds: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))
    break_offsite_seconds: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))
    has_advance_notice: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=text("false"),
    )
    status_notes: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=lambda: datetime.now(timezone.utc),
    )


class AdvanceNotice(Base):
    __tablename__ = "advance_notices"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    notice_type: Mapped[NoticeType] = mapped_column(Enum(NoticeType, name="notice_type"), nullable=False)
    expected_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    expected_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    reason: Mapped[str] = mapped_column(String(1000), nullable=False)
    source: Mapped[EventSource] = mapped_column(
        Enum(EventSource, name="attendance_event_source"),
        nullable=False,
        default=EventSource.WEB,
        server_default=text("'WEB'"),
    )
    is_used: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=text("false"))
    related_event_id: Mapped[int | None] = mapped_column(
        ForeignKey("attendance_events.id", ondelete="SET NULL"),
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )


class LeaveRequest(Base):
    __tablename__ = "leave_requests"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    start_ts_utc: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    end_ts_utc: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    type: Mapped[LeaveType] = mapped_column(Enum(LeaveType, name="leave_type"), nullable=False)
    reason: Mapped[str] = mapped_column(String(1000), nullable=False)
    has_advance_notice: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=text("false"),
    )
    advance_notice_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    attachment_ids: Mapped[list[str]] = mapped_column(
        JSONB,
        nullable=False,
        default=list,
        server_default=text("'[]'::jsonb"),
    )
    status: Mapped[RequestStatus] = mapped_column(
        Enum(RequestStatus, name="request_status"),
        nullable=False,
        default=RequestStatus.PENDING,
        server_default=text("'PENDING'"),
        index=True,
    )
    approver_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    review_notes: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )

    user: Mapped[User] = relationship(foreign_keys=[user_id])


class RetroClockRequest(Base):
    __tablename__ = "retro_clock_requests"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    target_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    target_time: Mapped[time] = mapped_column(Time(timezone=False), nullable=False)
    type: Mapped[RetroClockType] = mapped_column(Enum(RetroClockType, name="retro_clock_type"), nullable=False)
    reason: Mapped[str] = mapped_column(String(1000), nullable=False)
    improvement_plan: Mapped[str] = mapped_column(String(1000), nullable=False)
    attachment_ids: Mapped[list[str]] = mapped_column(
        JSONB,
        nullable=False,
        default=list,
        server_default=text("'[]'::jsonb"),
    )
    status: Mapped[RequestStatus] = mapped_column(
        Enum(RequestStatus, name="request_status"),
        nullable=False,
        default=RequestStatus.PENDING,
        server_default=text("'PENDING'"),
        index=True,
    )
    approver_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    review_notes: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )

    user: Mapped[User] = relationship(foreign_keys=[user_id])


class ScoreRecord(Base):
    __tablename__ = "score_records"
    __table_args__ = (UniqueConstraint("user_id", "year_month", name="uq_score_records_user_month"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    year_month: Mapped[str] = mapped_column(String(7), nullable=False, index=True)
    base_score: Mapped[Decimal] = mapped_column(
        Numeric(6, 2),
        nullable=False,
        default=Decimal("100"),
        server_default=text("100"),
    )
    total_deduction: Mapped[Decimal] = mapped_column(
        Numeric(6, 2),
        nullable=False,
        default=Decimal("0"),
        server_default=text("0"),
    )
    bonus_points: Mapped[Decimal] = mapped_column(
        Numeric(6, 2),
        nullable=False,
        default=Decimal("0"),
        server_default=text("0"),
    )
    final_score: Mapped[Decimal] = mapped_column(
        Numeric(6, 2),
        nullable=False,
        default=Decimal("100"),
        server_default=text("100"),
    )
    status: Mapped[ScoreStatus] = mapped_column(
        Enum(ScoreStatus, name="score_status"),
        nullable=False,
        default=ScoreStatus.CALCULATING,
        server_default=text("'CALCULATING'"),
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    user: Mapped[User] = relationship()
    details: Mapped[list[ScoreDetail]] = relationship(
        back_populates="score_record",
        cascade="all, delete-orphan",
        order_by="ScoreDetail.id",
    )


class ScoreDetail(Base):
    __tablename__ = "score_details"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    score_record_id: Mapped[int] = mapped_column(
        ForeignKey("score_records.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    reason_type: Mapped[ScoreReasonType] = mapped_column(
        Enum(ScoreReasonType, name="score_reason_type"),
        nullable=False,
    )
    related_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    points_delta: Mapped[Decimal] = mapped_column(Numeric(6, 2), nullable=False)
    has_advance_notice: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=text("false"),
    )
    notes: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )

    score_record: Mapped[ScoreRecord] = relationship(back_populates="details")


class SystemConfig(Base):
    __tablename__ = "system_configs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    key: Mapped[str] = mapped_column(String(100), nullable=False, unique=True, index=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    description: Mapped[str | None] = mapped_column(String(500), nullable=True)
    updated_by: Mapped[str] = mapped_column(String(255), nullable=False, default="system")
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=lambda: datetime.now(timezone.utc),
    )


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    ts_utc: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
        index=True,
    )
    actor_type: Mapped[AuditActorType] = mapped_column(
        Enum(AuditActorType, name="audit_actor_type"),
        nullable=False,
    )
    actor_id: Mapped[str] = mapped_column(String(255), nullable=False)
    action: Mapped[str] = mapped_column(String(255), nullable=False)
    entity_type: Mapped[str | None] = mapped_column(String(255), nullable=True)
    entity_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    ip: Mapped[str | None] = mapped_column(String(128), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))
    details: Mapped[dict[str, Any]] = mapped_column(
        JSONB,
        nullable=False,
        default=dict,
        server_default=text("'{}'::jsonb"),
    )
