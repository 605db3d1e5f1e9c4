from datetime import date, datetime, time
from decimal import Decimal
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_serializer, model_validator

from app.models import (
    DayKind,
    EventSource,
    EventType,
    LeaveType,
    NoticeType,
    RequestStatus,
    RetroClockType,
    ScoreReasonType,
    ScoreStatus,
    TermStatus,
    UserRole,
)

HHMM_PATTERN = r"^([01]\d|2[0-3]):([0-5]\d)$"
YEAR_MONTH_PATTERN = r"^\d{4}-(0[1-9]|1[0-2])$"

ClientSource = Literal["WEB", "DISCORD", "ADMIN"]


class AdminLoginRequest(BaseModel):
    email: str = Field(min_length=3, max_length=255)
    password: str = Field(min_length=1)


class AccessTokenLoginRequest(BaseModel):
    code: str = Field(min_length=1, max_length=32)
    token: str = Field(min_length=1, max_length=128)


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int


class UserCreate(BaseModel):
    code: str = Field(min_length=1, max_length=32)
    name: str = Field(min_length=1, max_length=255)
    email: str = Field(min_length=3, max_length=255)
    role: UserRole = UserRole.INTERN
    discord_id: str | None = Field(default=None, max_length=64)
    password: str | None = Field(default=None, min_length=8)


class UserRead(BaseModel):
    id: int
    code: str
    name: str
    email: str
    role: UserRole
    is_active: bool
    discord_id: str | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class UserBrief(BaseModel):
    id: int
    code: str
    name: str

    model_config = ConfigDict(from_attributes=True)


class AccessTokenIssued(BaseModel):
    user_id: int
    token: str
    expires_at: datetime


class DayScheduleEntry(BaseModel):
    start: str = Field(pattern=HHMM_PATTERN)
    end: str = Field(pattern=HHMM_PATTERN)


class TermCreate(BaseModel):
    start_date: date
    end_date: date
    status: TermStatus = TermStatus.CONFIRMED
    base_schedule: dict[str, DayScheduleEntry | None]


class TermRead(BaseModel):
    id: int
    user_id: int
    start_date: date
    end_date: date
    status: TermStatus
    base_schedule: dict[str, Any]
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ClockInRequest(BaseModel):
    mode: Literal["onsite", "remote"]
    source: ClientSource = "WEB"
    metadata: dict[str, Any] | None = None


class ClockActionRequest(BaseModel):
    source: ClientSource = "WEB"
    metadata: dict[str, Any] | None = None


class AttendanceEventRead(BaseModel):
    id: int
    user_id: int
    type: EventType
    ts_utc: datetime
    source: EventSource
    related_request_id: int | None = None
    metadata: dict[str, Any] = Field(default_factory=dict, validation_alias="event_metadata")

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)


class DaySummaryRead(BaseModel):
    id: int
    user_id: int
    day_date: date
    day_kind: DayKind
    work_onsite_seconds: int
    work_remote_seconds: int
    total_work_seconds: int
    scheduled_work_seconds: int
    is_late: bool
    late_minutes: int
    is_early_leave: bool
    early_leave_minutes: int
    is_absent: bool
    lunch_break_seconds: int
    lunch_overlap_seconds: int
    break_offsite_seconds: int
    has_advance_notice: bool
    status_notes: str | None = None
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ClockActionResponse(BaseModel):
    success: bool = True
    message: str
    event: AttendanceEventRead
    summary: DaySummaryRead | None = None


class TodayStatusResponse(BaseModel):
    day: date
    current_status: Literal["not_started", "working_onsite", "working_remote", "on_break", "finished"]
    events: list[AttendanceEventRead]
    summary: DaySummaryRead | None = None
    schedule: TermRead | None = None


class MonthStats(BaseModel):
    total_days: int
    total_work_seconds: int
    total_onsite_seconds: int
    total_remote_seconds: int
    late_days: int
    early_leave_days: int
    absent_days: int
    non_workdays: int
    average_work_hours: float


class MonthSummaryResponse(BaseModel):
    year_month: str
    summaries: list[DaySummaryRead]
    stats: MonthStats


class AdvanceNoticeCreate(BaseModel):
    notice_type: NoticeType
    expected_date: date
    expected_minutes: int | None = Field(default=None, ge=1)
    reason: str = Field(min_length=1, max_length=1000)
    source: ClientSource = "WEB"


class AdvanceNoticeRead(BaseModel):
    id: int
    user_id: int
    notice_type: NoticeType
    expected_date: date
    expected_minutes: int | None = None
    reason: str
    source: EventSource
    is_used: bool
    related_event_id: int | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class NoticeStats(BaseModel):
    total: int
    late: int
    leave: int
    used: int
    unused: int


class RetroRequestCreate(BaseModel):
    target_date: date
    target_time: str = Field(pattern=HHMM_PATTERN)
    type: RetroClockType
    reason: str = Field(min_length=1, max_length=1000)
    improvement_plan: str = Field(min_length=1, max_length=1000)
    attachment_ids: list[str] = Field(default_factory=list)


class RetroRequestRead(BaseModel):
    id: int
    user_id: int
    user: UserBrief | None = None
    target_date: date
    target_time: time
    type: RetroClockType
    reason: str
    improvement_plan: str
    attachment_ids: list[str]
    status: RequestStatus
    approver_id: int | None = None
    review_notes: str | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)

    @field_serializer("target_time")
    def _serialize_time(self, value: time) -> str:
        return value.strftime("%H:%M")


class RetroApprovalResponse(BaseModel):
    request: RetroRequestRead
    event: AttendanceEventRead
    summary: DaySummaryRead | None = None


class RequestApprove(BaseModel):
    notes: str | None = Field(default=None, max_length=1000)


class RequestReject(BaseModel):
    reason: str = Field(min_length=1, max_length=1000)


class RequestStats(BaseModel):
    total: int
    approved: int
    rejected: int
    pending: int
    with_advance_notice: int | None = None


class LeaveRequestCreate(BaseModel):
    start_ts: datetime
    end_ts: datetime
    type: LeaveType
    reason: str = Field(min_length=1, max_length=1000)
    has_advance_notice: bool = False
    attachment_ids: list[str] = Field(default_factory=list)


class LeaveRequestRead(BaseModel):
    id: int
    user_id: int
    user: UserBrief | None = None
    start_ts_utc: datetime
    end_ts_utc: datetime
    type: LeaveType
    reason: str
    has_advance_notice: bool
    advance_notice_at: datetime | None = None
    attachment_ids: list[str]
    status: RequestStatus
    approver_id: int | None = None
    review_notes: str | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ScoreDetailRead(BaseModel):
    id: int
    reason_type: ScoreReasonType
    related_date: date | None = None
    points_delta: Decimal
    has_advance_notice: bool
    notes: str | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ScoreRecordRead(BaseModel):
    id: int
    user_id: int
    user: UserBrief | None = None
    year_month: str
    base_score: Decimal
    total_deduction: Decimal
    bonus_points: Decimal
    final_score: Decimal
    status: ScoreStatus
    updated_at: datetime
    details: list[ScoreDetailRead] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)


class ScoreAdjustRequest(BaseModel):
    user_id: int = Field(ge=1)
    month: str = Field(pattern=YEAR_MONTH_PATTERN)
    points: Decimal = Field(max_digits=6, decimal_places=2)
    reason: str = Field(min_length=1, max_length=500)

    @model_validator(mode="after")
    def _validate_points(self) -> "ScoreAdjustRequest":
        if self.points == 0:
            raise ValueError("points must not be zero.")
        return self


class ScoreRecalculateRequest(BaseModel):
    month: str = Field(pattern=YEAR_MONTH_PATTERN)
    user_id: int | None = Field(default=None, ge=1)


class RankingNotifyResponse(BaseModel):
    ok: bool
    sent: bool
    error: str | None = None


class ConfigEntryRead(BaseModel):
    key: str
    value: Any
    category: str | None = None
    description: str | None = None
    updated_by: str | None = None
    updated_at: datetime | None = None


class ConfigUpdateRequest(BaseModel):
    value: Any


class ConfigReloadResponse(BaseModel):
    ok: bool = True
    loaded: int
