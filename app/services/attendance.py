from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Literal

from sqlalchemy.orm import Session

from app.errors import InvalidInputError, InvalidStateError
from app.models import (
    WORK_START_TYPES,
    AttendanceEvent,
    DayKind,
    DaySummary,
    EventSource,
    EventType,
    InternshipTerm,
)
from app.services.day_summary import (
    get_summary,
    list_day_events,
    list_summaries_in_range,
    load_work_rules,
    recompute_day,
)
from app.services.local_time import local_date_from_utc, month_date_range, normalize_ts, utcnow
from app.services.notifications import notify_clock_action
from app.services.schedules import current_schedule
from app.services.users import get_active_user
from app.services.work_hours import ConfigReader

logger = logging.getLogger("app.attendance")

ClockMode = Literal["onsite", "remote"]
CurrentStatus = Literal["not_started", "working_onsite", "working_remote", "on_break", "finished"]

_START_BY_MODE: dict[str, EventType] = {
    "onsite": EventType.WORK_ONSITE_START,
    "remote": EventType.WORK_REMOTE_START,
}
_END_BY_START: dict[EventType, EventType] = {
    EventType.WORK_ONSITE_START: EventType.WORK_ONSITE_END,
    EventType.WORK_REMOTE_START: EventType.WORK_REMOTE_END,
}


@dataclass
class ClockResult:
    event: AttendanceEvent
    message: str
    summary: DaySummary | None = None


@dataclass
class TodayStatus:
    day: date
    events: list[AttendanceEvent]
    summary: DaySummary | None
    schedule: InternshipTerm | None
    current_status: CurrentStatus


@dataclass
class MonthSummary:
    year_month: str
    summaries: list[DaySummary]
    stats: dict[str, Any] = field(default_factory=dict)


def derive_current_status(events: list[AttendanceEvent]) -> CurrentStatus:
    if not events:
        return "not_started"
    last = events[-1]
    if last.type == EventType.WORK_ONSITE_START:
        return "working_onsite"
    if last.type == EventType.WORK_REMOTE_START:
        return "working_remote"
    if last.type == EventType.BREAK_OFFSITE_START:
        return "on_break"
    if last.type == EventType.BREAK_OFFSITE_END:
        first_start = next((item for item in events if item.type in WORK_START_TYPES), None)
        if first_start is not None and first_start.type == EventType.WORK_ONSITE_START:
            return "working_onsite"
        return "working_remote"
    return "finished"


def _append_event(
    db: Session,
    *,
    user_id: int,
    event_type: EventType,
    ts_utc: datetime,
    source: EventSource,
    metadata: dict[str, Any] | None,
) -> AttendanceEvent:
    event = AttendanceEvent(
        user_id=user_id,
        type=event_type,
        ts_utc=ts_utc,
        source=source,
        event_metadata=metadata or {},
    )
    db.add(event)
    db.commit()
    db.refresh(event)
    logger.info(
        "attendance_event_created",
        extra={
            "user_id": user_id,
            "event_id": event.id,
            "event_type": event_type.value,
            "source": source.value,
            "ts_utc": ts_utc,
        },
    )
    return event


def clock_in(
    db: Session,
    *,
    user_id: int,
    mode: ClockMode,
    config: ConfigReader,
    source: EventSource = EventSource.WEB,
    metadata: dict[str, Any] | None = None,
    now: datetime | None = None,
) -> ClockResult:
    user = get_active_user(db, user_id)
    # A malformed setting must fail before the event is written.
    load_work_rules(config)
    if mode not in _START_BY_MODE:
        raise InvalidInputError(code="INVALID_CLOCK_MODE", message="mode must be onsite or remote.")
    ts_utc = normalize_ts(now)
    day = local_date_from_utc(ts_utc)
    start_type = _START_BY_MODE[mode]

    events = list_day_events(db, user_id=user_id, day=day)
    if any(item.type == start_type for item in events):
        raise InvalidStateError(code="ALREADY_CLOCKED_IN", message="Already clocked in today.")

    event = _append_event(
        db,
        user_id=user_id,
        event_type=start_type,
        ts_utc=ts_utc,
        source=source,
        metadata=metadata,
    )
    summary = recompute_day(db, user_id=user_id, day=day, config=config)
    notify_clock_action(user_name=user.name, event=event, summary=summary)
    return ClockResult(event=event, summary=summary, message=f"Successfully clocked in ({mode})")


def clock_out(
    db: Session,
    *,
    user_id: int,
    config: ConfigReader,
    source: EventSource = EventSource.WEB,
    metadata: dict[str, Any] | None = None,
    now: datetime | None = None,
) -> ClockResult:
    user = get_active_user(db, user_id)
    load_work_rules(config)
    ts_utc = normalize_ts(now)
    day = local_date_from_utc(ts_utc)

    events = list_day_events(db, user_id=user_id, day=day)
    starts = [item for item in events if item.type in WORK_START_TYPES]
    if not starts:
        raise InvalidStateError(code="NOT_CLOCKED_IN", message="No clock in record found today.")
    latest_start = starts[-1]
    end_type = _END_BY_START[latest_start.type]
    if any(item.type == end_type and item.ts_utc >= latest_start.ts_utc for item in events):
        raise InvalidStateError(code="ALREADY_CLOCKED_OUT", message="Already clocked out today.")

    event = _append_event(
        db,
        user_id=user_id,
        event_type=end_type,
        ts_utc=ts_utc,
        source=source,
        metadata=metadata,
    )
    summary = recompute_day(db, user_id=user_id, day=day, config=config)
    notify_clock_action(user_name=user.name, event=event, summary=summary)
    return ClockResult(event=event, summary=summary, message="Successfully clocked out")


def break_start(
    db: Session,
    *,
    user_id: int,
    source: EventSource = EventSource.WEB,
    metadata: dict[str, Any] | None = None,
    now: datetime | None = None,
) -> ClockResult:
    user = get_active_user(db, user_id)
    ts_utc = normalize_ts(now)
    day = local_date_from_utc(ts_utc)

    break_events = [
        item
        for item in list_day_events(db, user_id=user_id, day=day)
        if item.type in (EventType.BREAK_OFFSITE_START, EventType.BREAK_OFFSITE_END)
    ]
    if break_events and break_events[-1].type == EventType.BREAK_OFFSITE_START:
        raise InvalidStateError(code="ALREADY_ON_BREAK", message="Already on break.")

    # The day is recomputed when the break ends; an open break counts for nothing.
    event = _append_event(
        db,
        user_id=user_id,
        event_type=EventType.BREAK_OFFSITE_START,
        ts_utc=ts_utc,
        source=source,
        metadata=metadata,
    )
    notify_clock_action(user_name=user.name, event=event)
    return ClockResult(event=event, message="Break started")


def break_end(
    db: Session,
    *,
    user_id: int,
    config: ConfigReader,
    source: EventSource = EventSource.WEB,
    metadata: dict[str, Any] | None = None,
    now: datetime | None = None,
) -> ClockResult:
    user = get_active_user(db, user_id)
    load_work_rules(config)
    ts_utc = normalize_ts(now)
    day = local_date_from_utc(ts_utc)

    events = list_day_events(db, user_id=user_id, day=day)
    break_starts = [item for item in events if item.type == EventType.BREAK_OFFSITE_START]
    if not break_starts:
        raise InvalidStateError(code="NO_ACTIVE_BREAK", message="No active break found.")
    latest_start = break_starts[-1]
    if any(
        item.type == EventType.BREAK_OFFSITE_END and item.ts_utc >= latest_start.ts_utc
        for item in events
    ):
        raise InvalidStateError(code="BREAK_ALREADY_ENDED", message="Break already ended.")

    event = _append_event(
        db,
        user_id=user_id,
        event_type=EventType.BREAK_OFFSITE_END,
        ts_utc=ts_utc,
        source=source,
        metadata=metadata,
    )
    summary = recompute_day(db, user_id=user_id, day=day, config=config)
    notify_clock_action(user_name=user.name, event=event, summary=summary)
    return ClockResult(event=event, summary=summary, message="Break ended")


def get_today_status(db: Session, *, user_id: int, now: datetime | None = None) -> TodayStatus:
    get_active_user(db, user_id)
    day = local_date_from_utc(normalize_ts(now) if now is not None else utcnow())
    events = list_day_events(db, user_id=user_id, day=day)
    return TodayStatus(
        day=day,
        events=events,
        summary=get_summary(db, user_id=user_id, day=day),
        schedule=current_schedule(db, user_id=user_id, day=day),
        current_status=derive_current_status(events),
    )


def get_day_summary(db: Session, *, user_id: int, day: date) -> DaySummary | None:
    return get_summary(db, user_id=user_id, day=day)


def month_stats(summaries: list[DaySummary]) -> dict[str, Any]:
    total_days = len(summaries)
    total_work_seconds = sum(item.total_work_seconds for item in summaries)
    return {
        "total_days": total_days,
        "total_work_seconds": total_work_seconds,
        "total_onsite_seconds": sum(item.work_onsite_seconds for item in summaries),
        "total_remote_seconds": sum(item.work_remote_seconds for item in summaries),
        "late_days": sum(1 for item in summaries if item.is_late),
        "early_leave_days": sum(1 for item in summaries if item.is_early_leave),
        "absent_days": sum(1 for item in summaries if item.day_kind == DayKind.WORKDAY_ABSENT),
        "non_workdays": sum(1 for item in summaries if item.day_kind == DayKind.NON_WORKDAY),
        "average_work_hours": (total_work_seconds / total_days / 3600) if total_days else 0.0,
    }


def get_month_summary(db: Session, *, user_id: int, year_month: str) -> MonthSummary:
    try:
        start_date, end_date = month_date_range(year_month)
    except ValueError as exc:
        raise InvalidInputError(code="INVALID_MONTH", message="month must be formatted as YYYY-MM.") from exc
    summaries = list_summaries_in_range(db, user_id=user_id, start_date=start_date, end_date=end_date)
    return MonthSummary(year_month=year_month, summaries=summaries, stats=month_stats(summaries))
