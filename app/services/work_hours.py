from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import asdict, dataclass
from datetime import date, datetime, time, timedelta, tzinfo
from typing import Any, Literal, Protocol

from app.models import DayKind, EventType
from app.services.local_time import attendance_timezone, parse_hhmm
from app.services.schedules import DaySchedule, weekday_name

# Reported lunch length; the amount actually subtracted is lunch_overlap_seconds.
LUNCH_BREAK_DISPLAY_SECONDS = 5400

_DAY_END = time(23, 59, 59, 999000)

WorkMode = Literal["onsite", "remote"]

_START_MODES: dict[EventType, WorkMode] = {
    EventType.WORK_ONSITE_START: "onsite",
    EventType.WORK_REMOTE_START: "remote",
}
_END_MODES: dict[EventType, WorkMode] = {
    EventType.WORK_ONSITE_END: "onsite",
    EventType.WORK_REMOTE_END: "remote",
}


class ClockEvent(Protocol):
    type: EventType
    ts_utc: datetime


class ConfigReader(Protocol):
    def get(self, key: str) -> Any: ...


@dataclass(frozen=True, slots=True)
class WorkRules:
    lunch_start: time
    lunch_end: time
    late_grace_minutes: int

    @classmethod
    def from_config(cls, config: ConfigReader) -> WorkRules:
        """Snapshot the rules the calculator needs; malformed values raise ``ValueError``."""
        lunch_start = parse_hhmm(config.get("lunch_start_time"))
        lunch_end = parse_hhmm(config.get("lunch_end_time"))
        if lunch_end < lunch_start:
            raise ValueError("lunch_end_time must not be before lunch_start_time")
        grace = int(config.get("late_grace_minutes"))
        if grace < 0:
            raise ValueError("late_grace_minutes must be >= 0")
        return cls(lunch_start=lunch_start, lunch_end=lunch_end, late_grace_minutes=grace)


@dataclass(frozen=True, slots=True)
class WorkSegment:
    start: datetime
    end: datetime
    mode: WorkMode


@dataclass(frozen=True, slots=True)
class BreakSegment:
    start: datetime
    end: datetime


@dataclass(frozen=True)
class DailyBreakdown:
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
    status_notes: str

    @property
    def is_workday(self) -> bool:
        return self.day_kind != DayKind.NON_WORKDAY

    def as_summary_fields(self) -> dict[str, Any]:
        return asdict(self)


def _seconds_between(start: datetime, end: datetime) -> int:
    return int((end - start).total_seconds())


def overlap_seconds(start1: datetime, end1: datetime, start2: datetime, end2: datetime) -> int:
    overlap_start = max(start1, start2)
    overlap_end = min(end1, end2)
    if overlap_start >= overlap_end:
        return 0
    return _seconds_between(overlap_start, overlap_end)


def day_end(day: date, tz: tzinfo) -> datetime:
    return datetime.combine(day, _DAY_END, tzinfo=tz)


def extract_work_segments(events: Sequence[ClockEvent], *, day: date, tz: tzinfo) -> list[WorkSegment]:
    """Pair work starts with the next end of the same mode.

    A start arriving while a segment is open replaces the open start. An end of
    the other mode does not close the open segment. A segment still open after
    the last event runs until the end of the local day.
    """
    segments: list[WorkSegment] = []
    open_start: datetime | None = None
    open_mode: WorkMode | None = None

    for event in events:
        if event.type in _START_MODES:
            open_start = event.ts_utc
            open_mode = _START_MODES[event.type]
        elif event.type in _END_MODES:
            if open_start is not None and open_mode == _END_MODES[event.type]:
                segments.append(WorkSegment(start=open_start, end=event.ts_utc, mode=open_mode))
                open_start = None
                open_mode = None

    if open_start is not None and open_mode is not None:
        segments.append(WorkSegment(start=open_start, end=day_end(day, tz), mode=open_mode))

    return segments


def extract_break_segments(events: Sequence[ClockEvent]) -> list[BreakSegment]:
    # Unterminated breaks are dropped, unlike work segments.
    segments: list[BreakSegment] = []
    break_start: datetime | None = None

    for event in events:
        if event.type == EventType.BREAK_OFFSITE_START:
            break_start = event.ts_utc
        elif event.type == EventType.BREAK_OFFSITE_END and break_start is not None:
            segments.append(BreakSegment(start=break_start, end=event.ts_utc))
            break_start = None

    return segments


def build_status_notes(
    *,
    is_absent: bool,
    is_late: bool,
    late_minutes: int,
    is_early_leave: bool,
    early_leave_minutes: int,
    total_work_seconds: int,
    scheduled_work_seconds: int,
) -> str:
    notes: list[str] = []
    if is_absent:
        notes.append("Absent - No clock in record")
    else:
        if is_late:
            notes.append(f"Late by {late_minutes} minutes")
        if is_early_leave:
            notes.append(f"Early leave by {early_leave_minutes} minutes")
        notes.append(
            f"Worked {total_work_seconds / 3600:.2f}h / Scheduled {scheduled_work_seconds / 3600:.2f}h"
        )
    return "; ".join(notes)


def _non_workday_breakdown() -> DailyBreakdown:
    return DailyBreakdown(
        day_kind=DayKind.NON_WORKDAY,
        work_onsite_seconds=0,
        work_remote_seconds=0,
        total_work_seconds=0,
        scheduled_work_seconds=0,
        is_late=False,
        late_minutes=0,
        is_early_leave=False,
        early_leave_minutes=0,
        is_absent=True,
        lunch_break_seconds=0,
        lunch_overlap_seconds=0,
        break_offsite_seconds=0,
        status_notes="Not a scheduled work day",
    )


def calculate_daily_breakdown(
    events: Sequence[ClockEvent],
    *,
    day: date,
    weekly_schedule: Mapping[str, DaySchedule] | None,
    rules: WorkRules,
    tz: tzinfo | None = None,
) -> DailyBreakdown:
    """Rebuild a day's work hours and attendance flags from its clock events.

    ``events`` must all belong to the local calendar day ``day``. Timestamps
    equal to each other keep their input order, so callers pass events in
    insertion order.
    """
    day_schedule = (weekly_schedule or {}).get(weekday_name(day))
    if day_schedule is None:
        return _non_workday_breakdown()

    zone = tz or attendance_timezone()
    ordered = sorted(events, key=lambda item: item.ts_utc)

    scheduled_start = datetime.combine(day, day_schedule.start, tzinfo=zone)
    scheduled_end = datetime.combine(day, day_schedule.end, tzinfo=zone)
    lunch_start = datetime.combine(day, rules.lunch_start, tzinfo=zone)
    lunch_end = datetime.combine(day, rules.lunch_end, tzinfo=zone)
    scheduled_work_seconds = _seconds_between(scheduled_start, scheduled_end)

    work_segments = extract_work_segments(ordered, day=day, tz=zone)
    break_segments = extract_break_segments(ordered)

    work_onsite_seconds = 0
    work_remote_seconds = 0
    lunch_overlap_total = 0
    for segment in work_segments:
        segment_seconds = _seconds_between(segment.start, segment.end)
        lunch_overlap = overlap_seconds(segment.start, segment.end, lunch_start, lunch_end)
        lunch_overlap_total += lunch_overlap
        segment_seconds -= lunch_overlap
        for break_segment in break_segments:
            segment_seconds -= overlap_seconds(segment.start, segment.end, break_segment.start, break_segment.end)

        if segment.mode == "onsite":
            work_onsite_seconds += max(0, segment_seconds)
        else:
            work_remote_seconds += max(0, segment_seconds)

    total_work_seconds = work_onsite_seconds + work_remote_seconds
    break_offsite_seconds = sum(_seconds_between(item.start, item.end) for item in break_segments)

    is_late = False
    late_minutes = 0
    first_start = next((item for item in ordered if item.type in _START_MODES), None)
    if first_start is not None:
        grace_deadline = scheduled_start + timedelta(minutes=rules.late_grace_minutes)
        if first_start.ts_utc > grace_deadline:
            is_late = True
            # Measured from the scheduled start, not from the end of the grace window.
            late_minutes = _seconds_between(scheduled_start, first_start.ts_utc) // 60

    is_early_leave = False
    early_leave_minutes = 0
    last_end = None
    for item in ordered:
        if item.type in _END_MODES:
            last_end = item
    if last_end is not None and last_end.ts_utc < scheduled_end:
        is_early_leave = True
        early_leave_minutes = _seconds_between(last_end.ts_utc, scheduled_end) // 60

    is_absent = len(work_segments) == 0
    status_notes = build_status_notes(
        is_absent=is_absent,
        is_late=is_late,
        late_minutes=late_minutes,
        is_early_leave=is_early_leave,
        early_leave_minutes=early_leave_minutes,
        total_work_seconds=total_work_seconds,
        scheduled_work_seconds=scheduled_work_seconds,
    )

    return DailyBreakdown(
        day_kind=DayKind.WORKDAY_ABSENT if is_absent else DayKind.WORKDAY_PRESENT,
        work_onsite_seconds=work_onsite_seconds,
        work_remote_seconds=work_remote_seconds,
        total_work_seconds=total_work_seconds,
        scheduled_work_seconds=scheduled_work_seconds,
        is_late=is_late,
        late_minutes=late_minutes,
        is_early_leave=is_early_leave,
        early_leave_minutes=early_leave_minutes,
        is_absent=is_absent,
        lunch_break_seconds=LUNCH_BREAK_DISPLAY_SECONDS,
        lunch_overlap_seconds=lunch_overlap_total,
        break_offsite_seconds=break_offsite_seconds,
        status_notes=status_notes,
    )
