from __future__ import annotations

import logging
from datetime import date

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.errors import ApiError
from app.models import AdvanceNotice, AttendanceEvent, DaySummary
from app.services.local_time import attendance_timezone, local_day_bounds_utc
from app.services.locks import day_locks
from app.services.schedules import current_schedule, load_weekly_schedule
from app.services.work_hours import ConfigReader, DailyBreakdown, WorkRules, calculate_daily_breakdown

logger = logging.getLogger("app.day_summary")


def list_day_events(db: Session, *, user_id: int, day: date) -> list[AttendanceEvent]:
    start_utc, end_utc = local_day_bounds_utc(day)
    return list(
        db.scalars(
            select(AttendanceEvent)
            .where(
                AttendanceEvent.user_id == user_id,
                AttendanceEvent.ts_utc >= start_utc,
                AttendanceEvent.ts_utc < end_utc,
            )
            .order_by(AttendanceEvent.ts_utc.asc(), AttendanceEvent.id.asc())
        ).all()
    )


def find_unused_notice(db: Session, *, user_id: int, day: date) -> AdvanceNotice | None:
    return db.scalar(
        select(AdvanceNotice)
        .where(
            AdvanceNotice.user_id == user_id,
            AdvanceNotice.expected_date == day,
            AdvanceNotice.is_used.is_(False),
        )
        .order_by(AdvanceNotice.created_at.asc(), AdvanceNotice.id.asc())
        .limit(1)
    )


def get_summary(db: Session, *, user_id: int, day: date) -> DaySummary | None:
    return db.scalar(
        select(DaySummary).where(
            DaySummary.user_id == user_id,
            DaySummary.day_date == day,
        )
    )


def list_summaries_in_range(db: Session, *, user_id: int, start_date: date, end_date: date) -> list[DaySummary]:
    return list(
        db.scalars(
            select(DaySummary)
            .where(
                DaySummary.user_id == user_id,
                DaySummary.day_date >= start_date,
                DaySummary.day_date <= end_date,
            )
            .order_by(DaySummary.day_date.asc())
        ).all()
    )


def _apply_breakdown(summary: DaySummary, breakdown: DailyBreakdown, *, has_advance_notice: bool) -> None:
    for field_name, value in breakdown.as_summary_fields().items():
        setattr(summary, field_name, value)
    summary.has_advance_notice = has_advance_notice


def _write_summary(
    db: Session,
    *,
    user_id: int,
    day: date,
    breakdown: DailyBreakdown,
    notice: AdvanceNotice | None,
    first_event_id: int,
) -> DaySummary:
    summary = get_summary(db, user_id=user_id, day=day)
    if summary is None:
        summary = DaySummary(user_id=user_id, day_date=day)
        db.add(summary)

    _apply_breakdown(
        summary,
        breakdown,
        has_advance_notice=bool(summary.has_advance_notice) or notice is not None,
    )
    if notice is not None:
        notice.is_used = True
        notice.related_event_id = first_event_id
    db.commit()
    return summary


def load_work_rules(config: ConfigReader) -> WorkRules:
    """Build the calculator rules, raising ``CONFIG_INVALID`` on a malformed setting."""
    try:
        return WorkRules.from_config(config)
    except ValueError as exc:
        raise ApiError(status_code=500, code="CONFIG_INVALID", message=str(exc)) from exc


def recompute_day(
    db: Session,
    *,
    user_id: int,
    day: date,
    config: ConfigReader,
) -> DaySummary | None:
    """Rebuild and persist the summary for one user and local day.

    Returns ``None`` without writing when the day has no events. An unused
    advance notice for the day is consumed in the same commit, and a summary
    that once had a notice keeps the flag.
    """
    with day_locks.hold((user_id, day)):
        events = list_day_events(db, user_id=user_id, day=day)
        if not events:
            return None

        term = current_schedule(db, user_id=user_id, day=day)
        if term is None:
            logger.warning(
                "schedule_missing_for_day",
                extra={"user_id": user_id, "day": day.isoformat()},
            )
        weekly_schedule = load_weekly_schedule(term)

        rules = load_work_rules(config)

        breakdown = calculate_daily_breakdown(
            events,
            day=day,
            weekly_schedule=weekly_schedule,
            rules=rules,
            tz=attendance_timezone(),
        )
        notice = find_unused_notice(db, user_id=user_id, day=day)

        try:
            summary = _write_summary(
                db,
                user_id=user_id,
                day=day,
                breakdown=breakdown,
                notice=notice,
                first_event_id=events[0].id,
            )
        except IntegrityError:
            # Another process inserted the row first; retry as an update.
            db.rollback()
            try:
                notice = find_unused_notice(db, user_id=user_id, day=day)
                summary = _write_summary(
                    db,
                    user_id=user_id,
                    day=day,
                    breakdown=breakdown,
                    notice=notice,
                    first_event_id=events[0].id,
                )
            except Exception:
                db.rollback()
                raise
        except Exception:
            db.rollback()
            raise

        logger.info(
            "day_summary_updated",
            extra={
                "user_id": user_id,
                "day": day.isoformat(),
                "day_kind": breakdown.day_kind.value,
                "total_work_seconds": breakdown.total_work_seconds,
                "is_late": breakdown.is_late,
                "is_early_leave": breakdown.is_early_leave,
                "has_advance_notice": summary.has_advance_notice,
                "notice_id": notice.id if notice is not None else None,
            },
        )
        return summary
